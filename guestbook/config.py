from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

MESSAGE_POLICIES = {"strict", "simple"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_env: str
    log_level: str
    host: str
    port: int
    db_path: Path
    access_secret: str
    refresh_secret: str
    access_ttl_minutes: int
    refresh_ttl_days: int
    session_inactivity_minutes: int
    cookie_secure: bool
    cookie_domain: str | None
    cors_origins: list[str]
    message_policy: str
    message_max_length: int
    message_allow_links: bool
    message_max_links: int
    feed_page_size: int
    feed_max_page_size: int
    reply_snippet_length: int
    profanity_extra_terms: tuple[str, ...]
    verification_code_ttl_minutes: int
    rate_limit_per_minute: int


def _to_bool(value: str, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _must_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def load_settings() -> Settings:
    root = Path(__file__).resolve().parent.parent
    db_default = root / "data" / "guestbook.db"

    access_secret = _must_env("JWT_ACCESS_SECRET")
    refresh_secret = _must_env("JWT_REFRESH_SECRET")

    cors_origins = _split_csv(os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"))

    message_policy = os.getenv("MESSAGE_POLICY", "strict").strip().lower()
    if message_policy not in MESSAGE_POLICIES:
        raise RuntimeError(f"MESSAGE_POLICY must be one of {sorted(MESSAGE_POLICIES)}, got {message_policy!r}")

    feed_page_size = int(os.getenv("FEED_PAGE_SIZE", "50"))
    feed_max_page_size = int(os.getenv("FEED_MAX_PAGE_SIZE", "100"))
    if feed_page_size < 1 or feed_max_page_size < feed_page_size:
        raise RuntimeError("FEED_PAGE_SIZE must be >= 1 and <= FEED_MAX_PAGE_SIZE")

    return Settings(
        app_name="Guestbook",
        app_env=os.getenv("APP_ENV", "production"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
        db_path=Path(os.getenv("DB_PATH", str(db_default))),
        access_secret=access_secret,
        refresh_secret=refresh_secret,
        access_ttl_minutes=int(os.getenv("ACCESS_TTL_MINUTES", "15")),
        refresh_ttl_days=int(os.getenv("REFRESH_TTL_DAYS", "14")),
        session_inactivity_minutes=int(os.getenv("SESSION_INACTIVITY_MINUTES", "60")),
        cookie_secure=_to_bool(os.getenv("COOKIE_SECURE", "false")),
        cookie_domain=os.getenv("COOKIE_DOMAIN") or None,
        cors_origins=cors_origins or ["http://localhost:3000"],
        message_policy=message_policy,
        message_max_length=int(os.getenv("MESSAGE_MAX_LENGTH", "1000")),
        message_allow_links=_to_bool(os.getenv("MESSAGE_ALLOW_LINKS", "false")),
        message_max_links=int(os.getenv("MESSAGE_MAX_LINKS", "0")),
        feed_page_size=feed_page_size,
        feed_max_page_size=feed_max_page_size,
        reply_snippet_length=int(os.getenv("REPLY_SNIPPET_LENGTH", "120")),
        profanity_extra_terms=tuple(_split_csv(os.getenv("PROFANITY_EXTRA_TERMS", ""))),
        verification_code_ttl_minutes=int(os.getenv("VERIFICATION_CODE_TTL_MINUTES", "10")),
        rate_limit_per_minute=int(os.getenv("RATE_LIMIT_PER_MINUTE", "240")),
    )
