from __future__ import annotations

import re
from dataclasses import dataclass

from .lexical import WordlistFilter

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 20

USERNAME_CHARSET = re.compile(r"[A-Za-z0-9_-]+")

RESERVED_USERNAMES = frozenset(
    {
        "admin", "api", "www", "mail", "ftp", "localhost", "root", "user",
        "test", "guest", "anonymous", "null", "undefined", "system", "support",
        "help", "info", "contact", "about", "terms", "privacy", "login", "signup",
        "register", "auth", "oauth", "profile", "settings", "account", "dashboard",
    }
)


@dataclass(frozen=True)
class UsernameValidation:
    is_valid: bool
    error: str | None = None
    sanitized: str | None = None


def _reject(error: str, sanitized: str | None = None) -> UsernameValidation:
    return UsernameValidation(is_valid=False, error=error, sanitized=sanitized)


def validate_username(raw: str, word_filter: WordlistFilter) -> UsernameValidation:
    """Check a proposed username against the structural and lexical rules.

    Rules run in a fixed order and the first failure is reported, so the
    same input always produces the same single error. Uniqueness is not
    checked here.
    """
    if not raw or not raw.strip():
        return _reject("Username is required")

    trimmed = raw.strip()
    if trimmed != raw:
        return _reject("Username cannot contain leading or trailing spaces", sanitized=trimmed)

    if any(ch.isspace() for ch in trimmed):
        return _reject("Username cannot contain spaces")

    if len(trimmed) < USERNAME_MIN_LENGTH:
        return _reject(f"Username must be at least {USERNAME_MIN_LENGTH} characters long")

    if len(trimmed) > USERNAME_MAX_LENGTH:
        return _reject(f"Username must be {USERNAME_MAX_LENGTH} characters or less")

    if not USERNAME_CHARSET.fullmatch(trimmed):
        return _reject("Username can only contain letters, numbers, underscores, and hyphens")

    if trimmed[0] in "-_" or trimmed[-1] in "-_":
        return _reject("Username cannot start or end with underscores or hyphens")

    if word_filter.is_profane(trimmed):
        return _reject("Username contains inappropriate language")

    if trimmed.lower() in RESERVED_USERNAMES:
        return _reject("This username is reserved and cannot be used")

    return UsernameValidation(is_valid=True, sanitized=trimmed)


def sanitize_username(raw: str) -> str:
    return "".join(raw.split())
