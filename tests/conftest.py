from __future__ import annotations

import os
import tempfile
from pathlib import Path

import pytest

_TEST_DATA_DIR = Path(tempfile.mkdtemp(prefix="guestbook-tests-"))

os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret-with-enough-entropy")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-with-enough-entropy")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DB_PATH", str(_TEST_DATA_DIR / "api.db"))
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "100000")

from guestbook.db import db_cursor, ensure_database  # noqa: E402
from guestbook.lexical import build_wordlist_filter  # noqa: E402
from guestbook.repository import create_user, mark_email_verified  # noqa: E402


@pytest.fixture(scope="session")
def word_filter():
    return build_wordlist_filter()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "guestbook.db"
    ensure_database(path)
    return path


@pytest.fixture
def make_user(db_path: Path):
    def _make(username: str, verified: bool = True):
        user = create_user(db_path, f"{username.lower()}@example.com", username, "not-a-real-hash")
        if verified:
            mark_email_verified(db_path, user.id)
            user.email_verified = True
        return user

    return _make


@pytest.fixture
def remove_message(db_path: Path):
    """Drop a guestbook row directly, the way an operator purge would."""

    def _remove(message_id: int) -> None:
        with db_cursor(db_path) as cur:
            cur.execute("DELETE FROM guestbook WHERE id = ?", (message_id,))

    return _remove
