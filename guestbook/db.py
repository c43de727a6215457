from __future__ import annotations

import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path

LOGGER = logging.getLogger("guestbook.db")


def _open_connection(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, timeout=10, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA busy_timeout=5000;")
    return conn


def ensure_database(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)

    if db_path.exists():
        conn = _open_connection(db_path)
        try:
            check = conn.execute("PRAGMA integrity_check;").fetchone()[0]
        finally:
            conn.close()
        if check.lower() != "ok":
            backup_path = db_path.with_suffix(f".corrupt-{int(time.time())}.db")
            LOGGER.error("Integrity check failed (%s), moving database to %s", check, backup_path)
            db_path.rename(backup_path)

    conn = _open_connection(db_path)
    try:
        # guestbook.parent_id is a soft reference: a reply outlives its parent.
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT UNIQUE NOT NULL,
                username TEXT UNIQUE NOT NULL,
                display_username TEXT,
                name TEXT,
                password_hash TEXT NOT NULL,
                email_verified INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                refresh_jti_hash TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                last_active INTEGER NOT NULL,
                revoked INTEGER NOT NULL DEFAULT 0,
                ip_address TEXT,
                user_agent TEXT
            );

            CREATE TABLE IF NOT EXISTS guestbook (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                message TEXT NOT NULL,
                parent_id INTEGER,
                created_at INTEGER NOT NULL,
                CHECK (parent_id IS NULL OR parent_id != id)
            );

            CREATE TABLE IF NOT EXISTS user_preferences (
                user_id INTEGER PRIMARY KEY,
                ignored_users TEXT NOT NULL DEFAULT '[]',
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS verification_codes (
                user_id INTEGER PRIMARY KEY,
                code_hash TEXT NOT NULL,
                expires_at INTEGER NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_users_username ON users(username);
            CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id);
            CREATE INDEX IF NOT EXISTS idx_guestbook_created ON guestbook(created_at DESC, id DESC);
            CREATE INDEX IF NOT EXISTS idx_guestbook_user_created ON guestbook(user_id, created_at DESC, id DESC);
            """
        )
    finally:
        conn.close()


@contextmanager
def db_cursor(db_path: Path):
    conn = _open_connection(db_path)
    try:
        cur = conn.cursor()
        yield cur
    finally:
        conn.commit()
        conn.close()
