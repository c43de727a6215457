from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .db import db_cursor


@dataclass
class User:
    id: int
    email: str
    username: str
    display_username: str | None
    name: str | None
    password_hash: str
    email_verified: bool


@dataclass
class Session:
    id: str
    user_id: int
    refresh_jti_hash: str
    last_active: int
    revoked: int


@dataclass
class Message:
    id: int
    author_id: int
    body: str
    created_at: int
    parent_id: int | None = None

    @property
    def is_reply(self) -> bool:
        return self.parent_id is not None


@dataclass
class MessageRow:
    """A message joined with its author's display fields."""

    message: Message
    username: str | None
    display_username: str | None
    name: str | None


@dataclass
class VerificationCode:
    user_id: int
    code_hash: str
    expires_at: int
    attempts: int


_USER_COLUMNS = "id, email, username, display_username, name, password_hash, email_verified"

_MESSAGE_SELECT = """
    SELECT g.id, g.user_id, g.message, g.created_at, g.parent_id,
           u.username, u.display_username, u.name
    FROM guestbook g
    LEFT JOIN users u ON u.id = g.user_id
"""


def now_ts() -> int:
    return int(time.time())


def _row_to_user(row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        username=row["username"],
        display_username=row["display_username"],
        name=row["name"],
        password_hash=row["password_hash"],
        email_verified=bool(row["email_verified"]),
    )


def _row_to_message(row) -> Message:
    return Message(
        id=row["id"],
        author_id=row["user_id"],
        body=row["message"],
        created_at=row["created_at"],
        parent_id=row["parent_id"],
    )


# -- users -----------------------------------------------------------------


def create_user(db_path: Path, email: str, username: str, password_hash: str, name: str | None = None) -> User:
    with db_cursor(db_path) as cur:
        cur.execute(
            """
            INSERT INTO users (email, username, display_username, name, password_hash, email_verified, created_at)
            VALUES (?, ?, ?, ?, ?, 0, ?)
            """,
            (email, username, username, name or username, password_hash, now_ts()),
        )
        user_id = cur.lastrowid
    return User(
        id=user_id,
        email=email,
        username=username,
        display_username=username,
        name=name or username,
        password_hash=password_hash,
        email_verified=False,
    )


def get_user_by_email(db_path: Path, email: str) -> User | None:
    with db_cursor(db_path) as cur:
        row = cur.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE email = ?", (email,)).fetchone()
    return _row_to_user(row) if row else None


def get_user_by_id(db_path: Path, user_id: int) -> User | None:
    with db_cursor(db_path) as cur:
        row = cur.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
    return _row_to_user(row) if row else None


def get_user_by_username(db_path: Path, username: str) -> User | None:
    with db_cursor(db_path) as cur:
        row = cur.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE username = ?", (username,)).fetchone()
    return _row_to_user(row) if row else None


def get_user_id_by_username(db_path: Path, username: str) -> int | None:
    with db_cursor(db_path) as cur:
        row = cur.execute("SELECT id FROM users WHERE username = ? LIMIT 1", (username,)).fetchone()
    return row["id"] if row else None


def get_user_ids_by_usernames(db_path: Path, usernames: Iterable[str]) -> dict[str, int]:
    names = list(dict.fromkeys(usernames))
    if not names:
        return {}
    placeholders = ", ".join("?" for _ in names)
    with db_cursor(db_path) as cur:
        rows = cur.execute(
            f"SELECT id, username FROM users WHERE username IN ({placeholders})",
            names,
        ).fetchall()
    return {row["username"]: row["id"] for row in rows}


def get_usernames_by_ids(db_path: Path, user_ids: Iterable[int]) -> dict[int, str]:
    ids = list(dict.fromkeys(user_ids))
    if not ids:
        return {}
    placeholders = ", ".join("?" for _ in ids)
    with db_cursor(db_path) as cur:
        rows = cur.execute(
            f"SELECT id, username FROM users WHERE id IN ({placeholders})",
            ids,
        ).fetchall()
    return {row["id"]: row["username"] for row in rows if row["username"]}


def mark_email_verified(db_path: Path, user_id: int) -> None:
    with db_cursor(db_path) as cur:
        cur.execute("UPDATE users SET email_verified = 1 WHERE id = ?", (user_id,))


def update_password_hash(db_path: Path, user_id: int, password_hash: str) -> None:
    with db_cursor(db_path) as cur:
        cur.execute("UPDATE users SET password_hash = ? WHERE id = ?", (password_hash, user_id))


# -- sessions --------------------------------------------------------------


def create_session(
    db_path: Path,
    session_id: str,
    user_id: int,
    refresh_jti_hash: str,
    ip_address: str,
    user_agent: str,
) -> None:
    now = now_ts()
    with db_cursor(db_path) as cur:
        cur.execute(
            """
            INSERT INTO sessions (id, user_id, refresh_jti_hash, created_at, last_active, revoked, ip_address, user_agent)
            VALUES (?, ?, ?, ?, ?, 0, ?, ?)
            """,
            (session_id, user_id, refresh_jti_hash, now, now, ip_address, user_agent[:255]),
        )


def get_session(db_path: Path, session_id: str) -> Session | None:
    with db_cursor(db_path) as cur:
        row = cur.execute(
            "SELECT id, user_id, refresh_jti_hash, last_active, revoked FROM sessions WHERE id = ?",
            (session_id,),
        ).fetchone()
    if not row:
        return None
    return Session(
        id=row["id"],
        user_id=row["user_id"],
        refresh_jti_hash=row["refresh_jti_hash"],
        last_active=row["last_active"],
        revoked=row["revoked"],
    )


def update_session_activity(db_path: Path, session_id: str) -> None:
    with db_cursor(db_path) as cur:
        cur.execute("UPDATE sessions SET last_active = ? WHERE id = ?", (now_ts(), session_id))


def rotate_refresh_jti(db_path: Path, session_id: str, refresh_jti_hash: str) -> None:
    with db_cursor(db_path) as cur:
        cur.execute(
            "UPDATE sessions SET refresh_jti_hash = ?, last_active = ? WHERE id = ? AND revoked = 0",
            (refresh_jti_hash, now_ts(), session_id),
        )


def revoke_session(db_path: Path, session_id: str) -> None:
    with db_cursor(db_path) as cur:
        cur.execute("UPDATE sessions SET revoked = 1 WHERE id = ?", (session_id,))


def revoke_all_user_sessions(db_path: Path, user_id: int, except_session: str | None = None) -> None:
    with db_cursor(db_path) as cur:
        if except_session:
            cur.execute(
                "UPDATE sessions SET revoked = 1 WHERE user_id = ? AND id != ?",
                (user_id, except_session),
            )
        else:
            cur.execute("UPDATE sessions SET revoked = 1 WHERE user_id = ?", (user_id,))


# -- guestbook -------------------------------------------------------------


def insert_message(
    db_path: Path,
    author_id: int,
    body: str,
    parent_id: int | None = None,
    created_at: int | None = None,
) -> Message:
    created = now_ts() if created_at is None else created_at
    with db_cursor(db_path) as cur:
        cur.execute(
            "INSERT INTO guestbook (user_id, message, parent_id, created_at) VALUES (?, ?, ?, ?)",
            (author_id, body, parent_id, created),
        )
        message_id = cur.lastrowid
    return Message(id=message_id, author_id=author_id, body=body, created_at=created, parent_id=parent_id)


def get_message(db_path: Path, message_id: int) -> MessageRow | None:
    with db_cursor(db_path) as cur:
        row = cur.execute(f"{_MESSAGE_SELECT} WHERE g.id = ?", (message_id,)).fetchone()
    if not row:
        return None
    return MessageRow(
        message=_row_to_message(row),
        username=row["username"],
        display_username=row["display_username"],
        name=row["name"],
    )


def list_messages(
    db_path: Path,
    limit: int,
    offset: int,
    author_id: int | None = None,
) -> list[MessageRow]:
    where = ""
    params: list = []
    if author_id is not None:
        where = "WHERE g.user_id = ?"
        params.append(author_id)
    params.extend([limit, offset])
    with db_cursor(db_path) as cur:
        rows = cur.execute(
            f"{_MESSAGE_SELECT} {where} ORDER BY g.created_at DESC, g.id DESC LIMIT ? OFFSET ?",
            params,
        ).fetchall()
    return [
        MessageRow(
            message=_row_to_message(row),
            username=row["username"],
            display_username=row["display_username"],
            name=row["name"],
        )
        for row in rows
    ]


def count_messages(db_path: Path, author_id: int | None = None) -> int:
    with db_cursor(db_path) as cur:
        if author_id is None:
            row = cur.execute("SELECT COUNT(*) AS total FROM guestbook").fetchone()
        else:
            row = cur.execute("SELECT COUNT(*) AS total FROM guestbook WHERE user_id = ?", (author_id,)).fetchone()
    return int(row["total"])


# -- preferences -----------------------------------------------------------


def get_ignored_user_ids(db_path: Path, user_id: int) -> list[int] | None:
    with db_cursor(db_path) as cur:
        row = cur.execute(
            "SELECT ignored_users FROM user_preferences WHERE user_id = ?",
            (user_id,),
        ).fetchone()
    if not row:
        return None
    return [int(value) for value in json.loads(row["ignored_users"] or "[]")]


def create_default_preferences(db_path: Path, user_id: int) -> None:
    now = now_ts()
    with db_cursor(db_path) as cur:
        cur.execute(
            """
            INSERT INTO user_preferences (user_id, ignored_users, created_at, updated_at)
            VALUES (?, '[]', ?, ?)
            ON CONFLICT(user_id) DO NOTHING
            """,
            (user_id, now, now),
        )


def upsert_ignored_user_ids(db_path: Path, user_id: int, ignored_ids: list[int]) -> None:
    now = now_ts()
    payload = json.dumps(ignored_ids)
    with db_cursor(db_path) as cur:
        cur.execute(
            """
            INSERT INTO user_preferences (user_id, ignored_users, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                ignored_users = excluded.ignored_users,
                updated_at = excluded.updated_at
            """,
            (user_id, payload, now, now),
        )


# -- verification codes ----------------------------------------------------


def store_verification_code(db_path: Path, user_id: int, code_hash: str, expires_at: int) -> None:
    with db_cursor(db_path) as cur:
        cur.execute(
            """
            INSERT INTO verification_codes (user_id, code_hash, expires_at, attempts)
            VALUES (?, ?, ?, 0)
            ON CONFLICT(user_id) DO UPDATE SET
                code_hash = excluded.code_hash,
                expires_at = excluded.expires_at,
                attempts = 0
            """,
            (user_id, code_hash, expires_at),
        )


def get_verification_code(db_path: Path, user_id: int) -> VerificationCode | None:
    with db_cursor(db_path) as cur:
        row = cur.execute(
            "SELECT user_id, code_hash, expires_at, attempts FROM verification_codes WHERE user_id = ?",
            (user_id,),
        ).fetchone()
    if not row:
        return None
    return VerificationCode(
        user_id=row["user_id"],
        code_hash=row["code_hash"],
        expires_at=row["expires_at"],
        attempts=row["attempts"],
    )


def register_failed_code_attempt(db_path: Path, user_id: int) -> None:
    with db_cursor(db_path) as cur:
        cur.execute("UPDATE verification_codes SET attempts = attempts + 1 WHERE user_id = ?", (user_id,))


def delete_verification_code(db_path: Path, user_id: int) -> None:
    with db_cursor(db_path) as cur:
        cur.execute("DELETE FROM verification_codes WHERE user_id = ?", (user_id,))
