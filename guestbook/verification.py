from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from .repository import (
    User,
    delete_verification_code,
    get_verification_code,
    mark_email_verified,
    register_failed_code_attempt,
    store_verification_code,
)
from .security import generate_verification_code, hash_verification_code, now_ts, verification_code_matches

LOGGER = logging.getLogger("guestbook.verification")

MAX_CODE_ATTEMPTS = 5

CodeSender = Callable[[User, str], None]


class VerificationError(Exception):
    pass


def log_code_sender(user: User, code: str) -> None:
    LOGGER.info("Verification code for %s: %s", user.email, code)


def discard_code_sender(user: User, code: str) -> None:
    LOGGER.warning("No verification code delivery configured; code for user %s not sent", user.id)


def issue_verification_code(db_path: Path, user: User, ttl_minutes: int, sender: CodeSender) -> None:
    code = generate_verification_code()
    store_verification_code(
        db_path,
        user.id,
        hash_verification_code(user.id, code),
        now_ts() + ttl_minutes * 60,
    )
    sender(user, code)


def confirm_verification_code(db_path: Path, user_id: int, code: str) -> None:
    record = get_verification_code(db_path, user_id)
    if record is None:
        raise VerificationError("No verification code pending. Request a new code")

    if record.expires_at < now_ts():
        delete_verification_code(db_path, user_id)
        raise VerificationError("Verification code expired. Request a new code")

    if record.attempts >= MAX_CODE_ATTEMPTS:
        delete_verification_code(db_path, user_id)
        raise VerificationError("Too many attempts. Request a new code")

    if not verification_code_matches(user_id, code, record.code_hash):
        register_failed_code_attempt(db_path, user_id)
        raise VerificationError("Invalid verification code")

    delete_verification_code(db_path, user_id)
    mark_email_verified(db_path, user_id)
