from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from .content import ValidationOptions, ValidationResult, check_post_body, validate_message
from .lexical import WordlistFilter
from .repository import Message, get_message, insert_message

LOGGER = logging.getLogger("guestbook.board")

POLICY_STRICT = "strict"
POLICY_SIMPLE = "simple"

SIGN_IN_REQUIRED = "sign_in_required"
EMAIL_UNVERIFIED = "email_unverified"

MISSING_PARENT_ERROR = "The message you are replying to no longer exists"


class AuthorizationFailure(Exception):
    def __init__(self, reason: str, message: str):
        self.reason = reason
        self.message = message
        super().__init__(message)


@dataclass(frozen=True)
class Identity:
    user_id: int
    email_verified: bool


@dataclass(frozen=True)
class PostingPolicy:
    mode: str = POLICY_STRICT
    options: ValidationOptions = ValidationOptions()


@dataclass
class PostOutcome:
    result: ValidationResult
    message: Message | None = None

    @property
    def accepted(self) -> bool:
        return self.result.is_valid and self.message is not None


def require_poster(identity: Identity | None) -> Identity:
    if identity is None:
        raise AuthorizationFailure(SIGN_IN_REQUIRED, "You must be signed in to post a message")
    if not identity.email_verified:
        raise AuthorizationFailure(EMAIL_UNVERIFIED, "Verify your email address to start posting messages")
    return identity


def validate_post(body: str, word_filter: WordlistFilter, policy: PostingPolicy) -> ValidationResult:
    if policy.mode == POLICY_SIMPLE:
        return check_post_body(body, word_filter, max_length=policy.options.max_length)
    return validate_message(body, word_filter, policy.options)


async def post_message(
    db_path: Path,
    identity: Identity | None,
    body: str,
    word_filter: WordlistFilter,
    policy: PostingPolicy = PostingPolicy(),
    parent_id: int | None = None,
) -> PostOutcome:
    """Validate and store a root message or a reply.

    Authorization problems raise :class:`AuthorizationFailure`; content
    problems come back as a rejected result and nothing is stored.
    """
    poster = require_poster(identity)

    result = validate_post(body, word_filter, policy)
    if not result.is_valid:
        LOGGER.info("Rejected post from user %s: %s", poster.user_id, "; ".join(result.errors))
        return PostOutcome(result=result)

    if parent_id is not None:
        parent = await asyncio.to_thread(get_message, db_path, parent_id)
        if parent is None:
            LOGGER.info("Rejected reply from user %s: parent %s missing", poster.user_id, parent_id)
            return PostOutcome(result=ValidationResult(is_valid=False, errors=[MISSING_PARENT_ERROR]))

    message = await asyncio.to_thread(
        insert_message,
        db_path,
        poster.user_id,
        result.sanitized_content,
        parent_id,
    )
    LOGGER.info("User %s posted message %s (reply_to=%s)", poster.user_id, message.id, parent_id)
    return PostOutcome(result=result, message=message)
