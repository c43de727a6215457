from __future__ import annotations

from dataclasses import dataclass, field

from .lexical import (
    WordlistFilter,
    contains_only_valid_characters,
    extract_links,
    has_suspicious_pattern,
)

POST_BODY_MAX_LENGTH = 500


@dataclass(frozen=True)
class ValidationOptions:
    allow_links: bool = False
    max_links: int = 0
    allow_profanity: bool = False
    min_length: int = 1
    max_length: int = 1000


DEFAULT_OPTIONS = ValidationOptions()


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    sanitized_content: str | None = None


def validate_message(
    raw: str,
    word_filter: WordlistFilter,
    options: ValidationOptions = DEFAULT_OPTIONS,
) -> ValidationResult:
    """Run every content rule against ``raw`` and report all violations.

    Only an empty message short-circuits. ``sanitized_content`` is the
    trimmed text and is set only when the message is accepted.
    """
    content = (raw or "").strip()
    if not content:
        return ValidationResult(is_valid=False, errors=["Message cannot be empty"])

    errors: list[str] = []

    if len(content) < options.min_length:
        errors.append(f"Message must be at least {options.min_length} characters long")

    if len(content) > options.max_length:
        errors.append(f"Message must be no more than {options.max_length} characters long")

    if not options.allow_profanity and word_filter.is_profane(content):
        errors.append("Message contains inappropriate language")

    links = extract_links(content)
    if not options.allow_links and links:
        errors.append("Links are not allowed in messages")
    elif len(links) > options.max_links:
        errors.append(f"Maximum {options.max_links} links allowed per message")

    if not contains_only_valid_characters(content):
        errors.append("Message contains invalid characters")

    if has_suspicious_pattern(content):
        errors.append("Message contains suspicious content")

    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        sanitized_content=content if not errors else None,
    )


def check_post_body(
    raw: str,
    word_filter: WordlistFilter,
    max_length: int = POST_BODY_MAX_LENGTH,
) -> ValidationResult:
    # Lightweight posting path: input-surface length cap plus profanity.
    content = (raw or "").strip()
    if not content:
        return ValidationResult(is_valid=False, errors=["Message cannot be empty"])

    errors: list[str] = []
    if len(content) > max_length:
        errors.append(f"Message must be no more than {max_length} characters long")
    if word_filter.is_profane(content):
        errors.append("Message contains inappropriate language")

    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        sanitized_content=content if not errors else None,
    )
