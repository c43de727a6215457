"""Paginated, thread-aware views over stored guestbook messages.

Pages are ordered newest first with the message id as tie breaker, so the
same request always yields the same page. Each reply carries a short
summary of the message it answers, resolved per entry at read time.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from pathlib import Path

from .repository import MessageRow, count_messages, get_message, get_user_id_by_username, list_messages
from .visibility import display_name

DEFAULT_SNIPPET_LENGTH = 120
ELLIPSIS = "..."


@dataclass
class ReplyContext:
    message_id: int
    author: str
    body: str


@dataclass
class FeedEntry:
    id: int
    body: str
    created_at: int
    author_id: int
    username: str | None
    display_username: str | None
    name: str | None
    parent_id: int | None = None
    reply_to: ReplyContext | None = None


@dataclass
class Pagination:
    page: int
    page_size: int
    total_count: int
    total_pages: int
    has_next: bool
    has_prev: bool


@dataclass
class FeedPage:
    entries: list[FeedEntry]
    pagination: Pagination


def truncate(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    if limit <= len(ELLIPSIS):
        return text[:limit]
    return text[: limit - len(ELLIPSIS)].rstrip() + ELLIPSIS


def paginate(page: int, page_size: int, total_count: int) -> Pagination:
    total_pages = math.ceil(total_count / page_size) if total_count else 0
    return Pagination(
        page=page,
        page_size=page_size,
        total_count=total_count,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1,
    )


def _check_page_request(page: int, page_size: int) -> None:
    if page < 1:
        raise ValueError("page must be >= 1")
    if page_size < 1:
        raise ValueError("page_size must be >= 1")


def _to_entry(row: MessageRow) -> FeedEntry:
    message = row.message
    return FeedEntry(
        id=message.id,
        body=message.body,
        created_at=message.created_at,
        author_id=message.author_id,
        username=row.username,
        display_username=row.display_username,
        name=row.name,
        parent_id=message.parent_id,
    )


async def _resolve_reply_context(db_path: Path, parent_id: int, snippet_length: int) -> ReplyContext:
    parent = await asyncio.to_thread(get_message, db_path, parent_id)
    if parent is None:
        return ReplyContext(message_id=parent_id, author="", body="")
    return ReplyContext(
        message_id=parent_id,
        author=display_name(parent) or "",
        body=truncate(parent.message.body, snippet_length),
    )


async def _assemble(
    db_path: Path,
    page: int,
    page_size: int,
    snippet_length: int,
    author_id: int | None,
) -> FeedPage:
    _check_page_request(page, page_size)
    offset = (page - 1) * page_size

    rows, total_count = await asyncio.gather(
        asyncio.to_thread(list_messages, db_path, page_size, offset, author_id),
        asyncio.to_thread(count_messages, db_path, author_id),
    )
    entries = [_to_entry(row) for row in rows]

    replies = [entry for entry in entries if entry.parent_id is not None]
    contexts = await asyncio.gather(
        *(_resolve_reply_context(db_path, entry.parent_id, snippet_length) for entry in replies)
    )
    for entry, context in zip(replies, contexts):
        entry.reply_to = context

    return FeedPage(entries=entries, pagination=paginate(page, page_size, total_count))


async def get_feed(
    db_path: Path,
    page: int = 1,
    page_size: int = 50,
    snippet_length: int = DEFAULT_SNIPPET_LENGTH,
) -> FeedPage:
    return await _assemble(db_path, page, page_size, snippet_length, author_id=None)


async def get_user_feed(
    db_path: Path,
    author_id: int,
    page: int = 1,
    page_size: int = 50,
    snippet_length: int = DEFAULT_SNIPPET_LENGTH,
) -> FeedPage:
    return await _assemble(db_path, page, page_size, snippet_length, author_id=author_id)


async def get_user_feed_by_username(
    db_path: Path,
    username: str,
    page: int = 1,
    page_size: int = 50,
    snippet_length: int = DEFAULT_SNIPPET_LENGTH,
) -> FeedPage | None:
    _check_page_request(page, page_size)
    author_id = await asyncio.to_thread(get_user_id_by_username, db_path, username)
    if author_id is None:
        return None
    return await get_user_feed(db_path, author_id, page, page_size, snippet_length)
