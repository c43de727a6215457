from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from .repository import (
    create_default_preferences,
    get_ignored_user_ids,
    get_user_ids_by_usernames,
    get_usernames_by_ids,
    upsert_ignored_user_ids,
)

LOGGER = logging.getLogger("guestbook.preferences")


@dataclass
class Preferences:
    ignored_usernames: list[str] = field(default_factory=list)


def _load_ignored_usernames(db_path: Path, viewer_id: int) -> list[str]:
    ignored_ids = get_ignored_user_ids(db_path, viewer_id)
    if ignored_ids is None:
        create_default_preferences(db_path, viewer_id)
        return []

    names = get_usernames_by_ids(db_path, ignored_ids)
    return [names[user_id] for user_id in ignored_ids if user_id in names and user_id != viewer_id]


def _store_ignored_usernames(db_path: Path, viewer_id: int, usernames: list[str]) -> list[int]:
    resolved = get_user_ids_by_usernames(db_path, usernames)
    ignored_ids: list[int] = []
    for username in usernames:
        user_id = resolved.get(username)
        if user_id is None or user_id == viewer_id or user_id in ignored_ids:
            continue
        ignored_ids.append(user_id)

    upsert_ignored_user_ids(db_path, viewer_id, ignored_ids)
    return ignored_ids


async def get_preferences(db_path: Path, viewer_id: int) -> Preferences:
    usernames = await asyncio.to_thread(_load_ignored_usernames, db_path, viewer_id)
    return Preferences(ignored_usernames=usernames)


async def set_ignored(db_path: Path, viewer_id: int, ignored_usernames: Iterable[str]) -> bool:
    """Replace the viewer's ignore list with the given usernames.

    Unknown usernames and the viewer's own name are dropped. The write is a
    single upsert, so concurrent calls resolve to whichever ran last.
    """
    usernames = [name.strip() for name in ignored_usernames if name and name.strip()]
    stored = await asyncio.to_thread(_store_ignored_usernames, db_path, viewer_id, usernames)
    LOGGER.info("Ignore list updated for user %s (%d entries)", viewer_id, len(stored))
    return True
