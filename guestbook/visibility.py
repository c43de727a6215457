from __future__ import annotations

from typing import Iterable, Protocol, Sequence, TypeVar


class HasAuthor(Protocol):
    display_username: str | None
    username: str | None
    name: str | None


EntryT = TypeVar("EntryT", bound=HasAuthor)


def display_name(entry: HasAuthor) -> str | None:
    return entry.display_username or entry.username or entry.name or None


def apply_ignore_filter(
    entries: Sequence[EntryT],
    ignored_usernames: Iterable[str],
    show_ignored: bool,
) -> list[EntryT]:
    """Drop entries written by ignored authors unless ``show_ignored`` is set.

    Runs on an already-fetched page, so a filtered page can be shorter than
    the requested page size. Entries without any resolvable author name are
    always kept.
    """
    if show_ignored:
        return list(entries)

    ignored = set(ignored_usernames)
    if not ignored:
        return list(entries)

    visible = []
    for entry in entries:
        author = display_name(entry)
        if author is not None and author in ignored:
            continue
        visible.append(entry)
    return visible
