from guestbook.feed import FeedEntry
from guestbook.visibility import apply_ignore_filter, display_name


def _entry(entry_id, username=None, display_username=None, name=None):
    return FeedEntry(
        id=entry_id,
        body=f"message {entry_id}",
        created_at=entry_id,
        author_id=entry_id,
        username=username,
        display_username=display_username,
        name=name,
    )


def _authors(entries):
    return [display_name(entry) for entry in entries]


def test_ignored_authors_are_removed():
    entries = [_entry(1, "a", "a"), _entry(2, "b", "b"), _entry(3, "c", "c")]
    assert _authors(apply_ignore_filter(entries, ["b"], False)) == ["a", "c"]


def test_show_ignored_overrides_the_filter():
    entries = [_entry(1, "a", "a"), _entry(2, "b", "b"), _entry(3, "c", "c")]
    assert _authors(apply_ignore_filter(entries, ["b"], True)) == ["a", "b", "c"]


def test_display_name_precedence():
    assert display_name(_entry(1, username="user", display_username="Shown", name="Named")) == "Shown"
    assert display_name(_entry(1, username="user", name="Named")) == "user"
    assert display_name(_entry(1, name="Named")) == "Named"
    assert display_name(_entry(1)) is None


def test_matching_uses_the_resolved_display_name():
    entry = _entry(1, username="bob", display_username="Bobby")
    assert apply_ignore_filter([entry], ["bob"], False) == [entry]
    assert apply_ignore_filter([entry], ["Bobby"], False) == []


def test_entries_without_author_are_kept():
    orphan = _entry(9)
    assert apply_ignore_filter([orphan], ["b"], False) == [orphan]


def test_empty_ignore_list_keeps_order():
    entries = [_entry(3, "c"), _entry(1, "a")]
    assert apply_ignore_filter(entries, [], False) == entries
