import asyncio

import pytest

from guestbook.preferences import get_preferences, set_ignored
from guestbook.repository import get_ignored_user_ids


@pytest.mark.asyncio
async def test_first_read_creates_empty_record(db_path, make_user):
    alice = make_user("alice")
    assert get_ignored_user_ids(db_path, alice.id) is None

    prefs = await get_preferences(db_path, alice.id)

    assert prefs.ignored_usernames == []
    assert get_ignored_user_ids(db_path, alice.id) == []


@pytest.mark.asyncio
async def test_set_ignored_resolves_names_and_drops_unknown(db_path, make_user):
    alice = make_user("alice")
    bob = make_user("bob")
    carol = make_user("carol")

    assert await set_ignored(db_path, alice.id, ["bob", "ghost", "carol"]) is True

    prefs = await get_preferences(db_path, alice.id)
    assert prefs.ignored_usernames == ["bob", "carol"]
    assert get_ignored_user_ids(db_path, alice.id) == [bob.id, carol.id]


@pytest.mark.asyncio
async def test_set_ignored_replaces_instead_of_merging(db_path, make_user):
    alice = make_user("alice")
    make_user("bob")
    make_user("carol")

    await set_ignored(db_path, alice.id, ["bob"])
    await set_ignored(db_path, alice.id, ["carol"])

    assert (await get_preferences(db_path, alice.id)).ignored_usernames == ["carol"]


@pytest.mark.asyncio
async def test_set_ignored_is_idempotent(db_path, make_user):
    alice = make_user("alice")
    make_user("bob")

    await set_ignored(db_path, alice.id, ["bob", "bob"])
    first = get_ignored_user_ids(db_path, alice.id)
    await set_ignored(db_path, alice.id, ["bob", "bob"])

    assert get_ignored_user_ids(db_path, alice.id) == first
    assert len(first) == 1


@pytest.mark.asyncio
async def test_clearing_the_list(db_path, make_user):
    alice = make_user("alice")
    make_user("bob")
    await set_ignored(db_path, alice.id, ["bob"])

    await set_ignored(db_path, alice.id, [])

    assert (await get_preferences(db_path, alice.id)).ignored_usernames == []


@pytest.mark.asyncio
async def test_viewer_cannot_ignore_themselves(db_path, make_user):
    alice = make_user("alice")

    await set_ignored(db_path, alice.id, ["alice"])

    assert get_ignored_user_ids(db_path, alice.id) == []


@pytest.mark.asyncio
async def test_concurrent_updates_leave_one_complete_list(db_path, make_user):
    alice = make_user("alice")
    make_user("bob")
    make_user("carol")
    make_user("dave")

    await asyncio.gather(
        set_ignored(db_path, alice.id, ["bob", "carol"]),
        set_ignored(db_path, alice.id, ["dave"]),
    )

    names = (await get_preferences(db_path, alice.id)).ignored_usernames
    assert names in (["bob", "carol"], ["dave"])
