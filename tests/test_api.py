"""End-to-end tests for the guestbook FastAPI app."""

import sqlite3
import threading
import uuid

import httpx
import pytest

from guestbook import main

PASSWORD = "CorrectHorse42"


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=main.app), base_url="http://testserver")


@pytest.fixture
def sent_codes(monkeypatch):
    codes = {}

    def capture(user, code):
        codes[user.username] = code

    monkeypatch.setattr(main, "CODE_SENDER", capture)
    return codes


def _unique(prefix: str) -> str:
    return f"{prefix}{uuid.uuid4().hex[:8]}"


async def _register(client: httpx.AsyncClient, username: str) -> httpx.Response:
    return await client.post(
        "/auth/register",
        json={"email": f"{username}@example.com", "password": PASSWORD, "username": username},
    )


async def _register_verified(client: httpx.AsyncClient, username: str, sent_codes: dict) -> None:
    r = await _register(client, username)
    assert r.status_code == 200, r.text
    r = await client.post("/auth/verify-email", json={"code": sent_codes[username]})
    assert r.status_code == 200, r.text


@pytest.mark.asyncio
async def test_health() -> None:
    async with _client() as ac:
        r = await ac.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.headers["x-request-id"]


@pytest.mark.asyncio
async def test_register_rejects_bad_usernames(sent_codes) -> None:
    async with _client() as ac:
        reserved = await _register(ac, "admin")
        short = await _register(ac, "ab")
    assert reserved.status_code == 400
    assert reserved.json()["message"] == "This username is reserved and cannot be used"
    assert short.json()["message"] == "Username must be at least 3 characters long"


@pytest.mark.asyncio
async def test_duplicate_username_is_rejected(sent_codes) -> None:
    name = _unique("dup")
    async with _client() as first, _client() as second:
        assert (await _register(first, name)).status_code == 200
        r = await second.post(
            "/auth/register",
            json={"email": f"other-{name}@example.com", "password": PASSWORD, "username": name},
        )
    assert r.status_code == 409
    assert r.json()["message"] == "Username already taken"


@pytest.mark.asyncio
async def test_posting_requires_sign_in_and_verification(sent_codes) -> None:
    name = _unique("poster")
    async with _client() as anonymous, _client() as ac:
        r = await anonymous.post("/messages", json={"message": "hello"})
        assert r.status_code == 401
        assert r.json()["reason"] == "sign_in_required"

        await _register(ac, name)
        r = await ac.post("/messages", json={"message": "hello"})
        assert r.status_code == 403
        assert r.json()["reason"] == "email_unverified"

        r = await ac.post("/auth/verify-email", json={"code": "000000" if sent_codes[name] != "000000" else "111111"})
        assert r.status_code == 400

        r = await ac.post("/auth/verify-email", json={"code": sent_codes[name]})
        assert r.status_code == 200

        r = await ac.post("/messages", json={"message": "  hello from the board  "})
        assert r.status_code == 201
        assert r.json()["message"]["body"] == "hello from the board"


@pytest.mark.asyncio
async def test_rejected_message_lists_every_reason(sent_codes) -> None:
    name = _unique("loud")
    async with _client() as ac:
        await _register_verified(ac, name, sent_codes)
        r = await ac.post("/messages", json={"message": "shit, visit https://example.com"})
    assert r.status_code == 400
    body = r.json()
    assert "Message contains inappropriate language" in body["errors"]
    assert "Links are not allowed in messages" in body["errors"]
    assert body["message"] == body["errors"][0]


@pytest.mark.asyncio
async def test_reply_thread_and_ignore_list(sent_codes) -> None:
    alice, bob = _unique("alice"), _unique("bob")
    async with _client() as alice_client, _client() as bob_client:
        await _register_verified(alice_client, alice, sent_codes)
        await _register_verified(bob_client, bob, sent_codes)

        r = await alice_client.post("/messages", json={"message": "Welcome to the guestbook"})
        root_id = r.json()["message"]["id"]

        r = await bob_client.post(f"/messages/{root_id}/replies", json={"message": "Thanks for having me"})
        assert r.status_code == 201
        reply_id = r.json()["message"]["id"]

        r = await alice_client.get("/messages", params={"page_size": 100})
        entries = {entry["id"]: entry for entry in r.json()["entries"]}
        assert entries[reply_id]["reply_to"]["author"] == alice
        assert entries[reply_id]["reply_to"]["body"] == "Welcome to the guestbook"

        r = await alice_client.put("/preferences/ignored", json={"usernames": [bob, "does-not-exist"]})
        assert r.status_code == 200
        assert r.json()["ignored_users"] == [bob]

        r = await alice_client.get("/messages", params={"page_size": 100})
        ids = [entry["id"] for entry in r.json()["entries"]]
        assert reply_id not in ids
        assert root_id in ids
        assert r.json()["hidden"] >= 1

        r = await alice_client.get("/messages", params={"page_size": 100, "show_ignored": "true"})
        assert reply_id in [entry["id"] for entry in r.json()["entries"]]

        r = await alice_client.get("/preferences")
        assert r.json()["ignored_users"] == [bob]


@pytest.mark.asyncio
async def test_user_feed_and_missing_user(sent_codes) -> None:
    name = _unique("author")
    async with _client() as ac:
        await _register_verified(ac, name, sent_codes)
        await ac.post("/messages", json={"message": "Only mine"})

        r = await ac.get(f"/users/{name}/messages")
        assert r.status_code == 200
        assert r.json()["pagination"]["total_count"] == 1

        r = await ac.get("/users/nobody-at-all/messages")
        assert r.status_code == 404


@pytest.mark.asyncio
async def test_preferences_require_sign_in() -> None:
    async with _client() as ac:
        r = await ac.get("/preferences")
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_feed_rejects_bad_paging() -> None:
    async with _client() as ac:
        r = await ac.get("/messages", params={"page": 0})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_validation_preview_endpoints() -> None:
    async with _client() as ac:
        username = await ac.post("/validate/username", json={"username": "valid_user-1"})
        message = await ac.post("/validate/message", json={"message": "   "})
    assert username.json() == {"valid": True, "error": None, "sanitized": "valid_user-1"}
    assert message.json()["errors"] == ["Message cannot be empty"]


@pytest.mark.asyncio
async def test_store_failure_returns_503(monkeypatch) -> None:
    async def broken_feed(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(main, "get_feed", broken_feed)
    async with _client() as ac:
        r = await ac.get("/messages")
    assert r.status_code == 503
    assert r.json() == {"error": True, "message": "Storage unavailable"}


@pytest.mark.asyncio
async def test_auth_work_runs_off_the_event_loop(monkeypatch, sent_codes) -> None:
    loop_thread = threading.get_ident()
    seen = {}
    real_hash, real_get_session = main.hash_password, main.get_session

    def recording_hash(password):
        seen["hash_password"] = threading.get_ident()
        return real_hash(password)

    def recording_get_session(db_path, session_id):
        seen["get_session"] = threading.get_ident()
        return real_get_session(db_path, session_id)

    monkeypatch.setattr(main, "hash_password", recording_hash)
    monkeypatch.setattr(main, "get_session", recording_get_session)
    name = _unique("worker")
    async with _client() as ac:
        assert (await _register(ac, name)).status_code == 200
        r = await ac.get("/auth/me")
    assert r.status_code == 200
    assert r.json()["user"]["username"] == name
    assert set(seen) == {"hash_password", "get_session"}
    assert loop_thread not in seen.values()
