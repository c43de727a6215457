from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import asdict

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .board import (
    SIGN_IN_REQUIRED,
    AuthorizationFailure,
    Identity,
    PostingPolicy,
    post_message,
)
from .config import Settings, load_settings
from .content import ValidationOptions, validate_message
from .db import ensure_database
from .feed import FeedPage, get_feed, get_user_feed_by_username
from .lexical import build_wordlist_filter
from .middleware import InMemoryRateLimiter, RequestContextMiddleware
from .preferences import get_preferences, set_ignored
from .repository import (
    create_session,
    create_user,
    get_session,
    get_user_by_email,
    get_user_by_id,
    get_user_by_username,
    revoke_all_user_sessions,
    revoke_session,
    rotate_refresh_jti,
    update_password_hash,
    update_session_activity,
)
from .security import (
    AuthError,
    build_tokens,
    decode_access_token,
    decode_refresh_token,
    hash_password,
    hash_refresh_jti,
    now_ts,
    password_is_strong,
    verify_password,
)
from .usernames import validate_username
from .verification import (
    VerificationError,
    confirm_verification_code,
    discard_code_sender,
    issue_verification_code,
    log_code_sender,
)
from .visibility import apply_ignore_filter


class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(message)


class RegisterRequest(BaseModel):
    email: str = Field(min_length=5, max_length=255)
    password: str = Field(min_length=10, max_length=128)
    username: str = Field(min_length=1, max_length=64)


class LoginRequest(BaseModel):
    email: str = Field(min_length=5, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    refresh_token: str | None = None


class VerifyEmailRequest(BaseModel):
    code: str = Field(min_length=4, max_length=12)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=10, max_length=128)


class PostMessageRequest(BaseModel):
    message: str = Field(max_length=4000)
    parent_id: int | None = Field(default=None, ge=1)


class ReplyRequest(BaseModel):
    message: str = Field(max_length=4000)


class IgnoredUsersRequest(BaseModel):
    usernames: list[str] = Field(default_factory=list, max_length=500)


class UsernameCheckRequest(BaseModel):
    username: str = Field(max_length=256)


class MessageCheckRequest(BaseModel):
    message: str = Field(max_length=4000)


class AuthContext(BaseModel):
    user_id: int
    username: str
    email_verified: bool
    session_id: str


settings: Settings = load_settings()
logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
ensure_database(settings.db_path)

app = FastAPI(title=settings.app_name)
app.add_middleware(
    RequestContextMiddleware,
    limiter=InMemoryRateLimiter(),
    requests_per_minute=settings.rate_limit_per_minute,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
)

LOGGER = logging.getLogger("guestbook")
WORD_FILTER = build_wordlist_filter(settings.profanity_extra_terms)
POSTING_POLICY = PostingPolicy(
    mode=settings.message_policy,
    options=ValidationOptions(
        allow_links=settings.message_allow_links,
        max_links=settings.message_max_links,
        max_length=settings.message_max_length,
    ),
)
CODE_SENDER = log_code_sender if settings.app_env == "development" else discard_code_sender


def _error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": True, "message": message, **extra})


def _rejection_response(errors: list[str]) -> JSONResponse:
    return _error_response(400, errors[0], errors=errors)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _cookie_common() -> dict:
    common = {
        "httponly": True,
        "secure": settings.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }
    if settings.cookie_domain:
        common["domain"] = settings.cookie_domain
    return common


def _set_auth_cookies(response: Response, access_token: str, refresh_token: str) -> None:
    common = _cookie_common()
    response.set_cookie("access_token", access_token, max_age=settings.access_ttl_minutes * 60, **common)
    response.set_cookie("refresh_token", refresh_token, max_age=settings.refresh_ttl_days * 86400, **common)


def _clear_auth_cookies(response: Response) -> None:
    common = _cookie_common()
    response.delete_cookie("access_token", **common)
    response.delete_cookie("refresh_token", **common)


def _auth_error_response(message: str, status_code: int = 401) -> JSONResponse:
    response = _error_response(status_code, message)
    _clear_auth_cookies(response)
    return response


def _extract_token(request: Request, token_type: str) -> str | None:
    if token_type == "access":
        auth_header = request.headers.get("authorization", "")
        if auth_header.lower().startswith("bearer "):
            return auth_header.split(" ", 1)[1].strip()
        return request.cookies.get("access_token")

    refresh_header = request.headers.get("x-refresh-token")
    if refresh_header:
        return refresh_header.strip()
    return request.cookies.get("refresh_token")


def _session_expired(last_active: int) -> bool:
    return now_ts() - last_active > settings.session_inactivity_minutes * 60


def _user_payload(user) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "display_username": user.display_username,
        "email_verified": user.email_verified,
    }


def _start_session(request: Request, response: Response, user_id: int) -> None:
    bundle = build_tokens(settings, user_id=user_id)
    create_session(
        settings.db_path,
        session_id=bundle.session_id,
        user_id=user_id,
        refresh_jti_hash=hash_refresh_jti(bundle.refresh_jti),
        ip_address=getattr(request.state, "client_ip", "unknown"),
        user_agent=request.headers.get("user-agent", "unknown"),
    )
    _set_auth_cookies(response, bundle.access_token, bundle.refresh_token)


def _resolve_auth_context(request: Request) -> AuthContext:
    token = _extract_token(request, "access")
    if not token:
        raise ApiError(401, "Missing access token")

    try:
        payload = decode_access_token(settings, token)
    except AuthError as exc:
        raise ApiError(401, "Invalid access token") from exc

    try:
        user_id = int(payload.get("sub", "0"))
    except ValueError as exc:
        raise ApiError(401, "Invalid access token") from exc

    session_id = str(payload.get("sid", "")).strip()
    if not session_id:
        raise ApiError(401, "Invalid session")

    session = get_session(settings.db_path, session_id)
    if not session or session.revoked:
        raise ApiError(401, "Session revoked")

    if _session_expired(session.last_active):
        revoke_session(settings.db_path, session_id)
        raise ApiError(401, "Session expired")

    user = get_user_by_id(settings.db_path, user_id)
    if not user:
        revoke_session(settings.db_path, session_id)
        raise ApiError(401, "User not found")

    update_session_activity(settings.db_path, session_id)
    return AuthContext(
        user_id=user.id,
        username=user.username,
        email_verified=user.email_verified,
        session_id=session_id,
    )


async def _load_auth_context(request: Request) -> AuthContext:
    return await asyncio.to_thread(_resolve_auth_context, request)


async def _optional_auth_context(request: Request) -> AuthContext | None:
    if not _extract_token(request, "access"):
        return None
    try:
        return await _load_auth_context(request)
    except ApiError:
        return None


def _identity(auth: AuthContext | None) -> Identity | None:
    if auth is None:
        return None
    return Identity(user_id=auth.user_id, email_verified=auth.email_verified)


def _feed_payload(page: FeedPage, hidden: int = 0) -> dict:
    return {
        "error": False,
        "entries": [asdict(entry) for entry in page.entries],
        "pagination": asdict(page.pagination),
        "hidden": hidden,
    }


@app.exception_handler(ApiError)
async def handle_api_error(_: Request, exc: ApiError):
    return _error_response(exc.status_code, exc.message)


@app.exception_handler(AuthorizationFailure)
async def handle_authorization_failure(_: Request, exc: AuthorizationFailure):
    status_code = 401 if exc.reason == SIGN_IN_REQUIRED else 403
    return _error_response(status_code, exc.message, reason=exc.reason)


@app.exception_handler(HTTPException)
async def handle_http_exception(_: Request, exc: HTTPException):
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def handle_validation_error(_: Request, __: RequestValidationError):
    return _error_response(422, "Invalid request payload")


@app.exception_handler(sqlite3.Error)
async def handle_store_error(request: Request, exc: sqlite3.Error):
    LOGGER.exception("Store failure on %s", request.url.path, exc_info=exc)
    return _error_response(503, "Storage unavailable")


@app.exception_handler(Exception)
async def handle_unhandled_exception(request: Request, exc: Exception):
    LOGGER.exception("Unhandled exception on %s", request.url.path, exc_info=exc)
    return _error_response(500, "Internal server error")


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "service": "guestbook"}


# -- auth ------------------------------------------------------------------


@app.post("/auth/register")
def register(payload: RegisterRequest, request: Request, response: Response):
    email = _normalize_email(payload.email)
    if "@" not in email:
        raise ApiError(400, "Invalid email address")

    check = validate_username(payload.username, WORD_FILTER)
    if not check.is_valid:
        return _error_response(400, check.error, sanitized=check.sanitized)

    if not password_is_strong(payload.password):
        raise ApiError(400, "Password must include upper/lower/digit and be at least 10 characters")

    if get_user_by_username(settings.db_path, check.sanitized):
        raise ApiError(409, "Username already taken")
    if get_user_by_email(settings.db_path, email):
        raise ApiError(409, "Email already exists")

    try:
        user = create_user(settings.db_path, email, check.sanitized, hash_password(payload.password))
    except sqlite3.IntegrityError as exc:
        raise ApiError(409, "Username or email already taken") from exc

    issue_verification_code(settings.db_path, user, settings.verification_code_ttl_minutes, CODE_SENDER)
    _start_session(request, response, user.id)
    LOGGER.info("Registered user %s", user.id)
    return {"error": False, "user": _user_payload(user)}


@app.post("/auth/login")
def login(payload: LoginRequest, request: Request, response: Response):
    email = _normalize_email(payload.email)
    user = get_user_by_email(settings.db_path, email)
    if not user or not verify_password(payload.password, user.password_hash):
        LOGGER.warning("Failed login from %s", getattr(request.state, "client_ip", "unknown"))
        raise ApiError(401, "Invalid credentials")

    _start_session(request, response, user.id)
    return {"error": False, "user": _user_payload(user)}


@app.post("/auth/refresh")
def refresh(payload: RefreshRequest, request: Request, response: Response):
    token = payload.refresh_token or _extract_token(request, "refresh")
    if not token:
        raise ApiError(401, "Missing refresh token")

    try:
        decoded = decode_refresh_token(settings, token)
    except AuthError as exc:
        raise ApiError(401, "Invalid refresh token") from exc

    session_id = str(decoded.get("sid", "")).strip()
    incoming_jti = str(decoded.get("jti", "")).strip()
    if not session_id or not incoming_jti:
        raise ApiError(401, "Malformed refresh token")

    session = get_session(settings.db_path, session_id)
    if not session or session.revoked:
        return _auth_error_response("Session revoked")

    if _session_expired(session.last_active):
        revoke_session(settings.db_path, session_id)
        return _auth_error_response("Session expired")

    if hash_refresh_jti(incoming_jti) != session.refresh_jti_hash:
        LOGGER.warning("Refresh token reuse for user %s, revoking all sessions", session.user_id)
        revoke_all_user_sessions(settings.db_path, session.user_id)
        return _auth_error_response("Compromised session detected")

    bundle = build_tokens(settings, user_id=session.user_id, session_id=session_id)
    rotate_refresh_jti(settings.db_path, session_id, hash_refresh_jti(bundle.refresh_jti))
    _set_auth_cookies(response, bundle.access_token, bundle.refresh_token)
    return {"error": False, "message": "Session refreshed"}


@app.post("/auth/logout")
def logout(request: Request, response: Response):
    token = _extract_token(request, "access")
    if token:
        try:
            payload = decode_access_token(settings, token)
        except AuthError:
            payload = {}
        sid = str(payload.get("sid", "")).strip()
        if sid:
            revoke_session(settings.db_path, sid)
    _clear_auth_cookies(response)
    return {"error": False, "message": "Logged out"}


@app.get("/auth/me")
def me(auth: AuthContext = Depends(_load_auth_context)):
    user = get_user_by_id(settings.db_path, auth.user_id)
    return {"error": False, "user": _user_payload(user)}


@app.post("/auth/verify-email")
def verify_email(payload: VerifyEmailRequest, auth: AuthContext = Depends(_load_auth_context)):
    if auth.email_verified:
        return {"error": False, "message": "Email already verified"}
    try:
        confirm_verification_code(settings.db_path, auth.user_id, payload.code)
    except VerificationError as exc:
        raise ApiError(400, str(exc)) from exc
    LOGGER.info("User %s verified their email", auth.user_id)
    return {"error": False, "message": "Email verified"}


@app.post("/auth/resend-code")
def resend_code(auth: AuthContext = Depends(_load_auth_context)):
    if auth.email_verified:
        raise ApiError(400, "Email already verified")
    user = get_user_by_id(settings.db_path, auth.user_id)
    issue_verification_code(settings.db_path, user, settings.verification_code_ttl_minutes, CODE_SENDER)
    return {"error": False, "message": "Verification code sent"}


@app.post("/auth/change-password")
def change_password(payload: ChangePasswordRequest, auth: AuthContext = Depends(_load_auth_context)):
    user = get_user_by_id(settings.db_path, auth.user_id)
    if not verify_password(payload.current_password, user.password_hash):
        raise ApiError(400, "Current password is incorrect")
    if not password_is_strong(payload.new_password):
        raise ApiError(400, "Password must include upper/lower/digit and be at least 10 characters")

    update_password_hash(settings.db_path, auth.user_id, hash_password(payload.new_password))
    revoke_all_user_sessions(settings.db_path, auth.user_id, except_session=auth.session_id)
    return {"error": False, "message": "Password updated"}


# -- guestbook -------------------------------------------------------------


@app.get("/messages")
async def list_feed(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.feed_page_size, ge=1, le=settings.feed_max_page_size),
    show_ignored: bool = False,
    auth: AuthContext | None = Depends(_optional_auth_context),
):
    feed_page = await get_feed(settings.db_path, page, page_size, settings.reply_snippet_length)
    if auth is None:
        return _feed_payload(feed_page)

    preferences = await get_preferences(settings.db_path, auth.user_id)
    visible = apply_ignore_filter(feed_page.entries, preferences.ignored_usernames, show_ignored)
    hidden = len(feed_page.entries) - len(visible)
    feed_page.entries = visible
    return _feed_payload(feed_page, hidden=hidden)


async def _create_post(body: str, parent_id: int | None, auth: AuthContext | None):
    outcome = await post_message(
        settings.db_path,
        _identity(auth),
        body,
        WORD_FILTER,
        POSTING_POLICY,
        parent_id=parent_id,
    )
    if not outcome.accepted:
        return _rejection_response(outcome.result.errors)
    return JSONResponse(status_code=201, content={"error": False, "message": asdict(outcome.message)})


@app.post("/messages")
async def create_message(payload: PostMessageRequest, auth: AuthContext | None = Depends(_optional_auth_context)):
    return await _create_post(payload.message, payload.parent_id, auth)


@app.post("/messages/{message_id}/replies")
async def create_reply(
    message_id: int,
    payload: ReplyRequest,
    auth: AuthContext | None = Depends(_optional_auth_context),
):
    return await _create_post(payload.message, message_id, auth)


@app.get("/users/{username}/messages")
async def list_user_feed(
    username: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.feed_page_size, ge=1, le=settings.feed_max_page_size),
):
    feed_page = await get_user_feed_by_username(
        settings.db_path,
        username,
        page,
        page_size,
        settings.reply_snippet_length,
    )
    if feed_page is None:
        raise ApiError(404, "User not found")
    return _feed_payload(feed_page)


# -- preferences -----------------------------------------------------------


@app.get("/preferences")
async def read_preferences(auth: AuthContext = Depends(_load_auth_context)):
    preferences = await get_preferences(settings.db_path, auth.user_id)
    return {"error": False, "ignored_users": preferences.ignored_usernames}


@app.put("/preferences/ignored")
async def update_ignored(payload: IgnoredUsersRequest, auth: AuthContext = Depends(_load_auth_context)):
    await set_ignored(settings.db_path, auth.user_id, payload.usernames)
    preferences = await get_preferences(settings.db_path, auth.user_id)
    return {"error": False, "success": True, "ignored_users": preferences.ignored_usernames}


# -- validation preview ----------------------------------------------------


@app.post("/validate/username")
async def check_username(payload: UsernameCheckRequest):
    result = validate_username(payload.username, WORD_FILTER)
    return {"valid": result.is_valid, "error": result.error, "sanitized": result.sanitized}


@app.post("/validate/message")
async def check_message(payload: MessageCheckRequest):
    result = validate_message(payload.message, WORD_FILTER, POSTING_POLICY.options)
    return {
        "valid": result.is_valid,
        "errors": result.errors,
        "sanitized": result.sanitized_content,
    }
