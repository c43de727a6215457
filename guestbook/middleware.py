from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

LOGGER = logging.getLogger("guestbook.access")


@dataclass
class RateRule:
    limit: int
    window_seconds: int


class InMemoryRateLimiter:
    def __init__(self) -> None:
        self._events: dict[str, deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self._last_sweep = 0.0

    def __len__(self) -> int:
        return len(self._events)

    def _evict_idle(self, boundary: float) -> None:
        idle = [key for key, queue in self._events.items() if not queue or queue[-1] < boundary]
        for key in idle:
            del self._events[key]

    async def allow(self, key: str, rule: RateRule) -> tuple[bool, int]:
        now = time.time()
        async with self._lock:
            boundary = now - rule.window_seconds
            if now - self._last_sweep >= rule.window_seconds:
                self._evict_idle(boundary)
                self._last_sweep = now
            queue = self._events[key]
            while queue and queue[0] < boundary:
                queue.popleft()
            if len(queue) >= rule.limit:
                retry_after = int(max(1, rule.window_seconds - (now - queue[0])))
                return False, retry_after
            queue.append(now)
            return True, 0


class RequestContextMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limiter: InMemoryRateLimiter, requests_per_minute: int = 240):
        super().__init__(app)
        self._limiter = limiter
        self._default_rule = RateRule(limit=requests_per_minute, window_seconds=60)
        # posting and auth writes get a quarter of the read budget
        self._write_rule = RateRule(limit=max(1, requests_per_minute // 4), window_seconds=60)

    def _rule_for(self, request: Request) -> RateRule:
        if request.method in {"POST", "PUT", "DELETE"}:
            return self._write_rule
        return self._default_rule

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        client_ip = request.headers.get("x-forwarded-for") or request.headers.get("x-real-ip")
        if not client_ip:
            client_ip = request.client.host if request.client else "unknown"
        client_ip = client_ip.split(",")[0].strip()

        request.state.client_ip = client_ip
        request.state.request_id = request_id

        path = request.url.path
        allowed, retry_after = await self._limiter.allow(f"{client_ip}:{request.method}:{path}", self._rule_for(request))
        if not allowed:
            LOGGER.warning("Rate limit exceeded ip=%s path=%s request_id=%s", client_ip, path, request_id)
            return JSONResponse(
                {"error": True, "message": f"Rate limit exceeded. Retry in {retry_after}s"},
                status_code=429,
                headers={"Retry-After": str(retry_after), "x-request-id": request_id},
            )

        response = await call_next(request)
        response.headers["x-request-id"] = request_id

        elapsed_ms = (time.perf_counter() - started) * 1000
        user_agent = request.headers.get("user-agent", "unknown")[:50]
        LOGGER.info(
            "%s %s %s %.1fms ip=%s ua=%s request_id=%s",
            request.method,
            path,
            response.status_code,
            elapsed_ms,
            client_ip,
            user_agent,
            request_id,
        )
        return response
