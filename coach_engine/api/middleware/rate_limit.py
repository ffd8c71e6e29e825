"""
Per-user rate limiting for the AI coach routes.

Fixed window, 50 requests per 15 minutes per user by default (IP when the
caller is anonymous).
"""

import time
from typing import Callable, Optional, Tuple

from fastapi import Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware

from coach_engine.config import get_settings
from coach_engine.kernel.identity.jwt import verify_access_token

COACH_SCOPE = "coach"


def _get_client_ip(request: Request) -> str:
    """Get client IP from request (X-Forwarded-For or direct)."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _get_user_id_from_jwt(request: Request) -> Optional[str]:
    """User id from the bearer token if it verifies; auth proper runs in the route."""
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer "):
        return None
    token = auth[7:].strip()
    if not token:
        return None
    payload = verify_access_token(token)
    return payload.sub if payload else None


class InMemoryRateLimitStore:
    """Fixed-window in-memory store. Key -> (count, window_start_ts)."""

    def __init__(self):
        self._data: dict[str, Tuple[int, float]] = {}
        self._window_sec: dict[str, int] = {}

    def _key(self, scope: str, identifier: str) -> str:
        return f"{scope}:{identifier}"

    def check_and_incr(
        self,
        scope: str,
        identifier: str,
        limit: int,
        window_seconds: int,
    ) -> bool:
        """Returns True if under limit (and increments). False if over limit (no increment)."""
        key = self._key(scope, identifier)
        now = time.monotonic()
        count, start = self._data.get(key, (0, now))
        win = self._window_sec.get(key, window_seconds)
        if key not in self._data or now - start >= win:
            self._data[key] = (1, now)
            self._window_sec[key] = window_seconds
            return True
        if count >= limit:
            return False
        self._data[key] = (count + 1, start)
        return True

    def cleanup_old(self, max_age_seconds: int = 3600):
        """Remove entries older than max_age_seconds to avoid unbounded growth."""
        now = time.monotonic()
        to_remove = [k for k, (_, start) in self._data.items() if now - start > max_age_seconds]
        for k in to_remove:
            self._data.pop(k, None)
            self._window_sec.pop(k, None)

    def reset(self) -> None:
        self._data.clear()
        self._window_sec.clear()


# Module-level store (single process); multi-worker deployments need a shared store.
_store: Optional[InMemoryRateLimitStore] = None


def get_store() -> InMemoryRateLimitStore:
    global _store
    if _store is None:
        _store = InMemoryRateLimitStore()
    return _store


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Limits ``{api_v1_prefix}/ai-coach/*`` per user (or IP)."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        settings = get_settings()
        if not settings.rate_limit_enabled:
            return await call_next(request)

        path = request.url.path or ""
        if not path.startswith(f"{settings.api_v1_prefix}/ai-coach"):
            return await call_next(request)

        store = get_store()
        store.cleanup_old(max_age_seconds=max(7200, settings.rate_limit_coach_window_seconds * 2))

        user_id = _get_user_id_from_jwt(request)
        identifier = user_id if user_id else _get_client_ip(request)

        allowed = store.check_and_incr(
            COACH_SCOPE,
            identifier,
            settings.rate_limit_coach_per_window,
            settings.rate_limit_coach_window_seconds,
        )
        if not allowed:
            return Response(
                content='{"detail":"Too many requests. Please try again later."}',
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                media_type="application/json",
                headers={"Retry-After": str(settings.rate_limit_coach_window_seconds)},
            )
        return await call_next(request)
