from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from fastapi import Depends, Request

from app.core.config import settings
from app.core.errors import RateLimited
from app.core.redis_client import get_redis


log = logging.getLogger(__name__)


@dataclass
class RateWindow:
    count: int
    window_start: float


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_in_seconds: int
    error: bool = False

    @property
    def reset_in_minutes(self) -> int:
        return max(1, math.ceil(self.reset_in_seconds / 60))

    def headers(self) -> dict[str, str]:
        out = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if not self.allowed:
            out["Retry-After"] = str(max(1, self.reset_in_seconds))
        return out


class RateLimitStore(Protocol):
    def hit(self, identity: str) -> tuple[int, float]:
        """Count one request for `identity`; return (count in window, seconds until reset)."""
        ...


class MemoryRateLimitStore:
    """Process-local fixed-window table.

    Lost on restart and not shared between instances. Guarded by a lock since
    sync routes run in a threadpool.
    """

    def __init__(
        self,
        *,
        window_seconds: int,
        sweep_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = int(window_seconds)
        self.sweep_seconds = int(sweep_seconds)
        self._clock = clock
        self._windows: dict[str, RateWindow] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._windows)

    def __contains__(self, identity: object) -> bool:
        return identity in self._windows

    def hit(self, identity: str) -> tuple[int, float]:
        with self._lock:
            now = self._clock()
            if now - self._last_sweep >= self.sweep_seconds:
                self._sweep(now, keep=identity)

            window = self._windows.get(identity)
            if window is None or now - window.window_start >= self.window_seconds:
                window = RateWindow(count=0, window_start=now)
                self._windows[identity] = window

            window.count += 1
            return window.count, window.window_start + self.window_seconds - now

    def _sweep(self, now: float, *, keep: str) -> None:
        expired = [
            key
            for key, w in self._windows.items()
            if key != keep and now - w.window_start >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]
        self._last_sweep = now
        if expired:
            log.info("rate_limit: swept %s expired windows, %s active", len(expired), len(self._windows))

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()


class RedisRateLimitStore:
    """Shared fixed-window counter for multi-instance deployments."""

    def __init__(self, *, window_seconds: int, key_prefix: str) -> None:
        self.window_seconds = int(window_seconds)
        self.key_prefix = key_prefix

    def hit(self, identity: str) -> tuple[int, float]:
        r = get_redis()
        key = f"rl:{self.key_prefix}:{identity}"
        current = int(r.incr(key))
        if current == 1:
            r.expire(key, self.window_seconds)
        ttl = r.ttl(key)
        if ttl is None or int(ttl) < 0:
            # Key lost its expiry (e.g. crash between INCR and EXPIRE); restart the window.
            r.expire(key, self.window_seconds)
            ttl = self.window_seconds
        return current, float(ttl)


class RateLimiter:
    def __init__(self, *, limit: int, window_seconds: int, store: RateLimitStore, fail_open: bool = False) -> None:
        self.limit = int(limit)
        self.window_seconds = int(window_seconds)
        self.store = store
        self.fail_open = bool(fail_open)

    def admit(self, identity: str) -> RateDecision:
        try:
            count, reset_in = self.store.hit(identity)
        except Exception as e:
            log.warning(
                "rate_limit: store failed identity=%s err=%s: %s (fail_%s)",
                identity,
                type(e).__name__,
                e,
                "open" if self.fail_open else "closed",
            )
            return RateDecision(
                allowed=self.fail_open,
                limit=self.limit,
                remaining=self.limit if self.fail_open else 0,
                reset_in_seconds=self.window_seconds,
                error=True,
            )

        reset_seconds = max(0, math.ceil(reset_in))
        if count > self.limit:
            log.warning("rate_limit: denied identity=%s count=%s reset_in=%ss", identity, count, reset_seconds)
            return RateDecision(allowed=False, limit=self.limit, remaining=0, reset_in_seconds=reset_seconds)

        return RateDecision(allowed=True, limit=self.limit, remaining=self.limit - count, reset_in_seconds=reset_seconds)


_limiters: dict[str, RateLimiter] = {}
_limiters_lock = threading.Lock()


def _build_limiter(key_prefix: str) -> RateLimiter:
    window = int(settings.rate_limit_window_seconds)
    backend = (settings.rate_limit_backend or "memory").strip().lower()
    if backend == "redis":
        store: RateLimitStore = RedisRateLimitStore(window_seconds=window, key_prefix=key_prefix)
    elif backend == "memory":
        store = MemoryRateLimitStore(window_seconds=window, sweep_seconds=int(settings.rate_limit_sweep_seconds))
    else:
        raise RuntimeError(f"unknown RATE_LIMIT_BACKEND: {backend}")
    return RateLimiter(
        limit=int(settings.rate_limit_max_uploads),
        window_seconds=window,
        store=store,
        fail_open=bool(settings.rate_limit_fail_open),
    )


def get_limiter(key_prefix: str) -> RateLimiter:
    with _limiters_lock:
        limiter = _limiters.get(key_prefix)
        if limiter is None:
            limiter = _build_limiter(key_prefix)
            _limiters[key_prefix] = limiter
        return limiter


def reset_limiters() -> None:
    with _limiters_lock:
        _limiters.clear()


def client_identity(request: Request) -> str:
    if bool(getattr(settings, "trust_proxy_headers", False)):
        xff = request.headers.get("x-forwarded-for")
        if xff:
            ip = xff.split(",")[0].strip()
            if ip:
                return ip
        xri = str(request.headers.get("x-real-ip") or "").strip()
        if xri:
            return xri
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(*, key_prefix: str):
    def _dep(request: Request) -> RateDecision:
        identity = client_identity(request)
        decision = get_limiter(key_prefix).admit(identity)
        # Read back by the error handler so every response carries quota headers.
        request.state.rate_limit = decision

        if not decision.allowed:
            raise RateLimited(
                message=(
                    f"Too many uploads. Maximum {decision.limit} uploads per "
                    f"{max(1, int(settings.rate_limit_window_seconds) // 60)} minutes."
                ),
                extra={"resetIn": decision.reset_in_minutes},
                headers=decision.headers(),
            )
        return decision

    return Depends(_dep)
