"""
Fixed-window rate limiter keyed by client address and route class.

- Counters live behind a CounterStore so a process-local map and a shared
  Redis instance are interchangeable.
- A window starts on the first hit for a key and ends window_seconds later;
  counts never carry over into the next window.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple

GENERAL = "general"
AUTH = "auth"
PLAN = "plan"


@dataclass(frozen=True)
class WindowState:
    count: int
    reset_after: float  # seconds until the current window ends


@dataclass(frozen=True)
class RoutePolicy:
    limit: int
    window_seconds: int
    message: str


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    route_class: str
    limit: int
    remaining: int
    reset_after: float
    message: str

    @property
    def retry_after(self) -> int:
        return max(1, int(math.ceil(self.reset_after)))


class CounterStore(Protocol):
    async def hit(self, key: str, window_seconds: int) -> WindowState:
        """Atomically count one request for key and return the window state."""
        ...

    async def peek(self, key: str) -> int:
        ...

    async def reset(self) -> None:
        ...


class InMemoryCounterStore:
    """Process-local counters. Rate limits become per-instance when scaled out."""

    def __init__(self, time_fn: Callable[[], float] = time.monotonic, sweep_interval: float = 60.0):
        self.time_fn = time_fn
        self.sweep_interval = sweep_interval
        self.windows: Dict[str, Tuple[float, int, int]] = {}
        self._next_sweep = time_fn() + sweep_interval
        self._lock = threading.Lock()

    def _sweep(self, now: float) -> None:
        # Addresses that never come back would otherwise keep their entry forever
        expired = [key for key, (start, _, window) in self.windows.items() if now - start >= window]
        for key in expired:
            del self.windows[key]
        self._next_sweep = now + self.sweep_interval

    async def hit(self, key: str, window_seconds: int) -> WindowState:
        with self._lock:
            now = self.time_fn()
            if now >= self._next_sweep:
                self._sweep(now)
            window_start, count, window = self.windows.get(key, (now, 0, window_seconds))
            if now - window_start >= window:
                window_start, count, window = now, 0, window_seconds
            count += 1
            self.windows[key] = (window_start, count, window)
            return WindowState(count=count, reset_after=max(0.0, window_start + window - now))

    async def peek(self, key: str) -> int:
        with self._lock:
            entry = self.windows.get(key)
            if entry is None:
                return 0
            window_start, count, window = entry
            if self.time_fn() - window_start >= window:
                return 0
            return count

    async def reset(self) -> None:
        with self._lock:
            self.windows.clear()


class RedisCounterStore:
    """Counters shared by every instance pointing at the same Redis."""

    def __init__(self, redis, prefix: str = "ratelimit:"):
        self.redis = redis
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "ratelimit:") -> "RedisCounterStore":
        from redis.asyncio import Redis

        return cls(Redis.from_url(url), prefix=prefix)

    async def hit(self, key: str, window_seconds: int) -> WindowState:
        full_key = f"{self.prefix}{key}"
        count = int(await self.redis.incr(full_key))
        if count == 1:
            await self.redis.pexpire(full_key, int(window_seconds * 1000))
        ttl_ms = await self.redis.pttl(full_key)
        if ttl_ms is None or ttl_ms < 0:
            # Key lost its expiry (e.g. crash between INCR and PEXPIRE)
            await self.redis.pexpire(full_key, int(window_seconds * 1000))
            ttl_ms = window_seconds * 1000
        return WindowState(count=count, reset_after=ttl_ms / 1000.0)

    async def peek(self, key: str) -> int:
        value = await self.redis.get(f"{self.prefix}{key}")
        return int(value) if value is not None else 0

    async def reset(self) -> None:
        async for key in self.redis.scan_iter(match=f"{self.prefix}*"):
            await self.redis.delete(key)


class FixedWindowRateLimiter:
    def __init__(self, store: CounterStore, policies: Dict[str, RoutePolicy]):
        self.store = store
        self.policies = policies

    async def check(self, route_class: str, client_address: str) -> Optional[RateLimitDecision]:
        """Count one request; return None when the route class has no policy."""
        policy = self.policies.get(route_class)
        if policy is None:
            return None
        state = await self.store.hit(f"{route_class}:{client_address}", policy.window_seconds)
        return RateLimitDecision(
            allowed=state.count <= policy.limit,
            route_class=route_class,
            limit=policy.limit,
            remaining=max(0, policy.limit - state.count),
            reset_after=state.reset_after,
            message=policy.message,
        )


def describe_window(seconds: int) -> str:
    """Human wording for a window length: "15 minutes", "1 minute", "90 seconds"."""
    if seconds >= 60 and seconds % 60 == 0:
        minutes = seconds // 60
        return "1 minute" if minutes == 1 else f"{minutes} minutes"
    return "1 second" if seconds == 1 else f"{seconds} seconds"


def build_policies(cfg) -> Dict[str, RoutePolicy]:
    window = int(getattr(cfg, "RATE_LIMIT_WINDOW_SECONDS", 900))
    return {
        GENERAL: RoutePolicy(
            limit=int(getattr(cfg, "RATE_LIMIT_GENERAL_MAX", 100)),
            window_seconds=window,
            message="Too many requests, please try again later.",
        ),
        AUTH: RoutePolicy(
            limit=int(getattr(cfg, "RATE_LIMIT_AUTH_MAX", 10)),
            window_seconds=window,
            message=f"Too many sign-in attempts, please wait {describe_window(window)}.",
        ),
        PLAN: RoutePolicy(
            limit=int(getattr(cfg, "RATE_LIMIT_PLAN_MAX", 10)),
            window_seconds=window,
            message="Plan generation limit reached, please try again later.",
        ),
    }


def build_counter_store(cfg) -> CounterStore:
    backend = (getattr(cfg, "RATE_LIMIT_BACKEND", "memory") or "memory").lower()
    if backend == "redis":
        return RedisCounterStore.from_url(cfg.REDIS_URL)
    return InMemoryCounterStore()
