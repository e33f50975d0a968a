"""Counter store and block list backends for the rate limiter.

Quotas are only meaningful when every process instance shares the same
counters, so production deployments use the Redis backends. The in-memory
backends are process-local and exist for tests and single-process
development.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Protocol

from src.models import WindowCount

if TYPE_CHECKING:
    from redis.asyncio import Redis

BLOCK_KEY_PREFIX = "ratelimit:blocked"

# INCR and first-hit PEXPIRE in one round trip; no key is ever left without a TTL.
_INCREMENT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
  redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
  redis.call('PEXPIRE', KEYS[1], ARGV[1])
  ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


class CounterStore(Protocol):
    async def increment(self, key: str, window_ms: int) -> WindowCount: ...

    async def peek(self, key: str) -> WindowCount | None: ...

    async def reset(self, key: str) -> None: ...


class BlockList(Protocol):
    async def is_blocked(self, identifier: str) -> bool: ...

    async def block(self, identifier: str, duration_seconds: int) -> None: ...

    async def unblock(self, identifier: str) -> None: ...


class InMemoryCounterStore:
    """Fixed-window counters held in this process only.

    Expired windows are swept on increment, at most once per
    ``sweep_interval_ms`` and never before the earliest window ends, so keys
    from one-off identifiers do not accumulate.
    """

    def __init__(self, sweep_interval_ms: int = 1_000) -> None:
        self._windows: dict[str, tuple[int, int]] = {}
        self._sweep_interval_ms = sweep_interval_ms
        self._next_sweep_ms = 0

    def _live(self, key: str, now: int) -> tuple[int, int] | None:
        window = self._windows.get(key)
        if window is not None and window[1] <= now:
            del self._windows[key]
            return None
        return window

    def _sweep(self, now: int) -> None:
        if now < self._next_sweep_ms:
            return
        self._windows = {k: w for k, w in self._windows.items() if w[1] > now}
        floor = now + self._sweep_interval_ms
        earliest = min((w[1] for w in self._windows.values()), default=floor)
        self._next_sweep_ms = max(earliest, floor)

    async def increment(self, key: str, window_ms: int) -> WindowCount:
        now = _now_ms()
        self._sweep(now)
        window = self._live(key, now)
        if window is None:
            count, reset_at = 0, now + window_ms
            self._next_sweep_ms = min(
                self._next_sweep_ms, max(reset_at, now + self._sweep_interval_ms),
            )
        else:
            count, reset_at = window
        self._windows[key] = (count + 1, reset_at)
        return WindowCount(count=count + 1, reset_at_ms=reset_at)

    async def peek(self, key: str) -> WindowCount | None:
        window = self._live(key, _now_ms())
        if window is None:
            return None
        return WindowCount(count=window[0], reset_at_ms=window[1])

    async def reset(self, key: str) -> None:
        self._windows.pop(key, None)


class InMemoryBlockList:
    """Block entries held in this process only; expired entries swept on block."""

    def __init__(self, sweep_interval_seconds: float = 1.0) -> None:
        self._blocked_until: dict[str, float] = {}
        self._sweep_interval_seconds = sweep_interval_seconds
        self._next_sweep = 0.0

    def _sweep(self, now: float) -> None:
        if now < self._next_sweep:
            return
        self._blocked_until = {k: t for k, t in self._blocked_until.items() if t > now}
        self._next_sweep = now + self._sweep_interval_seconds

    async def is_blocked(self, identifier: str) -> bool:
        until = self._blocked_until.get(identifier)
        if until is None:
            return False
        if until <= time.time():
            del self._blocked_until[identifier]
            return False
        return True

    async def block(self, identifier: str, duration_seconds: int) -> None:
        now = time.time()
        self._sweep(now)
        self._blocked_until[identifier] = now + duration_seconds

    async def unblock(self, identifier: str) -> None:
        self._blocked_until.pop(identifier, None)


class RedisCounterStore:
    """Shared fixed-window counters in Redis."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis
        self._increment = redis.register_script(_INCREMENT_SCRIPT)

    async def increment(self, key: str, window_ms: int) -> WindowCount:
        count, ttl_ms = await self._increment(keys=[key], args=[window_ms])
        return WindowCount(count=int(count), reset_at_ms=_now_ms() + int(ttl_ms))

    async def peek(self, key: str) -> WindowCount | None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.get(key)
            pipe.pttl(key)
            raw, ttl_ms = await pipe.execute()
        if raw is None or int(ttl_ms) < 0:
            return None
        return WindowCount(count=int(raw), reset_at_ms=_now_ms() + int(ttl_ms))

    async def reset(self, key: str) -> None:
        await self._redis.delete(key)


class RedisBlockList:
    """Block entries as ``ratelimit:blocked:<identifier>`` keys with a TTL."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    @staticmethod
    def _key(identifier: str) -> str:
        return f"{BLOCK_KEY_PREFIX}:{identifier}"

    async def is_blocked(self, identifier: str) -> bool:
        value = await self._redis.get(self._key(identifier))
        return value in ("1", b"1")

    async def block(self, identifier: str, duration_seconds: int) -> None:
        await self._redis.setex(self._key(identifier), duration_seconds, "1")

    async def unblock(self, identifier: str) -> None:
        await self._redis.delete(self._key(identifier))
