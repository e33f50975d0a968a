"""Per-identifier rate limiting over a shared counter store."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping

from src.config import DEFAULT_POLICIES, RateLimitConfig
from src.models import (
    RateLimitDecision,
    RateLimitKey,
    RateLimitPolicy,
    RateLimitType,
)
from src.ratelimit.store import (
    BlockList,
    CounterStore,
    InMemoryBlockList,
    InMemoryCounterStore,
    RedisBlockList,
    RedisCounterStore,
)

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_SECONDS = 3600


class RateLimiter:
    """Quota checks per ``(limit type, identifier)`` plus the block list.

    ``check`` consumes one unit of the window; every other read is
    non-consuming. Block entries are normally written by abuse detection,
    not by quota checks.
    """

    def __init__(
        self,
        store: CounterStore,
        blocklist: BlockList,
        policies: Mapping[RateLimitType, RateLimitPolicy] | None = None,
        enabled: bool = True,
    ) -> None:
        self._store = store
        self._blocklist = blocklist
        self._policies = dict(policies or DEFAULT_POLICIES)
        self._enabled = enabled

    @classmethod
    def from_config(cls, config: RateLimitConfig) -> RateLimiter:
        if config.redis_url:
            from redis.asyncio import Redis

            redis = Redis.from_url(config.redis_url, decode_responses=True)
            return cls(
                RedisCounterStore(redis),
                RedisBlockList(redis),
                config.policies,
                config.enabled,
            )
        logger.warning(
            "REDIS_URL not set; rate limit counters are process-local and "
            "will not hold across multiple instances",
        )
        return cls(
            InMemoryCounterStore(),
            InMemoryBlockList(),
            config.policies,
            config.enabled,
        )

    @classmethod
    def from_env(cls) -> RateLimiter:
        return cls.from_config(RateLimitConfig.from_env())

    @property
    def enabled(self) -> bool:
        return self._enabled

    def policy(self, limit_type: RateLimitType) -> RateLimitPolicy:
        return self._policies[RateLimitType(limit_type)]

    def _key(self, limit_type: RateLimitType, identifier: str) -> str:
        limit_type = RateLimitType(limit_type)
        return RateLimitKey(limit_type=limit_type, identifier=identifier).render(
            self.policy(limit_type).prefix,
        )

    def _unenforced(self, policy: RateLimitPolicy) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=True,
            limit=policy.requests,
            remaining=policy.requests,
            reset_at_ms=int(time.time() * 1000) + policy.window_ms,
            enforced=False,
        )

    async def check(self, limit_type: RateLimitType, identifier: str) -> RateLimitDecision:
        policy = self.policy(limit_type)
        if not self._enabled:
            logger.warning(
                "Rate limiting disabled, skipping check (type=%s, identifier=%s)",
                RateLimitType(limit_type).value, identifier,
            )
            return self._unenforced(policy)

        window = await self._store.increment(self._key(limit_type, identifier), policy.window_ms)
        decision = RateLimitDecision.from_count(policy, window)
        if not decision.allowed:
            logger.info(
                "Rate limit exceeded (type=%s, identifier=%s, retry_after=%ss)",
                RateLimitType(limit_type).value, identifier, decision.retry_after_seconds,
            )
        return decision

    async def get_remaining(self, limit_type: RateLimitType, identifier: str) -> int:
        policy = self.policy(limit_type)
        if not self._enabled:
            return policy.requests
        window = await self._store.peek(self._key(limit_type, identifier))
        if window is None:
            return policy.requests
        return max(0, policy.requests - window.count)

    async def reset(self, limit_type: RateLimitType, identifier: str) -> None:
        if self._enabled:
            await self._store.reset(self._key(limit_type, identifier))

    async def is_blocked(self, identifier: str) -> bool:
        if not self._enabled:
            return False
        return await self._blocklist.is_blocked(identifier)

    async def block_identifier(
        self, identifier: str, duration_seconds: int = DEFAULT_BLOCK_SECONDS,
    ) -> None:
        if not self._enabled:
            return
        await self._blocklist.block(identifier, duration_seconds)
        logger.warning("Identifier blocked for %ss: %s", duration_seconds, identifier)

    async def unblock_identifier(self, identifier: str) -> None:
        if self._enabled:
            await self._blocklist.unblock(identifier)
            logger.info("Identifier unblocked: %s", identifier)
