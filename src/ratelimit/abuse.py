"""Abuse detection: block identifiers that keep failing.

Failures are counted in the shared counter store, so the threshold holds
across every instance. The resulting block entry is what ``RateLimiter``
consults before any quota is consumed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.models import AuditEvent, AuditEventType, RiskLevel

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger
    from src.ratelimit.limiter import RateLimiter
    from src.ratelimit.store import CounterStore

logger = logging.getLogger(__name__)


class AbuseDetector:
    def __init__(
        self,
        store: CounterStore,
        limiter: RateLimiter,
        threshold: int = 20,
        window_seconds: int = 3600,
        block_seconds: int = 3600,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._store = store
        self._limiter = limiter
        self._threshold = threshold
        self._window_ms = window_seconds * 1000
        self._block_seconds = block_seconds
        self._audit = audit_logger

    async def record_failure(self, identifier: str) -> bool:
        """Count one failure; return True if this call blocked the identifier."""
        key = f"abuse:{identifier}"
        window = await self._store.increment(key, self._window_ms)
        if window.count < self._threshold:
            return False

        await self._limiter.block_identifier(identifier, self._block_seconds)
        await self._store.reset(key)
        logger.warning(
            "Blocked %s after %d failures", identifier, window.count,
        )
        if self._audit:
            self._audit.log(AuditEvent(
                event_type=AuditEventType.IDENTIFIER_BLOCKED,
                identifier=identifier,
                action="abuse_block",
                result="blocked",
                risk_level=RiskLevel.HIGH,
                details={"failures": window.count, "block_seconds": self._block_seconds},
            ))
        return True
