"""Tests for failure-driven identifier blocking."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from src.models import AuditEventType
from src.ratelimit.abuse import AbuseDetector
from src.ratelimit.store import InMemoryCounterStore
from tests.conftest import make_limiter


@pytest.mark.asyncio
async def test_blocks_at_threshold(mock_audit_logger: MagicMock) -> None:
    store = InMemoryCounterStore()
    limiter = make_limiter(store)
    detector = AbuseDetector(store, limiter, threshold=3, audit_logger=mock_audit_logger)

    assert await detector.record_failure("1.2.3.4") is False
    assert await detector.record_failure("1.2.3.4") is False
    assert await limiter.is_blocked("1.2.3.4") is False
    assert await detector.record_failure("1.2.3.4") is True
    assert await limiter.is_blocked("1.2.3.4") is True

    mock_audit_logger.log.assert_called_once()
    event = mock_audit_logger.log.call_args.args[0]
    assert event.event_type == AuditEventType.IDENTIFIER_BLOCKED
    assert event.identifier == "1.2.3.4"
    assert event.details == {"failures": 3, "block_seconds": 3600}


@pytest.mark.asyncio
async def test_counter_resets_after_block() -> None:
    store = InMemoryCounterStore()
    detector = AbuseDetector(store, make_limiter(store), threshold=2)
    await detector.record_failure("id")
    await detector.record_failure("id")
    assert await store.peek("abuse:id") is None


@pytest.mark.asyncio
async def test_identifiers_counted_separately() -> None:
    store = InMemoryCounterStore()
    limiter = make_limiter(store)
    detector = AbuseDetector(store, limiter, threshold=2)
    await detector.record_failure("a")
    await detector.record_failure("b")
    assert await limiter.is_blocked("a") is False
    assert await limiter.is_blocked("b") is False


@pytest.mark.asyncio
async def test_custom_block_duration_passed_to_limiter() -> None:
    store = InMemoryCounterStore()
    limiter = make_limiter(store)
    limiter.block_identifier = MagicMock(wraps=limiter.block_identifier)  # type: ignore[method-assign]
    detector = AbuseDetector(store, limiter, threshold=1, block_seconds=120)
    await detector.record_failure("id")
    limiter.block_identifier.assert_called_once_with("id", 120)
