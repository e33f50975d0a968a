"""Shared test fixtures for clawdbot-edge-guard."""

from __future__ import annotations

import json
import time
from typing import Any
from unittest.mock import MagicMock

import pytest

from src.audit.logger import AuditLogger
from src.models import (
    AuditEvent,
    AuditEventType,
    RateLimitPolicy,
    RateLimitType,
    RiskLevel,
)
from src.ratelimit.limiter import RateLimiter
from src.ratelimit.store import InMemoryBlockList, InMemoryCounterStore
from src.webhook.signature import create_signature

WEBHOOK_SECRET = "whsec_test_0123456789abcdef"


@pytest.fixture(autouse=True)
def _clean_security_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep host environment from leaking into allowlist and limiter config."""
    for name in (
        "APP_ENV",
        "CLAWDBOT_ALLOWED_IPS",
        "CLAWDBOT_STRICT_IP_VALIDATION",
        "CLAWDBOT_ALLOWLIST_TTL_SECONDS",
        "CLAWDBOT_WEBHOOK_SECRET",
        "REDIS_URL",
        "RATE_LIMIT_ENABLED",
        "RATE_LIMIT_AUTH",
        "RATE_LIMIT_API_READ",
        "RATE_LIMIT_API_WRITE",
        "RATE_LIMIT_WEBHOOK",
        "AUDIT_LOG_PATH",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


@pytest.fixture
def counter_store() -> InMemoryCounterStore:
    return InMemoryCounterStore()


@pytest.fixture
def blocklist() -> InMemoryBlockList:
    return InMemoryBlockList()


@pytest.fixture
def limiter(counter_store: InMemoryCounterStore, blocklist: InMemoryBlockList) -> RateLimiter:
    return make_limiter(counter_store, blocklist)


# --- Factory functions for test data ---


def make_limiter(
    store: InMemoryCounterStore | None = None,
    blocklist: InMemoryBlockList | None = None,
    **limits: int,
) -> RateLimiter:
    """In-memory limiter; ``limits`` maps ``api_read=3`` style names to ceilings."""
    policies = {
        limit_type: RateLimitPolicy(
            requests=limits.get(limit_type.value.replace("-", "_"), default),
            window_seconds=60,
            prefix=f"ratelimit:{limit_type.value}",
        )
        for limit_type, default in (
            (RateLimitType.API_READ, 100),
            (RateLimitType.API_WRITE, 30),
            (RateLimitType.WEBHOOK, 1000),
            (RateLimitType.AUTH, 5),
        )
    }
    return RateLimiter(store or InMemoryCounterStore(), blocklist or InMemoryBlockList(), policies)


def make_webhook_body(**kwargs: Any) -> bytes:
    """Compact JSON webhook event, timestamped now (ms) unless overridden."""
    event: dict[str, Any] = {
        "type": "message.received",
        "timestamp": int(time.time() * 1000),
        "message": {"id": "msg_1", "text": "hello"},
    }
    event.update(kwargs)
    return json.dumps(event, separators=(",", ":")).encode()


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return create_signature(body, secret)


def make_audit_event(**kwargs: Any) -> AuditEvent:
    """Factory for AuditEvent with sensible defaults."""
    defaults: dict[str, Any] = {
        "event_type": AuditEventType.WEBHOOK_REJECTED,
        "action": "verify_webhook",
        "result": "failure",
        "risk_level": RiskLevel.HIGH,
    }
    defaults.update(kwargs)
    return AuditEvent(**defaults)
