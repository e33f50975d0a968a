"""Shared Pydantic data models for clawdbot-edge-guard."""

from __future__ import annotations

import math
import os
import re
import time
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

# --- Enums ---


class VerificationErrorCode(str, Enum):
    MISSING_SECRET = "MISSING_SECRET"
    MISSING_SIGNATURE = "MISSING_SIGNATURE"
    INVALID_SIGNATURE_FORMAT = "INVALID_SIGNATURE_FORMAT"
    SIGNATURE_MISMATCH = "SIGNATURE_MISMATCH"
    MISSING_TIMESTAMP = "MISSING_TIMESTAMP"
    INVALID_TIMESTAMP = "INVALID_TIMESTAMP"
    TIMESTAMP_EXPIRED = "TIMESTAMP_EXPIRED"
    TIMESTAMP_FUTURE = "TIMESTAMP_FUTURE"
    INVALID_SOURCE_IP = "INVALID_SOURCE_IP"


class RateLimitType(str, Enum):
    API_READ = "api-read"
    API_WRITE = "api-write"
    WEBHOOK = "webhook"
    AUTH = "auth"


class AuditEventType(str, Enum):
    WEBHOOK_VERIFIED = "webhook_verified"
    WEBHOOK_REJECTED = "webhook_rejected"
    RATE_LIMITED = "rate_limited"
    IDENTIFIER_BLOCKED = "identifier_blocked"
    IDENTIFIER_UNBLOCKED = "identifier_unblocked"


class RiskLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- Webhook Verification Models ---


class VerificationError(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: VerificationErrorCode
    message: str
    details: dict[str, Any] | None = None


class VerificationResult(BaseModel):
    """Outcome of a webhook check: valid, or invalid with exactly one error."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    error: VerificationError | None = None

    @classmethod
    def ok(cls) -> VerificationResult:
        return cls(valid=True)

    @classmethod
    def fail(
        cls,
        code: VerificationErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> VerificationResult:
        return cls(
            valid=False,
            error=VerificationError(code=code, message=message, details=details),
        )


class VerificationOptions(BaseModel):
    """Per-call knobs for webhook verification.

    ``skip_timestamp_validation`` exists for local testing only and is refused
    outright when ``APP_ENV`` is ``production``.
    """

    model_config = ConfigDict(frozen=True)

    skip_timestamp_validation: bool = False
    max_timestamp_age_ms: int = Field(default=300_000, gt=0)
    clock_skew_tolerance_ms: int = Field(default=60_000, ge=0)
    skip_ip_validation: bool = False
    additional_allowed_ips: tuple[str, ...] = ()

    @model_validator(mode="after")
    def _no_timestamp_bypass_in_production(self) -> VerificationOptions:
        if self.skip_timestamp_validation and os.environ.get("APP_ENV") == "production":
            raise ValueError("skip_timestamp_validation is not allowed in production")
        return self


# --- Rate Limit Models ---

_WINDOW_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
_POLICY_RE = re.compile(r"^\s*(\d+)\s*/\s*(\d*)\s*([smhd])\s*$")


class RateLimitPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    requests: int = Field(gt=0)
    window_seconds: int = Field(gt=0)
    prefix: str

    @property
    def window_ms(self) -> int:
        return self.window_seconds * 1000

    @classmethod
    def parse(cls, value: str, prefix: str) -> RateLimitPolicy:
        """Parse ``"<requests>/<n><unit>"`` such as ``"100/1m"`` or ``"5/15m"``."""
        match = _POLICY_RE.match(value)
        if match is None:
            raise ValueError(f"Invalid rate limit policy: {value!r}")
        requests, count, unit = match.groups()
        return cls(
            requests=int(requests),
            window_seconds=int(count or "1") * _WINDOW_UNITS[unit],
            prefix=prefix,
        )


class RateLimitKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    limit_type: RateLimitType
    identifier: str

    def render(self, prefix: str) -> str:
        return f"{prefix}:{self.identifier}"


class WindowCount(BaseModel):
    """Counter value for one key inside its current window."""

    model_config = ConfigDict(frozen=True)

    count: int = Field(ge=0)
    reset_at_ms: int


class RateLimitDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    limit: int
    remaining: int = Field(ge=0)
    reset_at_ms: int
    retry_after_seconds: int | None = None
    enforced: bool = True

    @classmethod
    def from_count(cls, policy: RateLimitPolicy, window: WindowCount) -> RateLimitDecision:
        allowed = window.count <= policy.requests
        retry_after = None
        if not allowed:
            now_ms = time.time() * 1000
            retry_after = max(1, math.ceil((window.reset_at_ms - now_ms) / 1000))
        return cls(
            allowed=allowed,
            limit=policy.requests,
            remaining=max(0, policy.requests - window.count),
            reset_at_ms=window.reset_at_ms,
            retry_after_seconds=retry_after,
        )

    @property
    def headers(self) -> dict[str, str]:
        if not self.enforced:
            return {}
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at_ms),
        }
        if self.retry_after_seconds is not None:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


# --- Audit Models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    source_ip: str | None = None
    identifier: str | None = None
    action: str
    result: str  # "success" | "failure" | "blocked"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
