"""Environment-driven configuration for the webhook verifier and rate limiter."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from src.models import RateLimitPolicy, RateLimitType


class ConfigurationError(Exception):
    """Raised when environment configuration cannot be used as given."""


# Defaults carried over from the production dashboard deployment.
DEFAULT_POLICIES: dict[RateLimitType, RateLimitPolicy] = {
    RateLimitType.AUTH: RateLimitPolicy(
        requests=5, window_seconds=15 * 60, prefix="ratelimit:auth",
    ),
    RateLimitType.API_READ: RateLimitPolicy(
        requests=100, window_seconds=60, prefix="ratelimit:api-read",
    ),
    RateLimitType.API_WRITE: RateLimitPolicy(
        requests=30, window_seconds=60, prefix="ratelimit:api-write",
    ),
    RateLimitType.WEBHOOK: RateLimitPolicy(
        requests=1000, window_seconds=60, prefix="ratelimit:webhook",
    ),
}


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() == "true"


def _policy_env_name(limit_type: RateLimitType) -> str:
    return "RATE_LIMIT_" + limit_type.value.upper().replace("-", "_")


@dataclass(frozen=True)
class RateLimitConfig:
    enabled: bool = True
    redis_url: str | None = None
    policies: dict[RateLimitType, RateLimitPolicy] = field(
        default_factory=lambda: dict(DEFAULT_POLICIES),
    )

    @classmethod
    def from_env(cls) -> RateLimitConfig:
        """Build from ``RATE_LIMIT_*`` and ``REDIS_URL``.

        Each policy may be overridden with e.g. ``RATE_LIMIT_API_READ=200/1m``.
        """
        policies = dict(DEFAULT_POLICIES)
        for limit_type, default in DEFAULT_POLICIES.items():
            raw = os.environ.get(_policy_env_name(limit_type))
            if not raw:
                continue
            try:
                policies[limit_type] = RateLimitPolicy.parse(raw, prefix=default.prefix)
            except ValueError as exc:
                raise ConfigurationError(
                    f"{_policy_env_name(limit_type)}: {exc}",
                ) from exc
        return cls(
            enabled=_env_flag("RATE_LIMIT_ENABLED", True),
            redis_url=os.environ.get("REDIS_URL") or None,
            policies=policies,
        )


@dataclass(frozen=True)
class WebhookSecurityConfig:
    webhook_secret: str | None = None
    allowlist_ttl_seconds: float = 0.0
    audit_log_path: str | None = None

    @classmethod
    def from_env(cls) -> WebhookSecurityConfig:
        """Build from ``CLAWDBOT_*`` and ``AUDIT_LOG_PATH``.

        The allowlist itself is not captured here; it is re-read by the
        allowlist provider according to ``CLAWDBOT_ALLOWLIST_TTL_SECONDS``.
        """
        raw_ttl = os.environ.get("CLAWDBOT_ALLOWLIST_TTL_SECONDS", "0")
        try:
            ttl = float(raw_ttl)
        except ValueError as exc:
            raise ConfigurationError(
                f"CLAWDBOT_ALLOWLIST_TTL_SECONDS must be a number, got {raw_ttl!r}",
            ) from exc
        if ttl < 0:
            raise ConfigurationError("CLAWDBOT_ALLOWLIST_TTL_SECONDS must be >= 0")
        return cls(
            webhook_secret=os.environ.get("CLAWDBOT_WEBHOOK_SECRET") or None,
            allowlist_ttl_seconds=ttl,
            audit_log_path=os.environ.get("AUDIT_LOG_PATH") or None,
        )
