"""Full webhook verification: signature, then timestamp, then source IP.

The first failing check wins. Order only affects which error is reported;
each check is independently required.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from src.models import (
    VerificationErrorCode,
    VerificationOptions,
    VerificationResult,
)
from src.webhook.allowlist import AllowlistProvider, AllowlistSnapshot, EnvAllowlistProvider
from src.webhook.signature import verify_signature
from src.webhook.source_ip import normalize_ip, verify_source_ip
from src.webhook.timestamp import verify_timestamp

if TYPE_CHECKING:
    from src.audit.events import SecurityEventLogger


def verify_webhook(
    payload: bytes | str,
    signature: str | None,
    secret: str | None,
    timestamp: int | float | str | None = None,
    source_ip: str | None = None,
    options: VerificationOptions | None = None,
    allowlist: AllowlistSnapshot | None = None,
) -> VerificationResult:
    options = options or VerificationOptions()

    result = verify_signature(payload, signature, secret)
    if not result.valid:
        return result

    result = verify_timestamp(
        timestamp,
        max_age_ms=options.max_timestamp_age_ms,
        clock_skew_tolerance_ms=options.clock_skew_tolerance_ms,
        skip=options.skip_timestamp_validation,
    )
    if not result.valid:
        return result

    if not options.skip_ip_validation:
        result = verify_source_ip(
            source_ip,
            allowlist or AllowlistSnapshot(),
            options.additional_allowed_ips,
        )
        if not result.valid:
            return result

    return VerificationResult.ok()


def status_code_for(result: VerificationResult) -> int:
    """HTTP status for a failed verification: 403 for IP, otherwise 401."""
    if result.error is not None and result.error.code == VerificationErrorCode.INVALID_SOURCE_IP:
        return 403
    return 401


class WebhookVerifier:
    """Binds an allowlist provider and an event logger to ``verify_webhook``."""

    def __init__(
        self,
        allowlist_provider: AllowlistProvider | None = None,
        event_logger: SecurityEventLogger | None = None,
        options: VerificationOptions | None = None,
    ) -> None:
        self._allowlist = allowlist_provider or EnvAllowlistProvider()
        self._events = event_logger
        self._options = options or VerificationOptions()

    def verify(
        self,
        payload: bytes | str,
        signature: str | None,
        secret: str | None,
        timestamp: int | float | str | None = None,
        source_ip: str | None = None,
        options: VerificationOptions | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> VerificationResult:
        effective = options or self._options
        snapshot = AllowlistSnapshot() if effective.skip_ip_validation else self._allowlist.snapshot()
        result = verify_webhook(
            payload, signature, secret, timestamp, source_ip, effective, snapshot,
        )

        if self._events is not None:
            event_metadata = dict(metadata or {})
            if source_ip:
                event_metadata["sourceIp"] = normalize_ip(source_ip)
            self._events.log(
                "success" if result.valid else "failure",
                result.error,
                event_metadata,
            )
        return result
