"""Optional source-IP allowlist check for webhook requests."""

from __future__ import annotations

from collections.abc import Iterable

from src.models import VerificationErrorCode, VerificationResult
from src.webhook.allowlist import AllowlistSnapshot

_IPV4_MAPPED_PREFIX = "::ffff:"


def normalize_ip(ip: str) -> str:
    """Strip whitespace and the IPv6-mapped-IPv4 prefix (``::ffff:10.0.0.5``)."""
    ip = ip.strip()
    if ip.lower().startswith(_IPV4_MAPPED_PREFIX):
        return ip[len(_IPV4_MAPPED_PREFIX):]
    return ip


def verify_source_ip(
    source_ip: str | None,
    allowlist: AllowlistSnapshot,
    additional_allowed_ips: Iterable[str] = (),
) -> VerificationResult:
    allowed = {normalize_ip(ip) for ip in allowlist.ips}
    allowed.update(normalize_ip(ip) for ip in additional_allowed_ips)

    if not allowlist.strict and not allowed:
        return VerificationResult.ok()

    if not source_ip:
        if allowlist.strict:
            return VerificationResult.fail(
                VerificationErrorCode.INVALID_SOURCE_IP,
                "Unable to determine source IP",
            )
        return VerificationResult.ok()

    if not allowed:
        return VerificationResult.ok()

    normalized = normalize_ip(source_ip)
    if normalized not in allowed:
        # The allowlist itself is never echoed back.
        return VerificationResult.fail(
            VerificationErrorCode.INVALID_SOURCE_IP,
            "Request from unauthorized IP address",
            details={"sourceIp": normalized},
        )

    return VerificationResult.ok()
