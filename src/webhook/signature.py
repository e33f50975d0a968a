"""HMAC-SHA256 webhook signatures for the ``x-clawdbot-signature`` header."""

from __future__ import annotations

import hashlib
import hmac
import re
import secrets

from src.models import VerificationErrorCode, VerificationResult

SIGNATURE_HEADER = "x-clawdbot-signature"
SIGNATURE_PREFIX = "sha256"

_HEX_RE = re.compile(r"[0-9a-fA-F]+")
_MAX_ECHO_CHARS = 50


def _to_bytes(value: bytes | str) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def compute_digest(payload: bytes | str, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw payload bytes."""
    return hmac.new(_to_bytes(secret), _to_bytes(payload), hashlib.sha256).hexdigest()


def create_signature(payload: bytes | str, secret: str) -> str:
    """Header value for an outgoing (or test) webhook: ``sha256=<hex>``."""
    return f"{SIGNATURE_PREFIX}={compute_digest(payload, secret)}"


def generate_webhook_secret(num_bytes: int = 32) -> str:
    return secrets.token_hex(num_bytes)


def timing_safe_equal(received: str, expected: str) -> bool:
    """Constant-time string comparison.

    On a length mismatch the received value is still compared against a
    same-length dummy buffer so the failure costs as much as a real compare.
    """
    received_bytes = received.encode("utf-8")
    expected_bytes = expected.encode("utf-8")
    if len(received_bytes) != len(expected_bytes):
        hmac.compare_digest(received_bytes, b"x" * len(received_bytes))
        return False
    return hmac.compare_digest(received_bytes, expected_bytes)


def verify_signature(
    payload: bytes | str,
    signature_header: str | None,
    secret: str | None,
) -> VerificationResult:
    """Verify ``signature_header`` against the HMAC of ``payload`` under ``secret``.

    ``payload`` must be the body exactly as received; re-serialized JSON will
    not verify.
    """
    if not secret:
        return VerificationResult.fail(
            VerificationErrorCode.MISSING_SECRET,
            "Webhook secret is not configured",
        )

    if not signature_header:
        return VerificationResult.fail(
            VerificationErrorCode.MISSING_SIGNATURE,
            f"Missing {SIGNATURE_HEADER} header",
        )

    parts = signature_header.split("=")
    if len(parts) != 2 or parts[0] != SIGNATURE_PREFIX or not _HEX_RE.fullmatch(parts[1]):
        return VerificationResult.fail(
            VerificationErrorCode.INVALID_SIGNATURE_FORMAT,
            "Invalid signature format. Expected: sha256=<hex>",
            details={"received": signature_header[:_MAX_ECHO_CHARS]},
        )

    if not timing_safe_equal(parts[1], compute_digest(payload, secret)):
        return VerificationResult.fail(
            VerificationErrorCode.SIGNATURE_MISMATCH,
            "Webhook signature verification failed",
        )

    return VerificationResult.ok()
