"""Webhook timestamp freshness checks (replay window).

Timestamps may be Unix seconds or milliseconds. Values below ``1e12`` are
taken as seconds. That heuristic misreads millisecond values before
September 2001 and second values after the year 33658; neither occurs in
live gateway traffic, but the limitation is real.
"""

from __future__ import annotations

import math
import time

from src.models import VerificationErrorCode, VerificationResult

MAX_TIMESTAMP_AGE_MS = 5 * 60 * 1000
CLOCK_SKEW_TOLERANCE_MS = 60 * 1000

_SECONDS_THRESHOLD = 1e12


def _preview(timestamp: object) -> str:
    # str() refuses ints past the interpreter digit limit.
    if isinstance(timestamp, int) and timestamp.bit_length() > 64:
        return f"<{timestamp.bit_length()}-bit integer>"
    return str(timestamp)[:50]


def to_milliseconds(timestamp: int | float | str) -> float | None:
    """Parse and scale a timestamp to milliseconds; None if unparseable."""
    if isinstance(timestamp, bool):
        return None
    if isinstance(timestamp, str):
        try:
            value = float(timestamp.strip())
        except ValueError:
            return None
    elif isinstance(timestamp, (int, float)):
        try:
            value = float(timestamp)
        except OverflowError:
            return None
    else:
        return None

    if not math.isfinite(value):
        return None
    if value < _SECONDS_THRESHOLD:
        value *= 1000
    return value


def verify_timestamp(
    timestamp: int | float | str | None,
    max_age_ms: int = MAX_TIMESTAMP_AGE_MS,
    clock_skew_tolerance_ms: int = CLOCK_SKEW_TOLERANCE_MS,
    *,
    skip: bool = False,
    now_ms: float | None = None,
) -> VerificationResult:
    """Reject timestamps older than ``max_age_ms`` or ahead by more than the skew."""
    if skip:
        return VerificationResult.ok()

    if timestamp is None:
        return VerificationResult.fail(
            VerificationErrorCode.MISSING_TIMESTAMP,
            "Missing timestamp in webhook payload",
        )

    timestamp_ms = to_milliseconds(timestamp)
    if timestamp_ms is None:
        return VerificationResult.fail(
            VerificationErrorCode.INVALID_TIMESTAMP,
            "Invalid timestamp format",
            details={"received": _preview(timestamp)},
        )

    now = now_ms if now_ms is not None else time.time() * 1000
    age = now - timestamp_ms

    if age > max_age_ms:
        return VerificationResult.fail(
            VerificationErrorCode.TIMESTAMP_EXPIRED,
            f"Webhook timestamp is too old ({round(age / 1000)}s > {max_age_ms / 1000:g}s max)",
            details={
                "timestampMs": int(timestamp_ms),
                "nowMs": int(now),
                "ageMs": int(age),
                "maxAgeMs": max_age_ms,
            },
        )

    if -age > clock_skew_tolerance_ms:
        return VerificationResult.fail(
            VerificationErrorCode.TIMESTAMP_FUTURE,
            "Webhook timestamp is in the future",
            details={
                "timestampMs": int(timestamp_ms),
                "nowMs": int(now),
                "differenceMs": int(-age),
            },
        )

    return VerificationResult.ok()
