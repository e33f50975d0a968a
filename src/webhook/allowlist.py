"""Source-IP allowlist providers for webhook verification."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class AllowlistSnapshot:
    ips: frozenset[str] = frozenset()
    strict: bool = False


class AllowlistProvider(Protocol):
    def snapshot(self) -> AllowlistSnapshot: ...


class StaticAllowlistProvider:
    """Fixed allowlist, typically for tests or hard-coded gateway addresses."""

    def __init__(self, ips: set[str] | frozenset[str] | None = None, strict: bool = False) -> None:
        self._snapshot = AllowlistSnapshot(ips=frozenset(ips or ()), strict=strict)

    def snapshot(self) -> AllowlistSnapshot:
        return self._snapshot


class EnvAllowlistProvider:
    """Reads ``CLAWDBOT_ALLOWED_IPS`` and ``CLAWDBOT_STRICT_IP_VALIDATION``.

    With ``ttl_seconds=0`` the environment is re-read on every call, so an
    operator can rotate the allowlist without a redeploy. A positive TTL caches
    the parsed snapshot for that many seconds.
    """

    def __init__(self, ttl_seconds: float = 0.0) -> None:
        self._ttl_seconds = ttl_seconds
        self._cached: AllowlistSnapshot | None = None
        self._loaded_at = 0.0

    def snapshot(self) -> AllowlistSnapshot:
        if (
            self._cached is not None
            and self._ttl_seconds > 0
            and time.monotonic() - self._loaded_at < self._ttl_seconds
        ):
            return self._cached
        return self.refresh()

    def refresh(self) -> AllowlistSnapshot:
        raw = os.environ.get("CLAWDBOT_ALLOWED_IPS", "")
        ips = frozenset(ip.strip() for ip in raw.split(",") if ip.strip())
        strict = os.environ.get("CLAWDBOT_STRICT_IP_VALIDATION") == "true"
        self._cached = AllowlistSnapshot(ips=ips, strict=strict)
        self._loaded_at = time.monotonic()
        return self._cached
