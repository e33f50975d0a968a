"""Webhook verification for inbound Clawdbot gateway requests.

Checks, in order:
- HMAC-SHA256 signature over the raw body
- Timestamp freshness (replay window)
- Optional source-IP allowlist
"""

from src.webhook.allowlist import (
    AllowlistProvider,
    AllowlistSnapshot,
    EnvAllowlistProvider,
    StaticAllowlistProvider,
)
from src.webhook.signature import (
    SIGNATURE_HEADER,
    create_signature,
    generate_webhook_secret,
    verify_signature,
)
from src.webhook.source_ip import normalize_ip, verify_source_ip
from src.webhook.timestamp import verify_timestamp
from src.webhook.verifier import WebhookVerifier, status_code_for, verify_webhook

__all__ = [
    "SIGNATURE_HEADER",
    # Allowlist
    "AllowlistProvider",
    "AllowlistSnapshot",
    "EnvAllowlistProvider",
    "StaticAllowlistProvider",
    # Checks
    "normalize_ip",
    "status_code_for",
    "verify_signature",
    "verify_source_ip",
    "verify_timestamp",
    "verify_webhook",
    "WebhookVerifier",
    # Helpers
    "create_signature",
    "generate_webhook_secret",
]
