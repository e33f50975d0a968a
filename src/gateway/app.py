"""FastAPI gateway application wiring the rate limiter and webhook verifier."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from src.audit.events import SecurityEventLogger
from src.audit.logger import AuditLogger
from src.config import RateLimitConfig, WebhookSecurityConfig
from src.models import RateLimitType
from src.ratelimit.abuse import AbuseDetector
from src.ratelimit.asgi import RateLimitMiddleware
from src.ratelimit.limiter import RateLimiter
from src.ratelimit.middleware import (
    SessionResolver,
    check_request_rate_limit,
    create_blocked_response,
    get_client_ip,
    with_webhook_rate_limit,
)
from src.webhook.allowlist import EnvAllowlistProvider
from src.webhook.signature import SIGNATURE_HEADER
from src.webhook.verifier import WebhookVerifier, status_code_for

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any], "str | None"], Awaitable[None]]
SecretResolver = Callable[["str | None"], Awaitable["str | None"]]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Distinct from a literal JSON null body.
_INVALID_JSON = object()


def _parse_json(raw: bytes) -> Any:
    """Decode a request body; ``_INVALID_JSON`` for anything json cannot load.

    Deep nesting raises ``RecursionError`` and over-long integer literals a
    plain ``ValueError``; both count as malformed input.
    """
    try:
        return json.loads(raw)
    except (ValueError, RecursionError):
        return _INVALID_JSON


def create_app_from_env() -> FastAPI:
    """Factory for ``uvicorn --factory``: reads config from environment variables."""
    webhook_config = WebhookSecurityConfig.from_env()
    audit_logger = (
        AuditLogger.from_env(webhook_config.audit_log_path)
        if webhook_config.audit_log_path else None
    )
    limiter = RateLimiter.from_config(RateLimitConfig.from_env())
    verifier = WebhookVerifier(
        allowlist_provider=EnvAllowlistProvider(webhook_config.allowlist_ttl_seconds),
        event_logger=SecurityEventLogger(audit_logger=audit_logger),
    )
    if webhook_config.webhook_secret is None:
        logger.warning("CLAWDBOT_WEBHOOK_SECRET not set; all webhooks will be rejected")
    return create_app(
        limiter,
        verifier,
        webhook_secret=webhook_config.webhook_secret,
        audit_logger=audit_logger,
    )


async def _log_event(event: dict[str, Any], organization_id: str | None) -> None:
    logger.info(
        "Webhook event received (type=%s, organization=%s)",
        event.get("type"), organization_id,
    )


def create_app(
    limiter: RateLimiter,
    verifier: WebhookVerifier,
    webhook_secret: str | None = None,
    event_handler: EventHandler | None = None,
    secret_resolver: SecretResolver | None = None,
    session_resolver: SessionResolver | None = None,
    abuse_detector: AbuseDetector | None = None,
    audit_logger: AuditLogger | None = None,
) -> FastAPI:
    """Create the gateway app.

    ``secret_resolver`` maps an organization ID to its tenant-scoped webhook
    secret; without one every webhook is checked against ``webhook_secret``.
    """
    app = FastAPI(docs_url=None, redoc_url=None)
    handle_event = event_handler or _log_event

    async def resolve_secret(organization_id: str | None) -> str | None:
        if secret_resolver is not None:
            return await secret_resolver(organization_id)
        return webhook_secret

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    async def clawdbot_webhook(request: Request) -> Response:
        raw_body = await request.body()
        organization_id = request.headers.get("x-organization-id")
        event = _parse_json(raw_body)
        timestamp = event.get("timestamp") if isinstance(event, dict) else None

        result = verifier.verify(
            raw_body,
            request.headers.get(SIGNATURE_HEADER),
            await resolve_secret(organization_id),
            timestamp=timestamp,
            source_ip=get_client_ip(request),
            metadata={"endpoint": "clawdbot-webhook", "organizationId": organization_id},
        )
        if not result.valid and result.error is not None:
            return JSONResponse(
                {"error": result.error.code.value, "message": result.error.message},
                status_code=status_code_for(result),
            )

        if not isinstance(event, dict):
            return JSONResponse(
                {"error": "INVALID_PAYLOAD", "message": "Webhook body must be a JSON object"},
                status_code=400,
            )

        await handle_event(event, organization_id)
        return JSONResponse({"success": True, "data": {"received": True}})

    app.add_api_route(
        "/api/clawdbot/webhook",
        with_webhook_rate_limit(clawdbot_webhook, limiter),
        methods=["POST"],
    )

    async def record_failure(ip: str) -> None:
        if abuse_detector is not None:
            await abuse_detector.record_failure(ip)

    @app.post("/api/auth/magic-link")
    async def magic_link(request: Request) -> Response:
        ip = get_client_ip(request)
        if await limiter.is_blocked(ip):
            return create_blocked_response()

        body = _parse_json(await request.body())
        if body is _INVALID_JSON:
            await record_failure(ip)
            return JSONResponse(
                {"error": "INVALID_REQUEST", "message": "Invalid JSON body"},
                status_code=400,
            )

        email = body.get("email") if isinstance(body, dict) else None
        if not isinstance(email, str) or not _EMAIL_RE.match(email.strip()):
            await record_failure(ip)
            return JSONResponse(
                {"error": "VALIDATION_ERROR", "message": "Invalid email address"},
                status_code=400,
            )

        check = await check_request_rate_limit(
            request,
            limiter,
            RateLimitType.AUTH,
            identifier=email.strip().lower(),
            error_message="Too many magic link requests. Please try again in 15 minutes.",
        )
        if check.response is not None:
            return check.response

        return JSONResponse(
            {"success": True, "message": "If the address is registered, a sign-in link is on its way."},
            status_code=202,
            headers=check.headers,
        )

    app.add_middleware(
        RateLimitMiddleware,
        limiter=limiter,
        session_resolver=session_resolver,
        audit_logger=audit_logger,
    )

    return app
