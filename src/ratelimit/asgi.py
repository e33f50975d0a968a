"""ASGI middleware applying method-based rate limits to every API request."""

from __future__ import annotations

from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from src.audit.logger import AuditLogger
from src.models import AuditEvent, AuditEventType, RiskLevel
from src.ratelimit.limiter import RateLimiter
from src.ratelimit.middleware import (
    SessionResolver,
    check_request_rate_limit,
    get_client_ip,
)

# Paths never rate limited here (exact match)
EXEMPT_PATHS = frozenset({"/health", "/healthz", "/ready"})

# Prefixes with their own, stricter wrappers
EXEMPT_PREFIXES = ("/api/clawdbot/", "/api/auth/")


class RateLimitMiddleware:
    """Applies ``api-read``/``api-write`` quotas to ``/api/`` routes.

    Routes under ``EXEMPT_PREFIXES`` carry their own webhook or auth wrapper,
    so they are not counted twice.
    """

    def __init__(
        self,
        app: ASGIApp,
        limiter: RateLimiter,
        session_resolver: SessionResolver | None = None,
        audit_logger: AuditLogger | None = None,
        exempt_paths: frozenset[str] = EXEMPT_PATHS,
        exempt_prefixes: tuple[str, ...] = EXEMPT_PREFIXES,
    ) -> None:
        self.app = app
        self.limiter = limiter
        self.session_resolver = session_resolver
        self.audit_logger = audit_logger
        self._exempt_paths = exempt_paths
        self._exempt_prefixes = exempt_prefixes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        path = request.url.path
        if (
            path in self._exempt_paths
            or not path.startswith("/api/")
            or path.startswith(self._exempt_prefixes)
        ):
            await self.app(scope, receive, send)
            return

        result = await check_request_rate_limit(
            request, self.limiter, session_resolver=self.session_resolver,
        )
        if result.response is not None:
            self._log_rejection(request, result.response.status_code)
            await result.response(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in result.headers.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_headers)

    def _log_rejection(self, request: Request, status_code: int) -> None:
        if self.audit_logger:
            blocked = status_code == 403
            self.audit_logger.log(AuditEvent(
                event_type=AuditEventType.IDENTIFIER_BLOCKED if blocked else AuditEventType.RATE_LIMITED,
                source_ip=get_client_ip(request),
                action=f"{request.method} {request.url.path}",
                result="blocked" if blocked else "failure",
                risk_level=RiskLevel.MEDIUM,
            ))
