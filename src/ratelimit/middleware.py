"""Rate-limit wrappers for Starlette/FastAPI request handlers.

Usage::

    async def list_bots(request: Request) -> Response:
        return JSONResponse({"bots": []})

    app.add_api_route("/api/bots", with_rate_limit(list_bots, limiter), methods=["GET"])
"""

from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from src.models import RateLimitType
from src.ratelimit.limiter import RateLimiter

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[Response]]
IdentifierFn = Callable[[Request], "str | Awaitable[str]"]
SkipFn = Callable[[Request], "bool | Awaitable[bool]"]
SessionResolver = Callable[[Request], Awaitable["str | None"]]

H = TypeVar("H", bound=Handler)

_WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
_IP_HEADERS = ("x-real-ip", "cf-connecting-ip", "true-client-ip")
_LOOPBACK = "127.0.0.1"

DEFAULT_RATE_LIMIT_MESSAGE = "Too many requests. Please try again later."
BLOCKED_MESSAGE = "Your access has been temporarily blocked due to suspicious activity."


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def get_client_ip(request: Request) -> str:
    """Client IP from proxy headers, first ``x-forwarded-for`` hop first."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    for header in _IP_HEADERS:
        value = request.headers.get(header)
        if value:
            return value.strip()
    return _LOOPBACK


def get_rate_limit_type_by_method(method: str) -> RateLimitType:
    if method.upper() in _WRITE_METHODS:
        return RateLimitType.API_WRITE
    return RateLimitType.API_READ


def create_rate_limit_response(
    headers: dict[str, str],
    message: str = DEFAULT_RATE_LIMIT_MESSAGE,
) -> JSONResponse:
    retry_after = headers.get("Retry-After")
    return JSONResponse(
        {
            "error": "RATE_LIMIT_EXCEEDED",
            "message": message,
            "retryAfter": int(retry_after) if retry_after else None,
        },
        status_code=429,
        headers=headers,
    )


def create_blocked_response(message: str = BLOCKED_MESSAGE) -> JSONResponse:
    return JSONResponse({"error": "BLOCKED", "message": message}, status_code=403)


async def resolve_identifier(
    request: Request,
    session_resolver: SessionResolver | None = None,
) -> str:
    """Tenant ID from the session when there is one, else the client IP."""
    if session_resolver is not None:
        try:
            tenant_id = await session_resolver(request)
        except Exception as exc:
            logger.debug("Session lookup failed, keying by IP: %s", exc)
        else:
            if tenant_id:
                return tenant_id
    return get_client_ip(request)


@dataclass
class RateLimitCheck:
    success: bool
    headers: dict[str, str] = field(default_factory=dict)
    response: Response | None = None


async def check_request_rate_limit(
    request: Request,
    limiter: RateLimiter,
    limit_type: RateLimitType | None = None,
    identifier: str | None = None,
    session_resolver: SessionResolver | None = None,
    error_message: str | None = None,
) -> RateLimitCheck:
    """Block check then quota check, for handlers that rate limit inline."""
    key = identifier or await resolve_identifier(request, session_resolver)

    if await limiter.is_blocked(key):
        return RateLimitCheck(success=False, response=create_blocked_response())

    decision = await limiter.check(
        limit_type or get_rate_limit_type_by_method(request.method), key,
    )
    headers = decision.headers
    if not decision.allowed:
        return RateLimitCheck(
            success=False,
            headers=headers,
            response=create_rate_limit_response(
                headers, error_message or DEFAULT_RATE_LIMIT_MESSAGE,
            ),
        )
    return RateLimitCheck(success=True, headers=headers)


def with_rate_limit(
    handler: H,
    limiter: RateLimiter,
    *,
    limit_type: RateLimitType | None = None,
    identifier: IdentifierFn | None = None,
    error_message: str | None = None,
    skip: SkipFn | None = None,
    session_resolver: SessionResolver | None = None,
) -> H:
    """Wrap ``handler`` with block-list and quota checks.

    Identifier priority: ``identifier(request)`` > session tenant ID > client
    IP. ``skip`` runs before anything touches the store. Rate-limit headers
    are merged into the handler's response.
    """

    @functools.wraps(handler)
    async def wrapper(request: Request, *args: Any, **kwargs: Any) -> Response:
        if skip is not None and await _maybe_await(skip(request)):
            return await handler(request, *args, **kwargs)

        key = await _maybe_await(identifier(request)) if identifier is not None else None
        result = await check_request_rate_limit(
            request,
            limiter,
            limit_type=limit_type,
            identifier=key,
            session_resolver=session_resolver,
            error_message=error_message,
        )
        if result.response is not None:
            return result.response

        response = await handler(request, *args, **kwargs)
        for name, value in result.headers.items():
            response.headers[name] = value
        return response

    return wrapper  # type: ignore[return-value]


def with_webhook_rate_limit(handler: H, limiter: RateLimiter) -> H:
    """Webhooks carry no session, so they are keyed by client IP only."""
    return with_rate_limit(
        handler,
        limiter,
        limit_type=RateLimitType.WEBHOOK,
        identifier=get_client_ip,
        error_message="Webhook rate limit exceeded. Please reduce request frequency.",
    )


def with_auth_rate_limit(
    handler: H,
    limiter: RateLimiter,
    get_email: IdentifierFn,
) -> H:
    """Keyed by the email ``get_email`` resolves, never by source IP."""
    return with_rate_limit(
        handler,
        limiter,
        limit_type=RateLimitType.AUTH,
        identifier=get_email,
        error_message="Too many authentication attempts. Please try again in 15 minutes.",
    )
