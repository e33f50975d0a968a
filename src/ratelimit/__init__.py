"""Rate limiting for the dashboard API and webhook endpoints.

This module provides:
- Quota policies per endpoint class (api-read, api-write, webhook, auth)
- Shared counter store and block list backends
- Handler wrappers and an ASGI middleware
- Abuse detection that feeds the block list
"""

from src.ratelimit.abuse import AbuseDetector
from src.ratelimit.asgi import RateLimitMiddleware
from src.ratelimit.limiter import RateLimiter
from src.ratelimit.middleware import (
    RateLimitCheck,
    check_request_rate_limit,
    create_blocked_response,
    create_rate_limit_response,
    get_client_ip,
    get_rate_limit_type_by_method,
    with_auth_rate_limit,
    with_rate_limit,
    with_webhook_rate_limit,
)
from src.ratelimit.store import (
    BlockList,
    CounterStore,
    InMemoryBlockList,
    InMemoryCounterStore,
    RedisBlockList,
    RedisCounterStore,
)

__all__ = [
    # Components
    "AbuseDetector",
    "RateLimiter",
    "RateLimitMiddleware",
    # Stores
    "BlockList",
    "CounterStore",
    "InMemoryBlockList",
    "InMemoryCounterStore",
    "RedisBlockList",
    "RedisCounterStore",
    # Wrappers
    "RateLimitCheck",
    "check_request_rate_limit",
    "create_blocked_response",
    "create_rate_limit_response",
    "get_client_ip",
    "get_rate_limit_type_by_method",
    "with_auth_rate_limit",
    "with_rate_limit",
    "with_webhook_rate_limit",
]
