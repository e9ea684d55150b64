"""
slowapi rate limiter instance.
Import `limiter` into routers and decorate endpoints with @limiter.limit("N/period").

IMPORTANT: Every rate-limited endpoint MUST have `request: Request` as a parameter
(slowapi needs it to extract the client IP). The @limiter.limit decorator must be
placed BELOW the @router.xxx decorator, not above it.

Set RATE_LIMIT_ENABLED=false to switch every limit off (local runs, tests).
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["200/minute"],
    enabled=settings.rate_limit_enabled,
)
