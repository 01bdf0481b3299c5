"""
Rate Limiting
=============

Redis-based fixed window rate limiting for the public billing endpoints.
"""

import logging
from typing import Optional

from fastapi import Request

from app.config import settings
from app.core.errors import RateLimitExceeded
from app.services.cache import get_redis

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Fixed window rate limiter using Redis.

    Rate limits are applied per client IP. Providers deliver webhooks from a
    small set of addresses, so the webhook window is generous; checkout is
    user facing and tighter.
    """

    # Limit configurations
    LIMITS = {
        "webhook": {"max_requests": settings.WEBHOOK_RATE_LIMIT_PER_MINUTE, "window_seconds": 60},
        "checkout": {"max_requests": settings.CHECKOUT_RATE_LIMIT_PER_MINUTE, "window_seconds": 60},
    }

    @staticmethod
    def _get_key(identifier: str, action: str) -> str:
        """Generate rate limit key."""
        return f"ratelimit:{action}:{identifier}"

    @staticmethod
    async def check_rate_limit(
        identifier: str,
        action: str,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ) -> dict:
        """
        Check if request is within rate limit.

        Args:
            identifier: Client IP address
            action: Action type (webhook, checkout)
            max_requests: Override max requests (optional)
            window_seconds: Override window size (optional)

        Returns:
            Dict with 'allowed', 'remaining', 'reset_in' keys
        """
        limits = RateLimiter.LIMITS.get(action, RateLimiter.LIMITS["webhook"])
        max_req = max_requests or limits["max_requests"]
        window = window_seconds or limits["window_seconds"]

        key = RateLimiter._get_key(identifier, action)

        try:
            client = await get_redis()

            current = await client.get(key)

            if current is None:
                # First request in window
                await client.setex(key, window, 1)
                return {
                    "allowed": True,
                    "remaining": max_req - 1,
                    "reset_in": window,
                }

            current_count = int(current)

            if current_count >= max_req:
                ttl = await client.ttl(key)
                return {
                    "allowed": False,
                    "remaining": 0,
                    "reset_in": ttl if ttl > 0 else window,
                }

            await client.incr(key)
            ttl = await client.ttl(key)

            return {
                "allowed": True,
                "remaining": max_req - current_count - 1,
                "reset_in": ttl if ttl > 0 else window,
            }

        except Exception as e:
            logger.warning("Rate limit check failed, allowing request: %s", e)
            # Fail open
            return {
                "allowed": True,
                "remaining": max_req,
                "reset_in": window,
            }


def client_identifier(request: Request) -> str:
    """Best-effort client IP, honouring a proxy's X-Forwarded-For."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def rate_limit_dependency(request: Request, action: str) -> None:
    """FastAPI dependency body; raises RateLimitExceeded when over the limit."""
    result = await RateLimiter.check_rate_limit(client_identifier(request), action)

    if not result["allowed"]:
        logger.warning(
            "Rate limit exceeded: action=%s client=%s",
            action,
            client_identifier(request),
        )
        raise RateLimitExceeded(
            limit=RateLimiter.LIMITS[action]["max_requests"],
            reset_in=result["reset_in"],
        )


def create_rate_limit_dependency(action: str):
    """
    Factory for rate limit dependencies.

    Usage:
        @router.post("/paystack", dependencies=[Depends(webhook_rate_limit)])
        async def endpoint():
            ...
    """
    async def dependency(request: Request) -> None:
        await rate_limit_dependency(request, action)

    return dependency


webhook_rate_limit = create_rate_limit_dependency("webhook")
checkout_rate_limit = create_rate_limit_dependency("checkout")
