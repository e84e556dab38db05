"""
Fixed-window Redis rate limiting utilities
One counter per key: SET with expiry on the first hit, INCR afterwards
"""

import logging
import math
import os
import time
from typing import Callable, Optional

import redis
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .auth import UserContext, get_current_user, get_user_context
from .database import get_db
from .errors import RateLimitError
from .models import User

logger = logging.getLogger(__name__)

# Redis connection
redis_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client
    Supports both a Redis URL and individual host settings
    """
    global redis_client

    if redis_client is None:
        logger.info("🔄 Initializing Redis connection...")

        redis_url = os.getenv("REDIS_URL")

        if redis_url:
            # Mask password in URL for logging
            if "@" in redis_url:
                url_parts = redis_url.split("@")
                protocol = url_parts[0].split(":")[0]
                masked_url = f"{protocol}:****@{url_parts[1]}"
            else:
                masked_url = "****"
            logger.info(f"📡 Using Redis URL connection: {masked_url}")

            client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=15,
                socket_timeout=30,
                retry_on_timeout=True,
                health_check_interval=30,
                max_connections=20,
            )
        else:
            redis_host = os.getenv("REDIS_HOST", "localhost")
            redis_port = int(os.getenv("REDIS_PORT", "6379"))
            redis_ssl = os.getenv("REDIS_SSL", "false").lower() == "true"
            logger.info(
                f"📡 Using Redis at {redis_host}:{redis_port} ({'SSL' if redis_ssl else 'no SSL'})"
            )

            client = redis.Redis(
                host=redis_host,
                port=redis_port,
                password=os.getenv("REDIS_PASSWORD", None),
                db=int(os.getenv("REDIS_DB", "0")),
                ssl=redis_ssl,
                decode_responses=True,
                socket_connect_timeout=15,
                socket_timeout=30,
                retry_on_timeout=True,
                health_check_interval=30,
                max_connections=20,
            )

        redis_client = client

    return redis_client


def check_rate_limit(
    key: str, limit: int, window_seconds: int, client: redis.Redis
) -> tuple[bool, int, int]:
    """Check and count one request against a fixed window

    Returns:
        Tuple of (is_allowed, current_count, ttl_seconds)
    """
    current = client.get(key)

    if current is None:
        client.set(key, 1, ex=window_seconds)
        return True, 1, window_seconds

    count = int(current)
    ttl = client.ttl(key)
    if ttl is None or ttl < 0:
        # Key lost its expiry; restart the window
        client.expire(key, window_seconds)
        ttl = window_seconds

    if count >= limit:
        return False, count, ttl

    count = client.incr(key)
    return True, count, ttl


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _apply_limit(request: Request, key: str, limit: int, window_seconds: int) -> None:
    try:
        client = get_redis_client()
        is_allowed, current_count, ttl = check_rate_limit(key, limit, window_seconds, client)
    except Exception as e:
        # Fail open: an unavailable store must not take the API down
        logger.warning(f"⚠️ Rate limiting unavailable for {key}, allowing request: {e}")
        return

    if not is_allowed:
        minutes = max(1, math.ceil(ttl / 60))
        logger.warning(f"🚫 Rate limit EXCEEDED for {key} - {current_count}/{limit} requests used")
        raise RateLimitError(
            f"Rate limit exceeded. Please try again in {minutes} minutes.",
            details={"retryAfter": ttl, "limit": limit},
            headers={
                "Retry-After": str(ttl),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(int(time.time()) + ttl),
            },
        )

    # Copied onto the response by the rate limit header middleware
    request.state.rate_limit_limit = limit
    request.state.rate_limit_remaining = max(0, limit - current_count)
    request.state.rate_limit_reset = int(time.time()) + ttl


def create_rate_limiter(
    limit: int, window_seconds: int, key_prefix: str = "rate_limit", use_ip: bool = True
):
    """
    Create a rate limiter dependency keyed by client IP (or one global key)

    Example usage:
        webhook_rate_limit = create_rate_limiter(limit=100, window_seconds=60, key_prefix="webhook", use_ip=False)

        @router.post("/acuity")
        async def acuity_webhook(request: Request, _: None = Depends(webhook_rate_limit)):
            ...
    """

    async def rate_limiter(request: Request):
        if use_ip:
            key = f"{key_prefix}:{_client_ip(request)}"
        else:
            key = f"{key_prefix}:global"
        _apply_limit(request, key, limit, window_seconds)

    return rate_limiter


def create_user_rate_limiter(
    limit: int,
    window_seconds: int,
    key_prefix: str,
    skip: Optional[Callable[[UserContext], bool]] = None,
):
    """Create a rate limiter dependency keyed by authenticated user and path"""

    async def rate_limiter(
        request: Request,
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        if skip is not None and skip(get_user_context(db, user)):
            return
        key = f"{key_prefix}:{user.id}:{request.url.path}"
        _apply_limit(request, key, limit, window_seconds)

    return rate_limiter


# Preconfigured limiters
booking_create_rate_limit = create_user_rate_limiter(
    limit=10, window_seconds=15 * 60, key_prefix="rate_limit:booking_create"
)
document_upload_rate_limit = create_user_rate_limiter(
    limit=50, window_seconds=60 * 60, key_prefix="rate_limit:document_upload"
)
document_download_rate_limit = create_user_rate_limiter(
    limit=100,
    window_seconds=60 * 60,
    key_prefix="rate_limit:document_download",
    skip=lambda ctx: ctx.is_admin,
)
webhook_rate_limit = create_rate_limiter(
    limit=100, window_seconds=60, key_prefix="rate_limit:webhook", use_ip=False
)
