"""
Redis caching utilities for calendar-provider data
Availability is cached briefly; appointment types for longer
"""
import json
import logging
from typing import Any, Optional

from .config import CACHE_TTL_LONG, CACHE_TTL_SHORT
from .rate_limiter import get_redis_client

logger = logging.getLogger(__name__)

CACHE_KEYS = {
    "availability": "acuity:availability:",
    "appointment_types": "acuity:appointment_types:",
    "calendar": "acuity:calendar:",
    "specialist": "specialist:",
}


class Cache:
    """Redis cache wrapper with automatic serialization"""

    def _get_client(self):
        try:
            return get_redis_client()
        except Exception as e:
            logger.warning(f"⚠️ Redis cache unavailable: {e}")
            return None

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        client = self._get_client()
        if not client:
            return None

        try:
            value = client.get(key)
            if value:
                logger.debug(f"✅ Cache HIT: {key}")
                return json.loads(value)
            logger.debug(f"❌ Cache MISS: {key}")
            return None
        except Exception as e:
            logger.error(f"❌ Cache get error for {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: int = CACHE_TTL_LONG) -> bool:
        """Set value in cache with TTL"""
        client = self._get_client()
        if not client:
            return False

        try:
            client.setex(key, ttl, json.dumps(value))
            logger.debug(f"✅ Cache SET: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.error(f"❌ Cache set error for {key}: {e}")
            return False

    def delete(self, key: str) -> bool:
        """Delete value from cache"""
        client = self._get_client()
        if not client:
            return False

        try:
            client.delete(key)
            logger.debug(f"✅ Cache DELETE: {key}")
            return True
        except Exception as e:
            logger.error(f"❌ Cache delete error for {key}: {e}")
            return False

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern (e.g., 'acuity:availability:42:*')"""
        client = self._get_client()
        if not client:
            return 0

        try:
            keys = list(client.scan_iter(match=pattern))
            if keys:
                deleted = client.delete(*keys)
                logger.debug(f"✅ Cache DELETE pattern: {pattern} ({deleted} keys)")
                return deleted
            return 0
        except Exception as e:
            logger.error(f"❌ Cache delete pattern error for {pattern}: {e}")
            return 0


# Global cache instance
cache = Cache()


def _availability_key(calendar_id, date: str, appointment_type_id) -> str:
    return f"{CACHE_KEYS['availability']}{calendar_id}:{date}:{appointment_type_id}"


def cache_availability(calendar_id, date: str, appointment_type_id, data: Any) -> bool:
    return cache.set(_availability_key(calendar_id, date, appointment_type_id), data, CACHE_TTL_SHORT)


def get_cached_availability(calendar_id, date: str, appointment_type_id) -> Optional[Any]:
    return cache.get(_availability_key(calendar_id, date, appointment_type_id))


def invalidate_availability_cache(calendar_id=None) -> int:
    """Drop cached slots for one calendar, or for every calendar"""
    if calendar_id is not None:
        pattern = f"{CACHE_KEYS['availability']}{calendar_id}:*"
    else:
        pattern = f"{CACHE_KEYS['availability']}*"
    deleted = cache.delete_pattern(pattern)
    logger.info(f"🗑️ Invalidated availability cache ({pattern}, {deleted} keys)")
    return deleted


def cache_appointment_types(data: Any) -> bool:
    return cache.set(f"{CACHE_KEYS['appointment_types']}all", data, CACHE_TTL_LONG)


def get_cached_appointment_types() -> Optional[Any]:
    return cache.get(f"{CACHE_KEYS['appointment_types']}all")


def invalidate_appointment_types_cache() -> int:
    return cache.delete_pattern(f"{CACHE_KEYS['appointment_types']}*")
