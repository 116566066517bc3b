"""
Caching utilities with consistent key naming and TTLs.
"""
import logging
from typing import Any, Iterable, Optional
from django.core.cache import caches

logger = logging.getLogger(__name__)


class CacheKeys:
    """Centralized cache key definitions with consistent naming."""

    # Effective access of a user on a project (TTL: seconds)
    ACCESS_EFFECTIVE = "access:effective:{user_id}:{project_id}"

    # Organisation subscription usage (TTL: 1 minute)
    ORGANISATION_USAGE = "tenants:usage:{organisation_id}:{limit_type}"

    @classmethod
    def format(cls, key_template: str, **kwargs) -> str:
        """Format a cache key with provided parameters."""
        return key_template.format(**kwargs)


class CacheTTL:
    """Cache TTL (Time To Live) constants in seconds."""

    ACCESS_EFFECTIVE = 5
    ORGANISATION_USAGE = 60


class CacheService:
    """
    Service for reading and writing cached data.

    Backend errors are logged and reported as misses or failed writes so a
    cache outage degrades to uncached lookups.
    """

    def __init__(self, alias: str = 'default'):
        self.alias = alias

    @property
    def backend(self):
        return caches[self.alias]

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get value from cache.

        Args:
            key: Cache key
            default: Default value if key not found

        Returns:
            Cached value or default
        """
        try:
            value = self.backend.get(key, default)
        except Exception as e:
            logger.error(f"Cache get error for key {key}: {str(e)}")
            return default
        logger.debug(f"Cache {'HIT' if value is not default else 'MISS'}: {key}")
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live in seconds (optional)

        Returns:
            True if successful, False otherwise
        """
        try:
            self.backend.set(key, value, timeout=ttl)
        except Exception as e:
            logger.error(f"Cache set error for key {key}: {str(e)}")
            return False
        logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
        return True

    def delete(self, key: str) -> bool:
        try:
            self.backend.delete(key)
        except Exception as e:
            logger.error(f"Cache delete error for key {key}: {str(e)}")
            return False
        logger.debug(f"Cache DELETE: {key}")
        return True

    def delete_many(self, keys: Iterable[str]) -> bool:
        """
        Delete several keys in one round trip.

        Returns:
            True if successful, False otherwise
        """
        keys = list(keys)
        if not keys:
            return True
        try:
            self.backend.delete_many(keys)
        except Exception as e:
            logger.error(f"Cache delete_many error for {len(keys)} keys: {str(e)}")
            return False
        logger.debug(f"Cache DELETE_MANY: {len(keys)} keys")
        return True
