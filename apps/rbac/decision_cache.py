"""
Short-lived memoisation of effective access per (user, project).

Entries expire after a few seconds. Membership mutations drop exactly the
keys named in their InvalidationEvent, so other users and tenants keep
their cached entries.
"""
import logging
from typing import Callable, Iterable, Optional, Tuple

from django.conf import settings

from apps.core.cache import CacheKeys, CacheService, CacheTTL
from apps.rbac.signals import InvalidationEvent, membership_changed

logger = logging.getLogger(__name__)


class DecisionCache:
    """
    Cache of MembershipStore.resolve_effective results.

    Backed by the Django cache framework so every worker process shares the
    same entries. The instance subscribes to membership_changed when it is
    created and unsubscribes when it is garbage collected.
    """

    def __init__(self, ttl: Optional[int] = None, alias: str = 'default', subscribe: bool = True):
        if ttl is None:
            ttl = getattr(settings, 'ACCESS_DECISION_CACHE_TTL', CacheTTL.ACCESS_EFFECTIVE)
        self.ttl = ttl
        self._cache = CacheService(alias)
        if subscribe:
            membership_changed.connect(self._on_membership_changed)

    @staticmethod
    def key(user_id, project_id) -> str:
        return CacheKeys.format(CacheKeys.ACCESS_EFFECTIVE, user_id=user_id, project_id=project_id)

    def get(self, user_id, project_id):
        return self._cache.get(self.key(user_id, project_id))

    def set(self, user_id, project_id, access) -> bool:
        return self._cache.set(self.key(user_id, project_id), access, self.ttl)

    def get_or_resolve(self, user_id, project_id, resolve: Callable):
        """
        Return the cached entry or compute it with resolve() and store it.

        A cache outage is a miss. Errors raised by resolve() propagate and
        nothing is cached.
        """
        access = self.get(user_id, project_id)
        if access is None:
            access = resolve()
            self.set(user_id, project_id, access)
        return access

    def invalidate(self, event: InvalidationEvent) -> bool:
        """Drop the keys named by a membership invalidation event."""
        ok = self.invalidate_keys(event.keys)
        if not ok:
            logger.error(
                "Access cache invalidation failed; entries expire after TTL",
                extra={
                    'scope': event.scope,
                    'user_id': str(event.user_id),
                    'tenant_id': str(event.tenant_id),
                    'ttl': self.ttl,
                }
            )
        return ok

    def invalidate_keys(self, keys: Iterable[Tuple]) -> bool:
        return self._cache.delete_many(self.key(user_id, project_id) for user_id, project_id in keys)

    def _on_membership_changed(self, sender, event, **kwargs):
        self.invalidate(event)
