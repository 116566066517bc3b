"""
Subscription limit checks.

Callers consult check_limit() before mutating actions that grow an
organisation (adding members, creating projects). It is a pre-condition
layered above the policy engine and never part of an access decision.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings

from apps.tenants.models import Organisation, Project

logger = logging.getLogger(__name__)

LIMIT_MEMBERS = 'members'
LIMIT_PROJECTS = 'projects'

# None means unlimited
DEFAULT_TIER_LIMITS = {
    Organisation.TIER_FREE: {LIMIT_MEMBERS: None, LIMIT_PROJECTS: None},
    Organisation.TIER_STARTER: {LIMIT_MEMBERS: 10, LIMIT_PROJECTS: 5},
    Organisation.TIER_PROFESSIONAL: {LIMIT_MEMBERS: 50, LIMIT_PROJECTS: 25},
    Organisation.TIER_ENTERPRISE: {LIMIT_MEMBERS: None, LIMIT_PROJECTS: None},
}


@dataclass(frozen=True)
class LimitCheck:
    allowed: bool
    current: int
    max: Optional[int]

    @property
    def is_unlimited(self):
        return self.max is None


def get_tier_limit(tier, limit_type):
    """
    Return the limit for a tier, None when unlimited.

    Unknown tiers fall back to the free tier. Unknown limit types are
    a programming error.
    """
    tiers = getattr(settings, 'SUBSCRIPTION_TIER_LIMITS', None) or DEFAULT_TIER_LIMITS
    limits = tiers.get(tier) or tiers[Organisation.TIER_FREE]
    if limit_type not in limits:
        raise ValueError(f"Unknown limit type: {limit_type}")
    return limits[limit_type]


def current_usage(organisation_id, limit_type):
    from apps.rbac.models import OrganisationMembership

    if limit_type == LIMIT_MEMBERS:
        return OrganisationMembership.objects.filter(
            organisation_id=organisation_id, is_active=True
        ).count()
    if limit_type == LIMIT_PROJECTS:
        return Project.objects.filter(organisation_id=organisation_id).count()
    raise ValueError(f"Unknown limit type: {limit_type}")


def check_limit(organisation_id, limit_type) -> LimitCheck:
    """
    Check whether an organisation can grow by one more unit of limit_type.

    Args:
        organisation_id: Organisation id
        limit_type: 'members' or 'projects'

    Returns:
        LimitCheck(allowed, current, max)
    """
    tier = (
        Organisation.objects
        .filter(pk=organisation_id)
        .values_list('subscription_tier', flat=True)
        .first()
    )
    limit = get_tier_limit(tier, limit_type)
    current = current_usage(organisation_id, limit_type)

    if limit is None:
        return LimitCheck(allowed=True, current=current, max=None)

    result = LimitCheck(allowed=current < limit, current=current, max=limit)
    if not result.allowed:
        logger.info(
            f"Subscription limit reached: {limit_type}",
            extra={
                'organisation_id': str(organisation_id),
                'limit_type': limit_type,
                'current': current,
                'max': limit,
            }
        )
    return result
