"""
Membership change signals.

membership_changed carries an InvalidationEvent naming the exact
(user, project) pairs whose effective access may have changed. The
MembershipStore sends it synchronously from every mutation; the model
receivers below cover writes made outside the store (shell, data fixes).
"""
import logging
from dataclasses import dataclass
from typing import Any, Tuple

from django.db.models.signals import post_delete, post_save
from django.dispatch import Signal, receiver

logger = logging.getLogger(__name__)

# Sent with keyword argument: event
membership_changed = Signal()


@dataclass(frozen=True)
class InvalidationEvent:
    """
    Cache invalidation scoped to one user in one tenant.

    keys holds every (user_id, project_id) pair to drop.
    """

    scope: str
    user_id: Any
    tenant_id: Any
    keys: Tuple[Tuple[Any, Any], ...]


def publish_invalidation(event: InvalidationEvent, sender=None):
    """Send membership_changed to every subscribed cache."""
    membership_changed.send(sender=sender or InvalidationEvent, event=event)
    logger.debug(
        "Membership invalidation published",
        extra={
            'scope': event.scope,
            'user_id': str(event.user_id),
            'tenant_id': str(event.tenant_id),
            'key_count': len(event.keys),
        }
    )


def organisation_event(user_id, organisation_id) -> InvalidationEvent:
    """Event covering every project of an organisation for one user."""
    from apps.tenants.models import Project

    project_ids = Project.objects_with_deleted.filter(
        organisation_id=organisation_id
    ).values_list('id', flat=True)
    return InvalidationEvent(
        scope='organisation',
        user_id=user_id,
        tenant_id=organisation_id,
        keys=tuple((user_id, project_id) for project_id in project_ids),
    )


def project_event(user_id, project_id) -> InvalidationEvent:
    return InvalidationEvent(
        scope='project',
        user_id=user_id,
        tenant_id=project_id,
        keys=((user_id, project_id),),
    )


@receiver(post_save, sender='rbac.ProjectMembership')
@receiver(post_delete, sender='rbac.ProjectMembership')
def project_membership_written(sender, instance, **kwargs):
    publish_invalidation(project_event(instance.user_id, instance.project_id), sender=sender)


@receiver(post_save, sender='rbac.OrganisationMembership')
@receiver(post_delete, sender='rbac.OrganisationMembership')
def organisation_membership_written(sender, instance, **kwargs):
    publish_invalidation(organisation_event(instance.user_id, instance.organisation_id), sender=sender)
