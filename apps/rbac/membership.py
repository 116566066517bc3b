"""
Membership store and dual-membership resolution.

resolve_effective() is the only place that decides whether a user can reach
a project at all. It reads memberships through the trusted raw lookups below,
which go straight to the tables and never through the policy engine, so
resolving access to membership rows cannot recurse.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from apps.core.exceptions import (
    AuthenticationRequired, MembershipConflict, MembershipNotFound, StoreUnavailable
)
from apps.core.logging import SecurityLogger
from apps.rbac.decision_cache import DecisionCache
from apps.rbac.models import AuditLog, OrganisationMembership, ProjectMembership
from apps.rbac.roles import ORGANISATION_SCOPE, PROJECT_SCOPE, RoleCatalog, get_role_catalog
from apps.rbac.signals import (
    InvalidationEvent, organisation_event, project_event, publish_invalidation
)
from apps.tenants.models import Organisation, Project

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EffectiveAccess:
    """
    Outcome of dual-membership resolution for one user on one tenant.

    present: the user can reach the tenant at all
    elevated: superuser or elevated organisation role (no project grant needed)
    project_role: role from the project grant, when that is what gave access
    """

    present: bool
    elevated: bool = False
    project_role: Optional[str] = None
    org_role: Optional[str] = None
    organisation_id: Any = None
    reason: str = ''

    @property
    def effective_role(self):
        if self.elevated:
            return 'elevated'
        return self.project_role


SUPERUSER_ACCESS = EffectiveAccess(present=True, elevated=True, reason='platform superuser')


class MembershipStore:
    """
    Reads, resolves and mutates organisation and project memberships.

    Mutations lock the (user, tenant) row inside a transaction, publish an
    InvalidationEvent before returning and return the event to the caller.
    """

    def __init__(self, cache: Optional[DecisionCache] = None, catalog: Optional[RoleCatalog] = None):
        self.cache = cache
        self._catalog = catalog

    @property
    def catalog(self) -> RoleCatalog:
        return self._catalog or get_role_catalog()

    # ------------------------------------------------------------------
    # Trusted read path (used only by resolution)
    # ------------------------------------------------------------------

    def raw_lookup(self, user_id, tenant_id, scope: str = PROJECT_SCOPE) -> Optional[dict]:
        """
        Read a membership row straight from the table.

        Args:
            user_id: User id
            tenant_id: Organisation id or project id
            scope: 'organisation' or 'project'

        Returns:
            dict of the role and status columns, or None when there is no row
        """
        try:
            if scope == ORGANISATION_SCOPE:
                return (
                    OrganisationMembership.objects
                    .filter(user_id=user_id, organisation_id=tenant_id)
                    .values('org_role', 'is_active')
                    .first()
                )
            return (
                ProjectMembership.objects
                .filter(user_id=user_id, project_id=tenant_id)
                .values('role', 'is_dormant')
                .first()
            )
        except DatabaseError as e:
            logger.error(
                "Membership lookup failed",
                extra={'user_id': str(user_id), 'tenant_id': str(tenant_id), 'scope': scope},
                exc_info=True
            )
            raise StoreUnavailable("Membership store unavailable") from e

    def raw_project_organisation(self, project_id):
        """Organisation id of a project, None when the project does not exist."""
        try:
            return (
                Project.objects_with_deleted
                .filter(pk=project_id)
                .values_list('organisation_id', flat=True)
                .first()
            )
        except DatabaseError as e:
            logger.error("Project lookup failed", extra={'project_id': str(project_id)}, exc_info=True)
            raise StoreUnavailable("Membership store unavailable") from e

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_effective(self, ctx, project_id) -> EffectiveAccess:
        """
        Resolve a user's effective access to a project.

        1. Platform superusers are elevated everywhere.
        2. No active organisation membership in the project's organisation
           means no access, whatever project grants exist.
        3. An elevated organisation role reaches every project of the
           organisation without a project grant.
        4. Otherwise the live project grant decides.
        """
        if ctx is None or ctx.user_id is None:
            raise AuthenticationRequired("Authentication required")
        if ctx.is_platform_superuser:
            return SUPERUSER_ACCESS

        if self.cache is None:
            return self._resolve_membership(ctx.user_id, project_id)
        return self.cache.get_or_resolve(
            ctx.user_id,
            project_id,
            lambda: self._resolve_membership(ctx.user_id, project_id),
        )

    def resolve_organisation(self, ctx, organisation_id) -> EffectiveAccess:
        """
        Effective access at organisation level (organisation-scoped resources).

        Only platform superusers are elevated here: organisation rules name
        organisation roles directly, so an elevated org role is judged by the
        role set like any other.
        """
        if ctx is None or ctx.user_id is None:
            raise AuthenticationRequired("Authentication required")
        if ctx.is_platform_superuser:
            return SUPERUSER_ACCESS

        row = self.raw_lookup(ctx.user_id, organisation_id, scope=ORGANISATION_SCOPE)
        if row is None:
            return EffectiveAccess(present=False, organisation_id=organisation_id,
                                   reason='no organisation membership')
        if not row['is_active']:
            return EffectiveAccess(present=False, organisation_id=organisation_id,
                                   org_role=row['org_role'], reason='organisation membership inactive')
        return EffectiveAccess(
            present=True,
            org_role=row['org_role'],
            organisation_id=organisation_id,
            reason='organisation member',
        )

    def _resolve_membership(self, user_id, project_id) -> EffectiveAccess:
        organisation_id = self.raw_project_organisation(project_id)
        if organisation_id is None:
            return EffectiveAccess(present=False, reason='project not found')

        org_row = self.raw_lookup(user_id, organisation_id, scope=ORGANISATION_SCOPE)
        if org_row is None:
            return EffectiveAccess(present=False, organisation_id=organisation_id,
                                   reason='no organisation membership')
        if not org_row['is_active']:
            return EffectiveAccess(present=False, organisation_id=organisation_id,
                                   org_role=org_row['org_role'],
                                   reason='organisation membership inactive')

        org_role = org_row['org_role']
        if self._is_elevated(org_role):
            return EffectiveAccess(present=True, elevated=True, org_role=org_role,
                                   organisation_id=organisation_id,
                                   reason=f"elevated organisation role {org_role}")

        project_row = self.raw_lookup(user_id, project_id)
        if project_row is None or project_row['is_dormant']:
            return EffectiveAccess(present=False, org_role=org_role,
                                   organisation_id=organisation_id,
                                   reason='no project grant')

        return EffectiveAccess(present=True, project_role=project_row['role'], org_role=org_role,
                               organisation_id=organisation_id,
                               reason=f"project role {project_row['role']}")

    def _is_elevated(self, org_role) -> bool:
        role = self.catalog.org_roles.get(org_role)
        if role is None:
            # Role stored before a taxonomy change; grant nothing beyond membership
            SecurityLogger.log_configuration_error(
                error_code='UNKNOWN_ROLE',
                message=f"Stored organisation role not in catalog: {org_role}",
            )
            return False
        return role.elevated

    # ------------------------------------------------------------------
    # Plain reads
    # ------------------------------------------------------------------

    def get_org_membership(self, user_id, organisation_id) -> Optional[OrganisationMembership]:
        return self._read(
            OrganisationMembership.objects.filter(user_id=user_id, organisation_id=organisation_id)
        )

    def get_project_membership(self, user_id, project_id) -> Optional[ProjectMembership]:
        return self._read(
            ProjectMembership.objects.filter(user_id=user_id, project_id=project_id)
        )

    def list_project_team(self, project_id):
        """
        Live grants on a project, for team listings.

        Runs with store privileges: callers must have been authorised for
        project_members:view first.
        """
        return list(
            ProjectMembership.objects
            .filter(project_id=project_id, is_dormant=False)
            .select_related('user')
            .order_by('user__email')
        )

    def list_org_members(self, organisation_id, include_inactive=False):
        """Organisation members, for listings authorised by organisation_members:view."""
        qs = OrganisationMembership.objects.filter(organisation_id=organisation_id)
        if not include_inactive:
            qs = qs.filter(is_active=True)
        return list(qs.select_related('user').order_by('user__email'))

    def _read(self, queryset):
        try:
            return queryset.first()
        except DatabaseError as e:
            raise StoreUnavailable("Membership store unavailable") from e

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_org_member(self, user, organisation: Organisation, org_role: str,
                       actor=None, request=None) -> InvalidationEvent:
        """Add a user to an organisation (invite acceptance)."""
        org_role = self.catalog.org_role(org_role).name

        with self._writing():
            membership, created = (
                OrganisationMembership.objects
                .select_for_update()
                .get_or_create(
                    user=user,
                    organisation=organisation,
                    defaults={'org_role': org_role, 'invited_by': actor},
                )
            )
            if not created:
                raise MembershipConflict(
                    "User already has a membership in this organisation"
                    if membership.is_active else
                    "Membership is deactivated; reactivate it instead"
                )

        event = organisation_event(user.pk, organisation.pk)
        self._after_write(event, 'organisation_member_added', actor, user, membership, request,
                          {'org_role': org_role})
        return event

    def add_member(self, user, project: Project, role: str, actor=None, request=None) -> InvalidationEvent:
        """
        Grant a user a role on a project.

        The user must already hold an active membership in the project's
        organisation.
        """
        role = self.catalog.project_role(role).name

        with self._writing():
            org_membership = (
                OrganisationMembership.objects
                .filter(user=user, organisation_id=project.organisation_id, is_active=True)
                .first()
            )
            if org_membership is None:
                raise MembershipConflict("User is not an active member of the project's organisation")

            membership, created = (
                ProjectMembership.objects
                .select_for_update()
                .get_or_create(
                    user=user,
                    project=project,
                    defaults={'role': role, 'added_by': actor},
                )
            )
            if not created:
                raise MembershipConflict("User already has a grant on this project")

        event = project_event(user.pk, project.pk)
        self._after_write(event, 'project_member_added', actor, user, membership, request, {'role': role})
        return event

    def remove_member(self, user, project: Project, actor=None, request=None) -> InvalidationEvent:
        """Delete a user's project grant."""
        with self._writing():
            membership = (
                ProjectMembership.objects
                .select_for_update()
                .filter(user=user, project=project)
                .first()
            )
            if membership is None:
                raise MembershipNotFound("User has no grant on this project")
            previous_role = membership.role
            membership_id = membership.pk
            membership.delete()

        event = project_event(user.pk, project.pk)
        self._after_write(event, 'project_member_removed', actor, user, None, request,
                          {'previous_role': previous_role, 'membership_id': str(membership_id)})
        return event

    def change_role(self, user, tenant, role: str, actor=None, request=None) -> InvalidationEvent:
        """
        Change a user's role on a project or an organisation.

        Args:
            user: Member whose role changes
            tenant: Project or Organisation instance
            role: New role name, validated against the catalog
        """
        if isinstance(tenant, Organisation):
            role = self.catalog.org_role(role).name
            model, lookup, field_name = OrganisationMembership, {'organisation': tenant}, 'org_role'
            event_builder = organisation_event
        else:
            role = self.catalog.project_role(role).name
            model, lookup, field_name = ProjectMembership, {'project': tenant}, 'role'
            event_builder = project_event

        with self._writing():
            membership = model.objects.select_for_update().filter(user=user, **lookup).first()
            if membership is None:
                raise MembershipNotFound("Membership not found")
            previous_role = getattr(membership, field_name)
            setattr(membership, field_name, role)
            membership.save(update_fields=[field_name, 'updated_at'])

        event = event_builder(user.pk, tenant.pk)
        self._after_write(event, 'member_role_changed', actor, user, membership, request,
                          {'previous_role': previous_role, 'role': role})
        return event

    def deactivate(self, user, organisation: Organisation, actor=None, request=None) -> InvalidationEvent:
        """
        Disable a user's organisation membership.

        Access to every project of the organisation ends immediately. The
        user's project grants in the organisation become dormant.
        """
        with self._writing():
            membership = (
                OrganisationMembership.objects
                .select_for_update()
                .filter(user=user, organisation=organisation)
                .first()
            )
            if membership is None:
                raise MembershipNotFound("User is not a member of this organisation")
            membership.is_active = False
            membership.deactivated_at = timezone.now()
            membership.save(update_fields=['is_active', 'deactivated_at', 'updated_at'])
            dormant = (
                ProjectMembership.objects
                .filter(user=user, project__organisation=organisation, is_dormant=False)
                .update(is_dormant=True, updated_at=timezone.now())
            )

        event = organisation_event(user.pk, organisation.pk)
        self._after_write(event, 'organisation_member_deactivated', actor, user, membership, request,
                          {'dormant_project_grants': dormant})
        return event

    def reactivate(self, user, organisation: Organisation, restore_projects: bool = False,
                   actor=None, request=None) -> InvalidationEvent:
        """
        Re-enable an organisation membership.

        Dormant project grants stay dormant unless restore_projects is set.
        """
        with self._writing():
            membership = (
                OrganisationMembership.objects
                .select_for_update()
                .filter(user=user, organisation=organisation)
                .first()
            )
            if membership is None:
                raise MembershipNotFound("User is not a member of this organisation")
            if membership.is_active:
                raise MembershipConflict("Membership is already active")
            membership.is_active = True
            membership.deactivated_at = None
            membership.save(update_fields=['is_active', 'deactivated_at', 'updated_at'])
            restored = 0
            if restore_projects:
                restored = (
                    ProjectMembership.objects
                    .dormant_in_organisation(user, organisation.pk)
                    .update(is_dormant=False, updated_at=timezone.now())
                )

        event = organisation_event(user.pk, organisation.pk)
        self._after_write(event, 'organisation_member_reactivated', actor, user, membership, request,
                          {'restored_project_grants': restored})
        return event

    def _writing(self):
        return _StoreTransaction()

    def _after_write(self, event, action, actor, user, membership, request, metadata):
        self._publish(event)
        AuditLog.log_action(
            action=action,
            actor=actor,
            user_id=user.pk,
            resource_type=membership._meta.model_name if membership is not None else 'projectmembership',
            resource_id=membership.pk if membership is not None else metadata.get('membership_id'),
            metadata={**metadata, 'tenant_id': str(event.tenant_id), 'scope': event.scope},
            request=request,
        )
        SecurityLogger.log_membership_change(
            action,
            actor_id=getattr(actor, 'pk', None),
            user_id=user.pk,
            tenant_id=event.tenant_id,
            scope=event.scope,
        )

    def _publish(self, event: InvalidationEvent):
        publish_invalidation(event, sender=MembershipStore)
        if transaction.get_connection().in_atomic_block:
            # Drop entries cached from pre-commit reads as well
            transaction.on_commit(lambda: publish_invalidation(event, sender=MembershipStore))


class _StoreTransaction:
    """
    transaction.atomic() that reports backing-store failures as StoreUnavailable.
    """

    def __init__(self):
        self._atomic = transaction.atomic()

    def __enter__(self):
        try:
            return self._atomic.__enter__()
        except DatabaseError as e:
            raise StoreUnavailable("Membership store unavailable") from e

    def __exit__(self, exc_type, exc, tb):
        try:
            suppressed = self._atomic.__exit__(exc_type, exc, tb)
        except DatabaseError as e:
            raise StoreUnavailable("Membership store unavailable") from e
        if isinstance(exc, IntegrityError):
            raise MembershipConflict("Membership changed concurrently; retry") from exc
        if isinstance(exc, DatabaseError):
            logger.error("Membership write failed", exc_info=(exc_type, exc, tb))
            raise StoreUnavailable("Membership store unavailable") from exc
        return suppressed
