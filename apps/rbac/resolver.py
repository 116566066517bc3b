"""
Resource resolution: map a concrete row to the tenant that owns it.

Rows with a direct project (or organisation) column resolve in one lookup.
Child rows that only reference a parent resolve in exactly one more lookup.
Anything deeper is a configuration error.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from django.apps import apps
from django.core.exceptions import ValidationError
from django.db import DatabaseError

from apps.core.exceptions import (
    AmbiguousResource, ResourceNotFound, StoreUnavailable, UnknownRule
)
from apps.rbac.context import ResourceRef
from apps.rbac.roles import ORGANISATION_SCOPE, PROJECT_SCOPE

logger = logging.getLogger(__name__)

MAX_HOPS = 2


@dataclass(frozen=True)
class ResourceBinding:
    """
    How a resource type reaches its tenant.

    Args:
        resource_type: Name used in rules and ResourceRef
        model: 'app_label.ModelName'
        scope: 'project' or 'organisation'
        tenant_field: Column holding the tenant id on a top-level row
        parent: (parent resource type, column holding the parent id) for
            child rows without a tenant column
    """

    resource_type: str
    model: str
    scope: str = PROJECT_SCOPE
    tenant_field: str = 'project_id'
    parent: Optional[Tuple[str, str]] = None


@dataclass(frozen=True)
class ResolvedResource:
    resource_type: str
    resource_id: Any
    scope: str
    tenant_id: Any
    attributes: Mapping[str, Any] = field(default_factory=dict)
    hops: int = 0

    @property
    def project_id(self):
        return self.tenant_id if self.scope == PROJECT_SCOPE else None

    @property
    def organisation_id(self):
        return self.tenant_id if self.scope == ORGANISATION_SCOPE else None


DEFAULT_BINDINGS = (
    ResourceBinding('organisations', 'tenants.Organisation', scope=ORGANISATION_SCOPE, tenant_field='id'),
    ResourceBinding('organisation_settings', 'tenants.Organisation', scope=ORGANISATION_SCOPE, tenant_field='id'),
    ResourceBinding('organisation_members', 'rbac.OrganisationMembership',
                    scope=ORGANISATION_SCOPE, tenant_field='organisation_id'),
    ResourceBinding('organisation_projects', 'tenants.Project',
                    scope=ORGANISATION_SCOPE, tenant_field='organisation_id'),
    ResourceBinding('projects', 'tenants.Project', tenant_field='id'),
    ResourceBinding('project_members', 'rbac.ProjectMembership'),
    ResourceBinding('milestones', 'projects.Milestone'),
    ResourceBinding('deliverables', 'projects.Deliverable'),
    ResourceBinding('deliverable_kpi_links', 'projects.DeliverableKpiLink',
                    parent=('deliverables', 'deliverable_id')),
    ResourceBinding('kpis', 'projects.Kpi'),
    ResourceBinding('resources', 'projects.Resource'),
    ResourceBinding('timesheets', 'projects.Timesheet'),
    ResourceBinding('expenses', 'projects.Expense'),
    ResourceBinding('variations', 'projects.Variation'),
    ResourceBinding('variation_milestones', 'projects.VariationMilestone',
                    parent=('variations', 'variation_id')),
    ResourceBinding('variation_deliverables', 'projects.VariationDeliverable',
                    parent=('variations', 'variation_id')),
    ResourceBinding('partners', 'projects.Partner'),
    ResourceBinding('partner_invoices', 'projects.PartnerInvoice'),
    ResourceBinding('partner_invoice_lines', 'projects.PartnerInvoiceLine',
                    parent=('partner_invoices', 'invoice_id')),
    ResourceBinding('raid_items', 'projects.RaidItem'),
)


class ResourceResolver:
    """
    Resolve resource references to their owning tenant.

    The walk is bounded by MAX_HOPS lookups and refuses to revisit a
    resource type, so every resolution terminates.
    """

    def __init__(self, bindings: Iterable[ResourceBinding] = DEFAULT_BINDINGS):
        self._bindings: Dict[str, ResourceBinding] = {}
        for binding in bindings:
            if binding.resource_type in self._bindings:
                raise AmbiguousResource(
                    f"Resource type bound twice: {binding.resource_type}",
                    details={'resource_type': binding.resource_type}
                )
            self._bindings[binding.resource_type] = binding

    def resource_types(self):
        return frozenset(self._bindings)

    def binding_for(self, resource_type: str) -> ResourceBinding:
        try:
            return self._bindings[resource_type]
        except KeyError:
            raise UnknownRule(
                f"No resolver binding for resource type '{resource_type}'",
                details={'resource_type': resource_type}
            )

    def resolve(self, ref: ResourceRef) -> ResolvedResource:
        """
        Resolve a reference to its tenant and row attributes.

        Raises:
            UnknownRule: resource type has no binding
            AmbiguousResource: depth exceeded, loop, or broken parent chain
            ResourceNotFound: the referenced row does not exist
            StoreUnavailable: backing store failure
        """
        binding = self.binding_for(ref.resource_type)

        if ref.resource_id is None:
            return self._resolve_unsaved(binding, ref)

        try:
            return self._walk(binding, ref)
        except DatabaseError as e:
            logger.error(
                f"Resource lookup failed: {ref.resource_type}",
                extra={'resource_type': ref.resource_type, 'resource_id': str(ref.resource_id)},
                exc_info=True
            )
            raise StoreUnavailable("Resource store unavailable") from e

    def resolve_project(self, resource_type: str, resource_id) -> Any:
        """Return the project id owning a project-scoped row."""
        resolved = self.resolve(ResourceRef(resource_type, resource_id))
        if resolved.scope != PROJECT_SCOPE:
            raise AmbiguousResource(
                f"Resource type '{resource_type}' is not project scoped",
                details={'resource_type': resource_type}
            )
        return resolved.project_id

    def _resolve_unsaved(self, binding, ref):
        tenant_id = ref.organisation_id if binding.scope == ORGANISATION_SCOPE else ref.project_id
        if tenant_id is None:
            raise AmbiguousResource(
                f"Reference to '{ref.resource_type}' carries neither an id nor a {binding.scope}",
                details={'resource_type': ref.resource_type}
            )
        return ResolvedResource(
            resource_type=ref.resource_type,
            resource_id=None,
            scope=binding.scope,
            tenant_id=tenant_id,
            attributes=dict(ref.attributes),
            hops=0,
        )

    def _walk(self, start: ResourceBinding, ref: ResourceRef) -> ResolvedResource:
        binding = start
        row_id = ref.resource_id
        attributes = None
        visited = set()
        hops = 0

        while True:
            if binding.resource_type in visited:
                raise AmbiguousResource(
                    f"Parent chain of '{start.resource_type}' loops",
                    details={'resource_type': start.resource_type}
                )
            if hops >= MAX_HOPS:
                raise AmbiguousResource(
                    f"Resolving '{start.resource_type}' needs more than {MAX_HOPS} lookups",
                    details={'resource_type': start.resource_type, 'max_hops': MAX_HOPS}
                )
            visited.add(binding.resource_type)

            row = self._fetch(binding, row_id)
            hops += 1

            if row is None:
                if hops == 1:
                    raise ResourceNotFound(
                        f"{start.resource_type} not found",
                        details={'resource_type': start.resource_type, 'resource_id': str(row_id)}
                    )
                raise AmbiguousResource(
                    f"Parent of '{start.resource_type}' is missing",
                    details={'resource_type': start.resource_type, 'parent_type': binding.resource_type}
                )
            if attributes is None:
                # Stored values only; caller attributes describe unsaved rows
                attributes = dict(row)

            if binding.parent is None:
                tenant_id = row.get(binding.tenant_field)
                if tenant_id is None:
                    raise AmbiguousResource(
                        f"'{binding.resource_type}' row has no {binding.scope}",
                        details={'resource_type': binding.resource_type}
                    )
                return ResolvedResource(
                    resource_type=start.resource_type,
                    resource_id=ref.resource_id,
                    scope=binding.scope,
                    tenant_id=tenant_id,
                    attributes=attributes,
                    hops=hops,
                )

            parent_type, parent_field = binding.parent
            row_id = row.get(parent_field)
            if row_id is None:
                raise AmbiguousResource(
                    f"'{binding.resource_type}' row has no parent",
                    details={'resource_type': binding.resource_type, 'parent_type': parent_type}
                )
            binding = self.binding_for(parent_type)

    def _fetch(self, binding: ResourceBinding, row_id) -> Optional[dict]:
        model = apps.get_model(binding.model)
        try:
            return model.objects.filter(pk=row_id).values().first()
        except (ValidationError, ValueError):
            # Malformed ids cannot match a row
            return None
