"""
Role catalog for organisation-level and project-level roles.

The taxonomy is configuration (settings.ACCESS_ROLE_CATALOG). Role names are
validated once when they enter the system; everything downstream works with
RoleDefinition instances or names already known to be valid.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from django.conf import settings
from django.utils.module_loading import import_string

from apps.core.exceptions import UnknownRole

logger = logging.getLogger(__name__)

ORGANISATION_SCOPE = 'organisation'
PROJECT_SCOPE = 'project'


@dataclass(frozen=True)
class RoleDefinition:
    """A single role with its capability metadata."""

    name: str
    scope: str
    label: str = ''
    level: Optional[int] = None
    elevated: bool = False
    side: Optional[str] = None

    def __str__(self):
        return self.name


@dataclass(frozen=True)
class RoleCatalog:
    """
    Closed sets of organisation and project roles.

    Levels are advisory. They back has_min_role() for UI gating and are never
    consulted by the policy engine, because several roles are cross-cutting
    (a finance role on one counterpart side cannot act for the other side
    whatever its level).
    """

    org_roles: Dict[str, RoleDefinition]
    project_roles: Dict[str, RoleDefinition]
    groups: Dict[str, FrozenSet[str]] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config):
        """
        Build a catalog from a configuration mapping.

        Args:
            config: dict with 'organisation' and 'project' lists of role dicts
                and an optional 'groups' mapping of group name to role names

        Returns:
            RoleCatalog

        Raises:
            UnknownRole: if a group references a role that is not defined
        """
        org_roles = {
            item['name']: RoleDefinition(scope=ORGANISATION_SCOPE, **item)
            for item in config.get(ORGANISATION_SCOPE, [])
        }
        project_roles = {
            item['name']: RoleDefinition(scope=PROJECT_SCOPE, **item)
            for item in config.get(PROJECT_SCOPE, [])
        }
        if not org_roles or not project_roles:
            raise UnknownRole("Role catalog must define organisation and project roles")

        groups = {}
        for group_name, members in config.get('groups', {}).items():
            unknown = set(members) - set(project_roles)
            if unknown:
                raise UnknownRole(
                    f"Role group '{group_name}' references unknown project roles",
                    details={'group': group_name, 'roles': sorted(unknown)}
                )
            groups[group_name] = frozenset(members)

        return cls(org_roles=org_roles, project_roles=project_roles, groups=groups)

    # Boundary validation

    def org_role(self, name) -> RoleDefinition:
        """Return the organisation role called name or raise UnknownRole."""
        if isinstance(name, RoleDefinition):
            name = name.name
        try:
            return self.org_roles[name]
        except KeyError:
            raise UnknownRole(f"Unknown organisation role: {name}", details={'role': name})

    def project_role(self, name) -> RoleDefinition:
        """Return the project role called name or raise UnknownRole."""
        if isinstance(name, RoleDefinition):
            name = name.name
        try:
            return self.project_roles[name]
        except KeyError:
            raise UnknownRole(f"Unknown project role: {name}", details={'role': name})

    def role(self, scope: str, name) -> RoleDefinition:
        if scope == ORGANISATION_SCOPE:
            return self.org_role(name)
        return self.project_role(name)

    def validate_roles(self, scope: str, names: Iterable[str]) -> FrozenSet[str]:
        """Validate a collection of role names (or group names) and expand groups."""
        expanded = set()
        for name in names:
            if scope == PROJECT_SCOPE and name in self.groups:
                expanded |= self.groups[name]
            else:
                expanded.add(self.role(scope, name).name)
        return frozenset(expanded)

    def group(self, name: str) -> FrozenSet[str]:
        try:
            return self.groups[name]
        except KeyError:
            raise UnknownRole(f"Unknown role group: {name}", details={'group': name})

    # Capability metadata

    def level(self, role) -> int:
        """Advisory hierarchy level of a project role, 0 when it has none."""
        if role is None:
            return 0
        return self.project_role(role).level or 0

    def is_elevated_org_role(self, role) -> bool:
        if role is None:
            return False
        return self.org_role(role).elevated

    def has_min_role(self, role, min_role) -> bool:
        """
        Convenience check for UI gating: is role at or above min_role.

        Not used by the policy engine.
        """
        if role is None:
            return False
        return self.level(role) >= self.level(min_role)

    def elevated_org_roles(self) -> FrozenSet[str]:
        return frozenset(name for name, role in self.org_roles.items() if role.elevated)

    def org_role_choices(self) -> Tuple[Tuple[str, str], ...]:
        return tuple((role.name, role.label or role.name) for role in self.org_roles.values())

    def project_role_choices(self) -> Tuple[Tuple[str, str], ...]:
        return tuple((role.name, role.label or role.name) for role in self.project_roles.values())


DEFAULT_ROLE_CATALOG = {
    'organisation': [
        {'name': 'org_admin', 'label': 'Organisation Admin', 'level': 3, 'elevated': True},
        {'name': 'supplier_pm', 'label': 'Supplier PM', 'level': 2, 'elevated': True},
        {'name': 'org_member', 'label': 'Member', 'level': 1, 'elevated': False},
    ],
    'project': [
        {'name': 'supplier_pm', 'label': 'Supplier PM', 'level': 6, 'side': 'supplier'},
        {'name': 'supplier_finance', 'label': 'Supplier Finance', 'level': 5, 'side': 'supplier'},
        {'name': 'customer_pm', 'label': 'Customer PM', 'level': 4, 'side': 'customer'},
        {'name': 'customer_finance', 'label': 'Customer Finance', 'level': 3, 'side': 'customer'},
        {'name': 'contributor', 'label': 'Contributor', 'level': 2, 'side': 'supplier'},
        {'name': 'viewer', 'label': 'Viewer', 'level': 1},
    ],
    'groups': {
        'ALL_ROLES': [
            'supplier_pm', 'supplier_finance', 'customer_pm',
            'customer_finance', 'contributor', 'viewer',
        ],
        'MANAGERS': ['supplier_pm', 'customer_pm'],
        'SUPPLIER_SIDE': ['supplier_pm', 'supplier_finance'],
        'CUSTOMER_SIDE': ['customer_pm', 'customer_finance'],
        'WORKERS': ['supplier_pm', 'supplier_finance', 'customer_finance', 'contributor'],
        'ADMIN_ONLY': ['supplier_pm'],
    },
}

_catalog = None


def get_role_catalog() -> RoleCatalog:
    """
    Return the process role catalog built from settings.

    ACCESS_ROLE_CATALOG may be a mapping or a dotted path to one.
    """
    global _catalog
    if _catalog is None:
        config = getattr(settings, 'ACCESS_ROLE_CATALOG', None) or DEFAULT_ROLE_CATALOG
        if isinstance(config, str):
            config = import_string(config)
        _catalog = RoleCatalog.from_config(config)
        logger.info(
            "Role catalog loaded",
            extra={
                'org_roles': sorted(_catalog.org_roles),
                'project_roles': sorted(_catalog.project_roles),
            }
        )
    return _catalog


def reset_role_catalog():
    """Drop the loaded catalog so the next call re-reads settings."""
    global _catalog
    _catalog = None
