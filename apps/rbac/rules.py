"""
Declarative access rules.

Every (resource type, action) pair maps to exactly one RuleSpec. A RuleSpec
combines up to four optional clauses, evaluated by the PolicyEngine in a
fixed order: global role, ownership, status, role set. A rule may also
require the row to be in given statuses before any clause can allow it.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from django.conf import settings
from django.utils.module_loading import import_string

from apps.core.exceptions import UnknownRole, UnknownRule
from apps.rbac.context import PLATFORM_SUPERUSER
from apps.rbac.roles import PROJECT_SCOPE, RoleCatalog, get_role_catalog

logger = logging.getLogger(__name__)

GLOBAL_ROLES = frozenset({PLATFORM_SUPERUSER})


@dataclass(frozen=True)
class RuleSpec:
    """
    What is required to perform one action on one resource type.

    Args:
        resource_type: Resource type name
        action: Action name
        allowed_roles: Roles that pass the role-set clause
        ownership_field: Attribute holding the owner's user id
        self_service_roles: Roles that may act on rows they own
        status_override: Statuses in which the owner may act; None means
            ownership alone is enough
        status_field: Attribute holding the row status
        required_status: Statuses the row must be in for anyone to act,
            elevated and platform users included; None means any status
        global_role: Platform-wide role that decides the rule on its own
        roles_by_attribute: (attribute, {value: roles}) selecting the
            allowed roles from a row attribute
        scope: 'project' or 'organisation'; organisation rules name
            organisation roles
        rule_id: Stable identifier reported in decisions and audit records
    """

    resource_type: str
    action: str
    allowed_roles: FrozenSet[str] = frozenset()
    ownership_field: Optional[str] = None
    self_service_roles: FrozenSet[str] = frozenset()
    status_override: Optional[FrozenSet[str]] = None
    status_field: str = 'status'
    required_status: Optional[FrozenSet[str]] = None
    global_role: Optional[str] = None
    roles_by_attribute: Optional[Tuple[str, Mapping[Any, FrozenSet[str]]]] = None
    scope: str = PROJECT_SCOPE
    rule_id: str = ''

    def roles_for(self, attributes: Mapping[str, Any]) -> FrozenSet[str]:
        """Allowed roles for a row, honouring roles_by_attribute."""
        if self.roles_by_attribute is None:
            return self.allowed_roles
        attribute, mapping = self.roles_by_attribute
        value = attributes.get(attribute)
        if value in mapping:
            return mapping[value]
        return self.allowed_roles


def _as_role_names(value) -> Iterable[str]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return value


def _as_statuses(value) -> Optional[FrozenSet[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        value = (value,)
    return frozenset(value)


class RuleTable:
    """
    Immutable lookup of RuleSpecs by (resource type, action).

    Built once from configuration. Role names and group names are validated
    against the RoleCatalog while loading, so evaluation never meets an
    unknown role.
    """

    def __init__(self, rules: Iterable[RuleSpec]):
        self._rules: Dict[Tuple[str, str], RuleSpec] = {}
        for rule in rules:
            key = (rule.resource_type, rule.action)
            if key in self._rules:
                raise UnknownRule(
                    f"Duplicate rule for {rule.resource_type}:{rule.action}",
                    details={'resource_type': rule.resource_type, 'action': rule.action}
                )
            self._rules[key] = rule

    def __len__(self):
        return len(self._rules)

    def __iter__(self):
        return iter(self._rules.values())

    @classmethod
    def from_config(cls, data: Mapping[str, Mapping[str, Any]], catalog: Optional[RoleCatalog] = None):
        """
        Build a table from nested rule data.

        Args:
            data: {resource_type: {action: roles-or-dict}}. A list (or group
                name) is shorthand for {'roles': ...}. Dict keys: roles,
                ownership_field, self_service, status, status_field,
                requires_status, global_role, roles_by_attribute, scope
            catalog: RoleCatalog used to validate role names

        Returns:
            RuleTable

        Raises:
            UnknownRole: a rule names a role or group the catalog lacks
        """
        catalog = catalog or get_role_catalog()
        rules = []
        for resource_type, actions in data.items():
            for action, entry in actions.items():
                rules.append(cls._build_rule(catalog, resource_type, action, entry))
        table = cls(rules)
        logger.info(
            "Access rules loaded",
            extra={'rule_count': len(table), 'resource_type_count': len(table.resource_types())}
        )
        return table

    @staticmethod
    def _build_rule(catalog, resource_type, action, entry) -> RuleSpec:
        if not isinstance(entry, Mapping):
            entry = {'roles': entry}

        scope = entry.get('scope', PROJECT_SCOPE)
        rule_id = f"{resource_type}:{action}"

        try:
            allowed_roles = catalog.validate_roles(scope, _as_role_names(entry.get('roles')))
            self_service = catalog.validate_roles(scope, _as_role_names(entry.get('self_service')))

            roles_by_attribute = None
            if entry.get('roles_by_attribute'):
                attribute, mapping = entry['roles_by_attribute']
                roles_by_attribute = (
                    attribute,
                    {value: catalog.validate_roles(scope, _as_role_names(roles))
                     for value, roles in mapping.items()},
                )
        except UnknownRole as e:
            raise UnknownRole(
                f"Rule {rule_id} references an unknown role: {e.message}",
                details={'rule': rule_id, **e.details}
            ) from e

        global_role = entry.get('global_role')
        if global_role is not None and global_role not in GLOBAL_ROLES:
            raise UnknownRole(
                f"Rule {rule_id} references an unknown platform role: {global_role}",
                details={'rule': rule_id, 'role': global_role}
            )

        status = _as_statuses(entry.get('status'))
        required_status = _as_statuses(entry.get('requires_status'))

        return RuleSpec(
            resource_type=resource_type,
            action=action,
            allowed_roles=allowed_roles,
            ownership_field=entry.get('ownership_field'),
            self_service_roles=self_service,
            status_override=status,
            status_field=entry.get('status_field', 'status'),
            required_status=required_status,
            global_role=global_role,
            roles_by_attribute=roles_by_attribute,
            scope=scope,
            rule_id=rule_id,
        )

    def get(self, resource_type: str, action: str) -> RuleSpec:
        """
        Return the rule for a pair.

        Raises:
            UnknownRule: the pair has no rule (configuration error)
        """
        try:
            return self._rules[(resource_type, action)]
        except KeyError:
            raise UnknownRule(
                f"No access rule for {resource_type}:{action}",
                details={'resource_type': resource_type, 'action': action}
            )

    def actions_for(self, resource_type: str) -> Tuple[str, ...]:
        return tuple(sorted(action for rtype, action in self._rules if rtype == resource_type))

    def resource_types(self) -> FrozenSet[str]:
        return frozenset(rtype for rtype, _ in self._rules)

    def permissions_for_role(self, role: str, scope: str = PROJECT_SCOPE) -> Dict[str, Tuple[str, ...]]:
        """
        Actions a role passes through the role-set clause, per resource type.

        Used to describe a role in the UI. Ownership and global-role clauses
        are not reflected.
        """
        permissions: Dict[str, list] = {}
        for rule in self._rules.values():
            if rule.scope != scope or rule.global_role is not None:
                continue
            roles = set(rule.allowed_roles)
            if rule.roles_by_attribute is not None:
                for mapped in rule.roles_by_attribute[1].values():
                    roles |= mapped
            if role in roles:
                permissions.setdefault(rule.resource_type, []).append(rule.action)
        return {rtype: tuple(sorted(actions)) for rtype, actions in sorted(permissions.items())}

    def check_total(self, resolver):
        """
        Compare rule coverage with the resolver's resource types.

        Returns:
            (types with rules but no binding, types with a binding but no rules)
        """
        ruled = self.resource_types()
        bound = resolver.resource_types()
        return tuple(sorted(ruled - bound)), tuple(sorted(bound - ruled))


_rule_table = None


def get_rule_table() -> RuleTable:
    """Process rule table loaded from settings.ACCESS_RULES (dotted path or mapping)."""
    global _rule_table
    if _rule_table is None:
        data = getattr(settings, 'ACCESS_RULES', 'apps.rbac.rule_data.DEFAULT_RULES')
        if isinstance(data, str):
            data = import_string(data)
        _rule_table = RuleTable.from_config(data)
    return _rule_table


def reset_rule_table():
    global _rule_table
    _rule_table = None

