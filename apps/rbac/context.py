"""
Request-independent inputs of an access decision.
"""
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Mapping, Optional

PLATFORM_SUPERUSER = 'platform_superuser'


@dataclass(frozen=True)
class UserContext:
    """
    Verified caller identity.

    Built from the identity provider's answer, never from client input.
    """

    user_id: Any
    is_platform_superuser: bool = False
    request_id: Optional[str] = None

    @property
    def platform_roles(self) -> FrozenSet[str]:
        """Platform-wide roles used by global-role override clauses."""
        if self.is_platform_superuser:
            return frozenset({PLATFORM_SUPERUSER})
        return frozenset()

    @classmethod
    def for_user(cls, user, request_id=None):
        """Context for a persisted user (workers, management commands, tests)."""
        return cls(user_id=user.pk, is_platform_superuser=user.is_superuser, request_id=request_id)


@dataclass(frozen=True)
class ResourceRef:
    """
    Reference to the resource a decision is about.

    resource_id is enough for rows that exist. For actions on rows that do
    not exist yet (create) pass project_id (or organisation_id for
    organisation-scoped types) and any attributes the rule needs.
    Attributes are ignored once resource_id is set: a stored row is always
    judged by its stored values.
    """

    resource_type: str
    resource_id: Any = None
    project_id: Any = None
    organisation_id: Any = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __str__(self):
        return f"{self.resource_type}:{self.resource_id or self.project_id or self.organisation_id}"
