"""
DRF permission classes and decorators for access engine enforcement.

This module provides:
- HasResourceAccess: DRF permission class that asks the policy engine
- @requires_access: Decorator to declare the (resource type, action) a view needs
"""
import logging

from rest_framework.permissions import BasePermission

from apps.core.logging import SecurityLogger

logger = logging.getLogger(__name__)


class HasResourceAccess(BasePermission):
    """
    DRF permission class that enforces access rules on API endpoints.

    This permission class:
    1. Reads the (resource type, action) declared with @requires_access
    2. Builds a ResourceRef for the request (view.get_access_ref or URL kwargs)
    3. Calls PolicyEngine.can() with the verified UserContext on request.auth
    4. Returns 403 with the decision reason on a deny

    Usage in views:
        class ProjectMembersView(APIView):
            permission_classes = [HasResourceAccess]

            @requires_access('project_members', 'view')
            def get(self, request, project_id):
                pass

    A view without a declared rule is denied.
    """

    message = 'Access denied'

    def has_permission(self, request, view):
        """
        Args:
            request: DRF request; request.auth holds the UserContext
            view: DRF view instance

        Returns:
            bool: True if the engine allows the action

        Raises:
            UnknownRule, AmbiguousResource, StoreUnavailable: from the engine
        """
        from apps.rbac.context import UserContext

        ctx = request.auth
        if not isinstance(ctx, UserContext):
            return False

        rule = _declared_rule(request, view)
        if rule is None:
            SecurityLogger.log_configuration_error(
                error_code='UNDECLARED_ACCESS_RULE',
                message=f"{view.__class__.__name__}.{request.method.lower()} declares no access rule",
                request_id=getattr(request, 'request_id', None),
            )
            return False

        resource_type, action = rule
        ref = self._build_ref(request, view, resource_type)
        decision = self._engine(view).can(ctx, action, ref)

        if not decision.allowed:
            self.message = decision.reason
            SecurityLogger.log_access_denied(
                user_id=ctx.user_id,
                action=action,
                resource_type=resource_type,
                resource_id=ref.resource_id,
                reason=decision.reason,
                rule=decision.rule,
                request_id=getattr(request, 'request_id', None),
            )
            return False

        logger.debug(
            f"Access granted: {resource_type}:{action}",
            extra={
                'view': view.__class__.__name__,
                'rule': decision.rule,
                'request_id': getattr(request, 'request_id', None),
            }
        )
        return True

    def _build_ref(self, request, view, resource_type):
        from apps.rbac.context import ResourceRef

        if hasattr(view, 'get_access_ref'):
            return view.get_access_ref(request, resource_type)
        return ResourceRef(
            resource_type,
            resource_id=view.kwargs.get('resource_id'),
            project_id=view.kwargs.get('project_id'),
            organisation_id=view.kwargs.get('organisation_id'),
        )

    def _engine(self, view):
        if hasattr(view, 'get_policy_engine'):
            return view.get_policy_engine()
        from apps.rbac.engine import get_policy_engine
        return get_policy_engine()


def _declared_rule(request, view):
    handler = getattr(view, request.method.lower(), None)
    return getattr(handler, 'access_rule', None) or getattr(view, 'access_rule', None)


def requires_access(resource_type, action):
    """
    Decorator to declare the access rule a view class or handler method needs.

    Usage:
        @requires_access('organisation_members', 'view')
        class OrganisationMembersView(APIView):
            permission_classes = [HasResourceAccess]

    Or on individual methods:
        class OrganisationMembersView(APIView):
            permission_classes = [HasResourceAccess]

            @requires_access('organisation_members', 'view')
            def get(self, request, organisation_id):
                pass

            @requires_access('organisation_members', 'invite')
            def post(self, request, organisation_id):
                pass

    Args:
        resource_type: Resource type name in the rule table
        action: Action name in the rule table

    Returns:
        Decorator function that sets the access_rule attribute
    """
    def decorator(view_or_method):
        view_or_method.access_rule = (resource_type, action)
        return view_or_method

    return decorator
