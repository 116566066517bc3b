"""
RBAC REST API views.

Implements endpoints for:
- Access checks and explanations
- Project team management (grants, role changes, removal)
- Organisation membership management (invites, role changes, deactivation)

Every mutation goes through the MembershipStore so cache invalidation and
the audit trail happen in one place.
"""
import logging

from django.shortcuts import get_object_or_404
from drf_spectacular.utils import OpenApiExample, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.exceptions import AccessDenied, LimitExceeded
from apps.core.permissions import HasResourceAccess, requires_access
from apps.rbac.engine import get_policy_engine
from apps.rbac.models import User
from apps.rbac.serializers import (
    AccessCheckSerializer, AddProjectMemberSerializer, ChangeOrganisationRoleSerializer,
    ChangeProjectRoleSerializer, DecisionSerializer, InviteOrganisationMemberSerializer,
    OrganisationMembershipSerializer, ProjectMembershipSerializer,
    ReactivateMemberSerializer, TraceSerializer,
)
from apps.tenants.limits import LIMIT_MEMBERS, check_limit
from apps.tenants.models import Organisation, Project

logger = logging.getLogger(__name__)


class AccessControlledView(APIView):
    """Base view for endpoints authorised by the policy engine."""

    permission_classes = [HasResourceAccess]

    def get_policy_engine(self):
        return get_policy_engine()

    @property
    def store(self):
        return self.get_policy_engine().store


# ===== ACCESS CHECKS =====

class AccessCheckView(APIView):
    """
    POST /v1/access/check

    Ask whether the caller may perform an action on a resource.
    Denials are ordinary 200 responses with allowed=false.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        tags=['Access'],
        summary='Check access',
        request=AccessCheckSerializer,
        responses={200: DecisionSerializer},
        examples=[
            OpenApiExample(
                'Delete own draft timesheet',
                value={
                    'action': 'delete',
                    'resource_type': 'timesheets',
                    'resource_id': '123e4567-e89b-12d3-a456-426614174000',
                },
                request_only=True,
            ),
        ],
    )
    def post(self, request):
        serializer = AccessCheckSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        decision = get_policy_engine().can(
            request.auth,
            serializer.validated_data['action'],
            serializer.to_ref(),
        )
        return Response(DecisionSerializer(decision).data)


class AccessExplainView(APIView):
    """
    POST /v1/access/explain

    Full evaluation trace for a decision. Platform superusers only, because
    the trace names internal rules.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        tags=['Access'],
        summary='Explain an access decision',
        request=AccessCheckSerializer,
        responses={200: TraceSerializer},
    )
    def post(self, request):
        if not request.auth.is_platform_superuser:
            raise AccessDenied("Restricted to platform administrators")

        serializer = AccessCheckSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        trace = get_policy_engine().explain(
            request.auth,
            serializer.validated_data['action'],
            serializer.to_ref(),
        )
        return Response(TraceSerializer(trace.as_dict()).data)


# ===== PROJECT TEAM =====

class ProjectMembersView(AccessControlledView):
    """
    GET  /v1/projects/{project_id}/members  - team listing (project_members:view)
    POST /v1/projects/{project_id}/members  - grant a role (project_members:create)
    """

    @extend_schema(tags=['Project Team'], summary='List project team',
                   responses={200: ProjectMembershipSerializer(many=True)})
    @requires_access('project_members', 'view')
    def get(self, request, project_id):
        project = get_object_or_404(Project, pk=project_id)
        members = self.store.list_project_team(project.pk)
        return Response({
            'count': len(members),
            'members': ProjectMembershipSerializer(members, many=True).data,
        })

    @extend_schema(tags=['Project Team'], summary='Add project member',
                   request=AddProjectMemberSerializer,
                   responses={201: ProjectMembershipSerializer})
    @requires_access('project_members', 'create')
    def post(self, request, project_id):
        project = get_object_or_404(Project, pk=project_id)
        serializer = AddProjectMemberSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = get_object_or_404(User, pk=serializer.validated_data['user_id'])
        self.store.add_member(
            user, project, serializer.validated_data['role'],
            actor=request.user, request=request,
        )

        membership = self.store.get_project_membership(user.pk, project.pk)
        return Response(ProjectMembershipSerializer(membership).data, status=status.HTTP_201_CREATED)


class ProjectMemberDetailView(AccessControlledView):
    """
    PATCH  /v1/projects/{project_id}/members/{user_id}  - change role (project_members:edit)
    DELETE /v1/projects/{project_id}/members/{user_id}  - remove grant (project_members:delete)
    """

    @extend_schema(tags=['Project Team'], summary='Change project role',
                   request=ChangeProjectRoleSerializer,
                   responses={200: ProjectMembershipSerializer})
    @requires_access('project_members', 'edit')
    def patch(self, request, project_id, user_id):
        project = get_object_or_404(Project, pk=project_id)
        user = get_object_or_404(User, pk=user_id)
        serializer = ChangeProjectRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        self.store.change_role(
            user, project, serializer.validated_data['role'],
            actor=request.user, request=request,
        )

        membership = self.store.get_project_membership(user.pk, project.pk)
        return Response(ProjectMembershipSerializer(membership).data)

    @extend_schema(tags=['Project Team'], summary='Remove project member', responses={204: None})
    @requires_access('project_members', 'delete')
    def delete(self, request, project_id, user_id):
        project = get_object_or_404(Project, pk=project_id)
        user = get_object_or_404(User, pk=user_id)

        self.store.remove_member(user, project, actor=request.user, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


# ===== ORGANISATION MEMBERS =====

class OrganisationMembersView(AccessControlledView):
    """
    GET  /v1/organisations/{organisation_id}/members  - member listing (organisation_members:view)
    POST /v1/organisations/{organisation_id}/members  - add a member (organisation_members:invite)

    Adding a member is refused with 403 when the organisation's subscription
    tier has no member seats left.
    """

    @extend_schema(tags=['Organisation Members'], summary='List organisation members',
                   responses={200: OrganisationMembershipSerializer(many=True)})
    @requires_access('organisation_members', 'view')
    def get(self, request, organisation_id):
        organisation = get_object_or_404(Organisation, pk=organisation_id)
        include_inactive = request.query_params.get('include_inactive') in ('1', 'true')
        members = self.store.list_org_members(organisation.pk, include_inactive=include_inactive)
        return Response({
            'count': len(members),
            'members': OrganisationMembershipSerializer(members, many=True).data,
        })

    @extend_schema(tags=['Organisation Members'], summary='Add organisation member',
                   request=InviteOrganisationMemberSerializer,
                   responses={201: OrganisationMembershipSerializer})
    @requires_access('organisation_members', 'invite')
    def post(self, request, organisation_id):
        organisation = get_object_or_404(Organisation, pk=organisation_id)
        serializer = InviteOrganisationMemberSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        limit = check_limit(organisation.pk, LIMIT_MEMBERS)
        if not limit.allowed:
            raise LimitExceeded(
                f"Member limit reached for this subscription ({limit.current}/{limit.max})",
                details={'limit_type': LIMIT_MEMBERS, 'current': limit.current, 'max': limit.max}
            )

        user = get_object_or_404(User, pk=serializer.validated_data['user_id'])
        self.store.add_org_member(
            user, organisation, serializer.validated_data['org_role'],
            actor=request.user, request=request,
        )

        membership = self.store.get_org_membership(user.pk, organisation.pk)
        return Response(OrganisationMembershipSerializer(membership).data, status=status.HTTP_201_CREATED)


class OrganisationMemberDetailView(AccessControlledView):
    """
    PATCH /v1/organisations/{organisation_id}/members/{user_id}  - change role (organisation_members:change_role)
    """

    @extend_schema(tags=['Organisation Members'], summary='Change organisation role',
                   request=ChangeOrganisationRoleSerializer,
                   responses={200: OrganisationMembershipSerializer})
    @requires_access('organisation_members', 'change_role')
    def patch(self, request, organisation_id, user_id):
        organisation = get_object_or_404(Organisation, pk=organisation_id)
        user = get_object_or_404(User, pk=user_id)
        serializer = ChangeOrganisationRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        self.store.change_role(
            user, organisation, serializer.validated_data['org_role'],
            actor=request.user, request=request,
        )

        membership = self.store.get_org_membership(user.pk, organisation.pk)
        return Response(OrganisationMembershipSerializer(membership).data)


class OrganisationMemberDeactivateView(AccessControlledView):
    """
    POST /v1/organisations/{organisation_id}/members/{user_id}/deactivate

    Ends the user's access to every project of the organisation at once.
    """

    @extend_schema(tags=['Organisation Members'], summary='Deactivate organisation member',
                   request=None, responses={200: OrganisationMembershipSerializer})
    @requires_access('organisation_members', 'deactivate')
    def post(self, request, organisation_id, user_id):
        organisation = get_object_or_404(Organisation, pk=organisation_id)
        user = get_object_or_404(User, pk=user_id)

        if user.pk == request.user.pk:
            raise AccessDenied("You cannot deactivate your own membership")

        self.store.deactivate(user, organisation, actor=request.user, request=request)

        membership = self.store.get_org_membership(user.pk, organisation.pk)
        return Response(OrganisationMembershipSerializer(membership).data)


class OrganisationMemberReactivateView(AccessControlledView):
    """
    POST /v1/organisations/{organisation_id}/members/{user_id}/reactivate

    Body: {"restore_projects": false}. Dormant project grants stay dormant
    unless restore_projects is true.
    """

    @extend_schema(tags=['Organisation Members'], summary='Reactivate organisation member',
                   request=ReactivateMemberSerializer,
                   responses={200: OrganisationMembershipSerializer})
    @requires_access('organisation_members', 'reactivate')
    def post(self, request, organisation_id, user_id):
        organisation = get_object_or_404(Organisation, pk=organisation_id)
        user = get_object_or_404(User, pk=user_id)
        serializer = ReactivateMemberSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        self.store.reactivate(
            user, organisation,
            restore_projects=serializer.validated_data['restore_projects'],
            actor=request.user, request=request,
        )

        membership = self.store.get_org_membership(user.pk, organisation.pk)
        return Response(OrganisationMembershipSerializer(membership).data)
