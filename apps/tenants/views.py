"""
Tenant REST API views.

Projects are managed as rows of their organisation: the organisation_projects
rules decide who may list, create and remove them. Creation is also bounded
by the organisation's subscription tier.
"""
import logging

from django.shortcuts import get_object_or_404
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.response import Response

from apps.core.exceptions import LimitExceeded
from apps.core.permissions import requires_access
from apps.rbac.context import ResourceRef
from apps.rbac.views import AccessControlledView
from apps.tenants.limits import LIMIT_PROJECTS, check_limit
from apps.tenants.models import Organisation, Project
from apps.tenants.serializers import CreateProjectSerializer, ProjectSerializer

logger = logging.getLogger(__name__)


class OrganisationProjectsView(AccessControlledView):
    """
    GET  /v1/organisations/{organisation_id}/projects  - project listing (organisation_projects:view)
    POST /v1/organisations/{organisation_id}/projects  - create a project (organisation_projects:create)

    Creating a project is refused with 403 when the organisation's
    subscription tier has no project slots left.
    """

    @extend_schema(tags=['Organisation Projects'], summary='List organisation projects',
                   responses={200: ProjectSerializer(many=True)})
    @requires_access('organisation_projects', 'view')
    def get(self, request, organisation_id):
        organisation = get_object_or_404(Organisation, pk=organisation_id)
        projects = list(Project.objects.for_organisation(organisation))
        return Response({
            'count': len(projects),
            'projects': ProjectSerializer(projects, many=True).data,
        })

    @extend_schema(tags=['Organisation Projects'], summary='Create project',
                   request=CreateProjectSerializer,
                   responses={201: ProjectSerializer})
    @requires_access('organisation_projects', 'create')
    def post(self, request, organisation_id):
        organisation = get_object_or_404(Organisation, pk=organisation_id)
        serializer = CreateProjectSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        limit = check_limit(organisation.pk, LIMIT_PROJECTS)
        if not limit.allowed:
            raise LimitExceeded(
                f"Project limit reached for this subscription ({limit.current}/{limit.max})",
                details={'limit_type': LIMIT_PROJECTS, 'current': limit.current, 'max': limit.max}
            )

        project = serializer.save(organisation=organisation)
        logger.info(
            f"Project created: {project.name}",
            extra={
                'project_id': str(project.pk),
                'organisation_id': str(organisation.pk),
                'actor_id': str(request.user.pk),
                'request_id': getattr(request, 'request_id', None),
            }
        )
        return Response(ProjectSerializer(project).data, status=status.HTTP_201_CREATED)


class OrganisationProjectDetailView(AccessControlledView):
    """
    DELETE /v1/organisations/{organisation_id}/projects/{project_id}  - remove (organisation_projects:delete)

    Projects are soft deleted; the rows under them stay for audit.
    """

    def get_access_ref(self, request, resource_type):
        # The project row decides the organisation, not the URL
        return ResourceRef(resource_type, resource_id=self.kwargs['project_id'])

    @extend_schema(tags=['Organisation Projects'], summary='Delete project', responses={204: None})
    @requires_access('organisation_projects', 'delete')
    def delete(self, request, organisation_id, project_id):
        project = get_object_or_404(Project, pk=project_id, organisation_id=organisation_id)
        project.delete()

        logger.info(
            f"Project deleted: {project.name}",
            extra={
                'project_id': str(project.pk),
                'organisation_id': str(organisation_id),
                'actor_id': str(request.user.pk),
                'request_id': getattr(request, 'request_id', None),
            }
        )
        return Response(status=status.HTTP_204_NO_CONTENT)
