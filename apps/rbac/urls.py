"""
RBAC API URLs.

Provides endpoints for:
- Access checks and explanations
- Project team management
- Organisation membership management
"""
from django.urls import path
from apps.rbac.views import (
    AccessCheckView,
    AccessExplainView,
    ProjectMembersView,
    ProjectMemberDetailView,
    OrganisationMembersView,
    OrganisationMemberDetailView,
    OrganisationMemberDeactivateView,
    OrganisationMemberReactivateView,
)

app_name = 'rbac'

urlpatterns = [
    # Access endpoints
    path('access/check', AccessCheckView.as_view(), name='access-check'),
    path('access/explain', AccessExplainView.as_view(), name='access-explain'),

    # Project team endpoints
    path('projects/<uuid:project_id>/members', ProjectMembersView.as_view(), name='project-members'),
    path('projects/<uuid:project_id>/members/<uuid:user_id>', ProjectMemberDetailView.as_view(),
         name='project-member-detail'),

    # Organisation member endpoints
    path('organisations/<uuid:organisation_id>/members', OrganisationMembersView.as_view(),
         name='organisation-members'),
    path('organisations/<uuid:organisation_id>/members/<uuid:user_id>', OrganisationMemberDetailView.as_view(),
         name='organisation-member-detail'),
    path('organisations/<uuid:organisation_id>/members/<uuid:user_id>/deactivate',
         OrganisationMemberDeactivateView.as_view(), name='organisation-member-deactivate'),
    path('organisations/<uuid:organisation_id>/members/<uuid:user_id>/reactivate',
         OrganisationMemberReactivateView.as_view(), name='organisation-member-reactivate'),
]
