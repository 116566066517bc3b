"""
Tenant API URLs.
"""
from django.urls import path
from apps.tenants.views import OrganisationProjectsView, OrganisationProjectDetailView

app_name = 'tenants'

urlpatterns = [
    path('organisations/<uuid:organisation_id>/projects', OrganisationProjectsView.as_view(),
         name='organisation-projects'),
    path('organisations/<uuid:organisation_id>/projects/<uuid:project_id>',
         OrganisationProjectDetailView.as_view(), name='organisation-project-detail'),
]
