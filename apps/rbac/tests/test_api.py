"""
Tests for the RBAC REST API.

Covers authentication, access checks, explain, project team management and
organisation membership management, including how engine failures are
presented to clients.
"""
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest

from apps.core.exceptions import StoreUnavailable, UnknownRule
from apps.projects.models import Timesheet
from apps.rbac.models import AuditLog, OrganisationMembership, ProjectMembership


@pytest.fixture
def timesheet_for(project):
    def factory(owner, status='Draft'):
        return Timesheet.objects.create(project=project, created_by=owner, status=status,
                                        date=date(2024, 6, 3), hours=Decimal('8.0'))

    return factory


def members_url(project):
    return f'/v1/projects/{project.pk}/members'


def member_url(project, user):
    return f'/v1/projects/{project.pk}/members/{user.pk}'


def org_members_url(organisation):
    return f'/v1/organisations/{organisation.pk}/members'


@pytest.mark.django_db
class TestAuthentication:
    """Requests without a verified identity are rejected."""

    def test_missing_token(self, api_client, project):
        response = api_client.get(members_url(project))

        assert response.status_code == 401
        assert response['WWW-Authenticate'] == 'Bearer'

    def test_invalid_token(self, api_client, project):
        api_client.credentials(HTTP_AUTHORIZATION='Bearer not-a-token')

        response = api_client.get(members_url(project))

        assert response.status_code == 401

    def test_expired_token(self, client_for, org_admin, project):
        client = client_for(org_admin, expires_in=timedelta(seconds=-30))

        assert client.get(members_url(project)).status_code == 401

    def test_inactive_user(self, client_for, org_admin, project):
        org_admin.is_active = False
        org_admin.save()

        assert client_for(org_admin).get(members_url(project)).status_code == 401

    def test_failed_authentication_logged(self, api_client, project):
        api_client.credentials(HTTP_AUTHORIZATION='Bearer not-a-token')

        with patch('apps.core.authentication.SecurityLogger.log_authentication_failed') as log_failed:
            api_client.get(members_url(project))

        log_failed.assert_called_once()
        assert log_failed.call_args.kwargs['reason'] == 'Invalid token'


@pytest.mark.django_db
class TestAccessCheckAPI:
    """POST /v1/access/check"""

    def test_allowed(self, client_for, project_member, timesheet_for):
        contributor = project_member('contributor')
        entry = timesheet_for(contributor)

        response = client_for(contributor).post('/v1/access/check', {
            'action': 'delete',
            'resource_type': 'timesheets',
            'resource_id': str(entry.pk),
        }, format='json')

        assert response.status_code == 200
        assert response.data == {'allowed': True, 'reason': 'Allowed as owner in the current status'}

    def test_denied_is_not_an_error(self, client_for, project_member, timesheet_for):
        contributor = project_member('contributor')
        entry = timesheet_for(project_member('contributor'))

        response = client_for(contributor).post('/v1/access/check', {
            'action': 'delete',
            'resource_type': 'timesheets',
            'resource_id': str(entry.pk),
        }, format='json')

        assert response.status_code == 200
        assert response.data['allowed'] is False
        assert 'rule' not in response.data

    def test_attributes_rejected_for_stored_row(self, client_for, project_member, timesheet_for):
        contributor = project_member('contributor')
        entry = timesheet_for(project_member('contributor'), status='Submitted')

        response = client_for(contributor).post('/v1/access/check', {
            'action': 'delete',
            'resource_type': 'timesheets',
            'resource_id': str(entry.pk),
            'attributes': {'created_by_id': str(contributor.pk), 'status': 'Draft'},
        }, format='json')

        assert response.status_code == 400
        assert 'attributes' in response.data

    def test_create_with_project(self, client_for, project_member, project):
        viewer = project_member('viewer')

        response = client_for(viewer).post('/v1/access/check', {
            'action': 'create',
            'resource_type': 'timesheets',
            'project_id': str(project.pk),
        }, format='json')

        assert response.data['allowed'] is False

    def test_unknown_pair_rejected(self, client_for, org_admin, project):
        response = client_for(org_admin).post('/v1/access/check', {
            'action': 'archive',
            'resource_type': 'projects',
            'resource_id': str(project.pk),
        }, format='json')

        assert response.status_code == 400
        assert 'action' in response.data

    def test_reference_required(self, client_for, org_admin):
        response = client_for(org_admin).post('/v1/access/check', {
            'action': 'view',
            'resource_type': 'projects',
        }, format='json')

        assert response.status_code == 400

    def test_missing_resource(self, client_for, org_admin):
        response = client_for(org_admin).post('/v1/access/check', {
            'action': 'view',
            'resource_type': 'timesheets',
            'resource_id': '00000000-0000-0000-0000-000000000001',
        }, format='json')

        assert response.status_code == 404
        assert response.data['code'] == 'RESOURCE_NOT_FOUND'

    def test_configuration_error_is_generic(self, client_for, org_admin, project):
        with patch('apps.rbac.engine.PolicyEngine.can',
                   side_effect=UnknownRule('No access rule for projects:view')):
            response = client_for(org_admin).post('/v1/access/check', {
                'action': 'view',
                'resource_type': 'projects',
                'resource_id': str(project.pk),
            }, format='json')

        assert response.status_code == 500
        assert response.data['detail'] == 'An unexpected error occurred'
        assert 'projects:view' not in response.content.decode()

    def test_store_unavailable_is_retryable(self, client_for, org_admin, project):
        with patch('apps.rbac.engine.PolicyEngine.can', side_effect=StoreUnavailable('db down')):
            response = client_for(org_admin).post('/v1/access/check', {
                'action': 'view',
                'resource_type': 'projects',
                'resource_id': str(project.pk),
            }, format='json')

        assert response.status_code == 503
        assert response['Retry-After'] == '5'
        assert response.data['code'] == 'STORE_UNAVAILABLE'


@pytest.mark.django_db
class TestAccessExplainAPI:
    """POST /v1/access/explain"""

    def test_restricted_to_platform_superusers(self, client_for, org_admin, project):
        response = client_for(org_admin).post('/v1/access/explain', {
            'action': 'view',
            'resource_type': 'projects',
            'resource_id': str(project.pk),
        }, format='json')

        assert response.status_code == 403
        assert response.data['code'] == 'ACCESS_DENIED'

    def test_superuser_trace(self, client_for, superuser, project):
        response = client_for(superuser).post('/v1/access/explain', {
            'action': 'view',
            'resource_type': 'projects',
            'resource_id': str(project.pk),
        }, format='json')

        assert response.status_code == 200
        assert response.data['allowed'] is True
        assert response.data['rule'] == 'projects:view'
        assert response.data['effective_role'] == 'elevated'
        assert [step['clause'] for step in response.data['steps']] == [
            'global_role', 'tenancy', 'ownership', 'status', 'role_set',
        ]

    def test_superuser_claim_required(self, client_for, superuser, project):
        """The stored flag alone does not unlock explain."""
        response = client_for(superuser, is_platform_superuser=False).post('/v1/access/explain', {
            'action': 'view',
            'resource_type': 'projects',
            'resource_id': str(project.pk),
        }, format='json')

        assert response.status_code == 403


@pytest.mark.django_db
class TestProjectMembersAPI:
    """Project team endpoints."""

    def test_list_team(self, client_for, org_admin, project_member, project):
        project_member('viewer')
        project_member('contributor')

        response = client_for(org_admin).get(members_url(project))

        assert response.status_code == 200
        assert response.data['count'] == 2
        assert {m['role'] for m in response.data['members']} == {'viewer', 'contributor'}

    def test_list_denied_with_reason(self, client_for, project_member, project):
        viewer = project_member('viewer')

        response = client_for(viewer).get(members_url(project))

        assert response.status_code == 403
        assert response.data['detail'] == 'Role viewer cannot view project_members (failed: role_set)'

    def test_outsider_denied(self, client_for, make_user, project):
        response = client_for(make_user()).get(members_url(project))

        assert response.status_code == 403
        assert response.data['detail'] == 'No access to project (no organisation membership)'

    def test_add_member(self, client_for, org_admin, make_user, add_org_member, organisation, project):
        user = make_user()
        add_org_member(user, organisation)

        response = client_for(org_admin).post(members_url(project), {
            'user_id': str(user.pk),
            'role': 'contributor',
        }, format='json')

        assert response.status_code == 201
        assert response.data['role'] == 'contributor'
        assert response.data['role_label'] == 'Contributor'
        assert ProjectMembership.objects.filter(user=user, project=project, role='contributor').exists()
        entry = AuditLog.objects.get(action='project_member_added')
        assert entry.metadata['actor_id'] == str(org_admin.pk)
        assert entry.request_id

    def test_new_member_has_access_immediately(self, client_for, org_admin, make_user, add_org_member,
                                               organisation, project):
        user = make_user()
        add_org_member(user, organisation)
        check = {'action': 'view', 'resource_type': 'projects', 'resource_id': str(project.pk)}
        assert client_for(user).post('/v1/access/check', check, format='json').data['allowed'] is False

        client_for(org_admin).post(members_url(project), {'user_id': str(user.pk), 'role': 'viewer'},
                                   format='json')

        assert client_for(user).post('/v1/access/check', check, format='json').data['allowed'] is True

    def test_add_unknown_role(self, client_for, org_admin, project_member, project):
        user = project_member('viewer')

        response = client_for(org_admin).post(members_url(project), {
            'user_id': str(user.pk),
            'role': 'project_admin',
        }, format='json')

        assert response.status_code == 400
        assert 'role' in response.data

    def test_add_non_member_conflicts(self, client_for, org_admin, make_user, project):
        response = client_for(org_admin).post(members_url(project), {
            'user_id': str(make_user().pk),
            'role': 'viewer',
        }, format='json')

        assert response.status_code == 409
        assert response.data['code'] == 'MEMBERSHIP_CONFLICT'

    def test_supplier_pm_grant_manages_team(self, client_for, project_member, make_user, add_org_member,
                                            organisation, project):
        supplier_pm = project_member('supplier_pm')
        user = make_user()
        add_org_member(user, organisation)

        response = client_for(supplier_pm).post(members_url(project), {
            'user_id': str(user.pk),
            'role': 'viewer',
        }, format='json')

        assert response.status_code == 201

    def test_customer_pm_cannot_manage_team(self, client_for, project_member, project):
        customer_pm = project_member('customer_pm')
        viewer = project_member('viewer')

        response = client_for(customer_pm).patch(member_url(project, viewer), {'role': 'contributor'},
                                                 format='json')

        assert response.status_code == 403

    def test_change_role(self, client_for, org_admin, project_member, project):
        user = project_member('viewer')

        response = client_for(org_admin).patch(member_url(project, user), {'role': 'customer_pm'},
                                               format='json')

        assert response.status_code == 200
        assert response.data['role'] == 'customer_pm'

    def test_remove_member(self, client_for, org_admin, project_member, project):
        user = project_member('viewer')
        client = client_for(org_admin)

        response = client.delete(member_url(project, user))

        assert response.status_code == 204
        assert not ProjectMembership.objects.filter(user=user, project=project).exists()
        assert client.delete(member_url(project, user)).status_code == 404

    def test_unknown_project(self, client_for, superuser):
        response = client_for(superuser).get('/v1/projects/00000000-0000-0000-0000-000000000001/members')

        assert response.status_code == 404

    def test_store_unavailable_during_authorisation(self, client_for, org_admin, project):
        with patch('apps.rbac.engine.PolicyEngine.can', side_effect=StoreUnavailable('db down')):
            response = client_for(org_admin).get(members_url(project))

        assert response.status_code == 503
        assert response['Retry-After'] == '5'


@pytest.mark.django_db
class TestOrganisationMembersAPI:
    """Organisation membership endpoints."""

    def test_member_lists_members(self, client_for, org_admin, project_member, organisation):
        member = project_member('viewer')

        response = client_for(member).get(org_members_url(organisation))

        assert response.status_code == 200
        assert response.data['count'] == 2

    def test_include_inactive(self, client_for, org_admin, make_user, add_org_member, organisation):
        add_org_member(make_user(), organisation, is_active=False)

        response = client_for(org_admin).get(org_members_url(organisation), {'include_inactive': 'true'})

        assert response.data['count'] == 2

    def test_invite(self, client_for, org_admin, make_user, organisation):
        user = make_user()

        response = client_for(org_admin).post(org_members_url(organisation), {
            'user_id': str(user.pk),
            'org_role': 'org_member',
        }, format='json')

        assert response.status_code == 201
        assert response.data['org_role'] == 'org_member'
        assert response.data['is_active'] is True

    def test_member_cannot_invite(self, client_for, project_member, make_user, organisation):
        member = project_member('supplier_pm')

        response = client_for(member).post(org_members_url(organisation), {
            'user_id': str(make_user().pk),
            'org_role': 'org_member',
        }, format='json')

        assert response.status_code == 403
        assert response.data['detail'] == 'Role org_member cannot invite organisation_members (failed: role_set)'

    def test_invite_over_limit(self, client_for, org_admin, make_user, organisation, settings):
        settings.SUBSCRIPTION_TIER_LIMITS = {
            'free': {'members': 1, 'projects': None},
        }

        response = client_for(org_admin).post(org_members_url(organisation), {
            'user_id': str(make_user().pk),
            'org_role': 'org_member',
        }, format='json')

        assert response.status_code == 403
        assert response.data['code'] == 'LIMIT_EXCEEDED'
        assert OrganisationMembership.objects.filter(organisation=organisation).count() == 1

    def test_change_org_role(self, client_for, org_admin, project_member, organisation):
        member = project_member('viewer')

        response = client_for(org_admin).patch(f'{org_members_url(organisation)}/{member.pk}',
                                               {'org_role': 'supplier_pm'}, format='json')

        assert response.status_code == 200
        assert response.data['org_role'] == 'supplier_pm'

    def test_deactivate_and_reactivate(self, client_for, org_admin, project_member, organisation, project):
        member = project_member('contributor')
        url = f'{org_members_url(organisation)}/{member.pk}'

        response = client_for(org_admin).post(f'{url}/deactivate')
        assert response.status_code == 200
        assert response.data['is_active'] is False

        denied = client_for(member).get(org_members_url(organisation))
        assert denied.status_code == 403
        assert denied.data['detail'] == 'No access to organisation (organisation membership inactive)'

        response = client_for(org_admin).post(f'{url}/reactivate', {'restore_projects': True}, format='json')
        assert response.status_code == 200
        assert response.data['is_active'] is True
        assert ProjectMembership.objects.get(user=member, project=project).is_dormant is False

    def test_cannot_deactivate_self(self, client_for, org_admin, organisation):
        response = client_for(org_admin).post(f'{org_members_url(organisation)}/{org_admin.pk}/deactivate')

        assert response.status_code == 403
        assert OrganisationMembership.objects.get(user=org_admin).is_active is True

    def test_reactivate_active_member(self, client_for, org_admin, project_member, organisation):
        member = project_member('viewer')

        response = client_for(org_admin).post(f'{org_members_url(organisation)}/{member.pk}/reactivate',
                                              {}, format='json')

        assert response.status_code == 409

    def test_other_organisation_denied(self, client_for, org_admin, other_organisation):
        response = client_for(org_admin).get(org_members_url(other_organisation))

        assert response.status_code == 403
