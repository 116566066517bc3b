"""
Pytest configuration and fixtures.
"""
import itertools
from datetime import datetime, timedelta, timezone as dt_timezone

import jwt
import pytest
from django.conf import settings
from django.core.management import call_command


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'access-engine-tests',
        }
    }
    settings.CELERY_TASK_ALWAYS_EAGER = True
    settings.CELERY_TASK_EAGER_PROPAGATES = False
    settings.ACCESS_AUDIT_SINK = 'apps.rbac.audit.NullAuditSink'


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database (apps without migrations are synced)."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture(autouse=True)
def reset_access_state():
    """Fresh cache and process-wide engine for every test."""
    from django.core.cache import cache
    from apps.rbac.engine import reset_policy_engine
    from apps.rbac.roles import reset_role_catalog
    from apps.rbac.rules import reset_rule_table

    cache.clear()
    reset_policy_engine()
    reset_rule_table()
    reset_role_catalog()
    yield
    cache.clear()
    reset_policy_engine()


class RecordingAuditSink:
    """Audit sink that keeps records in memory."""

    def __init__(self):
        self.records = []

    def record(self, record):
        self.records.append(record)


_sequence = itertools.count(1)


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def make_user(db):
    """Factory for users."""
    from apps.rbac.models import User

    def factory(email=None, is_superuser=False, **extra):
        email = email or f"user{next(_sequence)}@example.com"
        return User.objects.create_user(email=email, is_superuser=is_superuser, **extra)

    return factory


@pytest.fixture
def organisation(db):
    """Create a test organisation."""
    from apps.tenants.models import Organisation
    return Organisation.objects.create(name='Test Organisation', slug='test-organisation')


@pytest.fixture
def other_organisation(db):
    """Create another organisation for isolation tests."""
    from apps.tenants.models import Organisation
    return Organisation.objects.create(name='Other Organisation', slug='other-organisation')


@pytest.fixture
def project(organisation):
    """Create a project in the test organisation."""
    from apps.tenants.models import Project
    return Project.objects.create(organisation=organisation, name='Network Upgrade', reference='NU-001')


@pytest.fixture
def second_project(organisation):
    """Create a second project in the test organisation."""
    from apps.tenants.models import Project
    return Project.objects.create(organisation=organisation, name='Data Centre Move', reference='DC-002')


@pytest.fixture
def other_project(other_organisation):
    """Create a project in the other organisation."""
    from apps.tenants.models import Project
    return Project.objects.create(organisation=other_organisation, name='Other Project', reference='OT-001')


@pytest.fixture
def add_org_member(db):
    """Factory creating an organisation membership row directly."""
    from apps.rbac.models import OrganisationMembership

    def factory(user, organisation, org_role='org_member', is_active=True):
        return OrganisationMembership.objects.create(
            user=user, organisation=organisation, org_role=org_role, is_active=is_active
        )

    return factory


@pytest.fixture
def grant(db):
    """Factory creating a project grant row directly."""
    from apps.rbac.models import ProjectMembership

    def factory(user, project, role='contributor', is_dormant=False):
        return ProjectMembership.objects.create(
            user=user, project=project, role=role, is_dormant=is_dormant
        )

    return factory


@pytest.fixture
def project_member(make_user, add_org_member, grant, organisation, project):
    """Factory for a standard org member with a grant on the test project."""

    def factory(role='contributor', email=None):
        user = make_user(email=email)
        add_org_member(user, organisation, 'org_member')
        grant(user, project, role)
        return user

    return factory


@pytest.fixture
def org_admin(make_user, add_org_member, organisation):
    """Elevated organisation member without project grants."""
    user = make_user(email='admin@example.com')
    add_org_member(user, organisation, 'org_admin')
    return user


@pytest.fixture
def superuser(make_user):
    return make_user(email='root@example.com', is_superuser=True)


@pytest.fixture
def ctx():
    """Build a UserContext for a user."""
    from apps.rbac.context import UserContext

    def factory(user, is_platform_superuser=None):
        if is_platform_superuser is None:
            is_platform_superuser = user.is_superuser
        return UserContext(user_id=user.pk, is_platform_superuser=is_platform_superuser)

    return factory


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def decision_cache():
    from apps.rbac.decision_cache import DecisionCache
    return DecisionCache(ttl=5)


@pytest.fixture
def store(decision_cache):
    from apps.rbac.membership import MembershipStore
    return MembershipStore(cache=decision_cache)


@pytest.fixture
def engine(store, audit_sink):
    """PolicyEngine with the default rules, a real cache and a recording audit sink."""
    from apps.rbac.engine import PolicyEngine
    from apps.rbac.resolver import ResourceResolver
    from apps.rbac.rules import get_rule_table

    return PolicyEngine(
        rules=get_rule_table(),
        resolver=ResourceResolver(),
        store=store,
        audit_sink=audit_sink,
    )


@pytest.fixture
def make_token():
    """Issue a token the way the identity provider does."""

    def factory(user, is_platform_superuser=None, expires_in=timedelta(hours=1), **claims):
        if is_platform_superuser is None:
            is_platform_superuser = user.is_superuser
        now = datetime.now(dt_timezone.utc)
        payload = {
            'user_id': str(user.pk),
            'is_platform_superuser': is_platform_superuser,
            'iat': now,
            'exp': now + expires_in,
            **claims,
        }
        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    return factory


@pytest.fixture
def client_for(api_client, make_token):
    """Return an API client authenticated as a user."""

    def factory(user, **token_kwargs):
        api_client.credentials(HTTP_AUTHORIZATION=f"Bearer {make_token(user, **token_kwargs)}")
        return api_client

    return factory
