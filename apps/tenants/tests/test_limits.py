"""
Tests for subscription limit checks.
"""
import pytest

from apps.tenants.limits import (
    LIMIT_MEMBERS, LIMIT_PROJECTS, check_limit, current_usage, get_tier_limit
)
from apps.tenants.models import Organisation, Project


@pytest.mark.django_db
class TestCheckLimit:
    """Test CheckLimit(organisation, limit type)."""

    def test_free_tier_unlimited(self, organisation, org_admin):
        result = check_limit(organisation.pk, LIMIT_MEMBERS)

        assert result.allowed is True
        assert result.is_unlimited is True
        assert result.current == 1

    def test_within_limit(self, organisation, project):
        organisation.subscription_tier = Organisation.TIER_STARTER
        organisation.save()

        result = check_limit(organisation.pk, LIMIT_PROJECTS)

        assert result.allowed is True
        assert (result.current, result.max) == (1, 5)

    def test_limit_reached(self, organisation, settings):
        settings.SUBSCRIPTION_TIER_LIMITS = {
            'free': {LIMIT_MEMBERS: None, LIMIT_PROJECTS: 2},
        }
        Project.objects.create(organisation=organisation, name='One')
        Project.objects.create(organisation=organisation, name='Two')

        result = check_limit(organisation.pk, LIMIT_PROJECTS)

        assert result.allowed is False
        assert (result.current, result.max) == (2, 2)

    def test_inactive_members_not_counted(self, organisation, make_user, add_org_member):
        add_org_member(make_user(), organisation)
        add_org_member(make_user(), organisation, is_active=False)

        assert current_usage(organisation.pk, LIMIT_MEMBERS) == 1

    def test_soft_deleted_projects_not_counted(self, organisation, project, second_project):
        second_project.delete()

        assert current_usage(organisation.pk, LIMIT_PROJECTS) == 1


class TestTierLimits:
    """Test tier limit lookup."""

    def test_unknown_tier_uses_free(self):
        assert get_tier_limit('platinum', LIMIT_MEMBERS) is None

    def test_professional_members(self):
        assert get_tier_limit(Organisation.TIER_PROFESSIONAL, LIMIT_MEMBERS) == 50

    def test_unknown_limit_type(self):
        with pytest.raises(ValueError):
            get_tier_limit(Organisation.TIER_FREE, 'storage')
