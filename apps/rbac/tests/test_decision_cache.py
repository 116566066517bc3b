"""
Tests for the decision cache and membership invalidation signals.
"""
import uuid
from unittest.mock import MagicMock, patch

import pytest

from apps.rbac.decision_cache import DecisionCache
from apps.rbac.membership import EffectiveAccess
from apps.rbac.models import OrganisationMembership, ProjectMembership
from apps.rbac.signals import (
    InvalidationEvent, membership_changed, organisation_event, project_event, publish_invalidation
)

PRESENT = EffectiveAccess(present=True, project_role='viewer', reason='project role viewer')


class TestDecisionCache:
    """Test memoisation and exact-key invalidation."""

    def test_key_format(self):
        user_id, project_id = uuid.uuid4(), uuid.uuid4()

        assert DecisionCache.key(user_id, project_id) == f"access:effective:{user_id}:{project_id}"

    def test_get_or_resolve_memoises(self, decision_cache):
        resolve = MagicMock(return_value=PRESENT)

        first = decision_cache.get_or_resolve('u1', 'p1', resolve)
        second = decision_cache.get_or_resolve('u1', 'p1', resolve)

        assert first == second == PRESENT
        resolve.assert_called_once()

    def test_resolve_errors_not_cached(self, decision_cache):
        resolve = MagicMock(side_effect=RuntimeError('store down'))

        with pytest.raises(RuntimeError):
            decision_cache.get_or_resolve('u1', 'p1', resolve)

        assert decision_cache.get('u1', 'p1') is None

    def test_invalidate_drops_exact_keys(self, decision_cache):
        decision_cache.set('u1', 'p1', PRESENT)
        decision_cache.set('u1', 'p2', PRESENT)
        decision_cache.set('u2', 'p1', PRESENT)

        decision_cache.invalidate(InvalidationEvent(scope='project', user_id='u1', tenant_id='p1',
                                                    keys=(('u1', 'p1'),)))

        assert decision_cache.get('u1', 'p1') is None
        assert decision_cache.get('u1', 'p2') == PRESENT
        assert decision_cache.get('u2', 'p1') == PRESENT

    def test_subscribed_to_membership_changes(self, decision_cache):
        decision_cache.set('u1', 'p1', PRESENT)

        publish_invalidation(InvalidationEvent(scope='project', user_id='u1', tenant_id='p1',
                                               keys=(('u1', 'p1'),)))

        assert decision_cache.get('u1', 'p1') is None

    def test_unsubscribed_cache_ignores_events(self):
        # Entries live in the shared backend, so check this instance's handler
        cache = DecisionCache(ttl=5, subscribe=False)
        subscribed = DecisionCache(ttl=5)

        with patch.object(cache, 'invalidate_keys') as ignored, \
                patch.object(subscribed, 'invalidate_keys', return_value=True) as handled:
            publish_invalidation(project_event('u1', 'p1'))

        ignored.assert_not_called()
        handled.assert_called_once_with((('u1', 'p1'),))

    def test_backend_outage_is_a_miss(self, decision_cache):
        resolve = MagicMock(return_value=PRESENT)

        with patch('apps.core.cache.caches') as caches:
            caches.__getitem__.return_value.get.side_effect = ConnectionError('redis down')
            caches.__getitem__.return_value.set.side_effect = ConnectionError('redis down')
            assert decision_cache.get_or_resolve('u1', 'p1', resolve) == PRESENT
            assert decision_cache.get_or_resolve('u1', 'p1', resolve) == PRESENT

        assert resolve.call_count == 2

    def test_failed_invalidation_logged(self, decision_cache):
        with patch.object(decision_cache._cache, 'delete_many', return_value=False), \
                patch('apps.rbac.decision_cache.logger') as logger:
            ok = decision_cache.invalidate(project_event('u1', 'p1'))

        assert ok is False
        logger.error.assert_called_once()
        assert logger.error.call_args.kwargs['extra']['ttl'] == 5

    def test_ttl_from_settings(self, settings):
        settings.ACCESS_DECISION_CACHE_TTL = 2

        assert DecisionCache(subscribe=False).ttl == 2


@pytest.mark.django_db
class TestInvalidationEvents:
    """Test event construction and model-level publication."""

    def test_organisation_event_covers_every_project(self, organisation, project, second_project, other_project):
        user_id = uuid.uuid4()

        event = organisation_event(user_id, organisation.pk)

        assert event.scope == 'organisation'
        assert event.tenant_id == organisation.pk
        assert set(event.keys) == {(user_id, project.pk), (user_id, second_project.pk)}

    def test_organisation_event_includes_soft_deleted_projects(self, organisation, project):
        project.delete()

        event = organisation_event('u1', organisation.pk)

        assert event.keys == (('u1', project.pk),)

    def test_direct_grant_write_invalidates(self, decision_cache, project_member, project):
        user = project_member('viewer')
        decision_cache.set(user.pk, project.pk, PRESENT)

        ProjectMembership.objects.get(user=user, project=project).delete()

        assert decision_cache.get(user.pk, project.pk) is None

    def test_direct_org_write_invalidates(self, decision_cache, org_admin, organisation, project):
        decision_cache.set(org_admin.pk, project.pk, PRESENT)
        membership = OrganisationMembership.objects.get(user=org_admin, organisation=organisation)

        membership.is_active = False
        membership.save()

        assert decision_cache.get(org_admin.pk, project.pk) is None

    def test_signal_carries_event(self, project_member, project):
        received = []

        def receiver(sender, event, **kwargs):
            received.append(event)

        membership_changed.connect(receiver)
        try:
            user = project_member('viewer')
        finally:
            membership_changed.disconnect(receiver)

        assert project_event(user.pk, project.pk) in received
