"""
Tests for audit sinks, the audit task and the append-only audit log.
"""
import uuid
from unittest.mock import patch

import pytest
from django.db import DatabaseError
from django.test import override_settings

from apps.core.tasks import LoggedTask
from apps.rbac.audit import (
    AuditRecord, CeleryAuditSink, LoggingAuditSink, NullAuditSink, get_audit_sink
)
from apps.rbac.models import AuditLog
from apps.rbac.tasks import record_access_decision


def make_record(**overrides):
    data = {
        'user_id': uuid.uuid4(),
        'action': 'delete',
        'resource_type': 'timesheets',
        'resource_id': uuid.uuid4(),
        'allowed': False,
        'reason': 'Role viewer cannot delete timesheets (failed: role_set)',
        'matched_rule': 'timesheets:delete',
        'request_id': 'req-42',
    }
    data.update(overrides)
    return AuditRecord(**data)


class TestAuditRecord:
    """Test the queue payload."""

    def test_payload_is_json_safe(self):
        record = make_record()

        payload = record.to_payload()

        assert payload['user_id'] == str(record.user_id)
        assert payload['resource_id'] == str(record.resource_id)
        assert payload['timestamp'] == record.timestamp.isoformat()
        assert payload['matched_rule'] == 'timesheets:delete'

    def test_payload_without_resource_id(self):
        assert make_record(resource_id=None).to_payload()['resource_id'] is None


@pytest.mark.django_db
class TestCeleryAuditSink:
    """Decisions are written by the eager task in tests."""

    def test_record_written(self):
        record = make_record()

        CeleryAuditSink().record(record)

        entry = AuditLog.objects.decisions().get()
        assert entry.user_id == record.user_id
        assert entry.action == 'delete'
        assert entry.resource_id == str(record.resource_id)
        assert entry.allowed is False
        assert entry.matched_rule == 'timesheets:delete'
        assert entry.request_id == 'req-42'
        assert entry.timestamp == record.timestamp

    def test_broker_failure_is_swallowed(self):
        with patch('apps.rbac.tasks.record_access_decision') as task:
            task.delay.side_effect = ConnectionError('broker down')
            CeleryAuditSink().record(make_record())

        assert not AuditLog.objects.exists()

    def test_task_retries_on_database_error(self):
        with patch.object(AuditLog.objects, 'create', side_effect=DatabaseError('locked')), \
                patch.object(LoggedTask, 'retry', side_effect=RuntimeError('retry')) as retry:
            with pytest.raises(RuntimeError):
                record_access_decision.run(make_record().to_payload())

        retry.assert_called_once()


class TestOtherSinks:
    """Test the logging and null sinks and sink selection."""

    def test_logging_sink(self):
        record = make_record(allowed=True)

        with patch.object(LoggingAuditSink.audit_logger, 'info') as info:
            LoggingAuditSink().record(record)

        info.assert_called_once()
        assert info.call_args.args[0] == 'Access allowed: delete on timesheets'
        assert info.call_args.kwargs['extra']['matched_rule'] == 'timesheets:delete'

    def test_null_sink(self):
        assert NullAuditSink().record(make_record()) is None

    @override_settings(ACCESS_AUDIT_SINK='apps.rbac.audit.LoggingAuditSink')
    def test_sink_from_settings(self):
        assert isinstance(get_audit_sink(), LoggingAuditSink)


@pytest.mark.django_db
class TestAuditLogAppendOnly:
    """Audit rows are never changed or removed by the application."""

    def test_update_rejected(self):
        entry = AuditLog.log_action('project_member_added', user_id=uuid.uuid4(), resource_type='projectmembership')
        entry.reason = 'edited'

        with pytest.raises(ValueError):
            entry.save()

    def test_delete_rejected(self):
        entry = AuditLog.log_action('project_member_removed', user_id=uuid.uuid4())

        with pytest.raises(ValueError):
            entry.delete()

        assert AuditLog.objects.filter(pk=entry.pk).exists()

    def test_log_action_records_actor_and_request(self, make_user):
        actor = make_user()

        class FakeRequest:
            request_id = 'req-7'

        entry = AuditLog.log_action('member_role_changed', actor=actor, user_id=uuid.uuid4(),
                                    resource_type='organisationmembership', resource_id=uuid.uuid4(),
                                    metadata={'role': 'org_member'}, request=FakeRequest())

        assert entry.category == AuditLog.CATEGORY_MEMBERSHIP
        assert entry.request_id == 'req-7'
        assert entry.metadata == {'role': 'org_member', 'actor_id': str(actor.pk)}
