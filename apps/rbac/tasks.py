"""
Celery tasks for the access engine.
"""
import logging

from celery import shared_task
from django.utils.dateparse import parse_datetime

from apps.core.tasks import LoggedTask

logger = logging.getLogger(__name__)


@shared_task(
    base=LoggedTask,
    name='rbac.record_access_decision',
    bind=True,
    max_retries=3,
    default_retry_delay=10,
    ignore_result=True,
)
def record_access_decision(self, record):
    """
    Persist one access decision to the append-only audit log.

    Args:
        record: AuditRecord.to_payload() dict
    """
    from django.db import DatabaseError
    from apps.rbac.models import AuditLog

    try:
        entry = AuditLog.objects.create(
            category=AuditLog.CATEGORY_DECISION,
            timestamp=parse_datetime(record['timestamp']),
            user_id=record.get('user_id'),
            action=record['action'],
            resource_type=record['resource_type'],
            resource_id=record.get('resource_id') or '',
            allowed=record['allowed'],
            reason=record.get('reason', ''),
            matched_rule=record.get('matched_rule', ''),
            request_id=record.get('request_id'),
        )
    except DatabaseError as exc:
        raise self.retry(exc=exc)

    logger.debug(
        "Access decision recorded",
        extra={'audit_log_id': str(entry.id), 'allowed': record['allowed']}
    )
    return str(entry.id)
