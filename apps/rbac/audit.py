"""
Audit emission for access decisions.

The engine hands every decision to an AuditSink after it has been made.
Sinks must not block or fail the decision: CeleryAuditSink only enqueues,
and the engine logs and drops any exception a sink raises.
"""
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional

from django.conf import settings
from django.utils import timezone
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditRecord:
    """One access decision, as written to the audit log."""

    user_id: Any
    action: str
    resource_type: str
    resource_id: Any
    allowed: bool
    reason: str
    matched_rule: str
    request_id: Optional[str] = None
    timestamp: datetime = field(default_factory=timezone.now)

    def to_payload(self) -> dict:
        """JSON-safe form for the task queue."""
        payload = asdict(self)
        payload['user_id'] = str(self.user_id) if self.user_id is not None else None
        payload['resource_id'] = str(self.resource_id) if self.resource_id is not None else None
        payload['timestamp'] = self.timestamp.isoformat()
        return payload


class AuditSink:
    """Receives audit records. Subclasses decide where they go."""

    def record(self, record: AuditRecord):
        raise NotImplementedError


class NullAuditSink(AuditSink):
    def record(self, record: AuditRecord):
        return None


class LoggingAuditSink(AuditSink):
    """Writes decisions to the access audit logger."""

    audit_logger = logging.getLogger('access.audit')

    def record(self, record: AuditRecord):
        self.audit_logger.info(
            f"Access {'allowed' if record.allowed else 'denied'}: {record.action} on {record.resource_type}",
            extra=record.to_payload()
        )


class CeleryAuditSink(AuditSink):
    """
    Enqueues decisions for the record_access_decision task.

    Publishing is fire-and-forget. A broker failure is logged and the record
    is dropped; the decision already returned to the caller stands.
    """

    def record(self, record: AuditRecord):
        from apps.rbac.tasks import record_access_decision

        try:
            record_access_decision.delay(record.to_payload())
        except Exception as e:
            logger.error(
                f"Failed to enqueue access audit record: {str(e)}",
                extra={
                    'action': record.action,
                    'resource_type': record.resource_type,
                    'request_id': record.request_id,
                },
                exc_info=True
            )


def get_audit_sink() -> AuditSink:
    """Sink configured by settings.ACCESS_AUDIT_SINK (dotted class path)."""
    path = getattr(settings, 'ACCESS_AUDIT_SINK', 'apps.rbac.audit.CeleryAuditSink')
    return import_string(path)()
