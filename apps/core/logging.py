"""
Custom logging formatters and security event logging.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone
from django.utils import timezone
import sentry_sdk


class PIIMasker:
    """
    Utility class to mask sensitive data in logs.
    """

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
    BEARER_PATTERN = re.compile(r'(bearer\s+)[A-Za-z0-9._~+/=-]+', re.IGNORECASE)
    SECRET_PATTERN = re.compile(
        r'(api[_-]?key|token|secret|password)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)',
        re.IGNORECASE
    )

    SENSITIVE_FIELDS = {
        'email', 'password', 'token', 'access_token', 'refresh_token',
        'authorization', 'secret', 'jwt',
    }

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses, keeping the first character and the domain."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            if len(username) > 1:
                username = username[0] + '*' * (len(username) - 1)
            return f"{username}@{domain}"

        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        text = cls.BEARER_PATTERN.sub(r'\1********', text)
        text = cls.SECRET_PATTERN.sub(r'\1: ********', text)
        return cls.mask_email(text)

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if key.lower() in cls.SENSITIVE_FIELDS and value and not isinstance(value, (dict, list)):
                masked[key] = '********'
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict) else cls.mask_text(item)
                    for item in value
                ]
            else:
                masked[key] = cls.mask_text(value)
        return masked


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.

    Includes request_id, user_id and task context when present and masks
    sensitive values.
    """

    RESERVED = {
        'name', 'msg', 'args', 'created', 'filename', 'funcName',
        'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
        'pathname', 'process', 'processName', 'relativeCreated',
        'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
        'taskName',
    }

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(dt_timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [
                    PIIMasker.mask_text(line)
                    for line in traceback.format_exception(*record.exc_info)
                ],
            }

        # Extra fields passed through logger.<level>(..., extra={...})
        for key, value in record.__dict__.items():
            if key in self.RESERVED or key.startswith('_'):
                continue
            if isinstance(value, dict):
                value = PIIMasker.mask_dict(value)
            elif isinstance(value, str):
                value = PIIMasker.mask_text(value)
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SecurityLogger:
    """
    Centralized security event logging.

    Events go to the 'security' logger with structured context. Critical
    events are also sent to Sentry so a misconfigured rule table or a
    cross-tenant probe raises an alert.
    """

    CRITICAL_EVENTS = {
        'access_configuration_error',
        'cross_tenant_access_attempt',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Args:
            event_type: Type of security event (e.g., 'access_denied')
            level: Log level ('info', 'warning', 'error', 'critical')
            **context: Additional context data (user_id, project_id, etc.)
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(f"Security event: {event_type}", extra=log_data)

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
                extras=log_data
            )

    @staticmethod
    def log_access_denied(user_id, action: str, resource_type: str, resource_id=None,
                          reason: str = None, rule: str = None, request_id=None):
        """
        Log a denied access decision.

        Args:
            user_id: Id of the user who was denied
            action: Action that was requested
            resource_type: Type of the target resource
            resource_id: Id of the target resource, if any
            reason: Reason string of the decision
            rule: Id of the rule that produced the decision
            request_id: Request id for tracing
        """
        SecurityLogger.log_event(
            'access_denied',
            level='info',
            user_id=str(user_id) if user_id else None,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id else None,
            reason=reason,
            rule=rule,
            request_id=request_id,
        )

    @staticmethod
    def log_authentication_failed(reason: str, ip_address: str = None, path: str = None):
        """Log a rejected bearer token."""
        SecurityLogger.log_event(
            'authentication_failed',
            level='warning',
            reason=reason,
            ip_address=ip_address,
            path=path,
        )

    @staticmethod
    def log_configuration_error(error_code: str, message: str, details=None, request_id=None):
        """
        Log a rule table or resolver configuration defect.

        These fail closed, so the only trace of them is this event.
        """
        SecurityLogger.log_event(
            'access_configuration_error',
            level='error',
            error_code=error_code,
            detail_message=message,
            details=details or {},
            request_id=request_id,
        )

    @staticmethod
    def log_membership_change(event: str, actor_id=None, user_id=None, tenant_id=None, **extra):
        """Log a membership mutation (role change, removal, deactivation)."""
        SecurityLogger.log_event(
            event,
            level='info',
            actor_id=str(actor_id) if actor_id else None,
            user_id=str(user_id) if user_id else None,
            tenant_id=str(tenant_id) if tenant_id else None,
            **extra
        )
