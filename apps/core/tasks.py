"""
Base Celery task class with logging and Sentry reporting.
"""
import logging
from celery import Task
import sentry_sdk

logger = logging.getLogger(__name__)


class LoggedTask(Task):
    """
    Base task class that logs start, completion and failure.

    Failures are reported to Sentry with the task context and re-raised so
    Celery's own retry and failure handling still applies.
    """

    SENSITIVE_KEYS = {'password', 'token', 'secret', 'access_token', 'refresh_token', 'email'}

    def __call__(self, *args, **kwargs):
        task_id = self.request.id
        task_name = self.name

        logger.info(
            f"Task started: {task_name}",
            extra={
                'task_id': task_id,
                'task_name': task_name,
                'task_kwargs': self._sanitize_kwargs(kwargs),
            }
        )

        try:
            result = super().__call__(*args, **kwargs)
        except Exception as exc:
            logger.error(
                f"Task failed: {task_name}",
                extra={
                    'task_id': task_id,
                    'task_name': task_name,
                    'exception': str(exc),
                },
                exc_info=True
            )
            with sentry_sdk.new_scope() as scope:
                scope.set_context('task', {'task_id': task_id, 'task_name': task_name})
                sentry_sdk.capture_exception(exc)
            raise

        logger.info(
            f"Task completed: {task_name}",
            extra={'task_id': task_id, 'task_name': task_name}
        )
        return result

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        logger.warning(
            f"Task retry: {self.name} (attempt {self.request.retries}/{self.max_retries})",
            extra={
                'task_id': task_id,
                'task_name': self.name,
                'exception': str(exc),
            }
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def _sanitize_kwargs(self, kwargs):
        if not kwargs:
            return {}
        return {
            key: '********' if key in self.SENSITIVE_KEYS else value
            for key, value in kwargs.items()
        }
