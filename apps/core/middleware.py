"""
Core middleware for request processing.
"""
import logging
import threading
import uuid
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)

_request_context = threading.local()


def get_current_request_id():
    """Return the request id bound to the current thread, if any."""
    return getattr(_request_context, 'request_id', None)


class RequestIDMiddleware(MiddlewareMixin):
    """
    Inject a unique request_id into each request for tracing.

    The id is taken from the X-Request-ID header when the caller sends one,
    attached to the request, bound to the thread for log records and echoed
    back in the response headers.
    """

    def process_request(self, request):
        request_id = request.headers.get('X-Request-ID') or str(uuid.uuid4())
        request.request_id = request_id
        _request_context.request_id = request_id

    def process_response(self, request, response):
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        _request_context.request_id = None
        return response


class LoggingFilter(logging.Filter):
    """
    Add request_id to log records from thread-local storage.
    """

    def filter(self, record):
        if not hasattr(record, 'request_id'):
            record.request_id = get_current_request_id()
        return True
