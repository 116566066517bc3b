"""
Exception taxonomy for the access engine and the DRF exception handler.

Ordinary denials are not exceptions: the engine returns a Decision with
allowed=False. The classes below cover identity, configuration, resolution
and infrastructure failures, plus AccessDenied for callers that prefer to
raise on a denied Decision.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = 'An unexpected error occurred'


class AccessEngineError(Exception):
    """Base exception for access engine errors."""

    status_code = 500
    code = 'ACCESS_ENGINE_ERROR'
    retryable = False

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationRequired(AccessEngineError):
    """Raised when a call carries no verified identity."""
    status_code = 401
    code = 'AUTHENTICATION_REQUIRED'


class UnknownRule(AccessEngineError):
    """Raised when a (resource type, action) pair has no rule. Fails closed."""
    code = 'UNKNOWN_RULE'


class UnknownRole(AccessEngineError):
    """Raised when a role name is not part of the configured catalog."""
    status_code = 400
    code = 'UNKNOWN_ROLE'


class AmbiguousResource(AccessEngineError):
    """Raised when a resource cannot be mapped to a single tenant. Fails closed."""
    code = 'AMBIGUOUS_RESOURCE'


class ResourceNotFound(AmbiguousResource):
    """Raised when the referenced row does not exist."""
    status_code = 404
    code = 'RESOURCE_NOT_FOUND'


class StoreUnavailable(AccessEngineError):
    """Raised when the membership store cannot be reached. Retryable."""
    status_code = 503
    code = 'STORE_UNAVAILABLE'
    retryable = True
    retry_after = 5


class AccessDenied(AccessEngineError):
    """Raised by callers that convert a denied Decision into an error."""
    status_code = 403
    code = 'ACCESS_DENIED'

    def __init__(self, reason, rule=None):
        self.reason = reason
        self.rule = rule
        super().__init__(reason, details={'rule': rule} if rule else None)


class LimitExceeded(AccessEngineError):
    """Raised when an organisation has reached a subscription limit."""
    status_code = 403
    code = 'LIMIT_EXCEEDED'


class MembershipConflict(AccessEngineError):
    """Raised when a membership mutation contradicts the current rows."""
    status_code = 409
    code = 'MEMBERSHIP_CONFLICT'


class MembershipNotFound(AccessEngineError):
    """Raised when a membership mutation targets a row that does not exist."""
    status_code = 404
    code = 'MEMBERSHIP_NOT_FOUND'


def custom_exception_handler(exc, context):
    """
    Exception handler that logs errors and returns a consistent format.

    Denials carry their reason, which is safe to show. Configuration and
    resolution failures return a generic body so rule ids and internal
    names never reach the client.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, AccessEngineError):
        return _handle_access_engine_error(exc, request, request_id)

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    logger.error(
        f"API Exception: {exc.__class__.__name__}",
        extra={
            'exception': str(exc),
            'request_id': request_id,
            'path': request.path if request else None,
            'method': request.method if request else None,
        },
        exc_info=response is None
    )

    # If DRF didn't handle it, return a generic 500 error
    if response is None:
        return Response(
            {
                'error': 'Internal server error',
                'detail': GENERIC_FAILURE_MESSAGE,
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    # Add request_id to all error responses
    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response


def _handle_access_engine_error(exc, request, request_id):
    from apps.core.logging import SecurityLogger

    log_extra = {
        'request_id': request_id,
        'path': request.path if request else None,
        'method': request.method if request else None,
        'error_code': exc.code,
    }

    if isinstance(exc, (AccessDenied, AuthenticationRequired, LimitExceeded, UnknownRole,
                        MembershipConflict, MembershipNotFound)):
        logger.info(f"Access request rejected: {exc.code}", extra=log_extra)
        return Response(
            {'error': exc.message, 'code': exc.code, 'request_id': request_id},
            status=exc.status_code
        )

    if isinstance(exc, ResourceNotFound):
        logger.info("Access check on missing resource", extra=log_extra)
        return Response(
            {'error': 'Not found', 'code': exc.code, 'request_id': request_id},
            status=status.HTTP_404_NOT_FOUND
        )

    if isinstance(exc, StoreUnavailable):
        logger.warning(f"Membership store unavailable: {exc.message}", extra=log_extra)
        response = Response(
            {
                'error': 'Service temporarily unavailable. Please retry.',
                'code': exc.code,
                'request_id': request_id,
                'retry_after': exc.retry_after,
            },
            status=status.HTTP_503_SERVICE_UNAVAILABLE
        )
        response['Retry-After'] = str(exc.retry_after)
        return response

    # Configuration and resolution errors: diagnostic in logs, generic body out
    SecurityLogger.log_configuration_error(
        error_code=exc.code,
        message=exc.message,
        details=exc.details,
        request_id=request_id,
    )
    return Response(
        {
            'error': 'Internal server error',
            'detail': GENERIC_FAILURE_MESSAGE,
            'request_id': request_id,
        },
        status=status.HTTP_500_INTERNAL_SERVER_ERROR
    )
