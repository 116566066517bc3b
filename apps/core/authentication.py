"""
Custom DRF authentication classes.
"""
import logging

from rest_framework import exceptions
from rest_framework.authentication import BaseAuthentication, get_authorization_header

from apps.core.logging import SecurityLogger

logger = logging.getLogger(__name__)


class BearerTokenAuthentication(BaseAuthentication):
    """
    DRF authentication backed by the identity provider.

    Verifies `Authorization: Bearer <token>` and returns (user, UserContext).
    The UserContext on request.auth is what the policy engine consumes; the
    platform superuser flag in it comes from the token claim.
    """

    keyword = 'Bearer'

    def authenticate(self, request):
        """
        Returns:
            tuple: (user, UserContext) when a bearer token is present, None otherwise

        Raises:
            AuthenticationFailed: token present but invalid, or user inactive
        """
        from apps.core.exceptions import AuthenticationRequired
        from apps.rbac.context import UserContext
        from apps.rbac.identity import verify_token
        from apps.rbac.models import User

        header = get_authorization_header(request).split()
        if not header or header[0].lower() != self.keyword.lower().encode():
            return None
        if len(header) != 2:
            raise exceptions.AuthenticationFailed("Invalid authorization header")

        try:
            token = header[1].decode()
        except UnicodeError:
            raise exceptions.AuthenticationFailed("Invalid authorization header")

        try:
            identity = verify_token(token)
        except AuthenticationRequired as e:
            SecurityLogger.log_authentication_failed(
                reason=e.message,
                ip_address=request.META.get('REMOTE_ADDR'),
                path=request.path,
            )
            raise exceptions.AuthenticationFailed(e.message)

        user = User.objects.filter(id=identity.user_id, is_active=True).first()
        if user is None:
            SecurityLogger.log_authentication_failed(
                reason='unknown or inactive user',
                ip_address=request.META.get('REMOTE_ADDR'),
                path=request.path,
            )
            raise exceptions.AuthenticationFailed("Authentication required")

        ctx = UserContext(
            user_id=identity.user_id,
            is_platform_superuser=identity.is_platform_superuser,
            request_id=getattr(request._request, 'request_id', None),
        )
        return (user, ctx)

    def authenticate_header(self, request):
        return self.keyword
