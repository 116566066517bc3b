"""
Identity provider adapter.

Tokens are issued elsewhere; this module only verifies them. The platform
superuser flag comes from the verified claim and nowhere else.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any

import jwt
from django.conf import settings

from apps.core.exceptions import AuthenticationRequired

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifiedIdentity:
    user_id: Any
    is_platform_superuser: bool = False


def verify_token(token: str) -> VerifiedIdentity:
    """
    Verify a bearer token and return the identity it carries.

    Args:
        token: Encoded JWT

    Returns:
        VerifiedIdentity

    Raises:
        AuthenticationRequired: token missing, expired, malformed or without user_id
    """
    if not token:
        raise AuthenticationRequired("Authentication required")

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')]
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationRequired("Token has expired")
    except jwt.InvalidTokenError:
        raise AuthenticationRequired("Invalid token")

    user_id = payload.get('user_id')
    if not user_id:
        raise AuthenticationRequired("Invalid token", details={'claim': 'user_id'})
    try:
        user_id = uuid.UUID(str(user_id))
    except ValueError:
        raise AuthenticationRequired("Invalid token", details={'claim': 'user_id'})

    return VerifiedIdentity(
        user_id=user_id,
        is_platform_superuser=payload.get('is_platform_superuser') is True,
    )
