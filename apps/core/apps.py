from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)

SUPPORTED_JWT_ALGORITHMS = {'HS256', 'HS384', 'HS512'}


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Perform startup validation checks when Django initializes.

        Token verification and the decision cache depend on these settings,
        so a bad value stops the server instead of failing on the first request.
        """
        import sys
        # Only server processes are checked; migrations, shell and test runs skip
        if 'runserver' not in sys.argv and 'gunicorn' not in sys.argv[0]:
            return

        self._validate_jwt_configuration()
        self._validate_access_settings()
        self._validate_security_settings()

        logger.info("Startup configuration validated")

    def _validate_jwt_configuration(self):
        """Validate the key and algorithm used to verify bearer tokens."""
        jwt_secret = getattr(settings, 'JWT_SECRET_KEY', None)
        algorithm = getattr(settings, 'JWT_ALGORITHM', 'HS256')

        if not jwt_secret:
            raise ImproperlyConfigured(
                "JWT_SECRET_KEY must be set in environment variables. "
                "Generate a strong key with: "
                "python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )

        if len(jwt_secret) < 32:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY must be at least 32 characters long. "
                f"Current length: {len(jwt_secret)}."
            )

        if jwt_secret == getattr(settings, 'SECRET_KEY', None):
            raise ImproperlyConfigured("JWT_SECRET_KEY must be different from SECRET_KEY.")

        unique_chars = len(set(jwt_secret))
        if unique_chars < 16:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY has insufficient entropy. "
                f"Found only {unique_chars} unique characters, need at least 16."
            )

        if algorithm not in SUPPORTED_JWT_ALGORITHMS:
            raise ImproperlyConfigured(
                f"JWT_ALGORITHM must be one of {sorted(SUPPORTED_JWT_ALGORITHMS)}, got {algorithm!r}."
            )

        logger.info("JWT configuration validated")

    def _validate_access_settings(self):
        """Validate decision cache TTL and subscription tier limits."""
        ttl = getattr(settings, 'ACCESS_DECISION_CACHE_TTL', 5)
        if not isinstance(ttl, int) or ttl < 0:
            raise ImproperlyConfigured(
                f"ACCESS_DECISION_CACHE_TTL must be a non-negative integer, got {ttl!r}."
            )
        if ttl > 60:
            logger.warning(
                f"ACCESS_DECISION_CACHE_TTL is {ttl}s. Revoked memberships stay "
                f"effective for up to that long when an invalidation is lost."
            )

        tiers = getattr(settings, 'SUBSCRIPTION_TIER_LIMITS', {})
        if 'free' not in tiers:
            raise ImproperlyConfigured("SUBSCRIPTION_TIER_LIMITS must define the 'free' tier.")

    def _validate_security_settings(self):
        """Validate general security settings."""
        debug = getattr(settings, 'DEBUG', False)
        secret_key = getattr(settings, 'SECRET_KEY', None)

        if not secret_key:
            raise ImproperlyConfigured(
                "SECRET_KEY must be set in environment variables. "
                "Generate with: "
                "python -c \"import secrets; print(secrets.token_urlsafe(50))\""
            )

        if not debug:
            secret_lower = secret_key.lower()
            for pattern in ['dev-only', 'change-me', 'django-insecure', '12345']:
                if pattern in secret_lower:
                    raise ImproperlyConfigured(
                        f"SECRET_KEY appears to be a default or weak value (contains '{pattern}')."
                    )

            if not getattr(settings, 'SECURE_SSL_REDIRECT', False):
                logger.warning("SECURE_SSL_REDIRECT is not enabled in production.")

        logger.info("Security settings validated")
