"""
RBAC app configuration.
"""
import logging

from django.apps import AppConfig
from django.core.exceptions import ImproperlyConfigured
from django.core.signals import setting_changed

logger = logging.getLogger(__name__)

ACCESS_SETTINGS = {
    'ACCESS_ROLE_CATALOG', 'ACCESS_RULES', 'ACCESS_AUDIT_SINK', 'ACCESS_DECISION_CACHE_TTL',
}


class RbacConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.rbac'
    verbose_name = 'RBAC (Role-Based Access Control)'

    def ready(self):
        """Import signals and check that every resource type has rules."""
        import apps.rbac.signals  # noqa

        setting_changed.connect(reset_access_configuration)
        self._validate_rule_coverage()

    def _validate_rule_coverage(self):
        from apps.rbac.resolver import ResourceResolver
        from apps.rbac.rules import get_rule_table

        unbound, unruled = get_rule_table().check_total(ResourceResolver())
        if unbound or unruled:
            raise ImproperlyConfigured(
                "Access rules and resource bindings disagree. "
                f"Rules without a binding: {list(unbound)}. "
                f"Bindings without rules: {list(unruled)}."
            )
        logger.debug("Access rule coverage validated")


def reset_access_configuration(setting, **kwargs):
    """Drop cached catalog, rules and engine when a test overrides access settings."""
    if setting not in ACCESS_SETTINGS:
        return
    from apps.rbac.engine import reset_policy_engine
    from apps.rbac.roles import reset_role_catalog
    from apps.rbac.rules import reset_rule_table

    reset_role_catalog()
    reset_rule_table()
    reset_policy_engine()
