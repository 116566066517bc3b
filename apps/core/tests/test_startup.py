"""
Tests for application start-up in a fresh interpreter.
"""
import os
import subprocess
import sys
from pathlib import Path

from django.conf import settings

ROOT = Path(settings.BASE_DIR)


def run_fresh(code):
    env = {**os.environ, 'DJANGO_SETTINGS_MODULE': 'config.settings'}
    env.pop('REDIS_URL', None)
    return subprocess.run(
        [sys.executable, '-c', code],
        cwd=ROOT, env=env, capture_output=True, text=True, timeout=60,
    )


class TestStartup:
    """The app registry and DRF settings load without import cycles."""

    def test_django_setup(self):
        result = run_fresh(
            "import django; django.setup(); "
            "from rest_framework.settings import api_settings; "
            "print(api_settings.DEFAULT_AUTHENTICATION_CLASSES[0].__name__)"
        )

        assert result.returncode == 0, result.stderr
        assert result.stdout.strip() == 'BearerTokenAuthentication'
