"""
Root pytest configuration for the Django project.

This module configures pytest-django and provides project-wide fixtures.
App-specific fixtures are defined in each app's tests/conftest.py.
"""

import os

import django
import pytest

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()

    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # Use fast password hasher for tests
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]

    # No Redis in tests: in-process channel layer and cache
    settings.CHANNEL_LAYERS = {
        "default": {"BACKEND": "channels.layers.InMemoryChannelLayer"},
    }
    settings.CACHES = {
        "default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"},
    }
    settings.CELERY_TASK_ALWAYS_EAGER = True


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_views.py, test_services.py, test_consumers.py, etc. → integration
    - test_models.py, test_serializers.py, test_managers.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_managers.py",
        "test_soft_delete_mixin.py",
        "test_service_result.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]
        if filename in unit_patterns:
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def _reset_channel_layers():
    """Give every test a fresh in-memory channel layer."""
    from channels.layers import channel_layers

    channel_layers.backends.clear()
    yield
    channel_layers.backends.clear()


def _patch_postgresql_flush_for_cascade():
    """
    Patch PostgreSQL flush to always use CASCADE.

    TransactionTestCase (and transactional_db) resets the database with
    TRUNCATE, which fails on tables referenced by foreign keys unless
    CASCADE is used.
    """
    from django.db.backends.postgresql import operations

    original_sql_flush = operations.DatabaseOperations.sql_flush

    def sql_flush_with_cascade(
        self, style, tables, *, reset_sequences=False, allow_cascade=False
    ):
        return original_sql_flush(
            self, style, tables, reset_sequences=reset_sequences, allow_cascade=True
        )

    operations.DatabaseOperations.sql_flush = sql_flush_with_cascade


_patch_postgresql_flush_for_cascade()
