"""
Django app configuration for accounts.
"""

from django.apps import AppConfig


class AccountsConfig(AppConfig):
    """Configuration for the accounts (identity directory) application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "accounts"
    verbose_name = "Accounts"

    def ready(self):
        """Register directory error codes with their categories."""
        from accounts.constants import ERROR_CATEGORIES
        from core.services import register_error_categories

        register_error_categories(ERROR_CATEGORIES)
