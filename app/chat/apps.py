"""
Chat application configuration.

This app provides the chat system with:
- Direct (1:1) and group conversations
- Group roles (creator, admin, member)
- Message replies, forwards, edits and soft deletion
- Read receipts and unread counts
- Real-time fan-out over WebSockets
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Configuration for the chat application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Chat"

    def ready(self):
        """Register chat error codes with their categories."""
        from chat.constants import ERROR_CATEGORIES
        from core.services import register_error_categories

        register_error_categories(ERROR_CATEGORIES)
