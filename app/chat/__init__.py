"""
Chat app for real-time messaging.

This app handles:
- Conversations (direct and group)
- Group membership and roles
- Message sending, history, replies and forwards
- WebSocket subscriptions with snapshot + incremental change events
- Read receipts and typing indicators

Related apps:
    - accounts: User model for participants and senders

WebSocket Support:
    Uses Django Channels for real-time communication.
    See consumers.py for WebSocket handlers.
    See routing.py for WebSocket URL patterns.
    See broadcast.py for the post-commit event publisher.

Usage:
    from chat.services import ConversationService, MessageService

    # Create or reuse a direct conversation
    result = ConversationService.get_or_create_direct(user, other_user)

    # Send message
    result = MessageService.send_message(
        conversation=result.data,
        sender=user,
        content="Hello!",
    )
"""
