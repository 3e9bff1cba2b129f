"""
Post-commit event publisher for real-time chat updates.

Service writes call these helpers after changing state. Each helper
registers a transaction.on_commit callback, so events only reach the
channel layer once the write (and its side effects, such as previews and
unread counters) is durable. Outside a transaction the callback runs
immediately.

Channel Groups:
    user_<user_id>: Every socket of one user (conversation list updates)
    conversation_<id>: Sockets subscribed to one conversation's messages

Event Shape (delivered to the client by ChatConsumer):
    {"type": "added" | "modified" | "removed",
     "stream": "conversations" | "messages",
     "data": {...}}

Publish failures are logged at WARNING and never propagate: the write has
already committed.

Usage:
    from chat import broadcast

    with transaction.atomic():
        message = Message.objects.create(...)
        broadcast.message_added(message)
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.core.serializers.json import DjangoJSONEncoder
from django.db import transaction

from chat.constants import FANOUT_CONFIG

if TYPE_CHECKING:
    from collections.abc import Iterable

    from chat.models import Conversation, Message

logger = logging.getLogger(__name__)

STREAM_CONVERSATIONS = "conversations"
STREAM_MESSAGES = "messages"

EVENT_SNAPSHOT = "snapshot"
EVENT_ADDED = "added"
EVENT_MODIFIED = "modified"
EVENT_REMOVED = "removed"


def user_group_name(user_id) -> str:
    """Channel group for all sockets of one user."""
    return f"{FANOUT_CONFIG.USER_GROUP_PREFIX}_{user_id}"


def conversation_group_name(conversation_id) -> str:
    """Channel group for sockets subscribed to one conversation."""
    return f"{FANOUT_CONFIG.CONVERSATION_GROUP_PREFIX}_{conversation_id}"


def build_event(event_type: str, stream: str, data) -> dict:
    """Client-facing event payload."""
    return {"type": event_type, "stream": stream, "data": data}


def to_jsonable(data):
    """Convert serializer output (UUIDs, datetimes) to plain JSON types."""
    return json.loads(json.dumps(data, cls=DjangoJSONEncoder))


def _group_send(group: str, message: dict) -> None:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.debug(f"No channel layer configured, dropping event for {group}")
        return
    try:
        async_to_sync(channel_layer.group_send)(group, message)
    except Exception as exc:
        logger.warning(f"Failed to publish event to {group}: {exc}")


def _publish(group: str, event: dict, handler: str = "chat.event") -> None:
    _group_send(group, {"type": handler, "event": event})


# =============================================================================
# Messages stream
# =============================================================================


def _publish_message(event_type: str, message_id: int) -> None:
    from chat.models import Message
    from chat.serializers import MessageSerializer

    message = Message.objects.select_related("sender").filter(id=message_id).first()
    if message is None:
        return
    data = to_jsonable(MessageSerializer(message).data)
    _publish(
        conversation_group_name(message.conversation_id),
        build_event(event_type, STREAM_MESSAGES, data),
    )


def message_added(message: Message) -> None:
    """Publish a new message to its conversation subscribers after commit."""
    message_id = message.id
    transaction.on_commit(lambda: _publish_message(EVENT_ADDED, message_id))


def message_modified(message: Message) -> None:
    """Publish an edited message after commit."""
    message_id = message.id
    transaction.on_commit(lambda: _publish_message(EVENT_MODIFIED, message_id))


def message_removed(message: Message) -> None:
    """Publish a tombstoned message after commit."""
    message_id = message.id
    transaction.on_commit(lambda: _publish_message(EVENT_REMOVED, message_id))


# =============================================================================
# Conversations stream
# =============================================================================


def _publish_conversation(
    event_type: str,
    conversation_id: int,
    user_ids: list | None,
) -> None:
    from accounts.models import User
    from chat.models import Conversation
    from chat.serializers import ConversationSerializer

    conversation = Conversation.objects.filter(id=conversation_id).first()
    if conversation is None:
        return
    if user_ids is None:
        user_ids = list(
            conversation.get_active_participants().values_list("user_id", flat=True)
        )
    for user in User.objects.filter(id__in=user_ids):
        data = to_jsonable(
            ConversationSerializer(conversation, context={"user": user}).data
        )
        _publish(
            user_group_name(user.id),
            build_event(event_type, STREAM_CONVERSATIONS, data),
        )


def conversation_added(
    conversation: Conversation,
    user_ids: Iterable | None = None,
) -> None:
    """
    Publish a conversation that appeared in users' lists.

    Defaults to every active participant.
    """
    conversation_id = conversation.id
    ids = list(user_ids) if user_ids is not None else None
    transaction.on_commit(
        lambda: _publish_conversation(EVENT_ADDED, conversation_id, ids)
    )


def conversation_changed(
    conversation: Conversation,
    user_ids: Iterable | None = None,
) -> None:
    """
    Publish updated conversation state (preview, unread count, metadata).

    Each user receives their own projection, since unread counts differ.
    """
    conversation_id = conversation.id
    ids = list(user_ids) if user_ids is not None else None
    transaction.on_commit(
        lambda: _publish_conversation(EVENT_MODIFIED, conversation_id, ids)
    )


def _publish_conversation_removed(conversation_id: int, user_ids: list) -> None:
    event = build_event(EVENT_REMOVED, STREAM_CONVERSATIONS, {"id": conversation_id})
    for user_id in user_ids:
        _publish(
            user_group_name(user_id),
            event,
            handler="chat.conversation_removed",
        )


def conversation_removed(conversation: Conversation, user_ids: Iterable) -> None:
    """
    Publish that a conversation left these users' lists.

    Used when a conversation is deleted and when a user leaves or is
    removed. Consumers drop their subscription to the conversation group.
    """
    conversation_id = conversation.id
    ids = list(user_ids)
    transaction.on_commit(lambda: _publish_conversation_removed(conversation_id, ids))
