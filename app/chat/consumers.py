"""
WebSocket consumers for the chat application.

This module implements the WebSocket consumer for real-time chat: one
connection per client session, carrying the user's conversation list and
any conversations the client subscribes to.

Consumers:
    ChatConsumer: Handles WebSocket connections at ws/chat/

Authentication:
    Users are authenticated via JWT token passed as query parameter or
    subprotocol. JWTAuthMiddleware attaches the user to self.scope["user"].

Channel Groups:
    user_<user_id>: Joined on connect; receives conversation list changes
    conversation_<id>: Joined on subscribe; receives message changes

Message Types (from client):
    - subscribe: {"type": "subscribe", "conversation_id": 1}
    - unsubscribe: {"type": "unsubscribe", "conversation_id": 1}
    - message: {"type": "message", "conversation_id": 1, "content": "Hi",
                "message_type": "text", "reply_to_id": null}
    - typing: {"type": "typing", "conversation_id": 1, "is_typing": true}
    - read: {"type": "read", "conversation_id": 1}
    - ping: {"type": "ping"}

Message Types (to client):
    - snapshot / added / modified / removed: {"type", "stream", "data"}
      with stream "conversations" or "messages"
    - subscribed / unsubscribed: subscription confirmations
    - ack: a client write was applied
    - typing: User is typing
    - pong: Reply to ping
    - error: {"type": "error", "error_code", "message"}
"""

from __future__ import annotations

import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from accounts.services import DirectoryService
from chat.broadcast import (
    EVENT_SNAPSHOT,
    STREAM_CONVERSATIONS,
    STREAM_MESSAGES,
    build_event,
    conversation_group_name,
    to_jsonable,
    user_group_name,
)
from chat.constants import FANOUT_CONFIG
from chat.models import Conversation
from chat.serializers import (
    ConversationSerializer,
    MessageCreateSerializer,
    MessageSerializer,
)
from chat.services import ConversationService, MessageService

logger = logging.getLogger(__name__)


def _format_errors(errors: dict) -> str:
    """Flatten serializer errors into one line, e.g. "content: Not a valid string."."""
    return "; ".join(
        f"{field}: {' '.join(str(detail) for detail in details)}"
        for field, details in errors.items()
    )


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for real-time chat functionality.

    Handles:
        - Connection authentication and the conversation list snapshot
        - Subscribing to and unsubscribing from conversations
        - Sending messages, typing indicators and read receipts
        - Forwarding change events from the channel layer

    Attributes:
        user: Authenticated user (after connect)
        user_group: Personal channel group name
        subscriptions: Conversation ids this socket is subscribed to
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.user = None
        self.user_group: str | None = None
        self.subscriptions: set[int] = set()

    async def connect(self):
        """
        Handle WebSocket connection.

        Rejects unauthenticated users with close code 4001. Otherwise joins
        the personal group, records activity and pushes the conversation
        list snapshot.
        """
        user = self.scope.get("user")

        if not user or not user.is_authenticated:
            logger.warning("Rejected unauthenticated WebSocket connection")
            await self.close(code=FANOUT_CONFIG.CLOSE_UNAUTHENTICATED)
            return

        self.user = user
        self.user_group = user_group_name(user.id)
        await self.channel_layer.group_add(self.user_group, self.channel_name)

        subprotocol = "jwt" if "jwt" in self.scope.get("subprotocols", []) else None
        await self.accept(subprotocol=subprotocol)

        await self._touch_activity()
        conversations = await self._conversation_snapshot()
        await self.send_json(build_event(EVENT_SNAPSHOT, STREAM_CONVERSATIONS, conversations))

        logger.info(f"User {user.id} connected to chat")

    async def disconnect(self, close_code):
        """
        Handle WebSocket disconnection.

        Leaves every channel group this socket joined.
        """
        if self.user_group:
            await self.channel_layer.group_discard(self.user_group, self.channel_name)
        for conversation_id in list(self.subscriptions):
            await self.channel_layer.group_discard(
                conversation_group_name(conversation_id), self.channel_name
            )
        self.subscriptions.clear()

        if self.user is not None:
            logger.info(f"User {self.user.id} disconnected from chat ({close_code})")

    async def receive_json(self, content, **kwargs):
        """
        Dispatch an incoming client action.

        Args:
            content: Parsed JSON message from client
        """
        handlers = {
            "subscribe": self._handle_subscribe,
            "unsubscribe": self._handle_unsubscribe,
            "message": self._handle_message,
            "typing": self._handle_typing,
            "read": self._handle_read,
            "ping": self._handle_ping,
        }
        action = content.get("type") if isinstance(content, dict) else None
        handler = handlers.get(action)
        if handler is None:
            await self._send_error("UNKNOWN_ACTION", f"Unknown message type: {action}")
            return

        await handler(content)

    # -------------------------------------------------------------------------
    # Client actions
    # -------------------------------------------------------------------------

    async def _handle_subscribe(self, content):
        """
        Subscribe to a conversation's message stream.

        Joins the group before reading the snapshot so no change between
        the two is missed.
        """
        conversation_id = self._conversation_id(content)
        if conversation_id is None:
            await self._send_error("INVALID_CONVERSATION_ID", "conversation_id is required")
            return

        conversation, error_code = await self._get_conversation(conversation_id)
        if conversation is None:
            await self._send_error(error_code, "Cannot subscribe to this conversation")
            return

        await self.channel_layer.group_add(
            conversation_group_name(conversation_id), self.channel_name
        )
        self.subscriptions.add(conversation_id)

        await self.send_json({"type": "subscribed", "conversation_id": conversation_id})
        messages = await self._message_snapshot(conversation)
        await self.send_json(
            build_event(
                EVENT_SNAPSHOT,
                STREAM_MESSAGES,
                {"conversation_id": conversation_id, "messages": messages},
            )
        )

    async def _handle_unsubscribe(self, content):
        """Stop receiving a conversation's message stream."""
        conversation_id = self._conversation_id(content)
        if conversation_id is None:
            await self._send_error("INVALID_CONVERSATION_ID", "conversation_id is required")
            return

        await self._drop_subscription(conversation_id)
        await self.send_json({"type": "unsubscribed", "conversation_id": conversation_id})

    async def _handle_message(self, content):
        """Send a message via MessageService; the added event follows via the group."""
        conversation_id = self._conversation_id(content)
        if conversation_id is None:
            await self._send_error("INVALID_CONVERSATION_ID", "conversation_id is required")
            return

        serializer = MessageCreateSerializer(data=content)
        if not serializer.is_valid():
            await self._send_error("VALIDATION_FAILED", _format_errors(serializer.errors))
            return
        data = serializer.validated_data

        message_id, error_code, error = await self._send_message(
            conversation_id,
            content=data["content"],
            message_type=data["message_type"],
            reply_to_id=data.get("reply_to_id"),
            file_name=data.get("file_name", ""),
            file_size=data.get("file_size"),
        )
        if message_id is None:
            await self._send_error(error_code, error)
            return

        await self.send_json(
            {
                "type": "ack",
                "action": "message",
                "conversation_id": conversation_id,
                "message_id": message_id,
                "client_id": content.get("client_id"),
            }
        )

    async def _handle_typing(self, content):
        """Broadcast typing status to the other subscribers."""
        conversation_id = self._conversation_id(content)
        if conversation_id not in self.subscriptions:
            await self._send_error("NOT_SUBSCRIBED", "Subscribe to the conversation first")
            return

        await self.channel_layer.group_send(
            conversation_group_name(conversation_id),
            {
                "type": "chat.typing",
                "conversation_id": conversation_id,
                "user_id": str(self.user.id),
                "is_typing": bool(content.get("is_typing", False)),
            },
        )

    async def _handle_read(self, content):
        """Mark a conversation read."""
        conversation_id = self._conversation_id(content)
        if conversation_id is None:
            await self._send_error("INVALID_CONVERSATION_ID", "conversation_id is required")
            return

        error_code, error = await self._mark_read(conversation_id)
        if error_code:
            await self._send_error(error_code, error)
            return

        await self.send_json(
            {"type": "ack", "action": "read", "conversation_id": conversation_id}
        )

    async def _handle_ping(self, content):
        await self.send_json({"type": "pong"})

    # -------------------------------------------------------------------------
    # Channel layer events
    # -------------------------------------------------------------------------

    async def chat_event(self, event):
        """
        Handle chat.event from the channel layer.

        Forwards the added/modified/removed payload to the client.
        """
        await self.send_json(event["event"])

    async def chat_conversation_removed(self, event):
        """
        Handle chat.conversation_removed.

        The conversation left this user's list (deleted, left or removed),
        so the socket stops receiving its messages.
        """
        payload = event["event"]
        await self._drop_subscription(payload["data"]["id"])
        await self.send_json(payload)

    async def chat_typing(self, event):
        """
        Handle chat.typing events from channel layer.

        Sends typing indicator to the WebSocket client (except sender).
        """
        if self.user and str(self.user.id) == event["user_id"]:
            return

        await self.send_json(
            {
                "type": "typing",
                "conversation_id": event["conversation_id"],
                "user_id": event["user_id"],
                "is_typing": event["is_typing"],
            }
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _conversation_id(content) -> int | None:
        value = content.get("conversation_id")
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
        return None

    async def _drop_subscription(self, conversation_id: int):
        if conversation_id in self.subscriptions:
            self.subscriptions.discard(conversation_id)
            await self.channel_layer.group_discard(
                conversation_group_name(conversation_id), self.channel_name
            )

    async def _send_error(self, error_code: str | None, message: str | None):
        await self.send_json({"type": "error", "error_code": error_code, "message": message})

    @database_sync_to_async
    def _touch_activity(self):
        DirectoryService.touch_activity(self.user)

    @database_sync_to_async
    def _conversation_snapshot(self) -> list[dict]:
        conversations = ConversationService.list_for_user(self.user)
        return to_jsonable(
            ConversationSerializer(conversations, many=True, context={"user": self.user}).data
        )

    @database_sync_to_async
    def _get_conversation(self, conversation_id: int):
        """Return (conversation, None) or (None, error_code)."""
        conversation = Conversation.objects.filter(pk=conversation_id).first()
        if conversation is None:
            return None, "CONVERSATION_NOT_FOUND"
        if not conversation.is_participant(self.user):
            logger.warning(
                f"User {self.user.id} is not a participant in "
                f"conversation {conversation_id}"
            )
            return None, "NOT_PARTICIPANT"
        return conversation, None

    @database_sync_to_async
    def _message_snapshot(self, conversation: Conversation) -> list[dict]:
        result = MessageService.query(conversation, self.user)
        if not result.success:
            return []
        latest = list(
            result.data.order_by("-created_at", "-id")[: FANOUT_CONFIG.SNAPSHOT_MESSAGE_LIMIT]
        )
        latest.reverse()
        return to_jsonable(MessageSerializer(latest, many=True).data)

    @database_sync_to_async
    def _send_message(self, conversation_id: int, **kwargs):
        """Return (message_id, None, None) or (None, error_code, error)."""
        conversation = Conversation.objects.filter(pk=conversation_id).first()
        if conversation is None:
            return None, "CONVERSATION_NOT_FOUND", "Conversation not found"

        result = MessageService.send(conversation=conversation, sender=self.user, **kwargs)
        if not result.success:
            return None, result.error_code, result.error
        return result.data.id, None, None

    @database_sync_to_async
    def _mark_read(self, conversation_id: int):
        """Return (None, None) or (error_code, error)."""
        conversation = Conversation.objects.filter(pk=conversation_id).first()
        if conversation is None:
            return "CONVERSATION_NOT_FOUND", "Conversation not found"

        result = MessageService.mark_read(conversation, self.user)
        if not result.success:
            return result.error_code, result.error
        return None, None
