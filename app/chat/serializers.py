"""
Serializers for chat API.

This module provides serializers for the chat system:
- Conversation serializers (read, create, update, bulk delete)
- Participant serializers (read, add members)
- Message serializers (read, create, edit, forward, edit history)

Serializer Hierarchy:
    ConversationSerializer: Conversation with participants and the
        requesting user's unread count and role
    ConversationCreateSerializer: Direct/group conversation creation
    ConversationUpdateSerializer: Group details update
    ConversationBulkDeleteSerializer: Ids for bulk deletion

    ParticipantSerializer: Participant with user info
    MemberAddSerializer: Users to add to a group

    MessageSerializer: Message with tombstone, reply and forward handling
    MessageCreateSerializer: Send new message
    MessageUpdateSerializer: Edit message content
    MessageForwardSerializer: Forward target
    MessageEditHistorySerializer: Previous content of an edited message

Design Decisions:
    - Read and write serializers are separate for clarity
    - Deleted messages are returned as an explicit deleted variant with
      placeholder content
    - Reply and forward links resolve to a short projection of the
      referenced message, or to an "unavailable" placeholder when the
      referenced message is deleted or gone
    - System messages show a formatted event description
    - The requesting user comes from context["user"] (WebSocket/broadcast)
      or context["request"].user (REST)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import serializers

from accounts.models import User
from accounts.serializers import UserSummarySerializer
from chat.constants import GROUP_CONFIG, MESSAGE_CONFIG
from chat.models import (
    Conversation,
    ConversationType,
    Message,
    MessageEditHistory,
    MessageType,
    Participant,
)

if TYPE_CHECKING:
    from uuid import UUID


# =============================================================================
# Helper Functions
# =============================================================================


def get_context_user(context: dict) -> User | None:
    """Requesting user from serializer context, if authenticated."""
    user = context.get("user")
    if user is None:
        request = context.get("request")
        user = getattr(request, "user", None)
    if user is None or not user.is_authenticated:
        return None
    return user


def unavailable_reference(message_id: int) -> dict:
    """Placeholder for a reply/forward target that can no longer be shown."""
    return {
        "id": message_id,
        "unavailable": True,
        "content": MESSAGE_CONFIG.UNAVAILABLE_PLACEHOLDER,
    }


def resolve_reference(message_id: int | None) -> dict | None:
    """
    Project a referenced message for reply/forward display.

    Returns None when there is no reference. A tombstoned or purged
    referent yields the unavailable placeholder instead of an error.

    Returns:
        {"id", "sender_id", "sender_name", "content", "message_type"}
    """
    if message_id is None:
        return None

    message = Message.objects.select_related("sender").filter(id=message_id).first()
    if message is None or message.is_deleted:
        return unavailable_reference(message_id)

    sender = message.sender
    return {
        "id": message.id,
        "sender_id": str(sender.id) if sender else None,
        "sender_name": sender.display_name if sender else None,
        "content": message.get_preview(MESSAGE_CONFIG.REFERENCE_PREVIEW_LENGTH),
        "message_type": message.message_type,
    }


# =============================================================================
# Message Serializers
# =============================================================================


class MessageSerializer(serializers.ModelSerializer):
    """
    Full message serializer for message lists and real-time events.

    Includes sender details, reply/forward projections, read state and
    the deleted variant for tombstones.
    """

    sender = UserSummarySerializer(read_only=True, allow_null=True)
    content = serializers.SerializerMethodField(
        help_text="Message content (placeholder if deleted)"
    )
    file_name = serializers.SerializerMethodField()
    read = serializers.SerializerMethodField(
        help_text="Whether any participant other than the sender read it"
    )
    read_by = serializers.SerializerMethodField(
        help_text="Ids of users that read the message"
    )
    reply_to = serializers.SerializerMethodField(
        help_text="Projection of the message this replies to"
    )
    forwarded = serializers.SerializerMethodField(
        help_text="Projection of the original forwarded message"
    )
    forwarded_from_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = Message
        fields = [
            "id",
            "conversation_id",
            "sender",
            "message_type",
            "content",
            "file_name",
            "file_size",
            "is_deleted",
            "is_edited",
            "edited_at",
            "read",
            "read_by",
            "reply_to",
            "forwarded",
            "forwarded_from_id",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_content(self, obj: Message) -> str:
        """
        Get display content.

        - Deleted messages: "[Message deleted]"
        - System messages: Formatted event description
        - Other messages: Original content
        """
        return obj.get_display_content()

    def get_file_name(self, obj: Message) -> str:
        """Hide media metadata of deleted messages."""
        return "" if obj.is_deleted else obj.file_name

    def _reader_ids(self, obj: Message) -> list:
        return [receipt.user_id for receipt in obj.receipts.all()]

    def get_read(self, obj: Message) -> bool:
        """Derived: some non-sender has a receipt."""
        return any(user_id != obj.sender_id for user_id in self._reader_ids(obj))

    def get_read_by(self, obj: Message) -> list[str]:
        """User ids in the readBy set."""
        return [str(user_id) for user_id in self._reader_ids(obj)]

    def get_reply_to(self, obj: Message) -> dict | None:
        """Resolve the reply target (placeholder if unavailable)."""
        return resolve_reference(obj.reply_to_id)

    def get_forwarded(self, obj: Message) -> dict | None:
        """Resolve the forwarded original (placeholder if unavailable)."""
        return resolve_reference(obj.forwarded_message_id)


class MessageCreateSerializer(serializers.Serializer):
    """
    Serializer for sending messages.

    Supports:
    - Text messages
    - Media messages (content is the URL of an uploaded file)
    - Replies (reply_to_id of a message in the same conversation)
    """

    content = serializers.CharField(
        max_length=MESSAGE_CONFIG.MAX_CONTENT_LENGTH,
        help_text="Message text or media URL (max 10,000 characters)",
    )
    message_type = serializers.ChoiceField(
        choices=[choice for choice in MessageType.choices if choice[0] != MessageType.SYSTEM],
        default=MessageType.TEXT,
        help_text="Kind of message",
    )
    reply_to_id = serializers.IntegerField(
        required=False,
        allow_null=True,
        help_text="Id of the message being replied to (optional)",
    )
    file_name = serializers.CharField(
        max_length=255,
        required=False,
        allow_blank=True,
        default="",
        help_text="Original file name for media messages",
    )
    file_size = serializers.IntegerField(
        required=False,
        allow_null=True,
        min_value=0,
        help_text="File size in bytes for media messages",
    )


class MessageUpdateSerializer(serializers.Serializer):
    """Serializer for editing message content."""

    content = serializers.CharField(
        max_length=MESSAGE_CONFIG.MAX_CONTENT_LENGTH,
        help_text="New message content",
    )


class MessageForwardSerializer(serializers.Serializer):
    """Serializer for forwarding a message to another conversation."""

    conversation_id = serializers.IntegerField(
        help_text="Id of the conversation to forward to",
    )


class MessageEditHistorySerializer(serializers.ModelSerializer):
    """Previous content of an edited message."""

    class Meta:
        model = MessageEditHistory
        fields = ["edit_number", "content", "created_at"]
        read_only_fields = fields


# =============================================================================
# Participant Serializers
# =============================================================================


class ParticipantSerializer(serializers.ModelSerializer):
    """
    Read serializer for conversation participants.

    Includes user details and role information.
    """

    user = UserSummarySerializer(read_only=True)
    is_admin = serializers.BooleanField(read_only=True)

    class Meta:
        model = Participant
        fields = [
            "id",
            "user",
            "role",
            "is_admin",
            "joined_at",
            "last_read_at",
        ]
        read_only_fields = fields


class MemberAddSerializer(serializers.Serializer):
    """Users to add to a group conversation."""

    user_ids = serializers.ListField(
        child=serializers.UUIDField(),
        min_length=1,
        help_text="Ids of users to add",
    )


# =============================================================================
# Conversation Serializers
# =============================================================================


class ConversationSerializer(serializers.ModelSerializer):
    """
    Serializer for conversations.

    Includes computed fields for the requesting user:
    - unread_count: Denormalized unread counter
    - current_user_role: Role in the group (None for direct)
    - display_name: Title for groups, other user's name for direct
    """

    participants = serializers.SerializerMethodField(
        help_text="Active participants"
    )
    admin_ids = serializers.SerializerMethodField(
        help_text="Ids of participants with admin authority (creator included)"
    )
    display_name = serializers.SerializerMethodField(
        help_text="Display name for the conversation"
    )
    unread_count = serializers.SerializerMethodField(
        help_text="Number of unread messages for the requesting user"
    )
    current_user_role = serializers.SerializerMethodField(
        help_text="Requesting user's role in this conversation"
    )
    created_by_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = Conversation
        fields = [
            "id",
            "conversation_type",
            "title",
            "description",
            "display_name",
            "created_by_id",
            "is_active",
            "settings",
            "participant_count",
            "participants",
            "admin_ids",
            "unread_count",
            "current_user_role",
            "last_message_preview",
            "last_message_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def _active_participants(self, obj: Conversation) -> list[Participant]:
        # Cached per object since several fields read it
        cache = self.context.setdefault("_participants", {})
        if obj.pk not in cache:
            cache[obj.pk] = list(
                obj.get_active_participants().select_related("user").order_by("joined_at")
            )
        return cache[obj.pk]

    def _own_participant(self, obj: Conversation) -> Participant | None:
        user = get_context_user(self.context)
        if user is None:
            return None
        for participant in self._active_participants(obj):
            if participant.user_id == user.id:
                return participant
        return None

    def get_participants(self, obj: Conversation) -> list[dict]:
        """Get all active participants."""
        return ParticipantSerializer(self._active_participants(obj), many=True).data

    def get_admin_ids(self, obj: Conversation) -> list[str]:
        """Ids of creator and admins."""
        return [
            str(participant.user_id)
            for participant in self._active_participants(obj)
            if participant.is_admin
        ]

    def get_display_name(self, obj: Conversation) -> str:
        """
        Generate display name for conversation.

        - Groups: title
        - Direct: other user's name
        """
        if obj.title:
            return obj.title

        if obj.conversation_type == ConversationType.DIRECT:
            user = get_context_user(self.context)
            for participant in self._active_participants(obj):
                if user is None or participant.user_id != user.id:
                    return participant.user.display_name or participant.user.email

        return f"Group ({obj.participant_count} members)"

    def get_unread_count(self, obj: Conversation) -> int:
        """Requesting user's unread counter."""
        participant = self._own_participant(obj)
        return participant.unread_count if participant else 0

    def get_current_user_role(self, obj: Conversation) -> str | None:
        """Get requesting user's role in conversation."""
        participant = self._own_participant(obj)
        return participant.role if participant else None


class ConversationCreateSerializer(serializers.Serializer):
    """
    Serializer for creating conversations.

    Supports both direct (1:1) and group conversations:
    - Direct: Finds existing or creates new between two users
    - Group: Creates new group with the requesting user as creator
    """

    conversation_type = serializers.ChoiceField(
        choices=ConversationType.choices,
        help_text="Type of conversation to create",
    )
    participant_ids = serializers.ListField(
        child=serializers.UUIDField(),
        min_length=1,
        help_text="User ids to include (the other user for direct)",
    )
    title = serializers.CharField(
        max_length=GROUP_CONFIG.MAX_TITLE_LENGTH,
        required=False,
        allow_blank=True,
        default="",
        help_text="Group name (ignored for direct)",
    )
    description = serializers.CharField(
        max_length=GROUP_CONFIG.MAX_DESCRIPTION_LENGTH,
        required=False,
        allow_blank=True,
        default="",
        help_text="Group description",
    )
    settings = serializers.JSONField(required=False, default=dict)

    def validate(self, attrs: dict) -> dict:
        """Validate based on conversation type."""
        conversation_type = attrs["conversation_type"]
        title = attrs.get("title", "").strip()

        if conversation_type == ConversationType.DIRECT:
            if len(attrs["participant_ids"]) != 1:
                raise serializers.ValidationError(
                    {
                        "participant_ids": "Direct conversations require exactly one other participant"
                    }
                )
        elif not title:
            raise serializers.ValidationError(
                {"title": "Group conversations require a title"}
            )

        return attrs

    def validate_participant_ids(self, value: list[UUID]) -> list[UUID]:
        """Ensure all participant ids are active users other than the requester."""
        user = get_context_user(self.context)
        if user is not None and user.id in value:
            raise serializers.ValidationError(
                "Cannot include yourself in participant list"
            )

        existing = set(
            User.objects.filter(id__in=value, is_active=True).values_list("id", flat=True)
        )
        invalid = [str(user_id) for user_id in value if user_id not in existing]
        if invalid:
            raise serializers.ValidationError(f"Users not found or inactive: {invalid}")

        return value


class ConversationUpdateSerializer(serializers.Serializer):
    """
    Serializer for updating group details.

    All fields are optional; omitted fields stay unchanged.
    """

    title = serializers.CharField(
        max_length=GROUP_CONFIG.MAX_TITLE_LENGTH,
        required=False,
        help_text="New group name",
    )
    description = serializers.CharField(
        max_length=GROUP_CONFIG.MAX_DESCRIPTION_LENGTH,
        required=False,
        allow_blank=True,
        help_text="New group description",
    )
    settings = serializers.JSONField(required=False)


class ConversationBulkDeleteSerializer(serializers.Serializer):
    """Ids of conversations to delete."""

    conversation_ids = serializers.ListField(
        child=serializers.IntegerField(),
        min_length=1,
        help_text="Ids of conversations to delete",
    )
