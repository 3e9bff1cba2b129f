"""
Chat system models.

This module defines the data models for the chat system supporting:
- Direct (1:1) conversations between exactly two users
- Group conversations with creator/admin/member roles

Models:
    Conversation: Container for messages between participants
    DirectConversationPair: Enforces one live direct conversation per user pair
    Participant: User membership with role, read position and unread counter
    Message: Individual message within a conversation
    MessageReceipt: Per-user read receipt (the readBy set)
    MessageEditHistory: Previous content of edited messages

Design Decisions:
    - Direct conversations are immutable once created (no adding/removing participants)
    - Group roles: creator > admin > member. The creator is fixed at creation
      and can never be removed, demoted or leave.
    - "Admins" are participants whose role is creator or admin, so the admin
      set is always a subset of the participant set.
    - Unread counters are denormalized onto Participant and maintained by
      the message append transaction.
    - Messages are soft deleted (tombstones); reply/forward links carry no
      database constraint so they may dangle once tombstones are purged.
    - Message ordering is (created_at, id) with created_at assigned by the
      server at accept time.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from chat.constants import MESSAGE_CONFIG
from core.managers import SoftDeleteManager
from core.model_mixins import SoftDeleteMixin
from core.models import BaseModel

if TYPE_CHECKING:
    from accounts.models import User


class ConversationType(models.TextChoices):
    """
    Type of conversation.

    DIRECT: Exactly two participants, immutable membership, no roles
    GROUP: Named conversation with mutable membership and roles
    """

    DIRECT = "direct", "Direct Message"
    GROUP = "group", "Group"


class ParticipantRole(models.TextChoices):
    """
    Role within a group conversation.

    CREATOR: Created the group. Promotes/demotes admins, deletes the group.
    ADMIN: Adds and removes members, edits group details, deletes messages.
    MEMBER: Sends messages, edits/deletes own messages, leaves.

    Note: Direct conversations do not use roles (role is NULL)
    """

    CREATOR = "creator", "Creator"
    ADMIN = "admin", "Admin"
    MEMBER = "member", "Member"


class MessageType(models.TextChoices):
    """
    Kind of message content.

    TEXT: User-authored text
    IMAGE/VIDEO/AUDIO/FILE: content is the URL of externally stored media
    SYSTEM: Generated membership/state event (JSON content, no sender)
    """

    TEXT = "text", "Text"
    IMAGE = "image", "Image"
    VIDEO = "video", "Video"
    AUDIO = "audio", "Audio"
    FILE = "file", "File"
    SYSTEM = "system", "System"


MEDIA_MESSAGE_TYPES = frozenset(
    {MessageType.IMAGE, MessageType.VIDEO, MessageType.AUDIO, MessageType.FILE}
)


class SystemMessageEvent:
    """
    System message event types.

    System messages store structured event data as JSON in the content field.
    Format: {"event": "<event_type>", "data": {...event-specific data...}}

    Events:
        GROUP_CREATED: data {"title": str}
        GROUP_UPDATED: data {"changed_by_id": str, "fields": [str]}
        MEMBERS_ADDED: data {"user_ids": [str], "added_by_id": str}
        MEMBER_REMOVED: data {"user_id": str, "removed_by_id": str}
        MEMBER_LEFT: data {"user_id": str}
        ROLE_CHANGED: data {"user_id": str, "old_role": str, "new_role": str, "changed_by_id": str}
    """

    GROUP_CREATED = "group_created"
    GROUP_UPDATED = "group_updated"
    MEMBERS_ADDED = "members_added"
    MEMBER_REMOVED = "member_removed"
    MEMBER_LEFT = "member_left"
    ROLE_CHANGED = "role_changed"


def format_system_message(content: str) -> str:
    """
    Format system message content for display.

    Args:
        content: JSON string with {event, data}

    Returns:
        Human-readable message string
    """
    try:
        payload = json.loads(content)
        event = payload.get("event", "")
        data = payload.get("data", {})
    except (json.JSONDecodeError, TypeError, AttributeError):
        return "System message"

    formatters = {
        SystemMessageEvent.GROUP_CREATED: lambda d: f'Group "{d.get("title", "")}" was created',
        SystemMessageEvent.GROUP_UPDATED: lambda d: "Group details were updated",
        SystemMessageEvent.MEMBERS_ADDED: lambda d: (
            "1 member was added"
            if len(d.get("user_ids", [])) == 1
            else f"{len(d.get('user_ids', []))} members were added"
        ),
        SystemMessageEvent.MEMBER_REMOVED: lambda d: "A member was removed from the group",
        SystemMessageEvent.MEMBER_LEFT: lambda d: "A member left the group",
        SystemMessageEvent.ROLE_CHANGED: lambda d: f"A member's role was changed to {d.get('new_role', 'unknown')}",
    }

    formatter = formatters.get(event)
    if formatter:
        return formatter(data)
    return "System message"


class Conversation(SoftDeleteMixin, BaseModel):
    """
    A conversation between two or more users.

    Conversation Types:
        DIRECT: Exactly 2 participants, unique per user pair while live
                (enforced via DirectConversationPair). Deleted by either
                participant.
        GROUP: Named, created_by becomes the CREATOR participant.
               Deleted only by the creator.

    Soft Delete Behavior:
        Deleting hides the conversation from listings and subscriptions.
        Its messages stay in the table (orphaned, not cascaded).

    Fields:
        conversation_type: direct or group
        title: Group name (empty for direct)
        description: Group description
        created_by: Group creator (null for direct)
        is_active: Whether the group accepts new messages
        settings: Free-form group settings
        participant_count: Cached count of active participants
        last_message_preview: Denormalized preview of the latest message
        last_message_at: Timestamp of most recent message (for sorting)
    """

    conversation_type = models.CharField(
        max_length=10,
        choices=ConversationType.choices,
        default=ConversationType.GROUP,
        db_index=True,
        help_text="Type of conversation (direct or group)",
    )

    title = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Name for group conversations (empty for direct)",
    )

    description = models.TextField(
        blank=True,
        default="",
        help_text="Description for group conversations",
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_conversations",
        help_text="User who created this group (null for direct)",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether the conversation accepts new messages",
    )

    settings = models.JSONField(
        default=dict,
        blank=True,
        help_text="Optional group settings",
    )

    participant_count = models.PositiveIntegerField(
        default=0,
        help_text="Current number of active participants (cached for performance)",
    )

    last_message_preview = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Preview of the most recent message",
    )

    last_message_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Timestamp of most recent message (for sorting conversation lists)",
    )

    objects = SoftDeleteManager()
    all_objects = models.Manager()

    class Meta:
        db_table = "chat_conversation"
        ordering = ["-last_message_at", "-created_at"]
        base_manager_name = "all_objects"
        indexes = [
            models.Index(
                fields=["conversation_type", "is_deleted"],
                name="chat_conv_type_deleted_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        if self.conversation_type == ConversationType.DIRECT:
            return f"Direct({self.pk})"
        if self.title:
            return f"Group: {self.title}"
        return f"Group({self.pk})"

    @property
    def is_direct(self) -> bool:
        """Check if this is a direct (1:1) conversation."""
        return self.conversation_type == ConversationType.DIRECT

    @property
    def is_group(self) -> bool:
        """Check if this is a group conversation."""
        return self.conversation_type == ConversationType.GROUP

    def get_active_participants(self):
        """Queryset of participants that have not left."""
        return self.participants.filter(left_at__isnull=True)

    def get_active_participant_for_user(self, user: User) -> Participant | None:
        """Active participant record for a user, or None."""
        return self.participants.filter(user=user, left_at__isnull=True).first()

    def is_participant(self, user: User) -> bool:
        """Check if user is an active participant."""
        return self.participants.filter(user=user, left_at__isnull=True).exists()


class DirectConversationPair(models.Model):
    """
    Enforces uniqueness of direct conversations between two users.

    Stores user pairs in canonical order (lower user id first). The unique
    constraint is what makes get-or-create safe when both users start the
    conversation at the same moment: the losing insert fails and the loser
    reads the winner's row.

    The row is removed when the direct conversation is deleted, so the
    pair can start a fresh conversation later.

    Constraints:
        - UniqueConstraint(user_lower, user_higher): One live conversation per pair
        - CheckConstraint(user_lower_id < user_higher_id): Canonical order
    """

    conversation = models.OneToOneField(
        Conversation,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="direct_pair",
        help_text="The direct conversation this pair represents",
    )

    user_lower = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with lower ID in this conversation pair",
    )

    user_higher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with higher ID in this conversation pair",
    )

    class Meta:
        db_table = "chat_direct_conversation_pair"
        constraints = [
            models.UniqueConstraint(
                fields=["user_lower", "user_higher"],
                name="unique_direct_conversation_pair",
            ),
            models.CheckConstraint(
                condition=Q(user_lower_id__lt=F("user_higher_id")),
                name="user_lower_less_than_higher",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"DirectPair({self.user_lower_id}, {self.user_higher_id})"

    @staticmethod
    def canonical_order(user_a: User, user_b: User) -> tuple[User, User]:
        """Return the two users ordered (lower id, higher id)."""
        if user_a.pk < user_b.pk:
            return user_a, user_b
        return user_b, user_a


class Participant(BaseModel):
    """
    Tracks user participation in conversations.

    Each join creates a NEW Participant record; leaving sets left_at, so
    membership history is preserved.

    Role Assignment:
        - Direct conversations: role is NULL
        - Group conversations: creator gets CREATOR, others join as MEMBER

    Fields:
        conversation: Conversation this participation belongs to
        user: Participating user
        role: Role in group conversation (NULL for direct)
        joined_at: When the user joined
        left_at: When the user left (NULL if still active)
        left_voluntarily: True if user left, False if removed
        removed_by: User who removed this participant (if applicable)
        last_read_at: Last time user marked the conversation read
        unread_count: Messages from others since last_read_at

    Constraints:
        - UniqueConstraint(conversation, user) WHERE left_at IS NULL
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="participants",
        help_text="Conversation this participation belongs to",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="conversation_participations",
        help_text="User participating in the conversation",
    )

    role = models.CharField(
        max_length=10,
        choices=ParticipantRole.choices,
        null=True,
        blank=True,
        db_index=True,
        help_text="Role in group conversation (null for direct conversations)",
    )

    joined_at = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user joined this conversation",
    )

    left_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the user left (null if still active)",
    )

    left_voluntarily = models.BooleanField(
        null=True,
        blank=True,
        help_text="True if user left voluntarily, False if removed by someone",
    )

    removed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="removed_participants",
        help_text="User who removed this participant (if removed by someone)",
    )

    last_read_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last time user marked conversation as read",
    )

    unread_count = models.PositiveIntegerField(
        default=0,
        help_text="Unread messages from other participants (denormalized)",
    )

    class Meta:
        db_table = "chat_participant"
        ordering = ["joined_at"]
        indexes = [
            models.Index(
                fields=["conversation", "left_at"],
                name="chat_part_conv_active_idx",
            ),
            models.Index(
                fields=["user", "left_at", "-joined_at"],
                name="chat_part_user_active_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["conversation", "user"],
                condition=Q(left_at__isnull=True),
                name="unique_active_participation",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        status = "active" if self.is_active else "left"
        role_str = f" ({self.role})" if self.role else ""
        return f"Participant: {self.user_id} in {self.conversation_id}{role_str} [{status}]"

    @property
    def is_active(self) -> bool:
        """Check if this participation is currently active."""
        return self.left_at is None

    @property
    def is_creator(self) -> bool:
        """Check if participant has CREATOR role."""
        return self.role == ParticipantRole.CREATOR

    @property
    def is_admin(self) -> bool:
        """Check if participant holds admin authority (CREATOR or ADMIN)."""
        return self.role in (ParticipantRole.CREATOR, ParticipantRole.ADMIN)

    @property
    def is_member(self) -> bool:
        """Check if participant has plain MEMBER role."""
        return self.role == ParticipantRole.MEMBER


class Message(SoftDeleteMixin, BaseModel):
    """
    A message within a conversation.

    Message Types:
        TEXT: User-authored text
        IMAGE/VIDEO/AUDIO/FILE: URL of pre-uploaded media plus file_name/file_size
        SYSTEM: Generated event message (sender is NULL)

    Soft Delete Behavior:
        When is_deleted=True the row stays as a tombstone:
        - API returns the deleted variant with placeholder content
        - Replies/forwards pointing at it resolve to a placeholder
        - purge_deleted_messages hard-deletes old tombstones

    Immutable after creation:
        sender, conversation, message_type, created_at, reply_to,
        forwarded_message, forwarded_from

    Mutable:
        content (edit, sets is_edited/edited_at), read receipts, tombstone flag
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Conversation this message belongs to",
    )

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sent_messages",
        help_text="User who sent this message (null for system messages)",
    )

    message_type = models.CharField(
        max_length=10,
        choices=MessageType.choices,
        default=MessageType.TEXT,
        db_index=True,
        help_text="Kind of message content",
    )

    content = models.TextField(
        help_text="Text, media URL, or system event JSON",
    )

    file_name = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Original file name for media messages",
    )

    file_size = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Size in bytes for media messages",
    )

    reply_to = models.ForeignKey(
        "self",
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        null=True,
        blank=True,
        related_name="replies",
        help_text="Message in the same conversation this replies to",
    )

    forwarded_message = models.ForeignKey(
        "self",
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        null=True,
        blank=True,
        related_name="forwards",
        help_text="Original message this was forwarded from",
    )

    forwarded_from = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Sender of the original forwarded message",
    )

    is_edited = models.BooleanField(
        default=False,
        help_text="Whether the content was edited",
    )

    edited_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the content was last edited",
    )

    class Meta:
        db_table = "chat_message"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(
                fields=["conversation", "created_at", "id"],
                name="chat_msg_conv_cursor_idx",
            ),
            models.Index(
                fields=["sender", "-created_at"],
                name="chat_msg_sender_idx",
            ),
            models.Index(
                fields=["is_deleted", "deleted_at"],
                name="chat_msg_tombstone_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        sender_str = f"User {self.sender_id}" if self.sender_id else "System"
        content_preview = (
            self.content[:50] + "..." if len(self.content) > 50 else self.content
        )
        deleted_str = " [deleted]" if self.is_deleted else ""
        return f"{sender_str}: {content_preview}{deleted_str}"

    @property
    def is_system_message(self) -> bool:
        """Check if this is a system-generated message."""
        return self.message_type == MessageType.SYSTEM

    @property
    def is_media(self) -> bool:
        """Check if content is a media URL."""
        return self.message_type in MEDIA_MESSAGE_TYPES

    def get_system_event_data(self) -> dict | None:
        """Parse system message content as JSON ({event, data})."""
        if not self.is_system_message:
            return None
        try:
            return json.loads(self.content)
        except (json.JSONDecodeError, TypeError):
            return None

    def get_display_content(self) -> str:
        """
        Content suitable for display.

        Returns:
            - Deleted placeholder if soft deleted
            - Formatted event text for system messages
            - Original content otherwise
        """
        if self.is_deleted:
            return MESSAGE_CONFIG.DELETED_PLACEHOLDER
        if self.is_system_message:
            return format_system_message(self.content)
        return self.content

    def get_preview(self, length: int = MESSAGE_CONFIG.PREVIEW_LENGTH) -> str:
        """
        Short text for conversation lists and reply/forward projections.

        Media messages are labelled by kind (e.g. "[Image] photo.png").
        """
        if self.is_media and not self.is_deleted:
            label = f"[{self.get_message_type_display()}]"
            text = f"{label} {self.file_name}" if self.file_name else label
        else:
            text = self.get_display_content()
        if len(text) > length:
            return text[: length - 3] + "..."
        return text


class MessageReceipt(models.Model):
    """
    Read receipt: user has read message.

    The set of receipts for a message is its readBy set. A message counts
    as read once any participant other than the sender has a receipt.
    """

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="receipts",
        help_text="Message that was read",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="message_receipts",
        help_text="User who read the message",
    )

    read_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the message was read",
    )

    class Meta:
        db_table = "chat_message_receipt"
        constraints = [
            models.UniqueConstraint(
                fields=["message", "user"],
                name="unique_message_receipt",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"Receipt({self.message_id} by {self.user_id})"


class MessageEditHistory(BaseModel):
    """
    Previous content of an edited message.

    One row per edit; edit_number 1 holds the original content.
    """

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="edit_history",
        help_text="Message this edit belongs to",
    )

    content = models.TextField(
        help_text="Content before this edit",
    )

    edit_number = models.PositiveSmallIntegerField(
        help_text="Sequential edit number (1 = first edit)",
    )

    class Meta:
        db_table = "chat_message_edit_history"
        ordering = ["edit_number"]
        constraints = [
            models.UniqueConstraint(
                fields=["message", "edit_number"],
                name="unique_message_edit_number",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"Edit {self.edit_number} of message {self.message_id}"
