"""
Chat system service layer.

This module provides the business logic for the chat system, encapsulating
all operations on conversations, participants, and messages.

Services:
    ConversationService: Conversation lifecycle (direct get-or-create, groups,
        listing, deletion) and the denormalized side effects of appending
    MessageService: Message operations (send, forward, edit, delete, read)
    MembershipService: Group membership and roles (add, remove, promote,
        demote, leave)

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures return ServiceResult.failure()
    - Unexpected failures raise exceptions
    - A message and its effects on the conversation (preview, timestamp,
      unread counters) are written in one transaction
    - Group membership mutations lock the group row first, so concurrent
      changes to one group serialize
    - Real-time events are published after commit (see chat.broadcast)
    - System messages are generated for membership and group events

Usage:
    from chat.services import ConversationService, MembershipService, MessageService

    # Create or reuse a direct conversation
    result = ConversationService.get_or_create_direct(user1, user2)
    if result.success:
        conversation = result.data

    # Create a group conversation
    result = ConversationService.create_group(
        creator=user,
        title="Project Team",
        initial_members=[user2, user3],
    )

    # Send a message
    result = MessageService.send(
        conversation=conversation,
        sender=user,
        content="Hello everyone!",
    )

    # Promote a member
    MembershipService.promote(conversation, requested_by=user, user_id=user2.id)
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import TYPE_CHECKING

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import URLValidator
from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from accounts.models import User
from chat import broadcast
from chat.constants import GROUP_CONFIG, MESSAGE_CONFIG
from chat.models import (
    MEDIA_MESSAGE_TYPES,
    Conversation,
    ConversationType,
    DirectConversationPair,
    Message,
    MessageEditHistory,
    MessageReceipt,
    MessageType,
    Participant,
    ParticipantRole,
    SystemMessageEvent,
)
from core.services import BaseService, ServiceResult

if TYPE_CHECKING:
    from django.db.models import QuerySet

logger = logging.getLogger(__name__)


def _not_participant() -> ServiceResult:
    return ServiceResult.failure(
        "You are not a participant in this conversation",
        error_code="NOT_PARTICIPANT",
    )


def _parse_user_id(value) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


# =============================================================================
# ConversationService
# =============================================================================


class ConversationService(BaseService):
    """
    Service for conversation lifecycle operations.

    Methods:
        get_or_create_direct: Create or retrieve direct conversation between two users
        create_group: Create a new group conversation
        update_group: Update group title/description/settings
        list_for_user: User's live conversations, most recent first
        delete: Soft delete a conversation
        bulk_delete: Delete several conversations
        delete_all_direct: Delete all of a user's direct conversations
        lock_for_append: Serialize appends to one conversation
        append_message_side_effects: Preview/timestamp/unread updates for a new message
    """

    @classmethod
    def get_or_create_direct(
        cls,
        user_a: User,
        user_b: User,
    ) -> ServiceResult[Conversation]:
        """
        Create or retrieve a direct conversation between two users.

        Direct conversations are unique per user pair. The pair is stored in
        canonical order with a unique constraint; when two first-contact
        attempts race, the losing insert raises IntegrityError, its savepoint
        is rolled back and the winner's conversation is returned.

        Args:
            user_a: First participant
            user_b: Second participant

        Returns:
            ServiceResult with Conversation (existing or new)

        Error codes:
            SAME_USER: Cannot create direct conversation with yourself
        """
        if user_a.pk == user_b.pk:
            return ServiceResult.failure(
                "Cannot create a direct conversation with yourself",
                error_code="SAME_USER",
            )

        user_lower, user_higher = DirectConversationPair.canonical_order(user_a, user_b)

        existing = cls._find_direct(user_lower, user_higher)
        if existing is not None:
            cls.get_logger().debug(
                f"Found existing direct conversation {existing.id} "
                f"between users {user_lower.id} and {user_higher.id}"
            )
            return ServiceResult.success(existing)

        try:
            with transaction.atomic():
                conversation = Conversation.objects.create(
                    conversation_type=ConversationType.DIRECT,
                    created_by=None,
                    participant_count=2,
                )
                DirectConversationPair.objects.create(
                    conversation=conversation,
                    user_lower=user_lower,
                    user_higher=user_higher,
                )
                Participant.objects.bulk_create(
                    [
                        Participant(conversation=conversation, user=user_lower),
                        Participant(conversation=conversation, user=user_higher),
                    ]
                )
                broadcast.conversation_added(conversation)
        except IntegrityError:
            existing = cls._find_direct(user_lower, user_higher)
            if existing is None:
                raise
            cls.get_logger().info(
                f"Concurrent direct conversation creation for users "
                f"{user_lower.id} and {user_higher.id}, using {existing.id}"
            )
            return ServiceResult.success(existing)

        cls.get_logger().info(
            f"Created direct conversation {conversation.id} "
            f"between users {user_lower.id} and {user_higher.id}"
        )

        return ServiceResult.success(conversation)

    @classmethod
    def _find_direct(cls, user_lower: User, user_higher: User) -> Conversation | None:
        pair = (
            DirectConversationPair.objects.select_related("conversation")
            .filter(user_lower=user_lower, user_higher=user_higher)
            .first()
        )
        return pair.conversation if pair else None

    @classmethod
    def create_group(
        cls,
        creator: User,
        title: str,
        initial_members: list[User] | None = None,
        description: str = "",
        settings: dict | None = None,
    ) -> ServiceResult[Conversation]:
        """
        Create a new group conversation.

        The creator becomes the CREATOR participant. Initial members join
        as members. A group_created system message records the event.

        Args:
            creator: User creating the group
            title: Required group name
            initial_members: At least one other user
            description: Optional description
            settings: Optional free-form settings

        Returns:
            ServiceResult with new Conversation

        Error codes:
            TITLE_REQUIRED: Group name cannot be empty
            TITLE_TOO_LONG: Group name exceeds the maximum length
            DESCRIPTION_TOO_LONG: Description exceeds the maximum length
            MEMBERS_REQUIRED: At least one member besides the creator
        """
        title = title.strip() if title else ""
        if not title:
            return ServiceResult.failure(
                "Group title is required",
                error_code="TITLE_REQUIRED",
            )
        if len(title) > GROUP_CONFIG.MAX_TITLE_LENGTH:
            return ServiceResult.failure(
                f"Group title cannot exceed {GROUP_CONFIG.MAX_TITLE_LENGTH} characters",
                error_code="TITLE_TOO_LONG",
            )

        description = (description or "").strip()
        if len(description) > GROUP_CONFIG.MAX_DESCRIPTION_LENGTH:
            return ServiceResult.failure(
                f"Description cannot exceed {GROUP_CONFIG.MAX_DESCRIPTION_LENGTH} characters",
                error_code="DESCRIPTION_TOO_LONG",
            )

        # Deduplicate and drop the creator
        members: dict = {}
        for member in initial_members or []:
            if member.pk != creator.pk:
                members[member.pk] = member
        if not members:
            return ServiceResult.failure(
                "A group needs at least one other member",
                error_code="MEMBERS_REQUIRED",
            )

        with transaction.atomic():
            conversation = Conversation.objects.create(
                conversation_type=ConversationType.GROUP,
                title=title,
                description=description,
                settings=settings or {},
                created_by=creator,
                participant_count=1 + len(members),
            )

            Participant.objects.create(
                conversation=conversation,
                user=creator,
                role=ParticipantRole.CREATOR,
            )
            Participant.objects.bulk_create(
                [
                    Participant(
                        conversation=conversation,
                        user=member,
                        role=ParticipantRole.MEMBER,
                    )
                    for member in members.values()
                ]
            )

            MessageService._create_system_message(
                conversation=conversation,
                event=SystemMessageEvent.GROUP_CREATED,
                data={"title": title},
            )
            broadcast.conversation_added(conversation)

        cls.get_logger().info(
            f"Created group conversation {conversation.id} "
            f"titled '{title}' with {1 + len(members)} participants"
        )

        return ServiceResult.success(conversation)

    @classmethod
    def update_group(
        cls,
        conversation: Conversation,
        user: User,
        title: str | None = None,
        description: str | None = None,
        settings: dict | None = None,
    ) -> ServiceResult[Conversation]:
        """
        Update group details.

        Only admins (creator included) can update details. Fields left as
        None are unchanged.

        Error codes:
            NOT_GROUP: Direct conversations have no details
            NOT_PARTICIPANT: User is not in this conversation
            PERMISSION_DENIED: User is not an admin
            TITLE_REQUIRED / TITLE_TOO_LONG / DESCRIPTION_TOO_LONG
            NO_CHANGES: Nothing to update
        """
        if conversation.is_direct:
            return ServiceResult.failure(
                "Cannot update details of a direct conversation",
                error_code="NOT_GROUP",
            )

        participant = conversation.get_active_participant_for_user(user)
        if not participant:
            return _not_participant()

        if not participant.is_admin:
            return ServiceResult.failure(
                "Only group admins can update group details",
                error_code="PERMISSION_DENIED",
            )

        changed_fields = []
        if title is not None:
            title = title.strip()
            if not title:
                return ServiceResult.failure(
                    "Group title cannot be empty",
                    error_code="TITLE_REQUIRED",
                )
            if len(title) > GROUP_CONFIG.MAX_TITLE_LENGTH:
                return ServiceResult.failure(
                    f"Group title cannot exceed {GROUP_CONFIG.MAX_TITLE_LENGTH} characters",
                    error_code="TITLE_TOO_LONG",
                )
            if title != conversation.title:
                conversation.title = title
                changed_fields.append("title")

        if description is not None:
            description = description.strip()
            if len(description) > GROUP_CONFIG.MAX_DESCRIPTION_LENGTH:
                return ServiceResult.failure(
                    f"Description cannot exceed {GROUP_CONFIG.MAX_DESCRIPTION_LENGTH} characters",
                    error_code="DESCRIPTION_TOO_LONG",
                )
            if description != conversation.description:
                conversation.description = description
                changed_fields.append("description")

        if settings is not None and settings != conversation.settings:
            conversation.settings = settings
            changed_fields.append("settings")

        if not changed_fields:
            return ServiceResult.failure(
                "No changes to apply",
                error_code="NO_CHANGES",
            )

        with transaction.atomic():
            conversation.save(update_fields=[*changed_fields, "updated_at"])
            MessageService._create_system_message(
                conversation=conversation,
                event=SystemMessageEvent.GROUP_UPDATED,
                data={"changed_by_id": str(user.id), "fields": changed_fields},
            )

        cls.get_logger().info(
            f"User {user.id} updated {', '.join(changed_fields)} "
            f"of conversation {conversation.id}"
        )

        return ServiceResult.success(conversation)

    @classmethod
    def list_for_user(
        cls,
        user: User,
        conversation_type: str | None = None,
        search: str | None = None,
    ) -> QuerySet[Conversation]:
        """
        Live conversations the user actively participates in.

        Ordered by most recent activity. ``search`` matches group title or
        description, or the display name/email of another participant.
        """
        queryset = Conversation.objects.filter(
            participants__user=user,
            participants__left_at__isnull=True,
        )

        if conversation_type:
            queryset = queryset.filter(conversation_type=conversation_type)

        search = (search or "").strip()
        if search:
            matching_others = (
                Participant.objects.filter(left_at__isnull=True)
                .exclude(user=user)
                .filter(
                    Q(user__display_name__icontains=search)
                    | Q(user__email__icontains=search)
                )
                .values("conversation_id")
            )
            queryset = queryset.filter(
                Q(title__icontains=search)
                | Q(description__icontains=search)
                | Q(id__in=matching_others)
            )

        return queryset.order_by(
            F("last_message_at").desc(nulls_last=True),
            "-created_at",
        )

    @classmethod
    def delete(
        cls,
        conversation: Conversation,
        requested_by: User,
    ) -> ServiceResult[None]:
        """
        Soft delete a conversation.

        Direct conversations can be deleted by either participant; their
        pair row is removed so a new conversation can be started later.
        Groups can only be deleted by the creator. Messages are kept.

        Error codes:
            CONVERSATION_NOT_FOUND: Already deleted
            NOT_PARTICIPANT: User is not in this conversation
            PERMISSION_DENIED: Only the creator can delete a group
        """
        if conversation.is_deleted:
            return ServiceResult.failure(
                "Conversation not found",
                error_code="CONVERSATION_NOT_FOUND",
            )

        participant = conversation.get_active_participant_for_user(requested_by)
        if not participant:
            return _not_participant()

        if conversation.is_group and not participant.is_creator:
            return ServiceResult.failure(
                "Only the group creator can delete the group",
                error_code="PERMISSION_DENIED",
            )

        user_ids = list(
            conversation.get_active_participants().values_list("user_id", flat=True)
        )

        with transaction.atomic():
            conversation.soft_delete()
            if conversation.is_direct:
                DirectConversationPair.objects.filter(
                    conversation=conversation
                ).delete()
            broadcast.conversation_removed(conversation, user_ids)

        cls.get_logger().info(
            f"Soft deleted conversation {conversation.id} by user {requested_by.id}"
        )

        return ServiceResult.success(None)

    @classmethod
    def bulk_delete(
        cls,
        user: User,
        conversation_ids: list[int],
    ) -> ServiceResult[int]:
        """
        Delete several conversations the user may delete.

        Conversations the user cannot delete are skipped.

        Returns:
            ServiceResult with the number of deleted conversations

        Error codes:
            CONVERSATION_IDS_REQUIRED: Empty id list
        """
        if not conversation_ids:
            return ServiceResult.failure(
                "No conversations selected",
                error_code="CONVERSATION_IDS_REQUIRED",
            )

        conversations = cls.list_for_user(user).filter(id__in=conversation_ids)
        deleted = sum(1 for conversation in conversations if cls.delete(conversation, user))

        cls.get_logger().info(
            f"User {user.id} bulk deleted {deleted} of "
            f"{len(conversation_ids)} requested conversations"
        )
        return ServiceResult.success(deleted)

    @classmethod
    def delete_all_direct(cls, user: User) -> ServiceResult[int]:
        """Delete every direct conversation of the user."""
        conversations = cls.list_for_user(user, conversation_type=ConversationType.DIRECT)
        deleted = sum(1 for conversation in conversations if cls.delete(conversation, user))

        cls.get_logger().info(f"User {user.id} cleared {deleted} direct conversations")
        return ServiceResult.success(deleted)

    @classmethod
    def lock_for_append(cls, conversation: Conversation) -> None:
        """
        Lock the conversation row before a message is inserted.

        Call inside transaction.atomic(). Appends to one conversation are
        serialized, so creation timestamps follow commit order and the
        added events fan out in that order.
        """
        Conversation.all_objects.select_for_update().filter(
            pk=conversation.pk
        ).values_list("pk", flat=True).first()

    @classmethod
    def append_message_side_effects(
        cls,
        conversation: Conversation,
        message: Message,
    ) -> None:
        """
        Update denormalized conversation state for a newly appended message.

        Must run inside the transaction that created the message, after
        lock_for_append(). Sets the preview and timestamp unless a newer
        message is already recorded, and increments unread_count for every
        active participant except the sender. System messages do not count
        as unread.
        """
        preview = message.get_preview()
        updated = (
            Conversation.all_objects.filter(pk=conversation.pk)
            .filter(
                Q(last_message_at__isnull=True)
                | Q(last_message_at__lte=message.created_at)
            )
            .update(
                last_message_preview=preview,
                last_message_at=message.created_at,
                updated_at=timezone.now(),
            )
        )
        if updated:
            conversation.last_message_preview = preview
            conversation.last_message_at = message.created_at

        if message.sender_id is not None:
            Participant.objects.filter(
                conversation=conversation,
                left_at__isnull=True,
            ).exclude(user_id=message.sender_id).update(
                unread_count=F("unread_count") + 1
            )

    @classmethod
    def refresh_preview(cls, conversation: Conversation) -> None:
        """Recompute the preview from the latest message (after edit/delete)."""
        latest = conversation.messages.order_by("-created_at", "-id").first()
        preview = latest.get_preview() if latest else ""
        Conversation.all_objects.filter(pk=conversation.pk).update(
            last_message_preview=preview
        )
        conversation.last_message_preview = preview


# =============================================================================
# MessageService
# =============================================================================


class MessageService(BaseService):
    """
    Service for message operations.

    Methods:
        send: Append a text or media message
        forward: Copy a message into another conversation
        edit: Change the content of own message
        get_edit_history: Previous versions of a message
        delete: Tombstone a message
        mark_read: Record receipts and reset the unread counter
        query: Messages of a conversation in order
    """

    _url_validator = URLValidator(schemes=["http", "https"])

    @classmethod
    def _check_writable(
        cls,
        conversation: Conversation,
        user: User,
    ) -> ServiceResult | None:
        if conversation.is_deleted:
            return ServiceResult.failure(
                "Cannot send messages to a deleted conversation",
                error_code="CONVERSATION_DELETED",
            )
        if not conversation.is_active:
            return ServiceResult.failure(
                "This conversation no longer accepts messages",
                error_code="CONVERSATION_INACTIVE",
            )
        if not conversation.is_participant(user):
            return _not_participant()
        return None

    @classmethod
    def _validate_content(cls, content: str, message_type: str) -> ServiceResult | None:
        if not content:
            return ServiceResult.failure(
                "Message content cannot be empty",
                error_code="EMPTY_CONTENT",
            )
        if len(content) > MESSAGE_CONFIG.MAX_CONTENT_LENGTH:
            return ServiceResult.failure(
                f"Message cannot exceed {MESSAGE_CONFIG.MAX_CONTENT_LENGTH} characters",
                error_code="CONTENT_TOO_LONG",
            )
        if message_type in MEDIA_MESSAGE_TYPES:
            try:
                cls._url_validator(content)
            except DjangoValidationError:
                return ServiceResult.failure(
                    "Media messages must contain a valid URL",
                    error_code="INVALID_MEDIA_URL",
                )
        return None

    @classmethod
    def send(
        cls,
        conversation: Conversation,
        sender: User,
        content: str,
        message_type: str = MessageType.TEXT,
        reply_to_id: int | None = None,
        file_name: str = "",
        file_size: int | None = None,
    ) -> ServiceResult[Message]:
        """
        Append a message to a conversation.

        The message row, the conversation preview/timestamp and the unread
        counters are written in one transaction. The timestamp is assigned
        by the server.

        Args:
            conversation: Target conversation
            sender: User sending the message
            content: Text, or the URL of pre-uploaded media
            message_type: text/image/video/audio/file
            reply_to_id: Optional id of a live message in this conversation
            file_name: Media file name
            file_size: Media size in bytes

        Returns:
            ServiceResult with new Message

        Error codes:
            CONVERSATION_DELETED: Conversation is deleted
            CONVERSATION_INACTIVE: Conversation does not accept messages
            NOT_PARTICIPANT: Sender is not active in conversation
            INVALID_MESSAGE_TYPE: Unknown or system message type
            EMPTY_CONTENT / CONTENT_TOO_LONG / INVALID_MEDIA_URL
            INVALID_REPLY_TARGET: Reply target not in this conversation
        """
        failure = cls._check_writable(conversation, sender)
        if failure:
            return failure

        if message_type not in MessageType.values or message_type == MessageType.SYSTEM:
            return ServiceResult.failure(
                f"Invalid message type: {message_type}",
                error_code="INVALID_MESSAGE_TYPE",
            )

        content = content.strip() if content else ""
        failure = cls._validate_content(content, message_type)
        if failure:
            return failure

        reply_to = None
        if reply_to_id is not None:
            reply_to = Message.objects.filter(
                id=reply_to_id,
                conversation=conversation,
                is_deleted=False,
            ).first()
            if reply_to is None:
                return ServiceResult.failure(
                    "Reply target not found in this conversation",
                    error_code="INVALID_REPLY_TARGET",
                )

        is_media = message_type in MEDIA_MESSAGE_TYPES
        message = cls._append(
            conversation,
            sender=sender,
            message_type=message_type,
            content=content,
            reply_to=reply_to,
            file_name=(file_name or "") if is_media else "",
            file_size=file_size if is_media else None,
        )

        cls.get_logger().debug(
            f"User {sender.id} sent message {message.id} "
            f"to conversation {conversation.id}"
        )

        return ServiceResult.success(message)

    @classmethod
    def forward(
        cls,
        message_id: int,
        user: User,
        target_conversation: Conversation,
    ) -> ServiceResult[Message]:
        """
        Forward a message into another conversation.

        The user must be able to read the source message and write to the
        target. The new message copies the source kind and content and
        links back to the original message and its author.

        Error codes:
            MESSAGE_NOT_FOUND: Source does not exist
            MESSAGE_DELETED: Source is deleted
            SYSTEM_MESSAGE: System messages cannot be forwarded
            SOURCE_NOT_ACCESSIBLE: User cannot read the source
            plus the send checks for the target conversation
        """
        source = Message.objects.select_related("conversation").filter(id=message_id).first()
        if source is None:
            return ServiceResult.failure(
                "Message not found",
                error_code="MESSAGE_NOT_FOUND",
            )
        if source.is_deleted:
            return ServiceResult.failure(
                "Cannot forward a deleted message",
                error_code="MESSAGE_DELETED",
            )
        if source.is_system_message:
            return ServiceResult.failure(
                "Cannot forward system messages",
                error_code="SYSTEM_MESSAGE",
            )
        if not source.conversation.is_participant(user):
            return ServiceResult.failure(
                "You cannot access the original message",
                error_code="SOURCE_NOT_ACCESSIBLE",
            )

        failure = cls._check_writable(target_conversation, user)
        if failure:
            return failure

        message = cls._append(
            target_conversation,
            sender=user,
            message_type=source.message_type,
            content=source.content,
            file_name=source.file_name,
            file_size=source.file_size,
            forwarded_message=source,
            forwarded_from_id=source.forwarded_from_id or source.sender_id,
        )

        cls.get_logger().info(
            f"User {user.id} forwarded message {source.id} "
            f"to conversation {target_conversation.id} as {message.id}"
        )

        return ServiceResult.success(message)

    @classmethod
    def _append(cls, conversation: Conversation, **fields) -> Message:
        with transaction.atomic():
            ConversationService.lock_for_append(conversation)
            message = Message.objects.create(conversation=conversation, **fields)
            ConversationService.append_message_side_effects(conversation, message)
            broadcast.message_added(message)
            broadcast.conversation_changed(conversation)
        return message

    @classmethod
    def edit(
        cls,
        message_id: int,
        user: User,
        new_content: str,
    ) -> ServiceResult[Message]:
        """
        Edit the content of a message.

        Only the sender can edit. The kind never changes, so media edits
        must still be a URL. The previous content is stored in
        MessageEditHistory.

        Error codes:
            MESSAGE_NOT_FOUND: Message does not exist
            NOT_PARTICIPANT: User is not in the conversation
            PERMISSION_DENIED: User is not the sender
            SYSTEM_MESSAGE: Cannot edit system messages
            MESSAGE_DELETED: Cannot edit deleted messages
            EMPTY_CONTENT / CONTENT_TOO_LONG / INVALID_MEDIA_URL
            NO_CHANGES: Content is unchanged
        """
        message = Message.objects.select_related("conversation").filter(id=message_id).first()
        if message is None:
            return ServiceResult.failure(
                "Message not found",
                error_code="MESSAGE_NOT_FOUND",
            )

        if message.is_system_message:
            return ServiceResult.failure(
                "Cannot edit system messages",
                error_code="SYSTEM_MESSAGE",
            )

        if not message.conversation.is_participant(user):
            return _not_participant()

        if message.sender_id != user.id:
            return ServiceResult.failure(
                "You can only edit your own messages",
                error_code="PERMISSION_DENIED",
            )

        new_content = new_content.strip() if new_content else ""
        failure = cls._validate_content(new_content, message.message_type)
        if failure:
            return failure

        with transaction.atomic():
            # Lock to serialize concurrent edits of one message
            message = Message.objects.select_for_update().get(id=message_id)

            if message.is_deleted:
                return ServiceResult.failure(
                    "Cannot edit deleted messages",
                    error_code="MESSAGE_DELETED",
                )
            if message.content == new_content:
                return ServiceResult.failure(
                    "Content is unchanged",
                    error_code="NO_CHANGES",
                )

            MessageEditHistory.objects.create(
                message=message,
                content=message.content,
                edit_number=message.edit_history.count() + 1,
            )

            message.content = new_content
            message.is_edited = True
            message.edited_at = timezone.now()
            message.save(update_fields=["content", "is_edited", "edited_at", "updated_at"])

            conversation = message.conversation
            ConversationService.refresh_preview(conversation)
            broadcast.message_modified(message)
            broadcast.conversation_changed(conversation)

        cls.get_logger().info(f"User {user.id} edited message {message.id}")

        return ServiceResult.success(message)

    @classmethod
    def get_edit_history(
        cls,
        message_id: int,
        user: User,
    ) -> ServiceResult[list[MessageEditHistory]]:
        """
        Get edit history for a message, oldest first.

        Error codes:
            MESSAGE_NOT_FOUND: Message does not exist
            NOT_PARTICIPANT: User is not in the conversation
        """
        message = Message.objects.select_related("conversation").filter(id=message_id).first()
        if message is None:
            return ServiceResult.failure(
                "Message not found",
                error_code="MESSAGE_NOT_FOUND",
            )

        if not message.conversation.is_participant(user):
            return _not_participant()

        return ServiceResult.success(list(message.edit_history.all()))

    @classmethod
    def delete(
        cls,
        message: Message,
        user: User,
    ) -> ServiceResult[None]:
        """
        Tombstone a message.

        The sender can delete their own messages; group admins can delete
        any message in their group. Messages replying to or forwarding this
        one are untouched and resolve it to a placeholder.

        Error codes:
            SYSTEM_MESSAGE: Cannot delete system messages
            ALREADY_DELETED: Message is already deleted
            NOT_PARTICIPANT: User is not in this conversation
            PERMISSION_DENIED: Not the sender or a group admin
        """
        conversation = message.conversation

        if message.is_system_message:
            return ServiceResult.failure(
                "Cannot delete system messages",
                error_code="SYSTEM_MESSAGE",
            )

        if message.is_deleted:
            return ServiceResult.failure(
                "Message is already deleted",
                error_code="ALREADY_DELETED",
            )

        participant = conversation.get_active_participant_for_user(user)
        if not participant:
            return _not_participant()

        is_own_message = message.sender_id == user.id
        is_group_admin = conversation.is_group and participant.is_admin
        if not (is_own_message or is_group_admin):
            return ServiceResult.failure(
                "You can only delete your own messages",
                error_code="PERMISSION_DENIED",
            )

        with transaction.atomic():
            message.soft_delete()
            ConversationService.refresh_preview(conversation)
            broadcast.message_removed(message)
            broadcast.conversation_changed(conversation)

        cls.get_logger().info(
            f"User {user.id} deleted message {message.id} "
            f"in conversation {conversation.id}"
        )

        return ServiceResult.success(None)

    @classmethod
    def mark_read(
        cls,
        conversation: Conversation,
        user: User,
    ) -> ServiceResult[int]:
        """
        Mark a conversation as read for a user.

        Adds the user to the readBy set of every message from someone else,
        resets the user's unread_count and sets last_read_at.

        Returns:
            ServiceResult with the number of newly read messages

        Error codes:
            NOT_PARTICIPANT: User is not in this conversation
        """
        participant = conversation.get_active_participant_for_user(user)
        if not participant:
            return _not_participant()

        now = timezone.now()
        with transaction.atomic():
            unread_ids = list(
                conversation.messages.filter(sender__isnull=False)
                .exclude(sender=user)
                .exclude(receipts__user=user)
                .values_list("id", flat=True)
            )
            MessageReceipt.objects.bulk_create(
                [
                    MessageReceipt(message_id=message_id, user=user, read_at=now)
                    for message_id in unread_ids
                ],
                ignore_conflicts=True,
            )

            participant.unread_count = 0
            participant.last_read_at = now
            participant.save(update_fields=["unread_count", "last_read_at", "updated_at"])

            for message in Message.objects.filter(id__in=unread_ids):
                broadcast.message_modified(message)
            broadcast.conversation_changed(conversation, user_ids=[user.id])

        cls.get_logger().debug(
            f"User {user.id} read {len(unread_ids)} messages "
            f"in conversation {conversation.id}"
        )

        return ServiceResult.success(len(unread_ids))

    @classmethod
    def query(
        cls,
        conversation: Conversation,
        user: User,
    ) -> ServiceResult[QuerySet[Message]]:
        """
        Messages of a conversation ordered by (created_at, id).

        Tombstones are included so clients can show the deleted variant.

        Error codes:
            NOT_PARTICIPANT: User is not in this conversation
        """
        if not conversation.is_participant(user):
            return _not_participant()

        queryset = (
            conversation.messages.select_related("sender", "forwarded_from")
            .prefetch_related("receipts")
            .order_by("created_at", "id")
        )
        return ServiceResult.success(queryset)

    @classmethod
    def _create_system_message(
        cls,
        conversation: Conversation,
        event: str,
        data: dict,
    ) -> Message:
        """
        Internal: Create a system event message.

        System messages have:
        - sender = None (system-generated)
        - message_type = SYSTEM
        - content = JSON with {event, data}

        This method should be called within an existing transaction.
        """
        ConversationService.lock_for_append(conversation)
        message = Message.objects.create(
            conversation=conversation,
            sender=None,
            message_type=MessageType.SYSTEM,
            content=json.dumps({"event": event, "data": data}),
        )
        ConversationService.append_message_side_effects(conversation, message)
        broadcast.message_added(message)
        broadcast.conversation_changed(conversation)
        return message


# =============================================================================
# MembershipService
# =============================================================================


class MembershipService(BaseService):
    """
    Service for group membership and roles.

    Every mutation locks the group row (select_for_update) before reading
    participations, so changes to one group are applied one at a time.

    Permission rules:
        - Admins (creator included) add and remove members
        - Only the creator promotes and demotes
        - The creator can never be removed, demoted or leave
        - Any other member may leave

    Methods:
        add_members: Add users to a group (idempotent)
        remove_member: Remove a participant
        promote: Make a member an admin
        demote: Make an admin a member
        leave: Remove yourself from a group
        end_memberships: Release a user being deleted from all conversations
    """

    @classmethod
    def _lock_group(cls, conversation: Conversation) -> Conversation | None:
        """Lock and re-read the group row. Call inside transaction.atomic()."""
        return (
            Conversation.all_objects.select_for_update()
            .filter(pk=conversation.pk, is_deleted=False)
            .first()
        )

    @classmethod
    def _check_group(cls, conversation: Conversation) -> ServiceResult | None:
        if conversation.is_direct:
            return ServiceResult.failure(
                "Direct conversations have fixed membership",
                error_code="NOT_GROUP",
            )
        return None

    @classmethod
    def _conversation_gone(cls) -> ServiceResult:
        return ServiceResult.failure(
            "Conversation not found",
            error_code="CONVERSATION_NOT_FOUND",
        )

    @classmethod
    def add_members(
        cls,
        conversation: Conversation,
        requested_by: User,
        user_ids: list,
    ) -> ServiceResult[list[Participant]]:
        """
        Add users to a group.

        Users that are already active participants are skipped. One
        members_added system message names the users actually added.

        Returns:
            ServiceResult with the created Participant records

        Error codes:
            NOT_GROUP: Cannot add to direct conversations
            USER_IDS_REQUIRED: Empty id list
            USER_NOT_FOUND: An id does not match an active user
            NOT_PARTICIPANT: Requester is not in the group
            PERMISSION_DENIED: Requester is not an admin
        """
        failure = cls._check_group(conversation)
        if failure:
            return failure

        if not user_ids:
            return ServiceResult.failure(
                "No users selected",
                error_code="USER_IDS_REQUIRED",
            )

        parsed_ids = {_parse_user_id(value) for value in user_ids}
        if None in parsed_ids:
            return ServiceResult.failure(
                "User not found",
                error_code="USER_NOT_FOUND",
            )

        users = list(User.objects.filter(id__in=parsed_ids, is_active=True))
        if len(users) != len(parsed_ids):
            return ServiceResult.failure(
                "User not found",
                error_code="USER_NOT_FOUND",
            )

        with transaction.atomic():
            locked = cls._lock_group(conversation)
            if locked is None:
                return cls._conversation_gone()

            requester = locked.get_active_participant_for_user(requested_by)
            if not requester:
                return _not_participant()
            if not requester.is_admin:
                return ServiceResult.failure(
                    "Only group admins can add members",
                    error_code="PERMISSION_DENIED",
                )

            active_ids = set(
                locked.get_active_participants().values_list("user_id", flat=True)
            )
            new_users = [user for user in users if user.id not in active_ids]
            if not new_users:
                return ServiceResult.success([])

            participants = Participant.objects.bulk_create(
                [
                    Participant(
                        conversation=locked,
                        user=user,
                        role=ParticipantRole.MEMBER,
                    )
                    for user in new_users
                ]
            )
            Conversation.all_objects.filter(pk=locked.pk).update(
                participant_count=F("participant_count") + len(new_users)
            )

            MessageService._create_system_message(
                conversation=locked,
                event=SystemMessageEvent.MEMBERS_ADDED,
                data={
                    "user_ids": [str(user.id) for user in new_users],
                    "added_by_id": str(requested_by.id),
                },
            )
            broadcast.conversation_added(locked, [user.id for user in new_users])

        conversation.refresh_from_db()
        cls.get_logger().info(
            f"User {requested_by.id} added {len(new_users)} members "
            f"to conversation {conversation.id}"
        )

        return ServiceResult.success(participants)

    @classmethod
    def remove_member(
        cls,
        conversation: Conversation,
        requested_by: User,
        user_id,
    ) -> ServiceResult[None]:
        """
        Remove a participant from a group.

        Removing a participant also removes any admin role they held.

        Error codes:
            NOT_GROUP: Cannot remove from direct conversations
            CANNOT_REMOVE_CREATOR: The creator can never be removed
            CANNOT_REMOVE_SELF: Use leave() instead
            NOT_PARTICIPANT: Requester is not in the group
            TARGET_NOT_PARTICIPANT: Target is not an active participant
            PERMISSION_DENIED: Requester is not an admin
        """
        failure = cls._check_group(conversation)
        if failure:
            return failure

        target_id = _parse_user_id(user_id)
        if target_id is not None and target_id == conversation.created_by_id:
            return ServiceResult.failure(
                "The group creator cannot be removed",
                error_code="CANNOT_REMOVE_CREATOR",
            )
        if target_id == requested_by.id:
            return ServiceResult.failure(
                "Use leave to remove yourself from a group",
                error_code="CANNOT_REMOVE_SELF",
            )

        with transaction.atomic():
            locked = cls._lock_group(conversation)
            if locked is None:
                return cls._conversation_gone()

            requester = locked.get_active_participant_for_user(requested_by)
            if not requester:
                return _not_participant()

            target = (
                locked.get_active_participants().filter(user_id=target_id).first()
                if target_id
                else None
            )
            if not target:
                return ServiceResult.failure(
                    "User is not an active participant in this group",
                    error_code="TARGET_NOT_PARTICIPANT",
                )

            if target.is_creator or target.user_id == locked.created_by_id:
                return ServiceResult.failure(
                    "The group creator cannot be removed",
                    error_code="CANNOT_REMOVE_CREATOR",
                )

            if not requester.is_admin:
                return ServiceResult.failure(
                    "Only group admins can remove members",
                    error_code="PERMISSION_DENIED",
                )

            target.left_at = timezone.now()
            target.left_voluntarily = False
            target.removed_by = requested_by
            target.role = ParticipantRole.MEMBER
            target.save(
                update_fields=[
                    "left_at",
                    "left_voluntarily",
                    "removed_by",
                    "role",
                    "updated_at",
                ]
            )
            Conversation.all_objects.filter(pk=locked.pk).update(
                participant_count=F("participant_count") - 1
            )

            MessageService._create_system_message(
                conversation=locked,
                event=SystemMessageEvent.MEMBER_REMOVED,
                data={
                    "user_id": str(target.user_id),
                    "removed_by_id": str(requested_by.id),
                },
            )
            broadcast.conversation_removed(locked, [target.user_id])

        conversation.refresh_from_db()
        cls.get_logger().info(
            f"User {requested_by.id} removed user {target.user_id} "
            f"from conversation {conversation.id}"
        )

        return ServiceResult.success(None)

    @classmethod
    def promote(
        cls,
        conversation: Conversation,
        requested_by: User,
        user_id,
    ) -> ServiceResult[Participant]:
        """Make a member an admin. Only the creator can promote."""
        return cls._change_role(
            conversation, requested_by, user_id, ParticipantRole.ADMIN
        )

    @classmethod
    def demote(
        cls,
        conversation: Conversation,
        requested_by: User,
        user_id,
    ) -> ServiceResult[Participant]:
        """Make an admin a member. Only the creator can demote; never the creator."""
        return cls._change_role(
            conversation, requested_by, user_id, ParticipantRole.MEMBER
        )

    @classmethod
    def _change_role(
        cls,
        conversation: Conversation,
        requested_by: User,
        user_id,
        new_role: str,
    ) -> ServiceResult[Participant]:
        """
        Shared promote/demote logic.

        Idempotent: a target already in new_role is returned unchanged and
        no system message is created.

        Error codes:
            NOT_GROUP: Direct conversations have no roles
            NOT_PARTICIPANT: Requester is not in the group
            PERMISSION_DENIED: Requester is not the creator
            TARGET_NOT_PARTICIPANT: Target is not an active participant
            CANNOT_DEMOTE_CREATOR: The creator's role never changes
        """
        failure = cls._check_group(conversation)
        if failure:
            return failure

        target_id = _parse_user_id(user_id)

        with transaction.atomic():
            locked = cls._lock_group(conversation)
            if locked is None:
                return cls._conversation_gone()

            requester = locked.get_active_participant_for_user(requested_by)
            if not requester:
                return _not_participant()

            if target_id is not None and target_id == locked.created_by_id:
                return ServiceResult.failure(
                    "The group creator's role cannot be changed",
                    error_code="CANNOT_DEMOTE_CREATOR",
                )

            if not requester.is_creator:
                return ServiceResult.failure(
                    "Only the group creator can change roles",
                    error_code="PERMISSION_DENIED",
                )

            target = (
                locked.get_active_participants().filter(user_id=target_id).first()
                if target_id
                else None
            )
            if not target:
                return ServiceResult.failure(
                    "User is not an active participant in this group",
                    error_code="TARGET_NOT_PARTICIPANT",
                )

            if target.is_creator:
                return ServiceResult.failure(
                    "The group creator's role cannot be changed",
                    error_code="CANNOT_DEMOTE_CREATOR",
                )

            if target.role == new_role:
                return ServiceResult.success(target)

            old_role = target.role
            target.role = new_role
            target.save(update_fields=["role", "updated_at"])

            MessageService._create_system_message(
                conversation=locked,
                event=SystemMessageEvent.ROLE_CHANGED,
                data={
                    "user_id": str(target.user_id),
                    "old_role": old_role,
                    "new_role": new_role,
                    "changed_by_id": str(requested_by.id),
                },
            )

        cls.get_logger().info(
            f"User {requested_by.id} changed role of user {target.user_id} "
            f"in conversation {conversation.id} from {old_role} to {new_role}"
        )

        return ServiceResult.success(target)

    @classmethod
    def leave(
        cls,
        conversation: Conversation,
        user: User,
    ) -> ServiceResult[None]:
        """
        Remove yourself from a group.

        The creator cannot leave and deletes the group instead. Direct
        conversations are left by deleting them.

        Error codes:
            NOT_GROUP: Use delete for direct conversations
            NOT_PARTICIPANT: User is not in the group
            CREATOR_CANNOT_LEAVE: The creator must delete the group
        """
        failure = cls._check_group(conversation)
        if failure:
            return failure

        with transaction.atomic():
            locked = cls._lock_group(conversation)
            if locked is None:
                return cls._conversation_gone()

            participant = locked.get_active_participant_for_user(user)
            if not participant:
                return _not_participant()

            if participant.is_creator:
                return ServiceResult.failure(
                    "The group creator cannot leave. Delete the group instead.",
                    error_code="CREATOR_CANNOT_LEAVE",
                )

            participant.left_at = timezone.now()
            participant.left_voluntarily = True
            participant.removed_by = None
            participant.role = ParticipantRole.MEMBER
            participant.save(
                update_fields=[
                    "left_at",
                    "left_voluntarily",
                    "removed_by",
                    "role",
                    "updated_at",
                ]
            )
            Conversation.all_objects.filter(pk=locked.pk).update(
                participant_count=F("participant_count") - 1
            )

            MessageService._create_system_message(
                conversation=locked,
                event=SystemMessageEvent.MEMBER_LEFT,
                data={"user_id": str(user.id)},
            )
            broadcast.conversation_removed(locked, [user.id])

        conversation.refresh_from_db()
        cls.get_logger().info(f"User {user.id} left conversation {conversation.id}")

        return ServiceResult.success(None)

    @classmethod
    def end_memberships(cls, user: User) -> ServiceResult[dict]:
        """
        End every active membership of a user whose account is being deleted.

        Run inside the transaction that deletes the user. Direct
        conversations are deleted. In a group the user created, the creator
        role passes to the longest-standing admin, or else the
        longest-standing member; a group with nobody else in it is deleted.
        The user then leaves every remaining group, so counts, system
        messages and events match a normal leave.

        Returns:
            ServiceResult with counts per outcome
        """
        counts = {
            "direct_deleted": 0,
            "groups_left": 0,
            "groups_handed_over": 0,
            "groups_deleted": 0,
        }

        direct = list(
            ConversationService.list_for_user(user, conversation_type=ConversationType.DIRECT)
        )
        for conversation in direct:
            if ConversationService.delete(conversation, user):
                counts["direct_deleted"] += 1

        groups = list(
            ConversationService.list_for_user(user, conversation_type=ConversationType.GROUP)
        )
        for conversation in groups:
            if conversation.created_by_id == user.id:
                if not cls._hand_over_creator(conversation, user):
                    ConversationService.delete(conversation, user)
                    counts["groups_deleted"] += 1
                    continue
                counts["groups_handed_over"] += 1
            if cls.leave(conversation, user):
                counts["groups_left"] += 1

        cls.get_logger().info(f"Ended memberships of user {user.id}: {counts}")
        return ServiceResult.success(counts)

    @classmethod
    def _hand_over_creator(cls, conversation: Conversation, creator: User) -> bool:
        """Pass the creator role to a successor. False when nobody else is left."""
        with transaction.atomic():
            locked = cls._lock_group(conversation)
            if locked is None:
                return False

            others = locked.get_active_participants().exclude(user=creator)
            successor = (
                others.filter(role=ParticipantRole.ADMIN).order_by("joined_at", "id").first()
                or others.order_by("joined_at", "id").first()
            )
            if successor is None:
                return False

            Participant.objects.filter(
                conversation=locked,
                user=creator,
                left_at__isnull=True,
            ).update(role=ParticipantRole.MEMBER, updated_at=timezone.now())

            old_role = successor.role
            successor.role = ParticipantRole.CREATOR
            successor.save(update_fields=["role", "updated_at"])
            Conversation.all_objects.filter(pk=locked.pk).update(
                created_by_id=successor.user_id
            )

            MessageService._create_system_message(
                conversation=locked,
                event=SystemMessageEvent.ROLE_CHANGED,
                data={
                    "user_id": str(successor.user_id),
                    "old_role": old_role,
                    "new_role": ParticipantRole.CREATOR,
                    "changed_by_id": str(creator.id),
                },
            )

        conversation.refresh_from_db()
        cls.get_logger().info(
            f"Creator role of conversation {conversation.id} passed from "
            f"user {creator.id} to user {successor.user_id}"
        )
        return True
