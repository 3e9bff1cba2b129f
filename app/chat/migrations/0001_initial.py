# Generated manually - initial chat schema

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    """Create conversations, participants, messages, receipts and edit history."""

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Conversation",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "is_deleted",
                    models.BooleanField(
                        db_index=True,
                        default=False,
                        help_text="Whether this record has been soft deleted",
                    ),
                ),
                (
                    "deleted_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Timestamp when this record was soft deleted",
                        null=True,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "conversation_type",
                    models.CharField(
                        choices=[("direct", "Direct Message"), ("group", "Group")],
                        db_index=True,
                        default="group",
                        help_text="Type of conversation (direct or group)",
                        max_length=10,
                    ),
                ),
                (
                    "title",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Name for group conversations (empty for direct)",
                        max_length=100,
                    ),
                ),
                (
                    "description",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Description for group conversations",
                    ),
                ),
                (
                    "is_active",
                    models.BooleanField(
                        default=True,
                        help_text="Whether the conversation accepts new messages",
                    ),
                ),
                (
                    "settings",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Optional group settings",
                    ),
                ),
                (
                    "participant_count",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Current number of active participants (cached for performance)",
                    ),
                ),
                (
                    "last_message_preview",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Preview of the most recent message",
                        max_length=255,
                    ),
                ),
                (
                    "last_message_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="Timestamp of most recent message (for sorting conversation lists)",
                        null=True,
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who created this group (null for direct)",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="created_conversations",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "chat_conversation",
                "ordering": ["-last_message_at", "-created_at"],
                "base_manager_name": "all_objects",
                "indexes": [
                    models.Index(
                        fields=["conversation_type", "is_deleted"],
                        name="chat_conv_type_deleted_idx",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="DirectConversationPair",
            fields=[
                (
                    "conversation",
                    models.OneToOneField(
                        help_text="The direct conversation this pair represents",
                        on_delete=django.db.models.deletion.CASCADE,
                        primary_key=True,
                        related_name="direct_pair",
                        serialize=False,
                        to="chat.conversation",
                    ),
                ),
                (
                    "user_lower",
                    models.ForeignKey(
                        help_text="User with lower ID in this conversation pair",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "user_higher",
                    models.ForeignKey(
                        help_text="User with higher ID in this conversation pair",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "chat_direct_conversation_pair",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("user_lower", "user_higher"),
                        name="unique_direct_conversation_pair",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("user_lower_id__lt", models.F("user_higher_id"))
                        ),
                        name="user_lower_less_than_higher",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Participant",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "role",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("creator", "Creator"),
                            ("admin", "Admin"),
                            ("member", "Member"),
                        ],
                        db_index=True,
                        help_text="Role in group conversation (null for direct conversations)",
                        max_length=10,
                        null=True,
                    ),
                ),
                (
                    "joined_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        help_text="When the user joined this conversation",
                    ),
                ),
                (
                    "left_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="When the user left (null if still active)",
                        null=True,
                    ),
                ),
                (
                    "left_voluntarily",
                    models.BooleanField(
                        blank=True,
                        help_text="True if user left voluntarily, False if removed by someone",
                        null=True,
                    ),
                ),
                (
                    "last_read_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Last time user marked conversation as read",
                        null=True,
                    ),
                ),
                (
                    "unread_count",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Unread messages from other participants (denormalized)",
                    ),
                ),
                (
                    "conversation",
                    models.ForeignKey(
                        help_text="Conversation this participation belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="participants",
                        to="chat.conversation",
                    ),
                ),
                (
                    "removed_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who removed this participant (if removed by someone)",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="removed_participants",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        help_text="User participating in the conversation",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="conversation_participations",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "chat_participant",
                "ordering": ["joined_at"],
                "indexes": [
                    models.Index(
                        fields=["conversation", "left_at"],
                        name="chat_part_conv_active_idx",
                    ),
                    models.Index(
                        fields=["user", "left_at", "-joined_at"],
                        name="chat_part_user_active_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("left_at__isnull", True)),
                        fields=("conversation", "user"),
                        name="unique_active_participation",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Message",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "is_deleted",
                    models.BooleanField(
                        db_index=True,
                        default=False,
                        help_text="Whether this record has been soft deleted",
                    ),
                ),
                (
                    "deleted_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Timestamp when this record was soft deleted",
                        null=True,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "message_type",
                    models.CharField(
                        choices=[
                            ("text", "Text"),
                            ("image", "Image"),
                            ("video", "Video"),
                            ("audio", "Audio"),
                            ("file", "File"),
                            ("system", "System"),
                        ],
                        db_index=True,
                        default="text",
                        help_text="Kind of message content",
                        max_length=10,
                    ),
                ),
                (
                    "content",
                    models.TextField(
                        help_text="Text, media URL, or system event JSON",
                    ),
                ),
                (
                    "file_name",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Original file name for media messages",
                        max_length=255,
                    ),
                ),
                (
                    "file_size",
                    models.PositiveBigIntegerField(
                        blank=True,
                        help_text="Size in bytes for media messages",
                        null=True,
                    ),
                ),
                (
                    "is_edited",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the content was edited",
                    ),
                ),
                (
                    "edited_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the content was last edited",
                        null=True,
                    ),
                ),
                (
                    "conversation",
                    models.ForeignKey(
                        help_text="Conversation this message belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="messages",
                        to="chat.conversation",
                    ),
                ),
                (
                    "forwarded_from",
                    models.ForeignKey(
                        blank=True,
                        help_text="Sender of the original forwarded message",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "forwarded_message",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        help_text="Original message this was forwarded from",
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="forwards",
                        to="chat.message",
                    ),
                ),
                (
                    "reply_to",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        help_text="Message in the same conversation this replies to",
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="replies",
                        to="chat.message",
                    ),
                ),
                (
                    "sender",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who sent this message (null for system messages)",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="sent_messages",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "chat_message",
                "ordering": ["created_at", "id"],
                "indexes": [
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
                ],
            },
        ),
        migrations.CreateModel(
            name="MessageReceipt",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "read_at",
                    models.DateTimeField(
                        default=django.utils.timezone.now,
                        help_text="When the message was read",
                    ),
                ),
                (
                    "message",
                    models.ForeignKey(
                        help_text="Message that was read",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="receipts",
                        to="chat.message",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        help_text="User who read the message",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="message_receipts",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "chat_message_receipt",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("message", "user"),
                        name="unique_message_receipt",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="MessageEditHistory",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "content",
                    models.TextField(help_text="Content before this edit"),
                ),
                (
                    "edit_number",
                    models.PositiveSmallIntegerField(
                        help_text="Sequential edit number (1 = first edit)",
                    ),
                ),
                (
                    "message",
                    models.ForeignKey(
                        help_text="Message this edit belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="edit_history",
                        to="chat.message",
                    ),
                ),
            ],
            options={
                "db_table": "chat_message_edit_history",
                "ordering": ["edit_number"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("message", "edit_number"),
                        name="unique_message_edit_number",
                    )
                ],
            },
        ),
    ]
