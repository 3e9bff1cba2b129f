"""
Django admin configuration for chat models.

Conversations show their members inline; messages show their edit
history and read receipts inline. Unread counters can be rebuilt from
receipts with the "Recalculate unread counts" action.
"""

from django.contrib import admin, messages

from chat.models import (
    Conversation,
    DirectConversationPair,
    Message,
    MessageEditHistory,
    MessageReceipt,
    Participant,
)
from chat.tasks import recalculate_unread_counts


class MemberInline(admin.TabularInline):
    """Members of a conversation, including those who left."""

    model = Participant
    fk_name = "conversation"
    extra = 0
    fields = ["user", "role", "unread_count", "joined_at", "left_at", "removed_by"]
    readonly_fields = ["unread_count", "joined_at", "left_at", "removed_by"]
    raw_id_fields = ["user"]


class EditHistoryInline(admin.TabularInline):
    model = MessageEditHistory
    extra = 0
    can_delete = False
    fields = ["edit_number", "content", "created_at"]
    readonly_fields = fields


class ReceiptInline(admin.TabularInline):
    model = MessageReceipt
    extra = 0
    can_delete = False
    fields = ["user", "read_at"]
    readonly_fields = fields


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    """Conversations, soft-deleted ones included."""

    list_display = [
        "id",
        "conversation_type",
        "title",
        "participant_count",
        "last_message_preview",
        "last_message_at",
        "is_active",
        "is_deleted",
    ]
    list_filter = ["conversation_type", "is_active", "is_deleted"]
    search_fields = ["id", "title", "participants__user__email"]
    readonly_fields = [
        "participant_count",
        "last_message_preview",
        "last_message_at",
        "deleted_at",
        "created_at",
        "updated_at",
    ]
    raw_id_fields = ["created_by"]
    inlines = [MemberInline]
    ordering = ["-last_message_at"]

    def get_queryset(self, request):
        return Conversation.all_objects.all()


@admin.register(DirectConversationPair)
class DirectConversationPairAdmin(admin.ModelAdmin):
    list_display = ["conversation", "user_lower", "user_higher"]
    raw_id_fields = ["conversation", "user_lower", "user_higher"]


@admin.register(Participant)
class ParticipantAdmin(admin.ModelAdmin):
    """Membership rows with unread state."""

    list_display = [
        "id",
        "conversation",
        "user",
        "role",
        "unread_count",
        "last_read_at",
        "left_at",
    ]
    list_filter = ["role", "left_voluntarily"]
    search_fields = ["user__email", "conversation__title"]
    readonly_fields = ["joined_at", "last_read_at", "created_at", "updated_at"]
    raw_id_fields = ["conversation", "user", "removed_by"]
    actions = ["recalculate_unread"]

    @admin.action(description="Recalculate unread counts")
    def recalculate_unread(self, request, queryset):
        corrected = recalculate_unread_counts()
        self.message_user(
            request,
            f"Corrected {corrected} unread counters.",
            level=messages.SUCCESS,
        )


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    """Messages, including tombstones awaiting purge."""

    list_display = [
        "id",
        "conversation",
        "sender",
        "message_type",
        "preview",
        "is_edited",
        "is_deleted",
        "created_at",
    ]
    list_filter = ["message_type", "is_edited", "is_deleted"]
    search_fields = ["content", "sender__email"]
    readonly_fields = ["edited_at", "deleted_at", "created_at", "updated_at"]
    raw_id_fields = [
        "conversation",
        "sender",
        "reply_to",
        "forwarded_message",
        "forwarded_from",
    ]
    inlines = [EditHistoryInline, ReceiptInline]
    ordering = ["-created_at"]

    @admin.display(description="Preview")
    def preview(self, obj: Message) -> str:
        return obj.get_preview(50)
