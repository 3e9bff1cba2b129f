"""
ViewSets for chat API.

This module provides REST API endpoints for the chat system:
- ConversationViewSet: Conversation CRUD and actions
- ParticipantViewSet: Group membership (nested under conversation)
- MessageViewSet: Message operations (nested under conversation)

URL Structure:
    /api/v1/chat/conversations/                          GET, POST
    /api/v1/chat/conversations/{id}/                     GET, PATCH, DELETE
    /api/v1/chat/conversations/{id}/read/                POST
    /api/v1/chat/conversations/{id}/leave/               POST
    /api/v1/chat/conversations/bulk-delete/              POST
    /api/v1/chat/conversations/clear/                    POST
    /api/v1/chat/conversations/{id}/participants/        GET, POST
    /api/v1/chat/conversations/{id}/participants/{user_id}/          DELETE
    /api/v1/chat/conversations/{id}/participants/{user_id}/promote/  POST
    /api/v1/chat/conversations/{id}/participants/{user_id}/demote/   POST
    /api/v1/chat/conversations/{id}/messages/            GET, POST
    /api/v1/chat/conversations/{id}/messages/{pk}/       GET, PATCH, DELETE
    /api/v1/chat/conversations/{id}/messages/{pk}/history/  GET
    /api/v1/chat/conversations/{id}/messages/{pk}/forward/  POST

Design Decisions:
    - All operations use the service layer for business logic
    - Service failures are returned as {"error", "error_code"} with the
      status of the error's category
    - A missing conversation raises NotFoundError; a non-participant gets
      PermissionDeniedError (rendered by core.exceptions)
"""

from __future__ import annotations

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema, extend_schema_view
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from accounts.models import User
from chat.models import Conversation, ConversationType, Message
from chat.pagination import MessageCursorPagination
from chat.serializers import (
    ConversationBulkDeleteSerializer,
    ConversationCreateSerializer,
    ConversationSerializer,
    ConversationUpdateSerializer,
    MemberAddSerializer,
    MessageCreateSerializer,
    MessageEditHistorySerializer,
    MessageForwardSerializer,
    MessageSerializer,
    MessageUpdateSerializer,
    ParticipantSerializer,
)
from chat.services import ConversationService, MembershipService, MessageService
from core.exceptions import NotFoundError, PermissionDeniedError


def _error_response(result) -> Response:
    return Response(result.to_error_response(), status=result.http_status)


class ConversationLookupMixin:
    """Resolve the conversation named in the URL for the requesting user."""

    conversation_url_kwarg = "conversation_pk"

    def get_conversation(self) -> Conversation:
        """
        Live conversation the requesting user actively participates in.

        Raises:
            NotFoundError: Conversation does not exist or is deleted
            PermissionDeniedError: User is not an active participant
        """
        conversation = Conversation.objects.filter(
            pk=self.kwargs.get(self.conversation_url_kwarg)
        ).first()
        if conversation is None:
            raise NotFoundError(
                "Conversation not found",
                error_code="CONVERSATION_NOT_FOUND",
            )
        if not conversation.is_participant(self.request.user):
            raise PermissionDeniedError(
                "You are not a participant in this conversation",
                error_code="NOT_PARTICIPANT",
            )
        return conversation


@extend_schema_view(
    list=extend_schema(
        operation_id="list_conversations",
        summary="List conversations",
        parameters=[
            OpenApiParameter("type", OpenApiTypes.STR, description="direct or group"),
            OpenApiParameter("search", OpenApiTypes.STR, description="Name/title filter"),
        ],
        tags=["Chat - Conversations"],
    ),
    create=extend_schema(
        operation_id="create_conversation",
        summary="Create conversation",
        request=ConversationCreateSerializer,
        responses={201: ConversationSerializer},
        tags=["Chat - Conversations"],
    ),
    retrieve=extend_schema(
        operation_id="get_conversation",
        summary="Get conversation",
        tags=["Chat - Conversations"],
    ),
    partial_update=extend_schema(
        operation_id="update_conversation",
        summary="Update group details",
        request=ConversationUpdateSerializer,
        responses={200: ConversationSerializer},
        tags=["Chat - Conversations"],
    ),
    destroy=extend_schema(
        operation_id="delete_conversation",
        summary="Delete conversation",
        tags=["Chat - Conversations"],
    ),
)
class ConversationViewSet(ConversationLookupMixin, viewsets.GenericViewSet):
    """
    ViewSet for conversation operations.

    list:
        Conversations the user participates in, most recent first.
        Filter with ?type=direct|group and ?search=.

    create:
        Create a new conversation (direct or group).
        For direct: returns existing if found, creates if not.
        For group: creates new group with the requester as creator.

    retrieve:
        Get conversation details including all participants.

    partial_update:
        Update group details. Only admins can update.

    destroy:
        Soft delete a conversation. Either participant for direct,
        only the creator for groups.

    read:
        Mark conversation as read.

    leave:
        Leave a group conversation.

    bulk_delete / clear:
        Delete several conversations / all direct conversations.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = ConversationSerializer
    conversation_url_kwarg = "pk"

    def get_queryset(self):
        """Conversations where the user is an active participant."""
        return ConversationService.list_for_user(self.request.user)

    def list(self, request):
        """List the user's conversations."""
        conversation_type = request.query_params.get("type") or None
        if conversation_type and conversation_type not in ConversationType.values:
            raise ValidationError({"type": f"Invalid conversation type: {conversation_type}"})

        conversations = ConversationService.list_for_user(
            request.user,
            conversation_type=conversation_type,
            search=request.query_params.get("search"),
        )
        serializer = ConversationSerializer(
            conversations, many=True, context={"request": request}
        )
        return Response(serializer.data)

    def create(self, request):
        """Create a conversation (direct or group)."""
        serializer = ConversationCreateSerializer(
            data=request.data, context={"request": request}
        )
        serializer.is_valid(raise_exception=True)

        data = serializer.validated_data
        participant_ids = data["participant_ids"]

        if data["conversation_type"] == ConversationType.DIRECT:
            other_user = User.objects.get(id=participant_ids[0])
            result = ConversationService.get_or_create_direct(request.user, other_user)
        else:
            result = ConversationService.create_group(
                creator=request.user,
                title=data["title"],
                initial_members=list(User.objects.filter(id__in=participant_ids)),
                description=data.get("description", ""),
                settings=data.get("settings") or {},
            )

        if not result.success:
            return _error_response(result)

        output = ConversationSerializer(result.data, context={"request": request})
        return Response(output.data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        """Get conversation details."""
        conversation = self.get_conversation()
        return Response(
            ConversationSerializer(conversation, context={"request": request}).data
        )

    def partial_update(self, request, pk=None):
        """Update group details."""
        conversation = self.get_conversation()
        serializer = ConversationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ConversationService.update_group(
            conversation=conversation,
            user=request.user,
            title=serializer.validated_data.get("title"),
            description=serializer.validated_data.get("description"),
            settings=serializer.validated_data.get("settings"),
        )
        if not result.success:
            return _error_response(result)

        return Response(
            ConversationSerializer(result.data, context={"request": request}).data
        )

    def destroy(self, request, pk=None):
        """Soft delete a conversation."""
        conversation = self.get_conversation()

        result = ConversationService.delete(conversation, requested_by=request.user)
        if not result.success:
            return _error_response(result)

        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="mark_conversation_read",
        summary="Mark conversation as read",
        request=None,
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"])
    def read(self, request, pk=None):
        """Mark conversation as read."""
        conversation = self.get_conversation()

        result = MessageService.mark_read(conversation, request.user)
        if not result.success:
            return _error_response(result)

        return Response({"status": "read", "messages_read": result.data})

    @extend_schema(
        operation_id="leave_conversation",
        summary="Leave group",
        request=None,
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"])
    def leave(self, request, pk=None):
        """Leave a group conversation."""
        conversation = self.get_conversation()

        result = MembershipService.leave(conversation, request.user)
        if not result.success:
            return _error_response(result)

        return Response({"status": "left"})

    @extend_schema(
        operation_id="bulk_delete_conversations",
        summary="Delete several conversations",
        request=ConversationBulkDeleteSerializer,
        tags=["Chat - Conversations"],
    )
    @action(detail=False, methods=["post"], url_path="bulk-delete")
    def bulk_delete(self, request):
        """Delete the listed conversations the user may delete."""
        serializer = ConversationBulkDeleteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ConversationService.bulk_delete(
            request.user, serializer.validated_data["conversation_ids"]
        )
        if not result.success:
            return _error_response(result)

        return Response({"deleted": result.data})

    @extend_schema(
        operation_id="clear_direct_conversations",
        summary="Delete all direct conversations",
        request=None,
        tags=["Chat - Conversations"],
    )
    @action(detail=False, methods=["post"])
    def clear(self, request):
        """Delete every direct conversation of the user."""
        result = ConversationService.delete_all_direct(request.user)
        return Response({"deleted": result.data})


@extend_schema_view(
    list=extend_schema(
        operation_id="list_participants",
        summary="List participants",
        tags=["Chat - Participants"],
    ),
    create=extend_schema(
        operation_id="add_members",
        summary="Add members",
        request=MemberAddSerializer,
        responses={200: ParticipantSerializer(many=True)},
        tags=["Chat - Participants"],
    ),
    destroy=extend_schema(
        operation_id="remove_member",
        summary="Remove member",
        tags=["Chat - Participants"],
    ),
)
class ParticipantViewSet(ConversationLookupMixin, viewsets.GenericViewSet):
    """
    ViewSet for group membership within a conversation.

    list:
        Get all active participants in the conversation.

    create:
        Add users to a group. Requires admin authority.

    destroy:
        Remove a participant. Requires admin authority; never the creator.

    promote / demote:
        Change a participant's role. Creator only.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = ParticipantSerializer

    def _participants_response(self, conversation: Conversation) -> Response:
        participants = (
            conversation.get_active_participants()
            .select_related("user")
            .order_by("joined_at")
        )
        return Response(ParticipantSerializer(participants, many=True).data)

    def list(self, request, conversation_pk=None):
        """Active participants."""
        return self._participants_response(self.get_conversation())

    def create(self, request, conversation_pk=None):
        """Add members to the group."""
        conversation = self.get_conversation()
        serializer = MemberAddSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = MembershipService.add_members(
            conversation,
            requested_by=request.user,
            user_ids=serializer.validated_data["user_ids"],
        )
        if not result.success:
            return _error_response(result)

        return self._participants_response(conversation)

    def destroy(self, request, conversation_pk=None, user_id=None):
        """Remove a member from the group."""
        conversation = self.get_conversation()

        result = MembershipService.remove_member(
            conversation, requested_by=request.user, user_id=user_id
        )
        if not result.success:
            return _error_response(result)

        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="promote_member",
        summary="Promote member to admin",
        request=None,
        responses={200: ParticipantSerializer},
        tags=["Chat - Participants"],
    )
    @action(detail=True, methods=["post"])
    def promote(self, request, conversation_pk=None, user_id=None):
        """Make a member an admin."""
        conversation = self.get_conversation()

        result = MembershipService.promote(
            conversation, requested_by=request.user, user_id=user_id
        )
        if not result.success:
            return _error_response(result)

        return Response(ParticipantSerializer(result.data).data)

    @extend_schema(
        operation_id="demote_admin",
        summary="Demote admin to member",
        request=None,
        responses={200: ParticipantSerializer},
        tags=["Chat - Participants"],
    )
    @action(detail=True, methods=["post"])
    def demote(self, request, conversation_pk=None, user_id=None):
        """Make an admin a member."""
        conversation = self.get_conversation()

        result = MembershipService.demote(
            conversation, requested_by=request.user, user_id=user_id
        )
        if not result.success:
            return _error_response(result)

        return Response(ParticipantSerializer(result.data).data)


@extend_schema_view(
    list=extend_schema(
        operation_id="list_messages",
        summary="List messages",
        tags=["Chat - Messages"],
    ),
    create=extend_schema(
        operation_id="send_message",
        summary="Send message",
        request=MessageCreateSerializer,
        responses={201: MessageSerializer},
        tags=["Chat - Messages"],
    ),
    retrieve=extend_schema(
        operation_id="get_message",
        summary="Get message",
        tags=["Chat - Messages"],
    ),
    partial_update=extend_schema(
        operation_id="edit_message",
        summary="Edit message",
        request=MessageUpdateSerializer,
        responses={200: MessageSerializer},
        tags=["Chat - Messages"],
    ),
    destroy=extend_schema(
        operation_id="delete_message",
        summary="Delete message",
        tags=["Chat - Messages"],
    ),
)
class MessageViewSet(ConversationLookupMixin, viewsets.GenericViewSet):
    """
    ViewSet for message operations within a conversation.

    list:
        Messages oldest first, cursor paginated. Deleted messages are
        included as the deleted variant.

    create:
        Send a text or media message, optionally replying to another.

    partial_update:
        Edit own message content.

    destroy:
        Tombstone a message (sender, or a group admin).

    history / forward:
        Edit history of a message / copy it to another conversation.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = MessageSerializer
    pagination_class = MessageCursorPagination

    def get_message(self, conversation: Conversation) -> Message:
        """Message in this conversation, tombstones included."""
        message = (
            Message.objects.select_related("sender", "conversation")
            .filter(conversation=conversation, pk=self.kwargs.get("pk"))
            .first()
        )
        if message is None:
            raise NotFoundError("Message not found", error_code="MESSAGE_NOT_FOUND")
        return message

    def list(self, request, conversation_pk=None):
        """Get messages in acceptance order."""
        conversation = self.get_conversation()

        result = MessageService.query(conversation, request.user)
        if not result.success:
            return _error_response(result)

        page = self.paginate_queryset(result.data)
        if page is not None:
            serializer = MessageSerializer(page, many=True)
            return self.get_paginated_response(serializer.data)

        return Response(MessageSerializer(result.data, many=True).data)

    def create(self, request, conversation_pk=None):
        """Send a message."""
        conversation = self.get_conversation()

        serializer = MessageCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = MessageService.send(
            conversation=conversation,
            sender=request.user,
            content=data["content"],
            message_type=data["message_type"],
            reply_to_id=data.get("reply_to_id"),
            file_name=data.get("file_name", ""),
            file_size=data.get("file_size"),
        )
        if not result.success:
            return _error_response(result)

        return Response(MessageSerializer(result.data).data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, conversation_pk=None, pk=None):
        """Get one message."""
        message = self.get_message(self.get_conversation())
        return Response(MessageSerializer(message).data)

    def partial_update(self, request, conversation_pk=None, pk=None):
        """Edit message content."""
        message = self.get_message(self.get_conversation())

        serializer = MessageUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = MessageService.edit(
            message.id, request.user, serializer.validated_data["content"]
        )
        if not result.success:
            return _error_response(result)

        return Response(MessageSerializer(result.data).data)

    def destroy(self, request, conversation_pk=None, pk=None):
        """Tombstone a message."""
        message = self.get_message(self.get_conversation())

        result = MessageService.delete(message, request.user)
        if not result.success:
            return _error_response(result)

        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="get_message_edit_history",
        summary="Get message edit history",
        responses={200: MessageEditHistorySerializer(many=True)},
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["get"])
    def history(self, request, conversation_pk=None, pk=None):
        """Previous versions of a message, oldest first."""
        message = self.get_message(self.get_conversation())

        result = MessageService.get_edit_history(message.id, request.user)
        if not result.success:
            return _error_response(result)

        return Response(MessageEditHistorySerializer(result.data, many=True).data)

    @extend_schema(
        operation_id="forward_message",
        summary="Forward message",
        request=MessageForwardSerializer,
        responses={201: MessageSerializer},
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["post"])
    def forward(self, request, conversation_pk=None, pk=None):
        """Forward a message to another conversation."""
        message = self.get_message(self.get_conversation())

        serializer = MessageForwardSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        target = Conversation.objects.filter(
            pk=serializer.validated_data["conversation_id"]
        ).first()
        if target is None:
            raise NotFoundError(
                "Conversation not found",
                error_code="CONVERSATION_NOT_FOUND",
            )

        result = MessageService.forward(message.id, request.user, target)
        if not result.success:
            return _error_response(result)

        return Response(MessageSerializer(result.data).data, status=status.HTTP_201_CREATED)
