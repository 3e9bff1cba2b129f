"""
URL configuration for chat API.

URL Structure:
    Conversations:
        /conversations/                          GET, POST
        /conversations/{id}/                     GET, PATCH, DELETE
        /conversations/{id}/read/                POST
        /conversations/{id}/leave/               POST
        /conversations/bulk-delete/              POST
        /conversations/clear/                    POST

    Participants:
        /conversations/{id}/participants/                    GET, POST
        /conversations/{id}/participants/{user_id}/          DELETE
        /conversations/{id}/participants/{user_id}/promote/  POST
        /conversations/{id}/participants/{user_id}/demote/   POST

    Messages:
        /conversations/{id}/messages/                GET, POST
        /conversations/{id}/messages/{pk}/           GET, PATCH, DELETE
        /conversations/{id}/messages/{pk}/history/   GET
        /conversations/{id}/messages/{pk}/forward/   POST

All URLs are prefixed with /api/v1/chat/ in the main URL configuration.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from chat.views import ConversationViewSet, MessageViewSet, ParticipantViewSet

# Main router for conversations
router = DefaultRouter()
router.register(r"conversations", ConversationViewSet, basename="conversation")

app_name = "chat"

urlpatterns = [
    path("", include(router.urls)),
    # Nested routes for participants
    path(
        "conversations/<int:conversation_pk>/participants/",
        ParticipantViewSet.as_view({"get": "list", "post": "create"}),
        name="conversation-participant-list",
    ),
    path(
        "conversations/<int:conversation_pk>/participants/<uuid:user_id>/",
        ParticipantViewSet.as_view({"delete": "destroy"}),
        name="conversation-participant-detail",
    ),
    path(
        "conversations/<int:conversation_pk>/participants/<uuid:user_id>/promote/",
        ParticipantViewSet.as_view({"post": "promote"}),
        name="conversation-participant-promote",
    ),
    path(
        "conversations/<int:conversation_pk>/participants/<uuid:user_id>/demote/",
        ParticipantViewSet.as_view({"post": "demote"}),
        name="conversation-participant-demote",
    ),
    # Nested routes for messages
    path(
        "conversations/<int:conversation_pk>/messages/",
        MessageViewSet.as_view({"get": "list", "post": "create"}),
        name="conversation-message-list",
    ),
    path(
        "conversations/<int:conversation_pk>/messages/<int:pk>/",
        MessageViewSet.as_view(
            {"get": "retrieve", "patch": "partial_update", "delete": "destroy"}
        ),
        name="conversation-message-detail",
    ),
    path(
        "conversations/<int:conversation_pk>/messages/<int:pk>/history/",
        MessageViewSet.as_view({"get": "history"}),
        name="conversation-message-history",
    ),
    path(
        "conversations/<int:conversation_pk>/messages/<int:pk>/forward/",
        MessageViewSet.as_view({"post": "forward"}),
        name="conversation-message-forward",
    ),
]
