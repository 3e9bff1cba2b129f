"""
Root URL configuration.

URL Structure:
    /                              - ReDoc API documentation
    /schema/                       - OpenAPI schema
    /admin/                        - Django admin interface
    /health/                       - Health check (load balancers, Docker)
    /api/v1/auth/                  - Identity directory (accounts.urls)
        token/, token/refresh/     - JWT login and refresh
        register/                  - Create an account
        me/                        - Current user profile
        users/, users/{id}/        - Directory lookup and search
        admin/...                  - Admin dashboard and user management
    /api/v1/chat/                  - Conversations, participants, messages
                                     (chat.urls)

WebSocket routes live in chat.routing and are mounted in config.asgi.
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

api_v1_patterns = [
    path("auth/", include("accounts.urls")),
    path("chat/", include("chat.urls")),
]

urlpatterns = [
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("admin/", admin.site.urls),
    path("health/", health_check, name="health_check"),
    path("api/v1/", include(api_v1_patterns)),
]

admin.site.site_header = "Chat Admin"
admin.site.site_title = "Chat Admin"
admin.site.index_title = "Users, conversations and messages"
