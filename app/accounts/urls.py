"""
URL configuration for the accounts app.

All URLs are prefixed with /api/v1/auth/ in the main URL configuration.
See accounts.views for the full endpoint list.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenRefreshView

from accounts.views import (
    ActivityTokenObtainPairView,
    AdminCreateView,
    AdminStatsView,
    AdminUserDeleteView,
    MeView,
    RegisterView,
    UserViewSet,
)

router = DefaultRouter()
router.register(r"users", UserViewSet, basename="user")

app_name = "accounts"

urlpatterns = [
    # JWT
    path("token/", ActivityTokenObtainPairView.as_view(), name="token-obtain"),
    path("token/refresh/", TokenRefreshView.as_view(), name="token-refresh"),
    # Registration and profile
    path("register/", RegisterView.as_view(), name="register"),
    path("me/", MeView.as_view(), name="me"),
    # Administration
    path("admin/stats/", AdminStatsView.as_view(), name="admin-stats"),
    path("admin/admins/", AdminCreateView.as_view(), name="admin-create"),
    path(
        "admin/users/<uuid:user_id>/",
        AdminUserDeleteView.as_view(),
        name="admin-user-delete",
    ),
    # Directory
    path("", include(router.urls)),
]
