"""
Serializers for the identity directory.

Serializer Hierarchy:
    UserSummarySerializer: Minimal user card embedded in chat payloads
    UserSerializer: Full profile with derived activity flag
    RegisterSerializer: Sign-up input
    ProfileUpdateSerializer: Profile change input (re-auth fields included)
    AdminCreateSerializer: Admin creation input
    DashboardStatsSerializer: Admin dashboard output
    ActivityTokenObtainPairSerializer: JWT login that records activity

Security:
    - Password fields are write-only
    - Role is never writable through the public API
"""

from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from accounts.models import User
from accounts.services import DirectoryService


class UserSummarySerializer(serializers.ModelSerializer):
    """Minimal user representation for conversation and message payloads."""

    class Meta:
        model = User
        fields = ["id", "display_name", "email", "avatar", "role"]
        read_only_fields = fields


class UserSerializer(serializers.ModelSerializer):
    """
    Serializer for User model (read operations).

    is_recently_active is computed from last_active at read time.
    """

    is_recently_active = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            "id",
            "email",
            "display_name",
            "role",
            "avatar",
            "date_joined",
            "last_active",
            "is_recently_active",
        ]
        read_only_fields = fields

    def get_is_recently_active(self, obj: User) -> bool:
        """Return whether the user was active in the last 24 hours."""
        return obj.is_recently_active()


class RegisterSerializer(serializers.Serializer):
    """Input for creating a general user account."""

    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, style={"input_type": "password"})
    display_name = serializers.CharField(
        max_length=100, required=False, allow_blank=True, default=""
    )


class AdminCreateSerializer(RegisterSerializer):
    """Input for creating an administrator account."""


class ProfileUpdateSerializer(serializers.Serializer):
    """
    Input for profile updates.

    email and new_password require current_password; the check itself is
    done by DirectoryService.update_profile.
    """

    display_name = serializers.CharField(max_length=100, required=False)
    avatar = serializers.URLField(max_length=500, required=False, allow_blank=True)
    email = serializers.EmailField(required=False)
    new_password = serializers.CharField(required=False, write_only=True)
    current_password = serializers.CharField(required=False, write_only=True)


class DashboardStatsSerializer(serializers.Serializer):
    """Admin dashboard counts."""

    total_general_users = serializers.IntegerField()
    total_admins = serializers.IntegerField()
    total_messages = serializers.IntegerField()
    active_users = serializers.IntegerField()


class ActivityTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    JWT token pair serializer that records the login as activity.

    A successful login is a session start, so last_active is refreshed.
    """

    def validate(self, attrs):
        data = super().validate(attrs)
        DirectoryService.touch_activity(self.user)
        data["user"] = UserSerializer(self.user).data
        return data
