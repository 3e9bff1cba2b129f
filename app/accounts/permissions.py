"""
Permission classes for the identity directory API.
"""

from rest_framework import permissions


class IsDirectoryAdmin(permissions.BasePermission):
    """Allows access only to users with the admin directory role."""

    message = "Administrator role required."

    def has_permission(self, request, view) -> bool:
        user = request.user
        return bool(user and user.is_authenticated and user.is_directory_admin)
