"""
Accounts models.

This module defines the identity directory's single user table:
- User: email-based user with a role field (admin or general)

Design Decisions:
    - Both roles live in one table with an indexed role column, so
      resolving an id is a single lookup and an id can never exist in
      zero or two directories.
    - "Active in the last 24h" is derived from last_active at read time;
      it is never stored.

Related files:
    - managers.py: Custom user manager for email-based creation
    - services.py: DirectoryService business logic
"""

from __future__ import annotations

from datetime import timedelta

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models
from django.utils import timezone

from accounts.constants import DIRECTORY_CONFIG
from accounts.managers import UserManager
from core.model_mixins import UUIDPrimaryKeyMixin


class UserRole(models.TextChoices):
    """
    Directory role of a user.

    ADMIN: Can view dashboard stats, create admins and delete users
    GENERAL: Regular chat user
    """

    ADMIN = "admin", "Administrator"
    GENERAL = "general", "General"


class User(UUIDPrimaryKeyMixin, AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    Fields:
        id: Stable UUID assigned at account creation
        email: Login identifier, unique
        display_name: Name shown in conversations
        role: admin or general
        avatar: Optional URL of an externally stored avatar image
        is_active: Whether the account can sign in
        is_staff: Whether the user can access Django admin
        date_joined: Account creation time
        last_active: Last session start or activity (nullable)

    Usage:
        user = User.objects.create_user(email="user@example.com", password="pw")
        user.is_directory_admin  # False
    """

    email = models.EmailField(
        unique=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )

    display_name = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Name shown to other users",
    )

    role = models.CharField(
        max_length=10,
        choices=UserRole.choices,
        default=UserRole.GENERAL,
        db_index=True,
        help_text="Directory role (admin or general)",
    )

    avatar = models.URLField(
        max_length=500,
        blank=True,
        default="",
        help_text="URL of the user's avatar image",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )

    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )
    last_active = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Last time the user started a session or was active",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]
        indexes = [
            models.Index(fields=["role", "display_name"], name="accounts_user_role_name_idx"),
        ]

    def __str__(self):
        """Return the user's email as string representation."""
        return self.email

    def get_full_name(self):
        """Return the display name, falling back to the email."""
        return self.display_name or self.email

    def get_short_name(self):
        """Return the display name or the email local part."""
        return self.display_name or self.email.split("@")[0]

    @property
    def is_directory_admin(self) -> bool:
        """Check if user has the admin directory role."""
        return self.role == UserRole.ADMIN

    def is_recently_active(self, now=None) -> bool:
        """
        Check whether the user was active within the activity window.

        Args:
            now: Reference time (defaults to timezone.now())
        """
        if self.last_active is None:
            return False
        now = now or timezone.now()
        window = timedelta(hours=DIRECTORY_CONFIG.ACTIVE_WINDOW_HOURS)
        return now - self.last_active < window
