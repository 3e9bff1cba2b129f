"""
Identity directory service layer.

Services:
    DirectoryService: User lookup, activity tracking, profile changes and
        administrative user management

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures return ServiceResult.failure()
    - Email and password changes require re-authentication with the
      current password
    - Administrative operations check the requester's role themselves, so
      they are safe to call from any entry point

Usage:
    from accounts.services import DirectoryService

    result = DirectoryService.resolve(user_id)
    if result.success:
        profile = result.data

    DirectoryService.touch_activity(request.user)
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from django.apps import apps
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from accounts.constants import DIRECTORY_CONFIG
from accounts.models import User, UserRole
from core.services import BaseService, ServiceResult

if TYPE_CHECKING:
    from django.db.models import QuerySet

logger = logging.getLogger(__name__)


class DirectoryService(BaseService):
    """
    Service for the identity directory.

    Methods:
        resolve: Look up an active user by id
        list_by_role: Active users of one role
        search: Case-insensitive search on display name and email
        touch_activity: Record session start/activity
        is_recently_active: Derived 24h activity predicate
        register: Create a general user
        update_profile: Change display name/avatar, or email/password with re-auth
        create_admin: Admin-only creation of another admin
        delete_user: Admin-only deletion of another user
        dashboard_stats: Admin-only directory and message counts
    """

    # =========================================================================
    # Lookups
    # =========================================================================

    @classmethod
    def resolve(cls, user_id) -> ServiceResult[User]:
        """
        Resolve a user id to its profile.

        Malformed ids resolve to not-found rather than raising.

        Error codes:
            USER_NOT_FOUND: No active user with this id
        """
        try:
            user = User.objects.get(pk=user_id, is_active=True)
        except (User.DoesNotExist, DjangoValidationError, ValueError):
            return ServiceResult.failure(
                "User not found",
                error_code="USER_NOT_FOUND",
            )
        return ServiceResult.success(user)

    @classmethod
    def list_by_role(cls, role: str) -> ServiceResult[QuerySet[User]]:
        """
        List active users of one role ordered by display name.

        Error codes:
            INVALID_ROLE: role is not admin or general
        """
        if role not in UserRole.values:
            return ServiceResult.failure(
                f"Unknown role '{role}'",
                error_code="INVALID_ROLE",
            )
        users = User.objects.filter(role=role, is_active=True).order_by(
            "display_name", "email"
        )
        return ServiceResult.success(users)

    @classmethod
    def search(cls, query: str, role: str | None = None) -> QuerySet[User]:
        """
        Search active users by display name or email (case-insensitive).

        An empty query matches every active user. Results are capped at
        DIRECTORY_CONFIG.SEARCH_MAX_RESULTS.
        """
        users = User.objects.filter(is_active=True)
        if role:
            users = users.filter(role=role)

        query = (query or "").strip()
        if query:
            users = users.filter(
                Q(display_name__icontains=query) | Q(email__icontains=query)
            )

        return users.order_by("display_name", "email")[
            : DIRECTORY_CONFIG.SEARCH_MAX_RESULTS
        ]

    # =========================================================================
    # Activity
    # =========================================================================

    @classmethod
    def touch_activity(cls, user: User) -> None:
        """
        Record that the user started a session or was active just now.

        Uses a single UPDATE so concurrent sessions never overwrite other
        profile fields.
        """
        now = timezone.now()
        User.objects.filter(pk=user.pk).update(last_active=now)
        user.last_active = now
        cls.get_logger().debug(f"Touched activity for user {user.pk}")

    @classmethod
    def is_recently_active(cls, user: User, now=None) -> bool:
        """Return True if the user was active within the activity window."""
        return user.is_recently_active(now=now)

    # =========================================================================
    # Registration & Profile
    # =========================================================================

    @classmethod
    def register(
        cls,
        email: str,
        password: str,
        display_name: str = "",
    ) -> ServiceResult[User]:
        """
        Register a new general user.

        Error codes:
            REQUIRED_FIELDS_MISSING: email or password missing
            EMAIL_EXISTS: Email already registered
            INVALID_PASSWORD: Password rejected by the validators
        """
        return cls._create_user(
            email=email,
            password=password,
            display_name=display_name,
            role=UserRole.GENERAL,
        )

    @classmethod
    def update_profile(
        cls,
        user: User,
        display_name: str | None = None,
        avatar: str | None = None,
        email: str | None = None,
        new_password: str | None = None,
        current_password: str | None = None,
    ) -> ServiceResult[User]:
        """
        Update the user's own profile.

        Display name and avatar can be changed freely. Changing email or
        password requires the current password (step-up re-authentication).
        Nothing is saved if any check fails.

        Error codes:
            DISPLAY_NAME_REQUIRED: display_name given but blank
            REAUTH_REQUIRED: email/password change without current_password
            REAUTH_FAILED: current_password is wrong
            EMAIL_EXISTS: New email belongs to another user
            INVALID_PASSWORD: New password rejected by the validators
        """
        update_fields = []

        if display_name is not None:
            display_name = display_name.strip()
            if not display_name:
                return ServiceResult.failure(
                    "Display name cannot be empty",
                    error_code="DISPLAY_NAME_REQUIRED",
                )

        if email is not None or new_password is not None:
            if not current_password:
                return ServiceResult.failure(
                    "Current password is required to change email or password",
                    error_code="REAUTH_REQUIRED",
                )
            if not user.check_password(current_password):
                cls.get_logger().warning(
                    f"Failed re-authentication for user {user.pk}"
                )
                return ServiceResult.failure(
                    "Current password is incorrect",
                    error_code="REAUTH_FAILED",
                )

        if email is not None:
            email = User.objects.normalize_email(email.strip())
            if (
                User.objects.filter(email__iexact=email)
                .exclude(pk=user.pk)
                .exists()
            ):
                return ServiceResult.failure(
                    "Email already registered",
                    error_code="EMAIL_EXISTS",
                )

        if new_password is not None:
            try:
                validate_password(new_password, user)
            except DjangoValidationError as exc:
                return ServiceResult.failure(
                    "Password does not meet requirements",
                    error_code="INVALID_PASSWORD",
                    errors={"new_password": list(exc.messages)},
                )

        # All checks passed; only now touch the instance
        if display_name is not None:
            user.display_name = display_name
            update_fields.append("display_name")
        if avatar is not None:
            user.avatar = avatar
            update_fields.append("avatar")
        if email is not None:
            user.email = email
            update_fields.append("email")
        if new_password is not None:
            user.set_password(new_password)
            update_fields.append("password")

        if update_fields:
            user.save(update_fields=[*update_fields, "updated_at"])
            cls.get_logger().info(
                f"Updated profile fields {update_fields} for user {user.pk}"
            )

        return ServiceResult.success(user)

    # =========================================================================
    # Administration
    # =========================================================================

    @classmethod
    def create_admin(
        cls,
        requested_by: User,
        email: str,
        password: str,
        display_name: str = "",
    ) -> ServiceResult[User]:
        """
        Create another administrator account.

        Error codes:
            ADMIN_REQUIRED: requester is not an admin
            plus the register() error codes
        """
        if not requested_by.is_directory_admin:
            return ServiceResult.failure(
                "Only administrators can create admins",
                error_code="ADMIN_REQUIRED",
            )

        result = cls._create_user(
            email=email,
            password=password,
            display_name=display_name,
            role=UserRole.ADMIN,
        )
        if result.success:
            cls.get_logger().info(
                f"Admin {requested_by.pk} created admin {result.data.pk}"
            )
        return result

    @classmethod
    def delete_user(cls, requested_by: User, user_id) -> ServiceResult[None]:
        """
        Delete a user account.

        Deletion is an administrative action and never allowed on oneself.
        The user first leaves every conversation (see
        MembershipService.end_memberships), in the same transaction.

        Error codes:
            ADMIN_REQUIRED: requester is not an admin
            CANNOT_DELETE_SELF: target is the requester
            USER_NOT_FOUND: target does not exist
        """
        if not requested_by.is_directory_admin:
            return ServiceResult.failure(
                "Only administrators can delete users",
                error_code="ADMIN_REQUIRED",
            )

        if str(requested_by.pk) == str(user_id):
            return ServiceResult.failure(
                "You cannot delete your own account",
                error_code="CANNOT_DELETE_SELF",
            )

        try:
            target = User.objects.get(pk=user_id)
        except (User.DoesNotExist, DjangoValidationError, ValueError):
            return ServiceResult.failure(
                "User not found",
                error_code="USER_NOT_FOUND",
            )

        # chat depends on accounts, so import at call time
        from chat.services import MembershipService

        target_id = target.pk
        with transaction.atomic():
            released = MembershipService.end_memberships(target).data
            target.delete()

        cls.get_logger().info(
            f"Admin {requested_by.pk} deleted user {target_id} ({released})"
        )
        return ServiceResult.success(None)

    @classmethod
    def dashboard_stats(cls, requested_by: User) -> ServiceResult[dict]:
        """
        Directory and message counts for the admin dashboard.

        Returns:
            ServiceResult with dict:
                total_general_users, total_admins, total_messages,
                active_users (general users active in the last 24h)

        Error codes:
            ADMIN_REQUIRED: requester is not an admin
        """
        if not requested_by.is_directory_admin:
            return ServiceResult.failure(
                "Only administrators can view dashboard stats",
                error_code="ADMIN_REQUIRED",
            )

        Message = apps.get_model("chat", "Message")
        active_since = timezone.now() - timedelta(
            hours=DIRECTORY_CONFIG.ACTIVE_WINDOW_HOURS
        )
        general_users = User.objects.filter(role=UserRole.GENERAL, is_active=True)

        stats = {
            "total_general_users": general_users.count(),
            "total_admins": User.objects.filter(
                role=UserRole.ADMIN, is_active=True
            ).count(),
            "total_messages": Message.objects.filter(
                sender__isnull=False,
                is_deleted=False,
            ).count(),
            "active_users": general_users.filter(
                last_active__gt=active_since
            ).count(),
        }
        return ServiceResult.success(stats)

    # =========================================================================
    # Internal
    # =========================================================================

    @classmethod
    def _create_user(
        cls,
        email: str,
        password: str,
        display_name: str,
        role: str,
    ) -> ServiceResult[User]:
        validation = cls.validate_required(email=email, password=password)
        if validation:
            return validation

        email = User.objects.normalize_email(email.strip())
        if User.objects.filter(email__iexact=email).exists():
            return ServiceResult.failure(
                "Email already registered",
                error_code="EMAIL_EXISTS",
            )

        try:
            validate_password(password, User(email=email, display_name=display_name))
        except DjangoValidationError as exc:
            return ServiceResult.failure(
                "Password does not meet requirements",
                error_code="INVALID_PASSWORD",
                errors={"password": list(exc.messages)},
            )

        try:
            with cls.atomic():
                user = User.objects.create_user(
                    email=email,
                    password=password,
                    display_name=(display_name or "").strip(),
                    role=role,
                )
        except IntegrityError:
            # Lost a race with a concurrent registration of the same email
            return ServiceResult.failure(
                "Email already registered",
                error_code="EMAIL_EXISTS",
            )

        cls.get_logger().info(f"Created {role} user {user.pk}")
        return ServiceResult.success(user)
