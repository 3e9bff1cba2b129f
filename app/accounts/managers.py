"""
Custom user manager for email-based authentication.

Related files:
    - models.py: User model that uses this manager

Security:
    - Passwords are automatically hashed via set_password()
    - Email addresses are normalized (lowercase domain)
"""

from django.contrib.auth.models import BaseUserManager


class UserManager(BaseUserManager):
    """
    Manager for the User model with email as the login identifier.

    Usage:
        # General (non-admin) user
        user = User.objects.create_user(
            email="user@example.com",
            password="securepassword",
            display_name="Ada",
        )

        # Directory administrator with Django admin access
        admin = User.objects.create_superuser(
            email="admin@example.com",
            password="adminpassword",
        )
    """

    def create_user(self, email, password=None, **extra_fields):
        """
        Create and save a user with the given email and password.

        Raises:
            ValueError: If email is not provided
        """
        if not email:
            raise ValueError("The Email field must be set")

        email = self.normalize_email(email)

        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)
        if not extra_fields.get("display_name"):
            extra_fields["display_name"] = email.split("@")[0]

        user = self.model(email=email, **extra_fields)

        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()

        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """
        Create and save a superuser. Superusers are always directory admins.

        Raises:
            ValueError: If is_staff or is_superuser is not True
        """
        from accounts.models import UserRole

        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("role", UserRole.ADMIN)

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")

        return self.create_user(email, password, **extra_fields)
