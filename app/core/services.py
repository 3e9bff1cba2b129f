"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with common service utilities
- ErrorCategory: Coarse failure classes shared by every app's error codes

Service Layer Philosophy:
    Services encapsulate business logic separate from views and models.
    Views handle HTTP concerns, models handle data, services handle logic.

Pattern Comparison:
    - ServiceResult: Use for expected failures (validation, business rules)
    - Exceptions: Use for unexpected failures (database errors, bugs)

Error Categories:
    Every error code an app returns belongs to exactly one category.
    Apps register their codes once (usually in AppConfig.ready()):

        register_error_categories({
            "NOT_PARTICIPANT": ErrorCategory.UNAUTHORIZED,
            "MESSAGE_NOT_FOUND": ErrorCategory.NOT_FOUND,
        })

    Unregistered codes fall back to VALIDATION_FAILED.

Usage:
    from core.services import BaseService, ServiceResult

    class DirectoryService(BaseService):
        @classmethod
        def register(cls, email: str, password: str) -> ServiceResult[User]:
            if User.objects.filter(email__iexact=email).exists():
                return ServiceResult.failure(
                    "Email already registered",
                    error_code="EMAIL_EXISTS",
                )

            with cls.atomic():
                user = User.objects.create_user(email=email, password=password)

            cls.get_logger().info(f"Registered user {user.id}")
            return ServiceResult.success(user)

    # In view
    result = DirectoryService.register(email, password)
    if result.success:
        return Response(UserSerializer(result.data).data, status=201)
    return Response(result.to_error_response(), status=result.http_status)

Related:
    - core.exceptions: For unexpected/exceptional errors
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator, Mapping
    from typing import Any

# Generic type for ServiceResult data
T = TypeVar("T")


class ErrorCategory:
    """
    Failure categories shared across apps.

    UNAUTHORIZED: Actor lacks permission for the target resource
    FORBIDDEN: Action is never allowed for this actor/target combination
    NOT_FOUND: Referenced resource is absent
    CONFLICT: Operation conflicts with existing state
    VALIDATION_FAILED: Input is malformed or violates a business rule
    """

    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION_FAILED = "validation_failed"

    HTTP_STATUS: dict[str, int] = {
        UNAUTHORIZED: 403,
        FORBIDDEN: 403,
        NOT_FOUND: 404,
        CONFLICT: 409,
        VALIDATION_FAILED: 400,
    }


_ERROR_CATEGORIES: dict[str, str] = {}


def register_error_categories(mapping: Mapping[str, str]) -> None:
    """
    Register error codes with their category.

    Re-registering a code with the same category is a no-op; registering it
    with a different category raises ValueError.
    """
    for code, category in mapping.items():
        existing = _ERROR_CATEGORIES.get(code)
        if existing is not None and existing != category:
            raise ValueError(
                f"Error code {code} already registered as {existing}, not {category}"
            )
        _ERROR_CATEGORIES[code] = category


def get_error_category(error_code: str | None) -> str:
    """Return the category for an error code (VALIDATION_FAILED if unknown)."""
    if error_code is None:
        return ErrorCategory.VALIDATION_FAILED
    return _ERROR_CATEGORIES.get(error_code, ErrorCategory.VALIDATION_FAILED)


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Provides consistent success/failure handling without exceptions.
    Use this for expected failures (validation errors, business rule violations).

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures

    Usage:
        # Success case
        return ServiceResult.success(message)

        # Failure case
        return ServiceResult.failure("Not a participant", "NOT_PARTICIPANT")

        # Check result
        result = MessageService.send(conversation, user, "hi")
        if result.success:
            message = result.data
        else:
            print(f"Error: {result.error} ({result.error_code})")

    Note:
        This pattern is inspired by Result types in Rust/Swift.
        It makes error handling explicit without try/except blocks.
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """
        Create a successful result.

        Args:
            data: The result data

        Returns:
            ServiceResult with success=True and data set
        """
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)

        Returns:
            ServiceResult with success=False and error details

        Example:
            return ServiceResult.failure("User not found", "USER_NOT_FOUND")
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
        )

    @property
    def category(self) -> str | None:
        """Error category of a failed result (None on success)."""
        if self.success:
            return None
        return get_error_category(self.error_code)

    @property
    def http_status(self) -> int:
        """
        HTTP status code matching this result.

        200 for success, otherwise the status mapped from the error category.
        """
        if self.success:
            return 200
        return ErrorCategory.HTTP_STATUS[self.category]

    def to_error_response(self) -> dict[str, Any]:
        """
        Convert a failure to the API error body.

        Returns:
            Dict with error and error_code keys (and errors, if any)

        Example:
            {"error": "Only admins can add members", "error_code": "PERMISSION_DENIED"}
        """
        response: dict[str, Any] = {
            "error": self.error,
            "error_code": self.error_code,
        }
        if self.errors:
            response["errors"] = self.errors
        return response

    def __bool__(self) -> bool:
        """
        Allow using result in boolean context.

        Example:
            result = ConversationService.get_or_create_direct(a, b)
            if result:  # Same as: if result.success
                print("Success!")
        """
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Database transaction management
    - Required-field validation

    Usage:
        class DirectoryService(BaseService):
            @classmethod
            def register(cls, email: str) -> ServiceResult[User]:
                with cls.atomic():
                    user = User.objects.create_user(email=email)

                cls.get_logger().info(f"Registered user {user.id}")
                return ServiceResult.success(user)

    Design Notes:
        - Use @staticmethod or @classmethod (no instance state)
        - Services should be stateless
        - Use ServiceResult for expected failures
        - Raise exceptions for unexpected failures
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        All database operations within this context manager are
        wrapped in a transaction. If any operation fails, all
        changes are rolled back.

        Example:
            with cls.atomic():
                conversation = Conversation.objects.create(...)
                Participant.objects.create(conversation=conversation, ...)
                # If Participant creation fails, Conversation is also rolled back
        """
        with transaction.atomic():
            yield

    @classmethod
    def validate_required(cls, **kwargs) -> ServiceResult | None:
        """
        Validate that required fields are provided.

        Returns a failure result if any required field is None or blank.
        Returns None if all fields are valid.

        Example:
            validation = cls.validate_required(email=email, password=password)
            if validation:
                return validation
        """
        errors = {}
        for field_name, value in kwargs.items():
            if value is None or (isinstance(value, str) and not value.strip()):
                errors[field_name] = ["This field is required."]

        if errors:
            return ServiceResult.failure(
                "Required fields missing",
                error_code="REQUIRED_FIELDS_MISSING",
                errors=errors,
            )
        return None
