"""
Base exception classes for application-wide error handling.

This module provides a standardized exception hierarchy that enables:
- Consistent error responses across the application
- Machine-readable error codes for client handling
- Detailed error information for debugging

Exception Hierarchy:
    BaseApplicationError (base)
    ├── NotFoundError - Resource not found
    └── PermissionDeniedError - Authorization failures

Usage:
    from core.exceptions import NotFoundError

    # Raise with error code for client handling
    raise NotFoundError("Conversation not found", error_code="CONVERSATION_NOT_FOUND")

    # DRF views don't need to catch these: application_exception_handler
    # (configured as REST_FRAMEWORK["EXCEPTION_HANDLER"]) renders them as
    # {"error": ..., "error_code": ...} with the class status code.

Note:
    These exceptions are for domain/business logic errors.
    DRF handles API-layer exceptions (serialization, authentication, etc.).
    Expected service failures use core.services.ServiceResult instead.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rest_framework.response import Response
from rest_framework.views import exception_handler

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, metadata, etc.)
        status_code: HTTP status used when rendered by the API
    """

    default_error_code: str = "APPLICATION_ERROR"
    status_code: int = 400

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": "Conversation not found",
                "error_code": "CONVERSATION_NOT_FOUND",
                "details": {"conversation_id": 12}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Example:
        conversation = Conversation.objects.filter(pk=pk, is_deleted=False).first()
        if not conversation:
            raise NotFoundError(
                "Conversation not found",
                error_code="CONVERSATION_NOT_FOUND",
                details={"conversation_id": pk},
            )
    """

    default_error_code: str = "NOT_FOUND"
    status_code: int = 404


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when user lacks permission for an operation.

    Example:
        if not conversation.get_active_participant_for_user(user):
            raise PermissionDeniedError(
                "You are not a participant in this conversation",
                error_code="NOT_PARTICIPANT",
            )

    Note:
        For authentication failures (missing/invalid token), use DRF's
        AuthenticationFailed. Use this for authorization failures.
    """

    default_error_code: str = "PERMISSION_DENIED"
    status_code: int = 403


def application_exception_handler(exc, context):
    """
    DRF exception handler that renders BaseApplicationError subclasses.

    Everything else is delegated to DRF's default handler.
    """
    if isinstance(exc, BaseApplicationError):
        logger.info(f"Application error in {context.get('view')!r}: {exc}")
        return Response(exc.to_dict(), status=exc.status_code)
    return exception_handler(exc, context)
