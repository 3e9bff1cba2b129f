"""
Constants and configuration for the identity directory.

Import example:
    from accounts.constants import DIRECTORY_CONFIG
"""

from typing import Final

from core.services import ErrorCategory


class DIRECTORY_CONFIG:
    """Configuration for directory lookups and activity tracking."""

    # A user counts as active if last_active is within this window
    ACTIVE_WINDOW_HOURS: Final[int] = 24

    # Search settings
    SEARCH_MAX_RESULTS: Final[int] = 50


# Error code -> category. Unlisted codes are VALIDATION_FAILED.
ERROR_CATEGORIES: Final[dict[str, str]] = {
    "USER_NOT_FOUND": ErrorCategory.NOT_FOUND,
    "EMAIL_EXISTS": ErrorCategory.CONFLICT,
    "REAUTH_REQUIRED": ErrorCategory.UNAUTHORIZED,
    "REAUTH_FAILED": ErrorCategory.UNAUTHORIZED,
    "ADMIN_REQUIRED": ErrorCategory.FORBIDDEN,
    "CANNOT_DELETE_SELF": ErrorCategory.FORBIDDEN,
}
