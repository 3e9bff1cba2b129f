"""
Constants and configuration for the chat module.

This module centralizes configuration values for:
- Message operations (content limits, previews, tombstone retention)
- Group metadata limits
- Real-time fan-out (channel group names, snapshot sizes, close codes)
- Error code categories

Import example:
    from chat.constants import MESSAGE_CONFIG, FANOUT_CONFIG
"""

from typing import Final

from core.services import ErrorCategory


# =============================================================================
# Message Configuration
# =============================================================================


class MESSAGE_CONFIG:
    """Configuration for message operations."""

    # Content limits
    MAX_CONTENT_LENGTH: Final[int] = 10000  # Characters

    # Denormalized last-message preview on the conversation
    PREVIEW_LENGTH: Final[int] = 100

    # Truncated content in reply/forward projections
    REFERENCE_PREVIEW_LENGTH: Final[int] = 80

    # Tombstones older than this are hard-deleted by purge_deleted_messages
    TOMBSTONE_RETENTION_DAYS: Final[int] = 30

    # Display text
    DELETED_PLACEHOLDER: Final[str] = "[Message deleted]"
    UNAVAILABLE_PLACEHOLDER: Final[str] = "Message unavailable"


# =============================================================================
# Group Configuration
# =============================================================================


class GROUP_CONFIG:
    """Configuration for group metadata."""

    MAX_TITLE_LENGTH: Final[int] = 100
    MAX_DESCRIPTION_LENGTH: Final[int] = 1000


# =============================================================================
# Fan-out Configuration
# =============================================================================


class FANOUT_CONFIG:
    """Configuration for WebSocket subscriptions and channel-layer groups."""

    USER_GROUP_PREFIX: Final[str] = "user"
    CONVERSATION_GROUP_PREFIX: Final[str] = "conversation"

    # Most recent messages included in a subscription snapshot
    SNAPSHOT_MESSAGE_LIMIT: Final[int] = 200

    # WebSocket close codes
    CLOSE_UNAUTHENTICATED: Final[int] = 4001


# =============================================================================
# Error Categories
# =============================================================================

# Error code -> category. Unlisted codes are VALIDATION_FAILED.
ERROR_CATEGORIES: Final[dict[str, str]] = {
    "NOT_PARTICIPANT": ErrorCategory.UNAUTHORIZED,
    "SOURCE_NOT_ACCESSIBLE": ErrorCategory.UNAUTHORIZED,
    "PERMISSION_DENIED": ErrorCategory.FORBIDDEN,
    "CANNOT_REMOVE_CREATOR": ErrorCategory.FORBIDDEN,
    "CANNOT_DEMOTE_CREATOR": ErrorCategory.FORBIDDEN,
    "CREATOR_CANNOT_LEAVE": ErrorCategory.FORBIDDEN,
    "CONVERSATION_NOT_FOUND": ErrorCategory.NOT_FOUND,
    "MESSAGE_NOT_FOUND": ErrorCategory.NOT_FOUND,
    "USER_NOT_FOUND": ErrorCategory.NOT_FOUND,
    "TARGET_NOT_PARTICIPANT": ErrorCategory.NOT_FOUND,
}
