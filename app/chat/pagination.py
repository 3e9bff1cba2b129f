"""
Pagination classes for chat API.

Message lists use cursor pagination:
- Stable results during concurrent inserts
- Efficient for large datasets
- No offset calculation needed

Conversation lists are returned whole, matching the conversation snapshot
pushed over WebSocket.
"""

from rest_framework.pagination import CursorPagination


class MessageCursorPagination(CursorPagination):
    """
    Cursor pagination for message lists.

    Orders messages oldest-first, the order they were accepted by the
    server. Uses (created_at, id) for stable cursor position.

    Default: 50 messages per page
    Maximum: 100 messages per page

    Query parameters:
        cursor: Encoded cursor for position
        page_size: Number of messages (optional override)
    """

    page_size = 50
    max_page_size = 100
    page_size_query_param = "page_size"
    ordering = ("created_at", "id")
    cursor_query_param = "cursor"
