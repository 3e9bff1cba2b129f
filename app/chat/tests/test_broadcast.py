"""
Tests for post-commit event publishing.

Service writes register on_commit callbacks; these tests run them with
pytest-django's django_capture_on_commit_callbacks fixture and record
what would be sent to the channel layer.
"""

from unittest.mock import patch

import pytest

from chat import broadcast
from chat.services import ConversationService, MembershipService, MessageService


@pytest.fixture
def sent():
    """Record (group, message) pairs instead of sending them."""
    calls = []
    with patch.object(broadcast, "_group_send", side_effect=lambda g, m: calls.append((g, m))):
        yield calls


def events_for(sent, group):
    return [message for name, message in sent if name == group]


class TestMessageEvents:
    """Events produced by message writes."""

    def test_send_publishes_added_message_and_per_user_conversation(
        self, db, direct, alice, bob, sent, django_capture_on_commit_callbacks
    ):
        """
        Sending publishes the message and each user's updated conversation.

        Why it matters: Subscribers render the new message and the
        conversation list re-sorts with the right unread badge per user.
        """
        with django_capture_on_commit_callbacks(execute=True):
            message = MessageService.send(direct, alice, "hi").data

        [added] = events_for(sent, broadcast.conversation_group_name(direct.id))
        assert added["type"] == "chat.event"
        assert added["event"]["type"] == broadcast.EVENT_ADDED
        assert added["event"]["stream"] == broadcast.STREAM_MESSAGES
        assert added["event"]["data"]["id"] == message.id

        [for_bob] = events_for(sent, broadcast.user_group_name(bob.id))
        [for_alice] = events_for(sent, broadcast.user_group_name(alice.id))
        assert for_bob["event"]["type"] == broadcast.EVENT_MODIFIED
        assert for_bob["event"]["data"]["unread_count"] == 1
        assert for_alice["event"]["data"]["unread_count"] == 0
        assert for_bob["event"]["data"]["last_message_preview"] == "hi"

    def test_delete_publishes_removed_tombstone(
        self, db, direct, alice, sent, django_capture_on_commit_callbacks
    ):
        message = MessageService.send(direct, alice, "oops").data

        with django_capture_on_commit_callbacks(execute=True):
            MessageService.delete(message, alice)

        [removed] = events_for(sent, broadcast.conversation_group_name(direct.id))
        assert removed["event"]["type"] == broadcast.EVENT_REMOVED
        assert removed["event"]["data"]["is_deleted"] is True

    def test_edit_publishes_modified(
        self, db, direct, alice, sent, django_capture_on_commit_callbacks
    ):
        message = MessageService.send(direct, alice, "v1").data

        with django_capture_on_commit_callbacks(execute=True):
            MessageService.edit(message.id, alice, "v2")

        [modified] = events_for(sent, broadcast.conversation_group_name(direct.id))
        assert modified["event"]["type"] == broadcast.EVENT_MODIFIED
        assert modified["event"]["data"]["content"] == "v2"

    def test_failed_write_publishes_nothing(
        self, db, direct, outsider, sent, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            MessageService.send(direct, outsider, "nope")

        assert callbacks == []
        assert sent == []


class TestConversationEvents:
    """Events produced by conversation and membership writes."""

    def test_delete_removes_from_every_participant_list(
        self, db, direct, alice, bob, sent, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            ConversationService.delete(direct, alice)

        for user in (alice, bob):
            [event] = events_for(sent, broadcast.user_group_name(user.id))
            assert event["type"] == "chat.conversation_removed"
            assert event["event"] == {
                "type": broadcast.EVENT_REMOVED,
                "stream": broadcast.STREAM_CONVERSATIONS,
                "data": {"id": direct.id},
            }

    def test_added_member_receives_added(
        self, db, group, creator, outsider, sent, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            MembershipService.add_members(group, creator, [outsider.id])

        events = events_for(sent, broadcast.user_group_name(outsider.id))
        assert [e["event"]["type"] for e in events] == [
            broadcast.EVENT_MODIFIED,
            broadcast.EVENT_ADDED,
        ]
        assert events[-1]["event"]["data"]["id"] == group.id

    def test_removed_member_receives_removed(
        self, db, group, creator, member, sent, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            MembershipService.remove_member(group, creator, member.id)

        [event] = events_for(sent, broadcast.user_group_name(member.id))
        assert event["type"] == "chat.conversation_removed"


class TestPublishFailures:
    """Channel layer errors never reach the caller."""

    def test_group_send_error_is_logged(self, caplog):
        class BrokenLayer:
            async def group_send(self, group, message):
                raise ConnectionError("redis down")

        with patch.object(broadcast, "get_channel_layer", return_value=BrokenLayer()):
            broadcast._group_send("user_x", {"type": "chat.event"})

        assert "Failed to publish event to user_x" in caplog.text
