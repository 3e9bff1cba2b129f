"""
Tests for ConversationService and MessageService.

Test Organization:
    - Each service method has its own test class
    - Tests use descriptive names following the pattern: test_<scenario>_<expected_outcome>

Testing Philosophy:
    Tests focus on observable behavior: returned results and error codes,
    database state, denormalized counters and previews. Real-time events
    are covered in test_broadcast.py.
"""

from datetime import timedelta
from unittest.mock import patch

from accounts.tests.factories import UserFactory
from chat.constants import MESSAGE_CONFIG
from chat.models import (
    Conversation,
    ConversationType,
    DirectConversationPair,
    Message,
    MessageType,
    Participant,
    ParticipantRole,
    SystemMessageEvent,
)
from chat.serializers import MessageSerializer
from chat.services import ConversationService, MembershipService, MessageService
from chat.tests.factories import DirectConversationFactory, GroupConversationFactory


def unread(conversation, user) -> int:
    return Participant.objects.get(
        conversation=conversation, user=user, left_at__isnull=True
    ).unread_count


# =============================================================================
# ConversationService.get_or_create_direct
# =============================================================================


class TestGetOrCreateDirect:
    """Tests for ConversationService.get_or_create_direct()."""

    def test_creates_conversation_with_both_participants(self, db, alice, bob):
        result = ConversationService.get_or_create_direct(alice, bob)

        assert result.success
        conversation = result.data
        assert conversation.conversation_type == ConversationType.DIRECT
        assert conversation.participant_count == 2
        assert set(
            conversation.participants.values_list("user_id", flat=True)
        ) == {alice.id, bob.id}
        assert all(p.role is None for p in conversation.participants.all())

    def test_same_pair_in_either_order_returns_same_conversation(self, db, alice, bob):
        """
        At most one live direct conversation exists per pair.

        Why it matters: Opening a chat from either side must land in the
        same history.
        """
        first = ConversationService.get_or_create_direct(alice, bob).data
        second = ConversationService.get_or_create_direct(bob, alice).data

        assert first.id == second.id
        assert Conversation.objects.filter(conversation_type=ConversationType.DIRECT).count() == 1

    def test_self_conversation_rejected(self, db, alice):
        result = ConversationService.get_or_create_direct(alice, alice)

        assert result.error_code == "SAME_USER"
        assert result.http_status == 400

    def test_concurrent_creation_converges_on_winner(self, db, alice, bob):
        """
        A racing insert that loses on the pair constraint returns the winner.

        Simulated by hiding the winner from the first lookup, as happens
        when both requests look before either has committed.

        Why it matters: Two users messaging each other for the first time
        at the same moment must end up in one conversation.
        """
        winner = DirectConversationFactory(user1=alice, user2=bob)
        real_find = ConversationService._find_direct.__func__
        calls = []

        def find_after_first_miss(cls, lower, higher):
            calls.append((lower, higher))
            if len(calls) == 1:
                return None
            return real_find(cls, lower, higher)

        with patch.object(
            ConversationService, "_find_direct", classmethod(find_after_first_miss)
        ):
            result = ConversationService.get_or_create_direct(alice, bob)

        assert result.success
        assert result.data.id == winner.id
        assert len(calls) == 2
        assert Conversation.objects.filter(conversation_type=ConversationType.DIRECT).count() == 1

    def test_new_conversation_after_delete(self, db, alice, bob):
        first = ConversationService.get_or_create_direct(alice, bob).data
        ConversationService.delete(first, alice)

        second = ConversationService.get_or_create_direct(alice, bob).data

        assert second.id != first.id
        assert not DirectConversationPair.objects.filter(conversation=first).exists()


# =============================================================================
# ConversationService.create_group / update_group
# =============================================================================


class TestCreateGroup:
    """Tests for ConversationService.create_group()."""

    def test_creator_gets_creator_role_and_members_join(self, db, creator, member):
        result = ConversationService.create_group(
            creator, "  Hikers  ", initial_members=[member, creator, member]
        )

        assert result.success
        group = result.data
        assert group.title == "Hikers"
        assert group.participant_count == 2
        assert group.get_active_participant_for_user(creator).role == ParticipantRole.CREATOR
        assert group.get_active_participant_for_user(member).role == ParticipantRole.MEMBER

    def test_group_created_system_message(self, db, creator, member):
        """
        Creating a group appends a group_created system message.

        Why it matters: The timeline starts with an explanation of what
        happened, and the conversation list shows it as preview.
        """
        group = ConversationService.create_group(creator, "Hikers", [member]).data

        message = group.messages.get()
        assert message.message_type == MessageType.SYSTEM
        assert message.get_system_event_data()["event"] == SystemMessageEvent.GROUP_CREATED
        group.refresh_from_db()
        assert group.last_message_preview == 'Group "Hikers" was created'
        assert unread(group, member) == 0

    def test_blank_title_rejected(self, db, creator, member):
        assert (
            ConversationService.create_group(creator, "   ", [member]).error_code
            == "TITLE_REQUIRED"
        )

    def test_needs_another_member(self, db, creator):
        result = ConversationService.create_group(creator, "Solo", [creator])

        assert result.error_code == "MEMBERS_REQUIRED"


class TestUpdateGroup:
    """Tests for ConversationService.update_group()."""

    def test_admin_updates_title(self, db, group, admin_member):
        result = ConversationService.update_group(group, admin_member, title="Renamed")

        assert result.success
        group.refresh_from_db()
        assert group.title == "Renamed"
        event = group.messages.latest("created_at").get_system_event_data()
        assert event["event"] == SystemMessageEvent.GROUP_UPDATED
        assert event["data"]["fields"] == ["title"]

    def test_member_cannot_update(self, db, group, member):
        result = ConversationService.update_group(group, member, title="Mine")

        assert result.error_code == "PERMISSION_DENIED"
        assert result.http_status == 403

    def test_no_changes(self, db, group, creator):
        result = ConversationService.update_group(group, creator, title=group.title)

        assert result.error_code == "NO_CHANGES"

    def test_direct_conversation_has_no_details(self, db, direct, alice):
        result = ConversationService.update_group(direct, alice, title="Ours")

        assert result.error_code == "NOT_GROUP"


# =============================================================================
# ConversationService.list_for_user
# =============================================================================


class TestListForUser:
    """Tests for ConversationService.list_for_user()."""

    def test_most_recent_activity_first(self, db, alice, bob):
        older = DirectConversationFactory(user1=alice, user2=bob)
        newer = GroupConversationFactory(created_by=alice, members=[bob])
        MessageService.send(older, bob, "first")
        MessageService.send(newer, bob, "second")

        ids = list(ConversationService.list_for_user(alice).values_list("id", flat=True))

        assert ids == [newer.id, older.id]

    def test_excludes_left_and_deleted(self, db, alice, bob, member):
        left = GroupConversationFactory(created_by=bob, members=[alice])
        Participant.objects.filter(conversation=left, user=alice).update(left_at=left.created_at)
        deleted = DirectConversationFactory(user1=alice, user2=member)
        deleted.soft_delete()
        kept = DirectConversationFactory(user1=alice, user2=bob)

        assert list(ConversationService.list_for_user(alice)) == [kept]

    def test_search_matches_other_participant_name(self, db, alice, bob, member):
        with_bob = DirectConversationFactory(user1=alice, user2=bob)
        DirectConversationFactory(user1=alice, user2=member)

        result = ConversationService.list_for_user(alice, search="bob")

        assert list(result) == [with_bob]

    def test_type_filter(self, db, alice, bob):
        DirectConversationFactory(user1=alice, user2=bob)
        group = GroupConversationFactory(created_by=alice, members=[bob])

        assert list(ConversationService.list_for_user(alice, ConversationType.GROUP)) == [group]


# =============================================================================
# ConversationService.delete / bulk_delete / delete_all_direct
# =============================================================================


class TestDeleteConversation:
    """Tests for ConversationService.delete() and friends."""

    def test_either_direct_participant_can_delete(self, db, direct, bob):
        result = ConversationService.delete(direct, bob)

        assert result.success
        assert Conversation.all_objects.get(pk=direct.pk).is_deleted

    def test_group_delete_creator_only(self, db, group, admin_member, creator):
        assert ConversationService.delete(group, admin_member).error_code == "PERMISSION_DENIED"
        assert ConversationService.delete(group, creator).success

    def test_messages_kept_after_delete(self, db, direct, alice):
        MessageService.send(direct, alice, "keep me")

        ConversationService.delete(direct, alice)

        assert Message.objects.filter(conversation_id=direct.id).count() == 1

    def test_non_participant_cannot_delete(self, db, direct, outsider):
        assert ConversationService.delete(direct, outsider).error_code == "NOT_PARTICIPANT"

    def test_bulk_delete_skips_undeletable(self, db, alice, bob, member):
        own_direct = DirectConversationFactory(user1=alice, user2=bob)
        foreign_group = GroupConversationFactory(created_by=bob, members=[alice])

        result = ConversationService.bulk_delete(alice, [own_direct.id, foreign_group.id])

        assert result.data == 1
        assert Conversation.objects.filter(pk=foreign_group.pk).exists()

    def test_bulk_delete_requires_ids(self, db, alice):
        assert ConversationService.bulk_delete(alice, []).error_code == "CONVERSATION_IDS_REQUIRED"

    def test_delete_all_direct_keeps_groups(self, db, alice, bob, member):
        DirectConversationFactory(user1=alice, user2=bob)
        DirectConversationFactory(user1=alice, user2=member)
        group = GroupConversationFactory(created_by=alice, members=[bob])

        result = ConversationService.delete_all_direct(alice)

        assert result.data == 2
        assert list(ConversationService.list_for_user(alice)) == [group]


# =============================================================================
# MessageService.send
# =============================================================================


class TestSend:
    """Tests for MessageService.send()."""

    def test_hi_scenario(self, db, alice, bob):
        """
        Alice says "hi" to Bob; Bob sees it unread, reads it, Alice sees read.

        Why it matters: This is the basic loop every other feature builds on.
        """
        conversation = ConversationService.get_or_create_direct(alice, bob).data

        message = MessageService.send(conversation, alice, "hi").data

        conversation.refresh_from_db()
        assert conversation.last_message_preview == "hi"
        assert conversation.last_message_at == message.created_at
        assert unread(conversation, bob) == 1
        assert unread(conversation, alice) == 0

        assert MessageService.mark_read(conversation, bob).data == 1

        assert unread(conversation, bob) == 0
        data = MessageSerializer(Message.objects.get(pk=message.pk)).data
        assert data["read"] is True
        assert data["read_by"] == [str(bob.id)]

    def test_n_messages_give_n_unread(self, db, group, creator, admin_member, member):
        """
        Every message from someone else increments the unread counter once.

        Why it matters: Badges must match the number of unseen messages.
        """
        for i in range(5):
            MessageService.send(group, creator, f"message {i}")

        assert unread(group, admin_member) == 5
        assert unread(group, member) == 5
        assert unread(group, creator) == 0

    def test_messages_ordered_by_acceptance(self, db, direct, alice, bob):
        sent = [
            MessageService.send(direct, sender, text).data
            for sender, text in [(alice, "a"), (bob, "b"), (alice, "c")]
        ]

        ordered = list(MessageService.query(direct, alice).data)

        assert [m.id for m in ordered] == [m.id for m in sent]

    def test_conversation_locked_before_message_insert(self, db, direct, alice):
        """
        The conversation row is locked before the message row is created.

        Why it matters: Concurrent senders then get timestamps in commit
        order, so the preview and the added events never go backwards.
        """
        rows_at_lock = []
        lock = ConversationService.lock_for_append

        def record(conversation):
            rows_at_lock.append(Message.objects.filter(conversation=conversation).count())
            lock(conversation)

        with patch.object(ConversationService, "lock_for_append", side_effect=record):
            MessageService.send(direct, alice, "hi")

        assert rows_at_lock == [0]

    def test_older_message_does_not_replace_newer_preview(self, db, direct, alice, bob):
        latest = MessageService.send(direct, alice, "newer").data
        older = Message.objects.create(conversation=direct, sender=bob, content="older")
        Message.objects.filter(pk=older.pk).update(
            created_at=latest.created_at - timedelta(seconds=1)
        )
        older.refresh_from_db()

        ConversationService.append_message_side_effects(direct, older)

        direct.refresh_from_db()
        assert direct.last_message_at == latest.created_at
        assert direct.last_message_preview == "newer"

    def test_non_participant_cannot_send(self, db, direct, outsider):
        result = MessageService.send(direct, outsider, "hello")

        assert result.error_code == "NOT_PARTICIPANT"
        assert result.http_status == 403

    def test_empty_content_rejected(self, db, direct, alice):
        assert MessageService.send(direct, alice, "   ").error_code == "EMPTY_CONTENT"

    def test_too_long_content_rejected(self, db, direct, alice):
        result = MessageService.send(direct, alice, "x" * (MESSAGE_CONFIG.MAX_CONTENT_LENGTH + 1))

        assert result.error_code == "CONTENT_TOO_LONG"

    def test_system_type_cannot_be_sent(self, db, direct, alice):
        result = MessageService.send(direct, alice, "{}", message_type=MessageType.SYSTEM)

        assert result.error_code == "INVALID_MESSAGE_TYPE"

    def test_media_requires_url(self, db, direct, alice):
        bad = MessageService.send(direct, alice, "not a url", message_type=MessageType.IMAGE)
        good = MessageService.send(
            direct,
            alice,
            "https://cdn.example.com/a.png",
            message_type=MessageType.IMAGE,
            file_name="a.png",
            file_size=1024,
        )

        assert bad.error_code == "INVALID_MEDIA_URL"
        assert good.success
        direct.refresh_from_db()
        assert direct.last_message_preview == "[Image] a.png"

    def test_deleted_conversation_rejects_messages(self, db, direct, alice):
        direct.soft_delete()

        assert MessageService.send(direct, alice, "hi").error_code == "CONVERSATION_DELETED"

    def test_reply_must_target_same_conversation(self, db, direct, alice, bob):
        other = GroupConversationFactory(created_by=alice, members=[bob])
        foreign = MessageService.send(other, bob, "elsewhere").data

        result = MessageService.send(direct, alice, "re", reply_to_id=foreign.id)

        assert result.error_code == "INVALID_REPLY_TARGET"

    def test_reply_shows_placeholder_after_target_deleted(self, db, direct, alice, bob):
        """
        A reply to a deleted message renders an unavailable placeholder.

        Why it matters: Deleting a message must not break or leak through
        the replies that quote it.
        """
        original = MessageService.send(direct, bob, "original text").data
        reply = MessageService.send(direct, alice, "answer", reply_to_id=original.id).data

        assert MessageSerializer(reply).data["reply_to"]["content"] == "original text"

        MessageService.delete(original, bob)

        reply_to = MessageSerializer(Message.objects.get(pk=reply.pk)).data["reply_to"]
        assert reply_to == {
            "id": original.id,
            "unavailable": True,
            "content": MESSAGE_CONFIG.UNAVAILABLE_PLACEHOLDER,
        }


# =============================================================================
# MessageService.forward
# =============================================================================


class TestForward:
    """Tests for MessageService.forward()."""

    def test_forward_copies_content_and_links_original(self, db, direct, alice, bob, member):
        target = DirectConversationFactory(user1=alice, user2=member)
        source = MessageService.send(direct, bob, "pass it on").data

        result = MessageService.forward(source.id, alice, target)

        assert result.success
        forwarded = result.data
        assert forwarded.conversation_id == target.id
        assert forwarded.sender == alice
        assert forwarded.content == "pass it on"
        assert forwarded.forwarded_message_id == source.id
        assert forwarded.forwarded_from_id == bob.id

    def test_forward_of_forward_keeps_original_author(self, db, direct, alice, bob, member):
        target = DirectConversationFactory(user1=alice, user2=member)
        source = MessageService.send(direct, bob, "chain").data
        hop = MessageService.forward(source.id, alice, target).data

        again = MessageService.forward(hop.id, member, target).data

        assert again.forwarded_from_id == bob.id

    def test_cannot_forward_from_inaccessible_conversation(self, db, direct, bob, outsider):
        source = MessageService.send(direct, bob, "private").data
        target = GroupConversationFactory(created_by=outsider, members=[bob])

        result = MessageService.forward(source.id, outsider, target)

        assert result.error_code == "SOURCE_NOT_ACCESSIBLE"

    def test_cannot_forward_deleted_or_system(self, db, group, creator, member):
        deleted = MessageService.send(group, creator, "gone").data
        MessageService.delete(deleted, creator)
        system = MessageService._create_system_message(group, SystemMessageEvent.MEMBER_LEFT, {})
        target = GroupConversationFactory(created_by=creator, members=[member])

        assert MessageService.forward(deleted.id, creator, target).error_code == "MESSAGE_DELETED"
        assert MessageService.forward(system.id, creator, target).error_code == "SYSTEM_MESSAGE"


# =============================================================================
# MessageService.edit / get_edit_history
# =============================================================================


class TestEdit:
    """Tests for MessageService.edit() and get_edit_history()."""

    def test_edit_records_history(self, db, direct, alice):
        message = MessageService.send(direct, alice, "v1").data

        MessageService.edit(message.id, alice, "v2")
        result = MessageService.edit(message.id, alice, "v3")

        assert result.success
        assert result.data.content == "v3"
        assert result.data.is_edited
        history = MessageService.get_edit_history(message.id, alice).data
        assert [(h.edit_number, h.content) for h in history] == [(1, "v1"), (2, "v2")]

    def test_edit_updates_preview_of_latest_message(self, db, direct, alice):
        message = MessageService.send(direct, alice, "tpyo").data

        MessageService.edit(message.id, alice, "typo")

        direct.refresh_from_db()
        assert direct.last_message_preview == "typo"

    def test_only_sender_can_edit(self, db, direct, alice, bob):
        message = MessageService.send(direct, alice, "mine").data

        assert MessageService.edit(message.id, bob, "yours").error_code == "PERMISSION_DENIED"

    def test_unchanged_content(self, db, direct, alice):
        message = MessageService.send(direct, alice, "same").data

        assert MessageService.edit(message.id, alice, " same ").error_code == "NO_CHANGES"

    def test_deleted_message_cannot_be_edited(self, db, direct, alice):
        message = MessageService.send(direct, alice, "bye").data
        MessageService.delete(message, alice)

        assert MessageService.edit(message.id, alice, "hello").error_code == "MESSAGE_DELETED"

    def test_unknown_message(self, db, alice):
        assert MessageService.edit(999999, alice, "x").error_code == "MESSAGE_NOT_FOUND"


# =============================================================================
# MessageService.delete
# =============================================================================


class TestDeleteMessage:
    """Tests for MessageService.delete()."""

    def test_sender_deletes_own_message(self, db, direct, alice):
        message = MessageService.send(direct, alice, "oops").data

        assert MessageService.delete(message, alice).success

        message.refresh_from_db()
        assert message.is_deleted
        assert MessageSerializer(message).data["content"] == MESSAGE_CONFIG.DELETED_PLACEHOLDER
        direct.refresh_from_db()
        assert direct.last_message_preview == MESSAGE_CONFIG.DELETED_PLACEHOLDER

    def test_other_direct_participant_cannot_delete(self, db, direct, alice, bob):
        message = MessageService.send(direct, alice, "mine").data

        assert MessageService.delete(message, bob).error_code == "PERMISSION_DENIED"

    def test_group_admin_deletes_any_message(self, db, group, admin_member, member):
        message = MessageService.send(group, member, "spam").data

        assert MessageService.delete(message, admin_member).success

    def test_member_cannot_delete_others_message(self, db, group, creator, member):
        message = MessageService.send(group, creator, "announcement").data

        assert MessageService.delete(message, member).error_code == "PERMISSION_DENIED"

    def test_already_deleted(self, db, direct, alice):
        message = MessageService.send(direct, alice, "x").data
        MessageService.delete(message, alice)

        assert MessageService.delete(message, alice).error_code == "ALREADY_DELETED"

    def test_system_message_cannot_be_deleted(self, db, group, creator):
        system = MessageService._create_system_message(group, SystemMessageEvent.MEMBER_LEFT, {})

        assert MessageService.delete(system, creator).error_code == "SYSTEM_MESSAGE"


# =============================================================================
# MessageService.mark_read / query
# =============================================================================


class TestMarkRead:
    """Tests for MessageService.mark_read()."""

    def test_marks_only_messages_from_others(self, db, direct, alice, bob):
        MessageService.send(direct, alice, "from alice")
        MessageService.send(direct, bob, "from bob")

        assert MessageService.mark_read(direct, bob).data == 1
        assert MessageService.mark_read(direct, bob).data == 0

        participant = Participant.objects.get(conversation=direct, user=bob)
        assert participant.unread_count == 0
        assert participant.last_read_at is not None

    def test_system_messages_do_not_count_as_unread(self, db, group, creator, member):
        """
        System messages are visible in the timeline but never unread.

        Why it matters: Membership noise should not light up badges.
        """
        MessageService._create_system_message(group, SystemMessageEvent.MEMBER_LEFT, {})

        assert unread(group, member) == 0
        assert MessageService.mark_read(group, member).data == 0

    def test_non_participant(self, db, direct, outsider):
        assert MessageService.mark_read(direct, outsider).error_code == "NOT_PARTICIPANT"

    def test_query_includes_tombstones(self, db, direct, alice):
        message = MessageService.send(direct, alice, "x").data
        MessageService.delete(message, alice)

        messages = list(MessageService.query(direct, alice).data)

        assert messages == [message]
        assert messages[0].is_deleted


class TestUnreadReset:
    """Unread counters after a new user joins."""

    def test_new_member_starts_at_zero(self, db, creator, member):
        group = ConversationService.create_group(creator, "G", [member]).data
        MessageService.send(group, creator, "before")
        late = UserFactory()

        MembershipService.add_members(group, creator, [late.id])

        assert unread(group, late) == 0
        assert unread(group, member) == 1
