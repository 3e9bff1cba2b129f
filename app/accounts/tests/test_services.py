"""
Tests for DirectoryService business logic.

Test Organization:
    - Each service method has its own test class
    - Tests use descriptive names following the pattern: test_<scenario>_<expected_outcome>

Dependencies:
    - pytest and pytest-django for test framework
    - freezegun for the activity window
    - Factory Boy factories from accounts.tests.factories
"""

import uuid
from datetime import timedelta
from unittest.mock import patch

from django.utils import timezone
from freezegun import freeze_time

from accounts.models import User, UserRole
from accounts.services import DirectoryService
from accounts.tests.factories import AdminUserFactory, UserFactory
from chat import broadcast
from chat.models import (
    Conversation,
    DirectConversationPair,
    Message,
    MessageType,
    Participant,
    ParticipantRole,
    SystemMessageEvent,
)
from chat.services import ConversationService
from chat.tests.factories import (
    DirectConversationFactory,
    GroupConversationFactory,
    MessageFactory,
)

STRONG_PASSWORD = "Quartz-Lantern-42"


# =============================================================================
# Lookups
# =============================================================================


class TestResolve:
    """Tests for DirectoryService.resolve()."""

    def test_resolves_existing_user(self, db, user):
        result = DirectoryService.resolve(user.id)

        assert result.success
        assert result.data == user

    def test_unknown_id_is_not_found(self, db):
        """
        Unknown ids resolve to USER_NOT_FOUND.

        Why it matters: Callers adding members or opening conversations
        rely on a clean not-found failure rather than an exception.
        """
        result = DirectoryService.resolve(uuid.uuid4())

        assert not result.success
        assert result.error_code == "USER_NOT_FOUND"
        assert result.http_status == 404

    def test_malformed_id_is_not_found(self, db):
        result = DirectoryService.resolve("not-a-uuid")

        assert result.error_code == "USER_NOT_FOUND"

    def test_inactive_user_is_not_found(self, db):
        user = UserFactory(is_active=False)

        assert DirectoryService.resolve(user.id).error_code == "USER_NOT_FOUND"


class TestListByRole:
    """Tests for DirectoryService.list_by_role()."""

    def test_lists_only_requested_role_ordered_by_name(self, db):
        UserFactory(display_name="Zed")
        UserFactory(display_name="Amy")
        AdminUserFactory(display_name="Boss")

        result = DirectoryService.list_by_role(UserRole.GENERAL)

        assert result.success
        assert [u.display_name for u in result.data] == ["Amy", "Zed"]

    def test_unknown_role_fails(self, db):
        result = DirectoryService.list_by_role("superhero")

        assert result.error_code == "INVALID_ROLE"
        assert result.http_status == 400


class TestSearch:
    """Tests for DirectoryService.search()."""

    def test_matches_display_name_case_insensitively(self, db):
        alice = UserFactory(display_name="Alice Liddell")
        UserFactory(display_name="Bob")

        assert list(DirectoryService.search("alice")) == [alice]

    def test_matches_email(self, db):
        carol = UserFactory(email="carol@wonder.land", display_name="C")

        assert carol in DirectoryService.search("wonder.land")

    def test_role_filter_applies(self, db):
        UserFactory(display_name="Dana")
        admin = AdminUserFactory(display_name="Dana Admin")

        assert list(DirectoryService.search("dana", role=UserRole.ADMIN)) == [admin]

    def test_excludes_inactive_users(self, db):
        UserFactory(display_name="Ghost", is_active=False)

        assert not DirectoryService.search("ghost").exists()


# =============================================================================
# Activity
# =============================================================================


class TestTouchActivity:
    """Tests for DirectoryService.touch_activity()."""

    def test_sets_last_active_to_now(self, db, user):
        """
        Starting a session marks the user active.

        Why it matters: is_recently_active and the dashboard count are
        derived from last_active.
        """
        with freeze_time("2026-03-01 09:30:00"):
            DirectoryService.touch_activity(user)
            expected = timezone.now()

        user.refresh_from_db()
        assert user.last_active == expected
        assert DirectoryService.is_recently_active(user, now=expected + timedelta(hours=1))


# =============================================================================
# Registration & Profile
# =============================================================================


class TestRegister:
    """Tests for DirectoryService.register()."""

    def test_creates_general_user(self, db):
        result = DirectoryService.register(
            email="new@example.com", password=STRONG_PASSWORD, display_name="New"
        )

        assert result.success
        assert result.data.role == UserRole.GENERAL
        assert result.data.check_password(STRONG_PASSWORD)

    def test_duplicate_email_conflicts(self, db, user):
        """
        Registering an existing email (any case) is a conflict.

        Why it matters: Email is the login identifier and must stay unique.
        """
        result = DirectoryService.register(email=user.email.upper(), password=STRONG_PASSWORD)

        assert result.error_code == "EMAIL_EXISTS"
        assert result.http_status == 409

    def test_missing_password_fails(self, db):
        result = DirectoryService.register(email="x@example.com", password="")

        assert not result.success
        assert result.http_status == 400


class TestUpdateProfile:
    """Tests for DirectoryService.update_profile()."""

    def test_display_name_change_needs_no_password(self, db, user):
        result = DirectoryService.update_profile(user, display_name="  Renamed ")

        assert result.success
        user.refresh_from_db()
        assert user.display_name == "Renamed"

    def test_blank_display_name_rejected(self, db, user):
        result = DirectoryService.update_profile(user, display_name="   ")

        assert result.error_code == "DISPLAY_NAME_REQUIRED"

    def test_email_change_requires_current_password(self, db, user):
        """
        Changing the email without re-authenticating is refused.

        Why it matters: A stolen session must not be enough to take over
        the account's login identifier.
        """
        result = DirectoryService.update_profile(user, email="other@example.com")

        assert result.error_code == "REAUTH_REQUIRED"
        user.refresh_from_db()
        assert user.email != "other@example.com"

    def test_wrong_current_password_rejected_without_partial_save(self, db, user):
        original_name = user.display_name

        result = DirectoryService.update_profile(
            user,
            display_name="Changed",
            new_password=STRONG_PASSWORD,
            current_password="wrong",
        )

        assert result.error_code == "REAUTH_FAILED"
        user.refresh_from_db()
        assert user.display_name == original_name

    def test_failed_check_leaves_instance_untouched(self, db, user):
        """
        A rejected update does not modify the in-memory user either.

        Why it matters: The same instance is request.user for the rest of
        the request.
        """
        original_name = user.display_name
        original_avatar = user.avatar

        result = DirectoryService.update_profile(
            user,
            display_name="Changed",
            avatar="https://cdn.example.com/new.png",
            email="new@example.com",
            current_password="wrong",
        )

        assert result.error_code == "REAUTH_FAILED"
        assert user.display_name == original_name
        assert user.avatar == original_avatar
        assert user.email != "new@example.com"

    def test_password_change_with_reauth(self, db, user):
        result = DirectoryService.update_profile(
            user, new_password=STRONG_PASSWORD, current_password="TestPass123!"
        )

        assert result.success
        user.refresh_from_db()
        assert user.check_password(STRONG_PASSWORD)

    def test_email_taken_by_other_user_conflicts(self, db, user):
        other = UserFactory()

        result = DirectoryService.update_profile(
            user, email=other.email, current_password="TestPass123!"
        )

        assert result.error_code == "EMAIL_EXISTS"


# =============================================================================
# Administration
# =============================================================================


class TestCreateAdmin:
    """Tests for DirectoryService.create_admin()."""

    def test_admin_can_create_admin(self, db, admin):
        result = DirectoryService.create_admin(
            admin, email="ops@example.com", password=STRONG_PASSWORD
        )

        assert result.success
        assert result.data.role == UserRole.ADMIN

    def test_general_user_cannot_create_admin(self, db, user):
        result = DirectoryService.create_admin(
            user, email="ops@example.com", password=STRONG_PASSWORD
        )

        assert result.error_code == "ADMIN_REQUIRED"
        assert result.http_status == 403
        assert not User.objects.filter(email="ops@example.com").exists()


class TestDeleteUser:
    """Tests for DirectoryService.delete_user()."""

    def test_admin_deletes_user(self, db, admin, user):
        result = DirectoryService.delete_user(admin, user.id)

        assert result.success
        assert not User.objects.filter(pk=user.pk).exists()

    def test_admin_cannot_delete_self(self, db, admin):
        result = DirectoryService.delete_user(admin, admin.id)

        assert result.error_code == "CANNOT_DELETE_SELF"

    def test_general_user_cannot_delete(self, db, user):
        victim = UserFactory()

        assert DirectoryService.delete_user(user, victim.id).error_code == "ADMIN_REQUIRED"

    def test_unknown_user_not_found(self, db, admin):
        assert DirectoryService.delete_user(admin, uuid.uuid4()).error_code == "USER_NOT_FOUND"

    def test_deleted_sender_messages_remain(self, db, admin):
        """
        Messages survive their sender's deletion with sender unset.

        Why it matters: Conversation history must stay readable for the
        remaining participants.
        """
        sender = UserFactory()
        conversation = GroupConversationFactory(created_by=admin)
        message = MessageFactory(conversation=conversation, sender=sender)

        DirectoryService.delete_user(admin, sender.id)

        message.refresh_from_db()
        assert message.sender is None


class TestDeleteUserMemberships:
    """Deleting a user ends their conversations like a normal leave would."""

    def test_direct_conversations_are_deleted(
        self, db, admin, django_capture_on_commit_callbacks
    ):
        alice, bob = UserFactory(), UserFactory()
        direct = DirectConversationFactory(user1=alice, user2=bob)
        sent = []

        with patch.object(
            broadcast, "_group_send", side_effect=lambda g, m: sent.append((g, m))
        ):
            with django_capture_on_commit_callbacks(execute=True):
                DirectoryService.delete_user(admin, alice.id)

        direct.refresh_from_db()
        assert direct.is_deleted
        assert not DirectConversationPair.objects.filter(conversation=direct).exists()
        removed = [
            message
            for group, message in sent
            if group == broadcast.user_group_name(bob.id)
            and message["type"] == "chat.conversation_removed"
        ]
        assert len(removed) == 1

    def test_group_membership_ends_with_count_updated(self, db, admin):
        creator, leaving, staying = UserFactory(), UserFactory(), UserFactory()
        group = GroupConversationFactory(created_by=creator, members=[leaving, staying])

        DirectoryService.delete_user(admin, leaving.id)

        group.refresh_from_db()
        assert group.participant_count == 2
        assert group.get_active_participants().count() == 2
        assert Message.objects.filter(
            conversation=group,
            message_type=MessageType.SYSTEM,
            content__contains=SystemMessageEvent.MEMBER_LEFT,
        ).exists()

    def test_creator_role_passes_to_longest_standing_admin(self, db, admin):
        """
        A deleted creator hands the group to its longest-standing admin.

        Why it matters: A group without a creator could never be deleted
        and nobody could change roles again.
        """
        creator, first_admin, second_admin, member = (UserFactory() for _ in range(4))
        group = GroupConversationFactory(
            created_by=creator,
            admins=[first_admin, second_admin],
            members=[member],
        )

        DirectoryService.delete_user(admin, creator.id)

        group.refresh_from_db()
        assert group.created_by_id == first_admin.id
        assert group.participant_count == 3
        successor = Participant.objects.get(
            conversation=group, user=first_admin, left_at__isnull=True
        )
        assert successor.role == ParticipantRole.CREATOR
        assert ConversationService.delete(group, first_admin).success

    def test_creator_role_passes_to_member_when_no_admin(self, db, admin):
        creator, member = UserFactory(), UserFactory()
        group = GroupConversationFactory(created_by=creator, members=[member])

        DirectoryService.delete_user(admin, creator.id)

        group.refresh_from_db()
        assert group.created_by_id == member.id
        assert group.participant_count == 1
        assert not group.is_deleted

    def test_group_with_nobody_else_is_deleted(self, db, admin):
        creator = UserFactory()
        group = GroupConversationFactory(created_by=creator)

        DirectoryService.delete_user(admin, creator.id)

        assert Conversation.all_objects.get(pk=group.pk).is_deleted


class TestDashboardStats:
    """Tests for DirectoryService.dashboard_stats()."""

    def test_counts(self, db, admin):
        """
        Counts general users, admins, user messages and active users.

        Why it matters: System messages are not user traffic and must not
        inflate the message count.
        """
        active = UserFactory()
        UserFactory()
        active.last_active = timezone.now()
        active.save(update_fields=["last_active"])

        conversation = GroupConversationFactory(created_by=admin)
        MessageFactory(conversation=conversation, sender=active)
        MessageFactory(conversation=conversation, sender=active, is_deleted=True)
        Message.objects.create(
            conversation=conversation,
            sender=None,
            message_type=MessageType.SYSTEM,
            content='{"event": "group_created", "data": {}}',
        )

        result = DirectoryService.dashboard_stats(admin)

        assert result.data == {
            "total_general_users": 2,
            "total_admins": 1,
            "total_messages": 1,
            "active_users": 1,
        }

    def test_general_user_forbidden(self, db, user):
        assert DirectoryService.dashboard_stats(user).error_code == "ADMIN_REQUIRED"
