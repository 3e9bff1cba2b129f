"""
Factory Boy factories for chat models.

Provides test data for:
- Conversation: Direct and group conversations
- Participant: User participation in conversations
- Message: Text, media and system messages

Usage:
    from chat.tests.factories import (
        DirectConversationFactory,
        GroupConversationFactory,
        MessageFactory,
        ParticipantFactory,
    )

    # Group conversation with its creator participant
    conversation = GroupConversationFactory()

    # Direct conversation between two specific users
    conversation = DirectConversationFactory(user1=alice, user2=bob)

    # A message in a conversation
    message = MessageFactory(conversation=conversation, sender=alice)

The factories write rows directly. Tests of counters, previews and
system messages go through the services instead.
"""

import json

import factory

from accounts.tests.factories import UserFactory
from chat.models import (
    Conversation,
    ConversationType,
    DirectConversationPair,
    Message,
    MessageType,
    Participant,
    ParticipantRole,
)


class ConversationFactory(factory.django.DjangoModelFactory):
    """
    Base factory for Conversation model.

    Creates a bare group conversation without participants.
    """

    class Meta:
        model = Conversation
        skip_postgeneration_save = True

    conversation_type = ConversationType.GROUP
    title = factory.Sequence(lambda n: f"Group Chat {n}")
    created_by = factory.SubFactory(UserFactory)
    participant_count = 0


class GroupConversationFactory(ConversationFactory):
    """
    Group conversation with the creator as CREATOR participant.

    Examples:
        conversation = GroupConversationFactory(created_by=alice)
        conversation = GroupConversationFactory(members=[bob, carol])
        conversation = GroupConversationFactory(admins=[dave])
    """

    @factory.post_generation
    def add_creator(self, create, extracted, **kwargs):
        if not create:
            return
        ParticipantFactory(
            conversation=self,
            user=self.created_by,
            role=ParticipantRole.CREATOR,
        )
        self.participant_count = 1
        self.save(update_fields=["participant_count"])

    @factory.post_generation
    def admins(self, create, extracted, **kwargs):
        if not create or not extracted:
            return
        for user in extracted:
            ParticipantFactory(conversation=self, user=user, role=ParticipantRole.ADMIN)
        self.participant_count += len(extracted)
        self.save(update_fields=["participant_count"])

    @factory.post_generation
    def members(self, create, extracted, **kwargs):
        if not create or not extracted:
            return
        for user in extracted:
            ParticipantFactory(conversation=self, user=user, role=ParticipantRole.MEMBER)
        self.participant_count += len(extracted)
        self.save(update_fields=["participant_count"])


class DirectConversationFactory(factory.django.DjangoModelFactory):
    """
    Direct (1:1) conversation with its pair row and both participants.

    Examples:
        conversation = DirectConversationFactory()
        conversation = DirectConversationFactory(user1=alice, user2=bob)
    """

    class Meta:
        model = Conversation

    conversation_type = ConversationType.DIRECT
    title = ""
    created_by = None
    participant_count = 2

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        user1 = kwargs.pop("user1", None) or UserFactory()
        user2 = kwargs.pop("user2", None) or UserFactory()
        user_lower, user_higher = DirectConversationPair.canonical_order(user1, user2)

        conversation = super()._create(model_class, *args, **kwargs)
        DirectConversationPair.objects.create(
            conversation=conversation,
            user_lower=user_lower,
            user_higher=user_higher,
        )
        ParticipantFactory(conversation=conversation, user=user_lower, role=None)
        ParticipantFactory(conversation=conversation, user=user_higher, role=None)
        return conversation


class ParticipantFactory(factory.django.DjangoModelFactory):
    """
    Factory for Participant model.

    Examples:
        participant = ParticipantFactory(conversation=conv, user=user)
        participant = ParticipantFactory(role=ParticipantRole.ADMIN)
    """

    class Meta:
        model = Participant

    conversation = factory.SubFactory(ConversationFactory)
    user = factory.SubFactory(UserFactory)
    role = ParticipantRole.MEMBER
    left_at = None
    left_voluntarily = None
    removed_by = None
    last_read_at = None
    unread_count = 0


class MessageFactory(factory.django.DjangoModelFactory):
    """
    Factory for Message model.

    Examples:
        message = MessageFactory(conversation=conv, sender=user)
        message = MessageFactory(reply_to=original)
        message = MessageFactory(is_deleted=True)
    """

    class Meta:
        model = Message

    conversation = factory.SubFactory(GroupConversationFactory)
    sender = factory.SubFactory(UserFactory)
    message_type = MessageType.TEXT
    content = factory.Faker("sentence", nb_words=8)
    reply_to = None
    is_deleted = False
    deleted_at = None


class ImageMessageFactory(MessageFactory):
    message_type = MessageType.IMAGE
    content = factory.Sequence(lambda n: f"https://cdn.example.com/uploads/photo-{n}.jpg")
    file_name = factory.Sequence(lambda n: f"photo-{n}.jpg")
    file_size = 204800


class SystemMessageFactory(MessageFactory):
    """
    Factory for system event messages.

    Example:
        SystemMessageFactory(conversation=conv, event="member_left",
                             data={"user_id": str(user.id)})
    """

    sender = None
    message_type = MessageType.SYSTEM

    class Params:
        event = "group_created"
        data = factory.Dict({})

    content = factory.LazyAttribute(
        lambda o: json.dumps({"event": o.event, "data": o.data})
    )
