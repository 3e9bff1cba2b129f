"""
Celery tasks for chat app.

This module defines periodic maintenance tasks:
- Tombstone cleanup (hard-delete long-deleted messages)
- Unread counter reconciliation

Both are scheduled through CELERY_BEAT_SCHEDULE in config/settings.py.

Related files:
    - services.py: MessageService (soft delete, mark_read)
    - models.py: Message, MessageReceipt, Participant

Usage:
    from chat.tasks import purge_deleted_messages

    purge_deleted_messages.delay()
"""

import logging
from datetime import timedelta

from celery import shared_task
from django.db.models import Count, Exists, OuterRef, Subquery
from django.db.models.functions import Coalesce
from django.utils import timezone

from chat.constants import MESSAGE_CONFIG

logger = logging.getLogger(__name__)


@shared_task
def purge_deleted_messages(days: int = MESSAGE_CONFIG.TOMBSTONE_RETENTION_DAYS) -> int:
    """
    Permanently delete messages soft-deleted more than `days` ago.

    Replies and forwards that still point at a purged message keep their
    dangling reference and render it as unavailable.

    Args:
        days: Retention window for tombstones

    Returns:
        Number of messages purged
    """
    from chat.models import Message

    cutoff = timezone.now() - timedelta(days=days)
    stale = Message.objects.filter(is_deleted=True, deleted_at__lt=cutoff)
    count = stale.count()
    if count:
        stale.delete()

    logger.info(f"Purged {count} deleted messages older than {days} days")
    return count


@shared_task
def recalculate_unread_counts() -> int:
    """
    Recompute Participant.unread_count from read receipts.

    A message counts as unread for a participant when it is a non-system
    message from someone else with no receipt for that user, the same set
    MessageService.mark_read clears.

    Returns:
        Number of participants whose counter was corrected
    """
    from chat.models import Message, MessageReceipt, Participant

    has_receipt = MessageReceipt.objects.filter(
        message_id=OuterRef("pk"),
        user_id=OuterRef(OuterRef("user_id")),
    )
    unread = (
        Message.objects.filter(
            conversation_id=OuterRef("conversation_id"),
            sender__isnull=False,
        )
        .exclude(sender_id=OuterRef("user_id"))
        .filter(~Exists(has_receipt))
        .order_by()
        .values("conversation_id")
        .annotate(total=Count("id"))
        .values("total")
    )

    participants = Participant.objects.filter(left_at__isnull=True).annotate(
        actual=Coalesce(Subquery(unread), 0)
    )

    corrected = 0
    for participant in participants.only("id", "unread_count"):
        if participant.unread_count == participant.actual:
            continue
        Participant.objects.filter(pk=participant.pk).update(unread_count=participant.actual)
        corrected += 1

    logger.info(f"Recalculated unread counts, corrected {corrected} participants")
    return corrected
