"""
Model mixins providing reusable functionality for Django models.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key
    SoftDeleteMixin: Soft delete support (is_deleted, deleted_at)

Usage:
    from core.models import BaseModel
    from core.model_mixins import SoftDeleteMixin

    class Message(SoftDeleteMixin, BaseModel):
        content = models.TextField()

    message.soft_delete()
    assert message.is_deleted

Note:
    - Always list mixins before BaseModel in inheritance
    - Mixins are abstract and don't create database tables
    - Pair SoftDeleteMixin with core.managers.SoftDeleteManager when deleted
      rows should be hidden by default
"""

from __future__ import annotations

import uuid

from django.db import models
from django.utils import timezone


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Benefits:
        - Non-guessable IDs
        - URLs don't reveal record count or order

    Fields:
        id: UUIDField as primary key (auto-generated)
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class SoftDeleteMixin(models.Model):
    """
    Soft delete support for models.

    Instead of permanently deleting records, marks them as deleted.
    Deleted rows stay readable so dependent records can still resolve them.

    Fields:
        is_deleted: Boolean flag indicating soft delete status
        deleted_at: Timestamp when the record was soft deleted
    """

    is_deleted = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether this record has been soft deleted",
    )
    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Timestamp when this record was soft deleted",
    )

    class Meta:
        abstract = True

    def soft_delete(self) -> None:
        """
        Mark this record as deleted.

        Sets is_deleted=True and deleted_at to current time.
        Does not actually remove the record from database.
        """
        self.is_deleted = True
        self.deleted_at = timezone.now()
        self.save(update_fields=["is_deleted", "deleted_at", "updated_at"])
