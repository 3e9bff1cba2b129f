"""
Custom QuerySet and Manager classes for soft-deletable models.

Manager vs QuerySet:
    - QuerySet: Defines chainable methods (filter, exclude, etc.)
    - Manager: Attaches QuerySet to model, defines table-level operations

Usage:
    from core.managers import SoftDeleteManager

    class Conversation(SoftDeleteMixin, BaseModel):
        objects = SoftDeleteManager()  # Default: excludes deleted
        all_objects = models.Manager()  # Includes deleted

    # Queries automatically exclude deleted
    Conversation.objects.filter(conversation_type="group")

    # Include deleted when needed
    Conversation.all_objects.all()

Related:
    - core.model_mixins.SoftDeleteMixin: Model mixin for soft delete fields
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone


class SoftDeleteQuerySet(models.QuerySet):
    """
    QuerySet whose delete() marks rows instead of removing them.

    Bulk deletes through the default manager therefore keep the rows.
    """

    def delete(self) -> tuple[int, dict[str, int]]:
        """
        Soft delete all objects in queryset.

        Returns:
            Tuple of (count, {model_label: count}) matching Django's delete()
        """
        count = self.filter(is_deleted=False).update(
            is_deleted=True, deleted_at=timezone.now()
        )
        return count, {self.model._meta.label: count}


class SoftDeleteManager(models.Manager):
    """
    Manager that filters out soft-deleted records by default.

    Use as the default manager on models with SoftDeleteMixin and always
    pair with a plain Manager (all_objects) for access to deleted records.
    """

    def get_queryset(self) -> SoftDeleteQuerySet:
        """Return queryset excluding soft-deleted records."""
        return SoftDeleteQuerySet(self.model, using=self._db).filter(is_deleted=False)
