"""
Core models shared by every app.

TimestampedModel gives every row an opaque UUID and creation/update times.
BaseModel adds soft delete for projects and business rows, which are hidden
rather than removed so parent chains and audit references stay valid.

Users and memberships are TimestampedModel only: a membership row that is
gone is what revokes a grant, so it is never kept around in a hidden state.
"""
import uuid
from django.db import models
from django.utils import timezone


class SoftDeleteQuerySet(models.QuerySet):
    """QuerySet whose delete() hides rows instead of removing them."""

    def delete(self):
        return self.update(deleted_at=timezone.now())


class BaseModelManager(models.Manager.from_queryset(SoftDeleteQuerySet)):
    """Manager that hides soft-deleted rows."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class TimestampedModel(models.Model):
    """Abstract model with a UUID primary key and timestamps."""

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier"
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
        ordering = ['-created_at']


class BaseModel(TimestampedModel):
    """
    Abstract model with soft delete.

    `objects` never returns soft-deleted rows; `objects_with_deleted` is for
    trusted lookups that must still see them (cache invalidation, the
    project organisation check).
    """

    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Timestamp when the record was soft deleted"
    )

    objects = BaseModelManager()
    objects_with_deleted = models.Manager.from_queryset(SoftDeleteQuerySet)()

    class Meta(TimestampedModel.Meta):
        abstract = True

    def delete(self, using=None, keep_parents=False):
        """Soft delete the object."""
        self.deleted_at = timezone.now()
        self.save(using=using, update_fields=['deleted_at', 'updated_at'])
