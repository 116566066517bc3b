"""
Tenant models: organisations and their projects.

An organisation owns projects. A project belongs to exactly one
organisation for its whole lifetime.
"""
from django.core.exceptions import ValidationError
from django.db import models

from apps.core.models import BaseModel, BaseModelManager, TimestampedModel


class OrganisationManager(models.Manager):
    """Manager for organisation queries."""

    def active(self):
        return self.filter(is_active=True)

    def by_slug(self, slug):
        return self.filter(slug=slug).first()


class Organisation(TimestampedModel):
    """
    Top-level tenant.

    Created by a platform superuser. Organisations are deactivated, never
    deleted, so memberships and audit records keep a valid reference.
    """

    TIER_FREE = 'free'
    TIER_STARTER = 'starter'
    TIER_PROFESSIONAL = 'professional'
    TIER_ENTERPRISE = 'enterprise'
    TIER_CHOICES = [
        (TIER_FREE, 'Free'),
        (TIER_STARTER, 'Starter'),
        (TIER_PROFESSIONAL, 'Professional'),
        (TIER_ENTERPRISE, 'Enterprise'),
    ]

    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=100, unique=True)
    is_active = models.BooleanField(default=True, db_index=True)
    subscription_tier = models.CharField(
        max_length=20,
        choices=TIER_CHOICES,
        default=TIER_FREE,
        help_text="Subscription tier, drives member and project limits"
    )

    objects = OrganisationManager()

    class Meta:
        db_table = 'organisations'
        ordering = ['name']

    def __str__(self):
        return self.name

    def delete(self, *args, **kwargs):
        raise ValidationError("Organisations are deactivated, not deleted")

    def deactivate(self):
        self.is_active = False
        self.save(update_fields=['is_active', 'updated_at'])


class ProjectManager(BaseModelManager):
    """Manager for project queries (soft-deleted projects hidden)."""

    def for_organisation(self, organisation):
        return self.filter(organisation=organisation)


class Project(BaseModel):
    """
    Second-level tenant. Every business entity row hangs off a project.
    """

    STATUS_CHOICES = [
        ('active', 'Active'),
        ('on_hold', 'On hold'),
        ('closed', 'Closed'),
    ]

    organisation = models.ForeignKey(
        Organisation,
        on_delete=models.PROTECT,
        related_name='projects',
        help_text="Owning organisation (immutable)"
    )
    name = models.CharField(max_length=200)
    reference = models.CharField(max_length=50, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')

    objects = ProjectManager()

    class Meta:
        db_table = 'projects'
        ordering = ['name']

    def __str__(self):
        return self.reference or self.name

    def save(self, *args, **kwargs):
        if not self._state.adding:
            current = (
                Project.objects_with_deleted
                .filter(pk=self.pk)
                .values_list('organisation_id', flat=True)
                .first()
            )
            if current is not None and current != self.organisation_id:
                raise ValidationError("A project cannot move to another organisation")
        super().save(*args, **kwargs)
