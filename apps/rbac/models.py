"""
Access control models.

Implements:
- User identity (platform-wide, authenticated by the external identity provider)
- OrganisationMembership (one row per user and organisation, soft-disabled)
- ProjectMembership (one row per user and project, removed on revoke)
- AuditLog (append-only trail of access decisions and membership changes)
"""
import logging
import uuid
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from apps.core.models import TimestampedModel
from apps.rbac.roles import get_role_catalog

logger = logging.getLogger(__name__)


class UserManager(models.Manager):
    """Manager for User queries."""

    def active(self):
        return self.filter(is_active=True)

    def by_email(self, email):
        return self.filter(email=self.normalize_email(email)).first()

    def create_user(self, email, **extra_fields):
        """Create a user. Credentials live with the identity provider."""
        if not email:
            raise ValueError('Email address is required')
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('is_superuser', False)
        user = self.model(email=self.normalize_email(email), **extra_fields)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, **extra_fields):
        extra_fields['is_superuser'] = True
        return self.create_user(email, **extra_fields)

    def normalize_email(self, email):
        """Lowercase the domain part of the email address."""
        email = email or ''
        try:
            email_name, domain_part = email.strip().rsplit('@', 1)
        except ValueError:
            return email
        return email_name + '@' + domain_part.lower()

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(TimestampedModel):
    """
    Platform user identity.

    A person can belong to many organisations and projects. The superuser
    flag mirrors the identity provider claim; decisions use the claim carried
    by the request context, not this column.
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="User email address (unique globally)"
    )
    first_name = models.CharField(max_length=100, blank=True)
    last_name = models.CharField(max_length=100, blank=True)
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    is_superuser = models.BooleanField(
        default=False,
        help_text="Platform superuser (access to every organisation)"
    )
    last_login = models.DateTimeField(null=True, blank=True)

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']

    def __str__(self):
        return self.email

    def get_full_name(self):
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email

    def get_username(self):
        return self.email

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_staff(self):
        return self.is_superuser


class OrganisationMembershipQuerySet(models.QuerySet):
    """Bulk deletes are refused; memberships are deactivated instead."""

    def delete(self):
        raise ValidationError("Organisation memberships are deactivated, not deleted")


class OrganisationMembershipManager(models.Manager.from_queryset(OrganisationMembershipQuerySet)):
    """Manager for OrganisationMembership queries."""

    def for_organisation(self, organisation):
        """Active members of an organisation."""
        return self.filter(organisation=organisation, is_active=True)

    def for_user(self, user):
        """Active organisation memberships of a user."""
        return self.filter(user=user, is_active=True)

    def get_membership(self, organisation, user):
        """Membership row regardless of its active flag."""
        return self.filter(organisation=organisation, user=user).first()


class OrganisationMembership(TimestampedModel):
    """
    A user's membership of an organisation.

    Disabled through is_active rather than deleted so audit history survives.
    An inactive row revokes access to every project of the organisation.
    """

    organisation = models.ForeignKey(
        'tenants.Organisation',
        on_delete=models.PROTECT,
        related_name='memberships',
        help_text="Organisation this membership belongs to"
    )
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='organisation_memberships',
        help_text="Member"
    )
    org_role = models.CharField(
        max_length=50,
        help_text="Organisation role (see ACCESS_ROLE_CATALOG)"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive memberships grant no access"
    )
    invited_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='organisation_invitations_sent'
    )
    deactivated_at = models.DateTimeField(null=True, blank=True)

    objects = OrganisationMembershipManager()

    class Meta:
        db_table = 'organisation_memberships'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'organisation'],
                name='unique_organisation_membership'
            ),
        ]
        indexes = [
            models.Index(fields=['organisation', 'is_active']),
        ]

    def __str__(self):
        return f"{self.user_id} @ {self.organisation_id} ({self.org_role})"

    def save(self, *args, **kwargs):
        get_role_catalog().org_role(self.org_role)
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Organisation memberships are deactivated, not deleted")

    @property
    def is_elevated(self):
        return self.is_active and get_role_catalog().is_elevated_org_role(self.org_role)


class ProjectMembershipManager(models.Manager):
    """Manager for ProjectMembership queries."""

    def for_project(self, project):
        """Live (non-dormant) grants on a project."""
        return self.filter(project=project, is_dormant=False)

    def for_user(self, user):
        return self.filter(user=user, is_dormant=False)

    def dormant_in_organisation(self, user, organisation_id):
        return self.filter(user=user, project__organisation_id=organisation_id, is_dormant=True)


class ProjectMembership(TimestampedModel):
    """
    A user's role on a project.

    Absence of a row means no project-level grant. Rows are marked dormant
    when the user's organisation membership is disabled and stay dormant
    until explicitly restored.
    """

    project = models.ForeignKey(
        'tenants.Project',
        on_delete=models.CASCADE,
        related_name='memberships',
        help_text="Project this grant applies to"
    )
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='project_memberships'
    )
    role = models.CharField(
        max_length=50,
        help_text="Project role (see ACCESS_ROLE_CATALOG)"
    )
    is_dormant = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Suspended by an organisation deactivation"
    )
    added_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='project_grants_made'
    )

    objects = ProjectMembershipManager()

    class Meta:
        db_table = 'project_memberships'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'project'],
                name='unique_project_membership'
            ),
        ]
        indexes = [
            models.Index(fields=['project', 'is_dormant']),
        ]

    def __str__(self):
        return f"{self.user_id} @ {self.project_id} ({self.role})"

    def save(self, *args, **kwargs):
        get_role_catalog().project_role(self.role)
        super().save(*args, **kwargs)


class AuditLogManager(models.Manager):
    """Manager for AuditLog queries."""

    def for_user(self, user_id):
        return self.filter(user_id=user_id)

    def decisions(self):
        return self.filter(category=AuditLog.CATEGORY_DECISION)

    def by_target(self, resource_type, resource_id=None):
        qs = self.filter(resource_type=resource_type)
        if resource_id:
            qs = qs.filter(resource_id=str(resource_id))
        return qs

    def by_request(self, request_id):
        return self.filter(request_id=request_id)


class AuditLog(models.Model):
    """
    Append-only audit trail.

    Records every access decision that reaches the audit sink and every
    membership mutation. Rows are never updated or deleted by the application.
    """

    CATEGORY_DECISION = 'decision'
    CATEGORY_MEMBERSHIP = 'membership'
    CATEGORY_CHOICES = [
        (CATEGORY_DECISION, 'Access decision'),
        (CATEGORY_MEMBERSHIP, 'Membership change'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    timestamp = models.DateTimeField(default=timezone.now, db_index=True)
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, db_index=True)
    user_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="User the record is about (null for system actions)"
    )
    action = models.CharField(max_length=100, db_index=True)
    resource_type = models.CharField(max_length=100, blank=True, db_index=True)
    resource_id = models.CharField(max_length=64, blank=True)
    allowed = models.BooleanField(null=True, blank=True)
    reason = models.TextField(blank=True)
    matched_rule = models.CharField(max_length=200, blank=True)
    request_id = models.CharField(max_length=64, null=True, blank=True, db_index=True)
    metadata = models.JSONField(default=dict, blank=True)

    objects = AuditLogManager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['user_id', 'timestamp']),
            models.Index(fields=['resource_type', 'resource_id']),
        ]

    def __str__(self):
        return f"{self.timestamp:%Y-%m-%d %H:%M:%S} {self.user_id} {self.action} {self.resource_type}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Audit log records are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Audit log records are append-only")

    @classmethod
    def log_action(cls, action, actor=None, user_id=None, resource_type='',
                   resource_id=None, metadata=None, request=None):
        """
        Convenience method to record a membership change.

        Args:
            action: Action performed (e.g., 'project_member_added')
            actor: User performing the action
            user_id: Id of the user whose membership changed
            resource_type: Type of the changed record
            resource_id: Id of the changed record
            metadata: Additional context
            request: Django request object (for request ID)

        Returns:
            AuditLog instance or None when the write failed
        """
        metadata = dict(metadata or {})
        if actor is not None:
            metadata.setdefault('actor_id', str(actor.pk))

        try:
            return cls.objects.create(
                category=cls.CATEGORY_MEMBERSHIP,
                user_id=user_id,
                action=action,
                resource_type=resource_type,
                resource_id=str(resource_id) if resource_id else '',
                request_id=getattr(request, 'request_id', None) if request else None,
                metadata=metadata,
            )
        except Exception as e:
            # The membership change stands without its audit row
            logger.error(
                f"Failed to create audit log: {str(e)}",
                extra={'action': action},
                exc_info=True
            )
            return None
