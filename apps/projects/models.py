"""
Business entity rows governed by the access engine.

Only the columns the engine reads are modelled in detail: the owning
project (or parent row for child tables), the creator and the workflow
status.
"""
from django.conf import settings
from django.db import models

from apps.core.models import BaseModel


class ProjectScopedModel(BaseModel):
    """Abstract row with a direct project reference."""

    project = models.ForeignKey(
        'tenants.Project',
        on_delete=models.CASCADE,
        related_name='+',
    )

    class Meta:
        abstract = True


class OwnedWorkflowModel(ProjectScopedModel):
    """Abstract row with a creator and a Draft → Submitted → Approved workflow."""

    STATUS_DRAFT = 'Draft'
    STATUS_SUBMITTED = 'Submitted'
    STATUS_APPROVED = 'Approved'
    STATUS_REJECTED = 'Rejected'
    STATUS_CHOICES = [
        (STATUS_DRAFT, 'Draft'),
        (STATUS_SUBMITTED, 'Submitted'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
    ]

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='+',
    )
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_DRAFT)

    class Meta:
        abstract = True


class Milestone(ProjectScopedModel):
    milestone_ref = models.CharField(max_length=20)
    name = models.CharField(max_length=200)
    status = models.CharField(max_length=20, default='Not Started')
    budget = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    class Meta:
        db_table = 'milestones'
        constraints = [
            models.UniqueConstraint(fields=['project', 'milestone_ref'], name='unique_milestone_ref'),
        ]


class Deliverable(ProjectScopedModel):
    milestone = models.ForeignKey(Milestone, on_delete=models.SET_NULL, null=True, blank=True)
    name = models.CharField(max_length=200)
    status = models.CharField(max_length=30, default='Not Started')
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )

    class Meta:
        db_table = 'deliverables'


class Kpi(ProjectScopedModel):
    kpi_ref = models.CharField(max_length=20)
    name = models.CharField(max_length=200)
    target = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)

    class Meta:
        db_table = 'kpis'


class DeliverableKpiLink(BaseModel):
    """Join row; access follows the parent deliverable."""

    deliverable = models.ForeignKey(Deliverable, on_delete=models.CASCADE, related_name='kpi_links')
    kpi = models.ForeignKey(Kpi, on_delete=models.CASCADE, related_name='+')

    class Meta:
        db_table = 'deliverable_kpi_links'


class Resource(ProjectScopedModel):
    resource_ref = models.CharField(max_length=20)
    name = models.CharField(max_length=200)
    daily_rate = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    cost_price = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    class Meta:
        db_table = 'resources'


class Timesheet(OwnedWorkflowModel):
    milestone = models.ForeignKey(Milestone, on_delete=models.SET_NULL, null=True, blank=True)
    date = models.DateField()
    hours = models.DecimalField(max_digits=4, decimal_places=1)

    class Meta:
        db_table = 'timesheets'


class Expense(OwnedWorkflowModel):
    expense_date = models.DateField()
    category = models.CharField(max_length=50, blank=True)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    chargeable_to_customer = models.BooleanField(
        default=True,
        help_text="Chargeable expenses are validated by the customer side"
    )

    class Meta:
        db_table = 'expenses'


class Variation(OwnedWorkflowModel):
    variation_ref = models.CharField(max_length=20)
    title = models.CharField(max_length=200)

    class Meta:
        db_table = 'variations'


class VariationMilestone(BaseModel):
    """Child of a variation; has no project column of its own."""

    variation = models.ForeignKey(Variation, on_delete=models.CASCADE, related_name='milestones')
    milestone = models.ForeignKey(Milestone, on_delete=models.SET_NULL, null=True, blank=True)
    is_new_milestone = models.BooleanField(default=False)

    class Meta:
        db_table = 'variation_milestones'


class VariationDeliverable(BaseModel):
    """Child of a variation; has no project column of its own."""

    variation = models.ForeignKey(Variation, on_delete=models.CASCADE, related_name='deliverables')
    deliverable = models.ForeignKey(Deliverable, on_delete=models.SET_NULL, null=True, blank=True)
    change_type = models.CharField(max_length=10, default='modify')

    class Meta:
        db_table = 'variation_deliverables'


class Partner(ProjectScopedModel):
    name = models.CharField(max_length=200)

    class Meta:
        db_table = 'partners'


class PartnerInvoice(ProjectScopedModel):
    partner = models.ForeignKey(Partner, on_delete=models.PROTECT, related_name='invoices')
    invoice_ref = models.CharField(max_length=30)
    total = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    margin = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    class Meta:
        db_table = 'partner_invoices'


class PartnerInvoiceLine(BaseModel):
    """Child of a partner invoice; has no project column of its own."""

    invoice = models.ForeignKey(PartnerInvoice, on_delete=models.CASCADE, related_name='lines')
    description = models.CharField(max_length=200)
    amount = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        db_table = 'partner_invoice_lines'


class RaidItem(ProjectScopedModel):
    CATEGORY_CHOICES = [
        ('Risk', 'Risk'),
        ('Assumption', 'Assumption'),
        ('Issue', 'Issue'),
        ('Dependency', 'Dependency'),
    ]

    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES)
    title = models.CharField(max_length=200)
    status = models.CharField(max_length=20, default='Open')
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )

    class Meta:
        db_table = 'raid_items'
