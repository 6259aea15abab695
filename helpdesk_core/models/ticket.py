# helpdesk_core/models/ticket.py

from django.conf import settings
from django.db import models

from .core import Deployment, TimeStampedModel
from .guards import WorkflowWriteGuardMixin
from .workflow import Workflow


class Ticket(WorkflowWriteGuardMixin, TimeStampedModel):
    # Status moves only through the ticket workflow service; the bound
    # snapshot is written once at creation.
    WORKFLOW_FIELD = "status"
    FROZEN_FIELDS = ("workflow_snapshot", "workflow_version")

    class Priority(models.TextChoices):
        LOW = "LOW", "Low"
        MEDIUM = "MEDIUM", "Medium"
        HIGH = "HIGH", "High"
        CRITICAL = "CRITICAL", "Critical"

    deployment = models.ForeignKey(
        Deployment,
        on_delete=models.CASCADE,
        related_name="tickets",
    )

    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    status = models.CharField(max_length=64, db_index=True)
    priority = models.CharField(
        max_length=16,
        choices=Priority.choices,
        default=Priority.MEDIUM,
    )
    resolution = models.TextField(blank=True, default="")

    requester = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="requested_tickets",
    )
    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="assigned_tickets",
    )

    due_date = models.DateTimeField(null=True, blank=True)
    closed_at = models.DateTimeField(null=True, blank=True)
    resolution_seconds = models.PositiveIntegerField(null=True, blank=True)

    # Null for tickets created before workflows existed; those resolve
    # against whichever workflow is active when evaluated.
    workflow = models.ForeignKey(
        Workflow,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="tickets",
    )
    workflow_snapshot = models.JSONField(null=True, blank=True)
    workflow_version = models.PositiveIntegerField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["deployment", "status"], name="helpdesk_tk_dep_status_idx"),
            models.Index(fields=["deployment", "assigned_to"], name="helpdesk_tk_dep_assignee_idx"),
        ]

    def __str__(self):
        return f"#{self.pk} {self.title}"


class WorkflowExecution(models.Model):
    """
    Append-only record of a transition executed on a ticket.
    """

    ticket = models.ForeignKey(
        Ticket,
        on_delete=models.CASCADE,
        related_name="workflow_executions",
    )
    workflow = models.ForeignKey(
        Workflow,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="executions",
    )
    workflow_version = models.PositiveIntegerField(null=True, blank=True)

    transition_id = models.CharField(max_length=128, blank=True, default="")
    from_status = models.CharField(max_length=64)
    to_status = models.CharField(max_length=64)
    actions = models.JSONField(default=list, blank=True)

    executed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="workflow_executions",
    )
    comment = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["ticket", "created_at"], name="helpdesk_ex_ticket_created_idx"),
        ]

    def __str__(self):
        return f"{self.ticket_id}: {self.from_status} -> {self.to_status}"
