# helpdesk_core/models/workflow.py

import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q

from helpdesk_core.workflows.graph import parse_definition

from .core import Deployment, TimeStampedModel


class Workflow(TimeStampedModel):
    """
    A tenant-owned ticket workflow: a node/edge definition plus the
    Working/Done categorization used by dashboards.

    At most one row per deployment is ACTIVE and at most one is the system
    default; both are enforced by partial unique constraints and by the
    activation manager in ``helpdesk_core.services.workflow_admin``.
    """

    class Status(models.TextChoices):
        DRAFT = "DRAFT", "Draft"
        ACTIVE = "ACTIVE", "Active"
        INACTIVE = "INACTIVE", "Inactive"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    deployment = models.ForeignKey(
        Deployment,
        on_delete=models.CASCADE,
        related_name="workflows",
    )

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    version = models.PositiveIntegerField(default=1)

    definition = models.JSONField(default=dict, blank=True)
    working_statuses = models.JSONField(default=list, blank=True)
    done_statuses = models.JSONField(default=list, blank=True)

    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.DRAFT,
        db_index=True,
    )
    is_default = models.BooleanField(default=False)
    is_system_default = models.BooleanField(default=False)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="created_workflows",
    )

    class Meta:
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["deployment"],
                condition=Q(status="ACTIVE"),
                name="uniq_active_workflow_per_deployment",
            ),
            models.UniqueConstraint(
                fields=["deployment"],
                condition=Q(is_system_default=True),
                name="uniq_system_default_workflow_per_deployment",
            ),
        ]
        indexes = [
            models.Index(fields=["deployment", "status"], name="helpdesk_wf_dep_status_idx"),
        ]

    def __str__(self):
        return f"{self.name} ({self.status})"

    @property
    def is_active(self) -> bool:
        return self.status == self.Status.ACTIVE

    @property
    def document(self):
        return parse_definition(self.definition)

    @property
    def graph(self):
        return self.document.graph
