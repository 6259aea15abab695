# helpdesk_core/models/core.py

from django.conf import settings
from django.db import models

from helpdesk_core.workflows.rules import ADMIN, END_USER, SUPPORT_MANAGER, SUPPORT_STAFF


# ============================================================
# Base
# ============================================================
class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


# ============================================================
# Deployment (tenant scope for workflows and tickets)
# ============================================================
class Deployment(TimeStampedModel):
    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=255)
    is_active = models.BooleanField(default=True)

    # Bumped by every activation-manager write; readers can compare it.
    workflow_revision = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["code"]

    def __str__(self):
        return f"{self.code} - {self.name}"


# ============================================================
# Roles
# ============================================================
class UserRole(TimeStampedModel):
    ROLE_CHOICES = [
        (END_USER, "End user"),
        (SUPPORT_STAFF, "Support staff"),
        (SUPPORT_MANAGER, "Support manager"),
        (ADMIN, "Administrator"),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="helpdesk_roles",
    )
    deployment = models.ForeignKey(
        Deployment,
        on_delete=models.CASCADE,
        related_name="user_roles",
    )
    role = models.CharField(max_length=32, choices=ROLE_CHOICES)

    class Meta:
        unique_together = ("user", "deployment", "role")

    def __str__(self):
        return f"{self.user} @ {self.deployment.code}: {self.role}"
