# helpdesk_core/models/guards.py

from django.core.exceptions import PermissionDenied
from django.db import models


class WorkflowWriteGuardMixin(models.Model):
    """
    Prevent direct modification of workflow-controlled fields outside the workflow engine.

    - WORKFLOW_FIELD changes only through the ticket workflow service.
    - FROZEN_FIELDS are written once, at creation, and never again.

    Escape hatch:
      - pass _workflow_bypass=True to save(), OR
      - set instance._workflow_bypass = True
    Use sparingly (tests, data fixes, admin repair scripts).
    """

    WORKFLOW_FIELD = "status"
    FROZEN_FIELDS: tuple = ()
    WORKFLOW_BYPASS_KWARG = "_workflow_bypass"

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        bypass = bool(
            kwargs.pop(self.WORKFLOW_BYPASS_KWARG, False)
            or getattr(self, "_workflow_bypass", False)
        )

        guarded = [f for f in (self.WORKFLOW_FIELD, *self.FROZEN_FIELDS) if f]

        if not bypass and self.pk is not None and guarded and not self._state.adding:
            old = (
                self.__class__.objects.filter(pk=self.pk)
                .values(*guarded)
                .first()
            )
            if old is not None:
                for name in guarded:
                    if old[name] != getattr(self, name, None):
                        raise PermissionDenied(
                            f"Direct modification of '{name}' is forbidden. "
                            "Use workflow transition APIs."
                        )

        return super().save(*args, **kwargs)
