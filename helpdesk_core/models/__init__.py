# helpdesk_core/models/__init__.py

from .core import Deployment, TimeStampedModel, UserRole
from .guards import WorkflowWriteGuardMixin
from .ticket import Ticket, WorkflowExecution
from .workflow import Workflow

__all__ = [
    "TimeStampedModel",
    "Deployment",
    "UserRole",
    "WorkflowWriteGuardMixin",
    "Workflow",
    "Ticket",
    "WorkflowExecution",
]
