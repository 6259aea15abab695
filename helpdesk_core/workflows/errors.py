# helpdesk_core/workflows/errors.py
"""
Workflow engine error taxonomy.

Transition denials are expected outcomes: the evaluator returns them as
``Denied`` decisions and services raise the matching ``TransitionDenied``
subclass. ``InvariantViolation`` is the only error that signals a bug.
"""

from __future__ import annotations

from typing import Optional


class WorkflowError(Exception):
    """Base class for every workflow engine error."""


# ===============================================================
# Transition denials (recoverable)
# ===============================================================

class TransitionDenied(WorkflowError):
    reason: str = "DENIED"

    def __init__(self, message: str, *, transition_id: Optional[str] = None):
        self.message = message
        self.transition_id = transition_id
        super().__init__(message)


class NoSuchTransition(TransitionDenied):
    reason = "NO_SUCH_TRANSITION"


class RoleNotAllowed(TransitionDenied):
    reason = "ROLE_NOT_ALLOWED"


class ConditionUnsatisfied(TransitionDenied):
    reason = "CONDITION_UNSATISFIED"

    def __init__(
        self,
        message: str,
        *,
        transition_id: Optional[str] = None,
        conditions: Optional[list] = None,
    ):
        self.conditions = list(conditions or [])
        super().__init__(message, transition_id=transition_id)


DENIAL_CLASSES = {
    NoSuchTransition.reason: NoSuchTransition,
    RoleNotAllowed.reason: RoleNotAllowed,
    ConditionUnsatisfied.reason: ConditionUnsatisfied,
}


# ===============================================================
# Administrative errors
# ===============================================================

class WorkflowForbidden(WorkflowError):
    """Editing (or deactivating) the system-default workflow."""


class WorkflowConflict(WorkflowError):
    """Deleting a workflow that tickets still reference, or the system default."""


class InvalidWorkflowDefinition(WorkflowError):
    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class NoActiveWorkflow(WorkflowError):
    """No workflow is ACTIVE and none could be restored."""


class InvariantViolation(WorkflowError):
    """
    The deployment does not have exactly one ACTIVE workflow after an
    activation-manager operation. This is a logic error, never user input.
    """


__all__ = [
    "WorkflowError",
    "TransitionDenied",
    "NoSuchTransition",
    "RoleNotAllowed",
    "ConditionUnsatisfied",
    "DENIAL_CLASSES",
    "WorkflowForbidden",
    "WorkflowConflict",
    "InvalidWorkflowDefinition",
    "NoActiveWorkflow",
    "InvariantViolation",
]
