# helpdesk_core/workflows/__init__.py
"""
Ticket workflow engine (pure layer).

Nothing in this package touches the database, HTTP or task queues; the
services in ``helpdesk_core.services`` load rows and call into it.
"""

from __future__ import annotations

from .categorization import (
    Bucket,
    StatusCategorizer,
    StatusKey,
    categorize,
    overlapping_keys,
    parse_status_keys,
)
from .defaults import (
    DEFAULT_DONE_STATUSES,
    DEFAULT_WORKING_STATUSES,
    SYSTEM_DEFAULT_DESCRIPTION,
    SYSTEM_DEFAULT_NAME,
    system_default_definition,
)
from .errors import (
    ConditionUnsatisfied,
    InvalidWorkflowDefinition,
    InvariantViolation,
    NoActiveWorkflow,
    NoSuchTransition,
    RoleNotAllowed,
    TransitionDenied,
    WorkflowConflict,
    WorkflowError,
    WorkflowForbidden,
)
from .evaluator import (
    AvailableTransition,
    Decision,
    DenialReason,
    allowed_target_statuses,
    available_transitions,
    can_create,
    evaluate,
    evaluate_create,
)
from .graph import (
    Layout,
    State,
    Transition,
    WorkflowDocument,
    WorkflowGraph,
    parse_definition,
    serialize_definition,
    validate_definition,
)
from .rules import (
    ACTION_KINDS,
    CONDITION_KINDS,
    CREATE_STATE,
    ROLES,
    normalize_role,
    normalize_roles,
    normalize_status,
)
from .snapshot import TicketWorkflowSnapshot

# Boundary names used by the API layer.
evaluate_transition = evaluate
categorize_status = categorize


__all__ = [
    "ACTION_KINDS",
    "CONDITION_KINDS",
    "CREATE_STATE",
    "ROLES",
    "DEFAULT_WORKING_STATUSES",
    "DEFAULT_DONE_STATUSES",
    "SYSTEM_DEFAULT_NAME",
    "SYSTEM_DEFAULT_DESCRIPTION",
    "system_default_definition",
    "normalize_role",
    "normalize_roles",
    "normalize_status",
    "State",
    "Transition",
    "WorkflowGraph",
    "Layout",
    "WorkflowDocument",
    "parse_definition",
    "serialize_definition",
    "validate_definition",
    "TicketWorkflowSnapshot",
    "Bucket",
    "StatusKey",
    "StatusCategorizer",
    "parse_status_keys",
    "categorize",
    "categorize_status",
    "overlapping_keys",
    "DenialReason",
    "Decision",
    "AvailableTransition",
    "evaluate",
    "evaluate_transition",
    "evaluate_create",
    "available_transitions",
    "allowed_target_statuses",
    "can_create",
    "WorkflowError",
    "TransitionDenied",
    "NoSuchTransition",
    "RoleNotAllowed",
    "ConditionUnsatisfied",
    "WorkflowForbidden",
    "WorkflowConflict",
    "InvalidWorkflowDefinition",
    "NoActiveWorkflow",
    "InvariantViolation",
]
