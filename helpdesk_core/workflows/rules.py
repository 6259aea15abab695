"""
Canonical vocabulary for helpdesk workflows.

Defines:
- Role universe and role normalization
- Status normalization (shared by evaluator and categorizer)
- Condition and action kinds carried on transitions
"""

from __future__ import annotations

import re
from typing import Any, Dict, FrozenSet, Iterable, Set, Tuple


# ===============================================================
# ROLES
# ===============================================================
END_USER = "END_USER"
SUPPORT_STAFF = "SUPPORT_STAFF"
SUPPORT_MANAGER = "SUPPORT_MANAGER"
ADMIN = "ADMIN"

ROLES: FrozenSet[str] = frozenset({END_USER, SUPPORT_STAFF, SUPPORT_MANAGER, ADMIN})

# Examples handled:
# - "Support Staff" -> SUPPORT_STAFF
# - "support-manager" -> SUPPORT_MANAGER
# - "agent" -> SUPPORT_STAFF
ROLE_ALIASES: Dict[str, str] = {
    "END_USER": END_USER,
    "ENDUSER": END_USER,
    "USER": END_USER,
    "REQUESTER": END_USER,
    "SUPPORT_STAFF": SUPPORT_STAFF,
    "STAFF": SUPPORT_STAFF,
    "AGENT": SUPPORT_STAFF,
    "SUPPORT_MANAGER": SUPPORT_MANAGER,
    "MANAGER": SUPPORT_MANAGER,
    "ADMIN": ADMIN,
    "ADMINISTRATOR": ADMIN,
    "SUPERUSER": ADMIN,
}


def normalize_role(role: str) -> str:
    """
    Canonicalize role strings so that small formatting differences
    do not break permission logic.

    Unknown roles are kept (normalized) rather than dropped; they simply
    never intersect a transition's allowed roles.
    """
    r = (role or "").strip().upper()
    if not r:
        return r

    r = re.sub(r"[\s\-]+", "_", r)
    r = re.sub(r"_+", "_", r)

    return ROLE_ALIASES.get(r, r)


def normalize_roles(roles: Iterable[str]) -> Set[str]:
    return {r for r in (normalize_role(x) for x in (roles or ())) if r}


# ===============================================================
# STATUSES
# ===============================================================
_WHITESPACE = re.compile(r"\s+")


def normalize_status(value: str) -> str:
    """
    "In Progress", " in progress ", "IN_PROGRESS" -> "IN_PROGRESS".
    """
    return _WHITESPACE.sub("_", str(value or "").strip()).upper()


# Synthetic pseudo-state every create-transition starts from.
CREATE_STATE = "create"

# Offered when a workflow has no states of its own yet.
SYSTEM_STATUSES = (
    "NEW",
    "OPEN",
    "IN_PROGRESS",
    "ON_HOLD",
    "RESOLVED",
    "CLOSED",
    "REOPENED",
)


# ===============================================================
# CONDITIONS / ACTIONS
# ===============================================================
REQUIRES_COMMENT = "REQUIRES_COMMENT"
REQUIRES_RESOLUTION = "REQUIRES_RESOLUTION"
REQUIRES_ASSIGNMENT = "REQUIRES_ASSIGNMENT"
REQUIRES_APPROVAL = "REQUIRES_APPROVAL"
PRIORITY_HIGH = "PRIORITY_HIGH"
CUSTOM_FIELD_VALUE = "CUSTOM_FIELD_VALUE"

CONDITION_KINDS: FrozenSet[str] = frozenset({
    REQUIRES_COMMENT,
    REQUIRES_RESOLUTION,
    REQUIRES_ASSIGNMENT,
    REQUIRES_APPROVAL,
    PRIORITY_HIGH,
    CUSTOM_FIELD_VALUE,
})

SEND_NOTIFICATION = "SEND_NOTIFICATION"
ASSIGN_TO_USER = "ASSIGN_TO_USER"
CALCULATE_RESOLUTION_TIME = "CALCULATE_RESOLUTION_TIME"
UPDATE_PRIORITY = "UPDATE_PRIORITY"
CREATE_SUBTASK = "CREATE_SUBTASK"
SEND_EMAIL = "SEND_EMAIL"
LOG_ACTIVITY = "LOG_ACTIVITY"

ACTION_KINDS: FrozenSet[str] = frozenset({
    SEND_NOTIFICATION,
    ASSIGN_TO_USER,
    CALCULATE_RESOLUTION_TIME,
    UPDATE_PRIORITY,
    CREATE_SUBTASK,
    SEND_EMAIL,
    LOG_ACTIVITY,
})


def normalize_kind(value) -> str:
    """
    Conditions and actions may be stored as bare strings or as objects
    carrying a ``type`` key (older editor payloads).
    """
    if isinstance(value, dict):
        value = value.get("type") or value.get("kind") or ""
    return str(value or "").strip().upper()


def normalize_action(value) -> Tuple[str, Dict[str, Any]]:
    """
    ``(kind, config)`` for one stored action. Only object-shaped actions
    carry a config; bare strings get an empty one.
    """
    config: Dict[str, Any] = {}
    if isinstance(value, dict) and isinstance(value.get("config"), dict):
        config = dict(value["config"])
    return normalize_kind(value), config


__all__ = [
    "END_USER",
    "SUPPORT_STAFF",
    "SUPPORT_MANAGER",
    "ADMIN",
    "ROLES",
    "ROLE_ALIASES",
    "normalize_role",
    "normalize_roles",
    "normalize_status",
    "CREATE_STATE",
    "SYSTEM_STATUSES",
    "CONDITION_KINDS",
    "ACTION_KINDS",
    "normalize_kind",
    "normalize_action",
]
