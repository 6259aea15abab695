# helpdesk_core/workflows/defaults.py
"""
Built-in workflow used as the system default of every deployment.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List

from .rules import ADMIN, END_USER, SUPPORT_MANAGER, SUPPORT_STAFF

DEFAULT_WORKING_STATUSES: List[str] = ["NEW", "OPEN", "IN_PROGRESS", "REOPENED"]
DEFAULT_DONE_STATUSES: List[str] = ["CLOSED", "RESOLVED"]

SYSTEM_DEFAULT_NAME = "Default Workflow"
SYSTEM_DEFAULT_DESCRIPTION = (
    "System default workflow for ticket management. "
    "This workflow cannot be edited or deleted."
)

_STAFF = [SUPPORT_STAFF, SUPPORT_MANAGER, ADMIN]


def _node(node_id: str, label: str, x: int, color: str, **extra) -> Dict[str, Any]:
    data: Dict[str, Any] = {"label": label, "color": color}
    data.update(extra)
    return {
        "id": node_id,
        "type": "statusNode",
        "position": {"x": x, "y": 100},
        "data": data,
    }


def _edge(edge_id: str, source: str, target: str, label: str, roles, **extra) -> Dict[str, Any]:
    data: Dict[str, Any] = {"roles": list(roles), "conditions": [], "actions": []}
    data.update(extra)
    return {
        "id": edge_id,
        "source": source,
        "target": target,
        "label": label,
        "type": "smoothstep",
        "markerEnd": {"type": "arrowclosed"},
        "data": data,
    }


_SYSTEM_DEFAULT_DEFINITION: Dict[str, Any] = {
    "nodes": [
        _node("create", "Create Ticket", 50, "#4caf50", isInitial=True),
        _node("new", "New", 250, "#ff9800"),
        _node("open", "Open", 450, "#2196f3"),
        _node("in_progress", "In Progress", 650, "#9c27b0"),
        _node("resolved", "Resolved", 850, "#4caf50"),
        _node("closed", "Closed", 1050, "#9e9e9e"),
    ],
    "edges": [
        _edge("e0-create", "create", "new", "Create Ticket",
              [END_USER, SUPPORT_STAFF, SUPPORT_MANAGER, ADMIN], isCreateTransition=True),
        _edge("e1", "new", "open", "Open", _STAFF),
        _edge("e2", "open", "in_progress", "Start Work", _STAFF),
        _edge("e3", "in_progress", "resolved", "Resolve", _STAFF),
        _edge("e4", "resolved", "closed", "Close", _STAFF),
        _edge("e5", "closed", "open", "Reopen", [END_USER] + _STAFF),
    ],
}


def system_default_definition() -> Dict[str, Any]:
    """Fresh copy; callers own and may persist it."""
    return copy.deepcopy(_SYSTEM_DEFAULT_DEFINITION)
