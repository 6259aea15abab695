# helpdesk_core/workflows/snapshot.py
"""
Immutable copy of a workflow bound to a ticket at creation time.

The snapshot is a value, never a reference: it deep-copies everything it is
given and hands out copies again, so later edits of the live workflow can
never change the transitions a historical ticket is judged against.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from functools import cached_property
from typing import Any, Dict, Mapping, Optional, Tuple

from .graph import WorkflowGraph, parse_definition


def _freeze_list(values) -> Tuple[Any, ...]:
    return tuple(copy.deepcopy(v) for v in (values or ()))


@dataclass(frozen=True)
class TicketWorkflowSnapshot:
    workflow_id: Optional[str]
    workflow_name: str
    definition: Mapping[str, Any]
    working_statuses: Tuple[Any, ...] = ()
    done_statuses: Tuple[Any, ...] = ()
    workflow_version: int = 1

    # -----------------------------------------------------------
    # Construction
    # -----------------------------------------------------------
    @classmethod
    def capture(
        cls,
        *,
        workflow_id,
        workflow_name: str,
        definition: Optional[Mapping[str, Any]],
        working_statuses=None,
        done_statuses=None,
        version: int = 1,
    ) -> "TicketWorkflowSnapshot":
        return cls(
            workflow_id=str(workflow_id) if workflow_id is not None else None,
            workflow_name=workflow_name or "",
            definition=copy.deepcopy(dict(definition or {})),
            working_statuses=_freeze_list(working_statuses),
            done_statuses=_freeze_list(done_statuses),
            workflow_version=int(version or 1),
        )

    @classmethod
    def from_workflow(cls, workflow) -> "TicketWorkflowSnapshot":
        """
        ``workflow`` is anything with id/name/definition/working_statuses/
        done_statuses/version attributes (the ORM row in practice).
        """
        return cls.capture(
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            definition=workflow.definition,
            working_statuses=getattr(workflow, "working_statuses", None),
            done_statuses=getattr(workflow, "done_statuses", None),
            version=getattr(workflow, "version", 1),
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, version: Optional[int] = None) -> "TicketWorkflowSnapshot":
        """
        Read a persisted snapshot. Older rows only carried
        ``{id, name, definition}``; their version lives on the ticket.
        """
        data = data or {}
        return cls.capture(
            workflow_id=data.get("id"),
            workflow_name=data.get("name") or "",
            definition=data.get("definition"),
            working_statuses=data.get("workingStatuses"),
            done_statuses=data.get("doneStatuses"),
            version=data.get("version") or version or 1,
        )

    # -----------------------------------------------------------
    # Accessors
    # -----------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.workflow_id,
            "name": self.workflow_name,
            "definition": copy.deepcopy(dict(self.definition)),
            "workingStatuses": copy.deepcopy(list(self.working_statuses)),
            "doneStatuses": copy.deepcopy(list(self.done_statuses)),
            "version": self.workflow_version,
        }

    @cached_property
    def graph(self) -> WorkflowGraph:
        return parse_definition(self.definition).graph


__all__ = ["TicketWorkflowSnapshot"]
