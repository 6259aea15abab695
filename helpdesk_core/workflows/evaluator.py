# helpdesk_core/workflows/evaluator.py
"""
Transition evaluation.

Authorizes and enumerates; never performs side effects. Callers execute the
returned ``actions`` and own the data any ``conditions`` refer to.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from .errors import DENIAL_CLASSES
from .graph import Transition, WorkflowDocument, WorkflowGraph
from .rules import CREATE_STATE, normalize_roles, normalize_status
from .snapshot import TicketWorkflowSnapshot

ConditionChecker = Callable[[str], bool]
GraphSource = Union[TicketWorkflowSnapshot, WorkflowDocument, WorkflowGraph]


class DenialReason(str, Enum):
    NO_SUCH_TRANSITION = "NO_SUCH_TRANSITION"
    ROLE_NOT_ALLOWED = "ROLE_NOT_ALLOWED"
    CONDITION_UNSATISFIED = "CONDITION_UNSATISFIED"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    from_status: str
    to_status: str
    transition: Optional[Transition] = None
    actions: Tuple[str, ...] = ()
    conditions: Tuple[str, ...] = ()
    reason: Optional[DenialReason] = None
    message: str = ""
    unmet_conditions: Tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return self.allowed

    def action_items(self) -> List[Dict[str, Any]]:
        """Actions with their configs, ready for the dispatcher."""
        if not self.allowed or self.transition is None:
            return []
        return self.transition.action_items()

    @classmethod
    def allow(cls, transition: Transition, from_status: str, to_status: str) -> "Decision":
        return cls(
            allowed=True,
            from_status=from_status,
            to_status=to_status,
            transition=transition,
            actions=tuple(transition.actions),
            conditions=tuple(transition.conditions),
        )

    @classmethod
    def deny(
        cls,
        reason: DenialReason,
        message: str,
        from_status: str,
        to_status: str,
        transition: Optional[Transition] = None,
        unmet_conditions: Iterable[str] = (),
    ) -> "Decision":
        return cls(
            allowed=False,
            from_status=from_status,
            to_status=to_status,
            transition=transition,
            reason=reason,
            message=message,
            unmet_conditions=tuple(unmet_conditions),
        )

    def raise_for_denial(self) -> "Decision":
        if self.allowed:
            return self
        exc_class = DENIAL_CLASSES[self.reason.value]
        kwargs = {"transition_id": self.transition.id if self.transition else None}
        if self.reason is DenialReason.CONDITION_UNSATISFIED:
            kwargs["conditions"] = list(self.unmet_conditions)
        raise exc_class(self.message, **kwargs)


@dataclass(frozen=True)
class AvailableTransition:
    transition: Transition
    to_status: str
    label: str
    can_execute: bool


def graph_of(source: GraphSource) -> WorkflowGraph:
    if isinstance(source, TicketWorkflowSnapshot):
        return source.graph
    if isinstance(source, WorkflowDocument):
        return source.graph
    if isinstance(source, WorkflowGraph):
        return source
    raise TypeError(f"Cannot evaluate transitions against {type(source).__name__}")


def _check_conditions(
    transition: Transition,
    checker: Optional[ConditionChecker],
) -> List[str]:
    if checker is None or not transition.conditions:
        return []
    return [c for c in transition.conditions if not checker(c)]


def _role_message(roles, from_status: str, to_status: str, candidates: List[Transition]) -> str:
    allowed = sorted({r for t in candidates for r in t.allowed_roles})
    have = ", ".join(sorted(roles)) or "no role"
    need = ", ".join(allowed) or "nobody"
    return (
        f"Your role ({have}) cannot move a ticket from {from_status} to {to_status}. "
        f"Allowed roles: {need}."
    )


# ===============================================================
# Public API
# ===============================================================

def evaluate(
    source: GraphSource,
    current_status: str,
    target_status: str,
    actor_roles: Iterable[str],
    *,
    condition_checker: Optional[ConditionChecker] = None,
) -> Decision:
    """
    Can an actor holding ``actor_roles`` move a ticket from
    ``current_status`` to ``target_status``?

    Without a ``condition_checker`` the decision only lists the
    transition's conditions; with one, any condition it rejects denies the
    transition with CONDITION_UNSATISFIED.
    """
    graph = graph_of(source)
    cur = normalize_status(current_status)
    tgt = normalize_status(target_status)
    roles = normalize_roles(actor_roles)

    if graph.resolve_state(cur) is None:
        return Decision.deny(
            DenialReason.NO_SUCH_TRANSITION,
            f"Status {cur or '(empty)'} is not part of this workflow.",
            cur,
            tgt,
        )

    candidates = graph.find_transitions(cur, tgt)
    if not candidates:
        return Decision.deny(
            DenialReason.NO_SUCH_TRANSITION,
            f"This workflow has no transition from {cur} to {tgt}.",
            cur,
            tgt,
        )

    permitted = [t for t in candidates if t.allows_any(roles)]
    if not permitted:
        return Decision.deny(
            DenialReason.ROLE_NOT_ALLOWED,
            _role_message(roles, cur, tgt, candidates),
            cur,
            tgt,
            transition=candidates[0],
        )

    transition = permitted[0]
    unmet = _check_conditions(transition, condition_checker)
    if unmet:
        return Decision.deny(
            DenialReason.CONDITION_UNSATISFIED,
            f"Moving from {cur} to {tgt} requires: {', '.join(unmet)}.",
            cur,
            tgt,
            transition=transition,
            unmet_conditions=unmet,
        )

    return Decision.allow(transition, cur, graph.status_for(transition.to_state))


def evaluate_create(
    source: GraphSource,
    actor_roles: Iterable[str],
    *,
    condition_checker: Optional[ConditionChecker] = None,
) -> Decision:
    """
    Evaluate the create transition. The allowed decision's ``to_status``
    is the new ticket's initial status.
    """
    graph = graph_of(source)
    roles = normalize_roles(actor_roles)
    create = graph.create_transition
    from_status = normalize_status(CREATE_STATE)

    if create is None:
        return Decision.deny(
            DenialReason.NO_SUCH_TRANSITION,
            "This workflow does not define how tickets are created.",
            from_status,
            "",
        )

    to_status = graph.status_for(create.to_state)

    if not create.allows_any(roles):
        have = ", ".join(sorted(roles)) or "no role"
        need = ", ".join(sorted(create.allowed_roles)) or "nobody"
        return Decision.deny(
            DenialReason.ROLE_NOT_ALLOWED,
            f"Your role ({have}) cannot create tickets in this workflow. Allowed roles: {need}.",
            from_status,
            to_status,
            transition=create,
        )

    unmet = _check_conditions(create, condition_checker)
    if unmet:
        return Decision.deny(
            DenialReason.CONDITION_UNSATISFIED,
            f"Creating a ticket requires: {', '.join(unmet)}.",
            from_status,
            to_status,
            transition=create,
            unmet_conditions=unmet,
        )

    return Decision.allow(create, from_status, to_status)


def available_transitions(
    source: GraphSource,
    current_status: str,
    actor_roles: Iterable[str],
) -> List[AvailableTransition]:
    """
    Every outgoing transition from ``current_status`` with a per-role
    ``can_execute`` flag. The create transition is never listed.
    """
    graph = graph_of(source)
    roles = normalize_roles(actor_roles)
    state = graph.resolve_state(current_status)
    if state is None:
        return []

    out: List[AvailableTransition] = []
    for t in graph.transitions_from(state.id):
        target = graph.state(t.to_state)
        to_status = graph.status_for(t.to_state)
        out.append(
            AvailableTransition(
                transition=t,
                to_status=to_status,
                label=t.label or (target.label if target else "") or to_status,
                can_execute=t.allows_any(roles),
            )
        )
    return out


def allowed_target_statuses(source: GraphSource, current_status: str, actor_roles: Iterable[str]) -> List[str]:
    out: List[str] = []
    for item in available_transitions(source, current_status, actor_roles):
        if item.can_execute and item.to_status not in out:
            out.append(item.to_status)
    return out


def can_create(source: GraphSource, actor_roles: Iterable[str]) -> bool:
    return evaluate_create(source, actor_roles).allowed


__all__ = [
    "ConditionChecker",
    "DenialReason",
    "Decision",
    "AvailableTransition",
    "graph_of",
    "evaluate",
    "evaluate_create",
    "available_transitions",
    "allowed_target_statuses",
    "can_create",
]
