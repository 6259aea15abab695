# helpdesk_core/services/ticket_workflow.py
"""
Authoritative ticket workflow service.

All ticket status changes MUST go through this service.
Never update Ticket.status directly in views or serializers.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from django.db import transaction
from django.utils import timezone

from helpdesk_core.models import Ticket, Workflow, WorkflowExecution
from helpdesk_core.services.actions import schedule_actions
from helpdesk_core.services.roles import resolve_actor_roles
from helpdesk_core.services.workflow_admin import active_workflow, workflow_settings
from helpdesk_core.workflows.categorization import Bucket, StatusCategorizer
from helpdesk_core.workflows.errors import NoActiveWorkflow
from helpdesk_core.workflows.evaluator import (
    Decision,
    allowed_target_statuses,
    available_transitions,
    can_create,
    evaluate,
    evaluate_create,
)
from helpdesk_core.workflows.rules import (
    PRIORITY_HIGH,
    REQUIRES_ASSIGNMENT,
    REQUIRES_COMMENT,
    REQUIRES_RESOLUTION,
    normalize_kind,
)
from helpdesk_core.workflows.snapshot import TicketWorkflowSnapshot

logger = logging.getLogger(__name__)

ConditionChecker = Callable[[str], bool]


# ===============================================================
# Conditions
# ===============================================================

def ticket_condition_checker(
    ticket: Ticket,
    *,
    comment: str = "",
    extra: Optional[ConditionChecker] = None,
) -> ConditionChecker:
    """
    Checker for the conditions this service owns the data for. Anything
    else (approvals, custom fields) is delegated to ``extra`` and is
    unsatisfied without one.
    """

    def check(kind) -> bool:
        kind = normalize_kind(kind)
        if kind == REQUIRES_COMMENT:
            return bool((comment or "").strip())
        if kind == REQUIRES_RESOLUTION:
            return bool((ticket.resolution or "").strip())
        if kind == REQUIRES_ASSIGNMENT:
            return ticket.assigned_to_id is not None
        if kind == PRIORITY_HIGH:
            return ticket.priority in (Ticket.Priority.HIGH, Ticket.Priority.CRITICAL)
        if extra is not None:
            return bool(extra(kind))
        return False

    return check


# ===============================================================
# Snapshot resolution
# ===============================================================

def resolve_ticket_snapshot(ticket: Ticket) -> TicketWorkflowSnapshot:
    """
    The workflow a ticket is judged against.

    - bound snapshot: always wins, regardless of later workflow edits
    - bound workflow without snapshot (pre-snapshot rows): the live row
    - unbound ticket: whatever is ACTIVE right now, re-resolved every call
    """
    if ticket.workflow_snapshot:
        return TicketWorkflowSnapshot.from_dict(
            ticket.workflow_snapshot,
            version=ticket.workflow_version,
        )

    if ticket.workflow_id is not None:
        return TicketWorkflowSnapshot.from_workflow(ticket.workflow)

    wf = active_workflow(ticket.deployment)
    if wf is None:
        raise NoActiveWorkflow(f"Deployment {ticket.deployment.code} has no active workflow.")
    return TicketWorkflowSnapshot.from_workflow(wf)


def _done_categorizer(snapshot: TicketWorkflowSnapshot) -> StatusCategorizer:
    conf = workflow_settings()
    return StatusCategorizer(
        snapshot.workflow_id,
        snapshot.working_statuses or conf["DEFAULT_WORKING_STATUSES"],
        snapshot.done_statuses or conf["DEFAULT_DONE_STATUSES"],
    )


def _is_done(snapshot: TicketWorkflowSnapshot, status: str) -> bool:
    return _done_categorizer(snapshot).categorize(status, snapshot.workflow_id) is Bucket.DONE


def _roles_for(actor, deployment, roles: Optional[Iterable[str]]):
    if roles is not None:
        return set(roles)
    return resolve_actor_roles(actor, deployment)


def _deny(decision: Decision, *, ticket_id, actor) -> None:
    logger.info(
        "Workflow transition denied: ticket=%s %s -> %s actor=%s reason=%s",
        ticket_id,
        decision.from_status,
        decision.to_status or "?",
        getattr(actor, "pk", None),
        decision.reason.value if decision.reason else None,
    )
    decision.raise_for_denial()


# ===============================================================
# Creation
# ===============================================================

def create_ticket(
    deployment,
    *,
    requester,
    title: str,
    description: str = "",
    priority: str = Ticket.Priority.MEDIUM,
    assigned_to=None,
    due_date=None,
    workflow_id=None,
    actor=None,
    roles: Optional[Iterable[str]] = None,
    comment: str = "",
    condition_checker: Optional[ConditionChecker] = None,
) -> Ticket:
    """
    Create a ticket through the workflow's create transition and bind it to
    a deep copy of that workflow.

    ``workflow_id`` selects a specific workflow; otherwise the deployment's
    ACTIVE workflow is used. ``actor`` defaults to ``requester``.
    """
    actor = actor or requester

    with transaction.atomic():
        if workflow_id is not None:
            wf = Workflow.objects.get(deployment=deployment, pk=workflow_id)
        else:
            wf = active_workflow(deployment)
        if wf is None:
            raise NoActiveWorkflow("No active workflow; tickets cannot be created.")

        snapshot = TicketWorkflowSnapshot.from_workflow(wf)

        ticket = Ticket(
            deployment=deployment,
            title=title,
            description=description or "",
            priority=priority,
            requester=requester,
            assigned_to=assigned_to,
            due_date=due_date,
        )

        decision = evaluate_create(
            snapshot,
            _roles_for(actor, deployment, roles),
            condition_checker=ticket_condition_checker(ticket, comment=comment, extra=condition_checker),
        )
        if not decision:
            _deny(decision, ticket_id=None, actor=actor)

        ticket.status = decision.to_status
        if _is_done(snapshot, decision.to_status):
            ticket.closed_at = timezone.now()
        ticket.workflow = wf
        ticket.workflow_snapshot = snapshot.to_dict()
        ticket.workflow_version = snapshot.workflow_version
        ticket.save()

        WorkflowExecution.objects.create(
            ticket=ticket,
            workflow=wf,
            workflow_version=snapshot.workflow_version,
            transition_id=decision.transition.id,
            from_status=decision.from_status,
            to_status=decision.to_status,
            actions=list(decision.actions),
            executed_by=actor,
            comment=comment or "",
        )

        schedule_actions(
            ticket_id=ticket.pk,
            actions=decision.action_items(),
            executed_by_id=getattr(actor, "pk", None),
            from_status=decision.from_status,
            to_status=decision.to_status,
        )

    logger.info(
        "Created ticket %s in %s under workflow %s v%s",
        ticket.pk,
        ticket.status,
        wf.pk,
        ticket.workflow_version,
    )
    return ticket


def can_create_ticket(deployment, *, user=None, roles: Optional[Iterable[str]] = None) -> bool:
    wf = active_workflow(deployment)
    if wf is None:
        return False
    return can_create(wf.graph, _roles_for(user, deployment, roles))


# ===============================================================
# Transitions
# ===============================================================

def transition_ticket(
    ticket,
    target_status: str,
    *,
    actor,
    roles: Optional[Iterable[str]] = None,
    comment: str = "",
    condition_checker: Optional[ConditionChecker] = None,
) -> Ticket:
    """
    Move a ticket to ``target_status`` under its bound workflow.

    Raises NoSuchTransition / RoleNotAllowed / ConditionUnsatisfied when the
    evaluator denies the move.
    """
    ticket_id = getattr(ticket, "pk", ticket)

    with transaction.atomic():
        ticket = Ticket.objects.select_for_update().select_related("deployment").get(pk=ticket_id)
        snapshot = resolve_ticket_snapshot(ticket)

        decision = evaluate(
            snapshot,
            ticket.status,
            target_status,
            _roles_for(actor, ticket.deployment, roles),
            condition_checker=ticket_condition_checker(ticket, comment=comment, extra=condition_checker),
        )
        if not decision:
            _deny(decision, ticket_id=ticket.pk, actor=actor)

        now = timezone.now()
        closed_at = (ticket.closed_at or now) if _is_done(snapshot, decision.to_status) else None

        # Queryset update: the write guard only watches save().
        Ticket.objects.filter(pk=ticket.pk).update(
            status=decision.to_status,
            closed_at=closed_at,
            updated_at=now,
        )

        WorkflowExecution.objects.create(
            ticket=ticket,
            workflow_id=snapshot.workflow_id,
            workflow_version=snapshot.workflow_version,
            transition_id=decision.transition.id,
            from_status=decision.from_status,
            to_status=decision.to_status,
            actions=list(decision.actions),
            executed_by=actor,
            comment=comment or "",
        )

        schedule_actions(
            ticket_id=ticket.pk,
            actions=decision.action_items(),
            executed_by_id=getattr(actor, "pk", None),
            from_status=decision.from_status,
            to_status=decision.to_status,
        )

        ticket.refresh_from_db()

    logger.info(
        "Ticket %s moved %s -> %s by %s",
        ticket.pk,
        decision.from_status,
        decision.to_status,
        getattr(actor, "pk", None),
    )
    return ticket


def available_transitions_for_ticket(
    ticket: Ticket,
    *,
    user=None,
    roles: Optional[Iterable[str]] = None,
) -> List[Dict[str, Any]]:
    snapshot = resolve_ticket_snapshot(ticket)
    items = available_transitions(
        snapshot,
        ticket.status,
        _roles_for(user, ticket.deployment, roles),
    )
    return [
        {
            "id": item.transition.id,
            "label": item.label,
            "to_status": item.to_status,
            "can_execute": item.can_execute,
            "allowed_roles": list(item.transition.allowed_roles),
            "conditions": list(item.transition.conditions),
            "actions": list(item.transition.actions),
        }
        for item in items
    ]


def allowed_targets_for_ticket(
    ticket: Ticket,
    *,
    user=None,
    roles: Optional[Iterable[str]] = None,
) -> List[str]:
    """Statuses the actor may move ``ticket`` to right now."""
    return allowed_target_statuses(
        resolve_ticket_snapshot(ticket),
        ticket.status,
        _roles_for(user, ticket.deployment, roles),
    )
