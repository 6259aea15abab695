# helpdesk_core/services/actions.py
"""
Workflow action dispatcher.

The evaluator only names a transition's actions. They run here, after the
transition has committed:

- ticket-local actions are applied directly to the ticket row;
- notification-type actions are queued for the notification subsystem.
"""

import logging
from functools import partial
from typing import Any, Dict, Iterable, Optional

from django.db import transaction
from django.utils import timezone

from helpdesk_core.models import Ticket
from helpdesk_core.tasks import notify_workflow_action
from helpdesk_core.workflows.rules import (
    ASSIGN_TO_USER,
    CALCULATE_RESOLUTION_TIME,
    CREATE_SUBTASK,
    LOG_ACTIVITY,
    SEND_EMAIL,
    SEND_NOTIFICATION,
    UPDATE_PRIORITY,
    normalize_action,
)

logger = logging.getLogger(__name__)

NOTIFICATION_ACTIONS = frozenset({SEND_NOTIFICATION, SEND_EMAIL, CREATE_SUBTASK})


# ===============================================================
# Ticket-local handlers
# ===============================================================

def _assign_to_user(ticket: Ticket, *, config, executed_by_id=None, **_):
    if not config.get("assignToCurrentUser") or executed_by_id is None:
        return ticket.assigned_to_id
    if ticket.assigned_to_id != executed_by_id:
        Ticket.objects.filter(pk=ticket.pk).update(assigned_to_id=executed_by_id)
    return executed_by_id


def _update_priority(ticket: Ticket, *, config, **_):
    wanted = str(config.get("newPriority") or "").strip().upper()
    if not wanted:
        return ticket.priority
    if wanted not in Ticket.Priority.values:
        logger.warning("Ticket %s: ignoring unknown priority %r", ticket.pk, wanted)
        return ticket.priority
    if wanted != ticket.priority:
        Ticket.objects.filter(pk=ticket.pk).update(priority=wanted)
    return wanted


def _calculate_resolution_time(ticket: Ticket, **_):
    end = ticket.closed_at or timezone.now()
    seconds = max(0, int((end - ticket.created_at).total_seconds()))
    Ticket.objects.filter(pk=ticket.pk).update(resolution_seconds=seconds)
    return seconds


def _log_activity(ticket: Ticket, *, config, from_status="", to_status="", executed_by_id=None, **_):
    message = config.get("message") or "Workflow action executed"
    logger.info(
        "Ticket %s activity: %s (%s -> %s, user=%s)",
        ticket.pk,
        message,
        from_status,
        to_status,
        executed_by_id,
    )
    return message


LOCAL_HANDLERS = {
    ASSIGN_TO_USER: _assign_to_user,
    UPDATE_PRIORITY: _update_priority,
    CALCULATE_RESOLUTION_TIME: _calculate_resolution_time,
    LOG_ACTIVITY: _log_activity,
}


# ===============================================================
# Dispatch
# ===============================================================

def run_actions(
    *,
    ticket_id: int,
    actions: Iterable[Any],
    executed_by_id: Optional[int] = None,
    from_status: str = "",
    to_status: str = "",
) -> Dict[str, Any]:
    """
    Execute ``actions`` in order. Each item is a kind string or a
    ``{"type", "config"}`` object. Returns ``{action: result}``; queued
    notifications report ``"queued"``, unknown kinds ``"skipped"``.
    """
    ticket = Ticket.objects.filter(pk=ticket_id).first()
    if ticket is None:
        logger.warning("Workflow actions for missing ticket %s dropped: %s", ticket_id, list(actions))
        return {}

    results: Dict[str, Any] = {}
    for raw in actions:
        kind, config = normalize_action(raw)
        if not kind or kind in results:
            continue

        handler = LOCAL_HANDLERS.get(kind)
        if handler is not None:
            results[kind] = handler(
                ticket,
                config=config,
                executed_by_id=executed_by_id,
                from_status=from_status,
                to_status=to_status,
            )
            ticket.refresh_from_db()
            continue

        if kind in NOTIFICATION_ACTIONS:
            try:
                notify_workflow_action.delay(ticket.pk, kind, from_status, to_status, executed_by_id, config)
            except Exception:
                logger.exception("Could not queue %s for ticket %s", kind, ticket.pk)
                results[kind] = "failed"
            else:
                results[kind] = "queued"
            continue

        logger.warning("Unknown workflow action %s on ticket %s", kind, ticket.pk)
        results[kind] = "skipped"

    return results


def schedule_actions(**kwargs) -> None:
    """Run ``run_actions(**kwargs)`` once the surrounding transaction commits."""
    if not kwargs.get("actions"):
        return
    kwargs["actions"] = list(kwargs["actions"])
    transaction.on_commit(partial(run_actions, **kwargs))
