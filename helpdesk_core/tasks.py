# helpdesk_core/tasks.py
from __future__ import annotations

import logging

from celery import shared_task

from helpdesk_core.signals import workflow_action_requested

logger = logging.getLogger(__name__)


@shared_task
def notify_workflow_action(
    ticket_id: int,
    action: str,
    from_status: str = "",
    to_status: str = "",
    executed_by_id: int | None = None,
    config: dict | None = None,
) -> int:
    """Hand a notification-type action to whoever listens for it."""
    from helpdesk_core.models import Ticket

    responses = workflow_action_requested.send(
        sender=Ticket,
        ticket_id=ticket_id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        executed_by_id=executed_by_id,
        config=config or {},
    )
    if not responses:
        logger.info("No receiver for workflow action %s on ticket %s", action, ticket_id)
    return len(responses)


@shared_task
def heal_workflow_invariants() -> int:
    from helpdesk_core.services.workflow_admin import heal_all_deployments

    return heal_all_deployments()
