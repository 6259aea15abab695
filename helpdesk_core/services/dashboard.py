# helpdesk_core/services/dashboard.py
"""
Dashboard aggregation over the Working / Done / Hold buckets.

Read-only. Buckets follow whichever workflow is ACTIVE at the time of the
read; one categorizer is built per call and reused for every ticket.
"""

from typing import Any, Dict, List, Optional

from django.contrib.auth import get_user_model
from django.utils import timezone

from helpdesk_core.models import Ticket, Workflow
from helpdesk_core.services.roles import primary_role, resolve_actor_roles
from helpdesk_core.services.workflow_admin import active_workflow, workflow_settings
from helpdesk_core.workflows.categorization import Bucket, StatusCategorizer
from helpdesk_core.workflows.rules import END_USER, SUPPORT_STAFF

UNASSIGNED = "Unassigned"

_EMPTY = {"all": 0, "working": 0, "done": 0, "hold": 0}


def deployment_categorizer(deployment) -> Optional[StatusCategorizer]:
    """
    Categorizer for the deployment's ACTIVE workflow, falling back to the
    configured default lists when the workflow's own are empty. None when
    nothing is active.
    """
    wf = active_workflow(deployment, heal=False)
    if wf is None:
        return None
    conf = workflow_settings()
    known = [str(pk) for pk in Workflow.objects.filter(deployment=deployment).values_list("pk", flat=True)]
    return StatusCategorizer.for_workflow(
        wf,
        default_working=conf["DEFAULT_WORKING_STATUSES"],
        default_done=conf["DEFAULT_DONE_STATUSES"],
        known_workflow_ids=known,
    )


def scoped_tickets(deployment, user=None):
    """
    Tickets a user's dashboard covers:
    support staff see their assignments, end users their own requests,
    managers and admins everything.
    """
    qs = Ticket.objects.filter(deployment=deployment)
    if user is None:
        return qs

    role = primary_role(resolve_actor_roles(user, deployment))
    if role == SUPPORT_STAFF:
        return qs.filter(assigned_to=user)
    if role == END_USER:
        return qs.filter(requester=user)
    if role is None:
        return qs.none()
    return qs


def dashboard_stats(deployment, user=None) -> Dict[str, int]:
    categorizer = deployment_categorizer(deployment)
    if categorizer is None:
        return dict(_EMPTY)
    rows = scoped_tickets(deployment, user).values_list("status", "workflow_id")
    return categorizer.counts(rows)


def _display_name(user) -> str:
    full = (user.get_full_name() or "").strip()
    return full or user.get_username()


def _percent(part: int, whole: int) -> int:
    """Whole percentage, halves rounded up. 100 when there is nothing to count."""
    if not whole:
        return 100
    return (200 * part + whole) // (2 * whole)


def staff_performance(deployment, *, now=None) -> List[Dict[str, Any]]:
    """
    Per-assignee bucket counts plus:

    - overdue: working tickets past their due date
    - performance: % of tickets done on time or working and not yet due;
      a done ticket with a due date but no close time is not on time
      (100 for an assignee with no tickets)

    Sorted by name with "Unassigned" last.
    """
    categorizer = deployment_categorizer(deployment)
    if categorizer is None:
        return []

    now = now or timezone.now()
    rows = Ticket.objects.filter(deployment=deployment).values_list(
        "assigned_to_id",
        "status",
        "workflow_id",
        "due_date",
        "closed_at",
    )

    stats: Dict[Optional[int], Dict[str, Any]] = {}
    for assignee_id, status, workflow_id, due_date, closed_at in rows:
        entry = stats.setdefault(
            assignee_id,
            {"all": 0, "working": 0, "done": 0, "hold": 0, "overdue": 0, "on_time": 0},
        )
        bucket = categorizer.categorize(status, workflow_id)
        entry["all"] += 1
        entry[bucket.value.lower()] += 1

        if bucket is Bucket.WORKING:
            if due_date is not None and due_date < now:
                entry["overdue"] += 1
            else:
                entry["on_time"] += 1
        elif bucket is Bucket.DONE:
            if due_date is None or (closed_at is not None and closed_at <= due_date):
                entry["on_time"] += 1

    User = get_user_model()
    users = {u.pk: u for u in User.objects.filter(pk__in=[k for k in stats if k is not None])}

    out: List[Dict[str, Any]] = []
    for assignee_id, entry in stats.items():
        total = entry["all"]
        user = users.get(assignee_id)
        out.append({
            "user_id": assignee_id,
            "name": _display_name(user) if user else UNASSIGNED,
            "all": total,
            "working": entry["working"],
            "done": entry["done"],
            "hold": entry["hold"],
            "overdue": entry["overdue"],
            "performance": _percent(entry["on_time"], total),
        })

    out.sort(key=lambda r: (r["user_id"] is None, r["name"].lower()))
    return out
