# helpdesk_core/tests/test_ticket_workflow.py
from types import SimpleNamespace

import pytest
from django.core.exceptions import PermissionDenied

from helpdesk_core.models import Ticket, WorkflowExecution
from helpdesk_core.services import actions as workflow_actions
from helpdesk_core.services.actions import run_actions
from helpdesk_core.services.ticket_workflow import (
    allowed_targets_for_ticket,
    available_transitions_for_ticket,
    can_create_ticket,
    create_ticket,
    resolve_ticket_snapshot,
    transition_ticket,
)
from helpdesk_core.services.workflow_admin import activate_workflow, update_workflow
from helpdesk_core.signals import workflow_action_requested
from helpdesk_core.tasks import notify_workflow_action
from helpdesk_core.tests.builders import STAFF, edge, node, scenario_definition, shortcut_definition
from helpdesk_core.workflows import (
    ConditionUnsatisfied,
    NoSuchTransition,
    RoleNotAllowed,
    TicketWorkflowSnapshot,
)

pytestmark = pytest.mark.django_db


@pytest.fixture
def scenario_workflow(system_default, workflow_factory):
    return workflow_factory("Support", activate=True)


# ---------------------------------------------------------------
# Creation
# ---------------------------------------------------------------

def test_create_binds_ticket_to_snapshot(deployment, requester, scenario_workflow):
    ticket = create_ticket(deployment, requester=requester, title="Printer on fire")

    assert ticket.status == "NEW"
    assert ticket.workflow_id == scenario_workflow.pk
    assert ticket.workflow_version == 1
    assert ticket.workflow_snapshot["id"] == str(scenario_workflow.pk)
    assert ticket.workflow_snapshot["definition"] == scenario_definition()

    execution = WorkflowExecution.objects.get(ticket=ticket)
    assert execution.from_status == "CREATE"
    assert execution.to_status == "NEW"
    assert execution.transition_id == "e-create"
    assert execution.executed_by == requester


def test_create_denied_for_role_writes_nothing(deployment, agent, scenario_workflow):
    with pytest.raises(RoleNotAllowed) as exc:
        create_ticket(deployment, requester=agent, title="Not mine to open")

    assert "SUPPORT_STAFF" in exc.value.message
    assert "END_USER" in exc.value.message
    assert not Ticket.objects.exists()
    assert not WorkflowExecution.objects.exists()


def test_create_falls_back_to_system_default(deployment, agent):
    # no workflow yet: the deployment heals itself first
    ticket = create_ticket(deployment, requester=agent, title="First ticket")

    assert ticket.status == "NEW"
    assert ticket.workflow.is_system_default


def test_create_into_done_status_stamps_closed_at(deployment, requester, agent, system_default, workflow_factory):
    workflow_factory(
        "Log only",
        definition={
            "nodes": [node("create", "Create", initial=True), node("closed", "Closed"), node("open", "Open")],
            "edges": [
                edge("e-create", "create", "closed", ["END_USER"], create=True),
                edge("e-reopen", "closed", "open", STAFF),
            ],
        },
        activate=True,
    )

    ticket = create_ticket(deployment, requester=requester, title="Already fixed")
    assert ticket.status == "CLOSED"
    assert Ticket.objects.get(pk=ticket.pk).closed_at is not None

    reopened = transition_ticket(ticket, "OPEN", actor=agent)
    assert reopened.closed_at is None


def test_can_create_ticket_follows_create_roles(deployment, requester, agent, scenario_workflow):
    assert can_create_ticket(deployment, user=requester) is True
    assert can_create_ticket(deployment, user=agent) is False
    assert can_create_ticket(deployment, roles=["end user"]) is True


# ---------------------------------------------------------------
# Snapshot isolation
# ---------------------------------------------------------------

def test_bound_snapshot_survives_workflow_edit(deployment, requester, agent, scenario_workflow):
    old = create_ticket(deployment, requester=requester, title="Before the edit")

    edited = update_workflow(deployment, scenario_workflow.pk, definition=shortcut_definition())
    assert edited.version == 2

    moved = transition_ticket(old, "OPEN", actor=agent)
    assert moved.status == "OPEN"
    assert moved.workflow_snapshot["definition"] == scenario_definition()
    execution = moved.workflow_executions.first()
    assert execution.workflow_version == 1

    new = create_ticket(deployment, requester=requester, title="After the edit")
    assert new.workflow_version == 2
    with pytest.raises(NoSuchTransition):
        transition_ticket(new, "OPEN", actor=agent)
    assert transition_ticket(new, "CLOSED", actor=agent).status == "CLOSED"


def test_snapshot_is_a_copy(scenario_workflow):
    snapshot = TicketWorkflowSnapshot.from_workflow(scenario_workflow)

    scenario_workflow.definition["edges"].clear()
    snapshot.to_dict()["definition"]["nodes"].clear()

    assert len(snapshot.graph.transitions) == 4
    assert len(snapshot.graph.states) == 4


def test_unbound_ticket_follows_active_workflow(deployment, agent, system_default, workflow_factory, ticket_factory):
    ticket = ticket_factory(status="NEW")

    assert resolve_ticket_snapshot(ticket).workflow_id == str(system_default.pk)
    ticket = transition_ticket(ticket, "OPEN", actor=agent)
    assert ticket.workflow_executions.first().workflow_id == system_default.pk

    shortcut = workflow_factory("Shortcut", definition=shortcut_definition())
    activate_workflow(deployment, shortcut.pk)

    later = ticket_factory(status="NEW")
    with pytest.raises(NoSuchTransition):
        transition_ticket(later, "OPEN", actor=agent)
    later = transition_ticket(later, "CLOSED", actor=agent)
    assert later.workflow_executions.first().workflow_id == shortcut.pk
    # still unbound
    assert later.workflow_id is None
    assert later.workflow_snapshot is None


# ---------------------------------------------------------------
# Write guard
# ---------------------------------------------------------------

def test_direct_status_write_is_refused(deployment, requester, scenario_workflow):
    ticket = create_ticket(deployment, requester=requester, title="Guarded")

    ticket.status = "CLOSED"
    with pytest.raises(PermissionDenied):
        ticket.save()

    assert Ticket.objects.get(pk=ticket.pk).status == "NEW"


def test_snapshot_is_frozen_after_creation(deployment, requester, scenario_workflow):
    ticket = create_ticket(deployment, requester=requester, title="Frozen")

    ticket.workflow_snapshot = shortcut_definition()
    with pytest.raises(PermissionDenied):
        ticket.save()

    ticket = Ticket.objects.get(pk=ticket.pk)
    ticket.workflow_version = 7
    with pytest.raises(PermissionDenied):
        ticket.save()


def test_other_fields_save_normally(deployment, requester, scenario_workflow):
    ticket = create_ticket(deployment, requester=requester, title="Editable")

    ticket.title = "Renamed"
    ticket.save()

    assert Ticket.objects.get(pk=ticket.pk).title == "Renamed"


# ---------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------

def test_role_denial_is_reported(deployment, requester, scenario_workflow):
    ticket = create_ticket(deployment, requester=requester, title="Self-service")

    with pytest.raises(RoleNotAllowed) as exc:
        transition_ticket(ticket, "OPEN", actor=requester)

    assert exc.value.transition_id == "e-open"
    assert Ticket.objects.get(pk=ticket.pk).status == "NEW"


def test_comment_condition(deployment, requester, agent, system_default, workflow_factory):
    workflow_factory(definition=scenario_definition(conditions=["REQUIRES_COMMENT"]), activate=True)
    ticket = create_ticket(deployment, requester=requester, title="Needs a note")

    with pytest.raises(ConditionUnsatisfied) as exc:
        transition_ticket(ticket, "OPEN", actor=agent)
    assert exc.value.conditions == ["REQUIRES_COMMENT"]

    ticket = transition_ticket(ticket, "OPEN", actor=agent, comment="Looking into it")
    assert ticket.status == "OPEN"
    assert ticket.workflow_executions.first().comment == "Looking into it"


def test_external_conditions_need_a_checker(deployment, requester, agent, system_default, workflow_factory):
    workflow_factory(definition=scenario_definition(conditions=["REQUIRES_APPROVAL"]), activate=True)
    ticket = create_ticket(deployment, requester=requester, title="Needs approval")

    with pytest.raises(ConditionUnsatisfied):
        transition_ticket(ticket, "OPEN", actor=agent)

    ticket = transition_ticket(
        ticket,
        "OPEN",
        actor=agent,
        condition_checker=lambda kind: kind == "REQUIRES_APPROVAL",
    )
    assert ticket.status == "OPEN"


def test_closed_at_follows_done_bucket(deployment, requester, agent, scenario_workflow):
    ticket = create_ticket(deployment, requester=requester, title="Lifecycle")
    ticket = transition_ticket(ticket, "OPEN", actor=agent)
    assert ticket.closed_at is None

    ticket = transition_ticket(ticket, "CLOSED", actor=agent)
    assert ticket.closed_at is not None

    ticket = transition_ticket(ticket, "OPEN", actor=requester)
    assert ticket.closed_at is None
    assert [e.to_status for e in ticket.workflow_executions.all()] == ["OPEN", "CLOSED", "OPEN", "NEW"]


def test_available_transitions_for_ticket(deployment, requester, agent, scenario_workflow):
    ticket = create_ticket(deployment, requester=requester, title="Options")

    options = available_transitions_for_ticket(ticket, user=agent)
    assert [(o["id"], o["to_status"], o["can_execute"]) for o in options] == [("e-open", "OPEN", True)]

    options = available_transitions_for_ticket(ticket, user=requester)
    assert options[0]["can_execute"] is False

    assert allowed_targets_for_ticket(ticket, user=agent) == ["OPEN"]
    assert allowed_targets_for_ticket(ticket, user=requester) == []


# ---------------------------------------------------------------
# Actions
# ---------------------------------------------------------------

def test_actions_run_after_commit(deployment, requester, agent, scenario_workflow, django_capture_on_commit_callbacks):
    ticket = create_ticket(deployment, requester=requester, title="Timed")
    ticket = transition_ticket(ticket, "OPEN", actor=agent)

    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        transition_ticket(ticket, "CLOSED", actor=agent)

    assert len(callbacks) == 1
    assert Ticket.objects.get(pk=ticket.pk).resolution_seconds is not None


def test_run_actions_dispatches_each_kind_once(deployment, agent, ticket_factory, monkeypatch):
    queued = []
    monkeypatch.setattr(workflow_actions, "notify_workflow_action", SimpleNamespace(delay=lambda *args: queued.append(args)))
    ticket = ticket_factory(status="OPEN", priority=Ticket.Priority.MEDIUM)

    results = run_actions(
        ticket_id=ticket.pk,
        actions=[
            {"type": "send_notification", "config": {"recipients": ["requester"]}},
            "SEND_NOTIFICATION",
            {"type": "UPDATE_PRIORITY", "config": {"newPriority": "high"}},
            {"type": "ASSIGN_TO_USER", "config": {"assignToCurrentUser": True}},
            "TELEPORT",
        ],
        executed_by_id=agent.pk,
        from_status="NEW",
        to_status="OPEN",
    )

    assert results == {
        "SEND_NOTIFICATION": "queued",
        "UPDATE_PRIORITY": "HIGH",
        "ASSIGN_TO_USER": agent.pk,
        "TELEPORT": "skipped",
    }
    assert queued == [(ticket.pk, "SEND_NOTIFICATION", "NEW", "OPEN", agent.pk, {"recipients": ["requester"]})]
    ticket.refresh_from_db()
    assert ticket.priority == Ticket.Priority.HIGH
    assert ticket.assigned_to == agent


def test_actions_without_config_leave_ticket_alone(deployment, agent, ticket_factory):
    ticket = ticket_factory(status="OPEN", priority=Ticket.Priority.MEDIUM)

    results = run_actions(
        ticket_id=ticket.pk,
        actions=["UPDATE_PRIORITY", {"type": "ASSIGN_TO_USER", "config": {}}],
        executed_by_id=agent.pk,
    )

    assert results == {"UPDATE_PRIORITY": "MEDIUM", "ASSIGN_TO_USER": None}
    ticket.refresh_from_db()
    assert ticket.priority == Ticket.Priority.MEDIUM
    assert ticket.assigned_to is None


def test_unknown_priority_in_config_is_ignored(deployment, ticket_factory):
    ticket = ticket_factory(status="OPEN", priority=Ticket.Priority.MEDIUM)

    run_actions(ticket_id=ticket.pk, actions=[{"type": "UPDATE_PRIORITY", "config": {"newPriority": "BLAZING"}}])

    ticket.refresh_from_db()
    assert ticket.priority == Ticket.Priority.MEDIUM


def test_log_activity_uses_configured_message(deployment, ticket_factory, monkeypatch):
    logged = []
    monkeypatch.setattr(workflow_actions.logger, "info", lambda msg, *args: logged.append(msg % args))
    ticket = ticket_factory(status="OPEN")

    results = run_actions(ticket_id=ticket.pk, actions=[{"type": "LOG_ACTIVITY", "config": {"message": "Escalated to L2"}}])

    assert results == {"LOG_ACTIVITY": "Escalated to L2"}
    assert any("Escalated to L2" in line for line in logged)


def test_transition_runs_configured_edge_actions(
    deployment, requester, agent, system_default, workflow_factory, django_capture_on_commit_callbacks
):
    workflow_factory(
        "Triage",
        definition=scenario_definition(
            actions=[{"type": "UPDATE_PRIORITY", "config": {"newPriority": "LOW"}}],
        ),
        activate=True,
    )
    ticket = create_ticket(deployment, requester=requester, title="Slow wifi", priority=Ticket.Priority.MEDIUM)

    with django_capture_on_commit_callbacks(execute=True):
        transition_ticket(ticket, "OPEN", actor=agent)

    ticket.refresh_from_db()
    assert ticket.priority == Ticket.Priority.LOW
    assert ticket.assigned_to is None
    assert WorkflowExecution.objects.filter(ticket=ticket).order_by("-id").first().actions == ["UPDATE_PRIORITY"]


def test_failed_enqueue_is_reported(deployment, ticket_factory, monkeypatch):
    def boom(*args):
        raise ConnectionError("broker down")

    monkeypatch.setattr(workflow_actions, "notify_workflow_action", SimpleNamespace(delay=boom))
    ticket = ticket_factory(status="OPEN")

    assert run_actions(ticket_id=ticket.pk, actions=["SEND_EMAIL"]) == {"SEND_EMAIL": "failed"}


def test_notification_task_sends_signal(deployment, ticket_factory):
    received = []

    def receiver(sender, **kwargs):
        received.append(kwargs["action"])

    ticket = ticket_factory(status="OPEN")
    workflow_action_requested.connect(receiver)
    try:
        count = notify_workflow_action(ticket.pk, "SEND_EMAIL", "NEW", "OPEN", None)
    finally:
        workflow_action_requested.disconnect(receiver)

    assert count == 1
    assert received == ["SEND_EMAIL"]
