# helpdesk_core/tests/test_transition_evaluator.py
import pytest

from helpdesk_core.workflows import (
    ConditionUnsatisfied,
    DenialReason,
    NoSuchTransition,
    RoleNotAllowed,
    TicketWorkflowSnapshot,
    allowed_target_statuses,
    available_transitions,
    can_create,
    evaluate,
    evaluate_create,
    parse_definition,
    system_default_definition,
)
from helpdesk_core.tests.builders import STAFF, base_nodes, edge, scenario_definition


def _snapshot(definition, version=1) -> TicketWorkflowSnapshot:
    return TicketWorkflowSnapshot.capture(
        workflow_id="wf-1",
        workflow_name="Scenario",
        definition=definition,
        version=version,
    )


# ---------------------------------------------------------------
# Create transition
# ---------------------------------------------------------------

def test_support_staff_cannot_create_when_create_is_end_user_only():
    snap = _snapshot(scenario_definition(create_roles=["END_USER"]))

    decision = evaluate_create(snap, {"SUPPORT_STAFF"})

    assert not decision
    assert decision.reason is DenialReason.ROLE_NOT_ALLOWED
    assert "SUPPORT_STAFF" in decision.message
    assert "END_USER" in decision.message
    with pytest.raises(RoleNotAllowed) as exc:
        decision.raise_for_denial()
    assert exc.value.transition_id == "e-create"


def test_end_user_create_targets_initial_status():
    snap = _snapshot(scenario_definition(create_roles=["END_USER"]))

    decision = evaluate_create(snap, ["end user"])

    assert decision.allowed
    assert decision.to_status == "NEW"
    assert decision.transition.id == "e-create"
    assert can_create(snap, {"END_USER"}) is True
    assert can_create(snap, {"SUPPORT_STAFF"}) is False


def test_workflow_without_create_transition_denies_creation():
    doc = scenario_definition()
    doc["edges"] = doc["edges"][1:]
    decision = evaluate_create(_snapshot(doc), {"ADMIN"})
    assert decision.reason is DenialReason.NO_SUCH_TRANSITION


# ---------------------------------------------------------------
# Regular transitions
# ---------------------------------------------------------------

def test_allowed_transition_emits_actions_in_order():
    doc = scenario_definition(
        actions=["SEND_NOTIFICATION", {"type": "ASSIGN_TO_USER", "config": {"assignToCurrentUser": True}}, "LOG_ACTIVITY"]
    )
    decision = evaluate(_snapshot(doc), "NEW", "OPEN", {"SUPPORT_STAFF"})

    assert decision.allowed
    assert (decision.from_status, decision.to_status) == ("NEW", "OPEN")
    assert decision.actions == ("SEND_NOTIFICATION", "ASSIGN_TO_USER", "LOG_ACTIVITY")
    assert decision.action_items()[1] == {"type": "ASSIGN_TO_USER", "config": {"assignToCurrentUser": True}}
    assert decision.raise_for_denial() is decision


def test_missing_edge_is_no_such_transition():
    decision = evaluate(_snapshot(scenario_definition()), "NEW", "CLOSED", {"ADMIN"})
    assert decision.reason is DenialReason.NO_SUCH_TRANSITION
    assert "NEW" in decision.message and "CLOSED" in decision.message
    with pytest.raises(NoSuchTransition):
        decision.raise_for_denial()


def test_unknown_current_status_is_no_such_transition():
    decision = evaluate(_snapshot(scenario_definition()), "ARCHIVED", "OPEN", {"ADMIN"})
    assert decision.reason is DenialReason.NO_SUCH_TRANSITION
    assert "ARCHIVED" in decision.message


def test_role_outside_edge_is_role_not_allowed():
    decision = evaluate(_snapshot(scenario_definition()), "NEW", "OPEN", {"END_USER"})
    assert decision.reason is DenialReason.ROLE_NOT_ALLOWED
    assert decision.message.startswith("Your role (END_USER) cannot move a ticket from NEW to OPEN.")


def test_no_roles_at_all_is_role_not_allowed():
    decision = evaluate(_snapshot(scenario_definition()), "NEW", "OPEN", set())
    assert decision.reason is DenialReason.ROLE_NOT_ALLOWED
    assert "no role" in decision.message


def test_statuses_match_labels_and_ids_case_insensitively():
    snap = _snapshot(system_default_definition())
    for current in ("In Progress", "IN_PROGRESS", " in progress ", "in_progress"):
        decision = evaluate(snap, current, "resolved", {"SUPPORT_STAFF"})
        assert decision.allowed, current
        assert decision.to_status == "RESOLVED"


def test_first_permitted_edge_wins_between_same_states():
    doc = {
        "nodes": base_nodes(),
        "edges": [
            edge("e-create", "create", "new", ["END_USER"], create=True),
            edge("e-admin", "new", "open", ["ADMIN"], actions=["LOG_ACTIVITY"]),
            edge("e-staff", "new", "open", ["SUPPORT_STAFF"], actions=["SEND_EMAIL"]),
            edge("e-close", "open", "closed", STAFF),
        ],
    }
    decision = evaluate(_snapshot(doc), "NEW", "OPEN", {"SUPPORT_STAFF"})
    assert decision.transition.id == "e-staff"
    assert decision.actions == ("SEND_EMAIL",)


# ---------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------

def test_conditions_are_enumerated_without_checker():
    doc = scenario_definition(conditions=["REQUIRES_COMMENT"])
    decision = evaluate(_snapshot(doc), "NEW", "OPEN", {"SUPPORT_STAFF"})
    assert decision.allowed
    assert decision.conditions == ("REQUIRES_COMMENT",)


def test_rejected_condition_denies_with_its_name():
    doc = scenario_definition(conditions=["REQUIRES_COMMENT", "REQUIRES_ASSIGNMENT"])
    decision = evaluate(
        _snapshot(doc),
        "NEW",
        "OPEN",
        {"SUPPORT_STAFF"},
        condition_checker=lambda kind: kind == "REQUIRES_ASSIGNMENT",
    )
    assert decision.reason is DenialReason.CONDITION_UNSATISFIED
    assert decision.unmet_conditions == ("REQUIRES_COMMENT",)
    with pytest.raises(ConditionUnsatisfied) as exc:
        decision.raise_for_denial()
    assert exc.value.conditions == ["REQUIRES_COMMENT"]


def test_role_is_checked_before_conditions():
    doc = scenario_definition(conditions=["REQUIRES_COMMENT"])
    decision = evaluate(_snapshot(doc), "NEW", "OPEN", {"END_USER"}, condition_checker=lambda k: False)
    assert decision.reason is DenialReason.ROLE_NOT_ALLOWED


# ---------------------------------------------------------------
# Enumeration
# ---------------------------------------------------------------

def test_available_transitions_flag_executability_per_role():
    snap = _snapshot(system_default_definition())

    closed_for_user = available_transitions(snap, "CLOSED", {"END_USER"})
    assert [(t.to_status, t.label, t.can_execute) for t in closed_for_user] == [("OPEN", "Reopen", True)]

    new_for_user = available_transitions(snap, "NEW", {"END_USER"})
    assert [(t.to_status, t.can_execute) for t in new_for_user] == [("OPEN", False)]

    assert allowed_target_statuses(snap, "NEW", {"END_USER"}) == []
    assert allowed_target_statuses(snap, "NEW", {"ADMIN"}) == ["OPEN"]


def test_create_transition_is_never_listed():
    graph = parse_definition(system_default_definition()).graph
    ids = {t.transition.id for s in graph.statuses() for t in available_transitions(graph, s, {"ADMIN"})}
    assert "e0-create" not in ids
    assert available_transitions(graph, "NOT_A_STATUS", {"ADMIN"}) == []


def test_evaluator_rejects_unknown_sources():
    with pytest.raises(TypeError):
        evaluate({"nodes": []}, "NEW", "OPEN", {"ADMIN"})
