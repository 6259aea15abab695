# helpdesk_core/tests/test_workflow_activation.py
from datetime import timedelta

import pytest
from django.utils import timezone

from helpdesk_core.models import Deployment, Workflow
from helpdesk_core.services import workflow_admin
from helpdesk_core.services.workflow_admin import (
    activate_workflow,
    active_workflow,
    create_workflow,
    deactivate_workflow,
    delete_workflow,
    ensure_system_default,
    heal_all_deployments,
    set_as_default,
    update_workflow,
    workflow_status_options,
)
from helpdesk_core.tests.builders import scenario_definition, shortcut_definition
from helpdesk_core.workflows import (
    DEFAULT_DONE_STATUSES,
    DEFAULT_WORKING_STATUSES,
    InvalidWorkflowDefinition,
    InvariantViolation,
    WorkflowConflict,
    WorkflowForbidden,
)
from helpdesk_core.workflows.rules import SYSTEM_STATUSES

pytestmark = pytest.mark.django_db

ACTIVE = Workflow.Status.ACTIVE
INACTIVE = Workflow.Status.INACTIVE
DRAFT = Workflow.Status.DRAFT


def _active_ids(deployment):
    return list(Workflow.objects.filter(deployment=deployment, status=ACTIVE).values_list("pk", flat=True))


def _revision(deployment):
    return Deployment.objects.get(pk=deployment.pk).workflow_revision


# ---------------------------------------------------------------
# System default / self-healing
# ---------------------------------------------------------------

def test_ensure_system_default_creates_active_default(deployment):
    wf = ensure_system_default(deployment)

    assert wf.is_system_default and wf.is_default
    assert wf.status == ACTIVE
    assert wf.name == "Default Workflow"
    assert _active_ids(deployment) == [wf.pk]
    assert [k["status"] for k in wf.working_statuses] == DEFAULT_WORKING_STATUSES
    assert [k["status"] for k in wf.done_statuses] == DEFAULT_DONE_STATUSES
    assert _revision(deployment) == 1


def test_ensure_system_default_is_idempotent(deployment):
    first = ensure_system_default(deployment)
    second = ensure_system_default(deployment)

    assert first.pk == second.pk
    assert Workflow.objects.filter(deployment=deployment).count() == 1
    assert _revision(deployment) == 1


def test_ensure_system_default_promotes_oldest_workflow(deployment, workflow_factory):
    newer = workflow_factory("Newer")
    older = workflow_factory("Older")
    Workflow.objects.filter(pk=older.pk).update(created_at=timezone.now() - timedelta(days=3))

    system = ensure_system_default(deployment)

    assert system.pk == older.pk
    older.refresh_from_db()
    newer.refresh_from_db()
    assert older.is_system_default and older.status == ACTIVE
    assert not newer.is_system_default and newer.status == DRAFT
    assert Workflow.objects.filter(deployment=deployment).count() == 2


def test_ensure_system_default_reactivates_when_nothing_active(deployment, system_default):
    Workflow.objects.filter(pk=system_default.pk).update(status=INACTIVE)
    before = _revision(deployment)

    ensure_system_default(deployment)

    system_default.refresh_from_db()
    assert system_default.status == ACTIVE
    assert _revision(deployment) == before + 1


def test_active_workflow_heals_unless_asked_not_to(deployment):
    assert active_workflow(deployment, heal=False) is None
    wf = active_workflow(deployment)
    assert wf is not None and wf.is_system_default


def test_heal_all_deployments_covers_every_active_deployment(deployment, other_deployment):
    Deployment.objects.filter(pk=other_deployment.pk).update(is_active=False)

    assert heal_all_deployments() == 1
    assert len(_active_ids(deployment)) == 1
    assert _active_ids(other_deployment) == []


# ---------------------------------------------------------------
# Activation
# ---------------------------------------------------------------

def test_activating_one_workflow_deactivates_the_other(deployment, system_default, workflow_factory):
    a = workflow_factory("A", activate=True)
    b = workflow_factory("B")

    activate_workflow(deployment, b.pk)

    a.refresh_from_db()
    b.refresh_from_db()
    system_default.refresh_from_db()
    assert a.status == INACTIVE
    assert b.status == ACTIVE
    assert system_default.status == INACTIVE
    assert _active_ids(deployment) == [b.pk]


def test_activation_bumps_revision(deployment, system_default, workflow_factory):
    wf = workflow_factory()
    before = _revision(deployment)

    activate_workflow(deployment, wf.pk)

    assert _revision(deployment) == before + 1


def test_activation_requires_a_complete_graph(deployment, system_default, workflow_factory):
    doc = scenario_definition()
    doc["edges"] = doc["edges"][1:]
    draft = workflow_factory(definition=doc)
    assert draft.status == DRAFT

    with pytest.raises(InvalidWorkflowDefinition) as exc:
        activate_workflow(deployment, draft.pk)

    assert "Exactly one create transition is required, found 0" in exc.value.errors
    draft.refresh_from_db()
    system_default.refresh_from_db()
    assert draft.status == DRAFT
    assert system_default.status == ACTIVE


def test_activation_overwrites_supplied_categorization_only(deployment, system_default, workflow_factory):
    wf = workflow_factory(working=["NEW"], done=["CLOSED"])

    wf = activate_workflow(deployment, wf.pk, working_statuses=["NEW", "OPEN"])

    assert [k["status"] for k in wf.working_statuses] == ["NEW", "OPEN"]
    assert [k["status"] for k in wf.done_statuses] == ["CLOSED"]
    assert wf.version == 1


def test_activation_rejects_overlapping_categorization(deployment, system_default, workflow_factory):
    wf = workflow_factory()

    with pytest.raises(InvalidWorkflowDefinition) as exc:
        activate_workflow(deployment, wf.pk, working_statuses=["OPEN"], done_statuses=["Open"])

    assert "both working and done" in str(exc.value)
    assert _active_ids(deployment) == [system_default.pk]


def test_system_default_categorization_is_not_editable_on_activation(deployment, system_default, workflow_factory):
    workflow_factory(activate=True)

    with pytest.raises(WorkflowForbidden):
        activate_workflow(deployment, system_default.pk, done_statuses=["CLOSED"])

    # plain reactivation is fine
    activate_workflow(deployment, system_default.pk)
    assert _active_ids(deployment) == [system_default.pk]


# ---------------------------------------------------------------
# Deactivation / deletion
# ---------------------------------------------------------------

def test_deactivating_only_active_workflow_restores_system_default(deployment, system_default, workflow_factory):
    wf = workflow_factory(activate=True)

    deactivate_workflow(deployment, wf.pk)

    wf.refresh_from_db()
    system_default.refresh_from_db()
    assert wf.status == INACTIVE
    assert system_default.status == ACTIVE


def test_deactivating_a_draft_leaves_active_alone(deployment, system_default, workflow_factory):
    draft = workflow_factory()

    deactivate_workflow(deployment, draft.pk)

    draft.refresh_from_db()
    assert draft.status == INACTIVE
    assert _active_ids(deployment) == [system_default.pk]


def test_system_default_cannot_be_deactivated(deployment, system_default):
    with pytest.raises(WorkflowForbidden):
        deactivate_workflow(deployment, system_default.pk)

    system_default.refresh_from_db()
    assert system_default.status == ACTIVE


def test_delete_refused_while_tickets_reference_workflow(deployment, system_default, workflow_factory, ticket_factory):
    wf = workflow_factory(activate=True)
    ticket_factory(workflow=wf)

    with pytest.raises(WorkflowConflict) as exc:
        delete_workflow(deployment, wf.pk)

    assert "1 ticket(s)" in str(exc.value)
    assert Workflow.objects.filter(pk=wf.pk, status=ACTIVE).exists()


def test_system_default_cannot_be_deleted(deployment, system_default):
    with pytest.raises(WorkflowConflict):
        delete_workflow(deployment, system_default.pk)
    assert Workflow.objects.filter(pk=system_default.pk).exists()


def test_deleting_active_workflow_restores_system_default(deployment, system_default, workflow_factory):
    wf = workflow_factory(activate=True)

    delete_workflow(deployment, wf.pk)

    assert not Workflow.objects.filter(pk=wf.pk).exists()
    assert _active_ids(deployment) == [system_default.pk]


def test_invariant_violation_rolls_back(deployment, system_default, workflow_factory, monkeypatch):
    wf = workflow_factory(activate=True)
    critical = []
    monkeypatch.setattr(workflow_admin, "_restore_active", lambda deployment: None)
    monkeypatch.setattr(workflow_admin.logger, "critical", lambda *args, **kwargs: critical.append(args))

    with pytest.raises(InvariantViolation):
        deactivate_workflow(deployment, wf.pk)

    assert critical and "deactivate" in critical[0]
    wf.refresh_from_db()
    assert wf.status == ACTIVE


# ---------------------------------------------------------------
# Editing
# ---------------------------------------------------------------

def test_system_default_cannot_be_edited(deployment, system_default):
    with pytest.raises(WorkflowForbidden):
        update_workflow(deployment, system_default.pk, name="Renamed")

    system_default.refresh_from_db()
    assert system_default.name == "Default Workflow"
    assert system_default.version == 1


def test_edit_bumps_version_once(deployment, workflow_factory):
    wf = workflow_factory("Original")

    wf = update_workflow(deployment, wf.pk, name="Renamed", description="Changed")

    assert wf.version == 2
    assert wf.name == "Renamed"


def test_edit_without_changes_keeps_version(deployment, workflow_factory):
    wf = workflow_factory("Same", definition=scenario_definition())
    before = _revision(deployment)

    wf = update_workflow(deployment, wf.pk, name="Same", definition=scenario_definition())

    assert wf.version == 1
    assert _revision(deployment) == before


def test_active_workflow_edit_must_stay_valid(deployment, system_default, workflow_factory):
    wf = workflow_factory(activate=True)
    broken = scenario_definition()
    broken["edges"] = broken["edges"][1:]

    with pytest.raises(InvalidWorkflowDefinition):
        update_workflow(deployment, wf.pk, definition=broken)

    wf.refresh_from_db()
    assert wf.version == 1


def test_draft_edit_only_needs_structure(deployment, workflow_factory):
    wf = workflow_factory()
    incomplete = scenario_definition()
    incomplete["edges"] = incomplete["edges"][1:]

    wf = update_workflow(deployment, wf.pk, definition=incomplete)
    assert wf.version == 2

    dangling = scenario_definition()
    dangling["edges"][1]["target"] = "nowhere"
    with pytest.raises(InvalidWorkflowDefinition):
        update_workflow(deployment, wf.pk, definition=dangling)


def test_edit_persists_categorization_structured(deployment, workflow_factory):
    wf = workflow_factory()

    wf = update_workflow(
        deployment,
        wf.pk,
        working_statuses=[f"workflow-{wf.pk}-In Progress", "NEW"],
    )

    assert wf.working_statuses == [
        {"workflowId": str(wf.pk), "status": "IN_PROGRESS"},
        {"workflowId": None, "status": "NEW"},
    ]


# ---------------------------------------------------------------
# Creation / default flag
# ---------------------------------------------------------------

def test_create_requires_a_name(deployment):
    with pytest.raises(InvalidWorkflowDefinition):
        create_workflow(deployment, name="  ", definition=scenario_definition())
    assert not Workflow.objects.filter(deployment=deployment).exists()


def test_default_flag_brings_default_categorization(deployment):
    wf = create_workflow(deployment, name="Flagged", definition=scenario_definition(), is_default=True)

    assert wf.is_default
    assert [k["status"] for k in wf.working_statuses] == DEFAULT_WORKING_STATUSES
    assert [k["status"] for k in wf.done_statuses] == DEFAULT_DONE_STATUSES


def test_create_and_activate_in_one_step(deployment, system_default):
    wf = create_workflow(deployment, name="Live", definition=shortcut_definition(), activate=True)

    assert wf.status == ACTIVE
    assert _active_ids(deployment) == [wf.pk]


def test_set_as_default_moves_the_flag(deployment, system_default, workflow_factory):
    a = workflow_factory("A")
    b = workflow_factory("B")
    set_as_default(deployment, a.pk)

    set_as_default(deployment, b.pk)

    a.refresh_from_db()
    b.refresh_from_db()
    system_default.refresh_from_db()
    assert not a.is_default
    assert b.is_default
    assert system_default.is_default


# ---------------------------------------------------------------
# Status options
# ---------------------------------------------------------------

def test_status_options_cover_every_workflow(deployment, system_default, workflow_factory):
    wf = workflow_factory("Support")
    empty = workflow_factory("Empty", definition={"nodes": [], "edges": []})

    options = workflow_status_options(deployment)

    mine = [o for o in options if o["workflow_id"] == str(wf.pk)]
    assert [o["status"] for o in mine] == ["NEW", "OPEN", "CLOSED"]
    assert mine[0]["legacy_id"] == f"workflow-{wf.pk}-NEW"
    assert mine[0]["key"] == {"workflowId": str(wf.pk), "status": "NEW"}
    assert mine[0]["display_name"] == "Support: New"
    assert mine[0]["is_active_workflow"] is False

    fallback = [o["status"] for o in options if o["workflow_id"] == str(empty.pk)]
    assert fallback == list(SYSTEM_STATUSES)

    # system default first
    assert options[0]["workflow_id"] == str(system_default.pk)
    assert options[0]["is_active_workflow"] is True
