# helpdesk_core/services/workflow_admin.py
"""
Workflow administration and the single-active-workflow invariant.

Every mutation here:
  1. runs inside one transaction,
  2. locks the Deployment row first (serializes concurrent admins),
  3. bumps Deployment.workflow_revision,
  4. re-counts ACTIVE workflows before commit.

Views and tasks MUST go through these functions. Never flip
Workflow.status directly.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import F

from helpdesk_core.models import Deployment, Ticket, Workflow
from helpdesk_core.workflows.categorization import StatusKey, overlapping_keys, parse_status_keys
from helpdesk_core.workflows.defaults import (
    DEFAULT_DONE_STATUSES,
    DEFAULT_WORKING_STATUSES,
    SYSTEM_DEFAULT_DESCRIPTION,
    SYSTEM_DEFAULT_NAME,
    system_default_definition,
)
from helpdesk_core.workflows.errors import (
    InvalidWorkflowDefinition,
    InvariantViolation,
    WorkflowConflict,
    WorkflowForbidden,
)
from helpdesk_core.workflows.graph import validate_definition
from helpdesk_core.workflows.rules import SYSTEM_STATUSES

logger = logging.getLogger(__name__)

ACTIVE = Workflow.Status.ACTIVE
INACTIVE = Workflow.Status.INACTIVE
DRAFT = Workflow.Status.DRAFT

_SETTINGS_DEFAULTS = {
    "DEFAULT_WORKING_STATUSES": DEFAULT_WORKING_STATUSES,
    "DEFAULT_DONE_STATUSES": DEFAULT_DONE_STATUSES,
    "SYSTEM_DEFAULT_NAME": SYSTEM_DEFAULT_NAME,
}


def workflow_settings() -> Dict[str, Any]:
    conf = dict(_SETTINGS_DEFAULTS)
    conf.update(getattr(settings, "HELPDESK_WORKFLOWS", None) or {})
    return conf


# ===============================================================
# Helpers
# ===============================================================

def _lock_deployment(deployment) -> Deployment:
    deployment_id = getattr(deployment, "pk", deployment)
    return Deployment.objects.select_for_update().get(pk=deployment_id)


def _bump_revision(deployment: Deployment) -> None:
    Deployment.objects.filter(pk=deployment.pk).update(
        workflow_revision=F("workflow_revision") + 1
    )


def _assert_single_active(deployment: Deployment, operation: str) -> None:
    count = Workflow.objects.filter(deployment=deployment, status=ACTIVE).count()
    if count != 1:
        logger.critical(
            "Workflow invariant violated after %s: deployment=%s active=%s",
            operation,
            deployment.code,
            count,
        )
        raise InvariantViolation(
            f"Deployment {deployment.code} has {count} active workflows after {operation}."
        )


def _get_workflow(deployment: Deployment, workflow_id, *, for_update: bool = False) -> Workflow:
    qs = Workflow.objects.filter(deployment=deployment)
    if for_update:
        qs = qs.select_for_update()
    return qs.get(pk=workflow_id)


def _known_ids(deployment: Deployment) -> List[str]:
    return [str(pk) for pk in Workflow.objects.filter(deployment=deployment).values_list("pk", flat=True)]


def _store_keys(values: Optional[Iterable], known_ids: Iterable[str]) -> List[Dict[str, Any]]:
    """Parse any accepted categorization shape into the persisted form."""
    return [k.to_dict() for k in parse_status_keys(values or [], known_ids)]


def _check_categorization(workflow: Workflow, known_ids: Iterable[str]) -> None:
    known = list(known_ids) + [str(workflow.pk)]
    both = overlapping_keys(
        parse_status_keys(workflow.working_statuses, known),
        parse_status_keys(workflow.done_statuses, known),
        workflow.pk,
    )
    if both:
        raise InvalidWorkflowDefinition(
            "Statuses cannot be both working and done: "
            + ", ".join(k.legacy_id for k in both)
        )


def _validate(workflow: Workflow, *, strict: bool) -> None:
    validate_definition(workflow.definition, strict=strict)


def _deactivate_others(deployment: Deployment, keep: Workflow) -> int:
    return (
        Workflow.objects.filter(deployment=deployment, status=ACTIVE)
        .exclude(pk=keep.pk)
        .update(status=INACTIVE)
    )


def _force_active(deployment: Deployment, workflow: Workflow) -> None:
    # Others go first; the partial unique index allows one ACTIVE row.
    _deactivate_others(deployment, workflow)
    Workflow.objects.filter(pk=workflow.pk).update(status=ACTIVE)
    workflow.status = ACTIVE


def _create_system_default(deployment: Deployment, *, created_by=None) -> Workflow:
    conf = workflow_settings()
    wf = Workflow(
        deployment=deployment,
        name=conf["SYSTEM_DEFAULT_NAME"],
        description=SYSTEM_DEFAULT_DESCRIPTION,
        definition=system_default_definition(),
        status=INACTIVE,
        is_default=True,
        is_system_default=True,
        created_by=created_by,
    )
    wf.working_statuses = _store_keys(conf["DEFAULT_WORKING_STATUSES"], ())
    wf.done_statuses = _store_keys(conf["DEFAULT_DONE_STATUSES"], ())
    wf.save()
    return wf


def _heal(deployment: Deployment) -> Optional[Workflow]:
    """
    Repair the deployment in place (caller holds the lock).
    Returns the system default, or None if nothing had to change.
    """
    changed = False
    system = Workflow.objects.filter(deployment=deployment, is_system_default=True).first()

    if system is None:
        oldest = Workflow.objects.filter(deployment=deployment).order_by("created_at", "pk").first()
        if oldest is None:
            system = _create_system_default(deployment)
            logger.warning("Created system default workflow for deployment %s", deployment.code)
        else:
            Workflow.objects.filter(pk=oldest.pk).update(is_system_default=True, is_default=True)
            oldest.is_system_default = True
            oldest.is_default = True
            system = oldest
            logger.warning(
                "Promoted workflow %s (%s) to system default for deployment %s",
                oldest.pk,
                oldest.name,
                deployment.code,
            )
        _force_active(deployment, system)
        changed = True

    elif not Workflow.objects.filter(deployment=deployment, status=ACTIVE).exists():
        _force_active(deployment, system)
        logger.warning(
            "No active workflow in deployment %s; reactivated system default %s",
            deployment.code,
            system.pk,
        )
        changed = True

    return system if changed else None


def _restore_active(deployment: Deployment) -> None:
    """After a deactivate/delete: if nothing is ACTIVE, bring back the system default."""
    if Workflow.objects.filter(deployment=deployment, status=ACTIVE).exists():
        return
    system = Workflow.objects.filter(deployment=deployment, is_system_default=True).first()
    if system is None:
        _heal(deployment)
        return
    _force_active(deployment, system)
    logger.info("Reactivated system default workflow %s for deployment %s", system.pk, deployment.code)


# ===============================================================
# Reads
# ===============================================================

def active_workflow(deployment, *, heal: bool = True) -> Optional[Workflow]:
    """
    The deployment's ACTIVE workflow. With ``heal`` a deployment that has
    none is repaired first (see ``ensure_system_default``).
    """
    wf = Workflow.objects.filter(deployment=deployment, status=ACTIVE).first()
    if wf is None and heal:
        ensure_system_default(deployment)
        wf = Workflow.objects.filter(deployment=deployment, status=ACTIVE).first()
    return wf


def workflow_status_options(deployment) -> List[Dict[str, Any]]:
    """
    Every selectable (workflow, status) pair for categorization editors.
    """
    options: List[Dict[str, Any]] = []
    workflows = list(Workflow.objects.filter(deployment=deployment).order_by("-is_system_default", "created_at"))
    known = [str(w.pk) for w in workflows]

    for wf in workflows:
        wid = str(wf.pk)
        graph = wf.graph
        labels: Dict[str, str] = {}
        for state in graph.states:
            if not state.is_initial:
                labels.setdefault(state.status, state.label or state.id)

        statuses = graph.statuses() or list(SYSTEM_STATUSES)

        # Categorization entries pointing at statuses the graph no longer has.
        for key in parse_status_keys(list(wf.working_statuses or []) + list(wf.done_statuses or []), known):
            if key.workflow_id == wid and key.status not in statuses:
                statuses.append(key.status)

        for status in statuses:
            key = StatusKey(workflow_id=wid, status=status)
            label = labels.get(status) or status.replace("_", " ").title()
            options.append({
                "key": key.to_dict(),
                "legacy_id": key.legacy_id,
                "workflow_id": wid,
                "workflow_name": wf.name,
                "status": status,
                "display_name": f"{wf.name}: {label}",
                "is_active_workflow": wf.status == ACTIVE,
            })

    return options


# ===============================================================
# Writes
# ===============================================================

def create_workflow(
    deployment,
    *,
    name: str,
    description: str = "",
    definition: Optional[dict] = None,
    working_statuses: Optional[Iterable] = None,
    done_statuses: Optional[Iterable] = None,
    is_default: bool = False,
    activate: bool = False,
    created_by=None,
) -> Workflow:
    """
    Create a DRAFT workflow (optionally activating it in the same unit of work).

    Drafts only need a structurally sound graph; full validation happens on
    activation.
    """
    conf = workflow_settings()

    with transaction.atomic():
        dep = _lock_deployment(deployment)
        known = _known_ids(dep)

        wf = Workflow(
            deployment=dep,
            name=(name or "").strip(),
            description=description or "",
            definition=definition if definition is not None else {"nodes": [], "edges": []},
            status=DRAFT,
            is_default=bool(is_default),
            created_by=created_by,
        )
        if not wf.name:
            raise InvalidWorkflowDefinition("Workflow name is required")

        known.append(str(wf.pk))
        working = working_statuses
        done = done_statuses
        if is_default and not working and not done:
            working = conf["DEFAULT_WORKING_STATUSES"]
            done = conf["DEFAULT_DONE_STATUSES"]
        wf.working_statuses = _store_keys(working, known)
        wf.done_statuses = _store_keys(done, known)

        _validate(wf, strict=activate)
        _check_categorization(wf, known)
        wf.save()

        if is_default:
            _unset_other_defaults(dep, wf)

        logger.info("Created workflow %s (%s) in deployment %s", wf.pk, wf.name, dep.code)

        if activate:
            return activate_workflow(dep, wf.pk)

    return wf


def update_workflow(
    deployment,
    workflow_id,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
    definition: Optional[dict] = None,
    working_statuses: Optional[Iterable] = None,
    done_statuses: Optional[Iterable] = None,
) -> Workflow:
    """
    Edit a workflow. The system default is never editable. Any persisted
    change bumps ``version`` by exactly one. Tickets already bound keep
    their snapshot.
    """
    with transaction.atomic():
        dep = _lock_deployment(deployment)
        wf = _get_workflow(dep, workflow_id, for_update=True)

        if wf.is_system_default:
            raise WorkflowForbidden("The system default workflow cannot be edited.")

        known = _known_ids(dep)
        changed: List[str] = []

        if name is not None and name.strip() != wf.name:
            if not name.strip():
                raise InvalidWorkflowDefinition("Workflow name is required")
            wf.name = name.strip()
            changed.append("name")
        if description is not None and description != wf.description:
            wf.description = description
            changed.append("description")
        if definition is not None and definition != wf.definition:
            wf.definition = definition
            changed.append("definition")
        if working_statuses is not None:
            stored = _store_keys(working_statuses, known)
            if stored != wf.working_statuses:
                wf.working_statuses = stored
                changed.append("working_statuses")
        if done_statuses is not None:
            stored = _store_keys(done_statuses, known)
            if stored != wf.done_statuses:
                wf.done_statuses = stored
                changed.append("done_statuses")

        if not changed:
            return wf

        # An ACTIVE workflow must stay fully valid.
        _validate(wf, strict=wf.status == ACTIVE)
        _check_categorization(wf, known)

        wf.version = F("version") + 1
        wf.save(update_fields=changed + ["version", "updated_at"])
        wf.refresh_from_db()
        _bump_revision(dep)

        logger.info(
            "Updated workflow %s to version %s (%s)",
            wf.pk,
            wf.version,
            ", ".join(changed),
        )

    return wf


@transaction.atomic
def activate_workflow(
    deployment,
    workflow_id,
    working_statuses: Optional[Iterable] = None,
    done_statuses: Optional[Iterable] = None,
) -> Workflow:
    """
    DRAFT|INACTIVE -> ACTIVE; every other workflow of the deployment is
    forced INACTIVE in the same transaction. Supplied categorization
    overwrites the workflow's; omitted lists are kept.
    """
    dep = _lock_deployment(deployment)
    wf = _get_workflow(dep, workflow_id, for_update=True)

    if wf.is_system_default and (working_statuses is not None or done_statuses is not None):
        raise WorkflowForbidden("The system default workflow's categorization cannot be edited.")

    known = _known_ids(dep)
    update_fields = ["status", "updated_at"]
    if working_statuses is not None:
        wf.working_statuses = _store_keys(working_statuses, known)
        update_fields.append("working_statuses")
    if done_statuses is not None:
        wf.done_statuses = _store_keys(done_statuses, known)
        update_fields.append("done_statuses")

    _validate(wf, strict=True)
    _check_categorization(wf, known)

    previous = list(
        Workflow.objects.filter(deployment=dep, status=ACTIVE)
        .exclude(pk=wf.pk)
        .values_list("pk", flat=True)
    )
    _deactivate_others(dep, wf)

    wf.status = ACTIVE
    wf.save(update_fields=update_fields)

    _bump_revision(dep)
    _assert_single_active(dep, "activate")

    logger.info(
        "Activated workflow %s (%s) in deployment %s; deactivated %s",
        wf.pk,
        wf.name,
        dep.code,
        [str(pk) for pk in previous] or "none",
    )
    return wf


@transaction.atomic
def deactivate_workflow(deployment, workflow_id) -> Workflow:
    """
    ACTIVE -> INACTIVE. Deactivating the only ACTIVE workflow reactivates
    the system default. The system default itself cannot be deactivated;
    activate another workflow instead.
    """
    dep = _lock_deployment(deployment)
    wf = _get_workflow(dep, workflow_id, for_update=True)

    if wf.is_system_default:
        raise WorkflowForbidden(
            "The system default workflow cannot be deactivated. Activate another workflow instead."
        )

    wf.status = INACTIVE
    wf.save(update_fields=["status", "updated_at"])
    _restore_active(dep)

    _bump_revision(dep)
    _assert_single_active(dep, "deactivate")

    logger.info("Deactivated workflow %s (%s) in deployment %s", wf.pk, wf.name, dep.code)
    return wf


@transaction.atomic
def delete_workflow(deployment, workflow_id) -> None:
    """
    Hard delete. Refused for the system default and for any workflow a
    ticket is bound to. Deleting the ACTIVE workflow reactivates the
    system default.
    """
    dep = _lock_deployment(deployment)
    wf = _get_workflow(dep, workflow_id, for_update=True)

    if wf.is_system_default:
        raise WorkflowConflict("The system default workflow cannot be deleted.")

    referenced = Ticket.objects.filter(workflow=wf).count()
    if referenced:
        raise WorkflowConflict(
            f"Workflow '{wf.name}' is used by {referenced} ticket(s) and cannot be deleted."
        )

    pk, name = wf.pk, wf.name
    wf.delete()
    _restore_active(dep)

    _bump_revision(dep)
    _assert_single_active(dep, "delete")

    logger.info("Deleted workflow %s (%s) from deployment %s", pk, name, dep.code)


def _unset_other_defaults(deployment: Deployment, keep: Workflow) -> None:
    (
        Workflow.objects.filter(deployment=deployment, is_default=True)
        .exclude(pk=keep.pk)
        .exclude(is_system_default=True)
        .update(is_default=False)
    )


@transaction.atomic
def set_as_default(deployment, workflow_id) -> Workflow:
    dep = _lock_deployment(deployment)
    wf = _get_workflow(dep, workflow_id, for_update=True)

    _unset_other_defaults(dep, wf)
    if not wf.is_default:
        wf.is_default = True
        wf.save(update_fields=["is_default", "updated_at"])

    _bump_revision(dep)
    logger.info("Workflow %s (%s) is now the default in deployment %s", wf.pk, wf.name, dep.code)
    return wf


@transaction.atomic
def ensure_system_default(deployment) -> Workflow:
    """
    Idempotent self-healing:
      - no workflows at all      -> create the built-in system default, ACTIVE
      - no system default        -> promote the oldest workflow, force it ACTIVE
      - nothing ACTIVE           -> reactivate the system default
    """
    dep = _lock_deployment(deployment)
    repaired = _heal(dep)
    if repaired is not None:
        _bump_revision(dep)
    _assert_single_active(dep, "ensure_system_default")
    return Workflow.objects.get(deployment=dep, is_system_default=True)


def heal_all_deployments() -> int:
    """Run ``ensure_system_default`` for every active deployment. Returns the count checked."""
    count = 0
    for dep in Deployment.objects.filter(is_active=True).order_by("pk"):
        ensure_system_default(dep)
        count += 1
    return count
