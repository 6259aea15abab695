# helpdesk_core/migrations/0002_bootstrap_system_default_workflows.py

from django.db import migrations

from helpdesk_core.workflows.defaults import (
    DEFAULT_DONE_STATUSES,
    DEFAULT_WORKING_STATUSES,
    SYSTEM_DEFAULT_DESCRIPTION,
    SYSTEM_DEFAULT_NAME,
    system_default_definition,
)


def bootstrap_system_default_workflows(apps, schema_editor):
    """
    Ensure every Deployment has a system default workflow and exactly one
    ACTIVE workflow.

    Safe, idempotent, and non-destructive.
    """

    Deployment = apps.get_model("helpdesk_core", "Deployment")
    Workflow = apps.get_model("helpdesk_core", "Workflow")

    for deployment in Deployment.objects.all():
        workflows = Workflow.objects.filter(deployment=deployment)

        system = workflows.filter(is_system_default=True).first()
        if system is None:
            system = Workflow.objects.create(
                deployment=deployment,
                name=SYSTEM_DEFAULT_NAME,
                description=SYSTEM_DEFAULT_DESCRIPTION,
                definition=system_default_definition(),
                working_statuses=[{"workflowId": None, "status": s} for s in DEFAULT_WORKING_STATUSES],
                done_statuses=[{"workflowId": None, "status": s} for s in DEFAULT_DONE_STATUSES],
                status="INACTIVE",
                is_default=not workflows.filter(is_default=True).exists(),
                is_system_default=True,
            )

        if not workflows.filter(status="ACTIVE").exists():
            Workflow.objects.filter(pk=system.pk).update(status="ACTIVE")


class Migration(migrations.Migration):

    dependencies = [
        ("helpdesk_core", "0001_initial"),
    ]

    operations = [
        migrations.RunPython(
            bootstrap_system_default_workflows,
            reverse_code=migrations.RunPython.noop,
        ),
    ]
