from django.core.management.base import BaseCommand, CommandError

from helpdesk_core.models import Deployment
from helpdesk_core.services.workflow_admin import ensure_system_default


class Command(BaseCommand):
    help = "Create or repair the system default workflow and the single-active-workflow invariant"

    def add_arguments(self, parser):
        parser.add_argument(
            "--deployment",
            help="Deployment code (default: every active deployment)",
        )

    def handle(self, *args, **options):
        code = options.get("deployment")
        qs = Deployment.objects.filter(is_active=True).order_by("code")
        if code:
            qs = Deployment.objects.filter(code=code)
            if not qs.exists():
                raise CommandError(f"Unknown deployment '{code}'")

        for dep in qs:
            wf = ensure_system_default(dep)
            active = dep.workflows.get(status="ACTIVE")
            self.stdout.write(
                f"{dep.code}: system default '{wf.name}' ({wf.pk}), active '{active.name}'"
            )
