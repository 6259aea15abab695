# helpdesk_core/admin.py

from django.contrib import admin, messages

from .models import Deployment, Ticket, UserRole, Workflow, WorkflowExecution
from .services import workflow_admin
from .workflows.errors import WorkflowError


# =============================================================
# Deployments & roles
# =============================================================

@admin.register(Deployment)
class DeploymentAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "is_active", "workflow_revision", "created_at")
    search_fields = ("code", "name")
    readonly_fields = ("workflow_revision",)
    actions = ["ensure_default_workflow"]

    def ensure_default_workflow(self, request, queryset):
        for dep in queryset:
            wf = workflow_admin.ensure_system_default(dep)
            self.message_user(request, f"{dep.code}: system default is '{wf.name}'.", level=messages.SUCCESS)

    ensure_default_workflow.short_description = "Ensure system default workflow"


@admin.register(UserRole)
class UserRoleAdmin(admin.ModelAdmin):
    list_display = ("user", "deployment", "role", "created_at")
    list_filter = ("deployment", "role")
    search_fields = ("user__username",)


# =============================================================
# Workflows (status changes only through the activation manager)
# =============================================================

@admin.register(Workflow)
class WorkflowAdmin(admin.ModelAdmin):
    list_display = (
        "name",
        "deployment",
        "status",
        "version",
        "is_default",
        "is_system_default",
        "updated_at",
    )
    list_filter = ("deployment", "status", "is_system_default")
    search_fields = ("name",)
    actions = ["activate_selected", "deactivate_selected"]

    def _run(self, request, queryset, operation, verb):
        for wf in queryset:
            try:
                operation(wf.deployment, wf.pk)
            except WorkflowError as exc:
                self.message_user(request, f"{wf.name}: {exc}", level=messages.ERROR)
            else:
                self.message_user(request, f"{verb} {wf.name}.", level=messages.SUCCESS)

    def activate_selected(self, request, queryset):
        self._run(request, queryset, workflow_admin.activate_workflow, "Activated")

    activate_selected.short_description = "Activate selected workflow"

    def deactivate_selected(self, request, queryset):
        self._run(request, queryset, workflow_admin.deactivate_workflow, "Deactivated")

    deactivate_selected.short_description = "Deactivate selected workflows"

    # Read-only here; edits go through the workflow API.
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


# =============================================================
# Tickets
# =============================================================

@admin.register(Ticket)
class TicketAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "deployment", "status", "priority", "assigned_to", "workflow", "created_at")
    list_filter = ("deployment", "status", "priority")
    search_fields = ("title", "requester__username", "assigned_to__username")
    readonly_fields = ("status", "workflow", "workflow_snapshot", "workflow_version", "closed_at", "resolution_seconds")


# =============================================================
# Workflow executions (READ-ONLY AUDIT LOG)
# =============================================================

@admin.register(WorkflowExecution)
class WorkflowExecutionAdmin(admin.ModelAdmin):
    list_display = ("ticket", "from_status", "to_status", "transition_id", "executed_by", "created_at")
    list_filter = ("from_status", "to_status")
    search_fields = ("ticket__title", "executed_by__username")
    ordering = ("-created_at",)

    readonly_fields = [f.name for f in WorkflowExecution._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
