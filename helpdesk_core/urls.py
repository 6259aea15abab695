# helpdesk_core/urls.py

from django.urls import path

from .views import (
    ActiveWorkflowView,
    DashboardStatsView,
    StaffPerformanceView,
    TicketTransitionsView,
    TicketTransitionView,
    WorkflowActivateView,
    WorkflowDeactivateView,
    WorkflowDetailView,
    WorkflowListCreateView,
    WorkflowSetDefaultView,
    WorkflowStatusOptionsView,
)

urlpatterns = [
    # -------------------------------------------------
    # Workflow administration
    # -------------------------------------------------
    path("workflows/", WorkflowListCreateView.as_view(), name="workflow-list"),
    path("workflows/active/", ActiveWorkflowView.as_view(), name="workflow-active"),
    path("workflows/status-options/", WorkflowStatusOptionsView.as_view(), name="workflow-status-options"),
    path("workflows/<uuid:workflow_id>/", WorkflowDetailView.as_view(), name="workflow-detail"),
    path("workflows/<uuid:workflow_id>/activate/", WorkflowActivateView.as_view(), name="workflow-activate"),
    path("workflows/<uuid:workflow_id>/deactivate/", WorkflowDeactivateView.as_view(), name="workflow-deactivate"),
    path("workflows/<uuid:workflow_id>/set-default/", WorkflowSetDefaultView.as_view(), name="workflow-set-default"),

    # -------------------------------------------------
    # Ticket workflow runtime
    # -------------------------------------------------
    path("tickets/<int:pk>/transitions/", TicketTransitionsView.as_view(), name="ticket-transitions"),
    path("tickets/<int:pk>/transition/", TicketTransitionView.as_view(), name="ticket-transition"),

    # -------------------------------------------------
    # Dashboard
    # -------------------------------------------------
    path("dashboard/stats/", DashboardStatsView.as_view(), name="dashboard-stats"),
    path("dashboard/staff-performance/", StaffPerformanceView.as_view(), name="dashboard-staff-performance"),
]
