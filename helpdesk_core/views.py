# helpdesk_core/views.py
from __future__ import annotations

from contextlib import contextmanager
from typing import Set

from django.shortcuts import get_object_or_404

from rest_framework import status as http_status
from rest_framework.exceptions import (
    APIException,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema

from helpdesk_core.filters import WorkflowFilter
from helpdesk_core.models import Deployment, Ticket, UserRole, Workflow
from helpdesk_core.serializers import (
    TicketSerializer,
    TicketTransitionSerializer,
    WorkflowActivateSerializer,
    WorkflowExecutionSerializer,
    WorkflowListSerializer,
    WorkflowSerializer,
    WorkflowUpdateSerializer,
    WorkflowWriteSerializer,
    present,
)
from helpdesk_core.services import dashboard, workflow_admin
from helpdesk_core.services.roles import primary_role, resolve_actor_roles
from helpdesk_core.services.ticket_workflow import (
    allowed_targets_for_ticket,
    available_transitions_for_ticket,
    resolve_ticket_snapshot,
    transition_ticket,
)
from helpdesk_core.workflows.errors import (
    ConditionUnsatisfied,
    InvalidWorkflowDefinition,
    NoActiveWorkflow,
    NoSuchTransition,
    RoleNotAllowed,
    WorkflowConflict,
    WorkflowForbidden,
)
from helpdesk_core.workflows.rules import ADMIN, END_USER, SUPPORT_MANAGER

DEPLOYMENT_HEADER = "HTTP_X_DEPLOYMENT"
MANAGER_ROLES = {ADMIN, SUPPORT_MANAGER}

DEPLOYMENT_PARAM = OpenApiParameter(
    name="deployment",
    description="Deployment id or code (alternatively the X-Deployment header).",
    required=False,
    type=str,
)


# ===============================================================
# Error mapping
# ===============================================================

class Conflict(APIException):
    status_code = http_status.HTTP_409_CONFLICT
    default_detail = "The request conflicts with the current state."
    default_code = "conflict"


@contextmanager
def engine_errors():
    """
    Translate workflow engine errors into DRF responses.
    InvariantViolation propagates as a server error.
    """
    try:
        yield
    except (NoSuchTransition, ConditionUnsatisfied) as exc:
        body = {"detail": exc.message, "reason": exc.reason}
        if isinstance(exc, ConditionUnsatisfied):
            body["conditions"] = exc.conditions
        raise ValidationError(body)
    except RoleNotAllowed as exc:
        raise PermissionDenied({"detail": exc.message, "reason": exc.reason})
    except InvalidWorkflowDefinition as exc:
        raise ValidationError({"definition": exc.errors})
    except WorkflowForbidden as exc:
        raise PermissionDenied(str(exc))
    except (WorkflowConflict, NoActiveWorkflow) as exc:
        raise Conflict(str(exc))
    except (Workflow.DoesNotExist, Ticket.DoesNotExist):
        raise NotFound("Not found.")


# ===============================================================
# Helpers
# ===============================================================

def _resolve_deployment(request) -> Deployment:
    """
    X-Deployment header, then ?deployment=, then the caller's only
    deployment. Accepts a numeric id or a deployment code.
    """
    user = request.user
    raw = request.META.get(DEPLOYMENT_HEADER) or request.query_params.get("deployment")

    qs = Deployment.objects.filter(is_active=True)
    if raw:
        raw = str(raw).strip()
        dep = qs.filter(pk=int(raw)).first() if raw.isdigit() else None
        if dep is None:
            dep = qs.filter(code=raw).first()
        if dep is None:
            raise NotFound("Unknown deployment.")
    else:
        if not user.is_superuser:
            qs = qs.filter(user_roles__user=user).distinct()
        candidates = list(qs[:2])
        if len(candidates) != 1:
            raise ValidationError(
                {"deployment": "Specify the deployment with the X-Deployment header or ?deployment=."}
            )
        dep = candidates[0]

    if not user.is_superuser and not UserRole.objects.filter(user=user, deployment=dep).exists():
        raise PermissionDenied("You do not have access to this deployment.")
    return dep


def _require_manager(user, deployment) -> Set[str]:
    roles = resolve_actor_roles(user, deployment)
    if not roles & MANAGER_ROLES:
        raise PermissionDenied("Only administrators and support managers can manage workflows.")
    return roles


def _get_ticket_for_user(user, pk: int) -> Ticket:
    ticket = get_object_or_404(Ticket.objects.select_related("deployment"), pk=pk)
    roles = resolve_actor_roles(user, ticket.deployment)
    if not roles:
        raise PermissionDenied("You do not have access to this deployment.")
    if primary_role(roles) == END_USER and ticket.requester_id != user.pk:
        raise PermissionDenied("You can only access your own tickets.")
    return ticket


# ===============================================================
# Workflows
# ===============================================================

class WorkflowListCreateView(APIView):
    """
    GET  /api/helpdesk/workflows/
    POST /api/helpdesk/workflows/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(parameters=[DEPLOYMENT_PARAM], responses={200: WorkflowListSerializer(many=True)})
    def get(self, request):
        deployment = _resolve_deployment(request)
        qs = Workflow.objects.filter(deployment=deployment).order_by("-is_system_default", "created_at")
        qs = WorkflowFilter(request.query_params, queryset=qs).qs
        return Response(WorkflowListSerializer(qs, many=True).data)

    @extend_schema(
        parameters=[DEPLOYMENT_PARAM],
        request=WorkflowWriteSerializer,
        responses={201: WorkflowSerializer},
    )
    def post(self, request):
        deployment = _resolve_deployment(request)
        _require_manager(request.user, deployment)

        ser = WorkflowWriteSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        with engine_errors():
            wf = workflow_admin.create_workflow(
                deployment,
                name=data["name"],
                description=data.get("description", ""),
                definition=data.get("definition"),
                working_statuses=data.get("working_statuses"),
                done_statuses=data.get("done_statuses"),
                is_default=data.get("is_default", False),
                activate=data.get("activate", False),
                created_by=request.user,
            )

        return Response(WorkflowSerializer(wf).data, status=http_status.HTTP_201_CREATED)


class WorkflowDetailView(APIView):
    """
    GET    /api/helpdesk/workflows/<id>/
    PATCH  /api/helpdesk/workflows/<id>/
    DELETE /api/helpdesk/workflows/<id>/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(parameters=[DEPLOYMENT_PARAM], responses={200: WorkflowSerializer})
    def get(self, request, workflow_id):
        deployment = _resolve_deployment(request)
        wf = get_object_or_404(Workflow, deployment=deployment, pk=workflow_id)
        return Response(WorkflowSerializer(wf).data)

    @extend_schema(
        parameters=[DEPLOYMENT_PARAM],
        request=WorkflowUpdateSerializer,
        responses={200: WorkflowSerializer, 403: OpenApiResponse(description="System default workflow")},
    )
    def patch(self, request, workflow_id):
        deployment = _resolve_deployment(request)
        _require_manager(request.user, deployment)

        ser = WorkflowUpdateSerializer(data=request.data, partial=True)
        ser.is_valid(raise_exception=True)
        changes = present(
            ser.validated_data,
            "name",
            "description",
            "definition",
            "working_statuses",
            "done_statuses",
        )

        with engine_errors():
            wf = workflow_admin.update_workflow(deployment, workflow_id, **changes)

        return Response(WorkflowSerializer(wf).data)

    @extend_schema(
        parameters=[DEPLOYMENT_PARAM],
        responses={204: None, 409: OpenApiResponse(description="Workflow in use or system default")},
    )
    def delete(self, request, workflow_id):
        deployment = _resolve_deployment(request)
        _require_manager(request.user, deployment)

        with engine_errors():
            workflow_admin.delete_workflow(deployment, workflow_id)

        return Response(status=http_status.HTTP_204_NO_CONTENT)


class WorkflowActivateView(APIView):
    """POST /api/helpdesk/workflows/<id>/activate/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        parameters=[DEPLOYMENT_PARAM],
        request=WorkflowActivateSerializer,
        responses={200: WorkflowSerializer},
    )
    def post(self, request, workflow_id):
        deployment = _resolve_deployment(request)
        _require_manager(request.user, deployment)

        ser = WorkflowActivateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        with engine_errors():
            wf = workflow_admin.activate_workflow(
                deployment,
                workflow_id,
                working_statuses=ser.validated_data.get("working_statuses"),
                done_statuses=ser.validated_data.get("done_statuses"),
            )

        return Response(WorkflowSerializer(wf).data)


class WorkflowDeactivateView(APIView):
    """POST /api/helpdesk/workflows/<id>/deactivate/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(parameters=[DEPLOYMENT_PARAM], request=None, responses={200: WorkflowSerializer})
    def post(self, request, workflow_id):
        deployment = _resolve_deployment(request)
        _require_manager(request.user, deployment)

        with engine_errors():
            wf = workflow_admin.deactivate_workflow(deployment, workflow_id)

        return Response(WorkflowSerializer(wf).data)


class WorkflowSetDefaultView(APIView):
    """POST /api/helpdesk/workflows/<id>/set-default/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(parameters=[DEPLOYMENT_PARAM], request=None, responses={200: WorkflowSerializer})
    def post(self, request, workflow_id):
        deployment = _resolve_deployment(request)
        _require_manager(request.user, deployment)

        with engine_errors():
            wf = workflow_admin.set_as_default(deployment, workflow_id)

        return Response(WorkflowSerializer(wf).data)


class ActiveWorkflowView(APIView):
    """GET /api/helpdesk/workflows/active/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(parameters=[DEPLOYMENT_PARAM], responses={200: WorkflowSerializer})
    def get(self, request):
        deployment = _resolve_deployment(request)
        with engine_errors():
            wf = workflow_admin.active_workflow(deployment)
        if wf is None:
            raise NotFound("No active workflow.")
        return Response(WorkflowSerializer(wf).data)


class WorkflowStatusOptionsView(APIView):
    """GET /api/helpdesk/workflows/status-options/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(parameters=[DEPLOYMENT_PARAM], responses={200: OpenApiResponse(description="Status options")})
    def get(self, request):
        deployment = _resolve_deployment(request)
        return Response({"results": workflow_admin.workflow_status_options(deployment)})


# ===============================================================
# Ticket workflow runtime
# ===============================================================

class TicketTransitionsView(APIView):
    """
    GET /api/helpdesk/tickets/<pk>/transitions/

    Outgoing transitions of the ticket's current status under its bound
    workflow, with ``can_execute`` for the caller's roles and the
    ``allowed_targets`` those roles can reach.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(responses={200: OpenApiResponse(description="Available transitions")})
    def get(self, request, pk: int):
        ticket = _get_ticket_for_user(request.user, pk)
        roles = resolve_actor_roles(request.user, ticket.deployment)

        with engine_errors():
            snapshot = resolve_ticket_snapshot(ticket)
            transitions = available_transitions_for_ticket(ticket, roles=roles)
            allowed_targets = allowed_targets_for_ticket(ticket, roles=roles)

        return Response(
            {
                "ticket": ticket.pk,
                "status": ticket.status,
                "workflow_id": snapshot.workflow_id,
                "workflow_version": snapshot.workflow_version,
                "roles": sorted(roles),
                "transitions": transitions,
                "allowed_targets": allowed_targets,
            }
        )


class TicketTransitionView(APIView):
    """POST /api/helpdesk/tickets/<pk>/transition/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        request=TicketTransitionSerializer,
        responses={
            200: OpenApiResponse(description="Transition applied"),
            400: OpenApiResponse(description="No such transition or unmet condition"),
            403: OpenApiResponse(description="Role not allowed"),
        },
    )
    def post(self, request, pk: int):
        ticket = _get_ticket_for_user(request.user, pk)

        ser = TicketTransitionSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        from_status = ticket.status
        with engine_errors():
            ticket = transition_ticket(
                ticket,
                ser.validated_data["status"],
                actor=request.user,
                comment=ser.validated_data.get("comment", ""),
            )

        execution = ticket.workflow_executions.first()
        return Response(
            {
                "from": from_status,
                "to": ticket.status,
                "ticket": TicketSerializer(ticket).data,
                "execution": WorkflowExecutionSerializer(execution).data if execution else None,
            }
        )


# ===============================================================
# Dashboard
# ===============================================================

class DashboardStatsView(APIView):
    """GET /api/helpdesk/dashboard/stats/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(parameters=[DEPLOYMENT_PARAM], responses={200: OpenApiResponse(description="Bucket counts")})
    def get(self, request):
        deployment = _resolve_deployment(request)
        return Response(dashboard.dashboard_stats(deployment, request.user))


class StaffPerformanceView(APIView):
    """GET /api/helpdesk/dashboard/staff-performance/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(parameters=[DEPLOYMENT_PARAM], responses={200: OpenApiResponse(description="Per-assignee stats")})
    def get(self, request):
        deployment = _resolve_deployment(request)
        _require_manager(request.user, deployment)
        return Response({"results": dashboard.staff_performance(deployment)})
