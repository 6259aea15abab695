# helpdesk_core/serializers.py
from __future__ import annotations

from typing import Any, Dict

from rest_framework import serializers

from helpdesk_core.models import Ticket, Workflow, WorkflowExecution


# ===============================================================
# Workflows
# ===============================================================

class WorkflowSerializer(serializers.ModelSerializer):
    class Meta:
        model = Workflow
        fields = [
            "id",
            "name",
            "description",
            "version",
            "status",
            "is_default",
            "is_system_default",
            "definition",
            "working_statuses",
            "done_statuses",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class WorkflowListSerializer(serializers.ModelSerializer):
    class Meta:
        model = Workflow
        fields = [
            "id",
            "name",
            "description",
            "version",
            "status",
            "is_default",
            "is_system_default",
            "updated_at",
        ]
        read_only_fields = fields


def _validate_definition_shape(value):
    if not isinstance(value, dict):
        raise serializers.ValidationError("Definition must be an object with 'nodes' and 'edges'.")
    for key in ("nodes", "edges"):
        if key in value and not isinstance(value[key], list):
            raise serializers.ValidationError(f"'{key}' must be a list.")
    return value


class CategorizationField(serializers.ListField):
    """Accepts ``{workflowId, status}`` objects and legacy strings alike."""

    child = serializers.JSONField()

    def __init__(self, **kwargs):
        kwargs.setdefault("required", False)
        kwargs.setdefault("allow_null", True)
        super().__init__(**kwargs)


class WorkflowWriteSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    definition = serializers.JSONField(required=False)
    working_statuses = CategorizationField()
    done_statuses = CategorizationField()
    is_default = serializers.BooleanField(required=False, default=False)
    activate = serializers.BooleanField(required=False, default=False)

    def validate_definition(self, value):
        return _validate_definition_shape(value)


class WorkflowUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    definition = serializers.JSONField(required=False)
    working_statuses = CategorizationField()
    done_statuses = CategorizationField()

    def validate_definition(self, value):
        return _validate_definition_shape(value)


class WorkflowActivateSerializer(serializers.Serializer):
    working_statuses = CategorizationField()
    done_statuses = CategorizationField()


# ===============================================================
# Tickets
# ===============================================================

class TicketSerializer(serializers.ModelSerializer):
    class Meta:
        model = Ticket
        fields = [
            "id",
            "title",
            "status",
            "priority",
            "requester",
            "assigned_to",
            "due_date",
            "closed_at",
            "workflow",
            "workflow_version",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class TicketTransitionSerializer(serializers.Serializer):
    status = serializers.CharField(max_length=64)
    comment = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_status(self, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise serializers.ValidationError("Target status is required.")
        return value


class WorkflowExecutionSerializer(serializers.ModelSerializer):
    class Meta:
        model = WorkflowExecution
        fields = [
            "id",
            "transition_id",
            "from_status",
            "to_status",
            "actions",
            "workflow",
            "workflow_version",
            "executed_by",
            "comment",
            "created_at",
        ]
        read_only_fields = fields


def present(data: Dict[str, Any], *fields: str) -> Dict[str, Any]:
    """Only the keys the client actually sent (PATCH semantics)."""
    return {f: data[f] for f in fields if f in data}
