# helpdesk_core/filters.py
import django_filters as df
from rest_framework.exceptions import ValidationError

from .models import Workflow


class WorkflowFilter(df.FilterSet):
    status = df.CharFilter(method="filter_status")
    name = df.CharFilter(field_name="name", lookup_expr="icontains")

    class Meta:
        model = Workflow
        fields = ["status", "name", "is_default", "is_system_default"]

    def filter_status(self, queryset, name, value):
        wanted = value.strip().upper()
        if wanted not in Workflow.Status.values:
            raise ValidationError({"status": f"Unknown status. Use one of {Workflow.Status.values}."})
        return queryset.filter(status=wanted)
