# helpdesk_core/services/roles.py
"""
Role-resolution provider for the workflow engine.
"""

from typing import Optional, Set

from helpdesk_core.models import UserRole
from helpdesk_core.workflows.rules import (
    ADMIN,
    END_USER,
    SUPPORT_MANAGER,
    SUPPORT_STAFF,
    normalize_roles,
)

_PRECEDENCE = (ADMIN, SUPPORT_MANAGER, SUPPORT_STAFF, END_USER)


def resolve_actor_roles(user, deployment) -> Set[str]:
    """
    Effective roles for a user in a deployment.
    Superusers act as ADMIN everywhere.
    """
    if not user or not getattr(user, "is_authenticated", False):
        return set()

    if user.is_superuser:
        return {ADMIN}

    deployment_id = getattr(deployment, "pk", deployment)
    if not deployment_id:
        return set()

    raw = UserRole.objects.filter(
        user=user,
        deployment_id=deployment_id,
    ).values_list("role", flat=True)

    return normalize_roles(raw)


def primary_role(roles) -> Optional[str]:
    """Highest-privilege role held, or None."""
    for role in _PRECEDENCE:
        if role in roles:
            return role
    return None
