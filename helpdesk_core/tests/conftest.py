# helpdesk_core/tests/conftest.py

from __future__ import annotations

import uuid
from typing import Any, Callable, Optional

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from helpdesk_core.models import Deployment, Ticket, UserRole, Workflow
from helpdesk_core.services.workflow_admin import create_workflow, ensure_system_default
from helpdesk_core.tests.builders import scenario_definition


def _rand(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class AuthAPIClient(APIClient):
    """
    Test client that uses force_authenticate for predictable DRF auth,
    and always sends the deployment header once one is set.
    """

    deployment: Optional[Deployment] = None

    def login_as(self, user, deployment: Optional[Deployment] = None) -> "AuthAPIClient":
        self.force_authenticate(user=user)
        if deployment is not None:
            self.deployment = deployment
            self.credentials(HTTP_X_DEPLOYMENT=deployment.code)
        return self


@pytest.fixture
def api_client() -> AuthAPIClient:
    return AuthAPIClient()


@pytest.fixture
def deployment(db) -> Deployment:
    return Deployment.objects.create(code=_rand("DEP"), name="Main deployment")


@pytest.fixture
def other_deployment(db) -> Deployment:
    return Deployment.objects.create(code=_rand("DEP"), name="Second deployment")


@pytest.fixture
def make_user(db) -> Callable[..., Any]:
    """
    Factory for users, optionally with a role in a deployment.
    """
    User = get_user_model()

    def _factory(
        username: Optional[str] = None,
        *,
        role: Optional[str] = None,
        deployment: Optional[Deployment] = None,
        **extra: Any,
    ):
        user = User.objects.create_user(
            username=username or _rand("user"),
            password="pass123",
            **extra,
        )
        if role and deployment is not None:
            UserRole.objects.create(user=user, deployment=deployment, role=role)
        return user

    return _factory


@pytest.fixture
def manager(make_user, deployment):
    return make_user("manager", role="SUPPORT_MANAGER", deployment=deployment)


@pytest.fixture
def agent(make_user, deployment):
    return make_user("agent", role="SUPPORT_STAFF", deployment=deployment, first_name="Alice", last_name="Agent")


@pytest.fixture
def requester(make_user, deployment):
    return make_user("requester", role="END_USER", deployment=deployment)


@pytest.fixture
def system_default(deployment) -> Workflow:
    return ensure_system_default(deployment)


@pytest.fixture
def workflow_factory(deployment) -> Callable[..., Workflow]:
    """
    Factory for workflows created through the activation manager.
    Defaults to the four-state scenario workflow.
    """

    def _factory(
        name: Optional[str] = None,
        *,
        definition: Optional[dict] = None,
        working=None,
        done=None,
        activate: bool = False,
        target: Optional[Deployment] = None,
    ) -> Workflow:
        return create_workflow(
            target or deployment,
            name=name or _rand("Workflow"),
            definition=definition if definition is not None else scenario_definition(),
            working_statuses=working,
            done_statuses=done,
            activate=activate,
        )

    return _factory


@pytest.fixture
def ticket_factory(deployment, requester) -> Callable[..., Ticket]:
    """
    Raw ticket rows with an explicit status (bypasses the create transition).
    """

    def _factory(*, status: str = "NEW", workflow: Optional[Workflow] = None, **extra: Any) -> Ticket:
        extra.setdefault("requester", requester)
        extra.setdefault("title", _rand("Ticket"))
        return Ticket.objects.create(
            deployment=extra.pop("deployment", deployment),
            status=status,
            workflow=workflow,
            **extra,
        )

    return _factory
