# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.
"""

import os
import pytest
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional

# Set test environment
os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'
os.environ['APPROVAL_STORAGE'] = 'memory'
os.environ.pop('AMQP_URL', None)
os.environ.pop('REDIS_URL', None)
os.environ.pop('ESCALATION_SCHEDULER_ENABLED', None)

from models.entities import ActionPolicy, ApproverAssignment, UserProfile
from models.enums import ApprovalStrategy
from services.auth import AuthService, generate_key_pair
from services.engine import ApprovalRequestEngine, EngineConfig
from services.executor import ExecutionResult
from services.local_store import (
    InMemoryApprovalRepository, InMemoryApproverRegistry, InMemoryPolicyStore, StaticIdentityService
)

ORG_ID = "org-test"
OTHER_ORG_ID = "org-other"
ACTION = "suspender_beneficio"


class FakeClock:
    """Deterministic, manually advanced clock."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime.utcnow().replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingExecutor:
    """Executor double that records every call."""

    def __init__(self, result: Optional[ExecutionResult] = None, error: Optional[Exception] = None):
        self.result = result or ExecutionResult(success=True, data={"status_code": 200})
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def execute(self, request_id, payload, descriptor=None):
        self.calls.append({"request_id": request_id, "payload": payload, "descriptor": descriptor})
        if self.error is not None:
            raise self.error
        return self.result


class RecordingNotifications:
    """Notification port double that records every event."""

    def __init__(self):
        self.events: List[tuple] = []

    def _record(self, name, request, *args):
        self.events.append((name, request.id, request.status) + args)

    def notify_decision_needed(self, request, approver_ids):
        self._record("decision_needed", request, list(approver_ids))

    def notify_terminal_state(self, request):
        self._record("terminal", request)

    def notify_escalated(self, request, from_approver_id, to_approver_id):
        self._record("escalated", request, from_approver_id, to_approver_id)

    def notify_deadline_approaching(self, request):
        self._record("deadline_approaching", request)

    def notify_delegated(self, request, from_approver_id, to_approver_id):
        self._record("delegated", request, from_approver_id, to_approver_id)

    def named(self, name: str) -> List[tuple]:
        return [event for event in self.events if event[0] == name]


def make_policy(action_type: str = ACTION, org_id: str = ORG_ID, **overrides) -> ActionPolicy:
    """Build an active policy with test defaults."""
    fields = {
        "organization_id": org_id,
        "created_by": "admin",
        "updated_by": "admin",
        "action_type": action_type,
        "strategy": ApprovalStrategy.SIMPLE,
        "deadline_hours": 24,
        "escalation_increment_hours": 48
    }
    fields.update(overrides)
    return ActionPolicy(**fields)


def make_profile(user_id: str, roles: Optional[List[str]] = None, org_id: str = ORG_ID,
                 permissions: Optional[List[str]] = None, sector: Optional[str] = None) -> UserProfile:
    return UserProfile(
        user_id=user_id,
        organization_id=org_id,
        name=user_id.title(),
        roles=roles or [],
        permissions=permissions or [],
        sector=sector
    )


def default_profiles() -> List[UserProfile]:
    return [
        make_profile("requester", ["operador"]),
        make_profile("alice", ["supervisor"]),
        make_profile("bob", ["supervisor"]),
        make_profile("carol", ["supervisor"]),
        make_profile("dave", ["gestor"]),
        make_profile("erin", ["operador"]),
        make_profile("manager", ["admin"], permissions=["approval:cancel"]),
        make_profile("root", ["operador"], permissions=["approval:admin"]),
    ]


def supervisor_assignment(action_type: str = ACTION, org_id: str = ORG_ID) -> ApproverAssignment:
    return ApproverAssignment(organization_id=org_id, action_type=action_type, role="supervisor")


class EngineHarness:
    """Engine wired to in-memory stores and recording doubles."""

    def __init__(self, policies: Optional[List[ActionPolicy]] = None,
                 assignments: Optional[List[ApproverAssignment]] = None,
                 profiles: Optional[List[UserProfile]] = None,
                 executor: Any = None,
                 config: Optional[EngineConfig] = None):
        self.clock = FakeClock()
        self.repository = InMemoryApprovalRepository()
        self.policies = InMemoryPolicyStore(policies if policies is not None else [make_policy()])
        self.registry = InMemoryApproverRegistry(
            assignments if assignments is not None else [supervisor_assignment()]
        )
        self.identity = StaticIdentityService(profiles if profiles is not None else default_profiles())
        self.executor = executor if executor is not None else RecordingExecutor()
        self.notifications = RecordingNotifications()
        self.engine = ApprovalRequestEngine(
            repository=self.repository,
            policies=self.policies,
            registry=self.registry,
            identity=self.identity,
            executor=self.executor,
            notifications=self.notifications,
            config=config or EngineConfig(),
            clock=self.clock
        )

    def submit(self, payload: Optional[Dict[str, Any]] = None, requester_id: str = "requester",
               action_type: str = ACTION, **kwargs):
        return self.engine.submit(
            org_id=ORG_ID,
            requester_id=requester_id,
            action_type=action_type,
            justification="Benefit paid twice",
            payload=payload if payload is not None else {"beneficio_id": "B-1"},
            **kwargs
        )


@pytest.fixture
def harness() -> EngineHarness:
    return EngineHarness()


@pytest.fixture(scope="session")
def key_pair():
    """One RSA key pair for the whole session."""
    return generate_key_pair()


@pytest.fixture
def auth_service(key_pair) -> AuthService:
    private_pem, public_pem = key_pair
    return AuthService(private_key=private_pem, public_key=public_pem)


@pytest.fixture
def app_harness(auth_service):
    """Flask app over in-memory stores."""
    from app import create_app

    harness = EngineHarness()
    app = create_app({
        "repository": harness.repository,
        "policies": harness.policies,
        "registry": harness.registry,
        "identity": harness.identity,
        "executor": harness.executor,
        "notifications": harness.notifications,
        "auth_service": auth_service,
        "clock": harness.clock
    })
    app.config['TESTING'] = True
    harness.app = app
    return harness


@pytest.fixture
def client(app_harness):
    return app_harness.app.test_client()


@pytest.fixture
def auth_headers(auth_service):
    """Build Authorization headers for a user of the test organization."""
    def _headers(user_id: str, permissions: Optional[List[str]] = None, org_id: str = ORG_ID) -> Dict[str, str]:
        token = auth_service.issue_token(user_id, org_id, permissions=permissions)
        return {"Authorization": f"Bearer {token}"}
    return _headers
