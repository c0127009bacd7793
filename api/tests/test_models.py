# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for Pydantic models and validation.
"""

import pytest
from datetime import datetime, timedelta, timezone
from pydantic import ValidationError

from models.entities import ActionPolicy, ExecutionDescriptor, UserContext
from models.enums import ApprovalStatus, ApprovalStrategy, ExecutorKind
from models.requests import (
    ApprovalRequestFilters, DecisionRequest, DelegateRequest, MetricsParams,
    PaginationParams, SubmitApprovalRequest
)


class TestActionPolicyModel:
    """Test ActionPolicy model validation."""

    def test_valid_policy(self):
        """Test creating a valid policy."""
        policy = ActionPolicy(
            organization_id="org-1",
            created_by="admin",
            updated_by="admin",
            action_type="  Bloquear_Beneficio ",
            strategy=ApprovalStrategy.MAJORITY,
            auto_approval_roles=[" diretor ", "", "gestor"]
        )

        assert policy.action_type == "bloquear_beneficio"
        assert policy.strategy == "majority"
        assert policy.auto_approval_roles == ["diretor", "gestor"]
        assert policy.active is True
        assert policy.deadline_hours == 24

    def test_empty_action_type(self):
        """Test empty action type validation."""
        with pytest.raises(ValidationError):
            ActionPolicy(organization_id="org-1", created_by="a", updated_by="a", action_type="   ")

    def test_invalid_minimum(self):
        """Test minimum approvers must be positive."""
        with pytest.raises(ValidationError):
            ActionPolicy(organization_id="org-1", created_by="a", updated_by="a",
                         action_type="x", minimum_approvers=0)

    def test_document_uses_camel_case(self):
        """Test MongoDB documents use camelCase keys and _id."""
        policy = ActionPolicy(organization_id="org-1", created_by="a", updated_by="a", action_type="x")

        document = policy.to_document()

        assert "_id" in document
        assert "id" not in document
        assert document["organizationId"] == "org-1"
        assert document["autoApprovalEnabled"] is False

        restored = ActionPolicy.from_document(document)
        assert restored.id == policy.id


class TestExecutionDescriptorModel:
    """Test ExecutionDescriptor validation."""

    def test_amqp_routing_key(self):
        descriptor = ExecutionDescriptor(target="beneficios.suspender")
        assert descriptor.kind == "amqp"
        assert descriptor.timeout_seconds == 30

    def test_http_requires_url(self):
        with pytest.raises(ValidationError):
            ExecutionDescriptor(kind=ExecutorKind.HTTP, target="not a url")

        descriptor = ExecutionDescriptor(kind="http", target="https://example.gov/hook")
        assert descriptor.method == "POST"

    def test_timeout_bounds(self):
        with pytest.raises(ValidationError):
            ExecutionDescriptor(target="x", timeout_seconds=0)


class TestUserContext:
    """Test user context helpers."""

    def test_permissions(self):
        context = UserContext(user_id="u", org_id="o", permissions=["approval:cancel"])

        assert context.has_permission("approval:cancel")
        assert not context.has_permission("approval:admin")
        assert context.has_any_permission(["approval:admin", "approval:cancel"])


class TestRequestModels:
    """Test API request models."""

    def test_submit_request(self):
        """Test submit validation and trimming."""
        body = SubmitApprovalRequest(
            action_type="suspender_beneficio",
            justification="  Benefit paid twice  ",
            payload={"beneficio_id": "B-1"}
        )

        assert body.justification == "Benefit paid twice"
        assert body.execution is None
        assert body.deadline is None

    def test_blank_justification(self):
        with pytest.raises(ValidationError):
            SubmitApprovalRequest(action_type="x", justification="   ")

    def test_past_deadline(self):
        with pytest.raises(ValidationError):
            SubmitApprovalRequest(
                action_type="x", justification="y",
                deadline=datetime.utcnow() - timedelta(hours=1)
            )

    def test_aware_deadline_stored_naive_utc(self):
        deadline = datetime.now(timezone(timedelta(hours=-3))) + timedelta(days=1)

        body = SubmitApprovalRequest(action_type="x", justification="y", deadline=deadline)

        assert body.deadline.tzinfo is None
        assert body.deadline == deadline.astimezone(timezone.utc).replace(tzinfo=None)

    def test_decision_request(self):
        assert DecisionRequest(approved=False).comment is None
        with pytest.raises(ValidationError):
            DecisionRequest(comment="missing flag")

    def test_delegate_request(self):
        with pytest.raises(ValidationError):
            DelegateRequest(to_approver_id="")

    def test_filters_to_query(self):
        filters = ApprovalRequestFilters(status="PENDING", action_type=" Suspender_Beneficio",
                                         requester_id="u-1")

        assert filters.status == ApprovalStatus.PENDING
        assert filters.to_mongo_query() == {
            "status": "pending",
            "actionType": "suspender_beneficio",
            "requesterId": "u-1"
        }

    def test_empty_filters(self):
        assert ApprovalRequestFilters().to_mongo_query() == {}

    def test_pagination_bounds(self):
        assert PaginationParams().page_size == 20
        with pytest.raises(ValidationError):
            PaginationParams(page_size=500)

    def test_metrics_days_bounds(self):
        assert MetricsParams().days == 30
        with pytest.raises(ValidationError):
            MetricsParams(days=0)
