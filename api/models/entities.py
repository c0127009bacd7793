# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the approval workflow engine.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from .base import BaseEntity, DocumentModel, generate_object_id
from .enums import (
    ApprovalStrategy,
    ApprovalStatus,
    ExecutionStatus,
    ExecutorKind,
    HistoryAction,
    TERMINAL_STATUSES
)


class ActionPolicy(BaseEntity):
    """Approval policy for one critical-action type, administered externally."""

    action_type: str = Field(..., min_length=1, max_length=100, description="Critical action key")
    description: Optional[str] = Field(None, max_length=500, description="Policy description")
    strategy: ApprovalStrategy = Field(default=ApprovalStrategy.SIMPLE, description="Approval strategy")
    minimum_approvers: int = Field(default=1, ge=1, description="Minimum approvals for CUSTOM_MINIMUM")
    auto_approval_enabled: bool = Field(default=False, description="Explicit auto-approval switch")
    auto_approval_roles: List[str] = Field(default_factory=list, description="Roles eligible for auto-approval")
    escalation_target: Optional[str] = Field(None, description="Role or sector of the next approval tier")
    max_escalation_level: int = Field(default=1, ge=0, description="Maximum escalation tiers")
    deadline_hours: Optional[int] = Field(default=24, ge=1, description="Hours until the request is overdue")
    escalation_increment_hours: int = Field(default=48, ge=1, description="Deadline extension per escalation")
    reminder_window_hours: Optional[int] = Field(None, ge=1, description="Reminder window override")
    active: bool = Field(default=True, description="Whether the policy accepts new requests")

    @field_validator('action_type')
    @classmethod
    def validate_action_type(cls, v):
        """Normalize the action key."""
        if not v.strip():
            raise ValueError('Action type cannot be empty')
        return v.strip().lower()

    @field_validator('auto_approval_roles')
    @classmethod
    def validate_auto_approval_roles(cls, v):
        """Trim roles and drop blanks."""
        return [role.strip() for role in v if role and role.strip()]


class ApproverAssignment(DocumentModel):
    """Registry row: one eligible approver (user or role) for an action type."""

    id: str = Field(default_factory=generate_object_id, description="Assignment identifier")
    organization_id: str = Field(..., description="Organization scope")
    action_type: str = Field(..., description="Critical action key")
    user_id: Optional[str] = Field(None, description="Approver user ID")
    role: Optional[str] = Field(None, description="Approver role, expanded through identity lookup")
    order: int = Field(default=0, ge=0, description="Position in the approver list")
    active: bool = Field(default=True, description="Whether the assignment is in effect")

    @model_validator(mode='after')
    def validate_target(self):
        """Exactly one of user_id or role must be set."""
        if bool(self.user_id) == bool(self.role):
            raise ValueError('Assignment must reference exactly one of user_id or role')
        return self


class DelegationRecord(DocumentModel):
    """Links a decision slot to the substitute approver."""

    original_approver_id: str = Field(..., description="Approver the slot was created for")
    from_approver_id: str = Field(..., description="Approver who delegated")
    to_approver_id: str = Field(..., description="Substitute approver")
    reason: Optional[str] = Field(None, max_length=1000, description="Delegation reason")
    order: int = Field(..., description="Slot order, preserved from the original slot")
    delegated_at: datetime = Field(default_factory=datetime.utcnow, description="Delegation timestamp")
    delegation_count: int = Field(default=1, ge=1, description="Times this slot was delegated")


class ApproverDecision(DocumentModel):
    """One decision slot per approver on a request."""

    approver_id: str = Field(..., description="Approver currently eligible to decide")
    original_approver_id: str = Field(..., description="Approver the slot was created for")
    order: int = Field(..., ge=0, description="Order or tier of the slot")
    approved: Optional[bool] = Field(None, description="Decision, None while pending")
    comment: Optional[str] = Field(None, max_length=2000, description="Approver comment")
    decided_at: Optional[datetime] = Field(None, description="Decision timestamp")
    decided_by: Optional[str] = Field(None, description="User who decided the slot")
    delegation: Optional[DelegationRecord] = Field(None, description="Delegation of this slot")
    escalated_from: Optional[str] = Field(None, description="Approver replaced by escalation")
    escalation_level: int = Field(default=0, ge=0, description="Escalation tier of the slot")

    def is_decided(self) -> bool:
        """Check if the slot already holds a decision."""
        return self.approved is not None


class ExecutionDescriptor(DocumentModel):
    """What to invoke once the request is approved."""

    kind: ExecutorKind = Field(default=ExecutorKind.AMQP, description="Executor transport")
    target: str = Field(..., min_length=1, description="Routing key (amqp) or URL (http)")
    method: str = Field(default="POST", description="HTTP method for http executors")
    data_mapping: Dict[str, Any] = Field(default_factory=dict, description="JSONPath payload mapping")
    headers: Dict[str, str] = Field(default_factory=dict, description="HTTP headers")
    timeout_seconds: int = Field(default=30, ge=1, le=300, description="Execution timeout")

    @model_validator(mode='after')
    def validate_target(self):
        """HTTP executors need an absolute URL."""
        if self.kind == ExecutorKind.HTTP:
            import re
            if not re.match(r'^https?://[^\s/$.?#].[^\s]*$', self.target):
                raise ValueError('HTTP executor target must be a valid URL')
        return self


class HistoryEntry(DocumentModel):
    """Immutable audit fact about an approval request."""

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    id: str = Field(default_factory=generate_object_id, description="Entry identifier")
    request_id: str = Field(..., description="Approval request ID")
    action: HistoryAction = Field(..., description="Recorded action")
    actor_id: str = Field(..., description="User or process that acted")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Action timestamp")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form details")


class ApprovalRequest(BaseEntity):
    """Workflow instance for one critical action."""

    code: str = Field(..., description="Human-facing request code")
    action_type: str = Field(..., description="Critical action key")
    policy_id: Optional[str] = Field(None, description="Policy in effect at submission")
    strategy: ApprovalStrategy = Field(..., description="Strategy snapshot from the policy")
    required_approvals: int = Field(default=0, ge=0, description="Approvals needed to approve")
    status: ApprovalStatus = Field(default=ApprovalStatus.PENDING, description="Workflow status")
    requester_id: str = Field(..., description="User who submitted the action")
    justification: str = Field(..., min_length=1, max_length=2000, description="Free-text justification")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Parameters of the action")
    fingerprint: str = Field(..., description="Normalized hash of the payload")
    execution: Optional[ExecutionDescriptor] = Field(None, description="What to invoke on approval")
    execution_status: ExecutionStatus = Field(default=ExecutionStatus.NOT_EXECUTED, description="Execution state")
    execution_result: Optional[Dict[str, Any]] = Field(None, description="Executor output")
    execution_error: Optional[str] = Field(None, description="Executor failure message")
    executed_at: Optional[datetime] = Field(None, description="Execution completion timestamp")
    deadline: Optional[datetime] = Field(None, description="Decision deadline")
    reminder_at: Optional[datetime] = Field(None, description="When the deadline reminder becomes due")
    deadline_reminder_sent_at: Optional[datetime] = Field(None, description="Deadline reminder timestamp")
    escalation_level: int = Field(default=0, ge=0, description="Escalations applied so far")
    processed_at: Optional[datetime] = Field(None, description="Terminal transition timestamp")
    processed_by: Optional[str] = Field(None, description="Actor of the terminal transition")
    processing_note: Optional[str] = Field(None, description="Cancellation reason or final comment")
    auto_approved: bool = Field(default=False, description="Whether approval bypassed human decision")
    auto_approval_basis: Optional[str] = Field(None, description="Role or admin capability")
    attachments: List[str] = Field(default_factory=list, description="Attachment references")
    decisions: List[ApproverDecision] = Field(default_factory=list, description="Decision slots")
    history: List[HistoryEntry] = Field(default_factory=list, description="Append-only history")
    version: int = Field(default=0, ge=0, description="Optimistic concurrency version")

    @field_validator('justification')
    @classmethod
    def validate_justification(cls, v):
        """Validate justification."""
        if not v.strip():
            raise ValueError('Justification cannot be empty')
        return v.strip()

    def is_terminal(self) -> bool:
        """Check if the request reached a final status."""
        return self.status in TERMINAL_STATUSES

    def is_blocking(self) -> bool:
        """Pending or approved but not yet executed requests block duplicates."""
        if self.status == ApprovalStatus.PENDING:
            return True
        return (
            self.status == ApprovalStatus.APPROVED
            and self.execution_status in (ExecutionStatus.NOT_EXECUTED, ExecutionStatus.EXECUTING)
        )

    def duplicate_key(self) -> str:
        """Key shared by requests for the same logical action."""
        return f"{self.organization_id}:{self.requester_id}:{self.action_type}:{self.fingerprint}"

    def slot_for(self, approver_id: str) -> Optional[ApproverDecision]:
        """Decision slot whose current eligible decider is approver_id."""
        for slot in self.decisions:
            if slot.approver_id == approver_id:
                return slot
        return None

    def pending_approver_ids(self) -> List[str]:
        """Approvers still expected to decide, in slot order."""
        return [
            slot.approver_id
            for slot in sorted(self.decisions, key=lambda s: s.order)
            if not slot.is_decided()
        ]

    def approval_count(self) -> int:
        return sum(1 for slot in self.decisions if slot.approved is True)

    def to_document(self) -> dict:
        """Serialize with the duplicate guard key while the request blocks duplicates."""
        document = super().to_document()
        if self.is_blocking():
            document["duplicateKey"] = self.duplicate_key()
        return document


class UserProfile(BaseModel):
    """Role and profile data returned by the identity lookup."""

    user_id: str = Field(..., description="User ID")
    organization_id: str = Field(..., description="User's organization ID")
    name: Optional[str] = Field(None, description="User display name")
    email: Optional[str] = Field(None, description="User email")
    roles: List[str] = Field(default_factory=list, description="Role names")
    permissions: List[str] = Field(default_factory=list, description="Effective permissions")
    sector: Optional[str] = Field(None, description="Organizational sector")
    active: bool = Field(default=True, description="Whether the user may act")


class UserContext(BaseModel):
    """User context for request processing with authentication and authorization data."""

    user_id: str = Field(..., description="Authenticated user ID")
    org_id: str = Field(..., description="User's organization ID")
    email: Optional[str] = Field(None, description="User email")
    name: Optional[str] = Field(None, description="User display name")
    permissions: List[str] = Field(default_factory=list, description="User's effective permissions")
    token_payload: Optional[Dict[str, Any]] = Field(None, description="Original JWT payload")
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client user agent")
    session_id: Optional[str] = Field(None, description="Session identifier")

    model_config = ConfigDict(
        use_enum_values=True
    )

    def has_permission(self, permission: str) -> bool:
        """Check if user has a specific permission."""
        return permission in self.permissions

    def has_any_permission(self, permissions: List[str]) -> bool:
        """Check if user has any of the specified permissions."""
        return any(perm in self.permissions for perm in permissions)
