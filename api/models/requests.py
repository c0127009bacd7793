# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request models for API endpoints with validation.
"""

from datetime import datetime, timezone
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator

from .entities import ExecutionDescriptor
from .enums import ApprovalStatus


class RequestPath(BaseModel):
    """Path parameters addressing one approval request."""

    request_id: str = Field(..., description="Approval request ID")


class SubmitApprovalRequest(BaseModel):
    """Request model for submitting a critical action for approval."""

    action_type: str = Field(..., min_length=1, max_length=100, description="Critical action key")
    justification: str = Field(..., min_length=1, max_length=2000, description="Why the action is needed")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Parameters of the action")
    execution: Optional[ExecutionDescriptor] = Field(None, description="What to invoke on approval")
    deadline: Optional[datetime] = Field(None, description="Decision deadline (defaults from policy)")
    attachments: List[str] = Field(default_factory=list, max_length=20, description="Attachment references")

    @field_validator('justification')
    @classmethod
    def validate_justification(cls, v):
        """Validate justification."""
        if not v.strip():
            raise ValueError('Justification cannot be empty')
        return v.strip()

    @field_validator('deadline')
    @classmethod
    def validate_deadline(cls, v):
        """Store deadlines as naive UTC and require them in the future."""
        if v is None:
            return v
        if v.tzinfo is not None:
            v = v.astimezone(timezone.utc).replace(tzinfo=None)
        if v <= datetime.utcnow():
            raise ValueError('Deadline must be in the future')
        return v


class DecisionRequest(BaseModel):
    """Request model for an approver decision."""

    approved: bool = Field(..., description="True to approve, false to reject")
    comment: Optional[str] = Field(None, max_length=2000, description="Decision comment")


class DelegateRequest(BaseModel):
    """Request model for delegating a decision slot."""

    to_approver_id: str = Field(..., min_length=1, description="Substitute approver user ID")
    reason: Optional[str] = Field(None, max_length=1000, description="Delegation reason")


class CancelRequest(BaseModel):
    """Request model for cancelling a pending request."""

    reason: Optional[str] = Field(None, max_length=1000, description="Cancellation reason")


class ApprovalRequestFilters(BaseModel):
    """Filters for approval request queries."""

    status: Optional[ApprovalStatus] = Field(None, description="Filter by status")
    action_type: Optional[str] = Field(None, description="Filter by action type")
    requester_id: Optional[str] = Field(None, description="Filter by requester")

    @field_validator('status', mode='before')
    @classmethod
    def normalize_status(cls, v):
        """Accept status names in any case."""
        if isinstance(v, str):
            return v.strip().lower() or None
        return v

    def to_mongo_query(self) -> Dict[str, Any]:
        """Convert filters to MongoDB query."""
        query = {}

        if self.status:
            query["status"] = self.status.value

        if self.action_type:
            query["actionType"] = self.action_type.strip().lower()

        if self.requester_id:
            query["requesterId"] = self.requester_id

        return query


class PaginationParams(BaseModel):
    """Pagination parameters."""

    page: int = Field(default=1, ge=1, description="Page number")
    page_size: int = Field(default=20, ge=1, le=100, description="Items per page")


class MetricsParams(BaseModel):
    """Parameters for approval metrics."""

    days: int = Field(default=30, ge=1, le=365, description="Days covered by the metrics")
