# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Response models for API endpoints with HAL support.
"""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime


class HalLink(BaseModel):
    """HAL link representation."""

    href: str = Field(..., description="Link URL")
    method: Optional[str] = Field(None, description="HTTP method")
    type: Optional[str] = Field(None, description="Content type")
    title: Optional[str] = Field(None, description="Link title")
    templated: Optional[bool] = Field(None, description="Whether URL is templated")


class HalResponse(BaseModel):
    """Base HAL response with links."""

    model_config = ConfigDict(populate_by_name=True)

    links: Dict[str, HalLink] = Field(default_factory=dict, alias="_links", description="HAL links")


class DecisionSlotResponse(BaseModel):
    """Decision slot as exposed by the API."""

    approver_id: str = Field(..., description="Approver currently eligible to decide")
    original_approver_id: str = Field(..., description="Approver the slot was created for")
    order: int = Field(..., description="Slot order or tier")
    approved: Optional[bool] = Field(None, description="Decision, null while pending")
    comment: Optional[str] = Field(None, description="Approver comment")
    decided_at: Optional[datetime] = Field(None, description="Decision timestamp")
    delegation: Optional[Dict[str, Any]] = Field(None, description="Delegation record")


class ApprovalRequestResponse(HalResponse):
    """Approval request response model."""

    id: str = Field(..., description="Request ID")
    code: str = Field(..., description="Request code")
    action_type: str = Field(..., description="Critical action key")
    status: str = Field(..., description="Workflow status")
    strategy: str = Field(..., description="Approval strategy")
    required_approvals: int = Field(..., description="Approvals needed")
    requester_id: str = Field(..., description="Requester user ID")
    justification: str = Field(..., description="Justification")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Action parameters")
    execution_status: str = Field(..., description="Execution state")
    execution_error: Optional[str] = Field(None, description="Execution failure message")
    deadline: Optional[datetime] = Field(None, description="Decision deadline")
    escalation_level: int = Field(..., description="Escalations applied")
    processed_at: Optional[datetime] = Field(None, description="Terminal transition timestamp")
    processed_by: Optional[str] = Field(None, description="Terminal transition actor")
    auto_approved: bool = Field(..., description="Whether the request was auto-approved")
    decisions: List[DecisionSlotResponse] = Field(default_factory=list, description="Decision slots")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")


class ApprovalRequestCollection(HalResponse):
    """Paginated approval request collection."""

    total: int = Field(..., description="Total number of items")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Items per page")
    total_pages: int = Field(..., description="Total number of pages")
    embedded: Dict[str, List[ApprovalRequestResponse]] = Field(
        default_factory=dict, alias="_embedded", description="Embedded requests"
    )


class HistoryEntryResponse(BaseModel):
    """History entry as exposed by the API."""

    id: str = Field(..., description="Entry ID")
    request_id: str = Field(..., description="Approval request ID")
    action: str = Field(..., description="Recorded action")
    actor_id: str = Field(..., description="Acting user or process")
    timestamp: datetime = Field(..., description="Action timestamp")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Details")


class MetricsResponse(HalResponse):
    """Approval metrics for a period."""

    period: Dict[str, Any] = Field(..., description="Covered period")
    total_requests: int = Field(..., description="Requests created in the period")
    by_status: Dict[str, int] = Field(default_factory=dict, description="Counts per status")
    by_action_type: Dict[str, Dict[str, int]] = Field(default_factory=dict, description="Counts per action")
    approval_rate: Optional[float] = Field(None, description="Approved share of decided requests")
    average_decision_hours: Optional[float] = Field(None, description="Mean time to terminal state")
    auto_approved: int = Field(..., description="Auto-approved requests")
    escalated: int = Field(..., description="Requests escalated at least once")
    execution_failures: int = Field(..., description="Approved requests whose execution failed")


class HealthCheckResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Overall health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    timestamp: datetime = Field(..., description="Check timestamp")
    dependencies: Dict[str, Any] = Field(default_factory=dict, description="Dependency health")


class ErrorResponse(BaseModel):
    """Error response model following RFC 7807."""

    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(..., description="Error type URI")
    title: str = Field(..., description="Error title")
    status: int = Field(..., description="HTTP status code")
    detail: str = Field(..., description="Error detail")
    instance: str = Field(..., description="Request instance")
    errors: Optional[List[Dict[str, Any]]] = Field(None, description="Validation errors")
    links: Optional[Dict[str, HalLink]] = Field(None, alias="_links", description="HAL links")


class ValidationErrorResponse(ErrorResponse):
    """Validation error response with field details."""

    errors: List[Dict[str, Any]] = Field(..., description="Field validation errors")
