# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas and data models for the approval workflow engine.
"""

# Base models
from .base import BaseEntity, DocumentModel

# Enumerations
from .enums import (
    ApprovalStrategy,
    ApprovalStatus,
    ExecutionStatus,
    HistoryAction,
    ExecutorKind,
    AutoApprovalBasis,
    CriticalActionType
)

# Core entities
from .entities import (
    ActionPolicy,
    ApproverAssignment,
    ApproverDecision,
    DelegationRecord,
    ExecutionDescriptor,
    HistoryEntry,
    ApprovalRequest,
    UserProfile,
    UserContext
)

# Request models
from .requests import (
    RequestPath,
    SubmitApprovalRequest,
    DecisionRequest,
    DelegateRequest,
    CancelRequest,
    ApprovalRequestFilters,
    PaginationParams,
    MetricsParams
)

# Response models
from .responses import (
    HalLink,
    HalResponse,
    ApprovalRequestResponse,
    ApprovalRequestCollection,
    HistoryEntryResponse,
    MetricsResponse,
    HealthCheckResponse,
    ErrorResponse,
    ValidationErrorResponse
)

__all__ = [
    # Base models
    "BaseEntity",
    "DocumentModel",

    # Enumerations
    "ApprovalStrategy",
    "ApprovalStatus",
    "ExecutionStatus",
    "HistoryAction",
    "ExecutorKind",
    "AutoApprovalBasis",
    "CriticalActionType",

    # Core entities
    "ActionPolicy",
    "ApproverAssignment",
    "ApproverDecision",
    "DelegationRecord",
    "ExecutionDescriptor",
    "HistoryEntry",
    "ApprovalRequest",
    "UserProfile",
    "UserContext",

    # Request models
    "RequestPath",
    "SubmitApprovalRequest",
    "DecisionRequest",
    "DelegateRequest",
    "CancelRequest",
    "ApprovalRequestFilters",
    "PaginationParams",
    "MetricsParams",

    # Response models
    "HalLink",
    "HalResponse",
    "ApprovalRequestResponse",
    "ApprovalRequestCollection",
    "HistoryEntryResponse",
    "MetricsResponse",
    "HealthCheckResponse",
    "ErrorResponse",
    "ValidationErrorResponse"
]
