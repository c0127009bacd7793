# SPDX-License-Identifier: Apache-2.0

"""
Approval workflow error taxonomy.

All errors are local and synchronous. Each carries the HTTP status and problem
type used when it reaches the API layer.
"""

from typing import Any, Dict, Optional


class ApprovalError(Exception):
    """Base class for approval workflow errors."""

    status_code = 400
    error_type = "approval-error"
    title = "Approval Error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class DuplicateRequest(ApprovalError):
    """An equivalent request is already pending or awaiting execution."""

    status_code = 400
    error_type = "duplicate-request"
    title = "Duplicate Request"

    def __init__(self, existing_id: str, existing_code: str, existing_status: str,
                 existing_execution_status: Optional[str] = None):
        if existing_status == "pending":
            message = f"Request {existing_code} is already pending, awaiting decision"
        else:
            message = f"Request {existing_code} is already approved, awaiting execution"
        super().__init__(message, {
            "existing_id": existing_id,
            "existing_code": existing_code,
            "existing_status": existing_status,
            "existing_execution_status": existing_execution_status
        })
        self.existing_id = existing_id
        self.existing_code = existing_code
        self.existing_status = existing_status


class PolicyNotFound(ApprovalError):
    """No policy is configured for the action type."""

    error_type = "policy-not-found"
    title = "Policy Not Found"

    def __init__(self, action_type: str):
        super().__init__(f"No approval policy configured for action '{action_type}'",
                         {"action_type": action_type})
        self.action_type = action_type


class PolicyInactive(ApprovalError):
    """The policy exists but does not accept new requests."""

    error_type = "policy-inactive"
    title = "Policy Inactive"

    def __init__(self, action_type: str):
        super().__init__(f"Approval policy for action '{action_type}' is inactive",
                         {"action_type": action_type})
        self.action_type = action_type


class InvalidStrategyConfiguration(ApprovalError):
    """The policy cannot be satisfied by the resolved approver set."""

    error_type = "invalid-strategy-configuration"
    title = "Invalid Strategy Configuration"


class NotEligible(ApprovalError):
    """The actor holds no decision slot (or authority) for the operation."""

    status_code = 403
    error_type = "not-eligible"
    title = "Not Eligible"


class RequestNotFound(ApprovalError):
    """Approval request does not exist in the organization."""

    status_code = 404
    error_type = "resource-not-found"
    title = "Resource Not Found"

    def __init__(self, request_id: str):
        super().__init__(f"Approval request {request_id} not found", {"request_id": request_id})
        self.request_id = request_id


class AlreadyDecided(ApprovalError):
    """The decision slot already holds a decision."""

    status_code = 409
    error_type = "already-decided"
    title = "Already Decided"


class NotPending(ApprovalError):
    """Mutation attempted on a request in a terminal status."""

    status_code = 409
    error_type = "not-pending"
    title = "Request Not Pending"

    def __init__(self, request_id: str, status: str):
        super().__init__(f"Approval request {request_id} is {status}, not pending",
                         {"request_id": request_id, "request_status": status})
        self.request_id = request_id
        self.status = status


class Conflict(ApprovalError):
    """Concurrent writers kept invalidating the conditional update."""

    status_code = 409
    error_type = "resource-conflict"
    title = "Resource Conflict"
