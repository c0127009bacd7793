# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Duplicate request guard.
"""

import logging
from typing import Optional

from opentelemetry import trace

from models.entities import ApprovalRequest
from domain.errors import DuplicateRequest

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def duplicate_key(org_id: str, requester_id: str, action_type: str, fingerprint: str) -> str:
    """Key shared by every request for the same logical action."""
    return f"{org_id}:{requester_id}:{action_type}:{fingerprint}"


class DuplicateRequestGuard:
    """
    Finds the request blocking a new submission.

    A request blocks while it is PENDING, or APPROVED with execution not yet
    finished. The store's unique duplicate key closes the race between two
    near-simultaneous submissions; this lookup only produces the error details.
    """

    def __init__(self, repository):
        self.repository = repository

    def find_active(self, org_id: str, requester_id: str, action_type: str,
                    fingerprint: str) -> Optional[ApprovalRequest]:
        """
        Find the blocking request for (requester, action type, fingerprint).

        Returns:
            ApprovalRequest or None
        """
        with tracer.start_as_current_span("duplicates.find_active") as span:
            span.set_attributes({
                "approval.org_id": org_id,
                "approval.requester_id": requester_id,
                "approval.action_type": action_type
            })
            existing = self.repository.find_by_duplicate_key(
                duplicate_key(org_id, requester_id, action_type, fingerprint)
            )
            if existing is not None and not existing.is_blocking():
                existing = None
            span.set_attribute("approval.duplicate_found", existing is not None)
            return existing

    def check(self, org_id: str, requester_id: str, action_type: str, fingerprint: str) -> None:
        """
        Raise DuplicateRequest if a blocking request exists.

        Raises:
            DuplicateRequest: With the existing request's code and status
        """
        existing = self.find_active(org_id, requester_id, action_type, fingerprint)
        if existing is not None:
            raise to_duplicate_error(existing)


def to_duplicate_error(existing: ApprovalRequest) -> DuplicateRequest:
    """Build the caller-facing duplicate error for a blocking request."""
    logger.info(
        f"Duplicate submission blocked by request {existing.code}",
        extra={
            "request_id": existing.id,
            "request_code": existing.code,
            "status": existing.status,
            "execution_status": existing.execution_status
        }
    )
    return DuplicateRequest(
        existing_id=existing.id,
        existing_code=existing.code,
        existing_status=existing.status,
        existing_execution_status=existing.execution_status
    )
