# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Delegation of undecided approval slots.
"""

import logging
from typing import Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from domain.approvals import add_history, ensure_pending
from domain.errors import AlreadyDecided, ApprovalError, NotEligible
from models.entities import ApprovalRequest, DelegationRecord
from models.enums import HistoryAction

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class DelegationHandler:
    """
    Lets an approver hand an undecided slot to another approver.

    The slot keeps its order and original approver. From the delegation on,
    only the delegate can decide it; re-delegation updates the same record.
    """

    def __init__(self, engine):
        self.engine = engine

    def delegate(self, org_id: str, request_id: str, from_approver_id: str,
                 to_approver_id: str, reason: Optional[str] = None) -> ApprovalRequest:
        """
        Delegate from_approver_id's slot to to_approver_id.

        Raises:
            NotPending: The request is terminal
            NotEligible: from_approver_id holds no slot, or the delegate is
                the requester, already holds a slot or is unknown
            AlreadyDecided: The slot already holds a decision
        """
        with tracer.start_as_current_span("delegation.delegate") as span:
            span.set_attributes({
                "approval.request_id": request_id,
                "approval.from_approver_id": from_approver_id,
                "approval.to_approver_id": to_approver_id
            })

            def mutation(request: ApprovalRequest):
                ensure_pending(request)

                slot = request.slot_for(from_approver_id)
                if slot is None:
                    raise NotEligible(
                        f"User {from_approver_id} has no decision slot on request {request.code}",
                        {"request_id": request.id, "approver_id": from_approver_id}
                    )
                if slot.is_decided():
                    raise AlreadyDecided(
                        f"Slot of user {from_approver_id} on request {request.code} is already decided",
                        {"request_id": request.id, "approver_id": from_approver_id}
                    )

                self._check_delegate(org_id, request, from_approver_id, to_approver_id)

                now = self.engine.clock()
                previous = slot.delegation
                slot.delegation = DelegationRecord(
                    original_approver_id=slot.original_approver_id,
                    from_approver_id=from_approver_id,
                    to_approver_id=to_approver_id,
                    reason=reason,
                    order=slot.order,
                    delegated_at=now,
                    delegation_count=previous.delegation_count + 1 if previous else 1
                )
                slot.approver_id = to_approver_id
                request.update_timestamp(from_approver_id)

                add_history(request, HistoryAction.DELEGATE, from_approver_id, {
                    "from_approver_id": from_approver_id,
                    "to_approver_id": to_approver_id,
                    "original_approver_id": slot.original_approver_id,
                    "order": slot.order,
                    "reason": reason,
                    "delegation_count": slot.delegation.delegation_count
                }, now=now)

            try:
                request, _ = self.engine._mutate(org_id, request_id, mutation)
            except ApprovalError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            logger.info(
                f"Decision slot on approval request {request.code} delegated",
                extra={
                    "request_id": request.id,
                    "request_code": request.code,
                    "actor_id": from_approver_id,
                    "delegate_id": to_approver_id,
                    "organization_id": org_id,
                    "status": request.status
                }
            )
            self.engine._notify("notify_delegated", request, from_approver_id, to_approver_id)
            return request

    def _check_delegate(self, org_id: str, request: ApprovalRequest,
                        from_approver_id: str, to_approver_id: str) -> None:
        if to_approver_id == from_approver_id:
            raise NotEligible("Cannot delegate a decision slot to its current holder",
                              {"request_id": request.id, "approver_id": to_approver_id})

        if to_approver_id == request.requester_id:
            raise NotEligible("The requester cannot decide their own request",
                              {"request_id": request.id, "approver_id": to_approver_id})

        if request.slot_for(to_approver_id) is not None:
            raise NotEligible(f"User {to_approver_id} already holds a decision slot",
                              {"request_id": request.id, "approver_id": to_approver_id})

        if not self.engine.identity.user_exists(org_id, to_approver_id):
            raise NotEligible(f"User {to_approver_id} is not an active user of the organization",
                              {"request_id": request.id, "approver_id": to_approver_id})
