# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Workflow notifications published as AMQP events.

Delivery and formatting belong to downstream consumers. Every call here is
fire-and-forget: publishing runs on a worker pool when one is configured and
failures are logged, never raised.
"""

import logging
from concurrent.futures import Executor
from datetime import datetime
from typing import Any, Dict, List, Optional

from opentelemetry import trace

from models.entities import ApprovalRequest
from .amqp import AMQPService, EVENTS_EXCHANGE

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class NotificationPort:
    """Workflow notification contract."""

    def notify_decision_needed(self, request: ApprovalRequest, approver_ids: List[str]) -> None:
        pass

    def notify_terminal_state(self, request: ApprovalRequest) -> None:
        pass

    def notify_escalated(self, request: ApprovalRequest, from_approver_id: Optional[str],
                         to_approver_id: str) -> None:
        pass

    def notify_deadline_approaching(self, request: ApprovalRequest) -> None:
        pass

    def notify_delegated(self, request: ApprovalRequest, from_approver_id: str,
                         to_approver_id: str) -> None:
        pass


class AMQPNotificationPort(NotificationPort):
    """Publishes workflow events to the approval events exchange."""

    def __init__(self, amqp_service: AMQPService, executor: Optional[Executor] = None,
                 exchange: str = EVENTS_EXCHANGE):
        self.amqp = amqp_service
        self.executor = executor
        self.exchange = exchange

    def _summary(self, request: ApprovalRequest) -> Dict[str, Any]:
        return {
            "request_id": request.id,
            "code": request.code,
            "action_type": request.action_type,
            "status": request.status,
            "requester_id": request.requester_id,
            "deadline": request.deadline.isoformat() if request.deadline else None,
            "escalation_level": request.escalation_level
        }

    def _emit(self, event: str, request: ApprovalRequest, recipients: List[str],
              extra: Optional[Dict[str, Any]] = None) -> None:
        message = {
            "event": event,
            "organization_id": request.organization_id,
            "recipients": recipients,
            "occurred_at": datetime.utcnow().isoformat(),
            "payload": dict(self._summary(request), **(extra or {}))
        }
        routing_key = f"org.{request.organization_id}.approval.{event}"

        if self.executor is None:
            self._publish(event, routing_key, message, request.id)
            return

        try:
            self.executor.submit(self._publish, event, routing_key, message, request.id)
        except RuntimeError as e:
            # Pool already shut down
            logger.warning(f"Notification {event} for request {request.id} dropped: {e}")

    def _publish(self, event: str, routing_key: str, message: Dict[str, Any],
                 request_id: str) -> None:
        with tracer.start_as_current_span("notifications.publish") as span:
            span.set_attributes({"approval.request_id": request_id, "approval.event": event})
            try:
                result = self.amqp.publish(self.exchange, routing_key, message)
            except Exception as e:
                # Notification failures must never reach the workflow
                span.record_exception(e)
                logger.warning(
                    f"Notification {event} for request {request_id} failed",
                    extra={"extra_fields": {"request_id": request_id, "event": event}},
                    exc_info=True
                )
                return

            if not result.success:
                logger.warning(
                    f"Notification {event} for request {request_id} not delivered: {result.error}",
                    extra={"extra_fields": {"request_id": request_id, "event": event}}
                )

    def notify_decision_needed(self, request: ApprovalRequest, approver_ids: List[str]) -> None:
        self._emit("decision_needed", request, list(approver_ids))

    def notify_terminal_state(self, request: ApprovalRequest) -> None:
        recipients = [request.requester_id] + [slot.approver_id for slot in request.decisions]
        self._emit("terminal", request, recipients, {
            "processed_by": request.processed_by,
            "execution_status": request.execution_status
        })

    def notify_escalated(self, request: ApprovalRequest, from_approver_id: Optional[str],
                         to_approver_id: str) -> None:
        self._emit("escalated", request, [to_approver_id], {
            "from_approver_id": from_approver_id,
            "to_approver_id": to_approver_id
        })

    def notify_deadline_approaching(self, request: ApprovalRequest) -> None:
        self._emit("deadline_approaching", request, request.pending_approver_ids())

    def notify_delegated(self, request: ApprovalRequest, from_approver_id: str,
                         to_approver_id: str) -> None:
        self._emit("delegated", request, [to_approver_id], {
            "from_approver_id": from_approver_id,
            "to_approver_id": to_approver_id
        })
