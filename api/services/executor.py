# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Executors that run an approved critical action.

The engine invokes an executor at most once per request, after the request
reached APPROVED. Executors never raise: failures come back as an
ExecutionResult with success=False and are recorded on the request.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests
from opentelemetry import trace
from opentelemetry.propagate import inject
from opentelemetry.trace import Status, StatusCode

from models.entities import ExecutionDescriptor
from models.enums import ExecutorKind
from .amqp import AMQPService, EXECUTION_EXCHANGE

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class ExecutionResult:
    """Outcome of running an approved action."""
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


class ActionExecutor:
    """Executor contract: execute(request_id, payload, descriptor) -> ExecutionResult."""

    def execute(self, request_id: str, payload: Dict[str, Any],
                descriptor: Optional[ExecutionDescriptor] = None) -> ExecutionResult:
        raise NotImplementedError


class AMQPActionExecutor(ActionExecutor):
    """Publishes the approved action to the execution exchange."""

    def __init__(self, amqp_service: AMQPService, exchange: str = EXECUTION_EXCHANGE):
        self.amqp = amqp_service
        self.exchange = exchange

    def execute(self, request_id: str, payload: Dict[str, Any],
                descriptor: Optional[ExecutionDescriptor] = None) -> ExecutionResult:
        with tracer.start_as_current_span("executor.amqp.execute") as span:
            routing_key = descriptor.target if descriptor else "default"
            span.set_attributes({
                "approval.request_id": request_id,
                "amqp.routing_key": routing_key
            })

            body = self.amqp.transform_payload(
                payload, descriptor.data_mapping if descriptor else None
            )
            message = {
                "request_id": request_id,
                "organization_id": payload.get("organization_id"),
                "action_type": payload.get("action_type"),
                "payload": body
            }

            result = self.amqp.publish(
                exchange=self.exchange,
                routing_key=routing_key,
                message=message,
                correlation_id=request_id
            )

            if not result.success:
                span.set_status(Status(StatusCode.ERROR, result.error or "publish failed"))
                return ExecutionResult(success=False, error=result.error or "publish failed")

            return ExecutionResult(
                success=True,
                data={
                    "exchange": result.exchange,
                    "routing_key": result.routing_key,
                    "correlation_id": result.correlation_id,
                    "retry_count": result.retry_count
                }
            )


class HTTPActionExecutor(ActionExecutor):
    """Calls the descriptor's URL with the request id as idempotency key."""

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def execute(self, request_id: str, payload: Dict[str, Any],
                descriptor: Optional[ExecutionDescriptor] = None) -> ExecutionResult:
        if descriptor is None:
            return ExecutionResult(success=False, error="HTTP executor requires a descriptor")

        with tracer.start_as_current_span("executor.http.execute") as span:
            span.set_attributes({
                "approval.request_id": request_id,
                "http.method": descriptor.method.upper(),
                "http.url": descriptor.target
            })

            headers = dict(descriptor.headers)
            headers["Idempotency-Key"] = request_id
            headers.setdefault("Content-Type", "application/json")
            inject(headers)

            try:
                response = self.session.request(
                    descriptor.method.upper(),
                    descriptor.target,
                    json=payload,
                    headers=headers,
                    timeout=descriptor.timeout_seconds
                )
            except requests.RequestException as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                logger.error(f"HTTP execution failed for request {request_id}: {e}")
                return ExecutionResult(success=False, error=str(e))

            span.set_attribute("http.status_code", response.status_code)

            if response.status_code >= 400:
                error = f"HTTP {response.status_code}: {response.text[:500]}"
                span.set_status(Status(StatusCode.ERROR, error))
                return ExecutionResult(
                    success=False,
                    data={"status_code": response.status_code},
                    error=error
                )

            try:
                body = response.json()
            except ValueError:
                body = None

            return ExecutionResult(
                success=True,
                data={"status_code": response.status_code, "body": body}
            )


class ExecutorRouter(ActionExecutor):
    """Dispatches to the executor matching the descriptor kind."""

    def __init__(self, executors: Dict[str, ActionExecutor]):
        self.executors = executors

    def execute(self, request_id: str, payload: Dict[str, Any],
                descriptor: Optional[ExecutionDescriptor] = None) -> ExecutionResult:
        kind = descriptor.kind if descriptor else ExecutorKind.AMQP.value
        executor = self.executors.get(kind)
        if executor is None:
            return ExecutionResult(success=False, error=f"No executor configured for kind '{kind}'")
        return executor.execute(request_id, payload, descriptor)
