# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Audit forwarding with OpenTelemetry correlation.

The request's embedded history is authoritative. Every history entry is also
forwarded here; a failed forward is logged and never fails the workflow.
"""

import logging
from datetime import datetime
from typing import Dict, Optional, Any

from bson import ObjectId
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pymongo.errors import PyMongoError

from models.entities import HistoryEntry, UserContext
from .mongodb import MongoDBService, AUDIT_LOGS

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

APPROVAL_ENTITY = "approval_request"


class AuditPort:
    """Audit sink contract."""

    def forward(self, org_id: str, entry: HistoryEntry) -> None:
        raise NotImplementedError


class LoggingAuditPort(AuditPort):
    """Audit sink that only emits structured log lines."""

    def forward(self, org_id: str, entry: HistoryEntry) -> None:
        logger.info(
            "Audit trail entry forwarded",
            extra={
                "entity": APPROVAL_ENTITY,
                "entity_id": entry.request_id,
                "action": entry.action,
                "user_id": entry.actor_id,
                "organization_id": org_id,
                "audit_category": "approval_workflow"
            }
        )


class AuditService(AuditPort):
    """Audit sink with MongoDB persistence and organization scoping."""

    def __init__(self, mongo_service: MongoDBService):
        """Initialize audit service with MongoDB dependency."""
        self.mongo_service = mongo_service
        self.collection_name = AUDIT_LOGS
        logger.info("Audit service initialized")

    def log_action(
        self,
        user_id: str,
        org_id: str,
        entity: str,
        entity_id: str,
        action: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        user_context: Optional[UserContext] = None
    ) -> str:
        """
        Log an audit trail entry with trace correlation and structured logging.

        Args:
            user_id: ID of user (or process) performing the action
            org_id: Organization ID for multi-tenant scoping
            entity: Type of entity being acted upon
            entity_id: ID of the specific entity
            action: Action being performed
            before: State before the action (optional)
            after: State after the action (optional)
            metadata: Free-form details (optional)
            user_context: Full user context with request details (optional)

        Returns:
            str: ID of the created audit log entry
        """
        with tracer.start_as_current_span("audit.log_action") as span:
            span_context = span.get_span_context()
            audit_id = ObjectId()

            audit_entry = {
                "_id": audit_id,
                "timestamp": datetime.utcnow(),
                "userId": user_id,
                "organizationId": org_id,
                "entity": entity,
                "entityId": entity_id,
                "action": action,
                "before": before,
                "after": after,
                "metadata": metadata or {},
                "schemaVersion": 1
            }

            if span_context.is_valid:
                audit_entry.update({
                    "traceId": format(span_context.trace_id, "032x"),
                    "spanId": format(span_context.span_id, "016x")
                })

            if user_context:
                audit_entry.update({
                    "ipAddress": user_context.ip_address,
                    "userAgent": user_context.user_agent,
                    "sessionId": user_context.session_id
                })

            span.set_attributes({
                "audit.entity": entity,
                "audit.action": action,
                "audit.user_id": user_id,
                "audit.organization_id": org_id,
                "audit.entity_id": entity_id
            })

            try:
                self.mongo_service.get_collection(self.collection_name).insert_one(audit_entry)
            except PyMongoError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                logger.error(
                    "Failed to create audit trail entry",
                    extra={
                        "entity": entity,
                        "entity_id": entity_id,
                        "action": action,
                        "user_id": user_id,
                        "organization_id": org_id,
                        "error": str(e)
                    },
                    exc_info=True
                )
                raise

            logger.info(
                "Audit trail entry created",
                extra={
                    "audit_id": str(audit_id),
                    "entity": entity,
                    "entity_id": entity_id,
                    "action": action,
                    "user_id": user_id,
                    "organization_id": org_id,
                    "trace_id": audit_entry.get("traceId"),
                    "audit_category": "approval_workflow"
                }
            )

            return str(audit_id)

    def forward(self, org_id: str, entry: HistoryEntry) -> None:
        """Store a history entry as an audit log entry."""
        self.log_action(
            user_id=entry.actor_id,
            org_id=org_id,
            entity=APPROVAL_ENTITY,
            entity_id=entry.request_id,
            action=entry.action,
            metadata=dict(entry.metadata, history_entry_id=entry.id,
                          occurred_at=entry.timestamp.isoformat())
        )
