# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB persistence for approval requests.

Requests are stored as single documents embedding their decision slots and
history, so every state change is one atomic conditional replace.
"""

import logging
from datetime import datetime
from typing import List, Dict, Optional, Any

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError
from opentelemetry import trace

from models.entities import ApprovalRequest
from models.enums import ApprovalStatus, ExecutionStatus
from models.requests import ApprovalRequestFilters
from .mongodb import MongoDBService, PaginationResult, APPROVAL_REQUESTS

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class DuplicateActiveRequestError(Exception):
    """Insert rejected because an equivalent request already blocks duplicates."""

    def __init__(self, duplicate_key: str):
        super().__init__(f"Active request already exists for key {duplicate_key}")
        self.duplicate_key = duplicate_key


class MongoApprovalRepository:
    """Approval request store backed by the approval_requests collection."""

    def __init__(self, mongodb_service: MongoDBService):
        self.mongodb = mongodb_service

    @property
    def collection(self):
        return self.mongodb.get_collection(APPROVAL_REQUESTS)

    def insert(self, request: ApprovalRequest) -> ApprovalRequest:
        """
        Persist a new request.

        Raises:
            DuplicateActiveRequestError: If the duplicate guard index rejects it
        """
        with tracer.start_as_current_span("repository.insert") as span:
            span.set_attributes({
                "approval.request_id": request.id,
                "approval.status": request.status
            })
            try:
                self.collection.insert_one(request.to_document())
            except DuplicateKeyError as e:
                logger.info(f"Duplicate guard index rejected request {request.code}: {e}")
                raise DuplicateActiveRequestError(request.duplicate_key())
            return request

    def get(self, org_id: str, request_id: str) -> Optional[ApprovalRequest]:
        """Load a request within the organization."""
        try:
            object_id = self.mongodb.validate_object_id(request_id)
        except ValueError:
            return None

        document = self.collection.find_one(self.mongodb.build_org_query(org_id, {"_id": object_id}))
        if not document:
            return None
        return ApprovalRequest.from_document(document)

    def replace(self, request: ApprovalRequest, expected_version: int,
                expected_status: str) -> bool:
        """
        Conditionally replace a request.

        The write only matches when the stored version and status are the ones
        the caller read, so concurrent writers cannot both succeed.

        Returns:
            bool: True if this writer won
        """
        with tracer.start_as_current_span("repository.replace") as span:
            span.set_attributes({
                "approval.request_id": request.id,
                "approval.expected_version": expected_version,
                "approval.expected_status": expected_status
            })
            query = {
                "_id": self.mongodb.validate_object_id(request.id),
                "organizationId": request.organization_id,
                "version": expected_version,
                "status": expected_status
            }
            try:
                result = self.collection.replace_one(query, request.to_document())
            except DuplicateKeyError as e:
                # Another request took the duplicate key meanwhile
                logger.warning(f"Duplicate guard conflict replacing request {request.id}: {e}")
                return False

            won = result.matched_count == 1
            span.set_attribute("approval.write_won", won)
            return won

    def find_by_duplicate_key(self, duplicate_key: str) -> Optional[ApprovalRequest]:
        """Find the blocking request holding a duplicate key."""
        document = self.collection.find_one({"duplicateKey": duplicate_key, "deletedAt": None})
        if not document:
            return None
        return ApprovalRequest.from_document(document)

    def list(self, org_id: str, filters: Optional[ApprovalRequestFilters] = None,
             page: int = 1, page_size: int = 20) -> PaginationResult:
        """List requests, newest first."""
        query = filters.to_mongo_query() if filters else {}
        result = self.mongodb.paginate_by_org(
            APPROVAL_REQUESTS, org_id, page=page, page_size=page_size, filters=query
        )
        result.items = [ApprovalRequest.from_document(doc) for doc in result.items]
        return result

    def list_pending_for_approver(self, org_id: str, approver_id: str,
                                  page: int = 1, page_size: int = 20) -> PaginationResult:
        """PENDING requests where approver_id holds an undecided slot."""
        query = {
            "status": ApprovalStatus.PENDING.value,
            "decisions": {"$elemMatch": {"approverId": approver_id, "approved": None}}
        }
        result = self.mongodb.paginate_by_org(
            APPROVAL_REQUESTS, org_id, page=page, page_size=page_size,
            filters=query, sort_by="deadline", sort_order=ASCENDING
        )
        result.items = [ApprovalRequest.from_document(doc) for doc in result.items]
        return result

    def find_overdue(self, now: datetime, limit: int) -> List[ApprovalRequest]:
        """PENDING requests across organizations whose deadline has elapsed."""
        cursor = self.collection.find({
            "status": ApprovalStatus.PENDING.value,
            "deadline": {"$lte": now},
            "deletedAt": None
        }).sort("deadline", ASCENDING).limit(limit)
        return [ApprovalRequest.from_document(doc) for doc in cursor]

    def find_deadline_approaching(self, now: datetime, limit: int) -> List[ApprovalRequest]:
        """PENDING requests inside their reminder window that were not reminded yet."""
        cursor = self.collection.find({
            "status": ApprovalStatus.PENDING.value,
            "reminderAt": {"$lte": now},
            "deadline": {"$gt": now},
            "deadlineReminderSentAt": None,
            "deletedAt": None
        }).sort("deadline", ASCENDING).limit(limit)
        return [ApprovalRequest.from_document(doc) for doc in cursor]

    def find_stale_executions(self, started_before: datetime, limit: int) -> List[ApprovalRequest]:
        """APPROVED requests still EXECUTING since before the given time."""
        cursor = self.collection.find({
            "status": ApprovalStatus.APPROVED.value,
            "executionStatus": ExecutionStatus.EXECUTING.value,
            "processedAt": {"$lte": started_before},
            "deletedAt": None
        }).sort("processedAt", ASCENDING).limit(limit)
        return [ApprovalRequest.from_document(doc) for doc in cursor]

    def summarize(self, org_id: str, since: datetime) -> List[Dict[str, Any]]:
        """
        Aggregate requests created since a date by status and action type.

        Returns:
            List of rows with status, action_type, count, auto_approved,
            escalated, execution_failures, decided and decision_ms
        """
        human_decided = {"$and": [
            {"$ne": [{"$ifNull": ["$processedAt", None]}, None]},
            {"$not": ["$autoApproved"]}
        ]}
        pipeline = [
            {"$match": {"createdAt": {"$gte": since}}},
            {"$group": {
                "_id": {"status": "$status", "actionType": "$actionType"},
                "count": {"$sum": 1},
                "autoApproved": {"$sum": {"$cond": ["$autoApproved", 1, 0]}},
                "escalated": {"$sum": {"$cond": [{"$gt": ["$escalationLevel", 0]}, 1, 0]}},
                "executionFailures": {"$sum": {"$cond": [
                    {"$eq": ["$executionStatus", ExecutionStatus.FAILED.value]}, 1, 0
                ]}},
                "decided": {"$sum": {"$cond": [human_decided, 1, 0]}},
                "decisionMs": {"$sum": {"$cond": [
                    human_decided, {"$subtract": ["$processedAt", "$createdAt"]}, 0
                ]}}
            }},
            {"$sort": {"_id.actionType": ASCENDING, "count": DESCENDING}}
        ]

        try:
            rows = self.mongodb.aggregate_by_org(APPROVAL_REQUESTS, org_id, pipeline)
        except PyMongoError as e:
            logger.error(f"Failed to aggregate approval metrics for org {org_id}: {e}")
            raise

        return [
            {
                "status": row["_id"]["status"],
                "action_type": row["_id"]["actionType"],
                "count": row["count"],
                "auto_approved": row["autoApproved"],
                "escalated": row["escalated"],
                "execution_failures": row["executionFailures"],
                "decided": row["decided"],
                "decision_ms": row["decisionMs"]
            }
            for row in rows
        ]
