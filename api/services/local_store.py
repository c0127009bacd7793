# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
In-memory stores for local development.

These mirror the MongoDB-backed stores method for method and are selected
with APPROVAL_STORAGE=memory. All state is guarded by a lock so the same
conditional-write semantics hold across threads.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from models.entities import ActionPolicy, ApprovalRequest, ApproverAssignment, UserProfile
from models.enums import ApprovalStatus, ExecutionStatus
from models.requests import ApprovalRequestFilters
from .mongodb import PaginationResult
from .policies import ApproverRegistryBase
from .repository import DuplicateActiveRequestError

logger = logging.getLogger(__name__)


def _paginate(items: List[Any], page: int, page_size: int) -> PaginationResult:
    start = (page - 1) * page_size
    return PaginationResult(items[start:start + page_size], len(items), page, page_size)


class InMemoryApprovalRepository:
    """Approval request store held in process memory."""

    def __init__(self):
        self._lock = threading.Lock()
        self._requests: Dict[str, ApprovalRequest] = {}

    def _blocking_holder(self, duplicate_key: str) -> Optional[ApprovalRequest]:
        for stored in self._requests.values():
            if stored.is_blocking() and stored.duplicate_key() == duplicate_key:
                return stored
        return None

    def insert(self, request: ApprovalRequest) -> ApprovalRequest:
        with self._lock:
            if request.is_blocking() and self._blocking_holder(request.duplicate_key()):
                raise DuplicateActiveRequestError(request.duplicate_key())
            self._requests[request.id] = request.model_copy(deep=True)
            return request

    def get(self, org_id: str, request_id: str) -> Optional[ApprovalRequest]:
        with self._lock:
            stored = self._requests.get(request_id)
            if stored is None or stored.organization_id != org_id or stored.is_deleted():
                return None
            return stored.model_copy(deep=True)

    def replace(self, request: ApprovalRequest, expected_version: int,
                expected_status: str) -> bool:
        with self._lock:
            stored = self._requests.get(request.id)
            if (
                stored is None
                or stored.organization_id != request.organization_id
                or stored.version != expected_version
                or stored.status != expected_status
            ):
                return False

            if request.is_blocking():
                holder = self._blocking_holder(request.duplicate_key())
                if holder is not None and holder.id != request.id:
                    return False

            self._requests[request.id] = request.model_copy(deep=True)
            return True

    def find_by_duplicate_key(self, duplicate_key: str) -> Optional[ApprovalRequest]:
        with self._lock:
            holder = self._blocking_holder(duplicate_key)
            return holder.model_copy(deep=True) if holder else None

    def _scoped(self, org_id: str) -> List[ApprovalRequest]:
        return [
            stored for stored in self._requests.values()
            if stored.organization_id == org_id and not stored.is_deleted()
        ]

    def list(self, org_id: str, filters: Optional[ApprovalRequestFilters] = None,
             page: int = 1, page_size: int = 20) -> PaginationResult:
        with self._lock:
            items = self._scoped(org_id)
            if filters:
                if filters.status:
                    items = [r for r in items if r.status == filters.status.value]
                if filters.action_type:
                    action_type = filters.action_type.strip().lower()
                    items = [r for r in items if r.action_type == action_type]
                if filters.requester_id:
                    items = [r for r in items if r.requester_id == filters.requester_id]
            items.sort(key=lambda r: r.created_at, reverse=True)
            return _paginate([r.model_copy(deep=True) for r in items], page, page_size)

    def list_pending_for_approver(self, org_id: str, approver_id: str,
                                  page: int = 1, page_size: int = 20) -> PaginationResult:
        with self._lock:
            items = [
                r for r in self._scoped(org_id)
                if r.status == ApprovalStatus.PENDING and approver_id in r.pending_approver_ids()
            ]
            items.sort(key=lambda r: r.deadline or datetime.max)
            return _paginate([r.model_copy(deep=True) for r in items], page, page_size)

    def find_overdue(self, now: datetime, limit: int) -> List[ApprovalRequest]:
        with self._lock:
            items = [
                r for r in self._requests.values()
                if r.status == ApprovalStatus.PENDING and r.deadline is not None
                and r.deadline <= now and not r.is_deleted()
            ]
            items.sort(key=lambda r: r.deadline)
            return [r.model_copy(deep=True) for r in items[:limit]]

    def find_deadline_approaching(self, now: datetime, limit: int) -> List[ApprovalRequest]:
        with self._lock:
            items = [
                r for r in self._requests.values()
                if r.status == ApprovalStatus.PENDING
                and r.reminder_at is not None and r.reminder_at <= now
                and r.deadline is not None and r.deadline > now
                and r.deadline_reminder_sent_at is None
                and not r.is_deleted()
            ]
            items.sort(key=lambda r: r.deadline)
            return [r.model_copy(deep=True) for r in items[:limit]]

    def find_stale_executions(self, started_before: datetime, limit: int) -> List[ApprovalRequest]:
        with self._lock:
            items = [
                r for r in self._requests.values()
                if r.status == ApprovalStatus.APPROVED
                and r.execution_status == ExecutionStatus.EXECUTING
                and r.processed_at is not None and r.processed_at <= started_before
                and not r.is_deleted()
            ]
            items.sort(key=lambda r: r.processed_at)
            return [r.model_copy(deep=True) for r in items[:limit]]

    def summarize(self, org_id: str, since: datetime) -> List[Dict[str, Any]]:
        with self._lock:
            rows: Dict[tuple, Dict[str, Any]] = {}
            for request in self._scoped(org_id):
                if request.created_at < since:
                    continue
                key = (request.status, request.action_type)
                row = rows.setdefault(key, {
                    "status": request.status,
                    "action_type": request.action_type,
                    "count": 0,
                    "auto_approved": 0,
                    "escalated": 0,
                    "execution_failures": 0,
                    "decided": 0,
                    "decision_ms": 0
                })
                row["count"] += 1
                row["auto_approved"] += int(request.auto_approved)
                row["escalated"] += int(request.escalation_level > 0)
                row["execution_failures"] += int(request.execution_status == ExecutionStatus.FAILED)
                if request.processed_at and not request.auto_approved:
                    row["decided"] += 1
                    elapsed = request.processed_at - request.created_at
                    row["decision_ms"] += int(elapsed.total_seconds() * 1000)
            return list(rows.values())


class InMemoryPolicyStore:
    """Policies held in process memory."""

    def __init__(self, policies: Optional[Iterable[ActionPolicy]] = None):
        self._lock = threading.Lock()
        self._policies: Dict[tuple, ActionPolicy] = {}
        for policy in policies or []:
            self.save(policy)

    def get(self, org_id: str, action_type: str) -> Optional[ActionPolicy]:
        with self._lock:
            return self._policies.get((org_id, action_type.strip().lower()))

    def save(self, policy: ActionPolicy) -> ActionPolicy:
        with self._lock:
            self._policies[(policy.organization_id, policy.action_type)] = policy
        return policy


class InMemoryApproverRegistry(ApproverRegistryBase):
    """Approver assignments held in process memory."""

    def __init__(self, assignments: Optional[Iterable[ApproverAssignment]] = None):
        self._lock = threading.Lock()
        self._assignments: List[ApproverAssignment] = list(assignments or [])

    def get_assignments(self, org_id: str, action_type: str) -> List[ApproverAssignment]:
        key = action_type.strip().lower()
        with self._lock:
            rows = [
                a for a in self._assignments
                if a.organization_id == org_id and a.action_type == key and a.active
            ]
        return sorted(rows, key=lambda a: a.order)

    def add(self, assignment: ApproverAssignment) -> ApproverAssignment:
        with self._lock:
            self._assignments.append(assignment)
        return assignment


class StaticIdentityService:
    """Identity lookup over a fixed set of profiles."""

    def __init__(self, profiles: Optional[Iterable[UserProfile]] = None):
        self._profiles: Dict[tuple, UserProfile] = {}
        for profile in profiles or []:
            self.add(profile)

    def add(self, profile: UserProfile) -> UserProfile:
        self._profiles[(profile.organization_id, profile.user_id)] = profile
        return profile

    def get_profile(self, org_id: str, user_id: str) -> Optional[UserProfile]:
        profile = self._profiles.get((org_id, user_id))
        if profile is None or not profile.active:
            return None
        return profile

    def user_exists(self, org_id: str, user_id: str) -> bool:
        return self.get_profile(org_id, user_id) is not None

    def find_users_by_role(self, org_id: str, role: str) -> List[str]:
        wanted = role.strip().lower()
        return [
            profile.user_id
            for (profile_org, _), profile in sorted(self._profiles.items())
            if profile_org == org_id and profile.active and (
                wanted in {r.lower() for r in profile.roles}
                or (profile.sector or "").lower() == wanted
            )
        ]
