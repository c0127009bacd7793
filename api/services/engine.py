# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Approval request engine.

The state machine core: submits critical actions, records approver decisions,
aggregates them against the request's strategy snapshot and moves each
request to a terminal status exactly once.

Every mutation is a read-modify-write closed by a conditional replace keyed on
(request id, version, status). Only the writer whose replace wins observes a
transition, so terminal side effects (executor, notifications) run once.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from domain.approvals import (
    add_history,
    build_decision_slots,
    ensure_pending,
    fingerprint_payload,
    generate_request_code,
    transition
)
from domain.auto_approval import AutoApprovalEvaluator
from domain.errors import (
    AlreadyDecided,
    ApprovalError,
    Conflict,
    NotEligible,
    PolicyInactive,
    PolicyNotFound,
    RequestNotFound
)
from domain.strategy import evaluate, validate_configuration
from models.entities import ActionPolicy, ApprovalRequest, ExecutionDescriptor, HistoryEntry
from models.enums import ApprovalStatus, ExecutionStatus, HistoryAction
from models.requests import ApprovalRequestFilters
from .delegation import DelegationHandler
from .duplicates import DuplicateRequestGuard, to_duplicate_error
from .executor import ExecutionResult
from .mongodb import PaginationResult
from .repository import DuplicateActiveRequestError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SYSTEM_ACTOR = "system:escalation"

# Returned by a mutation that found nothing to change
NO_CHANGE = object()


def _split_env_list(value: Optional[str]) -> List[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


@dataclass
class EngineConfig:
    """Approval engine configuration settings."""
    max_conflict_retries: int = 5
    default_deadline_hours: int = 24
    reminder_window_hours: int = 2
    default_auto_approve_roles: List[str] = field(default_factory=list)
    admin_capabilities: List[str] = field(
        default_factory=lambda: ["approval:admin", "approval:auto_approve"]
    )
    cancel_permission: str = "approval:cancel"


def create_engine_config() -> EngineConfig:
    """
    Build the engine configuration from environment variables.

    Returns:
        EngineConfig: Engine settings
    """
    return EngineConfig(
        max_conflict_retries=int(os.getenv("APPROVAL_MAX_CONFLICT_RETRIES", "5")),
        default_deadline_hours=int(os.getenv("APPROVAL_DEFAULT_DEADLINE_HOURS", "24")),
        reminder_window_hours=int(os.getenv("ESCALATION_REMINDER_WINDOW_HOURS", "2")),
        default_auto_approve_roles=_split_env_list(os.getenv("APPROVAL_DEFAULT_AUTO_APPROVE_ROLES")),
        admin_capabilities=_split_env_list(
            os.getenv("APPROVAL_ADMIN_CAPABILITIES", "approval:admin,approval:auto_approve")
        ),
        cancel_permission=os.getenv("APPROVAL_CANCEL_PERMISSION", "approval:cancel")
    )


class ApprovalRequestEngine:
    """Creates approval requests and drives them to a terminal status."""

    def __init__(
        self,
        repository,
        policies,
        registry,
        identity,
        executor=None,
        notifications=None,
        audit=None,
        config: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.repository = repository
        self.policies = policies
        self.registry = registry
        self.identity = identity
        self.executor = executor
        self.notifications = notifications
        self.audit = audit
        self.config = config or EngineConfig()
        self.clock = clock or datetime.utcnow

        self.duplicates = DuplicateRequestGuard(repository)
        self.auto_approval = AutoApprovalEvaluator(
            default_roles=self.config.default_auto_approve_roles,
            admin_capabilities=self.config.admin_capabilities
        )
        self.delegation = DelegationHandler(self)

    # Queries

    def get(self, org_id: str, request_id: str) -> ApprovalRequest:
        """
        Load a request.

        Raises:
            RequestNotFound: If the request does not exist in the organization
        """
        request = self.repository.get(org_id, request_id)
        if request is None:
            raise RequestNotFound(request_id)
        return request

    def list_requests(self, org_id: str, filters: Optional[ApprovalRequestFilters] = None,
                      page: int = 1, page_size: int = 20) -> PaginationResult:
        """List requests in the organization, newest first."""
        return self.repository.list(org_id, filters, page, page_size)

    def list_pending_for(self, org_id: str, approver_id: str,
                         page: int = 1, page_size: int = 20) -> PaginationResult:
        """Requests awaiting a decision from approver_id."""
        return self.repository.list_pending_for_approver(org_id, approver_id, page, page_size)

    def history(self, org_id: str, request_id: str) -> List[HistoryEntry]:
        """A request's history, oldest first."""
        request = self.get(org_id, request_id)
        return sorted(request.history, key=lambda entry: entry.timestamp)

    # Submission

    def submit(
        self,
        org_id: str,
        requester_id: str,
        action_type: str,
        justification: str,
        payload: Optional[Dict[str, Any]] = None,
        execution: Optional[ExecutionDescriptor] = None,
        deadline: Optional[datetime] = None,
        attachments: Optional[Sequence[str]] = None,
        override_roles: Optional[Sequence[str]] = None
    ) -> ApprovalRequest:
        """
        Submit a critical action for approval.

        Args:
            org_id: Organization scope
            requester_id: User submitting the action
            action_type: Critical action key
            justification: Free-text justification
            payload: Parameters needed to execute the action later
            execution: What to invoke once approved
            deadline: Decision deadline, defaults from the policy
            attachments: Attachment references
            override_roles: Per-request auto-approval role list

        Returns:
            ApprovalRequest: PENDING request, or APPROVED when auto-approved

        Raises:
            PolicyNotFound, PolicyInactive: Configuration errors
            DuplicateRequest: An equivalent request is still blocking
            InvalidStrategyConfiguration: The approver set cannot satisfy the policy
        """
        with tracer.start_as_current_span("engine.submit") as span:
            span.set_attributes({
                "approval.org_id": org_id,
                "approval.requester_id": requester_id,
                "approval.action_type": action_type
            })

            try:
                request, approvers = self._create(
                    org_id, requester_id, action_type, justification, payload or {},
                    execution, deadline, list(attachments or []), override_roles
                )
            except ApprovalError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            span.set_attributes({
                "approval.request_id": request.id,
                "approval.status": request.status,
                "approval.auto_approved": request.auto_approved
            })

            logger.info(
                f"Approval request {request.code} submitted",
                extra={
                    "request_id": request.id,
                    "request_code": request.code,
                    "actor_id": requester_id,
                    "organization_id": org_id,
                    "action_type": request.action_type,
                    "status": request.status,
                    "approver_count": len(approvers)
                }
            )

            if request.auto_approved:
                request = self._finish_terminal(request)
            else:
                self._notify("notify_decision_needed", request, approvers)

            return request

    def _create(self, org_id, requester_id, action_type, justification, payload,
                execution, deadline, attachments, override_roles) -> Tuple[ApprovalRequest, List[str]]:
        policy = self.policies.get(org_id, action_type)
        if policy is None:
            raise PolicyNotFound(action_type)
        if not policy.active:
            raise PolicyInactive(policy.action_type)

        fingerprint = fingerprint_payload(payload)
        self.duplicates.check(org_id, requester_id, policy.action_type, fingerprint)

        # Unknown requesters get no roles, so role-based auto-approval fails closed
        profile = self.identity.get_profile(org_id, requester_id)
        decision = self.auto_approval.decide(
            policy,
            profile.roles if profile else [],
            profile.permissions if profile else [],
            override_roles
        )

        now = self.clock()
        request = ApprovalRequest(
            organization_id=org_id,
            created_by=requester_id,
            updated_by=requester_id,
            created_at=now,
            updated_at=now,
            code=generate_request_code(),
            action_type=policy.action_type,
            policy_id=policy.id,
            strategy=policy.strategy,
            requester_id=requester_id,
            justification=justification,
            payload=payload,
            fingerprint=fingerprint,
            execution=execution,
            attachments=attachments
        )

        approvers: List[str] = []
        if decision.approved:
            request.auto_approved = True
            request.auto_approval_basis = decision.basis.value
            transition(request, ApprovalStatus.APPROVED, requester_id, now=now)
            request.execution_status = self._initial_execution_status(request)
            add_history(request, HistoryAction.AUTO_APPROVE, requester_id, {
                "basis": decision.basis.value,
                "matched": decision.matched,
                "role_source": decision.role_source,
                "policy_id": policy.id,
                "terminal": True,
                "final_status": ApprovalStatus.APPROVED.value
            }, now=now)
        else:
            approvers = self.registry.resolve(
                org_id, policy.action_type, self.identity, exclude=[requester_id]
            )
            request.required_approvals = validate_configuration(policy, len(approvers))
            request.decisions = build_decision_slots(approvers)
            request.deadline = deadline or self._default_deadline(policy, now)
            request.reminder_at = self._reminder_at(request.deadline, policy, now)
            add_history(request, HistoryAction.CREATE, requester_id, {
                "policy_id": policy.id,
                "strategy": policy.strategy,
                "required_approvals": request.required_approvals,
                "approvers": approvers,
                "deadline": request.deadline.isoformat() if request.deadline else None
            }, now=now)

        try:
            self.repository.insert(request)
        except DuplicateActiveRequestError:
            existing = self.duplicates.find_active(
                org_id, requester_id, policy.action_type, fingerprint
            )
            if existing is not None:
                raise to_duplicate_error(existing)
            raise Conflict("A concurrent submission for the same action is in progress",
                           {"action_type": policy.action_type})

        self._forward_history(org_id, request.history)
        return request, approvers

    def _default_deadline(self, policy: ActionPolicy, now: datetime) -> Optional[datetime]:
        hours = policy.deadline_hours or self.config.default_deadline_hours
        return now + timedelta(hours=hours) if hours else None

    def _reminder_at(self, deadline: Optional[datetime], policy: ActionPolicy,
                     now: datetime) -> Optional[datetime]:
        window = policy.reminder_window_hours or self.config.reminder_window_hours
        if deadline is None or not window:
            return None
        return max(now, deadline - timedelta(hours=window))

    def _initial_execution_status(self, request: ApprovalRequest) -> str:
        if request.execution is None or self.executor is None:
            return ExecutionStatus.SKIPPED.value
        return ExecutionStatus.EXECUTING.value

    # Decisions

    def record_decision(self, org_id: str, request_id: str, approver_id: str,
                        approved: bool, comment: Optional[str] = None) -> ApprovalRequest:
        """
        Record one approver's decision and re-evaluate the request.

        Raises:
            RequestNotFound: Unknown request
            NotPending: The request is already terminal
            NotEligible: approver_id holds no decision slot
            AlreadyDecided: The slot already holds a decision
            Conflict: Concurrent writers exhausted the retries
        """
        with tracer.start_as_current_span("engine.record_decision") as span:
            span.set_attributes({
                "approval.request_id": request_id,
                "approval.approver_id": approver_id,
                "approval.approved": approved
            })

            def mutation(request: ApprovalRequest):
                ensure_pending(request)
                slot = request.slot_for(approver_id)
                if slot is None:
                    raise NotEligible(
                        f"User {approver_id} has no decision slot on request {request.code}",
                        {"request_id": request.id, "approver_id": approver_id}
                    )
                if slot.is_decided():
                    raise AlreadyDecided(
                        f"User {approver_id} already decided request {request.code}",
                        {"request_id": request.id, "approver_id": approver_id}
                    )

                now = self.clock()
                slot.approved = approved
                slot.comment = comment
                slot.decided_at = now
                slot.decided_by = approver_id

                outcome = evaluate(request.decisions, request.strategy, request.required_approvals)
                metadata = {
                    "order": slot.order,
                    "original_approver_id": slot.original_approver_id,
                    "comment": comment,
                    "approvals": outcome.approvals,
                    "rejections": outcome.rejections,
                    "required": outcome.required,
                    "terminal": outcome.is_terminal,
                    "final_status": outcome.status.value if outcome.is_terminal else None
                }
                if slot.delegation is not None:
                    metadata["delegated_from"] = slot.delegation.from_approver_id

                if outcome.is_terminal:
                    transition(request, outcome.status, approver_id, note=comment, now=now)
                    if outcome.status == ApprovalStatus.APPROVED:
                        request.execution_status = self._initial_execution_status(request)
                else:
                    request.update_timestamp(approver_id)

                action = HistoryAction.APPROVE if approved else HistoryAction.REJECT
                add_history(request, action, approver_id, metadata, now=now)
                return outcome

            try:
                request, outcome = self._mutate(org_id, request_id, mutation)
            except ApprovalError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            span.set_attribute("approval.status", request.status)
            logger.info(
                f"Decision recorded on approval request {request.code}",
                extra={
                    "request_id": request.id,
                    "request_code": request.code,
                    "actor_id": approver_id,
                    "organization_id": org_id,
                    "approved": approved,
                    "status": request.status
                }
            )

            if outcome.is_terminal:
                request = self._finish_terminal(request)
            return request

    def cancel(self, org_id: str, request_id: str, actor_id: str,
               reason: Optional[str] = None,
               actor_permissions: Sequence[str] = ()) -> ApprovalRequest:
        """
        Cancel a PENDING request.

        Only the requester or a holder of the cancel permission may cancel.

        Raises:
            NotPending: The request is already terminal
            NotEligible: The actor may not cancel this request
        """
        with tracer.start_as_current_span("engine.cancel") as span:
            span.set_attributes({"approval.request_id": request_id, "approval.actor_id": actor_id})

            def mutation(request: ApprovalRequest):
                ensure_pending(request)
                if actor_id != request.requester_id and self.config.cancel_permission not in actor_permissions:
                    raise NotEligible(
                        f"User {actor_id} may not cancel request {request.code}",
                        {"request_id": request.id, "actor_id": actor_id}
                    )
                now = self.clock()
                transition(request, ApprovalStatus.CANCELLED, actor_id, note=reason, now=now)
                add_history(request, HistoryAction.CANCEL, actor_id, {
                    "reason": reason,
                    "terminal": True,
                    "final_status": ApprovalStatus.CANCELLED.value
                }, now=now)

            try:
                request, _ = self._mutate(org_id, request_id, mutation)
            except ApprovalError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            logger.info(
                f"Approval request {request.code} cancelled",
                extra={
                    "request_id": request.id,
                    "request_code": request.code,
                    "actor_id": actor_id,
                    "organization_id": org_id,
                    "status": request.status
                }
            )
            self._notify("notify_terminal_state", request)
            return request

    def delegate(self, org_id: str, request_id: str, from_approver_id: str,
                 to_approver_id: str, reason: Optional[str] = None) -> ApprovalRequest:
        """Reassign an undecided slot to another approver."""
        return self.delegation.delegate(org_id, request_id, from_approver_id, to_approver_id, reason)

    # Scheduler transitions

    def escalate(self, org_id: str, request_id: str, to_approver_id: str,
                 policy: ActionPolicy, now: Optional[datetime] = None) -> Optional[ApprovalRequest]:
        """
        Reassign the first undecided slot of an overdue request to the next tier.

        The write is conditioned on the request still being PENDING and past
        its deadline.

        Returns:
            The escalated request, or None when it no longer qualifies

        Raises:
            NotPending: The request became terminal before the write
        """
        with tracer.start_as_current_span("engine.escalate") as span:
            span.set_attributes({"approval.request_id": request_id, "approval.to_approver_id": to_approver_id})
            moved: Dict[str, Any] = {}

            def mutation(request: ApprovalRequest):
                ensure_pending(request)
                now_ = now or self.clock()
                if request.deadline is None or request.deadline > now_:
                    return NO_CHANGE
                if request.slot_for(to_approver_id) is not None or to_approver_id == request.requester_id:
                    return NO_CHANGE

                undecided = sorted(
                    (slot for slot in request.decisions if not slot.is_decided()),
                    key=lambda slot: slot.order
                )
                if not undecided:
                    return NO_CHANGE

                slot = undecided[0]
                moved["from"] = slot.approver_id
                previous_deadline = request.deadline

                slot.escalated_from = slot.approver_id
                slot.approver_id = to_approver_id
                slot.escalation_level += 1
                slot.delegation = None

                request.escalation_level += 1
                request.deadline = now_ + timedelta(hours=policy.escalation_increment_hours)
                request.reminder_at = self._reminder_at(request.deadline, policy, now_)
                request.deadline_reminder_sent_at = None
                request.update_timestamp(SYSTEM_ACTOR)

                add_history(request, HistoryAction.ESCALATE, SYSTEM_ACTOR, {
                    "from_approver_id": moved["from"],
                    "to_approver_id": to_approver_id,
                    "order": slot.order,
                    "escalation_level": request.escalation_level,
                    "escalation_target": policy.escalation_target,
                    "previous_deadline": previous_deadline.isoformat(),
                    "new_deadline": request.deadline.isoformat()
                }, now=now_)

            request, outcome = self._mutate(org_id, request_id, mutation)
            if outcome is NO_CHANGE:
                span.set_attribute("approval.escalated", False)
                return None

            span.set_attribute("approval.escalated", True)
            logger.info(
                f"Approval request {request.code} escalated",
                extra={
                    "request_id": request.id,
                    "request_code": request.code,
                    "actor_id": SYSTEM_ACTOR,
                    "organization_id": org_id,
                    "escalation_level": request.escalation_level,
                    "status": request.status
                }
            )
            self._notify("notify_escalated", request, moved.get("from"), to_approver_id)
            return request

    def expire(self, org_id: str, request_id: str,
               now: Optional[datetime] = None) -> Optional[ApprovalRequest]:
        """
        Move an overdue PENDING request to EXPIRED.

        Returns:
            The expired request, or None when its deadline has not elapsed

        Raises:
            NotPending: The request is already terminal
        """
        with tracer.start_as_current_span("engine.expire") as span:
            span.set_attribute("approval.request_id", request_id)

            def mutation(request: ApprovalRequest):
                ensure_pending(request)
                now_ = now or self.clock()
                if request.deadline is None or request.deadline > now_:
                    return NO_CHANGE
                transition(request, ApprovalStatus.EXPIRED, SYSTEM_ACTOR,
                           note="Decision deadline elapsed", now=now_)
                add_history(request, HistoryAction.EXPIRE, SYSTEM_ACTOR, {
                    "deadline": request.deadline.isoformat(),
                    "escalation_level": request.escalation_level,
                    "terminal": True,
                    "final_status": ApprovalStatus.EXPIRED.value
                }, now=now_)

            request, outcome = self._mutate(org_id, request_id, mutation)
            if outcome is NO_CHANGE:
                return None

            logger.info(
                f"Approval request {request.code} expired",
                extra={
                    "request_id": request.id,
                    "request_code": request.code,
                    "actor_id": SYSTEM_ACTOR,
                    "organization_id": org_id,
                    "status": request.status
                }
            )
            self._notify("notify_terminal_state", request)
            return request

    def mark_reminded(self, org_id: str, request_id: str,
                      now: Optional[datetime] = None) -> Optional[ApprovalRequest]:
        """
        Record the deadline reminder and notify pending approvers once.

        Returns:
            The request, or None when a reminder is not due or was already sent
        """
        with tracer.start_as_current_span("engine.mark_reminded") as span:
            span.set_attribute("approval.request_id", request_id)

            def mutation(request: ApprovalRequest):
                ensure_pending(request)
                now_ = now or self.clock()
                if request.deadline_reminder_sent_at is not None or request.deadline is None:
                    return NO_CHANGE
                if request.reminder_at is None or request.reminder_at > now_ or request.deadline <= now_:
                    return NO_CHANGE
                request.deadline_reminder_sent_at = now_

            request, outcome = self._mutate(org_id, request_id, mutation)
            if outcome is NO_CHANGE:
                return None

            self._notify("notify_deadline_approaching", request)
            return request

    def fail_stale_execution(self, org_id: str, request_id: str, started_before: datetime,
                             now: Optional[datetime] = None) -> Optional[ApprovalRequest]:
        """
        Mark an execution whose outcome was never recorded as FAILED.

        Args:
            org_id: Organization ID
            request_id: Approval request ID
            started_before: Executions started at or before this time are stale
            now: Time of the check (defaults to the engine clock)

        Returns:
            The updated request, or None when the execution is not stale
        """
        with tracer.start_as_current_span("engine.fail_stale_execution") as span:
            span.set_attribute("approval.request_id", request_id)

            def mutation(request: ApprovalRequest):
                if (request.status != ApprovalStatus.APPROVED
                        or request.execution_status != ExecutionStatus.EXECUTING):
                    return NO_CHANGE
                if request.processed_at is None or request.processed_at > started_before:
                    return NO_CHANGE
                request.execution_status = ExecutionStatus.FAILED.value
                request.execution_error = (
                    f"Execution outcome not recorded since {request.processed_at.isoformat()}"
                )
                request.executed_at = now or self.clock()

            request, outcome = self._mutate(org_id, request_id, mutation)
            if outcome is NO_CHANGE:
                return None

            logger.warning(
                f"Approval request {request.code} execution marked failed, outcome never recorded",
                extra={
                    "request_id": request.id,
                    "request_code": request.code,
                    "organization_id": org_id,
                    "execution_status": request.execution_status
                }
            )
            return request

    # Internals

    def _mutate(self, org_id: str, request_id: str,
                mutation: Callable[[ApprovalRequest], Any]) -> Tuple[ApprovalRequest, Any]:
        """
        Apply a mutation with an optimistic conditional write.

        Each attempt reloads the request, so status checks inside the
        mutation always see the latest committed state.

        Raises:
            RequestNotFound: Unknown request
            Conflict: Every attempt lost the race
        """
        attempts = max(1, self.config.max_conflict_retries)
        for attempt in range(attempts):
            current = self.get(org_id, request_id)
            updated = current.model_copy(deep=True)
            known_history = len(updated.history)

            outcome = mutation(updated)
            if outcome is NO_CHANGE:
                return current, NO_CHANGE

            updated.version = current.version + 1
            if self.repository.replace(updated, current.version, current.status):
                self._forward_history(org_id, updated.history[known_history:])
                return updated, outcome

            logger.info(
                f"Conditional write on approval request {request_id} lost, retrying",
                extra={"request_id": request_id, "attempt": attempt + 1, "organization_id": org_id}
            )

        raise Conflict(
            f"Approval request {request_id} was modified concurrently, retry the operation",
            {"request_id": request_id, "attempts": attempts}
        )

    def _finish_terminal(self, request: ApprovalRequest) -> ApprovalRequest:
        """Run the side effects owed by the writer that made the request terminal."""
        if request.execution_status == ExecutionStatus.EXECUTING:
            request = self._run_executor(request)
        self._notify("notify_terminal_state", request)
        return request

    def _execution_source(self, request: ApprovalRequest) -> Dict[str, Any]:
        return {
            "request_id": request.id,
            "code": request.code,
            "organization_id": request.organization_id,
            "action_type": request.action_type,
            "requester_id": request.requester_id,
            "approved_by": request.processed_by,
            "auto_approved": request.auto_approved,
            "payload": request.payload
        }

    def _run_executor(self, request: ApprovalRequest) -> ApprovalRequest:
        """Invoke the executor once and record its outcome without touching status."""
        with tracer.start_as_current_span("engine.execute") as span:
            span.set_attributes({
                "approval.request_id": request.id,
                "approval.executor_kind": request.execution.kind if request.execution else ""
            })

            try:
                result = self.executor.execute(request.id, self._execution_source(request), request.execution)
            except Exception as e:
                # Executor failures are recorded, never propagated
                span.record_exception(e)
                logger.error(
                    f"Executor raised for approval request {request.code}",
                    extra={"request_id": request.id, "organization_id": request.organization_id},
                    exc_info=True
                )
                result = ExecutionResult(success=False, error=str(e))

            if not result.success:
                span.set_status(Status(StatusCode.ERROR, result.error or "execution failed"))

            def mutation(stored: ApprovalRequest):
                if stored.execution_status != ExecutionStatus.EXECUTING:
                    return NO_CHANGE
                stored.execution_status = (
                    ExecutionStatus.EXECUTED.value if result.success else ExecutionStatus.FAILED.value
                )
                stored.execution_result = result.data or None
                stored.execution_error = result.error
                stored.executed_at = self.clock()

            try:
                updated, outcome = self._mutate(request.organization_id, request.id, mutation)
            except Exception as e:
                # The approval is committed; the scheduler fails stale executions later
                span.record_exception(e)
                logger.error(
                    f"Failed to record execution outcome for approval request {request.code}: {e}",
                    extra={"request_id": request.id, "organization_id": request.organization_id},
                    exc_info=True
                )
                return request

            log = logger.info if result.success else logger.warning
            log(
                f"Approval request {request.code} execution {updated.execution_status}",
                extra={
                    "request_id": request.id,
                    "request_code": request.code,
                    "organization_id": request.organization_id,
                    "execution_status": updated.execution_status,
                    "execution_error": result.error
                }
            )
            return updated

    def _forward_history(self, org_id: str, entries: Sequence[HistoryEntry]) -> None:
        if self.audit is None:
            return
        for entry in entries:
            try:
                self.audit.forward(org_id, entry)
            except Exception:
                # The embedded history is authoritative
                logger.warning(
                    f"Audit forwarding failed for history entry {entry.id}",
                    extra={"request_id": entry.request_id, "organization_id": org_id},
                    exc_info=True
                )

    def _notify(self, method: str, *args) -> None:
        if self.notifications is None:
            return
        try:
            getattr(self.notifications, method)(*args)
        except Exception:
            # Notifications are best-effort
            logger.warning(f"Notification {method} failed", exc_info=True)
