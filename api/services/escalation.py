# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Escalation scheduler.

A recurring scan over PENDING requests: overdue requests are escalated to the
policy's next tier or expired, and requests inside their reminder window get
one deadline reminder. Approved requests whose execution outcome was never
recorded within the execution timeout are marked FAILED. Every transition
goes through the engine's conditional write, so a request decided between
the scan and the write is left alone and several scanners may run at once.
"""

import logging
import os
import socket
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from opentelemetry import trace

from domain.errors import ApprovalError, NotPending
from models.entities import ActionPolicy, ApprovalRequest
from models.enums import ApprovalStrategy

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

LOCK_NAME = "approval:escalation-scan"


@dataclass
class SchedulerConfig:
    """Escalation scheduler configuration settings."""
    enabled: bool = False
    interval_seconds: int = 1800
    batch_size: int = 100
    max_batch_seconds: float = 30.0
    lock_ttl_seconds: int = 300
    execution_timeout_seconds: int = 900


def create_scheduler_config() -> SchedulerConfig:
    """
    Build the scheduler configuration from environment variables.

    Returns:
        SchedulerConfig: Scheduler settings
    """
    return SchedulerConfig(
        enabled=os.getenv("ESCALATION_SCHEDULER_ENABLED", "false").lower() == "true",
        interval_seconds=int(os.getenv("ESCALATION_INTERVAL_SECONDS", "1800")),
        batch_size=int(os.getenv("ESCALATION_BATCH_SIZE", "100")),
        max_batch_seconds=float(os.getenv("ESCALATION_MAX_BATCH_SECONDS", "30")),
        lock_ttl_seconds=int(os.getenv("ESCALATION_LOCK_TTL_SECONDS", "300")),
        execution_timeout_seconds=int(os.getenv("EXECUTION_TIMEOUT_SECONDS", "900"))
    )


@dataclass
class ScanResult:
    """Counters for one scan."""
    started_at: datetime
    escalated: int = 0
    expired: int = 0
    reminded: int = 0
    execution_failed: int = 0
    skipped: int = 0
    errors: int = 0
    truncated: bool = False
    lock_skipped: bool = False
    request_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "started_at": self.started_at.isoformat(),
            "escalated": self.escalated,
            "expired": self.expired,
            "reminded": self.reminded,
            "execution_failed": self.execution_failed,
            "skipped": self.skipped,
            "errors": self.errors,
            "truncated": self.truncated,
            "lock_skipped": self.lock_skipped
        }


class EscalationScheduler:
    """
    Fixed-interval scanner driving escalation, expiry and reminders.

    ``run_once()`` performs one bounded scan; ``start()``/``stop()`` run it
    on a background thread. The stop signal is honoured between items.
    """

    def __init__(self, engine, config: Optional[SchedulerConfig] = None, redis_service=None):
        self.engine = engine
        self.config = config or SchedulerConfig()
        self.redis = redis_service
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._owner = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

    # Lifecycle

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="escalation-scheduler",
            daemon=True
        )
        self._thread.start()
        logger.info("Escalation scheduler started", extra={"interval_seconds": self.config.interval_seconds})

    def request_stop(self) -> None:
        """Signal stop without waiting (safe from signal handlers)."""
        self._stop_event.set()

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current item to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("Escalation scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until stop is requested or the timeout elapses."""
        return self._stop_event.wait(timeout)

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                # Keep the loop alive; the next tick retries
                logger.exception("Escalation scan failed")
            self._stop_event.wait(timeout=self.config.interval_seconds)

    # Scan

    def run_once(self, now: Optional[datetime] = None) -> ScanResult:
        """
        Run one time-boxed scan.

        Args:
            now: Scan time (defaults to the engine clock)

        Returns:
            ScanResult: What the scan did
        """
        now = now or self.engine.clock()
        result = ScanResult(started_at=now)

        with tracer.start_as_current_span("escalation.scan") as span:
            if not self._acquire_lock():
                result.lock_skipped = True
                span.set_attribute("escalation.lock_skipped", True)
                logger.info("Escalation scan skipped, another scanner holds the lock")
                return result

            try:
                deadline = time.monotonic() + self.config.max_batch_seconds
                policies: Dict[Tuple[str, str], Optional[ActionPolicy]] = {}

                for request in self.engine.repository.find_overdue(now, self.config.batch_size):
                    if self._should_stop(deadline, result):
                        break
                    self._handle_overdue(request, now, policies, result)

                if not result.truncated and not self._stop_event.is_set():
                    for request in self.engine.repository.find_deadline_approaching(now, self.config.batch_size):
                        if self._should_stop(deadline, result):
                            break
                        self._handle_reminder(request, now, result)

                if not result.truncated and not self._stop_event.is_set():
                    started_before = now - timedelta(seconds=self.config.execution_timeout_seconds)
                    for request in self.engine.repository.find_stale_executions(started_before,
                                                                                self.config.batch_size):
                        if self._should_stop(deadline, result):
                            break
                        self._handle_stale_execution(request, started_before, now, result)
            finally:
                self._release_lock()

            span.set_attributes({
                "escalation.escalated": result.escalated,
                "escalation.expired": result.expired,
                "escalation.reminded": result.reminded,
                "escalation.execution_failed": result.execution_failed,
                "escalation.skipped": result.skipped,
                "escalation.errors": result.errors,
                "escalation.truncated": result.truncated
            })

        logger.info("Escalation scan completed", extra=result.to_dict())
        return result

    def _should_stop(self, deadline: float, result: ScanResult) -> bool:
        if self._stop_event.is_set():
            return True
        if time.monotonic() >= deadline:
            result.truncated = True
            return True
        return False

    def _policy_for(self, request: ApprovalRequest,
                    policies: Dict[Tuple[str, str], Optional[ActionPolicy]]) -> Optional[ActionPolicy]:
        key = (request.organization_id, request.action_type)
        if key not in policies:
            policies[key] = self.engine.policies.get(*key)
        return policies[key]

    def resolve_escalation_target(self, request: ApprovalRequest,
                                  policy: Optional[ActionPolicy]) -> Optional[str]:
        """
        Pick the next-tier approver for an overdue request.

        Returns None when the request has no further escalation tier.
        """
        if policy is None or request.strategy != ApprovalStrategy.HIERARCHICAL_ESCALATION:
            return None
        if not policy.escalation_target or request.escalation_level >= policy.max_escalation_level:
            return None

        holders = {slot.approver_id for slot in request.decisions}
        for user_id in self.engine.identity.find_users_by_role(request.organization_id, policy.escalation_target):
            if user_id not in holders and user_id != request.requester_id:
                return user_id
        return None

    def _handle_overdue(self, request: ApprovalRequest, now: datetime,
                        policies: Dict[Tuple[str, str], Optional[ActionPolicy]],
                        result: ScanResult) -> None:
        try:
            policy = self._policy_for(request, policies)
            target = self.resolve_escalation_target(request, policy)

            if target is not None:
                updated = self.engine.escalate(request.organization_id, request.id, target, policy, now=now)
                if updated is not None:
                    result.escalated += 1
                    result.request_ids.append(request.id)
                    return
                # No undecided slot or target already holds one
                updated = self.engine.expire(request.organization_id, request.id, now=now)
            else:
                updated = self.engine.expire(request.organization_id, request.id, now=now)

            if updated is None:
                result.skipped += 1
            else:
                result.expired += 1
                result.request_ids.append(request.id)

        except NotPending:
            # Decided between the scan and the write
            result.skipped += 1
        except ApprovalError as e:
            result.errors += 1
            logger.warning(
                f"Escalation of approval request {request.id} failed: {e}",
                extra={"request_id": request.id, "organization_id": request.organization_id}
            )

    def _handle_reminder(self, request: ApprovalRequest, now: datetime, result: ScanResult) -> None:
        try:
            if self.engine.mark_reminded(request.organization_id, request.id, now=now) is None:
                result.skipped += 1
            else:
                result.reminded += 1
        except NotPending:
            result.skipped += 1
        except ApprovalError as e:
            result.errors += 1
            logger.warning(
                f"Deadline reminder for approval request {request.id} failed: {e}",
                extra={"request_id": request.id, "organization_id": request.organization_id}
            )

    def _handle_stale_execution(self, request: ApprovalRequest, started_before: datetime,
                                now: datetime, result: ScanResult) -> None:
        try:
            updated = self.engine.fail_stale_execution(request.organization_id, request.id,
                                                       started_before, now=now)
            if updated is None:
                result.skipped += 1
            else:
                result.execution_failed += 1
                result.request_ids.append(request.id)
        except ApprovalError as e:
            result.errors += 1
            logger.warning(
                f"Failing stale execution of approval request {request.id} failed: {e}",
                extra={"request_id": request.id, "organization_id": request.organization_id}
            )

    # Lock

    def _acquire_lock(self) -> bool:
        if self.redis is None or not self.redis.is_available():
            # Conditional writes keep concurrent scanners safe
            return True
        return self.redis.acquire_lock(LOCK_NAME, self._owner, self.config.lock_ttl_seconds)

    def _release_lock(self) -> None:
        if self.redis is not None and self.redis.is_available():
            self.redis.release_lock(LOCK_NAME, self._owner)
