# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the escalation scheduler.

This module covers:
- Expiry of overdue requests
- Hierarchical escalation to the next tier
- Deadline reminders sent once
- Stale executions marked failed
- Distributed lock handling
"""

import pytest
from datetime import timedelta
from unittest.mock import MagicMock, Mock, patch

from domain.errors import DuplicateRequest, NotPending
from models.entities import ExecutionDescriptor
from models.enums import ApprovalStatus, ApprovalStrategy, ExecutionStatus, ExecutorKind
from services.escalation import EscalationScheduler, SchedulerConfig, create_scheduler_config, LOCK_NAME
from workers.escalation_worker import EscalationWorker
from conftest import ORG_ID, EngineHarness, make_policy

DESCRIPTOR = ExecutionDescriptor(kind=ExecutorKind.AMQP, target="beneficios.suspender")


def escalation_policy(**overrides):
    fields = {
        "strategy": ApprovalStrategy.HIERARCHICAL_ESCALATION,
        "escalation_target": "gestor",
        "max_escalation_level": 1,
        "deadline_hours": 24,
        "escalation_increment_hours": 12
    }
    fields.update(overrides)
    return make_policy(**fields)


class TestExpiry:
    """Test expiry of overdue requests."""

    def setup_method(self):
        self.h = EngineHarness()
        self.scheduler = EscalationScheduler(self.h.engine, SchedulerConfig())

    def test_not_overdue_is_left_alone(self):
        request = self.h.submit()
        result = self.scheduler.run_once()

        assert result.expired == 0
        assert self.h.engine.get(ORG_ID, request.id).status == ApprovalStatus.PENDING

    def test_overdue_request_expires_once(self):
        request = self.h.submit()
        self.h.clock.advance(hours=25)

        first = self.scheduler.run_once()
        second = self.scheduler.run_once()

        assert first.expired == 1
        assert second.expired == 0

        stored = self.h.engine.get(ORG_ID, request.id)
        assert stored.status == ApprovalStatus.EXPIRED
        assert stored.processed_by == "system:escalation"
        assert [entry.action for entry in stored.history].count("expire") == 1
        assert len(self.h.notifications.named("terminal")) == 1

    def test_decided_request_never_expires(self):
        request = self.h.submit()
        self.h.engine.record_decision(ORG_ID, request.id, "alice", True)
        self.h.clock.advance(hours=25)

        assert self.scheduler.run_once().expired == 0
        assert self.h.engine.get(ORG_ID, request.id).status == ApprovalStatus.APPROVED

    def test_expire_before_deadline_is_no_op(self):
        request = self.h.submit()
        assert self.h.engine.expire(ORG_ID, request.id) is None

    def test_expire_terminal_raises(self):
        request = self.h.submit()
        self.h.engine.cancel(ORG_ID, request.id, "requester")
        self.h.clock.advance(hours=25)
        with pytest.raises(NotPending):
            self.h.engine.expire(ORG_ID, request.id)

    def test_race_with_decision_counts_as_skipped(self):
        request = self.h.submit()
        self.h.clock.advance(hours=25)
        overdue = self.h.repository.find_overdue(self.h.clock.now, 10)

        # Decided between the scan and the write
        self.h.engine.record_decision(ORG_ID, request.id, "alice", True)

        self.h.engine.repository = MagicMock(wraps=self.h.repository)
        self.h.engine.repository.find_overdue.return_value = overdue
        self.h.engine.repository.find_deadline_approaching.return_value = []

        result = self.scheduler.run_once()
        assert result.skipped == 1
        assert result.expired == 0


class TestEscalation:
    """Test hierarchical escalation."""

    def setup_method(self):
        self.h = EngineHarness(policies=[escalation_policy()])
        self.scheduler = EscalationScheduler(self.h.engine, SchedulerConfig())

    def test_overdue_request_escalates_to_next_tier(self):
        request = self.h.submit()
        self.h.clock.advance(hours=25)

        result = self.scheduler.run_once()
        assert result.escalated == 1

        stored = self.h.engine.get(ORG_ID, request.id)
        assert stored.status == ApprovalStatus.PENDING
        assert stored.escalation_level == 1
        assert stored.deadline == self.h.clock.now + timedelta(hours=12)

        slot = stored.decisions[0]
        assert slot.approver_id == "dave"
        assert slot.escalated_from == "alice"
        assert slot.original_approver_id == "alice"
        assert slot.escalation_level == 1

        entry = stored.history[-1]
        assert entry.action == "escalate"
        assert entry.metadata["to_approver_id"] == "dave"
        assert self.h.notifications.named("escalated")[0][3:] == ("alice", "dave")

    def test_escalated_approver_can_decide(self):
        request = self.h.submit()
        self.h.clock.advance(hours=25)
        self.scheduler.run_once()

        result = self.h.engine.record_decision(ORG_ID, request.id, "dave", True)
        assert result.status == ApprovalStatus.APPROVED

    def test_expires_after_max_level(self):
        request = self.h.submit()
        self.h.clock.advance(hours=25)
        self.scheduler.run_once()
        self.h.clock.advance(hours=13)

        result = self.scheduler.run_once()
        assert result.expired == 1
        assert self.h.engine.get(ORG_ID, request.id).status == ApprovalStatus.EXPIRED

    def test_no_target_user_expires(self):
        h = EngineHarness(policies=[escalation_policy(escalation_target="diretoria")])
        scheduler = EscalationScheduler(h.engine, SchedulerConfig())
        request = h.submit()
        h.clock.advance(hours=25)

        assert scheduler.run_once().expired == 1
        assert h.engine.get(ORG_ID, request.id).status == ApprovalStatus.EXPIRED

    def test_non_escalation_strategy_has_no_target(self):
        h = EngineHarness()
        scheduler = EscalationScheduler(h.engine, SchedulerConfig())
        request = h.submit()
        assert scheduler.resolve_escalation_target(request, make_policy()) is None

    def test_target_skips_current_holders_and_requester(self):
        supervisor_policy = escalation_policy(escalation_target="supervisor")
        request = self.h.submit()
        # alice, bob and carol already hold slots
        assert self.scheduler.resolve_escalation_target(request, supervisor_policy) is None


class TestReminders:
    """Test deadline reminders."""

    def setup_method(self):
        self.h = EngineHarness()
        self.scheduler = EscalationScheduler(self.h.engine, SchedulerConfig())

    def test_reminder_sent_once_inside_window(self):
        request = self.h.submit()

        self.h.clock.advance(hours=21)
        assert self.scheduler.run_once().reminded == 0

        self.h.clock.advance(hours=2)
        assert self.scheduler.run_once().reminded == 1
        assert self.scheduler.run_once().reminded == 0

        stored = self.h.engine.get(ORG_ID, request.id)
        assert stored.deadline_reminder_sent_at == self.h.clock.now
        assert self.h.notifications.named("deadline_approaching") == [
            ("deadline_approaching", request.id, "pending")
        ]

    def test_reminder_is_traced(self):
        request = self.h.submit()
        self.h.clock.advance(hours=23)

        with patch('services.engine.tracer') as mock_tracer:
            self.h.engine.mark_reminded(ORG_ID, request.id)

        mock_tracer.start_as_current_span.assert_called_once_with("engine.mark_reminded")
        span = mock_tracer.start_as_current_span.return_value.__enter__.return_value
        span.set_attribute.assert_called_once_with("approval.request_id", request.id)

    def test_escalation_rearms_reminder(self):
        h = EngineHarness(policies=[escalation_policy(max_escalation_level=2)])
        scheduler = EscalationScheduler(h.engine, SchedulerConfig())
        request = h.submit()

        h.clock.advance(hours=23)
        scheduler.run_once()
        assert h.engine.get(ORG_ID, request.id).deadline_reminder_sent_at is not None

        h.clock.advance(hours=2)
        scheduler.run_once()
        stored = h.engine.get(ORG_ID, request.id)
        assert stored.escalation_level == 1
        assert stored.deadline_reminder_sent_at is None


class TestStaleExecutions:
    """Test recovery of executions whose outcome was never recorded."""

    def setup_method(self):
        self.h = EngineHarness()
        self.scheduler = EscalationScheduler(self.h.engine, SchedulerConfig(execution_timeout_seconds=600))

    def approve_without_outcome(self):
        request = self.h.submit(execution=DESCRIPTOR)
        # Process dies after the approval commits, before the outcome is written
        with patch.object(self.h.engine, "_run_executor", side_effect=lambda r: r):
            self.h.engine.record_decision(ORG_ID, request.id, "alice", True)
        return request

    def test_recent_execution_is_left_alone(self):
        request = self.approve_without_outcome()
        self.h.clock.advance(minutes=5)

        result = self.scheduler.run_once()

        assert result.execution_failed == 0
        assert self.h.engine.get(ORG_ID, request.id).execution_status == ExecutionStatus.EXECUTING

    def test_stale_execution_fails_and_releases_duplicate_guard(self):
        request = self.approve_without_outcome()
        with pytest.raises(DuplicateRequest):
            self.h.submit(execution=DESCRIPTOR)

        self.h.clock.advance(minutes=11)
        first = self.scheduler.run_once()
        second = self.scheduler.run_once()

        assert first.execution_failed == 1
        assert first.request_ids == [request.id]
        assert second.execution_failed == 0

        stored = self.h.engine.get(ORG_ID, request.id)
        assert stored.status == ApprovalStatus.APPROVED
        assert stored.execution_status == ExecutionStatus.FAILED
        assert "not recorded" in stored.execution_error
        assert stored.executed_at == self.h.clock.now

        resubmitted = self.h.submit(execution=DESCRIPTOR)
        assert resubmitted.status == ApprovalStatus.PENDING

    def test_recorded_execution_is_never_touched(self):
        request = self.h.submit(execution=DESCRIPTOR)
        self.h.engine.record_decision(ORG_ID, request.id, "alice", True)
        self.h.clock.advance(hours=1)

        assert self.scheduler.run_once().execution_failed == 0
        assert self.h.engine.fail_stale_execution(ORG_ID, request.id, self.h.clock.now) is None
        assert self.h.engine.get(ORG_ID, request.id).execution_status == ExecutionStatus.EXECUTED


class TestSchedulerLock:
    """Test the distributed scan lock."""

    def setup_method(self):
        self.h = EngineHarness()

    def test_lock_held_elsewhere_skips_scan(self):
        redis_service = Mock()
        redis_service.is_available.return_value = True
        redis_service.acquire_lock.return_value = False

        request = self.h.submit()
        self.h.clock.advance(hours=25)
        scheduler = EscalationScheduler(self.h.engine, SchedulerConfig(), redis_service)

        result = scheduler.run_once()
        assert result.lock_skipped
        assert self.h.engine.get(ORG_ID, request.id).status == ApprovalStatus.PENDING
        redis_service.release_lock.assert_not_called()

    def test_lock_acquired_and_released(self):
        redis_service = Mock()
        redis_service.is_available.return_value = True
        redis_service.acquire_lock.return_value = True
        scheduler = EscalationScheduler(self.h.engine, SchedulerConfig(lock_ttl_seconds=60), redis_service)

        scheduler.run_once()

        name, owner, ttl = redis_service.acquire_lock.call_args.args
        assert name == LOCK_NAME
        assert ttl == 60
        redis_service.release_lock.assert_called_once_with(LOCK_NAME, owner)

    def test_unavailable_redis_scans_without_lock(self):
        redis_service = Mock()
        redis_service.is_available.return_value = False
        self.h.submit()
        self.h.clock.advance(hours=25)

        scheduler = EscalationScheduler(self.h.engine, SchedulerConfig(), redis_service)
        assert scheduler.run_once().expired == 1
        redis_service.acquire_lock.assert_not_called()


class TestSchedulerLifecycle:
    """Test scheduler configuration and lifecycle."""

    def test_config_from_environment(self, monkeypatch):
        monkeypatch.setenv("ESCALATION_SCHEDULER_ENABLED", "true")
        monkeypatch.setenv("ESCALATION_INTERVAL_SECONDS", "60")
        monkeypatch.setenv("ESCALATION_BATCH_SIZE", "10")
        monkeypatch.setenv("EXECUTION_TIMEOUT_SECONDS", "120")

        config = create_scheduler_config()
        assert config.enabled is True
        assert config.interval_seconds == 60
        assert config.batch_size == 10
        assert config.execution_timeout_seconds == 120

    def test_start_and_stop(self):
        h = EngineHarness()
        scheduler = EscalationScheduler(h.engine, SchedulerConfig(interval_seconds=3600))

        scheduler.start()
        assert scheduler.is_running
        scheduler.stop(timeout=5)
        assert not scheduler.is_running

    def test_worker_stops_on_request(self):
        scheduler = Mock()
        scheduler.wait.side_effect = [False, True]
        pool = Mock()

        worker = EscalationWorker(scheduler, pool, shutdown_timeout=1.0)
        worker.run()

        scheduler.start.assert_called_once()
        scheduler.stop.assert_called_once_with(timeout=1.0)
        pool.shutdown.assert_called_once_with(wait=True)

    def test_worker_signal_requests_stop(self):
        scheduler = Mock()
        worker = EscalationWorker(scheduler)
        worker._handle_shutdown(15, None)
        scheduler.request_stop.assert_called_once()
