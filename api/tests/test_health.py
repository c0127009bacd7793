# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for dependency health aggregation and approval metrics.
"""

from datetime import datetime, timedelta
from unittest.mock import Mock

from services.health import HealthCheckService
from services.metrics import ApprovalMetricsService
from conftest import ACTION, ORG_ID, EngineHarness


class TestHealthCheckService:
    """Test overall status derivation."""

    def test_memory_store_is_healthy(self):
        service = HealthCheckService(storage="memory")

        health = service.get_comprehensive_health()

        assert health["status"] == "healthy"
        assert health["service"] == "aprovacao-api"
        assert health["dependencies"]["store"] == {"status": "healthy", "backend": "memory"}
        assert health["scheduler"] == {"running": False}
        assert service.is_ready(health)

    def test_store_down_is_unhealthy(self):
        mongodb = Mock()
        mongodb.health_check.return_value = {"status": "unhealthy", "error": "timeout"}

        service = HealthCheckService(mongodb_service=mongodb, storage="mongodb")
        health = service.get_comprehensive_health()

        assert health["status"] == "unhealthy"
        assert health["dependencies"]["store"]["backend"] == "mongodb"
        assert not service.is_ready(health)

    def test_optional_dependency_down_degrades(self):
        mongodb = Mock()
        mongodb.health_check.return_value = {"status": "healthy"}
        redis_service = Mock()
        redis_service.is_available.return_value = True
        redis_service.health_check.return_value = {"status": "healthy"}
        amqp = Mock()
        amqp.health_check.return_value = False

        service = HealthCheckService(mongodb, redis_service, amqp, storage="mongodb")
        health = service.get_comprehensive_health()

        assert health["status"] == "degraded"
        assert health["dependencies"]["amqp"]["status"] == "unhealthy"
        assert service.is_ready(health)

    def test_scheduler_state_reported(self):
        scheduler = Mock(is_running=True)
        health = HealthCheckService(scheduler=scheduler, storage="memory").get_comprehensive_health()
        assert health["scheduler"]["running"] is True


class TestApprovalMetricsService:
    """Test metrics folding over repository aggregates."""

    def test_metrics_from_workflow(self):
        h = EngineHarness()
        approved = h.submit({"beneficio_id": "B-1"})
        h.clock.advance(hours=2)
        h.engine.record_decision(ORG_ID, approved.id, "alice", True)
        rejected = h.submit({"beneficio_id": "B-2"})
        h.clock.advance(hours=4)
        h.engine.record_decision(ORG_ID, rejected.id, "bob", False)
        h.submit({"beneficio_id": "B-3"})

        metrics = ApprovalMetricsService(h.repository).compute(ORG_ID, days=30, now=h.clock.now)

        assert metrics["total_requests"] == 3
        assert metrics["by_status"]["approved"] == 1
        assert metrics["by_status"]["rejected"] == 1
        assert metrics["by_status"]["pending"] == 1
        assert metrics["by_status"]["expired"] == 0
        assert metrics["by_action_type"][ACTION] == {"approved": 1, "rejected": 1, "pending": 1}
        assert metrics["approval_rate"] == 0.5
        assert metrics["average_decision_hours"] == 3.0
        assert metrics["auto_approved"] == 0

    def test_period_excludes_old_requests(self):
        h = EngineHarness()
        h.submit()

        metrics = ApprovalMetricsService(h.repository).compute(
            ORG_ID, days=1, now=h.clock.now + timedelta(days=3)
        )

        assert metrics["total_requests"] == 0
        assert metrics["approval_rate"] is None
        assert metrics["average_decision_hours"] is None

    def test_rows_are_folded(self):
        repository = Mock()
        repository.summarize.return_value = [
            {"status": "approved", "action_type": "a", "count": 3, "auto_approved": 2, "escalated": 0,
             "execution_failures": 1, "decided": 1, "decision_ms": 3_600_000},
            {"status": "expired", "action_type": "b", "count": 2, "auto_approved": 0, "escalated": 2,
             "execution_failures": 0, "decided": 0, "decision_ms": 0},
        ]
        now = datetime(2025, 6, 1)

        metrics = ApprovalMetricsService(repository).compute("org-1", days=7, now=now)

        repository.summarize.assert_called_once_with("org-1", now - timedelta(days=7))
        assert metrics["total_requests"] == 5
        assert metrics["auto_approved"] == 2
        assert metrics["escalated"] == 2
        assert metrics["execution_failures"] == 1
        assert metrics["approval_rate"] == 1.0
        assert metrics["average_decision_hours"] == 1.0
        assert metrics["period"]["days"] == 7
