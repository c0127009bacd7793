# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Health check service for the approval API and its dependencies.
"""

import os
import time
from datetime import datetime
from typing import Dict, Any, Optional
from opentelemetry import trace

tracer = trace.get_tracer(__name__)

SERVICE_NAME = "aprovacao-api"


class HealthCheckService:
    """
    Aggregates dependency health.

    The store is required; Redis and AMQP are optional and only degrade the
    overall status. Dependencies that are not configured are reported as
    ``disabled`` and ignored.
    """

    def __init__(self, mongodb_service=None, redis_service=None, amqp_service=None,
                 scheduler=None, storage: str = "mongodb"):
        self.mongodb_service = mongodb_service
        self.redis_service = redis_service
        self.amqp_service = amqp_service
        self.scheduler = scheduler
        self.storage = storage
        self.service_version = os.getenv("SERVICE_VERSION", "1.0.0")

    def get_comprehensive_health(self) -> Dict[str, Any]:
        """Get health status of the service and every dependency."""
        with tracer.start_as_current_span("health.comprehensive_check") as span:
            start_time = time.time()

            dependencies = {
                "store": self._check_store_health(),
                "redis": self._check_redis_health(),
                "amqp": self._check_amqp_health()
            }

            overall_status = self._determine_overall_status(dependencies)
            response_time_ms = round((time.time() - start_time) * 1000, 2)

            span.set_attributes({
                "health.overall_status": overall_status,
                "health.response_time_ms": response_time_ms
            })

            return {
                "status": overall_status,
                "service": SERVICE_NAME,
                "version": self.service_version,
                "environment": os.getenv('ENVIRONMENT', 'development'),
                "timestamp": datetime.utcnow().isoformat() + "Z",
                "response_time_ms": response_time_ms,
                "dependencies": dependencies,
                "scheduler": {
                    "running": bool(self.scheduler is not None and self.scheduler.is_running)
                }
            }

    def _check_store_health(self) -> Dict[str, Any]:
        if self.storage == "memory" or self.mongodb_service is None:
            return {"status": "healthy", "backend": "memory"}

        with tracer.start_as_current_span("health.mongodb_check") as span:
            health = self.mongodb_service.health_check()
            health["backend"] = "mongodb"
            span.set_attribute("mongodb.status", health["status"])
            return health

    def _check_redis_health(self) -> Dict[str, Any]:
        if self.redis_service is None or not self.redis_service.is_available():
            return {"status": "disabled"}

        with tracer.start_as_current_span("health.redis_check") as span:
            health = self.redis_service.health_check()
            span.set_attribute("redis.status", health["status"])
            return health

    def _check_amqp_health(self) -> Dict[str, Any]:
        if self.amqp_service is None:
            return {"status": "disabled"}

        with tracer.start_as_current_span("health.amqp_check") as span:
            start_time = time.time()
            healthy = self.amqp_service.health_check()
            span.set_attribute("amqp.status", "healthy" if healthy else "unhealthy")
            return {
                "status": "healthy" if healthy else "unhealthy",
                "response_time_ms": round((time.time() - start_time) * 1000, 2)
            }

    def _determine_overall_status(self, dependencies: Dict[str, Dict[str, Any]]) -> str:
        """Unhealthy when the store is down, degraded when an optional dependency is."""
        if dependencies["store"]["status"] != "healthy":
            return "unhealthy"
        optional = [dep["status"] for name, dep in dependencies.items() if name != "store"]
        if any(status == "unhealthy" for status in optional):
            return "degraded"
        return "healthy"

    def is_ready(self, health: Optional[Dict[str, Any]] = None) -> bool:
        health = health or self.get_comprehensive_health()
        return health["status"] != "unhealthy"
