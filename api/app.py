"""
Aprovação API - Flask Application Entry Point

This module builds the Flask application with OpenAPI 3.0 support, wires the
approval engine to its stores and side channels, and registers the
middleware and routes of the approval workflow service.
"""

import os
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional
from flask import jsonify
from flask_openapi3 import OpenAPI, Info, Tag
from observability.config import setup_observability
from observability.middleware import add_observability_middleware

from domain.catalog import default_policies
from middleware.auth import AuthMiddleware
from middleware.error_handler import ErrorHandlerMiddleware
from models.enums import ExecutorKind
from services.amqp import create_amqp_service
from services.audit import AuditService, LoggingAuditPort
from services.auth import AuthService
from services.engine import ApprovalRequestEngine, create_engine_config
from services.escalation import EscalationScheduler, create_scheduler_config
from services.executor import AMQPActionExecutor, ExecutorRouter, HTTPActionExecutor
from services.hal import create_hal_formatter
from services.health import HealthCheckService
from services.identity import IdentityService
from services.local_store import (
    InMemoryApprovalRepository, InMemoryApproverRegistry, InMemoryPolicyStore, StaticIdentityService
)
from services.metrics import ApprovalMetricsService
from services.mongodb import MongoDBService
from services.notifications import AMQPNotificationPort
from services.policies import ActionPolicyStore, ApproverRegistry
from services.redis import RedisService
from services.repository import MongoApprovalRepository

logger = logging.getLogger(__name__)

STORE_COMPONENTS = ("repository", "policies", "registry", "identity", "audit")

# OpenAPI info
info = Info(
    title="Aprovação API",
    version="1.0.0",
    description="Multi-tenant approval workflow for critical actions with HATEOAS Level-3 support"
)

# API tags for organization
tags = [
    Tag(name="Approvals", description="Approval workflow for critical actions"),
    Tag(name="Health", description="System health and status")
]


def _build_stores(storage: str, mongodb_service: Optional[MongoDBService],
                  redis_service: Optional[RedisService]) -> Dict[str, Any]:
    if storage == "memory":
        seed_org = os.getenv("APPROVAL_SEED_ORG_ID")
        return {
            "repository": InMemoryApprovalRepository(),
            "policies": InMemoryPolicyStore(default_policies(seed_org) if seed_org else None),
            "registry": InMemoryApproverRegistry(),
            "identity": StaticIdentityService(),
            "audit": LoggingAuditPort()
        }

    return {
        "repository": MongoApprovalRepository(mongodb_service),
        "policies": ActionPolicyStore(mongodb_service),
        "registry": ApproverRegistry(mongodb_service),
        "identity": IdentityService(mongodb_service, redis_service),
        "audit": AuditService(mongodb_service)
    }


def build_services(overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Wire the approval engine, scheduler and their dependencies.

    Args:
        overrides: Pre-built components (``repository``, ``policies``,
            ``registry``, ``identity``, ``audit``, ``notifications``,
            ``executor``, ``redis_service``, ``clock``) replacing the ones
            built from the environment

    Returns:
        Dict of services keyed by name
    """
    overrides = overrides or {}
    storage = os.getenv('APPROVAL_STORAGE', 'mongodb').lower()

    mongodb_service = None
    if storage != "memory" and not set(STORE_COMPONENTS[:4]) <= set(overrides):
        mongodb_service = MongoDBService(
            os.getenv('MONGODB_URI', 'mongodb://localhost:27017'),
            os.getenv('MONGODB_DATABASE', 'aprovacao_dev')
        )

    redis_service = overrides.get("redis_service")
    if redis_service is None:
        redis_service = RedisService(os.getenv('REDIS_URL'))

    components = {}
    if mongodb_service is not None or storage == "memory":
        components = _build_stores(storage, mongodb_service, redis_service)
    components.update({k: v for k, v in overrides.items() if k in STORE_COMPONENTS})

    amqp_service = create_amqp_service() if os.getenv('AMQP_URL') else None
    if amqp_service is not None and not amqp_service.setup_exchanges_and_queues():
        # Publishes fail until the broker topology exists
        logger.warning("AMQP exchanges could not be declared at startup")

    notification_pool = None
    notifications = overrides.get("notifications")
    if notifications is None and amqp_service is not None:
        notification_pool = ThreadPoolExecutor(
            max_workers=int(os.getenv('NOTIFICATION_WORKERS', '4')),
            thread_name_prefix="approval-notify"
        )
        notifications = AMQPNotificationPort(amqp_service, notification_pool)

    executor = overrides.get("executor")
    if executor is None:
        executors = {ExecutorKind.HTTP.value: HTTPActionExecutor()}
        if amqp_service is not None:
            executors[ExecutorKind.AMQP.value] = AMQPActionExecutor(amqp_service)
        executor = ExecutorRouter(executors)

    engine_config = create_engine_config()
    engine = ApprovalRequestEngine(
        repository=components["repository"],
        policies=components["policies"],
        registry=components["registry"],
        identity=components["identity"],
        executor=executor,
        notifications=notifications,
        audit=components.get("audit"),
        config=engine_config,
        clock=overrides.get("clock")
    )

    scheduler = EscalationScheduler(engine, create_scheduler_config(), redis_service)

    return {
        "storage": storage,
        "engine": engine,
        "engine_config": engine_config,
        "scheduler": scheduler,
        "mongodb_service": mongodb_service,
        "redis_service": redis_service,
        "amqp_service": amqp_service,
        "notification_pool": notification_pool
    }


def create_app(overrides: Optional[Dict[str, Any]] = None) -> OpenAPI:
    """
    Create the Flask application.

    Args:
        overrides: Components passed to ``build_services``, plus
            ``auth_service``

    Returns:
        OpenAPI: Configured application
    """
    overrides = overrides or {}

    # Initialize observability first
    setup_observability()

    app = OpenAPI(__name__, info=info)

    # Environment configuration
    app.config['ENVIRONMENT'] = os.getenv('ENVIRONMENT', 'development')
    app.config['DEBUG'] = app.config['ENVIRONMENT'] == 'development'
    app.config['BASE_URL'] = os.getenv('BASE_URL', 'http://localhost:5000')

    add_observability_middleware(app)

    services = build_services(overrides)
    engine = services["engine"]
    scheduler = services["scheduler"]
    app.config['APPROVAL_STORAGE'] = services["storage"]

    auth_service = overrides.get("auth_service") or AuthService()
    hal_formatter = create_hal_formatter(app.config['BASE_URL'], services["engine_config"].cancel_permission)
    health_service = HealthCheckService(
        services["mongodb_service"], services["redis_service"], services["amqp_service"],
        scheduler, services["storage"]
    )

    # Make services available to routes
    app.engine = engine
    app.scheduler = scheduler
    app.metrics_service = ApprovalMetricsService(engine.repository)
    app.hal_formatter = hal_formatter
    app.auth_service = auth_service
    app.auth_middleware = AuthMiddleware(auth_service, services["redis_service"])
    app.redis_service = services["redis_service"]
    app.amqp_service = services["amqp_service"]
    app.mongodb_service = services["mongodb_service"]
    app.health_service = health_service
    app.notification_pool = services["notification_pool"]

    ErrorHandlerMiddleware(app, hal_formatter)

    from routes.approvals import approvals_bp
    app.register_blueprint(approvals_bp)

    @app.get('/api/healthz', tags=[tags[1]])
    def health_check():
        """Health check with dependency status."""
        health_data = health_service.get_comprehensive_health()
        status_code = 200 if health_service.is_ready(health_data) else 503
        links = {'self': hal_formatter.builder.link_builder.build_link('/api/healthz', title="Self")}
        return jsonify(hal_formatter.builder.build_resource_response(health_data, links)), status_code

    if scheduler.config.enabled:
        scheduler.start()

    logger.info(
        "Approval API initialized",
        extra={"storage": services["storage"], "amqp_enabled": services["amqp_service"] is not None,
               "scheduler_enabled": scheduler.config.enabled}
    )
    return app


if __name__ == '__main__':
    application = create_app()
    # Development server
    application.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=application.config['DEBUG']
    )
