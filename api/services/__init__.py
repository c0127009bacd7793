# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - Stores, external integrations and the approval engine.
"""

from .mongodb import MongoDBService, PaginationResult, get_mongodb_service, close_mongodb_connection
from .amqp import AMQPService, AMQPConfig, PublishResult, create_amqp_service
from .engine import ApprovalRequestEngine, EngineConfig, create_engine_config
from .escalation import EscalationScheduler, SchedulerConfig, create_scheduler_config

__all__ = [
    "MongoDBService",
    "PaginationResult",
    "get_mongodb_service",
    "close_mongodb_connection",
    "AMQPService",
    "AMQPConfig",
    "PublishResult",
    "create_amqp_service",
    "ApprovalRequestEngine",
    "EngineConfig",
    "create_engine_config",
    "EscalationScheduler",
    "SchedulerConfig",
    "create_scheduler_config"
]
