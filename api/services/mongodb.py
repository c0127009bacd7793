# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB service layer with multi-tenant operations and connection pooling.
"""

import os
import logging
from typing import List, Dict, Optional, Any
from pymongo import MongoClient, ASCENDING, DESCENDING
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    ConnectionFailure,
    ServerSelectionTimeoutError,
    PyMongoError
)
from bson import ObjectId
from bson.errors import InvalidId

logger = logging.getLogger(__name__)

APPROVAL_REQUESTS = "approval_requests"
ACTION_POLICIES = "action_policies"
APPROVERS = "approvers"
USERS = "users"
AUDIT_LOGS = "audit_logs"


class PaginationResult:
    """Result container for paginated queries."""

    def __init__(self, items: List[Any], total: int, page: int, page_size: int):
        self.items = items
        self.total = total
        self.page = page
        self.page_size = page_size
        self.total_pages = (total + page_size - 1) // page_size
        self.has_next = page < self.total_pages
        self.has_prev = page > 1


class MongoDBService:
    """MongoDB service with multi-tenant operations and connection pooling."""

    def __init__(self, connection_string: str = None, database_name: str = None,
                 database: Optional[Database] = None):
        """Initialize MongoDB service with connection pooling."""
        self.connection_string = connection_string or os.getenv(
            'MONGODB_URI',
            'mongodb://localhost:27017/aprovacao_dev'
        )
        self.database_name = database_name or os.getenv('MONGODB_DATABASE', 'aprovacao_dev')
        self._client: Optional[MongoClient] = None
        self._database: Optional[Database] = database

        # Connection pool settings
        self.max_pool_size = int(os.getenv('MONGODB_MAX_POOL_SIZE', '10'))
        self.min_pool_size = int(os.getenv('MONGODB_MIN_POOL_SIZE', '1'))
        self.max_idle_time_ms = int(os.getenv('MONGODB_MAX_IDLE_TIME_MS', '30000'))
        self.server_selection_timeout_ms = int(os.getenv('MONGODB_SERVER_SELECTION_TIMEOUT_MS', '5000'))

        logger.info(f"MongoDB service initialized for database: {self.database_name}")

    @property
    def client(self) -> MongoClient:
        """Get MongoDB client with connection pooling."""
        if self._client is None:
            try:
                self._client = MongoClient(
                    self.connection_string,
                    maxPoolSize=self.max_pool_size,
                    minPoolSize=self.min_pool_size,
                    maxIdleTimeMS=self.max_idle_time_ms,
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                    retryWrites=True,
                    retryReads=True,
                    tz_aware=False
                )
                # Test connection
                self._client.admin.command('ping')
                logger.info("MongoDB connection established successfully")
            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                raise

        return self._client

    @property
    def database(self) -> Database:
        """Get MongoDB database."""
        if self._database is None:
            self._database = self.client[self.database_name]
        return self._database

    def get_collection(self, collection_name: str) -> Collection:
        """Get MongoDB collection."""
        return self.database[collection_name]

    def close_connection(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("MongoDB connection closed")

    def health_check(self) -> Dict[str, Any]:
        """Check MongoDB connection health."""
        try:
            result = self.database.command('ping')
            return {
                'status': 'healthy',
                'ping': result.get('ok') == 1,
                'database': self.database_name,
                'connection_pool_size': self.max_pool_size
            }
        except PyMongoError as e:
            logger.error(f"MongoDB health check failed: {e}")
            return {
                'status': 'unhealthy',
                'error': str(e),
                'database': self.database_name
            }

    def validate_object_id(self, doc_id: str) -> ObjectId:
        """Validate and convert string ID to ObjectId."""
        try:
            return ObjectId(doc_id)
        except (InvalidId, TypeError):
            raise ValueError(f"Invalid ObjectId format: {doc_id}")

    def build_org_query(self, org_id: str, filters: Dict = None, include_deleted: bool = False) -> Dict:
        """Build organization-scoped query with optional filters."""
        query = {"organizationId": org_id}

        # Exclude soft-deleted records by default
        if not include_deleted:
            query["deletedAt"] = None

        if filters:
            query.update(filters)

        return query

    def paginate_by_org(self, collection: str, org_id: str, page: int = 1, page_size: int = 20,
                        filters: Dict = None, sort_by: str = "createdAt", sort_order: int = -1,
                        include_deleted: bool = False) -> PaginationResult:
        """Paginate raw documents by organization with sorting and filtering."""
        try:
            query = self.build_org_query(org_id, filters, include_deleted)
            collection_obj = self.get_collection(collection)

            skip = (page - 1) * page_size
            total = collection_obj.count_documents(query)

            cursor = collection_obj.find(query).sort(sort_by, sort_order).skip(skip).limit(page_size)
            documents = list(cursor)

            logger.debug(f"Paginated {len(documents)} documents from {collection} (page {page})")
            return PaginationResult(documents, total, page, page_size)

        except PyMongoError as e:
            logger.error(f"Failed to paginate documents in {collection}: {e}")
            raise

    def aggregate_by_org(self, collection: str, org_id: str, pipeline: List[Dict]) -> List[Dict]:
        """Run aggregation pipeline with organization scoping."""
        try:
            org_match = {"$match": {"organizationId": org_id, "deletedAt": None}}
            collection_obj = self.get_collection(collection)
            results = list(collection_obj.aggregate([org_match] + list(pipeline)))

            logger.debug(f"Aggregation returned {len(results)} results from {collection}")
            return results

        except PyMongoError as e:
            logger.error(f"Failed to run aggregation in {collection}: {e}")
            raise

    # Index Management

    def create_indexes(self) -> None:
        """Create the indexes the approval workflow relies on."""
        try:
            logger.info("Creating MongoDB indexes...")

            requests = self.get_collection(APPROVAL_REQUESTS)
            requests.create_index([("organizationId", ASCENDING), ("status", ASCENDING), ("createdAt", DESCENDING)])
            requests.create_index([("organizationId", ASCENDING), ("requesterId", ASCENDING), ("createdAt", DESCENDING)])
            requests.create_index([("organizationId", ASCENDING), ("decisions.approverId", ASCENDING), ("status", ASCENDING)])
            requests.create_index([("status", ASCENDING), ("deadline", ASCENDING)])
            requests.create_index([("executionStatus", ASCENDING), ("processedAt", ASCENDING)])
            requests.create_index("code", unique=True)
            # Present only while a request blocks duplicates
            requests.create_index(
                "duplicateKey",
                unique=True,
                partialFilterExpression={"duplicateKey": {"$exists": True}},
                name="duplicate_guard"
            )

            policies = self.get_collection(ACTION_POLICIES)
            policies.create_index([("organizationId", ASCENDING), ("actionType", ASCENDING)], unique=True)

            approvers = self.get_collection(APPROVERS)
            approvers.create_index([("organizationId", ASCENDING), ("actionType", ASCENDING), ("active", ASCENDING)])

            users = self.get_collection(USERS)
            users.create_index([("organizationId", ASCENDING), ("roles", ASCENDING)])
            users.create_index([("organizationId", ASCENDING), ("deletedAt", ASCENDING)])

            audit_logs = self.get_collection(AUDIT_LOGS)
            audit_logs.create_index([("organizationId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index([("organizationId", ASCENDING), ("entityId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index("traceId")

            logger.info("MongoDB indexes created successfully")

        except PyMongoError as e:
            logger.error(f"Failed to create MongoDB indexes: {e}")
            raise


# Singleton instance for application use
_mongodb_service: Optional[MongoDBService] = None


def get_mongodb_service() -> MongoDBService:
    """Get singleton MongoDB service instance."""
    global _mongodb_service
    if _mongodb_service is None:
        _mongodb_service = MongoDBService()
    return _mongodb_service


def close_mongodb_connection() -> None:
    """Close MongoDB connection (for cleanup)."""
    global _mongodb_service
    if _mongodb_service:
        _mongodb_service.close_connection()
        _mongodb_service = None
