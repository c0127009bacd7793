# SPDX-License-Identifier: Apache-2.0

"""
Redis service for caching, token blocklist checks and scheduler locks.

This module provides Redis operations using the standard redis-py client.
Every operation fails open: when Redis is unavailable the caller gets a
neutral result and the issue is logged.
"""

import os
import json
import time
from typing import Optional, List, Dict, Any, Union

import redis
from opentelemetry import trace
import logging

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class RedisConnectionError(Exception):
    """Raised when Redis connection fails."""
    pass


class RedisService:
    """
    Redis service with the redis-py client.

    Provides the JWT token blocklist check, identity profile caching and the
    distributed lock used by the escalation scheduler.
    """

    def __init__(self, redis_url: Optional[str] = None, client: Optional[Any] = None):
        """
        Initialize the Redis service.

        Args:
            redis_url: Redis connection URL (redis://host:port/db)
            client: Pre-built client, used instead of connecting
        """
        self.redis_url = redis_url or os.getenv("REDIS_URL")

        if client is not None:
            self.client = client
            return

        if not self.redis_url:
            logger.warning("No REDIS_URL configured, Redis operations will be disabled")
            self.client = None
            return

        try:
            self.client = redis.from_url(self.redis_url, decode_responses=True)
            self._test_connection()
            logger.info("Redis service initialized successfully")

        except (redis.RedisError, RedisConnectionError) as e:
            logger.error(f"Failed to initialize Redis service: {str(e)}")
            self.client = None

    def _test_connection(self) -> None:
        """Test Redis connection."""
        if not self.client:
            return

        try:
            if not self.client.ping():
                raise RedisConnectionError("Redis ping failed")
        except redis.RedisError as e:
            logger.error(f"Redis connection test failed: {str(e)}")
            raise RedisConnectionError(f"Redis connection failed: {str(e)}")

    def is_available(self) -> bool:
        """Check if Redis service is available."""
        return self.client is not None

    def _handle_redis_error(self, operation: str, error: Exception) -> None:
        """Log Redis errors with the operation name."""
        logger.error(f"Redis {operation} operation failed: {str(error)}")

    def set(self, key: str, value: Union[str, Dict, List], ttl: Optional[int] = None) -> bool:
        """
        Set a key-value pair in Redis.

        Args:
            key: Redis key
            value: Value to store (JSON serialized if not a string)
            ttl: Time to live in seconds

        Returns:
            True if successful, False otherwise
        """
        if not self.is_available():
            return False

        with tracer.start_as_current_span("redis.set") as span:
            span.set_attributes({
                "redis.key": key,
                "redis.ttl": ttl or 0
            })

            try:
                if isinstance(value, (dict, list)):
                    value = json.dumps(value, default=str)

                if ttl:
                    result = self.client.setex(key, ttl, value)
                else:
                    result = self.client.set(key, value)

                span.set_attribute("redis.result", "success")
                return bool(result)

            except redis.RedisError as e:
                span.set_attribute("redis.result", "error")
                self._handle_redis_error("SET", e)
                return False

    def get(self, key: str) -> Optional[Any]:
        """
        Get a value from Redis, decoding JSON when possible.

        Args:
            key: Redis key

        Returns:
            Value if found, None otherwise
        """
        if not self.is_available():
            return None

        with tracer.start_as_current_span("redis.get") as span:
            span.set_attribute("redis.key", key)

            try:
                value = self.client.get(key)
            except redis.RedisError as e:
                span.set_attribute("redis.result", "error")
                self._handle_redis_error("GET", e)
                return None

            if value is None:
                span.set_attribute("redis.result", "not_found")
                return None

            span.set_attribute("redis.result", "hit")
            try:
                return json.loads(value)
            except (json.JSONDecodeError, TypeError):
                return value

    def delete(self, key: str) -> bool:
        """Delete a key from Redis."""
        if not self.is_available():
            return False

        with tracer.start_as_current_span("redis.delete") as span:
            span.set_attribute("redis.key", key)

            try:
                return bool(self.client.delete(key))
            except redis.RedisError as e:
                span.set_attribute("redis.result", "error")
                self._handle_redis_error("DELETE", e)
                return False

    def exists(self, key: str) -> bool:
        """Check if a key exists in Redis."""
        if not self.is_available():
            return False

        try:
            return bool(self.client.exists(key))
        except redis.RedisError as e:
            self._handle_redis_error("EXISTS", e)
            return False

    # JWT Token Blocklist

    def is_token_blocked(self, token_id: str) -> bool:
        """
        Check if a JWT token is in the blocklist.

        Args:
            token_id: Unique token identifier (jti)

        Returns:
            True if token is blocked, False otherwise
        """
        if not self.is_available():
            logger.warning("Redis unavailable for token blocklist check - allowing token")
            return False

        with tracer.start_as_current_span("redis.is_token_blocked") as span:
            span.set_attribute("auth.token_id", token_id)
            result = self.exists(f"jwt:blocked:{token_id}")
            span.set_attribute("auth.token_blocked", result)
            return result

    # Identity profile caching

    def cache_user_profile(self, org_id: str, user_id: str, profile: Dict[str, Any],
                           ttl_seconds: int = 300) -> bool:
        """Cache an identity profile for faster eligibility checks."""
        return self.set(f"profile:{org_id}:{user_id}", profile, ttl_seconds)

    def get_cached_profile(self, org_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """Get a cached identity profile."""
        cached = self.get(f"profile:{org_id}:{user_id}")
        return cached if isinstance(cached, dict) else None

    def invalidate_user_profile(self, org_id: str, user_id: str) -> bool:
        """Drop a cached identity profile."""
        return self.delete(f"profile:{org_id}:{user_id}")

    # Distributed locks

    def acquire_lock(self, name: str, owner: str, ttl_seconds: int) -> bool:
        """
        Acquire a lock with SET NX EX.

        Args:
            name: Lock name
            owner: Token identifying the holder
            ttl_seconds: Lock expiry, bounding how long a crashed holder blocks others

        Returns:
            True if the lock was acquired
        """
        if not self.is_available():
            return False

        with tracer.start_as_current_span("redis.acquire_lock") as span:
            span.set_attributes({"redis.lock": name, "redis.ttl": ttl_seconds})
            try:
                acquired = bool(self.client.set(f"lock:{name}", owner, nx=True, ex=ttl_seconds))
            except redis.RedisError as e:
                self._handle_redis_error("SET NX", e)
                return False
            span.set_attribute("redis.lock_acquired", acquired)
            return acquired

    def release_lock(self, name: str, owner: str) -> bool:
        """Release a lock if it is still held by owner."""
        if not self.is_available():
            return False

        key = f"lock:{name}"
        try:
            if self.client.get(key) == owner:
                return bool(self.client.delete(key))
            return False
        except redis.RedisError as e:
            self._handle_redis_error("RELEASE", e)
            return False

    # Health Check Methods

    def ping(self) -> bool:
        """Ping Redis server."""
        if not self.is_available():
            return False

        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis ping failed: {str(e)}")
            return False

    def health_check(self) -> Dict[str, Any]:
        """
        Perform Redis health check.

        Returns:
            Health check results
        """
        if not self.is_available():
            return {
                "status": "unavailable",
                "message": "Redis client not initialized",
                "timestamp": time.time()
            }

        start_time = time.time()
        healthy = self.ping()
        response_time = (time.time() - start_time) * 1000

        return {
            "status": "healthy" if healthy else "unhealthy",
            "response_time_ms": round(response_time, 2),
            "timestamp": time.time()
        }
