# SPDX-License-Identifier: Apache-2.0

"""
Tests for the Redis service: blocklist, profile cache and locks.
"""

import json
from unittest.mock import MagicMock, patch

import redis

from services.redis import RedisService


class TestRedisServiceDisabled:
    """Without REDIS_URL every operation is a neutral no-op."""

    def setup_method(self):
        self.service = RedisService(redis_url=None)

    def test_not_available(self):
        assert not self.service.is_available()
        assert self.service.get("k") is None
        assert self.service.set("k", "v") is False
        assert self.service.is_token_blocked("jti") is False
        assert self.service.acquire_lock("scan", "me", 30) is False
        assert self.service.health_check()["status"] == "unavailable"

    @patch('services.redis.redis.from_url')
    def test_failed_connection_disables_client(self, mock_from_url):
        mock_from_url.return_value.ping.side_effect = redis.ConnectionError("refused")

        service = RedisService(redis_url="redis://localhost:6379/0")
        assert not service.is_available()


class TestRedisServiceOperations:
    """Test operations against a mocked client."""

    def setup_method(self):
        self.client = MagicMock()
        self.service = RedisService(client=self.client)

    def test_token_blocklist_key(self):
        self.client.exists.return_value = 1

        assert self.service.is_token_blocked("abc") is True
        self.client.exists.assert_called_once_with("jwt:blocked:abc")

    def test_profile_cache_round_trip(self):
        profile = {"user_id": "alice", "roles": ["supervisor"]}
        self.client.setex.return_value = True

        assert self.service.cache_user_profile("org-1", "alice", profile, 120)
        key, ttl, value = self.client.setex.call_args.args
        assert key == "profile:org-1:alice"
        assert ttl == 120

        self.client.get.return_value = value
        assert self.service.get_cached_profile("org-1", "alice") == profile

    def test_non_dict_cache_entry_ignored(self):
        self.client.get.return_value = json.dumps(["not", "a", "profile"])
        assert self.service.get_cached_profile("org-1", "alice") is None

    def test_acquire_lock(self):
        self.client.set.return_value = True

        assert self.service.acquire_lock("approval:escalation-scan", "owner-1", 60)
        self.client.set.assert_called_once_with(
            "lock:approval:escalation-scan", "owner-1", nx=True, ex=60
        )

    def test_lock_held_elsewhere(self):
        self.client.set.return_value = None
        assert not self.service.acquire_lock("scan", "owner-1", 60)

    def test_acquire_error_does_not_grant_lock(self):
        self.client.set.side_effect = redis.ConnectionError("lost")
        assert not self.service.acquire_lock("scan", "owner-1", 60)

    def test_release_only_by_owner(self):
        self.client.get.return_value = "someone-else"
        assert not self.service.release_lock("scan", "owner-1")
        self.client.delete.assert_not_called()

        self.client.get.return_value = "owner-1"
        self.client.delete.return_value = 1
        assert self.service.release_lock("scan", "owner-1")
        self.client.delete.assert_called_once_with("lock:scan")

    def test_errors_fail_open(self):
        self.client.get.side_effect = redis.TimeoutError("slow")
        self.client.exists.side_effect = redis.TimeoutError("slow")

        assert self.service.get("k") is None
        assert self.service.is_token_blocked("jti") is False

    def test_health_check(self):
        self.client.ping.return_value = True
        assert self.service.health_check()["status"] == "healthy"

        self.client.ping.side_effect = redis.ConnectionError("down")
        assert self.service.health_check()["status"] == "unhealthy"
