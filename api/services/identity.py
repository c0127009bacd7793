# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Identity lookup backed by the users collection with a Redis profile cache.
"""

import logging
from typing import List, Optional

from opentelemetry import trace
from pydantic import ValidationError

from models.entities import UserProfile
from .mongodb import MongoDBService, USERS
from .redis import RedisService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

PROFILE_CACHE_TTL = 300


class IdentityService:
    """Role and profile lookup by user id."""

    def __init__(self, mongodb_service: MongoDBService, redis_service: Optional[RedisService] = None,
                 cache_ttl: int = PROFILE_CACHE_TTL):
        self.mongodb = mongodb_service
        self.redis = redis_service
        self.cache_ttl = cache_ttl

    def get_profile(self, org_id: str, user_id: str) -> Optional[UserProfile]:
        """
        Get a user's roles, permissions and sector.

        Args:
            org_id: Organization scope
            user_id: User identifier

        Returns:
            UserProfile, or None when the user is unknown or inactive
        """
        with tracer.start_as_current_span("identity.get_profile") as span:
            span.set_attributes({"user.id": user_id, "user.org_id": org_id})

            if self.redis:
                cached = self.redis.get_cached_profile(org_id, user_id)
                if cached:
                    span.set_attribute("identity.cache_hit", True)
                    try:
                        return UserProfile.model_validate(cached)
                    except ValidationError:
                        logger.warning(f"Discarding malformed cached profile for user {user_id}")
                        self.redis.invalidate_user_profile(org_id, user_id)

            try:
                object_id = self.mongodb.validate_object_id(user_id)
                query = {"_id": object_id}
            except ValueError:
                query = {"_id": user_id}
            query.update({"organizationId": org_id, "deletedAt": None})

            document = self.mongodb.get_collection(USERS).find_one(query)
            if not document or document.get("status") not in (None, "active"):
                span.set_attribute("identity.found", False)
                return None

            profile = UserProfile(
                user_id=user_id,
                organization_id=org_id,
                name=document.get("name"),
                email=document.get("email"),
                roles=list(document.get("roles") or []),
                permissions=list(document.get("permissions") or []),
                sector=document.get("sector")
            )

            if self.redis:
                self.redis.cache_user_profile(org_id, user_id, profile.model_dump(), self.cache_ttl)

            span.set_attribute("identity.found", True)
            return profile

    def user_exists(self, org_id: str, user_id: str) -> bool:
        """Check whether an active user exists in the organization."""
        return self.get_profile(org_id, user_id) is not None

    def find_users_by_role(self, org_id: str, role: str) -> List[str]:
        """
        Active users holding a role, or belonging to a sector of that name.

        Role names match case-insensitively.
        """
        with tracer.start_as_current_span("identity.find_users_by_role") as span:
            span.set_attributes({"user.org_id": org_id, "identity.role": role})

            variants = sorted({role, role.upper(), role.lower()})
            cursor = self.mongodb.get_collection(USERS).find(
                {
                    "organizationId": org_id,
                    "deletedAt": None,
                    "status": {"$in": ["active", None]},
                    "$or": [{"roles": {"$in": variants}}, {"sector": {"$in": variants}}]
                },
                {"_id": 1}
            ).sort("_id", 1)

            user_ids = [str(document["_id"]) for document in cursor]
            span.set_attribute("identity.match_count", len(user_ids))
            return user_ids
