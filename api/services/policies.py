# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Action policy store and approver registry.

Both are read-only from the engine's point of view; administration happens
outside the workflow (see scripts/seed_policies.py).
"""

import logging
from typing import List, Optional, Sequence

from pymongo import ASCENDING
from opentelemetry import trace

from models.entities import ActionPolicy, ApproverAssignment
from .mongodb import MongoDBService, ACTION_POLICIES, APPROVERS

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ActionPolicyStore:
    """Policies keyed by (organization, action type)."""

    def __init__(self, mongodb_service: MongoDBService):
        self.mongodb = mongodb_service

    def get(self, org_id: str, action_type: str) -> Optional[ActionPolicy]:
        """
        Look up the policy for an action type, active or not.

        Args:
            org_id: Organization scope
            action_type: Critical action key (case-insensitive)

        Returns:
            ActionPolicy or None if no policy is configured
        """
        with tracer.start_as_current_span("policies.get") as span:
            key = action_type.strip().lower()
            span.set_attributes({"approval.org_id": org_id, "approval.action_type": key})

            document = self.mongodb.get_collection(ACTION_POLICIES).find_one(
                self.mongodb.build_org_query(org_id, {"actionType": key})
            )
            span.set_attribute("approval.policy_found", document is not None)
            if not document:
                return None
            return ActionPolicy.from_document(document)

    def save(self, policy: ActionPolicy) -> ActionPolicy:
        """Create or replace the policy for its action type."""
        document = policy.to_document()
        document.pop("_id")
        self.mongodb.get_collection(ACTION_POLICIES).update_one(
            {"organizationId": policy.organization_id, "actionType": policy.action_type},
            {"$set": document, "$setOnInsert": {"_id": self.mongodb.validate_object_id(policy.id)}},
            upsert=True
        )
        logger.info(f"Saved approval policy {policy.action_type} for org {policy.organization_id}")
        return policy


class ApproverRegistryBase:
    """Shared resolution of registry rows into approver user ids."""

    def get_assignments(self, org_id: str, action_type: str) -> List[ApproverAssignment]:
        raise NotImplementedError

    def resolve(self, org_id: str, action_type: str, identity,
                exclude: Sequence[str] = ()) -> List[str]:
        """
        Resolve the ordered, de-duplicated approver set for an action type.

        Role rows expand through the identity lookup. Excluded ids (the
        requester) never receive a slot.

        Args:
            org_id: Organization scope
            action_type: Critical action key
            identity: Identity lookup with find_users_by_role
            exclude: User ids that must not be approvers

        Returns:
            List[str]: Approver user ids in registry order
        """
        excluded = set(exclude)
        approvers: List[str] = []

        for assignment in self.get_assignments(org_id, action_type):
            if assignment.user_id:
                candidates = [assignment.user_id]
            else:
                candidates = identity.find_users_by_role(org_id, assignment.role)

            for user_id in candidates:
                if user_id not in excluded and user_id not in approvers:
                    approvers.append(user_id)

        return approvers


class ApproverRegistry(ApproverRegistryBase):
    """Approver assignments stored in the approvers collection."""

    def __init__(self, mongodb_service: MongoDBService):
        self.mongodb = mongodb_service

    def get_assignments(self, org_id: str, action_type: str) -> List[ApproverAssignment]:
        """Active assignments for an action type, in order."""
        cursor = self.mongodb.get_collection(APPROVERS).find({
            "organizationId": org_id,
            "actionType": action_type.strip().lower(),
            "active": True
        }).sort("order", ASCENDING)

        assignments = []
        for document in cursor:
            data = dict(document)
            data["id"] = str(data.pop("_id"))
            assignments.append(ApproverAssignment.model_validate(data))
        return assignments

    def add(self, assignment: ApproverAssignment) -> ApproverAssignment:
        """Register an approver row."""
        document = assignment.to_document()
        document["_id"] = self.mongodb.validate_object_id(document.pop("id"))
        self.mongodb.get_collection(APPROVERS).insert_one(document)
        return assignment
