#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Seed default approval policies for an organization.

Installs one policy per critical action and, optionally, role-based approver
assignments. Existing policies are left untouched unless --overwrite is given.

Usage:
    python scripts/seed_policies.py <org_id> [--approver-role gestor] [--overwrite]
"""

import argparse
import os
import sys
import logging

# Add the parent directory to the path so we can import from api
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from domain.catalog import SEED_ACTOR, default_policies
from models.entities import ApproverAssignment
from services.mongodb import get_mongodb_service, close_mongodb_connection
from services.policies import ActionPolicyStore, ApproverRegistry

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def seed(org_id: str, approver_roles, overwrite: bool = False) -> int:
    """Seed policies and approver roles; returns the number of policies written."""
    mongodb_service = get_mongodb_service()
    store = ActionPolicyStore(mongodb_service)
    registry = ApproverRegistry(mongodb_service)

    written = 0
    for policy in default_policies(org_id):
        if store.get(org_id, policy.action_type) is not None and not overwrite:
            logger.info(f"Policy for {policy.action_type} already exists, skipping")
            continue

        store.save(policy)
        written += 1
        logger.info(f"Policy for {policy.action_type} saved ({policy.strategy})")

        existing = {a.role for a in registry.get_assignments(org_id, policy.action_type) if a.role}
        for order, role in enumerate(approver_roles):
            if role in existing:
                continue
            registry.add(ApproverAssignment(
                organization_id=org_id,
                action_type=policy.action_type,
                role=role,
                order=order
            ))

    logger.info(f"Seeded {written} policies for organization {org_id} as {SEED_ACTOR}")
    return written


def main():
    parser = argparse.ArgumentParser(description="Seed default approval policies")
    parser.add_argument("org_id", help="Organization ID")
    parser.add_argument("--approver-role", action="append", default=[],
                        help="Role whose members approve every action (repeatable)")
    parser.add_argument("--overwrite", action="store_true", help="Replace existing policies")
    args = parser.parse_args()

    try:
        seed(args.org_id, args.approver_role, args.overwrite)
    finally:
        close_mongodb_connection()


if __name__ == "__main__":
    main()
