# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Default approval policies for the critical-action catalog.

Used by the policy seed script and by in-memory development runs. Policies
are administered externally afterwards; these are only starting points.
"""

from typing import Any, Dict, List

from models.entities import ActionPolicy
from models.enums import ApprovalStrategy, CriticalActionType

SEED_ACTOR = "system:seed"

# Per-action overrides on top of a single-approver policy
POLICY_DEFAULTS: Dict[CriticalActionType, Dict[str, Any]] = {
    CriticalActionType.CANCELAR_BENEFICIO: {
        "strategy": ApprovalStrategy.CUSTOM_MINIMUM, "minimum_approvers": 2,
        "deadline_hours": 48, "escalation_increment_hours": 24
    },
    CriticalActionType.EXCLUIR_CIDADAO: {
        "strategy": ApprovalStrategy.CUSTOM_MINIMUM, "minimum_approvers": 2,
        "deadline_hours": 72, "escalation_increment_hours": 48
    },
    CriticalActionType.ALTERAR_CONFIGURACAO_CRITICA: {
        "strategy": ApprovalStrategy.CUSTOM_MINIMUM, "minimum_approvers": 3,
        "deadline_hours": 24, "escalation_increment_hours": 12
    },
    CriticalActionType.SUSPENDER_BENEFICIO: {
        "strategy": ApprovalStrategy.MAJORITY, "deadline_hours": 24
    },
    CriticalActionType.BLOQUEAR_BENEFICIO: {
        "strategy": ApprovalStrategy.AUTO_APPROVAL_BY_ROLE,
        "auto_approval_roles": ["admin", "gestor"], "deadline_hours": 12
    },
    CriticalActionType.ALTERAR_PERMISSOES: {
        "strategy": ApprovalStrategy.HIERARCHICAL_ESCALATION, "escalation_target": "gestor",
        "deadline_hours": 24, "escalation_increment_hours": 24
    },
}


def default_policies(org_id: str) -> List[ActionPolicy]:
    """Build one active policy per catalog action for an organization."""
    policies = []
    for action in CriticalActionType:
        fields = {
            "organization_id": org_id,
            "created_by": SEED_ACTOR,
            "updated_by": SEED_ACTOR,
            "action_type": action.value,
            "description": action.value.replace("_", " ").capitalize()
        }
        fields.update(POLICY_DEFAULTS.get(action, {}))
        policies.append(ActionPolicy(**fields))
    return policies
