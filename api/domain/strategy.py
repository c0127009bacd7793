# SPDX-License-Identifier: Apache-2.0

"""
Strategy resolution for approval requests.

Pure functions computing how many approvals a request needs and when the
recorded decisions make it terminal.
"""

import math
from dataclasses import dataclass
from typing import List, Optional

from models.entities import ActionPolicy, ApproverDecision
from models.enums import ApprovalStrategy, ApprovalStatus
from .errors import InvalidStrategyConfiguration


@dataclass
class AggregateOutcome:
    """Result of evaluating the decisions recorded so far."""
    status: ApprovalStatus
    approvals: int
    rejections: int
    required: int
    reject_quorum: int

    @property
    def is_terminal(self) -> bool:
        return self.status != ApprovalStatus.PENDING


def required_approvals(policy: ActionPolicy, total_approvers: int) -> int:
    """
    Number of approvals that approve a request.

    Args:
        policy: Policy in effect
        total_approvers: Size of the resolved approver set

    Returns:
        int: Required approvals, never below one
    """
    if policy.strategy == ApprovalStrategy.MAJORITY:
        return max(1, math.ceil(total_approvers / 2))

    if policy.strategy == ApprovalStrategy.CUSTOM_MINIMUM:
        return max(1, policy.minimum_approvers)

    # SIMPLE, and the escalation/auto-approval strategies once a human decides
    return 1


def rejection_quorum(strategy: str, total_approvers: int) -> int:
    """Number of rejections that reject a request under the strategy."""
    if strategy == ApprovalStrategy.MAJORITY:
        return max(1, math.ceil(total_approvers / 2))
    return 1


def is_rejected(decisions: List[ApproverDecision], policy: ActionPolicy) -> bool:
    """
    Check whether the recorded decisions reject the request.

    SIMPLE and CUSTOM_MINIMUM fail fast on a single reject. MAJORITY needs
    the same quorum rejecting as would be needed to approve.
    """
    rejections = sum(1 for slot in decisions if slot.approved is False)
    return rejections >= rejection_quorum(policy.strategy, len(decisions))


def validate_configuration(policy: ActionPolicy, total_approvers: int) -> int:
    """
    Validate that the policy can be satisfied and return the required approvals.

    Raises:
        InvalidStrategyConfiguration: If no approvers resolve or the minimum
            exceeds the approvers available
    """
    if total_approvers < 1:
        raise InvalidStrategyConfiguration(
            f"No approvers available for action '{policy.action_type}'",
            {"action_type": policy.action_type, "available_approvers": 0}
        )

    required = required_approvals(policy, total_approvers)
    if required > total_approvers:
        raise InvalidStrategyConfiguration(
            f"Policy for '{policy.action_type}' requires {required} approvals "
            f"but only {total_approvers} approvers are available",
            {
                "action_type": policy.action_type,
                "required_approvals": required,
                "available_approvers": total_approvers
            }
        )
    return required


def evaluate(decisions: List[ApproverDecision], strategy: str,
             required: int) -> AggregateOutcome:
    """
    Aggregate decisions against the strategy snapshot stored on a request.

    Rejection is checked before approval.

    Args:
        decisions: All decision slots of the request
        strategy: Strategy snapshot taken at submission
        required: Required approvals snapshot taken at submission

    Returns:
        AggregateOutcome: Resulting status and tallies
    """
    approvals = sum(1 for slot in decisions if slot.approved is True)
    rejections = sum(1 for slot in decisions if slot.approved is False)
    quorum = rejection_quorum(strategy, len(decisions))

    if rejections >= quorum:
        status = ApprovalStatus.REJECTED
    elif approvals >= required:
        status = ApprovalStatus.APPROVED
    else:
        status = ApprovalStatus.PENDING

    return AggregateOutcome(
        status=status,
        approvals=approvals,
        rejections=rejections,
        required=required,
        reject_quorum=quorum
    )
