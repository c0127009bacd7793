# SPDX-License-Identifier: Apache-2.0

"""
Auto-approval evaluation at request-creation time.

Role-based auto-approval and the administrative escape hatch are separate
checks so each can be audited on its own.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Union

from models.entities import ActionPolicy
from models.enums import ApprovalStrategy, AutoApprovalBasis


def normalize_roles(roles: Optional[Iterable[str]]) -> List[str]:
    """Trim role names and drop blanks."""
    if not roles:
        return []
    return [role.strip() for role in roles if role and role.strip()]


@dataclass
class AutoApprovalDecision:
    """Outcome of the auto-approval checks."""
    approved: bool
    basis: Optional[AutoApprovalBasis] = None
    matched: Optional[str] = None
    role_source: Optional[str] = None


class AutoApprovalEvaluator:
    """
    Decides whether a requester's own role short-circuits the workflow.

    Role lists resolve in priority order: per-request override, then the
    policy list, then the configured default list. When none resolves,
    auto-approval is denied.
    """

    def __init__(self, default_roles: Optional[Sequence[str]] = None,
                 admin_capabilities: Optional[Sequence[str]] = None):
        self.default_roles = normalize_roles(default_roles)
        self.admin_capabilities = normalize_roles(admin_capabilities)

    def resolve_roles(self, policy: ActionPolicy,
                      override_roles: Optional[Sequence[str]] = None):
        """
        Resolve the effective auto-approval role list.

        Returns:
            Tuple of (roles, source) where source is "override", "policy",
            "default" or None when nothing resolves
        """
        for source, roles in (
            ("override", override_roles),
            ("policy", policy.auto_approval_roles),
            ("default", self.default_roles),
        ):
            normalized = normalize_roles(roles)
            if normalized:
                return normalized, source
        return [], None

    def evaluate(self, policy: ActionPolicy, requester_role: Union[str, Sequence[str], None],
                 override_roles: Optional[Sequence[str]] = None) -> bool:
        """
        Check role-based auto-approval.

        Args:
            policy: Policy for the action type
            requester_role: Requester role, or all of the requester's roles
            override_roles: Per-request role list taking precedence

        Returns:
            bool: True only when the policy enables auto-approval and a
                requester role matches the resolved list case-insensitively
        """
        return self.match_role(policy, requester_role, override_roles) is not None

    def match_role(self, policy: ActionPolicy, requester_role: Union[str, Sequence[str], None],
                   override_roles: Optional[Sequence[str]] = None) -> Optional[str]:
        """Return the matching role, or None when role-based auto-approval does not apply."""
        enabled = (
            policy.strategy == ApprovalStrategy.AUTO_APPROVAL_BY_ROLE
            or policy.auto_approval_enabled
        )
        if not enabled:
            return None

        roles, _ = self.resolve_roles(policy, override_roles)
        if not roles:
            return None

        if isinstance(requester_role, str):
            requester_roles = [requester_role]
        else:
            requester_roles = list(requester_role or [])

        allowed = {role.lower() for role in roles}
        for role in normalize_roles(requester_roles):
            if role.lower() in allowed:
                return role
        return None

    def has_admin_capability(self, permissions: Optional[Iterable[str]]) -> Optional[str]:
        """Return the administrative capability held, regardless of policy."""
        if not self.admin_capabilities:
            return None
        held = {p.strip().lower() for p in permissions or [] if p}
        for capability in self.admin_capabilities:
            if capability.lower() in held:
                return capability
        return None

    def decide(self, policy: ActionPolicy, requester_roles: Sequence[str],
               requester_permissions: Sequence[str],
               override_roles: Optional[Sequence[str]] = None) -> AutoApprovalDecision:
        """Run the role check, then the administrative capability check."""
        role = self.match_role(policy, requester_roles, override_roles)
        if role is not None:
            _, source = self.resolve_roles(policy, override_roles)
            return AutoApprovalDecision(
                approved=True,
                basis=AutoApprovalBasis.ROLE,
                matched=role,
                role_source=source
            )

        capability = self.has_admin_capability(requester_permissions)
        if capability is not None:
            return AutoApprovalDecision(
                approved=True,
                basis=AutoApprovalBasis.ADMIN_CAPABILITY,
                matched=capability
            )

        return AutoApprovalDecision(approved=False)
