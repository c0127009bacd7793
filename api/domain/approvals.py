# SPDX-License-Identifier: Apache-2.0

"""
Approval request domain logic.

This module contains pure functions for request codes, payload fingerprints,
status transitions, decision slots and API serialization.
"""

import hashlib
import json
import secrets
import time
from datetime import datetime, date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from models.entities import ApprovalRequest, ApproverDecision, HistoryEntry
from models.enums import ApprovalStatus, HistoryAction
from .errors import NotPending


BASE36_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

# PENDING is the only status with outgoing edges
VALID_TRANSITIONS = {
    ApprovalStatus.PENDING: [
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.CANCELLED,
        ApprovalStatus.EXPIRED,
    ],
    ApprovalStatus.APPROVED: [],
    ApprovalStatus.REJECTED: [],
    ApprovalStatus.CANCELLED: [],
    ApprovalStatus.EXPIRED: [],
}


def to_base36(value: int) -> str:
    """Encode a non-negative integer in upper-case base 36."""
    if value < 0:
        raise ValueError("Base 36 encoding requires a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_request_code(now_ms: Optional[int] = None) -> str:
    """
    Generate a request code such as ``SOL-LZ3K8Q2A-7F4K1B``.

    Args:
        now_ms: Epoch milliseconds (defaults to current time)

    Returns:
        str: Upper-case request code
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(6))
    return f"SOL-{to_base36(now_ms)}-{suffix}"


def _normalize(value: Any) -> Any:
    """Normalize payload values so equivalent payloads hash identically."""
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def fingerprint_payload(payload: Optional[Dict[str, Any]]) -> str:
    """
    Normalized SHA-256 hash of an action payload.

    Keys are sorted, strings trimmed and null members dropped, so key order
    and whitespace do not produce distinct fingerprints.
    """
    normalized = _normalize(payload or {})
    canonical = json.dumps(normalized, sort_keys=True, separators=(",", ":"),
                           ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def validate_status_transition(current_status: str, new_status: str) -> bool:
    """Check whether a status transition is allowed."""
    try:
        current = ApprovalStatus(current_status)
        target = ApprovalStatus(new_status)
    except ValueError:
        return False
    return target in VALID_TRANSITIONS.get(current, [])


def ensure_pending(request: ApprovalRequest) -> None:
    """Raise NotPending unless the request is still PENDING."""
    if request.status != ApprovalStatus.PENDING:
        raise NotPending(request.id, request.status)


def transition(request: ApprovalRequest, new_status: ApprovalStatus, actor_id: str,
               note: Optional[str] = None, now: Optional[datetime] = None) -> None:
    """
    Move a request to a terminal status, stamping processing fields.

    Raises:
        NotPending: If the transition is not allowed from the current status
    """
    if not validate_status_transition(request.status, new_status):
        raise NotPending(request.id, request.status)

    now = now or datetime.utcnow()
    request.status = new_status
    request.processed_at = now
    request.processed_by = actor_id
    if note:
        request.processing_note = note
    request.update_timestamp(actor_id)


def build_decision_slots(approver_ids: Sequence[str]) -> List[ApproverDecision]:
    """One undecided slot per approver, preserving order."""
    return [
        ApproverDecision(
            approver_id=approver_id,
            original_approver_id=approver_id,
            order=index
        )
        for index, approver_id in enumerate(approver_ids)
    ]


def add_history(request: ApprovalRequest, action: HistoryAction, actor_id: str,
                metadata: Optional[Dict[str, Any]] = None,
                now: Optional[datetime] = None) -> HistoryEntry:
    """Append an immutable history entry to the request and return it."""
    entry = HistoryEntry(
        request_id=request.id,
        action=action,
        actor_id=actor_id,
        timestamp=now or datetime.utcnow(),
        metadata=metadata or {}
    )
    request.history.append(entry)
    return entry


def request_to_dict(request: ApprovalRequest, include_history: bool = False) -> Dict[str, Any]:
    """Serialize a request for API responses."""
    exclude = {"fingerprint", "deleted_at", "schema_version", "version"}
    if not include_history:
        exclude.add("history")
    return request.model_dump(mode="json", exclude=exclude)


def history_to_dicts(request: ApprovalRequest) -> List[Dict[str, Any]]:
    """Serialize a request's history, oldest first."""
    return [
        entry.model_dump(mode="json")
        for entry in sorted(request.history, key=lambda e: e.timestamp)
    ]
