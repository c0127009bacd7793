# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Approval workflow metrics.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from opentelemetry import trace

from models.enums import ApprovalStatus

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ApprovalMetricsService:
    """Folds per-(status, action type) aggregates into period metrics."""

    def __init__(self, repository):
        self.repository = repository

    def compute(self, org_id: str, days: int = 30, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Compute metrics for requests created in the last ``days`` days.

        Returns:
            Dict with period, total_requests, by_status, by_action_type,
            approval_rate, average_decision_hours, auto_approved, escalated
            and execution_failures
        """
        with tracer.start_as_current_span("metrics.compute") as span:
            now = now or datetime.utcnow()
            since = now - timedelta(days=days)
            span.set_attributes({"approval.org_id": org_id, "metrics.days": days})

            rows = self.repository.summarize(org_id, since)

            by_status = {status.value: 0 for status in ApprovalStatus}
            by_action_type: Dict[str, Dict[str, int]] = {}
            totals = {"count": 0, "auto_approved": 0, "escalated": 0,
                      "execution_failures": 0, "decided": 0, "decision_ms": 0}

            for row in rows:
                by_status[row["status"]] = by_status.get(row["status"], 0) + row["count"]
                per_action = by_action_type.setdefault(row["action_type"], {})
                per_action[row["status"]] = per_action.get(row["status"], 0) + row["count"]
                for key in totals:
                    totals[key] += row[key]

            approved = by_status[ApprovalStatus.APPROVED.value]
            rejected = by_status[ApprovalStatus.REJECTED.value]
            approval_rate = round(approved / (approved + rejected), 4) if approved + rejected else None

            average_hours = None
            if totals["decided"]:
                average_hours = round(totals["decision_ms"] / totals["decided"] / 3_600_000, 2)

            span.set_attribute("metrics.total_requests", totals["count"])

            return {
                "period": {"days": days, "from": since.isoformat(), "to": now.isoformat()},
                "total_requests": totals["count"],
                "by_status": by_status,
                "by_action_type": by_action_type,
                "approval_rate": approval_rate,
                "average_decision_hours": average_hours,
                "auto_approved": totals["auto_approved"],
                "escalated": totals["escalated"],
                "execution_failures": totals["execution_failures"]
            }
