# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for HAL response formatting utilities.
"""

from services.hal import (
    HalLinkBuilder, PaginationLinkBuilder, AffordanceLinkBuilder,
    HalResponseBuilder, create_hal_formatter
)
from domain.errors import DuplicateRequest, NotEligible
from models.responses import HalLink

BASE_URL = "https://api.example.com"


def approval(**overrides):
    data = {
        "id": "req-1",
        "status": "pending",
        "requester_id": "requester",
        "decisions": [
            {"approver_id": "alice", "approved": None},
            {"approver_id": "bob", "approved": True}
        ]
    }
    data.update(overrides)
    return data


class TestHalLinkBuilder:
    """Test HAL link builder functionality."""

    def test_build_basic_link(self):
        """Test building a basic HAL link."""
        builder = HalLinkBuilder(BASE_URL)

        link = builder.build_link("/api/requests/123")

        assert isinstance(link, HalLink)
        assert link.href == "https://api.example.com/api/requests/123"
        assert link.method == "GET"
        assert link.type is None
        assert link.templated is None

    def test_build_action_link(self):
        """Test building an action link."""
        builder = HalLinkBuilder(BASE_URL + "/")

        link = builder.build_action_link("/api/requests/123", "cancel")

        assert link.href == "https://api.example.com/api/requests/123/cancel"
        assert link.method == "POST"
        assert link.type == "application/json"
        assert link.title == "Cancel"


class TestPaginationLinkBuilder:
    """Test pagination links."""

    def setup_method(self):
        self.builder = PaginationLinkBuilder(BASE_URL)

    def test_first_page(self):
        links = self.builder.build_pagination_links("/api/requests", 1, 3, 20)

        assert set(links) == {"self", "next", "last"}
        assert links["next"].href.endswith("/api/requests?page=2&page_size=20")

    def test_middle_page_keeps_filters(self):
        links = self.builder.build_pagination_links(
            "/api/requests", 2, 3, 20, {"status": "pending", "type": None}
        )

        assert set(links) == {"self", "first", "prev", "next", "last"}
        assert links["prev"].href.endswith("/api/requests?status=pending&page=1&page_size=20")
        assert "type=" not in links["self"].href

    def test_single_page(self):
        links = self.builder.build_pagination_links("/api/requests", 1, 1, 20)
        assert set(links) == {"self"}


class TestAffordanceLinkBuilder:
    """Test conditional affordances on approval requests."""

    def setup_method(self):
        self.builder = AffordanceLinkBuilder(BASE_URL)

    def test_undecided_approver_gets_decision_links(self):
        links = self.builder.build_approval_affordances(approval(), "alice", [])

        assert {"self", "collection", "history", "decision", "delegate"} <= set(links)
        assert "cancel" not in links
        assert links["decision"].href.endswith("/api/requests/req-1/decision")

    def test_decided_approver_gets_no_decision_links(self):
        links = self.builder.build_approval_affordances(approval(), "bob", [])
        assert "decision" not in links
        assert "delegate" not in links

    def test_requester_can_cancel(self):
        links = self.builder.build_approval_affordances(approval(), "requester", [])
        assert "cancel" in links
        assert "decision" not in links

    def test_cancel_permission(self):
        links = self.builder.build_approval_affordances(approval(), "manager", ["approval:cancel"])
        assert "cancel" in links

    def test_custom_cancel_permission(self):
        builder = AffordanceLinkBuilder(BASE_URL, cancel_permission="requests:cancel_any")
        links = builder.build_approval_affordances(approval(), "manager", ["approval:cancel"])
        assert "cancel" not in links

    def test_terminal_request_has_only_navigation(self):
        links = self.builder.build_approval_affordances(approval(status="approved"), "alice", ["approval:cancel"])
        assert set(links) == {"self", "collection", "history"}


class TestHalResponseBuilder:
    """Test resource, collection and error responses."""

    def setup_method(self):
        self.builder = HalResponseBuilder(BASE_URL)

    def test_collection_response(self):
        response = self.builder.build_collection_response(
            [{"id": "a"}, {"id": "b"}], total=45, page=1, page_size=20, collection_path="/api/requests"
        )

        assert response["total"] == 45
        assert response["total_pages"] == 3
        assert response["_embedded"]["items"] == [{"id": "a"}, {"id": "b"}]
        assert "next" in response["_links"]
        assert "method" in response["_links"]["self"]
        assert "type" not in response["_links"]["self"]

    def test_error_response(self):
        response = self.builder.build_error_response(
            "not-eligible", "Not Eligible", 403, "No slot", "/api/requests/req-1/decision"
        )

        assert response["type"] == "https://api.sos-cidadao.org/problems/not-eligible"
        assert response["status"] == 403
        assert response["instance"] == "/api/requests/req-1/decision"
        assert response["_links"]["help"]["href"].endswith("/docs/errors#not-eligible")

    def test_extra_members_cannot_override_problem_fields(self):
        response = self.builder.build_error_response(
            "not-pending", "Request Not Pending", 409, "Request is rejected", "/api/requests/req-1/cancel",
            extra={"status": "rejected", "type": "other", "request_id": "req-1"}
        )

        assert response["status"] == 409
        assert response["type"] == "https://api.sos-cidadao.org/problems/not-pending"
        assert response["request_id"] == "req-1"

    def test_validation_error_links_schema(self):
        response = self.builder.build_error_response(
            "validation-error", "Validation Error", 400, "Invalid", "/api/requests",
            validation_errors=[{"field": "justification", "message": "required"}]
        )

        assert response["errors"][0]["field"] == "justification"
        assert "schema" in response["_links"]


class TestHalFormatter:
    """Test high-level formatting helpers."""

    def setup_method(self):
        self.formatter = create_hal_formatter(BASE_URL)

    def test_format_duplicate_error(self):
        error = DuplicateRequest("req-9", "SOL-X-000001", "pending")

        response = self.formatter.format_approval_error(error, "/api/requests")

        assert response["status"] == 400
        assert response["existing_id"] == "req-9"
        assert response["existing_status"] == "pending"
        assert "awaiting decision" in response["detail"]
        assert response["_links"]["existing"]["href"].endswith("/api/requests/req-9")

    def test_format_error_without_details(self):
        response = self.formatter.format_approval_error(NotEligible("No slot"), "/x")

        assert response["status"] == 403
        assert response["title"] == "Not Eligible"
        assert "existing" not in response["_links"]

    def test_format_history(self):
        response = self.formatter.format_history("req-1", [{"action": "create"}])

        assert response["total"] == 1
        assert response["_links"]["self"]["href"].endswith("/api/requests/req-1/history")
        assert response["_links"]["request"]["href"].endswith("/api/requests/req-1")

    def test_format_metrics(self):
        response = self.formatter.format_metrics({"period": {"days": 30}, "total_requests": 0})

        assert response["total_requests"] == 0
        assert response["_links"]["self"]["href"].endswith("/api/requests/metrics?days=30")
