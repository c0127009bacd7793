# SPDX-License-Identifier: Apache-2.0

"""
Tests for authentication and error handling middleware.
"""

import pytest
from unittest.mock import Mock
from flask import Flask, g, jsonify
from werkzeug.exceptions import MethodNotAllowed

from domain.errors import AlreadyDecided, Conflict, DuplicateRequest, NotPending, RequestNotFound
from middleware.auth import AuthMiddleware, require_auth
from middleware.error_handler import ErrorHandlerMiddleware, ValidationException
from services.hal import create_hal_formatter

PROBLEMS = "https://api.sos-cidadao.org/problems/"


class TestAuthMiddleware:
    """Test JWT authentication middleware."""

    def setup_method(self):
        self.redis = Mock()
        self.redis.is_available.return_value = True
        self.redis.is_token_blocked.return_value = False

    def make_app(self, auth_service):
        app = Flask(__name__)
        middleware = AuthMiddleware(auth_service, self.redis)

        @app.route('/protected')
        @require_auth(middleware)
        def protected():
            context = g.user_context
            return jsonify({
                "user_id": context.user_id,
                "org_id": context.org_id,
                "permissions": context.permissions
            })

        return app

    def test_valid_token(self, auth_service):
        client = self.make_app(auth_service).test_client()
        token = auth_service.issue_token("alice", "org-1", permissions=["approval:cancel"])

        response = client.get('/protected', headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.get_json() == {
            "user_id": "alice", "org_id": "org-1", "permissions": ["approval:cancel"]
        }

    def test_missing_token(self, auth_service):
        response = self.make_app(auth_service).test_client().get('/protected')

        assert response.status_code == 401
        assert response.get_json()["type"] == PROBLEMS + "authentication-required"

    def test_revoked_token(self, auth_service):
        self.redis.is_token_blocked.return_value = True
        token = auth_service.issue_token("alice", "org-1")

        response = self.make_app(auth_service).test_client().get(
            '/protected', headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401
        assert response.get_json()["type"] == PROBLEMS + "token-revoked"

    def test_garbage_token_is_invalid(self, auth_service):
        self.redis.is_available.return_value = False

        response = self.make_app(auth_service).test_client().get(
            '/protected', headers={"Authorization": "Bearer garbage"}
        )

        assert response.status_code == 401
        assert response.get_json()["type"] == PROBLEMS + "invalid-token"

    def test_blocklist_skipped_without_redis(self, auth_service):
        middleware = AuthMiddleware(auth_service, None)
        assert middleware.is_token_blocked("anything") is False


class TestErrorHandlerMiddleware:
    """Test problem responses for raised errors."""

    def setup_method(self):
        self.app = Flask(__name__)
        ErrorHandlerMiddleware(self.app, create_hal_formatter("http://localhost:5000"))

        errors = {
            "duplicate": DuplicateRequest("req-1", "SOL-A-000001", "approved", "executing"),
            "missing": RequestNotFound("req-404"),
            "decided": AlreadyDecided("Slot already decided"),
            "terminal": NotPending("req-2", "rejected"),
            "conflict": Conflict("Too many concurrent writers"),
            "validation": ValidationException("Request body validation failed",
                                              [{"field": "approved", "message": "Field required"}]),
            "boom": RuntimeError("unexpected")
        }

        @self.app.route('/raise/<name>', methods=['GET'])
        def raise_error(name):
            raise errors[name]

        self.client = self.app.test_client()

    @pytest.mark.parametrize("name,status,error_type", [
        ("duplicate", 400, "duplicate-request"),
        ("missing", 404, "resource-not-found"),
        ("decided", 409, "already-decided"),
        ("terminal", 409, "not-pending"),
        ("conflict", 409, "resource-conflict"),
        ("validation", 400, "validation-error"),
        ("boom", 500, "internal-server-error"),
    ])
    def test_error_mapping(self, name, status, error_type):
        response = self.client.get(f'/raise/{name}')

        assert response.status_code == status
        problem = response.get_json()
        assert problem["type"] == PROBLEMS + error_type
        assert problem["status"] == status
        assert problem["instance"] == f"/raise/{name}"
        assert "help" in problem["_links"]

    def test_not_pending_keeps_problem_status(self):
        problem = self.client.get('/raise/terminal').get_json()

        assert problem["status"] == 409
        assert problem["request_status"] == "rejected"
        assert problem["request_id"] == "req-2"

    def test_duplicate_awaiting_execution(self):
        problem = self.client.get('/raise/duplicate').get_json()

        assert "awaiting execution" in problem["detail"]
        assert problem["existing_execution_status"] == "executing"

    def test_not_found_route(self):
        response = self.client.get('/nowhere')

        assert response.status_code == 404
        assert response.get_json()["type"] == PROBLEMS + "resource-not-found"

    def test_method_not_allowed(self):
        response = self.client.post('/raise/boom')

        assert response.status_code == MethodNotAllowed.code
        assert response.get_json()["type"] == PROBLEMS + "method-not-allowed"

    def test_production_hides_details(self):
        self.app.config['ENVIRONMENT'] = 'production'

        problem = self.client.get('/raise/boom').get_json()
        assert problem["detail"] == "An unexpected error occurred"
