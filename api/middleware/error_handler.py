# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Error handling middleware with structured HAL responses.
Provides centralized error handling and formatting for Flask applications.
"""

from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException
from pydantic import ValidationError
from typing import Any, Dict, List, Tuple
from opentelemetry import trace
import logging

from domain.errors import ApprovalError
from services.hal import HalFormatter

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

CLIENT_ERRORS = {
    400: ("bad-request", "Bad Request"),
    401: ("authentication-required", "Authentication Required"),
    403: ("insufficient-permissions", "Insufficient Permissions"),
    404: ("resource-not-found", "Resource Not Found"),
    405: ("method-not-allowed", "Method Not Allowed"),
    409: ("resource-conflict", "Resource Conflict"),
    415: ("unsupported-media-type", "Unsupported Media Type"),
    422: ("validation-error", "Validation Error"),
}


class ValidationException(Exception):
    """Raised when a request body or query fails validation."""

    status_code = 400

    def __init__(self, message: str, validation_errors: list = None):
        super().__init__(message)
        self.message = message
        self.validation_errors = validation_errors or []

    @classmethod
    def from_pydantic(cls, error: ValidationError, message: str = "Request validation failed"):
        return cls(message, format_validation_errors(error))


def format_validation_errors(error: ValidationError) -> List[Dict[str, Any]]:
    """Flatten pydantic errors into field/message pairs."""
    return [
        {
            "field": ".".join(str(part) for part in item.get("loc", ())) or "body",
            "message": item.get("msg", ""),
            "type": item.get("type", "")
        }
        for item in error.errors()
    ]


class ErrorHandlerMiddleware:
    """Centralized error handling middleware with HAL response formatting."""

    def __init__(self, app: Flask, hal_formatter: HalFormatter):
        self.app = app
        self.hal_formatter = hal_formatter
        self.register_error_handlers()

    def register_error_handlers(self):
        """Register error handlers with Flask application."""

        @self.app.errorhandler(ApprovalError)
        def handle_approval_error(error: ApprovalError):
            return self.handle_approval_error(error)

        @self.app.errorhandler(ValidationException)
        def handle_validation_exception(error: ValidationException):
            return self.handle_validation_error(error.message, error.validation_errors)

        @self.app.errorhandler(ValidationError)
        def handle_pydantic_error(error: ValidationError):
            return self.handle_validation_error("Request validation failed", format_validation_errors(error))

        @self.app.errorhandler(HTTPException)
        def handle_http_exception(error: HTTPException):
            if error.code is not None and error.code >= 500:
                return self.handle_server_error(error)
            return self.handle_client_error(error)

        @self.app.errorhandler(Exception)
        def handle_generic_exception(error):
            return self.handle_unexpected_error(error)

    def handle_approval_error(self, error: ApprovalError) -> Tuple[Any, int]:
        """Map a workflow error to its problem response."""
        with tracer.start_as_current_span("error_handler.approval_error") as span:
            span.set_attributes({
                "error.type": error.error_type,
                "error.status": error.status_code,
                "http.method": request.method,
                "http.path": request.path
            })

            logger.warning(
                f"Approval error: {error.title}",
                extra={
                    "error_type": error.error_type,
                    "status_code": error.status_code,
                    "detail": error.message,
                    "path": request.path,
                    "method": request.method
                }
            )

            return jsonify(self.hal_formatter.format_approval_error(error, request.path)), error.status_code

    def handle_validation_error(self, detail: str, errors: List[Dict[str, Any]]) -> Tuple[Any, int]:
        """Return a 400 validation problem."""
        logger.warning(
            "Validation error",
            extra={"path": request.path, "method": request.method, "error_count": len(errors)}
        )
        return jsonify(self.hal_formatter.format_validation_error(detail, request.path, errors)), 400

    def handle_client_error(self, error: HTTPException) -> Tuple[Any, int]:
        """
        Handle client errors (4xx status codes).

        Args:
            error: HTTP exception

        Returns:
            Tuple of (error response, status code)
        """
        error_type, title = CLIENT_ERRORS.get(error.code, ("client-error", error.name))

        with tracer.start_as_current_span("error_handler.client_error") as span:
            span.set_attributes({
                "error.type": error_type,
                "error.status": error.code,
                "http.method": request.method,
                "http.path": request.path
            })

            detail = str(error.description) if error.description else title

            logger.warning(
                f"Client error: {title}",
                extra={
                    "error_type": error_type,
                    "status_code": error.code,
                    "detail": detail,
                    "path": request.path,
                    "method": request.method,
                    "user_agent": request.headers.get('User-Agent'),
                    "ip_address": request.remote_addr
                }
            )

            error_response = self.hal_formatter.builder.build_error_response(
                error_type,
                title,
                error.code,
                detail,
                request.path
            )

            return jsonify(error_response), error.code

    def handle_server_error(self, error: HTTPException) -> Tuple[Any, int]:
        """Handle server errors (5xx status codes)."""
        with tracer.start_as_current_span("error_handler.server_error") as span:
            span.set_attributes({
                "error.status": error.code,
                "http.method": request.method,
                "http.path": request.path
            })

            logger.error(
                f"Server error: {error.name}",
                extra={
                    "status_code": error.code,
                    "path": request.path,
                    "method": request.method
                },
                exc_info=True
            )

            detail = str(error.description) if error.description else error.name
            if self.app.config.get('ENVIRONMENT') == 'production':
                detail = "An internal server error occurred"

            error_response = self.hal_formatter.builder.build_error_response(
                "internal-server-error" if error.code == 500 else "service-unavailable",
                error.name,
                error.code,
                detail,
                request.path
            )
            return jsonify(error_response), error.code

    def handle_unexpected_error(self, error: Exception) -> Tuple[Any, int]:
        """
        Handle unexpected exceptions not caught by specific handlers.

        Args:
            error: Unexpected exception

        Returns:
            Tuple of (error response, status code)
        """
        with tracer.start_as_current_span("error_handler.unexpected_error") as span:
            span.set_attributes({
                "error.type": "unexpected-error",
                "error.class": error.__class__.__name__,
                "http.method": request.method,
                "http.path": request.path
            })
            span.record_exception(error)

            logger.error(
                f"Unexpected error: {error.__class__.__name__}",
                extra={
                    "error_type": "unexpected-error",
                    "error_class": error.__class__.__name__,
                    "error_message": str(error),
                    "path": request.path,
                    "method": request.method
                },
                exc_info=True
            )

            detail = "An unexpected error occurred"
            if self.app.config.get('ENVIRONMENT') != 'production':
                detail = f"{error.__class__.__name__}: {str(error)}"

            return jsonify(self.hal_formatter.format_server_error(detail, request.path)), 500
