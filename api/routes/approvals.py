# SPDX-License-Identifier: Apache-2.0

"""
Approval workflow endpoints.

Submission, listing, detail, history and metrics of approval requests plus
the decision, delegation and cancellation actions. Workflow errors propagate
to the error handler, which renders them as problem documents.
"""

from flask import request, jsonify, current_app, g
from flask_openapi3 import APIBlueprint, Tag
from pydantic import ValidationError
from opentelemetry import trace
import logging
from typing import Any, Dict, Type, TypeVar

from domain.approvals import request_to_dict, history_to_dicts
from middleware.auth import require_jwt
from middleware.error_handler import ValidationException
from models.requests import (
    RequestPath, SubmitApprovalRequest, DecisionRequest, DelegateRequest,
    CancelRequest, ApprovalRequestFilters, PaginationParams, MetricsParams
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

M = TypeVar('M')

approvals_tag = Tag(name="Approvals", description="Approval workflow for critical actions")
approvals_bp = APIBlueprint(
    'approvals',
    __name__,
    url_prefix='/api/requests',
    abp_tags=[approvals_tag]
)


def _parse_body(model: Type[M]) -> M:
    """Validate the JSON body against a request model."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationException("Request body must be a JSON object")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ValidationException.from_pydantic(e, "Request body validation failed")


def _parse_query(model: Type[M], **renames: str) -> M:
    """Validate query arguments; ``renames`` maps query names to field names."""
    args: Dict[str, Any] = {}
    for key, value in request.args.items():
        if value == "":
            continue
        args[renames.get(key, key)] = value
    try:
        return model.model_validate(args)
    except ValidationError as e:
        raise ValidationException.from_pydantic(e, "Query parameter validation failed")


def _format(approval) -> Dict[str, Any]:
    user_context = g.user_context
    return current_app.hal_formatter.format_approval_request(
        request_to_dict(approval), user_context.user_id, user_context.permissions
    )


def _format_page(result, collection_path: str, filters: Dict[str, Any] = None) -> Dict[str, Any]:
    user_context = g.user_context
    return current_app.hal_formatter.format_approval_collection(
        [request_to_dict(item) for item in result.items],
        result.total,
        result.page,
        result.page_size,
        user_context.user_id,
        user_context.permissions,
        collection_path=collection_path,
        filters=filters
    )


@approvals_bp.post('')
@require_jwt
def submit_request():
    """
    Submit a critical action for approval.

    Returns the created request; auto-approved requests come back APPROVED.
    """
    user_context = g.user_context
    body = _parse_body(SubmitApprovalRequest)

    with tracer.start_as_current_span("approvals.submit") as span:
        span.set_attributes({
            "user.id": user_context.user_id,
            "organization.id": user_context.org_id,
            "approval.action_type": body.action_type
        })

        approval = current_app.engine.submit(
            org_id=user_context.org_id,
            requester_id=user_context.user_id,
            action_type=body.action_type,
            justification=body.justification,
            payload=body.payload,
            execution=body.execution,
            deadline=body.deadline,
            attachments=body.attachments
        )

        response = jsonify(_format(approval))
        response.status_code = 201
        response.headers['Location'] = f"/api/requests/{approval.id}"
        return response


@approvals_bp.get('')
@require_jwt
def list_requests():
    """List the organization's approval requests, newest first."""
    user_context = g.user_context
    filters = _parse_query(ApprovalRequestFilters, type='action_type')
    pagination = _parse_query(PaginationParams)

    with tracer.start_as_current_span("approvals.list") as span:
        span.set_attributes({
            "organization.id": user_context.org_id,
            "pagination.page": pagination.page,
            "pagination.page_size": pagination.page_size
        })

        result = current_app.engine.list_requests(
            user_context.org_id, filters, pagination.page, pagination.page_size
        )
        query = {
            'status': filters.status.value if filters.status else None,
            'type': filters.action_type,
            'requester_id': filters.requester_id
        }
        return jsonify(_format_page(result, "/api/requests", query)), 200


@approvals_bp.get('/pending')
@require_jwt
def list_pending():
    """Requests awaiting the caller's decision, earliest deadline first."""
    user_context = g.user_context
    pagination = _parse_query(PaginationParams)

    result = current_app.engine.list_pending_for(
        user_context.org_id, user_context.user_id, pagination.page, pagination.page_size
    )
    return jsonify(_format_page(result, "/api/requests/pending")), 200


@approvals_bp.get('/metrics')
@require_jwt
def get_metrics():
    """Approval metrics for the last ``days`` days."""
    user_context = g.user_context
    params = _parse_query(MetricsParams)

    metrics = current_app.metrics_service.compute(user_context.org_id, params.days)
    return jsonify(current_app.hal_formatter.format_metrics(metrics)), 200


@approvals_bp.get('/<request_id>')
@require_jwt
def get_request(path: RequestPath):
    """Get one approval request."""
    user_context = g.user_context
    approval = current_app.engine.get(user_context.org_id, path.request_id)
    return jsonify(_format(approval)), 200


@approvals_bp.get('/<request_id>/history')
@require_jwt
def get_history(path: RequestPath):
    """Get a request's history, oldest first."""
    user_context = g.user_context
    approval = current_app.engine.get(user_context.org_id, path.request_id)
    return jsonify(current_app.hal_formatter.format_history(approval.id, history_to_dicts(approval))), 200


@approvals_bp.post('/<request_id>/decision')
@require_jwt
def record_decision(path: RequestPath):
    """Approve or reject as the holder of a decision slot."""
    user_context = g.user_context
    body = _parse_body(DecisionRequest)

    approval = current_app.engine.record_decision(
        user_context.org_id, path.request_id, user_context.user_id, body.approved, body.comment
    )
    return jsonify(_format(approval)), 200


@approvals_bp.post('/<request_id>/delegate')
@require_jwt
def delegate_decision(path: RequestPath):
    """Hand the caller's undecided slot to another approver."""
    user_context = g.user_context
    body = _parse_body(DelegateRequest)

    approval = current_app.engine.delegate(
        user_context.org_id, path.request_id, user_context.user_id, body.to_approver_id, body.reason
    )
    return jsonify(_format(approval)), 200


@approvals_bp.post('/<request_id>/cancel')
@require_jwt
def cancel_request(path: RequestPath):
    """Cancel a pending request (requester or cancel-permission holder)."""
    user_context = g.user_context
    body = _parse_body(CancelRequest)

    approval = current_app.engine.cancel(
        user_context.org_id, path.request_id, user_context.user_id, body.reason,
        actor_permissions=user_context.permissions
    )
    return jsonify(_format(approval)), 200
