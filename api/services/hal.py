# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
HAL (Hypertext Application Language) response formatting utilities.
Implements HATEOAS Level-3 API responses with conditional affordance links.
"""

from typing import Dict, List, Any, Optional
from urllib.parse import urljoin, urlencode
import math

from models.enums import ApprovalStatus
from models.responses import HalLink

REQUESTS_PATH = "/api/requests"
PROBLEM_MEMBERS = ("type", "title", "status", "detail", "instance")


class HalLinkBuilder:
    """Builder for HAL links with proper URL construction."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/') + '/'

    def build_link(
        self,
        path: str,
        method: str = "GET",
        content_type: Optional[str] = None,
        title: Optional[str] = None,
        templated: bool = False
    ) -> HalLink:
        """Build a HAL link with proper URL construction."""
        href = urljoin(self.base_url, path.lstrip('/'))

        return HalLink(
            href=href,
            method=method,
            type=content_type,
            title=title,
            templated=templated or None
        )

    def build_action_link(
        self,
        resource_path: str,
        action: str,
        title: Optional[str] = None
    ) -> HalLink:
        """Build a POST action link below a resource."""
        return self.build_link(
            f"{resource_path}/{action}",
            method="POST",
            content_type="application/json",
            title=title or action.title()
        )


class PaginationLinkBuilder:
    """Builder for pagination links in HAL collections."""

    def __init__(self, base_url: str):
        self.link_builder = HalLinkBuilder(base_url)

    def _page_link(self, base_path: str, params: Dict[str, Any], page: int,
                   page_size: int, title: str) -> HalLink:
        query = urlencode({**params, 'page': page, 'page_size': page_size})
        return self.link_builder.build_link(f"{base_path}?{query}", title=title)

    def build_pagination_links(
        self,
        base_path: str,
        current_page: int,
        total_pages: int,
        page_size: int,
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, HalLink]:
        """Build self, first, prev, next and last links for a collection."""
        params = {k: v for k, v in (query_params or {}).items() if v is not None}
        links = {
            'self': self._page_link(base_path, params, current_page, page_size, "Current page")
        }

        if current_page > 1:
            links['first'] = self._page_link(base_path, params, 1, page_size, "First page")
            links['prev'] = self._page_link(base_path, params, current_page - 1, page_size, "Previous page")

        if current_page < total_pages:
            links['next'] = self._page_link(base_path, params, current_page + 1, page_size, "Next page")
            links['last'] = self._page_link(base_path, params, total_pages, page_size, "Last page")

        return links


class AffordanceLinkBuilder:
    """Builder for conditional affordance links based on permissions and state."""

    def __init__(self, base_url: str, cancel_permission: str = "approval:cancel"):
        self.link_builder = HalLinkBuilder(base_url)
        self.cancel_permission = cancel_permission

    def build_approval_affordances(
        self,
        request: Dict[str, Any],
        user_id: str,
        user_permissions: List[str]
    ) -> Dict[str, HalLink]:
        """
        Build links for an approval request.

        Decision and delegation links are offered only to the holder of an
        undecided slot; cancel only to the requester or a cancel-permission
        holder, and all of them only while the request is pending.
        """
        base_path = f"{REQUESTS_PATH}/{request['id']}"
        links = {
            'self': self.link_builder.build_link(base_path, title="Self"),
            'collection': self.link_builder.build_link(REQUESTS_PATH, title="Collection"),
            'history': self.link_builder.build_link(f"{base_path}/history", title="Request history")
        }

        if request.get('status') != ApprovalStatus.PENDING.value:
            return links

        holds_open_slot = any(
            slot.get('approver_id') == user_id and slot.get('approved') is None
            for slot in request.get('decisions', [])
        )
        if holds_open_slot:
            links['decision'] = self.link_builder.build_action_link(
                base_path, "decision", title="Approve or reject"
            )
            links['delegate'] = self.link_builder.build_action_link(
                base_path, "delegate", title="Delegate decision"
            )

        if user_id == request.get('requester_id') or self.cancel_permission in user_permissions:
            links['cancel'] = self.link_builder.build_action_link(
                base_path, "cancel", title="Cancel request"
            )

        return links


class HalResponseBuilder:
    """Main HAL response builder."""

    def __init__(self, base_url: str, cancel_permission: str = "approval:cancel"):
        self.base_url = base_url.rstrip('/')
        self.link_builder = HalLinkBuilder(base_url)
        self.pagination_builder = PaginationLinkBuilder(base_url)
        self.affordance_builder = AffordanceLinkBuilder(base_url, cancel_permission)

    @staticmethod
    def _dump_links(links: Dict[str, HalLink]) -> Dict[str, Any]:
        return {rel: link.model_dump(exclude_none=True) for rel, link in links.items()}

    def build_resource_response(
        self,
        data: Dict[str, Any],
        links: Dict[str, HalLink]
    ) -> Dict[str, Any]:
        """Attach links to a resource representation."""
        response = dict(data)
        response['_links'] = self._dump_links(links)
        return response

    def build_collection_response(
        self,
        items: List[Dict[str, Any]],
        total: int,
        page: int,
        page_size: int,
        collection_path: str,
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Build a HAL collection response with pagination links."""
        total_pages = math.ceil(total / page_size) if page_size > 0 else 1

        pagination_links = self.pagination_builder.build_pagination_links(
            collection_path,
            page,
            total_pages,
            page_size,
            query_params
        )

        return {
            'total': total,
            'page': page,
            'page_size': page_size,
            'total_pages': total_pages,
            '_links': self._dump_links(pagination_links),
            '_embedded': {
                'items': items
            }
        }

    def build_error_response(
        self,
        error_type: str,
        title: str,
        status: int,
        detail: str,
        instance: str,
        validation_errors: Optional[List[Dict[str, Any]]] = None,
        extra: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Build RFC 7807 compliant error response with HAL links."""
        error_response = {
            'type': f"https://api.sos-cidadao.org/problems/{error_type}",
            'title': title,
            'status': status,
            'detail': detail,
            'instance': instance
        }

        if validation_errors:
            error_response['errors'] = validation_errors

        if extra:
            # Members defined by RFC 7807 are never overridden
            error_response.update({
                key: value for key, value in extra.items() if key not in PROBLEM_MEMBERS
            })

        links = {
            'help': self.link_builder.build_link(
                f"/docs/errors#{error_type}",
                title="Error documentation"
            )
        }

        if error_type == "validation-error":
            links['schema'] = self.link_builder.build_link(
                "/openapi/openapi.json",
                title="API schema"
            )
        elif error_type == "duplicate-request" and extra and extra.get('existing_id'):
            links['existing'] = self.link_builder.build_link(
                f"{REQUESTS_PATH}/{extra['existing_id']}",
                title="Blocking request"
            )

        error_response['_links'] = self._dump_links(links)
        return error_response


class HalFormatter:
    """High-level HAL formatter with convenience methods."""

    def __init__(self, base_url: str, cancel_permission: str = "approval:cancel"):
        self.builder = HalResponseBuilder(base_url, cancel_permission)

    def format_approval_request(
        self,
        request: Dict[str, Any],
        user_id: str,
        user_permissions: List[str]
    ) -> Dict[str, Any]:
        """Format an approval request with HAL links."""
        links = self.builder.affordance_builder.build_approval_affordances(
            request, user_id, user_permissions
        )
        return self.builder.build_resource_response(request, links)

    def format_approval_collection(
        self,
        requests: List[Dict[str, Any]],
        total: int,
        page: int,
        page_size: int,
        user_id: str,
        user_permissions: List[str],
        collection_path: str = REQUESTS_PATH,
        filters: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Format a page of approval requests with HAL links."""
        formatted = [
            self.format_approval_request(request, user_id, user_permissions)
            for request in requests
        ]
        return self.builder.build_collection_response(
            formatted, total, page, page_size, collection_path, filters
        )

    def format_history(self, request_id: str, entries: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Format a request history."""
        base_path = f"{REQUESTS_PATH}/{request_id}"
        link_builder = self.builder.link_builder
        links = {
            'self': link_builder.build_link(f"{base_path}/history", title="Self"),
            'request': link_builder.build_link(base_path, title="Approval request")
        }
        return self.builder.build_resource_response(
            {'request_id': request_id, 'total': len(entries), '_embedded': {'items': entries}},
            links
        )

    def format_metrics(self, metrics: Dict[str, Any]) -> Dict[str, Any]:
        """Format approval metrics."""
        days = metrics.get('period', {}).get('days')
        links = {
            'self': self.builder.link_builder.build_link(
                f"{REQUESTS_PATH}/metrics?{urlencode({'days': days})}", title="Self"
            ),
            'requests': self.builder.link_builder.build_link(REQUESTS_PATH, title="Approval requests")
        }
        return self.builder.build_resource_response(metrics, links)

    def format_approval_error(self, error, instance: str) -> Dict[str, Any]:
        """Format a domain error raised by the approval engine."""
        return self.builder.build_error_response(
            error.error_type,
            error.title,
            error.status_code,
            error.message,
            instance,
            extra=error.details or None
        )

    def format_validation_error(
        self,
        detail: str,
        instance: str,
        validation_errors: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Format a validation error response."""
        return self.builder.build_error_response(
            "validation-error",
            "Validation Error",
            400,
            detail,
            instance,
            validation_errors
        )

    def format_server_error(
        self,
        detail: str,
        instance: str
    ) -> Dict[str, Any]:
        """Format a server error response."""
        return self.builder.build_error_response(
            "internal-server-error",
            "Internal Server Error",
            500,
            detail,
            instance
        )


def create_hal_formatter(base_url: str, cancel_permission: str = "approval:cancel") -> HalFormatter:
    """Create a HAL formatter instance."""
    return HalFormatter(base_url, cancel_permission)
