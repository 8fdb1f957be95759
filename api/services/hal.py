# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
HAL (Hypertext Application Language) response formatting utilities.
Implements HATEOAS responses with conditional affordance links.
"""

from typing import Dict, List, Any, Optional
from urllib.parse import urljoin, urlencode
import math

from models.responses import HalLink, PaginationMeta

API_PREFIX = "/api/v1"
PROBLEM_BASE = "https://relief-verification.example.org/problems"


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
    
    def build_self_link(self, resource_path: str) -> HalLink:
        """Build self link for a resource."""
        return self.build_link(resource_path, title="Self")
    
    def build_action_link(
        self, 
        resource_path: str, 
        action: str, 
        method: str = "POST",
        title: Optional[str] = None
    ) -> HalLink:
        """Build action link for a resource."""
        return self.build_link(
            f"{resource_path}/{action}", 
            method=method, 
            content_type="application/json",
            title=title or action.title()
        )


class PaginationLinkBuilder:
    """Builder for pagination links in HAL collections."""
    
    def __init__(self, base_url: str):
        self.link_builder = HalLinkBuilder(base_url)
    
    def _page_link(self, base_path: str, params: Dict[str, Any], page: int, limit: int, title: str) -> HalLink:
        query = urlencode({**params, 'page': page, 'limit': limit})
        return self.link_builder.build_link(f"{base_path}?{query}", title=title)
    
    def build_pagination_links(
        self,
        base_path: str,
        current_page: int,
        total_pages: int,
        limit: int,
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, HalLink]:
        """Build pagination links for a collection."""
        params = {k: v for k, v in (query_params or {}).items() if v is not None}
        links = {'self': self._page_link(base_path, params, current_page, limit, "Current page")}
        
        if current_page > 1:
            links['first'] = self._page_link(base_path, params, 1, limit, "First page")
            links['prev'] = self._page_link(base_path, params, current_page - 1, limit, "Previous page")
        
        if current_page < total_pages:
            links['next'] = self._page_link(base_path, params, current_page + 1, limit, "Next page")
            links['last'] = self._page_link(base_path, params, total_pages, limit, "Last page")
        
        return links


class AffordanceLinkBuilder:
    """Builder for conditional affordance links based on permissions and state."""
    
    def __init__(self, base_url: str):
        self.link_builder = HalLinkBuilder(base_url)
    
    def build_record_affordances(
        self,
        record_id: str,
        record_status: str,
        user_permissions: List[str]
    ) -> Dict[str, HalLink]:
        """Decision links are offered only while a record awaits a decision."""
        base_path = f"{API_PREFIX}/records/{record_id}"
        links = {
            'self': self.link_builder.build_self_link(base_path),
            'queue': self.link_builder.build_link(f"{API_PREFIX}/verification/queue", title="Verification queue")
        }
        
        if record_status == "DRAFT" and "record:submit" in user_permissions:
            links['submit'] = self.link_builder.build_action_link(
                base_path, "submit", title="Submit for verification"
            )
        
        if record_status == "SUBMITTED":
            if "record:verify" in user_permissions:
                links['verify'] = self.link_builder.build_action_link(
                    base_path, "verify", title="Verify record"
                )
            if "record:reject" in user_permissions:
                links['reject'] = self.link_builder.build_action_link(
                    base_path, "reject", title="Reject record"
                )
        
        return links
    
    def build_incident_affordances(self, incident_id: str) -> Dict[str, HalLink]:
        return {
            'self': self.link_builder.build_self_link(f"{API_PREFIX}/incidents/{incident_id}/impact")
        }


class HalResponseBuilder:
    """Main HAL response builder with comprehensive formatting capabilities."""
    
    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/')
        self.link_builder = HalLinkBuilder(base_url)
        self.pagination_builder = PaginationLinkBuilder(base_url)
        self.affordance_builder = AffordanceLinkBuilder(base_url)
    
    def build_resource_response(self, data: Dict[str, Any], links: Dict[str, HalLink]) -> Dict[str, Any]:
        """Attach HAL links to a resource body."""
        response = dict(data)
        response['_links'] = {rel: link.model_dump(exclude_none=True) for rel, link in links.items()}
        return response
    
    def build_collection_response(
        self,
        items: List[Dict[str, Any]],
        total: int,
        page: int,
        limit: int,
        collection_path: str,
        query_params: Optional[Dict[str, Any]] = None,
        extra: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Build a HAL collection response with pagination links."""
        total_pages = math.ceil(total / limit) if limit > 0 else 1
        
        pagination_links = self.pagination_builder.build_pagination_links(
            collection_path,
            page,
            total_pages,
            limit,
            query_params
        )
        
        pagination = PaginationMeta(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1
        )
        response = {
            'pagination': pagination.model_dump(),
            '_links': {rel: link.model_dump(exclude_none=True) for rel, link in pagination_links.items()},
            '_embedded': {
                'items': items
            }
        }
        if extra:
            response.update(extra)
        
        return response
    
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
            'type': f"{PROBLEM_BASE}/{error_type}",
            'title': title,
            'status': status,
            'detail': detail,
            'instance': instance
        }
        
        if validation_errors:
            error_response['errors'] = validation_errors
        if extra:
            error_response.update(extra)
        
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
        
        error_response['_links'] = {rel: link.model_dump(exclude_none=True) for rel, link in links.items()}
        return error_response


class HalFormatter:
    """High-level HAL formatter with convenience methods."""
    
    def __init__(self, base_url: str):
        self.builder = HalResponseBuilder(base_url)
    
    def format_record(self, record: Dict[str, Any], user_permissions: List[str]) -> Dict[str, Any]:
        """Format a record with state-dependent decision links."""
        links = self.builder.affordance_builder.build_record_affordances(
            record['id'], record.get('status', ''), user_permissions
        )
        return self.builder.build_resource_response(record, links)
    
    def format_record_collection(
        self,
        records: List[Dict[str, Any]],
        total: int,
        page: int,
        limit: int,
        user_permissions: List[str],
        filters: Optional[Dict[str, Any]] = None,
        extra: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Format a page of the verification queue."""
        return self.builder.build_collection_response(
            [self.format_record(record, user_permissions) for record in records],
            total,
            page,
            limit,
            f"{API_PREFIX}/verification/queue",
            filters,
            extra
        )
    
    def format_resource(self, data: Dict[str, Any], path: str) -> Dict[str, Any]:
        """Format a read-only resource with a self link."""
        return self.builder.build_resource_response(
            data, {'self': self.builder.link_builder.build_self_link(path)}
        )
    
    def format_validation_error(
        self,
        detail: str,
        instance: str,
        validation_errors: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Format a validation error response."""
        return self.builder.build_error_response(
            "validation-error", "Validation Error", 400, detail, instance, validation_errors
        )
    
    def format_authentication_error(self, detail: str, instance: str) -> Dict[str, Any]:
        """Format an authentication error response."""
        return self.builder.build_error_response(
            "authentication-required", "Authentication Required", 401, detail, instance
        )
    
    def format_authorization_error(self, detail: str, instance: str) -> Dict[str, Any]:
        """Format an authorization error response."""
        return self.builder.build_error_response(
            "insufficient-permissions", "Insufficient Permissions", 403, detail, instance
        )
    
    def format_not_found_error(self, detail: str, instance: str) -> Dict[str, Any]:
        """Format a not found error response."""
        return self.builder.build_error_response(
            "resource-not-found", "Resource Not Found", 404, detail, instance
        )
    
    def format_conflict_error(
        self,
        error_type: str,
        detail: str,
        instance: str,
        current_status: Optional[str] = None
    ) -> Dict[str, Any]:
        """Format an invalid-transition or lost-race response."""
        title = "State Conflict" if error_type == "state-conflict" else "Invalid State Transition"
        extra = {'current_status': current_status} if current_status else None
        return self.builder.build_error_response(error_type, title, 409, detail, instance, extra=extra)
    
    def format_server_error(self, detail: str, instance: str) -> Dict[str, Any]:
        """Format a server error response."""
        return self.builder.build_error_response(
            "internal-server-error", "Internal Server Error", 500, detail, instance
        )


def create_hal_formatter(base_url: str) -> HalFormatter:
    """Create a HAL formatter instance."""
    return HalFormatter(base_url)
