# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for HAL response formatting utilities.
"""

import pytest
from services.hal import (
    HalLinkBuilder, PaginationLinkBuilder, AffordanceLinkBuilder,
    HalFormatter, create_hal_formatter
)
from models.responses import HalLink

BASE_URL = "https://api.example.com"
DECIDER = ["record:read", "record:verify", "record:reject"]


class TestHalLinkBuilder:
    """Test HAL link builder functionality."""
    
    def test_build_basic_link(self):
        """Test building a basic HAL link."""
        builder = HalLinkBuilder(BASE_URL)
        
        link = builder.build_link("/api/v1/records/123")
        
        assert isinstance(link, HalLink)
        assert link.href == "https://api.example.com/api/v1/records/123"
        assert link.method == "GET"
        assert link.type is None
    
    def test_build_action_link(self):
        """Test building an action link."""
        builder = HalLinkBuilder(BASE_URL + "/")
        
        link = builder.build_action_link("/api/v1/records/123", "verify")
        
        assert link.href == "https://api.example.com/api/v1/records/123/verify"
        assert link.method == "POST"
        assert link.type == "application/json"
        assert link.title == "Verify"


class TestPaginationLinkBuilder:
    """Test pagination links."""
    
    def test_middle_page(self):
        builder = PaginationLinkBuilder(BASE_URL)
        
        links = builder.build_pagination_links("/api/v1/verification/queue", 2, 3, 20, {"type": "WASH", "kind": None})
        
        assert set(links) == {"self", "first", "prev", "next", "last"}
        assert links["next"].href.endswith("queue?type=WASH&page=3&limit=20")
    
    def test_single_page(self):
        builder = PaginationLinkBuilder(BASE_URL)
        
        links = builder.build_pagination_links("/api/v1/verification/queue", 1, 1, 20)
        
        assert set(links) == {"self"}


class TestRecordAffordances:
    """Decision links depend on record status and caller permissions."""
    
    def test_submitted_record_for_decider(self):
        links = AffordanceLinkBuilder(BASE_URL).build_record_affordances("r1", "SUBMITTED", DECIDER)
        
        assert links["verify"].href == "https://api.example.com/api/v1/records/r1/verify"
        assert links["reject"].method == "POST"
    
    def test_submitted_record_for_reader(self):
        links = AffordanceLinkBuilder(BASE_URL).build_record_affordances("r1", "SUBMITTED", ["record:read"])
        
        assert "verify" not in links
        assert "reject" not in links
        assert "self" in links
    
    @pytest.mark.parametrize("status", ["VERIFIED", "AUTO_VERIFIED", "REJECTED"])
    def test_decided_record_has_no_decision_links(self, status):
        links = AffordanceLinkBuilder(BASE_URL).build_record_affordances("r1", status, DECIDER)
        
        assert set(links) == {"self", "queue"}
    
    def test_draft_offers_submit(self):
        links = AffordanceLinkBuilder(BASE_URL).build_record_affordances("r1", "DRAFT", ["record:submit"])
        
        assert "submit" in links
        assert "verify" not in links


class TestHalFormatter:
    """Test high-level formatting."""
    
    def test_format_record(self):
        formatter = create_hal_formatter(BASE_URL)
        
        body = formatter.format_record({"id": "r1", "status": "SUBMITTED"}, DECIDER)
        
        assert body["id"] == "r1"
        assert body["_links"]["verify"]["method"] == "POST"
        assert "templated" not in body["_links"]["self"]
    
    def test_format_record_collection(self):
        formatter = HalFormatter(BASE_URL)
        
        body = formatter.format_record_collection(
            [{"id": "r1", "status": "SUBMITTED"}], total=41, page=1, limit=20,
            user_permissions=["record:read"], extra={"queue_depth": {"total": 41}}
        )
        
        assert body["pagination"] == {
            "page": 1, "limit": 20, "total": 41, "total_pages": 3, "has_next": True, "has_prev": False
        }
        assert body["_embedded"]["items"][0]["_links"]["self"]["href"].endswith("/records/r1")
        assert body["queue_depth"]["total"] == 41
        assert "next" in body["_links"]
    
    def test_conflict_error_carries_current_status(self):
        body = HalFormatter(BASE_URL).format_conflict_error(
            "state-conflict", "Record r1 was already decided", "/api/v1/records/r1/verify", "REJECTED"
        )
        
        assert body["status"] == 409
        assert body["title"] == "State Conflict"
        assert body["current_status"] == "REJECTED"
        assert body["type"].endswith("/state-conflict")
    
    def test_validation_error_links_schema(self):
        body = HalFormatter(BASE_URL).format_validation_error(
            "Request validation failed", "/api/v1/records", [{"field": "kind", "message": "required"}]
        )
        
        assert body["errors"][0]["field"] == "kind"
        assert "schema" in body["_links"]
