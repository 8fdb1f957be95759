# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request models for API endpoints and service calls.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .base import ensure_utc
from .entities import MAX_NOTES_LENGTH
from .enums import (
    RecordKind,
    RecordType,
    Priority,
    RejectionReason,
    ApprovalScope,
    DonorSortKey,
    Timeframe
)


class RequestModel(BaseModel):
    """Request body accepting camelCase or snake_case keys."""
    
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True
    )


class SubmitRecordRequest(RequestModel):
    """Request model for submitting an assessment or response."""
    
    kind: RecordKind = Field(..., description="Assessment or response")
    type: RecordType = Field(..., description="Domain category")
    priority: Priority = Field(default=Priority.MEDIUM, description="Queue priority")
    entity_id: str = Field(..., min_length=1, description="Affected entity")
    donor_id: Optional[str] = Field(None, description="Donor for responses")
    incident_id: Optional[str] = Field(None, description="Linked incident")
    data: Dict[str, Any] = Field(default_factory=dict, description="Type-specific payload")
    notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH, description="Submitter notes")
    media_ids: List[str] = Field(default_factory=list, description="Attached media references")
    latitude: Optional[float] = Field(None, ge=-90, le=90, description="Reporting latitude")
    longitude: Optional[float] = Field(None, ge=-180, le=180, description="Reporting longitude")
    draft: bool = Field(default=False, description="Save as draft instead of submitting")
    
    @model_validator(mode='after')
    def validate_coordinates(self):
        """Coordinates come in pairs."""
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError('latitude and longitude must be provided together')
        return self


class VerifyRecordRequest(RequestModel):
    """Request model for verifying a record."""
    
    notes: str = Field(..., min_length=1, max_length=MAX_NOTES_LENGTH, description="Verification notes")
    
    @field_validator('notes')
    @classmethod
    def validate_notes(cls, v):
        if not v.strip():
            raise ValueError('Verification notes cannot be empty')
        return v


class RejectRecordRequest(RequestModel):
    """Request model for rejecting a record."""
    
    reason: RejectionReason = Field(..., description="Rejection reason")
    notes: str = Field(..., min_length=1, max_length=MAX_NOTES_LENGTH, description="Rejection notes")
    
    @field_validator('notes')
    @classmethod
    def validate_notes(cls, v):
        if not v.strip():
            raise ValueError('Rejection notes cannot be empty')
        return v


class AutoApprovalConditions(RequestModel):
    """Optional conditions of an auto-approval rule."""
    
    types_allowed: Optional[List[RecordType]] = Field(None, description="Allowed record types")
    max_priority: Priority = Field(default=Priority.MEDIUM, description="Highest priority auto-approved")
    requires_documentation: bool = Field(default=False, description="Require notes or media")


class ConfigureAutoApprovalRequest(RequestModel):
    """Request model for configuring auto-approval on one or more entities."""
    
    entity_ids: List[str] = Field(..., min_length=1, description="Entities to configure")
    enabled: bool = Field(..., description="Whether the rule is active")
    scope: ApprovalScope = Field(default=ApprovalScope.ASSESSMENTS, description="Record kinds covered")
    conditions: AutoApprovalConditions = Field(default_factory=AutoApprovalConditions, description="Rule conditions")
    
    @field_validator('entity_ids')
    @classmethod
    def validate_entity_ids(cls, v):
        ids = [entity_id.strip() for entity_id in v if entity_id and entity_id.strip()]
        if not ids:
            raise ValueError('At least one entity ID is required')
        # Preserve order, drop duplicates
        return list(dict.fromkeys(ids))


class QueueFilters(RequestModel):
    """Filters for the verification queue."""
    
    kind: Optional[RecordKind] = Field(None, description="Filter by record kind")
    type: Optional[RecordType] = Field(None, description="Filter by record type")
    priority: Optional[Priority] = Field(None, description="Filter by priority")
    entity_id: Optional[str] = Field(None, description="Filter by entity")
    donor_id: Optional[str] = Field(None, description="Filter by donor")
    assessor_id: Optional[str] = Field(None, description="Filter by submitter")
    date_from: Optional[datetime] = Field(None, description="Submitted on or after")
    date_to: Optional[datetime] = Field(None, description="Submitted on or before")
    
    @field_validator('date_from', 'date_to')
    @classmethod
    def validate_timezone(cls, v):
        return ensure_utc(v)
    
    @model_validator(mode='after')
    def validate_date_range(self):
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError('date_from must be before date_to')
        return self


class PaginationParams(RequestModel):
    """Pagination parameters."""
    
    page: int = Field(default=1, ge=1, description="Page number")
    limit: int = Field(default=20, ge=1, le=100, description="Items per page")


class QueueMetricsQuery(RequestModel):
    """Query parameters for queue metrics."""
    
    window_hours: Optional[int] = Field(None, ge=1, le=24 * 365, description="Trailing window for verification rate")


class DonorMetricsQuery(RequestModel):
    """Query parameters for donor metrics and leaderboard."""
    
    donor_id: Optional[str] = Field(None, description="Restrict output to one donor")
    timeframe: Timeframe = Field(default=Timeframe.MONTH, description="Scoring window")
    sort_by: DonorSortKey = Field(default=DonorSortKey.OVERALL, description="Ranking key")
    limit: int = Field(default=50, ge=1, le=100, description="Maximum donors returned")
