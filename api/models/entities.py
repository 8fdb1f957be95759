# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for field records, entities, donors and incidents.
"""

import logging
from datetime import datetime
from typing import List, Optional, Dict, Any, Literal
from pydantic import BaseModel, Field, ValidationError, computed_field, field_validator, model_validator, ConfigDict
from pydantic.alias_generators import to_camel
from .base import BaseEntity, DocumentModel, generate_object_id, utc_now
from .enums import (
    RecordKind,
    RecordType,
    Priority,
    VerificationStatus,
    RejectionReason,
    ApprovalScope,
    EntityType,
    CommitmentStatus,
    IncidentStatus
)

logger = logging.getLogger(__name__)

# Canonical document path of an entity's auto-approval configuration
AUTO_APPROVAL_FIELD = "autoApproval"
AUTO_APPROVAL_SCHEMA_VERSION = 1

# Actor recorded on auto-verified records and system audit entries
AUTO_APPROVAL_ACTOR = "auto-approval"
SYSTEM_ACTOR = "system"

MAX_NOTES_LENGTH = 10000


class AutoApprovalConfig(DocumentModel):
    """Versioned auto-approval rule owned by an entity."""
    
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        validate_assignment=True,
        extra="forbid"
    )
    
    schema_version: Literal[1] = Field(default=AUTO_APPROVAL_SCHEMA_VERSION, description="Config schema version")
    enabled: bool = Field(default=False, description="Whether the rule is active")
    scope: ApprovalScope = Field(default=ApprovalScope.ASSESSMENTS, description="Record kinds covered")
    types_allowed: Optional[List[RecordType]] = Field(None, description="Allowed record types, all when unset")
    max_priority: Priority = Field(default=Priority.MEDIUM, description="Highest priority auto-approved")
    requires_documentation: bool = Field(default=False, description="Require notes or media")
    last_modified_by: Optional[str] = Field(None, description="User who last changed the rule")
    last_modified_at: Optional[datetime] = Field(None, description="Last change timestamp")
    
    @field_validator('types_allowed')
    @classmethod
    def empty_types_mean_all(cls, v):
        return v or None
    
    @classmethod
    def decode(cls, raw: Any) -> Optional["AutoApprovalConfig"]:
        """
        Decode a stored configuration, degrading to None when malformed.
        
        Args:
            raw: Value found at the canonical field path
            
        Returns:
            Parsed config, or None for missing or malformed input
        """
        if raw is None:
            return None
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, dict):
            logger.warning(
                "Ignoring auto-approval config with unexpected type",
                extra={"config_type": type(raw).__name__}
            )
            return None
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            logger.warning(
                "Ignoring malformed auto-approval config",
                extra={"validation_errors": e.error_count()}
            )
            return None


class SubmittedRecord(BaseEntity):
    """Field-submitted assessment or response moving through verification."""
    
    kind: RecordKind = Field(..., description="Assessment or response")
    type: RecordType = Field(..., description="Domain category")
    priority: Priority = Field(default=Priority.MEDIUM, description="Queue priority")
    status: VerificationStatus = Field(default=VerificationStatus.SUBMITTED, description="Verification status")
    entity_id: str = Field(..., min_length=1, description="Affected entity")
    donor_id: Optional[str] = Field(None, description="Donor for responses")
    incident_id: Optional[str] = Field(None, description="Linked incident")
    assessor_id: str = Field(..., min_length=1, description="Submitting field user")
    data: Dict[str, Any] = Field(default_factory=dict, description="Type-specific payload")
    notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH, description="Submitter notes")
    media_ids: List[str] = Field(default_factory=list, description="Attached media references")
    latitude: Optional[float] = Field(None, ge=-90, le=90, description="Reporting latitude")
    longitude: Optional[float] = Field(None, ge=-180, le=180, description="Reporting longitude")
    submitted_at: Optional[datetime] = Field(None, description="Submission timestamp")
    verified_by: Optional[str] = Field(None, description="Verifier user ID or auto-approval")
    verified_at: Optional[datetime] = Field(None, description="Decision timestamp")
    verification_notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH, description="Verifier notes")
    rejection_reason: Optional[RejectionReason] = Field(None, description="Reason for rejection")
    auto_approval_rule_id: Optional[str] = Field(None, description="Rule that auto-verified the record")
    
    @model_validator(mode='after')
    def validate_status_fields(self):
        """Validate status-dependent fields."""
        if self.status == VerificationStatus.REJECTED and not self.rejection_reason:
            raise ValueError('rejection_reason is required when status is REJECTED')
        
        if self.status in (VerificationStatus.VERIFIED, VerificationStatus.AUTO_VERIFIED):
            if not self.verified_by or not self.verified_at:
                raise ValueError('verified_by and verified_at are required once verified')
        
        return self
    
    @computed_field(alias="priorityRank")
    @property
    def priority_rank(self) -> int:
        """Numeric priority so the store can sort the queue."""
        return Priority.rank_of(self.priority)
    
    @property
    def coordinates(self) -> Optional[tuple]:
        """(lat, lng) when both are present."""
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)
    
    def has_documentation(self) -> bool:
        """Check for non-empty notes or at least one media reference."""
        return bool(self.notes and self.notes.strip()) or len(self.media_ids) > 0
    
    def can_decide(self) -> bool:
        """Check if a verification decision can be applied."""
        return self.status == VerificationStatus.SUBMITTED
    
    def submit(self, user_id: str) -> None:
        """Move a draft into the verification queue."""
        if self.status != VerificationStatus.DRAFT:
            raise ValueError('Only draft records can be submitted')
        
        self.submitted_at = utc_now()
        self.status = VerificationStatus.SUBMITTED
        self.update_timestamp(user_id)
    
    def verify(self, user_id: str, notes: str) -> None:
        """Mark the record as manually verified."""
        if not self.can_decide():
            raise ValueError('Record cannot be verified in current state')
        
        self.verified_by = user_id
        self.verified_at = utc_now()
        self.verification_notes = notes
        self.status = VerificationStatus.VERIFIED
        self.update_timestamp(user_id)
    
    def reject(self, user_id: str, reason: RejectionReason, notes: str) -> None:
        """Mark the record as rejected."""
        if not self.can_decide():
            raise ValueError('Record cannot be rejected in current state')
        
        self.rejection_reason = reason
        self.verification_notes = notes
        self.verified_by = user_id
        self.verified_at = utc_now()
        self.status = VerificationStatus.REJECTED
        self.update_timestamp(user_id)
    
    def auto_verify(self, rule_id: str) -> None:
        """Mark the record as verified by an auto-approval rule."""
        if not self.can_decide():
            raise ValueError('Record cannot be auto-verified in current state')
        
        self.verified_by = AUTO_APPROVAL_ACTOR
        self.verified_at = utc_now()
        self.auto_approval_rule_id = rule_id
        self.status = VerificationStatus.AUTO_VERIFIED
        self.update_timestamp(SYSTEM_ACTOR)


class Entity(BaseEntity):
    """Facility or location that owns an auto-approval configuration."""
    
    name: str = Field(..., min_length=1, max_length=200, description="Entity name")
    type: EntityType = Field(..., description="Entity type")
    latitude: Optional[float] = Field(None, ge=-90, le=90, description="Latitude")
    longitude: Optional[float] = Field(None, ge=-180, le=180, description="Longitude")
    auto_approval: Optional[AutoApprovalConfig] = Field(None, description="Auto-approval rule")
    
    @field_validator('auto_approval', mode='before')
    @classmethod
    def decode_auto_approval(cls, v):
        """Malformed stored rules load as no rule at all."""
        return AutoApprovalConfig.decode(v)
    
    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError('Entity name cannot be empty')
        return v.strip()


class Donor(BaseEntity):
    """Donor organization with denormalized leaderboard fields."""
    
    name: str = Field(..., min_length=1, max_length=200, description="Donor name")
    organization: Optional[str] = Field(None, description="Parent organization")
    is_active: bool = Field(default=True, description="Whether the donor is ranked")
    self_reported_delivery_rate: float = Field(default=0.0, ge=0, description="Delivered/committed percent")
    verified_delivery_rate: float = Field(default=0.0, ge=0, description="Verified delivered/committed percent")
    leaderboard_rank: Optional[int] = Field(None, ge=1, description="Rank from the last scoring pass")
    last_scored_at: Optional[datetime] = Field(None, description="Last scoring pass timestamp")


class Commitment(BaseEntity):
    """Donor commitment of relief items."""
    
    donor_id: str = Field(..., min_length=1, description="Committing donor")
    entity_id: Optional[str] = Field(None, description="Target entity")
    incident_id: Optional[str] = Field(None, description="Related incident")
    status: CommitmentStatus = Field(default=CommitmentStatus.PLANNED, description="Commitment status")
    total_committed_quantity: float = Field(default=0, ge=0, description="Committed item quantity")
    delivered_quantity: float = Field(default=0, ge=0, description="Self-reported delivered quantity")
    verified_delivered_quantity: float = Field(default=0, ge=0, description="Verified delivered quantity")
    total_value_estimated: float = Field(default=0, ge=0, description="Estimated value")
    commitment_date: datetime = Field(default_factory=utc_now, description="Commitment timestamp")


class Incident(BaseEntity):
    """Disaster incident that assessments can be linked to."""
    
    type: str = Field(..., min_length=1, description="Incident type, e.g. FLOOD")
    description: Optional[str] = Field(None, max_length=2000, description="Incident description")
    status: IncidentStatus = Field(default=IncidentStatus.ACTIVE, description="Incident status")


class AuditLog(DocumentModel):
    """Audit log entry for a committed state change."""
    
    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    timestamp: datetime = Field(default_factory=utc_now, description="Action timestamp")
    actor: str = Field(..., description="User or system actor")
    action: str = Field(..., description="Action performed")
    entity: str = Field(..., description="Resource type")
    resource_id: str = Field(..., description="Resource identifier")
    notes: Optional[str] = Field(None, description="Actor notes")
    before: Optional[Dict[str, Any]] = Field(None, description="State before action")
    after: Optional[Dict[str, Any]] = Field(None, description="State after action")
    trace_id: Optional[str] = Field(None, description="OpenTelemetry trace ID")
    span_id: Optional[str] = Field(None, description="OpenTelemetry span ID")
    schema_version: int = Field(default=1, description="Schema version")
    
    @field_validator('entity')
    @classmethod
    def validate_entity(cls, v):
        """Validate entity type."""
        valid_entities = {'record', 'entity', 'donor'}
        if v not in valid_entities:
            raise ValueError(f'Invalid entity type: {v}')
        return v


class UserContext(BaseModel):
    """User context for request processing with authentication and authorization data."""
    
    user_id: str = Field(..., description="Authenticated user ID")
    email: Optional[str] = Field(None, description="User email")
    name: Optional[str] = Field(None, description="User display name")
    permissions: List[str] = Field(default_factory=list, description="User's effective permissions")
    token_payload: Optional[Dict[str, Any]] = Field(None, description="Original JWT payload")
    ip_address: Optional[str] = Field(None, description="Client IP address")
    
    model_config = ConfigDict(
        use_enum_values=True
    )
    
    def has_permission(self, permission: str) -> bool:
        """Check if user has a specific permission."""
        return permission in self.permissions
