# SPDX-License-Identifier: Apache-2.0

"""
Verification domain logic for the record lifecycle.

This module contains pure functions for status transitions, decision
validation and record construction. Persistence and concurrency control
live in the service layer; nothing here touches the store.
"""

from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field
from models.entities import (
    SubmittedRecord, UserContext, MAX_NOTES_LENGTH
)
from models.enums import VerificationStatus, RejectionReason
from models.requests import SubmitRecordRequest


# Legal moves of the verification state machine
VALID_TRANSITIONS = {
    VerificationStatus.DRAFT: [VerificationStatus.SUBMITTED],
    VerificationStatus.SUBMITTED: [
        VerificationStatus.VERIFIED,
        VerificationStatus.AUTO_VERIFIED,
        VerificationStatus.REJECTED
    ],
    VerificationStatus.VERIFIED: [],  # Terminal state
    VerificationStatus.AUTO_VERIFIED: [],  # Terminal state
    VerificationStatus.REJECTED: []  # Terminal state
}

# Fields written by a decision; everything else on the record is immutable
DECISION_FIELDS = {
    "status",
    "verified_by",
    "verified_at",
    "verification_notes",
    "rejection_reason",
    "auto_approval_rule_id",
    "submitted_at",
    "updated_at",
    "updated_by"
}


@dataclass
class ValidationResult:
    """Result of a verification validation."""
    is_valid: bool
    errors: List[str]
    warnings: List[str] = None
    
    def __post_init__(self):
        if self.warnings is None:
            self.warnings = []


@dataclass
class WorkflowResult:
    """
    Result of a verification workflow step.
    
    ``invalid_transition`` separates "record is not in a decidable state"
    from plain input validation failures so callers can map them to
    different error types.
    """
    success: bool
    record: Optional[SubmittedRecord] = None
    error_message: Optional[str] = None
    validation_errors: List[str] = field(default_factory=list)
    invalid_transition: bool = False


def validate_status_transition(
    current_status: VerificationStatus,
    new_status: VerificationStatus
) -> ValidationResult:
    """
    Validate a record status transition.
    
    Args:
        current_status: Current record status
        new_status: Desired new status
        
    Returns:
        ValidationResult with validation status and errors
    """
    errors = []
    
    current = VerificationStatus(current_status)
    target = VerificationStatus(new_status)
    
    if target not in VALID_TRANSITIONS.get(current, []):
        errors.append(
            f"Invalid status transition from {current.value} to {target.value}"
        )
    
    return ValidationResult(
        is_valid=len(errors) == 0,
        errors=errors
    )


def validate_notes(notes: Optional[str], label: str = "Verification notes") -> ValidationResult:
    """Notes are required and bounded."""
    errors = []
    
    if notes is None or not str(notes).strip():
        errors.append(f"{label} are required")
    elif len(notes) > MAX_NOTES_LENGTH:
        errors.append(f"{label} cannot exceed {MAX_NOTES_LENGTH} characters")
    
    return ValidationResult(is_valid=len(errors) == 0, errors=errors)


def validate_rejection_reason(reason: Any) -> ValidationResult:
    """Rejection reasons come from a closed enumeration."""
    try:
        RejectionReason(reason)
    except ValueError:
        allowed = ", ".join(r.value for r in RejectionReason)
        return ValidationResult(
            is_valid=False,
            errors=[f"Invalid rejection reason '{reason}'. Allowed: {allowed}"]
        )
    return ValidationResult(is_valid=True, errors=[])


def build_record(request: SubmitRecordRequest, user_context: UserContext) -> SubmittedRecord:
    """
    Build a new record from a submission request.
    
    Args:
        request: Validated submission request
        user_context: Submitting user
        
    Returns:
        SubmittedRecord in DRAFT or SUBMITTED status
    """
    record = SubmittedRecord(
        kind=request.kind,
        type=request.type,
        priority=request.priority,
        status=VerificationStatus.DRAFT,
        entity_id=request.entity_id,
        donor_id=request.donor_id,
        incident_id=request.incident_id,
        assessor_id=user_context.user_id,
        data=request.data,
        notes=request.notes,
        media_ids=request.media_ids,
        latitude=request.latitude,
        longitude=request.longitude,
        created_by=user_context.user_id,
        updated_by=user_context.user_id
    )
    if not request.draft:
        record.submit(user_context.user_id)
    return record


def _not_decidable(record: SubmittedRecord, action: str) -> WorkflowResult:
    return WorkflowResult(
        success=False,
        error_message=f"Record cannot be {action} (current status: {record.status})",
        invalid_transition=True
    )


def submit_record(record: SubmittedRecord, user_context: UserContext) -> WorkflowResult:
    """Move a draft record into the verification queue."""
    transition = validate_status_transition(record.status, VerificationStatus.SUBMITTED)
    if not transition.is_valid:
        return _not_decidable(record, "submitted")
    
    updated_record = record.model_copy(deep=True)
    updated_record.submit(user_context.user_id)
    return WorkflowResult(success=True, record=updated_record)


def verify_record(
    record: SubmittedRecord,
    notes: Optional[str],
    user_context: UserContext
) -> WorkflowResult:
    """
    Verify a record.
    
    Args:
        record: Record to verify
        notes: Verification notes
        user_context: Verifying coordinator
        
    Returns:
        WorkflowResult with updated record or errors
    """
    validation = validate_notes(notes)
    if not validation.is_valid:
        return WorkflowResult(
            success=False,
            error_message="Verification validation failed",
            validation_errors=validation.errors
        )
    
    transition = validate_status_transition(record.status, VerificationStatus.VERIFIED)
    if not transition.is_valid:
        return _not_decidable(record, "verified")
    
    updated_record = record.model_copy(deep=True)
    updated_record.verify(user_context.user_id, notes.strip())
    return WorkflowResult(success=True, record=updated_record)


def reject_record(
    record: SubmittedRecord,
    reason: Any,
    notes: Optional[str],
    user_context: UserContext
) -> WorkflowResult:
    """
    Reject a record with a reason from the closed enumeration.
    
    Args:
        record: Record to reject
        reason: Rejection reason
        notes: Rejection notes
        user_context: Rejecting coordinator
        
    Returns:
        WorkflowResult with updated record or errors
    """
    errors = validate_rejection_reason(reason).errors + validate_notes(notes, "Rejection notes").errors
    if errors:
        return WorkflowResult(
            success=False,
            error_message="Rejection validation failed",
            validation_errors=errors
        )
    
    transition = validate_status_transition(record.status, VerificationStatus.REJECTED)
    if not transition.is_valid:
        return _not_decidable(record, "rejected")
    
    updated_record = record.model_copy(deep=True)
    updated_record.reject(user_context.user_id, RejectionReason(reason), notes.strip())
    return WorkflowResult(success=True, record=updated_record)


def auto_verify_record(
    record: SubmittedRecord,
    rule_id: str,
    requires_documentation: bool
) -> WorkflowResult:
    """
    Auto-verify a record on behalf of a matched rule.
    
    The documentation requirement is checked again here even though the
    rule engine already evaluated it.
    """
    if requires_documentation and not record.has_documentation():
        return WorkflowResult(
            success=False,
            error_message="Auto-verification requires notes or media",
            validation_errors=["Record has no documentation"]
        )
    
    transition = validate_status_transition(record.status, VerificationStatus.AUTO_VERIFIED)
    if not transition.is_valid:
        return _not_decidable(record, "auto-verified")
    
    updated_record = record.model_copy(deep=True)
    updated_record.auto_verify(rule_id)
    return WorkflowResult(success=True, record=updated_record)


def decision_updates(record: SubmittedRecord) -> Dict[str, Any]:
    """Stored fields written by a transition, keyed by document name."""
    return record.model_dump(by_alias=True, include=DECISION_FIELDS)


def decision_snapshot(record: SubmittedRecord) -> Dict[str, Any]:
    """Compact state used for audit before/after values."""
    return record.model_dump(
        mode="json",
        include={"status", "verified_by", "verified_at", "rejection_reason", "auto_approval_rule_id"}
    )
