# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for the verification state machine.
"""

import pytest
from pydantic import ValidationError

from domain import verification
from domain.verification import VALID_TRANSITIONS
from models.entities import SubmittedRecord, UserContext, AUTO_APPROVAL_ACTOR, MAX_NOTES_LENGTH
from models.enums import VerificationStatus, RejectionReason
from models.requests import SubmitRecordRequest


@pytest.fixture
def user():
    return UserContext(user_id="coordinator-1", permissions=["record:verify", "record:reject"])


@pytest.fixture
def submitted():
    return SubmittedRecord(
        kind="assessment",
        type="WASH",
        priority="HIGH",
        entity_id="entity-1",
        assessor_id="assessor-1"
    )


class TestStatusTransitions:
    """Test the legal moves of the lifecycle."""
    
    @pytest.mark.parametrize("target", [
        VerificationStatus.VERIFIED,
        VerificationStatus.AUTO_VERIFIED,
        VerificationStatus.REJECTED
    ])
    def test_submitted_can_be_decided(self, target):
        assert verification.validate_status_transition(VerificationStatus.SUBMITTED, target).is_valid
    
    def test_draft_only_moves_to_submitted(self):
        assert verification.validate_status_transition("DRAFT", "SUBMITTED").is_valid
        assert not verification.validate_status_transition("DRAFT", "VERIFIED").is_valid
    
    @pytest.mark.parametrize("terminal", ["VERIFIED", "AUTO_VERIFIED", "REJECTED"])
    def test_terminal_states_have_no_exits(self, terminal):
        """Terminal records never change status again, rejection included."""
        assert VALID_TRANSITIONS[VerificationStatus(terminal)] == []
        for target in VerificationStatus:
            result = verification.validate_status_transition(terminal, target)
            assert not result.is_valid
            assert "Invalid status transition" in result.errors[0]


class TestVerifyRecord:
    """Test manual verification."""
    
    def test_verify_sets_decision_fields(self, submitted, user):
        result = verification.verify_record(submitted, "Checked on site", user)
        
        assert result.success
        record = result.record
        assert record.status == "VERIFIED"
        assert record.verified_by == "coordinator-1"
        assert record.verified_at is not None
        assert record.verification_notes == "Checked on site"
        # The input record is left untouched
        assert submitted.status == "SUBMITTED"
    
    @pytest.mark.parametrize("notes", [None, "", "   "])
    def test_verify_requires_notes(self, submitted, user, notes):
        result = verification.verify_record(submitted, notes, user)
        
        assert not result.success
        assert not result.invalid_transition
        assert "Verification notes are required" in result.validation_errors
    
    def test_verify_rejects_oversized_notes(self, submitted, user):
        result = verification.verify_record(submitted, "x" * (MAX_NOTES_LENGTH + 1), user)
        
        assert not result.success
        assert "cannot exceed" in result.validation_errors[0]
    
    def test_verify_already_verified_is_invalid_transition(self, submitted, user):
        verified = verification.verify_record(submitted, "first", user).record
        
        result = verification.verify_record(verified, "second", user)
        
        assert not result.success
        assert result.invalid_transition
        assert "VERIFIED" in result.error_message


class TestRejectRecord:
    """Test rejection with reasons."""
    
    def test_reject_sets_reason_and_notes(self, submitted, user):
        result = verification.reject_record(submitted, "LOCATION_MISMATCH", "Wrong ward", user)
        
        assert result.success
        assert result.record.status == "REJECTED"
        assert result.record.rejection_reason == RejectionReason.LOCATION_MISMATCH.value
        assert result.record.verification_notes == "Wrong ward"
    
    def test_reject_unknown_reason(self, submitted, user):
        result = verification.reject_record(submitted, "BAD_VIBES", "notes", user)
        
        assert not result.success
        assert "Invalid rejection reason" in result.validation_errors[0]
    
    def test_rejected_record_stays_rejected(self, submitted, user):
        rejected = verification.reject_record(submitted, "OTHER", "no", user).record
        
        assert verification.verify_record(rejected, "retry", user).invalid_transition
        assert verification.reject_record(rejected, "OTHER", "again", user).invalid_transition


class TestAutoVerifyRecord:
    """Test auto-verification on behalf of a rule."""
    
    def test_auto_verify_records_rule(self, submitted):
        result = verification.auto_verify_record(submitted, "entity:entity-1:v1", False)
        
        assert result.success
        assert result.record.status == "AUTO_VERIFIED"
        assert result.record.verified_by == AUTO_APPROVAL_ACTOR
        assert result.record.auto_approval_rule_id == "entity:entity-1:v1"
    
    def test_documentation_requirement_rechecked(self, submitted):
        result = verification.auto_verify_record(submitted, "rule", True)
        
        assert not result.success
        assert not result.invalid_transition


class TestBuildRecord:
    """Test record construction from submissions."""
    
    def test_submission_enters_queue(self, user):
        request = SubmitRecordRequest(kind="response", type="FOOD", entityId="entity-1", donorId="donor-1")
        
        record = verification.build_record(request, user)
        
        assert record.status == "SUBMITTED"
        assert record.submitted_at is not None
        assert record.assessor_id == "coordinator-1"
        assert record.donor_id == "donor-1"
    
    def test_draft_submission(self, user):
        request = SubmitRecordRequest(kind="assessment", type="HEALTH", entity_id="entity-1", draft=True)
        
        record = verification.build_record(request, user)
        
        assert record.status == "DRAFT"
        assert verification.submit_record(record, user).record.status == "SUBMITTED"
    
    def test_submit_of_submitted_record_is_invalid(self, submitted, user):
        assert verification.submit_record(submitted, user).invalid_transition


class TestDecisionDocuments:
    """Test the stored shape of a transition."""
    
    def test_decision_updates_use_document_keys(self, submitted, user):
        record = verification.reject_record(submitted, "OTHER", "notes", user).record
        
        updates = verification.decision_updates(record)
        
        assert updates["status"] == "REJECTED"
        assert updates["rejectionReason"] == "OTHER"
        assert updates["verifiedBy"] == "coordinator-1"
        assert "entityId" not in updates
        assert "data" not in updates
    
    def test_rejected_model_requires_reason(self):
        with pytest.raises(ValidationError):
            SubmittedRecord(
                kind="assessment",
                type="HEALTH",
                status="REJECTED",
                entity_id="entity-1",
                assessor_id="assessor-1"
            )
