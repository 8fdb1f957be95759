# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumerations for record lifecycle, classification and analytics.
"""

from enum import Enum


class RecordKind(str, Enum):
    """Kind of field-submitted record."""
    ASSESSMENT = "assessment"
    RESPONSE = "response"


class RecordType(str, Enum):
    """Domain category of an assessment or response."""
    HEALTH = "HEALTH"
    WASH = "WASH"
    SHELTER = "SHELTER"
    FOOD = "FOOD"
    SECURITY = "SECURITY"
    POPULATION = "POPULATION"
    LOGISTICS = "LOGISTICS"


class Priority(str, Enum):
    """Record priority, totally ordered LOW < MEDIUM < HIGH < CRITICAL."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"
    
    @property
    def rank(self) -> int:
        return PRIORITY_ORDER.index(self)
    
    @classmethod
    def rank_of(cls, value) -> int:
        """Rank of a priority given as enum member or raw value."""
        return cls(value).rank


PRIORITY_ORDER = [Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.CRITICAL]


class VerificationStatus(str, Enum):
    """Verification lifecycle status."""
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    VERIFIED = "VERIFIED"
    AUTO_VERIFIED = "AUTO_VERIFIED"
    REJECTED = "REJECTED"


TERMINAL_STATUSES = frozenset({
    VerificationStatus.VERIFIED,
    VerificationStatus.AUTO_VERIFIED,
    VerificationStatus.REJECTED,
})

VERIFIED_STATUSES = frozenset({
    VerificationStatus.VERIFIED,
    VerificationStatus.AUTO_VERIFIED,
})


class RejectionReason(str, Enum):
    """Closed set of reasons a coordinator may reject a record for."""
    INCOMPLETE_DATA = "INCOMPLETE_DATA"
    INACCURATE_INFORMATION = "INACCURATE_INFORMATION"
    MISSING_DOCUMENTATION = "MISSING_DOCUMENTATION"
    LOCATION_MISMATCH = "LOCATION_MISMATCH"
    DUPLICATE_ASSESSMENT = "DUPLICATE_ASSESSMENT"
    QUALITY_ISSUES = "QUALITY_ISSUES"
    INADEQUATE_SUPPLIES = "INADEQUATE_SUPPLIES"
    OTHER = "OTHER"


class ApprovalScope(str, Enum):
    """Record kinds an auto-approval rule applies to."""
    ASSESSMENTS = "assessments"
    RESPONSES = "responses"
    BOTH = "both"


class EntityType(str, Enum):
    """Kind of affected entity."""
    COMMUNITY = "COMMUNITY"
    WARD = "WARD"
    LGA = "LGA"
    STATE = "STATE"
    FACILITY = "FACILITY"
    CAMP = "CAMP"


class CommitmentStatus(str, Enum):
    """Donor commitment status."""
    PLANNED = "PLANNED"
    PARTIAL = "PARTIAL"
    COMPLETE = "COMPLETE"
    CANCELLED = "CANCELLED"


class IncidentStatus(str, Enum):
    """Incident lifecycle status."""
    ACTIVE = "ACTIVE"
    CONTAINED = "CONTAINED"
    RESOLVED = "RESOLVED"


class DonorSortKey(str, Enum):
    """Leaderboard sort keys."""
    OVERALL = "overall"
    DELIVERY_RATE = "delivery_rate"
    COMMITMENT_VALUE = "commitment_value"
    CONSISTENCY = "consistency"
    VERIFICATION_RATE = "verification_rate"


class Timeframe(str, Enum):
    """Scoring time windows."""
    WEEK = "7d"
    MONTH = "30d"
    QUARTER = "90d"
    YEAR = "1y"
    ALL = "all"


class RankTrend(str, Enum):
    """Movement of a donor's rank since the previous scoring pass."""
    UP = "up"
    DOWN = "down"
    STABLE = "stable"
    NEW = "new"


class BadgeTier(str, Enum):
    """Badge tiers, highest first."""
    GOLD = "Gold"
    SILVER = "Silver"
    BRONZE = "Bronze"


class AuditAction(str, Enum):
    """Actions recorded in the audit trail."""
    SUBMIT = "submit"
    VERIFY = "verify"
    REJECT = "reject"
    AUTO_VERIFY = "auto_verify"
    CONFIGURE_AUTO_APPROVAL = "configure_auto_approval"
    UPDATE_RANKINGS = "update_rankings"
