# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas for records, entities, donors and requests.
"""

# Base models
from .base import BaseEntity, DocumentModel, generate_object_id, utc_now

# Enumerations
from .enums import (
    RecordKind,
    RecordType,
    Priority,
    VerificationStatus,
    RejectionReason,
    ApprovalScope,
    CommitmentStatus,
    DonorSortKey,
    Timeframe
)

# Core entities
from .entities import (
    AutoApprovalConfig,
    SubmittedRecord,
    Entity,
    Donor,
    Commitment,
    Incident,
    AuditLog,
    UserContext
)

# Request models
from .requests import (
    SubmitRecordRequest,
    VerifyRecordRequest,
    RejectRecordRequest,
    ConfigureAutoApprovalRequest,
    QueueFilters,
    PaginationParams,
    QueueMetricsQuery,
    DonorMetricsQuery
)

# Response models
from .responses import HalLink, SubmitRecordResponse, PaginationMeta

__all__ = [
    "BaseEntity",
    "DocumentModel",
    "generate_object_id",
    "utc_now",
    "RecordKind",
    "RecordType",
    "Priority",
    "VerificationStatus",
    "RejectionReason",
    "ApprovalScope",
    "CommitmentStatus",
    "DonorSortKey",
    "Timeframe",
    "AutoApprovalConfig",
    "SubmittedRecord",
    "Entity",
    "Donor",
    "Commitment",
    "Incident",
    "AuditLog",
    "UserContext",
    "SubmitRecordRequest",
    "VerifyRecordRequest",
    "RejectRecordRequest",
    "ConfigureAutoApprovalRequest",
    "QueueFilters",
    "PaginationParams",
    "QueueMetricsQuery",
    "DonorMetricsQuery",
    "HalLink",
    "SubmitRecordResponse",
    "PaginationMeta"
]
