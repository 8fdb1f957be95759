# SPDX-License-Identifier: Apache-2.0

"""
Auto-approval rule engine.

Pure predicate over a submitted record and the auto-approval rule of the
entity it belongs to. Configuration is decoded once, at the boundary, into
``AutoApprovalConfig``; anything missing or malformed evaluates as a
disabled rule.
"""

import logging
from typing import Any, List, Optional
from dataclasses import dataclass, field

from models.base import utc_now
from models.entities import (
    AutoApprovalConfig, SubmittedRecord, AUTO_APPROVAL_SCHEMA_VERSION
)
from models.enums import ApprovalScope, Priority, RecordKind, VerificationStatus
from models.requests import ConfigureAutoApprovalRequest

logger = logging.getLogger(__name__)

SCOPE_KINDS = {
    ApprovalScope.ASSESSMENTS: {RecordKind.ASSESSMENT},
    ApprovalScope.RESPONSES: {RecordKind.RESPONSE},
    ApprovalScope.BOTH: {RecordKind.ASSESSMENT, RecordKind.RESPONSE},
}


@dataclass
class RuleEvaluation:
    """Outcome of evaluating one record against one rule."""
    matched: bool
    failed_conditions: List[str] = field(default_factory=list)


def decode_config(raw: Any) -> Optional[AutoApprovalConfig]:
    """Decode a stored rule; None when missing or malformed."""
    return AutoApprovalConfig.decode(raw)


def rule_id_for(entity_id: str, config: AutoApprovalConfig) -> str:
    """Stable identifier of an entity's rule version."""
    return f"entity:{entity_id}:v{config.schema_version}"


def scope_includes(scope: Any, kind: Any) -> bool:
    return RecordKind(kind) in SCOPE_KINDS[ApprovalScope(scope)]


def evaluate_rule(record: SubmittedRecord, config: Any) -> RuleEvaluation:
    """
    Evaluate every rule condition and report the ones that failed.
    
    Args:
        record: Candidate record
        config: Decoded rule, a raw stored dict, or None
        
    Returns:
        RuleEvaluation, never raising on malformed input
    """
    rule = decode_config(config)
    if rule is None:
        return RuleEvaluation(matched=False, failed_conditions=["not_configured"])
    
    failed = []
    try:
        if not rule.enabled:
            failed.append("disabled")
        
        if record.status != VerificationStatus.SUBMITTED:
            failed.append("status")
        
        if not scope_includes(rule.scope, record.kind):
            failed.append("scope")
        
        if rule.types_allowed and record.type not in rule.types_allowed:
            failed.append("type")
        
        if Priority.rank_of(record.priority) > Priority.rank_of(rule.max_priority):
            failed.append("priority")
        
        if rule.requires_documentation and not record.has_documentation():
            failed.append("documentation")
    
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        logger.warning(
            "Auto-approval evaluation failed, treating as no match",
            extra={"record_id": getattr(record, "id", None), "error": str(e)}
        )
        return RuleEvaluation(matched=False, failed_conditions=["malformed"])
    
    return RuleEvaluation(matched=not failed, failed_conditions=failed)


def matches(record: SubmittedRecord, config: Any) -> bool:
    """True when the rule auto-approves the record."""
    return evaluate_rule(record, config).matched


def build_config(request: ConfigureAutoApprovalRequest, user_id: str) -> AutoApprovalConfig:
    """Build the stored rule from a configuration request."""
    conditions = request.conditions
    return AutoApprovalConfig(
        schema_version=AUTO_APPROVAL_SCHEMA_VERSION,
        enabled=request.enabled,
        scope=request.scope,
        types_allowed=conditions.types_allowed,
        max_priority=conditions.max_priority,
        requires_documentation=conditions.requires_documentation,
        last_modified_by=user_id,
        last_modified_at=utc_now()
    )
