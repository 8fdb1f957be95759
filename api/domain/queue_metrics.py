# SPDX-License-Identifier: Apache-2.0

"""
Verification queue metrics.

Pure computations over the pending queue and recent decisions. An empty
queue yields zero-valued metrics rather than an error.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional
from dataclasses import dataclass, field

from models.entities import SubmittedRecord
from models.enums import PRIORITY_ORDER, VerificationStatus, VERIFIED_STATUSES


@dataclass
class QueueDepth:
    total: int = 0
    by_priority: Dict[str, int] = field(
        default_factory=lambda: {priority.value: 0 for priority in PRIORITY_ORDER}
    )


@dataclass
class QueueMetrics:
    queue_depth: QueueDepth = field(default_factory=QueueDepth)
    average_wait_seconds: float = 0.0
    oldest_pending: Optional[datetime] = None
    oldest_wait_by_priority: Dict[str, float] = field(default_factory=dict)
    window_hours: float = 0.0
    verified_count: int = 0
    rejected_count: int = 0
    auto_verified_count: int = 0
    verification_rate: float = 0.0
    average_processing_seconds: float = 0.0
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "queue_depth": {
                "total": self.queue_depth.total,
                "by_priority": dict(self.queue_depth.by_priority)
            },
            "average_wait_seconds": self.average_wait_seconds,
            "oldest_pending": self.oldest_pending.isoformat() if self.oldest_pending else None,
            "oldest_wait_by_priority": dict(self.oldest_wait_by_priority),
            "window_hours": self.window_hours,
            "verified_count": self.verified_count,
            "rejected_count": self.rejected_count,
            "auto_verified_count": self.auto_verified_count,
            "verification_rate": self.verification_rate,
            "average_processing_seconds": self.average_processing_seconds
        }


def compute_queue_depth(pending: Iterable[SubmittedRecord]) -> QueueDepth:
    depth = QueueDepth()
    for record in pending:
        depth.by_priority[record.priority] = depth.by_priority.get(record.priority, 0) + 1
        depth.total += 1
    return depth


def compute_queue_metrics(
    pending: List[SubmittedRecord],
    decided: List[SubmittedRecord],
    now: datetime,
    window: timedelta = timedelta(days=7)
) -> QueueMetrics:
    """
    Compute queue depth, waits and the trailing verification rate.
    
    Args:
        pending: Records currently SUBMITTED
        decided: Records with a verification decision, any age
        now: Evaluation time
        window: Trailing window for the verification rate
        
    Returns:
        QueueMetrics, zero-valued when there is nothing to measure
    """
    pending = [r for r in pending if r.status == VerificationStatus.SUBMITTED]
    metrics = QueueMetrics(
        queue_depth=compute_queue_depth(pending),
        window_hours=window.total_seconds() / 3600
    )
    
    if pending:
        waits = [(now - r.created_at).total_seconds() for r in pending]
        metrics.average_wait_seconds = round(sum(waits) / len(waits), 2)
        metrics.oldest_pending = min(r.created_at for r in pending)
        for record, wait in zip(pending, waits):
            current = metrics.oldest_wait_by_priority.get(record.priority, 0.0)
            metrics.oldest_wait_by_priority[record.priority] = max(current, wait)
    
    window_start = now - window
    in_window = [
        r for r in decided
        if r.verified_at is not None and window_start <= r.verified_at <= now
    ]
    verified = [r for r in in_window if r.status in VERIFIED_STATUSES]
    rejected = [r for r in in_window if r.status == VerificationStatus.REJECTED]
    
    metrics.verified_count = len(verified)
    metrics.rejected_count = len(rejected)
    metrics.auto_verified_count = sum(
        1 for r in verified if r.status == VerificationStatus.AUTO_VERIFIED
    )
    decisions = metrics.verified_count + metrics.rejected_count
    if decisions:
        metrics.verification_rate = metrics.verified_count / decisions
        processing = [(r.verified_at - r.created_at).total_seconds() for r in verified + rejected]
        metrics.average_processing_seconds = round(sum(processing) / len(processing), 2)
    
    return metrics
