# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for verification queue metrics.
"""

import pytest
from datetime import datetime, timedelta, timezone

from domain.queue_metrics import compute_queue_metrics, compute_queue_depth
from models.entities import SubmittedRecord

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def record(priority="MEDIUM", status="SUBMITTED", age_hours=1.0, decided_hours_ago=None):
    values = {
        "kind": "assessment",
        "type": "HEALTH",
        "priority": priority,
        "status": status,
        "entity_id": "entity-1",
        "assessor_id": "assessor-1",
        "created_at": NOW - timedelta(hours=age_hours)
    }
    if decided_hours_ago is not None:
        values.update(verified_by="coordinator-1", verified_at=NOW - timedelta(hours=decided_hours_ago))
    if status == "REJECTED":
        values["rejection_reason"] = "OTHER"
    return SubmittedRecord(**values)


class TestQueueDepth:
    """Test queue depth by priority."""
    
    def test_depth_by_priority(self):
        depth = compute_queue_depth([record("HIGH"), record("HIGH"), record("LOW")])
        
        assert depth.total == 3
        assert depth.by_priority == {"LOW": 1, "MEDIUM": 0, "HIGH": 2, "CRITICAL": 0}


class TestQueueMetrics:
    """Test waits and the trailing verification rate."""
    
    def test_empty_queue_is_all_zero(self):
        metrics = compute_queue_metrics([], [], NOW)
        
        assert metrics.queue_depth.total == 0
        assert metrics.average_wait_seconds == 0.0
        assert metrics.oldest_pending is None
        assert metrics.verification_rate == 0.0
        assert metrics.window_hours == 168
    
    def test_waits(self):
        pending = [record("HIGH", age_hours=2), record("LOW", age_hours=4), record("LOW", age_hours=1)]
        
        metrics = compute_queue_metrics(pending, [], NOW)
        
        assert metrics.average_wait_seconds == pytest.approx(7 / 3 * 3600, abs=0.01)
        assert metrics.oldest_pending == NOW - timedelta(hours=4)
        assert metrics.oldest_wait_by_priority == {"HIGH": 7200.0, "LOW": 14400.0}
    
    def test_verification_rate_within_window(self):
        decided = [
            record(status="VERIFIED", age_hours=5, decided_hours_ago=1),
            record(status="AUTO_VERIFIED", age_hours=3, decided_hours_ago=3),
            record(status="REJECTED", age_hours=10, decided_hours_ago=2),
            record(status="REJECTED", age_hours=400, decided_hours_ago=300)
        ]
        
        metrics = compute_queue_metrics([], decided, NOW, window=timedelta(hours=24))
        
        assert metrics.verified_count == 2
        assert metrics.auto_verified_count == 1
        assert metrics.rejected_count == 1
        assert metrics.verification_rate == pytest.approx(2 / 3)
        # Processing times of 4h, 0h and 8h
        assert metrics.average_processing_seconds == pytest.approx(4 * 3600)
    
    def test_to_dict(self):
        metrics = compute_queue_metrics([record("CRITICAL")], [], NOW)
        
        data = metrics.to_dict()
        
        assert data["queue_depth"]["by_priority"]["CRITICAL"] == 1
        assert isinstance(data["oldest_pending"], str)


class TestQueueMetricsService:
    """Test metrics read from the store."""
    
    def test_metrics_scoped_by_entity(self, queue_metrics_service, entity, make_record, now):
        make_record(entity.id, created_at=now - timedelta(hours=2))
        make_record("other-entity", created_at=now - timedelta(hours=5))
        make_record(entity.id, status="VERIFIED", verified_by="c", verified_at=now - timedelta(hours=1),
                    created_at=now - timedelta(hours=3))
        
        metrics = queue_metrics_service.queue_metrics({"entityId": entity.id}, now=now)
        
        assert metrics.queue_depth.total == 1
        assert metrics.average_wait_seconds == pytest.approx(7200)
        assert metrics.verified_count == 1
        assert metrics.verification_rate == 1.0
