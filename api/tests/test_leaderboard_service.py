# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for donor scoring passes and rank write-back.
"""

import threading
import pytest
from datetime import timedelta
from unittest.mock import MagicMock
from redis.exceptions import LockError, RedisError

from middleware.error_handler import ServiceUnavailableException
from services.leaderboard import DonorScoringService, RankingLock, RANKING_LOCK_NAME
from services.redis import RedisService


@pytest.fixture
def donors(make_donor, make_commitment, now):
    """Three donors with distinct verified delivery rates."""
    since = now - timedelta(days=400)
    strong = make_donor("Strong Relief", created_at=since)
    middling = make_donor("Middling Aid", created_at=since)
    weak = make_donor("Weak Supply", created_at=since, leaderboard_rank=1)
    make_commitment(strong.id, verified_delivered_quantity=100)
    make_commitment(middling.id, verified_delivered_quantity=60)
    make_commitment(weak.id, verified_delivered_quantity=10, delivered_quantity=90)
    return strong, middling, weak


class TestDonorMetrics:
    """Test scoring passes over the store."""
    
    def test_overall_pass_persists_ranks(self, store, donor_scoring_service, donors, now):
        strong, middling, weak = donors
        
        result = donor_scoring_service.donor_metrics(now=now)
        
        assert [card["donor_id"] for card in result["donors"]] == [strong.id, middling.id, weak.id]
        assert [card["rank"] for card in result["donors"]] == [1, 2, 3]
        for donor, rank in ((strong, 1), (middling, 2), (weak, 3)):
            stored = store.find_one("donors", donor.id)
            assert stored["leaderboardRank"] == rank
            assert stored["lastScoredAt"] == now
        assert store.find_one("donors", weak.id)["verifiedDeliveryRate"] == pytest.approx(10.0)
    
    def test_trend_against_previous_rank(self, donor_scoring_service, donors, now):
        result = donor_scoring_service.donor_metrics(now=now)
        
        trends = {card["name"]: card["trend"] for card in result["donors"]}
        assert trends == {"Strong Relief": "new", "Middling Aid": "new", "Weak Supply": "down"}
    
    def test_second_pass_is_stable(self, donor_scoring_service, donors, now):
        donor_scoring_service.donor_metrics(now=now)
        
        result = donor_scoring_service.donor_metrics(now=now)
        
        assert {card["trend"] for card in result["donors"]} == {"stable"}
    
    def test_other_sort_keys_do_not_persist(self, store, donor_scoring_service, donors, now):
        strong, middling, weak = donors
        
        result = donor_scoring_service.donor_metrics(sort_by="commitment_value", now=now)
        
        assert result["sort_by"] == "commitment_value"
        assert store.find_one("donors", strong.id).get("leaderboardRank") is None
        assert store.find_one("donors", weak.id)["leaderboardRank"] == 1
        assert {card["name"]: card["trend"] for card in result["donors"]}["Weak Supply"] == "stable"
    
    def test_read_only_pass(self, store, donor_scoring_service, donors, now):
        strong = donors[0]
        
        donor_scoring_service.donor_metrics(now=now, persist_ranks=False)
        
        assert store.find_one("donors", strong.id).get("leaderboardRank") is None
    
    def test_single_donor_keeps_global_rank(self, donor_scoring_service, donors, now):
        middling = donors[1]
        
        result = donor_scoring_service.donor_metrics(donor_id=middling.id, now=now)
        
        assert len(result["donors"]) == 1
        assert result["donors"][0]["rank"] == 2
        assert result["summary"]["total_donors"] == 3
    
    def test_inactive_donors_are_not_ranked(self, make_donor, donor_scoring_service, donors, now):
        make_donor("Retired", is_active=False, created_at=now - timedelta(days=10))
        
        result = donor_scoring_service.donor_metrics(now=now)
        
        assert "Retired" not in [card["name"] for card in result["donors"]]
    
    def test_commitments_outside_window_are_ignored(self, make_donor, make_commitment, donor_scoring_service, now):
        donor = make_donor("Old Giver", created_at=now - timedelta(days=400))
        make_commitment(donor.id, commitment_date=now - timedelta(days=60))
        
        month = donor_scoring_service.donor_metrics(timeframe="30d", now=now, persist_ranks=False)
        year = donor_scoring_service.donor_metrics(timeframe="1y", now=now, persist_ranks=False)
        
        assert month["donors"][0]["commitments"]["total"] == 0
        assert year["donors"][0]["commitments"]["total"] == 1
    
    def test_summary(self, donor_scoring_service, donors, now):
        summary = donor_scoring_service.donor_metrics(now=now)["summary"]
        
        assert summary["total_donors"] == 3
        assert summary["top_donor"] == donors[0].id
        assert summary["average_verified_delivery_rate"] == pytest.approx(56.67)
    
    def test_empty_leaderboard(self, donor_scoring_service, now):
        result = donor_scoring_service.leaderboard(now=now)
        
        assert result["donors"] == []
        assert result["summary"]["top_donor"] is None
    
    def test_rank_update_is_audited(self, store, donor_scoring_service, donors, now):
        donor_scoring_service.donor_metrics(now=now)
        
        entries = store.find("audit_logs", {"resourceId": "leaderboard"})
        assert len(entries) == 1
        assert entries[0]["actor"] == "system"
        assert entries[0]["after"][donors[0].id] == 1


class TestRankingLock:
    """Rank write-back passes are serialized."""
    
    def test_busy_local_lock(self):
        lock = RankingLock(blocking_timeout=0.01)
        
        with lock.hold():
            with pytest.raises(ServiceUnavailableException):
                with lock.hold():
                    pass
    
    def test_released_after_error(self):
        lock = RankingLock(blocking_timeout=0.01)
        
        with pytest.raises(RuntimeError):
            with lock.hold():
                raise RuntimeError("boom")
        
        with lock.hold():
            pass
    
    def test_redis_lock_used_when_configured(self):
        client = MagicMock()
        client.lock.return_value.acquire.return_value = True
        lock = RankingLock(RedisService(client=client), timeout=30, blocking_timeout=5)
        
        with lock.hold():
            pass
        
        client.lock.assert_called_once_with(f"lock:{RANKING_LOCK_NAME}", timeout=30, blocking_timeout=5)
        client.lock.return_value.release.assert_called_once()
    
    def test_redis_lock_held_elsewhere(self):
        client = MagicMock()
        client.lock.return_value.acquire.return_value = False
        lock = RankingLock(RedisService(client=client))
        
        with pytest.raises(ServiceUnavailableException):
            with lock.hold():
                pass
    
    def test_redis_unreachable(self):
        client = MagicMock()
        client.lock.return_value.acquire.side_effect = RedisError("connection refused")
        lock = RankingLock(RedisService(client=client))
        
        with pytest.raises(ServiceUnavailableException):
            with lock.hold():
                pass
    
    def test_expired_lock_release_is_tolerated(self):
        client = MagicMock()
        client.lock.return_value.acquire.return_value = True
        client.lock.return_value.release.side_effect = LockError("expired")
        lock = RankingLock(RedisService(client=client))
        
        with lock.hold():
            pass
    
    def test_busy_lock_fails_the_pass(self, store, audit_service, donors, now):
        service = DonorScoringService(store, audit_service, RedisService(""))
        service.ranking_lock.blocking_timeout = 0.01
        
        with service.ranking_lock.hold():
            with pytest.raises(ServiceUnavailableException):
                service.donor_metrics(now=now)
    
    def test_concurrent_passes_do_not_interleave(self, store, audit_service, donors, now):
        service = DonorScoringService(store, audit_service, RedisService(""))
        inside = []
        overlaps = []
        original = service._persist_ranks
        
        def persist(ranked, scored_at):
            inside.append(1)
            if len(inside) > 1:
                overlaps.append(1)
            original(ranked, scored_at)
            inside.pop()
        
        service._persist_ranks = persist
        threads = [threading.Thread(target=service.donor_metrics, kwargs={"now": now}) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)
        
        assert overlaps == []
        assert len(store.find("audit_logs", {"resourceId": "leaderboard"})) == 4
