# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Donor scoring and leaderboard service.

Scores are recomputed from commitments and responses on every request.
A pass sorted by the overall score also persists ranks; those passes are
serialized by a process-local lock plus, when Redis is configured, a
distributed lock so that two workers never interleave their rank writes.
"""

import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from redis.exceptions import LockError, RedisError

from domain import donor_scoring
from domain.donor_scoring import DonorScorecard
from middleware.error_handler import ServiceUnavailableException, store_guard
from models.base import utc_now
from models.entities import Commitment, Donor, SubmittedRecord, SYSTEM_ACTOR
from models.enums import AuditAction, DonorSortKey, RecordKind, Timeframe, VerificationStatus
from services.mongodb import StoreError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DONORS = "donors"
COMMITMENTS = "commitments"
RECORDS = "records"

RANKING_LOCK_NAME = "donor-rankings"


class RankingLock:
    """Mutual exclusion for rank write-back passes."""
    
    def __init__(self, redis_service=None, timeout: float = 30.0, blocking_timeout: float = 5.0):
        self.redis_service = redis_service
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self._local = threading.Lock()
    
    @contextmanager
    def hold(self):
        """
        Hold the ranking lock for the duration of the block.
        
        Raises:
            ServiceUnavailableException: If another pass holds the lock past
                the blocking timeout, or Redis cannot be reached
        """
        if not self._local.acquire(timeout=self.blocking_timeout):
            raise ServiceUnavailableException("Another ranking update is in progress")
        try:
            distributed = None
            if self.redis_service is not None:
                distributed = self.redis_service.lock(
                    RANKING_LOCK_NAME, self.timeout, self.blocking_timeout
                )
            if distributed is not None:
                try:
                    acquired = distributed.acquire()
                except RedisError as e:
                    logger.error(f"Ranking lock unavailable: {str(e)}")
                    raise ServiceUnavailableException("Ranking lock unavailable") from e
                if not acquired:
                    raise ServiceUnavailableException("Another ranking update is in progress")
            try:
                yield
            finally:
                if distributed is not None:
                    try:
                        distributed.release()
                    except LockError as e:
                        # Expired while held; the writes have already happened
                        logger.warning(f"Ranking lock release failed: {str(e)}")
        finally:
            self._local.release()


class DonorScoringService:
    """Donor metrics, badges and leaderboard ranks."""
    
    def __init__(self, store, audit_service=None, redis_service=None, lock_timeout: float = 30.0):
        self.store = store
        self.audit_service = audit_service
        self.ranking_lock = RankingLock(redis_service, timeout=lock_timeout)
    
    def _load_donors(self) -> List[Donor]:
        documents = self.store.find(DONORS, {"isActive": True}, sort=[("_id", 1)])
        return [Donor.from_document(doc) for doc in documents]
    
    def _load_commitments(self, start: Optional[datetime], now: datetime) -> Dict[str, List[Commitment]]:
        window = {"$lte": now}
        if start is not None:
            window["$gte"] = start
        grouped = defaultdict(list)
        for document in self.store.find(COMMITMENTS, {"commitmentDate": window}):
            commitment = Commitment.from_document(document)
            grouped[commitment.donor_id].append(commitment)
        return grouped
    
    def _load_responses(self, start: Optional[datetime], now: datetime) -> Dict[str, List[SubmittedRecord]]:
        window = {"$lte": now}
        if start is not None:
            window["$gte"] = start
        query = {
            "kind": RecordKind.RESPONSE.value,
            "donorId": {"$ne": None},
            "status": {"$ne": VerificationStatus.DRAFT.value},
            "createdAt": window
        }
        grouped = defaultdict(list)
        for document in self.store.find(RECORDS, query):
            record = SubmittedRecord.from_document(document)
            grouped[record.donor_id].append(record)
        return grouped
    
    def score_donors(self, timeframe: Any = Timeframe.MONTH, now: Optional[datetime] = None) -> List[DonorScorecard]:
        """Unranked scorecards for every active donor."""
        now = now or utc_now()
        start = donor_scoring.window_start(timeframe, now)
        with store_guard("score_donors"):
            donors = self._load_donors()
            commitments = self._load_commitments(start, now)
            responses = self._load_responses(start, now)
        
        return [
            donor_scoring.build_scorecard(
                donor, commitments.get(donor.id, []), responses.get(donor.id, []), now
            )
            for donor in donors
        ]
    
    def donor_metrics(
        self,
        donor_id: Optional[str] = None,
        timeframe: Any = Timeframe.MONTH,
        sort_by: Any = DonorSortKey.OVERALL,
        limit: int = 50,
        now: Optional[datetime] = None,
        persist_ranks: bool = True
    ) -> Dict[str, Any]:
        """
        Score, rank and, for overall passes, persist donor ranks.
        
        Ranks are always computed over all active donors so that a single
        donor's rank means the same thing as on the full leaderboard.
        
        Args:
            donor_id: Restrict the output to one donor
            timeframe: Scoring window
            sort_by: Ranking key
            limit: Maximum donors returned
            now: Evaluation time
            persist_ranks: Write ranks back when sorting by the overall score
            
        Returns:
            Dict with ``donors``, ``timeframe``, ``sort_by`` and ``summary``
        """
        now = now or utc_now()
        sort_key = DonorSortKey(sort_by)
        persist = persist_ranks and sort_key == DonorSortKey.OVERALL
        
        with tracer.start_as_current_span(
            "donors.metrics",
            attributes={
                "donors.timeframe": Timeframe(timeframe).value,
                "donors.sort_by": sort_key.value,
                "donors.persist_ranks": persist
            }
        ) as span:
            if persist:
                with self.ranking_lock.hold():
                    ranked = donor_scoring.rank_scorecards(self.score_donors(timeframe, now), sort_key)
                    self._persist_ranks(ranked, now)
            else:
                ranked = donor_scoring.rank_scorecards(self.score_donors(timeframe, now), sort_key)
            
            selected = [card for card in ranked if donor_id is None or card.donor_id == donor_id]
            span.set_attributes({"donors.ranked": len(ranked), "donors.returned": len(selected[:limit])})
            
            return {
                "donors": [card.to_dict() for card in selected[:limit]],
                "timeframe": Timeframe(timeframe).value,
                "sort_by": sort_key.value,
                "summary": self._summary(ranked)
            }
    
    def _persist_ranks(self, ranked: List[DonorScorecard], scored_at: datetime) -> None:
        updates = donor_scoring.rank_updates(ranked, scored_at)
        with tracer.start_as_current_span("db.donors.bulk_update") as span:
            span.set_attribute("db.documents", len(updates))
            with store_guard("persist_ranks"):
                updated = self.store.bulk_update(DONORS, updates)
        
        logger.info(
            "Donor rankings updated",
            extra={"donors_ranked": len(ranked), "donors_updated": updated}
        )
        if self.audit_service is None:
            return
        try:
            self.audit_service.log_action(
                SYSTEM_ACTOR,
                AuditAction.UPDATE_RANKINGS.value,
                "donor",
                "leaderboard",
                after={card.donor_id: card.rank for card in ranked}
            )
        except (StoreError, ValueError) as e:
            span = trace.get_current_span()
            span.set_status(Status(StatusCode.ERROR, "Audit write failed"))
            logger.error(f"Audit entry lost for ranking update: {str(e)}")
    
    @staticmethod
    def _summary(ranked: List[DonorScorecard]) -> Dict[str, Any]:
        if not ranked:
            return {
                "total_donors": 0,
                "average_score": 0.0,
                "average_verified_delivery_rate": 0.0,
                "badges_awarded": 0,
                "top_donor": None
            }
        return {
            "total_donors": len(ranked),
            "average_score": round(sum(card.score for card in ranked) / len(ranked), 2),
            "average_verified_delivery_rate": round(
                sum(card.delivery_rates.verified for card in ranked) / len(ranked), 2
            ),
            "badges_awarded": sum(len(card.badges) for card in ranked),
            "top_donor": ranked[0].donor_id
        }
    
    def leaderboard(self, timeframe: Any = Timeframe.MONTH, limit: int = 10,
                    now: Optional[datetime] = None, persist_ranks: bool = True) -> Dict[str, Any]:
        """Top donors by overall score."""
        return self.donor_metrics(
            timeframe=timeframe, sort_by=DonorSortKey.OVERALL, limit=limit, now=now,
            persist_ranks=persist_ranks
        )
