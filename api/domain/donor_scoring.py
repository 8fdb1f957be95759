# SPDX-License-Identifier: Apache-2.0

"""
Donor scoring domain logic.

Pure functions computing a donor's commitment and response metrics, delivery
rates, composite score, badges and leaderboard position. Nothing here reads
or writes the store; rank persistence is done by the leaderboard service
after a full pass has been computed.
"""

import math
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass, field, asdict, replace

from models.entities import Commitment, Donor, SubmittedRecord
from models.enums import (
    BadgeTier, CommitmentStatus, DonorSortKey, RankTrend, Timeframe,
    VerificationStatus, VERIFIED_STATUSES
)

TIMEFRAME_DAYS = {
    Timeframe.WEEK: 7,
    Timeframe.MONTH: 30,
    Timeframe.QUARTER: 90,
    Timeframe.YEAR: 365,
    Timeframe.ALL: None,
}


@dataclass
class ScoreWeights:
    """Weights of the composite score; they should sum to 1."""
    delivery: float = 0.6
    verification: float = 0.4


DEFAULT_WEIGHTS = ScoreWeights()


@dataclass
class BadgeLadder:
    """Threshold ladder for one badge category, highest tier first."""
    category: str
    metric: str
    thresholds: Tuple[Tuple[BadgeTier, float], ...]
    minimum_activity: int = 0


BADGE_LADDERS = (
    BadgeLadder(
        category="Reliable Delivery",
        metric="verified_delivery_rate",
        thresholds=((BadgeTier.GOLD, 95), (BadgeTier.SILVER, 85), (BadgeTier.BRONZE, 70))
    ),
    BadgeLadder(
        category="High Volume",
        metric="completed_commitments",
        thresholds=((BadgeTier.GOLD, 50), (BadgeTier.SILVER, 25), (BadgeTier.BRONZE, 10))
    ),
    BadgeLadder(
        category="Consistent Donor",
        metric="months_active",
        thresholds=((BadgeTier.GOLD, 12), (BadgeTier.SILVER, 6), (BadgeTier.BRONZE, 3))
    ),
    BadgeLadder(
        category="Trusted Responder",
        metric="response_verification_rate",
        thresholds=((BadgeTier.GOLD, 95), (BadgeTier.SILVER, 85), (BadgeTier.BRONZE, 70)),
        minimum_activity=1
    ),
)


@dataclass
class CommitmentMetrics:
    total: int = 0
    fulfilled: int = 0
    partial: int = 0
    planned: int = 0
    fulfillment_rate: float = 0.0
    committed_quantity: float = 0.0
    delivered_quantity: float = 0.0
    verified_quantity: float = 0.0
    total_value: float = 0.0


@dataclass
class ResponseMetrics:
    total: int = 0
    verified: int = 0
    auto_verified: int = 0
    rejected: int = 0
    pending: int = 0
    verification_rate: float = 0.0


@dataclass
class CombinedMetrics:
    total_activities: int = 0
    verified_activities: int = 0
    overall_success_rate: float = 0.0


@dataclass
class DeliveryRates:
    """Delivery rates in percent of committed quantity."""
    self_reported: float = 0.0
    verified: float = 0.0


@dataclass
class Badge:
    category: str
    tier: str
    metric: str
    value: float


@dataclass
class DonorScorecard:
    """Everything computed for one donor in one scoring pass."""
    donor_id: str
    name: str
    commitments: CommitmentMetrics
    responses: ResponseMetrics
    combined: CombinedMetrics
    delivery_rates: DeliveryRates
    score: float
    months_active: int = 0
    activity_frequency: float = 0.0
    badges: List[Badge] = field(default_factory=list)
    previous_rank: Optional[int] = None
    rank: Optional[int] = None
    trend: Optional[str] = None
    
    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _rate(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def clamp_score(value: float) -> float:
    return max(0.0, min(100.0, value))


def window_start(timeframe: Any, now: datetime) -> Optional[datetime]:
    """Start of a scoring window, None for all-time."""
    days = TIMEFRAME_DAYS[Timeframe(timeframe)]
    if days is None:
        return None
    return now - timedelta(days=days)


def in_window(timestamp: Optional[datetime], start: Optional[datetime], end: datetime) -> bool:
    if timestamp is None:
        return False
    if start is not None and timestamp < start:
        return False
    return timestamp <= end


def compute_commitment_metrics(commitments: Iterable[Commitment]) -> CommitmentMetrics:
    """Counts and quantities over a donor's commitments."""
    metrics = CommitmentMetrics()
    for commitment in commitments:
        metrics.total += 1
        if commitment.status == CommitmentStatus.COMPLETE:
            metrics.fulfilled += 1
        elif commitment.status == CommitmentStatus.PARTIAL:
            metrics.partial += 1
        elif commitment.status == CommitmentStatus.PLANNED:
            metrics.planned += 1
        metrics.committed_quantity += commitment.total_committed_quantity
        metrics.delivered_quantity += commitment.delivered_quantity
        metrics.verified_quantity += commitment.verified_delivered_quantity
        metrics.total_value += commitment.total_value_estimated
    
    metrics.fulfillment_rate = _rate(metrics.fulfilled, metrics.total)
    return metrics


def compute_response_metrics(responses: Iterable[SubmittedRecord]) -> ResponseMetrics:
    """Verification outcome counts over a donor's responses."""
    metrics = ResponseMetrics()
    for response in responses:
        metrics.total += 1
        if response.status in VERIFIED_STATUSES:
            metrics.verified += 1
            if response.status == VerificationStatus.AUTO_VERIFIED:
                metrics.auto_verified += 1
        elif response.status == VerificationStatus.REJECTED:
            metrics.rejected += 1
        else:
            metrics.pending += 1
    
    metrics.verification_rate = _rate(metrics.verified, metrics.total)
    return metrics


def compute_combined_metrics(commitments: CommitmentMetrics, responses: ResponseMetrics) -> CombinedMetrics:
    total = commitments.total + responses.total
    verified = commitments.fulfilled + responses.verified
    return CombinedMetrics(
        total_activities=total,
        verified_activities=verified,
        overall_success_rate=_rate(verified, total)
    )


def compute_delivery_rates(commitments: CommitmentMetrics) -> DeliveryRates:
    committed = commitments.committed_quantity
    return DeliveryRates(
        self_reported=round(_rate(commitments.delivered_quantity, committed) * 100, 2),
        verified=round(_rate(commitments.verified_quantity, committed) * 100, 2)
    )


def composite_score(
    delivery_rates: DeliveryRates,
    responses: ResponseMetrics,
    weights: ScoreWeights = DEFAULT_WEIGHTS
) -> float:
    """Weighted blend of verified delivery and verification rates in [0, 100]."""
    raw = (
        delivery_rates.verified * weights.delivery
        + responses.verification_rate * 100 * weights.verification
    )
    return round(clamp_score(raw), 2)


def months_active(since: datetime, now: datetime) -> int:
    days = max(0, (now - since).days)
    return math.ceil(days / 30)


def award_badges(metric_values: Dict[str, float], activity: int) -> List[Badge]:
    """
    Award at most one tier per ladder.
    
    Args:
        metric_values: Metric name -> value used by the ladders
        activity: Number of activities, for ladders with a minimum
        
    Returns:
        Badges held, in ladder order
    """
    badges = []
    for ladder in BADGE_LADDERS:
        if activity < ladder.minimum_activity:
            continue
        value = metric_values.get(ladder.metric, 0)
        for tier, threshold in ladder.thresholds:
            if value >= threshold:
                badges.append(Badge(
                    category=ladder.category,
                    tier=tier.value,
                    metric=ladder.metric,
                    value=value
                ))
                break
    return badges


def build_scorecard(
    donor: Donor,
    commitments: List[Commitment],
    responses: List[SubmittedRecord],
    now: datetime,
    weights: ScoreWeights = DEFAULT_WEIGHTS
) -> DonorScorecard:
    """
    Score one donor over the commitments and responses in its window.
    
    Args:
        donor: Donor being scored
        commitments: Donor commitments inside the window
        responses: Donor responses inside the window
        now: Evaluation time
        weights: Composite score weights
        
    Returns:
        DonorScorecard without rank or trend
    """
    commitment_metrics = compute_commitment_metrics(commitments)
    response_metrics = compute_response_metrics(responses)
    combined = compute_combined_metrics(commitment_metrics, response_metrics)
    delivery_rates = compute_delivery_rates(commitment_metrics)
    
    active_months = months_active(donor.created_at, now)
    days_active = max(1, (now - donor.created_at).days)
    
    badges = award_badges(
        {
            "verified_delivery_rate": delivery_rates.verified,
            "completed_commitments": commitment_metrics.fulfilled,
            "months_active": active_months,
            "response_verification_rate": response_metrics.verification_rate * 100,
        },
        response_metrics.total
    )
    
    return DonorScorecard(
        donor_id=donor.id,
        name=donor.name,
        commitments=commitment_metrics,
        responses=response_metrics,
        combined=combined,
        delivery_rates=delivery_rates,
        score=composite_score(delivery_rates, response_metrics, weights),
        months_active=active_months,
        activity_frequency=round(combined.total_activities / days_active, 4),
        badges=badges,
        previous_rank=donor.leaderboard_rank
    )


def sort_value(card: DonorScorecard, sort_key: Any) -> float:
    key = DonorSortKey(sort_key)
    if key == DonorSortKey.DELIVERY_RATE:
        return card.delivery_rates.verified
    if key == DonorSortKey.COMMITMENT_VALUE:
        return card.commitments.total_value
    if key == DonorSortKey.CONSISTENCY:
        return card.activity_frequency
    if key == DonorSortKey.VERIFICATION_RATE:
        return card.responses.verification_rate
    return card.score


def determine_trend(previous_rank: Optional[int], current_rank: int) -> str:
    if previous_rank is None:
        return RankTrend.NEW.value
    if current_rank < previous_rank:
        return RankTrend.UP.value
    if current_rank > previous_rank:
        return RankTrend.DOWN.value
    return RankTrend.STABLE.value


def rank_scorecards(cards: List[DonorScorecard], sort_key: Any = DonorSortKey.OVERALL) -> List[DonorScorecard]:
    """
    Rank all donors descending by the sort key.
    
    Ties keep a deterministic order by donor id. Stored ranks are overall
    ranks, so movement is only reported for the overall ordering; other
    orderings report ``new`` or ``stable``.
    """
    overall = DonorSortKey(sort_key) == DonorSortKey.OVERALL
    ordered = sorted(cards, key=lambda card: (-sort_value(card, sort_key), card.donor_id))
    ranked = []
    for position, card in enumerate(ordered):
        rank = position + 1
        if overall or card.previous_rank is None:
            trend = determine_trend(card.previous_rank, rank)
        else:
            trend = RankTrend.STABLE.value
        ranked.append(replace(card, rank=rank, trend=trend))
    return ranked


def rank_updates(ranked: List[DonorScorecard], scored_at: datetime) -> List[Tuple[str, Dict[str, Any]]]:
    """Donor document updates persisting one ranking pass."""
    return [
        (card.donor_id, {
            "leaderboardRank": card.rank,
            "selfReportedDeliveryRate": card.delivery_rates.self_reported,
            "verifiedDeliveryRate": card.delivery_rates.verified,
            "lastScoredAt": scored_at,
        })
        for card in ranked
    ]
