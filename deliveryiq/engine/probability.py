"""
Delivery Probability Estimator.

Combines a resolved survival curve with live tracking signals into an
estimate that an in-transit package eventually delivers.

The curve supplies the segment's historical delivery rate and timing
percentiles. The DecayPolicy turns "how overdue" plus risk signals into a
probability; it is a tuned heuristic, kept separate so its constants can be
changed without touching curve fitting.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Optional

import structlog

from deliveryiq.config import settings
from deliveryiq.engine.curves import curve_points
from deliveryiq.engine.kaplan_meier import ConfidenceLevel, interpolate_survival
from deliveryiq.engine.outcomes import (
    TrackingSnapshot,
    elapsed_days,
    ensure_utc,
    has_exception_language,
)
from deliveryiq.engine.segments import (
    get_season_bucket,
    get_service_bucket,
    get_zone_bucket,
)

logger = structlog.get_logger(__name__)

DELIVERED_SEASON: str = "delivered"

# Used when the resolved curve lacks the percentile
DEFAULT_P90_DAYS: int = 7
DEFAULT_P95_RISK_DAYS: int = 10
DEFAULT_P95_DECAY_DAYS: int = 7

# No-curve fallback
NO_CURVE_PROBABILITY: float = 0.95
NO_CURVE_DECAY_RATE: float = 0.5
NO_CURVE_EXPECTED_DAY: int = 4

# Risk level thresholds (days in transit)
CRITICAL_EXCEPTION_DAYS: float = 15.0
ELEVATED_DAYS: float = 8.0


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskFactor(StrEnum):
    EXCEPTION_DETECTED = "exception_detected"
    DELIVERY_ATTEMPT_FAILED = "delivery_attempt_failed"
    PAST_P90 = "past_p90"
    PAST_P95 = "past_p95"


@dataclass(frozen=True)
class DecayPolicy:
    """Overdue decay and risk penalties applied on top of the curve's delivery rate."""
    decay_factor: float = 0.7
    exception_penalty_step: float = 0.1
    exception_penalty_cap: float = 0.5
    failed_attempt_multiplier: float = 0.85
    floor: float = 0.05
    ceiling: float = 0.999

    @classmethod
    def from_settings(cls) -> "DecayPolicy":
        return cls(
            decay_factor=settings.probability_decay_factor,
            exception_penalty_step=settings.exception_penalty_step,
            exception_penalty_cap=settings.exception_penalty_cap,
            failed_attempt_multiplier=settings.failed_attempt_multiplier,
            floor=settings.probability_floor,
            ceiling=settings.probability_ceiling,
        )

    def eventual_probability(
        self,
        delivery_rate: float,
        days_in_transit: float,
        p95_days: float,
        has_exception: bool = False,
        has_failed_attempt: bool = False,
    ) -> float:
        """
        P(eventually delivers | still in transit after `days_in_transit`).

        Within the P95 window the historical rate applies unchanged. Past it,
        each further P95-length interval multiplies by `decay_factor`.
        """
        overdue_ratio = days_in_transit / p95_days
        probability = delivery_rate
        if days_in_transit > p95_days:
            probability *= self.decay_factor ** (overdue_ratio - 1)

        if has_exception:
            penalty = min(self.exception_penalty_cap, self.exception_penalty_step * overdue_ratio)
            probability *= 1 - penalty

        if has_failed_attempt:
            probability *= self.failed_attempt_multiplier

        return max(self.floor, min(self.ceiling, probability))

    @staticmethod
    def no_curve_survival(days_in_transit: float) -> float:
        return math.exp(-NO_CURVE_DECAY_RATE * days_in_transit)


def risk_level(days_in_transit: float, factors: list[RiskFactor]) -> RiskLevel:
    """Classify risk from elapsed days and collected factors, highest first."""
    has_exception = RiskFactor.EXCEPTION_DETECTED in factors
    has_failed = RiskFactor.DELIVERY_ATTEMPT_FAILED in factors
    past_p90 = RiskFactor.PAST_P90 in factors
    past_p95 = RiskFactor.PAST_P95 in factors

    if past_p95 and (has_exception or has_failed):
        return RiskLevel.CRITICAL
    if days_in_transit > CRITICAL_EXCEPTION_DAYS and has_exception:
        return RiskLevel.CRITICAL
    if past_p95 or (has_exception and days_in_transit > ELEVATED_DAYS):
        return RiskLevel.HIGH
    if past_p90 or has_failed or (days_in_transit > ELEVATED_DAYS and factors):
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


@dataclass(frozen=True)
class SegmentUsed:
    carrier: str
    service_bucket: str
    zone_bucket: str
    season_bucket: str
    carrier_service: Optional[str] = None


@dataclass(frozen=True)
class Percentiles:
    p50: Optional[int] = None
    p75: Optional[int] = None
    p90: Optional[int] = None
    p95: Optional[int] = None


@dataclass(frozen=True)
class DeliveryProbabilityResult:
    shipment_id: str
    delivery_probability: float
    still_in_transit_probability: float
    days_in_transit: float
    expected_delivery_day: Optional[int]
    risk_level: RiskLevel
    risk_factors: list[RiskFactor]
    confidence: ConfidenceLevel
    sample_size: int
    segment_used: SegmentUsed
    percentiles: Percentiles = field(default_factory=Percentiles)

    @property
    def summary(self) -> str:
        return probability_summary(self)

    @property
    def recommended_action(self) -> str:
        return recommended_action(self)


@dataclass(frozen=True)
class LookupParams:
    """Curve lookup request derived from a snapshot."""
    carrier: str
    carrier_service: Optional[str]
    service_bucket: str
    zone_bucket: str
    season_bucket: str


def segment_for(snapshot: TrackingSnapshot) -> Optional[LookupParams]:
    """Segment lookup parameters for an in-transit snapshot, or None without transit start."""
    if snapshot.event_intransit is None:
        return None
    return LookupParams(
        carrier=snapshot.carrier,
        carrier_service=snapshot.carrier_service,
        service_bucket=get_service_bucket(snapshot.carrier_service),
        zone_bucket=get_zone_bucket(snapshot.zone_used),
        season_bucket=get_season_bucket(ensure_utc(snapshot.event_intransit)),
    )


class DeliveryProbabilityEstimator:
    """Pure estimator: snapshot + resolved curve (or None) → result."""

    def __init__(self, policy: Optional[DecayPolicy] = None):
        self.policy = policy or DecayPolicy.from_settings()

    def estimate(
        self,
        snapshot: TrackingSnapshot,
        curve: Optional[Any] = None,
        now: Optional[datetime] = None,
    ) -> Optional[DeliveryProbabilityResult]:
        """
        Estimate eventual delivery for one shipment.

        Returns None only when the shipment is neither delivered nor in transit.
        """
        if snapshot.event_delivered is not None:
            return self._delivered(snapshot)

        params = segment_for(snapshot)
        if params is None:
            return None

        now = ensure_utc(now) or datetime.now(timezone.utc)
        days_in_transit = max(0.0, elapsed_days(snapshot.event_intransit, now))

        if curve is None:
            logger.debug("probability_no_curve", shipment_id=snapshot.shipment_id)
            return DeliveryProbabilityResult(
                shipment_id=snapshot.shipment_id,
                delivery_probability=NO_CURVE_PROBABILITY,
                still_in_transit_probability=round(self.policy.no_curve_survival(days_in_transit), 3),
                days_in_transit=round(days_in_transit, 2),
                expected_delivery_day=NO_CURVE_EXPECTED_DAY,
                risk_level=risk_level(days_in_transit, []),
                risk_factors=[],
                confidence=ConfidenceLevel.INSUFFICIENT,
                sample_size=0,
                segment_used=SegmentUsed(
                    carrier=params.carrier,
                    service_bucket=params.service_bucket,
                    zone_bucket=params.zone_bucket,
                    season_bucket=params.season_bucket,
                    carrier_service=params.carrier_service,
                ),
            )

        still_in_transit = interpolate_survival(curve_points(curve), days_in_transit)

        has_exception = has_exception_language(snapshot.event_logs)
        has_failed = snapshot.event_deliveryattemptfailed is not None
        factors: list[RiskFactor] = []
        if has_exception:
            factors.append(RiskFactor.EXCEPTION_DETECTED)
        if has_failed:
            factors.append(RiskFactor.DELIVERY_ATTEMPT_FAILED)
        if days_in_transit > (curve.p90_days or DEFAULT_P90_DAYS):
            factors.append(RiskFactor.PAST_P90)
        if days_in_transit > (curve.p95_days or DEFAULT_P95_RISK_DAYS):
            factors.append(RiskFactor.PAST_P95)

        delivery_rate = curve.delivered_count / curve.sample_size if curve.sample_size else 0.0
        probability = self.policy.eventual_probability(
            delivery_rate,
            days_in_transit,
            curve.p95_days or DEFAULT_P95_DECAY_DAYS,
            has_exception=has_exception,
            has_failed_attempt=has_failed,
        )

        return DeliveryProbabilityResult(
            shipment_id=snapshot.shipment_id,
            delivery_probability=round(probability, 3),
            still_in_transit_probability=round(still_in_transit, 3),
            days_in_transit=round(days_in_transit, 2),
            expected_delivery_day=curve.median_days,
            risk_level=risk_level(days_in_transit, factors),
            risk_factors=factors,
            confidence=ConfidenceLevel(curve.confidence_level),
            sample_size=curve.sample_size,
            segment_used=SegmentUsed(
                carrier=curve.carrier,
                service_bucket=curve.service_bucket,
                zone_bucket=curve.zone_bucket,
                season_bucket=curve.season_bucket,
                carrier_service=curve.carrier_service,
            ),
            percentiles=Percentiles(
                p50=curve.median_days,
                p75=curve.p75_days,
                p90=curve.p90_days,
                p95=curve.p95_days,
            ),
        )

    def _delivered(self, snapshot: TrackingSnapshot) -> DeliveryProbabilityResult:
        days = 0.0
        if snapshot.event_intransit is not None:
            days = elapsed_days(snapshot.event_intransit, snapshot.event_delivered)
        return DeliveryProbabilityResult(
            shipment_id=snapshot.shipment_id,
            delivery_probability=1.0,
            still_in_transit_probability=0.0,
            days_in_transit=round(days, 2),
            expected_delivery_day=None,
            risk_level=RiskLevel.LOW,
            risk_factors=[],
            confidence=ConfidenceLevel.HIGH,
            sample_size=0,
            segment_used=SegmentUsed(
                carrier=snapshot.carrier,
                service_bucket=get_service_bucket(snapshot.carrier_service),
                zone_bucket=get_zone_bucket(snapshot.zone_used),
                season_bucket=DELIVERED_SEASON,
                carrier_service=snapshot.carrier_service,
            ),
        )


def probability_summary(result: DeliveryProbabilityResult) -> str:
    """One-line description of a result for dashboards."""
    probability = result.delivery_probability
    pct = round(probability * 100)
    if probability >= 0.99:
        return "Very likely to deliver"
    if probability >= 0.95:
        return f"{pct}% likely to deliver"
    if probability >= 0.85:
        return f"{pct}% delivery probability - monitor closely"
    if probability >= 0.70:
        return f"{pct}% delivery probability - at risk"
    return f"{pct}% delivery probability - high risk of loss"


def recommended_action(result: DeliveryProbabilityResult) -> str:
    if result.risk_level is RiskLevel.CRITICAL:
        if RiskFactor.EXCEPTION_DETECTED in result.risk_factors:
            return "File lost in transit claim or consider reshipment"
        return "Contact carrier for investigation"
    if result.risk_level is RiskLevel.HIGH:
        return "Monitor closely - proactively contact customer"
    if result.risk_level is RiskLevel.MEDIUM:
        return "Add to watchlist - check again tomorrow"
    return "No action needed - normal transit"
