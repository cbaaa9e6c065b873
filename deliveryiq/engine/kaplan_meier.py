"""
Kaplan-Meier survival estimation for delivery times.

"Survival" here means *still in transit*: the curve height at day t is the
probability that a package has not been delivered t days after it entered
transit, and 1 - S(t) is the probability it was delivered by day t.

Records are grouped by whole elapsed day. Deliveries are events; censored
observations leave the risk set without counting as events. Lost records are
handled according to LostHandling:

    retain  lost records count in the initial risk set and never leave it
    censor  lost records leave the risk set on their day, like censorings
"""

import math
from collections import defaultdict
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Iterable, Optional, Sequence

import structlog

from deliveryiq.config import settings
from deliveryiq.engine.outcomes import Outcome

logger = structlog.get_logger(__name__)

PERCENTILES: dict[str, float] = {
    "median_days": 0.50,
    "p75_days": 0.75,
    "p90_days": 0.90,
    "p95_days": 0.95,
}


class LostHandling(StrEnum):
    RETAIN = "retain"
    CENSOR = "censor"


class ConfidenceLevel(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INSUFFICIENT = "insufficient"


def confidence_level(
    sample_size: int,
    high: Optional[int] = None,
    medium: Optional[int] = None,
    low: Optional[int] = None,
) -> ConfidenceLevel:
    """Map a curve's sample size to a confidence label."""
    high = settings.confidence_high_threshold if high is None else high
    medium = settings.confidence_medium_threshold if medium is None else medium
    low = settings.confidence_low_threshold if low is None else low

    if sample_size >= high:
        return ConfidenceLevel.HIGH
    if sample_size >= medium:
        return ConfidenceLevel.MEDIUM
    if sample_size >= low:
        return ConfidenceLevel.LOW
    return ConfidenceLevel.INSUFFICIENT


@dataclass(frozen=True)
class ObservedOutcome:
    """Minimal KM input: how long we watched and how it ended."""
    observed_days: float
    outcome: str


@dataclass(frozen=True)
class SurvivalPoint:
    day: int
    survival_probability: float
    at_risk_count: int
    event_count: int
    cumulative_events: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "day": self.day,
            "survival_probability": self.survival_probability,
            "at_risk_count": self.at_risk_count,
            "event_count": self.event_count,
            "cumulative_events": self.cumulative_events,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SurvivalPoint":
        return cls(
            day=int(data["day"]),
            survival_probability=float(data["survival_probability"]),
            at_risk_count=int(data.get("at_risk_count", 0)),
            event_count=int(data.get("event_count", 0)),
            cumulative_events=int(data.get("cumulative_events", 0)),
        )


@dataclass
class DayCounts:
    events: int = 0
    censored: int = 0
    lost: int = 0


@dataclass(frozen=True)
class KaplanMeierFit:
    """Result of one Kaplan-Meier pass."""
    points: tuple[SurvivalPoint, ...]
    sample_size: int
    delivered_count: int
    lost_count: int
    censored_count: int

    def percentile_day(self, p: float) -> Optional[int]:
        return percentile_day(self.points, p)

    def percentiles(self) -> dict[str, Optional[int]]:
        return {name: self.percentile_day(p) for name, p in PERCENTILES.items()}


@dataclass
class SurvivalTable:
    """
    Streaming day-grouped counts for one segment.

    Records can be added page by page; `estimate()` runs the product-limit
    pass over whatever has been accumulated.
    """
    lost_handling: LostHandling = LostHandling.CENSOR
    days: dict[int, DayCounts] = field(default_factory=lambda: defaultdict(DayCounts))
    sample_size: int = 0
    delivered_count: int = 0
    lost_count: int = 0
    censored_count: int = 0

    def add(self, observed_days: float, outcome: str) -> None:
        day = max(0, math.floor(observed_days))
        counts = self.days[day]
        self.sample_size += 1

        if outcome == Outcome.DELIVERED:
            counts.events += 1
            self.delivered_count += 1
        elif outcome == Outcome.CENSORED:
            counts.censored += 1
            self.censored_count += 1
        else:
            counts.lost += 1
            self.lost_count += 1

    def add_all(self, records: Iterable[Any]) -> None:
        for record in records:
            self.add(record.observed_days, record.outcome)

    def _removals(self, counts: DayCounts) -> int:
        removed = counts.events + counts.censored
        if self.lost_handling is LostHandling.CENSOR:
            removed += counts.lost
        return removed

    def _has_activity(self, counts: DayCounts) -> bool:
        if counts.events or counts.censored:
            return True
        return self.lost_handling is LostHandling.CENSOR and counts.lost > 0

    def estimate(self) -> KaplanMeierFit:
        at_risk = self.sample_size
        survival = 1.0
        cumulative_events = 0
        points = [SurvivalPoint(0, 1.0, at_risk, 0, 0)]

        for day in sorted(self.days):
            counts = self.days[day]
            if not self._has_activity(counts):
                continue

            if at_risk > 0 and counts.events > 0:
                survival *= 1.0 - counts.events / at_risk
                survival = min(1.0, max(0.0, survival))
            cumulative_events += counts.events

            points.append(SurvivalPoint(day, survival, at_risk, counts.events, cumulative_events))

            at_risk -= self._removals(counts)

        return KaplanMeierFit(
            points=tuple(points),
            sample_size=self.sample_size,
            delivered_count=self.delivered_count,
            lost_count=self.lost_count,
            censored_count=self.censored_count,
        )


class KaplanMeierEstimator:
    """Product-limit estimator over Outcome Records."""

    def __init__(self, lost_handling: Optional[LostHandling | str] = None):
        self.lost_handling = LostHandling(lost_handling or settings.km_lost_handling)

    def table(self) -> SurvivalTable:
        return SurvivalTable(lost_handling=self.lost_handling)

    def fit(self, records: Iterable[Any]) -> KaplanMeierFit:
        """Fit a curve from objects exposing `observed_days` and `outcome`."""
        table = self.table()
        table.add_all(records)
        return table.estimate()


def percentile_day(points: Sequence[SurvivalPoint], p: float) -> Optional[int]:
    """First day at which at least fraction p of shipments have delivered."""
    threshold = 1.0 - p
    for point in points:
        if point.survival_probability <= threshold:
            return point.day
    return None


def interpolate_survival(points: Sequence[SurvivalPoint], day: float) -> float:
    """
    Still-in-transit probability at a fractional day.

    Linear between curve points, 1.0 before the first point and the last
    value held beyond the end of the curve.
    """
    if not points or day <= 0:
        return 1.0
    if day < points[0].day:
        return 1.0

    for lower, upper in zip(points, points[1:]):
        if lower.day <= day <= upper.day:
            span = upper.day - lower.day
            if span == 0:
                return upper.survival_probability
            ratio = (day - lower.day) / span
            return lower.survival_probability + ratio * (
                upper.survival_probability - lower.survival_probability
            )

    return points[-1].survival_probability


def delivery_probability_at_day(points: Sequence[SurvivalPoint], day: float) -> float:
    """Probability a shipment has delivered by the given day."""
    return 1.0 - interpolate_survival(points, day)
