"""
Survival curve fitting per segment key.

Wraps the Kaplan-Meier pass with the bookkeeping a stored curve needs:
outcome counts, percentile days and a confidence label.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from deliveryiq.engine.kaplan_meier import (
    KaplanMeierEstimator,
    KaplanMeierFit,
    LostHandling,
    SurvivalPoint,
    SurvivalTable,
    confidence_level,
)
from deliveryiq.engine.segments import ALL, TIER_NAMES, SegmentKey


@dataclass(frozen=True)
class FittedCurve:
    """A computed curve, shaped like a `survival_curves` row."""
    carrier: str
    carrier_service: Optional[str]
    service_bucket: str
    zone_bucket: str
    season_bucket: str
    curve_data: list[dict[str, Any]]
    sample_size: int
    delivered_count: int
    lost_count: int
    censored_count: int
    median_days: Optional[int]
    p75_days: Optional[int]
    p90_days: Optional[int]
    p95_days: Optional[int]
    confidence_level: str
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> SegmentKey:
        return SegmentKey(
            carrier=self.carrier,
            carrier_service=self.carrier_service,
            service_bucket=self.service_bucket,
            zone_bucket=self.zone_bucket,
            season_bucket=self.season_bucket,
        )

    @property
    def points(self) -> list[SurvivalPoint]:
        return curve_points(self)

    def to_row(self) -> dict[str, Any]:
        return {
            "carrier": self.carrier,
            "carrier_service": self.carrier_service,
            "service_bucket": self.service_bucket,
            "zone_bucket": self.zone_bucket,
            "season_bucket": self.season_bucket,
            "curve_data": self.curve_data,
            "sample_size": self.sample_size,
            "delivered_count": self.delivered_count,
            "lost_count": self.lost_count,
            "censored_count": self.censored_count,
            "median_days": self.median_days,
            "p75_days": self.p75_days,
            "p90_days": self.p90_days,
            "p95_days": self.p95_days,
            "confidence_level": self.confidence_level,
            "computed_at": self.computed_at,
        }


def curve_points(curve: Any) -> list[SurvivalPoint]:
    """Parse the stored `curve_data` of a curve row or FittedCurve."""
    return [SurvivalPoint.from_dict(point) for point in (curve.curve_data or [])]


def tier_of(curve: Any) -> str:
    """Name of the fallback tier a stored curve belongs to."""
    if curve.carrier == ALL:
        return TIER_NAMES[3] if curve.service_bucket == ALL else TIER_NAMES[2]
    if curve.carrier_service is None:
        return TIER_NAMES[1]
    return TIER_NAMES[0]


class SurvivalCurveFitter:
    """Fit a FittedCurve for a segment key."""

    def __init__(
        self,
        lost_handling: Optional[LostHandling | str] = None,
        confidence_thresholds: Optional[tuple[int, int, int]] = None,
    ):
        self.estimator = KaplanMeierEstimator(lost_handling)
        self.confidence_thresholds = confidence_thresholds

    def table(self) -> SurvivalTable:
        return self.estimator.table()

    def fit(self, key: SegmentKey, records: Iterable[Any]) -> FittedCurve:
        return self.from_fit(key, self.estimator.fit(records))

    def from_table(self, key: SegmentKey, table: SurvivalTable) -> FittedCurve:
        return self.from_fit(key, table.estimate())

    def from_fit(
        self,
        key: SegmentKey,
        km: KaplanMeierFit,
        computed_at: Optional[datetime] = None,
    ) -> FittedCurve:
        high, medium, low = self.confidence_thresholds or (None, None, None)
        percentiles = km.percentiles()
        return FittedCurve(
            carrier=key.carrier,
            carrier_service=key.carrier_service,
            service_bucket=key.service_bucket,
            zone_bucket=key.zone_bucket,
            season_bucket=key.season_bucket,
            curve_data=[point.to_dict() for point in km.points],
            sample_size=km.sample_size,
            delivered_count=km.delivered_count,
            lost_count=km.lost_count,
            censored_count=km.censored_count,
            median_days=percentiles["median_days"],
            p75_days=percentiles["p75_days"],
            p90_days=percentiles["p90_days"],
            p95_days=percentiles["p95_days"],
            confidence_level=confidence_level(km.sample_size, high, medium, low).value,
            computed_at=computed_at or datetime.now(timezone.utc),
        )
