"""
Administrative read views over delivery_outcomes and survival_curves.

Everything here is a GROUP BY / aggregate query, so results stay exact no
matter how many rows the tables hold.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from deliveryiq.db.models import DeliveryOutcome, SurvivalCurve
from deliveryiq.engine.kaplan_meier import ConfidenceLevel
from deliveryiq.engine.outcomes import Outcome
from deliveryiq.engine.segments import ALL

logger = structlog.get_logger(__name__)

TOP_CARRIERS = 25


@dataclass(frozen=True)
class CarrierRate:
    carrier: str
    total: int
    delivered: int
    lost: int

    @property
    def delivery_rate(self) -> float:
        return round(self.delivered / self.total * 100, 2) if self.total else 0.0

    @property
    def loss_rate(self) -> float:
        return round(self.lost / self.total * 100, 2) if self.total else 0.0


@dataclass(frozen=True)
class HeatmapCell:
    confidence: str
    sample_size: int


@dataclass
class DeliveryStats:
    outcomes: dict[str, int] = field(default_factory=dict)
    carriers: list[CarrierRate] = field(default_factory=list)
    curve_confidence: dict[str, int] = field(default_factory=dict)
    total_curves: int = 0
    avg_median_days: Optional[float] = None
    last_computed: Optional[datetime] = None
    carriers_tracked: int = 0
    confidence_heatmap: dict[str, dict[str, HeatmapCell]] = field(default_factory=dict)

    @property
    def total_outcomes(self) -> int:
        return sum(self.outcomes.values())

    @property
    def delivered_count(self) -> int:
        return self.outcomes.get(Outcome.DELIVERED.value, 0)

    @property
    def lost_count(self) -> int:
        return sum(count for outcome, count in self.outcomes.items() if outcome.startswith("lost"))

    @property
    def censored_count(self) -> int:
        return self.outcomes.get(Outcome.CENSORED.value, 0)

    @property
    def delivery_rate(self) -> float:
        total = self.total_outcomes
        return round(self.delivered_count / total * 100, 2) if total else 0.0

    @property
    def loss_rate(self) -> float:
        total = self.total_outcomes
        return round(self.lost_count / total * 100, 2) if total else 0.0


async def outcome_counts(db: AsyncSession) -> dict[str, int]:
    result = await db.execute(
        select(DeliveryOutcome.outcome, func.count()).group_by(DeliveryOutcome.outcome)
    )
    counts = {outcome.value: 0 for outcome in Outcome}
    for outcome, count in result.all():
        counts[outcome] = count
    return counts


async def carrier_rates(db: AsyncSession, limit: int = TOP_CARRIERS) -> list[CarrierRate]:
    """Delivery and loss rates for the highest-volume carriers."""
    total = func.count().label("total")
    delivered = func.sum(case((DeliveryOutcome.outcome == Outcome.DELIVERED.value, 1), else_=0))
    lost = func.sum(case((DeliveryOutcome.outcome.like("lost%"), 1), else_=0))
    result = await db.execute(
        select(DeliveryOutcome.carrier, total, delivered, lost)
        .where(DeliveryOutcome.carrier != ALL)
        .group_by(DeliveryOutcome.carrier)
        .order_by(total.desc(), DeliveryOutcome.carrier)
        .limit(limit)
    )
    return [
        CarrierRate(carrier=carrier, total=total, delivered=delivered or 0, lost=lost or 0)
        for carrier, total, delivered, lost in result.all()
    ]


async def curve_confidence(db: AsyncSession) -> dict[str, int]:
    result = await db.execute(
        select(SurvivalCurve.confidence_level, func.count()).group_by(SurvivalCurve.confidence_level)
    )
    counts = {level.value: 0 for level in ConfidenceLevel}
    for level, count in result.all():
        counts[level] = count
    return counts


async def confidence_heatmap(db: AsyncSession) -> dict[str, dict[str, HeatmapCell]]:
    """carrier → zone bucket → confidence of that pair's largest curve."""
    largest = (
        select(
            SurvivalCurve.carrier,
            SurvivalCurve.zone_bucket,
            func.max(SurvivalCurve.sample_size).label("sample_size"),
        )
        .where(SurvivalCurve.carrier != ALL)
        .group_by(SurvivalCurve.carrier, SurvivalCurve.zone_bucket)
        .subquery()
    )
    result = await db.execute(
        select(
            SurvivalCurve.carrier,
            SurvivalCurve.zone_bucket,
            SurvivalCurve.confidence_level,
            SurvivalCurve.sample_size,
        )
        .join(
            largest,
            and_(
                SurvivalCurve.carrier == largest.c.carrier,
                SurvivalCurve.zone_bucket == largest.c.zone_bucket,
                SurvivalCurve.sample_size == largest.c.sample_size,
            ),
        )
        .order_by(SurvivalCurve.carrier, SurvivalCurve.zone_bucket, SurvivalCurve.id)
    )
    heatmap: dict[str, dict[str, HeatmapCell]] = {}
    for carrier, zone_bucket, confidence, sample_size in result.all():
        heatmap.setdefault(carrier, {}).setdefault(
            zone_bucket, HeatmapCell(confidence=confidence, sample_size=sample_size)
        )
    return heatmap


async def get_delivery_stats(db: AsyncSession) -> DeliveryStats:
    """Dashboard snapshot of training data and curve coverage."""
    curve_summary = await db.execute(
        select(
            func.count(SurvivalCurve.id),
            func.avg(SurvivalCurve.median_days),
            func.max(SurvivalCurve.computed_at),
            func.count(func.distinct(case((SurvivalCurve.carrier != ALL, SurvivalCurve.carrier)))),
        )
    )
    total_curves, avg_median, last_computed, carriers_tracked = curve_summary.one()

    stats = DeliveryStats(
        outcomes=await outcome_counts(db),
        carriers=await carrier_rates(db),
        curve_confidence=await curve_confidence(db),
        total_curves=total_curves or 0,
        avg_median_days=round(float(avg_median), 2) if avg_median is not None else None,
        last_computed=last_computed,
        carriers_tracked=carriers_tracked or 0,
        confidence_heatmap=await confidence_heatmap(db),
    )
    logger.debug("delivery_stats_computed", outcomes=stats.total_outcomes, curves=stats.total_curves)
    return stats
