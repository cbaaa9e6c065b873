"""
Delivery IQ API Schemas.

Probability results are computed on request and never stored.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from deliveryiq.engine.probability import DeliveryProbabilityResult
from deliveryiq.services.stats import DeliveryStats


class SegmentUsedResponse(BaseModel):
    """The curve segment actually used; shows when a broad fallback applied."""
    carrier: str
    carrier_service: Optional[str] = None
    service_bucket: str
    zone_bucket: str
    season_bucket: str


class PercentilesResponse(BaseModel):
    p50: Optional[int] = None
    p75: Optional[int] = None
    p90: Optional[int] = None
    p95: Optional[int] = None


class DeliveryProbabilityResponse(BaseModel):
    shipment_id: str
    delivery_probability: float = Field(ge=0.0, le=1.0)
    still_in_transit_probability: float = Field(ge=0.0, le=1.0)
    days_in_transit: float
    expected_delivery_day: Optional[int] = None
    risk_level: str  # "low" | "medium" | "high" | "critical"
    risk_factors: list[str] = Field(default_factory=list)
    confidence: str  # "high" | "medium" | "low" | "insufficient"
    sample_size: int
    segment_used: SegmentUsedResponse
    percentiles: PercentilesResponse
    summary: str
    recommended_action: str

    @classmethod
    def from_result(cls, result: DeliveryProbabilityResult) -> "DeliveryProbabilityResponse":
        segment = result.segment_used
        pct = result.percentiles
        return cls(
            shipment_id=result.shipment_id,
            delivery_probability=result.delivery_probability,
            still_in_transit_probability=result.still_in_transit_probability,
            days_in_transit=result.days_in_transit,
            expected_delivery_day=result.expected_delivery_day,
            risk_level=result.risk_level.value,
            risk_factors=[factor.value for factor in result.risk_factors],
            confidence=result.confidence.value,
            sample_size=result.sample_size,
            segment_used=SegmentUsedResponse(
                carrier=segment.carrier,
                carrier_service=segment.carrier_service,
                service_bucket=segment.service_bucket,
                zone_bucket=segment.zone_bucket,
                season_bucket=segment.season_bucket,
            ),
            percentiles=PercentilesResponse(p50=pct.p50, p75=pct.p75, p90=pct.p90, p95=pct.p95),
            summary=result.summary,
            recommended_action=result.recommended_action,
        )


class BatchProbabilityRequest(BaseModel):
    shipment_ids: list[str] = Field(min_length=1, max_length=1000)


class BatchProbabilityResponse(BaseModel):
    results: dict[str, DeliveryProbabilityResponse]
    requested: int
    estimated: int
    missing: list[str] = Field(default_factory=list)


class CarrierRateResponse(BaseModel):
    carrier: str
    total: int
    delivery_rate: float
    loss_rate: float


class HeatmapCellResponse(BaseModel):
    confidence: str
    sample_size: int


class StatsOverview(BaseModel):
    total_training_records: int
    delivery_rate: float
    loss_rate: float
    delivered_count: int
    lost_count: int
    censored_count: int
    total_curves: int
    high_confidence_curves: int
    medium_confidence_curves: int
    low_confidence_curves: int
    carriers_tracked: int
    avg_median_transit: Optional[float] = None
    last_curve_computation: Optional[datetime] = None


class DeliveryStatsResponse(BaseModel):
    """Dashboard view; every number comes from an aggregate query."""
    overview: StatsOverview
    outcomes: dict[str, int]
    curve_confidence: dict[str, int]
    carriers: list[CarrierRateResponse]
    confidence_heatmap: dict[str, dict[str, HeatmapCellResponse]]

    @classmethod
    def from_stats(cls, stats: DeliveryStats) -> "DeliveryStatsResponse":
        return cls(
            overview=StatsOverview(
                total_training_records=stats.total_outcomes,
                delivery_rate=stats.delivery_rate,
                loss_rate=stats.loss_rate,
                delivered_count=stats.delivered_count,
                lost_count=stats.lost_count,
                censored_count=stats.censored_count,
                total_curves=stats.total_curves,
                high_confidence_curves=stats.curve_confidence.get("high", 0),
                medium_confidence_curves=stats.curve_confidence.get("medium", 0),
                low_confidence_curves=stats.curve_confidence.get("low", 0),
                carriers_tracked=stats.carriers_tracked,
                avg_median_transit=stats.avg_median_days,
                last_curve_computation=stats.last_computed,
            ),
            outcomes=stats.outcomes,
            curve_confidence=stats.curve_confidence,
            carriers=[
                CarrierRateResponse(
                    carrier=rate.carrier,
                    total=rate.total,
                    delivery_rate=rate.delivery_rate,
                    loss_rate=rate.loss_rate,
                )
                for rate in stats.carriers
            ],
            confidence_heatmap={
                carrier: {
                    zone: HeatmapCellResponse(confidence=cell.confidence, sample_size=cell.sample_size)
                    for zone, cell in zones.items()
                }
                for carrier, zones in stats.confidence_heatmap.items()
            },
        )
