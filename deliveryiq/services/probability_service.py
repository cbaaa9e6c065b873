"""Loads snapshots and curves, then runs the probability estimator."""

from datetime import datetime, timezone
from typing import Iterable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from deliveryiq.db.models import SurvivalCurve
from deliveryiq.db.repositories import shipment_repo
from deliveryiq.engine.outcomes import TrackingSnapshot
from deliveryiq.engine.probability import (
    DeliveryProbabilityEstimator,
    DeliveryProbabilityResult,
    LookupParams,
    segment_for,
)
from deliveryiq.services.curve_resolver import CurveResolver

logger = structlog.get_logger(__name__)


class ProbabilityService:
    """Read-only: never writes curves or outcomes."""

    def __init__(
        self,
        resolver: Optional[CurveResolver] = None,
        estimator: Optional[DeliveryProbabilityEstimator] = None,
    ):
        self.resolver = resolver or CurveResolver()
        self.estimator = estimator or DeliveryProbabilityEstimator()

    async def for_snapshot(
        self,
        db: AsyncSession,
        snapshot: TrackingSnapshot,
        now: Optional[datetime] = None,
        curve_cache: Optional[dict[LookupParams, Optional[SurvivalCurve]]] = None,
    ) -> Optional[DeliveryProbabilityResult]:
        curve = None
        params = segment_for(snapshot)
        if snapshot.event_delivered is None and params is not None:
            if curve_cache is not None and params in curve_cache:
                curve = curve_cache[params]
            else:
                curve = await self.resolver.resolve(db, params)
                if curve_cache is not None:
                    curve_cache[params] = curve
        return self.estimator.estimate(snapshot, curve, now)

    async def for_shipment(
        self,
        db: AsyncSession,
        shipment_id: str,
        now: Optional[datetime] = None,
    ) -> tuple[bool, Optional[DeliveryProbabilityResult]]:
        """
        Estimate one shipment.

        Returns (found, result): found is False for an unknown shipment and
        result is None for a known shipment with nothing to estimate.
        """
        shipment = await shipment_repo.get(db, shipment_id)
        if shipment is None:
            return False, None
        return True, await self.for_snapshot(db, TrackingSnapshot.from_row(shipment), now)

    async def for_shipments(
        self,
        db: AsyncSession,
        shipment_ids: Iterable[str],
        now: Optional[datetime] = None,
    ) -> dict[str, DeliveryProbabilityResult]:
        """
        Estimate a batch; unknown or ineligible shipments are left out.

        Shipments in the same segment share one curve lookup.
        """
        now = now or datetime.now(timezone.utc)
        shipments = await shipment_repo.get_many(db, shipment_ids)
        cache: dict[LookupParams, Optional[SurvivalCurve]] = {}
        results: dict[str, DeliveryProbabilityResult] = {}
        for shipment in shipments:
            result = await self.for_snapshot(db, TrackingSnapshot.from_row(shipment), now, cache)
            if result is not None:
                results[shipment.shipment_id] = result
        logger.debug("batch_probabilities_computed", requested=len(shipments), estimated=len(results))
        return results
