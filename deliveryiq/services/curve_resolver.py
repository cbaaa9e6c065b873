"""
Fallback resolver — picks the most specific curve with enough data.

Lookup order (zone is always held fixed, service tier never mixed):
    1. carrier + exact service + zone + season
    2. carrier + exact service + zone            (any season)
    3. carrier + service bucket + zone           (any service name)
    4. all carriers + service bucket + zone
    5. all carriers + all services + zone
Levels 2-5 prefer the requested season, then the largest sample.
"""

from dataclasses import dataclass
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from deliveryiq.config import settings
from deliveryiq.db.models import SurvivalCurve
from deliveryiq.db.repositories import curve_repo
from deliveryiq.engine.probability import LookupParams
from deliveryiq.engine.segments import ALL

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CurveMatch:
    curve: SurvivalCurve
    level: int


class CurveResolver:

    def __init__(self, min_sample_size: Optional[int] = None):
        self.min_sample_size = (
            min_sample_size if min_sample_size is not None else settings.min_curve_sample_size
        )

    def _levels(self, params: LookupParams) -> list[dict[str, Any]]:
        levels: list[dict[str, Any]] = []
        if params.carrier_service is not None:
            levels.append(dict(
                carrier=params.carrier,
                carrier_service=params.carrier_service,
                service_bucket=params.service_bucket,
                season_bucket=params.season_bucket,
            ))
            levels.append(dict(
                carrier=params.carrier,
                carrier_service=params.carrier_service,
                service_bucket=params.service_bucket,
            ))
        else:
            levels.extend([None, None])
        levels.append(dict(carrier=params.carrier, carrier_service=None, service_bucket=params.service_bucket))
        levels.append(dict(carrier=ALL, carrier_service=None, service_bucket=params.service_bucket))
        levels.append(dict(carrier=ALL, carrier_service=None, service_bucket=ALL))
        return levels

    async def resolve_match(self, db: AsyncSession, params: LookupParams) -> Optional[CurveMatch]:
        for level, filters in enumerate(self._levels(params), start=1):
            if filters is None:
                continue
            curve = await curve_repo.find_best(
                db,
                zone_bucket=params.zone_bucket,
                min_sample_size=self.min_sample_size,
                prefer_season=params.season_bucket,
                **filters,
            )
            if curve is not None:
                if level > 1:
                    logger.debug(
                        "curve_fallback_used",
                        level=level,
                        carrier=params.carrier,
                        service_bucket=params.service_bucket,
                        zone_bucket=params.zone_bucket,
                    )
                return CurveMatch(curve=curve, level=level)

        logger.debug(
            "curve_not_found",
            carrier=params.carrier,
            service_bucket=params.service_bucket,
            zone_bucket=params.zone_bucket,
        )
        return None

    async def resolve(self, db: AsyncSession, params: LookupParams) -> Optional[SurvivalCurve]:
        match = await self.resolve_match(db, params)
        return match.curve if match else None
