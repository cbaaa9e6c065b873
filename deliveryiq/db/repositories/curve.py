"""Survival curve store: replace by segment key, best-match lookups."""

from typing import Any, Optional

import structlog
from sqlalchemy import case, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from deliveryiq.db.models import SurvivalCurve
from deliveryiq.db.repositories.base import BaseRepository
from deliveryiq.engine.curves import FittedCurve
from deliveryiq.engine.segments import SegmentKey

logger = structlog.get_logger(__name__)

# Marker for "do not filter on this column"
ANY = object()


def _key_filter(key: SegmentKey) -> list[Any]:
    service_clause = (
        SurvivalCurve.carrier_service.is_(None)
        if key.carrier_service is None
        else SurvivalCurve.carrier_service == key.carrier_service
    )
    return [
        SurvivalCurve.carrier == key.carrier,
        service_clause,
        SurvivalCurve.service_bucket == key.service_bucket,
        SurvivalCurve.zone_bucket == key.zone_bucket,
        SurvivalCurve.season_bucket == key.season_bucket,
    ]


class CurveRepository(BaseRepository[SurvivalCurve]):

    def __init__(self):
        super().__init__(SurvivalCurve, cursor="id")

    async def replace(self, db: AsyncSession, curve: FittedCurve) -> SurvivalCurve:
        """
        Delete every curve with this key, then insert the new one.

        carrier_service may be NULL, which a unique constraint cannot cover,
        so this is not an upsert. Runs in the caller's transaction.
        """
        await db.execute(delete(SurvivalCurve).where(*_key_filter(curve.key)))
        row = SurvivalCurve(**curve.to_row())
        db.add(row)
        await db.flush()
        return row

    async def get_by_key(self, db: AsyncSession, key: SegmentKey) -> Optional[SurvivalCurve]:
        result = await db.execute(
            select(SurvivalCurve).where(*_key_filter(key)).order_by(SurvivalCurve.id.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def find_best(
        self,
        db: AsyncSession,
        *,
        carrier: str,
        zone_bucket: str,
        min_sample_size: int,
        carrier_service: Any = ANY,
        service_bucket: Any = ANY,
        season_bucket: Any = ANY,
        prefer_season: Optional[str] = None,
    ) -> Optional[SurvivalCurve]:
        """
        Largest qualifying curve matching the given columns.

        Pass ANY (the default) to leave a column unfiltered and None to
        require NULL. With `prefer_season`, curves of that season rank first.
        """
        stmt = select(SurvivalCurve).where(
            SurvivalCurve.carrier == carrier,
            SurvivalCurve.zone_bucket == zone_bucket,
            SurvivalCurve.sample_size >= min_sample_size,
        )
        if carrier_service is None:
            stmt = stmt.where(SurvivalCurve.carrier_service.is_(None))
        elif carrier_service is not ANY:
            stmt = stmt.where(SurvivalCurve.carrier_service == carrier_service)
        if service_bucket is not ANY:
            stmt = stmt.where(SurvivalCurve.service_bucket == service_bucket)
        if season_bucket is not ANY:
            stmt = stmt.where(SurvivalCurve.season_bucket == season_bucket)

        ordering = []
        if prefer_season is not None:
            ordering.append(case((SurvivalCurve.season_bucket == prefer_season, 0), else_=1))
        ordering.extend([SurvivalCurve.sample_size.desc(), SurvivalCurve.id.desc()])

        result = await db.execute(stmt.order_by(*ordering).limit(1))
        return result.scalar_one_or_none()

    async def list_all(self, db: AsyncSession, limit: Optional[int] = None) -> list[SurvivalCurve]:
        """Every stored curve, read page by page."""
        curves: list[SurvivalCurve] = []
        async for page in self.iter_pages(db, limit=limit):
            curves.extend(page)
        return curves


curve_repo = CurveRepository()
