"""
Survival Curve Builder — recomputes every stored curve.

One paged scan over delivery_outcomes feeds a streaming survival table for
each record's exact segment and for each of its roll-up tiers. Keys produced
by more than one tier (an exact segment whose service name is NULL equals its
carrier + service-bucket roll-up) share a single table, so no record is
counted twice. Each curve is then replaced in its own transaction.
"""

from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deliveryiq.config import settings
from deliveryiq.db.repositories import curve_repo, outcome_repo
from deliveryiq.engine.curves import FittedCurve, SurvivalCurveFitter, tier_of
from deliveryiq.engine.kaplan_meier import SurvivalTable
from deliveryiq.engine.segments import ROLLUP_RULES, SegmentKey, rollup

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CurveBuildReport:
    records: int = 0
    curves_written: int = 0
    errors: int = 0
    aborted: bool = False
    by_tier: dict[str, int] = field(default_factory=dict)


def segment_keys(key: SegmentKey) -> set[SegmentKey]:
    """The exact key and every roll-up of it, deduplicated."""
    return {rollup(key, level) for level in range(len(ROLLUP_RULES) + 1)}


class SurvivalCurveService:
    """Fit and persist survival curves for all segments and fallback tiers."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fitter: Optional[SurvivalCurveFitter] = None,
        page_size: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.fitter = fitter or SurvivalCurveFitter()
        self.page_size = page_size or settings.store_max_rows

    async def collect_tables(self) -> tuple[dict[SegmentKey, SurvivalTable], int]:
        """Scan all Outcome Records once into per-key survival tables."""
        tables: dict[SegmentKey, SurvivalTable] = {}
        records = 0
        async with self.session_factory() as db:
            async for page in outcome_repo.iter_segment_rows(db, limit=self.page_size):
                for row in page:
                    exact = SegmentKey(
                        carrier=row.carrier,
                        carrier_service=row.carrier_service,
                        service_bucket=row.service_bucket,
                        zone_bucket=row.zone_bucket,
                        season_bucket=row.season_bucket,
                    )
                    for key in segment_keys(exact):
                        table = tables.get(key)
                        if table is None:
                            table = tables[key] = self.fitter.table()
                        table.add(row.observed_days, row.outcome)
                    records += 1
        return tables, records

    async def recompute_all(self) -> CurveBuildReport:
        """Refit every segment and tier from the current Outcome Records."""
        logger.info("curve_recompute_started")
        try:
            tables, records = await self.collect_tables()
        except SQLAlchemyError as e:
            logger.error("curve_scan_failed", error=str(e))
            return CurveBuildReport(errors=1, aborted=True)

        written = 0
        errors = 0
        by_tier: Counter[str] = Counter()
        for key in sorted(tables, key=SegmentKey.label):
            curve = self.fitter.from_table(key, tables[key])
            if await self._replace(curve):
                written += 1
                by_tier[tier_of(curve)] += 1
            else:
                errors += 1

        report = CurveBuildReport(
            records=records,
            curves_written=written,
            errors=errors,
            by_tier=dict(by_tier),
        )
        logger.info("curve_recompute_completed", **asdict(report))
        return report

    async def recompute_segment(self, key: SegmentKey) -> Optional[FittedCurve]:
        """Refit one key from its matching records. None when empty or on failure."""
        table = self.fitter.table()
        try:
            async with self.session_factory() as db:
                async for page in outcome_repo.iter_records_for_segment(db, key, limit=self.page_size):
                    table.add_all(page)
        except SQLAlchemyError as e:
            logger.error("curve_segment_scan_failed", segment=key.label(), error=str(e))
            return None

        if table.sample_size == 0:
            return None
        curve = self.fitter.from_table(key, table)
        return curve if await self._replace(curve) else None

    async def _replace(self, curve: FittedCurve) -> bool:
        async with self.session_factory() as db:
            try:
                await curve_repo.replace(db, curve)
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error("survival_curve_replace_failed", segment=curve.key.label(), error=str(e))
                return False
        logger.debug(
            "survival_curve_replaced",
            segment=curve.key.label(),
            sample_size=curve.sample_size,
            confidence=curve.confidence_level,
        )
        return True
