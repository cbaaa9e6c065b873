"""Outcome Record persistence and segment scans."""

from datetime import datetime, timezone
from typing import Any, AsyncIterator, Iterable, Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from deliveryiq.db.models import DeliveryOutcome
from deliveryiq.db.repositories.base import BaseRepository
from deliveryiq.engine.outcomes import Outcome
from deliveryiq.engine.segments import ALL, SegmentKey

logger = structlog.get_logger(__name__)

# Columns never overwritten by an upsert
_IMMUTABLE_COLUMNS = frozenset({"id", "shipment_id", "created_at"})

# Rows per INSERT statement; keeps bind parameters under driver limits
UPSERT_CHUNK_SIZE = 500

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class OutcomeRepository(BaseRepository[DeliveryOutcome]):

    def __init__(self):
        super().__init__(DeliveryOutcome, cursor="id")

    async def existing_ids(self, db: AsyncSession, shipment_ids: Iterable[str]) -> set[str]:
        """Which of these shipments already have an Outcome Record."""
        ids = list(dict.fromkeys(shipment_ids))
        chunk = self.page_limit()
        found: set[str] = set()
        for start in range(0, len(ids), chunk):
            result = await db.execute(
                select(DeliveryOutcome.shipment_id).where(
                    DeliveryOutcome.shipment_id.in_(ids[start:start + chunk])
                )
            )
            found.update(result.scalars().all())
        return found

    async def bulk_upsert(self, db: AsyncSession, records: Sequence[dict[str, Any]]) -> int:
        """
        INSERT ... ON CONFLICT (shipment_id) DO UPDATE.

        Flushes but does not commit; the caller owns the transaction.
        """
        if not records:
            return 0

        dialect = db.get_bind().dialect.name
        insert = _INSERT_BY_DIALECT.get(dialect)
        if insert is None:
            raise NotImplementedError(f"bulk_upsert does not support dialect {dialect!r}")

        now = datetime.now(timezone.utc)
        rows = [{**record, "updated_at": now} for record in records]

        for start in range(0, len(rows), UPSERT_CHUNK_SIZE):
            stmt = insert(DeliveryOutcome).values(rows[start:start + UPSERT_CHUNK_SIZE])
            update_columns = {
                column.name: stmt.excluded[column.name]
                for column in DeliveryOutcome.__table__.columns
                if column.name not in _IMMUTABLE_COLUMNS
            }
            stmt = stmt.on_conflict_do_update(index_elements=["shipment_id"], set_=update_columns)
            await db.execute(stmt)

        return len(rows)

    async def iter_segment_rows(
        self,
        db: AsyncSession,
        limit: Optional[int] = None,
    ) -> AsyncIterator[Sequence[Any]]:
        """Pages of (segment key columns, observed_days, outcome) for every record."""
        stmt = select(
            DeliveryOutcome.id,
            DeliveryOutcome.carrier,
            DeliveryOutcome.carrier_service,
            DeliveryOutcome.service_bucket,
            DeliveryOutcome.zone_bucket,
            DeliveryOutcome.season_bucket,
            DeliveryOutcome.observed_days,
            DeliveryOutcome.outcome,
        )
        async for page in self.iter_pages(db, stmt=stmt, limit=limit, scalars=False):
            yield page

    async def iter_records_for_segment(
        self,
        db: AsyncSession,
        key: SegmentKey,
        limit: Optional[int] = None,
    ) -> AsyncIterator[Sequence[Any]]:
        """
        Pages of (observed_days, outcome) for one segment key.

        `ALL` in carrier or service_bucket and None in carrier_service mean no
        filter on that column, matching how roll-up keys are accumulated.
        """
        stmt = select(
            DeliveryOutcome.id,
            DeliveryOutcome.observed_days,
            DeliveryOutcome.outcome,
        ).where(
            DeliveryOutcome.zone_bucket == key.zone_bucket,
            DeliveryOutcome.season_bucket == key.season_bucket,
        )
        if key.carrier != ALL:
            stmt = stmt.where(DeliveryOutcome.carrier == key.carrier)
        if key.service_bucket != ALL:
            stmt = stmt.where(DeliveryOutcome.service_bucket == key.service_bucket)
        if key.carrier_service is not None:
            stmt = stmt.where(DeliveryOutcome.carrier_service == key.carrier_service)

        async for page in self.iter_pages(db, stmt=stmt, limit=limit, scalars=False):
            yield page

    async def fetch_censored_page(
        self,
        db: AsyncSession,
        after: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Sequence[Any]:
        """One page of (id, shipment_id, observed_days) for records still censored."""
        stmt = select(
            DeliveryOutcome.id,
            DeliveryOutcome.shipment_id,
            DeliveryOutcome.observed_days,
        ).where(
            DeliveryOutcome.outcome == Outcome.CENSORED.value
        )
        return await self.fetch_page(db, after=after, limit=limit, stmt=stmt, scalars=False)


outcome_repo = OutcomeRepository()
