"""Shipment (tracking snapshot) reads. The table is owned upstream."""

from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from deliveryiq.db.models import Shipment
from deliveryiq.db.repositories.base import BaseRepository


class ShipmentRepository(BaseRepository[Shipment]):
    """Paged by the string primary key `shipment_id`."""

    def __init__(self):
        super().__init__(Shipment, cursor="shipment_id")

    async def fetch_in_transit_page(
        self,
        db: AsyncSession,
        after: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Sequence[Shipment]:
        """One page of shipments that have a transit-start event."""
        stmt = select(Shipment).where(Shipment.event_intransit.is_not(None))
        return await self.fetch_page(db, after=after, limit=limit, stmt=stmt)

    async def get_many(self, db: AsyncSession, shipment_ids: Iterable[str]) -> list[Shipment]:
        """Fetch shipments by id, chunked under the row cap."""
        ids = list(dict.fromkeys(shipment_ids))
        chunk = self.page_limit()
        found: list[Shipment] = []
        for start in range(0, len(ids), chunk):
            result = await db.execute(
                select(Shipment).where(Shipment.shipment_id.in_(ids[start:start + chunk]))
            )
            found.extend(result.scalars().all())
        return found


shipment_repo = ShipmentRepository()
