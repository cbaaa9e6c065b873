"""Claims lookup over support tickets."""

from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from deliveryiq.db.models import CareTicket
from deliveryiq.db.repositories.base import BaseRepository
from deliveryiq.engine.outcomes import LOSS_ISSUE_TYPE, ClaimStatus, ensure_utc

logger = structlog.get_logger(__name__)


class ClaimRepository(BaseRepository[CareTicket]):

    def __init__(self):
        super().__init__(CareTicket, cursor="id")

    async def load_claim_map(
        self,
        db: AsyncSession,
        shipment_ids: Optional[list[str]] = None,
        limit: Optional[int] = None,
    ) -> dict[str, ClaimStatus]:
        """
        shipment_id → most relevant claim.

        A Loss claim always beats a non-loss claim; among Loss claims the most
        recently created wins. Tickets without a shipment are ignored.
        """
        stmt = select(CareTicket).where(CareTicket.shipment_id.is_not(None))
        if shipment_ids is not None:
            if not shipment_ids:
                return {}
            stmt = stmt.where(CareTicket.shipment_id.in_(shipment_ids))

        best: dict[str, CareTicket] = {}
        async for page in self.iter_pages(db, stmt=stmt, limit=limit):
            for ticket in page:
                current = best.get(ticket.shipment_id)
                if current is None or _outranks(ticket, current):
                    best[ticket.shipment_id] = ticket

        claims = {
            shipment_id: ClaimStatus(status=ticket.status, issue_type=ticket.issue_type)
            for shipment_id, ticket in best.items()
        }
        logger.debug("claim_map_loaded", claims=len(claims))
        return claims


def _outranks(candidate: CareTicket, current: CareTicket) -> bool:
    candidate_loss = candidate.issue_type == LOSS_ISSUE_TYPE
    current_loss = current.issue_type == LOSS_ISSUE_TYPE
    if candidate_loss != current_loss:
        return candidate_loss
    if not candidate_loss:
        return False
    candidate_at = ensure_utc(candidate.created_at)
    current_at = ensure_utc(current.created_at)
    if candidate_at is None or current_at is None:
        return current_at is None and candidate_at is not None
    return candidate_at > current_at


claim_repo = ClaimRepository()
