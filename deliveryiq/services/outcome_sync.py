"""
Outcome Sync — labels shipments into Outcome Records.

Incremental: only shipments without a record are classified. Optionally
re-evaluates records that are still censored so packages that later deliver
(or are declared lost) stop being counted as in transit.

Every page gets its own session and transaction. A failed read aborts the
scan because the cursor cannot advance; a failed write loses only its page.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deliveryiq.config import settings
from deliveryiq.db.repositories import claim_repo, outcome_repo, shipment_repo
from deliveryiq.engine.outcomes import (
    ClaimStatus,
    Outcome,
    OutcomeClassifier,
    OutcomeFeatures,
    TrackingSnapshot,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SyncReport:
    """Counters for one sync or refresh run."""
    scanned: int = 0
    written: int = 0
    extended: int = 0
    skipped: int = 0
    not_eligible: int = 0
    errors: int = 0
    aborted: bool = False


class OutcomeSyncService:
    """Classify tracking snapshots and upsert the resulting Outcome Records."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        classifier: Optional[OutcomeClassifier] = None,
        page_size: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.classifier = classifier or OutcomeClassifier()
        self.page_size = min(page_size or settings.sync_page_size, settings.store_max_rows)

    def _classify(
        self,
        shipments: Sequence[Any],
        claims: dict[str, ClaimStatus],
        now: datetime,
    ) -> tuple[list[OutcomeFeatures], int, int]:
        features: list[OutcomeFeatures] = []
        not_eligible = 0
        errors = 0
        for shipment in shipments:
            try:
                snapshot = TrackingSnapshot.from_row(shipment)
                record = self.classifier.extract_features(
                    snapshot, claims.get(snapshot.shipment_id), now
                )
            except Exception as e:
                errors += 1
                logger.error(
                    "outcome_classification_failed",
                    shipment_id=getattr(shipment, "shipment_id", None),
                    error=str(e),
                )
                continue
            if record is None:
                not_eligible += 1
            else:
                features.append(record)
        return features, not_eligible, errors

    async def sync_new_outcomes(self, now: Optional[datetime] = None) -> SyncReport:
        """Create Outcome Records for in-transit shipments that have none yet."""
        now = now or datetime.now(timezone.utc)
        scanned = written = skipped = not_eligible = errors = 0
        aborted = False
        cursor: Optional[str] = None

        logger.info("outcome_sync_started", page_size=self.page_size)
        while True:
            async with self.session_factory() as db:
                try:
                    page = await shipment_repo.fetch_in_transit_page(db, after=cursor, limit=self.page_size)
                    page_ids = [shipment.shipment_id for shipment in page]
                    existing = await outcome_repo.existing_ids(db, page_ids)
                    pending = [s for s in page if s.shipment_id not in existing]
                    claims = await claim_repo.load_claim_map(
                        db, shipment_ids=[s.shipment_id for s in pending]
                    )
                except SQLAlchemyError as e:
                    errors += 1
                    aborted = True
                    logger.error("outcome_sync_page_failed", after=cursor, error=str(e))
                    break

                if not page:
                    break

                scanned += len(page)
                skipped += len(existing)
                features, page_not_eligible, page_errors = self._classify(pending, claims, now)
                not_eligible += page_not_eligible
                errors += page_errors

                try:
                    written += await outcome_repo.bulk_upsert(db, [f.to_record() for f in features])
                    await db.commit()
                except SQLAlchemyError as e:
                    await db.rollback()
                    errors += len(features)
                    logger.error(
                        "outcome_upsert_failed",
                        after=cursor,
                        records=len(features),
                        error=str(e),
                    )

            cursor = page_ids[-1]
            if len(page) < self.page_size:
                break

        report = SyncReport(
            scanned=scanned,
            written=written,
            skipped=skipped,
            not_eligible=not_eligible,
            errors=errors,
            aborted=aborted,
        )
        logger.info("outcome_sync_completed", **asdict(report))
        return report

    async def refresh_censored(self, now: Optional[datetime] = None) -> SyncReport:
        """
        Re-classify records that are still censored.

        Records whose outcome changed are written back. Records still censored
        are written back when their observation window grew, so `observed_days`
        keeps tracking the time elapsed until `now`.
        """
        now = now or datetime.now(timezone.utc)
        scanned = written = extended = skipped = not_eligible = errors = 0
        aborted = False
        cursor: Optional[int] = None

        logger.info("censored_refresh_started", page_size=self.page_size)
        while True:
            async with self.session_factory() as db:
                try:
                    page = await outcome_repo.fetch_censored_page(db, after=cursor, limit=self.page_size)
                    shipment_ids = [row.shipment_id for row in page]
                    shipments = await shipment_repo.get_many(db, shipment_ids)
                    claims = await claim_repo.load_claim_map(db, shipment_ids=shipment_ids)
                except SQLAlchemyError as e:
                    errors += 1
                    aborted = True
                    logger.error("censored_refresh_page_failed", after=cursor, error=str(e))
                    break

                if not page:
                    break

                scanned += len(page)
                features, page_not_eligible, page_errors = self._classify(shipments, claims, now)
                not_eligible += page_not_eligible + len(page) - len(shipments)
                errors += page_errors

                stored_days = {row.shipment_id: row.observed_days for row in page}
                changed = [f for f in features if f.outcome is not Outcome.CENSORED]
                grown = [
                    f for f in features
                    if f.outcome is Outcome.CENSORED
                    and f.observed_days > stored_days.get(f.shipment_id, 0.0)
                ]
                skipped += len(features) - len(changed) - len(grown)

                try:
                    await outcome_repo.bulk_upsert(db, [f.to_record() for f in changed + grown])
                    await db.commit()
                    written += len(changed)
                    extended += len(grown)
                except SQLAlchemyError as e:
                    await db.rollback()
                    errors += len(changed) + len(grown)
                    logger.error(
                        "censored_refresh_upsert_failed",
                        after=cursor,
                        records=len(changed) + len(grown),
                        error=str(e),
                    )

            cursor = page[-1].id
            if len(page) < self.page_size:
                break

        report = SyncReport(
            scanned=scanned,
            written=written,
            extended=extended,
            skipped=skipped,
            not_eligible=not_eligible,
            errors=errors,
            aborted=aborted,
        )
        logger.info("censored_refresh_completed", **asdict(report))
        return report
