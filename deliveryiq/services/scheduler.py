"""
Delivery IQ Scheduler — periodic batch trigger for the engine.

Runs in its own process (see deliveryiq.scheduler_main), not inside the API.

One job, every `recompute_interval_hours`, in this order:
1. Incremental outcome sync (new shipments only)
2. Censored re-evaluation (when enabled)
3. Full survival curve recomputation, after the sync so it sees fresh records
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deliveryiq.config import settings
from deliveryiq.services.curve_builder import CurveBuildReport, SurvivalCurveService
from deliveryiq.services.outcome_sync import OutcomeSyncService, SyncReport

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CycleReport:
    sync: SyncReport
    refresh: Optional[SyncReport]
    curves: CurveBuildReport


class DeliveryIQScheduler:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sync_service: Optional[OutcomeSyncService] = None,
        curve_service: Optional[SurvivalCurveService] = None,
        interval_hours: Optional[int] = None,
        reevaluate_censored: Optional[bool] = None,
    ):
        self.session_factory = session_factory
        self.sync_service = sync_service or OutcomeSyncService(session_factory)
        self.curve_service = curve_service or SurvivalCurveService(session_factory)
        self.interval_hours = interval_hours or settings.recompute_interval_hours
        self.reevaluate_censored = (
            settings.reevaluate_censored if reevaluate_censored is None else reevaluate_censored
        )
        self.scheduler = AsyncIOScheduler()

    def start(self):
        """Register the recompute job and start the scheduler."""
        self.scheduler.add_job(
            self.run_cycle,
            IntervalTrigger(hours=self.interval_hours),
            id="delivery_iq_recompute",
            max_instances=1,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("delivery_iq_scheduler_started", interval_hours=self.interval_hours)

    def stop(self):
        """Gracefully stop the scheduler."""
        self.scheduler.shutdown(wait=True)
        logger.info("delivery_iq_scheduler_stopped")

    async def run_cycle(self) -> CycleReport:
        """Sync outcomes, optionally refresh censored ones, then rebuild curves."""
        logger.info("delivery_iq_cycle_started")

        sync_report = await self.sync_service.sync_new_outcomes()
        refresh_report = None
        if self.reevaluate_censored:
            refresh_report = await self.sync_service.refresh_censored()
        curve_report = await self.curve_service.recompute_all()

        logger.info(
            "delivery_iq_cycle_completed",
            outcomes_written=sync_report.written,
            outcomes_refreshed=refresh_report.written if refresh_report else 0,
            censored_extended=refresh_report.extended if refresh_report else 0,
            curves_written=curve_report.curves_written,
            errors=sync_report.errors + (refresh_report.errors if refresh_report else 0) + curve_report.errors,
        )
        return CycleReport(sync=sync_report, refresh=refresh_report, curves=curve_report)
