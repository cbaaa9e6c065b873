"""
Outcome Classifier — tracking snapshot → labeled observation.

Turns one shipment's tracking timeline (plus an optional loss claim) into a
terminal outcome (delivered / lost_*) or a censored observation for the
Kaplan-Meier fitter.

Decision order:
1. delivered event                          → delivered
2. approved / resolved Loss claim           → lost_claim
3. last activity more recent than threshold → censored (too fresh to judge)
4. > timeout days in transit + exception    → lost_exception
5. > timeout days in transit                → lost_timeout
6. otherwise                                → censored
"""

import json
import math
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from enum import StrEnum
from typing import Any, Optional

import structlog

from deliveryiq.config import settings
from deliveryiq.engine.segments import (
    get_region,
    get_season_bucket,
    get_service_bucket,
    get_week_number,
    get_zone_bucket,
)

logger = structlog.get_logger(__name__)

SECONDS_PER_DAY: float = 86400.0

EXCEPTION_PHRASES: tuple[str, ...] = (
    "exception",
    "unable to locate",
    "delivery attempt failed",
    "address issue",
)

LOSS_ISSUE_TYPE: str = "Loss"
LOSS_CONFIRMED_STATUSES: frozenset[str] = frozenset({"Credit Approved", "Resolved"})


class Outcome(StrEnum):
    DELIVERED = "delivered"
    LOST_CLAIM = "lost_claim"
    LOST_EXCEPTION = "lost_exception"
    LOST_TIMEOUT = "lost_timeout"
    CENSORED = "censored"


class OutcomeSource(StrEnum):
    EVENT_DELIVERED = "event_delivered"
    CLAIM = "claim"
    EVENT_LOGS = "event_logs"
    TIMEOUT = "timeout"


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps are stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_days(start: datetime, end: datetime) -> float:
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / SECONDS_PER_DAY


def has_exception_language(event_logs: Any) -> bool:
    """Case-insensitive scan of the serialized event log for exception wording."""
    if not event_logs or not isinstance(event_logs, list):
        return False
    text = json.dumps(event_logs, default=str).lower()
    return any(phrase in text for phrase in EXCEPTION_PHRASES)


@dataclass(frozen=True)
class ClaimStatus:
    """The most relevant support claim linked to a shipment."""
    status: str
    issue_type: str

    @property
    def is_confirmed_loss(self) -> bool:
        return self.issue_type == LOSS_ISSUE_TYPE and self.status in LOSS_CONFIRMED_STATUSES


@dataclass(frozen=True)
class TrackingSnapshot:
    """Read-only view of one shipment's tracking state."""
    shipment_id: str
    carrier: str
    carrier_service: Optional[str] = None
    zone_used: Optional[int] = None
    destination_state: Optional[str] = None
    destination_country: Optional[str] = None
    tracking_id: Optional[str] = None
    client_id: Optional[str] = None
    event_intransit: Optional[datetime] = None
    event_outfordelivery: Optional[datetime] = None
    event_delivered: Optional[datetime] = None
    event_deliveryattemptfailed: Optional[datetime] = None
    event_logs: Optional[list] = None

    @classmethod
    def from_row(cls, row: Any) -> "TrackingSnapshot":
        """Build from a `shipments` ORM row (or anything with the same attributes)."""
        return cls(
            shipment_id=row.shipment_id,
            carrier=row.carrier,
            carrier_service=row.carrier_service,
            zone_used=row.zone_used,
            destination_state=row.destination_state,
            destination_country=row.destination_country,
            tracking_id=row.tracking_id,
            client_id=row.client_id,
            event_intransit=ensure_utc(row.event_intransit),
            event_outfordelivery=ensure_utc(row.event_outfordelivery),
            event_delivered=ensure_utc(row.event_delivered),
            event_deliveryattemptfailed=ensure_utc(row.event_deliveryattemptfailed),
            event_logs=row.event_logs,
        )

    @property
    def event_count(self) -> int:
        return len(self.event_logs) if isinstance(self.event_logs, list) else 0

    def latest_activity(self) -> Optional[datetime]:
        """Latest of out-for-delivery, failed attempt and transit start."""
        stamps = [
            ensure_utc(ts)
            for ts in (self.event_outfordelivery, self.event_deliveryattemptfailed, self.event_intransit)
            if ts is not None
        ]
        return max(stamps) if stamps else None


@dataclass(frozen=True)
class OutcomeDecision:
    outcome: Outcome
    outcome_date: Optional[datetime] = None
    outcome_source: Optional[OutcomeSource] = None


@dataclass(frozen=True)
class OutcomeFeatures:
    """One Outcome Record, ready to upsert into delivery_outcomes."""
    shipment_id: str
    tracking_number: Optional[str]
    carrier: str
    carrier_service: Optional[str]
    client_id: Optional[str]

    outcome: Outcome
    outcome_date: Optional[datetime]
    outcome_source: Optional[OutcomeSource]

    zone_used: Optional[int]
    zone_bucket: str
    service_bucket: str
    season_bucket: str

    destination_state: Optional[str]
    destination_country: Optional[str]
    destination_region: Optional[str]

    transit_start_date: date
    transit_start_month: int
    transit_start_week: int

    total_transit_days: float
    days_to_out_for_delivery: Optional[float]
    days_last_mile: Optional[float]

    observed_days: float
    is_censored: bool

    has_exception: bool
    has_delivery_attempt_failed: bool
    event_count: int

    def to_record(self) -> dict[str, Any]:
        """Column dict for the delivery_outcomes table."""
        record = asdict(self)
        record["outcome"] = self.outcome.value
        record["outcome_source"] = self.outcome_source.value if self.outcome_source else None
        return record


def _round2(value: Optional[float]) -> Optional[float]:
    return None if value is None else round(value, 2)


class OutcomeClassifier:
    """
    Label shipments as delivered, lost or censored.

    Thresholds default to settings; pass overrides for tests or backfills.
    """

    def __init__(
        self,
        domestic_too_fresh_days: Optional[int] = None,
        international_too_fresh_days: Optional[int] = None,
        lost_timeout_days: Optional[int] = None,
        international_zone_floor: Optional[int] = None,
    ):
        self.domestic_too_fresh_days = (
            domestic_too_fresh_days if domestic_too_fresh_days is not None
            else settings.domestic_too_fresh_days
        )
        self.international_too_fresh_days = (
            international_too_fresh_days if international_too_fresh_days is not None
            else settings.international_too_fresh_days
        )
        self.lost_timeout_days = (
            lost_timeout_days if lost_timeout_days is not None else settings.lost_timeout_days
        )
        self.international_zone_floor = (
            international_zone_floor if international_zone_floor is not None
            else settings.international_zone_floor
        )

    def is_international(self, snapshot: TrackingSnapshot) -> bool:
        return snapshot.zone_used is not None and snapshot.zone_used > self.international_zone_floor

    def too_fresh_days(self, snapshot: TrackingSnapshot) -> int:
        if self.is_international(snapshot):
            return self.international_too_fresh_days
        return self.domestic_too_fresh_days

    def determine_outcome(
        self,
        snapshot: TrackingSnapshot,
        claim: Optional[ClaimStatus] = None,
        now: Optional[datetime] = None,
    ) -> OutcomeDecision:
        """Apply the ordered outcome rules to one snapshot."""
        if snapshot.event_delivered is not None:
            return OutcomeDecision(
                outcome=Outcome.DELIVERED,
                outcome_date=ensure_utc(snapshot.event_delivered),
                outcome_source=OutcomeSource.EVENT_DELIVERED,
            )

        if claim is not None and claim.is_confirmed_loss:
            # Claim approval date is not tracked on the ticket
            return OutcomeDecision(outcome=Outcome.LOST_CLAIM, outcome_source=OutcomeSource.CLAIM)

        if snapshot.event_intransit is None:
            return OutcomeDecision(outcome=Outcome.CENSORED)

        now = ensure_utc(now) or datetime.now(timezone.utc)
        last_activity = snapshot.latest_activity() or snapshot.event_intransit
        days_since_last_activity = math.floor(elapsed_days(last_activity, now))
        total_transit_days = math.floor(elapsed_days(snapshot.event_intransit, now))

        if days_since_last_activity < self.too_fresh_days(snapshot):
            return OutcomeDecision(outcome=Outcome.CENSORED)

        if total_transit_days > self.lost_timeout_days:
            if has_exception_language(snapshot.event_logs):
                return OutcomeDecision(outcome=Outcome.LOST_EXCEPTION, outcome_source=OutcomeSource.EVENT_LOGS)
            return OutcomeDecision(outcome=Outcome.LOST_TIMEOUT, outcome_source=OutcomeSource.TIMEOUT)

        return OutcomeDecision(outcome=Outcome.CENSORED)

    def extract_features(
        self,
        snapshot: TrackingSnapshot,
        claim: Optional[ClaimStatus] = None,
        now: Optional[datetime] = None,
    ) -> Optional[OutcomeFeatures]:
        """
        Build the Outcome Record for a shipment.

        Returns None when the shipment has no transit-start event yet.
        """
        if snapshot.event_intransit is None:
            return None

        now = ensure_utc(now) or datetime.now(timezone.utc)
        transit_start = ensure_utc(snapshot.event_intransit)
        delivered = ensure_utc(snapshot.event_delivered)
        out_for_delivery = ensure_utc(snapshot.event_outfordelivery)

        decision = self.determine_outcome(snapshot, claim, now)

        total_transit_days = elapsed_days(transit_start, delivered or now)
        days_to_ofd = elapsed_days(transit_start, out_for_delivery) if out_for_delivery else None
        days_last_mile = (
            elapsed_days(out_for_delivery, delivered) if delivered and out_for_delivery else None
        )

        if decision.outcome is Outcome.DELIVERED and delivered is not None:
            observed_days = elapsed_days(transit_start, delivered)
        else:
            observed_days = elapsed_days(transit_start, now)

        return OutcomeFeatures(
            shipment_id=snapshot.shipment_id,
            tracking_number=snapshot.tracking_id,
            carrier=snapshot.carrier,
            carrier_service=snapshot.carrier_service,
            client_id=snapshot.client_id,
            outcome=decision.outcome,
            outcome_date=decision.outcome_date,
            outcome_source=decision.outcome_source,
            zone_used=snapshot.zone_used,
            zone_bucket=get_zone_bucket(snapshot.zone_used),
            service_bucket=get_service_bucket(snapshot.carrier_service),
            season_bucket=get_season_bucket(transit_start),
            destination_state=snapshot.destination_state,
            destination_country=snapshot.destination_country,
            destination_region=get_region(snapshot.destination_state, snapshot.destination_country),
            transit_start_date=transit_start.date(),
            transit_start_month=transit_start.month,
            transit_start_week=get_week_number(transit_start),
            total_transit_days=_round2(total_transit_days),
            days_to_out_for_delivery=_round2(days_to_ofd),
            days_last_mile=_round2(days_last_mile),
            observed_days=round(max(0.0, observed_days), 2),
            is_censored=decision.outcome is Outcome.CENSORED,
            has_exception=has_exception_language(snapshot.event_logs),
            has_delivery_attempt_failed=snapshot.event_deliveryattemptfailed is not None,
            event_count=snapshot.event_count,
        )
