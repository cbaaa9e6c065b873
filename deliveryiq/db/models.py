"""
Delivery IQ SQLAlchemy Models.

Uses compatibility types for SQLite (dev) + PostgreSQL (prod).

Ownership:
    shipments, care_tickets      — written upstream (tracking sync, support desk); read-only here
    delivery_outcomes            — written by the outcome sync
    survival_curves              — written by the curve builder only
"""

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from deliveryiq.db.compat import JSONType
from deliveryiq.db.engine import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────────────────────
# Upstream inputs
# ──────────────────────────────────────────────────────────────────────────────


class Shipment(Base):
    """Tracking snapshot, normalized upstream from carrier feeds."""

    __tablename__ = "shipments"
    __table_args__ = (
        Index("ix_shipments_event_intransit", "event_intransit"),
    )

    shipment_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tracking_id: Mapped[Optional[str]] = mapped_column(String(100))
    carrier: Mapped[str] = mapped_column(String(100), nullable=False)
    carrier_service: Mapped[Optional[str]] = mapped_column(String(255))
    client_id: Mapped[Optional[str]] = mapped_column(String(64))
    zone_used: Mapped[Optional[int]] = mapped_column(Integer)
    destination_state: Mapped[Optional[str]] = mapped_column(String(20))
    destination_country: Mapped[Optional[str]] = mapped_column(String(5))

    event_intransit: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    event_outfordelivery: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    event_delivered: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    event_deliveryattemptfailed: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    event_logs: Mapped[Optional[list]] = mapped_column(JSONType())


class CareTicket(Base):
    """Support ticket; loss claims decide the `lost_claim` outcome."""

    __tablename__ = "care_tickets"
    __table_args__ = (
        Index("ix_care_tickets_shipment_id", "shipment_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shipment_id: Mapped[Optional[str]] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    issue_type: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


# ──────────────────────────────────────────────────────────────────────────────
# Owned tables
# ──────────────────────────────────────────────────────────────────────────────


class DeliveryOutcome(Base):
    """One labeled (terminal or censored) observation per shipment."""

    __tablename__ = "delivery_outcomes"
    __table_args__ = (
        Index("ix_delivery_outcomes_segment", "carrier", "service_bucket", "zone_bucket", "season_bucket"),
        Index("ix_delivery_outcomes_outcome", "outcome"),
        CheckConstraint("(outcome = 'censored') = is_censored", name="ck_delivery_outcomes_censored"),
        CheckConstraint("observed_days >= 0", name="ck_delivery_outcomes_observed_days"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shipment_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100))
    carrier: Mapped[str] = mapped_column(String(100), nullable=False)
    carrier_service: Mapped[Optional[str]] = mapped_column(String(255))
    client_id: Mapped[Optional[str]] = mapped_column(String(64))

    # Outcome
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    outcome_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    outcome_source: Mapped[Optional[str]] = mapped_column(String(30))

    # Segment
    zone_used: Mapped[Optional[int]] = mapped_column(Integer)
    zone_bucket: Mapped[str] = mapped_column(String(20), nullable=False)
    service_bucket: Mapped[str] = mapped_column(String(20), nullable=False)
    season_bucket: Mapped[str] = mapped_column(String(20), nullable=False)

    # Destination
    destination_state: Mapped[Optional[str]] = mapped_column(String(20))
    destination_country: Mapped[Optional[str]] = mapped_column(String(5))
    destination_region: Mapped[Optional[str]] = mapped_column(String(20))

    # Seasonality
    transit_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    transit_start_month: Mapped[int] = mapped_column(Integer, nullable=False)
    transit_start_week: Mapped[int] = mapped_column(Integer, nullable=False)

    # Time-in-state
    total_transit_days: Mapped[Optional[float]] = mapped_column(Float)
    days_to_out_for_delivery: Mapped[Optional[float]] = mapped_column(Float)
    days_last_mile: Mapped[Optional[float]] = mapped_column(Float)

    # Kaplan-Meier input
    observed_days: Mapped[float] = mapped_column(Float, nullable=False)
    is_censored: Mapped[bool] = mapped_column(Boolean, nullable=False)

    # Risk flags
    has_exception: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_delivery_attempt_failed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    event_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class SurvivalCurve(Base):
    """
    Kaplan-Meier curve for one segment key.

    No UNIQUE constraint on the key: carrier_service is nullable and NULL != NULL,
    so writers replace by key (delete-then-insert) instead of upserting.
    """

    __tablename__ = "survival_curves"
    __table_args__ = (
        Index("ix_survival_curves_key", "carrier", "service_bucket", "zone_bucket", "season_bucket"),
        Index("ix_survival_curves_zone", "zone_bucket"),
        CheckConstraint(
            "delivered_count + lost_count + censored_count = sample_size",
            name="ck_survival_curves_counts",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    carrier: Mapped[str] = mapped_column(String(100), nullable=False)
    carrier_service: Mapped[Optional[str]] = mapped_column(String(255))
    service_bucket: Mapped[str] = mapped_column(String(20), nullable=False)
    zone_bucket: Mapped[str] = mapped_column(String(20), nullable=False)
    season_bucket: Mapped[str] = mapped_column(String(20), nullable=False)

    curve_data: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    sample_size: Mapped[int] = mapped_column(Integer, nullable=False)
    delivered_count: Mapped[int] = mapped_column(Integer, nullable=False)
    lost_count: Mapped[int] = mapped_column(Integer, nullable=False)
    censored_count: Mapped[int] = mapped_column(Integer, nullable=False)

    median_days: Mapped[Optional[int]] = mapped_column(Integer)
    p75_days: Mapped[Optional[int]] = mapped_column(Integer)
    p90_days: Mapped[Optional[int]] = mapped_column(Integer)
    p95_days: Mapped[Optional[int]] = mapped_column(Integer)
    confidence_level: Mapped[str] = mapped_column(String(20), nullable=False)

    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
