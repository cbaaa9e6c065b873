"""
Segment Classifier.

Maps raw shipment attributes to the categorical buckets that define a
traffic segment (carrier × service tier × shipping zone × season), and
defines the roll-up rules used to build broader fallback segments.
"""

import re
from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import StrEnum
from typing import Optional, Union

# Sentinel for a rolled-up (ignored) segment dimension
ALL: str = "all"

INTERNATIONAL: str = "international"

# Zone 5 carries by far the most volume, so unknown zones land there
DEFAULT_ZONE_BUCKET: str = "zone_5"

MAX_DOMESTIC_ZONE: int = 10


class ServiceBucket(StrEnum):
    EXPRESS = "express"
    TWO_DAY = "2day"
    PREMIUM = "premium"
    GROUND = "ground"


class SeasonBucket(StrEnum):
    PEAK = "peak"
    NORMAL = "normal"


PEAK_MONTHS: frozenset[int] = frozenset({11, 12, 1})

# Evaluated in order; first match wins
SERVICE_PATTERNS: tuple[tuple[ServiceBucket, tuple[str, ...]], ...] = (
    (ServiceBucket.EXPRESS, ("overnight", "priority overnight", "next day")),
    (ServiceBucket.TWO_DAY, ("2day", "2 day")),
    (ServiceBucket.PREMIUM, ("premium",)),
    (ServiceBucket.GROUND, ("ground", "parcel", "standard", "economy", "advantage")),
)

REGION_STATES: dict[str, frozenset[str]] = {
    "west_coast": frozenset({"CA", "OR", "WA", "NV", "AZ"}),
    "mountain": frozenset({"CO", "UT", "NM", "MT", "ID", "WY"}),
    "midwest": frozenset({
        "IL", "OH", "MI", "IN", "WI", "MN", "IA", "MO", "ND", "SD", "NE", "KS",
    }),
    "south": frozenset({
        "TX", "FL", "GA", "NC", "VA", "TN", "AL", "SC", "LA", "KY", "OK", "AR", "MS", "WV",
    }),
    "northeast": frozenset({
        "NY", "PA", "NJ", "MA", "CT", "MD", "DC", "DE", "NH", "VT", "ME", "RI",
    }),
    "remote": frozenset({"AK", "HI"}),
}

_ZONE_BUCKET_RE = re.compile(r"^zone_(\d+)$")


def get_zone_bucket(zone: Optional[int]) -> str:
    """
    Convert a numeric shipping zone to its bucket.

    Domestic zones 1-10 each keep their own bucket (each has enough volume
    for its own curve); everything else is pooled as international.
    """
    if zone is None:
        return DEFAULT_ZONE_BUCKET
    if 1 <= zone <= MAX_DOMESTIC_ZONE:
        return f"zone_{zone}"
    return INTERNATIONAL


def get_adjacent_zone_buckets(zone_bucket: str) -> list[str]:
    """Neighbouring domestic zone buckets (zone_n-1, zone_n+1); empty for international."""
    match = _ZONE_BUCKET_RE.match(zone_bucket)
    if not match:
        return []

    zone = int(match.group(1))
    adjacent: list[str] = []
    if zone > 1:
        adjacent.append(f"zone_{zone - 1}")
    if zone < MAX_DOMESTIC_ZONE:
        adjacent.append(f"zone_{zone + 1}")
    return adjacent


def get_service_bucket(carrier_service: Optional[str]) -> str:
    """Case-insensitive substring match of the carrier's service name; defaults to ground."""
    service = (carrier_service or "").lower()
    for bucket, needles in SERVICE_PATTERNS:
        if any(needle in service for needle in needles):
            return bucket.value
    return ServiceBucket.GROUND.value


def get_season_bucket(when: Union[date, datetime]) -> str:
    """November through January is peak; the rest of the year is normal."""
    if when.month in PEAK_MONTHS:
        return SeasonBucket.PEAK.value
    return SeasonBucket.NORMAL.value


def get_week_number(when: Union[date, datetime]) -> int:
    """ISO-8601 week number."""
    return when.isocalendar()[1]


def get_region(state: Optional[str], country: Optional[str]) -> Optional[str]:
    """US region for a destination state; non-US countries are `international`."""
    if country and country.upper() != "US":
        return INTERNATIONAL
    if not state:
        return None

    state_upper = state.upper()
    for region, states in REGION_STATES.items():
        if state_upper in states:
            return region
    return None


# ── Segment keys & roll-up tiers ──────────────────────────────────────────


@dataclass(frozen=True)
class SegmentKey:
    """Identity of one survival curve. carrier_service=None means 'any service name'."""
    carrier: str
    carrier_service: Optional[str]
    service_bucket: str
    zone_bucket: str
    season_bucket: str

    def label(self) -> str:
        return "|".join([
            self.carrier,
            self.carrier_service or "",
            self.service_bucket,
            self.zone_bucket,
            self.season_bucket,
        ])


# Applied cumulatively: tier N drops the first N dimensions
ROLLUP_RULES: tuple[tuple[str, Optional[str]], ...] = (
    ("carrier_service", None),
    ("carrier", ALL),
    ("service_bucket", ALL),
)

TIER_NAMES: tuple[str, ...] = (
    "exact",
    "carrier_service_bucket",
    "service_bucket_zone_season",
    "zone_season",
)


def rollup(key: SegmentKey, level: int) -> SegmentKey:
    """Broaden a key by applying the first `level` roll-up rules."""
    if not 0 <= level <= len(ROLLUP_RULES):
        raise ValueError(f"rollup level must be in [0, {len(ROLLUP_RULES)}], got {level}")
    return replace(key, **dict(ROLLUP_RULES[:level]))
