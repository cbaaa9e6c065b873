"""
Delivery Stats Tests.
"""

import pytest

from deliveryiq.db.repositories import curve_repo
from deliveryiq.engine.segments import ALL
from deliveryiq.services.stats import DeliveryStats, confidence_heatmap, get_delivery_stats
from tests.factories import fitted_curve, outcome_row, segment_key


@pytest.mark.asyncio
async def test_empty_tables(db):
    stats = await get_delivery_stats(db)

    assert stats.total_outcomes == 0
    assert stats.delivery_rate == 0.0
    assert stats.outcomes["lost_claim"] == 0
    assert stats.total_curves == 0
    assert stats.avg_median_days is None
    assert stats.last_computed is None
    assert stats.carriers == []
    assert stats.confidence_heatmap == {}


@pytest.mark.asyncio
async def test_outcome_and_carrier_rates(db):
    db.add_all(
        [outcome_row(f"U{i}", 2.0) for i in range(6)]
        + [outcome_row("U-lost", 50.0, outcome="lost_timeout")]
        + [outcome_row("U-claim", 9.0, outcome="lost_claim")]
        + [outcome_row(f"F{i}", 3.0, carrier="FedEx") for i in range(3)]
        + [outcome_row("F-open", 4.0, carrier="FedEx", outcome="censored")]
    )
    await db.commit()

    stats = await get_delivery_stats(db)

    assert stats.total_outcomes == 12
    assert stats.delivered_count == 9
    assert stats.lost_count == 2
    assert stats.censored_count == 1
    assert stats.delivery_rate == 75.0
    assert stats.loss_rate == 16.67

    ups, fedex = stats.carriers
    assert (ups.carrier, ups.total, ups.delivered, ups.lost) == ("UPS", 8, 6, 2)
    assert ups.loss_rate == 25.0
    assert (fedex.carrier, fedex.total) == ("FedEx", 4)
    assert fedex.delivery_rate == 75.0


@pytest.mark.asyncio
async def test_curve_summary(db):
    await curve_repo.replace(db, fitted_curve(segment_key(), [2.0] * 600))
    await curve_repo.replace(db, fitted_curve(segment_key(carrier_service=None), [4.0] * 120))
    await curve_repo.replace(db, fitted_curve(segment_key(carrier="FedEx", zone_bucket="zone_2"), [3.0] * 10))
    await curve_repo.replace(
        db, fitted_curve(segment_key(carrier=ALL, carrier_service=None, service_bucket=ALL), [3.0] * 730)
    )
    await db.commit()

    stats = await get_delivery_stats(db)

    assert stats.total_curves == 4
    assert stats.avg_median_days == 3.0
    assert stats.carriers_tracked == 2
    assert stats.last_computed is not None
    assert stats.curve_confidence["high"] == 2
    assert stats.curve_confidence["medium"] == 1
    assert stats.curve_confidence["insufficient"] == 1


@pytest.mark.asyncio
async def test_heatmap_keeps_largest_curve_per_zone(db):
    await curve_repo.replace(db, fitted_curve(segment_key(), [2.0] * 60))
    await curve_repo.replace(db, fitted_curve(segment_key(carrier_service=None), [2.0] * 150))
    await curve_repo.replace(db, fitted_curve(segment_key(zone_bucket="international"), [9.0] * 5))
    await curve_repo.replace(
        db, fitted_curve(segment_key(carrier=ALL, carrier_service=None, service_bucket=ALL), [3.0] * 900)
    )
    await db.commit()

    heatmap = await confidence_heatmap(db)

    assert set(heatmap) == {"UPS"}
    assert heatmap["UPS"]["zone_5"].sample_size == 150
    assert heatmap["UPS"]["zone_5"].confidence == "medium"
    assert heatmap["UPS"]["international"].confidence == "insufficient"


def test_rates_without_data():
    stats = DeliveryStats(outcomes={"delivered": 0, "censored": 0})
    assert stats.loss_rate == 0.0
    assert stats.lost_count == 0
