"""
Survival Curve Builder Tests.
"""

import pytest
from sqlalchemy import select

from deliveryiq.db.models import SurvivalCurve
from deliveryiq.db.repositories import curve_repo
from deliveryiq.engine.curves import SurvivalCurveFitter
from deliveryiq.engine.kaplan_meier import LostHandling
from deliveryiq.engine.segments import ALL, SegmentKey
from deliveryiq.services.curve_builder import SurvivalCurveService, segment_keys
from tests.factories import fitted_curve, outcome_row, segment_key


async def _add(session_factory, rows):
    async with session_factory() as session:
        session.add_all(rows)
        await session.commit()


async def _curves(session_factory) -> dict[SegmentKey, SurvivalCurve]:
    async with session_factory() as session:
        result = await session.execute(select(SurvivalCurve))
        return {
            SegmentKey(c.carrier, c.carrier_service, c.service_bucket, c.zone_bucket, c.season_bucket): c
            for c in result.scalars().all()
        }


def _service(session_factory, page_size=None):
    return SurvivalCurveService(
        session_factory,
        fitter=SurvivalCurveFitter(LostHandling.CENSOR, confidence_thresholds=(500, 100, 50)),
        page_size=page_size,
    )


def test_segment_keys_deduplicate_null_service():
    assert len(segment_keys(segment_key())) == 4
    assert len(segment_keys(segment_key(carrier_service=None))) == 3


@pytest.mark.asyncio
async def test_recompute_builds_exact_and_tier_curves(session_factory):
    rows = (
        [outcome_row(f"U{i}", 2.0) for i in range(120)]
        + [outcome_row(f"V{i}", 5.0) for i in range(30)]
        + [outcome_row(f"F{i}", 3.0, carrier="FedEx", carrier_service="Home Delivery") for i in range(10)]
        + [outcome_row(f"X{i}", 1.0, carrier="UPS", carrier_service="Next Day Air", service_bucket="express") for i in range(5)]
    )
    await _add(session_factory, rows)

    report = await _service(session_factory, page_size=50).recompute_all()
    curves = await _curves(session_factory)

    assert report.records == 165
    assert report.errors == 0
    assert report.curves_written == len(curves)
    assert report.by_tier == {
        "exact": 3,
        "carrier_service_bucket": 3,
        "service_bucket_zone_season": 2,
        "zone_season": 1,
    }

    exact = curves[segment_key()]
    assert exact.sample_size == 150
    assert exact.confidence_level == "medium"
    assert exact.median_days == 2
    assert exact.p90_days == 5
    assert exact.curve_data[-1]["survival_probability"] == 0.0

    all_ground = curves[SegmentKey(ALL, None, "ground", "zone_5", "normal")]
    assert all_ground.sample_size == 160
    zone_only = curves[SegmentKey(ALL, None, ALL, "zone_5", "normal")]
    assert zone_only.sample_size == 165
    assert zone_only.confidence_level == "medium"


@pytest.mark.asyncio
async def test_counts_sum_to_sample_size(session_factory):
    rows = (
        [outcome_row(f"D{i}", 2.0 + i % 3) for i in range(20)]
        + [outcome_row(f"C{i}", 4.0, outcome="censored") for i in range(5)]
        + [outcome_row(f"L{i}", 50.0, outcome="lost_timeout") for i in range(3)]
    )
    await _add(session_factory, rows)
    await _service(session_factory).recompute_all()

    for curve in (await _curves(session_factory)).values():
        assert curve.delivered_count + curve.lost_count + curve.censored_count == curve.sample_size
        assert curve.sample_size == 28
        assert curve.lost_count == 3


@pytest.mark.asyncio
async def test_recompute_is_idempotent(session_factory):
    await _add(session_factory, [outcome_row(f"S{i}", 1.0 + i % 5) for i in range(40)])
    service = _service(session_factory)

    await service.recompute_all()
    first = {key: curve.curve_data for key, curve in (await _curves(session_factory)).items()}
    await service.recompute_all()
    second = {key: curve.curve_data for key, curve in (await _curves(session_factory)).items()}

    assert first == second
    # Replaced, not duplicated
    async with session_factory() as session:
        total = len((await session.execute(select(SurvivalCurve))).scalars().all())
    assert total == len(first)


@pytest.mark.asyncio
async def test_null_service_segment_replaced_in_place(session_factory):
    await _add(session_factory, [
        outcome_row(f"N{i}", 3.0, carrier_service=None) for i in range(10)
    ])
    service = _service(session_factory)
    await service.recompute_all()
    await service.recompute_all()

    async with session_factory() as session:
        result = await session.execute(
            select(SurvivalCurve).where(
                SurvivalCurve.carrier == "UPS",
                SurvivalCurve.carrier_service.is_(None),
            )
        )
        rows = result.scalars().all()
    assert len(rows) == 1
    assert rows[0].sample_size == 10


@pytest.mark.asyncio
async def test_replace_only_touches_matching_key(db):
    ground = segment_key()
    tier_a = segment_key(carrier_service=None)
    await curve_repo.replace(db, fitted_curve(ground, [2.0] * 5))
    await curve_repo.replace(db, fitted_curve(tier_a, [3.0] * 7))
    await curve_repo.replace(db, fitted_curve(tier_a, [4.0] * 9))
    await db.commit()

    assert (await curve_repo.get_by_key(db, ground)).sample_size == 5
    assert (await curve_repo.get_by_key(db, tier_a)).sample_size == 9
    assert len(await curve_repo.list_all(db, limit=1)) == 2


@pytest.mark.asyncio
async def test_recompute_segment(session_factory):
    await _add(session_factory, [
        outcome_row("A", 2.0),
        outcome_row("B", 4.0, carrier_service="Ground Saver"),
        outcome_row("C", 1.0, carrier="FedEx"),
    ])
    service = _service(session_factory)

    tier_a = await service.recompute_segment(SegmentKey("UPS", None, "ground", "zone_5", "normal"))
    assert tier_a.sample_size == 2

    tier_c = await service.recompute_segment(SegmentKey(ALL, None, ALL, "zone_5", "normal"))
    assert tier_c.sample_size == 3

    assert await service.recompute_segment(SegmentKey("DHL", None, "ground", "zone_5", "normal")) is None
