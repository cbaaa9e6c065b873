"""
Delivery Probability Estimator Tests.
"""

import math

import pytest

from deliveryiq.engine.curves import FittedCurve
from deliveryiq.engine.kaplan_meier import ConfidenceLevel
from deliveryiq.engine.outcomes import TrackingSnapshot
from deliveryiq.engine.probability import (
    DecayPolicy,
    DeliveryProbabilityEstimator,
    RiskFactor,
    RiskLevel,
    probability_summary,
    recommended_action,
    risk_level,
    segment_for,
)
from tests.factories import NOW, make_snapshot


def make_curve(
    sample_size: int = 200,
    delivered_count: int = 190,
    median: int = 3,
    p90: int = 6,
    p95: int = 8,
    carrier: str = "UPS",
) -> FittedCurve:
    return FittedCurve(
        carrier=carrier,
        carrier_service="Ground",
        service_bucket="ground",
        zone_bucket="zone_5",
        season_bucket="normal",
        curve_data=[
            {"day": 0, "survival_probability": 1.0, "at_risk_count": sample_size, "event_count": 0, "cumulative_events": 0},
            {"day": 2, "survival_probability": 0.7, "at_risk_count": sample_size, "event_count": 60, "cumulative_events": 60},
            {"day": 4, "survival_probability": 0.3, "at_risk_count": 140, "event_count": 80, "cumulative_events": 140},
            {"day": 8, "survival_probability": 0.05, "at_risk_count": 60, "event_count": 50, "cumulative_events": 190},
        ],
        sample_size=sample_size,
        delivered_count=delivered_count,
        lost_count=sample_size - delivered_count,
        censored_count=0,
        median_days=median,
        p75_days=5,
        p90_days=p90,
        p95_days=p95,
        confidence_level="medium",
    )


class TestDecayPolicy:

    def setup_method(self):
        self.policy = DecayPolicy()

    def test_within_window_uses_delivery_rate(self):
        assert self.policy.eventual_probability(0.95, 7.0, 7) == pytest.approx(0.95)

    def test_exactly_at_p95_no_decay(self):
        assert self.policy.eventual_probability(0.9, 8.0, 8) == pytest.approx(0.9)

    def test_one_day_overdue_strictly_lower(self):
        at_p95 = self.policy.eventual_probability(0.9, 8.0, 8)
        overdue = self.policy.eventual_probability(0.9, 9.0, 8)
        assert overdue < at_p95
        assert overdue == pytest.approx(0.9 * 0.7 ** (9 / 8 - 1))

    def test_double_p95_one_decay_step(self):
        assert self.policy.eventual_probability(1.0, 14.0, 7) == pytest.approx(0.7)

    def test_exception_penalty_grows_and_caps(self):
        base = self.policy.eventual_probability(0.9, 7.0, 7)
        with_exception = self.policy.eventual_probability(0.9, 7.0, 7, has_exception=True)
        assert with_exception == pytest.approx(base * 0.9)

        far_overdue = self.policy.eventual_probability(1.0, 70.0, 7, has_exception=True)
        assert far_overdue == pytest.approx(max(0.05, 0.7 ** 9 * 0.5))

    def test_failed_attempt_multiplier(self):
        assert self.policy.eventual_probability(0.9, 2.0, 7, has_failed_attempt=True) == pytest.approx(0.9 * 0.85)

    def test_clamped(self):
        assert self.policy.eventual_probability(1.0, 1.0, 7) == 0.999
        assert self.policy.eventual_probability(0.1, 100.0, 7) == 0.05

    def test_custom_constants(self):
        policy = DecayPolicy(decay_factor=0.5)
        assert policy.eventual_probability(0.8, 14.0, 7) == pytest.approx(0.4)

    def test_no_curve_survival(self):
        assert DecayPolicy.no_curve_survival(2.0) == pytest.approx(math.exp(-1.0))


class TestRiskLevel:

    @pytest.mark.parametrize("days,factors,expected", [
        (3, [], RiskLevel.LOW),
        (9, [], RiskLevel.LOW),
        (5, [RiskFactor.PAST_P90], RiskLevel.MEDIUM),
        (3, [RiskFactor.DELIVERY_ATTEMPT_FAILED], RiskLevel.MEDIUM),
        (9, [RiskFactor.EXCEPTION_DETECTED], RiskLevel.HIGH),
        (5, [RiskFactor.EXCEPTION_DETECTED], RiskLevel.LOW),
        (9, [RiskFactor.PAST_P90, RiskFactor.PAST_P95], RiskLevel.HIGH),
        (9, [RiskFactor.PAST_P95, RiskFactor.DELIVERY_ATTEMPT_FAILED], RiskLevel.CRITICAL),
        (16, [RiskFactor.EXCEPTION_DETECTED], RiskLevel.CRITICAL),
    ])
    def test_priority_order(self, days, factors, expected):
        assert risk_level(days, factors) is expected


class TestEstimator:

    def setup_method(self):
        self.estimator = DeliveryProbabilityEstimator(DecayPolicy())

    def test_delivered_is_certain(self):
        snapshot = make_snapshot(
            intransit_days_ago=40,
            delivered_after=12,
            failed_attempt_after=10,
            event_logs=[{"description": "exception"}],
        )
        result = self.estimator.estimate(snapshot, make_curve(), NOW)
        assert result.delivery_probability == 1.0
        assert result.still_in_transit_probability == 0.0
        assert result.days_in_transit == 12.0
        assert result.risk_level is RiskLevel.LOW
        assert result.confidence is ConfidenceLevel.HIGH
        assert result.segment_used.season_bucket == "delivered"

    def test_delivered_without_transit_start(self):
        snapshot = TrackingSnapshot(shipment_id="S2", carrier="UPS", event_delivered=NOW)
        result = self.estimator.estimate(snapshot, None, NOW)
        assert result.delivery_probability == 1.0
        assert result.days_in_transit == 0.0

    def test_not_in_transit(self):
        assert self.estimator.estimate(make_snapshot(intransit_days_ago=None), None, NOW) is None

    def test_no_curve_fallback(self):
        result = self.estimator.estimate(make_snapshot(intransit_days_ago=2), None, NOW)
        assert result.delivery_probability == 0.95
        assert result.confidence is ConfidenceLevel.INSUFFICIENT
        assert result.still_in_transit_probability == round(math.exp(-1.0), 3)
        assert result.expected_delivery_day == 4
        assert result.sample_size == 0
        assert result.segment_used.carrier == "UPS"

    def test_future_transit_start_without_curve(self):
        result = self.estimator.estimate(make_snapshot(intransit_days_ago=-0.2), None, NOW)
        assert result.days_in_transit == 0.0
        assert result.still_in_transit_probability == 1.0
        assert result.risk_level is RiskLevel.LOW

    def test_future_transit_start_with_curve(self):
        result = self.estimator.estimate(make_snapshot(intransit_days_ago=-1), make_curve(), NOW)
        assert result.days_in_transit == 0.0
        assert result.still_in_transit_probability == 1.0
        assert result.delivery_probability == 0.95

    def test_normal_transit(self):
        result = self.estimator.estimate(make_snapshot(intransit_days_ago=3), make_curve(), NOW)
        assert result.delivery_probability == 0.95
        assert result.still_in_transit_probability == 0.5
        assert result.risk_factors == []
        assert result.risk_level is RiskLevel.LOW
        assert result.expected_delivery_day == 3
        assert result.percentiles.p95 == 8
        assert result.sample_size == 200

    def test_at_p95_boundary_no_decay(self):
        result = self.estimator.estimate(make_snapshot(intransit_days_ago=8), make_curve(), NOW)
        assert result.delivery_probability == 0.95
        assert RiskFactor.PAST_P90 in result.risk_factors
        assert RiskFactor.PAST_P95 not in result.risk_factors
        assert result.risk_level is RiskLevel.MEDIUM

    def test_overdue_with_exception_is_critical(self):
        snapshot = make_snapshot(
            intransit_days_ago=16,
            event_logs=[{"description": "Unable to locate"}],
        )
        result = self.estimator.estimate(snapshot, make_curve(), NOW)
        expected = 0.95 * 0.7 ** (16 / 8 - 1) * (1 - 0.2)
        assert result.delivery_probability == round(expected, 3)
        assert result.risk_factors == [
            RiskFactor.EXCEPTION_DETECTED, RiskFactor.PAST_P90, RiskFactor.PAST_P95,
        ]
        assert result.risk_level is RiskLevel.CRITICAL
        assert result.still_in_transit_probability == 0.05

    def test_missing_percentiles_use_defaults(self):
        curve = make_curve()
        curve = FittedCurve(**{**curve.to_row(), "p90_days": None, "p95_days": None})
        # p90 defaults to 7, p95 to 10 for risk factors and 7 for decay
        result = self.estimator.estimate(make_snapshot(intransit_days_ago=8), curve, NOW)
        assert result.risk_factors == [RiskFactor.PAST_P90]
        assert result.delivery_probability == round(0.95 * 0.7 ** (8 / 7 - 1), 3)

    def test_segment_used_reports_fallback_curve(self):
        result = self.estimator.estimate(make_snapshot(intransit_days_ago=3), make_curve(carrier="all"), NOW)
        assert result.segment_used.carrier == "all"

    def test_segment_for(self):
        params = segment_for(make_snapshot(carrier_service="FedEx 2Day", zone_used=12))
        assert params.service_bucket == "2day"
        assert params.zone_bucket == "international"
        assert params.season_bucket == "normal"


class TestSummaryAndAction:

    def setup_method(self):
        self.estimator = DeliveryProbabilityEstimator(DecayPolicy())

    def _result(self, days, **kwargs):
        return self.estimator.estimate(make_snapshot(intransit_days_ago=days, **kwargs), make_curve(), NOW)

    def test_summary_bands(self):
        assert self._result(3).summary == "95% likely to deliver"
        overdue = self._result(16)
        assert overdue.summary.endswith("high risk of loss") or overdue.summary.endswith("at risk")

    def test_very_likely(self):
        delivered = self._result(5, delivered_after=2)
        assert probability_summary(delivered) == "Very likely to deliver"

    def test_actions(self):
        assert recommended_action(self._result(3)) == "No action needed - normal transit"
        assert recommended_action(self._result(8)) == "Add to watchlist - check again tomorrow"
        assert recommended_action(self._result(9)) == "Monitor closely - proactively contact customer"
        critical = self._result(16, event_logs=[{"description": "exception"}])
        assert recommended_action(critical) == "File lost in transit claim or consider reshipment"
        failed = self._result(9, failed_attempt_after=7)
        assert recommended_action(failed) == "Contact carrier for investigation"
