"""
Property-Based Tests for the survival engine.

Uses Hypothesis to check invariants that must hold for ALL record sets:
- Curve: starts at 1.0 on day 0, non-increasing, bounded in [0, 1]
- Counts: delivered + lost + censored == sample_size
- Percentiles: p50 <= p75 <= p90 <= p95 (or later ones missing)
- Determinism: refitting the same records gives identical curve data
- Probability: estimates stay in [floor, ceiling] and never rise when more overdue
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from deliveryiq.engine.curves import SurvivalCurveFitter
from deliveryiq.engine.kaplan_meier import (
    KaplanMeierEstimator,
    LostHandling,
    ObservedOutcome,
    confidence_level,
    interpolate_survival,
)
from deliveryiq.engine.probability import DecayPolicy
from tests.factories import segment_key

OUTCOMES = ["delivered", "censored", "lost_claim", "lost_exception", "lost_timeout"]

records_strategy = st.lists(
    st.builds(
        ObservedOutcome,
        observed_days=st.floats(min_value=0, max_value=60, allow_nan=False),
        outcome=st.sampled_from(OUTCOMES),
    ),
    max_size=200,
)

handling_strategy = st.sampled_from(list(LostHandling))


class TestCurveProperties:

    @given(records=records_strategy, handling=handling_strategy)
    @settings(max_examples=100)
    def test_curve_shape(self, records, handling):
        points = KaplanMeierEstimator(handling).fit(records).points
        assert points[0].day == 0
        assert points[0].survival_probability == 1.0

        survival = [p.survival_probability for p in points]
        assert all(0.0 <= s <= 1.0 for s in survival)
        assert all(later <= earlier for earlier, later in zip(survival, survival[1:]))
        days = [p.day for p in points]
        assert days == sorted(days)

    @given(records=records_strategy, handling=handling_strategy)
    @settings(max_examples=50)
    def test_counts_sum_to_sample_size(self, records, handling):
        curve = SurvivalCurveFitter(handling).fit(segment_key(), records)
        assert curve.delivered_count + curve.lost_count + curve.censored_count == curve.sample_size
        assert curve.sample_size == len(records)

    @given(records=records_strategy)
    @settings(max_examples=50)
    def test_percentiles_ordered(self, records):
        curve = SurvivalCurveFitter().fit(segment_key(), records)
        chain = [curve.median_days, curve.p75_days, curve.p90_days, curve.p95_days]
        for earlier, later in zip(chain, chain[1:]):
            if earlier is not None and later is not None:
                assert earlier <= later
            if earlier is None:
                assert later is None

    @given(records=records_strategy)
    @settings(max_examples=30)
    def test_refit_is_identical(self, records):
        fitter = SurvivalCurveFitter()
        first = fitter.fit(segment_key(), records)
        second = fitter.fit(segment_key(), list(reversed(records)))
        assert first.curve_data == second.curve_data
        assert first.median_days == second.median_days

    @given(size=st.integers(min_value=0, max_value=5000))
    def test_confidence_is_monotone_in_sample_size(self, size):
        order = ["insufficient", "low", "medium", "high"]
        here = order.index(confidence_level(size, 500, 100, 50))
        there = order.index(confidence_level(size + 1, 500, 100, 50))
        assert there >= here

    @given(records=records_strategy, day=st.floats(min_value=-5, max_value=90, allow_nan=False))
    @settings(max_examples=50)
    def test_interpolation_bounded(self, records, day):
        points = KaplanMeierEstimator().fit(records).points
        assert 0.0 <= interpolate_survival(points, day) <= 1.0


class TestDecayProperties:

    @given(
        rate=st.floats(min_value=0, max_value=1),
        days=st.floats(min_value=0, max_value=120),
        p95=st.integers(min_value=1, max_value=30),
        exception=st.booleans(),
        failed=st.booleans(),
    )
    @settings(max_examples=100)
    def test_bounded(self, rate, days, p95, exception, failed):
        policy = DecayPolicy()
        probability = policy.eventual_probability(rate, days, p95, exception, failed)
        assert policy.floor <= probability <= policy.ceiling

    @given(
        rate=st.floats(min_value=0.1, max_value=1),
        days=st.floats(min_value=0, max_value=60),
        extra=st.floats(min_value=0, max_value=30),
        p95=st.integers(min_value=1, max_value=20),
    )
    @settings(max_examples=100)
    def test_never_increases_with_time(self, rate, days, extra, p95):
        policy = DecayPolicy()
        assert policy.eventual_probability(rate, days + extra, p95) <= policy.eventual_probability(rate, days, p95)
