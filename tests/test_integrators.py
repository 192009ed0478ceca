"""Tests for integration profiles, trace integrators and threshold scheduling."""

import sys
import os

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from tempo_foundation import (
    TRANSIENT,
    TWOGRAM,
    Impulse,
    IntegrationProfile,
    Integrator,
    ThresholdIntegrator,
)
from tempo_scheduler import scheduler


class TestIntegrationProfile:

    def test_transient_shape(self):
        assert TRANSIENT.kernel(0) == 0.0
        assert TRANSIENT.kernel(5) == pytest.approx(0.5)
        assert TRANSIENT.kernel(10) == 1.0
        assert TRANSIENT.kernel(50) == 1.0
        assert TRANSIENT.kernel(55) == pytest.approx(0.5)
        assert TRANSIENT.kernel(60) == 0.0
        assert TRANSIENT.kernel(-3) == 0.0

    def test_delay_is_ramp_up(self):
        assert TRANSIENT.delay == 10
        assert TWOGRAM.delay == 20

    def test_default_interval(self):
        assert TRANSIENT.default_interval == 5

    def test_support_and_breakpoints(self):
        assert TRANSIENT.support == 60
        assert TRANSIENT.breakpoints(100) == (100, 110, 150, 160)

    def test_profiles_compare_by_value(self):
        assert IntegrationProfile(10, 40, 10) == TRANSIENT
        assert hash(IntegrationProfile(10, 40, 10)) == hash(TRANSIENT)

    @pytest.mark.parametrize("args", [(0, 40, 10), (10, 40, 0), (10, -1, 10)])
    def test_invalid_profile_rejected(self, args):
        with pytest.raises(ValueError):
            IntegrationProfile(*args)


class TestIntegrator:

    def test_empty_is_zero(self):
        assert Integrator().evaluate(100) == 0.0

    def test_sum_of_kernels(self):
        """Each impulse contributes magnitude * k(t - t0)."""
        integrator = Integrator()
        integrator.add(0, 1.0)
        integrator.add(5, 2.0)
        assert integrator.evaluate(5) == pytest.approx(0.5)
        assert integrator.evaluate(30) == pytest.approx(3.0)
        assert integrator.evaluate(57) == pytest.approx(0.3 + 2.0 * 0.8)

    def test_query_profile_overrides_impulse_profile(self):
        integrator = Integrator()
        integrator.add(0, 1.0)
        integrator.add(5, 2.0)
        assert integrator.evaluate(12, TWOGRAM) == pytest.approx(0.6 + 0.7)
        assert integrator.evaluate(70) == 0.0
        assert integrator.evaluate(70, TWOGRAM) == pytest.approx(3.0)

    def test_impulse_keeps_its_own_profile(self):
        integrator = Integrator()
        integrator.add(0, 1.0, TWOGRAM)
        assert integrator.evaluate(100) == pytest.approx(1.0)

    def test_expired_impulses_discarded(self):
        integrator = Integrator()
        integrator.add(0, 1.0)
        integrator.add(1000, 1.0)
        assert len(integrator) == 1
        assert integrator.impulses[0].origin == 1000

    def test_breakpoints_after(self):
        integrator = Integrator()
        integrator.add(0, 1.0)
        integrator.add(20, 1.0)
        assert integrator.breakpoints(10) == [20, 30, 50, 60, 70, 80]

    def test_load_replaces_impulses(self):
        integrator = Integrator()
        integrator.add(0, 1.0)
        integrator.load([Impulse(3, 0.5, TWOGRAM)])
        assert integrator.impulses == (Impulse(3, 0.5, TWOGRAM),)


class TestThresholdIntegrator:

    def _make(self):
        fired = []
        integrator = ThresholdIntegrator(lambda: fired.append(scheduler.now()))
        return integrator, fired

    def test_sub_threshold_never_fires(self):
        integrator, fired = self._make()
        integrator.add(0, 0.9)
        assert integrator.scheduled_at is None
        scheduler.fast_forward_until_idle()
        assert fired == []

    def test_crossing_on_ramp(self):
        """1.1 on a 10-tick ramp crosses 1.0 between ticks 9 and 10."""
        integrator, fired = self._make()
        integrator.add(0, 0.5)
        integrator.add(0, 0.6)
        assert integrator.next_threshold(0) == 10
        scheduler.fast_forward_until_idle()
        assert fired == [10]

    def test_already_above_fires_now(self):
        integrator, fired = self._make()
        scheduler.run_for(10)
        integrator.add(0, 1.2)
        assert integrator.scheduled_at == 10
        scheduler.fast_forward_until_idle()
        assert fired == [10]

    def test_cancelled_crossing_does_not_fire(self):
        """A later add that removes the crossing invalidates the queued fire."""
        integrator, fired = self._make()
        integrator.add(0, 1.2)
        assert integrator.scheduled_at is not None
        integrator.add(0, -1.0)
        assert integrator.scheduled_at is None
        scheduler.fast_forward_until_idle()
        assert fired == []

    def test_rescheduled_crossing_fires_once(self):
        integrator, fired = self._make()
        integrator.add(0, 1.1)
        first = integrator.scheduled_at
        integrator.add(0, 1.0)
        assert integrator.scheduled_at < first
        scheduler.fast_forward_until_idle()
        assert len(fired) == 1

    def test_latched_until_below_threshold(self):
        integrator, fired = self._make()
        integrator.add(0, 1.1)
        scheduler.fast_forward_until_idle()
        assert fired == [10]

        scheduler.run_for(10)
        integrator.add(20, 0.5)
        scheduler.fast_forward_until_idle()
        assert fired == [10]

    def test_refires_after_release(self):
        integrator, fired = self._make()
        integrator.add(0, 1.1)
        scheduler.fast_forward_until_idle()

        scheduler.run_for(90)
        integrator.add(100, 1.5)
        scheduler.fast_forward_until_idle()
        assert fired == [10, 107]

    def test_release_between_breakpoints_allows_refire(self):
        """1.2 falls below 1.0 at tick 52, before the tick-60 breakpoint."""
        integrator, fired = self._make()
        scheduler.run_for(10)
        integrator.add(0, 1.2)
        scheduler.fast_forward_until_idle()
        assert fired == [10]

        scheduler.run_for(45)
        assert integrator.evaluate(55) == pytest.approx(0.6)
        integrator.add(45, 1.2)
        assert integrator.scheduled_at == 55
        scheduler.fast_forward_until_idle()
        assert fired == [10, 55]

    def test_still_latched_above_threshold(self):
        integrator, fired = self._make()
        scheduler.run_for(10)
        integrator.add(0, 1.2)
        scheduler.fast_forward_until_idle()

        scheduler.run_for(41)
        assert integrator.evaluate(51) == pytest.approx(1.08)
        integrator.add(51, 0.5)
        scheduler.fast_forward_until_idle()
        assert fired == [10]

    def test_reset_clears_queued_fire(self):
        integrator, fired = self._make()
        integrator.add(0, 1.1)
        assert integrator.scheduled_at == 10

        scheduler.reset()
        assert integrator.scheduled_at is None
        integrator.add(0, 0.0)
        assert integrator.scheduled_at == 10
        scheduler.fast_forward_until_idle()
        assert fired == [10]
