"""Tests for the virtual-time scheduler: ordering, clock advance, InvalidTime."""

import sys
import os

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from tempo_scheduler import InvalidTime, Scheduler, scheduler


class TestOrdering:
    """Tasks run in (tick, insertion) order."""

    def test_runs_in_tick_order(self):
        s = Scheduler()
        seen = []
        s.schedule_at(30, lambda: seen.append(30))
        s.schedule_at(10, lambda: seen.append(10))
        s.schedule_at(20, lambda: seen.append(20))
        s.fast_forward_until_idle()
        assert seen == [10, 20, 30]

    def test_same_tick_is_fifo(self):
        s = Scheduler()
        seen = []
        for label in "abcde":
            s.schedule_at(5, lambda label=label: seen.append(label))
        s.fast_forward_until_idle()
        assert seen == list("abcde")

    def test_clock_equals_task_tick_while_running(self):
        s = Scheduler()
        observed = []
        s.schedule(7, lambda: observed.append(s.now()))
        s.schedule(3, lambda: observed.append(s.now()))
        s.fast_forward_until_idle()
        assert observed == [3, 7]
        assert s.now() == 7

    def test_nested_schedule_runs_after_current(self):
        s = Scheduler()
        seen = []

        def outer():
            seen.append("outer")
            s.schedule(0, lambda: seen.append("nested"))

        s.schedule(0, outer)
        s.schedule(0, lambda: seen.append("sibling"))
        s.fast_forward_until_idle()
        assert seen == ["outer", "sibling", "nested"]


class TestClock:

    def test_run_for_advances_when_idle(self):
        s = Scheduler()
        s.run_for(100)
        assert s.now() == 100

    def test_run_for_stops_at_deadline(self):
        s = Scheduler()
        seen = []
        s.schedule(5, lambda: seen.append(5))
        s.schedule(15, lambda: seen.append(15))
        s.run_for(10)
        assert seen == [5]
        assert s.now() == 10
        assert s.pending() == 1
        s.run_for(5)
        assert seen == [5, 15]

    def test_reset(self):
        s = Scheduler()
        s.schedule(5, lambda: None)
        s.run_for(2)
        s.reset()
        assert s.now() == 0
        assert s.pending() == 0
        assert s.epoch == 1

    def test_global_scheduler_is_reset_between_tests(self):
        assert scheduler.now() == 0
        assert scheduler.pending() == 0


class TestInvalidTime:

    def test_schedule_in_past_raises(self):
        s = Scheduler()
        s.run_for(10)
        with pytest.raises(InvalidTime) as exc:
            s.schedule_at(5, lambda: None)
        assert exc.value.at == 5
        assert exc.value.now == 10

    def test_negative_delay_raises(self):
        s = Scheduler()
        with pytest.raises(InvalidTime):
            s.schedule(-1, lambda: None)

    def test_is_value_error(self):
        s = Scheduler(start=3)
        with pytest.raises(ValueError):
            s.schedule_at(0, lambda: None)

    def test_task_exceptions_propagate(self):
        s = Scheduler()

        def boom():
            raise RuntimeError("boom")

        s.schedule(1, boom)
        with pytest.raises(RuntimeError):
            s.fast_forward_until_idle()
