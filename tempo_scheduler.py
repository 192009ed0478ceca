"""
Tempograph Scheduler - virtual-time event loop.

A single logical clock plus a min-heap of timestamped tasks.  Every event in
the simulation (node firings, edge contributions, threshold crossings) is a
plain callable queued here, and the scheduler runs them one at a time in
``(at, seq)`` order.  Tasks queued for the same tick run in insertion order.

Usage::

    from tempo_scheduler import scheduler

    scheduler.schedule(10, lambda: print("ten ticks later"))
    scheduler.fast_forward_until_idle()
    assert scheduler.now() == 10
"""

from __future__ import annotations

import heapq
import itertools
import logging
from typing import Callable, List, Tuple

logger = logging.getLogger("tempograph.scheduler")

Task = Callable[[], None]


class InvalidTime(ValueError):
    """Raised when a task is scheduled before the current tick."""

    def __init__(self, at: int, now: int):
        super().__init__(f"Cannot schedule at tick {at}; clock is already at {now}")
        self.at = at
        self.now = now


class Scheduler:
    """Cooperative single-threaded scheduler over integer ticks.

    There is no per-task cancellation.  Callers that need to supersede a
    queued task (see ``ThresholdIntegrator``) check a generation token when
    the task runs.
    """

    def __init__(self, start: int = 0):
        self._now = start
        self._queue: List[Tuple[int, int, Task]] = []
        self._seq = itertools.count()
        self.epoch = 0

    def now(self) -> int:
        return self._now

    def pending(self) -> int:
        """Number of queued tasks."""
        return len(self._queue)

    def schedule(self, delay: int, task: Task) -> None:
        if delay < 0:
            raise InvalidTime(self._now + delay, self._now)
        self.schedule_at(self._now + delay, task)

    def schedule_at(self, at: int, task: Task) -> None:
        if at < self._now:
            raise InvalidTime(at, self._now)
        heapq.heappush(self._queue, (at, next(self._seq), task))

    def _run_next(self) -> None:
        at, _, task = heapq.heappop(self._queue)
        self._now = at
        task()

    def fast_forward_until_idle(self) -> None:
        """Run tasks in order, advancing the clock, until the queue is empty."""
        ran = 0
        while self._queue:
            self._run_next()
            ran += 1
        logger.debug("Idle at tick %d after %d tasks", self._now, ran)

    def run_for(self, duration: int) -> None:
        """Run every task due within ``duration`` ticks, then advance the
        clock to ``now + duration``."""
        if duration < 0:
            raise InvalidTime(self._now + duration, self._now)
        deadline = self._now + duration
        while self._queue and self._queue[0][0] <= deadline:
            self._run_next()
        self._now = deadline

    def reset(self, start: int = 0) -> None:
        """Drop all queued tasks and rewind the clock.

        Bumps ``epoch`` so holders of queued work can tell that it is gone.
        """
        self._queue.clear()
        self._now = start
        self._seq = itertools.count()
        self.epoch += 1


# Process-wide clock shared by every cluster and node.
scheduler = Scheduler()
