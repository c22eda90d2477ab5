"""
Virtual-user scheduler.

Turns a declarative stage list into live concurrency.  The design has
two halves:

1. **Interpolation** -- :func:`target_at` is a pure function of elapsed
   time.  Inside a stage the target moves linearly from the previous
   stage's target to this stage's target; a zero-length stage jumps.
2. **Lane controller** -- :class:`VirtualUserScheduler` ticks a small
   control loop that starts lanes while live lanes are below
   ``round(target)``.  It never cancels anything: when the target
   falls, lanes retire themselves between iterations.

Each lane is a daemon thread running iterations back to back, with a
pacing delay in between.  At the end of the final stage no new
iterations start; iterations already in flight finish (graceful stop).

Key Concepts Demonstrated:
- Pure schedule math kept apart from the threading machinery
- Cooperative ramp-down: no forced cancellation mid-iteration
- Narrow critical sections: one lock around the lane set only
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from surge.metrics import AggregateStats
from surge.models import ExecutionContext, Pacing, SchedulePhase, Stage

logger = logging.getLogger(__name__)


class Executor(Protocol):
    def iterate(self, context: ExecutionContext, lane_id: int, iteration: int) -> None:
        ...


# =====================================================================
# Schedule math
# =====================================================================


def total_duration(stages: Sequence[Stage]) -> float:
    return sum(stage.duration for stage in stages)


def _locate(
    stages: Sequence[Stage], elapsed: float, start_target: float
) -> tuple[float, Stage, float] | None:
    """Return ``(previous target, stage, seconds into stage)`` or ``None`` when finished."""
    if elapsed < 0:
        elapsed = 0.0
    previous = float(start_target)
    offset = 0.0
    for stage in stages:
        if elapsed < offset + stage.duration:
            return previous, stage, elapsed - offset
        offset += stage.duration
        previous = float(stage.target)
    return None


def target_at(stages: Sequence[Stage], elapsed: float, start_target: float = 0) -> float | None:
    """
    Interpolated concurrency target at *elapsed* seconds.

    Args:
        stages: The schedule.
        elapsed: Seconds since the run started.
        start_target: Concurrency before the first stage.

    Returns:
        The (fractional) target, or ``None`` once the schedule is over.
    """
    located = _locate(stages, elapsed, start_target)
    if located is None:
        return None
    previous, stage, into = located
    fraction = into / stage.duration
    return previous + (stage.target - previous) * fraction


def phase_at(
    stages: Sequence[Stage], elapsed: float, start_target: float = 0
) -> SchedulePhase | None:
    """Classify the stage active at *elapsed* as ramping, holding or draining."""
    located = _locate(stages, elapsed, start_target)
    if located is None:
        return None
    previous, stage, _ = located
    if stage.target > previous:
        return SchedulePhase.RAMPING
    if stage.target < previous:
        return SchedulePhase.DRAINING
    return SchedulePhase.HOLDING


def desired_lanes(target: float) -> int:
    """Round a fractional target to a lane count (halves round up)."""
    return int(target + 0.5)


@dataclass(frozen=True)
class ConcurrencySample:
    """One controller observation: desired versus live lanes."""

    elapsed: float
    desired: int
    live: int


# =====================================================================
# Lane controller
# =====================================================================


class VirtualUserScheduler:
    """
    Drive concurrent executor lanes along a stage schedule.

    Args:
        stages: Concurrency schedule.
        pacing: Delay drawn after every iteration of a lane.
        tick_interval: Seconds between controller ticks.
        graceful_stop: Seconds to wait for in-flight iterations after
            the final stage before giving up on joining lanes.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        *,
        pacing: Pacing | None = None,
        tick_interval: float = 0.05,
        graceful_stop: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not stages:
            raise ValueError("At least one stage is required")
        self.stages = tuple(stages)
        self.pacing = pacing or Pacing(0.0, 0.0)
        self.tick_interval = tick_interval
        self.graceful_stop = graceful_stop
        self.clock = clock

        self.samples: list[ConcurrencySample] = []
        self._lock = threading.Lock()
        self._live: dict[int, threading.Thread] = {}
        self._all_threads: list[threading.Thread] = []
        self._desired = 0
        self._lane_ids = itertools.count(1)
        self._stopping = threading.Event()
        self._iterations = 0

    @property
    def peak_concurrency(self) -> int:
        return max((sample.live for sample in self.samples), default=0)

    @property
    def iterations_completed(self) -> int:
        with self._lock:
            return self._iterations

    def live_lanes(self) -> int:
        with self._lock:
            return len(self._live)

    def run(self, executor: Executor, context: ExecutionContext) -> AggregateStats:
        """
        Execute the whole schedule; blocks until ramp-down completes.

        Returns:
            A snapshot of ``context.aggregator`` taken after every lane
            has stopped (or the graceful-stop window has elapsed).
        """
        logger.info(
            "Starting schedule: %d stage(s), %.1fs total",
            len(self.stages),
            total_duration(self.stages),
        )
        self._stopping.clear()
        started = self.clock()
        phase: SchedulePhase | None = None

        while True:
            elapsed = self.clock() - started
            target = target_at(self.stages, elapsed)
            if target is None:
                break

            current_phase = phase_at(self.stages, elapsed)
            if current_phase is not phase:
                logger.info("Schedule %s at %.1fs (target %.1f)", current_phase.value, elapsed, target)
                phase = current_phase

            desired = desired_lanes(target)
            live = self._scale_to(desired, executor, context)
            self.samples.append(ConcurrencySample(elapsed=elapsed, desired=desired, live=live))
            time.sleep(self.tick_interval)

        self._stop()
        logger.info(
            "Schedule complete: %d iteration(s), peak concurrency %d",
            self.iterations_completed,
            self.peak_concurrency,
        )
        return context.aggregator.snapshot()

    def _scale_to(self, desired: int, executor: Executor, context: ExecutionContext) -> int:
        """Start lanes until *desired* are live; return the live count."""
        with self._lock:
            self._desired = desired
            while len(self._live) < desired:
                lane_id = next(self._lane_ids)
                thread = threading.Thread(
                    target=self._lane_loop,
                    args=(lane_id, executor, context),
                    name=f"surge-lane-{lane_id}",
                    daemon=True,
                )
                self._live[lane_id] = thread
                self._all_threads.append(thread)
                thread.start()
            return len(self._live)

    def _retire_if_surplus(self, lane_id: int) -> bool:
        """Remove this lane from the live set when there are too many lanes."""
        with self._lock:
            if self._stopping.is_set() or len(self._live) > self._desired:
                self._live.pop(lane_id, None)
                return True
            return False

    def _lane_loop(self, lane_id: int, executor: Executor, context: ExecutionContext) -> None:
        iteration = 0
        try:
            while not self._stopping.is_set():
                try:
                    executor.iterate(context, lane_id, iteration)
                except Exception:
                    logger.exception("Lane %d iteration %d raised", lane_id, iteration)
                iteration += 1
                with self._lock:
                    self._iterations += 1

                if self._retire_if_surplus(lane_id):
                    break
                if self._stopping.wait(self.pacing.next_delay()):
                    break
                if self._retire_if_surplus(lane_id):
                    break
        finally:
            with self._lock:
                self._live.pop(lane_id, None)
            release = getattr(executor, "release_lane", None)
            if callable(release):
                release(lane_id)

    def _stop(self) -> None:
        """Signal the end of the run and wait for in-flight iterations."""
        self._stopping.set()
        deadline = self.clock() + self.graceful_stop

        with self._lock:
            threads = list(self._all_threads)

        for thread in threads:
            remaining = deadline - self.clock()
            if remaining <= 0:
                break
            thread.join(remaining)

        still_running = [thread.name for thread in threads if thread.is_alive()]
        if still_running:
            logger.warning(
                "%d lane(s) still running after %.1fs graceful stop: %s",
                len(still_running),
                self.graceful_stop,
                ", ".join(still_running),
            )


def run(
    stages: Sequence[Stage],
    executor: Executor,
    context: ExecutionContext,
    *,
    pacing: Pacing | None = None,
    graceful_stop: float = 30.0,
) -> AggregateStats:
    """Run *executor* along *stages*; convenience wrapper around the scheduler."""
    scheduler = VirtualUserScheduler(stages, pacing=pacing, graceful_stop=graceful_stop)
    return scheduler.run(executor, context)
