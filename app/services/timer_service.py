"""
Timer Service
Deadline-based countdown clocks for the overall attempt and the active section
FILE: app/services/timer_service.py
"""
import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


def remaining_seconds(deadline: float, now: float) -> int:
    """
    Remaining whole seconds until `deadline`, clamped at zero

    Recomputed from the deadline on every call; nothing is accumulated,
    so a suspended tab or a late tick cannot make the clock drift.
    """
    return max(0, math.ceil(deadline - now))


class Countdown:
    """Single countdown clock defined by an absolute deadline"""

    def __init__(self, name: str, deadline: float):
        self.name = name
        self.deadline = deadline
        self._suspended_remaining: Optional[float] = None
        self._stopped = False

    @classmethod
    def starting_at(cls, name: str, now: float, duration_seconds: float) -> "Countdown":
        return cls(name, now + duration_seconds)

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def suspended(self) -> bool:
        return self._suspended_remaining is not None

    def remaining(self, now: float) -> int:
        if self._suspended_remaining is not None:
            return max(0, math.ceil(self._suspended_remaining))
        return remaining_seconds(self.deadline, now)

    def expired(self, now: float) -> bool:
        return not self._stopped and not self.suspended and now >= self.deadline

    def suspend(self, now: float) -> None:
        if self._stopped or self.suspended:
            return
        self._suspended_remaining = max(0.0, self.deadline - now)

    def resume(self, now: float) -> None:
        if self._suspended_remaining is None:
            return
        self.deadline = now + self._suspended_remaining
        self._suspended_remaining = None

    def stop(self) -> None:
        self._stopped = True


@dataclass
class TickResult:
    """What happened on one tick; None fields mean the clock is not armed"""
    overall_remaining: Optional[int]
    section_remaining: Optional[int]
    overall_expired: bool = False
    expired_section_id: Optional[str] = None


class TimerSubsystem:
    """
    Overall and section clocks of one attempt

    The overall deadline is fixed when armed and never extended. The
    section clock exists only while the active section has a time limit.
    After teardown() every method is a no-op and tick() returns None.
    """

    def __init__(self, clock: Callable[[], float]):
        self._clock = clock
        self.overall: Optional[Countdown] = None
        self.section: Optional[Countdown] = None
        self.section_id: Optional[str] = None
        self._overall_fired = False
        self._torn_down = False

    def now(self) -> float:
        return self._clock()

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    def arm_overall(self, deadline: Optional[float]) -> None:
        if self._torn_down or deadline is None:
            return
        self.overall = Countdown("overall", deadline)

    def arm_section(self, section_id: str, time_limit_seconds: Optional[int]) -> None:
        """Arm the clock for a newly activated section (replaces any previous one)"""
        if self._torn_down:
            return
        self.stop_section()
        if time_limit_seconds:
            self.section = Countdown.starting_at(f"section:{section_id}", self.now(), time_limit_seconds)
            self.section_id = section_id
            logger.debug(f"⏱️ Section clock armed for {section_id}: {time_limit_seconds}s")

    def stop_section(self) -> None:
        if self.section is not None:
            self.section.stop()
        self.section = None
        self.section_id = None

    def suspend_section(self) -> None:
        if self.section is not None:
            self.section.suspend(self.now())

    def resume_section(self) -> None:
        if self.section is not None and not self._torn_down:
            self.section.resume(self.now())

    def overall_remaining(self) -> Optional[int]:
        if self.overall is None:
            return None
        return self.overall.remaining(self.now())

    def section_remaining(self) -> Optional[int]:
        if self.section is None:
            return None
        return self.section.remaining(self.now())

    def tick(self) -> Optional[TickResult]:
        """
        Recompute both clocks and report expiries

        The overall expiry is reported once; the section expiry is reported
        until the owner finishes the section (which replaces or stops the
        section clock), so a missed handler is retried on the next tick.
        """
        if self._torn_down:
            return None

        now = self.now()
        result = TickResult(
            overall_remaining=self.overall.remaining(now) if self.overall else None,
            section_remaining=self.section.remaining(now) if self.section else None,
        )

        if self.overall is not None and not self._overall_fired and self.overall.expired(now):
            self._overall_fired = True
            result.overall_expired = True
            # TimeUp preempts a section expiry in the same tick
            return result

        if self.section is not None and self.section.expired(now):
            result.expired_section_id = self.section_id

        return result

    def teardown(self) -> None:
        if self._torn_down:
            return
        self.stop_section()
        if self.overall is not None:
            self.overall.stop()
        self._torn_down = True
        logger.debug("⏹️ Timers torn down")


class TickDriver:
    """
    Asyncio task calling `on_tick` at a fixed interval until stopped

    Each tick is awaited before the next sleep starts, so ticks never
    overlap and all state mutation stays on the event loop.
    """

    def __init__(self, on_tick: Callable[[], Awaitable[None]], interval_seconds: float = 1.0):
        self._on_tick = on_tick
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopped

    def start(self) -> None:
        if self.running or self._stopped:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self._interval)
            if self._stopped:
                break
            try:
                await self._on_tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"❌ Tick handler failed: {e}", exc_info=True)

    def stop(self) -> None:
        """Stop for good; a driver stopped from inside its own tick exits after that tick"""
        self._stopped = True
        task, self._task = self._task, None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()
