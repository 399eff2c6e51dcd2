"""
Tests for deadline-based countdowns and the tick driver.
"""
import asyncio

from app.services.timer_service import Countdown, TickDriver, TimerSubsystem, remaining_seconds
from tests.factories import FakeClock


class TestRemainingSeconds:

    def test_rounds_up_partial_seconds(self):
        assert remaining_seconds(100.0, 40.2) == 60

    def test_clamps_at_zero(self):
        assert remaining_seconds(100.0, 250.0) == 0


class TestCountdown:

    def test_suspend_preserves_remaining(self):
        countdown = Countdown.starting_at("section", now=0.0, duration_seconds=60)
        countdown.suspend(now=20.0)

        # Time passing while suspended does not count
        assert countdown.remaining(now=500.0) == 40
        assert countdown.expired(now=500.0) is False

        countdown.resume(now=500.0)
        assert countdown.remaining(now=510.0) == 30
        assert countdown.expired(now=540.0) is True

    def test_stopped_countdown_never_expires(self):
        countdown = Countdown("overall", deadline=10.0)
        countdown.stop()
        assert countdown.expired(now=100.0) is False


class TestTimerSubsystem:

    def test_late_tick_recomputes_from_deadline(self):
        clock = FakeClock(start=0.0)
        timers = TimerSubsystem(clock)
        timers.arm_overall(120.0)

        clock.advance(45.4)  # e.g. tab suspended, ticks missed
        result = timers.tick()
        assert result.overall_remaining == 75
        assert result.overall_expired is False

    def test_overall_expiry_fires_once(self):
        clock = FakeClock(start=0.0)
        timers = TimerSubsystem(clock)
        timers.arm_overall(10.0)

        clock.advance(10)
        assert timers.tick().overall_expired is True
        clock.advance(1)
        assert timers.tick().overall_expired is False

    def test_overall_expiry_preempts_section_expiry(self):
        clock = FakeClock(start=0.0)
        timers = TimerSubsystem(clock)
        timers.arm_overall(30.0)
        timers.arm_section("sec1", 30)

        clock.advance(30)
        result = timers.tick()
        assert result.overall_expired is True
        assert result.expired_section_id is None

    def test_section_expiry_reported_until_replaced(self):
        clock = FakeClock(start=0.0)
        timers = TimerSubsystem(clock)
        timers.arm_section("sec1", 5)

        clock.advance(6)
        assert timers.tick().expired_section_id == "sec1"
        assert timers.tick().expired_section_id == "sec1"

        timers.arm_section("sec2", None)
        result = timers.tick()
        assert result.expired_section_id is None
        assert result.section_remaining is None

    def test_no_work_after_teardown(self):
        clock = FakeClock(start=0.0)
        timers = TimerSubsystem(clock)
        timers.arm_overall(5.0)
        timers.teardown()

        clock.advance(10)
        assert timers.tick() is None
        timers.arm_section("sec1", 10)
        assert timers.section is None


class TestTickDriver:

    async def test_ticks_until_stopped(self):
        calls = []

        async def on_tick():
            calls.append(1)

        driver = TickDriver(on_tick, interval_seconds=0.01)
        driver.start()
        await asyncio.sleep(0.1)
        driver.stop()
        seen = len(calls)
        await asyncio.sleep(0.05)

        assert seen >= 2
        assert len(calls) == seen
        assert driver.running is False

    async def test_stop_from_inside_tick(self):
        calls = []
        driver = None

        async def on_tick():
            calls.append(1)
            driver.stop()

        driver = TickDriver(on_tick, interval_seconds=0.01)
        driver.start()
        await asyncio.sleep(0.1)

        assert len(calls) == 1

    async def test_failing_tick_does_not_kill_driver(self):
        calls = []

        async def on_tick():
            calls.append(1)
            raise RuntimeError("boom")

        driver = TickDriver(on_tick, interval_seconds=0.01)
        driver.start()
        await asyncio.sleep(0.08)
        driver.stop()

        assert len(calls) >= 2
