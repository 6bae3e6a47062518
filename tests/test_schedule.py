"""Tests for the schedule registry and scheduler."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from issue_helpers import wait_until

from beadflow.schedule import (
    ScheduleRegistry,
    Scheduler,
    cron_expression,
    cron_name,
    next_fire,
)


def noop(_ctx: Any) -> None:
    pass


class FakeDispatcher:
    """Stands in for the dispatcher and remembers schedule runs."""

    def __init__(self) -> None:
        self.runs: list[tuple[str, str | None]] = []

    async def run_schedule(self, cron: str, handler: Any, name: str | None = None) -> None:
        self.runs.append((cron, name))


class TestRegistry:
    """Tests for ScheduleRegistry."""

    def test_every_registers(self) -> None:
        """Test every() returns the registered entry."""
        registry = ScheduleRegistry()
        entry = registry.every("0 * * * *", noop, name="every.hour.py")
        assert entry.cron == "0 * * * *"
        assert entry.handler is noop
        assert len(registry) == 1

    def test_handlers_filter_and_copy(self) -> None:
        """Test handlers() filters by cron and returns a copy."""
        registry = ScheduleRegistry()
        registry.every("0 * * * *", noop)
        registry.every("0 0 * * *", noop)
        registry.every("0 * * * *", noop)

        assert len(registry.handlers("0 * * * *")) == 2
        assert len(registry.handlers("0 0 * * 0")) == 0

        registry.handlers().clear()
        assert len(registry) == 3

    def test_clear(self) -> None:
        """Test clear() removes every handler."""
        registry = ScheduleRegistry()
        registry.every("0 * * * *", noop)
        registry.clear()
        assert len(registry) == 0
        assert registry.handlers() == []


class TestCronNames:
    """Tests for friendly cron names."""

    def test_round_trip_presets(self) -> None:
        """Test every preset maps both ways."""
        for name in ("hourly", "daily", "weekly"):
            assert cron_name(cron_expression(name)) == name

    def test_unknown_expression_has_no_name(self) -> None:
        """Test a custom expression has no friendly name."""
        assert cron_name("*/5 * * * *") is None

    def test_unknown_name_raises(self) -> None:
        """Test an unknown friendly name is rejected."""
        with pytest.raises(ValueError, match="Unknown schedule"):
            cron_expression("monthly")


class TestNextFire:
    """Tests for fire time computation."""

    def test_hourly(self) -> None:
        """Test hourly fires at the top of the next hour."""
        after = datetime(2026, 3, 4, 9, 15, tzinfo=timezone.utc)
        assert next_fire("0 * * * *", after) == datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)

    def test_strictly_after(self) -> None:
        """Test a time exactly on the boundary moves to the next one."""
        after = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)
        assert next_fire("0 * * * *", after) == after + timedelta(hours=1)

    def test_daily(self) -> None:
        """Test daily fires at the next midnight."""
        after = datetime(2026, 3, 4, 23, 59, tzinfo=timezone.utc)
        assert next_fire("0 0 * * *", after) == datetime(2026, 3, 5, tzinfo=timezone.utc)

    def test_weekly_fires_on_sunday(self) -> None:
        """Test weekly fires at the next Sunday midnight."""
        wednesday = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)
        fire = next_fire("0 0 * * 0", wednesday)
        assert fire == datetime(2026, 3, 8, tzinfo=timezone.utc)
        assert fire.weekday() == 6

    def test_weekly_from_sunday(self) -> None:
        """Test a Sunday moves on to the following Sunday."""
        sunday = datetime(2026, 3, 8, 0, 0, tzinfo=timezone.utc)
        assert next_fire("0 0 * * 0", sunday) == datetime(2026, 3, 15, tzinfo=timezone.utc)

    def test_naive_is_utc(self) -> None:
        """Test naive datetimes are treated as UTC."""
        fire = next_fire("0 * * * *", datetime(2026, 3, 4, 9, 15))
        assert fire.tzinfo is not None
        assert fire.hour == 10

    def test_unsupported(self) -> None:
        """Test custom expressions are rejected."""
        with pytest.raises(ValueError, match="Unsupported cron"):
            next_fire("*/5 * * * *", datetime(2026, 3, 4, tzinfo=timezone.utc))


class TestScheduler:
    """Tests for the asyncio scheduler."""

    @pytest.mark.asyncio
    async def test_runs_due_handler(self) -> None:
        """Test a handler runs once its fire time is reached."""
        registry = ScheduleRegistry()
        registry.every("0 * * * *", noop, name="every.hour.py")
        dispatcher = FakeDispatcher()

        almost_top_of_hour = datetime(2026, 3, 4, 9, 59, 59, 990000, tzinfo=timezone.utc)
        scheduler = Scheduler(registry, dispatcher, clock=lambda: almost_top_of_hour)  # type: ignore[arg-type]
        scheduler.start()
        try:
            assert scheduler.is_running()
            await wait_until(lambda: bool(dispatcher.runs))
        finally:
            await scheduler.stop()

        assert dispatcher.runs[0] == ("0 * * * *", "every.hour.py")
        assert not scheduler.is_running()

    @pytest.mark.asyncio
    async def test_unsupported_cron_skipped(self) -> None:
        """Test handlers with unsupported crons are not started."""
        registry = ScheduleRegistry()
        registry.every("*/5 * * * *", noop)
        scheduler = Scheduler(registry, FakeDispatcher())  # type: ignore[arg-type]
        scheduler.start()
        assert not scheduler.is_running()
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_pending(self) -> None:
        """Test stop() cancels handlers that have not fired yet."""
        registry = ScheduleRegistry()
        registry.every("0 0 * * 0", noop)
        dispatcher = FakeDispatcher()
        scheduler = Scheduler(registry, dispatcher)  # type: ignore[arg-type]
        scheduler.start()
        await scheduler.stop()
        await scheduler.stop()
        assert dispatcher.runs == []
        assert not scheduler.is_running()

    @pytest.mark.asyncio
    async def test_record_failure_keeps_schedule_running(self) -> None:
        """Test a run that cannot be recorded does not end the schedule."""

        class MissingDirDispatcher(FakeDispatcher):
            async def run_schedule(self, cron: str, handler: Any, name: str | None = None) -> None:
                if not self.runs:
                    self.runs.append(("failed", name))
                    msg = "No such file or directory: '.beads/workflows.jsonl'"
                    raise FileNotFoundError(msg)
                await super().run_schedule(cron, handler, name)

        registry = ScheduleRegistry()
        registry.every("0 * * * *", noop, name="every.hour.py")
        dispatcher = MissingDirDispatcher()
        almost_top_of_hour = datetime(2026, 3, 4, 9, 59, 59, 990000, tzinfo=timezone.utc)
        scheduler = Scheduler(registry, dispatcher, clock=lambda: almost_top_of_hour)  # type: ignore[arg-type]
        scheduler.start()
        try:
            await wait_until(lambda: len(dispatcher.runs) >= 2)
        finally:
            await scheduler.stop()

        assert dispatcher.runs[:2] == [("failed", "every.hour.py"), ("0 * * * *", "every.hour.py")]
