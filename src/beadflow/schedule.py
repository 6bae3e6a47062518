"""Cron-style schedule registry and an asyncio scheduler for the presets."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

    from beadflow.dispatcher import Dispatcher

logger = logging.getLogger(__name__)

CRON_PRESETS: dict[str, str] = {
    "hourly": "0 * * * *",
    "daily": "0 0 * * *",
    "weekly": "0 0 * * 0",
}


@dataclass(frozen=True)
class RegisteredHandler:
    """A handler registered for a cron expression."""

    cron: str
    handler: Callable[..., Any]
    name: str | None = None


class ScheduleRegistry:
    """Ordered collection of scheduled handlers."""

    def __init__(self) -> None:
        self._handlers: list[RegisteredHandler] = []

    def every(
        self,
        cron: str,
        handler: Callable[..., Any],
        name: str | None = None,
    ) -> RegisteredHandler:
        """Register ``handler`` to run on ``cron``."""
        entry = RegisteredHandler(cron=cron, handler=handler, name=name)
        self._handlers.append(entry)
        return entry

    def handlers(self, cron: str | None = None) -> list[RegisteredHandler]:
        """Return a copy of the registered handlers, optionally for one cron."""
        if cron:
            return [h for h in self._handlers if h.cron == cron]
        return list(self._handlers)

    def clear(self) -> None:
        self._handlers = []

    def __len__(self) -> int:
        return len(self._handlers)


def cron_name(cron: str) -> str | None:
    """Get the friendly name for a cron expression, if it is a preset."""
    for name, expression in CRON_PRESETS.items():
        if expression == cron:
            return name
    return None


def cron_expression(name: str) -> str:
    """Get the cron expression for a friendly name.

    Raises:
        ValueError: If ``name`` is not a preset
    """
    try:
        return CRON_PRESETS[name]
    except KeyError:
        msg = f"Unknown schedule '{name}' (expected one of {', '.join(CRON_PRESETS)})"
        raise ValueError(msg) from None


def next_fire(cron: str, after: datetime) -> datetime:
    """Return the first fire time of a preset cron strictly after ``after``.

    Naive datetimes are treated as UTC. Cron day 0 is Sunday.

    Raises:
        ValueError: If ``cron`` is not one of the presets
    """
    if after.tzinfo is None:
        after = after.replace(tzinfo=timezone.utc)

    name = cron_name(cron)
    if name == "hourly":
        base = after.replace(minute=0, second=0, microsecond=0)
        return base + timedelta(hours=1)
    if name == "daily":
        base = after.replace(hour=0, minute=0, second=0, microsecond=0)
        return base + timedelta(days=1)
    if name == "weekly":
        midnight = after.replace(hour=0, minute=0, second=0, microsecond=0)
        # weekday(): Monday=0 ... Sunday=6
        days_ahead = (6 - midnight.weekday()) % 7 or 7
        return midnight + timedelta(days=days_ahead)

    msg = f"Unsupported cron expression: {cron!r}"
    raise ValueError(msg)


class Scheduler:
    """Runs every registered handler at its next fire time, forever."""

    def __init__(
        self,
        registry: ScheduleRegistry,
        dispatcher: Dispatcher,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.registry = registry
        self.dispatcher = dispatcher
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tasks: list[asyncio.Task[None]] = []

    def is_running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        """Start one task per registered handler. Unsupported crons are skipped."""
        if self._tasks:
            return
        loop = asyncio.get_running_loop()
        for entry in self.registry.handlers():
            if cron_name(entry.cron) is None:
                logger.warning(
                    "Skipping schedule %s: unsupported cron %r",
                    entry.name or entry.cron,
                    entry.cron,
                )
                continue
            self._tasks.append(loop.create_task(self._run(entry)))

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, entry: RegisteredHandler) -> None:
        while True:
            now = self._clock()
            delay = (next_fire(entry.cron, now) - now).total_seconds()
            await asyncio.sleep(max(delay, 0))
            try:
                await self.dispatcher.run_schedule(entry.cron, entry.handler, entry.name)
            except (RuntimeError, OSError):
                logger.exception("Failed to record schedule run for %s", entry.cron)
