"""Live watcher: turn changes to issues.jsonl into a stream of typed events."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from watchdog.events import (
    DirCreatedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from beadflow.constants import (
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_POLL_INTERVAL_MS,
    ISSUES_FILENAME,
)
from beadflow.deps import completed_epics, readiness_changes
from beadflow.diff import classify_update, diff, field_changes
from beadflow.models import Issue, Status, issue_to_dict
from beadflow.snapshot import Snapshot, issues_path, read_snapshot

if TYPE_CHECKING:
    from collections.abc import Callable

    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)

LISTENER_KINDS = ("issue", "change", "error")


@dataclass(frozen=True)
class WatcherEvent:
    """An event representing a change to one issue (or epic)."""

    type: str  # "created", "updated", "closed", "reopened", "started", "ready", ...
    issue: Issue
    previous: Issue | None = None
    subject: str = "issue"  # "issue" or "epic"
    changes: dict[str, dict[str, Any]] = field(
        default_factory=dict[str, dict[str, Any]],
    )

    @property
    def name(self) -> str:
        """Handler event name, e.g. ``issue.created`` or ``epic.completed``."""
        return f"{self.subject}.{self.type}"

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for JSON serialization."""
        return {
            "event": self.name,
            "issue_id": self.issue.id,
            "issue": issue_to_dict(self.issue),
            "previous": issue_to_dict(self.previous) if self.previous else None,
            "changes": {
                name: {"old": _plain(change["old"]), "new": _plain(change["new"])}
                for name, change in self.changes.items()
            },
        }


def _plain(value: Any) -> Any:
    """Normalize a field value for JSON output."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Status):
        return value.value
    if isinstance(value, tuple):
        return list(value)
    return value


def compute_events(
    before: Snapshot,
    after: Snapshot,
    *,
    compare_labels: bool = False,
) -> list[WatcherEvent]:
    """Compute the typed events between a baseline and a new snapshot.

    Record changes come first (in log order), then readiness flips, then
    completed epics.
    """
    events: list[WatcherEvent] = []
    result = diff(before, after, compare_labels=compare_labels)

    events.extend(WatcherEvent(type="created", issue=issue) for issue in result.created)

    for updated in result.updated:
        changes = field_changes(
            updated.before,
            updated.after,
            compare_labels=compare_labels,
        )
        events.append(
            WatcherEvent(
                type=classify_update(updated.before, updated.after),
                issue=updated.after,
                previous=updated.before,
                changes=changes,
            ),
        )
        if (
            updated.before.status == Status.OPEN
            and updated.after.status == Status.IN_PROGRESS
        ):
            events.append(
                WatcherEvent(
                    type="started",
                    issue=updated.after,
                    previous=updated.before,
                    changes=changes,
                ),
            )

    for issue in result.closed:
        previous = before[issue.id]
        events.append(
            WatcherEvent(
                type="closed",
                issue=issue,
                previous=previous,
                changes=field_changes(previous, issue, compare_labels=compare_labels),
            ),
        )

    flips = readiness_changes(before, after)
    events.extend(
        WatcherEvent(type="ready", issue=after[issue_id], previous=before.get(issue_id))
        for issue_id in flips.became_ready
    )
    events.extend(
        WatcherEvent(
            type="blocked",
            issue=after[issue_id],
            previous=before.get(issue_id),
        )
        for issue_id in flips.became_blocked
    )

    events.extend(
        WatcherEvent(
            type="completed",
            issue=after[epic_id],
            previous=before.get(epic_id),
            subject="epic",
        )
        for epic_id in completed_epics(before, after)
    )

    return events


class _LogEventHandler(FileSystemEventHandler):
    """Forwards watchdog notifications for issues.jsonl to a callback."""

    def __init__(self, on_change: Callable[[], None]) -> None:
        super().__init__()
        self._on_change = on_change

    def on_modified(self, event: DirModifiedEvent | FileModifiedEvent) -> None:
        if str(event.src_path).endswith(ISSUES_FILENAME):
            self._on_change()

    def on_created(self, event: DirCreatedEvent | FileCreatedEvent) -> None:
        if str(event.src_path).endswith(ISSUES_FILENAME):
            self._on_change()

    def on_moved(self, event: DirMovedEvent | FileMovedEvent) -> None:
        # Atomic writes land via rename
        if str(event.dest_path).endswith(ISSUES_FILENAME):
            self._on_change()


class LogWatcher:
    """Watches a beads directory and emits events for every reconciliation.

    Two notification sources feed the same debounced trigger: a watchdog
    observer (best effort) and a fixed-interval size poll. Reconciliation
    passes are serialized; a trigger that arrives while a pass is running
    guarantees exactly one more pass afterwards.
    """

    def __init__(
        self,
        beads_dir: str | Path,
        *,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        compare_labels: bool = False,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        """Initialize the watcher.

        Args:
            beads_dir: Path to the .beads directory
            debounce_ms: Window in which repeated triggers collapse into one pass
            poll_interval_ms: Interval of the file size poll
            compare_labels: Also report label-only changes as updates
            observer_factory: Factory for the filesystem observer
        """
        self.beads_dir = Path(beads_dir)
        self.path = issues_path(self.beads_dir)
        self.debounce_ms = debounce_ms
        self.poll_interval_ms = poll_interval_ms
        self.compare_labels = compare_labels
        self._observer_factory = observer_factory

        self._listeners: dict[str, list[Callable[..., Any]]] = {
            kind: [] for kind in LISTENER_KINDS
        }
        self._running = False
        self._baseline = Snapshot()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: BaseObserver | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._pass_task: asyncio.Task[None] | None = None
        self._dirty = False
        self._last_polled_size = 0
        self.pass_count = 0

    @property
    def baseline(self) -> Snapshot:
        """The snapshot the next reconciliation will diff against."""
        return self._baseline

    def is_running(self) -> bool:
        """Check whether the watcher is running."""
        return self._running

    def on(self, kind: str, callback: Callable[..., Any]) -> None:
        """Register a listener.

        ``issue`` listeners receive a :class:`WatcherEvent`, ``change``
        listeners receive nothing and ``error`` listeners receive the
        exception. Coroutine functions are awaited.
        """
        if kind not in self._listeners:
            msg = f"Unknown listener kind: {kind!r} (expected one of {LISTENER_KINDS})"
            raise ValueError(msg)
        self._listeners[kind].append(callback)

    async def start(self) -> None:
        """Load the baseline and arm both notification sources."""
        if self._running:
            return

        self._loop = asyncio.get_running_loop()
        self._baseline = await asyncio.to_thread(self._load_baseline)
        self._last_polled_size = self._baseline.size
        self._dirty = False
        self._running = True

        self._start_observer()
        self._poll_task = self._loop.create_task(self._poll())
        logger.debug(
            "Watching %s (%d issues, %d bytes)",
            self.path,
            len(self._baseline),
            self._baseline.size,
        )

    async def stop(self) -> None:
        """Release both notification sources and wait for an in-flight pass.

        Safe to call when already stopped.
        """
        if not self._running:
            return
        self._running = False

        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        if self._observer is not None:
            observer = self._observer
            self._observer = None
            observer.stop()
            await asyncio.to_thread(observer.join)

        pass_task = self._pass_task
        if pass_task is not None and pass_task is not asyncio.current_task():
            await pass_task
        self._pass_task = None

        logger.debug("Stopped watching %s", self.path)

    async def reconcile(self) -> None:
        """Run a reconciliation pass now, serialized with any pass in flight."""
        if self._pass_task is not None and not self._pass_task.done():
            self._dirty = True
            await self._pass_task
            return
        self._pass_task = asyncio.get_running_loop().create_task(self._run_passes())
        await self._pass_task

    def _load_baseline(self) -> Snapshot:
        """Load the initial snapshot; a missing log is an empty baseline."""
        try:
            return read_snapshot(self.beads_dir)
        except FileNotFoundError:
            return Snapshot()

    def _start_observer(self) -> None:
        """Start the filesystem observer, degrading to polling on failure."""
        try:
            observer = self._observer_factory()
            observer.schedule(
                _LogEventHandler(self._notify_threadsafe),
                str(self.beads_dir),
                recursive=False,
            )
            observer.start()
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Filesystem notifications unavailable for %s, polling only: %s",
                self.beads_dir,
                e,
            )
            self._observer = None
            return
        self._observer = observer

    def _notify_threadsafe(self) -> None:
        """Called from the observer thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._schedule_reconcile)
        except RuntimeError:
            # Loop closed between the check and the call
            return

    def _schedule_reconcile(self) -> None:
        """(Re)arm the debounce timer."""
        if not self._running or self._loop is None:
            return
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = self._loop.call_later(
            self.debounce_ms / 1000,
            self._debounce_fired,
        )

    def _debounce_fired(self) -> None:
        self._debounce_handle = None
        if not self._running or self._loop is None:
            return
        if self._pass_task is not None and not self._pass_task.done():
            self._dirty = True
            return
        self._pass_task = self._loop.create_task(self._run_passes())

    async def _run_passes(self) -> None:
        """Run passes until no trigger arrived during the last one."""
        while True:
            self._dirty = False
            await self._reconcile_once()
            if not (self._dirty and self._running):
                break

    async def _poll(self) -> None:
        """Trigger a reconciliation whenever the log size changes."""
        interval = self.poll_interval_ms / 1000
        while self._running:
            await asyncio.sleep(interval)
            try:
                size = self.path.stat().st_size
            except OSError:
                continue
            if size != self._last_polled_size:
                self._last_polled_size = size
                self._schedule_reconcile()

    async def _reconcile_once(self) -> None:
        """Re-read the log, emit events against the baseline, adopt the new state."""
        try:
            snapshot = await asyncio.to_thread(read_snapshot, self.beads_dir)
        except FileNotFoundError:
            logger.debug("Issue log %s disappeared, skipping pass", self.path)
            return
        except (RuntimeError, OSError) as e:
            await self._emit_error(e)
            return

        previous = self._baseline
        if snapshot.size < previous.size:
            logger.info(
                "Issue log shrank from %d to %d bytes, adopting new baseline",
                previous.size,
                snapshot.size,
            )
            events: list[WatcherEvent] = []
        else:
            events = compute_events(
                previous,
                snapshot,
                compare_labels=self.compare_labels,
            )

        self._baseline = snapshot
        self.pass_count += 1

        for event in events:
            logger.debug("%s %s", event.name, event.issue.id)
            await self._emit("issue", event)
        await self._emit("change")

    async def _emit(self, kind: str, *args: Any) -> None:
        for callback in list(self._listeners[kind]):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:  # noqa: BLE001
                await self._emit_error(e)

    async def _emit_error(self, error: Exception) -> None:
        listeners = list(self._listeners["error"])
        if not listeners:
            logger.error("Watcher error: %s", error)
            return
        for callback in listeners:
            try:
                result = callback(error)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Watcher error listener failed")
