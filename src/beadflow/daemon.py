"""Daemon: wire the watcher, handlers, ledger and scheduler together."""

from __future__ import annotations

import asyncio
import inspect
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from beadflow.config import WorkflowConfig
from beadflow.diff import current_revision, read_content_at_revision
from beadflow.dispatcher import Dispatcher, ExecutionResult
from beadflow.handlers import HandlerScanner
from beadflow.ledger import ExecutionLedger
from beadflow.mutations import BdMutator
from beadflow.queries import SnapshotSource
from beadflow.schedule import ScheduleRegistry, Scheduler
from beadflow.snapshot import Snapshot, issues_path, parse_snapshot, read_snapshot
from beadflow.watcher import LogWatcher, WatcherEvent, compute_events

if TYPE_CHECKING:
    from collections.abc import Callable

    from beadflow.mutations import Mutator

logger = logging.getLogger(__name__)


class Daemon:
    """Long-running workflow runner for one beads directory.

    Watcher events are queued and consumed by a single dispatch worker, so a
    slow handler delays later dispatches but never the watcher itself.
    """

    def __init__(
        self,
        beads_dir: str | Path,
        config: WorkflowConfig | None = None,
        *,
        mutator: Mutator | None = None,
        on_handler_executed: Callable[[WatcherEvent, ExecutionResult], Any] | None = None,
        watcher: LogWatcher | None = None,
    ) -> None:
        """Initialize the daemon.

        Args:
            beads_dir: Path to the .beads directory
            config: Settings (default: loaded from workflows.toml)
            mutator: Mutation capability for handlers (default: ``bd`` in
                the project directory)
            on_handler_executed: Called after every handler execution
            watcher: Pre-built watcher (default: one built from ``config``)
        """
        self.beads_dir = Path(beads_dir)
        self.config = config if config is not None else WorkflowConfig.load(self.beads_dir)
        self.on_handler_executed = on_handler_executed

        if mutator is None:
            mutator = BdMutator(self.beads_dir.parent, self.config.bd_executable)

        self.scanner = HandlerScanner(self.beads_dir)
        self.ledger = ExecutionLedger(self.beads_dir)
        self.source = SnapshotSource(self.beads_dir)
        self.dispatcher = Dispatcher(
            self.ledger,
            self.scanner.resolve,
            self.source,
            mutator,
            trigger=self.config.trigger,
        )
        self.registry = ScheduleRegistry()
        self.scheduler = Scheduler(self.registry, self.dispatcher)
        self.watcher = watcher or LogWatcher(
            self.beads_dir,
            debounce_ms=self.config.debounce_ms,
            poll_interval_ms=self.config.poll_interval_ms,
            compare_labels=self.config.compare_labels,
        )
        self.watcher.on("issue", self._enqueue)
        self.watcher.on("change", self._sync_snapshot)
        self.watcher.on("error", self._on_watcher_error)

        self._queue: asyncio.Queue[WatcherEvent | None] | None = None
        self._worker: asyncio.Task[None] | None = None
        self._running = False

    def is_running(self) -> bool:
        return self._running

    def handler_count(self) -> int:
        return len(self.scanner.handlers())

    async def start(self) -> None:
        """Load handlers, then start the dispatch worker, watcher and scheduler."""
        if self._running:
            return

        await self._load_handlers()
        self.dispatcher.revision = await asyncio.to_thread(current_revision, self.beads_dir)

        self._queue = asyncio.Queue()
        self._worker = asyncio.get_running_loop().create_task(self._work())

        await self.watcher.start()
        self.source.set(self.watcher.baseline)
        self.scheduler.start()
        self._running = True

        logger.info(
            "Daemon started, watching %s with %d handler(s)",
            self.beads_dir,
            self.handler_count(),
        )

    async def stop(self) -> None:
        """Stop watching and wait for already queued dispatches. Idempotent."""
        if not self._running:
            return
        self._running = False

        await self.watcher.stop()
        await self.scheduler.stop()

        if self._queue is not None and self._worker is not None:
            pending = self._queue.qsize()
            if pending:
                logger.info("Finishing %d queued dispatch(es)", pending)
            self._queue.put_nowait(None)
            await self._worker
        self._queue = None
        self._worker = None

        logger.info("Daemon stopped")

    async def run_once(
        self,
        since: str | None = None,
    ) -> list[tuple[WatcherEvent, ExecutionResult | None]]:
        """Dispatch every event between ``since`` and the working copy.

        ``since`` is a git revision of the issue log; without it the baseline
        is empty and every issue counts as created. Pairs that already ran
        successfully are skipped by the ledger, so repeated runs are safe.

        Raises:
            FileNotFoundError: If the issue log does not exist
            ValueError: If ``since`` is not a revision of an enclosing git repo
        """
        await self._load_handlers()

        if since:
            content = await asyncio.to_thread(
                read_content_at_revision,
                issues_path(self.beads_dir),
                since,
            )
            before = parse_snapshot(content)
        else:
            before = Snapshot()

        after = await asyncio.to_thread(read_snapshot, self.beads_dir)
        self.source.set(after)
        self.dispatcher.revision = await asyncio.to_thread(current_revision, self.beads_dir)

        results: list[tuple[WatcherEvent, ExecutionResult | None]] = []
        for event in compute_events(before, after, compare_labels=self.config.compare_labels):
            result = await self.dispatcher.dispatch(event)
            if result is not None:
                await self._notify_executed(event, result)
            results.append((event, result))
        return results

    async def retry(self, issue_id: str, event_name: str) -> ExecutionResult | None:
        """Re-run a failed pair against the current log."""
        await self._load_handlers()
        await asyncio.to_thread(self.source.refresh)
        return await self.dispatcher.retry(issue_id, event_name)

    async def retry_failed(self) -> dict[tuple[str, str], ExecutionResult | None]:
        """Re-run every failed pair that has not succeeded since."""
        await self._load_handlers()
        await asyncio.to_thread(self.source.refresh)
        return await self.dispatcher.retry_failed()

    async def _load_handlers(self) -> None:
        infos = await asyncio.to_thread(self.scanner.scan)
        for info in infos:
            logger.debug("Found handler %s for %s", info.filename, info.event)

        self.registry.clear()
        for info in self.scanner.schedule_handlers():
            handler = self.scanner.resolve(info.event)
            if handler is not None and info.cron is not None:
                self.registry.every(info.cron, handler, name=info.filename)

    def _enqueue(self, event: WatcherEvent) -> None:
        self.source.set(self.watcher.baseline)
        if self._queue is not None:
            self._queue.put_nowait(event)

    def _sync_snapshot(self) -> None:
        self.source.set(self.watcher.baseline)

    def _on_watcher_error(self, error: Exception) -> None:
        logger.error("Watcher error: %s", error)

    async def _work(self) -> None:
        queue = self._queue
        if queue is None:
            return
        while True:
            event = await queue.get()
            if event is None:
                break
            try:
                result = await self.dispatcher.dispatch(event)
                if result is not None:
                    await self._notify_executed(event, result)
            except Exception:
                # One bad event must not end the worker; later events still run
                logger.exception("Failed to dispatch %s for %s", event.name, event.issue.id)

    async def _notify_executed(self, event: WatcherEvent, result: ExecutionResult) -> None:
        if result.success:
            logger.info("%s %s: ok (%.0f ms)", event.name, event.issue.id, result.duration_ms)
        else:
            logger.warning("%s %s: failed: %s", event.name, event.issue.id, result.error)

        if self.on_handler_executed is not None:
            outcome = self.on_handler_executed(event, result)
            if inspect.isawaitable(outcome):
                await outcome
