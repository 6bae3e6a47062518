"""Route watcher events to handlers and record every outcome in the ledger."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from beadflow.deps import get_epic
from beadflow.ledger import ExecutionLedger, ExecutionRecord
from beadflow.queries import EpicQueries, IssueQueries, SnapshotSource

if TYPE_CHECKING:
    from collections.abc import Callable

    from beadflow.models import Epic, Issue
    from beadflow.mutations import Mutator
    from beadflow.watcher import WatcherEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandlerContext:
    """Everything an event handler receives."""

    event: str
    issue: Issue
    issues: IssueQueries
    epics: EpicQueries
    previous: Issue | None = None
    epic: Epic | None = None


@dataclass(frozen=True)
class ScheduleContext:
    """Everything a scheduled handler receives."""

    cron: str
    triggered_at: datetime
    issues: IssueQueries
    epics: EpicQueries


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    error: str | None = None
    duration_ms: float = 0.0


def handler_name(handler: Any) -> str:
    """Name recorded in the ledger: the handler file, else the function name."""
    name = getattr(handler, "name", None)
    if isinstance(name, str):
        return name
    return getattr(handler, "__name__", type(handler).__name__)


async def invoke(handler: Any, context: Any) -> ExecutionResult:
    """Run one handler, never letting its exception escape.

    Coroutine functions run on the event loop; plain functions run in a
    worker thread so a slow handler does not block the loop. Either may
    return an awaitable, which is awaited.
    """
    func = getattr(handler, "func", handler)
    start = time.perf_counter()
    try:
        if inspect.iscoroutinefunction(func):
            await func(context)
        else:
            result = await asyncio.to_thread(func, context)
            if inspect.isawaitable(result):
                await result
    except Exception as e:  # noqa: BLE001
        duration_ms = (time.perf_counter() - start) * 1000
        error = str(e) or type(e).__name__
        logger.warning("Handler %s failed: %s", handler_name(handler), error)
        return ExecutionResult(success=False, error=error, duration_ms=duration_ms)

    return ExecutionResult(
        success=True,
        duration_ms=(time.perf_counter() - start) * 1000,
    )


class Dispatcher:
    """Invokes the handler matching each event, at most once per success.

    The ledger is the source of truth for what already ran: an
    ``(issue, event)`` pair with a successful record is skipped unless the
    dispatch is forced.
    """

    def __init__(
        self,
        ledger: ExecutionLedger,
        resolver: Callable[[str], Any],
        source: SnapshotSource,
        mutator: Mutator | None = None,
        trigger: str = "daemon",
        revision: str | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            ledger: Ledger to consult and record into
            resolver: Maps an event name to a handler, or None
            source: Current snapshot for handler queries
            mutator: Mutation capability exposed through ``issues``
            trigger: Trigger recorded for dispatched events
            revision: Revision marker recorded as ``commit``
        """
        self.ledger = ledger
        self.resolver = resolver
        self.source = source
        self.trigger = trigger
        self.revision = revision
        self.issues = IssueQueries(source, mutator)
        self.epics = EpicQueries(source)

    async def dispatch(
        self,
        event: WatcherEvent,
        *,
        force: bool = False,
    ) -> ExecutionResult | None:
        """Dispatch one watcher event.

        Returns:
            The execution result, or None if no handler is registered for the
            event or it already ran successfully
        """
        handler = self.resolver(event.name)
        if handler is None:
            logger.debug("No handler for %s", event.name)
            return None

        if not force and await asyncio.to_thread(
            self.ledger.was_executed,
            event.issue.id,
            event.name,
        ):
            logger.info("Skipping %s for %s: already executed", event.name, event.issue.id)
            return None

        return await self.execute(
            event.name,
            handler,
            issue=event.issue,
            previous=event.previous,
        )

    async def execute(
        self,
        event_name: str,
        handler: Any,
        *,
        issue: Issue,
        previous: Issue | None = None,
        record_type: str = "issue",
        trigger: str | None = None,
    ) -> ExecutionResult:
        """Invoke ``handler`` for ``issue`` and record the outcome."""
        epic = None
        if event_name.startswith("epic."):
            epic = get_epic(self.source.get(), issue.id)

        context = HandlerContext(
            event=event_name,
            issue=issue,
            issues=self.issues,
            epics=self.epics,
            previous=previous,
            epic=epic,
        )
        logger.debug("Executing %s for %s", event_name, issue.id)
        result = await invoke(handler, context)

        await asyncio.to_thread(
            self.ledger.record,
            ExecutionRecord(
                type=record_type,
                status="success" if result.success else "failed",
                handler=handler_name(handler),
                trigger=trigger or self.trigger,
                commit=self.revision or "",
                duration_ms=round(result.duration_ms, 3),
                issue=issue.id,
                event=event_name,
                error=result.error,
            ),
        )
        return result

    async def retry(self, issue_id: str, event_name: str) -> ExecutionResult | None:
        """Re-run a failed ``(issue, event)`` pair as a manual execution.

        Returns:
            The execution result, or None if the pair has no failed record

        Raises:
            ValueError: If the issue or its handler no longer exists
        """
        info = await asyncio.to_thread(self.ledger.retry, issue_id, event_name)
        if info is None:
            return None

        issue = self.issues.get(issue_id)
        if issue is None:
            msg = f"Issue {issue_id} not found"
            raise ValueError(msg)

        handler = self.resolver(event_name)
        if handler is None:
            msg = f"No handler for {event_name}"
            raise ValueError(msg)

        logger.info("Retrying %s for %s (previous error: %s)", event_name, issue_id, info.error)
        return await self.execute(
            event_name,
            handler,
            issue=issue,
            record_type="manual",
            trigger="manual",
        )

    async def retry_failed(self) -> dict[tuple[str, str], ExecutionResult | None]:
        """Retry every failed pair that has not succeeded since."""
        failed = await asyncio.to_thread(self.ledger.list_failed)
        pending: list[tuple[str, str]] = []
        for record in failed:
            if record.issue is None or record.event is None:
                continue
            pair = (record.issue, record.event)
            if pair not in pending:
                pending.append(pair)

        results: dict[tuple[str, str], ExecutionResult | None] = {}
        for issue_id, event_name in pending:
            if await asyncio.to_thread(self.ledger.was_executed, issue_id, event_name):
                continue
            try:
                results[(issue_id, event_name)] = await self.retry(issue_id, event_name)
            except ValueError as e:
                logger.warning("Cannot retry %s for %s: %s", event_name, issue_id, e)
                results[(issue_id, event_name)] = None
        return results

    async def run_schedule(self, cron: str, handler: Any, name: str | None = None) -> ExecutionResult:
        """Invoke a scheduled handler and record it as a schedule execution."""
        context = ScheduleContext(
            cron=cron,
            triggered_at=datetime.now(timezone.utc),
            issues=self.issues,
            epics=self.epics,
        )
        logger.debug("Running schedule %s", cron)
        result = await invoke(handler, context)

        await asyncio.to_thread(
            self.ledger.record,
            ExecutionRecord(
                type="schedule",
                status="success" if result.success else "failed",
                handler=name or handler_name(handler),
                trigger="schedule",
                commit=self.revision or "",
                duration_ms=round(result.duration_ms, 3),
                cron=cron,
                error=result.error,
            ),
        )
        return result
