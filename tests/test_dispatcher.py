"""Tests for routing events to handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
from issue_helpers import FakeMutator, make_record, to_jsonl, write_issues

from beadflow.dispatcher import (
    Dispatcher,
    HandlerContext,
    ScheduleContext,
    handler_name,
    invoke,
)
from beadflow.ledger import ExecutionLedger, ExecutionRecord
from beadflow.queries import SnapshotSource
from beadflow.snapshot import parse_snapshot
from beadflow.watcher import WatcherEvent, compute_events

if TYPE_CHECKING:
    from pathlib import Path


class Recording:
    """A handler that remembers every context it was called with."""

    def __init__(self, error: Exception | None = None) -> None:
        self.contexts: list[Any] = []
        self.error = error
        self.__name__ = "recording"

    def __call__(self, context: Any) -> None:
        self.contexts.append(context)
        if self.error is not None:
            raise self.error


def make_dispatcher(beads_dir: Path, handlers: dict[str, Any]) -> Dispatcher:
    return Dispatcher(
        ExecutionLedger(beads_dir),
        handlers.get,
        SnapshotSource(beads_dir),
        FakeMutator(beads_dir),
        revision="abc123",
    )


def created_event(beads_dir: Path, issue_id: str = "bd-1") -> WatcherEvent:
    write_issues(beads_dir, make_record(issue_id))
    after = parse_snapshot(to_jsonl(make_record(issue_id)))
    return compute_events(parse_snapshot(b""), after)[0]


class TestInvoke:
    """Tests for running a single handler."""

    @pytest.mark.asyncio
    async def test_sync_success(self) -> None:
        """Test a plain function handler succeeds."""
        handler = Recording()
        result = await invoke(handler, "ctx")
        assert result.success
        assert result.error is None
        assert result.duration_ms >= 0
        assert handler.contexts == ["ctx"]

    @pytest.mark.asyncio
    async def test_async_handler(self) -> None:
        """Test coroutine handlers are awaited."""
        seen: list[str] = []

        async def handle(context: str) -> None:
            seen.append(context)

        assert (await invoke(handle, "ctx")).success
        assert seen == ["ctx"]

    @pytest.mark.asyncio
    async def test_exception_is_captured(self) -> None:
        """Test a raising handler becomes a failed result."""
        result = await invoke(Recording(ValueError("bad input")), None)
        assert not result.success
        assert result.error == "bad input"

    @pytest.mark.asyncio
    async def test_empty_message_uses_type(self) -> None:
        """Test an exception without a message reports its type."""
        result = await invoke(Recording(KeyError()), None)
        assert result.error == "KeyError"

    def test_handler_name(self) -> None:
        """Test names come from the handler file, else the function."""

        def handle(_ctx: Any) -> None:
            pass

        assert handler_name(handle) == "handle"


class TestDispatch:
    """Tests for dispatching watcher events."""

    @pytest.mark.asyncio
    async def test_no_handler(self, beads_dir: Path) -> None:
        """Test an event without a handler is a no-op."""
        dispatcher = make_dispatcher(beads_dir, {})
        assert await dispatcher.dispatch(created_event(beads_dir)) is None
        assert dispatcher.ledger.read() == []

    @pytest.mark.asyncio
    async def test_records_success(self, beads_dir: Path) -> None:
        """Test a successful run is recorded with its context."""
        handler = Recording()
        dispatcher = make_dispatcher(beads_dir, {"issue.created": handler})
        result = await dispatcher.dispatch(created_event(beads_dir))

        assert result is not None
        assert result.success
        context = handler.contexts[0]
        assert isinstance(context, HandlerContext)
        assert context.event == "issue.created"
        assert context.issue.id == "bd-1"
        assert context.issues.get("bd-1") is not None
        assert context.epic is None

        [record] = dispatcher.ledger.read()
        assert record.type == "issue"
        assert record.status == "success"
        assert record.handler == "recording"
        assert record.trigger == "daemon"
        assert record.commit == "abc123"
        assert (record.issue, record.event) == ("bd-1", "issue.created")

    @pytest.mark.asyncio
    async def test_skips_executed(self, beads_dir: Path) -> None:
        """Test an already successful pair is not run again."""
        handler = Recording()
        dispatcher = make_dispatcher(beads_dir, {"issue.created": handler})
        event = created_event(beads_dir)

        await dispatcher.dispatch(event)
        assert await dispatcher.dispatch(event) is None
        assert len(handler.contexts) == 1
        assert len(dispatcher.ledger.read()) == 1

    @pytest.mark.asyncio
    async def test_force_reruns(self, beads_dir: Path) -> None:
        """Test force bypasses the ledger check."""
        handler = Recording()
        dispatcher = make_dispatcher(beads_dir, {"issue.created": handler})
        event = created_event(beads_dir)

        await dispatcher.dispatch(event)
        result = await dispatcher.dispatch(event, force=True)
        assert result is not None
        assert len(handler.contexts) == 2

    @pytest.mark.asyncio
    async def test_failure_is_recorded_and_retried_on_next_dispatch(self, beads_dir: Path) -> None:
        """Test a failed run is recorded and does not count as executed."""
        handler = Recording(RuntimeError("boom"))
        dispatcher = make_dispatcher(beads_dir, {"issue.created": handler})
        event = created_event(beads_dir)

        result = await dispatcher.dispatch(event)
        assert result is not None
        assert not result.success

        [record] = dispatcher.ledger.read()
        assert record.status == "failed"
        assert record.error == "boom"

        handler.error = None
        second = await dispatcher.dispatch(event)
        assert second is not None
        assert second.success

    @pytest.mark.asyncio
    async def test_epic_context(self, beads_dir: Path) -> None:
        """Test epic events carry the epic and its children."""
        epic = make_record("bd-e", issue_type="epic")
        child = make_record("bd-1", status="closed", depends_on=["bd-e"])
        write_issues(beads_dir, epic, child)
        before = parse_snapshot(to_jsonl(epic, make_record("bd-1", depends_on=["bd-e"])))
        after = parse_snapshot(to_jsonl(epic, child))
        event = next(e for e in compute_events(before, after) if e.name == "epic.completed")

        handler = Recording()
        dispatcher = make_dispatcher(beads_dir, {"epic.completed": handler})
        await dispatcher.dispatch(event)

        context = handler.contexts[0]
        assert context.epic is not None
        assert context.epic.id == "bd-e"
        assert context.epic.children == ("bd-1",)

    @pytest.mark.asyncio
    async def test_handler_can_mutate(self, beads_dir: Path) -> None:
        """Test handlers create issues through the context."""

        def handle(context: HandlerContext) -> None:
            context.issues.create(title=f"Review {context.issue.id}")

        dispatcher = make_dispatcher(beads_dir, {"issue.created": handle})
        await dispatcher.dispatch(created_event(beads_dir))
        titles = [i.title for i in dispatcher.issues.list()]
        assert "Review bd-1" in titles


class TestRetry:
    """Tests for manual retries."""

    @pytest.mark.asyncio
    async def test_retry_without_failure(self, beads_dir: Path) -> None:
        """Test retrying a pair without a failed record does nothing."""
        dispatcher = make_dispatcher(beads_dir, {"issue.created": Recording()})
        assert await dispatcher.retry("bd-1", "issue.created") is None

    @pytest.mark.asyncio
    async def test_retry_records_manual(self, beads_dir: Path) -> None:
        """Test a retry runs the handler and records a manual execution."""
        handler = Recording(RuntimeError("boom"))
        dispatcher = make_dispatcher(beads_dir, {"issue.created": handler})
        await dispatcher.dispatch(created_event(beads_dir))

        handler.error = None
        result = await dispatcher.retry("bd-1", "issue.created")

        assert result is not None
        assert result.success
        last = dispatcher.ledger.read()[-1]
        assert last.type == "manual"
        assert last.trigger == "manual"
        assert dispatcher.ledger.was_executed("bd-1", "issue.created")

    @pytest.mark.asyncio
    async def test_retry_missing_issue(self, beads_dir: Path) -> None:
        """Test retrying an issue no longer in the log is an error."""
        dispatcher = make_dispatcher(beads_dir, {"issue.created": Recording()})
        dispatcher.ledger.record(
            ExecutionRecord(
                type="issue",
                status="failed",
                handler="on.issue.created.py",
                trigger="daemon",
                issue="bd-404",
                event="issue.created",
                error="boom",
            ),
        )
        with pytest.raises(ValueError, match="not found"):
            await dispatcher.retry("bd-404", "issue.created")

    @pytest.mark.asyncio
    async def test_retry_missing_handler(self, beads_dir: Path) -> None:
        """Test retrying without a handler is an error."""
        handler = Recording(RuntimeError("boom"))
        dispatcher = make_dispatcher(beads_dir, {"issue.created": handler})
        await dispatcher.dispatch(created_event(beads_dir))

        dispatcher.resolver = {}.get
        with pytest.raises(ValueError, match="No handler"):
            await dispatcher.retry("bd-1", "issue.created")

    @pytest.mark.asyncio
    async def test_retry_failed(self, beads_dir: Path) -> None:
        """Test retry_failed re-runs each pending pair once."""
        write_issues(beads_dir, make_record("bd-1"), make_record("bd-2"))
        handler = Recording(RuntimeError("boom"))
        dispatcher = make_dispatcher(beads_dir, {"issue.created": handler})
        events = compute_events(
            parse_snapshot(b""),
            parse_snapshot(to_jsonl(make_record("bd-1"), make_record("bd-2"))),
        )
        for event in events:
            await dispatcher.dispatch(event)
        await dispatcher.dispatch(events[0])

        handler.error = None
        results = await dispatcher.retry_failed()

        assert sorted(results) == [("bd-1", "issue.created"), ("bd-2", "issue.created")]
        assert all(r is not None and r.success for r in results.values())
        assert await dispatcher.retry_failed() == {}


class TestRunSchedule:
    """Tests for scheduled executions."""

    @pytest.mark.asyncio
    async def test_records_schedule(self, beads_dir: Path) -> None:
        """Test a scheduled run gets a schedule context and record."""
        handler = Recording()
        dispatcher = make_dispatcher(beads_dir, {})
        result = await dispatcher.run_schedule("0 0 * * *", handler, "every.day.py")

        assert result.success
        context = handler.contexts[0]
        assert isinstance(context, ScheduleContext)
        assert context.cron == "0 0 * * *"
        assert context.triggered_at.tzinfo is not None

        [record] = dispatcher.ledger.read()
        assert record.type == "schedule"
        assert record.trigger == "schedule"
        assert record.cron == "0 0 * * *"
        assert record.handler == "every.day.py"
        assert record.issue is None
