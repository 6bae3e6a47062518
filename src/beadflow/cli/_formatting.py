"""Display and formatting functions for the bflow CLI."""

from __future__ import annotations

from typing import TYPE_CHECKING

import typer
from rich import box
from rich.markup import escape
from rich.table import Table

from beadflow.constants import (
    EVENT_COLORS,
    EVENT_SYMBOLS,
    PRIORITY_COLORS,
    STATUS_SYMBOLS,
    TYPE_COLORS,
)
from beadflow.schedule import cron_name

if TYPE_CHECKING:
    from beadflow.handlers import HandlerInfo
    from beadflow.ledger import ExecutionRecord
    from beadflow.models import EpicProgress, Issue
    from beadflow.watcher import WatcherEvent


def format_issue_brief(issue: Issue, blockers: list[str] | None = None) -> str:
    """Format issue for brief display with color coding.

    Args:
        issue: The issue to format
        blockers: IDs of the open issues blocking this one

    Returns:
        Formatted string with priority, ID, title, and type
    """
    priority_color = PRIORITY_COLORS.get(issue.priority, "white")
    priority_str = typer.style(f"[{issue.priority}]", fg=priority_color, bold=True)

    type_color = TYPE_COLORS.get(issue.issue_type.value, "white")
    type_str = typer.style(f"[{issue.issue_type.value}]", fg=type_color)

    assignee_str = ""
    if issue.assignee:
        assignee_str = " " + typer.style(f"@{issue.assignee}", fg="cyan")
    blocked_by_str = ""
    if blockers:
        blocked_by_str = " " + typer.style(f"[blocked by: {', '.join(blockers)}]", fg="red")

    return f"{priority_str} {issue.id}: {issue.title} {type_str}{assignee_str}{blocked_by_str}"


def format_event(event: WatcherEvent) -> str:
    """Format a detected change as one line, with field changes for updates."""
    symbol = EVENT_SYMBOLS.get(event.type, "?")
    color = EVENT_COLORS.get(event.type, "white")
    header = typer.style(f"{symbol} {event.name}", fg=color, bold=True)
    line = f"{header} {event.issue.id}: {event.issue.title}"

    details = [
        f"    {name}: {change['old']!s} -> {change['new']!s}"
        for name, change in event.changes.items()
        if name not in ("description", "updated_at")
    ]
    return "\n".join([line, *details])


def format_epic(issue: Issue, progress: EpicProgress) -> str:
    bar_width = 20
    filled = round(progress.percentage / 100 * bar_width)
    bar = "█" * filled + "░" * (bar_width - filled)
    return (
        f"{issue.id}: {issue.title} [{issue.status.value}]\n"
        f"    {bar} {progress.closed}/{progress.total} ({progress.percentage:.0f}%)"
    )


def record_target(record: ExecutionRecord) -> str:
    """What a ledger record ran for: issue and event, or the schedule."""
    if record.cron is not None:
        name = cron_name(record.cron)
        return f"schedule {name or record.cron}"
    return f"{record.issue or '-'} {record.event or '-'}"


def build_ledger_table(records: list[ExecutionRecord]) -> Table:
    """Build a rich table of ledger records, oldest first."""
    table = Table(
        show_header=True,
        header_style="bold",
        box=box.ROUNDED,
        pad_edge=False,
        show_edge=False,
    )
    table.add_column("", no_wrap=True)
    table.add_column("Triggered", no_wrap=True)
    table.add_column("Type", no_wrap=True)
    table.add_column("Target", no_wrap=True)
    table.add_column("Handler", no_wrap=True)
    table.add_column("Trigger", no_wrap=True)
    table.add_column("ms", justify="right", no_wrap=True)
    table.add_column("Error", overflow="fold")

    for record in records:
        status = STATUS_SYMBOLS.get(record.status, "?")
        status_style = "green" if record.succeeded else "red"
        table.add_row(
            f"[{status_style}]{status}[/{status_style}]",
            (record.triggered_at or "")[:19],
            record.type,
            escape(record_target(record)),
            escape(record.handler),
            record.trigger,
            f"{record.duration_ms:.0f}",
            escape(record.error or ""),
        )
    return table


def build_handlers_table(handlers: list[HandlerInfo]) -> Table:
    table = Table(
        show_header=True,
        header_style="bold",
        box=box.ROUNDED,
        pad_edge=False,
        show_edge=False,
    )
    table.add_column("Event", no_wrap=True)
    table.add_column("File", no_wrap=True)
    table.add_column("Cron", no_wrap=True)

    for info in handlers:
        table.add_row(escape(info.event), escape(info.filename), info.cron or "")
    return table
