"""Diff command for bflow CLI - shows the events a batch run would dispatch."""

from __future__ import annotations

import typer

from beadflow.config import WorkflowConfig
from beadflow.diff import read_content_at_revision
from beadflow.snapshot import issues_path, parse_snapshot, read_snapshot
from beadflow.watcher import compute_events

from ._formatting import format_event
from ._helpers import BEADS_DIR_HELP, resolve_beads_dir
from ._json_state import echo_error, echo_json, is_json_output


def register(app: typer.Typer) -> None:
    """Register diff command."""

    @app.command("diff")
    def diff_cmd(
        base: str = typer.Option(
            "HEAD",
            "--base",
            "-b",
            help="Git revision of the issue log to compare against",
        ),
        json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
        beads_dir: str | None = typer.Option(None, "--beads-dir", "-d", help=BEADS_DIR_HELP),
    ) -> None:
        """Show issue changes between a git revision and the working copy.

        Lists created, updated, closed and reopened issues with their
        field-level changes, followed by readiness and epic events.
        """
        try:
            path = resolve_beads_dir(beads_dir)
            config = WorkflowConfig.load(path)

            before = parse_snapshot(read_content_at_revision(issues_path(path), base))
            after = read_snapshot(path)
            events = compute_events(before, after, compare_labels=config.compare_labels)

            if is_json_output(json_output):
                echo_json([event.to_dict() for event in events])
                return

            if not events:
                typer.echo(f"No changes since {base}.")
                return

            for event in events:
                typer.echo(format_event(event))

        except Exception as e:
            echo_error(str(e))
            raise typer.Exit(1)
