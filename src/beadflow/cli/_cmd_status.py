"""Read-only status commands for bflow CLI: ready, blocked, epics, handlers."""

from __future__ import annotations

import typer
from rich.console import Console

from beadflow.deps import detect_cycles, epic_progress, get_blocked_issues, get_ready_work
from beadflow.deps import list_epics as deps_list_epics
from beadflow.handlers import HandlerScanner
from beadflow.models import Status, epic_to_dict, issue_to_dict

from ._formatting import build_handlers_table, format_epic, format_issue_brief
from ._helpers import BEADS_DIR_HELP, load_snapshot, resolve_beads_dir
from ._json_state import echo_error, echo_json, is_json_output


def register(app: typer.Typer) -> None:
    """Register status commands."""

    @app.command("ready")
    def ready_cmd(
        limit: int | None = typer.Option(None, "--limit", "-n", help="Maximum issues to show"),
        json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
        beads_dir: str | None = typer.Option(None, "--beads-dir", "-d", help=BEADS_DIR_HELP),
    ) -> None:
        """Show issues with no open blockers, by priority."""
        try:
            ready = get_ready_work(load_snapshot(beads_dir))
            if limit is not None:
                ready = ready[:limit]

            if is_json_output(json_output):
                echo_json([issue_to_dict(issue) for issue in ready])
                return

            if not ready:
                typer.echo("No ready work")
                return

            typer.echo(f"Ready ({len(ready)}):")
            for issue in ready:
                typer.echo(f"  {format_issue_brief(issue)}")

        except Exception as e:
            echo_error(str(e))
            raise typer.Exit(1)

    @app.command("blocked")
    def blocked_cmd(
        json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
        beads_dir: str | None = typer.Option(None, "--beads-dir", "-d", help=BEADS_DIR_HELP),
    ) -> None:
        """Show blocked issues and what blocks them.

        Circular dependencies are reported as a warning.
        """
        try:
            snapshot = load_snapshot(beads_dir)
            blocked = get_blocked_issues(snapshot)
            cycles = detect_cycles(snapshot)

            if is_json_output(json_output):
                echo_json(
                    {
                        "blocked": [
                            {
                                "issue_id": b.issue_id,
                                "blocking_ids": b.blocking_ids,
                                "reason": b.reason,
                            }
                            for b in blocked
                        ],
                        "cycles": cycles,
                    },
                )
                return

            if not blocked:
                typer.echo("No blocked issues")
            else:
                typer.echo(f"Blocked ({len(blocked)}):")
                for b in blocked:
                    typer.echo(f"  {format_issue_brief(snapshot[b.issue_id], b.blocking_ids)}")

            for cycle in cycles:
                typer.echo(f"Warning: dependency cycle {' -> '.join(cycle)}", err=True)

        except Exception as e:
            echo_error(str(e))
            raise typer.Exit(1)

    @app.command("epics")
    def epics_cmd(
        status: str | None = typer.Option(
            None,
            "--status",
            "-s",
            help="Filter by status (open, in_progress, closed)",
        ),
        json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
        beads_dir: str | None = typer.Option(None, "--beads-dir", "-d", help=BEADS_DIR_HELP),
    ) -> None:
        """Show epics with the progress of their children."""
        try:
            snapshot = load_snapshot(beads_dir)
            epics = deps_list_epics(snapshot, Status(status) if status else None)

            if is_json_output(json_output):
                output = []
                for epic in epics:
                    progress = epic_progress(snapshot, epic.id)
                    output.append(
                        {
                            **epic_to_dict(epic),
                            "progress": {
                                "total": progress.total,
                                "closed": progress.closed,
                                "percentage": progress.percentage,
                            },
                        },
                    )
                echo_json(output)
                return

            if not epics:
                typer.echo("No epics")
                return

            for epic in epics:
                typer.echo(format_epic(epic.issue, epic_progress(snapshot, epic.id)))

        except Exception as e:
            echo_error(str(e))
            raise typer.Exit(1)

    @app.command("handlers")
    def handlers_cmd(
        json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
        beads_dir: str | None = typer.Option(None, "--beads-dir", "-d", help=BEADS_DIR_HELP),
    ) -> None:
        """List the handler files found in the beads directory."""
        try:
            handlers = HandlerScanner(resolve_beads_dir(beads_dir)).scan()

            if is_json_output(json_output):
                echo_json(
                    [
                        {
                            "event": info.event,
                            "filename": info.filename,
                            "path": str(info.path),
                            "cron": info.cron,
                        }
                        for info in handlers
                    ],
                )
                return

            if not handlers:
                typer.echo("No handlers found")
                return

            Console().print(build_handlers_table(handlers))

        except Exception as e:
            echo_error(str(e))
            raise typer.Exit(1)
