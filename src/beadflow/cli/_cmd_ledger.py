"""Execution ledger commands for bflow CLI: list and retry."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console

from beadflow.config import WorkflowConfig
from beadflow.daemon import Daemon
from beadflow.ledger import ExecutionLedger, record_to_dict

from ._formatting import build_ledger_table
from ._helpers import BEADS_DIR_HELP, resolve_beads_dir
from ._json_state import echo_error, echo_json, is_json_output


def register(app: typer.Typer) -> None:
    """Register ledger commands."""

    @app.command("list")
    def list_cmd(
        failed: bool = typer.Option(False, "--failed", help="Only failed executions"),
        issue: str | None = typer.Option(None, "--issue", "-i", help="Filter by issue ID"),
        record_type: str | None = typer.Option(
            None,
            "--type",
            "-t",
            help="Filter by record type (issue, schedule, manual)",
        ),
        json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
        beads_dir: str | None = typer.Option(None, "--beads-dir", "-d", help=BEADS_DIR_HELP),
    ) -> None:
        """List recorded handler executions, oldest first."""
        try:
            ledger = ExecutionLedger(resolve_beads_dir(beads_dir))
            records = ledger.list(
                issue=issue,
                status="failed" if failed else None,
                type=record_type,
            )

            if is_json_output(json_output):
                echo_json([record_to_dict(r) for r in records])
                return

            if not records:
                typer.echo("No workflow executions found.")
                return

            Console().print(build_ledger_table(records))

        except Exception as e:
            echo_error(str(e))
            raise typer.Exit(1)

    @app.command("retry")
    def retry_cmd(
        issue: str | None = typer.Argument(None, help="Issue ID of the failed execution"),
        event: str | None = typer.Argument(None, help="Event name, e.g. issue.created"),
        all_failed: bool = typer.Option(
            False,
            "--all-failed",
            help="Retry every failed execution that has not succeeded since",
        ),
        json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
        beads_dir: str | None = typer.Option(None, "--beads-dir", "-d", help=BEADS_DIR_HELP),
    ) -> None:
        """Re-run a failed handler execution.

        Retries are recorded as manual executions.
        """
        try:
            path = resolve_beads_dir(beads_dir)
            daemon = Daemon(path, WorkflowConfig.load(path))

            if all_failed:
                results = asyncio.run(daemon.retry_failed())
                if is_json_output(json_output):
                    echo_json(
                        [
                            {
                                "issue": issue_id,
                                "event": event_name,
                                "success": None if result is None else result.success,
                                "error": None if result is None else result.error,
                            }
                            for (issue_id, event_name), result in results.items()
                        ],
                    )
                    return
                typer.echo(f"Found {len(results)} failed execution(s) to retry.")
                for (issue_id, event_name), result in results.items():
                    if result is None:
                        typer.echo(f"  - {issue_id} {event_name}: skipped")
                    elif result.success:
                        typer.echo(f"  ✓ {issue_id} {event_name}")
                    else:
                        typer.echo(f"  ✗ {issue_id} {event_name}: {result.error}")
                return

            if not (issue and event):
                echo_error("Specify ISSUE and EVENT, or --all-failed")
                raise typer.Exit(2)

            result = asyncio.run(daemon.retry(issue, event))
            if result is None:
                echo_error(f"No failed execution found for {issue} {event}")
                raise typer.Exit(1)

            if is_json_output(json_output):
                echo_json(
                    {
                        "issue": issue,
                        "event": event,
                        "success": result.success,
                        "error": result.error,
                        "duration": result.duration_ms,
                    },
                )
            elif result.success:
                typer.echo(f"✓ Retried {issue} {event}")
            else:
                typer.echo(f"✗ Retry of {issue} {event} failed: {result.error}")

        except typer.Exit:
            raise
        except Exception as e:
            echo_error(str(e))
            raise typer.Exit(1)
