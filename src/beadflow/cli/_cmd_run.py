"""Run command for bflow CLI: the daemon and its batch mode."""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

import typer

from beadflow.config import WorkflowConfig
from beadflow.daemon import Daemon

from ._helpers import BEADS_DIR_HELP, resolve_beads_dir
from ._json_state import echo_error, echo_json, is_json_output

if TYPE_CHECKING:
    from beadflow.dispatcher import ExecutionResult
    from beadflow.watcher import WatcherEvent


async def _serve(daemon: Daemon) -> None:
    """Run the daemon until SIGINT or SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await daemon.start()
    typer.echo(
        f"Watching {daemon.beads_dir} with {daemon.handler_count()} handler(s). "
        "Press Ctrl+C to stop.",
    )
    try:
        await stop.wait()
    finally:
        typer.echo("Shutting down...")
        await daemon.stop()


def _summarize(results: list[tuple[WatcherEvent, ExecutionResult | None]]) -> dict[str, int]:
    executed = [result for _, result in results if result is not None]
    return {
        "events": len(results),
        "executed": len(executed),
        "failed": sum(1 for result in executed if not result.success),
    }


def register(app: typer.Typer) -> None:
    """Register run command."""

    @app.command("run")
    def run_cmd(
        once: bool = typer.Option(
            False,
            "--once",
            help="Process the current log once and exit instead of watching",
        ),
        since: str | None = typer.Option(
            None,
            "--since",
            help="Git revision to diff against in --once mode (default: empty log)",
        ),
        json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
        beads_dir: str | None = typer.Option(None, "--beads-dir", "-d", help=BEADS_DIR_HELP),
    ) -> None:
        """Watch the issue log and run handlers for every change.

        With --once (or --since), every event between the revision and the
        working copy is dispatched a single time; pairs that already ran
        successfully are skipped.
        """
        try:
            path = resolve_beads_dir(beads_dir)
            daemon = Daemon(path, WorkflowConfig.load(path))

            if once or since:
                results = asyncio.run(daemon.run_once(since))
                summary = _summarize(results)
                if is_json_output(json_output):
                    echo_json(
                        {
                            **summary,
                            "results": [
                                {
                                    "event": event.name,
                                    "issue": event.issue.id,
                                    "success": None if result is None else result.success,
                                    "error": None if result is None else result.error,
                                }
                                for event, result in results
                            ],
                        },
                    )
                else:
                    typer.echo(
                        f"Single pass complete: {summary['events']} event(s), "
                        f"{summary['executed']} executed, {summary['failed']} failed.",
                    )
                return

            asyncio.run(_serve(daemon))

        except typer.Exit:
            raise
        except Exception as e:
            echo_error(str(e))
            raise typer.Exit(1)
