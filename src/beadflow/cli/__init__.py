"""bflow CLI: run workflow handlers for changes to a beads issue log."""

from __future__ import annotations

import logging

import typer

from ._helpers import SortedGroup

app = typer.Typer(
    help="bflow - run workflow handlers when issues in .beads/issues.jsonl change",
    no_args_is_help=True,
    cls=SortedGroup,
)


@app.callback(invoke_without_command=True)
def _global_options(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON for all commands",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log debug output",
    ),
) -> None:
    from ._json_state import set_json_flag

    set_json_flag(json_output)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)


from . import (  # noqa: E402
    _cmd_config,
    _cmd_diff,
    _cmd_ledger,
    _cmd_run,
    _cmd_status,
)

for _mod in (
    _cmd_config,
    _cmd_diff,
    _cmd_ledger,
    _cmd_run,
    _cmd_status,
):
    _mod.register(app)


def main() -> None:
    """Run the bflow CLI application."""
    app()
