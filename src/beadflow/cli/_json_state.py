"""Global JSON output state for the bflow CLI."""

from __future__ import annotations

import sys

import orjson
import typer

_global_json: bool = False


def set_json_flag(value: bool) -> None:
    """Set the global JSON output flag."""
    global _global_json  # noqa: PLW0603
    _global_json = value


def is_json_output(local_flag: bool = False) -> bool:
    """Check if JSON output is enabled (global or local flag).

    A set local flag is synced to the global state so that ``echo_error``
    also switches to JSON.
    """
    global _global_json  # noqa: PLW0603
    if local_flag and not _global_json:
        _global_json = True
    return local_flag or _global_json


def echo_error(message: str) -> None:
    """Output an error message to stderr, as JSON in JSON mode."""
    if _global_json:
        sys.stderr.write(orjson.dumps({"error": message}).decode() + "\n")
    else:
        typer.echo(f"Error: {message}", err=True)


def echo_json(data: object) -> None:
    typer.echo(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode())
