"""Configuration management commands for bflow CLI."""

from __future__ import annotations

from typing import Any

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from beadflow.config import WorkflowConfig, load_config, save_config

from ._helpers import BEADS_DIR_HELP, SortedGroup, resolve_beads_dir
from ._json_state import echo_error, echo_json, is_json_output

# Sub-app for 'bflow config' subcommands
config_app = typer.Typer(
    help="Manage workflow configuration (.beads/workflows.toml).",
    no_args_is_help=True,
    cls=SortedGroup,
)

_BOOL_KEYS = frozenset({"compare_labels"})
_INT_KEYS = frozenset({"debounce_ms", "poll_interval_ms"})

# All known config keys: type, description, and default
_KNOWN_KEYS: dict[str, dict[str, Any]] = {
    "debounce_ms": {
        "type": "int",
        "description": "Window in which file notifications collapse into one pass",
        "default": WorkflowConfig.debounce_ms,
    },
    "poll_interval_ms": {
        "type": "int",
        "description": "Interval of the issue log size poll",
        "default": WorkflowConfig.poll_interval_ms,
    },
    "compare_labels": {
        "type": "bool",
        "description": "Report label-only changes as issue.updated",
        "default": WorkflowConfig.compare_labels,
    },
    "trigger": {
        "type": "str",
        "description": "Trigger recorded in the ledger for dispatched events",
        "default": WorkflowConfig.trigger,
    },
    "bd_executable": {
        "type": "str",
        "description": "Command used for issue mutations",
        "default": WorkflowConfig.bd_executable,
    },
}

_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})
_FALSE_VALUES = frozenset({"false", "0", "no", "off"})


def _coerce_value(key: str, value: str) -> Any:
    """Coerce a string value to the appropriate type for a known key."""
    if key in _BOOL_KEYS:
        lower = value.lower()
        if lower in _TRUE_VALUES:
            return True
        if lower in _FALSE_VALUES:
            return False
        msg = f"Invalid boolean value '{value}' for key '{key}'. Use true/false."
        raise typer.BadParameter(msg)
    if key in _INT_KEYS:
        try:
            return int(value)
        except ValueError:
            msg = f"Invalid integer value '{value}' for key '{key}'."
            raise typer.BadParameter(msg) from None
    return value


def register(app: typer.Typer) -> None:
    """Register config commands."""
    app.add_typer(config_app, name="config")

    @config_app.command("set")
    def config_set(
        key: str = typer.Argument(..., help="Configuration key to set"),
        value: str = typer.Argument(..., help="Value to set"),
        beads_dir: str | None = typer.Option(None, "--beads-dir", "-d", help=BEADS_DIR_HELP),
    ) -> None:
        """Set a configuration value."""
        if key not in _KNOWN_KEYS:
            echo_error(f"Unknown key '{key}' (see 'bflow config keys')")
            raise typer.Exit(1)
        coerced = _coerce_value(key, value)

        try:
            path = resolve_beads_dir(beads_dir)
            config = load_config(path)
            config[key] = coerced
            WorkflowConfig.from_dict(config)
            save_config(path, config)
        except Exception as e:
            echo_error(str(e))
            raise typer.Exit(1)
        typer.echo(f"Set {key} = {coerced}")

    @config_app.command("get")
    def config_get(
        key: str = typer.Argument(..., help="Configuration key to read"),
        json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
        beads_dir: str | None = typer.Option(None, "--beads-dir", "-d", help=BEADS_DIR_HELP),
    ) -> None:
        """Get a configuration value (the default if unset)."""
        is_json_output(json_output)  # sync local flag for echo_error
        if key not in _KNOWN_KEYS:
            echo_error(f"Key '{key}' not found in config")
            raise typer.Exit(1)

        try:
            config = WorkflowConfig.load(resolve_beads_dir(beads_dir))
        except Exception as e:
            echo_error(str(e))
            raise typer.Exit(1)

        val = getattr(config, key)
        if is_json_output(json_output):
            echo_json({key: val})
        elif isinstance(val, bool):
            typer.echo(str(val).lower())
        else:
            typer.echo(val)

    @config_app.command("list")
    def config_list(
        json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
        beads_dir: str | None = typer.Option(None, "--beads-dir", "-d", help=BEADS_DIR_HELP),
    ) -> None:
        """List all configuration values, marking the ones set in the file."""
        try:
            path = resolve_beads_dir(beads_dir)
            explicit = load_config(path)
            config = WorkflowConfig.from_dict(explicit)
        except Exception as e:
            echo_error(str(e))
            raise typer.Exit(1)

        if is_json_output(json_output):
            echo_json(config.to_dict())
            return

        for k, v in sorted(config.to_dict().items()):
            shown = str(v).lower() if isinstance(v, bool) else v
            suffix = "" if k in explicit else " (default)"
            typer.echo(f"{k} = {shown}{suffix}")

    @config_app.command("keys")
    def config_keys(
        json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    ) -> None:
        """List all available configuration keys and their descriptions."""
        if is_json_output(json_output):
            echo_json(_KNOWN_KEYS)
            return

        table = Table(
            show_header=True,
            header_style="bold",
            box=box.ROUNDED,
            pad_edge=False,
            show_edge=False,
        )
        table.add_column("Key", no_wrap=True)
        table.add_column("Type", no_wrap=True)
        table.add_column("Default", no_wrap=True)
        table.add_column("Description", overflow="fold")

        for key, info in _KNOWN_KEYS.items():
            default = info["default"]
            default = str(default).lower() if isinstance(default, bool) else str(default)
            table.add_row(key, info["type"], default, info["description"])

        Console().print(table)
