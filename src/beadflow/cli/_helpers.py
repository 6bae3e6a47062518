"""Shared infrastructure for bflow CLI commands."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from typer.core import TyperGroup

from beadflow.snapshot import Snapshot, find_beads_dir, read_snapshot

if TYPE_CHECKING:
    import click

BEADS_DIR_HELP = "Path to .beads directory (default: search upward from cwd)"


class SortedGroup(TyperGroup):
    """Typer group that lists commands in alphabetical order."""

    def list_commands(self, ctx: click.Context) -> list[str]:
        """Return commands sorted alphabetically."""
        return sorted(super().list_commands(ctx))


def resolve_beads_dir(beads_dir: str | None = None) -> Path:
    """Return the explicit beads directory, or find one upward from cwd.

    Raises:
        FileNotFoundError: If no .beads directory can be found
    """
    if beads_dir is not None:
        path = Path(beads_dir)
        if not path.is_dir():
            msg = f"Directory '{beads_dir}' does not exist"
            raise FileNotFoundError(msg)
        return path

    found = find_beads_dir()
    if found is None:
        msg = "No .beads directory found (use --beads-dir)"
        raise FileNotFoundError(msg)
    return found


def load_snapshot(beads_dir: str | None = None) -> Snapshot:
    """Read the current snapshot of the resolved beads directory."""
    return read_snapshot(resolve_beads_dir(beads_dir))
