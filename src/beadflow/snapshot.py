"""Snapshot reader: fold the issue log into its current state."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import TYPE_CHECKING

import orjson

from beadflow.constants import BEADS_DIRNAME, ISSUES_FILENAME
from beadflow.models import Issue, ParseResult, validate_record

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


class Snapshot(Mapping[str, Issue]):
    """Immutable mapping of issue ID to Issue at one instant.

    Built by folding revision lines left to right; the last revision of
    each ID wins. ``blocks`` on every issue is the inverse of ``depends_on``
    across this snapshot.
    """

    __slots__ = ("_issues", "size")

    def __init__(self, issues: Iterable[Issue] = (), size: int = 0) -> None:
        folded: dict[str, Issue] = {}
        for issue in issues:
            folded[issue.id] = issue
        self._issues = _derive_blocks(folded)
        self.size = size

    def __getitem__(self, issue_id: str) -> Issue:
        return self._issues[issue_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._issues)

    def __len__(self) -> int:
        return len(self._issues)

    def __repr__(self) -> str:
        return f"Snapshot({len(self._issues)} issues, size={self.size})"

    def issues(self) -> list[Issue]:
        """Return all issues in first-seen order."""
        return list(self._issues.values())


def _derive_blocks(issues: dict[str, Issue]) -> dict[str, Issue]:
    """Recompute ``blocks`` for every issue from everyone's ``depends_on``."""
    blocks_map: dict[str, list[str]] = {}
    for issue in issues.values():
        for dep_id in issue.depends_on:
            blocks_map.setdefault(dep_id, []).append(issue.id)

    return {
        issue_id: dataclasses.replace(
            issue,
            blocks=tuple(blocks_map.get(issue_id, ())),
        )
        for issue_id, issue in issues.items()
    }


def parse_issue_line(line: str | bytes) -> ParseResult:
    """Parse and validate a single JSONL revision line."""
    stripped = line.strip()
    if not stripped:
        return ParseResult.failure("Empty line")
    try:
        data = orjson.loads(stripped)
    except orjson.JSONDecodeError as e:
        return ParseResult.failure(f"Invalid JSON: {e}")
    return validate_record(data)


def iter_issues(content: str | bytes) -> Iterator[Issue]:
    """Yield every valid issue revision in ``content``, skipping bad lines."""
    for line_num, line in enumerate(content.splitlines(), 1):
        result = parse_issue_line(line)
        if result.issue is not None:
            yield result.issue
        elif line.strip():
            logger.debug("Skipping line %d: %s", line_num, result.error)


def parse_snapshot(content: str | bytes, size: int | None = None) -> Snapshot:
    """Build a Snapshot from raw log content.

    Args:
        content: The full log content, one revision per line
        size: Byte size to record on the snapshot (defaults to len(content))

    Returns:
        Snapshot with last-revision-wins semantics
    """
    if size is None:
        size = len(content.encode() if isinstance(content, str) else content)
    return Snapshot(iter_issues(content), size=size)


def issues_path(beads_dir: str | Path) -> Path:
    """Return the path of the issue log inside a beads directory."""
    return Path(beads_dir) / ISSUES_FILENAME


def read_snapshot(beads_dir: str | Path) -> Snapshot:
    """Read the issue log of a beads directory into a Snapshot.

    Raises:
        FileNotFoundError: If the issue log does not exist
        RuntimeError: If the log exists but cannot be read
    """
    path = issues_path(beads_dir)
    if not path.is_file():
        msg = f"Issue log '{path}' does not exist"
        raise FileNotFoundError(msg)

    try:
        content = path.read_bytes()
    except OSError as e:
        msg = f"Failed to read issue log: {e}"
        raise RuntimeError(msg) from e

    return parse_snapshot(content, size=len(content))


def find_beads_dir(start: str | Path | None = None) -> Path | None:
    """Find the .beads directory by searching upward from ``start``.

    Args:
        start: Directory to start searching from (default: current directory)

    Returns:
        Path to the .beads directory, or None if not found
    """
    current = Path.cwd() if start is None else Path(start).resolve()

    while True:
        candidate = current / BEADS_DIRNAME
        if candidate.is_dir():
            return candidate

        parent = current.parent
        if parent == current:
            return None
        current = parent
