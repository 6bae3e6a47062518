"""Mutation capability: create, update and close issues through the ``bd`` CLI.

Writes never touch issues.jsonl directly; they go through ``bd`` so that its
own locking and sync stay authoritative.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import orjson

from beadflow.models import IssueType, Status, validate_priority

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MutationResult:
    """Result of one mutation command."""

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None


class Mutator(Protocol):
    """Anything that can create, update and close issues."""

    def create(
        self,
        *,
        title: str,
        issue_type: IssueType = IssueType.TASK,
        priority: int = 2,
        description: str | None = None,
        assignee: str | None = None,
        labels: list[str] | None = None,
    ) -> MutationResult: ...

    def update(
        self,
        issue_id: str,
        *,
        status: Status | None = None,
        priority: int | None = None,
        assignee: str | None = None,
        title: str | None = None,
        description: str | None = None,
    ) -> MutationResult: ...

    def close(self, issue_id: str, reason: str | None = None) -> MutationResult: ...


def build_create_command(
    *,
    title: str,
    issue_type: IssueType = IssueType.TASK,
    priority: int = 2,
    description: str | None = None,
    assignee: str | None = None,
    labels: list[str] | None = None,
) -> list[str]:
    """Build arguments for ``bd create``."""
    validate_priority(priority)
    args = [
        "create",
        "--json",
        f"--title={title}",
        f"--type={IssueType(issue_type).value}",
        f"--priority={priority}",
    ]
    if description:
        args.append(f"--description={description}")
    if assignee:
        args.append(f"--assignee={assignee}")
    if labels:
        args.append(f"--labels={','.join(labels)}")
    return args


def build_update_command(
    issue_id: str,
    *,
    status: Status | None = None,
    priority: int | None = None,
    assignee: str | None = None,
    title: str | None = None,
    description: str | None = None,
) -> list[str]:
    """Build arguments for ``bd update``."""
    args = ["update", issue_id, "--json"]
    if status is not None:
        args.append(f"--status={Status(status).value}")
    if priority is not None:
        validate_priority(priority)
        args.append(f"--priority={priority}")
    if assignee:
        args.append(f"--assignee={assignee}")
    if title:
        args.append(f"--title={title}")
    if description:
        args.append(f"--description={description}")
    return args


def build_close_command(issue_id: str, reason: str | None = None) -> list[str]:
    """Build arguments for ``bd close``."""
    args = ["close", issue_id, "--json"]
    if reason:
        args.append(f"--reason={reason}")
    return args


def parse_json_output(output: str) -> MutationResult:
    """Parse the JSON payload of a ``bd`` command.

    ``bd`` may print status lines before the JSON, so the first line that
    starts with ``{`` or ``[`` is taken as the payload.
    """
    trimmed = output.strip()
    if not trimmed:
        return MutationResult(success=False, error="Empty output")

    json_line = next(
        (
            line.strip()
            for line in trimmed.splitlines()
            if line.strip().startswith(("{", "["))
        ),
        None,
    )
    if json_line is None:
        return MutationResult(success=False, error=f"Failed to parse: {trimmed[:100]}")

    try:
        data = orjson.loads(json_line)
    except orjson.JSONDecodeError:
        return MutationResult(
            success=False,
            error=f"Failed to parse: {json_line[:100]}",
        )
    if isinstance(data, list):
        data = data[0] if data and isinstance(data[0], dict) else {"items": data}
    return MutationResult(success=True, data=data)


class BdMutator:
    """Runs ``bd`` commands in a project directory."""

    def __init__(self, cwd: str | Path, executable: str = "bd") -> None:
        self.cwd = Path(cwd)
        self.executable = executable

    def run(self, args: list[str]) -> MutationResult:
        """Execute a ``bd`` command and parse its JSON output."""
        logger.debug("Running %s %s", self.executable, " ".join(args))
        try:
            result = subprocess.run(
                [self.executable, *args],
                capture_output=True,
                text=True,
                check=False,
                cwd=str(self.cwd),
            )
        except (FileNotFoundError, OSError) as e:
            return MutationResult(success=False, error=f"Failed to run {self.executable}: {e}")

        if result.returncode != 0:
            return MutationResult(
                success=False,
                error=result.stderr.strip()
                or result.stdout.strip()
                or f"Exit code: {result.returncode}",
            )
        return parse_json_output(result.stdout)

    def create(
        self,
        *,
        title: str,
        issue_type: IssueType = IssueType.TASK,
        priority: int = 2,
        description: str | None = None,
        assignee: str | None = None,
        labels: list[str] | None = None,
    ) -> MutationResult:
        """Create a new issue."""
        return self.run(
            build_create_command(
                title=title,
                issue_type=issue_type,
                priority=priority,
                description=description,
                assignee=assignee,
                labels=labels,
            ),
        )

    def update(
        self,
        issue_id: str,
        *,
        status: Status | None = None,
        priority: int | None = None,
        assignee: str | None = None,
        title: str | None = None,
        description: str | None = None,
    ) -> MutationResult:
        """Update an existing issue."""
        return self.run(
            build_update_command(
                issue_id,
                status=status,
                priority=priority,
                assignee=assignee,
                title=title,
                description=description,
            ),
        )

    def close(self, issue_id: str, reason: str | None = None) -> MutationResult:
        """Close an issue."""
        return self.run(build_close_command(issue_id, reason))
