"""Change detection between two snapshots of the issue log."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from beadflow.constants import CHANGE_FIELDS
from beadflow.models import Issue, Status
from beadflow.snapshot import parse_snapshot

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True)
class UpdatedIssue:
    """An issue that changed, with both of its states."""

    id: str
    before: Issue
    after: Issue


@dataclass
class DiffResult:
    """Created, updated and closed issues between two snapshots."""

    created: list[Issue] = field(default_factory=list[Issue])
    updated: list[UpdatedIssue] = field(default_factory=list[UpdatedIssue])
    closed: list[Issue] = field(default_factory=list[Issue])

    def is_empty(self) -> bool:
        """Check whether no issue changed."""
        return not (self.created or self.updated or self.closed)


def _compared_fields(compare_labels: bool) -> tuple[str, ...]:
    return (*CHANGE_FIELDS, "labels") if compare_labels else CHANGE_FIELDS


def _compared_value(issue: Issue, name: str) -> Any:
    if name == "updated_at":
        return (issue.updated_at, issue.updated_at_ns)
    return getattr(issue, name)


def field_changes(
    before: Issue,
    after: Issue,
    *,
    compare_labels: bool = False,
) -> dict[str, dict[str, Any]]:
    """Return ``{field: {"old": ..., "new": ...}}`` for every compared field that differs."""
    changes: dict[str, dict[str, Any]] = {}
    for name in _compared_fields(compare_labels):
        if _compared_value(before, name) != _compared_value(after, name):
            changes[name] = {"old": getattr(before, name), "new": getattr(after, name)}
    return changes


def issue_changed(before: Issue, after: Issue, *, compare_labels: bool = False) -> bool:
    """Check whether any compared field differs between two revisions."""
    return any(
        _compared_value(before, name) != _compared_value(after, name)
        for name in _compared_fields(compare_labels)
    )


def classify_update(before: Issue, after: Issue) -> str:
    """Classify a changed issue as ``closed``, ``reopened`` or ``updated``."""
    if before.status != Status.CLOSED and after.status == Status.CLOSED:
        return "closed"
    if before.status == Status.CLOSED and after.status != Status.CLOSED:
        return "reopened"
    return "updated"


def diff(
    before: Mapping[str, Issue],
    after: Mapping[str, Issue],
    *,
    compare_labels: bool = False,
) -> DiffResult:
    """Compute created, updated and closed issues between two snapshots.

    Issues present only in ``before`` produce nothing. A reopened issue is
    reported as updated here; the watcher refines it with
    :func:`classify_update`.

    Args:
        before: The earlier snapshot
        after: The later snapshot
        compare_labels: Also treat a label-set change as an update

    Returns:
        DiffResult with created, updated and closed issues in ``after`` order
    """
    result = DiffResult()

    for issue_id, new_issue in after.items():
        old_issue = before.get(issue_id)
        if old_issue is None:
            result.created.append(new_issue)
        elif issue_changed(old_issue, new_issue, compare_labels=compare_labels):
            if classify_update(old_issue, new_issue) == "closed":
                result.closed.append(new_issue)
            else:
                result.updated.append(
                    UpdatedIssue(id=issue_id, before=old_issue, after=new_issue),
                )

    return result


def diff_content(
    before: str | bytes,
    after: str | bytes,
    *,
    compare_labels: bool = False,
) -> DiffResult:
    """Diff two versions of raw issue log content."""
    return diff(
        parse_snapshot(before),
        parse_snapshot(after),
        compare_labels=compare_labels,
    )


def get_git_root(cwd: Path | None = None) -> Path | None:
    """Get the root directory of the enclosing git repository."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
            check=False,
            cwd=str(cwd) if cwd else None,
        )
    except (FileNotFoundError, OSError):
        return None
    if result.returncode != 0:
        return None
    return Path(result.stdout.strip())


def current_revision(cwd: Path | None = None) -> str | None:
    """Return the commit hash of HEAD, or None outside a git repository."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            check=False,
            cwd=str(cwd) if cwd else None,
        )
    except (FileNotFoundError, OSError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def read_content_at_revision(path: Path, revision: str) -> bytes:
    """Read a file's content as of a git revision.

    A file that did not exist at ``revision`` reads as empty content, so that
    diffing across the commit that introduced the log reports every issue as
    created.

    Raises:
        ValueError: If ``path`` is not inside a git repository or the
            revision does not exist
    """
    git_root = get_git_root(cwd=path.parent)
    if git_root is None:
        msg = f"'{path.parent}' is not inside a git repository"
        raise ValueError(msg)

    verify = subprocess.run(
        ["git", "rev-parse", "--verify", "--quiet", f"{revision}^{{commit}}"],
        capture_output=True,
        check=False,
        cwd=str(git_root),
    )
    if verify.returncode != 0:
        msg = f"Unknown revision: {revision}"
        raise ValueError(msg)

    rel_path = path.resolve().relative_to(git_root.resolve())
    result = subprocess.run(
        ["git", "show", f"{revision}:{rel_path.as_posix()}"],
        capture_output=True,
        check=False,
        cwd=str(git_root),
    )
    if result.returncode != 0:
        return b""
    return result.stdout
