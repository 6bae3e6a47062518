"""Dependency tracking, ready work detection and epic progress."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from beadflow.models import Epic, EpicProgress, Issue, IssueType, Status

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass
class BlockedIssue:
    """An issue that is blocked by dependencies."""

    issue_id: str
    blocking_ids: list[str]
    reason: str


@dataclass
class Readiness:
    """Ready/blocked partition of the non-closed issues in a snapshot."""

    ready: set[str] = field(default_factory=set[str])
    blocked: set[str] = field(default_factory=set[str])


@dataclass
class ReadinessChanges:
    """Issues whose ready/blocked state flipped between two snapshots."""

    became_ready: list[str] = field(default_factory=list[str])
    became_blocked: list[str] = field(default_factory=list[str])


def blocking_ids(issue: Issue, snapshot: Mapping[str, Issue]) -> list[str]:
    """Return the dependencies of ``issue`` that currently block it.

    Only dependencies present in the snapshot and not closed block; an ID
    that is absent from the snapshot is ignored.
    """
    blockers: list[str] = []
    for dep_id in issue.depends_on:
        dep = snapshot.get(dep_id)
        if dep is not None and dep.status != Status.CLOSED:
            blockers.append(dep_id)
    return blockers


def is_blocked(issue: Issue, snapshot: Mapping[str, Issue]) -> bool:
    """Check if an issue has any open blockers."""
    return bool(blocking_ids(issue, snapshot))


def classify(snapshot: Mapping[str, Issue]) -> Readiness:
    """Partition every non-closed issue into ready or blocked."""
    readiness = Readiness()
    for issue_id, issue in snapshot.items():
        if issue.is_closed():
            continue
        if is_blocked(issue, snapshot):
            readiness.blocked.add(issue_id)
        else:
            readiness.ready.add(issue_id)
    return readiness


def get_ready_work(snapshot: Mapping[str, Issue]) -> list[Issue]:
    """Get issues ready to work (no blocking dependencies).

    Returns:
        List of issues with no blockers, sorted by priority then ID
    """
    ready = [
        issue
        for issue in snapshot.values()
        if not issue.is_closed() and not is_blocked(issue, snapshot)
    ]
    ready.sort(key=lambda i: (i.priority, i.id))
    return ready


def get_blocked_issues(snapshot: Mapping[str, Issue]) -> list[BlockedIssue]:
    """Get all blocked issues with their blockers."""
    blocked_list: list[BlockedIssue] = []

    for issue in snapshot.values():
        if issue.is_closed():
            continue

        blockers = blocking_ids(issue, snapshot)
        if blockers:
            blocked_list.append(
                BlockedIssue(
                    issue_id=issue.id,
                    blocking_ids=blockers,
                    reason=f"Blocked by {len(blockers)} issue(s)",
                ),
            )

    return blocked_list


def readiness_changes(
    before: Mapping[str, Issue],
    after: Mapping[str, Issue],
) -> ReadinessChanges:
    """Find issues whose readiness flipped between two snapshots.

    An issue becomes ready when it was blocked before and is ready now. An
    issue becomes blocked when it is blocked now and was not blocked before
    (including issues that did not exist or were closed).
    """
    old = classify(before)
    new = classify(after)
    changes = ReadinessChanges()

    for issue_id in after:
        if issue_id in new.ready and issue_id in old.blocked:
            changes.became_ready.append(issue_id)
        elif issue_id in new.blocked and issue_id not in old.blocked:
            changes.became_blocked.append(issue_id)

    return changes


def epic_children(snapshot: Mapping[str, Issue], epic_id: str) -> list[Issue]:
    """Children of an epic are the non-epic issues that depend on it."""
    return [
        issue
        for issue in snapshot.values()
        if issue.issue_type != IssueType.EPIC and epic_id in issue.depends_on
    ]


def get_epic(snapshot: Mapping[str, Issue], epic_id: str) -> Epic | None:
    """Get an epic with its children, or None if the ID is not an epic."""
    issue = snapshot.get(epic_id)
    if issue is None or not issue.is_epic():
        return None
    children = tuple(child.id for child in epic_children(snapshot, epic_id))
    return Epic(issue=issue, children=children)


def list_epics(
    snapshot: Mapping[str, Issue],
    status: Status | None = None,
) -> list[Epic]:
    """List all epics, optionally narrowed by status."""
    epics: list[Epic] = []
    for issue in snapshot.values():
        if not issue.is_epic():
            continue
        if status is not None and issue.status != status:
            continue
        children = tuple(child.id for child in epic_children(snapshot, issue.id))
        epics.append(Epic(issue=issue, children=children))
    return epics


def epic_progress(snapshot: Mapping[str, Issue], epic_id: str) -> EpicProgress:
    """Compute how many of an epic's children are closed."""
    children = epic_children(snapshot, epic_id)
    total = len(children)
    if total == 0:
        return EpicProgress(total=0, closed=0, percentage=0.0)

    closed = sum(1 for child in children if child.is_closed())
    return EpicProgress(total=total, closed=closed, percentage=closed / total * 100)


def completed_epics(
    before: Mapping[str, Issue],
    after: Mapping[str, Issue],
) -> list[str]:
    """Find epics whose children all became closed between two snapshots."""
    completed: list[str] = []
    for epic in list_epics(after):
        progress = epic_progress(after, epic.id)
        if progress.total == 0 or progress.closed != progress.total:
            continue
        previous = epic_progress(before, epic.id)
        if previous.total == 0 or previous.closed != previous.total:
            completed.append(epic.id)
    return completed


def detect_cycles(snapshot: Mapping[str, Issue]) -> list[list[str]]:
    """Detect circular dependencies using DFS.

    Returns:
        List of cycles (each cycle is a list of issue IDs)
    """
    seen_cycles: set[tuple[str, ...]] = set()
    cycles: list[list[str]] = []
    visited: set[str] = set()
    rec_stack: set[str] = set()

    def dfs(node: str, path: list[str]) -> None:
        """Depth-first search to detect cycles."""
        visited.add(node)
        rec_stack.add(node)
        path.append(node)

        issue = snapshot.get(node)
        for neighbor in issue.depends_on if issue else ():
            if neighbor not in visited:
                dfs(neighbor, path[:])
            elif neighbor in rec_stack:
                cycle_start = path.index(neighbor)
                cycle = [*path[cycle_start:], neighbor]
                cycle_key = tuple(cycle)
                if cycle_key not in seen_cycles:
                    seen_cycles.add(cycle_key)
                    cycles.append(cycle)

        rec_stack.discard(node)

    for issue_id in snapshot:
        if issue_id not in visited:
            dfs(issue_id, [])

    return cycles
