"""Read and write access to issues for handlers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from beadflow.deps import (
    BlockedIssue,
    epic_children,
    epic_progress,
    get_blocked_issues,
    get_epic,
    get_ready_work,
    list_epics,
)
from beadflow.models import Epic, EpicProgress, Issue, IssueType, Status
from beadflow.snapshot import Snapshot, read_snapshot

if TYPE_CHECKING:
    from beadflow.mutations import MutationResult, Mutator

logger = logging.getLogger(__name__)


class SnapshotSource:
    """Holds the current snapshot of a beads directory.

    The daemon pushes the watcher's baseline in with :meth:`set`; standalone
    callers get a lazy read of the log on first access.
    """

    def __init__(self, beads_dir: str | Path, snapshot: Snapshot | None = None) -> None:
        self.beads_dir = Path(beads_dir)
        self._snapshot = snapshot

    def get(self) -> Snapshot:
        """Return the current snapshot, reading the log if none is held."""
        if self._snapshot is None:
            return self.refresh()
        return self._snapshot

    def set(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot

    def refresh(self) -> Snapshot:
        """Re-read the log from disk. A missing log is an empty snapshot."""
        try:
            self._snapshot = read_snapshot(self.beads_dir)
        except FileNotFoundError:
            self._snapshot = Snapshot()
        return self._snapshot


class IssueQueries:
    """Issue lookups over the current snapshot, plus mutations through ``bd``."""

    def __init__(self, source: SnapshotSource, mutator: Mutator | None = None) -> None:
        self._source = source
        self._mutator = mutator

    def get(self, issue_id: str) -> Issue | None:
        return self._source.get().get(issue_id)

    def list(
        self,
        *,
        status: Status | str | None = None,
        type: IssueType | str | None = None,  # noqa: A002
        priority: int | None = None,
        assignee: str | None = None,
    ) -> list[Issue]:
        """List issues in log order, narrowed by any of the given filters."""
        issues = self._source.get().issues()
        if status is not None:
            issues = [i for i in issues if i.status == Status(status)]
        if type is not None:
            issues = [i for i in issues if i.issue_type == IssueType(type)]
        if priority is not None:
            issues = [i for i in issues if i.priority == priority]
        if assignee is not None:
            issues = [i for i in issues if i.assignee == assignee]
        return issues

    def ready(self) -> list[Issue]:
        """Issues with no open blockers, sorted by priority then ID."""
        return get_ready_work(self._source.get())

    def blocked(self) -> list[BlockedIssue]:
        return get_blocked_issues(self._source.get())

    def count(self, *, status: Status | str | None = None) -> int:
        return len(self.list(status=status))

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
        """Create an issue through the mutation capability."""
        result = self._require_mutator().create(
            title=title,
            issue_type=issue_type,
            priority=priority,
            description=description,
            assignee=assignee,
            labels=labels,
        )
        self._after_mutation("create", result)
        return result

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
        """Update an issue through the mutation capability."""
        result = self._require_mutator().update(
            issue_id,
            status=status,
            priority=priority,
            assignee=assignee,
            title=title,
            description=description,
        )
        self._after_mutation("update", result)
        return result

    def close(self, issue_id: str, reason: str | None = None) -> MutationResult:
        """Close an issue through the mutation capability."""
        result = self._require_mutator().close(issue_id, reason)
        self._after_mutation("close", result)
        return result

    def _require_mutator(self) -> Mutator:
        if self._mutator is None:
            msg = "No mutation capability configured; issues are read-only here"
            raise RuntimeError(msg)
        return self._mutator

    def _after_mutation(self, action: str, result: MutationResult) -> None:
        if not result.success:
            logger.warning("bd %s failed: %s", action, result.error)
            return
        self._source.refresh()


class EpicQueries:
    """Epic lookups over the current snapshot."""

    def __init__(self, source: SnapshotSource) -> None:
        self._source = source

    def get(self, epic_id: str) -> Epic | None:
        return get_epic(self._source.get(), epic_id)

    def list(self, *, status: Status | str | None = None) -> list[Epic]:
        return list_epics(
            self._source.get(),
            Status(status) if status is not None else None,
        )

    def children(self, epic_id: str) -> list[Issue]:
        return epic_children(self._source.get(), epic_id)

    def progress(self, epic_id: str) -> EpicProgress:
        return epic_progress(self._source.get(), epic_id)
