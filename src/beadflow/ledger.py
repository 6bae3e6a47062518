"""Append-only execution ledger stored in .beads/workflows.jsonl."""

from __future__ import annotations

import fcntl
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import orjson
from typing_extensions import Self

from beadflow.constants import (
    LEDGER_FILENAME,
    LEDGER_LOCK_FILENAME,
    RECORD_STATUSES,
    RECORD_TYPES,
    TRIGGERS,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionRecord:
    """One handler invocation attempt.

    ``issue`` and ``event`` are set for issue-triggered and manual records,
    ``cron`` for schedule-triggered ones.
    """

    type: str  # "issue", "schedule", "manual"
    status: str  # "success", "failed"
    handler: str
    trigger: str  # "push", "schedule", "workflow_dispatch", "daemon", "manual"
    commit: str = ""
    duration_ms: float = 0.0
    triggered_at: str | None = None  # ISO-8601, stamped on record()
    issue: str | None = None
    event: str | None = None
    cron: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


@dataclass(frozen=True)
class RetryInfo:
    """What is needed to re-run a failed (issue, event) pair."""

    issue: str
    event: str
    handler: str
    error: str | None = None


def validate_record(record: ExecutionRecord) -> None:
    """Validate the closed vocabularies of an execution record."""
    if record.type not in RECORD_TYPES:
        msg = f"Unknown record type: {record.type!r}"
        raise ValueError(msg)
    if record.status not in RECORD_STATUSES:
        msg = f"Unknown record status: {record.status!r}"
        raise ValueError(msg)
    if record.trigger not in TRIGGERS:
        msg = f"Unknown trigger: {record.trigger!r}"
        raise ValueError(msg)
    if record.type == "issue" and not (record.issue and record.event):
        msg = "Issue records require both issue and event"
        raise ValueError(msg)
    if record.type == "schedule" and not record.cron:
        msg = "Schedule records require a cron expression"
        raise ValueError(msg)


def record_to_dict(record: ExecutionRecord) -> dict[str, Any]:
    """Serialize an ExecutionRecord to a dict for JSONL storage."""
    data: dict[str, Any] = {
        "type": record.type,
        "status": record.status,
        "handler": record.handler,
        "trigger": record.trigger,
        "commit": record.commit,
        "duration": record.duration_ms,
        "triggered_at": record.triggered_at,
    }
    if record.issue is not None:
        data["issue"] = record.issue
    if record.event is not None:
        data["event"] = record.event
    if record.cron is not None:
        data["cron"] = record.cron
    if record.error is not None:
        data["error"] = record.error
    return data


def _deserialize(data: dict[str, Any]) -> ExecutionRecord:
    """Deserialize a dict from JSONL into an ExecutionRecord."""
    return ExecutionRecord(
        type=data["type"],
        status=data["status"],
        handler=data["handler"],
        trigger=data.get("trigger", "daemon"),
        commit=data.get("commit", ""),
        duration_ms=data.get("duration", 0.0),
        triggered_at=data.get("triggered_at"),
        issue=data.get("issue"),
        event=data.get("event"),
        cron=data.get("cron"),
        error=data.get("error"),
    )


class ExecutionLedger:
    """Durable history of handler outcomes.

    Entries are only ever appended; the file is re-read on every query so
    that records written by other processes (CI runs, a second daemon) are
    always visible.
    """

    def __init__(self, beads_dir: str | Path) -> None:
        self.beads_dir = Path(beads_dir)
        self.path = self.beads_dir / LEDGER_FILENAME
        self._lock_path = self.beads_dir / LEDGER_LOCK_FILENAME

    def record(self, entry: ExecutionRecord) -> ExecutionRecord:
        """Stamp ``entry`` with the current time and append it.

        Returns:
            The record as stored

        Raises:
            FileNotFoundError: If the beads directory does not exist
            ValueError: If the record is malformed
            RuntimeError: If the ledger cannot be written
        """
        validate_record(entry)
        self._require_dir()

        stamped = replace(
            entry,
            triggered_at=datetime.now(timezone.utc).isoformat(),
        )
        line = orjson.dumps(record_to_dict(stamped)) + b"\n"
        try:
            with self._file_lock(), self.path.open("ab") as f:
                f.write(line)
                f.flush()
        except OSError as e:
            msg = f"Failed to append to ledger: {e}"
            raise RuntimeError(msg) from e
        return stamped

    def read(self) -> list[ExecutionRecord]:
        """Read every record, oldest first. Malformed lines are skipped."""
        self._require_dir()
        if not self.path.exists():
            return []

        records: list[ExecutionRecord] = []
        with self.path.open("rb") as f:
            for line_num, raw in enumerate(f, 1):
                line = raw.strip()
                if not line:
                    continue
                try:
                    records.append(_deserialize(orjson.loads(line)))
                except (orjson.JSONDecodeError, KeyError, TypeError) as e:
                    logger.warning(
                        "Skipping malformed ledger line %d in %s: %s",
                        line_num,
                        self.path,
                        e,
                    )
        return records

    def was_executed(self, issue: str, event: str) -> bool:
        """Check whether any successful run exists for ``(issue, event)``."""
        return any(
            r.succeeded and r.issue == issue and r.event == event
            for r in self.read()
        )

    def list(
        self,
        *,
        issue: str | None = None,
        status: str | None = None,
        type: str | None = None,  # noqa: A002
    ) -> list[ExecutionRecord]:
        """List records, optionally narrowed, in append order."""
        records = self.read()
        if issue is not None:
            records = [r for r in records if r.issue == issue]
        if status is not None:
            records = [r for r in records if r.status == status]
        if type is not None:
            records = [r for r in records if r.type == type]
        return records

    def list_failed(self) -> list[ExecutionRecord]:
        """List failed records."""
        return self.list(status="failed")

    def retry(self, issue: str, event: str) -> RetryInfo | None:
        """Look up the most recent failed run of ``(issue, event)``.

        This only reports what to re-run; it never invokes a handler.
        """
        for record in reversed(self.read()):
            if record.status == "failed" and record.issue == issue and record.event == event:
                return RetryInfo(
                    issue=issue,
                    event=event,
                    handler=record.handler,
                    error=record.error,
                )
        return None

    def _require_dir(self) -> None:
        if not self.beads_dir.is_dir():
            msg = f"Directory '{self.beads_dir}' does not exist"
            raise FileNotFoundError(msg)

    def _file_lock(self) -> _FileLock:
        """Create an advisory file lock context manager."""
        return _FileLock(self._lock_path)


class _FileLock:
    """Advisory file lock using fcntl."""

    def __init__(self, lock_path: Path) -> None:
        self._lock_path = lock_path
        self._fd: Any = None

    def __enter__(self) -> Self:
        self._fd = self._lock_path.open("w")
        fcntl.flock(self._fd, fcntl.LOCK_EX)
        return self

    def __exit__(self, *_args: object) -> None:
        if self._fd:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
            self._fd.close()
