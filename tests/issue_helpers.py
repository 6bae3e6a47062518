"""Shared helpers for building issue logs in tests."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import orjson

from beadflow.mutations import MutationResult

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


def make_record(issue_id: str, **overrides: Any) -> dict[str, Any]:
    """Build a valid issue revision record, with ``overrides`` applied.

    ``depends_on`` may be given as a list of IDs and is expanded into the
    on-disk ``dependencies`` list.
    """
    record: dict[str, Any] = {
        "id": issue_id,
        "title": f"Issue {issue_id}",
        "description": None,
        "status": "open",
        "priority": 2,
        "issue_type": "task",
        "assignee": None,
        "labels": [],
        "created_at": "2026-01-01T10:00:00Z",
        "updated_at": "2026-01-01T10:00:00Z",
        "closed_at": None,
        "dependencies": [],
    }
    depends_on = overrides.pop("depends_on", None)
    if depends_on:
        record["dependencies"] = [
            {"issue_id": issue_id, "depends_on_id": dep, "type": "blocks"}
            for dep in depends_on
        ]
    record.update(overrides)
    return record


def to_jsonl(*records: dict[str, Any]) -> bytes:
    """Serialize records as JSONL content."""
    return b"".join(orjson.dumps(r) + b"\n" for r in records)


def write_issues(beads_dir: Path, *records: dict[str, Any]) -> Path:
    """Replace the issue log with ``records``."""
    path = beads_dir / "issues.jsonl"
    path.write_bytes(to_jsonl(*records))
    return path


def append_issues(beads_dir: Path, *records: dict[str, Any]) -> Path:
    """Append revision lines to the issue log."""
    path = beads_dir / "issues.jsonl"
    with path.open("ab") as f:
        f.write(to_jsonl(*records))
    return path


def write_handler(beads_dir: Path, filename: str, body: str) -> Path:
    """Write a handler module into the beads directory."""
    path = beads_dir / filename
    path.write_text(body)
    return path


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll ``predicate`` on the running loop until it holds or time runs out."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            msg = "Condition not met before timeout"
            raise AssertionError(msg)
        await asyncio.sleep(0.01)


class FakeMutator:
    """Records mutation calls and applies them to the issue log like ``bd`` would."""

    def __init__(self, beads_dir: Path, *, fail: bool = False) -> None:
        self.beads_dir = beads_dir
        self.fail = fail
        self.calls: list[tuple[str, Any]] = []
        self._next_id = 100

    def _result(self, data: dict[str, Any]) -> MutationResult:
        if self.fail:
            return MutationResult(success=False, error="bd is unavailable")
        return MutationResult(success=True, data=data)

    def create(self, *, title: str, **kwargs: Any) -> MutationResult:
        self.calls.append(("create", {"title": title, **kwargs}))
        if self.fail:
            return self._result({})
        issue_id = f"bd-{self._next_id}"
        self._next_id += 1
        priority = kwargs.get("priority", 2)
        append_issues(self.beads_dir, make_record(issue_id, title=title, priority=priority))
        return self._result({"id": issue_id})

    def update(self, issue_id: str, **kwargs: Any) -> MutationResult:
        self.calls.append(("update", {"issue_id": issue_id, **kwargs}))
        return self._result({"id": issue_id})

    def close(self, issue_id: str, reason: str | None = None) -> MutationResult:
        self.calls.append(("close", {"issue_id": issue_id, "reason": reason}))
        if self.fail:
            return self._result({})
        append_issues(self.beads_dir, make_record(issue_id, status="closed"))
        return self._result({"id": issue_id})
