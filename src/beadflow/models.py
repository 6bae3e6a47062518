"""Data models for beads issues using dataclasses."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from beadflow.constants import REQUIRED_FIELDS


class Status(str, Enum):
    """Issue status enumeration."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


class IssueType(str, Enum):
    """Issue type enumeration."""

    TASK = "task"
    BUG = "bug"
    FEATURE = "feature"
    EPIC = "epic"


@dataclass(frozen=True)
class Issue:
    """One issue as seen in a snapshot (the last revision for its ID)."""

    id: str
    title: str
    status: Status
    issue_type: IssueType
    priority: int  # 0-4 range, lower is more urgent
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    assignee: str | None = None
    labels: tuple[str, ...] = ()
    closed_at: datetime | None = None
    close_reason: str | None = None
    depends_on: tuple[str, ...] = ()
    # Digits of updated_at past microseconds, as nanoseconds
    updated_at_ns: int = 0
    # Derived from every other issue's depends_on; filled in by the snapshot
    blocks: tuple[str, ...] = ()

    def is_closed(self) -> bool:
        """Check if the issue is closed."""
        return self.status == Status.CLOSED

    def is_epic(self) -> bool:
        """Check if the issue is an epic."""
        return self.issue_type == IssueType.EPIC


@dataclass(frozen=True)
class Epic:
    """An epic together with the IDs of its children."""

    issue: Issue
    children: tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return self.issue.id

    @property
    def status(self) -> Status:
        return self.issue.status


@dataclass(frozen=True)
class EpicProgress:
    """Aggregate completion of an epic's children."""

    total: int
    closed: int
    percentage: float


@dataclass(frozen=True)
class ParseResult:
    """Outcome of validating one raw log record.

    Exactly one of ``issue`` (when ``ok``) or ``error`` is set.
    """

    ok: bool
    issue: Issue | None = None
    error: str | None = None

    @classmethod
    def success(cls, issue: Issue) -> ParseResult:
        return cls(ok=True, issue=issue)

    @classmethod
    def failure(cls, error: str) -> ParseResult:
        return cls(ok=False, error=error)


def validate_priority(priority: Any) -> int:
    """Validate that priority is an integer in the 0-4 range."""
    # bool is an int subclass
    if isinstance(priority, bool) or not isinstance(priority, int):
        msg = f"Priority must be an integer between 0 and 4, got {priority!r}"
        raise ValueError(msg)
    if priority < 0 or priority > 4:
        msg = f"Priority must be an integer between 0 and 4, got {priority}"
        raise ValueError(msg)
    return priority


def validate_status(status: Any) -> Status:
    """Validate that status is one of the known status values."""
    try:
        return Status(status)
    except ValueError:
        msg = f"Unknown status: {status!r}"
        raise ValueError(msg) from None


def validate_issue_type(issue_type: Any) -> IssueType:
    """Validate that issue_type is one of the known issue types."""
    try:
        return IssueType(issue_type)
    except ValueError:
        msg = f"Unknown issue type: {issue_type!r}"
        raise ValueError(msg) from None


# Fractional seconds after the time of day, any number of digits
_FRACTION_RE = re.compile(r"(?<=\d{2}:\d{2}:\d{2})\.(\d+)")


def _split_fraction(value: str) -> tuple[str, int]:
    """Normalize the fraction to six digits, returning the dropped nanoseconds.

    ``bd`` writes nine fractional digits; ``datetime`` only holds microseconds
    and Python 3.10 only parses three or six digits.
    """
    match = _FRACTION_RE.search(value)
    if match is None:
        return value, 0
    digits = match.group(1)
    nanos = int(digits[6:9].ljust(3, "0")) if len(digits) > 6 else 0
    micros = digits[:6].ljust(6, "0")
    return f"{value[: match.start(1)]}{micros}{value[match.end(1) :]}", nanos


def parse_timestamp(value: Any, field_name: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z``."""
    if not isinstance(value, str) or not value:
        msg = f"{field_name} must be an ISO-8601 string"
        raise ValueError(msg)
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    value, _ = _split_fraction(value)
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        msg = f"{field_name} is not a valid timestamp: {value!r}"
        raise ValueError(msg) from None


def subsecond_nanos(value: Any) -> int:
    """Nanoseconds of ``value`` beyond microsecond precision (0-999)."""
    if not isinstance(value, str):
        return 0
    return _split_fraction(value)[1]


def _extract_depends_on(data: dict[str, Any]) -> tuple[str, ...]:
    """Collect depends_on IDs from the ``dependencies`` list, keeping order."""
    raw = data.get("dependencies") or []
    if not isinstance(raw, list):
        msg = "dependencies must be a list"
        raise ValueError(msg)
    ids: list[str] = []
    for dep in raw:
        if not isinstance(dep, dict):
            continue
        depends_on_id = dep.get("depends_on_id")
        if isinstance(depends_on_id, str) and depends_on_id and depends_on_id not in ids:
            ids.append(depends_on_id)
    return tuple(ids)


def dict_to_issue(data: dict[str, Any]) -> Issue:
    """Convert a decoded JSONL record to an Issue.

    Raises:
        ValueError: If a required field is missing or any field is out of range.
    """
    for name in REQUIRED_FIELDS:
        if data.get(name) is None:
            msg = f"Missing required field: {name}"
            raise ValueError(msg)

    issue_id = data["id"]
    title = data["title"]
    if not isinstance(issue_id, str) or not issue_id:
        msg = "Issue must have a non-empty id string"
        raise ValueError(msg)
    if not isinstance(title, str) or not title:
        msg = "Issue must have a non-empty title string"
        raise ValueError(msg)

    labels = data.get("labels") or []
    if not isinstance(labels, list):
        msg = "labels must be a list"
        raise ValueError(msg)

    closed_raw = data.get("closed_at")
    return Issue(
        id=issue_id,
        title=title,
        status=validate_status(data["status"]),
        issue_type=validate_issue_type(data["issue_type"]),
        priority=validate_priority(data["priority"]),
        created_at=parse_timestamp(data["created_at"], "created_at"),
        updated_at=parse_timestamp(data["updated_at"], "updated_at"),
        updated_at_ns=subsecond_nanos(data["updated_at"]),
        description=data.get("description"),
        assignee=data.get("assignee"),
        labels=tuple(str(label) for label in labels),
        closed_at=parse_timestamp(closed_raw, "closed_at") if closed_raw else None,
        close_reason=data.get("close_reason"),
        depends_on=_extract_depends_on(data),
    )


def validate_record(data: Any) -> ParseResult:
    """Validate a decoded record, returning a success or failure result."""
    if not isinstance(data, dict):
        return ParseResult.failure("Record is not a JSON object")
    try:
        return ParseResult.success(dict_to_issue(data))
    except ValueError as e:
        return ParseResult.failure(str(e))


def issue_to_dict(issue: Issue) -> dict[str, Any]:
    """Convert an Issue to a dictionary, serializing datetimes."""
    return {
        "id": issue.id,
        "title": issue.title,
        "description": issue.description,
        "status": issue.status.value,
        "priority": issue.priority,
        "issue_type": issue.issue_type.value,
        "assignee": issue.assignee,
        "labels": list(issue.labels),
        "created_at": issue.created_at.isoformat(),
        "updated_at": issue.updated_at.isoformat(),
        "closed_at": issue.closed_at.isoformat() if issue.closed_at else None,
        "close_reason": issue.close_reason,
        "dependencies": [
            {"issue_id": issue.id, "depends_on_id": dep_id, "type": "blocks"}
            for dep_id in issue.depends_on
        ],
        "blocks": list(issue.blocks),
    }


def epic_to_dict(epic: Epic) -> dict[str, Any]:
    """Convert an Epic to a dictionary."""
    data = issue_to_dict(epic.issue)
    data["children"] = list(epic.children)
    return data

