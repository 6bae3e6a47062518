"""Constants for beadflow."""

from __future__ import annotations

# Layout of the beads directory
BEADS_DIRNAME = ".beads"
ISSUES_FILENAME = "issues.jsonl"
LEDGER_FILENAME = "workflows.jsonl"
LEDGER_LOCK_FILENAME = ".workflows.lock"
CONFIG_FILENAME = "workflows.toml"

# Watcher timing defaults (milliseconds)
DEFAULT_DEBOUNCE_MS = 100
DEFAULT_POLL_INTERVAL_MS = 50

# Fields compared by the change detector
CHANGE_FIELDS: tuple[str, ...] = (
    "status",
    "title",
    "priority",
    "assignee",
    "description",
    "updated_at",
)

# Fields that must be present on every issue revision line
REQUIRED_FIELDS: tuple[str, ...] = (
    "id",
    "title",
    "status",
    "issue_type",
    "priority",
    "created_at",
    "updated_at",
)

# Event names the watcher emits
EVENT_NAMES = frozenset(
    {
        "issue.created",
        "issue.updated",
        "issue.closed",
        "issue.reopened",
        "issue.started",
        "issue.ready",
        "issue.blocked",
        "epic.completed",
    },
)

# Execution ledger vocabularies
RECORD_TYPES = frozenset({"issue", "schedule", "manual"})
RECORD_STATUSES = frozenset({"success", "failed"})
TRIGGERS = frozenset({"push", "schedule", "workflow_dispatch", "daemon", "manual"})

# Handler file conventions: on.<event>.py and every.<name>.py
HANDLER_PREFIX = "on."
SCHEDULE_PREFIX = "every."
HANDLER_SUFFIX = ".py"
HANDLER_ENTRYPOINT = "handle"

# Schedule file name -> (cron expression, event name)
SCHEDULE_FILES: dict[str, tuple[str, str]] = {
    "hour": ("0 * * * *", "schedule.hourly"),
    "day": ("0 0 * * *", "schedule.daily"),
    "week": ("0 0 * * 0", "schedule.weekly"),
}

# Symbols for ledger and diff output
STATUS_SYMBOLS: dict[str, str] = {
    "success": "✓",
    "failed": "✗",
}

EVENT_SYMBOLS: dict[str, str] = {
    "created": "+",
    "updated": "~",
    "closed": "✓",
    "reopened": "↺",
    "started": "◐",
    "ready": "●",
    "blocked": "■",
    "completed": "★",
}

PRIORITY_COLORS = {
    0: "bright_red",
    1: "yellow",
    2: "white",
    3: "cyan",
    4: "bright_black",
}

TYPE_COLORS = {
    "task": "white",
    "bug": "bright_red",
    "feature": "bright_green",
    "epic": "bright_magenta",
}

EVENT_COLORS = {
    "created": "bright_green",
    "updated": "bright_blue",
    "closed": "white",
    "reopened": "bright_yellow",
    "started": "bright_blue",
    "ready": "bright_green",
    "blocked": "bright_red",
    "completed": "bright_magenta",
}
