"""Tests for convention-based handler discovery."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest
from issue_helpers import write_handler

from beadflow.handlers import HandlerScanner, parse_handler_filename

if TYPE_CHECKING:
    from pathlib import Path


class TestParseHandlerFilename:
    """Tests for mapping file names to events."""

    @pytest.mark.parametrize(
        ("filename", "expected"),
        [
            ("on.issue.created.py", ("issue.created", None)),
            ("on.issue.ready.py", ("issue.ready", None)),
            ("on.epic.completed.py", ("epic.completed", None)),
            ("every.hour.py", ("schedule.hourly", "0 * * * *")),
            ("every.day.py", ("schedule.daily", "0 0 * * *")),
            ("every.week.py", ("schedule.weekly", "0 0 * * 0")),
        ],
    )
    def test_conventions(self, filename: str, expected: tuple[str, str | None]) -> None:
        """Test both naming conventions map to events."""
        assert parse_handler_filename(filename) == expected

    @pytest.mark.parametrize(
        "filename",
        ["issues.jsonl", "on..py", "on.issue.created.txt", "every.minute.py", "helpers.py"],
    )
    def test_ignored(self, filename: str) -> None:
        """Test files outside the conventions are ignored."""
        assert parse_handler_filename(filename) is None


class TestScan:
    """Tests for scanning the beads directory."""

    def test_finds_handlers(self, beads_dir: Path) -> None:
        """Test scan() finds event and schedule handlers."""
        write_handler(beads_dir, "on.issue.created.py", "def handle(ctx):\n    pass\n")
        write_handler(beads_dir, "every.day.py", "def handle(ctx):\n    pass\n")
        write_handler(beads_dir, "notes.md", "not a handler")

        scanner = HandlerScanner(beads_dir)
        found = scanner.scan()

        assert sorted(info.event for info in found) == ["issue.created", "schedule.daily"]
        assert [info.filename for info in scanner.schedule_handlers()] == ["every.day.py"]
        assert scanner.handlers()["issue.created"].path == beads_dir / "on.issue.created.py"

    def test_unknown_event_warns(self, beads_dir: Path, caplog: pytest.LogCaptureFixture) -> None:
        """Test a handler for an event that is never emitted is flagged."""
        write_handler(beads_dir, "on.issue.deleted.py", "def handle(ctx):\n    pass\n")
        with caplog.at_level(logging.WARNING, logger="beadflow.handlers"):
            found = HandlerScanner(beads_dir).scan()
        assert [info.event for info in found] == ["issue.deleted"]
        assert "unknown event issue.deleted" in caplog.text

    def test_missing_directory(self, tmp_path: Path) -> None:
        """Test a missing directory has no handlers."""
        scanner = HandlerScanner(tmp_path / "missing")
        assert scanner.scan() == []
        assert scanner.resolve("issue.created") is None

    def test_handlers_is_a_copy(self, beads_dir: Path) -> None:
        """Test mutating the returned map does not affect the scanner."""
        write_handler(beads_dir, "on.issue.created.py", "def handle(ctx):\n    pass\n")
        scanner = HandlerScanner(beads_dir)
        scanner.scan()
        scanner.handlers().clear()
        assert "issue.created" in scanner.handlers()


class TestResolve:
    """Tests for loading handler modules."""

    def test_loads_handle(self, beads_dir: Path) -> None:
        """Test resolve() returns the module's handle function."""
        write_handler(
            beads_dir,
            "on.issue.created.py",
            "def handle(ctx):\n    return ctx * 2\n",
        )
        scanner = HandlerScanner(beads_dir)
        scanner.scan()

        handler = scanner.resolve("issue.created")
        assert handler is not None
        assert handler.name == "on.issue.created.py"
        assert handler.event == "issue.created"
        assert handler(21) == 42

    def test_unknown_event(self, beads_dir: Path) -> None:
        """Test an event without a file resolves to None."""
        scanner = HandlerScanner(beads_dir)
        scanner.scan()
        assert scanner.resolve("issue.closed") is None

    def test_import_error(self, beads_dir: Path) -> None:
        """Test a module that fails to import resolves to None."""
        write_handler(beads_dir, "on.issue.created.py", "raise RuntimeError('broken')\n")
        scanner = HandlerScanner(beads_dir)
        scanner.scan()
        assert scanner.resolve("issue.created") is None

    def test_missing_entrypoint(self, beads_dir: Path) -> None:
        """Test a module without handle resolves to None."""
        write_handler(beads_dir, "on.issue.created.py", "def run(ctx):\n    pass\n")
        scanner = HandlerScanner(beads_dir)
        scanner.scan()
        assert scanner.resolve("issue.created") is None

    def test_non_callable_entrypoint(self, beads_dir: Path) -> None:
        """Test a non-callable handle resolves to None."""
        write_handler(beads_dir, "on.issue.created.py", "handle = 'nope'\n")
        scanner = HandlerScanner(beads_dir)
        scanner.scan()
        assert scanner.resolve("issue.created") is None

    def test_cached_until_rescan(self, beads_dir: Path) -> None:
        """Test resolved handlers are cached until the next scan."""
        path = write_handler(beads_dir, "on.issue.created.py", "def handle(ctx):\n    return 1\n")
        scanner = HandlerScanner(beads_dir)
        scanner.scan()
        first = scanner.resolve("issue.created")
        assert first is not None

        path.write_text("def handle(ctx):\n    return \"second\"\n")
        assert scanner.resolve("issue.created") is first

        scanner.scan()
        second = scanner.resolve("issue.created")
        assert second is not None
        assert second(None) == "second"
