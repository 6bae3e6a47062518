"""Discover handlers by file convention in the beads directory.

``on.<event>.py`` files handle issue events (``on.issue.created.py``,
``on.epic.completed.py``); ``every.<hour|day|week>.py`` files run on a
schedule. Each file exposes a module-level ``handle`` callable.
"""

from __future__ import annotations

import importlib.util
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from beadflow.constants import (
    EVENT_NAMES,
    HANDLER_ENTRYPOINT,
    HANDLER_PREFIX,
    HANDLER_SUFFIX,
    SCHEDULE_FILES,
    SCHEDULE_PREFIX,
)

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandlerInfo:
    """A handler file found by the scanner."""

    event: str
    path: Path
    filename: str
    cron: str | None = None


@dataclass(frozen=True)
class LoadedHandler:
    """A handler's entrypoint together with the file it came from."""

    event: str
    filename: str
    func: Callable[..., Any]

    @property
    def name(self) -> str:
        return self.filename

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self.func(*args, **kwargs)


def parse_handler_filename(filename: str) -> tuple[str, str | None] | None:
    """Map a handler file name to ``(event, cron)``.

    Returns None for files that follow neither convention, including
    ``every.*`` files with an unknown schedule name.
    """
    if not filename.endswith(HANDLER_SUFFIX):
        return None
    stem = filename[: -len(HANDLER_SUFFIX)]

    if stem.startswith(HANDLER_PREFIX):
        event = stem[len(HANDLER_PREFIX) :]
        return (event, None) if event else None

    if stem.startswith(SCHEDULE_PREFIX):
        schedule = SCHEDULE_FILES.get(stem[len(SCHEDULE_PREFIX) :])
        if schedule is None:
            return None
        cron, event = schedule
        return event, cron

    return None


class HandlerScanner:
    """Finds and loads convention-based handlers in a beads directory."""

    def __init__(self, beads_dir: str | Path) -> None:
        self.beads_dir = Path(beads_dir)
        self._handlers: dict[str, HandlerInfo] = {}
        self._loaded: dict[str, LoadedHandler | None] = {}

    def scan(self) -> list[HandlerInfo]:
        """Re-scan the directory, forgetting previously loaded modules."""
        self._handlers.clear()
        self._loaded.clear()

        if not self.beads_dir.is_dir():
            logger.debug("Beads directory %s does not exist, no handlers", self.beads_dir)
            return []

        for path in sorted(self.beads_dir.iterdir()):
            if not path.is_file():
                continue
            parsed = parse_handler_filename(path.name)
            if parsed is None:
                continue
            event, cron = parsed
            if cron is None and event not in EVENT_NAMES:
                logger.warning("Handler %s is for unknown event %s", path.name, event)
            self._handlers[event] = HandlerInfo(
                event=event,
                path=path,
                filename=path.name,
                cron=cron,
            )

        return list(self._handlers.values())

    def handlers(self) -> dict[str, HandlerInfo]:
        """Return a copy of the event -> handler map from the last scan."""
        return dict(self._handlers)

    def schedule_handlers(self) -> list[HandlerInfo]:
        return [info for info in self._handlers.values() if info.cron is not None]

    def resolve(self, event: str) -> LoadedHandler | None:
        """Load the handler for ``event``.

        A missing file, a module that fails to import and a module without a
        callable ``handle`` all resolve to None. Results are cached until
        the next :meth:`scan`.
        """
        if event in self._loaded:
            return self._loaded[event]

        info = self._handlers.get(event)
        loaded = self._load(info) if info is not None else None
        self._loaded[event] = loaded
        return loaded

    def _load(self, info: HandlerInfo) -> LoadedHandler | None:
        module_name = "beadflow_handler_" + info.filename[: -len(HANDLER_SUFFIX)].replace(
            ".",
            "_",
        )
        spec = importlib.util.spec_from_file_location(module_name, info.path)
        if spec is None or spec.loader is None:
            logger.error("Cannot load handler %s", info.path)
            return None

        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception:
            logger.exception("Failed to load handler %s", info.path)
            return None

        func = getattr(module, HANDLER_ENTRYPOINT, None)
        if not callable(func):
            logger.error(
                "Handler %s has no callable '%s'",
                info.path,
                HANDLER_ENTRYPOINT,
            )
            return None

        logger.debug("Loaded handler %s for %s", info.filename, info.event)
        return LoadedHandler(event=info.event, filename=info.filename, func=func)
