"""Vulture whitelist: false positives that should not be flagged as dead code."""

# Typer registers these through decorators
_global_options  # type: ignore[name-defined]  # noqa: B018
list_commands  # type: ignore[name-defined]  # noqa: B018

# watchdog dispatches file system events to these by name
on_modified  # type: ignore[name-defined]  # noqa: B018
on_created  # type: ignore[name-defined]  # noqa: B018
on_moved  # type: ignore[name-defined]  # noqa: B018

# Handler modules expose this entrypoint; loaded with importlib
handle  # type: ignore[name-defined]  # noqa: B018
