"""Configuration file handling for beadflow."""

from __future__ import annotations

import sys
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

import tomli_w

from beadflow.constants import (
    CONFIG_FILENAME,
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_POLL_INTERVAL_MS,
    TRIGGERS,
)


@dataclass
class WorkflowConfig:
    """Settings read from .beads/workflows.toml."""

    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    compare_labels: bool = False
    trigger: str = "daemon"
    bd_executable: str = "bd"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowConfig:
        """Build a config from raw TOML values, ignoring unknown keys.

        Raises:
            ValueError: If a known key has the wrong type or value
        """
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        config = cls(**values)
        config.validate()
        return config

    @classmethod
    def load(cls, beads_dir: str | Path) -> WorkflowConfig:
        return cls.from_dict(load_config(beads_dir))

    def validate(self) -> None:
        for name in ("debounce_ms", "poll_interval_ms"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                msg = f"{name} must be a positive integer, got {value!r}"
                raise ValueError(msg)
        if not isinstance(self.compare_labels, bool):
            msg = f"compare_labels must be true or false, got {self.compare_labels!r}"
            raise ValueError(msg)
        if self.trigger not in TRIGGERS:
            msg = f"trigger must be one of {sorted(TRIGGERS)}, got {self.trigger!r}"
            raise ValueError(msg)
        if not isinstance(self.bd_executable, str) or not self.bd_executable:
            msg = "bd_executable must be a non-empty string"
            raise ValueError(msg)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def get_config_path(beads_dir: str | Path) -> Path:
    """Get the path to the config file.

    Args:
        beads_dir: Path to .beads directory

    Returns:
        Path to workflows.toml
    """
    return Path(beads_dir) / CONFIG_FILENAME


def load_config(beads_dir: str | Path) -> dict[str, Any]:
    """Load raw configuration from .beads/workflows.toml.

    Returns:
        Configuration dictionary, or empty dict if no config exists

    Raises:
        ValueError: If the file is not valid TOML
    """
    config_path = get_config_path(beads_dir)
    if not config_path.exists():
        return {}

    try:
        with config_path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        msg = f"Invalid TOML in {config_path}: {e}"
        raise ValueError(msg) from e


def save_config(beads_dir: str | Path, config: dict[str, Any]) -> None:
    """Save configuration to .beads/workflows.toml.

    Args:
        beads_dir: Path to .beads directory
        config: Configuration dictionary to save
    """
    config_path = get_config_path(beads_dir)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with config_path.open("wb") as f:
        tomli_w.dump(config, f)
