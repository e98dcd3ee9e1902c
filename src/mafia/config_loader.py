"""YAML configuration file loader for session tunables."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from .config import GameConfig, PhaseDurations
from .exceptions import ConfigurationError

_NUMERIC_KEYS = (
    "join_window",
    "kill_cooldown",
    "kill_success_chance",
    "cancel_window",
    "kill_advance_delay",
    "task_message_interval",
)
_INTEGER_KEYS = ("min_players_to_start", "max_kill_attempts")
_PHASE_KEYS = ("tasks", "kill", "discussion", "voting")


def load_config_file(config_path: str | Path) -> GameConfig:
    """Load session tunables from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        GameConfig with the file's values layered over the defaults.

    Raises:
        ConfigurationError: If the file is invalid or holds unknown keys.
        FileNotFoundError: If the config file doesn't exist.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with path.open("r") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML file: {exc}") from exc

    if data is None:
        return GameConfig()
    if not isinstance(data, dict):
        raise ConfigurationError("Config file must contain a YAML mapping")
    return parse_config(data)


def parse_config(data: dict[str, Any]) -> GameConfig:
    """Build a ``GameConfig`` from an already-parsed mapping."""

    known = set(_NUMERIC_KEYS) | set(_INTEGER_KEYS) | {"phase_durations"}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    overrides: dict[str, Any] = {}
    for key in _NUMERIC_KEYS:
        if key in data:
            value = data[key]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(f"'{key}' must be a number")
            overrides[key] = float(value)
    for key in _INTEGER_KEYS:
        if key in data:
            value = data[key]
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"'{key}' must be an integer")
            overrides[key] = value

    # Phase durations: {tasks: 60, kill: 45, ...}; missing phases keep defaults
    phases = data.get("phase_durations")
    if phases is not None:
        if not isinstance(phases, dict):
            raise ConfigurationError("'phase_durations' must be a mapping")
        unknown_phases = set(phases) - set(_PHASE_KEYS)
        if unknown_phases:
            raise ConfigurationError(
                f"Unknown phases: {', '.join(sorted(map(str, unknown_phases)))}. "
                f"Available: {', '.join(_PHASE_KEYS)}"
            )
        durations: dict[str, float] = {}
        for name, value in phases.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(f"'phase_durations.{name}' must be a number")
            durations[name] = float(value)
        overrides["phase_durations"] = PhaseDurations(**durations)

    return GameConfig().with_overrides(**overrides)
