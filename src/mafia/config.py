"""Configuration models and validation helpers."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Mapping

from .exceptions import ConfigurationError

MAX_PLAYERS = 6
MAX_ROUNDS = 3


@dataclass(frozen=True, slots=True)
class PhaseDurations:
    """Seconds each phase of a round stays open before timing out."""

    tasks: float = 60.0
    kill: float = 45.0
    discussion: float = 60.0
    voting: float = 45.0

    def __post_init__(self) -> None:
        for item in fields(self):
            if getattr(self, item.name) <= 0:
                raise ConfigurationError(f"Phase duration '{item.name}' must be positive")


@dataclass(frozen=True, slots=True)
class GameConfig:
    """Immutable session tunables read by the engine and orchestrator.

    All durations are expressed in seconds.
    """

    min_players_to_start: int = 4
    join_window: float = 120.0
    phase_durations: PhaseDurations = field(default_factory=PhaseDurations)
    kill_cooldown: float = 10.0
    kill_success_chance: float = 0.5
    max_kill_attempts: int = 3
    cancel_window: float = 10.0
    kill_advance_delay: float = 2.0
    task_message_interval: float = 1.0

    def __post_init__(self) -> None:
        if not 2 <= self.min_players_to_start <= MAX_PLAYERS:
            raise ConfigurationError(
                f"min_players_to_start must be between 2 and {MAX_PLAYERS}, "
                f"got {self.min_players_to_start}"
            )
        if self.join_window <= 0:
            raise ConfigurationError("join_window must be positive")
        if not 0.0 <= self.kill_success_chance <= 1.0:
            raise ConfigurationError("kill_success_chance must be within [0, 1]")
        if self.max_kill_attempts < 1:
            raise ConfigurationError("max_kill_attempts must be at least 1")
        for name in ("kill_cooldown", "cancel_window", "kill_advance_delay", "task_message_interval"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} may not be negative")

    @property
    def max_players(self) -> int:
        return MAX_PLAYERS

    @property
    def max_rounds(self) -> int:
        return MAX_ROUNDS

    def with_overrides(self, **overrides: Any) -> "GameConfig":
        """Return a new ``GameConfig`` with the given fields replaced."""

        values: dict[str, Any] = {item.name: getattr(self, item.name) for item in fields(self)}
        unknown = set(overrides) - set(values)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        values.update(overrides)
        return GameConfig(**values)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GameConfig":
        """Instantiate a config from a flat mapping of field names."""

        return cls().with_overrides(**dict(data))
