"""Player-related domain models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .enums import Role

PlayerId = str


@dataclass(slots=True)
class Player:
    """Mutable representation of a session participant."""

    player_id: PlayerId
    display_name: str
    role: Role = Role.UNASSIGNED
    is_alive: bool = True
    completed_task_count: int = 0
    kill_attempts_this_round: int = 0
    last_kill_attempt_at: Optional[float] = None
    has_voted: bool = False
    vote_target: Optional[PlayerId] = None

    def __post_init__(self) -> None:
        if not self.display_name:
            raise ValueError("display_name may not be empty")

    @property
    def is_adversary(self) -> bool:
        """Return True if this player holds the adversary role."""

        return self.role is Role.ADVERSARY

    @property
    def is_ally(self) -> bool:
        return self.role is Role.ALLY

    def reset_for_round(self) -> None:
        """Clear per-round kill and vote bookkeeping."""

        self.kill_attempts_this_round = 0
        self.last_kill_attempt_at = None
        self.has_voted = False
        self.vote_target = None

    def matches_username(self, username: str) -> bool:
        return self.display_name.casefold() == username.strip().casefold()
