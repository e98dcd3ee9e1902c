"""Session aggregate, state graph and derived vote records."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Dict, Mapping, Optional, Set, Tuple

from .config import MAX_ROUNDS, GameConfig
from .enums import PhaseKind
from .players import Player, PlayerId
from .tasks import Task


class SessionState(str, Enum):
    """Every state the single live session can be in."""

    IDLE = "idle"
    LOBBY_CREATED = "lobby_created"
    WAITING_FOR_PLAYERS = "waiting_for_players"
    ASSIGN_ROLES = "assign_roles"
    ROUND_1_TASKS = "round_1_tasks"
    ROUND_1_KILL = "round_1_kill"
    ROUND_1_DISCUSSION = "round_1_discussion"
    ROUND_1_VOTING = "round_1_voting"
    ROUND_2_TASKS = "round_2_tasks"
    ROUND_2_KILL = "round_2_kill"
    ROUND_2_DISCUSSION = "round_2_discussion"
    ROUND_2_VOTING = "round_2_voting"
    ROUND_3_TASKS = "round_3_tasks"
    ROUND_3_KILL = "round_3_kill"
    ROUND_3_DISCUSSION = "round_3_discussion"
    ROUND_3_VOTING = "round_3_voting"
    GAME_END = "game_end"

    @classmethod
    def for_phase(cls, round_number: int, kind: PhaseKind) -> "SessionState":
        """Return the state for ``kind`` within ``round_number``."""

        try:
            return _STATE_BY_PHASE[(round_number, kind)]
        except KeyError:
            raise ValueError(f"No state for round {round_number} phase {kind.value}") from None

    @property
    def round_number(self) -> Optional[int]:
        """Round this state belongs to, or None outside of play."""

        entry = _PHASE_BY_STATE.get(self)
        return entry[0] if entry else None

    @property
    def phase_kind(self) -> Optional[PhaseKind]:
        """Phase this state represents, or None outside of play."""

        entry = _PHASE_BY_STATE.get(self)
        return entry[1] if entry else None

    @property
    def is_round_phase(self) -> bool:
        return self in _PHASE_BY_STATE


PHASE_ORDER: Tuple[PhaseKind, ...] = (
    PhaseKind.TASKS,
    PhaseKind.KILL,
    PhaseKind.DISCUSSION,
    PhaseKind.VOTING,
)

_STATE_BY_PHASE: Dict[Tuple[int, PhaseKind], SessionState] = {
    (round_number, kind): SessionState(f"round_{round_number}_{kind.value}")
    for round_number in range(1, MAX_ROUNDS + 1)
    for kind in PHASE_ORDER
}
_PHASE_BY_STATE: Dict[SessionState, Tuple[int, PhaseKind]] = {
    state: key for key, state in _STATE_BY_PHASE.items()
}


def _build_transitions() -> Dict[SessionState, frozenset[SessionState]]:
    graph: Dict[SessionState, Set[SessionState]] = {
        SessionState.IDLE: {SessionState.LOBBY_CREATED},
        SessionState.LOBBY_CREATED: {SessionState.WAITING_FOR_PLAYERS},
        SessionState.WAITING_FOR_PLAYERS: {
            SessionState.WAITING_FOR_PLAYERS,
            SessionState.ASSIGN_ROLES,
        },
        SessionState.ASSIGN_ROLES: {SessionState.for_phase(1, PhaseKind.TASKS)},
        SessionState.GAME_END: {SessionState.IDLE},
    }
    for round_number in range(1, MAX_ROUNDS + 1):
        for current, following in zip(PHASE_ORDER, PHASE_ORDER[1:]):
            graph[SessionState.for_phase(round_number, current)] = {
                SessionState.for_phase(round_number, following)
            }
        voting = SessionState.for_phase(round_number, PhaseKind.VOTING)
        if round_number < MAX_ROUNDS:
            graph[voting] = {SessionState.for_phase(round_number + 1, PhaseKind.TASKS)}
        else:
            graph[voting] = {SessionState.GAME_END}
    return {state: frozenset(targets) for state, targets in graph.items()}


ALLOWED_TRANSITIONS: Mapping[SessionState, frozenset[SessionState]] = _build_transitions()


def is_valid_transition(current: SessionState, target: SessionState) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


@dataclass(frozen=True, slots=True)
class VoteResult:
    """Vote count received by one target in a round's tally."""

    target_id: PlayerId
    votes: int


@dataclass(frozen=True, slots=True)
class VoteResolution:
    """Outcome of applying the majority rule to a round's tally."""

    results: Tuple[VoteResult, ...]
    alive_count: int
    majority: int
    eliminated_id: Optional[PlayerId] = None

    @property
    def no_votes(self) -> bool:
        return not self.results


@dataclass
class Session:
    """The single mutable game session owned by an engine."""

    state: SessionState = SessionState.IDLE
    roster: Dict[PlayerId, Player] = field(default_factory=dict)
    round: int = 0
    adversary_id: Optional[PlayerId] = None
    eliminated: Set[PlayerId] = field(default_factory=set)
    task_assignments: Dict[PlayerId, Task] = field(default_factory=dict)
    join_deadline: Optional[float] = None
    start_time: Optional[float] = None
    correlation_id: Optional[str] = None
    lobby_group_id: Optional[str] = None
    kill_cooldown: float = 10.0
    kill_success_chance: float = 0.5
    max_kill_attempts: int = 3

    @classmethod
    def from_config(cls, config: GameConfig) -> "Session":
        """Create an idle session seeded with the configured tunables."""

        return cls(
            kill_cooldown=config.kill_cooldown,
            kill_success_chance=config.kill_success_chance,
            max_kill_attempts=config.max_kill_attempts,
        )

    def reset(self, config: GameConfig) -> None:
        """Restore every field in place to the freshly constructed state."""

        fresh = Session.from_config(config)
        for item in fields(self):
            setattr(self, item.name, getattr(fresh, item.name))

    @property
    def players(self) -> Tuple[Player, ...]:
        return tuple(self.roster.values())

    @property
    def alive_players(self) -> Tuple[Player, ...]:
        return tuple(player for player in self.roster.values() if player.is_alive)

    @property
    def adversary(self) -> Optional[Player]:
        if self.adversary_id is None:
            return None
        return self.roster.get(self.adversary_id)
