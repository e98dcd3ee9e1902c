"""Rule engine for a single mafia session.

The engine owns no transport and performs no I/O beyond structured logging.
Every player intent maps onto one mutation that returns a result object; the
orchestrator decides what to announce and whether to advance early.
"""

from __future__ import annotations

import math
import random
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Tuple

import structlog

from .config import MAX_PLAYERS, MAX_ROUNDS, GameConfig
from .enums import PhaseKind, Role, Winner
from .events import (
    EventLog,
    EventVisibility,
    GameEventType,
    player_audience_tag,
    role_audience_tag,
)
from .exceptions import CollaboratorFailure, StateError, ValidationError
from .players import Player, PlayerId
from .session import (
    PHASE_ORDER,
    Session,
    SessionState,
    VoteResolution,
    VoteResult,
    is_valid_transition,
)
from .tasks import ArithmeticTaskProvider, Task, TaskProvider

log = structlog.get_logger(__name__)

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")

NOT_IN_GAME = "You are not part of an active game or have been eliminated."
WRONG_ANSWER = "Task answer incorrect. Try again."


def is_address(identifier: str) -> bool:
    """Return True if ``identifier`` looks like a wallet-style address."""

    return bool(ADDRESS_PATTERN.match(identifier.strip()))


@dataclass(frozen=True, slots=True)
class ActionResult:
    """Outcome of a player action; rejections carry a human-readable reason."""

    ok: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True, slots=True)
class JoinResult:
    """Outcome of a lobby join, including any player evicted to make room."""

    joined: bool
    player: Optional[Player] = None
    evicted: Optional[Player] = None
    reason: str = ""

    def __bool__(self) -> bool:
        return self.joined


@dataclass(frozen=True, slots=True)
class KillResult:
    """Outcome of a kill attempt.

    ``attempted`` is True only when the attempt passed every rule check and a
    roll was drawn; rejected attempts leave the adversary's counters untouched.
    """

    success: bool
    message: str
    target: Optional[Player] = None
    attempted: bool = False
    attempts_left: Optional[int] = None

    def __bool__(self) -> bool:
        return self.success


class GameEngine:
    """Applies game rules to an explicitly injected :class:`Session`."""

    def __init__(
        self,
        session: Session,
        config: GameConfig,
        *,
        host_id: PlayerId,
        task_provider: Optional[TaskProvider] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self.session = session
        self.config = config
        self.host_id = host_id
        self.task_provider: TaskProvider = task_provider or ArithmeticTaskProvider()
        self.rng = rng or random.Random()
        self.clock = clock
        self.event_log = event_log

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self.session.state

    def get_player(self, player_id: PlayerId) -> Optional[Player]:
        return self.session.roster.get(player_id)

    def alive_players(self) -> Tuple[Player, ...]:
        return self.session.alive_players

    def alive_usernames(self) -> Tuple[str, ...]:
        return tuple(player.display_name for player in self.session.alive_players)

    def player_by_username(self, username: str, *, alive_only: bool = False) -> Optional[Player]:
        """Find a player by case-insensitive display name."""

        for player in self.session.roster.values():
            if alive_only and not player.is_alive:
                continue
            if player.matches_username(username):
                return player
        return None

    def task_for(self, player_id: PlayerId) -> Optional[Task]:
        return self.session.task_assignments.get(player_id)

    def in_phase(self, kind: PhaseKind) -> bool:
        return self.session.state.phase_kind is kind

    # ------------------------------------------------------------------
    # Lobby
    # ------------------------------------------------------------------

    def create_session(self, correlation_id: str) -> None:
        """Open a new lobby; only valid while idle."""

        if self.session.state is not SessionState.IDLE:
            raise StateError("Game already in progress")
        now = self.clock()
        self._transition(SessionState.LOBBY_CREATED)
        self.session.correlation_id = correlation_id
        self.session.start_time = now
        self.session.join_deadline = now + self.config.join_window
        self._record_event(
            GameEventType.SESSION_CREATED,
            {"correlation_id": correlation_id, "join_deadline": self.session.join_deadline},
        )

    def add_player(self, player_id: PlayerId, display_name: str) -> JoinResult:
        """Admit a player to the lobby, evicting the newest non-host player when full."""

        session = self.session
        if session.state not in (SessionState.LOBBY_CREATED, SessionState.WAITING_FOR_PLAYERS):
            return JoinResult(joined=False, reason="The game is not accepting players.")
        if player_id in session.roster:
            return JoinResult(joined=False, reason="You have already joined.")
        if session.join_deadline is not None and self.clock() >= session.join_deadline:
            return JoinResult(joined=False, reason="The join window has closed.")
        name = display_name.strip()
        if not name:
            return JoinResult(joined=False, reason="A display name is required to join.")
        if self.player_by_username(name) is not None:
            return JoinResult(joined=False, reason=f'The name "{name}" is already taken.')

        evicted: Optional[Player] = None
        if len(session.roster) >= MAX_PLAYERS:
            evicted = self._evict_newest_guest()

        player = Player(player_id=player_id, display_name=name)
        session.roster[player_id] = player
        self._transition(SessionState.WAITING_FOR_PLAYERS)
        self._record_event(
            GameEventType.PLAYER_JOINED,
            {"player_id": player_id, "display_name": name, "roster_size": len(session.roster)},
        )
        log.info("player_joined", player_id=player_id, roster_size=len(session.roster))
        return JoinResult(joined=True, player=player, evicted=evicted)

    def _evict_newest_guest(self) -> Optional[Player]:
        host = self.host_id.casefold()
        for player_id in reversed(list(self.session.roster)):
            if player_id.casefold() == host:
                continue
            evicted = self.session.roster.pop(player_id)
            self._record_event(GameEventType.PLAYER_EVICTED, {"player_id": player_id})
            log.info("player_evicted", player_id=player_id)
            return evicted
        return None

    def close_join_window(self) -> None:
        """Pull the join deadline forward to now if it has not yet passed."""

        now = self.clock()
        if self.session.join_deadline is None or self.session.join_deadline > now:
            self.session.join_deadline = now

    def can_start(self) -> bool:
        session = self.session
        deadline_passed = (
            session.join_deadline is not None and self.clock() >= session.join_deadline
        )
        is_full = len(session.roster) >= MAX_PLAYERS
        return (
            session.state is SessionState.WAITING_FOR_PLAYERS
            and len(session.roster) >= self.config.min_players_to_start
            and (deadline_passed or is_full)
        )

    def assign_roles(self) -> Player:
        """Pick the adversary uniformly at random; everyone else becomes an ally."""

        if not self.can_start():
            raise StateError("Cannot assign roles at this time")
        players = list(self.session.roster.values())
        adversary = players[self.rng.randrange(len(players))]
        for player in players:
            player.role = Role.ADVERSARY if player is adversary else Role.ALLY
        self.session.adversary_id = adversary.player_id
        self._transition(SessionState.ASSIGN_ROLES)
        self._record_event(GameEventType.ROLES_ASSIGNED, {"player_count": len(players)})
        self._record_event(
            GameEventType.ROLES_ASSIGNED,
            {"adversary_id": adversary.player_id},
            visibility=EventVisibility.PRIVATE,
            audience=[player_audience_tag(adversary.player_id)],
        )
        return adversary

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------

    def start_round(self, round_number: int) -> None:
        """Enter the task phase of ``round_number`` and deal fresh tasks."""

        if not isinstance(round_number, int) or not 1 <= round_number <= MAX_ROUNDS:
            raise ValidationError(f"Invalid round number. Must be between 1 and {MAX_ROUNDS}")
        self._transition(SessionState.for_phase(round_number, PhaseKind.TASKS))
        session = self.session
        session.round = round_number
        session.task_assignments = {}
        for player in session.alive_players:
            player.reset_for_round()
            # The adversary is dealt a task too so nobody can tell roles apart.
            try:
                session.task_assignments[player.player_id] = self.task_provider.generate_task()
            except CollaboratorFailure:
                log.warning("task_generation_failed", player_id=player.player_id, exc_info=True)
        self._record_event(GameEventType.ROUND_STARTED, {"round": round_number})

    def advance_phase(self, expected: Optional[SessionState] = None) -> bool:
        """Move one step along the phase graph.

        When ``expected`` is given and the session has already left that state,
        nothing happens and False is returned.
        """

        current = self.session.state
        if expected is not None and current is not expected:
            log.debug("stale_advance_ignored", expected=expected.value, current=current.value)
            return False
        kind = current.phase_kind
        if kind is None:
            raise StateError(f"Cannot advance phase from {current.value}")
        if kind is PhaseKind.VOTING:
            if self.session.round < MAX_ROUNDS:
                self.start_round(self.session.round + 1)
            else:
                self._transition(SessionState.GAME_END)
            return True
        following = PHASE_ORDER[PHASE_ORDER.index(kind) + 1]
        self._transition(SessionState.for_phase(self.session.round, following))
        return True

    # ------------------------------------------------------------------
    # Player intents
    # ------------------------------------------------------------------

    def complete_task(self, player_id: PlayerId, answer: str) -> ActionResult:
        """Check a task answer and mark the player's task completed."""

        player = self.get_player(player_id)
        if player is None or not player.is_alive:
            return ActionResult(False, NOT_IN_GAME)
        if not self.in_phase(PhaseKind.TASKS):
            return ActionResult(False, "It's not the task phase.")
        if player.is_adversary:
            return ActionResult(False, WRONG_ANSWER)
        task = self.task_for(player_id)
        if task is None:
            return ActionResult(False, "You have no task this round.")
        if task.completed:
            return ActionResult(False, "Your task is already completed.")

        normalized = answer.strip()
        try:
            correct = self.task_provider.validate(task, normalized)
        except CollaboratorFailure:
            log.warning("task_validation_failed", player_id=player_id, exc_info=True)
            return ActionResult(False, "Could not check your answer right now. Try again.")
        if not correct:
            return ActionResult(False, WRONG_ANSWER)

        task.completed = True
        player.completed_task_count += 1
        self._record_event(
            GameEventType.TASK_COMPLETED,
            {"player_id": player_id, "round": self.session.round},
            visibility=EventVisibility.PRIVATE,
            audience=[player_audience_tag(player_id)],
        )
        return ActionResult(True, "Task completed!")

    def attempt_kill(
        self,
        adversary_id: PlayerId,
        target_identifier: str,
        *,
        address_match: Optional[PlayerId] = None,
    ) -> KillResult:
        """Attempt to eliminate a target during the kill phase.

        ``address_match`` is the player id the caller resolved from an
        address-shaped identifier; when absent or stale the identifier is
        matched against living players' usernames.
        """

        session = self.session
        adversary = self.get_player(adversary_id)
        if adversary is None or not adversary.is_alive or not adversary.is_adversary:
            return KillResult(False, "Only the mafia can attempt kills.")
        if not self.in_phase(PhaseKind.KILL):
            return KillResult(False, "It's not the kill phase yet.")

        target: Optional[Player] = None
        if address_match is not None:
            candidate = self.get_player(address_match)
            if candidate is not None and candidate.is_alive:
                target = candidate
        if target is None:
            target = self.player_by_username(target_identifier, alive_only=True)
        if target is None:
            return KillResult(
                False, f'Player "{target_identifier.strip()}" not found or already eliminated.'
            )
        if target.player_id == adversary_id:
            return KillResult(False, "You cannot kill yourself.")

        now = self.clock()
        last = adversary.last_kill_attempt_at
        if last is not None and now - last < session.kill_cooldown:
            remaining = math.ceil(session.kill_cooldown - (now - last))
            return KillResult(False, f"Kill attempt on cooldown. Wait {remaining} more seconds.")
        if adversary.kill_attempts_this_round >= session.max_kill_attempts:
            return KillResult(False, "Maximum kill attempts reached for this round.")

        adversary.kill_attempts_this_round += 1
        adversary.last_kill_attempt_at = now
        success = self.rng.random() < session.kill_success_chance
        attempts_left = session.max_kill_attempts - adversary.kill_attempts_this_round
        self._record_event(
            GameEventType.KILL_ATTEMPTED,
            {"target_id": target.player_id, "success": success, "round": session.round},
            visibility=EventVisibility.PRIVATE,
            audience=[player_audience_tag(adversary_id), role_audience_tag(Role.ADVERSARY)],
        )
        log.info("kill_attempted", round=session.round, success=success, attempts_left=attempts_left)

        if success:
            self.eliminate(target.player_id)
            return KillResult(
                True,
                f"Kill SUCCESS!\n\n@{target.display_name} is eliminated.",
                target=target,
                attempted=True,
                attempts_left=attempts_left,
            )
        return KillResult(
            False,
            f"Kill FAILED ({session.kill_success_chance * 100:.0f}% chance).\n\n"
            f"Cooldown: {session.kill_cooldown:g} seconds.\n"
            f"Attempts left: {attempts_left}.",
            target=target,
            attempted=True,
            attempts_left=attempts_left,
        )

    def cast_vote(self, voter_id: PlayerId, target_username: str) -> ActionResult:
        """Record a single vote for the current voting phase."""

        voter = self.get_player(voter_id)
        if voter is None or not voter.is_alive:
            return ActionResult(False, NOT_IN_GAME)
        if not self.in_phase(PhaseKind.VOTING):
            return ActionResult(False, "It's not the voting phase.")
        if voter.has_voted:
            return ActionResult(False, "You have already voted this round.")
        target = self.player_by_username(target_username, alive_only=True)
        if target is None:
            return ActionResult(
                False, f'Player "{target_username.strip()}" not found or already eliminated.'
            )

        voter.has_voted = True
        voter.vote_target = target.player_id
        self._record_event(
            GameEventType.VOTE_CAST,
            {"voter_id": voter_id, "target_id": target.player_id, "round": self.session.round},
            visibility=EventVisibility.PRIVATE,
            audience=[player_audience_tag(voter_id)],
        )
        return ActionResult(True, f"Voted for {target.display_name}")

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def tally_votes(self) -> list[VoteResult]:
        """Count living voters' ballots, highest first; ties keep roster order."""

        counts: dict[PlayerId, int] = {}
        for player in self.session.roster.values():
            if player.is_alive and player.has_voted and player.vote_target:
                counts[player.vote_target] = counts.get(player.vote_target, 0) + 1
        ordered = [
            VoteResult(target_id=player_id, votes=counts[player_id])
            for player_id in self.session.roster
            if player_id in counts
        ]
        return sorted(ordered, key=lambda result: result.votes, reverse=True)

    def resolve_votes(self) -> VoteResolution:
        """Apply the majority rule and eliminate the winning target, if any."""

        if not self.in_phase(PhaseKind.VOTING):
            raise StateError("Votes can only be resolved during a voting phase")
        results = tuple(self.tally_votes())
        alive_count = len(self.session.alive_players)
        majority = math.ceil(alive_count / 2)
        eliminated_id: Optional[PlayerId] = None
        if results and majority > 0 and results[0].votes >= majority:
            tied = len(results) > 1 and results[1].votes == results[0].votes
            if not tied:
                eliminated_id = results[0].target_id
                self.eliminate(eliminated_id)
        self._record_event(
            GameEventType.VOTES_RESOLVED,
            {
                "round": self.session.round,
                "results": [{"target_id": r.target_id, "votes": r.votes} for r in results],
                "majority": majority,
                "eliminated_id": eliminated_id,
            },
        )
        return VoteResolution(
            results=results,
            alive_count=alive_count,
            majority=majority,
            eliminated_id=eliminated_id,
        )

    def eliminate(self, player_id: PlayerId) -> None:
        player = self.get_player(player_id)
        if player is None:
            return
        if not player.is_alive and player_id in self.session.eliminated:
            return
        player.is_alive = False
        self.session.eliminated.add(player_id)
        self._record_event(
            GameEventType.PLAYER_ELIMINATED,
            {"player_id": player_id, "round": self.session.round},
        )
        log.info("player_eliminated", player_id=player_id, round=self.session.round)

    def check_win_condition(self) -> Optional[Winner]:
        """Return the winning side, or None while the session is undecided."""

        adversary = self.session.adversary
        if adversary is None or not adversary.is_alive:
            return Winner.ALLIES
        final_voting = SessionState.for_phase(MAX_ROUNDS, PhaseKind.VOTING)
        if self.session.round == MAX_ROUNDS and self.session.state in (
            final_voting,
            SessionState.GAME_END,
        ):
            return Winner.ADVERSARY
        return None

    def cleanup(self) -> None:
        """Reset the session to the state it had at construction."""

        self.session.reset(self.config)
        self._record_event(GameEventType.SESSION_RESET)
        log.info("session_reset")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, target: SessionState) -> None:
        current = self.session.state
        if not is_valid_transition(current, target):
            raise StateError(f"Invalid transition from {current.value} to {target.value}")
        self.session.state = target
        if current is not target:
            self._record_event(GameEventType.PHASE_CHANGED, {"state": target.value})
            log.info("phase_advanced", previous=current.value, state=target.value)

    def _record_event(
        self,
        event_type: GameEventType,
        payload: Mapping[str, Any] | None = None,
        *,
        visibility: EventVisibility | None = None,
        audience: list[str] | None = None,
    ) -> None:
        if self.event_log is None:
            return
        self.event_log.record(
            event_type, payload, at=self.clock(), visibility=visibility, audience=audience
        )
