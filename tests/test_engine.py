from __future__ import annotations

from typing import Optional

import pytest

from helpers import ALWAYS_FAIL, ALWAYS_SUCCEED, FakeClock, ScriptedRandom, StaticTaskProvider
from mafia.config import GameConfig
from mafia.engine import NOT_IN_GAME, WRONG_ANSWER, GameEngine, is_address
from mafia.enums import PhaseKind, Role, Winner
from mafia.events import (
    EventLog,
    EventVisibility,
    GameEventType,
    player_audience_tag,
    role_audience_tag,
)
from mafia.exceptions import CollaboratorFailure, StateError, ValidationError
from mafia.session import Session, SessionState
from mafia.tasks import Task

HOST_ID = "host-agent"


def _engine(
    *,
    clock: Optional[FakeClock] = None,
    rng: Optional[ScriptedRandom] = None,
    config: Optional[GameConfig] = None,
    event_log: Optional[EventLog] = None,
    task_provider: object = None,
) -> GameEngine:
    config = config or GameConfig()
    return GameEngine(
        Session.from_config(config),
        config,
        host_id=HOST_ID,
        task_provider=task_provider or StaticTaskProvider(),
        rng=rng or ScriptedRandom(),
        clock=clock or FakeClock(),
        event_log=event_log,
    )


def _started_engine(
    player_count: int = 4,
    *,
    adversary_index: int = 0,
    roll: float = ALWAYS_SUCCEED,
    event_log: Optional[EventLog] = None,
) -> tuple[GameEngine, FakeClock]:
    """Engine in round 1's task phase; the adversary is ``p{adversary_index + 1}``."""
    clock = FakeClock()
    engine = _engine(
        clock=clock,
        rng=ScriptedRandom(pick_index=adversary_index, roll=roll),
        event_log=event_log,
    )
    engine.create_session("origin")
    for index in range(1, player_count + 1):
        assert engine.add_player(f"p{index}", f"Player{index}")
    clock.advance(engine.config.join_window + 1)
    engine.assign_roles()
    engine.start_round(1)
    return engine, clock


def _advance_to(engine: GameEngine, kind: PhaseKind) -> None:
    while engine.state.phase_kind is not kind:
        engine.advance_phase()


def test_create_session_opens_lobby_with_join_deadline() -> None:
    clock = FakeClock(start=500.0)
    engine = _engine(clock=clock)

    engine.create_session("conversation-1")

    assert engine.state is SessionState.LOBBY_CREATED
    assert engine.session.correlation_id == "conversation-1"
    assert engine.session.start_time == 500.0
    assert engine.session.join_deadline == 620.0


def test_create_session_rejected_while_a_game_exists() -> None:
    engine = _engine()
    engine.create_session("conversation-1")

    with pytest.raises(StateError, match="already in progress"):
        engine.create_session("conversation-2")


def test_first_join_moves_lobby_to_waiting_for_players() -> None:
    engine = _engine()
    engine.create_session("origin")

    result = engine.add_player("p1", "Alice")

    assert result.joined
    assert result.player is not None and result.player.role is Role.UNASSIGNED
    assert engine.state is SessionState.WAITING_FOR_PLAYERS


def test_add_player_rejects_duplicates() -> None:
    engine = _engine()
    engine.create_session("origin")
    engine.add_player("p1", "Alice")

    same_id = engine.add_player("p1", "Someone")
    same_name = engine.add_player("p2", "  alice ")

    assert not same_id
    assert not same_name
    assert "already taken" in same_name.reason
    assert list(engine.session.roster) == ["p1"]


def test_add_player_rejected_outside_lobby_or_after_deadline() -> None:
    clock = FakeClock()
    engine = _engine(clock=clock)

    assert not engine.add_player("p1", "Alice")

    engine.create_session("origin")
    clock.advance(engine.config.join_window + 1)
    late = engine.add_player("p1", "Alice")

    assert not late
    assert late.reason == "The join window has closed."
    assert engine.session.roster == {}


def test_full_lobby_evicts_newest_non_host_player() -> None:
    engine = _engine()
    engine.create_session("origin")
    for index in range(1, 6):
        engine.add_player(f"p{index}", f"Player{index}")
    engine.add_player(HOST_ID, "Host")

    result = engine.add_player("p7", "Player7")

    assert result.joined
    assert result.evicted is not None
    assert result.evicted.player_id == "p5"
    assert list(engine.session.roster) == ["p1", "p2", "p3", "p4", HOST_ID, "p7"]


def test_can_start_needs_quorum_and_closed_window_or_full_lobby() -> None:
    clock = FakeClock()
    engine = _engine(clock=clock)
    engine.create_session("origin")
    for index in range(1, 5):
        engine.add_player(f"p{index}", f"Player{index}")

    assert not engine.can_start()
    clock.advance(engine.config.join_window + 1)
    assert engine.can_start()

    crowded = _engine()
    crowded.create_session("origin")
    for index in range(1, 7):
        crowded.add_player(f"p{index}", f"Player{index}")
    assert crowded.can_start()


def test_assign_roles_without_quorum_raises() -> None:
    clock = FakeClock()
    engine = _engine(clock=clock)
    engine.create_session("origin")
    for index in range(1, 4):
        engine.add_player(f"p{index}", f"Player{index}")
    clock.advance(engine.config.join_window + 1)

    with pytest.raises(StateError):
        engine.assign_roles()
    assert engine.state is SessionState.WAITING_FOR_PLAYERS


@pytest.mark.parametrize("player_count", [4, 5, 6])
@pytest.mark.parametrize("pick", [0, 3])
def test_assign_roles_picks_exactly_one_adversary(player_count: int, pick: int) -> None:
    engine, _ = _started_engine(player_count, adversary_index=pick)

    roles = [player.role for player in engine.session.players]
    assert roles.count(Role.ADVERSARY) == 1
    assert roles.count(Role.ALLY) == player_count - 1
    assert engine.session.adversary_id == f"p{pick + 1}"


def test_role_assignment_event_keeps_adversary_private() -> None:
    event_log = EventLog()
    _started_engine(event_log=event_log, adversary_index=2)

    public, private = event_log.of_type(GameEventType.ROLES_ASSIGNED)
    assert public.visibility is EventVisibility.PUBLIC
    assert "adversary_id" not in public.payload
    assert private.audience == (player_audience_tag("p3"),)
    assert private not in event_log.events_for_player("p1")
    assert private in event_log.events_for_player("p3")


@pytest.mark.parametrize("round_number", [0, 4, -1])
def test_start_round_rejects_out_of_range_numbers(round_number: int) -> None:
    engine = _engine()

    with pytest.raises(ValidationError, match="between 1 and 3"):
        engine.start_round(round_number)


def test_start_round_out_of_order_raises_state_error() -> None:
    engine = _engine()

    with pytest.raises(StateError, match="Invalid transition"):
        engine.start_round(1)
    assert engine.state is SessionState.IDLE


def test_start_round_deals_every_living_player_a_task() -> None:
    engine, _ = _started_engine()

    assert engine.state is SessionState.ROUND_1_TASKS
    assert engine.session.round == 1
    assert set(engine.session.task_assignments) == {"p1", "p2", "p3", "p4"}


def test_task_provider_failure_leaves_player_without_task() -> None:
    class FlakyProvider(StaticTaskProvider):
        calls = 0

        def generate_task(self) -> Task:
            self.calls += 1
            if self.calls == 2:
                raise CollaboratorFailure("task service down")
            return super().generate_task()

    clock = FakeClock()
    engine = _engine(clock=clock, task_provider=FlakyProvider())
    engine.create_session("origin")
    for index in range(1, 5):
        engine.add_player(f"p{index}", f"Player{index}")
    clock.advance(engine.config.join_window + 1)
    engine.assign_roles()
    engine.start_round(1)

    assert engine.task_for("p2") is None
    assert engine.complete_task("p2", "4").reason == "You have no task this round."
    assert engine.complete_task("p3", "4")


def test_complete_task_accepts_trimmed_correct_answer_once() -> None:
    engine, _ = _started_engine()

    first = engine.complete_task("p2", "  4 ")
    second = engine.complete_task("p2", "4")

    assert first.ok and first.reason == "Task completed!"
    assert not second and "already completed" in second.reason
    assert engine.get_player("p2").completed_task_count == 1


def test_wrong_answer_can_be_retried() -> None:
    engine, _ = _started_engine()

    wrong = engine.complete_task("p3", "5")

    assert wrong.reason == WRONG_ANSWER
    assert not engine.task_for("p3").completed
    assert engine.complete_task("p3", "4")


def test_adversary_cannot_complete_tasks() -> None:
    engine, _ = _started_engine()

    result = engine.complete_task("p1", "4")

    assert result.reason == WRONG_ANSWER
    assert engine.get_player("p1").completed_task_count == 0


def test_task_submissions_rejected_outside_task_phase_and_for_strangers() -> None:
    engine, _ = _started_engine()

    assert engine.complete_task("stranger", "4").reason == NOT_IN_GAME
    engine.advance_phase()
    assert engine.complete_task("p2", "4").reason == "It's not the task phase."


def test_kill_succeeds_and_eliminates_target() -> None:
    engine, _ = _started_engine(roll=ALWAYS_SUCCEED)
    _advance_to(engine, PhaseKind.KILL)

    result = engine.attempt_kill("p1", "player2")

    assert result.success and result.attempted
    assert result.message == "Kill SUCCESS!\n\n@Player2 is eliminated."
    assert not engine.get_player("p2").is_alive
    assert engine.session.eliminated == {"p2"}


def test_kill_attempt_is_logged_privately_for_the_adversary_role() -> None:
    event_log = EventLog()
    engine, clock = _started_engine(event_log=event_log, roll=ALWAYS_FAIL)
    _advance_to(engine, PhaseKind.KILL)
    clock.advance(5)

    engine.attempt_kill("p1", "Player2")

    (attempt,) = event_log.of_type(GameEventType.KILL_ATTEMPTED)
    assert attempt.at == clock()
    assert attempt.audience == (player_audience_tag("p1"), role_audience_tag(Role.ADVERSARY))
    assert attempt.payload == {"target_id": "p2", "success": False, "round": 1}
    assert attempt not in event_log.events_for_player("p2")
    assert attempt in event_log.events_for_player("p4", role=Role.ADVERSARY)
    assert event_log.private_events_for_player("p1")[-1] is attempt


def test_failed_kill_reports_cooldown_and_attempts_left() -> None:
    engine, _ = _started_engine(roll=ALWAYS_FAIL)
    _advance_to(engine, PhaseKind.KILL)

    result = engine.attempt_kill("p1", "Player2")

    assert not result.success and result.attempted
    assert result.message == (
        "Kill FAILED (50% chance).\n\nCooldown: 10 seconds.\nAttempts left: 2."
    )
    assert engine.get_player("p2").is_alive


def test_kill_rejections_leave_counters_untouched() -> None:
    engine, _ = _started_engine()

    assert engine.attempt_kill("p1", "Player2").message == "It's not the kill phase yet."
    _advance_to(engine, PhaseKind.KILL)
    assert engine.attempt_kill("p2", "Player3").message == "Only the mafia can attempt kills."
    assert engine.attempt_kill("p1", "Player1").message == "You cannot kill yourself."
    assert (
        engine.attempt_kill("p1", "Ghost").message
        == 'Player "Ghost" not found or already eliminated.'
    )

    adversary = engine.get_player("p1")
    assert adversary.kill_attempts_this_round == 0
    assert adversary.last_kill_attempt_at is None


def test_kill_during_cooldown_is_rejected_without_counting() -> None:
    engine, clock = _started_engine(roll=ALWAYS_FAIL)
    _advance_to(engine, PhaseKind.KILL)
    adversary = engine.get_player("p1")

    engine.attempt_kill("p1", "Player2")
    first_attempt_at = adversary.last_kill_attempt_at
    clock.advance(4)
    blocked = engine.attempt_kill("p1", "Player2")

    assert not blocked.attempted
    assert blocked.message == "Kill attempt on cooldown. Wait 6 more seconds."
    assert adversary.kill_attempts_this_round == 1
    assert adversary.last_kill_attempt_at == first_attempt_at

    clock.advance(7)
    assert engine.attempt_kill("p1", "Player2").attempted
    assert adversary.kill_attempts_this_round == 2


def test_kill_attempts_are_capped_per_round_and_reset_next_round() -> None:
    engine, clock = _started_engine(roll=ALWAYS_FAIL)
    _advance_to(engine, PhaseKind.KILL)
    adversary = engine.get_player("p1")

    for _ in range(3):
        assert engine.attempt_kill("p1", "Player2").attempted
        clock.advance(11)
    capped = engine.attempt_kill("p1", "Player2")

    assert capped.message == "Maximum kill attempts reached for this round."
    assert adversary.kill_attempts_this_round == 3

    _advance_to(engine, PhaseKind.VOTING)
    engine.advance_phase()
    assert engine.state is SessionState.ROUND_2_TASKS
    assert adversary.kill_attempts_this_round == 0
    assert adversary.last_kill_attempt_at is None


def test_kill_prefers_resolved_address_match() -> None:
    engine, _ = _started_engine()
    _advance_to(engine, PhaseKind.KILL)
    address = "0x" + "ab" * 20

    assert is_address(address)
    result = engine.attempt_kill("p1", address, address_match="p3")

    assert result.success
    assert result.target.player_id == "p3"


def test_vote_is_single_shot_per_round() -> None:
    engine, _ = _started_engine()
    _advance_to(engine, PhaseKind.VOTING)

    first = engine.cast_vote("p2", "player3")
    second = engine.cast_vote("p2", "Player4")

    assert first.reason == "Voted for Player3"
    assert second.reason == "You have already voted this round."
    assert engine.get_player("p2").vote_target == "p3"


def test_vote_rejections() -> None:
    engine, _ = _started_engine()

    assert engine.cast_vote("p2", "Player3").reason == "It's not the voting phase."
    _advance_to(engine, PhaseKind.VOTING)
    engine.eliminate("p4")
    assert engine.cast_vote("p4", "Player3").reason == NOT_IN_GAME
    assert not engine.cast_vote("p2", "Player4")
    assert not engine.cast_vote("p2", "Nobody")


def test_tally_orders_by_votes_then_roster_order() -> None:
    engine, _ = _started_engine(5)
    _advance_to(engine, PhaseKind.VOTING)
    engine.cast_vote("p1", "Player3")
    engine.cast_vote("p2", "Player5")
    engine.cast_vote("p3", "Player2")
    engine.cast_vote("p4", "Player5")

    tally = [(result.target_id, result.votes) for result in engine.tally_votes()]

    assert tally == [("p5", 2), ("p2", 1), ("p3", 1)]


def test_three_of_five_votes_eliminate() -> None:
    engine, _ = _started_engine(5)
    _advance_to(engine, PhaseKind.VOTING)
    for voter in ("p1", "p2", "p3"):
        engine.cast_vote(voter, "Player4")

    resolution = engine.resolve_votes()

    assert resolution.majority == 3
    assert resolution.eliminated_id == "p4"
    assert not engine.get_player("p4").is_alive


def test_three_of_six_votes_eliminate() -> None:
    engine, _ = _started_engine(6)
    _advance_to(engine, PhaseKind.VOTING)
    for voter in ("p1", "p2", "p3"):
        engine.cast_vote(voter, "Player5")
    engine.cast_vote("p4", "Player6")
    engine.cast_vote("p5", "Player6")
    engine.cast_vote("p6", "Player2")

    resolution = engine.resolve_votes()

    assert resolution.majority == 3
    assert resolution.eliminated_id == "p5"


def test_split_vote_without_majority_eliminates_nobody() -> None:
    engine, _ = _started_engine(5)
    _advance_to(engine, PhaseKind.VOTING)
    engine.cast_vote("p1", "Player3")
    engine.cast_vote("p2", "Player3")
    engine.cast_vote("p3", "Player1")
    engine.cast_vote("p4", "Player1")
    engine.cast_vote("p5", "Player2")

    resolution = engine.resolve_votes()

    assert resolution.eliminated_id is None
    assert len(engine.alive_players()) == 5


def test_tie_at_majority_eliminates_nobody() -> None:
    engine, _ = _started_engine(6)
    _advance_to(engine, PhaseKind.VOTING)
    for voter in ("p1", "p2", "p3"):
        engine.cast_vote(voter, "Player4")
    for voter in ("p4", "p5", "p6"):
        engine.cast_vote(voter, "Player1")

    assert engine.resolve_votes().eliminated_id is None


def test_no_votes_resolution() -> None:
    engine, _ = _started_engine()
    _advance_to(engine, PhaseKind.VOTING)

    resolution = engine.resolve_votes()

    assert resolution.no_votes
    assert resolution.eliminated_id is None


def test_resolve_votes_outside_voting_raises() -> None:
    engine, _ = _started_engine()

    with pytest.raises(StateError):
        engine.resolve_votes()


def test_eliminate_is_idempotent() -> None:
    event_log = EventLog()
    engine, _ = _started_engine(event_log=event_log)

    engine.eliminate("p2")
    engine.eliminate("p2")

    assert engine.session.eliminated == {"p2"}
    assert len(event_log.of_type(GameEventType.PLAYER_ELIMINATED)) == 1


def test_adversary_elimination_wins_for_allies_mid_round() -> None:
    engine, _ = _started_engine()

    assert engine.check_win_condition() is None
    engine.eliminate("p1")

    assert engine.check_win_condition() is Winner.ALLIES


def test_adversary_wins_by_surviving_to_final_vote() -> None:
    engine, _ = _started_engine()

    while engine.state is not SessionState.ROUND_3_VOTING:
        assert engine.check_win_condition() is None
        engine.advance_phase()

    assert engine.check_win_condition() is Winner.ADVERSARY
    engine.advance_phase()
    assert engine.state is SessionState.GAME_END
    assert engine.check_win_condition() is Winner.ADVERSARY


def test_advance_phase_walks_every_round_in_order() -> None:
    engine, _ = _started_engine()
    visited = [engine.state]

    while engine.state is not SessionState.GAME_END:
        engine.advance_phase()
        visited.append(engine.state)

    expected = [
        SessionState.for_phase(round_number, kind)
        for round_number in (1, 2, 3)
        for kind in (PhaseKind.TASKS, PhaseKind.KILL, PhaseKind.DISCUSSION, PhaseKind.VOTING)
    ]
    assert visited == expected + [SessionState.GAME_END]


def test_stale_advance_is_ignored() -> None:
    engine, _ = _started_engine()
    engine.advance_phase()

    assert not engine.advance_phase(SessionState.ROUND_1_TASKS)
    assert engine.state is SessionState.ROUND_1_KILL


def test_advance_phase_outside_play_raises() -> None:
    engine = _engine()

    with pytest.raises(StateError):
        engine.advance_phase()


def test_cleanup_restores_a_fresh_session() -> None:
    engine, _ = _started_engine(roll=ALWAYS_SUCCEED)
    _advance_to(engine, PhaseKind.KILL)
    engine.attempt_kill("p1", "Player2")
    engine.session.lobby_group_id = "group-1"

    engine.cleanup()

    assert engine.session == Session.from_config(engine.config)
    engine.create_session("again")
    assert engine.state is SessionState.LOBBY_CREATED


def test_phase_changes_are_recorded() -> None:
    event_log = EventLog()
    engine, _ = _started_engine(event_log=event_log)
    engine.advance_phase()

    states = [event.payload["state"] for event in event_log.of_type(GameEventType.PHASE_CHANGED)]

    assert states == [
        "lobby_created",
        "waiting_for_players",
        "assign_roles",
        "round_1_tasks",
        "round_1_kill",
    ]


def test_closing_join_window_early_allows_start() -> None:
    clock = FakeClock()
    engine = _engine(clock=clock)
    engine.create_session("origin")
    for index in range(1, 5):
        engine.add_player(f"p{index}", f"Player{index}")
    clock.advance(engine.config.join_window - 0.01)

    engine.close_join_window()

    assert engine.can_start()
    assert not engine.add_player("p5", "Player5")
