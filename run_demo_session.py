"""CLI helper for playing a scripted session against the in-memory transport."""

import asyncio
import sys

from mafia.config import GameConfig, PhaseDurations
from mafia.config_loader import load_config_file
from mafia.engine import GameEngine
from mafia.enums import PhaseKind
from mafia.events import EventLog
from mafia.intents import IntentContext, dispatch_intent
from mafia.logging_config import configure_logging
from mafia.orchestrator import RoundOrchestrator
from mafia.session import PHASE_ORDER, Session, SessionState
from mafia.tasks import ArithmeticTaskProvider
from mafia.transport import RecordingTransport, direct_channel_id

HOST_ID = "mafia-host"
ORIGIN = "demo-chat"
PLAYERS = [
    ("alice", "Alice"),
    ("bob", "Bob"),
    ("carol", "Carol"),
    ("dave", "Dave"),
    ("erin", "Erin"),
]

# Short enough that the whole session plays out in a few seconds.
DEMO_CONFIG = GameConfig(
    join_window=0.5,
    phase_durations=PhaseDurations(tasks=0.4, kill=0.4, discussion=0.2, voting=0.3),
    kill_cooldown=0.0,
    kill_advance_delay=0.1,
    task_message_interval=0.0,
    cancel_window=1.0,
)


def _reached(state: SessionState, round_number: int, kind: PhaseKind) -> bool:
    if not state.is_round_phase:
        return state in (SessionState.IDLE, SessionState.GAME_END)
    position = (state.round_number, PHASE_ORDER.index(state.phase_kind))
    return position >= (round_number, PHASE_ORDER.index(kind))


async def _wait_until(
    orchestrator: RoundOrchestrator, round_number: int, kind: PhaseKind
) -> None:
    while not _reached(orchestrator.session.state, round_number, kind):
        await asyncio.sleep(0.01)


async def _wait_for_idle(orchestrator: RoundOrchestrator) -> None:
    while orchestrator.session.state is not SessionState.IDLE:
        await asyncio.sleep(0.01)


async def play(config: GameConfig, event_log: EventLog) -> RecordingTransport:
    """Run one scripted session and return the transport holding its transcript."""
    transport = RecordingTransport()
    engine = GameEngine(
        Session.from_config(config),
        config,
        host_id=HOST_ID,
        task_provider=ArithmeticTaskProvider(seed=11),
        event_log=event_log,
    )
    orchestrator = RoundOrchestrator(engine, transport)

    starter_id, starter_name = PLAYERS[0]
    lobby_id = await orchestrator.open_lobby(starter_id, starter_name, ORIGIN)
    if lobby_id is None:
        return transport
    for player_id, name in PLAYERS[1:]:
        await dispatch_intent(orchestrator, "join-game", IntentContext(player_id, name, ORIGIN))

    for round_number in range(1, config.max_rounds + 1):
        await _wait_until(orchestrator, round_number, PhaseKind.TASKS)
        adversary = orchestrator.session.adversary
        if adversary is None:
            break
        for player in engine.alive_players():
            task = engine.task_for(player.player_id)
            if task is not None and not player.is_adversary:
                await orchestrator.submit_task(player.player_id, task.answer, lobby_id)

        await _wait_until(orchestrator, round_number, PhaseKind.KILL)
        if engine.in_phase(PhaseKind.KILL):
            victim = next(p for p in engine.alive_players() if not p.is_adversary)
            await dispatch_intent(
                orchestrator,
                f"kill-{victim.player_id}",
                IntentContext(
                    adversary.player_id,
                    adversary.display_name,
                    direct_channel_id(adversary.player_id),
                    is_direct=True,
                ),
            )

        await _wait_until(orchestrator, round_number, PhaseKind.VOTING)
        # Nobody suspects anyone in round 1; from round 2 the town votes together.
        if round_number < 2 or not engine.in_phase(PhaseKind.VOTING):
            continue
        for player in engine.alive_players():
            if player.is_adversary:
                target = next(p for p in engine.alive_players() if not p.is_adversary)
            else:
                target = adversary
            await dispatch_intent(
                orchestrator,
                f"vote-{target.player_id}",
                IntentContext(player.player_id, player.display_name, lobby_id),
            )

    await _wait_for_idle(orchestrator)
    return transport


def print_transcript(transport: RecordingTransport) -> None:
    for message in transport.sent:
        print(f"[{message.conversation_id}]")
        print(message.text)
        for option in message.options:
            print(f"  ({option.action_id}) {option.label}")
        print()


def print_private_history(event_log: EventLog) -> None:
    """Show what each player learned privately, as their audience tags allow."""
    print("=== Private history ===")
    for player_id, name in PLAYERS:
        seen = event_log.private_events_for_player(player_id)
        print(f"{name}: " + (", ".join(event.type.value for event in seen) or "nothing"))


def main() -> None:
    """Play a scripted session, optionally with tunables from a YAML file."""
    configure_logging("development")
    config = DEMO_CONFIG
    if len(sys.argv) > 1:
        try:
            config = load_config_file(sys.argv[1])
        except Exception as exc:
            print(f"Error loading config file: {exc}")
            sys.exit(1)

    print("\n=== Mafia Demo Session ===")
    print(f"Players: {', '.join(name for _, name in PLAYERS)}")
    print()
    event_log = EventLog()
    transport = asyncio.run(play(config, event_log))
    print_transcript(transport)
    print_private_history(event_log)


if __name__ == "__main__":
    main()
