"""Timed social-deduction session engine."""

from .config import MAX_PLAYERS, MAX_ROUNDS, GameConfig, PhaseDurations
from .config_loader import load_config_file
from .engine import ActionResult, GameEngine, JoinResult, KillResult, is_address
from .enums import PhaseKind, Role, Winner
from .events import (
    EventLog,
    EventVisibility,
    GameEvent,
    GameEventType,
    player_audience_tag,
    role_audience_tag,
)
from .exceptions import CollaboratorFailure, ConfigurationError, StateError, ValidationError
from .intents import IntentContext, dispatch_intent
from .logging_config import configure_logging
from .orchestrator import RoundOrchestrator
from .players import Player, PlayerId
from .scheduler import PhaseScheduler, TimerKey, TimerKind
from .session import Session, SessionState, VoteResolution, VoteResult
from .tasks import ArithmeticTaskProvider, Task, TaskProvider
from .transport import ChoiceOption, MessagingTransport, RecordingTransport

__all__ = [
    "ActionResult",
    "ArithmeticTaskProvider",
    "ChoiceOption",
    "CollaboratorFailure",
    "ConfigurationError",
    "EventLog",
    "EventVisibility",
    "GameConfig",
    "GameEngine",
    "GameEvent",
    "GameEventType",
    "IntentContext",
    "JoinResult",
    "KillResult",
    "MAX_PLAYERS",
    "MAX_ROUNDS",
    "MessagingTransport",
    "PhaseDurations",
    "PhaseKind",
    "PhaseScheduler",
    "Player",
    "PlayerId",
    "RecordingTransport",
    "Role",
    "RoundOrchestrator",
    "Session",
    "SessionState",
    "StateError",
    "Task",
    "TaskProvider",
    "TimerKey",
    "TimerKind",
    "ValidationError",
    "VoteResolution",
    "VoteResult",
    "Winner",
    "configure_logging",
    "dispatch_intent",
    "is_address",
    "load_config_file",
    "player_audience_tag",
    "role_audience_tag",
]
