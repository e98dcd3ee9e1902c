"""In-memory history of what happened during a session, and who may see it."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence, Union

from .enums import Role


class GameEventType(str, Enum):
    """Enumerates events emitted by the game engine."""

    SESSION_CREATED = "session_created"
    PLAYER_JOINED = "player_joined"
    PLAYER_EVICTED = "player_evicted"
    ROLES_ASSIGNED = "roles_assigned"
    ROUND_STARTED = "round_started"
    PHASE_CHANGED = "phase_changed"
    TASK_COMPLETED = "task_completed"
    KILL_ATTEMPTED = "kill_attempted"
    VOTE_CAST = "vote_cast"
    VOTES_RESOLVED = "votes_resolved"
    PLAYER_ELIMINATED = "player_eliminated"
    SESSION_RESET = "session_reset"


class EventVisibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True, slots=True)
class GameEvent:
    """One engine event; private events are visible only to their audience tags."""

    type: GameEventType
    at: float
    payload: Mapping[str, Any] = field(default_factory=dict)
    visibility: EventVisibility = EventVisibility.PUBLIC
    audience: tuple[str, ...] = ()

    def visible_to(self, tags: Sequence[str]) -> bool:
        if self.visibility is EventVisibility.PUBLIC:
            return True
        return any(tag in self.audience for tag in tags)


class EventLog:
    """Append-only log the engine writes to when one is injected."""

    def __init__(self) -> None:
        self._events: list[GameEvent] = []

    def record(
        self,
        event_type: GameEventType,
        payload: Mapping[str, Any] | None = None,
        *,
        at: float,
        visibility: EventVisibility | None = None,
        audience: Sequence[str] | None = None,
    ) -> GameEvent:
        event = GameEvent(
            type=event_type,
            at=at,
            payload=dict(payload or {}),
            visibility=visibility or EventVisibility.PUBLIC,
            audience=tuple(audience or ()),
        )
        self._events.append(event)
        return event

    @property
    def events(self) -> tuple[GameEvent, ...]:
        return tuple(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def of_type(self, event_type: GameEventType) -> tuple[GameEvent, ...]:
        return tuple(event for event in self._events if event.type is event_type)

    def events_for_player(
        self,
        player_id: str,
        *,
        role: Union[Role, None] = None,
    ) -> tuple[GameEvent, ...]:
        """Return public events plus private ones addressed to the player or their role."""

        tags = [player_audience_tag(player_id)]
        if role is not None:
            tags.append(role_audience_tag(role))
        return tuple(event for event in self._events if event.visible_to(tags))

    def private_events_for_player(
        self, player_id: str, *, role: Union[Role, None] = None
    ) -> tuple[GameEvent, ...]:
        return tuple(
            event
            for event in self.events_for_player(player_id, role=role)
            if event.visibility is EventVisibility.PRIVATE
        )


def player_audience_tag(player_id: str) -> str:
    return f"player:{player_id}"


def role_audience_tag(role: Role) -> str:
    return f"role:{role.value}"


__all__ = [
    "EventLog",
    "EventVisibility",
    "GameEvent",
    "GameEventType",
    "player_audience_tag",
    "role_audience_tag",
]
