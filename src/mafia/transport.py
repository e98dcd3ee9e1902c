"""Messaging transport contract and an in-memory recording implementation."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Set, Tuple

from .exceptions import CollaboratorFailure
from .players import PlayerId


@dataclass(frozen=True, slots=True)
class ChoiceOption:
    """A single interactive button offered to participants."""

    action_id: str
    label: str
    style: str = "primary"


class MessagingTransport(Protocol):
    """Async surface the orchestrator uses to reach participants.

    Implementations raise :class:`CollaboratorFailure` when a call fails.
    """

    async def create_group(self, member_ids: Sequence[PlayerId]) -> str:
        """Create a group conversation and return its id."""
        ...

    async def add_member(self, group_id: str, player_id: PlayerId) -> None:
        ...

    async def remove_member(self, group_id: str, player_id: PlayerId) -> None:
        ...

    async def send_text(self, conversation_id: str, text: str) -> None:
        ...

    async def send_choice(
        self,
        conversation_id: str,
        description: str,
        options: Sequence[ChoiceOption],
        expires_at: float,
    ) -> None:
        """Send a set of buttons that stop accepting clicks at ``expires_at``."""
        ...

    async def resolve_address(self, conversation_id: str, player_id: PlayerId) -> Optional[str]:
        """Return the display address of ``player_id`` within a conversation, if known."""
        ...

    async def open_direct_channel(self, player_id: PlayerId) -> str:
        """Return the id of a direct conversation with ``player_id``."""
        ...


@dataclass(frozen=True, slots=True)
class SentMessage:
    """Record of one outbound text or choice message."""

    conversation_id: str
    text: str
    options: Tuple[ChoiceOption, ...] = ()
    expires_at: Optional[float] = None

    @property
    def is_choice(self) -> bool:
        return bool(self.options)


@dataclass
class RecordingTransport:
    """In-memory transport that records everything sent through it.

    Used by the test-suite and the demo script. ``fail_choices`` makes every
    button send fail, and conversations listed in ``failing_conversations``
    reject text sends, to exercise the fallback paths.
    """

    addresses: Mapping[PlayerId, str] = field(default_factory=dict)
    fail_choices: bool = False
    failing_conversations: Set[str] = field(default_factory=set)
    sent: List[SentMessage] = field(default_factory=list)
    groups: Dict[str, List[PlayerId]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._group_ids = itertools.count(1)

    async def create_group(self, member_ids: Sequence[PlayerId]) -> str:
        group_id = f"group-{next(self._group_ids)}"
        self.groups[group_id] = list(member_ids)
        return group_id

    async def add_member(self, group_id: str, player_id: PlayerId) -> None:
        members = self._members(group_id)
        if player_id not in members:
            members.append(player_id)

    async def remove_member(self, group_id: str, player_id: PlayerId) -> None:
        members = self._members(group_id)
        if player_id in members:
            members.remove(player_id)

    async def send_text(self, conversation_id: str, text: str) -> None:
        if conversation_id in self.failing_conversations:
            raise CollaboratorFailure(f"Could not send to {conversation_id}")
        self.sent.append(SentMessage(conversation_id=conversation_id, text=text))

    async def send_choice(
        self,
        conversation_id: str,
        description: str,
        options: Sequence[ChoiceOption],
        expires_at: float,
    ) -> None:
        if self.fail_choices or conversation_id in self.failing_conversations:
            raise CollaboratorFailure(f"Could not send actions to {conversation_id}")
        self.sent.append(
            SentMessage(
                conversation_id=conversation_id,
                text=description,
                options=tuple(options),
                expires_at=expires_at,
            )
        )

    async def resolve_address(self, conversation_id: str, player_id: PlayerId) -> Optional[str]:
        if conversation_id in self.groups and player_id not in self.groups[conversation_id]:
            return None
        return self.addresses.get(player_id)

    async def open_direct_channel(self, player_id: PlayerId) -> str:
        return direct_channel_id(player_id)

    def texts_for(self, conversation_id: str) -> List[str]:
        return [message.text for message in self.sent if message.conversation_id == conversation_id]

    def choices_for(self, conversation_id: str) -> List[SentMessage]:
        return [
            message
            for message in self.sent
            if message.conversation_id == conversation_id and message.is_choice
        ]

    def _members(self, group_id: str) -> List[PlayerId]:
        try:
            return self.groups[group_id]
        except KeyError:
            raise CollaboratorFailure(f"Unknown group: {group_id}") from None


def direct_channel_id(player_id: PlayerId) -> str:
    return f"dm:{player_id}"
