"""Enumerations for mafia session entities."""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Secret role held by a participant."""

    UNASSIGNED = "unassigned"
    ADVERSARY = "adversary"
    ALLY = "ally"


class PhaseKind(str, Enum):
    """The four timed phases that make up a round."""

    TASKS = "tasks"
    KILL = "kill"
    DISCUSSION = "discussion"
    VOTING = "voting"


class Winner(str, Enum):
    """Side that won the session."""

    ALLIES = "allies"
    ADVERSARY = "adversary"
