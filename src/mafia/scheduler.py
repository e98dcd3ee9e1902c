"""Keyed one-shot timers driving phase timeouts."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Tuple

import structlog

from .enums import PhaseKind

log = structlog.get_logger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class TimerKind(str, Enum):
    """What a pending timer is waiting for."""

    JOIN_WINDOW = "join_window"
    TASKS = "tasks"
    KILL = "kill"
    KILL_GRACE = "kill_grace"
    DISCUSSION = "discussion"
    VOTING = "voting"


@dataclass(frozen=True, slots=True)
class TimerKey:
    """Registry key: a timer kind scoped to a round (0 outside of play)."""

    kind: TimerKind
    round: int = 0

    @classmethod
    def for_phase(cls, kind: PhaseKind, round_number: int) -> "TimerKey":
        return cls(TimerKind(kind.value), round_number)

    def __str__(self) -> str:
        return f"{self.kind.value}-{self.round}"


class PhaseScheduler:
    """Registry of pending one-shot timers, at most one per key.

    Must be used from inside a running event loop.
    """

    def __init__(self) -> None:
        self._timers: Dict[TimerKey, asyncio.Task[None]] = {}

    def schedule(self, key: TimerKey, delay: float, callback: TimerCallback) -> asyncio.Task[None]:
        """Run ``callback`` after ``delay`` seconds, replacing any timer under ``key``."""

        self.cancel(key)
        task = asyncio.get_running_loop().create_task(
            self._run(key, delay, callback), name=f"timer:{key}"
        )
        self._timers[key] = task
        log.debug("timer_scheduled", timer=str(key), delay=delay)
        return task

    def cancel(self, key: TimerKey) -> bool:
        """Cancel the timer under ``key``; returns False if nothing was pending."""

        task = self._timers.pop(key, None)
        if task is None:
            return False
        task.cancel()
        log.debug("timer_cancelled", timer=str(key))
        return True

    def cancel_all(self) -> None:
        for key in list(self._timers):
            self.cancel(key)

    def pending(self, key: TimerKey) -> bool:
        return key in self._timers

    @property
    def pending_keys(self) -> Tuple[TimerKey, ...]:
        return tuple(self._timers)

    async def _run(self, key: TimerKey, delay: float, callback: TimerCallback) -> None:
        await asyncio.sleep(delay)
        # A fired timer leaves the registry first so its callback may cancel
        # every timer without cancelling itself.
        if self._timers.get(key) is asyncio.current_task():
            del self._timers[key]
        log.debug("timer_fired", timer=str(key))
        try:
            await callback()
        except Exception:
            log.exception("timer_callback_failed", timer=str(key))
