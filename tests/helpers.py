"""Deterministic stand-ins shared across the test-suite."""

from __future__ import annotations

import random

from mafia.tasks import Task


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedRandom(random.Random):
    """Random source that always picks ``pick_index`` and always rolls ``roll``."""

    def __init__(self, *, pick_index: int = 0, roll: float = 0.0) -> None:
        super().__init__(0)
        self.pick_index = pick_index
        self.roll = roll

    def randrange(self, *args: object, **kwargs: object) -> int:  # type: ignore[override]
        return self.pick_index

    def random(self) -> float:
        return self.roll


class StaticTaskProvider:
    """Deals the same arithmetic question to everyone."""

    question = "What is 2 + 2?"
    answer = "4"

    def generate_task(self) -> Task:
        return Task(question=self.question, answer=self.answer)

    def validate(self, task: Task, answer: str) -> bool:
        return answer.strip() == task.answer


ALWAYS_SUCCEED = 0.0
ALWAYS_FAIL = 0.99
