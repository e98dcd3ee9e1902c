"""Round tasks handed to players during the task phase."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(slots=True)
class Task:
    """A question with its expected answer, completed at most once per round."""

    question: str
    answer: str
    completed: bool = False


class TaskProvider(Protocol):
    """Source of round tasks and the judge of submitted answers."""

    def generate_task(self) -> Task:
        """Return a freshly generated task."""
        ...

    def validate(self, task: Task, answer: str) -> bool:
        """Return True if ``answer`` completes ``task``."""
        ...


class ArithmeticTaskProvider:
    """Generates small addition, subtraction and multiplication questions."""

    def __init__(self, seed: Optional[int] = None, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random(seed)

    def generate_task(self) -> Task:
        operator = self._rng.choice(("+", "-", "*"))
        if operator == "*":
            left, right = self._rng.randint(2, 12), self._rng.randint(2, 9)
            result = left * right
        elif operator == "-":
            left = self._rng.randint(10, 99)
            right = self._rng.randint(1, left)
            result = left - right
        else:
            left, right = self._rng.randint(10, 99), self._rng.randint(10, 99)
            result = left + right
        return Task(question=f"What is {left} {operator} {right}?", answer=str(result))

    def validate(self, task: Task, answer: str) -> bool:
        return answer.strip().casefold() == task.answer.strip().casefold()
