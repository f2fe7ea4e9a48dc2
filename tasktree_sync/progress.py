"""Completion counts for progress bars."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .models import Task


@dataclass(frozen=True)
class Progress:
    completed: int = 0
    total: int = 0

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 0
        return round(self.completed * 100 / self.total)

    def __add__(self, other: Progress) -> Progress:
        return Progress(self.completed + other.completed, self.total + other.total)


def aggregate(tree: Sequence[Task]) -> Progress:
    """Count completed and total nodes across a tree.

    Parents and children are counted independently: a completed parent with
    open children contributes one completed node and its children's own
    states.
    """
    progress = Progress()
    for task in tree:
        progress += Progress(1 if task.completed else 0, 1)
        if task.subtasks:
            progress += aggregate(task.subtasks)
    return progress
