"""Date-shift cascade for tasks dragged on a timeline."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta

from .models import Task

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatePatch:
    """New dates for one task."""

    id: str
    start_date: date
    end_date: date

    def as_fields(self) -> dict:
        return {"start_date": self.start_date, "end_date": self.end_date}


def day_delta(old: date, new: date) -> int:
    """Whole days from ``old`` to ``new``."""
    return (new - old).days


def cascade_shift(task: Task, days: int) -> list[DatePatch]:
    """Shift a scheduled task and every scheduled descendant by ``days``.

    Each shifted task keeps its own duration. Descendants without both dates
    are left alone, but their descendants are still visited. A task that is
    not itself scheduled produces no patches.
    """
    if not task.is_scheduled:
        logger.debug("Task %s has no dates; nothing to shift", task.id)
        return []

    delta = timedelta(days=days)
    patches = [_shifted(task, delta)]
    _collect(task.subtasks, delta, patches)
    return patches


def _collect(subtasks: Iterable[Task], delta: timedelta, out: list[DatePatch]) -> None:
    for sub in subtasks:
        if sub.is_scheduled:
            out.append(_shifted(sub, delta))
        if sub.subtasks:
            _collect(sub.subtasks, delta, out)


def _shifted(task: Task, delta: timedelta) -> DatePatch:
    duration = task.end_date - task.start_date
    start = task.start_date + delta
    return DatePatch(id=task.id, start_date=start, end_date=start + duration)


def patches_by_id(patches: Iterable[DatePatch]) -> dict[str, dict]:
    """Key patches by task id, in the form ``tree.update_multiple`` takes."""
    return {p.id: p.as_fields() for p in patches}
