"""Pure operations over task trees.

A tree is an ordered sequence of top-level tasks. Every function here returns
new objects and leaves its input untouched. Traversal is depth-first
pre-order over ``subtasks`` in stored order; when ids are duplicated the first
match wins. Unknown ids are not errors: the tree comes back unchanged.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import replace
from datetime import date
from typing import Any

from .models import Task

# Patch keys that update_multiple never merges into a node.
_PROTECTED_FIELDS = ("id", "subtasks")


def find_task(tree: Sequence[Task], task_id: str) -> Task | None:
    """Return the first task with ``task_id``, or None."""
    for task in tree:
        if task.id == task_id:
            return task
        found = find_task(task.subtasks, task_id)
        if found is not None:
            return found
    return None


def iter_tasks(tree: Sequence[Task], depth: int = 0) -> Iterator[tuple[int, Task]]:
    """Yield ``(depth, task)`` for every node in pre-order."""
    for task in tree:
        yield depth, task
        yield from iter_tasks(task.subtasks, depth + 1)


def find_and_remove(
    tree: Sequence[Task], task_id: str
) -> tuple[Task | None, list[Task]]:
    """Detach the first task with ``task_id``.

    Returns the detached task (with its whole subtree) and the new tree.
    Ancestors of the removed node are rebuilt; other subtrees are shared.
    Returns ``(None, list(tree))`` when nothing matches.
    """
    remaining: list[Task] = []
    found: Task | None = None
    for task in tree:
        if found is not None:
            remaining.append(task)
            continue
        if task.id == task_id:
            found = task
            continue
        child_found, new_subtasks = find_and_remove(task.subtasks, task_id)
        if child_found is not None:
            found = child_found
            remaining.append(replace(task, subtasks=new_subtasks))
        else:
            remaining.append(task)
    return found, remaining


def delete_subtree(tree: Sequence[Task], task_id: str) -> list[Task]:
    """Remove a task together with all its descendants."""
    _, remaining = find_and_remove(tree, task_id)
    return remaining


def update_in_place(tree: Sequence[Task], updated_task: Task) -> list[Task]:
    """Replace the first node whose id matches ``updated_task.id``.

    The replacement is wholesale: the caller's object, including its own
    subtasks, takes the node's place. No fields are merged.
    """
    new_tree, _ = _replace_first(tree, updated_task)
    return new_tree


def _replace_first(tree: Sequence[Task], updated: Task) -> tuple[list[Task], bool]:
    result: list[Task] = []
    done = False
    for task in tree:
        if done:
            result.append(task)
        elif task.id == updated.id:
            result.append(updated)
            done = True
        else:
            new_subtasks, done = _replace_first(task.subtasks, updated)
            result.append(replace(task, subtasks=new_subtasks) if done else task)
    return result, done


def update_multiple(
    tree: Sequence[Task], updates: Mapping[str, Mapping[str, Any]]
) -> list[Task]:
    """Shallow-merge field patches into many nodes in one traversal.

    ``updates`` maps task id to ``{attribute: value}``. Each matching node
    keeps its own (recursively updated) subtasks; ``id`` and ``subtasks``
    keys in a patch are ignored. Unlike :func:`update_in_place` this merges
    fields instead of replacing the node.
    """
    if not updates:
        return list(tree)

    result: list[Task] = []
    for task in tree:
        subtasks = update_multiple(task.subtasks, updates) if task.subtasks else []
        patch = updates.get(task.id)
        if patch:
            fields = {k: v for k, v in patch.items() if k not in _PROTECTED_FIELDS}
            result.append(replace(task, **fields, subtasks=subtasks))
        elif subtasks != task.subtasks:
            result.append(replace(task, subtasks=subtasks))
        else:
            result.append(task)
    return result


def insert_as_child(
    tree: Sequence[Task], parent_id: str, new_child: Task
) -> list[Task]:
    """Append ``new_child`` to the subtasks of the first task with ``parent_id``."""
    new_tree, _ = _insert_first(tree, parent_id, new_child)
    return new_tree


def _insert_first(
    tree: Sequence[Task], parent_id: str, child: Task
) -> tuple[list[Task], bool]:
    result: list[Task] = []
    done = False
    for task in tree:
        if done:
            result.append(task)
        elif task.id == parent_id:
            result.append(replace(task, subtasks=[*task.subtasks, child]))
            done = True
        else:
            new_subtasks, done = _insert_first(task.subtasks, parent_id, child)
            result.append(replace(task, subtasks=new_subtasks) if done else task)
    return result, done


def set_completed(task: Task, completed: bool, on: date) -> Task:
    """Mark a task and its whole subtree (in)complete.

    Every node gets the same ``completion_date``: ``on`` when completing,
    None when reopening.
    """
    completion_date = on if completed else None
    return replace(
        task,
        completed=completed,
        completion_date=completion_date,
        subtasks=[set_completed(t, completed, on) for t in task.subtasks],
    )
