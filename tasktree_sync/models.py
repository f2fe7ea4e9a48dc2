"""Data models for projects, groups and their task trees."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any

logger = logging.getLogger(__name__)

UNTITLED_TASK = "Untitled Task"
UNTITLED_PROJECT = "Untitled Project"
INVALID_PROJECT = "Invalid Project Data"

# attribute name -> document key
TASK_KEYS = {
    "id": "id",
    "name": "name",
    "description": "description",
    "completed": "completed",
    "completion_date": "completionDate",
    "start_date": "startDate",
    "end_date": "endDate",
    "start_time": "startTime",
    "duration": "duration",
    "image_url": "imageUrl",
    "dependencies": "dependencies",
    "resource_ids": "resourceIds",
    "subtasks": "subtasks",
}
PROJECT_KEYS = {
    "id": "id",
    "name": "name",
    "group_id": "groupId",
    "tasks": "tasks",
    "is_archived": "isArchived",
    "is_hidden": "isHidden",
    "icon": "icon",
}
GROUP_KEYS = {
    "id": "id",
    "name": "name",
    "color": "color",
    "order": "order",
}
RESOURCE_KEYS = {
    "id": "id",
    "url": "url",
    "title": "title",
    "notes": "notes",
    "thumbnail_url": "thumbnailUrl",
    "project_group_id": "projectGroupId",
    "project_ids": "projectIds",
    "is_pinned": "isPinned",
    "created_at": "createdAt",
}

_DATE_FIELDS = ("completion_date", "start_date", "end_date")


@dataclass(frozen=True)
class Task:
    """A node in a project's task tree.

    ``start_time``, ``duration``, ``image_url``, ``dependencies``,
    ``resource_ids`` and ``extra`` are carried through every tree operation
    untouched.
    """

    id: str
    name: str
    completed: bool = False
    description: str = ""
    subtasks: list[Task] = field(default_factory=list)
    completion_date: date | None = None
    start_date: date | None = None
    end_date: date | None = None
    start_time: str | None = None
    duration: Any = None
    image_url: str | None = None
    dependencies: list[str] | None = None
    resource_ids: list[str] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_scheduled(self) -> bool:
        return self.start_date is not None and self.end_date is not None


@dataclass(frozen=True)
class Project:
    """A project owns one forest of top-level tasks."""

    id: str
    name: str
    group_id: str = ""
    tasks: list[Task] = field(default_factory=list)
    is_archived: bool = False
    is_hidden: bool = False
    icon: str | None = None


@dataclass(frozen=True)
class ProjectGroup:
    id: str
    name: str
    color: str = ""
    order: int | None = None


@dataclass(frozen=True)
class Resource:
    """A saved link, optionally attached to a group and some projects.

    ``created_at`` is a millisecond timestamp.
    """

    id: str
    url: str
    title: str
    notes: str = ""
    thumbnail_url: str = ""
    project_group_id: str = ""
    project_ids: list[str] = field(default_factory=list)
    is_pinned: bool = False
    created_at: int = 0


# ----------------------------------------------------------------------
# Document conversion
# ----------------------------------------------------------------------


def task_to_dict(task: Task) -> dict:
    """Return the document form of a task (camelCase keys, None omitted)."""
    d: dict = dict(task.extra)
    for attr, key in TASK_KEYS.items():
        value = getattr(task, attr)
        if value is None:
            continue
        if attr == "subtasks":
            value = [task_to_dict(t) for t in value]
        elif attr in _DATE_FIELDS:
            value = value.isoformat()
        d[key] = value
    return d


def task_from_dict(data: Any) -> Task:
    """Build a task from a stored document, filling safe defaults.

    A corrupted document never raises: a missing id is generated, an empty
    name becomes a placeholder and a non-list ``subtasks`` becomes empty.
    """
    if not isinstance(data, dict):
        logger.warning("Discarding non-mapping task document: %r", data)
        data = {}

    task_id = data.get("id")
    if not task_id:
        task_id = f"task-{uuid.uuid4().hex}"
        logger.warning("Task document without id; assigned %s", task_id)

    raw_subtasks = data.get("subtasks")
    if not isinstance(raw_subtasks, list):
        raw_subtasks = []

    known = set(TASK_KEYS.values())
    return Task(
        id=str(task_id),
        name=_text(data.get("name"), UNTITLED_TASK),
        completed=data.get("completed") is True,
        description=_text(data.get("description")),
        subtasks=[task_from_dict(t) for t in raw_subtasks],
        completion_date=_parse_date(data.get("completionDate")),
        start_date=_parse_date(data.get("startDate")),
        end_date=_parse_date(data.get("endDate")),
        start_time=data.get("startTime"),
        duration=data.get("duration"),
        image_url=data.get("imageUrl"),
        dependencies=data.get("dependencies"),
        resource_ids=data.get("resourceIds"),
        extra={k: v for k, v in data.items() if k not in known},
    )


def project_to_dict(project: Project) -> dict:
    d: dict = {}
    for attr, key in PROJECT_KEYS.items():
        value = getattr(project, attr)
        if value is None:
            continue
        if attr == "tasks":
            value = [task_to_dict(t) for t in value]
        d[key] = value
    return d


def project_from_dict(doc_id: str, data: Any) -> Project:
    """Build a project from a stored document, filling safe defaults."""
    if not isinstance(data, dict):
        logger.warning("Project document %s is not a mapping; marking archived", doc_id)
        return Project(id=doc_id, name=INVALID_PROJECT, is_archived=True)

    raw_tasks = data.get("tasks")
    if not isinstance(raw_tasks, list):
        raw_tasks = []

    return Project(
        id=doc_id,
        name=_text(data.get("name"), UNTITLED_PROJECT),
        group_id=_text(data.get("groupId")),
        tasks=[task_from_dict(t) for t in raw_tasks],
        is_archived=data.get("isArchived") is True,
        is_hidden=data.get("isHidden") is True,
        icon=_text(data.get("icon")) or None,
    )


def group_to_dict(group: ProjectGroup) -> dict:
    return {
        key: getattr(group, attr)
        for attr, key in GROUP_KEYS.items()
        if getattr(group, attr) is not None
    }


def group_from_dict(doc_id: str, data: Any) -> ProjectGroup:
    if not isinstance(data, dict):
        data = {}
    order = data.get("order")
    return ProjectGroup(
        id=doc_id,
        name=_text(data.get("name")),
        color=_text(data.get("color")),
        order=order if isinstance(order, int) and not isinstance(order, bool) else None,
    )


def resource_to_dict(resource: Resource) -> dict:
    d = {key: getattr(resource, attr) for attr, key in RESOURCE_KEYS.items()}
    d["projectIds"] = list(resource.project_ids)
    return d


def resource_from_dict(doc_id: str, data: Any) -> Resource:
    """Build a resource from a stored document, filling safe defaults."""
    if not isinstance(data, dict):
        logger.warning("Resource document %s is not a mapping", doc_id)
        data = {}
    project_ids = data.get("projectIds")
    created_at = data.get("createdAt")
    return Resource(
        id=doc_id,
        url=_text(data.get("url")),
        title=_text(data.get("title")),
        notes=_text(data.get("notes")),
        thumbnail_url=_text(data.get("thumbnailUrl")),
        project_group_id=_text(data.get("projectGroupId")),
        project_ids=[p for p in project_ids if isinstance(p, str)]
        if isinstance(project_ids, list) else [],
        is_pinned=data.get("isPinned") is True,
        created_at=created_at
        if isinstance(created_at, int) and not isinstance(created_at, bool) else 0,
    )


def project_fields_to_dict(updates: dict[str, Any]) -> dict:
    """Translate a partial project update (attribute names) to document keys."""
    d: dict = {}
    for attr, value in updates.items():
        key = PROJECT_KEYS[attr]
        if attr == "tasks":
            value = [task_to_dict(t) for t in value]
        d[key] = value
    return d


def _text(raw: Any, placeholder: str = "") -> str:
    """Return ``raw`` if it is a non-empty string, else ``placeholder``."""
    if isinstance(raw, str) and raw:
        return raw
    if raw not in (None, ""):
        logger.warning("Expected a string, got %r", raw)
    return placeholder


def _parse_date(raw: Any) -> date | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw)[:10])
    except (ValueError, TypeError):
        logger.warning("Ignoring unparsable date %r", raw)
        return None
