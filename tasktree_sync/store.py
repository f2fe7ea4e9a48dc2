"""Project registry and optimistic mutation pipeline.

``ProjectStore`` holds every project, group and resource of the session and is the only
way to change them. Each mutation:

1. captures the current ``StoreState`` as a snapshot,
2. computes the next state with a pure tree operation,
3. publishes it to all subscribers before returning,
4. schedules the remote write on the running event loop.

The returned future resolves to a ``MutationResult``. If the write fails the
snapshot is published again and failure listeners are told. A late failure
reverts to its own snapshot, so mutations that succeeded while it was in
flight are lost from local state until the next remote snapshot arrives.

Mutations must be called from code running inside an asyncio event loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import date
from typing import Any

from . import tree
from .firestore import PROJECT_GROUPS, PROJECTS, RESOURCES, DocumentWrite, FirestoreClient
from .models import (
    Project,
    ProjectGroup,
    Resource,
    Task,
    group_from_dict,
    group_to_dict,
    project_fields_to_dict,
    project_from_dict,
    project_to_dict,
    resource_from_dict,
    resource_to_dict,
)
from .schedule import cascade_shift, patches_by_id

logger = logging.getLogger(__name__)

COLOR_PALETTE = [
    "bg-brand-teal",
    "bg-brand-orange",
    "bg-brand-purple",
    "bg-brand-pink",
    "bg-accent-blue",
    "bg-accent-green",
    "bg-yellow-500",
    "bg-red-500",
    "bg-indigo-500",
]

# Sort position for projects whose group is missing or unordered.
UNGROUPED_ORDER = 99


@dataclass(frozen=True)
class StoreState:
    """Immutable snapshot of everything the views render."""

    projects: tuple[Project, ...] = ()
    groups: tuple[ProjectGroup, ...] = ()
    resources: tuple[Resource, ...] = ()

    def project(self, project_id: str) -> Project | None:
        for p in self.projects:
            if p.id == project_id:
                return p
        return None

    def group(self, group_id: str) -> ProjectGroup | None:
        for g in self.groups:
            if g.id == group_id:
                return g
        return None

    def resource(self, resource_id: str) -> Resource | None:
        for r in self.resources:
            if r.id == resource_id:
                return r
        return None


@dataclass(frozen=True)
class MutationResult:
    """Outcome of a mutation's remote write."""

    ok: bool = True
    error: str | None = None


Listener = Callable[[StoreState], None]
FailureListener = Callable[[str], None]


class ProjectStore:
    """In-memory projects, groups and resources, kept in step with a remote store."""

    def __init__(
        self,
        remote: FirestoreClient | None = None,
        state: StoreState | None = None,
    ) -> None:
        self._remote = remote
        self._state = state or StoreState()
        self._listeners: list[Listener] = []
        self._failure_listeners: list[FailureListener] = []
        self._pending: set[asyncio.Task[MutationResult]] = set()
        self.selected_project_id: str | None = None

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    @property
    def state(self) -> StoreState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every published state. Returns an unsubscriber."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def on_failure(self, listener: FailureListener) -> Callable[[], None]:
        """Call ``listener`` with a message whenever a remote write fails."""
        self._failure_listeners.append(listener)
        return lambda: self._failure_listeners.remove(listener)

    def _publish(self, state: StoreState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)

    # ------------------------------------------------------------------
    # Registry views
    # ------------------------------------------------------------------

    @property
    def projects(self) -> tuple[Project, ...]:
        return self._state.projects

    @property
    def groups(self) -> tuple[ProjectGroup, ...]:
        return self._state.groups

    @property
    def resources(self) -> tuple[Resource, ...]:
        return self._state.resources

    @property
    def visible_projects(self) -> list[Project]:
        """Active projects ordered by group order, then by name."""
        orders = {g.id: g.order for g in self._state.groups}

        def sort_key(p: Project) -> tuple[int, str]:
            order = orders.get(p.group_id)
            return (UNGROUPED_ORDER if order is None else order, p.name.casefold())

        return sorted((p for p in self._state.projects if not p.is_archived), key=sort_key)

    @property
    def archived_projects(self) -> list[Project]:
        return [p for p in self._state.projects if p.is_archived]

    @property
    def selected_project(self) -> Project | None:
        if self.selected_project_id is None:
            return None
        return self._state.project(self.selected_project_id)

    def get_project(self, project_id: str) -> Project | None:
        return self._state.project(project_id)

    def select_project(self, project_id: str | None) -> None:
        """Select a project; archived projects cannot be selected."""
        project = self._state.project(project_id) if project_id else None
        if project is not None and project.is_archived:
            return
        self.selected_project_id = project_id

    # ------------------------------------------------------------------
    # Remote intake
    # ------------------------------------------------------------------

    def apply_remote_projects(self, docs: Iterable[tuple[str, Any]]) -> None:
        """Replace local projects with an authoritative remote snapshot."""
        projects = tuple(project_from_dict(doc_id, data) for doc_id, data in docs)
        logger.debug("Applying remote snapshot of %d project(s)", len(projects))
        self._publish(replace(self._state, projects=projects))

    def apply_remote_groups(self, docs: Iterable[tuple[str, Any]]) -> None:
        """Replace local groups with an authoritative remote snapshot."""
        groups = [group_from_dict(doc_id, data) for doc_id, data in docs]
        groups.sort(key=lambda g: (g.order is None, g.order or 0))
        logger.debug("Applying remote snapshot of %d group(s)", len(groups))
        self._publish(replace(self._state, groups=tuple(groups)))

    def apply_remote_resources(self, docs: Iterable[tuple[str, Any]]) -> None:
        """Replace local resources with a remote snapshot, newest first."""
        resources = sorted(
            (resource_from_dict(doc_id, data) for doc_id, data in docs),
            key=lambda r: r.created_at,
            reverse=True,
        )
        logger.debug("Applying remote snapshot of %d resource(s)", len(resources))
        self._publish(replace(self._state, resources=tuple(resources)))

    def replace_state(self, state: StoreState) -> None:
        """Publish ``state`` as-is, bypassing the mutation pipeline."""
        self._publish(state)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _commit(
        self,
        next_state: StoreState,
        writes: list[DocumentWrite],
        action: str,
    ) -> asyncio.Future[MutationResult]:
        snapshot = self._state
        loop = asyncio.get_running_loop()
        self._publish(next_state)
        remote = self._remote
        if remote is None or not writes:
            return _settled(MutationResult())
        task = loop.create_task(self._persist(remote, snapshot, writes, action))
        # The loop only keeps weak references to tasks.
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending_writes(self) -> int:
        """Number of remote writes still in flight."""
        return len(self._pending)

    async def _persist(
        self,
        remote: FirestoreClient,
        snapshot: StoreState,
        writes: list[DocumentWrite],
        action: str,
    ) -> MutationResult:
        try:
            await _send(remote, writes)
        except Exception as e:
            msg = f"Failed to {action}: {e}"
            logger.error(msg)
            self._publish(snapshot)
            if snapshot.project(self.selected_project_id or "") is None:
                self.selected_project_id = None
            for listener in list(self._failure_listeners):
                listener(msg)
            return MutationResult(ok=False, error=msg)
        logger.debug("Persisted: %s", action)
        return MutationResult()

    def _apply_project_updates(
        self,
        updates: Mapping[str, Mapping[str, Any]],
        action: str,
    ) -> asyncio.Future[MutationResult]:
        """Patch one or more projects locally and write the same fields remotely.

        Several projects are written in one batch; any failure reverts all.
        Empty patches are dropped, and if nothing is left no state is
        published and nothing is written.
        """
        updates = {pid: fields for pid, fields in updates.items() if fields}
        if not updates:
            logger.debug("Nothing to change; skipping %s", action)
            return _settled(MutationResult())
        state = self._state
        projects = tuple(
            replace(p, **updates[p.id]) if p.id in updates else p
            for p in state.projects
        )
        writes = [
            DocumentWrite(PROJECTS, project_id, project_fields_to_dict(dict(fields)))
            for project_id, fields in updates.items()
        ]
        return self._commit(replace(state, projects=projects), writes, action)

    def _set_tasks(
        self, project: Project, tasks: list[Task], action: str
    ) -> asyncio.Future[MutationResult]:
        return self._apply_project_updates({project.id: {"tasks": tasks}}, action)

    def _find_project(self, project_id: str, action: str) -> Project | None:
        project = self._state.project(project_id)
        if project is None:
            logger.debug("Project %s not found; skipping %s", project_id, action)
        return project

    # ------------------------------------------------------------------
    # Task mutations
    # ------------------------------------------------------------------

    def add_task(self, project_id: str, task: Task) -> asyncio.Future[MutationResult]:
        """Append a task at the top level of a project."""
        action = f"add task '{task.name}'"
        project = self._find_project(project_id, action)
        if project is None:
            return _settled(MutationResult())
        return self._set_tasks(project, [*project.tasks, task], action)

    def add_subtask(
        self, project_id: str, parent_id: str, subtask: Task
    ) -> asyncio.Future[MutationResult]:
        """Append a task to the subtasks of ``parent_id``."""
        action = f"add subtask '{subtask.name}'"
        project = self._find_project(project_id, action)
        if project is None:
            return _settled(MutationResult())
        new_tasks = tree.insert_as_child(project.tasks, parent_id, subtask)
        return self._set_tasks(project, new_tasks, action)

    def update_task(self, project_id: str, task: Task) -> asyncio.Future[MutationResult]:
        """Replace a task (and its subtree) with ``task``."""
        action = f"update task '{task.name}'"
        project = self._find_project(project_id, action)
        if project is None:
            return _settled(MutationResult())
        return self._set_tasks(project, tree.update_in_place(project.tasks, task), action)

    def update_multiple_tasks(
        self, project_id: str, updates: Mapping[str, Mapping[str, Any]]
    ) -> asyncio.Future[MutationResult]:
        """Merge field patches into many tasks at once."""
        action = f"update {len(updates)} task(s)"
        project = self._find_project(project_id, action)
        if project is None:
            return _settled(MutationResult())
        new_tasks = tree.update_multiple(project.tasks, updates)
        return self._set_tasks(project, new_tasks, action)

    def delete_task(self, project_id: str, task_id: str) -> asyncio.Future[MutationResult]:
        """Remove a task with its entire subtree."""
        action = f"delete task {task_id}"
        project = self._find_project(project_id, action)
        if project is None:
            return _settled(MutationResult())
        return self._set_tasks(project, tree.delete_subtree(project.tasks, task_id), action)

    def toggle_task_complete(
        self, project_id: str, task_id: str, today: date | None = None
    ) -> asyncio.Future[MutationResult]:
        """Flip a task's completion, cascading to every descendant."""
        action = f"toggle task {task_id}"
        project = self._find_project(project_id, action)
        if project is None:
            return _settled(MutationResult())
        task = tree.find_task(project.tasks, task_id)
        if task is None:
            logger.debug("Task %s not found in %s", task_id, project_id)
            return _settled(MutationResult())
        toggled = tree.set_completed(task, not task.completed, today or date.today())
        return self._set_tasks(project, tree.update_in_place(project.tasks, toggled), action)

    def reschedule_task(
        self, project_id: str, task_id: str, days: int
    ) -> asyncio.Future[MutationResult]:
        """Shift a scheduled task and its scheduled descendants by ``days``."""
        project = self._find_project(project_id, "reschedule")
        if project is None:
            return _settled(MutationResult())
        task = tree.find_task(project.tasks, task_id)
        if task is None or days == 0:
            return _settled(MutationResult())
        patches = cascade_shift(task, days)
        if not patches:
            return _settled(MutationResult())
        return self.update_multiple_tasks(project_id, patches_by_id(patches))

    def reparent_task(
        self, project_id: str, task_id: str, new_parent_id: str | None
    ) -> asyncio.Future[MutationResult]:
        """Move a task under ``new_parent_id``, or to the top level for None.

        A parent that does not exist once the task is detached (including
        the task itself or one of its descendants) leaves the tree unchanged.
        """
        action = f"reparent task {task_id}"
        project = self._find_project(project_id, action)
        if project is None:
            return _settled(MutationResult())
        found, remaining = tree.find_and_remove(project.tasks, task_id)
        if found is None:
            logger.debug("Task %s not found in %s", task_id, project_id)
            return _settled(MutationResult())
        if new_parent_id is None:
            new_tasks = [*remaining, found]
        elif tree.find_task(remaining, new_parent_id) is None:
            logger.debug("Parent %s not available for task %s", new_parent_id, task_id)
            return _settled(MutationResult())
        else:
            new_tasks = tree.insert_as_child(remaining, new_parent_id, found)
        return self._set_tasks(project, new_tasks, action)

    def move_task(
        self, source_project_id: str, target_project_id: str, task: Task
    ) -> asyncio.Future[MutationResult]:
        """Move a task (with its subtree) to the top level of another project.

        Both projects are written in one batch. If the batch fails, both are
        reverted locally even if the store applied part of it.
        """
        if source_project_id == target_project_id:
            return _settled(MutationResult())
        action = f"move task '{task.name}' to {target_project_id}"
        source = self._find_project(source_project_id, action)
        target = self._find_project(target_project_id, action)
        if source is None or target is None:
            return _settled(MutationResult())
        found, source_tasks = tree.find_and_remove(source.tasks, task.id)
        if found is None:
            logger.debug("Task %s not found in %s", task.id, source_project_id)
            return _settled(MutationResult())
        return self._apply_project_updates(
            {
                source.id: {"tasks": source_tasks},
                target.id: {"tasks": [*target.tasks, found]},
            },
            action,
        )

    # ------------------------------------------------------------------
    # Project mutations
    # ------------------------------------------------------------------

    def add_project(
        self,
        name: str,
        group_id: str = "",
        icon: str | None = None,
        tasks: Sequence[Task] = (),
    ) -> asyncio.Future[MutationResult]:
        """Create a project and select it."""
        project = Project(
            id=f"project-{uuid.uuid4().hex[:12]}",
            name=name,
            group_id=group_id,
            tasks=list(tasks),
            icon=icon,
        )
        next_state = replace(self._state, projects=(*self._state.projects, project))
        write = DocumentWrite(PROJECTS, project.id, project_to_dict(project), merge=False)
        pending = self._commit(next_state, [write], f"add project '{name}'")
        self.select_project(project.id)
        return pending

    def update_project(
        self, project_id: str, updates: Mapping[str, Any]
    ) -> asyncio.Future[MutationResult]:
        """Patch project attributes (``name``, ``group_id``, ``is_archived``, ...)."""
        if self._find_project(project_id, "update project") is None:
            return _settled(MutationResult())
        return self._apply_project_updates({project_id: updates}, f"update project {project_id}")

    def delete_project(self, project_id: str) -> asyncio.Future[MutationResult]:
        if self.selected_project_id == project_id:
            self.select_project(None)
        if self._find_project(project_id, "delete project") is None:
            return _settled(MutationResult())
        projects = tuple(p for p in self._state.projects if p.id != project_id)
        write = DocumentWrite(PROJECTS, project_id, delete=True)
        return self._commit(
            replace(self._state, projects=projects), [write], f"delete project {project_id}"
        )

    def archive_project(self, project_id: str) -> asyncio.Future[MutationResult]:
        if self.selected_project_id == project_id:
            self.select_project(None)
        return self.update_project(project_id, {"is_archived": True})

    def unarchive_project(self, project_id: str) -> asyncio.Future[MutationResult]:
        return self.update_project(project_id, {"is_archived": False})

    # ------------------------------------------------------------------
    # Group mutations
    # ------------------------------------------------------------------

    def add_project_group(self, name: str) -> asyncio.Future[MutationResult]:
        """Create a group, coloured and ordered by how many groups exist."""
        count = len(self._state.groups)
        group = ProjectGroup(
            id=f"group-{uuid.uuid4().hex[:12]}",
            name=name,
            color=COLOR_PALETTE[count % len(COLOR_PALETTE)],
            order=count,
        )
        next_state = replace(self._state, groups=(*self._state.groups, group))
        write = DocumentWrite(PROJECT_GROUPS, group.id, group_to_dict(group), merge=False)
        return self._commit(next_state, [write], f"add project group '{name}'")

    def update_project_group(self, group: ProjectGroup) -> asyncio.Future[MutationResult]:
        if self._state.group(group.id) is None:
            return _settled(MutationResult())
        groups = tuple(group if g.id == group.id else g for g in self._state.groups)
        write = DocumentWrite(PROJECT_GROUPS, group.id, group_to_dict(group))
        return self._commit(
            replace(self._state, groups=groups), [write], f"update project group {group.id}"
        )

    def delete_project_group(self, group_id: str) -> asyncio.Future[MutationResult]:
        """Delete a group. Its projects keep their now-dangling ``group_id``."""
        if self._state.group(group_id) is None:
            return _settled(MutationResult())
        groups = tuple(g for g in self._state.groups if g.id != group_id)
        write = DocumentWrite(PROJECT_GROUPS, group_id, delete=True)
        return self._commit(
            replace(self._state, groups=groups), [write], f"delete project group {group_id}"
        )

    def reorder_project_groups(
        self, groups: Sequence[ProjectGroup]
    ) -> asyncio.Future[MutationResult]:
        """Store ``groups`` in the given order, renumbering ``order`` from 0."""
        ordered = tuple(replace(g, order=i) for i, g in enumerate(groups))
        writes = [DocumentWrite(PROJECT_GROUPS, g.id, {"order": g.order}) for g in ordered]
        return self._commit(
            replace(self._state, groups=ordered), writes, "reorder project groups"
        )

    # ------------------------------------------------------------------
    # Resource mutations
    # ------------------------------------------------------------------

    def add_resource(
        self,
        url: str,
        title: str,
        notes: str = "",
        thumbnail_url: str = "",
        project_group_id: str = "",
        project_ids: Sequence[str] = (),
        is_pinned: bool = False,
    ) -> asyncio.Future[MutationResult]:
        """Save a link at the front of the resource list."""
        resource = Resource(
            id=f"res-{uuid.uuid4().hex[:12]}",
            url=url,
            title=title,
            notes=notes,
            thumbnail_url=thumbnail_url,
            project_group_id=project_group_id,
            project_ids=list(project_ids),
            is_pinned=is_pinned,
            created_at=int(time.time() * 1000),
        )
        next_state = replace(self._state, resources=(resource, *self._state.resources))
        write = DocumentWrite(RESOURCES, resource.id, resource_to_dict(resource), merge=False)
        return self._commit(next_state, [write], f"add resource '{title}'")

    def update_resource(self, resource: Resource) -> asyncio.Future[MutationResult]:
        if self._state.resource(resource.id) is None:
            return _settled(MutationResult())
        resources = tuple(
            resource if r.id == resource.id else r for r in self._state.resources
        )
        write = DocumentWrite(RESOURCES, resource.id, resource_to_dict(resource))
        return self._commit(
            replace(self._state, resources=resources), [write], f"update resource {resource.id}"
        )

    def delete_resource(self, resource_id: str) -> asyncio.Future[MutationResult]:
        if self._state.resource(resource_id) is None:
            return _settled(MutationResult())
        resources = tuple(r for r in self._state.resources if r.id != resource_id)
        write = DocumentWrite(RESOURCES, resource_id, delete=True)
        return self._commit(
            replace(self._state, resources=resources), [write], f"delete resource {resource_id}"
        )


def _settled(result: MutationResult) -> asyncio.Future[MutationResult]:
    future = asyncio.get_running_loop().create_future()
    future.set_result(result)
    return future


async def _send(remote: FirestoreClient, writes: list[DocumentWrite]) -> None:
    if len(writes) > 1:
        await remote.batch_write(writes)
        return
    w = writes[0]
    if w.delete:
        await remote.delete(w.collection, w.doc_id)
    else:
        await remote.write(w.collection, w.doc_id, w.fields, merge=w.merge)
