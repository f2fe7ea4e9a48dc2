"""Full-account backups and CSV export."""

from __future__ import annotations

import csv
import io
import json
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .firestore import (
    MAX_BATCH_WRITES,
    PROJECT_GROUPS,
    PROJECTS,
    RESOURCES,
    DocumentWrite,
    FirestoreClient,
)
from .models import (
    Task,
    group_from_dict,
    group_to_dict,
    project_from_dict,
    project_to_dict,
    resource_from_dict,
    resource_to_dict,
)
from .store import ProjectStore, StoreState
from .tree import iter_tasks

logger = logging.getLogger(__name__)

BACKUP_VERSION = 1
CSV_HEADER = ["Task Name", "Description", "Status", "Start Date", "End Date", "Level"]


@dataclass
class ImportResult:
    """Summary of what an import changed remotely."""

    deleted: int = 0
    written: int = 0
    batches: int = 0


# ------------------------------------------------------------------
# Backup documents
# ------------------------------------------------------------------


def export_backup(state: StoreState) -> dict:
    """Return a JSON-serialisable backup of every project, group and resource."""
    return {
        "version": BACKUP_VERSION,
        "exportedAt": datetime.now(timezone.utc).isoformat(),
        "projects": [project_to_dict(p) for p in state.projects],
        "projectGroups": [group_to_dict(g) for g in state.groups],
        "resources": [resource_to_dict(r) for r in state.resources],
    }


def parse_backup(data: dict) -> StoreState:
    """Build a state from a backup document.

    Raises ValueError when the document is not a backup at all; individual
    projects and tasks are sanitized like remote documents. Backups written
    before resources existed have no ``resources`` key and restore none.
    """
    if not isinstance(data, dict):
        raise ValueError("Backup must be a JSON object")
    projects = data.get("projects")
    groups = data.get("projectGroups")
    if not isinstance(projects, list) or not isinstance(groups, list):
        raise ValueError("Backup must contain 'projects' and 'projectGroups' lists")
    resources = data.get("resources", [])
    if not isinstance(resources, list):
        raise ValueError("Backup 'resources' must be a list")

    for kind, docs in (("project", projects), ("group", groups), ("resource", resources)):
        for doc in docs:
            if not isinstance(doc, dict) or not doc.get("id"):
                raise ValueError(f"Backup contains a {kind} without an id")

    return StoreState(
        projects=tuple(project_from_dict(str(d["id"]), d) for d in projects),
        groups=tuple(group_from_dict(str(d["id"]), d) for d in groups),
        resources=tuple(resource_from_dict(str(d["id"]), d) for d in resources),
    )


def save_backup(path: str | Path, state: StoreState) -> None:
    Path(path).write_text(json.dumps(export_backup(state), indent=2), encoding="utf-8")


def load_backup(path: str | Path) -> StoreState:
    return parse_backup(json.loads(Path(path).read_text(encoding="utf-8")))


# ------------------------------------------------------------------
# Import
# ------------------------------------------------------------------


async def import_backup(
    client: FirestoreClient,
    state: StoreState,
    chunk_size: int = MAX_BATCH_WRITES,
) -> ImportResult:
    """Overwrite the user's remote projects, groups and resources with ``state``.

    Documents that are not part of ``state`` are deleted; the rest are
    overwritten whole. Writes go out in sequential batches of at most
    ``chunk_size`` operations. Any failure propagates, leaving the caller to
    decide what to do with a partially imported account.
    """
    result = ImportResult()
    keep = {
        PROJECTS: {p.id for p in state.projects},
        PROJECT_GROUPS: {g.id for g in state.groups},
        RESOURCES: {r.id for r in state.resources},
    }

    ops: list[DocumentWrite] = []
    for collection in (PROJECTS, PROJECT_GROUPS, RESOURCES):
        for doc_id, _ in await client.list_documents(collection):
            if doc_id not in keep[collection]:
                ops.append(DocumentWrite(collection, doc_id, delete=True))
    result.deleted = len(ops)

    for project in state.projects:
        ops.append(DocumentWrite(PROJECTS, project.id, project_to_dict(project), merge=False))
    for group in state.groups:
        ops.append(DocumentWrite(PROJECT_GROUPS, group.id, group_to_dict(group), merge=False))
    for resource in state.resources:
        ops.append(DocumentWrite(RESOURCES, resource.id, resource_to_dict(resource), merge=False))
    result.written = len(ops) - result.deleted

    for batch in _chunks(ops, chunk_size):
        await client.batch_write(batch)
        result.batches += 1
        logger.info("Committed import batch %d (%d operation(s))", result.batches, len(batch))

    logger.info(
        "Import complete: %d deleted, %d written in %d batch(es)",
        result.deleted,
        result.written,
        result.batches,
    )
    return result


async def restore_backup(
    store: ProjectStore,
    client: FirestoreClient,
    state: StoreState,
    chunk_size: int = MAX_BATCH_WRITES,
) -> ImportResult:
    """Import ``state`` remotely, then (and only then) publish it locally."""
    result = await import_backup(client, state, chunk_size)
    store.replace_state(state)
    store.select_project(None)
    return result


def _chunks(ops: list[DocumentWrite], size: int) -> Iterator[list[DocumentWrite]]:
    if size < 1:
        raise ValueError("chunk_size must be positive")
    for start in range(0, len(ops), size):
        yield ops[start:start + size]


# ------------------------------------------------------------------
# CSV export
# ------------------------------------------------------------------


def tasks_to_csv(tasks: Sequence[Task]) -> str:
    """Render a task tree as CSV, one row per task with its nesting level."""
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for depth, task in iter_tasks(tasks):
        writer.writerow([
            task.name,
            task.description,
            "Completed" if task.completed else "Incomplete",
            task.start_date.isoformat() if task.start_date else "",
            task.end_date.isoformat() if task.end_date else "",
            depth,
        ])
    return out.getvalue()
