"""Tests for backup import/export and CSV export."""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from tasktree_sync.backup import (
    export_backup,
    import_backup,
    load_backup,
    parse_backup,
    restore_backup,
    save_backup,
    tasks_to_csv,
)
from tasktree_sync.firestore import (
    PROJECT_GROUPS,
    PROJECTS,
    RESOURCES,
    DocumentWrite,
    FirestoreClient,
    FirestoreError,
)
from tasktree_sync.models import Project, ProjectGroup, Resource, Task
from tasktree_sync.store import ProjectStore, StoreState


def _state(n_projects=2) -> StoreState:
    return StoreState(
        projects=tuple(
            Project(id=f"p{i}", name=f"Project {i}", group_id="g1",
                    tasks=[Task(id=f"t{i}", name="Task", start_date=date(2024, 8, 1))])
            for i in range(n_projects)
        ),
        groups=(ProjectGroup(id="g1", name="Work", color="bg-accent-blue", order=0),),
    )


def _mock_client(projects=(), groups=(), resources=()) -> MagicMock:
    client = MagicMock(spec=FirestoreClient)
    docs = {PROJECTS: list(projects), PROJECT_GROUPS: list(groups), RESOURCES: list(resources)}
    client.list_documents.side_effect = lambda collection: docs.get(collection, [])
    return client


def test_save_and_load_backup(tmp_path: Path):
    f = tmp_path / "backup.json"
    state = _state()

    save_backup(f, state)

    data = json.loads(f.read_text())
    assert data["version"] == 1
    assert data["projects"][0]["tasks"][0]["startDate"] == "2024-08-01"
    assert load_backup(f) == state


def test_parse_backup_rejects_non_backup():
    with pytest.raises(ValueError):
        parse_backup({"projects": "nope"})
    with pytest.raises(ValueError):
        parse_backup({"projects": [{"name": "no id"}], "projectGroups": []})


def test_export_backup_lists_groups():
    data = export_backup(_state(0))
    assert data["projects"] == []
    assert data["projectGroups"] == [
        {"id": "g1", "name": "Work", "color": "bg-accent-blue", "order": 0},
    ]


def test_backup_carries_resources(tmp_path: Path):
    f = tmp_path / "backup.json"
    res = Resource(id="res-1", url="https://example.com", title="Docs", project_ids=["p0"], created_at=5)
    state = StoreState(projects=_state(1).projects, groups=_state(1).groups, resources=(res,))

    save_backup(f, state)

    assert json.loads(f.read_text())["resources"][0]["projectIds"] == ["p0"]
    assert load_backup(f) == state


def test_backup_without_resources_key_restores_none():
    state = parse_backup({"projects": [], "projectGroups": []})
    assert state.resources == ()
    with pytest.raises(ValueError):
        parse_backup({"projects": [], "projectGroups": [], "resources": {"id": "x"}})


# ===================================================================
# import_backup
# ===================================================================


@pytest.mark.asyncio
async def test_import_deletes_stale_and_overwrites_rest():
    client = _mock_client(
        projects=[("p0", {}), ("old", {})],
        groups=[("g-old", {})],
    )

    result = await import_backup(client, _state(1))

    assert (result.deleted, result.written, result.batches) == (2, 2, 1)
    ops = client.batch_write.await_args.args[0]
    assert ops[:2] == [
        DocumentWrite(PROJECTS, "old", delete=True),
        DocumentWrite(PROJECT_GROUPS, "g-old", delete=True),
    ]
    assert [(w.collection, w.doc_id, w.merge) for w in ops[2:]] == [
        (PROJECTS, "p0", False),
        (PROJECT_GROUPS, "g1", False),
    ]


@pytest.mark.asyncio
async def test_import_replaces_resources():
    res = Resource(id="res-1", url="https://example.com", title="Docs")
    client = _mock_client(resources=[("res-old", {}), ("res-1", {})])
    state = StoreState(resources=(res,))

    result = await import_backup(client, state)

    assert (result.deleted, result.written) == (1, 1)
    ops = client.batch_write.await_args.args[0]
    assert ops[0] == DocumentWrite(RESOURCES, "res-old", delete=True)
    assert (ops[1].collection, ops[1].doc_id, ops[1].merge) == (RESOURCES, "res-1", False)


@pytest.mark.asyncio
async def test_import_is_chunked():
    client = _mock_client(projects=[(f"stale{i}", {}) for i in range(5)])

    result = await import_backup(client, _state(3), chunk_size=4)

    # 5 deletes + 3 projects + 1 group = 9 operations
    sizes = [len(call.args[0]) for call in client.batch_write.await_args_list]
    assert sizes == [4, 4, 1]
    assert result.batches == 3


@pytest.mark.asyncio
async def test_restore_publishes_only_after_remote_confirms():
    client = _mock_client()
    store = ProjectStore(remote=client)
    state = _state()

    await restore_backup(store, client, state)
    assert store.state == state

    failing = _mock_client()
    failing.batch_write.side_effect = FirestoreError("quota")
    other = ProjectStore(remote=failing)
    with pytest.raises(FirestoreError):
        await restore_backup(other, failing, state)
    assert other.state == StoreState()


# ===================================================================
# tasks_to_csv
# ===================================================================


def test_tasks_to_csv_levels_and_escaping():
    tasks = [
        Task(id="1", name="Plan, then act", completed=True, start_date=date(2024, 1, 2), subtasks=[
            Task(id="2", name="Say \"hi\"", description="line1\nline2"),
        ]),
    ]
    lines = tasks_to_csv(tasks).split("\n")
    assert lines[0] == "Task Name,Description,Status,Start Date,End Date,Level"
    assert lines[1] == '"Plan, then act",,Completed,2024-01-02,,0'
    assert lines[2] == '"Say ""hi""","line1'
    assert lines[3] == 'line2",Incomplete,,,1'
