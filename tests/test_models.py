"""Tests for document conversion and sanitization of remote data."""

from datetime import date

from tasktree_sync.models import (
    INVALID_PROJECT,
    UNTITLED_PROJECT,
    UNTITLED_TASK,
    Project,
    ProjectGroup,
    Resource,
    Task,
    group_from_dict,
    project_fields_to_dict,
    project_from_dict,
    project_to_dict,
    resource_from_dict,
    resource_to_dict,
    task_from_dict,
    task_to_dict,
)


def test_task_to_dict_uses_document_keys_and_omits_none():
    task = Task(
        id="t1",
        name="Write report",
        start_date=date(2024, 7, 6),
        end_date=date(2024, 7, 10),
        image_url="http://img",
        subtasks=[Task(id="t2", name="Outline")],
    )
    d = task_to_dict(task)
    assert d["startDate"] == "2024-07-06"
    assert d["endDate"] == "2024-07-10"
    assert d["imageUrl"] == "http://img"
    assert "completionDate" not in d
    assert "duration" not in d
    assert d["subtasks"][0] == {
        "id": "t2", "name": "Outline", "description": "", "completed": False, "subtasks": [],
    }


def test_unknown_keys_survive_a_roundtrip():
    doc = {"id": "t1", "name": "A", "completed": True, "subtasks": [], "priority": 3, "startTime": "09:00"}
    task = task_from_dict(doc)
    assert task.extra == {"priority": 3}
    assert task.start_time == "09:00"
    assert task_to_dict(task)["priority"] == 3


class TestSanitization:
    def test_missing_fields_get_defaults(self):
        task = task_from_dict({"id": "t1", "subtasks": "not-a-list"})
        assert task.name == UNTITLED_TASK
        assert task.completed is False
        assert task.subtasks == []
        assert task.description == ""

    def test_missing_id_is_generated(self):
        task = task_from_dict({"name": "No id"})
        assert task.id.startswith("task-")

    def test_bad_date_becomes_none(self):
        task = task_from_dict({"id": "t", "name": "x", "startDate": "someday"})
        assert task.start_date is None

    def test_nested_corruption_does_not_break_siblings(self):
        doc = {"id": "p", "name": "Parent", "subtasks": [None, {"id": "ok", "name": "Fine"}]}
        task = task_from_dict(doc)
        assert len(task.subtasks) == 2
        assert task.subtasks[0].name == UNTITLED_TASK
        assert task.subtasks[1].name == "Fine"

    def test_project_defaults(self):
        project = project_from_dict("p1", {"tasks": {"bad": True}})
        assert project == Project(id="p1", name=UNTITLED_PROJECT)

    def test_non_mapping_project_is_archived(self):
        project = project_from_dict("p1", None)
        assert project.name == INVALID_PROJECT
        assert project.is_archived is True

    def test_group_order_must_be_int(self):
        assert group_from_dict("g", {"name": "Work", "order": "2"}).order is None
        assert group_from_dict("g", {"name": "Work", "order": 2}) == ProjectGroup(
            id="g", name="Work", order=2
        )

    def test_wrong_types_are_coerced(self):
        task = task_from_dict({"id": "t", "name": 5, "completed": "false", "description": ["x"]})
        assert task.name == UNTITLED_TASK
        assert task.completed is False
        assert task.description == ""

        project = project_from_dict("p1", {"name": 7, "isArchived": "yes", "groupId": 3, "icon": 1})
        assert project == Project(id="p1", name=UNTITLED_PROJECT)

        group = group_from_dict("g", {"name": None, "color": 4})
        assert (group.name, group.color) == ("", "")


def test_project_roundtrip():
    project = Project(
        id="p1",
        name="Website",
        group_id="g1",
        tasks=[Task(id="t1", name="Design", completed=True, completion_date=date(2024, 8, 1))],
        icon="*",
    )
    assert project_from_dict("p1", project_to_dict(project)) == project


def test_project_fields_to_dict_translates_names():
    d = project_fields_to_dict({"is_archived": True, "tasks": [Task(id="t", name="x")]})
    assert d["isArchived"] is True
    assert d["tasks"][0]["id"] == "t"


def test_resource_roundtrip_and_sanitization():
    resource = Resource(
        id="res-1",
        url="https://example.com",
        title="Docs",
        project_ids=["p1"],
        is_pinned=True,
        created_at=1722470400000,
    )
    d = resource_to_dict(resource)
    assert d["projectIds"] == ["p1"]
    assert d["createdAt"] == 1722470400000
    assert resource_from_dict("res-1", d) == resource

    bad = resource_from_dict("res-2", {"url": 5, "projectIds": ["p1", 2], "isPinned": 1, "createdAt": True})
    assert bad == Resource(id="res-2", url="", title="", project_ids=["p1"])
