"""Tests for the pure task-tree operations."""

from datetime import date

from tasktree_sync.models import Task
from tasktree_sync.tree import (
    delete_subtree,
    find_and_remove,
    find_task,
    insert_as_child,
    iter_tasks,
    set_completed,
    update_in_place,
    update_multiple,
)


def _make_task(task_id, name=None, subtasks=None, **kwargs):
    return Task(id=task_id, name=name or f"Task {task_id}", subtasks=subtasks or [], **kwargs)


def _mock_tree():
    """A nested tree: 1 > (1-1 > 1-1-1, 1-2), 2."""
    return [
        _make_task("1", "Parent 1", [
            _make_task("1-1", "Child 1-1", [
                _make_task("1-1-1", "Grandchild 1-1-1"),
            ]),
            _make_task("1-2", "Child 1-2", completed=True),
        ]),
        _make_task("2", "Parent 2"),
    ]


def _ids(tree):
    return [t.id for _, t in iter_tasks(tree)]


# ===================================================================
# find_task / iter_tasks
# ===================================================================


def test_find_task_nested():
    tree = _mock_tree()
    assert find_task(tree, "1-1-1").name == "Grandchild 1-1-1"
    assert find_task(tree, "missing") is None


def test_iter_tasks_is_preorder_with_depth():
    depths = [(d, t.id) for d, t in iter_tasks(_mock_tree())]
    assert depths == [(0, "1"), (1, "1-1"), (2, "1-1-1"), (1, "1-2"), (0, "2")]


# ===================================================================
# update_in_place
# ===================================================================


class TestUpdateInPlace:
    def test_update_top_level(self):
        tree = _mock_tree()
        updated = _make_task("2", "Updated Parent 2")
        result = update_in_place(tree, updated)
        assert result[1].name == "Updated Parent 2"
        assert result[0] is tree[0]  # untouched subtree is shared

    def test_update_deeply_nested(self):
        tree = _mock_tree()
        result = update_in_place(tree, _make_task("1-1-1", "Updated Grandchild", completed=True))
        node = result[0].subtasks[0].subtasks[0]
        assert node.name == "Updated Grandchild"
        assert node.completed is True

    def test_replacement_is_wholesale(self):
        """The replacement's own subtasks win; nothing is merged."""
        tree = _mock_tree()
        result = update_in_place(tree, _make_task("1", "Parent 1"))
        assert result[0].subtasks == []

    def test_unknown_id_is_noop(self):
        tree = _mock_tree()
        assert update_in_place(tree, _make_task("nope")) == tree

    def test_input_not_mutated(self):
        tree = _mock_tree()
        before = _mock_tree()
        update_in_place(tree, _make_task("1-2", "changed"))
        assert tree == before

    def test_duplicate_ids_first_match_wins(self):
        tree = [_make_task("dup", "first"), _make_task("dup", "second")]
        result = update_in_place(tree, _make_task("dup", "new"))
        assert [t.name for t in result] == ["new", "second"]

    def test_opaque_fields_preserved_on_siblings(self):
        tree = [
            _make_task("a", image_url="http://img", dependencies=["b"], extra={"color": "red"}),
            _make_task("b"),
        ]
        result = update_in_place(tree, _make_task("b", "B2"))
        assert result[0].image_url == "http://img"
        assert result[0].dependencies == ["b"]
        assert result[0].extra == {"color": "red"}


# ===================================================================
# update_multiple
# ===================================================================


class TestUpdateMultiple:
    def test_patches_several_levels_in_one_call(self):
        tree = _mock_tree()
        result = update_multiple(tree, {
            "2": {"name": "P2"},
            "1-1-1": {"completed": True},
        })
        assert result[1].name == "P2"
        assert result[0].subtasks[0].subtasks[0].completed is True

    def test_merge_keeps_subtasks_and_other_fields(self):
        tree = _mock_tree()
        result = update_multiple(tree, {"1": {"start_date": date(2024, 1, 1)}})
        parent = result[0]
        assert parent.start_date == date(2024, 1, 1)
        assert parent.name == "Parent 1"
        assert [t.id for t in parent.subtasks] == ["1-1", "1-2"]

    def test_subtasks_and_id_in_patch_are_ignored(self):
        tree = _mock_tree()
        result = update_multiple(tree, {"1": {"id": "other", "subtasks": [], "name": "x"}})
        assert result[0].id == "1"
        assert len(result[0].subtasks) == 2
        assert result[0].name == "x"

    def test_parent_and_child_patched_together(self):
        tree = _mock_tree()
        result = update_multiple(tree, {"1": {"name": "P"}, "1-2": {"name": "C"}})
        assert result[0].name == "P"
        assert result[0].subtasks[1].name == "C"

    def test_unknown_ids_leave_tree_equal(self):
        tree = _mock_tree()
        assert update_multiple(tree, {"zzz": {"name": "q"}}) == tree
        assert update_multiple(tree, {}) == tree


# ===================================================================
# insert_as_child
# ===================================================================


class TestInsertAsChild:
    def test_appends_to_end(self):
        tree = _mock_tree()
        result = insert_as_child(tree, "1", _make_task("1-3"))
        assert [t.id for t in result[0].subtasks] == ["1-1", "1-2", "1-3"]

    def test_nested_parent(self):
        tree = _mock_tree()
        result = insert_as_child(tree, "1-1-1", _make_task("deep"))
        assert result[0].subtasks[0].subtasks[0].subtasks[0].id == "deep"

    def test_unknown_parent_is_noop(self):
        tree = _mock_tree()
        assert insert_as_child(tree, "missing", _make_task("x")) == tree


# ===================================================================
# find_and_remove / delete_subtree
# ===================================================================


class TestFindAndRemove:
    def test_returns_subtree_and_new_tree(self):
        tree = _mock_tree()
        found, remaining = find_and_remove(tree, "1-1")
        assert found.id == "1-1"
        assert [t.id for t in found.subtasks] == ["1-1-1"]
        assert _ids(remaining) == ["1", "1-2", "2"]

    def test_missing_returns_none_and_same_tree(self):
        tree = _mock_tree()
        found, remaining = find_and_remove(tree, "missing")
        assert found is None
        assert remaining == tree

    def test_only_first_duplicate_removed(self):
        tree = [_make_task("a", subtasks=[_make_task("dup", "inner")]), _make_task("dup", "outer")]
        found, remaining = find_and_remove(tree, "dup")
        assert found.name == "inner"
        assert _ids(remaining) == ["a", "dup"]

    def test_delete_subtree_drops_descendants(self):
        tree = _mock_tree()
        assert _ids(delete_subtree(tree, "1")) == ["2"]

    def test_delete_then_reinsert_at_original_parent_roundtrip(self):
        """Detaching the last child and reattaching it is a structural no-op."""
        tree = _mock_tree()
        found, remaining = find_and_remove(tree, "1-2")
        assert insert_as_child(remaining, "1", found) == tree


def test_structural_integrity_over_operation_sequence():
    tree = _mock_tree()
    tree = insert_as_child(tree, "2", _make_task("2-1"))
    tree = delete_subtree(tree, "1-1")
    found, tree = find_and_remove(tree, "1-2")
    tree = insert_as_child(tree, "2-1", found)
    ids = _ids(tree)
    assert len(ids) == len(set(ids))
    assert set(ids) <= {"1", "1-1", "1-1-1", "1-2", "2", "2-1"}
    assert ids == ["1", "2", "2-1", "1-2"]


# ===================================================================
# set_completed
# ===================================================================


def test_set_completed_cascades_with_same_date():
    parent = _make_task("p", subtasks=[_make_task("c1"), _make_task("c2")])
    on = date(2024, 7, 28)
    done = set_completed(parent, True, on)
    for _, t in iter_tasks([done]):
        assert t.completed is True
        assert t.completion_date == on


def test_set_completed_false_clears_dates():
    parent = _make_task(
        "p", completed=True, completion_date=date(2024, 1, 1),
        subtasks=[_make_task("c", completed=True, completion_date=date(2024, 1, 1))],
    )
    reopened = set_completed(parent, False, date(2024, 2, 1))
    assert reopened.completed is False
    assert reopened.completion_date is None
    assert reopened.subtasks[0].completion_date is None
