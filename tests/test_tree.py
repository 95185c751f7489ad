"""Tests for the comment forest transforms."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from crmcollab.collaboration.models import Comment
from crmcollab.collaboration.tree import (
    DeletePolicy,
    build_comment_tree,
    can_reply,
    comment_depth,
    count_comments,
    find_comment,
    insert_comment,
    iter_comments,
    merge_comment,
    remove_comment_from_tree,
    update_comment_in_tree,
)

BASE = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


def _comment(cid: str, parent: str | None = None, minutes: int = 0, **kw) -> Comment:
    return Comment(
        id=cid,
        entity_type="task",
        entity_id="t1",
        content=f"comment {cid}",
        parent_id=parent,
        created_at=BASE + timedelta(minutes=minutes),
        **kw,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def forest() -> list[Comment]:
    """Two roots (newest first); r1 has a reply chain two deep."""
    flat = [
        _comment("r2", minutes=30),
        _comment("r1", minutes=0),
        _comment("c2", parent="r1", minutes=10),
        _comment("c1", parent="r1", minutes=5),
        _comment("g1", parent="c1", minutes=6),
    ]
    return build_comment_tree(flat)


# ---------------------------------------------------------------------------
# Building
# ---------------------------------------------------------------------------


class TestBuildCommentTree:
    def test_roots_keep_input_order(self, forest: list[Comment]) -> None:
        assert [c.id for c in forest] == ["r2", "r1"]

    def test_replies_sorted_oldest_first(self, forest: list[Comment]) -> None:
        r1 = forest[1]
        assert [c.id for c in r1.replies] == ["c1", "c2"]

    def test_nested_reply(self, forest: list[Comment]) -> None:
        assert [c.id for c in forest[1].replies[0].replies] == ["g1"]

    def test_total_count(self, forest: list[Comment]) -> None:
        assert count_comments(forest) == 5

    def test_orphans_dropped(self) -> None:
        tree = build_comment_tree([_comment("a"), _comment("b", parent="missing")])
        assert [c.id for c in iter_comments(tree)] == ["a"]

    def test_empty(self) -> None:
        assert build_comment_tree([]) == []

    def test_input_not_mutated(self) -> None:
        root = _comment("a")
        build_comment_tree([root, _comment("b", parent="a")])
        assert root.replies == []


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    def test_find_nested(self, forest: list[Comment]) -> None:
        assert find_comment(forest, "g1").parent_id == "c1"

    def test_find_missing(self, forest: list[Comment]) -> None:
        assert find_comment(forest, "zzz") is None

    def test_depth(self, forest: list[Comment]) -> None:
        assert comment_depth(forest, "r1") == 0
        assert comment_depth(forest, "c1") == 1
        assert comment_depth(forest, "g1") == 2
        assert comment_depth(forest, "zzz") is None

    def test_can_reply(self, forest: list[Comment]) -> None:
        assert can_reply(forest, "r1", 2)
        assert can_reply(forest, "c1", 2)
        assert not can_reply(forest, "g1", 2)
        assert not can_reply(forest, "zzz", 2)


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


class TestUpdateCommentInTree:
    def test_updates_nested_node(self, forest: list[Comment]) -> None:
        patch = Comment(id="g1", entity_type="task", entity_id="t1", content="edited", is_edited=True)
        result = update_comment_in_tree(forest, patch)
        node = find_comment(result, "g1")
        assert node.content == "edited"
        assert node.is_edited

    def test_keeps_unset_fields(self, forest: list[Comment]) -> None:
        patch = Comment(id="c1", entity_type="task", entity_id="t1", content="edited")
        node = find_comment(update_comment_in_tree(forest, patch), "c1")
        assert node.parent_id == "r1"
        assert node.created_at == BASE + timedelta(minutes=5)

    def test_keeps_replies(self, forest: list[Comment]) -> None:
        patch = Comment(id="r1", entity_type="task", entity_id="t1", content="edited")
        node = find_comment(update_comment_in_tree(forest, patch), "r1")
        assert [c.id for c in node.replies] == ["c1", "c2"]

    def test_preserves_node_count(self, forest: list[Comment]) -> None:
        patch = Comment(id="c2", entity_type="task", entity_id="t1", content="x")
        assert count_comments(update_comment_in_tree(forest, patch)) == count_comments(forest)

    def test_absent_id_is_noop(self, forest: list[Comment]) -> None:
        patch = Comment(id="nope", entity_type="task", entity_id="t1", content="x")
        assert update_comment_in_tree(forest, patch) == forest

    def test_input_not_mutated(self, forest: list[Comment]) -> None:
        patch = Comment(id="g1", entity_type="task", entity_id="t1", content="edited")
        update_comment_in_tree(forest, patch)
        assert find_comment(forest, "g1").content == "comment g1"


# ---------------------------------------------------------------------------
# Remove
# ---------------------------------------------------------------------------


class TestRemoveCommentFromTree:
    def test_cascade_removes_subtree(self, forest: list[Comment]) -> None:
        result = remove_comment_from_tree(forest, "c1")
        ids = [c.id for c in iter_comments(result)]
        assert "c1" not in ids
        assert "g1" not in ids
        assert count_comments(result) == 3

    def test_remove_root(self, forest: list[Comment]) -> None:
        result = remove_comment_from_tree(forest, "r2")
        assert [c.id for c in result] == ["r1"]

    def test_absent_id_returns_equal_forest(self, forest: list[Comment]) -> None:
        assert remove_comment_from_tree(forest, "nope") == forest

    def test_reparent_promotes_replies(self, forest: list[Comment]) -> None:
        result = remove_comment_from_tree(forest, "c1", DeletePolicy.REPARENT)
        r1 = find_comment(result, "r1")
        assert [c.id for c in r1.replies] == ["g1", "c2"]
        assert find_comment(result, "g1").parent_id == "r1"

    def test_reparent_root_makes_new_roots(self, forest: list[Comment]) -> None:
        result = remove_comment_from_tree(forest, "r1", DeletePolicy.REPARENT)
        # Roots newest first: r2 (30m), c2 (10m), c1 (5m)
        assert [c.id for c in result] == ["r2", "c2", "c1"]
        assert all(c.parent_id is None for c in result)
        assert [c.id for c in find_comment(result, "c1").replies] == ["g1"]

    def test_reparent_reduces_depth(self) -> None:
        tree = build_comment_tree([
            _comment("r", minutes=0),
            _comment("c", parent="r", minutes=1, thread_depth=1),
            _comment("g", parent="c", minutes=2, thread_depth=2),
        ])
        result = remove_comment_from_tree(tree, "c", DeletePolicy.REPARENT)
        assert find_comment(result, "g").thread_depth == 1
        assert find_comment(result, "r").thread_depth == 0

        as_root = remove_comment_from_tree(tree, "r", DeletePolicy.REPARENT)
        assert find_comment(as_root, "c").thread_depth == 0
        # the whole promoted subtree moves up
        assert find_comment(as_root, "g").thread_depth == 1
        assert find_comment(as_root, "g").parent_id == "c"

    def test_reparent_leaf_same_as_cascade(self, forest: list[Comment]) -> None:
        assert remove_comment_from_tree(forest, "g1", DeletePolicy.REPARENT) == (
            remove_comment_from_tree(forest, "g1", DeletePolicy.CASCADE)
        )


# ---------------------------------------------------------------------------
# Insert / merge
# ---------------------------------------------------------------------------


class TestInsertComment:
    def test_root_prepended(self, forest: list[Comment]) -> None:
        result = insert_comment(forest, _comment("new", minutes=60))
        assert [c.id for c in result] == ["new", "r2", "r1"]

    def test_reply_appended_to_parent(self, forest: list[Comment]) -> None:
        result = insert_comment(forest, _comment("c3", parent="r1", minutes=40))
        assert [c.id for c in find_comment(result, "r1").replies] == ["c1", "c2", "c3"]

    def test_reply_at_depth(self, forest: list[Comment]) -> None:
        result = insert_comment(forest, _comment("g2", parent="c1", minutes=40))
        assert [c.id for c in find_comment(result, "c1").replies] == ["g1", "g2"]

    def test_unknown_parent_leaves_forest_unchanged(self, forest: list[Comment]) -> None:
        result = insert_comment(forest, _comment("x", parent="ghost"))
        assert result == forest

    def test_merge_is_idempotent(self, forest: list[Comment]) -> None:
        comment = _comment("c3", parent="r2", minutes=40)
        once = merge_comment(forest, comment)
        twice = merge_comment(once, comment)
        assert once == twice
        assert count_comments(twice) == 6

    def test_merge_existing_is_noop(self, forest: list[Comment]) -> None:
        assert merge_comment(forest, _comment("g1", parent="c1")) == forest
