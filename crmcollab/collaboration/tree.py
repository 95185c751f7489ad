"""Comment forest transforms.

A forest is a list of root comments, each carrying its nested ``replies``.
Every function here rebuilds the path it touches and shares untouched
subtrees; inputs are never mutated, so callers can compare old and new
forests to decide what to re-render.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterator, Optional, Sequence

from crmcollab.collaboration.models import Comment

logger = logging.getLogger(__name__)


class DeletePolicy(str, Enum):
    """What happens to the replies of a removed comment."""

    CASCADE = "cascade"
    """Remove the whole subtree."""

    REPARENT = "reparent"
    """Promote the replies to the removed comment's parent (or to roots)."""


def build_comment_tree(comments: Sequence[Comment]) -> list[Comment]:
    """Thread a flat list of comments into a forest.

    Roots keep the order they arrive in (newest first from the store);
    replies at every level are sorted oldest first. Replies whose parent is
    not in *comments* are dropped.
    """
    by_id = {c.id: c for c in comments}
    children: dict[str, list[Comment]] = {}
    roots: list[Comment] = []

    for comment in comments:
        if comment.parent_id is None:
            roots.append(comment)
        elif comment.parent_id in by_id:
            children.setdefault(comment.parent_id, []).append(comment)
        else:
            logger.debug(
                "Dropping comment %s: parent %s not loaded", comment.id, comment.parent_id,
            )

    def _attach(node: Comment, seen: frozenset[str]) -> Comment:
        replies = sorted(children.get(node.id, []), key=lambda c: c.created_at)
        nested = [_attach(r, seen | {node.id}) for r in replies if r.id not in seen]
        return node.model_copy(update={"replies": nested})

    return [_attach(root, frozenset()) for root in roots]


def iter_comments(forest: Sequence[Comment]) -> Iterator[Comment]:
    """Yield every comment in the forest, depth-first."""
    for comment in forest:
        yield comment
        yield from iter_comments(comment.replies)


def count_comments(forest: Sequence[Comment]) -> int:
    return sum(1 for _ in iter_comments(forest))


def find_comment(forest: Sequence[Comment], comment_id: str) -> Optional[Comment]:
    for comment in iter_comments(forest):
        if comment.id == comment_id:
            return comment
    return None


def comment_depth(forest: Sequence[Comment], comment_id: str) -> Optional[int]:
    """Nesting depth of a comment (roots are 0), or None if absent."""

    def _walk(nodes: Sequence[Comment], depth: int) -> Optional[int]:
        for node in nodes:
            if node.id == comment_id:
                return depth
            found = _walk(node.replies, depth + 1)
            if found is not None:
                return found
        return None

    return _walk(forest, 0)


def can_reply(forest: Sequence[Comment], comment_id: str, max_depth: int) -> bool:
    """True when a reply to *comment_id* would stay within *max_depth*."""
    depth = comment_depth(forest, comment_id)
    return depth is not None and depth < max_depth


def update_comment_in_tree(forest: Sequence[Comment], updated: Comment) -> list[Comment]:
    """Merge *updated* into the node with the same id, wherever it sits.

    Only the fields explicitly set on *updated* are copied over. The node's
    existing replies are kept unless *updated* was given ``replies``
    explicitly. The number of nodes never changes.
    """
    fields = {name: getattr(updated, name) for name in updated.model_fields_set}
    fields.pop("id", None)

    def _rewrite(nodes: Sequence[Comment]) -> list[Comment]:
        result = []
        for node in nodes:
            if node.id == updated.id:
                result.append(node.model_copy(update=fields))
            elif node.replies:
                result.append(node.model_copy(update={"replies": _rewrite(node.replies)}))
            else:
                result.append(node)
        return result

    return _rewrite(forest)


def _lift(node: Comment) -> Comment:
    """Move a subtree one level up: every ``thread_depth`` drops by one."""
    return node.model_copy(update={
        "thread_depth": max(node.thread_depth - 1, 0),
        "replies": [_lift(r) for r in node.replies],
    })


def remove_comment_from_tree(
    forest: Sequence[Comment],
    comment_id: str,
    policy: DeletePolicy = DeletePolicy.CASCADE,
) -> list[Comment]:
    """Remove a comment from whichever level it occupies.

    With ``CASCADE`` its replies go with it. With ``REPARENT`` they move up
    into its parent's replies (or among the roots) with ``parent_id``
    rewritten and every ``thread_depth`` in their subtrees reduced by one;
    that level is re-sorted: replies oldest first, roots newest first. An
    absent id returns an equal forest.
    """

    def _rewrite(nodes: Sequence[Comment], parent_id: Optional[str]) -> list[Comment]:
        result: list[Comment] = []
        promoted = False
        for node in nodes:
            if node.id == comment_id:
                if policy is DeletePolicy.REPARENT and node.replies:
                    promoted = True
                    result.extend(
                        _lift(r).model_copy(update={"parent_id": parent_id})
                        for r in node.replies
                    )
                continue
            if node.replies:
                node = node.model_copy(update={"replies": _rewrite(node.replies, node.id)})
            result.append(node)
        if promoted:
            result.sort(key=lambda c: c.created_at, reverse=parent_id is None)
        return result

    return _rewrite(forest, None)


def insert_comment(forest: Sequence[Comment], comment: Comment) -> list[Comment]:
    """Insert a comment: roots are prepended, replies appended to their parent.

    A reply whose parent is not in the forest leaves it unchanged.
    """
    if comment.parent_id is None:
        return [comment, *forest]

    inserted = False

    def _rewrite(nodes: Sequence[Comment]) -> list[Comment]:
        nonlocal inserted
        result = []
        for node in nodes:
            if node.id == comment.parent_id:
                inserted = True
                result.append(node.model_copy(update={"replies": [*node.replies, comment]}))
            elif node.replies and not inserted:
                result.append(node.model_copy(update={"replies": _rewrite(node.replies)}))
            else:
                result.append(node)
        return result

    rewritten = _rewrite(forest)
    if not inserted:
        logger.debug("Parent %s of comment %s not in forest", comment.parent_id, comment.id)
        return list(forest)
    return rewritten


def merge_comment(forest: Sequence[Comment], comment: Comment) -> list[Comment]:
    """Insert *comment* unless a comment with its id is already present."""
    if find_comment(forest, comment.id) is not None:
        return list(forest)
    return insert_comment(forest, comment)
