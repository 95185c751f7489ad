"""Tests for CollaborationService over the SQLite store."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from crmcollab.collaboration.formatting import render_changes
from crmcollab.collaboration.models import (
    ActivityAction,
    CommentInput,
    FieldChange,
    NotificationPriority,
    NotificationType,
    TeamMember,
    WatchLevel,
)
from crmcollab.collaboration.notifiers import NotificationDispatcher
from crmcollab.collaboration.service import (
    CollaborationService,
    CommentNotFoundError,
    NotCommentAuthorError,
    build_action_url,
)
from crmcollab.collaboration.stores.sqlite import SQLiteStore
from crmcollab.collaboration.tree import DeletePolicy


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def alice() -> TeamMember:
    return TeamMember(id="u1", name="Alice Walker", email="alice@example.org")


@pytest.fixture
def bob() -> TeamMember:
    return TeamMember(id="u2", name="Bob Stone", email="bob@example.org")


@pytest.fixture
def carol() -> TeamMember:
    return TeamMember(id="u3", name="Carol Diaz", email="carol@example.org")


@pytest.fixture
def roster(alice: TeamMember, bob: TeamMember, carol: TeamMember) -> list[TeamMember]:
    return [alice, bob, carol]


@pytest.fixture
def service() -> CollaborationService:
    return CollaborationService(SQLiteStore(":memory:"), NotificationDispatcher())


def _input(content: str, parent_id: str | None = None, **kw) -> CommentInput:
    return CommentInput(entity_type="task", entity_id="t1", content=content, parent_id=parent_id, **kw)


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


class TestComments:
    def test_create_root(self, service: CollaborationService, alice: TeamMember) -> None:
        comment = service.create_comment(_input("Hello"), alice)
        assert comment.author_id == "u1"
        assert comment.author_name == "Alice Walker"
        assert comment.thread_depth == 0
        assert service.store.get_comment(comment.id).content == "Hello"

    def test_markup_escaped_without_roster(
        self, service: CollaborationService, alice: TeamMember,
    ) -> None:
        comment = service.create_comment(_input("<b>bold</b>\n<script>x()</script>"), alice)
        stored = service.store.get_comment(comment.id)
        assert stored.content == "<b>bold</b>\n<script>x()</script>"
        assert stored.content_html == (
            "&lt;b&gt;bold&lt;/b&gt;<br>&lt;script&gt;x()&lt;/script&gt;"
        )

    def test_edit_escaped_without_roster(
        self, service: CollaborationService, alice: TeamMember,
    ) -> None:
        comment = service.create_comment(_input("plain"), alice)
        updated = service.update_comment(comment.id, "<i>now</i>", alice)
        assert updated.content_html == "&lt;i&gt;now&lt;/i&gt;"

    def test_reply_depth(self, service: CollaborationService, alice: TeamMember) -> None:
        root = service.create_comment(_input("root"), alice)
        reply = service.create_comment(_input("reply", root.id), alice)
        nested = service.create_comment(_input("nested", reply.id), alice)
        assert reply.thread_depth == 1
        assert nested.thread_depth == 2

    def test_reply_to_missing_parent(self, service: CollaborationService, alice: TeamMember) -> None:
        with pytest.raises(CommentNotFoundError):
            service.create_comment(_input("orphan", "ghost"), alice)

    def test_threaded(self, service: CollaborationService, alice: TeamMember) -> None:
        first = service.create_comment(_input("first"), alice)
        service.create_comment(_input("second"), alice)
        service.create_comment(_input("reply", first.id), alice)
        forest = service.get_threaded_comments("task", "t1")
        assert [c.content for c in forest] == ["second", "first"]
        assert [c.content for c in forest[1].replies] == ["reply"]

    def test_get_comments_roots_only(self, service: CollaborationService, alice: TeamMember) -> None:
        root = service.create_comment(_input("root"), alice)
        service.create_comment(_input("reply", root.id), alice)
        assert len(service.get_comments("task", "t1")) == 2
        assert len(service.get_comments("task", "t1", include_replies=False)) == 1

    def test_update_by_author(
        self, service: CollaborationService, alice: TeamMember, roster: list[TeamMember],
    ) -> None:
        comment = service.create_comment(_input("draft"), alice)
        updated = service.update_comment(comment.id, "cc @bob", alice, roster)
        assert updated.is_edited
        assert updated.content == "cc @bob"
        assert 'data-user-id="u2"' in updated.content_html

    def test_update_by_other_user(
        self, service: CollaborationService, alice: TeamMember, bob: TeamMember,
    ) -> None:
        comment = service.create_comment(_input("mine"), alice)
        with pytest.raises(NotCommentAuthorError):
            service.update_comment(comment.id, "hijack", bob)

    def test_cascade_delete(self, service: CollaborationService, alice: TeamMember) -> None:
        root = service.create_comment(_input("root"), alice)
        child = service.create_comment(_input("child", root.id), alice)
        grandchild = service.create_comment(_input("grandchild", child.id), alice)

        deleted = service.delete_comment(root.id, alice.id)
        assert set(deleted) == {root.id, child.id, grandchild.id}
        assert service.get_threaded_comments("task", "t1") == []
        # soft delete: still retrievable by id
        assert service.store.get_comment(child.id).deleted_at is not None

    def test_reparent_delete(self, service: CollaborationService, alice: TeamMember) -> None:
        root = service.create_comment(_input("root"), alice)
        child = service.create_comment(_input("child", root.id), alice)
        grandchild = service.create_comment(_input("grandchild", child.id), alice)

        deleted = service.delete_comment(child.id, alice.id, DeletePolicy.REPARENT)
        assert deleted == [child.id]
        moved = service.store.get_comment(grandchild.id)
        assert moved.parent_id == root.id
        assert moved.thread_depth == 1
        forest = service.get_threaded_comments("task", "t1")
        assert [c.content for c in forest[0].replies] == ["grandchild"]

    def test_delete_by_other_user(
        self, service: CollaborationService, alice: TeamMember, bob: TeamMember,
    ) -> None:
        comment = service.create_comment(_input("mine"), alice)
        with pytest.raises(NotCommentAuthorError):
            service.delete_comment(comment.id, bob.id)

    def test_delete_twice(self, service: CollaborationService, alice: TeamMember) -> None:
        comment = service.create_comment(_input("gone"), alice)
        service.delete_comment(comment.id, alice.id)
        with pytest.raises(CommentNotFoundError):
            service.delete_comment(comment.id, alice.id)

    def test_pin_logs_activity(self, service: CollaborationService, alice: TeamMember) -> None:
        comment = service.create_comment(_input("pin me"), alice)
        assert service.toggle_comment_pin(comment.id, True, alice).is_pinned
        actions = [e.action for e in service.get_activity_log("task", "t1")]
        assert actions[0] is ActivityAction.PINNED

    def test_pin_missing(self, service: CollaborationService) -> None:
        with pytest.raises(CommentNotFoundError):
            service.toggle_comment_pin("ghost", True)

    def test_subscription_filters_entity(
        self, service: CollaborationService, alice: TeamMember,
    ) -> None:
        received = []
        unsubscribe = service.subscribe_to_comments("task", "t1", received.append)
        service.create_comment(_input("here"), alice)
        service.create_comment(
            CommentInput(entity_type="task", entity_id="t2", content="there"), alice,
        )
        unsubscribe()
        service.create_comment(_input("after"), alice)
        assert [c.content for c in received] == ["here"]


# ---------------------------------------------------------------------------
# Mentions and notifications
# ---------------------------------------------------------------------------


class TestMentions:
    def test_mention_creates_record_and_notification(
        self, service: CollaborationService, alice: TeamMember, roster: list[TeamMember],
    ) -> None:
        comment = service.create_comment(_input("Hey @bob, take a look"), alice, roster)

        mentions = service.get_mentions_for_user("u2")
        assert len(mentions) == 1
        assert mentions[0].comment_id == comment.id
        assert mentions[0].mentioned_by_id == "u1"
        assert "@bob" in mentions[0].mention_context

        notes = service.get_notifications("u2")
        assert len(notes) == 1
        assert notes[0].type is NotificationType.MENTION
        assert notes[0].priority is NotificationPriority.HIGH
        assert notes[0].title == "Alice Walker mentioned you"
        assert notes[0].action_url == "/tasks?id=t1"

    def test_self_mention_skipped(
        self, service: CollaborationService, alice: TeamMember, roster: list[TeamMember],
    ) -> None:
        service.create_comment(_input("note to @alice"), alice, roster)
        assert service.get_mentions_for_user("u1") == []

    def test_repeated_mention_recorded_once(
        self, service: CollaborationService, alice: TeamMember, roster: list[TeamMember],
    ) -> None:
        service.create_comment(_input("@bob @bob @carol"), alice, roster)
        assert len(service.get_mentions_for_user("u2")) == 1
        assert len(service.get_mentions_for_user("u3")) == 1

    def test_mark_mentions_read(
        self, service: CollaborationService, alice: TeamMember, roster: list[TeamMember],
    ) -> None:
        service.create_comment(_input("@bob one"), alice, roster)
        service.create_comment(_input("@bob two"), alice, roster)
        first = service.get_mentions_for_user("u2")[0]
        service.mark_mention_read(first.id)
        assert len(service.get_mentions_for_user("u2", unread_only=True)) == 1
        assert service.mark_all_mentions_read("u2") == 1
        assert service.get_mentions_for_user("u2", unread_only=True) == []

    def test_dispatched_to_console(
        self, service: CollaborationService, alice: TeamMember, roster: list[TeamMember],
    ) -> None:
        service.create_comment(_input("@carol fyi"), alice, roster)
        assert [n.user_id for n in service.dispatcher.console.log] == ["u3"]


class TestNotifications:
    def test_unread_count_and_mark_all(self, service: CollaborationService) -> None:
        for i in range(3):
            service.create_notification(
                user_id="u2", notification_type=NotificationType.SYSTEM, title=f"n{i}",
            )
        assert service.get_unread_notification_count("u2") == 3
        assert service.mark_all_notifications_read("u2") == 3
        assert service.get_unread_notification_count("u2") == 0

    def test_mark_one_read(self, service: CollaborationService) -> None:
        note = service.create_notification(
            user_id="u2", notification_type=NotificationType.SYSTEM, title="hi",
        )
        service.mark_notification_read(note.id)
        assert service.get_notifications("u2")[0].is_read

    def test_archive_hides(self, service: CollaborationService) -> None:
        note = service.create_notification(
            user_id="u2", notification_type=NotificationType.SYSTEM, title="hi",
        )
        service.archive_notification(note.id)
        assert service.get_notifications("u2") == []
        assert service.get_unread_notification_count("u2") == 0

    def test_filter_by_type(self, service: CollaborationService) -> None:
        service.create_notification(user_id="u2", notification_type=NotificationType.SYSTEM, title="a")
        service.create_notification(
            user_id="u2", notification_type=NotificationType.ASSIGNMENT, title="b",
        )
        notes = service.get_notifications("u2", types=[NotificationType.ASSIGNMENT])
        assert [n.title for n in notes] == ["b"]

    def test_action_url(self) -> None:
        assert build_action_url("project", "p9") == "/projects?id=p9"
        assert build_action_url("unknown", "x") == "/"
        assert build_action_url(None, None) == "/"


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------


class TestActivityLog:
    def test_comment_logs_activity(self, service: CollaborationService, alice: TeamMember) -> None:
        comment = service.create_comment(_input("hi"), alice)
        entries = service.get_activity_log("task", "t1")
        assert len(entries) == 1
        assert entries[0].action is ActivityAction.COMMENTED
        assert entries[0].comment_id == comment.id
        assert entries[0].actor_name == "Alice Walker"

    def test_changes_round_trip(self, service: CollaborationService, alice: TeamMember) -> None:
        service.log_activity(
            entity_type="task",
            entity_id="t1",
            action=ActivityAction.STATUS_CHANGED,
            actor=alice,
            changes={"status": {"old": "open", "new": "done"}},
            metadata={"source": "board"},
        )
        entry = service.get_activity_log("task", "t1")[0]
        assert entry.changes == {"status": FieldChange(old="open", new="done")}
        assert entry.metadata == {"source": "board"}

    def test_date_changes_render_after_reload(
        self, service: CollaborationService, alice: TeamMember,
    ) -> None:
        service.log_activity(
            entity_type="task",
            entity_id="t1",
            action=ActivityAction.DUE_DATE_CHANGED,
            actor=alice,
            changes={"due_date": {"old": None, "new": datetime(2024, 2, 1, tzinfo=timezone.utc)}},
        )
        entry = service.get_activity_log("task", "t1")[0]
        assert render_changes(entry.changes) == ["Due date: none → 2/1/2024"]

    def test_internal_excluded_on_request(
        self, service: CollaborationService, alice: TeamMember,
    ) -> None:
        service.create_comment(_input("internal", is_internal=True), alice)
        assert service.get_activity_log("task", "t1", include_internal=False) == []
        assert len(service.get_activity_log("task", "t1")) == 1


# ---------------------------------------------------------------------------
# Watchers
# ---------------------------------------------------------------------------


class TestWatchers:
    def test_watch_upserts(self, service: CollaborationService) -> None:
        service.watch_entity("task", "t1", "u2")
        service.watch_entity("task", "t1", "u2", WatchLevel.MENTIONS)
        watchers = service.get_entity_watchers("task", "t1")
        assert len(watchers) == 1
        assert watchers[0].watch_level is WatchLevel.MENTIONS

    def test_unwatch(self, service: CollaborationService) -> None:
        service.watch_entity("task", "t1", "u2")
        assert service.unwatch_entity("task", "t1", "u2")
        assert not service.unwatch_entity("task", "t1", "u2")
        assert service.is_user_watching("task", "t1", "u2") is None

    def test_watchers_notified_except_actor(
        self, service: CollaborationService, alice: TeamMember,
    ) -> None:
        service.watch_entity("task", "t1", "u1")
        service.watch_entity("task", "t1", "u2")
        service.create_comment(_input("update"), alice)
        assert service.get_unread_notification_count("u1") == 0
        notes = service.get_notifications("u2")
        assert [n.type for n in notes] == [NotificationType.COMMENT]
        assert notes[0].title == "New comment on task"

    def test_reply_notification_type(
        self, service: CollaborationService, alice: TeamMember,
    ) -> None:
        root = service.create_comment(_input("root"), alice)
        service.watch_entity("task", "t1", "u2")
        service.create_comment(_input("reply", root.id), alice)
        assert service.get_notifications("u2")[0].type is NotificationType.REPLY

    def test_watch_level_filters(self, service: CollaborationService, alice: TeamMember) -> None:
        service.watch_entity("task", "t1", "u2", WatchLevel.MENTIONS)
        service.watch_entity("task", "t1", "u3", WatchLevel.NONE)
        service.create_comment(_input("quiet"), alice)
        assert service.get_notifications("u2") == []
        assert service.get_notifications("u3") == []


class TestCollaborationContext:
    def test_context(self, service: CollaborationService, alice: TeamMember) -> None:
        service.create_comment(_input("one"), alice)
        service.watch_entity("task", "t1", "u1")
        context = service.get_collaboration_context("task", "t1", current_user_id="u1")
        assert context.comment_count == 1
        assert context.watcher_count == 1
        assert context.current_user_watching.user_id == "u1"
        assert [e.action for e in context.recent_activity] == [ActivityAction.COMMENTED]

    def test_context_not_watching(self, service: CollaborationService) -> None:
        context = service.get_collaboration_context("task", "t1", current_user_id="u9")
        assert context.current_user_watching is None
        assert context.comments == []
