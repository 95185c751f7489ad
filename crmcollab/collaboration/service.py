"""CollaborationService — comments, mentions, notifications, activity and watchers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence

from crmcollab.config import (
    ACTION_URL_TEMPLATES,
    DEFAULT_COMMENT_PAGE_SIZE,
    MENTION_BASE_URL,
    NOTIFICATION_PREVIEW_LENGTH,
    RECENT_ACTIVITY_LIMIT,
)
from crmcollab.collaboration.mentions import (
    extract_mentioned_user_ids,
    get_mention_context,
    parse_mentions,
    render_mentions_as_html,
)
from crmcollab.collaboration.models import (
    ActivityAction,
    ActivityLogEntry,
    CollaborationContext,
    Comment,
    CommentInput,
    EntityWatcher,
    FieldChange,
    Mention,
    Notification,
    NotificationPriority,
    NotificationType,
    TeamMember,
    WatchLevel,
)
from crmcollab.collaboration.notifiers import NotificationDispatcher, WebhookNotifier
from crmcollab.collaboration.stores.base import CollaborationStore, Unsubscribe
from crmcollab.collaboration.stores.sqlite import SQLiteStore
from crmcollab.collaboration.tree import DeletePolicy, build_comment_tree
from crmcollab.config_manager import CollabSettings, configure_logging

logger = logging.getLogger(__name__)


class CollaborationError(Exception):
    """Base class for collaboration-layer errors."""


class CommentNotFoundError(CollaborationError):
    """Raised when a comment id does not resolve to a live comment."""


class NotCommentAuthorError(CollaborationError):
    """Raised when someone other than the author edits or deletes a comment."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _preview(text: str, length: int = NOTIFICATION_PREVIEW_LENGTH) -> str:
    return text[:length] + ("..." if len(text) > length else "")


def build_action_url(entity_type: Optional[str], entity_id: Optional[str]) -> str:
    """In-app link for a notification about an entity."""
    if not entity_type or not entity_id:
        return "/"
    template = ACTION_URL_TEMPLATES.get(entity_type)
    return template.format(entity_id=entity_id) if template else "/"


class CollaborationService:
    """Collaboration operations over a CollaborationStore.

    Authorization here is an ownership check on comment writes; the hosting
    service is still expected to enforce access on its side.

    Parameters
    ----------
    store:
        Persistence backend.
    dispatcher:
        Delivers created notifications; defaults to a console-only dispatcher.
    mention_base_url:
        Link prefix for rendered mentions.
    """

    def __init__(
        self,
        store: CollaborationStore,
        dispatcher: NotificationDispatcher | None = None,
        *,
        mention_base_url: str = MENTION_BASE_URL,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.mention_base_url = mention_base_url

    @classmethod
    def from_settings(cls, settings: CollabSettings) -> CollaborationService:
        """Service wired from merged settings: SQLite store, webhook and log level."""
        configure_logging(settings.log_level)
        dispatcher = NotificationDispatcher()
        if settings.webhook_url:
            dispatcher.add_provider(WebhookNotifier(settings.webhook_url))
        logger.debug("Opening collaboration store at %s (%s)", settings.db_path, settings.env)
        return cls(
            SQLiteStore(settings.db_path),
            dispatcher,
            mention_base_url=settings.mention_base_url,
        )

    # -- Comments -------------------------------------------------------------

    def get_comments(
        self,
        entity_type: str,
        entity_id: str,
        *,
        include_replies: bool = True,
        include_deleted: bool = False,
        limit: int = DEFAULT_COMMENT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[Comment]:
        """Flat list of an entity's comments, newest first."""
        return self.store.list_comments(
            entity_type,
            entity_id,
            include_replies=include_replies,
            include_deleted=include_deleted,
            limit=limit,
            offset=offset,
        )

    def get_threaded_comments(self, entity_type: str, entity_id: str) -> list[Comment]:
        """All live comments of an entity as a forest (roots newest first)."""
        comments = self.store.list_comments(entity_type, entity_id)
        return build_comment_tree(comments)

    def create_comment(
        self,
        comment_input: CommentInput,
        author: TeamMember,
        team_members: Optional[Sequence[TeamMember]] = None,
    ) -> Comment:
        """Store a new comment, then record mentions, activity and notifications.

        Parameters
        ----------
        comment_input:
            Entity, content and optional parent.
        author:
            The posting team member.
        team_members:
            Roster used to resolve mentions. Without it the content is only
            escaped and no mentions are recorded.
        """
        depth = 0
        if comment_input.parent_id:
            parent = self.store.get_comment(comment_input.parent_id)
            if parent is None or parent.deleted_at is not None:
                raise CommentNotFoundError(f"Parent comment '{comment_input.parent_id}' not found")
            depth = parent.thread_depth + 1

        content_html = render_mentions_as_html(
            comment_input.content, team_members or (), base_url=self.mention_base_url,
        )

        comment = self.store.insert_comment(Comment(
            entity_type=comment_input.entity_type,
            entity_id=comment_input.entity_id,
            content=comment_input.content,
            content_html=content_html,
            author_id=author.id,
            author_name=author.name,
            parent_id=comment_input.parent_id,
            thread_depth=depth,
            is_internal=comment_input.is_internal,
        ))
        logger.info("Comment %s added by %s", comment.id, author.id)

        if team_members:
            self._process_mentions(comment, author, team_members)

        self.log_activity(
            entity_type=comment.entity_type,
            entity_id=comment.entity_id,
            action=ActivityAction.COMMENTED,
            actor=author,
            description=f"{author.name} added a comment",
            comment_id=comment.id,
            is_internal=comment.is_internal,
        )

        self._notify_watchers(
            comment.entity_type,
            comment.entity_id,
            notification_type=NotificationType.REPLY if comment.parent_id else NotificationType.COMMENT,
            actor=author,
            title=f"New comment on {comment.entity_type}",
            message=_preview(comment.content),
            comment_id=comment.id,
        )

        return comment

    def update_comment(
        self,
        comment_id: str,
        content: str,
        author: TeamMember,
        team_members: Optional[Sequence[TeamMember]] = None,
    ) -> Comment:
        """Replace a comment's content. Only its author may do this."""
        existing = self._require_own_comment(comment_id, author.id)
        content_html = render_mentions_as_html(
            content, team_members or (), base_url=self.mention_base_url,
        )

        updated = self.store.update_comment(existing.id, {
            "content": content,
            "content_html": content_html,
            "is_edited": True,
            "updated_at": _utc_now(),
        })
        if updated is None:
            raise CommentNotFoundError(f"Comment '{comment_id}' not found")
        logger.info("Comment %s edited by %s", comment_id, author.id)
        return updated

    def delete_comment(
        self,
        comment_id: str,
        author_id: str,
        policy: DeletePolicy = DeletePolicy.CASCADE,
    ) -> list[str]:
        """Soft-delete a comment. Only its author may do this.

        With ``CASCADE`` every descendant is soft-deleted too; with
        ``REPARENT`` the direct replies are attached to the comment's parent
        (or become roots) and their subtrees move up one level. Returns the
        ids that were deleted.
        """
        existing = self._require_own_comment(comment_id, author_id)
        now = _utc_now()

        live = self.store.list_comments(existing.entity_type, existing.entity_id)
        children: dict[str, list[Comment]] = {}
        for c in live:
            if c.parent_id:
                children.setdefault(c.parent_id, []).append(c)

        if policy is DeletePolicy.REPARENT:
            for reply in children.get(existing.id, []):
                self.store.update_comment(reply.id, {"parent_id": existing.parent_id})
            moving = list(children.get(existing.id, []))
            while moving:
                node = moving.pop()
                self.store.update_comment(node.id, {
                    "thread_depth": max(node.thread_depth - 1, 0),
                })
                moving.extend(children.get(node.id, []))
            deleted = [existing.id]
        else:
            deleted = []
            pending = [existing.id]
            while pending:
                current = pending.pop()
                deleted.append(current)
                pending.extend(c.id for c in children.get(current, []))

        for cid in deleted:
            self.store.update_comment(cid, {"deleted_at": now, "updated_at": now})

        logger.info("Deleted comment(s) %s (%s)", ", ".join(deleted), policy.value)
        return deleted

    def toggle_comment_pin(
        self,
        comment_id: str,
        is_pinned: bool,
        actor: Optional[TeamMember] = None,
    ) -> Comment:
        """Set a comment's pinned flag. Several comments may be pinned at once."""
        updated = self.store.update_comment(comment_id, {"is_pinned": is_pinned})
        if updated is None:
            raise CommentNotFoundError(f"Comment '{comment_id}' not found")

        self.log_activity(
            entity_type=updated.entity_type,
            entity_id=updated.entity_id,
            action=ActivityAction.PINNED if is_pinned else ActivityAction.UNPINNED,
            actor=actor,
            description=f"Comment {'pinned' if is_pinned else 'unpinned'}",
            comment_id=updated.id,
        )
        return updated

    def subscribe_to_comments(
        self,
        entity_type: str,
        entity_id: str,
        callback: Callable[[Comment], None],
    ) -> Unsubscribe:
        """Push comments inserted on one entity to *callback*."""

        def _on_insert(comment: Comment) -> None:
            if comment.entity_type == entity_type and comment.entity_id == entity_id:
                callback(comment)

        return self.store.subscribe("comments", _on_insert)

    def _require_own_comment(self, comment_id: str, author_id: str) -> Comment:
        comment = self.store.get_comment(comment_id)
        if comment is None or comment.deleted_at is not None:
            raise CommentNotFoundError(f"Comment '{comment_id}' not found")
        if comment.author_id != author_id:
            raise NotCommentAuthorError(
                f"User '{author_id}' is not the author of comment '{comment_id}'."
            )
        return comment

    # -- Mentions -------------------------------------------------------------

    def _process_mentions(
        self,
        comment: Comment,
        author: TeamMember,
        team_members: Sequence[TeamMember],
    ) -> list[Mention]:
        """Record a mention and a high-priority notification per mentioned user."""
        positions = {
            m.user_id: m.start_index
            for m in reversed(parse_mentions(comment.content, team_members))
            if m.user_id
        }

        mentions: list[Mention] = []
        for user_id in extract_mentioned_user_ids(comment.content, team_members):
            if user_id == author.id:
                continue

            mention = self.store.insert_mention(Mention(
                comment_id=comment.id,
                entity_type=comment.entity_type,
                entity_id=comment.entity_id,
                mentioned_user_id=user_id,
                mentioned_by_id=author.id,
                mention_context=get_mention_context(comment.content, positions.get(user_id, 0)),
            ))
            mentions.append(mention)

            self.create_notification(
                user_id=user_id,
                notification_type=NotificationType.MENTION,
                entity_type=comment.entity_type,
                entity_id=comment.entity_id,
                comment_id=comment.id,
                mention_id=mention.id,
                actor=author,
                title=f"{author.name} mentioned you",
                message=comment.content[:NOTIFICATION_PREVIEW_LENGTH],
                priority=NotificationPriority.HIGH,
            )

        if mentions:
            logger.info("Comment %s mentions %d user(s)", comment.id, len(mentions))
        return mentions

    def get_mentions_for_user(
        self,
        user_id: str,
        *,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Mention]:
        return self.store.list_mentions(user_id, unread_only=unread_only, limit=limit, offset=offset)

    def mark_mention_read(self, mention_id: str) -> None:
        self.store.mark_mentions_read(mention_id=mention_id)

    def mark_all_mentions_read(self, user_id: str) -> int:
        return self.store.mark_mentions_read(user_id=user_id)

    # -- Notifications --------------------------------------------------------

    def create_notification(
        self,
        *,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        message: str = "",
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        comment_id: Optional[str] = None,
        mention_id: Optional[str] = None,
        actor: Optional[TeamMember] = None,
        action_url: Optional[str] = None,
        priority: NotificationPriority = NotificationPriority.NORMAL,
    ) -> Notification:
        """Store a notification and hand it to the delivery providers."""
        notification = self.store.insert_notification(Notification(
            user_id=user_id,
            type=notification_type,
            entity_type=entity_type,
            entity_id=entity_id,
            comment_id=comment_id,
            mention_id=mention_id,
            actor_id=actor.id if actor else None,
            actor_name=actor.name if actor else None,
            title=title,
            message=message,
            action_url=action_url or build_action_url(entity_type, entity_id),
            priority=priority,
        ))
        self.dispatcher.dispatch(notification)
        return notification

    def get_notifications(
        self,
        user_id: str,
        *,
        unread_only: bool = False,
        types: Optional[Sequence[NotificationType]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Notification]:
        return self.store.list_notifications(
            user_id, unread_only=unread_only, types=types, limit=limit, offset=offset,
        )

    def get_unread_notification_count(self, user_id: str) -> int:
        return self.store.count_unread_notifications(user_id)

    def mark_notification_read(self, notification_id: str) -> None:
        self.store.update_notifications(
            {"is_read": True, "read_at": _utc_now()}, notification_id=notification_id,
        )

    def mark_all_notifications_read(self, user_id: str) -> int:
        """Mark every unread notification of a user as read; returns the count."""
        return self.store.update_notifications(
            {"is_read": True, "read_at": _utc_now()}, user_id=user_id, unread_only=True,
        )

    def archive_notification(self, notification_id: str) -> None:
        self.store.update_notifications({"is_archived": True}, notification_id=notification_id)

    # -- Activity log ---------------------------------------------------------

    def log_activity(
        self,
        *,
        entity_type: str,
        entity_id: str,
        action: ActivityAction,
        actor: Optional[TeamMember] = None,
        description: str = "",
        changes: Optional[dict[str, FieldChange | dict[str, Any]]] = None,
        metadata: Optional[dict[str, Any]] = None,
        comment_id: Optional[str] = None,
        is_internal: bool = False,
    ) -> ActivityLogEntry:
        """Append an entry to an entity's activity log."""
        entry = ActivityLogEntry.model_validate({
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action,
            "actor_id": actor.id if actor else "",
            "actor_name": actor.name if actor else "",
            "description": description,
            "changes": changes or {},
            "metadata": metadata or {},
            "comment_id": comment_id,
            "is_internal": is_internal,
        })
        stored = self.store.insert_activity(entry)
        logger.debug("Logged %s on %s/%s", action, entity_type, entity_id)
        return stored

    def get_activity_log(
        self,
        entity_type: str,
        entity_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        include_internal: bool = True,
    ) -> list[ActivityLogEntry]:
        return self.store.list_activity(
            entity_type, entity_id, limit=limit, offset=offset, include_internal=include_internal,
        )

    # -- Watchers -------------------------------------------------------------

    def watch_entity(
        self,
        entity_type: str,
        entity_id: str,
        user_id: str,
        watch_level: WatchLevel = WatchLevel.ALL,
    ) -> EntityWatcher:
        return self.store.upsert_watcher(EntityWatcher(
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            watch_level=watch_level,
        ))

    def unwatch_entity(self, entity_type: str, entity_id: str, user_id: str) -> bool:
        return self.store.delete_watcher(entity_type, entity_id, user_id)

    def get_entity_watchers(self, entity_type: str, entity_id: str) -> list[EntityWatcher]:
        return self.store.list_watchers(entity_type, entity_id)

    def is_user_watching(
        self,
        entity_type: str,
        entity_id: str,
        user_id: str,
    ) -> Optional[EntityWatcher]:
        for watcher in self.store.list_watchers(entity_type, entity_id):
            if watcher.user_id == user_id:
                return watcher
        return None

    def _notify_watchers(
        self,
        entity_type: str,
        entity_id: str,
        *,
        notification_type: NotificationType,
        title: str,
        message: str = "",
        actor: Optional[TeamMember] = None,
        comment_id: Optional[str] = None,
    ) -> list[Notification]:
        """Notify watchers whose watch level covers *notification_type*.

        The acting user is never notified about their own action.
        """
        sent: list[Notification] = []
        for watcher in self.store.list_watchers(entity_type, entity_id):
            if actor is not None and watcher.user_id == actor.id:
                continue
            if not _watch_level_allows(watcher.watch_level, notification_type):
                continue
            sent.append(self.create_notification(
                user_id=watcher.user_id,
                notification_type=notification_type,
                entity_type=entity_type,
                entity_id=entity_id,
                comment_id=comment_id,
                actor=actor,
                title=title,
                message=message,
            ))
        return sent

    # -- Context --------------------------------------------------------------

    def get_collaboration_context(
        self,
        entity_type: str,
        entity_id: str,
        current_user_id: Optional[str] = None,
    ) -> CollaborationContext:
        """Comments, watchers and recent activity for an entity in one call."""
        comments = self.get_threaded_comments(entity_type, entity_id)
        watchers = self.get_entity_watchers(entity_type, entity_id)
        activity = self.get_activity_log(entity_type, entity_id, limit=RECENT_ACTIVITY_LIMIT)

        watching = None
        if current_user_id:
            watching = next((w for w in watchers if w.user_id == current_user_id), None)

        return CollaborationContext(
            entity_type=entity_type,
            entity_id=entity_id,
            comments=comments,
            comment_count=len(comments),
            watchers=watchers,
            watcher_count=len(watchers),
            recent_activity=activity,
            current_user_watching=watching,
        )


def _watch_level_allows(level: WatchLevel, notification_type: NotificationType) -> bool:
    if level is WatchLevel.NONE:
        return False
    if level is WatchLevel.MENTIONS:
        return notification_type is NotificationType.MENTION
    if level is WatchLevel.STATUS_ONLY:
        return notification_type is NotificationType.STATUS_CHANGE
    return True
