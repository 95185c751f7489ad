"""Abstract CollaborationStore interface."""

from __future__ import annotations

import abc
import logging
from typing import Any, Callable, Optional, Sequence

from crmcollab.collaboration.models import (
    ActivityLogEntry,
    Comment,
    EntityWatcher,
    Mention,
    Notification,
    NotificationType,
)

logger = logging.getLogger(__name__)

InsertCallback = Callable[[Any], None]
Unsubscribe = Callable[[], None]

TABLES = ("comments", "mentions", "notifications", "activity_log", "entity_watchers")


class StoreError(Exception):
    """Raised when the backing store cannot complete an operation."""


class CollaborationStore(abc.ABC):
    """Persistence seam for comments, mentions, notifications, activity and watchers.

    Listing methods return records newest first. Inserted records are pushed
    to subscribers of their table after the write succeeds, which is how
    open views receive comments posted by other users.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[InsertCallback]] = {t: [] for t in TABLES}

    # -- Real-time ------------------------------------------------------------

    def subscribe(self, table: str, callback: InsertCallback) -> Unsubscribe:
        """Call *callback* with every record inserted into *table*.

        Returns a function that removes the subscription; calling it twice
        is harmless.
        """
        if table not in self._subscribers:
            raise StoreError(f"Unknown table '{table}'")
        self._subscribers[table].append(callback)

        def _unsubscribe() -> None:
            try:
                self._subscribers[table].remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    def subscriber_count(self, table: str) -> int:
        return len(self._subscribers.get(table, []))

    def _publish(self, table: str, record: Any) -> None:
        for callback in list(self._subscribers.get(table, [])):
            try:
                callback(record)
            except Exception:
                logger.exception("Subscriber to %s failed", table)

    # -- Comments -------------------------------------------------------------

    @abc.abstractmethod
    def insert_comment(self, comment: Comment) -> Comment:
        """Persist a new comment and return the stored record."""

    @abc.abstractmethod
    def get_comment(self, comment_id: str) -> Optional[Comment]:
        """Return a comment by id (deleted ones included), or None."""

    @abc.abstractmethod
    def list_comments(
        self,
        entity_type: str,
        entity_id: str,
        *,
        include_replies: bool = True,
        include_deleted: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Comment]:
        """List an entity's comments as a flat list, newest first."""

    @abc.abstractmethod
    def update_comment(self, comment_id: str, fields: dict[str, Any]) -> Optional[Comment]:
        """Apply *fields* to a comment; None if it does not exist."""

    # -- Mentions -------------------------------------------------------------

    @abc.abstractmethod
    def insert_mention(self, mention: Mention) -> Mention:
        """Persist a mention record."""

    @abc.abstractmethod
    def list_mentions(
        self,
        user_id: str,
        *,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Mention]:
        """List mentions of *user_id*, newest first."""

    @abc.abstractmethod
    def mark_mentions_read(
        self,
        *,
        mention_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> int:
        """Mark one mention, or all of a user's unread mentions, as read."""

    # -- Notifications --------------------------------------------------------

    @abc.abstractmethod
    def insert_notification(self, notification: Notification) -> Notification:
        """Persist a notification."""

    @abc.abstractmethod
    def list_notifications(
        self,
        user_id: str,
        *,
        unread_only: bool = False,
        types: Optional[Sequence[NotificationType]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Notification]:
        """List a user's non-archived notifications, newest first."""

    @abc.abstractmethod
    def count_unread_notifications(self, user_id: str) -> int:
        """Count a user's unread, non-archived notifications."""

    @abc.abstractmethod
    def update_notifications(
        self,
        fields: dict[str, Any],
        *,
        notification_id: Optional[str] = None,
        user_id: Optional[str] = None,
        unread_only: bool = False,
    ) -> int:
        """Apply *fields* to one notification or to a user's notifications."""

    # -- Activity log ---------------------------------------------------------

    @abc.abstractmethod
    def insert_activity(self, entry: ActivityLogEntry) -> ActivityLogEntry:
        """Append an activity entry."""

    @abc.abstractmethod
    def list_activity(
        self,
        entity_type: str,
        entity_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        include_internal: bool = True,
    ) -> list[ActivityLogEntry]:
        """Page through an entity's activity log, newest first."""

    # -- Watchers -------------------------------------------------------------

    @abc.abstractmethod
    def upsert_watcher(self, watcher: EntityWatcher) -> EntityWatcher:
        """Create or update the (entity, user) watch record."""

    @abc.abstractmethod
    def delete_watcher(self, entity_type: str, entity_id: str, user_id: str) -> bool:
        """Remove a watch record; True if one existed."""

    @abc.abstractmethod
    def list_watchers(self, entity_type: str, entity_id: str) -> list[EntityWatcher]:
        """List an entity's watchers."""
