"""SQLiteStore — CollaborationStore backed by a local SQLite database."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Sequence

from pydantic import BaseModel

from crmcollab.collaboration.models import (
    ActivityLogEntry,
    Comment,
    EntityWatcher,
    Mention,
    Notification,
    NotificationType,
)
from crmcollab.collaboration.stores.base import CollaborationStore, StoreError

logger = logging.getLogger(__name__)

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS comments (
    id           TEXT PRIMARY KEY,
    entity_type  TEXT    NOT NULL,
    entity_id    TEXT    NOT NULL,
    author_id    TEXT    NOT NULL DEFAULT '',
    author_name  TEXT    NOT NULL DEFAULT '',
    content      TEXT    NOT NULL,
    content_html TEXT    NOT NULL DEFAULT '',
    parent_id    TEXT,
    thread_depth INTEGER NOT NULL DEFAULT 0,
    is_internal  INTEGER NOT NULL DEFAULT 0,
    is_pinned    INTEGER NOT NULL DEFAULT 0,
    is_edited    INTEGER NOT NULL DEFAULT 0,
    created_at   TEXT    NOT NULL,
    updated_at   TEXT    NOT NULL,
    deleted_at   TEXT
);
CREATE INDEX IF NOT EXISTS idx_comments_entity ON comments (entity_type, entity_id);

CREATE TABLE IF NOT EXISTS mentions (
    id                TEXT PRIMARY KEY,
    comment_id        TEXT    NOT NULL,
    entity_type       TEXT    NOT NULL,
    entity_id         TEXT    NOT NULL,
    mentioned_user_id TEXT    NOT NULL,
    mentioned_by_id   TEXT    NOT NULL,
    mention_context   TEXT    NOT NULL DEFAULT '',
    is_read           INTEGER NOT NULL DEFAULT 0,
    read_at           TEXT,
    created_at        TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS notifications (
    id          TEXT PRIMARY KEY,
    user_id     TEXT    NOT NULL,
    type        TEXT    NOT NULL,
    entity_type TEXT,
    entity_id   TEXT,
    comment_id  TEXT,
    mention_id  TEXT,
    actor_id    TEXT,
    actor_name  TEXT,
    title       TEXT    NOT NULL,
    message     TEXT    NOT NULL DEFAULT '',
    action_url  TEXT    NOT NULL DEFAULT '/',
    priority    TEXT    NOT NULL DEFAULT 'normal',
    is_read     INTEGER NOT NULL DEFAULT 0,
    read_at     TEXT,
    is_archived INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS activity_log (
    id          TEXT PRIMARY KEY,
    entity_type TEXT    NOT NULL,
    entity_id   TEXT    NOT NULL,
    action      TEXT    NOT NULL,
    actor_id    TEXT    NOT NULL DEFAULT '',
    actor_name  TEXT    NOT NULL DEFAULT '',
    description TEXT    NOT NULL DEFAULT '',
    changes     TEXT    NOT NULL DEFAULT '{}',
    metadata    TEXT    NOT NULL DEFAULT '{}',
    comment_id  TEXT,
    is_internal INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT    NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_activity_entity ON activity_log (entity_type, entity_id);

CREATE TABLE IF NOT EXISTS entity_watchers (
    id          TEXT PRIMARY KEY,
    entity_type TEXT NOT NULL,
    entity_id   TEXT NOT NULL,
    user_id     TEXT NOT NULL,
    watch_level TEXT NOT NULL DEFAULT 'all',
    created_at  TEXT NOT NULL,
    UNIQUE (entity_type, entity_id, user_id)
);
"""

_JSON_COLUMNS = frozenset({"changes", "metadata"})

_NEWEST_FIRST = "ORDER BY created_at DESC, rowid DESC"


# Dates inside JSON columns are stored as single-key tagged objects so they
# come back as dates rather than ISO strings.
_DATETIME_TAG = "$datetime"
_DATE_TAG = "$date"


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return {_DATETIME_TAG: value.isoformat()}
    if isinstance(value, date):
        return {_DATE_TAG: value.isoformat()}
    if isinstance(value, BaseModel):
        return value.model_dump()
    raise TypeError(f"Cannot serialise {type(value).__name__}")


def _json_object_hook(obj: dict[str, Any]) -> Any:
    if len(obj) == 1:
        if _DATETIME_TAG in obj:
            return datetime.fromisoformat(obj[_DATETIME_TAG])
        if _DATE_TAG in obj:
            return date.fromisoformat(obj[_DATE_TAG])
    return obj


def _encode(value: Any) -> Any:
    """Convert a Python value to its column representation."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=_json_default)
    return value


def _decode(row: sqlite3.Row) -> dict[str, Any]:
    data = dict(row)
    for column in _JSON_COLUMNS & data.keys():
        data[column] = json.loads(data[column] or "{}", object_hook=_json_object_hook)
    return data


class SQLiteStore(CollaborationStore):
    """Collaboration records stored in SQLite.

    Parameters
    ----------
    db_path:
        Path to the SQLite file.  Defaults to ``':memory:'``.
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        super().__init__()
        self._db_path = str(db_path)
        self._conn = sqlite3.connect(self._db_path)
        self._conn.row_factory = sqlite3.Row
        if self._db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            cur = self._conn.execute(sql, params)
            self._conn.commit()
            return cur
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise StoreError(str(exc)) from exc

    def _query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        try:
            rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        return [_decode(r) for r in rows]

    def _insert(self, table: str, record: BaseModel, exclude: set[str] | None = None) -> None:
        data = record.model_dump(exclude=exclude)
        columns = ", ".join(data)
        placeholders = ", ".join("?" for _ in data)
        self._execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
            [_encode(v) for v in data.values()],
        )

    def _update(
        self,
        table: str,
        fields: dict[str, Any],
        clauses: list[str],
        params: list[Any],
    ) -> int:
        if not fields:
            return 0
        assignments = ", ".join(f"{name} = ?" for name in fields)
        values = [_encode(v) for v in fields.values()]
        cur = self._execute(
            f"UPDATE {table} SET {assignments} WHERE " + " AND ".join(clauses),
            values + params,
        )
        return cur.rowcount

    @staticmethod
    def _page(limit: Optional[int], offset: int) -> tuple[str, list[Any]]:
        return " LIMIT ? OFFSET ?", [-1 if limit is None else limit, max(offset, 0)]

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def insert_comment(self, comment: Comment) -> Comment:
        stored = comment.model_copy(update={"replies": []})
        self._insert("comments", stored, exclude={"replies"})
        logger.info("Stored comment %s on %s/%s", stored.id, stored.entity_type, stored.entity_id)
        self._publish("comments", stored)
        return stored

    def get_comment(self, comment_id: str) -> Optional[Comment]:
        rows = self._query("SELECT * FROM comments WHERE id = ?", [comment_id])
        return Comment.model_validate(rows[0]) if rows else None

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
        sql = "SELECT * FROM comments WHERE entity_type = ? AND entity_id = ?"
        params: list[Any] = [entity_type, entity_id]
        if not include_replies:
            sql += " AND parent_id IS NULL"
        if not include_deleted:
            sql += " AND deleted_at IS NULL"
        page_sql, page_params = self._page(limit, offset)
        rows = self._query(f"{sql} {_NEWEST_FIRST}{page_sql}", params + page_params)
        return [Comment.model_validate(r) for r in rows]

    def update_comment(self, comment_id: str, fields: dict[str, Any]) -> Optional[Comment]:
        fields = {k: v for k, v in fields.items() if k not in ("id", "replies")}
        self._update("comments", fields, ["id = ?"], [comment_id])
        return self.get_comment(comment_id)

    # ------------------------------------------------------------------
    # Mentions
    # ------------------------------------------------------------------

    def insert_mention(self, mention: Mention) -> Mention:
        self._insert("mentions", mention)
        self._publish("mentions", mention)
        return mention

    def list_mentions(
        self,
        user_id: str,
        *,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Mention]:
        sql = "SELECT * FROM mentions WHERE mentioned_user_id = ?"
        if unread_only:
            sql += " AND is_read = 0"
        page_sql, page_params = self._page(limit, offset)
        rows = self._query(f"{sql} {_NEWEST_FIRST}{page_sql}", [user_id] + page_params)
        return [Mention.model_validate(r) for r in rows]

    def mark_mentions_read(
        self,
        *,
        mention_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> int:
        fields = {"is_read": True, "read_at": datetime.now(timezone.utc)}
        if mention_id is not None:
            return self._update("mentions", fields, ["id = ?"], [mention_id])
        if user_id is not None:
            return self._update(
                "mentions", fields, ["mentioned_user_id = ?", "is_read = 0"], [user_id],
            )
        raise StoreError("mark_mentions_read needs a mention_id or a user_id")

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def insert_notification(self, notification: Notification) -> Notification:
        self._insert("notifications", notification)
        self._publish("notifications", notification)
        return notification

    def list_notifications(
        self,
        user_id: str,
        *,
        unread_only: bool = False,
        types: Optional[Sequence[NotificationType]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Notification]:
        sql = "SELECT * FROM notifications WHERE user_id = ? AND is_archived = 0"
        params: list[Any] = [user_id]
        if unread_only:
            sql += " AND is_read = 0"
        if types:
            sql += f" AND type IN ({', '.join('?' for _ in types)})"
            params.extend(_encode(t) for t in types)
        page_sql, page_params = self._page(limit, offset)
        rows = self._query(f"{sql} {_NEWEST_FIRST}{page_sql}", params + page_params)
        return [Notification.model_validate(r) for r in rows]

    def count_unread_notifications(self, user_id: str) -> int:
        try:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM notifications "
                "WHERE user_id = ? AND is_read = 0 AND is_archived = 0",
                [user_id],
            ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        return int(row[0])

    def update_notifications(
        self,
        fields: dict[str, Any],
        *,
        notification_id: Optional[str] = None,
        user_id: Optional[str] = None,
        unread_only: bool = False,
    ) -> int:
        clauses: list[str] = []
        params: list[Any] = []
        if notification_id is not None:
            clauses.append("id = ?")
            params.append(notification_id)
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if not clauses:
            raise StoreError("update_notifications needs a notification_id or a user_id")
        if unread_only:
            clauses.append("is_read = 0")
        return self._update("notifications", fields, clauses, params)

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------

    def insert_activity(self, entry: ActivityLogEntry) -> ActivityLogEntry:
        self._insert("activity_log", entry)
        self._publish("activity_log", entry)
        return entry

    def list_activity(
        self,
        entity_type: str,
        entity_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        include_internal: bool = True,
    ) -> list[ActivityLogEntry]:
        sql = "SELECT * FROM activity_log WHERE entity_type = ? AND entity_id = ?"
        if not include_internal:
            sql += " AND is_internal = 0"
        page_sql, page_params = self._page(limit, offset)
        rows = self._query(
            f"{sql} {_NEWEST_FIRST}{page_sql}", [entity_type, entity_id] + page_params,
        )
        return [ActivityLogEntry.model_validate(r) for r in rows]

    # ------------------------------------------------------------------
    # Watchers
    # ------------------------------------------------------------------

    def upsert_watcher(self, watcher: EntityWatcher) -> EntityWatcher:
        self._execute(
            "INSERT INTO entity_watchers "
            "(id, entity_type, entity_id, user_id, watch_level, created_at) "
            "VALUES (?,?,?,?,?,?) "
            "ON CONFLICT (entity_type, entity_id, user_id) "
            "DO UPDATE SET watch_level = excluded.watch_level",
            [
                watcher.id, watcher.entity_type, watcher.entity_id, watcher.user_id,
                _encode(watcher.watch_level), _encode(watcher.created_at),
            ],
        )
        rows = self._query(
            "SELECT * FROM entity_watchers WHERE entity_type = ? AND entity_id = ? AND user_id = ?",
            [watcher.entity_type, watcher.entity_id, watcher.user_id],
        )
        return EntityWatcher.model_validate(rows[0])

    def delete_watcher(self, entity_type: str, entity_id: str, user_id: str) -> bool:
        cur = self._execute(
            "DELETE FROM entity_watchers WHERE entity_type = ? AND entity_id = ? AND user_id = ?",
            [entity_type, entity_id, user_id],
        )
        return cur.rowcount > 0

    def list_watchers(self, entity_type: str, entity_id: str) -> list[EntityWatcher]:
        rows = self._query(
            "SELECT * FROM entity_watchers WHERE entity_type = ? AND entity_id = ? "
            "ORDER BY created_at, rowid",
            [entity_type, entity_id],
        )
        return [EntityWatcher.model_validate(r) for r in rows]

    def close(self) -> None:
        self._conn.close()
