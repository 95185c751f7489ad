"""Pydantic models for the collaboration layer."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


class ActivityAction(str, Enum):
    """Kinds of entries recorded in an entity's activity log."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    COMMENTED = "commented"
    MENTIONED = "mentioned"
    ASSIGNED = "assigned"
    UNASSIGNED = "unassigned"
    STATUS_CHANGED = "status_changed"
    PRIORITY_CHANGED = "priority_changed"
    DUE_DATE_CHANGED = "due_date_changed"
    COMPLETED = "completed"
    REOPENED = "reopened"
    ARCHIVED = "archived"
    RESTORED = "restored"
    PINNED = "pinned"
    UNPINNED = "unpinned"
    WATCHED = "watched"
    UNWATCHED = "unwatched"

    @property
    def label(self) -> str:
        return _ACTION_LABELS[self]


_ACTION_LABELS: dict[ActivityAction, str] = {
    ActivityAction.CREATED: "Created",
    ActivityAction.UPDATED: "Updated",
    ActivityAction.DELETED: "Deleted",
    ActivityAction.COMMENTED: "Commented",
    ActivityAction.MENTIONED: "Mentioned",
    ActivityAction.ASSIGNED: "Assigned",
    ActivityAction.UNASSIGNED: "Unassigned",
    ActivityAction.STATUS_CHANGED: "Status Changed",
    ActivityAction.PRIORITY_CHANGED: "Priority Changed",
    ActivityAction.DUE_DATE_CHANGED: "Due Date Changed",
    ActivityAction.COMPLETED: "Completed",
    ActivityAction.REOPENED: "Reopened",
    ActivityAction.ARCHIVED: "Archived",
    ActivityAction.RESTORED: "Restored",
    ActivityAction.PINNED: "Pinned",
    ActivityAction.UNPINNED: "Unpinned",
    ActivityAction.WATCHED: "Started Watching",
    ActivityAction.UNWATCHED: "Stopped Watching",
}


class NotificationType(str, Enum):
    MENTION = "mention"
    COMMENT = "comment"
    REPLY = "reply"
    ASSIGNMENT = "assignment"
    STATUS_CHANGE = "status_change"
    DUE_DATE = "due_date"
    SYSTEM = "system"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class WatchLevel(str, Enum):
    """How much of an entity's traffic a watcher is notified about."""

    ALL = "all"
    MENTIONS = "mentions"
    STATUS_ONLY = "status_only"
    NONE = "none"


class TeamMember(BaseModel):
    """A roster entry. Owned by the hosting application, never mutated here."""

    id: str
    name: str
    email: str = ""
    role: str = ""


class Comment(BaseModel):
    """An entity-level threaded comment.

    ``replies`` holds child comments whose ``parent_id`` equals this
    comment's ``id``. Comments are treated as immutable values; tree
    operations return new instances via ``model_copy``.
    """

    id: str = Field(default_factory=_new_id)
    entity_type: str
    entity_id: str
    author_id: str = ""
    author_name: str = ""
    content: str
    content_html: str = ""
    parent_id: Optional[str] = None
    thread_depth: int = 0
    is_internal: bool = False
    is_pinned: bool = False
    is_edited: bool = False
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    deleted_at: Optional[datetime] = None
    replies: list[Comment] = Field(default_factory=list)

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


class CommentInput(BaseModel):
    """Payload submitted when creating a comment."""

    entity_type: str
    entity_id: str
    content: str
    parent_id: Optional[str] = None
    is_internal: bool = False


ChangeValue = Union[None, bool, int, float, datetime, date, str, dict[str, Any], list[Any]]


class FieldChange(BaseModel):
    """Old/new pair for one changed field."""

    old: ChangeValue = None
    new: ChangeValue = None


class ActivityLogEntry(BaseModel):
    """An immutable, timestamped action record for an entity."""

    id: str = Field(default_factory=_new_id)
    entity_type: str
    entity_id: str
    action: ActivityAction
    actor_id: str = ""
    actor_name: str = ""
    description: str = ""
    changes: dict[str, FieldChange] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    comment_id: Optional[str] = None
    is_internal: bool = False
    created_at: datetime = Field(default_factory=_utc_now)


class Mention(BaseModel):
    id: str = Field(default_factory=_new_id)
    comment_id: str
    entity_type: str
    entity_id: str
    mentioned_user_id: str
    mentioned_by_id: str
    mention_context: str = ""
    is_read: bool = False
    read_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utc_now)


class Notification(BaseModel):
    """An in-app notification addressed to one user."""

    id: str = Field(default_factory=_new_id)
    user_id: str
    type: NotificationType
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    comment_id: Optional[str] = None
    mention_id: Optional[str] = None
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None
    title: str
    message: str = ""
    action_url: str = "/"
    priority: NotificationPriority = NotificationPriority.NORMAL
    is_read: bool = False
    read_at: Optional[datetime] = None
    is_archived: bool = False
    created_at: datetime = Field(default_factory=_utc_now)


class EntityWatcher(BaseModel):
    id: str = Field(default_factory=_new_id)
    entity_type: str
    entity_id: str
    user_id: str
    watch_level: WatchLevel = WatchLevel.ALL
    created_at: datetime = Field(default_factory=_utc_now)


class CollaborationContext(BaseModel):
    """Everything a detail view needs about an entity's collaboration state."""

    entity_type: str
    entity_id: str
    comments: list[Comment] = Field(default_factory=list)
    comment_count: int = 0
    watchers: list[EntityWatcher] = Field(default_factory=list)
    watcher_count: int = 0
    recent_activity: list[ActivityLogEntry] = Field(default_factory=list)
    current_user_watching: Optional[EntityWatcher] = None


@dataclass(frozen=True)
class ParsedMention:
    """A mention token found in raw text."""

    username: str
    start_index: int
    end_index: int
    user_id: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.user_id is not None


@dataclass(frozen=True)
class MentionTrigger:
    """An open ``@`` trigger: its index and the query typed after it."""

    start: int
    query: str


@dataclass(frozen=True)
class MentionInsertion:
    new_text: str
    new_cursor_position: int
