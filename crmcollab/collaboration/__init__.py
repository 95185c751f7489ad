"""Collaboration Layer — threaded comments, mentions, notifications and activity."""

from crmcollab.collaboration.activity import ActivityFeed
from crmcollab.collaboration.models import (
    ActivityAction,
    ActivityLogEntry,
    CollaborationContext,
    Comment,
    CommentInput,
    EntityWatcher,
    FieldChange,
    Mention,
    MentionInsertion,
    MentionTrigger,
    Notification,
    NotificationPriority,
    NotificationType,
    ParsedMention,
    TeamMember,
    WatchLevel,
)
from crmcollab.collaboration.notifiers import (
    ConsoleNotifier,
    NotificationDispatcher,
    NotificationProvider,
    WebhookNotifier,
)
from crmcollab.collaboration.service import (
    CollaborationError,
    CollaborationService,
    CommentNotFoundError,
    NotCommentAuthorError,
)
from crmcollab.collaboration.stores import CollaborationStore, SQLiteStore, StoreError
from crmcollab.collaboration.thread import CommentState, CommentThread, MentionComposer
from crmcollab.collaboration.tree import DeletePolicy

__all__ = [
    "ActivityAction",
    "ActivityFeed",
    "ActivityLogEntry",
    "CollaborationContext",
    "CollaborationError",
    "CollaborationService",
    "CollaborationStore",
    "Comment",
    "CommentInput",
    "CommentNotFoundError",
    "CommentState",
    "CommentThread",
    "ConsoleNotifier",
    "DeletePolicy",
    "EntityWatcher",
    "FieldChange",
    "Mention",
    "MentionComposer",
    "MentionInsertion",
    "MentionTrigger",
    "NotCommentAuthorError",
    "Notification",
    "NotificationDispatcher",
    "NotificationPriority",
    "NotificationProvider",
    "NotificationType",
    "ParsedMention",
    "SQLiteStore",
    "StoreError",
    "TeamMember",
    "WatchLevel",
    "WebhookNotifier",
]
