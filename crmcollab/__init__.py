"""crmcollab — threaded comments, @mentions and activity logs for a non-profit CRM."""

__version__ = "1.0.0"

from crmcollab.collaboration.activity import ActivityFeed
from crmcollab.collaboration.models import (
    ActivityAction,
    ActivityLogEntry,
    Comment,
    CommentInput,
    TeamMember,
)
from crmcollab.collaboration.service import CollaborationService
from crmcollab.collaboration.stores import SQLiteStore
from crmcollab.collaboration.thread import CommentThread, MentionComposer
from crmcollab.collaboration.tree import DeletePolicy
from crmcollab.config_manager import CollabSettings, ConfigManager, configure_logging

__all__ = [
    "__version__",
    "ActivityAction",
    "ActivityFeed",
    "ActivityLogEntry",
    "CollabSettings",
    "CollaborationService",
    "Comment",
    "CommentInput",
    "CommentThread",
    "ConfigManager",
    "DeletePolicy",
    "MentionComposer",
    "SQLiteStore",
    "TeamMember",
    "configure_logging",
]
