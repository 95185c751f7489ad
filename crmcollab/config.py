"""Global configuration: limits, defaults, and display constants."""

# Deepest reply level the thread view offers a "Reply" action for
# (roots are depth 0).
DEFAULT_MAX_DEPTH = 2

# Number of mention candidates offered while typing after "@"
DEFAULT_SUGGESTION_LIMIT = 5

# Activity log page size
DEFAULT_ACTIVITY_PAGE_SIZE = 20

# Page size used by the service when listing comments
DEFAULT_COMMENT_PAGE_SIZE = 50

# Entries shown by the collaboration context's "recent activity" strip
RECENT_ACTIVITY_LIMIT = 10

# Entries shown by compact activity widgets before "+N more"
COMPACT_ACTIVITY_LIMIT = 5

# Where a resolved mention links to: f"{MENTION_BASE_URL}{member.id}"
MENTION_BASE_URL = "/team/"

MENTION_CLASS = "mention mention-matched"

# Characters of surrounding text kept around a mention in notifications
MENTION_CONTEXT_LENGTH = 50

# Notification message previews are cut to this many characters
NOTIFICATION_PREVIEW_LENGTH = 100

# Entity type -> in-app route for notification action links
ACTION_URL_TEMPLATES: dict[str, str] = {
    "task": "/tasks?id={entity_id}",
    "project": "/projects?id={entity_id}",
    "case": "/case?id={entity_id}",
    "client": "/contacts?id={entity_id}",
    "activity": "/activities?id={entity_id}",
}

WEBHOOK_TIMEOUT = 10  # seconds
