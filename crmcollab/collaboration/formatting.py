"""Display formatting for timestamps and activity change sets."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from typing import Any, Mapping, Optional, Union

from crmcollab.collaboration.models import ActivityAction, FieldChange

Timestamp = Union[str, datetime]

NONE_TOKEN = "none"


def parse_timestamp(value: Timestamp) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed) or pass a datetime through.

    Naive values are taken to be UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'s' if count != 1 else ''} ago"


def format_relative_time(timestamp: Timestamp, now: Optional[datetime] = None) -> str:
    """Describe *timestamp* relative to *now* for the activity timeline.

    "Just now" under a minute, then minutes, hours and days up to a week;
    older entries show a calendar date (``Jan 5``, or ``Jan 5, 2023`` when
    the year differs from *now*'s).
    """
    moment = parse_timestamp(timestamp)
    current = parse_timestamp(now) if now is not None else datetime.now(timezone.utc)

    seconds = (current - moment).total_seconds()
    minutes = int(seconds // 60)
    hours = int(seconds // 3600)
    days = int(seconds // 86400)

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return _plural(minutes, "minute")
    if hours < 24:
        return _plural(hours, "hour")
    if days < 7:
        return _plural(days, "day")

    moment = moment.astimezone(timezone.utc)
    label = f"{moment.strftime('%b')} {moment.day}"
    if moment.year != current.astimezone(timezone.utc).year:
        label = f"{label}, {moment.year}"
    return label


def format_change_value(value: Any) -> str:
    """Format one side of a field change for display."""
    if value is None:
        return NONE_TOKEN
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, date):
        # datetime is a date subclass and lands here too
        return f"{value.month}/{value.day}/{value.year}"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def humanize_field(name: str) -> str:
    """``due_date`` -> ``Due date``."""
    words = name.replace("_", " ").strip()
    return words[:1].upper() + words[1:]


def render_changes(changes: Mapping[str, FieldChange]) -> list[str]:
    """Render a change set as ``Field: old → new`` lines, in key order."""
    return [
        f"{humanize_field(field)}: "
        f"{format_change_value(change.old)} → {format_change_value(change.new)}"
        for field, change in changes.items()
    ]


def action_label(action: Union[ActivityAction, str]) -> str:
    """Display label for an activity action ("Status Changed")."""
    try:
        return ActivityAction(action).label
    except ValueError:
        return humanize_field(str(action))
