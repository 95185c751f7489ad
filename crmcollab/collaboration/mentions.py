"""@mention parsing, suggestion, insertion and rendering.

Every function here runs on each keystroke of the comment box, so all of
them are pure and total: out-of-range cursor positions are clamped rather
than raised on.
"""

from __future__ import annotations

import html
import re
from typing import Iterable, Optional, Sequence

from crmcollab.config import (
    DEFAULT_SUGGESTION_LIMIT,
    MENTION_BASE_URL,
    MENTION_CLASS,
    MENTION_CONTEXT_LENGTH,
)
from crmcollab.collaboration.models import (
    MentionInsertion,
    MentionTrigger,
    ParsedMention,
    TeamMember,
)

# "@" + handle; not preceded by a word character, "." or "@" so e-mail
# addresses are left alone, and never ending in "." or "-" so trailing
# punctuation stays outside the token.
MENTION_REGEX = re.compile(r"(?<![\w.@])@([A-Za-z0-9_](?:[A-Za-z0-9_.\-]*[A-Za-z0-9_])?)")

_WHITESPACE = re.compile(r"\s")


def _clamp(position: int, text: str) -> int:
    return max(0, min(position, len(text)))


def parse_mentions(
    text: str,
    team_members: Optional[Sequence[TeamMember]] = None,
) -> list[ParsedMention]:
    """Find every mention token in *text*.

    When *team_members* is given each token is resolved against it and the
    resulting ``ParsedMention.user_id`` is set for matches.
    """
    mentions: list[ParsedMention] = []
    for match in MENTION_REGEX.finditer(text):
        username = match.group(1)
        member = find_team_member_by_mention(username, team_members) if team_members else None
        mentions.append(ParsedMention(
            username=username,
            start_index=match.start(),
            end_index=match.end(),
            user_id=member.id if member else None,
        ))
    return mentions


def find_team_member_by_mention(
    mention: str,
    team_members: Iterable[TeamMember],
) -> Optional[TeamMember]:
    """Resolve a mention handle to a roster member.

    A handle matches a member when it equals (case-insensitively) one of
    their name parts, their full name without spaces, their name as
    ``first.last``, or the local part of their e-mail address.
    """
    handle = mention.lower()
    for member in team_members:
        name = member.name.lower()
        parts = name.split()
        if handle in parts:
            return member
        if "".join(parts) == handle:
            return member
        if ".".join(parts) == handle:
            return member
        if member.email and member.email.split("@")[0].lower() == handle:
            return member
    return None


def extract_mentioned_user_ids(text: str, team_members: Sequence[TeamMember]) -> list[str]:
    """Return the ids of resolvable mentions, unique, in order of appearance."""
    seen: dict[str, None] = {}
    for mention in parse_mentions(text, team_members):
        if mention.user_id is not None:
            seen.setdefault(mention.user_id, None)
    return list(seen)


def render_mentions_as_html(
    content: str,
    team_members: Sequence[TeamMember],
    *,
    mention_class: str = MENTION_CLASS,
    link_mentions: bool = True,
    base_url: str = MENTION_BASE_URL,
) -> str:
    """Render raw comment text as display markup.

    The text is HTML-escaped, resolvable mentions become ``<a>`` (or
    ``<span>`` when *link_mentions* is false) elements carrying a
    ``data-user-id`` attribute, unresolvable tokens stay as plain text, and
    newlines become ``<br>``.

    Only raw content is a valid input; feeding rendered output back in
    escapes the markup a second time.
    """
    escaped = html.escape(content)

    def _replace(match: re.Match[str]) -> str:
        member = find_team_member_by_mention(match.group(1), team_members)
        if member is None:
            return match.group(0)
        label = f"@{html.escape(member.name)}"
        member_id = html.escape(member.id)
        if link_mentions:
            return (
                f'<a href="{base_url}{member_id}" class="{mention_class}" '
                f'data-user-id="{member_id}">{label}</a>'
            )
        return f'<span class="{mention_class}" data-user-id="{member_id}">{label}</span>'

    rendered = MENTION_REGEX.sub(_replace, escaped)
    return rendered.replace("\n", "<br>")


def get_mention_suggestions(
    query: str,
    team_members: Sequence[TeamMember],
    limit: int = DEFAULT_SUGGESTION_LIMIT,
    exclude_ids: Optional[Iterable[str]] = None,
) -> list[TeamMember]:
    """Rank roster members for a partial mention *query*.

    Members whose name or e-mail contains the query (case-insensitive) are
    kept, minus *exclude_ids*. Name-prefix matches come first, then
    alphabetical by name.
    """
    needle = query.lower().replace("@", "")
    excluded = set(exclude_ids or ())

    candidates = [
        m for m in team_members
        if m.id not in excluded
        and (needle in m.name.lower() or (m.email and needle in m.email.lower()))
    ]
    candidates.sort(key=lambda m: (not m.name.lower().startswith(needle), m.name.lower()))
    return candidates[:max(limit, 0)]


def insert_mention(
    text: str,
    cursor_position: int,
    member: TeamMember,
    trigger_start: int,
) -> MentionInsertion:
    """Replace the open trigger span with ``@<first name> ``."""
    cursor = _clamp(cursor_position, text)
    start = min(_clamp(trigger_start, text), cursor)

    token = f"@{format_mention_display(member, 'first')} "
    new_text = text[:start] + token + text[cursor:]
    return MentionInsertion(new_text=new_text, new_cursor_position=start + len(token))


def find_mention_trigger_position(text: str, cursor_position: int) -> Optional[MentionTrigger]:
    """Locate the ``@`` the user is currently typing a handle after.

    The ``@`` must be at the start of the text or follow whitespace, and no
    whitespace may sit between it and the cursor. Returns None when no
    trigger is open.
    """
    before = text[:_clamp(cursor_position, text)]
    at = before.rfind("@")
    if at == -1:
        return None

    if at > 0 and not before[at - 1].isspace():
        return None

    query = before[at + 1:]
    if _WHITESPACE.search(query):
        return None

    return MentionTrigger(start=at, query=query)


def strip_mentions(text: str) -> str:
    """Drop the ``@`` from every mention token (for plain-text previews)."""
    return MENTION_REGEX.sub(lambda m: m.group(1), text)


def count_mentions(text: str) -> int:
    return sum(1 for _ in MENTION_REGEX.finditer(text))


def get_mention_context(
    text: str,
    mention_index: int,
    context_length: int = MENTION_CONTEXT_LENGTH,
) -> str:
    """Return the text around *mention_index*, with ``...`` where it was cut."""
    start = max(0, mention_index - context_length)
    end = min(len(text), mention_index + context_length)

    context = text[start:end]
    if start > 0:
        context = "..." + context
    if end < len(text):
        context = context + "..."
    return context.strip()


def format_mention_display(member: TeamMember, style: str = "full") -> str:
    """Format a member for display: ``full``, ``first`` or ``username``."""
    first = member.name.split(" ")[0] if member.name else ""
    if style == "first":
        return first
    if style == "username":
        if member.email:
            return member.email.split("@")[0]
        return first.lower()
    return member.name
