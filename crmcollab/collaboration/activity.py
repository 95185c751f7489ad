"""ActivityFeed — paginated, filterable activity timeline for one entity."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from crmcollab.config import COMPACT_ACTIVITY_LIMIT, DEFAULT_ACTIVITY_PAGE_SIZE
from crmcollab.collaboration.formatting import format_relative_time, render_changes
from crmcollab.collaboration.models import ActivityAction, ActivityLogEntry
from crmcollab.collaboration.service import CollaborationService
from crmcollab.config_manager import CollabSettings

logger = logging.getLogger(__name__)


class ActivityFeed:
    """Accumulates pages of an entity's activity log.

    ``offset`` advances by the number of entries the store returned, before
    any filtering. ``has_more`` is only a page-end guess: it is true when the
    last page came back full, so the final "load more" may legitimately
    return nothing.

    Parameters
    ----------
    service:
        Source of activity pages.
    entity_type, entity_id:
        The entity whose log is shown.
    limit:
        Page size.
    include_internal:
        Whether internal-only entries are shown.
    """

    def __init__(
        self,
        service: CollaborationService,
        entity_type: str,
        entity_id: str,
        limit: int = DEFAULT_ACTIVITY_PAGE_SIZE,
        *,
        include_internal: bool = True,
    ) -> None:
        self.service = service
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.limit = limit
        self.include_internal = include_internal

        self.entries: list[ActivityLogEntry] = []
        self.offset = 0
        self.has_more = True
        self.is_loading = False
        self.selected_actions: frozenset[ActivityAction] = frozenset()

    @classmethod
    def from_settings(
        cls,
        service: CollaborationService,
        settings: CollabSettings,
        entity_type: str,
        entity_id: str,
        *,
        include_internal: bool = True,
    ) -> ActivityFeed:
        """Feed paged by ``settings.activity_page_size``."""
        return cls(
            service, entity_type, entity_id, settings.activity_page_size,
            include_internal=include_internal,
        )

    def load(self, reset: bool = False) -> list[ActivityLogEntry]:
        """Fetch the next page (or the first one when *reset*).

        Returns the entries added by this call. Errors are logged and leave
        the accumulated entries as they were.
        """
        offset = 0 if reset else self.offset
        self.is_loading = True
        try:
            page = self.service.get_activity_log(
                self.entity_type,
                self.entity_id,
                limit=self.limit,
                offset=offset,
                include_internal=self.include_internal,
            )
        except Exception:
            logger.exception(
                "Error loading activity for %s/%s", self.entity_type, self.entity_id,
            )
            return []
        finally:
            self.is_loading = False

        visible = self._apply_filter(page)
        self.entries = visible if reset else self.entries + visible
        self.has_more = len(page) == self.limit
        self.offset = offset + len(page)
        return visible

    def load_more(self) -> list[ActivityLogEntry]:
        if not self.has_more:
            return []
        return self.load()

    def refresh(self) -> list[ActivityLogEntry]:
        return self.load(reset=True)

    # -- Filters --------------------------------------------------------------

    def toggle_filter(self, action: ActivityAction | str) -> None:
        action = ActivityAction(action)
        if action in self.selected_actions:
            self.set_filters(self.selected_actions - {action})
        else:
            self.set_filters(self.selected_actions | {action})

    def set_filters(self, actions: Iterable[ActivityAction | str]) -> None:
        """Replace the selected action set and reload from the first page."""
        self.selected_actions = frozenset(ActivityAction(a) for a in actions)
        self.refresh()

    def clear_filters(self) -> None:
        self.set_filters(())

    def _apply_filter(self, page: list[ActivityLogEntry]) -> list[ActivityLogEntry]:
        if not self.selected_actions:
            return list(page)
        return [e for e in page if e.action in self.selected_actions]

    # -- Presentation ---------------------------------------------------------

    def visible(self, count: int = COMPACT_ACTIVITY_LIMIT) -> tuple[list[ActivityLogEntry], int]:
        """First *count* entries and how many more are hidden (compact view)."""
        return self.entries[:count], max(len(self.entries) - count, 0)

    def describe(self, entry: ActivityLogEntry, now: Optional[datetime] = None) -> dict[str, object]:
        """Display fields for one timeline row."""
        return {
            "label": entry.action.label,
            "actor": entry.actor_name or "Someone",
            "description": entry.description,
            "when": format_relative_time(entry.created_at, now),
            "changes": render_changes(entry.changes),
        }
