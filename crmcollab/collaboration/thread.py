"""CommentThread — per-entity comment view state and the mention composer."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional, Sequence

from crmcollab.config import DEFAULT_MAX_DEPTH, DEFAULT_SUGGESTION_LIMIT
from crmcollab.collaboration.mentions import (
    find_mention_trigger_position,
    get_mention_suggestions,
    insert_mention,
    render_mentions_as_html,
)
from crmcollab.collaboration.models import Comment, CommentInput, MentionTrigger, TeamMember
from crmcollab.collaboration.service import CollaborationService, NotCommentAuthorError
from crmcollab.collaboration.stores.base import Unsubscribe
from crmcollab.collaboration.tree import (
    DeletePolicy,
    can_reply,
    count_comments,
    find_comment,
    merge_comment,
    remove_comment_from_tree,
    update_comment_in_tree,
)
from crmcollab.config_manager import CollabSettings

logger = logging.getLogger(__name__)


class CommentState(str, Enum):
    """UI state of a single comment; never persisted."""

    VIEWING = "viewing"
    EDITING = "editing"
    CONFIRMING_DELETE = "confirming_delete"


class CommentThread:
    """Comment forest and interaction state for one entity view.

    Every load is tagged with a generation number; a response is applied
    only if no newer load (or entity switch) has been issued since, so a
    slow reply for a previous entity never lands on the current one.

    Use as a context manager, or call :meth:`open` / :meth:`close`, so the
    real-time subscription is released when the view goes away.

    Parameters
    ----------
    service:
        The collaboration service used for reads and writes.
    entity_type, entity_id:
        The entity whose thread is shown.
    current_user:
        The signed-in member; authorship checks compare against it.
    team_members:
        Roster for mention rendering and suggestions.
    max_depth:
        Deepest level a reply may be added under (roots are 0).
    delete_policy:
        What happens to the replies of a deleted comment.
    """

    def __init__(
        self,
        service: CollaborationService,
        entity_type: str,
        entity_id: str,
        current_user: TeamMember,
        team_members: Sequence[TeamMember] = (),
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        delete_policy: DeletePolicy = DeletePolicy.CASCADE,
    ) -> None:
        self.service = service
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_user = current_user
        self.team_members = list(team_members)
        self.max_depth = max_depth
        self.delete_policy = delete_policy

        self.comments: list[Comment] = []
        self.is_loading = False
        self.is_submitting = False
        self.alert: Optional[str] = None

        self._generation = 0
        self._unsubscribe: Optional[Unsubscribe] = None
        self._states: dict[str, CommentState] = {}
        self._editing_id: Optional[str] = None
        self._edit_content = ""

    @classmethod
    def from_settings(
        cls,
        service: CollaborationService,
        settings: CollabSettings,
        entity_type: str,
        entity_id: str,
        current_user: TeamMember,
        team_members: Sequence[TeamMember] = (),
        *,
        delete_policy: DeletePolicy = DeletePolicy.CASCADE,
    ) -> CommentThread:
        """Thread view whose reply depth comes from *settings*."""
        return cls(
            service, entity_type, entity_id, current_user, team_members,
            max_depth=settings.max_depth, delete_policy=delete_policy,
        )

    # -- Lifecycle ------------------------------------------------------------

    def __enter__(self) -> CommentThread:
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._unsubscribe is not None

    def open(self) -> None:
        """Subscribe to pushed comments and load the thread."""
        if self._unsubscribe is None:
            self._unsubscribe = self.service.subscribe_to_comments(
                self.entity_type, self.entity_id, self._on_pushed_comment,
            )
        self.load()

    def close(self) -> None:
        """Drop the subscription; later pushes are ignored."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._generation += 1

    def switch_entity(self, entity_type: str, entity_id: str) -> None:
        """Point the view at another entity, discarding in-flight loads."""
        was_open = self.is_open
        self.close()
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.comments = []
        self._states.clear()
        self._editing_id = None
        self._edit_content = ""
        self.alert = None
        if was_open:
            self.open()

    # -- Loading --------------------------------------------------------------

    def begin_load(self) -> int:
        """Start a load and return its generation tag."""
        self._generation += 1
        self.is_loading = True
        return self._generation

    def apply_load(self, generation: int, comments: Sequence[Comment]) -> bool:
        """Install a load result if *generation* is still the latest one."""
        if generation != self._generation:
            logger.debug(
                "Discarding stale comments (generation %d, current %d)",
                generation, self._generation,
            )
            return False
        self.comments = list(comments)
        self.is_loading = False
        return True

    def load(self) -> None:
        """Fetch the thread. On failure the forest is left empty."""
        generation = self.begin_load()
        try:
            comments = self.service.get_threaded_comments(self.entity_type, self.entity_id)
        except Exception:
            logger.exception("Error loading comments for %s/%s", self.entity_type, self.entity_id)
            if generation == self._generation:
                self.comments = []
                self.is_loading = False
            return
        self.apply_load(generation, comments)

    def _on_pushed_comment(self, comment: Comment) -> None:
        if not self.is_open:
            return
        self.comments = merge_comment(self.comments, comment)

    # -- Queries --------------------------------------------------------------

    @property
    def comment_count(self) -> int:
        return count_comments(self.comments)

    def state_of(self, comment_id: str) -> CommentState:
        if comment_id == self._editing_id:
            return CommentState.EDITING
        return self._states.get(comment_id, CommentState.VIEWING)

    @property
    def editing_id(self) -> Optional[str]:
        """Id of the one comment whose edit buffer is open, if any."""
        return self._editing_id

    @property
    def edit_content(self) -> str:
        return self._edit_content

    def is_author(self, comment: Comment) -> bool:
        return comment.author_id == self.current_user.id

    def can_reply_to(self, comment_id: str) -> bool:
        return can_reply(self.comments, comment_id, self.max_depth)

    def rendered_html(self, comment: Comment) -> str:
        return comment.content_html or render_mentions_as_html(
            comment.content, self.team_members, base_url=self.service.mention_base_url,
        )

    # -- Writing --------------------------------------------------------------

    def submit(self, content: str, reply_to: Optional[str] = None) -> Optional[Comment]:
        """Post a new comment or reply.

        Blank content and replies below ``max_depth`` are refused. The
        created comment is merged by id, so the subscription echo of the
        same insert does not duplicate it.
        """
        text = content.strip()
        if not text or self.is_submitting:
            return None
        if reply_to is not None and not self.can_reply_to(reply_to):
            self.alert = "Replies cannot be nested any deeper."
            return None

        self.is_submitting = True
        try:
            created = self.service.create_comment(
                CommentInput(
                    entity_type=self.entity_type,
                    entity_id=self.entity_id,
                    content=text,
                    parent_id=reply_to,
                ),
                self.current_user,
                self.team_members,
            )
        except Exception:
            logger.exception("Error creating comment")
            self.alert = "Your comment could not be posted."
            return None
        finally:
            self.is_submitting = False

        self.comments = merge_comment(self.comments, created)
        return created

    def start_editing(self, comment_id: str) -> None:
        """Open the edit buffer on a comment; any other open edit is dropped."""
        comment = self._own_comment(comment_id)
        self._states.pop(comment_id, None)
        self._editing_id = comment_id
        self._edit_content = comment.content

    def set_edit_content(self, content: str) -> None:
        self._edit_content = content

    def cancel_edit(self, comment_id: str) -> None:
        if comment_id != self._editing_id:
            return
        self._editing_id = None
        self._edit_content = ""

    def save_edit(self, comment_id: str) -> Optional[Comment]:
        """Persist the edit buffer; the comment returns to viewing on success."""
        if self.state_of(comment_id) is not CommentState.EDITING:
            return None
        text = self._edit_content.strip()
        if not text or self.is_submitting:
            return None

        self.is_submitting = True
        try:
            updated = self.service.update_comment(
                comment_id, text, self.current_user, self.team_members,
            )
        except Exception:
            logger.exception("Error updating comment %s", comment_id)
            self.alert = "Your changes could not be saved."
            return None
        finally:
            self.is_submitting = False

        self.comments = update_comment_in_tree(self.comments, updated)
        self.cancel_edit(comment_id)
        return updated

    def request_delete(self, comment_id: str) -> None:
        self._own_comment(comment_id)
        self.cancel_edit(comment_id)
        self._states[comment_id] = CommentState.CONFIRMING_DELETE

    def cancel_delete(self, comment_id: str) -> None:
        self._states.pop(comment_id, None)

    def confirm_delete(self, comment_id: str) -> bool:
        """Delete after confirmation; on failure the forest is unchanged."""
        if self.state_of(comment_id) is not CommentState.CONFIRMING_DELETE:
            return False
        try:
            self.service.delete_comment(comment_id, self.current_user.id, self.delete_policy)
        except Exception:
            logger.exception("Error deleting comment %s", comment_id)
            self.alert = "The comment could not be deleted."
            self._states.pop(comment_id, None)
            return False

        self.comments = remove_comment_from_tree(self.comments, comment_id, self.delete_policy)
        self._states.pop(comment_id, None)
        return True

    def toggle_pin(self, comment_id: str) -> Optional[Comment]:
        comment = find_comment(self.comments, comment_id)
        if comment is None:
            return None
        pinned = not comment.is_pinned
        try:
            self.service.toggle_comment_pin(comment_id, pinned, self.current_user)
        except Exception:
            logger.exception("Error toggling pin on %s", comment_id)
            self.alert = "The comment could not be pinned."
            return None

        toggled = comment.model_copy(update={"is_pinned": pinned})
        self.comments = update_comment_in_tree(self.comments, toggled)
        return toggled

    def dismiss_alert(self) -> None:
        self.alert = None

    def _own_comment(self, comment_id: str) -> Comment:
        comment = find_comment(self.comments, comment_id)
        if comment is None:
            raise KeyError(comment_id)
        if not self.is_author(comment):
            raise NotCommentAuthorError(
                f"User '{self.current_user.id}' is not the author of comment '{comment_id}'."
            )
        return comment


class MentionComposer:
    """Text box state with live ``@mention`` suggestions.

    Parameters
    ----------
    team_members:
        Roster to suggest from.
    current_user_id:
        Excluded from suggestions.
    limit:
        Maximum suggestions shown.
    """

    def __init__(
        self,
        team_members: Sequence[TeamMember],
        current_user_id: Optional[str] = None,
        limit: int = DEFAULT_SUGGESTION_LIMIT,
    ) -> None:
        self.team_members = list(team_members)
        self.current_user_id = current_user_id
        self.limit = limit

        self.text = ""
        self.cursor = 0
        self.trigger: Optional[MentionTrigger] = None
        self.suggestions: list[TeamMember] = []
        self.selected_index = 0

    @classmethod
    def from_settings(
        cls,
        settings: CollabSettings,
        team_members: Sequence[TeamMember],
        current_user_id: Optional[str] = None,
    ) -> MentionComposer:
        return cls(team_members, current_user_id, limit=settings.suggestion_limit)

    def update(self, text: str, cursor_position: int) -> list[TeamMember]:
        """Record a keystroke and recompute the suggestion list."""
        self.text = text
        self.cursor = max(0, min(cursor_position, len(text)))
        self.trigger = find_mention_trigger_position(text, self.cursor)

        if self.trigger and self.trigger.query:
            exclude = [self.current_user_id] if self.current_user_id else []
            self.suggestions = get_mention_suggestions(
                self.trigger.query, self.team_members, self.limit, exclude,
            )
        else:
            self.suggestions = []
        self.selected_index = 0
        return self.suggestions

    def move_selection(self, step: int) -> int:
        """Move the highlighted suggestion, wrapping at both ends."""
        if self.suggestions:
            self.selected_index = (self.selected_index + step) % len(self.suggestions)
        return self.selected_index

    @property
    def selected(self) -> Optional[TeamMember]:
        if not self.suggestions:
            return None
        return self.suggestions[self.selected_index]

    def accept(self, member: Optional[TeamMember] = None) -> bool:
        """Insert *member* (default: the highlighted suggestion) at the trigger."""
        member = member or self.selected
        if member is None or self.trigger is None:
            return False
        inserted = insert_mention(self.text, self.cursor, member, self.trigger.start)
        self.text = inserted.new_text
        self.cursor = inserted.new_cursor_position
        self.dismiss()
        return True

    def dismiss(self) -> None:
        self.trigger = None
        self.suggestions = []
        self.selected_index = 0

    def clear(self) -> None:
        self.text = ""
        self.cursor = 0
        self.dismiss()
