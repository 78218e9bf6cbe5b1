"""
Optimistic Mutation Layer.

This module applies user-initiated writes against the data gateway and
returns the result the caller needs to move its local state forward.

Key Components:
- `LikeService`: Like toggling. One toggle per (viewer, item) may be in flight;
  a second call for the same pair is ignored until the first completes. The
  like row is the source of truth; the item's `like_count` is adjusted by the
  atomic counter procedures, with a manual read-modify-write (clamped at zero)
  when a procedure fails.
- `ContentService`: Owner-only edit and delete of content items, plus
  persisted comments.
- `EditSession`: The single edit buffer of one viewer session, moving
  `VIEWING -> EDITING -> SAVING -> VIEWING`. A failed save goes back to
  `EDITING` with `error` set and the buffer untouched.

Error Handling:
- Primary mutations (like row insert/delete, edit, delete, comment) raise
  `PinPromptException` subclasses to the caller.
- Counter fallback failures are logged only.
- Notification side effects are best-effort and never affect the mutation.
"""

import logging
from enum import Enum
from typing import List, Optional, Set, Tuple

from core.config import settings
from core.content import (
    NotificationKind,
    accept_words,
    combine_body,
    ensure_word_limit,
    normalize_category,
    parse_body,
)
from core.exceptions import (
    ContentNotFoundError,
    GatewayError,
    PermissionDeniedError,
    PinPromptException,
    ValidationError,
)
from core.models import CommentView, ContentItem, FeedItem, LikeResult, Profile
from providers.gateway import DataGateway
from services.notification_service import notify

logger = logging.getLogger(__name__)


class LikeService:
    """Like toggling with a per-(viewer, item) in-flight guard"""

    def __init__(self, gateway: DataGateway):
        self.gateway = gateway
        self.in_flight: Set[Tuple[str, str]] = set()

    def is_in_flight(self, viewer_id: str, item_id: str) -> bool:
        return (viewer_id, item_id) in self.in_flight

    async def toggle_like(
        self,
        viewer: Profile,
        item_id: str,
        currently_liked: bool,
        owner_id: Optional[str] = None,
    ) -> Optional[LikeResult]:
        """
        Like or unlike an item.

        Returns None when a toggle for the same pair is already running,
        otherwise the new like state and the count delta to apply locally.
        """
        key = (viewer.id, item_id)
        if key in self.in_flight:
            logger.info(f"Ignoring like toggle on {item_id}, one is already in flight")
            return None

        self.in_flight.add(key)
        try:
            if currently_liked:
                return await self._unlike(viewer, item_id)
            return await self._like(viewer, item_id, owner_id)
        except PinPromptException as e:
            logger.error(f"Like toggle on {item_id} by {viewer.id} failed: {e.message}")
            raise
        finally:
            self.in_flight.discard(key)

    async def _like(self, viewer: Profile, item_id: str, owner_id: Optional[str]) -> LikeResult:
        await self.gateway.table("likes").insert([{"user_id": viewer.id, "item_id": item_id}])
        await self._adjust_count(item_id, "increment_like_count", 1)

        if owner_id and owner_id != viewer.id:
            await notify(
                self.gateway,
                recipient=owner_id,
                kind=NotificationKind.LIKE,
                title="New Like",
                body=f"{viewer.username} liked your post",
                related_id=item_id,
            )
        return LikeResult(item_id=item_id, liked=True, like_delta=1)

    async def _unlike(self, viewer: Profile, item_id: str) -> LikeResult:
        removed = await (
            self.gateway.table("likes").eq("user_id", viewer.id).eq("item_id", item_id).delete()
        )
        if removed == 0:
            # Nothing to undo, so the counter stays where it is
            logger.info(f"No like row for {viewer.id} on {item_id}")
            return LikeResult(item_id=item_id, liked=False, like_delta=0)

        await self._adjust_count(item_id, "decrement_like_count", -1)
        return LikeResult(item_id=item_id, liked=False, like_delta=-1)

    async def _adjust_count(self, item_id: str, procedure: str, delta: int) -> None:
        try:
            await self.gateway.rpc(procedure, {"item_id": item_id})
            return
        except GatewayError as e:
            logger.warning(f"{procedure} failed, updating like count manually: {e.message}")

        try:
            item = await self.gateway.table("content_items").eq("id", item_id).first()
            if item is None:
                raise ContentNotFoundError(item_id)
            await self.gateway.table("content_items").eq("id", item_id).update(
                {"like_count": max(item.like_count + delta, 0)}
            )
        except PinPromptException as e:
            logger.error(f"Manual like count update for {item_id} failed: {e.message}")


class ContentService:
    """Owner edits, deletes and comments on content items"""

    def __init__(self, gateway: DataGateway, word_limit: Optional[int] = None):
        self.gateway = gateway
        self.word_limit = word_limit or settings.edit_word_limit

    async def get_item(self, item_id: str) -> ContentItem:
        item = await self.gateway.table("content_items").eq("id", item_id).first()
        if item is None:
            raise ContentNotFoundError(item_id)
        return item

    async def _owned_item(self, viewer: Profile, item_id: str) -> ContentItem:
        item = await self.get_item(item_id)
        if item.user_id != viewer.id:
            raise PermissionDeniedError("content item", item_id)
        return item

    async def edit_item(
        self,
        viewer: Profile,
        item_id: str,
        reflection: str,
        generation: str,
        category: Optional[str] = None,
    ) -> ContentItem:
        ensure_word_limit("reflection", reflection, self.word_limit)
        ensure_word_limit("generation", generation, self.word_limit)
        body = combine_body(reflection, generation)
        if not parse_body(body)[1]:
            raise ValidationError("generation", generation, "Prompt must not be empty")
        category = normalize_category(category)

        await self._owned_item(viewer, item_id)
        rows = await self.gateway.table("content_items").eq("id", item_id).update(
            {"body": body, "category": category}
        )
        if not rows:
            raise ContentNotFoundError(item_id)

        logger.info(f"Content item {item_id} edited by {viewer.id}")
        return rows[0]

    async def delete_item(self, viewer: Profile, item_id: str) -> None:
        await self._owned_item(viewer, item_id)
        await self.gateway.table("content_items").eq("id", item_id).delete()
        logger.info(f"Content item {item_id} deleted by {viewer.id}")

    async def add_comment(self, viewer: Profile, item_id: str, body: str) -> CommentView:
        text = (body or "").strip()
        if not text:
            raise ValidationError("body", body, "Comment must not be empty")
        ensure_word_limit("body", text, self.word_limit)

        item = await self.get_item(item_id)
        rows = await self.gateway.table("comments").insert(
            [{"user_id": viewer.id, "item_id": item_id, "body": text}]
        )

        if item.user_id != viewer.id:
            await notify(
                self.gateway,
                recipient=item.user_id,
                kind=NotificationKind.COMMENT,
                title="New Comment",
                body=f"{viewer.username} commented on your post",
                related_id=item_id,
            )
        return CommentView.from_row(rows[0], author=viewer)

    async def list_comments(self, item_id: str) -> List[CommentView]:
        rows = await self.gateway.table("comments").eq("item_id", item_id).order("created_at").select()
        return [CommentView.from_row(row) for row in rows]


class EditState(str, Enum):
    VIEWING = "viewing"
    EDITING = "editing"
    SAVING = "saving"


class EditSession:
    """The one edit buffer a viewer session owns"""

    def __init__(
        self, content_service: ContentService, viewer: Profile, word_limit: Optional[int] = None
    ):
        self.content_service = content_service
        self.viewer = viewer
        self.word_limit = word_limit or content_service.word_limit
        self._reset()

    def _reset(self) -> None:
        self.state = EditState.VIEWING
        self.item: Optional[FeedItem] = None
        self.reflection = ""
        self.generation = ""
        self.category: Optional[str] = None
        self.error: Optional[str] = None

    @property
    def item_id(self) -> Optional[str]:
        return self.item.id if self.item else None

    def start(self, item: FeedItem) -> None:
        """Load an item into the buffer, replacing whatever was being edited"""
        if self.state == EditState.SAVING:
            raise ValidationError("edit", self.item_id, "A save is in progress")
        self._reset()
        self.item = item
        self.reflection, self.generation = parse_body(item.body)
        self.category = item.category
        self.state = EditState.EDITING

    def update(
        self,
        reflection: Optional[str] = None,
        generation: Optional[str] = None,
        category: Optional[str] = None,
    ) -> bool:
        """Apply buffer changes. Text over the word limit is refused; returns
        False when any part was refused."""
        if self.state != EditState.EDITING:
            raise ValidationError("edit", self.state.value, "No item is being edited")

        accepted = True
        if reflection is not None:
            self.reflection = accept_words(self.reflection, reflection, self.word_limit)
            accepted = accepted and self.reflection == reflection
        if generation is not None:
            self.generation = accept_words(self.generation, generation, self.word_limit)
            accepted = accepted and self.generation == generation
        if category is not None:
            self.category = category
        return accepted

    async def save(self) -> Optional[FeedItem]:
        """Persist the buffer. Returns the updated item, or None on failure."""
        if self.state != EditState.EDITING:
            return None

        self.state = EditState.SAVING
        self.error = None
        try:
            row = await self.content_service.edit_item(
                self.viewer, self.item.id, self.reflection, self.generation, self.category
            )
        except PinPromptException as e:
            logger.warning(f"Saving edit of {self.item.id} failed: {e.message}")
            self.state = EditState.EDITING
            self.error = e.message
            return None

        updated = self.item.with_body(row.body, row.category)
        self._reset()
        return updated

    def cancel(self) -> None:
        if self.state == EditState.SAVING:
            return
        self._reset()
