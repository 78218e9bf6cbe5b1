"""
Feed Query Engine and per-viewer Feed Controller.

`FeedQueryEngine` reads one page of content items for a viewer: filtered,
sorted, ranged, and annotated with the viewer's like state through a second
query on the likes table.

`FeedController` holds one viewer's live feed: the growing item list,
pagination flags and the current filters. Text filters are debounced; sort
changes and the initial load run immediately. Every first-page load bumps a
request epoch, and responses from an older epoch are dropped so a slow,
superseded search can never overwrite a newer one.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Set, Union

from core.config import settings
from core.content import SortMode
from core.debounce import Debouncer
from core.exceptions import ContentNotFoundError, PinPromptException, ValidationError
from core.models import CommentView, FeedItem, FeedPage, LikeResult, Profile
from providers.gateway import DataGateway, ilike
from services.mutation_service import ContentService, EditSession, LikeService

logger = logging.getLogger(__name__)


@dataclass
class FeedFilters:
    search: str = ""
    model_contains: str = ""
    sort: SortMode = SortMode.RECENT


class FeedQueryEngine:
    def __init__(self, gateway: DataGateway, page_size: Optional[int] = None):
        self.gateway = gateway
        self.page_size = page_size or settings.feed_page_size

    async def load_page(
        self, viewer_id: Optional[str], offset: int = 0, filters: Optional[FeedFilters] = None
    ) -> FeedPage:
        filters = filters or FeedFilters()
        query = self.gateway.table("content_items")

        search = filters.search.strip()
        if search:
            query.or_(ilike("body", search), ilike("category", search))
        model = filters.model_contains.strip()
        if model:
            query.ilike("model_label", model)

        sort = SortMode(filters.sort)
        if sort == SortMode.TRENDING:
            query.order("like_count", descending=True).order("created_at", descending=True)
        else:
            if sort == SortMode.FOLLOWING:
                logger.info("Sort mode 'following' has no follow filter, ordering by recent")
            query.order("created_at", descending=True)

        rows = await query.range(offset, offset + self.page_size - 1).select()
        liked = await self.liked_item_ids(viewer_id, [row.id for row in rows])

        items = [FeedItem.from_row(row, is_liked=row.id in liked) for row in rows]
        return FeedPage(items=items, has_more=len(items) == self.page_size, offset=offset)

    async def liked_item_ids(self, viewer_id: Optional[str], item_ids: Iterable[str]) -> Set[str]:
        item_ids = list(item_ids)
        if not viewer_id or not item_ids:
            return set()
        likes = await (
            self.gateway.table("likes").eq("user_id", viewer_id).in_("item_id", item_ids).select()
        )
        return {like.item_id for like in likes}


class FeedController:
    """One viewer's feed state"""

    def __init__(
        self,
        engine: FeedQueryEngine,
        viewer: Profile,
        like_service: LikeService,
        content_service: ContentService,
        debounce_seconds: Optional[float] = None,
        on_change: Optional[Callable[["FeedController"], Awaitable[Any]]] = None,
    ):
        self.engine = engine
        self.viewer = viewer
        self.like_service = like_service
        self.content_service = content_service
        self.on_change = on_change

        self.items: List[FeedItem] = []
        self.filters = FeedFilters()
        self.has_more = False
        self.loading = False
        self.loading_more = False
        self.error: Optional[str] = None
        self.epoch = 0

        if debounce_seconds is None:
            debounce_seconds = settings.search_debounce_seconds
        self._filter_debouncer = Debouncer(debounce_seconds, self.refresh)
        self.edit = EditSession(content_service, viewer)

    # Loading

    async def refresh(self) -> None:
        """Load the first page for the current filters"""
        self.epoch += 1
        epoch = self.epoch
        self.loading = True
        self.error = None

        try:
            page = await self.engine.load_page(self.viewer.id, 0, self.filters)
        except PinPromptException as e:
            logger.error(f"Feed load failed: {e.message}")
            if epoch == self.epoch:
                self.loading = False
                self.error = e.message
                await self._changed()
            return

        if epoch != self.epoch:
            logger.debug(f"Dropping stale feed page from epoch {epoch}")
            return

        self.items = list(page.items)
        self.has_more = page.has_more
        self.loading = False
        await self._changed()

    async def load_more(self) -> bool:
        if self.loading or self.loading_more or not self.has_more:
            return False

        epoch = self.epoch
        self.loading_more = True
        try:
            page = await self.engine.load_page(self.viewer.id, len(self.items), self.filters)
        except PinPromptException as e:
            logger.error(f"Loading more feed items failed: {e.message}")
            self.loading_more = False
            if epoch == self.epoch:
                self.error = e.message
                await self._changed()
            return False
        self.loading_more = False

        if epoch != self.epoch:
            return False

        self.items.extend(page.items)
        self.has_more = page.has_more
        await self._changed()
        return True

    async def on_scroll(self, viewport_bottom: float, document_height: float) -> bool:
        """Request the next page once the viewport reaches the bottom"""
        if viewport_bottom < document_height:
            return False
        return await self.load_more()

    # Filters

    def set_search_text(self, text: str) -> None:
        self.filters.search = text or ""
        self._filter_debouncer.trigger()

    def set_model_filter(self, text: str) -> None:
        self.filters.model_contains = text or ""
        self._filter_debouncer.trigger()

    async def set_sort(self, sort: Union[SortMode, str]) -> None:
        try:
            self.filters.sort = SortMode(sort)
        except ValueError:
            raise ValidationError("sort", sort, "Unknown sort mode")
        self._filter_debouncer.cancel()
        await self.refresh()

    @property
    def filter_pending(self) -> bool:
        return self._filter_debouncer.pending

    # Local list

    def find(self, item_id: str) -> Optional[FeedItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def _replace(self, updated: FeedItem) -> None:
        self.items = [updated if item.id == updated.id else item for item in self.items]

    def _require(self, item_id: str) -> FeedItem:
        item = self.find(item_id)
        if item is None:
            raise ContentNotFoundError(item_id)
        return item

    # Mutations

    async def toggle_like(self, item_id: str) -> Optional[LikeResult]:
        item = self._require(item_id)
        try:
            result = await self.like_service.toggle_like(
                self.viewer, item_id, item.is_liked, item.user_id
            )
        except PinPromptException as e:
            self.error = e.message
            await self._changed()
            return None
        if result is None:
            return None

        current = self.find(item_id)
        if current is not None:
            self._replace(
                current.model_copy(
                    update={
                        "is_liked": result.liked,
                        "like_count": max(current.like_count + result.like_delta, 0),
                    }
                )
            )
        await self._changed()
        return result

    async def add_comment(self, item_id: str, body: str) -> Optional[CommentView]:
        self._require(item_id)
        try:
            comment = await self.content_service.add_comment(self.viewer, item_id, body)
        except PinPromptException as e:
            self.error = e.message
            await self._changed()
            return None

        current = self.find(item_id)
        if current is not None:
            self._replace(current.model_copy(update={"comments": [*current.comments, comment]}))
        await self._changed()
        return comment

    def start_edit(self, item_id: str) -> None:
        self.edit.start(self._require(item_id))

    def update_edit(self, **changes: Optional[str]) -> bool:
        return self.edit.update(**changes)

    async def save_edit(self) -> Optional[FeedItem]:
        updated = await self.edit.save()
        if updated is not None:
            self._replace(updated)
            await self._changed()
        return updated

    def cancel_edit(self) -> None:
        self.edit.cancel()

    async def delete_item(self, item_id: str) -> bool:
        try:
            await self.content_service.delete_item(self.viewer, item_id)
        except PinPromptException as e:
            self.error = e.message
            await self._changed()
            return False

        self.items = [item for item in self.items if item.id != item_id]
        await self._changed()
        return True

    def close(self) -> None:
        self._filter_debouncer.cancel()

    def snapshot(self) -> dict:
        return {
            "items": [item.model_dump(mode="json") for item in self.items],
            "has_more": self.has_more,
            "loading": self.loading,
            "loading_more": self.loading_more,
            "error": self.error,
            "filters": {
                "search": self.filters.search,
                "model_contains": self.filters.model_contains,
                "sort": self.filters.sort.value,
            },
            "edit": {
                "state": self.edit.state.value,
                "item_id": self.edit.item_id,
                "error": self.edit.error,
            },
        }

    async def _changed(self) -> None:
        if self.on_change is not None:
            await self.on_change(self)
