"""
Notification Service and Unread Badges.

Notifications are only ever created as side effects of likes, follows,
comments and messages, through the `create_notification` procedure. This
module holds that best-effort helper, the notification list and read-state
operations, and the unread counters behind the bell and message badges.

Key Components:
- `notify`: Best-effort notification creation. Failures are logged and
  swallowed, never raised to the mutation that triggered them.
- `NotificationService`: Listing (newest first) and marking notifications
  read. Marking a single notification is guarded per id.
- `UnreadCounter`: Subscribes to INSERT/UPDATE events for one viewer and
  re-derives the unread count from the source of truth on every event.
  Bursts of events are collapsed by a debouncer.
- `badge_label`: Text shown on a badge for a count.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

from core.config import settings
from core.content import NotificationKind
from core.debounce import Debouncer
from core.exceptions import PinPromptException
from core.models import NotificationView, Profile
from providers.gateway import DataGateway

logger = logging.getLogger(__name__)

BADGE_CAP = 99


def badge_label(count: int) -> Optional[str]:
    if count <= 0:
        return None
    if count > BADGE_CAP:
        return f"{BADGE_CAP}+"
    return str(count)


async def notify(
    gateway: DataGateway,
    recipient: str,
    kind: Union[NotificationKind, str],
    title: str,
    body: str,
    related_id: Optional[str] = None,
) -> bool:
    """Create a notification, returning False instead of raising on failure"""
    kind = NotificationKind(kind).value
    try:
        await gateway.rpc(
            "create_notification",
            {
                "recipient": recipient,
                "kind": kind,
                "title": title,
                "body": body,
                "related_id": related_id,
            },
        )
        return True
    except PinPromptException as e:
        logger.warning(f"Could not create {kind} notification for {recipient}: {e.message}")
        return False


class NotificationService:
    def __init__(self, gateway: DataGateway, limit: Optional[int] = None):
        self.gateway = gateway
        self.limit = limit or settings.notifications_limit
        self.marking: Set[Tuple[str, str]] = set()

    async def list_notifications(self, viewer: Profile) -> List[NotificationView]:
        rows = await (
            self.gateway.table("notifications")
            .eq("user_id", viewer.id)
            .order("created_at", descending=True)
            .limit(self.limit)
            .select()
        )
        return [NotificationView.model_validate(row) for row in rows]

    async def mark_read(self, viewer: Profile, notification_id: str) -> bool:
        """Mark one notification read. Repeated calls while one runs are ignored."""
        key = (viewer.id, notification_id)
        if key in self.marking:
            return False

        self.marking.add(key)
        try:
            updated = await self.gateway.rpc(
                "mark_notifications_read", {"ids": [notification_id], "user_id": viewer.id}
            )
        finally:
            self.marking.discard(key)
        return bool(updated)

    async def mark_all_read(self, viewer: Profile) -> int:
        rows = await (
            self.gateway.table("notifications")
            .eq("user_id", viewer.id)
            .eq("is_read", False)
            .select()
        )
        if not rows:
            return 0
        return await self.gateway.rpc(
            "mark_notifications_read", {"ids": [row.id for row in rows], "user_id": viewer.id}
        )

    async def unread_count(self, viewer_id: str) -> int:
        return await (
            self.gateway.table("notifications")
            .eq("user_id", viewer_id)
            .eq("is_read", False)
            .count()
        )


class UnreadCounter:
    """Live unread count for one table and viewer"""

    def __init__(
        self,
        gateway: DataGateway,
        table: str,
        row_filter: Dict[str, Any],
        count_query: Callable[[], Awaitable[int]],
        on_change: Optional[Callable[[int], Awaitable[Any]]] = None,
        debounce_seconds: Optional[float] = None,
    ):
        self.gateway = gateway
        self.table = table
        self.row_filter = row_filter
        self.count_query = count_query
        self.on_change = on_change
        self.count = 0
        if debounce_seconds is None:
            debounce_seconds = settings.unread_debounce_seconds
        self._debouncer = Debouncer(debounce_seconds, self.refresh)
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def label(self) -> Optional[str]:
        return badge_label(self.count)

    async def start(self) -> int:
        self._unsubscribe = self.gateway.subscribe(
            self.table, self.row_filter, on_insert=self._on_event, on_update=self._on_event
        )
        await self.refresh()
        return self.count

    def _on_event(self, row: Any) -> None:
        self._debouncer.trigger()

    async def refresh(self) -> None:
        try:
            count = await self.count_query()
        except PinPromptException as e:
            # Background refresh, keep the last known count
            logger.warning(f"Unread count refresh for {self.table} failed: {e.message}")
            return

        changed = count != self.count
        self.count = count
        if changed and self.on_change is not None:
            await self.on_change(count)

    def stop(self) -> None:
        self._debouncer.cancel()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None


def notification_counter(
    gateway: DataGateway,
    viewer_id: str,
    on_change: Optional[Callable[[int], Awaitable[Any]]] = None,
    debounce_seconds: Optional[float] = None,
) -> UnreadCounter:
    """Counter behind the notification bell"""

    async def count() -> int:
        return await (
            gateway.table("notifications").eq("user_id", viewer_id).eq("is_read", False).count()
        )

    return UnreadCounter(
        gateway, "notifications", {"user_id": viewer_id}, count, on_change, debounce_seconds
    )


def message_counter(
    gateway: DataGateway,
    viewer_id: str,
    on_change: Optional[Callable[[int], Awaitable[Any]]] = None,
    debounce_seconds: Optional[float] = None,
) -> UnreadCounter:
    """Counter behind the unread messages badge"""

    async def count() -> int:
        return await (
            gateway.table("messages").eq("receiver_id", viewer_id).eq("is_read", False).count()
        )

    return UnreadCounter(
        gateway, "messages", {"receiver_id": viewer_id}, count, on_change, debounce_seconds
    )
