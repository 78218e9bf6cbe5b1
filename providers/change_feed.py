"""
Row-level Change Feed

In-process publish/subscribe for INSERT and UPDATE events on gateway tables.
Subscribers register a table, an equality row filter and callbacks; the data
gateway publishes each committed row change to every matching subscription.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"

RowCallback = Callable[[Any], Any]


@dataclass
class Subscription:
    table: str
    row_filter: Dict[str, Any]
    on_insert: Optional[RowCallback] = None
    on_update: Optional[RowCallback] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, table: str, row: Any) -> bool:
        if table != self.table:
            return False
        return all(getattr(row, column, None) == value for column, value in self.row_filter.items())

    def callback_for(self, event: str) -> Optional[RowCallback]:
        return self.on_insert if event == INSERT else self.on_update


class ChangeFeed:
    """Dispatches row changes to subscribers"""

    def __init__(self):
        # Maps subscription id to Subscription
        self.subscriptions: Dict[str, Subscription] = {}

    def subscribe(
        self,
        table: str,
        row_filter: Optional[Dict[str, Any]] = None,
        on_insert: Optional[RowCallback] = None,
        on_update: Optional[RowCallback] = None,
    ) -> Callable[[], None]:
        """Register callbacks and return the matching unsubscribe function"""
        subscription = Subscription(table, dict(row_filter or {}), on_insert, on_update)
        self.subscriptions[subscription.id] = subscription
        logger.debug(f"Subscribed {subscription.id} to {table} {subscription.row_filter}")

        def unsubscribe() -> None:
            if self.subscriptions.pop(subscription.id, None) is not None:
                logger.debug(f"Unsubscribed {subscription.id} from {table}")

        return unsubscribe

    async def publish(self, table: str, event: str, row: Any) -> int:
        """Deliver one row change, returning how many callbacks ran"""
        delivered = 0
        for subscription in list(self.subscriptions.values()):
            callback = subscription.callback_for(event)
            if callback is None or not subscription.matches(table, row):
                continue
            try:
                result = callback(row)
                if asyncio.iscoroutine(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Change feed callback failed for {table} {event}: {e}",
                    extra={"subscription_id": subscription.id},
                )
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self.subscriptions)
