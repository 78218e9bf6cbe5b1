"""
Unit tests for notifications, unread counters and badge labels.
"""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from core.exceptions import GatewayError
from services.notification_service import (
    NotificationService,
    badge_label,
    message_counter,
    notification_counter,
    notify,
)


@pytest.mark.parametrize(
    "count, label",
    [(0, None), (-1, None), (1, "1"), (99, "99"), (100, "99+"), (150, "99+")],
)
def test_badge_label(count, label):
    assert badge_label(count) == label


class TestNotify:
    async def test_creates_notification(self, gateway, alice):
        assert await notify(gateway, alice.id, "follow", "New Follower", "bob followed you")

        row = await gateway.table("notifications").first()
        assert (row.kind, row.title, row.is_read) == ("follow", "New Follower", False)

    async def test_failure_returns_false(self, gateway, alice):
        with patch.object(gateway, "rpc", AsyncMock(side_effect=GatewayError("rpc", "down"))):
            assert not await notify(gateway, alice.id, "like", "New Like", "")


class TestNotificationService:
    @pytest.fixture
    async def three_notifications(self, gateway, alice):
        for title in ("first", "second", "third"):
            await notify(gateway, alice.id, "like", title, "")
        return await gateway.table("notifications").order("created_at").select()

    async def test_list_newest_first_with_limit(self, gateway, alice, three_notifications):
        service = NotificationService(gateway, limit=2)

        listed = await service.list_notifications(alice)

        assert len(listed) == 2
        assert listed[0].created_at >= listed[1].created_at

    async def test_mark_read(self, gateway, alice, three_notifications):
        service = NotificationService(gateway)

        assert await service.mark_read(alice, three_notifications[0].id)
        assert not await service.mark_read(alice, three_notifications[0].id)
        assert await service.unread_count(alice.id) == 2

    async def test_mark_read_of_other_viewer_ignored(self, gateway, bob, three_notifications):
        service = NotificationService(gateway)

        assert not await service.mark_read(bob, three_notifications[0].id)

    async def test_mark_all_read(self, gateway, alice, three_notifications):
        service = NotificationService(gateway)

        assert await service.mark_all_read(alice) == 3
        assert await service.unread_count(alice.id) == 0
        assert await service.mark_all_read(alice) == 0


class TestUnreadCounter:
    async def test_start_reports_current_count(self, gateway, alice):
        await notify(gateway, alice.id, "like", "New Like", "")
        counter = notification_counter(gateway, alice.id, debounce_seconds=0.01)

        assert await counter.start() == 1
        assert counter.label == "1"
        counter.stop()

    async def test_burst_of_events_rederives_once(self, gateway, alice, bob):
        changes = []

        async def on_change(count):
            changes.append(count)

        counter = message_counter(gateway, alice.id, on_change, debounce_seconds=0.2)
        await counter.start()

        for n in range(3):
            await gateway.table("messages").insert(
                [{"sender_id": bob.id, "receiver_id": alice.id, "body": f"hi {n}"}]
            )
        await asyncio.sleep(0.4)

        assert changes == [3]
        assert counter.count == 3
        counter.stop()

    async def test_read_updates_lower_the_count(self, gateway, alice, bob):
        await notify(gateway, alice.id, "like", "New Like", "")
        counter = notification_counter(gateway, alice.id, debounce_seconds=0.01)
        await counter.start()

        await NotificationService(gateway).mark_all_read(alice)
        await asyncio.sleep(0.05)

        assert counter.count == 0
        assert counter.label is None
        counter.stop()

    async def test_other_viewers_events_ignored(self, gateway, alice, bob):
        counter = notification_counter(gateway, alice.id, debounce_seconds=0.01)
        await counter.start()

        await notify(gateway, bob.id, "like", "New Like", "")
        await asyncio.sleep(0.05)

        assert counter.count == 0
        assert not counter._debouncer.pending
        counter.stop()

    async def test_refresh_failure_keeps_last_count(self, gateway, alice):
        await notify(gateway, alice.id, "like", "New Like", "")
        counter = notification_counter(gateway, alice.id, debounce_seconds=0.01)
        await counter.start()

        counter.count_query = AsyncMock(side_effect=GatewayError("count", "down"))
        await counter.refresh()

        assert counter.count == 1
        counter.stop()

    async def test_stop_unsubscribes(self, gateway, alice):
        counter = notification_counter(gateway, alice.id)
        await counter.start()
        assert gateway.change_feed.subscriber_count == 1

        counter.stop()

        assert gateway.change_feed.subscriber_count == 0
