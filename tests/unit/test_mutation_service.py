"""
Unit tests for like toggling, owner edits/deletes, comments and the edit session.
"""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from core.content import PROMPT_MARKER
from core.exceptions import (
    ContentNotFoundError,
    GatewayError,
    PermissionDeniedError,
    RemoteProcedureError,
    ValidationError,
)
from core.models import FeedItem
from services.mutation_service import ContentService, EditSession, EditState, LikeService


async def stored_count(gateway, item_id):
    item = await gateway.table("content_items").eq("id", item_id).first()
    return item.like_count


class TestLikeService:
    async def test_like_then_unlike(self, gateway, alice, bob, make_item):
        item = await make_item(bob)
        likes = LikeService(gateway)

        liked = await likes.toggle_like(alice, item.id, False, bob.id)
        assert (liked.liked, liked.like_delta) == (True, 1)
        assert await stored_count(gateway, item.id) == 1
        assert await gateway.table("likes").count() == 1

        unliked = await likes.toggle_like(alice, item.id, True, bob.id)
        assert (unliked.liked, unliked.like_delta) == (False, -1)
        assert await stored_count(gateway, item.id) == 0
        assert await gateway.table("likes").count() == 0

    async def test_like_notifies_owner_but_not_self(self, gateway, alice, bob, make_item):
        foreign = await make_item(bob)
        own = await make_item(alice)
        likes = LikeService(gateway)

        await likes.toggle_like(alice, foreign.id, False, bob.id)
        await likes.toggle_like(alice, own.id, False, alice.id)

        notifications = await gateway.table("notifications").select()
        assert [(n.user_id, n.kind, n.title) for n in notifications] == [
            (bob.id, "like", "New Like")
        ]

    async def test_double_toggle_while_in_flight_is_ignored(self, gateway, alice, bob, make_item):
        item = await make_item(bob)
        likes = LikeService(gateway)
        release = asyncio.Event()
        original_insert = gateway.run_insert

        async def slow_insert(query, rows):
            await release.wait()
            return await original_insert(query, rows)

        with patch.object(gateway, "run_insert", side_effect=slow_insert):
            first = asyncio.create_task(likes.toggle_like(alice, item.id, False, bob.id))
            await asyncio.sleep(0)
            assert likes.is_in_flight(alice.id, item.id)

            assert await likes.toggle_like(alice, item.id, False, bob.id) is None
            release.set()
            result = await first

        assert result.like_delta == 1
        assert not likes.is_in_flight(alice.id, item.id)
        assert await gateway.table("likes").count() == 1
        assert await stored_count(gateway, item.id) == 1

    async def test_counter_falls_back_when_procedure_fails(self, gateway, alice, bob, make_item):
        item = await make_item(bob, like_count=3)
        likes = LikeService(gateway)
        original_rpc = gateway.rpc

        async def failing_counters(name, params=None):
            if name.endswith("like_count"):
                raise RemoteProcedureError(name, "procedure unavailable")
            return await original_rpc(name, params)

        with patch.object(gateway, "rpc", side_effect=failing_counters):
            result = await likes.toggle_like(alice, item.id, False, bob.id)

        assert result.like_delta == 1
        assert await stored_count(gateway, item.id) == 4

    async def test_fallback_clamps_at_zero(self, gateway, alice, bob, make_item):
        item = await make_item(bob, like_count=0)
        await gateway.table("likes").insert([{"user_id": alice.id, "item_id": item.id}])
        likes = LikeService(gateway)

        with patch.object(gateway, "rpc", AsyncMock(side_effect=GatewayError("rpc", "down"))):
            result = await likes.toggle_like(alice, item.id, True)

        assert result.like_delta == -1
        assert await stored_count(gateway, item.id) == 0

    async def test_unlike_without_row_leaves_count(self, gateway, alice, bob, make_item):
        item = await make_item(bob, like_count=2)

        result = await LikeService(gateway).toggle_like(alice, item.id, True)

        assert (result.liked, result.like_delta) == (False, 0)
        assert await stored_count(gateway, item.id) == 2

    async def test_primary_failure_is_raised_and_guard_released(self, gateway, alice):
        likes = LikeService(gateway)

        with pytest.raises(GatewayError):
            await likes.toggle_like(alice, "missing-item", False)

        assert not likes.is_in_flight(alice.id, "missing-item")

    async def test_notification_failure_does_not_fail_like(self, gateway, alice, bob, make_item):
        item = await make_item(bob)
        original_rpc = gateway.rpc

        async def failing_notifications(name, params=None):
            if name == "create_notification":
                raise RemoteProcedureError(name, "notifications down")
            return await original_rpc(name, params)

        with patch.object(gateway, "rpc", side_effect=failing_notifications):
            result = await LikeService(gateway).toggle_like(alice, item.id, False, bob.id)

        assert result.liked
        assert await gateway.table("notifications").count() == 0


class TestContentService:
    async def test_edit_combines_body(self, gateway, alice, make_item):
        item = await make_item(alice, body="draw a dog")

        row = await ContentService(gateway).edit_item(alice, item.id, "context", "hello", "Memes")

        assert row.body == "context\n\n--- AI Prompt ---\nhello"
        assert row.category == "memes"

    async def test_edit_without_reflection_stores_plain_prompt(self, gateway, alice, make_item):
        item = await make_item(alice, body="old\n\n--- AI Prompt ---\nprompt")

        row = await ContentService(gateway).edit_item(alice, item.id, "", "just the prompt")

        assert row.body == "just the prompt"

    async def test_edit_by_non_owner_denied(self, gateway, alice, bob, make_item):
        item = await make_item(bob, body="original")

        with pytest.raises(PermissionDeniedError):
            await ContentService(gateway).edit_item(alice, item.id, "", "hijacked")

        stored = await gateway.table("content_items").eq("id", item.id).first()
        assert stored.body == "original"

    async def test_edit_rejects_empty_prompt(self, gateway, alice, make_item):
        item = await make_item(alice)

        with pytest.raises(ValidationError):
            await ContentService(gateway).edit_item(alice, item.id, "context", "   ")

    async def test_edit_rejects_bare_marker_in_prompt(self, gateway, alice, make_item):
        item = await make_item(alice, body="draw a dog")

        with pytest.raises(ValidationError):
            await ContentService(gateway).edit_item(alice, item.id, "", f"x {PROMPT_MARKER} y")

        stored = await gateway.table("content_items").eq("id", item.id).first()
        assert stored.body == "draw a dog"

    async def test_edit_rejects_text_over_word_limit(self, gateway, alice, make_item):
        item = await make_item(alice)

        with pytest.raises(ValidationError):
            await ContentService(gateway, word_limit=3).edit_item(
                alice, item.id, "", "one two three four"
            )

    async def test_delete_missing_item(self, gateway, alice):
        with pytest.raises(ContentNotFoundError):
            await ContentService(gateway).delete_item(alice, "missing")

    async def test_delete_by_non_owner_denied(self, gateway, alice, bob, make_item):
        item = await make_item(bob)

        with pytest.raises(PermissionDeniedError):
            await ContentService(gateway).delete_item(alice, item.id)
        assert await gateway.table("content_items").count() == 1

    async def test_comments_are_persisted_and_notify_owner(self, gateway, alice, bob, make_item):
        item = await make_item(bob)
        service = ContentService(gateway)

        comment = await service.add_comment(alice, item.id, "love it")
        comments = await service.list_comments(item.id)

        assert comment.author.username == "alice"
        assert [(c.body, c.author.username) for c in comments] == [("love it", "alice")]
        notification = await gateway.table("notifications").first()
        assert (notification.user_id, notification.title) == (bob.id, "New Comment")

    async def test_comment_on_missing_item(self, gateway, alice):
        with pytest.raises(ContentNotFoundError):
            await ContentService(gateway).add_comment(alice, "missing", "hello?")


class TestEditSession:
    @pytest.fixture
    async def feed_item(self, alice, make_item):
        row = await make_item(alice, body="draw a dog", category="ai")
        return FeedItem.from_row(row)

    async def test_start_loads_buffer(self, gateway, alice, feed_item):
        session = EditSession(ContentService(gateway), alice)

        session.start(feed_item)

        assert session.state == EditState.EDITING
        assert (session.reflection, session.generation, session.category) == ("", "draw a dog", "ai")

    async def test_update_refuses_text_over_limit(self, gateway, alice, feed_item):
        session = EditSession(ContentService(gateway), alice, word_limit=3)
        session.start(feed_item)

        assert not session.update(generation="one two three four")
        assert session.generation == "draw a dog"
        assert session.update(generation="one two three")
        assert session.generation == "one two three"

    async def test_update_requires_editing(self, gateway, alice):
        session = EditSession(ContentService(gateway), alice)

        with pytest.raises(ValidationError):
            session.update(generation="anything")

    async def test_save_returns_updated_item(self, gateway, alice, feed_item):
        session = EditSession(ContentService(gateway), alice)
        session.start(feed_item)
        session.update(reflection="context", generation="hello")

        updated = await session.save()

        assert updated.body == "context\n\n--- AI Prompt ---\nhello"
        assert (updated.reflection, updated.generation) == ("context", "hello")
        assert session.state == EditState.VIEWING

    async def test_failed_save_returns_to_editing(self, gateway, alice, feed_item):
        content = ContentService(gateway)
        session = EditSession(content, alice)
        session.start(feed_item)
        session.update(generation="kept text")

        with patch.object(
            content, "edit_item", AsyncMock(side_effect=GatewayError("update", "offline"))
        ):
            assert await session.save() is None

        assert session.state == EditState.EDITING
        assert session.error
        assert session.generation == "kept text"

    async def test_cancel_discards_buffer(self, gateway, alice, feed_item):
        session = EditSession(ContentService(gateway), alice)
        session.start(feed_item)
        session.update(generation="changed")

        session.cancel()

        assert session.state == EditState.VIEWING
        assert session.item_id is None
        stored = await gateway.table("content_items").eq("id", feed_item.id).first()
        assert stored.body == "draw a dog"
