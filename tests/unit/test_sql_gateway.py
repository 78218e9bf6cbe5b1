"""
Unit tests for the SQL-backed data gateway: query composition, mutations,
remote procedures and change feed publishing.
"""
import pytest

from core.exceptions import GatewayError, RemoteProcedureError
from providers.change_feed import INSERT, UPDATE
from providers.gateway import eq, ilike


class TestTableQueries:
    async def test_select_with_ordering_and_range(self, gateway, alice, make_item):
        for minute in range(5):
            await make_item(alice, body=f"prompt {minute}", minutes=minute)

        rows = await (
            gateway.table("content_items").order("created_at", descending=True).range(1, 2).select()
        )

        assert [row.body for row in rows] == ["prompt 3", "prompt 2"]

    async def test_ilike_is_case_insensitive_substring(self, gateway, alice, make_item):
        await make_item(alice, body="A Red Panda")
        await make_item(alice, body="blue whale")

        rows = await gateway.table("content_items").ilike("body", "red pan").select()

        assert [row.body for row in rows] == ["A Red Panda"]

    async def test_ilike_escapes_wildcards(self, gateway, alice, make_item):
        await make_item(alice, body="100% real")
        await make_item(alice, body="100 percent")

        rows = await gateway.table("content_items").ilike("body", "0%").select()

        assert [row.body for row in rows] == ["100% real"]

    async def test_or_predicates(self, gateway, alice, make_item):
        await make_item(alice, body="sunset", category="science")
        await make_item(alice, body="science fair", category=None)
        await make_item(alice, body="pasta", category="food")

        rows = await (
            gateway.table("content_items")
            .or_(ilike("body", "science"), ilike("category", "science"))
            .order("body")
            .select()
        )

        assert [row.body for row in rows] == ["science fair", "sunset"]

    async def test_count_and_first(self, gateway, alice, bob, make_item):
        await make_item(alice)
        await make_item(bob)

        assert await gateway.table("content_items").count() == 2
        assert await gateway.table("content_items").eq("user_id", bob.id).count() == 1
        assert await gateway.table("content_items").eq("user_id", "nobody").first() is None

    async def test_selected_items_carry_author(self, gateway, alice, make_item):
        await make_item(alice)

        item = await gateway.table("content_items").first()

        assert item.author.username == "alice"

    async def test_update_returns_rows(self, gateway, alice):
        rows = await gateway.table("profiles").eq("id", alice.id).update({"bio": "hi"})

        assert len(rows) == 1
        assert rows[0].bio == "hi"

    async def test_update_without_filter_refused(self, gateway, alice):
        with pytest.raises(GatewayError):
            await gateway.table("profiles").update({"bio": "everyone"})

    async def test_delete_returns_rowcount(self, gateway, alice, make_item):
        item = await make_item(alice)

        assert await gateway.table("content_items").eq("id", item.id).delete() == 1
        assert await gateway.table("content_items").eq("id", item.id).delete() == 0

    async def test_delete_cascades_likes(self, gateway, alice, bob, make_item):
        item = await make_item(alice)
        await gateway.table("likes").insert([{"user_id": bob.id, "item_id": item.id}])

        await gateway.table("content_items").eq("id", item.id).delete()

        assert await gateway.table("likes").count() == 0

    async def test_unknown_table(self, gateway):
        with pytest.raises(GatewayError):
            await gateway.table("forum_threads").select()

    async def test_unknown_column(self, gateway):
        with pytest.raises(GatewayError):
            await gateway.table("profiles").eq("karma", 3).select()

    async def test_constraint_violation_is_gateway_error(self, gateway, alice, bob, make_item):
        item = await make_item(alice)
        await gateway.table("likes").insert([{"user_id": bob.id, "item_id": item.id}])

        with pytest.raises(GatewayError):
            await gateway.table("likes").insert([{"user_id": bob.id, "item_id": item.id}])


class TestProcedures:
    async def test_like_count_procedures(self, gateway, alice, make_item):
        item = await make_item(alice)

        assert await gateway.rpc("increment_like_count", {"item_id": item.id}) == 1
        assert await gateway.rpc("increment_like_count", {"item_id": item.id}) == 2
        assert await gateway.rpc("decrement_like_count", {"item_id": item.id}) == 1

    async def test_decrement_clamps_at_zero(self, gateway, alice, make_item):
        item = await make_item(alice)

        assert await gateway.rpc("decrement_like_count", {"item_id": item.id}) == 0

    async def test_like_count_on_missing_item(self, gateway):
        with pytest.raises(RemoteProcedureError):
            await gateway.rpc("increment_like_count", {"item_id": "missing"})

    async def test_missing_parameter(self, gateway):
        with pytest.raises(RemoteProcedureError) as exc_info:
            await gateway.rpc("increment_like_count", {})
        assert "item_id" in exc_info.value.message

    async def test_unknown_procedure(self, gateway):
        with pytest.raises(RemoteProcedureError):
            await gateway.rpc("drop_everything")

    async def test_create_notification_rejects_unknown_kind(self, gateway, alice):
        with pytest.raises(RemoteProcedureError):
            await gateway.rpc(
                "create_notification", {"recipient": alice.id, "kind": "poke", "title": "Hey"}
            )

    async def test_toggle_follow_moves_both_counters(self, gateway, alice, bob):
        params = {"follower_id": alice.id, "following_id": bob.id}

        followed = await gateway.rpc("toggle_follow", params)
        assert followed == {"following": True, "followers_count": 1, "following_count": 1}
        assert await gateway.table("follows").count() == 1

        unfollowed = await gateway.rpc("toggle_follow", params)
        assert unfollowed == {"following": False, "followers_count": 0, "following_count": 0}
        assert await gateway.table("follows").count() == 0

    async def test_toggle_follow_unknown_profile_rolls_back(self, gateway, alice):
        with pytest.raises(GatewayError):
            await gateway.rpc("toggle_follow", {"follower_id": alice.id, "following_id": "ghost"})

        assert await gateway.table("follows").count() == 0
        profile = await gateway.table("profiles").eq("id", alice.id).first()
        assert profile.following_count == 0

    async def test_mark_notifications_read(self, gateway, alice, bob):
        for title in ("one", "two"):
            await gateway.rpc(
                "create_notification", {"recipient": alice.id, "kind": "like", "title": title}
            )
        ids = [row.id for row in await gateway.table("notifications").select()]

        assert await gateway.rpc("mark_notifications_read", {"ids": ids, "user_id": bob.id}) == 0
        assert await gateway.rpc("mark_notifications_read", {"ids": ids, "user_id": alice.id}) == 2
        assert await gateway.table("notifications").eq("is_read", False).count() == 0


class TestChangeFeed:
    async def test_insert_published_to_matching_subscriber(self, gateway, alice, bob):
        received = []
        gateway.subscribe("notifications", {"user_id": alice.id}, on_insert=received.append)

        await gateway.rpc(
            "create_notification", {"recipient": alice.id, "kind": "follow", "title": "New Follower"}
        )
        await gateway.rpc(
            "create_notification", {"recipient": bob.id, "kind": "follow", "title": "New Follower"}
        )

        assert len(received) == 1
        assert received[0].user_id == alice.id

    async def test_update_published(self, gateway, alice, bob):
        message = (
            await gateway.table("messages").insert(
                [{"sender_id": bob.id, "receiver_id": alice.id, "body": "hi"}]
            )
        )[0]
        updates = []
        gateway.subscribe("messages", {"receiver_id": alice.id}, on_update=updates.append)

        await gateway.table("messages").eq("id", message.id).update({"is_read": True})

        assert [row.is_read for row in updates] == [True]

    async def test_unsubscribe(self, gateway, alice):
        received = []
        unsubscribe = gateway.subscribe("profiles", on_update=received.append)
        unsubscribe()

        await gateway.table("profiles").eq("id", alice.id).update({"bio": "quiet"})

        assert received == []
        assert gateway.change_feed.subscriber_count == 0

    async def test_failing_callback_does_not_break_mutation(self, gateway, alice):
        def explode(row):
            raise RuntimeError("subscriber bug")

        gateway.subscribe("profiles", on_update=explode)

        rows = await gateway.table("profiles").eq("id", alice.id).update({"bio": "still saved"})

        assert rows[0].bio == "still saved"

    async def test_publish_counts_deliveries(self, gateway):
        feed = gateway.change_feed
        feed.subscribe("likes", {"item_id": "x"}, on_insert=lambda row: None)

        class Row:
            item_id = "x"

        assert await feed.publish("likes", INSERT, Row()) == 1
        assert await feed.publish("likes", UPDATE, Row()) == 0

    async def test_subscribe_unknown_table(self, gateway):
        with pytest.raises(GatewayError):
            gateway.subscribe("forum_threads", on_insert=print)


class TestPredicates:
    def test_helpers_build_predicates(self):
        predicate = eq("id", 1)
        assert (predicate.op, predicate.column, predicate.value) == ("eq", "id", 1)
        assert ilike("body", "x").op == "ilike"
