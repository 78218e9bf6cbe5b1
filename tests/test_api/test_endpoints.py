import pytest

from conftest import auth_headers, sign_up


@pytest.fixture
def alice(test_client):
    return sign_up(test_client, "alice")


@pytest.fixture
def bob(test_client):
    return sign_up(test_client, "bob")


def post_text_item(client, tokens, generation="a haiku about rain", **fields):
    data = {
        "generation": generation,
        "output_type": "text",
        "model_label": "GPT-4o",
        "output_text": "drops on the window",
        **fields,
    }
    response = client.post("/items", data=data, headers=auth_headers(tokens))
    assert response.status_code == 201, response.text
    return response.json()


class TestHealthEndpoints:
    """Test health check and monitoring endpoints."""

    def test_health_check(self, test_client):
        """Test basic health check endpoint."""
        response = test_client.get("/healthcheck")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "PinPrompt API"

    def test_ping(self, test_client):
        """Test ping endpoint."""
        response = test_client.get("/monitoring/ping")

        assert response.status_code == 200
        assert response.json()["message"] == "pong"

    def test_detailed_health_check(self, test_client):
        """Test detailed health check reports every component."""
        response = test_client.get("/monitoring/detailed")

        assert response.status_code == 200
        components = response.json()["components"]
        assert components["database"]["status"] == "healthy"
        assert components["database"]["info"]["database_type"] == "sqlite"
        assert set(components) == {"database", "storage", "change_feed"}

    def test_correlation_header(self, test_client):
        response = test_client.get("/healthcheck", headers={"X-Correlation-ID": "abc-123"})
        assert response.headers["X-Correlation-ID"] == "abc-123"


class TestAuthEndpoints:
    """Test sign-up, sign-in and session endpoints."""

    def test_sign_up_creates_profile(self, test_client):
        tokens = sign_up(test_client, "alice")

        assert tokens["profile"]["username"] == "alice"
        assert tokens["profile"]["id"] == tokens["user_id"]

        me = test_client.get("/auth/me", headers=auth_headers(tokens))
        assert me.status_code == 200
        assert me.json()["email"] == "alice@example.com"

    def test_sign_up_requires_terms(self, test_client):
        response = test_client.post(
            "/auth/signup",
            json={"email": "a@example.com", "password": "secret-pass", "username": "ada"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "accept_terms"

    def test_username_taken(self, test_client, alice):
        response = test_client.post(
            "/auth/signup",
            json={
                "email": "other@example.com",
                "password": "secret-pass",
                "username": "alice",
                "accept_terms": True,
            },
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "username"

    def test_sign_in_and_refresh(self, test_client, alice):
        response = test_client.post(
            "/auth/signin", json={"email": "alice@example.com", "password": "secret-pass"}
        )
        assert response.status_code == 200
        tokens = response.json()

        refreshed = test_client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refreshed.status_code == 200
        assert test_client.get("/auth/me", headers=auth_headers(refreshed.json())).status_code == 200

    def test_wrong_password(self, test_client, alice):
        response = test_client.post(
            "/auth/signin", json={"email": "alice@example.com", "password": "nope-nope"}
        )

        assert response.status_code == 401

    def test_sign_out_ends_session(self, test_client, alice):
        headers = auth_headers(alice)

        assert test_client.post("/auth/signout", headers=headers).status_code == 200
        assert test_client.get("/auth/me", headers=headers).status_code == 401

    def test_me_without_token(self, test_client):
        response = test_client.get("/auth/me")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTHENTICATION_ERROR"


class TestFeedEndpoints:
    """Test the feed and content item endpoints."""

    def test_feed_pages(self, test_client, alice):
        for n in range(12):
            post_text_item(test_client, alice, generation=f"prompt {n}")

        first = test_client.get("/feed").json()
        second = test_client.get("/feed", params={"offset": 10}).json()

        assert len(first["items"]) == 10 and first["has_more"]
        assert len(second["items"]) == 2 and not second["has_more"]

    def test_feed_search_and_model_filter(self, test_client, alice):
        post_text_item(test_client, alice, generation="a castle", category="gaming")
        post_text_item(test_client, alice, generation="a bowl of ramen", model_label="Claude Haiku")

        by_category = test_client.get("/feed", params={"search": "gaming"}).json()
        by_model = test_client.get("/feed", params={"model": "claude"}).json()

        assert [i["generation"] for i in by_category["items"]] == ["a castle"]
        assert [i["generation"] for i in by_model["items"]] == ["a bowl of ramen"]

    def test_feed_rejects_unknown_sort(self, test_client):
        assert test_client.get("/feed", params={"sort": "random"}).status_code == 422

    def test_create_item_with_reflection(self, test_client, alice):
        item = post_text_item(test_client, alice, generation="hello", reflection="context")

        assert item["body"] == "context\n\n--- AI Prompt ---\nhello"
        assert item["reflection"] == "context"
        assert item["author"]["username"] == "alice"

    def test_create_image_item_is_served(self, test_client, alice):
        response = test_client.post(
            "/items",
            data={"generation": "a fox", "output_type": "image", "model_label": "DALL-E 3"},
            files={"file": ("fox.png", b"png-bytes", "image/png")},
            headers=auth_headers(alice),
        )
        assert response.status_code == 201, response.text
        url = response.json()["output_url"]

        path = url.split("/storage/", 1)[1]
        served = test_client.get(f"/storage/{path}")
        assert served.status_code == 200
        assert served.content == b"png-bytes"

    def test_create_item_requires_session(self, test_client):
        response = test_client.post(
            "/items",
            data={"generation": "x", "output_type": "text", "model_label": "GPT-4o", "output_text": "y"},
        )
        assert response.status_code == 401

    def test_owner_edit(self, test_client, alice):
        item = post_text_item(test_client, alice, generation="draw a dog")

        response = test_client.patch(
            f"/items/{item['id']}",
            json={"reflection": "context", "generation": "hello", "category": "memes"},
            headers=auth_headers(alice),
        )

        assert response.status_code == 200
        assert response.json()["body"] == "context\n\n--- AI Prompt ---\nhello"
        assert response.json()["category"] == "memes"

    def test_edit_by_other_viewer_forbidden(self, test_client, alice, bob):
        item = post_text_item(test_client, alice)

        response = test_client.patch(
            f"/items/{item['id']}", json={"generation": "mine now"}, headers=auth_headers(bob)
        )

        assert response.status_code == 403

    def test_delete_item(self, test_client, alice, bob):
        item = post_text_item(test_client, alice)

        assert test_client.delete(f"/items/{item['id']}", headers=auth_headers(bob)).status_code == 403
        assert test_client.delete(f"/items/{item['id']}", headers=auth_headers(alice)).status_code == 204
        assert test_client.get("/feed").json()["items"] == []

    def test_like_toggle(self, test_client, alice, bob):
        item = post_text_item(test_client, alice)
        headers = auth_headers(bob)

        liked = test_client.post(f"/items/{item['id']}/like", json={"currently_liked": False}, headers=headers)
        assert liked.json() == {"item_id": item["id"], "liked": True, "like_delta": 1}

        feed = test_client.get("/feed", headers=headers).json()["items"][0]
        assert feed["is_liked"] and feed["like_count"] == 1

        unliked = test_client.post(f"/items/{item['id']}/like", json={"currently_liked": True}, headers=headers)
        assert unliked.json()["like_delta"] == -1
        assert test_client.get("/feed", headers=headers).json()["items"][0]["like_count"] == 0

    def test_like_missing_item(self, test_client, bob):
        response = test_client.post("/items/nope/like", json={"currently_liked": False}, headers=auth_headers(bob))
        assert response.status_code == 404

    def test_comments(self, test_client, alice, bob):
        item = post_text_item(test_client, alice)

        created = test_client.post(
            f"/items/{item['id']}/comments", json={"body": "great prompt"}, headers=auth_headers(bob)
        )
        assert created.status_code == 201

        comments = test_client.get(f"/items/{item['id']}/comments").json()
        assert [(c["body"], c["author"]["username"]) for c in comments] == [("great prompt", "bob")]

    def test_empty_comment_rejected(self, test_client, alice):
        item = post_text_item(test_client, alice)

        response = test_client.post(
            f"/items/{item['id']}/comments", json={"body": "  "}, headers=auth_headers(alice)
        )
        assert response.status_code == 400


class TestProfileEndpoints:
    def test_profile_page(self, test_client, alice):
        post_text_item(test_client, alice)

        response = test_client.get("/profiles/alice")

        assert response.status_code == 200
        assert len(response.json()["items"]) == 1

    def test_unknown_profile(self, test_client):
        assert test_client.get("/profiles/nobody").status_code == 404

    def test_follow_toggle(self, test_client, alice, bob):
        target = alice["user_id"]

        followed = test_client.post(f"/profiles/{target}/follow", headers=auth_headers(bob)).json()
        assert followed == {"following": True, "followers_count": 1, "following_count": 1}

        page = test_client.get("/profiles/alice", headers=auth_headers(bob)).json()
        assert page["is_following"] and page["followers_count"] == 1

        unfollowed = test_client.post(f"/profiles/{target}/follow", headers=auth_headers(bob)).json()
        assert unfollowed["following"] is False

    def test_update_bio(self, test_client, alice):
        response = test_client.patch("/profiles/me", data={"bio": "I prompt"}, headers=auth_headers(alice))

        assert response.status_code == 200
        assert test_client.get("/auth/me", headers=auth_headers(alice)).json()["bio"] == "I prompt"


class TestModelEndpoints:
    def test_models_seeded_and_paginated(self, test_client):
        first = test_client.get("/models").json()
        second = test_client.get("/models", params={"offset": 20}).json()

        assert len(first["models"]) == 20 and first["has_more"]
        assert len(second["models"]) == 5 and not second["has_more"]

    def test_models_search(self, test_client):
        found = test_client.get("/models", params={"search": "midjourney"}).json()
        assert [m["name"] for m in found["models"]] == ["Midjourney v6"]
