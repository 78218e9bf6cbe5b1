import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Generator

# Settings are read at import time, so the environment must be in place first
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "pinprompt-test-secret-key-0123456789abcdef"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["STORAGE_DIR"] = tempfile.mkdtemp(prefix="pinprompt-storage-")

import pytest
from fastapi.testclient import TestClient

from core.auth import AuthService, JWTManager, PasswordManager
from core.database import build_engine, build_session_factory, create_db_and_tables
from main import app
from providers.sql_gateway import SQLGateway
from providers.storage_provider import LocalStorageProvider

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def test_client() -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app. Each client gets a fresh database."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
async def session_factory():
    """Session factory over a private in-memory database."""
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_db_and_tables(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def auth_service(session_factory):
    return AuthService(
        session_factory,
        jwt_manager=JWTManager(os.environ["JWT_SECRET_KEY"]),
        password_manager=PasswordManager(rounds=4),
    )


@pytest.fixture
def storage(tmp_path):
    return LocalStorageProvider(tmp_path / "storage", "http://testserver")


@pytest.fixture
def gateway(session_factory, auth_service, storage):
    """SQL gateway over the in-memory database."""
    return SQLGateway(session_factory, auth=auth_service, storage=storage)


@pytest.fixture
def make_profile(gateway):
    """Factory inserting a profile row."""

    async def _make(username: str, **values):
        rows = await gateway.table("profiles").insert(
            [{"username": username, "email": f"{username}@example.com", **values}]
        )
        return rows[0]

    return _make


@pytest.fixture
def make_item(gateway):
    """Factory inserting a content item. `minutes` spaces out created_at."""

    async def _make(owner, body: str = "a cat in a hat", minutes: int = 0, **values):
        row = {
            "user_id": owner.id,
            "body": body,
            "output_url": "a generated answer",
            "output_type": "text",
            "model_label": "GPT-4o",
            "like_count": 0,
            "created_at": BASE_TIME + timedelta(minutes=minutes),
        }
        row.update(values)
        rows = await gateway.table("content_items").insert([row])
        return rows[0]

    return _make


@pytest.fixture
async def alice(make_profile):
    return await make_profile("alice")


@pytest.fixture
async def bob(make_profile):
    return await make_profile("bob")


def sign_up(client: TestClient, username: str, password: str = "secret-pass") -> dict:
    """Register through the API and return the token response."""
    response = client.post(
        "/auth/signup",
        json={
            "email": f"{username}@example.com",
            "password": password,
            "username": username,
            "accept_terms": True,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def auth_headers(tokens: dict) -> dict:
    return {"Authorization": f"Bearer {tokens['access_token']}"}
