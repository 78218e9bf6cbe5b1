"""
Unit tests for database setup and models.

Verifies that engines are built per database type, tables are created and
foreign keys are enforced on SQLite.
"""
import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from core.database import (
    build_engine,
    build_session_factory,
    create_db_and_tables,
    engine,
    get_database_info,
)
from core.models import ContentItem, Profile


@pytest.mark.unit
async def test_in_memory_engine_shares_one_connection():
    """In-memory SQLite must keep one database across sessions."""
    memory_engine = build_engine("sqlite+aiosqlite:///:memory:")
    try:
        assert isinstance(memory_engine.pool, StaticPool)
        await create_db_and_tables(memory_engine)
        factory = build_session_factory(memory_engine)

        profile = Profile(username="ada")
        async with factory() as session:
            session.add(profile)
            await session.commit()

        async with factory() as session:
            assert (await session.get(Profile, profile.id)).username == "ada"
    finally:
        await memory_engine.dispose()


@pytest.mark.unit
async def test_foreign_keys_enforced(session_factory):
    """Content items cannot reference a missing profile."""
    async with session_factory() as session:
        session.add(ContentItem(user_id="nobody", body="orphan"))
        with pytest.raises(IntegrityError):
            await session.commit()


@pytest.mark.unit
async def test_expire_on_commit_disabled(session_factory):
    """Rows stay readable after their session closes."""
    async with session_factory() as session:
        profile = Profile(username="grace")
        session.add(profile)
        await session.commit()

    assert profile.username == "grace"
    assert profile.followers_count == 0


@pytest.mark.unit
async def test_database_info():
    try:
        info = await get_database_info()
    finally:
        await engine.dispose()

    assert info["connection_healthy"] is True
    assert info["database_type"] == "sqlite"
    assert info["database_url"] == "masked"
