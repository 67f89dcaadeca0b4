"""Shared fixtures for persistence integration tests.

These tests require a running PostgreSQL database with migrations applied.
They are skipped automatically when the database or its tables are missing.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from tests.service_availability import database_url, is_postgres_available

TEST_DATABASE_URL = database_url()
PERSISTENCE_DIR = Path(__file__).parent


def _check_db_available() -> bool:
    """Check the database is reachable and the tag table exists."""
    if not is_postgres_available():
        return False

    async def _try_connect() -> bool:
        try:
            engine = create_async_engine(TEST_DATABASE_URL)
            async with engine.connect() as conn:
                result = await conn.execute(
                    text(
                        """
                        SELECT EXISTS (
                            SELECT FROM information_schema.tables
                            WHERE table_name = 'catalog_tags'
                        )
                        """
                    )
                )
                tables_exist = bool(result.scalar())
            await engine.dispose()
            return tables_exist
        except Exception:
            return False

    return asyncio.run(_try_connect())


_DB_AVAILABLE: bool | None = None


def is_db_available() -> bool:
    """Check database availability (cached)."""
    global _DB_AVAILABLE
    if _DB_AVAILABLE is None:
        _DB_AVAILABLE = _check_db_available()
    return _DB_AVAILABLE


def pytest_collection_modifyitems(config, items):
    """Skip this directory's integration tests if the database is not available."""
    if is_db_available():
        return

    skip_no_db = pytest.mark.skip(
        reason="Database not available - skipping integration test"
    )
    for item in items:
        if "integration" in item.keywords and PERSISTENCE_DIR in item.path.parents:
            item.add_marker(skip_no_db)


async def _truncate_tables(engine) -> None:
    async with engine.begin() as conn:
        await conn.execute(text("TRUNCATE TABLE catalog_tags"))


@pytest_asyncio.fixture
async def db_session():
    """Provide a session on a clean ``catalog_tags`` table."""
    if not is_db_available():
        pytest.skip("Database not available")

    engine = create_async_engine(TEST_DATABASE_URL)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    await _truncate_tables(engine)
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await _truncate_tables(engine)
    await engine.dispose()
