"""
Shared pytest configuration for PickleHub tests.

Async database tests run against TEST_DATABASE_URL (e.g. a PostgreSQL test
database) and fall back to a throwaway SQLite file through aiosqlite.

SAFETY: This module REFUSES to run against any database whose name does not
contain the substring "test". This prevents accidental drop of the
development or production database when environment variables are missing
or misconfigured.
"""

import os
import tempfile

os.environ.setdefault("ENV", "test")

import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402
from picklehub.database.db import Base  # noqa: E402


def _resolve_test_database_url() -> str:
    """Build the test database URL with safety checks.

    Raises ``RuntimeError`` if the resolved URL does not point to a database
    whose name contains "test".
    """
    url = os.getenv("TEST_DATABASE_URL")
    if not url:
        path = os.path.join(tempfile.gettempdir(), f"picklehub_test_{os.getpid()}.db")
        url = f"sqlite+aiosqlite:///{path}"

    # ── Safety gate: database name MUST contain "test" ──────────────────
    db_name = url.rsplit("/", 1)[-1].split("?")[0]
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"\n{'=' * 70}\n"
            f"  SAFETY: Refusing to run tests against database '{db_name}'.\n"
            f"  The database name must contain 'test' to prevent accidental\n"
            f"  data loss in development or production databases.\n\n"
            f"  Resolved URL: {url}\n\n"
            f"  Fix: set TEST_DATABASE_URL to a test database, e.g.:\n"
            f"    export TEST_DATABASE_URL=postgresql+asyncpg://.../picklehub_test\n"
            f"{'=' * 70}"
        )

    return url


# Validated at import time so pytest fails immediately with a clear message
TEST_DATABASE_URL = _resolve_test_database_url()


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine with a fresh schema for each test."""
    # NullPool avoids reusing connections across event loops
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # Code that opens its own sessions (chat WebSocket, reminder worker) must
    # hit the test database too
    from picklehub.database import db

    test_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = test_session_maker

    yield engine

    db.AsyncSessionLocal = original_async_session_local

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    """A session on the test database, rolled back and closed after the test."""
    from picklehub.database import db

    async with db.AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()

