from __future__ import annotations

import os

import pytest
import pytest_asyncio
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from complaintdesk.db.base import Base
from complaintdesk.db.session import build_engine, build_session_factory, ping_database

if os.getenv("RUN_INTEGRATION_TESTS") != "1":
    pytest.skip("PostgreSQL tests need RUN_INTEGRATION_TESTS=1", allow_module_level=True)


def _test_database_url() -> str:
    raw = (os.getenv("TEST_DATABASE_URL") or "").strip()
    if not raw:
        pytest.skip("TEST_DATABASE_URL is not set")

    url = make_url(raw)
    if url.get_backend_name() != "postgresql":
        pytest.skip("Concurrency tests need PostgreSQL row locks")
    if "test" not in (url.database or "").lower():
        pytest.exit("TEST_DATABASE_URL must name a throwaway *test* database", returncode=2)
    return raw


@pytest_asyncio.fixture
async def integration_engine():
    engine = build_engine(_test_database_url())
    try:
        await ping_database(engine)
    except (OSError, SQLAlchemyError) as exc:  # pragma: no cover
        await engine.dispose()
        pytest.skip(f"PostgreSQL is unreachable: {exc}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(integration_engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(integration_engine)
