from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from complaintdesk.db.base import Base
from complaintdesk.db.enums import UserRole
from complaintdesk.db.models import User
from complaintdesk.db.session import build_engine, build_session_factory
from complaintdesk.services.rbac_service import CallerIdentity



class MemoryBlobStore:
    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_deletes = False

    async def put(self, key: str, data: bytes) -> None:
        self.blobs[key] = data

    async def delete(self, key: str) -> None:
        self.deleted.append(key)
        if self.fail_deletes:
            raise RuntimeError("blob store unavailable")
        self.blobs.pop(key, None)

    async def url(self, key: str, *, expires_in: int = 300) -> str:
        return f"memory://{key}?expires_in={expires_in}"


@pytest_asyncio.fixture
async def engine():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest_asyncio.fixture
async def people(session_factory) -> dict[str, CallerIdentity]:
    """Seed one user per role and return their caller identities."""
    seeded = {
        "reporter": ("rep-1", "Riya Reporter", UserRole.USER),
        "other": ("rep-2", "Omar Other", UserRole.USER),
        "worker": ("wrk-1", "Wen Worker", UserRole.WORKER),
        "worker2": ("wrk-2", "Wade Worker", UserRole.WORKER),
        "admin": ("adm-1", "Ada Admin", UserRole.ADMIN),
        "super": ("sup-1", "Sam Super", UserRole.SUPER_ADMIN),
    }
    async with session_factory() as session:
        async with session.begin():
            for user_id, name, role in seeded.values():
                session.add(User(id=user_id, name=name, email=f"{user_id}@example.org", role=role))
    return {
        label: CallerIdentity(user_id=user_id, role=role)
        for label, (user_id, _, role) in seeded.items()
    }
