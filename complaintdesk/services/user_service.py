from __future__ import annotations

import logging

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from complaintdesk.config import settings
from complaintdesk.db.enums import UserRole
from complaintdesk.db.models import User
from complaintdesk.errors import NotFound, ValidationError

logger = logging.getLogger(__name__)


async def load_user(session: AsyncSession, user_id: str, *, for_update: bool = False) -> User | None:
    stmt = select(User).where(User.id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    return await session.scalar(stmt)


async def upsert_user(
    session: AsyncSession,
    *,
    user_id: str,
    name: str = "",
    email: str | None = None,
    role: UserRole | None = None,
) -> User:
    user = await load_user(session, user_id, for_update=True)
    if user is None:
        user = User(id=user_id, name=name, email=email, role=role or UserRole.USER)
        session.add(user)
        await session.flush()
        return user

    if name:
        user.name = name
    if email is not None:
        user.email = email
    if role is not None:
        user.role = role
    return user


async def search_users(
    session: AsyncSession,
    *,
    query: str,
    role: UserRole | None = None,
    limit: int | None = None,
) -> list[User]:
    normalized = query.strip()
    if not normalized or len(normalized) > 100:
        raise ValidationError("Search query must be 1..100 characters")

    pattern = f"%{normalized}%"
    stmt = select(User).where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    if role is not None:
        stmt = stmt.where(User.role == role)

    safe_limit = max(1, limit if limit is not None else settings.user_search_limit)
    rows = await session.execute(stmt.order_by(User.name.asc(), User.id.asc()).limit(safe_limit))
    return list(rows.scalars().all())


async def change_user_role(
    session: AsyncSession,
    *,
    actor_id: str,
    user_id: str,
    role: UserRole,
) -> User:
    if actor_id == user_id:
        raise ValidationError("Cannot change your own role")

    user = await load_user(session, user_id, for_update=True)
    if user is None:
        raise NotFound("User not found")

    previous = user.role
    user.role = role
    logger.info("[users] role changed for user_id=%s: %s -> %s by %s", user_id, previous, role, actor_id)
    return user
