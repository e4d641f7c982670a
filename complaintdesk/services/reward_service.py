from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from complaintdesk.db.base import utcnow
from complaintdesk.db.models import RewardAccount, RewardCredit
from complaintdesk.errors import ValidationError


@dataclass(slots=True)
class CreditResult:
    changed: bool
    balance: int
    credit_id: int | None = None


def resolution_dedupe_key(complaint_id: uuid.UUID, resolution_number: int) -> str:
    return f"complaint:{complaint_id}:resolution:{resolution_number}"


def _insert_for(session: AsyncSession, model):
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert(model)
    return postgresql_insert(model)


async def credit(
    session: AsyncSession,
    *,
    user_id: str,
    amount: int,
    dedupe_key: str,
    reason: str,
    complaint_id: uuid.UUID | None = None,
    action_id: int | None = None,
) -> CreditResult:
    if amount <= 0:
        raise ValidationError("Credit amount must be positive")

    now = utcnow()
    credit_stmt = (
        _insert_for(session, RewardCredit)
        .values(
            user_id=user_id,
            amount=amount,
            dedupe_key=dedupe_key,
            reason=reason,
            complaint_id=complaint_id,
            action_id=action_id,
            created_at=now,
        )
        .on_conflict_do_nothing(index_elements=[RewardCredit.dedupe_key])
        .returning(RewardCredit.id)
    )
    credit_id = await session.scalar(credit_stmt)
    if credit_id is None:
        return CreditResult(changed=False, balance=await get_balance(session, user_id=user_id))

    account_stmt = _insert_for(session, RewardAccount).values(
        user_id=user_id,
        points=amount,
        created_at=now,
        updated_at=now,
    )
    account_stmt = account_stmt.on_conflict_do_update(
        index_elements=[RewardAccount.user_id],
        set_={
            "points": RewardAccount.points + account_stmt.excluded.points,
            "updated_at": now,
        },
    ).returning(RewardAccount.points)
    balance = await session.scalar(account_stmt)
    return CreditResult(changed=True, balance=int(balance or 0), credit_id=credit_id)


async def get_balance(session: AsyncSession, *, user_id: str) -> int:
    points = await session.scalar(select(RewardAccount.points).where(RewardAccount.user_id == user_id))
    return int(points or 0)


async def count_credits(session: AsyncSession, *, user_id: str) -> int:
    count = await session.scalar(select(func.count(RewardCredit.id)).where(RewardCredit.user_id == user_id))
    return int(count or 0)


async def list_credits(
    session: AsyncSession,
    *,
    user_id: str,
    limit: int = 20,
    offset: int = 0,
) -> list[RewardCredit]:
    safe_limit = max(1, min(limit, 100))
    rows = await session.execute(
        select(RewardCredit)
        .where(RewardCredit.user_id == user_id)
        .order_by(RewardCredit.created_at.desc(), RewardCredit.id.desc())
        .offset(max(offset, 0))
        .limit(safe_limit)
    )
    return list(rows.scalars().all())
