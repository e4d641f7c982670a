from __future__ import annotations

import uuid

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from complaintdesk.config import settings
from complaintdesk.db.models import Notification


async def notify(
    session: AsyncSession,
    *,
    recipient_id: str,
    sender_id: str,
    title: str,
    description: str | None = None,
    complaint_id: uuid.UUID | None = None,
    action_id: int | None = None,
) -> Notification:
    notification = Notification(
        recipient_id=recipient_id,
        sender_id=sender_id,
        title=title,
        description=description,
        complaint_id=complaint_id,
        action_id=action_id,
        read=False,
    )
    session.add(notification)
    await session.flush()
    return notification


async def list_notifications(
    session: AsyncSession,
    *,
    recipient_id: str,
    limit: int | None = None,
) -> list[Notification]:
    safe_limit = max(1, limit if limit is not None else settings.notifications_list_limit)
    rows = await session.execute(
        select(Notification)
        .where(Notification.recipient_id == recipient_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(safe_limit)
    )
    return list(rows.scalars().all())


async def unread_count(session: AsyncSession, *, recipient_id: str) -> int:
    count = await session.scalar(
        select(func.count(Notification.id)).where(
            Notification.recipient_id == recipient_id,
            Notification.read.is_(False),
        )
    )
    return int(count or 0)


async def mark_read(session: AsyncSession, *, notification_id: int, caller_id: str) -> bool:
    """Mark one notification read; silently ignores notifications owned by someone else."""
    result = await session.execute(
        update(Notification)
        .where(
            Notification.id == notification_id,
            Notification.recipient_id == caller_id,
        )
        .values(read=True)
    )
    return bool(result.rowcount)


async def mark_all_read(session: AsyncSession, *, caller_id: str) -> int:
    result = await session.execute(
        update(Notification)
        .where(
            Notification.recipient_id == caller_id,
            Notification.read.is_(False),
        )
        .values(read=True)
    )
    return int(result.rowcount or 0)
