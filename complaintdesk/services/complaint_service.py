from __future__ import annotations

import math
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from complaintdesk.db.enums import ComplaintCategory, ComplaintStatus
from complaintdesk.db.models import Action, Complaint, Notification, RewardCredit, User
from complaintdesk.errors import NotFound, ValidationError

TITLE_MAX_LENGTH = 200


@dataclass(slots=True)
class ComplaintView:
    complaint: Complaint
    reporter: User | None
    actions: list[Action] | None = None


@dataclass(slots=True)
class ComplaintDeletion:
    complaint_id: uuid.UUID
    blob_keys: list[str] = field(default_factory=list)


def parse_complaint_id(raw: uuid.UUID | str) -> uuid.UUID:
    if isinstance(raw, uuid.UUID):
        return raw
    try:
        return uuid.UUID(str(raw).strip())
    except ValueError:
        raise ValidationError("Invalid complaint id") from None


def parse_complaint_status(raw: ComplaintStatus | str) -> ComplaintStatus:
    try:
        return ComplaintStatus(str(raw).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown complaint status: {raw}") from None


def _validate_coordinate(value: float, *, name: str, bound: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number") from None
    if not math.isfinite(number) or abs(number) > bound:
        raise ValidationError(f"{name} must be within [-{bound:g}, {bound:g}]")
    return number


async def create_complaint(
    session: AsyncSession,
    *,
    reporter_id: str,
    title: str,
    description: str | None,
    category: ComplaintCategory | str,
    latitude: float,
    longitude: float,
    evidence_image_key: str | None = None,
) -> Complaint:
    normalized_title = title.strip()
    if not normalized_title or len(normalized_title) > TITLE_MAX_LENGTH:
        raise ValidationError(f"Title must be 1..{TITLE_MAX_LENGTH} characters")
    try:
        normalized_category = ComplaintCategory(str(category).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown complaint category: {category}") from None

    complaint = Complaint(
        reporter_id=reporter_id,
        title=normalized_title,
        description=(description or "").strip() or None,
        category=normalized_category,
        latitude=_validate_coordinate(latitude, name="latitude", bound=90),
        longitude=_validate_coordinate(longitude, name="longitude", bound=180),
        evidence_image_key=evidence_image_key,
        status=ComplaintStatus.OPEN,
    )
    session.add(complaint)
    await session.flush()
    return complaint


async def load_complaint(
    session: AsyncSession,
    complaint_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> Complaint | None:
    stmt = select(Complaint).where(Complaint.id == complaint_id)
    if for_update:
        stmt = stmt.with_for_update()
    return await session.scalar(stmt)


async def require_complaint(
    session: AsyncSession,
    complaint_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> Complaint:
    complaint = await load_complaint(session, complaint_id, for_update=for_update)
    if complaint is None:
        raise NotFound("Complaint not found")
    return complaint


def mark_resolved_fields(complaint: Complaint, *, resolver_id: str, now: datetime) -> None:
    complaint.status = ComplaintStatus.RESOLVED
    complaint.resolved_at = now
    complaint.resolved_by = resolver_id


def clear_resolved_fields(complaint: Complaint, *, status: ComplaintStatus) -> None:
    if status == ComplaintStatus.RESOLVED:
        raise ValueError("Use mark_resolved_fields to resolve a complaint")
    complaint.status = status
    complaint.resolved_at = None
    complaint.resolved_by = None


async def list_actions_for_complaints(
    session: AsyncSession,
    complaint_ids: list[uuid.UUID],
) -> dict[uuid.UUID, list[Action]]:
    grouped: dict[uuid.UUID, list[Action]] = defaultdict(list)
    if not complaint_ids:
        return grouped

    rows = await session.execute(
        select(Action)
        .where(Action.complaint_id.in_(complaint_ids))
        .order_by(Action.created_at.desc(), Action.id.desc())
    )
    for action in rows.scalars().all():
        grouped[action.complaint_id].append(action)
    return grouped


async def list_complaints(
    session: AsyncSession,
    *,
    reporter_id: str | None,
    include_actions: bool = False,
    status: ComplaintStatus | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[ComplaintView]:
    """
    List complaints newest first.

    ``reporter_id=None`` lists every complaint (admin view); otherwise only
    the reporter's own.  ``include_actions`` attaches the full action history
    of each complaint, newest attempt first.  No row cap applies unless
    ``limit`` is given.
    """
    stmt = (
        select(Complaint, User)
        .outerjoin(User, User.id == Complaint.reporter_id)
        .order_by(Complaint.created_at.desc())
    )
    if offset > 0:
        stmt = stmt.offset(offset)
    if limit is not None:
        stmt = stmt.limit(max(limit, 1))
    if reporter_id is not None:
        stmt = stmt.where(Complaint.reporter_id == reporter_id)
    if status is not None:
        stmt = stmt.where(Complaint.status == status)

    rows = (await session.execute(stmt)).all()
    views = [ComplaintView(complaint=complaint, reporter=reporter) for complaint, reporter in rows]
    if include_actions:
        grouped = await list_actions_for_complaints(session, [view.complaint.id for view in views])
        for view in views:
            view.actions = grouped.get(view.complaint.id, [])
    return views


async def delete_complaint(session: AsyncSession, *, complaint_id: uuid.UUID) -> ComplaintDeletion:
    """
    Delete a complaint together with its actions and notifications.

    Returns the blob keys that referenced the deleted rows; the caller forwards
    them to the blob store once the deletion has committed.
    """
    complaint = await require_complaint(session, complaint_id, for_update=True)

    deletion = ComplaintDeletion(complaint_id=complaint.id)
    if complaint.evidence_image_key:
        deletion.blob_keys.append(complaint.evidence_image_key)
    action_keys = (
        await session.execute(
            select(Action.evidence_image_key).where(
                Action.complaint_id == complaint.id,
                Action.evidence_image_key.is_not(None),
            )
        )
    ).scalars().all()
    deletion.blob_keys.extend(action_keys)

    action_ids = select(Action.id).where(Action.complaint_id == complaint.id)
    await session.execute(
        update(RewardCredit)
        .where(
            (RewardCredit.complaint_id == complaint.id) | RewardCredit.action_id.in_(action_ids)
        )
        .values(complaint_id=None, action_id=None)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        delete(Notification)
        .where(
            (Notification.complaint_id == complaint.id) | Notification.action_id.in_(action_ids)
        )
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        delete(Action)
        .where(Action.complaint_id == complaint.id)
        .execution_options(synchronize_session=False)
    )
    await session.delete(complaint)
    await session.flush()
    return deletion
