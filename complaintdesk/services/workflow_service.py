"""
Complaint/action lifecycle.

An Action is one worker's attempt at a complaint::

    in_progress --submit_evidence--> under_review --approve--> resolved
                                          |
                                          +--reject--> closed  (+ new in_progress retry)

Rejected attempts are never reopened: the failed Action is closed and a fresh
one is appended, so every complaint keeps its full attempt history and the
"live" attempt is simply the newest Action still in progress or under review.

Every function here expects to run inside one transition scope (see
``complaintdesk.db.transactions``) and raises a ``DomainError`` subclass on
any precondition failure before touching storage.  Status changes on actions
go through ``_compare_and_set_action_status`` so that two reviewers racing on
the same action cannot both win.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from complaintdesk.config import settings
from complaintdesk.db.base import utcnow
from complaintdesk.db.enums import LIVE_ACTION_STATUSES, ActionStatus, ComplaintStatus, UserRole
from complaintdesk.db.models import Action, Complaint, User
from complaintdesk.errors import InvalidState, InvalidTarget, NotFound
from complaintdesk.services.complaint_service import (
    clear_resolved_fields,
    mark_resolved_fields,
    require_complaint,
)
from complaintdesk.services.notification_service import notify
from complaintdesk.services.reward_service import CreditResult, credit, resolution_dedupe_key
from complaintdesk.services.user_service import load_user

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReviewResult:
    action: Action
    complaint: Complaint
    approved: bool
    retry_action: Action | None = None
    credit: CreditResult | None = None


@dataclass(slots=True)
class ResolutionResult:
    started: bool
    credit: CreditResult | None = None


@dataclass(slots=True)
class WorkerActionView:
    action: Action
    complaint: Complaint
    reporter: User | None


async def load_action(session: AsyncSession, action_id: int, *, for_update: bool = False) -> Action | None:
    stmt = select(Action).where(Action.id == action_id)
    if for_update:
        stmt = stmt.with_for_update()
    return await session.scalar(stmt)


async def require_action(session: AsyncSession, action_id: int) -> Action:
    action = await load_action(session, action_id)
    if action is None:
        raise NotFound("Action not found")
    return action


async def load_live_action(session: AsyncSession, complaint_id: uuid.UUID) -> Action | None:
    return await session.scalar(
        select(Action)
        .where(
            Action.complaint_id == complaint_id,
            Action.status.in_([status.value for status in LIVE_ACTION_STATUSES]),
        )
        .order_by(Action.created_at.desc(), Action.id.desc())
        .limit(1)
    )


async def list_action_history(session: AsyncSession, complaint_id: uuid.UUID) -> list[Action]:
    rows = await session.execute(
        select(Action)
        .where(Action.complaint_id == complaint_id)
        .order_by(Action.created_at.asc(), Action.id.asc())
    )
    return list(rows.scalars().all())


async def list_worker_actions(session: AsyncSession, *, worker_id: str) -> list[WorkerActionView]:
    rows = await session.execute(
        select(Action, Complaint, User)
        .join(Complaint, Complaint.id == Action.complaint_id)
        .outerjoin(User, User.id == Complaint.reporter_id)
        .where(Action.assigned_worker_id == worker_id)
        .order_by(Action.created_at.desc(), Action.id.desc())
    )
    return [
        WorkerActionView(action=action, complaint=complaint, reporter=reporter)
        for action, complaint, reporter in rows.all()
    ]


async def _compare_and_set_action_status(
    session: AsyncSession,
    action: Action,
    *,
    expected: ActionStatus,
    target: ActionStatus,
    **values: object,
) -> None:
    updated_id = await session.scalar(
        update(Action)
        .where(Action.id == action.id, Action.status == expected)
        .values(status=target, updated_at=utcnow(), **values)
        .returning(Action.id)
        .execution_options(synchronize_session=False)
    )
    if updated_id is None:
        raise InvalidState(
            f"Action {action.id} is no longer {expected}",
            current=None,
            target=target,
        )
    await session.refresh(action)


def _require_action_status(action: Action, expected: ActionStatus, target: ActionStatus) -> None:
    if action.status != expected:
        raise InvalidState(
            f"Action {action.id} is {action.status}, expected {expected}",
            current=action.status,
            target=target,
        )


async def resolve_complaint(
    session: AsyncSession,
    complaint: Complaint,
    *,
    resolver_id: str,
    action_id: int | None = None,
) -> ResolutionResult:
    """
    Start a resolution event for the complaint and credit its reporter once.

    Both resolution paths (approved action, direct admin update) go through
    here.  A complaint that is already resolved does not start a new event,
    so the reporter is never credited twice for the same resolution.
    """
    if complaint.status == ComplaintStatus.RESOLVED:
        return ResolutionResult(started=False)

    mark_resolved_fields(complaint, resolver_id=resolver_id, now=utcnow())
    complaint.resolution_count = (complaint.resolution_count or 0) + 1
    await session.flush()

    credit_result = None
    if complaint.reporter_id is not None:
        credit_result = await credit(
            session,
            user_id=complaint.reporter_id,
            amount=settings.resolution_reward_points,
            dedupe_key=resolution_dedupe_key(complaint.id, complaint.resolution_count),
            reason=f"Complaint {complaint.id} resolved",
            complaint_id=complaint.id,
            action_id=action_id,
        )
    return ResolutionResult(started=True, credit=credit_result)


async def assign_worker(
    session: AsyncSession,
    *,
    complaint_id: uuid.UUID,
    worker_id: str,
    assigned_by: str,
) -> Action:
    complaint = await require_complaint(session, complaint_id, for_update=True)

    worker = await load_user(session, worker_id)
    if worker is None or worker.role != UserRole.WORKER:
        raise InvalidTarget("Invalid worker user")

    live = await load_live_action(session, complaint.id)
    if live is not None:
        raise InvalidState(
            f"Complaint {complaint.id} already has live action {live.id}",
            current=live.status,
            target=ActionStatus.IN_PROGRESS,
        )

    action = Action(
        complaint_id=complaint.id,
        assigned_worker_id=worker.id,
        status=ActionStatus.IN_PROGRESS,
    )
    session.add(action)
    try:
        await session.flush()
    except IntegrityError:
        raise InvalidState(f"Complaint {complaint.id} already has a live action") from None

    clear_resolved_fields(complaint, status=ComplaintStatus.IN_PROGRESS)

    await notify(
        session,
        recipient_id=worker.id,
        sender_id=assigned_by,
        title="New Task Assigned",
        description=(
            f'You have been assigned to complaint: "{complaint.title}". '
            "Please take action and submit evidence."
        ),
        complaint_id=complaint.id,
        action_id=action.id,
    )
    logger.info(
        "[workflow] worker assigned: complaint_id=%s action_id=%s worker_id=%s by=%s",
        complaint.id,
        action.id,
        worker.id,
        assigned_by,
    )
    return action


async def submit_evidence(
    session: AsyncSession,
    *,
    action_id: int,
    worker_id: str,
    image_key: str,
) -> Action:
    action = await load_action(session, action_id)
    if action is None or action.assigned_worker_id != worker_id:
        raise NotFound("Action not found or not assigned to you")
    _require_action_status(action, ActionStatus.IN_PROGRESS, ActionStatus.UNDER_REVIEW)

    await _compare_and_set_action_status(
        session,
        action,
        expected=ActionStatus.IN_PROGRESS,
        target=ActionStatus.UNDER_REVIEW,
        evidence_image_key=image_key,
    )
    logger.info("[workflow] evidence submitted: action_id=%s worker_id=%s", action.id, worker_id)
    return action


async def approve_action(
    session: AsyncSession,
    *,
    action_id: int,
    reviewer_id: str,
) -> ReviewResult:
    action = await require_action(session, action_id)
    _require_action_status(action, ActionStatus.UNDER_REVIEW, ActionStatus.RESOLVED)
    complaint = await require_complaint(session, action.complaint_id, for_update=True)
    await _compare_and_set_action_status(
        session,
        action,
        expected=ActionStatus.UNDER_REVIEW,
        target=ActionStatus.RESOLVED,
    )
    resolution = await resolve_complaint(
        session,
        complaint,
        resolver_id=reviewer_id,
        action_id=action.id,
    )

    if complaint.reporter_id is not None:
        await notify(
            session,
            recipient_id=complaint.reporter_id,
            sender_id=reviewer_id,
            title="Complaint Resolved",
            description=f'Your complaint "{complaint.title}" has been resolved.',
            complaint_id=complaint.id,
            action_id=action.id,
        )
    await notify(
        session,
        recipient_id=action.assigned_worker_id,
        sender_id=reviewer_id,
        title="Action Approved",
        description=f'Your work on "{complaint.title}" has been approved. Great job!',
        complaint_id=complaint.id,
        action_id=action.id,
    )
    logger.info(
        "[workflow] action approved: action_id=%s complaint_id=%s reviewer_id=%s credited=%s",
        action.id,
        complaint.id,
        reviewer_id,
        bool(resolution.credit and resolution.credit.changed),
    )
    return ReviewResult(action=action, complaint=complaint, approved=True, credit=resolution.credit)


async def reject_action(
    session: AsyncSession,
    *,
    action_id: int,
    reviewer_id: str,
    notes: str | None = None,
) -> ReviewResult:
    action = await require_action(session, action_id)
    _require_action_status(action, ActionStatus.UNDER_REVIEW, ActionStatus.CLOSED)

    complaint = await require_complaint(session, action.complaint_id, for_update=True)
    await _compare_and_set_action_status(
        session,
        action,
        expected=ActionStatus.UNDER_REVIEW,
        target=ActionStatus.CLOSED,
        admin_notes=notes,
    )
    retry = Action(
        complaint_id=action.complaint_id,
        assigned_worker_id=action.assigned_worker_id,
        status=ActionStatus.IN_PROGRESS,
        admin_notes=notes,
    )
    session.add(retry)
    await session.flush()

    if notes:
        description = f'Your submission for "{complaint.title}" was rejected. Admin notes: {notes}'
    else:
        description = f'Your submission for "{complaint.title}" was rejected. Please try again.'
    await notify(
        session,
        recipient_id=action.assigned_worker_id,
        sender_id=reviewer_id,
        title="Action Rejected: Retry Required",
        description=description,
        complaint_id=complaint.id,
        action_id=retry.id,
    )
    logger.info(
        "[workflow] action rejected: action_id=%s retry_action_id=%s complaint_id=%s reviewer_id=%s",
        action.id,
        retry.id,
        complaint.id,
        reviewer_id,
    )
    return ReviewResult(action=action, complaint=complaint, approved=False, retry_action=retry)


async def review_action(
    session: AsyncSession,
    *,
    action_id: int,
    reviewer_id: str,
    approved: bool,
    notes: str | None = None,
) -> ReviewResult:
    if approved:
        return await approve_action(session, action_id=action_id, reviewer_id=reviewer_id)
    return await reject_action(session, action_id=action_id, reviewer_id=reviewer_id, notes=notes)


async def direct_status_update(
    session: AsyncSession,
    *,
    complaint_id: uuid.UUID,
    status: ComplaintStatus,
    admin_id: str,
) -> Complaint:
    """
    Admin override that sets a complaint's status without an action review.

    Resolving or closing the complaint also closes its live action, if any,
    so no attempt is left open against a finished complaint.
    """
    complaint = await require_complaint(session, complaint_id, for_update=True)
    previous = complaint.status

    if status in {ComplaintStatus.RESOLVED, ComplaintStatus.CLOSED}:
        live = await load_live_action(session, complaint.id)
        if live is not None:
            await _compare_and_set_action_status(
                session,
                live,
                expected=ActionStatus(live.status),
                target=ActionStatus.CLOSED,
            )

    if status == ComplaintStatus.RESOLVED:
        await resolve_complaint(session, complaint, resolver_id=admin_id)
    else:
        clear_resolved_fields(complaint, status=status)
    await session.flush()

    if status in {ComplaintStatus.RESOLVED, ComplaintStatus.CLOSED} and complaint.reporter_id is not None:
        label = "Resolved" if status == ComplaintStatus.RESOLVED else "Closed"
        await notify(
            session,
            recipient_id=complaint.reporter_id,
            sender_id=admin_id,
            title=f"Complaint {label}",
            description=f'Your complaint "{complaint.title}" has been marked as {label.lower()}.',
            complaint_id=complaint.id,
        )

    logger.info(
        "[workflow] complaint status set directly: complaint_id=%s %s -> %s by=%s",
        complaint.id,
        previous,
        status,
        admin_id,
    )
    return complaint
