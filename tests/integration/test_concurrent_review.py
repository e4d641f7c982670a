from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select

from complaintdesk import commands
from complaintdesk.config import settings
from complaintdesk.db.enums import ActionStatus, ComplaintStatus
from complaintdesk.db.models import Action, Complaint, Notification, RewardCredit
from complaintdesk.errors import InvalidState
from complaintdesk.services.reward_service import credit, get_balance


async def _under_review_action(session_factory, people, blob_store) -> tuple[Complaint, int]:
    complaint = await commands.file_complaint(
        people["reporter"],
        title="Blocked drain",
        description=None,
        category="other",
        latitude=1.0,
        longitude=1.0,
        session_factory=session_factory,
        blob_store=blob_store,
    )
    action_id = await commands.assign_worker(
        people["admin"],
        complaint_id=complaint.id,
        worker_id=people["worker"].user_id,
        session_factory=session_factory,
    )
    await commands.submit_evidence(
        people["worker"],
        action_id=action_id,
        image=b"photo",
        session_factory=session_factory,
        blob_store=blob_store,
    )
    return complaint, action_id


@pytest.mark.asyncio
async def test_concurrent_approvals_credit_exactly_once(session_factory, people, blob_store, monkeypatch) -> None:
    monkeypatch.setattr(settings, "resolution_reward_points", 10)
    complaint, action_id = await _under_review_action(session_factory, people, blob_store)

    results = await asyncio.gather(
        commands.review_action(people["admin"], action_id=action_id, approved=True, session_factory=session_factory),
        commands.review_action(people["super"], action_id=action_id, approved=True, session_factory=session_factory),
        return_exceptions=True,
    )

    failures = [result for result in results if isinstance(result, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], InvalidState)

    async with session_factory() as session:
        action = await session.get(Action, action_id)
        stored = await session.get(Complaint, complaint.id)
        credits = await session.scalar(select(func.count(RewardCredit.id)))
        reporter_notes = await session.scalar(
            select(func.count(Notification.id)).where(Notification.recipient_id == people["reporter"].user_id)
        )
        balance = await get_balance(session, user_id=people["reporter"].user_id)

    assert action.status == ActionStatus.RESOLVED
    assert stored.status == ComplaintStatus.RESOLVED
    assert credits == 1
    assert reporter_notes == 1
    assert balance == 10


@pytest.mark.asyncio
async def test_concurrent_approve_and_reject_have_one_winner(session_factory, people, blob_store) -> None:
    _, action_id = await _under_review_action(session_factory, people, blob_store)

    results = await asyncio.gather(
        commands.review_action(people["admin"], action_id=action_id, approved=True, session_factory=session_factory),
        commands.review_action(
            people["super"], action_id=action_id, approved=False, notes="redo", session_factory=session_factory
        ),
        return_exceptions=True,
    )

    assert sum(isinstance(result, InvalidState) for result in results) == 1
    async with session_factory() as session:
        actions = await session.scalar(select(func.count(Action.id)))
        action = await session.get(Action, action_id)
    assert action.status in {ActionStatus.RESOLVED, ActionStatus.CLOSED}
    assert actions == (2 if action.status == ActionStatus.CLOSED else 1)


@pytest.mark.asyncio
async def test_parallel_credits_do_not_lose_updates(session_factory, people) -> None:
    user_id = people["reporter"].user_id

    async def _credit(index: int) -> None:
        async with session_factory() as session:
            async with session.begin():
                await credit(session, user_id=user_id, amount=3, dedupe_key=f"parallel:{index}", reason="test")

    await asyncio.gather(*(_credit(index) for index in range(20)))

    async with session_factory() as session:
        assert await get_balance(session, user_id=user_id) == 60


@pytest.mark.asyncio
async def test_parallel_replays_of_one_event_credit_once(session_factory, people) -> None:
    user_id = people["reporter"].user_id

    async def _credit() -> None:
        async with session_factory() as session:
            async with session.begin():
                await credit(session, user_id=user_id, amount=5, dedupe_key="replayed:event", reason="test")

    await asyncio.gather(*(_credit() for _ in range(10)))

    async with session_factory() as session:
        assert await get_balance(session, user_id=user_id) == 5
