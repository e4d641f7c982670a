from __future__ import annotations

import uuid

import pytest
from sqlalchemy import func, select

from complaintdesk import commands
from complaintdesk.config import settings
from complaintdesk.db.enums import ActionStatus, ComplaintStatus, UserRole
from complaintdesk.db.models import Action, Complaint, Notification, User
from complaintdesk.errors import Forbidden, InvalidState, NotFound, Unauthorized, ValidationError

pytest.importorskip("aiosqlite")


class _ExplodingSessionFactory:
    def __call__(self):
        raise AssertionError("storage must not be touched before authorization")


async def _file(people, session_factory, blob_store, *, image: bytes | None = None) -> Complaint:
    return await commands.file_complaint(
        people["reporter"],
        title="Illegal dumping",
        description="Behind the market",
        category="other",
        latitude=-33.86,
        longitude=151.2,
        image=image,
        session_factory=session_factory,
        blob_store=blob_store,
    )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("command", "kwargs"),
    [
        ("list_complaints", {}),
        ("reward_balance", {}),
        ("list_notifications", {}),
        ("mark_all_read", {}),
        ("assign_worker", {"complaint_id": uuid.uuid4(), "worker_id": "wrk-1"}),
        ("review_action", {"action_id": 1, "approved": True}),
        ("list_actions", {}),
        ("change_user_role", {"user_id": "rep-1", "role": "admin"}),
    ],
)
async def test_unauthenticated_callers_are_rejected_before_storage(command, kwargs) -> None:
    with pytest.raises(Unauthorized):
        await getattr(commands, command)(None, session_factory=_ExplodingSessionFactory(), **kwargs)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("role_label", "command", "kwargs"),
    [
        ("reporter", "assign_worker", {"complaint_id": uuid.uuid4(), "worker_id": "wrk-1"}),
        ("worker", "review_action", {"action_id": 1, "approved": True}),
        ("reporter", "direct_status_update", {"complaint_id": uuid.uuid4(), "status": "closed"}),
        ("worker", "search_users", {"query": "a"}),
        ("reporter", "list_actions", {}),
        ("admin", "list_actions", {}),
        ("admin", "change_user_role", {"user_id": "rep-1", "role": "worker"}),
    ],
)
async def test_wrong_role_is_forbidden_before_storage(people, role_label, command, kwargs) -> None:
    with pytest.raises(Forbidden):
        await getattr(commands, command)(
            people[role_label],
            session_factory=_ExplodingSessionFactory(),
            **kwargs,
        )


@pytest.mark.asyncio
async def test_file_complaint_stores_image_key(session_factory, people, blob_store) -> None:
    complaint = await _file(people, session_factory, blob_store, image=b"jpeg-bytes")

    assert complaint.status == ComplaintStatus.OPEN
    assert complaint.reporter_id == people["reporter"].user_id
    assert complaint.evidence_image_key is not None
    assert complaint.evidence_image_key.startswith("complaints/")
    assert blob_store.blobs[complaint.evidence_image_key] == b"jpeg-bytes"


@pytest.mark.asyncio
async def test_invalid_complaint_discards_uploaded_image(session_factory, people, blob_store) -> None:
    with pytest.raises(ValidationError):
        await commands.file_complaint(
            people["reporter"],
            title="Bad coordinates",
            description=None,
            category="other",
            latitude=120.0,
            longitude=0.0,
            image=b"jpeg-bytes",
            session_factory=session_factory,
            blob_store=blob_store,
        )

    assert blob_store.blobs == {}
    assert len(blob_store.deleted) == 1


@pytest.mark.asyncio
async def test_list_complaints_scopes_by_role(session_factory, people, blob_store) -> None:
    mine = await _file(people, session_factory, blob_store)
    await commands.file_complaint(
        people["other"],
        title="Broken streetlight",
        description=None,
        category="other",
        latitude=0.0,
        longitude=0.0,
        session_factory=session_factory,
        blob_store=blob_store,
    )
    await commands.assign_worker(
        people["admin"],
        complaint_id=mine.id,
        worker_id=people["worker"].user_id,
        session_factory=session_factory,
    )

    own = await commands.list_complaints(people["reporter"], session_factory=session_factory)
    everything = await commands.list_complaints(people["admin"], session_factory=session_factory)

    assert [view.complaint.id for view in own] == [mine.id]
    assert own[0].actions is None
    assert own[0].reporter.name == "Riya Reporter"
    assert len(everything) == 2
    by_id = {view.complaint.id: view for view in everything}
    assert [action.status for action in by_id[mine.id].actions] == [ActionStatus.IN_PROGRESS]


@pytest.mark.asyncio
async def test_worker_flow_through_commands(session_factory, people, blob_store, monkeypatch) -> None:
    monkeypatch.setattr(settings, "resolution_reward_points", 10)
    complaint = await _file(people, session_factory, blob_store)
    action_id = await commands.assign_worker(
        people["admin"],
        complaint_id=str(complaint.id),
        worker_id=people["worker"].user_id,
        session_factory=session_factory,
    )

    tasks = await commands.list_actions(people["worker"], session_factory=session_factory)
    assert [view.action.id for view in tasks] == [action_id]
    assert tasks[0].complaint.title == "Illegal dumping"
    assert tasks[0].reporter.id == people["reporter"].user_id
    assert await commands.list_actions(people["worker2"], session_factory=session_factory) == []

    submission = await commands.submit_evidence(
        people["worker"],
        action_id=action_id,
        image=b"after-photo",
        session_factory=session_factory,
        blob_store=blob_store,
    )
    assert submission.action.status == ActionStatus.UNDER_REVIEW
    assert submission.image_key.startswith(f"actions/{people['worker'].user_id}-")
    assert blob_store.blobs[submission.image_key] == b"after-photo"

    result = await commands.review_action(
        people["admin"],
        action_id=action_id,
        approved=True,
        session_factory=session_factory,
    )
    assert result.approved is True
    assert await commands.reward_balance(people["reporter"], session_factory=session_factory) == 10
    assert await commands.reward_balance(people["worker"], session_factory=session_factory) == 0
    assert await commands.unread_count(people["reporter"], session_factory=session_factory) == 1


@pytest.mark.asyncio
async def test_submit_evidence_rejects_before_upload(session_factory, people, blob_store) -> None:
    complaint = await _file(people, session_factory, blob_store)
    action_id = await commands.assign_worker(
        people["admin"],
        complaint_id=complaint.id,
        worker_id=people["worker"].user_id,
        session_factory=session_factory,
    )

    with pytest.raises(ValidationError):
        await commands.submit_evidence(
            people["worker"],
            action_id=action_id,
            image=b"",
            session_factory=session_factory,
            blob_store=blob_store,
        )
    with pytest.raises(NotFound):
        await commands.submit_evidence(
            people["worker2"],
            action_id=action_id,
            image=b"photo",
            session_factory=session_factory,
            blob_store=blob_store,
        )

    assert blob_store.blobs == {}


@pytest.mark.asyncio
async def test_submit_evidence_twice_discards_second_upload(session_factory, people, blob_store) -> None:
    complaint = await _file(people, session_factory, blob_store)
    action_id = await commands.assign_worker(
        people["admin"],
        complaint_id=complaint.id,
        worker_id=people["worker"].user_id,
        session_factory=session_factory,
    )
    first = await commands.submit_evidence(
        people["worker"],
        action_id=action_id,
        image=b"photo-1",
        session_factory=session_factory,
        blob_store=blob_store,
    )

    with pytest.raises(InvalidState):
        await commands.submit_evidence(
            people["worker"],
            action_id=action_id,
            image=b"photo-2",
            session_factory=session_factory,
            blob_store=blob_store,
        )

    assert list(blob_store.blobs) == [first.image_key]


@pytest.mark.asyncio
async def test_action_image_url_access(session_factory, people, blob_store) -> None:
    complaint = await _file(people, session_factory, blob_store)
    action_id = await commands.assign_worker(
        people["admin"],
        complaint_id=complaint.id,
        worker_id=people["worker"].user_id,
        session_factory=session_factory,
    )

    with pytest.raises(NotFound):
        await commands.action_image_url(
            people["admin"], action_id=action_id, session_factory=session_factory, blob_store=blob_store
        )

    submission = await commands.submit_evidence(
        people["worker"],
        action_id=action_id,
        image=b"photo",
        session_factory=session_factory,
        blob_store=blob_store,
    )

    admin_url = await commands.action_image_url(
        people["admin"], action_id=action_id, session_factory=session_factory, blob_store=blob_store
    )
    worker_url = await commands.action_image_url(
        people["worker"], action_id=action_id, session_factory=session_factory, blob_store=blob_store
    )
    assert submission.image_key in admin_url
    assert admin_url == worker_url

    for label in ("worker2", "reporter"):
        with pytest.raises(Forbidden):
            await commands.action_image_url(
                people[label], action_id=action_id, session_factory=session_factory, blob_store=blob_store
            )
    with pytest.raises(NotFound):
        await commands.action_image_url(
            people["admin"], action_id=action_id + 100, session_factory=session_factory, blob_store=blob_store
        )


@pytest.mark.asyncio
async def test_delete_complaint_removes_rows_and_blobs_after_commit(session_factory, people, blob_store) -> None:
    complaint = await _file(people, session_factory, blob_store, image=b"before")
    action_id = await commands.assign_worker(
        people["admin"],
        complaint_id=complaint.id,
        worker_id=people["worker"].user_id,
        session_factory=session_factory,
    )
    submission = await commands.submit_evidence(
        people["worker"],
        action_id=action_id,
        image=b"after",
        session_factory=session_factory,
        blob_store=blob_store,
    )

    await commands.delete_complaint(
        people["admin"],
        complaint_id=complaint.id,
        session_factory=session_factory,
        blob_store=blob_store,
    )

    assert sorted(blob_store.deleted) == sorted([complaint.evidence_image_key, submission.image_key])
    assert blob_store.blobs == {}
    async with session_factory() as session:
        assert await session.get(Complaint, complaint.id) is None
        assert await session.get(Action, action_id) is None
        remaining = await session.scalar(
            select(func.count(Notification.id)).where(Notification.complaint_id == complaint.id)
        )
    assert remaining == 0

    with pytest.raises(NotFound):
        await commands.delete_complaint(
            people["admin"],
            complaint_id=complaint.id,
            session_factory=session_factory,
            blob_store=blob_store,
        )


@pytest.mark.asyncio
async def test_delete_complaint_survives_blob_store_failure(session_factory, people, blob_store) -> None:
    complaint = await _file(people, session_factory, blob_store, image=b"before")
    blob_store.fail_deletes = True

    await commands.delete_complaint(
        people["admin"],
        complaint_id=complaint.id,
        session_factory=session_factory,
        blob_store=blob_store,
    )

    assert blob_store.deleted == [complaint.evidence_image_key]
    async with session_factory() as session:
        assert await session.get(Complaint, complaint.id) is None


@pytest.mark.asyncio
async def test_direct_status_update_rejects_unknown_status(session_factory, people, blob_store) -> None:
    complaint = await _file(people, session_factory, blob_store)
    with pytest.raises(ValidationError):
        await commands.direct_status_update(
            people["admin"],
            complaint_id=complaint.id,
            status="archived",
            session_factory=session_factory,
        )
    with pytest.raises(ValidationError):
        await commands.direct_status_update(
            people["admin"],
            complaint_id="not-a-uuid",
            status="closed",
            session_factory=session_factory,
        )


@pytest.mark.asyncio
async def test_notification_commands_are_caller_scoped(session_factory, people, blob_store) -> None:
    complaint = await _file(people, session_factory, blob_store)
    await commands.direct_status_update(
        people["admin"],
        complaint_id=complaint.id,
        status="closed",
        session_factory=session_factory,
    )

    items = await commands.list_notifications(people["reporter"], session_factory=session_factory)
    assert [item.title for item in items] == ["Complaint Closed"]
    assert await commands.mark_read(
        people["other"], notification_id=items[0].id, session_factory=session_factory
    ) is False
    assert await commands.unread_count(people["reporter"], session_factory=session_factory) == 1
    assert await commands.mark_all_read(people["reporter"], session_factory=session_factory) == 1
    assert await commands.unread_count(people["reporter"], session_factory=session_factory) == 0


@pytest.mark.asyncio
async def test_search_users_filters_by_role(session_factory, people) -> None:
    workers = await commands.search_users(
        people["admin"], query="w", role="worker", session_factory=session_factory
    )
    everyone = await commands.search_users(
        people["admin"], query="example.org", role="all", session_factory=session_factory
    )

    assert {user.id for user in workers} == {"wrk-1", "wrk-2"}
    assert len(everyone) == 6
    with pytest.raises(ValidationError):
        await commands.search_users(people["admin"], query="   ", session_factory=session_factory)


@pytest.mark.asyncio
async def test_change_user_role_rules(session_factory, people) -> None:
    updated = await commands.change_user_role(
        people["super"], user_id="rep-2", role="worker", session_factory=session_factory
    )
    assert updated.role == UserRole.WORKER

    async with session_factory() as session:
        stored = await session.get(User, "rep-2")
    assert stored.role == UserRole.WORKER

    with pytest.raises(ValidationError):
        await commands.change_user_role(
            people["super"], user_id=people["super"].user_id, role="user", session_factory=session_factory
        )
    with pytest.raises(NotFound):
        await commands.change_user_role(
            people["super"], user_id="ghost", role="user", session_factory=session_factory
        )
    with pytest.raises(ValidationError):
        await commands.change_user_role(
            people["super"], user_id="rep-1", role="overlord", session_factory=session_factory
        )


@pytest.mark.asyncio
async def test_admin_listing_is_not_capped(session_factory, people, blob_store) -> None:
    async with session_factory() as session:
        async with session.begin():
            for index in range(105):
                session.add(
                    Complaint(
                        reporter_id=people["reporter"].user_id,
                        title=f"Complaint {index}",
                        category="other",
                        latitude=0.0,
                        longitude=0.0,
                    )
                )

    everything = await commands.list_complaints(people["admin"], session_factory=session_factory)
    own = await commands.list_complaints(people["reporter"], session_factory=session_factory)

    assert len(everything) == 105
    assert len(own) == 105


@pytest.mark.asyncio
async def test_submit_evidence_discards_upload_on_storage_failure(
    session_factory, people, blob_store, monkeypatch
) -> None:
    complaint = await _file(people, session_factory, blob_store)
    action_id = await commands.assign_worker(
        people["admin"],
        complaint_id=complaint.id,
        worker_id=people["worker"].user_id,
        session_factory=session_factory,
    )

    async def _broken_submit(session, **kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(commands.workflow_service, "submit_evidence", _broken_submit)

    with pytest.raises(RuntimeError, match="connection reset"):
        await commands.submit_evidence(
            people["worker"],
            action_id=action_id,
            image=b"photo",
            session_factory=session_factory,
            blob_store=blob_store,
        )

    assert blob_store.blobs == {}
    assert len(blob_store.deleted) == 1
    async with session_factory() as session:
        action = await session.get(Action, action_id)
    assert action.status == ActionStatus.IN_PROGRESS
