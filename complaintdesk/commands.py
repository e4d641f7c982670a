"""
Role-checked command surface.

Each command checks the caller's capability first (``Unauthorized`` /
``Forbidden`` are raised before any storage access), then runs exactly one
workflow transition or query inside one ``transition_scope``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from complaintdesk.db.enums import ComplaintCategory, ComplaintStatus, UserRole
from complaintdesk.db.models import Action, Complaint, Notification, User
from complaintdesk.db.transactions import transition_scope
from complaintdesk.errors import Forbidden, NotFound, ValidationError
from complaintdesk.services import (
    complaint_service,
    notification_service,
    reward_service,
    user_service,
    workflow_service,
)
from complaintdesk.services.blob_store import (
    BlobStore,
    get_blob_store,
    new_action_image_key,
    new_complaint_image_key,
)
from complaintdesk.services.complaint_service import ComplaintView
from complaintdesk.services.rbac_service import (
    SCOPE_ACTION_IMAGE_VIEW_ALL,
    SCOPE_ACTION_WORK,
    SCOPE_COMPLAINT_FILE,
    SCOPE_COMPLAINT_MANAGE,
    SCOPE_COMPLAINT_VIEW_ALL,
    SCOPE_ROLE_MANAGE,
    SCOPE_USER_SEARCH,
    CallerIdentity,
    parse_role,
    require_authenticated,
    require_scope,
)
from complaintdesk.services.workflow_service import ReviewResult, WorkerActionView

logger = logging.getLogger(__name__)

SessionFactoryType = async_sessionmaker[AsyncSession]


@dataclass(slots=True)
class EvidenceSubmission:
    action: Action
    image_key: str


async def _discard_blob(store: BlobStore, key: str) -> None:
    try:
        await store.delete(key)
    except Exception:
        logger.exception("Failed to discard orphaned blob %s", key)


async def file_complaint(
    caller: CallerIdentity | None,
    *,
    title: str,
    description: str | None,
    category: ComplaintCategory | str,
    latitude: float,
    longitude: float,
    image: bytes | None = None,
    session_factory: SessionFactoryType | None = None,
    blob_store: BlobStore | None = None,
) -> Complaint:
    identity = require_scope(caller, SCOPE_COMPLAINT_FILE)
    store = blob_store or get_blob_store()

    image_key = None
    if image:
        image_key = new_complaint_image_key()
        await store.put(image_key, image)

    try:
        async with transition_scope(session_factory, name="file_complaint") as scope:
            complaint = await complaint_service.create_complaint(
                scope.session,
                reporter_id=identity.user_id,
                title=title,
                description=description,
                category=category,
                latitude=latitude,
                longitude=longitude,
                evidence_image_key=image_key,
            )
    except Exception:
        if image_key is not None:
            await _discard_blob(store, image_key)
        raise
    return complaint


async def list_complaints(
    caller: CallerIdentity | None,
    *,
    session_factory: SessionFactoryType | None = None,
) -> list[ComplaintView]:
    identity = require_authenticated(caller)
    view_all = identity.can(SCOPE_COMPLAINT_VIEW_ALL)
    async with transition_scope(session_factory, name="list_complaints") as scope:
        return await complaint_service.list_complaints(
            scope.session,
            reporter_id=None if view_all else identity.user_id,
            include_actions=view_all,
        )


async def direct_status_update(
    caller: CallerIdentity | None,
    *,
    complaint_id: uuid.UUID | str,
    status: ComplaintStatus | str,
    session_factory: SessionFactoryType | None = None,
) -> Complaint:
    identity = require_scope(caller, SCOPE_COMPLAINT_MANAGE)
    parsed_id = complaint_service.parse_complaint_id(complaint_id)
    parsed_status = complaint_service.parse_complaint_status(status)
    async with transition_scope(session_factory, name="direct_status_update") as scope:
        return await workflow_service.direct_status_update(
            scope.session,
            complaint_id=parsed_id,
            status=parsed_status,
            admin_id=identity.user_id,
        )


async def delete_complaint(
    caller: CallerIdentity | None,
    *,
    complaint_id: uuid.UUID | str,
    session_factory: SessionFactoryType | None = None,
    blob_store: BlobStore | None = None,
) -> None:
    identity = require_scope(caller, SCOPE_COMPLAINT_MANAGE)
    parsed_id = complaint_service.parse_complaint_id(complaint_id)
    store = blob_store or get_blob_store()

    async with transition_scope(session_factory, name="delete_complaint") as scope:
        deletion = await complaint_service.delete_complaint(scope.session, complaint_id=parsed_id)
        for key in deletion.blob_keys:
            scope.after_commit(lambda key=key: store.delete(key))
    logger.info(
        "[commands] complaint deleted: complaint_id=%s by=%s blobs=%s",
        parsed_id,
        identity.user_id,
        len(deletion.blob_keys),
    )


async def assign_worker(
    caller: CallerIdentity | None,
    *,
    complaint_id: uuid.UUID | str,
    worker_id: str,
    session_factory: SessionFactoryType | None = None,
) -> int:
    identity = require_scope(caller, SCOPE_COMPLAINT_MANAGE)
    parsed_id = complaint_service.parse_complaint_id(complaint_id)
    async with transition_scope(session_factory, name="assign_worker") as scope:
        action = await workflow_service.assign_worker(
            scope.session,
            complaint_id=parsed_id,
            worker_id=worker_id,
            assigned_by=identity.user_id,
        )
    return action.id


async def review_action(
    caller: CallerIdentity | None,
    *,
    action_id: int,
    approved: bool,
    notes: str | None = None,
    session_factory: SessionFactoryType | None = None,
) -> ReviewResult:
    identity = require_scope(caller, SCOPE_COMPLAINT_MANAGE)
    async with transition_scope(session_factory, name="review_action") as scope:
        return await workflow_service.review_action(
            scope.session,
            action_id=action_id,
            reviewer_id=identity.user_id,
            approved=approved,
            notes=notes,
        )


async def submit_evidence(
    caller: CallerIdentity | None,
    *,
    action_id: int,
    image: bytes,
    session_factory: SessionFactoryType | None = None,
    blob_store: BlobStore | None = None,
) -> EvidenceSubmission:
    identity = require_scope(caller, SCOPE_ACTION_WORK)
    if not image:
        raise ValidationError("Image is required")
    store = blob_store or get_blob_store()

    # Reject before uploading when the action is plainly not submittable.
    async with transition_scope(session_factory, name="submit_evidence_precheck") as scope:
        action = await workflow_service.load_action(scope.session, action_id)
        if action is None or action.assigned_worker_id != identity.user_id:
            raise NotFound("Action not found or not assigned to you")

    image_key = new_action_image_key(identity.user_id)
    await store.put(image_key, image)
    try:
        async with transition_scope(session_factory, name="submit_evidence") as scope:
            action = await workflow_service.submit_evidence(
                scope.session,
                action_id=action_id,
                worker_id=identity.user_id,
                image_key=image_key,
            )
    except Exception:
        await _discard_blob(store, image_key)
        raise
    return EvidenceSubmission(action=action, image_key=image_key)


async def list_actions(
    caller: CallerIdentity | None,
    *,
    session_factory: SessionFactoryType | None = None,
) -> list[WorkerActionView]:
    identity = require_scope(caller, SCOPE_ACTION_WORK)
    async with transition_scope(session_factory, name="list_actions") as scope:
        return await workflow_service.list_worker_actions(scope.session, worker_id=identity.user_id)


async def action_image_url(
    caller: CallerIdentity | None,
    *,
    action_id: int,
    session_factory: SessionFactoryType | None = None,
    blob_store: BlobStore | None = None,
) -> str:
    identity = require_authenticated(caller)
    async with transition_scope(session_factory, name="action_image_url") as scope:
        action = await workflow_service.require_action(scope.session, action_id)
    if not identity.can(SCOPE_ACTION_IMAGE_VIEW_ALL) and action.assigned_worker_id != identity.user_id:
        raise Forbidden()
    if not action.evidence_image_key:
        raise NotFound("Image not attached")
    return await (blob_store or get_blob_store()).url(action.evidence_image_key, expires_in=300)


async def list_notifications(
    caller: CallerIdentity | None,
    *,
    session_factory: SessionFactoryType | None = None,
) -> list[Notification]:
    identity = require_authenticated(caller)
    async with transition_scope(session_factory, name="list_notifications") as scope:
        return await notification_service.list_notifications(scope.session, recipient_id=identity.user_id)


async def unread_count(
    caller: CallerIdentity | None,
    *,
    session_factory: SessionFactoryType | None = None,
) -> int:
    identity = require_authenticated(caller)
    async with transition_scope(session_factory, name="unread_count") as scope:
        return await notification_service.unread_count(scope.session, recipient_id=identity.user_id)


async def mark_read(
    caller: CallerIdentity | None,
    *,
    notification_id: int,
    session_factory: SessionFactoryType | None = None,
) -> bool:
    identity = require_authenticated(caller)
    async with transition_scope(session_factory, name="mark_read") as scope:
        return await notification_service.mark_read(
            scope.session,
            notification_id=notification_id,
            caller_id=identity.user_id,
        )


async def mark_all_read(
    caller: CallerIdentity | None,
    *,
    session_factory: SessionFactoryType | None = None,
) -> int:
    identity = require_authenticated(caller)
    async with transition_scope(session_factory, name="mark_all_read") as scope:
        return await notification_service.mark_all_read(scope.session, caller_id=identity.user_id)


async def reward_balance(
    caller: CallerIdentity | None,
    *,
    session_factory: SessionFactoryType | None = None,
) -> int:
    identity = require_authenticated(caller)
    async with transition_scope(session_factory, name="reward_balance") as scope:
        return await reward_service.get_balance(scope.session, user_id=identity.user_id)


async def search_users(
    caller: CallerIdentity | None,
    *,
    query: str,
    role: UserRole | str | None = None,
    session_factory: SessionFactoryType | None = None,
) -> list[User]:
    require_scope(caller, SCOPE_USER_SEARCH)
    role_filter = None
    if role is not None and str(role).strip().lower() not in {"", "all"}:
        role_filter = parse_role(role)
    async with transition_scope(session_factory, name="search_users") as scope:
        return await user_service.search_users(scope.session, query=query, role=role_filter)


async def change_user_role(
    caller: CallerIdentity | None,
    *,
    user_id: str,
    role: UserRole | str,
    session_factory: SessionFactoryType | None = None,
) -> User:
    identity = require_scope(caller, SCOPE_ROLE_MANAGE)
    parsed_role = parse_role(role)
    async with transition_scope(session_factory, name="change_user_role") as scope:
        return await user_service.change_user_role(
            scope.session,
            actor_id=identity.user_id,
            user_id=user_id,
            role=parsed_role,
        )
