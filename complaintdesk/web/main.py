from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from complaintdesk import commands
from complaintdesk.config import settings
from complaintdesk.db.models import Action, Complaint, Notification, User
from complaintdesk.db.session import SessionFactory, dispose_database
from complaintdesk.errors import DomainError, ValidationError
from complaintdesk.logging_setup import configure_logging
from complaintdesk.services.blob_store import BlobStore, get_blob_store
from complaintdesk.services.complaint_service import ComplaintView
from complaintdesk.services.rbac_service import CallerIdentity
from complaintdesk.services.workflow_service import WorkerActionView
from complaintdesk.web.auth import resolve_caller_identity
from complaintdesk.web.schemas import (
    ActionIdRequest,
    AssignWorkerRequest,
    ChangeUserRoleRequest,
    ComplaintIdRequest,
    DirectStatusUpdateRequest,
    NotificationIdRequest,
    ReviewActionRequest,
    SearchUsersRequest,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    try:
        yield
    finally:
        await dispose_database()


app = FastAPI(title="ComplaintDesk API", version="0.1.0", lifespan=lifespan)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return SessionFactory


def get_blob_store_dependency() -> BlobStore:
    return get_blob_store()


async def get_caller(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> CallerIdentity | None:
    async with session_factory() as session:
        return await resolve_caller_identity(request, session)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    logger.warning("[web] %s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse({"code": exc.code, "detail": exc.message}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("[web] malformed request on %s", request.url.path)
    return JSONResponse(
        {"code": ValidationError.code, "detail": "Malformed input.", "errors": jsonable_errors(exc)},
        status_code=ValidationError.status_code,
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": str(error.get("msg", ""))}
        for error in exc.errors()
    ]


def _ts(value) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _user_brief(user: User | None) -> dict[str, Any] | None:
    if user is None:
        return None
    return {"id": user.id, "name": user.name}


def _user_payload(user: User) -> dict[str, Any]:
    return {"id": user.id, "name": user.name, "email": user.email, "role": str(user.role)}


def _action_payload(action: Action) -> dict[str, Any]:
    return {
        "id": action.id,
        "complaint_id": str(action.complaint_id),
        "assigned_worker_id": action.assigned_worker_id,
        "status": str(action.status),
        "evidence_image_key": action.evidence_image_key,
        "admin_notes": action.admin_notes,
        "created_at": _ts(action.created_at),
        "updated_at": _ts(action.updated_at),
    }


def _complaint_payload(complaint: Complaint) -> dict[str, Any]:
    return {
        "id": str(complaint.id),
        "reporter_id": complaint.reporter_id,
        "title": complaint.title,
        "description": complaint.description,
        "category": str(complaint.category),
        "latitude": complaint.latitude,
        "longitude": complaint.longitude,
        "evidence_image_key": complaint.evidence_image_key,
        "status": str(complaint.status),
        "resolved_at": _ts(complaint.resolved_at),
        "resolved_by": complaint.resolved_by,
        "created_at": _ts(complaint.created_at),
        "updated_at": _ts(complaint.updated_at),
    }


def _complaint_view_payload(view: ComplaintView) -> dict[str, Any]:
    payload = _complaint_payload(view.complaint)
    payload["reporter"] = _user_brief(view.reporter)
    if view.actions is not None:
        payload["actions"] = [_action_payload(action) for action in view.actions]
    return payload


def _worker_action_payload(view: WorkerActionView) -> dict[str, Any]:
    payload = _action_payload(view.action)
    complaint = _complaint_payload(view.complaint)
    complaint["reporter"] = _user_brief(view.reporter)
    payload["complaint"] = complaint
    return payload


def _notification_payload(notification: Notification) -> dict[str, Any]:
    return {
        "id": notification.id,
        "recipient_id": notification.recipient_id,
        "sender_id": notification.sender_id,
        "title": notification.title,
        "description": notification.description,
        "complaint_id": str(notification.complaint_id) if notification.complaint_id else None,
        "action_id": notification.action_id,
        "read": notification.read,
        "created_at": _ts(notification.created_at),
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/rpc/file_complaint")
async def rpc_file_complaint(
    title: str = Form(...),
    category: str = Form(...),
    latitude: float = Form(...),
    longitude: float = Form(...),
    description: str | None = Form(None),
    image: UploadFile | None = File(None),
    caller: CallerIdentity | None = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    blob_store: BlobStore = Depends(get_blob_store_dependency),
) -> dict[str, Any]:
    image_bytes = await image.read() if image is not None else None
    complaint = await commands.file_complaint(
        caller,
        title=title,
        description=description,
        category=category,
        latitude=latitude,
        longitude=longitude,
        image=image_bytes,
        session_factory=session_factory,
        blob_store=blob_store,
    )
    return {"complaint": _complaint_payload(complaint)}


@app.post("/rpc/list_complaints")
async def rpc_list_complaints(
    caller: CallerIdentity | None = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict[str, Any]:
    views = await commands.list_complaints(caller, session_factory=session_factory)
    return {"complaints": [_complaint_view_payload(view) for view in views]}


@app.post("/rpc/direct_status_update")
async def rpc_direct_status_update(
    payload: DirectStatusUpdateRequest,
    caller: CallerIdentity | None = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict[str, Any]:
    complaint = await commands.direct_status_update(
        caller,
        complaint_id=payload.complaint_id,
        status=payload.status,
        session_factory=session_factory,
    )
    return {"success": True, "complaint": _complaint_payload(complaint)}


@app.post("/rpc/delete_complaint")
async def rpc_delete_complaint(
    payload: ComplaintIdRequest,
    caller: CallerIdentity | None = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    blob_store: BlobStore = Depends(get_blob_store_dependency),
) -> dict[str, Any]:
    await commands.delete_complaint(
        caller,
        complaint_id=payload.complaint_id,
        session_factory=session_factory,
        blob_store=blob_store,
    )
    return {"success": True}


@app.post("/rpc/assign_worker")
async def rpc_assign_worker(
    payload: AssignWorkerRequest,
    caller: CallerIdentity | None = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict[str, Any]:
    action_id = await commands.assign_worker(
        caller,
        complaint_id=payload.complaint_id,
        worker_id=payload.worker_id,
        session_factory=session_factory,
    )
    return {"action_id": action_id}


@app.post("/rpc/review_action")
async def rpc_review_action(
    payload: ReviewActionRequest,
    caller: CallerIdentity | None = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict[str, Any]:
    result = await commands.review_action(
        caller,
        action_id=payload.action_id,
        approved=payload.approved,
        notes=payload.notes,
        session_factory=session_factory,
    )
    response: dict[str, Any] = {"success": True, "action": _action_payload(result.action)}
    if result.retry_action is not None:
        response["retry_action"] = _action_payload(result.retry_action)
    return response


@app.post("/rpc/submit_evidence")
async def rpc_submit_evidence(
    action_id: int = Form(...),
    image: UploadFile = File(...),
    caller: CallerIdentity | None = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    blob_store: BlobStore = Depends(get_blob_store_dependency),
) -> dict[str, Any]:
    submission = await commands.submit_evidence(
        caller,
        action_id=action_id,
        image=await image.read(),
        session_factory=session_factory,
        blob_store=blob_store,
    )
    return {"success": True, "key": submission.image_key}


@app.post("/rpc/list_actions")
async def rpc_list_actions(
    caller: CallerIdentity | None = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict[str, Any]:
    views = await commands.list_actions(caller, session_factory=session_factory)
    return {"actions": [_worker_action_payload(view) for view in views]}


@app.post("/rpc/action_image_url")
async def rpc_action_image_url(
    payload: ActionIdRequest,
    caller: CallerIdentity | None = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    blob_store: BlobStore = Depends(get_blob_store_dependency),
) -> dict[str, Any]:
    url = await commands.action_image_url(
        caller,
        action_id=payload.action_id,
        session_factory=session_factory,
        blob_store=blob_store,
    )
    return {"url": url}


@app.post("/rpc/list_notifications")
async def rpc_list_notifications(
    caller: CallerIdentity | None = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict[str, Any]:
    notifications = await commands.list_notifications(caller, session_factory=session_factory)
    return {"notifications": [_notification_payload(item) for item in notifications]}


@app.post("/rpc/unread_count")
async def rpc_unread_count(
    caller: CallerIdentity | None = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict[str, Any]:
    return {"count": await commands.unread_count(caller, session_factory=session_factory)}


@app.post("/rpc/mark_read")
async def rpc_mark_read(
    payload: NotificationIdRequest,
    caller: CallerIdentity | None = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict[str, Any]:
    await commands.mark_read(
        caller,
        notification_id=payload.notification_id,
        session_factory=session_factory,
    )
    return {"success": True}


@app.post("/rpc/mark_all_read")
async def rpc_mark_all_read(
    caller: CallerIdentity | None = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict[str, Any]:
    updated = await commands.mark_all_read(caller, session_factory=session_factory)
    return {"success": True, "updated": updated}


@app.post("/rpc/reward_balance")
async def rpc_reward_balance(
    caller: CallerIdentity | None = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict[str, Any]:
    return {"reward_points": await commands.reward_balance(caller, session_factory=session_factory)}


@app.post("/rpc/search_users")
async def rpc_search_users(
    payload: SearchUsersRequest,
    caller: CallerIdentity | None = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict[str, Any]:
    users = await commands.search_users(
        caller,
        query=payload.query,
        role=payload.role,
        session_factory=session_factory,
    )
    return {"users": [_user_payload(user) for user in users]}


@app.post("/rpc/change_user_role")
async def rpc_change_user_role(
    payload: ChangeUserRoleRequest,
    caller: CallerIdentity | None = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict[str, Any]:
    await commands.change_user_role(
        caller,
        user_id=payload.user_id,
        role=payload.role,
        session_factory=session_factory,
    )
    return {"success": True}


def main() -> None:
    configure_logging(settings.log_level)
    uvicorn.run(
        "complaintdesk.web.main:app",
        host=settings.web_host,
        port=settings.web_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
