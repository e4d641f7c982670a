from __future__ import annotations

import uuid

from pydantic import BaseModel, Field

from complaintdesk.db.enums import ComplaintStatus, UserRole


class ComplaintIdRequest(BaseModel):
    complaint_id: uuid.UUID


class DirectStatusUpdateRequest(BaseModel):
    complaint_id: uuid.UUID
    status: ComplaintStatus


class AssignWorkerRequest(BaseModel):
    complaint_id: uuid.UUID
    worker_id: str = Field(min_length=1)


class ReviewActionRequest(BaseModel):
    action_id: int
    approved: bool
    notes: str | None = None


class ActionIdRequest(BaseModel):
    action_id: int


class NotificationIdRequest(BaseModel):
    notification_id: int


class SearchUsersRequest(BaseModel):
    query: str = Field(min_length=1, max_length=100)
    role: UserRole | None = None


class ChangeUserRoleRequest(BaseModel):
    user_id: str = Field(min_length=1)
    role: UserRole
