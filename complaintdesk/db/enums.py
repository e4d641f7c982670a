from __future__ import annotations

from enum import StrEnum


class UserRole(StrEnum):
    USER = "user"
    WORKER = "worker"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class ComplaintCategory(StrEnum):
    BIODEGRADABLE = "biodegradable"
    NON_BIODEGRADABLE = "non-biodegradable"
    OTHER = "other"


class ComplaintStatus(StrEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    CLOSED = "closed"


class ActionStatus(StrEnum):
    IN_PROGRESS = "in_progress"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    CLOSED = "closed"


LIVE_ACTION_STATUSES: frozenset[ActionStatus] = frozenset(
    {ActionStatus.IN_PROGRESS, ActionStatus.UNDER_REVIEW}
)
