from __future__ import annotations

import hashlib
import hmac
from datetime import UTC, datetime

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from complaintdesk.config import settings
from complaintdesk.db.enums import UserRole
from complaintdesk.services.rbac_service import CallerIdentity
from complaintdesk.services.user_service import load_user

SESSION_COOKIE_NAME = "cd_session"


def _session_secret() -> bytes:
    return settings.session_secret.strip().encode("utf-8")


def _sign(payload: str) -> str:
    return hmac.new(_session_secret(), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def build_session_token(user_id: str, *, now: datetime | None = None) -> str:
    if ":" in user_id:
        raise ValueError("user_id must not contain ':'")
    issued = now or datetime.now(UTC)
    expires_at = int(issued.timestamp()) + max(settings.session_max_age_seconds, 60)
    payload = f"{user_id}:{expires_at}"
    return f"{payload}:{_sign(payload)}"


def validate_session_token(value: str, *, now: datetime | None = None) -> str | None:
    if not _session_secret():
        return None

    parts = value.split(":")
    if len(parts) != 3:
        return None
    user_id, expires_raw, signature = parts
    if not user_id or not expires_raw.isdigit():
        return None

    expected = _sign(f"{user_id}:{expires_raw}")
    if not hmac.compare_digest(signature, expected):
        return None

    current = now or datetime.now(UTC)
    if int(expires_raw) < int(current.timestamp()):
        return None
    return user_id


def _token_from_request(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    cookie = request.cookies.get(SESSION_COOKIE_NAME, "")
    return cookie or None


async def resolve_caller_identity(request: Request, session: AsyncSession) -> CallerIdentity | None:
    token = _token_from_request(request)
    if token is None:
        return None

    user_id = validate_session_token(token)
    if user_id is None:
        return None

    user = await load_user(session, user_id)
    if user is None:
        return None
    return CallerIdentity(user_id=user.id, role=UserRole(user.role))
