from __future__ import annotations

from dataclasses import dataclass

from complaintdesk.db.enums import UserRole
from complaintdesk.errors import Forbidden, Unauthorized, ValidationError

SCOPE_COMPLAINT_FILE = "complaint:file"
SCOPE_COMPLAINT_VIEW_ALL = "complaint:view-all"
SCOPE_COMPLAINT_MANAGE = "complaint:manage"
SCOPE_ACTION_WORK = "action:work"
SCOPE_ACTION_IMAGE_VIEW_ALL = "action-image:view-all"
SCOPE_USER_SEARCH = "user:search"
SCOPE_ROLE_MANAGE = "role:manage"

MEMBER_SCOPES = frozenset({SCOPE_COMPLAINT_FILE})
WORKER_SCOPES = MEMBER_SCOPES | frozenset({SCOPE_ACTION_WORK})
ADMIN_SCOPES = MEMBER_SCOPES | frozenset(
    {
        SCOPE_COMPLAINT_VIEW_ALL,
        SCOPE_COMPLAINT_MANAGE,
        SCOPE_ACTION_IMAGE_VIEW_ALL,
        SCOPE_USER_SEARCH,
    }
)
SUPER_ADMIN_SCOPES = ADMIN_SCOPES | frozenset({SCOPE_ROLE_MANAGE})

ROLE_SCOPES: dict[UserRole, frozenset[str]] = {
    UserRole.USER: MEMBER_SCOPES,
    UserRole.WORKER: WORKER_SCOPES,
    UserRole.ADMIN: ADMIN_SCOPES,
    UserRole.SUPER_ADMIN: SUPER_ADMIN_SCOPES,
}


@dataclass(slots=True, frozen=True)
class CallerIdentity:
    user_id: str
    role: UserRole

    @property
    def scopes(self) -> frozenset[str]:
        return resolve_role_scopes(self.role)

    def can(self, scope: str) -> bool:
        return scope in self.scopes


def parse_role(raw: str | UserRole) -> UserRole:
    try:
        return UserRole(str(raw).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown role: {raw}") from None


def resolve_role_scopes(role: UserRole | str) -> frozenset[str]:
    return ROLE_SCOPES.get(UserRole(role), frozenset())


def require_authenticated(caller: CallerIdentity | None) -> CallerIdentity:
    if caller is None:
        raise Unauthorized()
    return caller


def require_scope(caller: CallerIdentity | None, scope: str) -> CallerIdentity:
    identity = require_authenticated(caller)
    if not identity.can(scope):
        raise Forbidden(f"Role '{identity.role}' lacks capability '{scope}'")
    return identity
