"""
Domain error taxonomy for the complaint workflow.

Every command raises one of these; the web layer maps ``status_code`` and
``code`` onto the HTTP response.  Raising inside a transition scope rolls the
whole transaction back, so no partial effect ever reaches storage.

+-----------------+-------------------+------+
| Error           | code              | HTTP |
+-----------------+-------------------+------+
| Unauthorized    | unauthorized      | 401  |
| Forbidden       | forbidden         | 403  |
| NotFound        | not_found         | 404  |
| InvalidState    | invalid_state     | 409  |
| InvalidTarget   | invalid_target    | 422  |
| ValidationError | validation_error  | 400  |
+-----------------+-------------------+------+
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for business-rule violations."""

    code = "domain_error"
    status_code = 400
    default_message = "A business rule was violated."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(DomainError):
    code = "unauthorized"
    status_code = 401
    default_message = "Authentication required."


class Forbidden(DomainError):
    code = "forbidden"
    status_code = 403
    default_message = "You do not have permission to perform this action."


class NotFound(DomainError):
    code = "not_found"
    status_code = 404
    default_message = "The requested resource was not found."


class InvalidTarget(DomainError):
    """The referenced user exists but lacks the role the operation needs."""

    code = "invalid_target"
    status_code = 422
    default_message = "The referenced user cannot be used for this operation."


class InvalidState(DomainError):
    """
    A transition was attempted from a status that does not allow it.

    ``current`` and ``target`` are kept for logging; either may be ``None``
    when the status is unknown (e.g. a compare-and-set lost a race).
    """

    code = "invalid_state"
    status_code = 409
    default_message = "Invalid state transition."

    def __init__(
        self,
        message: str | None = None,
        *,
        current: str | None = None,
        target: str | None = None,
    ) -> None:
        if message is None:
            parts = ["Invalid state transition"]
            if current and target:
                parts.append(f"from '{current}' to '{target}'")
            message = " ".join(parts) + "."
        super().__init__(message)
        self.current = current
        self.target = target


class ValidationError(DomainError):
    code = "validation_error"
    status_code = 400
    default_message = "Malformed input."
