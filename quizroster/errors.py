"""Error taxonomy for enrollment, invites and join sessions.

Every error carries the HTTP status and machine-readable code used at the API
boundary. ``expected`` marks outcomes that are part of normal operation
(a stale QR code, a forbidden group) so they are logged as rejections rather
than crashes.
"""

from __future__ import annotations

from typing import Any, Dict


class RosterError(Exception):
    """Base class for all quizroster domain errors."""

    status_code = 500
    code = "internal"
    expected = True

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_payload(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class InvalidInput(RosterError):
    """Malformed or empty request. Not retryable."""

    status_code = 400
    code = "invalid_input"


class Unauthorized(RosterError):
    status_code = 401
    code = "unauthorized"


class Forbidden(RosterError):
    """The caller does not own the resource or has the wrong role."""

    status_code = 403
    code = "forbidden"


class NotFound(RosterError):
    status_code = 404
    code = "not_found"


class Conflict(RosterError):
    """The target exists but is in a state that forbids the operation."""

    status_code = 409
    code = "conflict"


class Gone(RosterError):
    """The token existed but can no longer be used; ask for a fresh one."""

    status_code = 410
    code = "gone"


class Expired(Gone):
    code = "expired"


class Inactive(Gone):
    code = "inactive"


class RateLimited(RosterError):
    """Too many calls in the current window.

    Args:
        retry_after: Seconds until the window resets. Always at least 1.
    """

    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str, *, retry_after: int) -> None:
        self.retry_after = max(1, int(retry_after))
        super().__init__(message)

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["retry_after"] = self.retry_after
        return payload


class Internal(RosterError):
    """Store or provider failure. Safe to retry, every mutation is idempotent."""

    status_code = 500
    code = "internal"
    expected = False
