"""
Domain errors raised by the service layer.

Each error carries a machine-readable ``kind`` and the HTTP status the JSON
error handler in ``create_app`` responds with:

    {"error": "Session is full", "code": "SessionFull"}

Uniqueness violations raised by the database at flush time are mapped to the
same errors a pre-check would have raised via ``translate_integrity_error``.
"""
from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

logger = logging.getLogger(__name__)


class ClubError(Exception):
    kind = "ClubError"
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "code": self.kind}


class ValidationFailed(ClubError):
    kind = "ValidationFailed"
    default_message = "Invalid request"


class DuplicateEmail(ClubError):
    kind = "DuplicateEmail"
    default_message = "Email already exists"


class AlreadyExists(ClubError):
    kind = "AlreadyExists"
    default_message = "Already exists"


class InvalidType(ClubError):
    kind = "InvalidType"
    default_message = "Invalid type"


class NotFound(ClubError):
    kind = "NotFound"
    status_code = 404
    default_message = "Not found"


class AlreadyBooked(ClubError):
    kind = "AlreadyBooked"
    default_message = "Already booked this session"


class SessionFull(ClubError):
    kind = "SessionFull"
    default_message = "Session is full"


class NotBooked(ClubError):
    kind = "NotBooked"
    default_message = "You have not booked this session"


class OutOfStock(ClubError):
    kind = "OutOfStock"
    default_message = "Gear out of stock"


class NotPending(ClubError):
    kind = "NotPending"
    default_message = "Request is not pending"


class NotApproved(ClubError):
    kind = "NotApproved"
    default_message = "Request is not approved"


class AlreadyCandidate(ClubError):
    kind = "AlreadyCandidate"
    default_message = "You are already a candidate"


class AlreadyVoted(ClubError):
    kind = "AlreadyVoted"
    default_message = "You have already voted"


class InvalidChoice(ClubError):
    kind = "InvalidChoice"
    default_message = "Invalid choice"


class ElectionsClosed(ClubError):
    kind = "ElectionsClosed"
    status_code = 403
    default_message = "Elections are not currently open"


class Unauthorized(ClubError):
    kind = "Unauthorized"
    status_code = 403
    default_message = "Unauthorized"


class MembershipRequired(ClubError):
    kind = "MembershipRequired"
    status_code = 403
    default_message = "An active membership is required"


class InvalidCode(ClubError):
    kind = "InvalidCode"
    default_message = "Invalid or expired code"


class InvalidToken(ClubError):
    kind = "InvalidToken"
    default_message = "Invalid or expired reset token"


class StoreFailure(ClubError):
    kind = "StoreFailure"
    status_code = 500
    default_message = "Database error"


# (constraint name, sqlite "table.column" marker) -> error
_CONSTRAINT_ERRORS: tuple[tuple[tuple[str, ...], type[ClubError], str | None], ...] = (
    (("uq_users_email", "users.email"), DuplicateEmail, None),
    (("pk_bookings", "bookings.user_id"), AlreadyBooked, None),
    # referendum_votes before votes: "votes.user_id" is a substring of its marker
    (("pk_referendum_votes", "referendum_votes.user_id"), AlreadyVoted, "You have already voted on this referendum"),
    (("pk_votes", "votes.user_id"), AlreadyVoted, None),
    (("pk_candidates", "candidates.user_id"), AlreadyCandidate, None),
    (("uq_user_membership", "user_memberships.user_id"), AlreadyExists, "Membership already exists"),
    (("pk_membership_types", "membership_types.id"), AlreadyExists, "Membership type already exists"),
    (("pk_session_types", "session_types.id"), AlreadyExists, "Session type already exists"),
)


def _constraint_name(exc: IntegrityError) -> str | None:
    diag = getattr(exc.orig, "diag", None)
    return getattr(diag, "constraint_name", None)


def translate_integrity_error(exc: IntegrityError) -> ClubError:
    """Map a uniqueness violation to its domain error; anything else is a StoreFailure."""
    name = _constraint_name(exc)
    text = str(exc.orig)
    for markers, error_cls, message in _CONSTRAINT_ERRORS:
        if name in markers or any(m in text for m in markers):
            return error_cls(message)
    logger.error("Unmapped integrity error: %s", text)
    return StoreFailure()
