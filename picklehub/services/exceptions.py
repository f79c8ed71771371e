"""
Domain exceptions raised by the service layer.

Each error carries the HTTP status it maps to; ``api.main`` installs a single
exception handler that renders them as ``{"error": ..., "detail": ...}``.
"""

from typing import Optional


class PickleHubError(Exception):
    """Base class for domain errors."""

    status_code: int = 400
    default_detail: str = "Request could not be processed"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    @property
    def error(self) -> str:
        return type(self).__name__


class ValidationError(PickleHubError):
    status_code = 422
    default_detail = "Invalid input"


class UnauthorizedError(PickleHubError):
    status_code = 401
    default_detail = "Not authenticated"


class ForbiddenError(PickleHubError):
    status_code = 403
    default_detail = "Not allowed"


class NotFoundError(PickleHubError):
    status_code = 404
    default_detail = "Resource not found"


class ConflictError(PickleHubError):
    status_code = 409
    default_detail = "Conflict with current state"


class UserNotFound(NotFoundError):
    default_detail = "User not found"


class TeamNotFound(NotFoundError):
    default_detail = "Team not found"


class MemberNotFound(NotFoundError):
    default_detail = "Team member not found"


class JoinRequestNotFound(NotFoundError):
    default_detail = "Join request not found"


class InviteNotFound(NotFoundError):
    default_detail = "Invite not found"


class EventNotFound(NotFoundError):
    default_detail = "Event not found"


class ReservationNotFound(NotFoundError):
    default_detail = "Reservation not found"


class NotificationNotFound(NotFoundError):
    default_detail = "Notification not found"


class AlreadyMember(ConflictError):
    default_detail = "User is already a member of this team"


class AlreadyRequested(ConflictError):
    default_detail = "A join request is already pending"


class RequestAlreadyResolved(ConflictError):
    default_detail = "Join request has already been resolved"


class InviteUsed(ConflictError):
    default_detail = "Invite has already been used"


class InviteExpired(ConflictError):
    default_detail = "Invite has expired"


class EventFull(ConflictError):
    default_detail = "Event is full"


class AlreadyReserved(ConflictError):
    default_detail = "Already reserved for this event"


class EventLocked(ConflictError):
    default_detail = "Event has already started and can no longer be changed"


class EventClosed(ConflictError):
    default_detail = "Event is closed"
