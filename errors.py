from typing import Optional


class BookingServiceError(Exception):
    """Base class for rejections raised by the booking service."""

    reason = "error"

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason


class MemberNotFound(BookingServiceError):
    reason = "member_not_found"


class CancellationRejected(BookingServiceError):
    """The cancellation was refused and nothing was written."""

    NOT_FOUND = "not_found"
    NOT_OWNER = "not_owner"
    ALREADY_CANCELLED = "already_cancelled"
