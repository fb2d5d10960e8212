from __future__ import annotations

from typing import Any, ClassVar

from app.domain.enums import ErrorCode


class BookingError(Exception):
    """Business-rule failure with a stable code and a user-facing message."""

    code: ClassVar[ErrorCode] = ErrorCode.VALIDATION_ERROR
    http_status: ClassVar[int] = 400
    default_message: ClassVar[str] = "Request could not be processed"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationFailed(BookingError):
    code = ErrorCode.VALIDATION_ERROR
    http_status = 400
    default_message = "Invalid request"


class NotFound(BookingError):
    code = ErrorCode.NOT_FOUND
    http_status = 404
    default_message = "Not found"


class Forbidden(BookingError):
    code = ErrorCode.FORBIDDEN
    http_status = 403
    default_message = "Not allowed for this account"


class SlotFull(BookingError):
    code = ErrorCode.SLOT_FULL
    http_status = 409
    default_message = "This time slot is fully booked"


class Conflict(BookingError):
    code = ErrorCode.CONFLICT
    http_status = 409
    default_message = "This time slot is already taken"


class InsufficientCredits(BookingError):
    code = ErrorCode.INSUFFICIENT_CREDITS
    http_status = 402
    default_message = "Not enough credits"


class AlreadyCancelled(BookingError):
    code = ErrorCode.ALREADY_CANCELLED
    http_status = 409
    default_message = "This booking has already been cancelled"


class SessionAlreadyOccurred(BookingError):
    code = ErrorCode.SESSION_ALREADY_OCCURRED
    http_status = 409
    default_message = "Cannot change a session that has already occurred"


class DuplicateBooking(BookingError):
    code = ErrorCode.DUPLICATE_BOOKING
    http_status = 409
    default_message = "This player already has a booking for this session"


class PaymentRequired(BookingError):
    code = ErrorCode.PAYMENT_REQUIRED
    http_status = 402
    default_message = "An active, paid registration is required"


class IneligibleCategory(BookingError):
    code = ErrorCode.INELIGIBLE_CATEGORY
    http_status = 403
    default_message = "The player's category is not eligible for this session"


class InvalidProgramType(BookingError):
    code = ErrorCode.INVALID_PROGRAM_TYPE
    http_status = 400
    default_message = "This action is not available for the player's program"


class SlotPast(BookingError):
    code = ErrorCode.SLOT_PAST
    http_status = 409
    default_message = "Cannot book a session in the past"


class DataStoreError(BookingError):
    code = ErrorCode.DATA_STORE_ERROR
    http_status = 503
    default_message = "Temporary storage failure, please retry"
