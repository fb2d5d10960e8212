from enum import StrEnum


class SessionType(StrEnum):
    GROUP = "group"
    SUNDAY = "sunday"
    PRIVATE = "private"
    SEMI_PRIVATE = "semi_private"


class BookingStatus(StrEnum):
    BOOKED = "booked"
    ATTENDED = "attended"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class PurchaseStatus(StrEnum):
    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"


class PackageType(StrEnum):
    SINGLE = "single"
    PACK_10 = "10_pack"
    PACK_20 = "20_pack"
    PACK_50 = "50_pack"
    ADMIN_GRANT = "admin_grant"
    REFUND = "refund"


class ProgramType(StrEnum):
    GROUP = "group"
    PRIVATE = "private"
    SEMI_PRIVATE = "semi_private"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    ACTIVE = "active"
    VERIFIED = "verified"
    PAST_DUE = "past_due"
    FAILED = "failed"
    CANCELED = "canceled"


class ChangeType(StrEnum):
    ONE_TIME = "one_time"
    PERMANENT = "permanent"


class PausedReason(StrEnum):
    INSUFFICIENT_CREDITS = "insufficient_credits"
    SLOT_UNAVAILABLE = "slot_unavailable"
    USER_PAUSED = "user_paused"


class NotificationType(StrEnum):
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    CREDITS_LOW = "credits_low"
    CREDITS_PURCHASED = "credits_purchased"
    SCHEDULE_CHANGED = "schedule_changed"
    SUNDAY_BOOKING = "sunday_booking"
    RECURRING_PAUSED = "recurring_paused"
    PAYMENT_RECEIVED = "payment_received"


class ErrorCode(StrEnum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    SLOT_FULL = "SLOT_FULL"
    CONFLICT = "CONFLICT"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    ALREADY_CANCELLED = "ALREADY_CANCELLED"
    SESSION_ALREADY_OCCURRED = "SESSION_ALREADY_OCCURRED"
    DUPLICATE_BOOKING = "DUPLICATE_BOOKING"
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
    INELIGIBLE_CATEGORY = "INELIGIBLE_CATEGORY"
    INVALID_PROGRAM_TYPE = "INVALID_PROGRAM_TYPE"
    SLOT_PAST = "SLOT_PAST"
    DATA_STORE_ERROR = "DATA_STORE_ERROR"


PAID_PAYMENT_STATUSES = frozenset({PaymentStatus.SUCCEEDED, PaymentStatus.ACTIVE, PaymentStatus.VERIFIED})
TERMINAL_BOOKING_STATUSES = frozenset({BookingStatus.ATTENDED, BookingStatus.NO_SHOW, BookingStatus.CANCELLED})
