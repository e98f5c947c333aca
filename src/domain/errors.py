"""
Booking error taxonomy.

Every error is local and synchronous: it is raised to the caller and
never retried inside the core.  Each carries a ``context`` dict with
enough detail (current status, required status, actor role, ...) for a
client to render an actionable message.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from .enums import OTPFailure, OTPPhase


def _value(item: Any) -> Any:
    return item.value if hasattr(item, "value") else item


class BookingError(Exception):
    """Base class for every failure surfaced by the booking core."""

    status_code: int = 400
    code: str = "BOOKING_ERROR"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = {
            key: _value(val) for key, val in context.items() if val is not None
        }

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, "context": self.context}


class NotFound(BookingError):
    status_code = 404
    code = "NOT_FOUND"


class BookingNotFound(NotFound):
    code = "BOOKING_NOT_FOUND"

    def __init__(self, booking_id: int):
        super().__init__("Booking not found", booking_id=booking_id)


class RideNotFound(NotFound):
    code = "RIDE_NOT_FOUND"

    def __init__(self, ride_id: int):
        super().__init__("Ride not found", ride_id=ride_id)


class UserNotFound(NotFound):
    code = "USER_NOT_FOUND"

    def __init__(self, user_id: int):
        super().__init__("User not found", user_id=user_id)


class InvalidTransition(BookingError):
    status_code = 409
    code = "INVALID_TRANSITION"

    def __init__(
        self,
        operation: str,
        current_status: Any,
        required_status: Iterable[Any],
        actor_role: Any = None,
    ):
        required = sorted(_value(s) for s in required_status)
        super().__init__(
            f"Cannot {operation} booking in status {_value(current_status)}; "
            f"requires one of {', '.join(required)}",
            operation=operation,
            current_status=current_status,
            required_status=required,
            actor_role=actor_role,
        )


class NotAuthorized(BookingError):
    status_code = 403
    code = "NOT_AUTHORIZED"

    def __init__(self, message: str, actor_id: int, required_role: Any):
        super().__init__(message, actor_id=actor_id, required_role=required_role)


class RideUnavailable(BookingError):
    status_code = 409
    code = "RIDE_UNAVAILABLE"


class InsufficientSeats(RideUnavailable):
    code = "INSUFFICIENT_SEATS"

    def __init__(self, ride_id: int, requested: int, available: Optional[int]):
        super().__init__(
            "Not enough seats available",
            ride_id=ride_id,
            requested=requested,
            available=available,
        )


class RideNoLongerAvailable(RideUnavailable):
    code = "RIDE_NO_LONGER_AVAILABLE"

    def __init__(self, ride_id: int, ride_status: Any):
        super().__init__(
            f"Ride has already moved to {_value(ride_status)}",
            ride_id=ride_id,
            ride_status=ride_status,
        )


class DuplicateBooking(BookingError):
    status_code = 409
    code = "DUPLICATE_BOOKING"

    def __init__(self, ride_id: int, existing_booking_id: Optional[int] = None):
        super().__init__(
            "You already have a booking for this ride",
            ride_id=ride_id,
            existing_booking_id=existing_booking_id,
        )


class SelfBooking(BookingError):
    code = "SELF_BOOKING"

    def __init__(self, ride_id: int):
        super().__init__("Cannot book your own ride", ride_id=ride_id)


class GenderRestricted(BookingError):
    status_code = 403
    code = "GENDER_RESTRICTED"

    def __init__(self, ride_id: int, preference: Any):
        super().__init__(
            "This ride is for female passengers only",
            ride_id=ride_id,
            gender_preference=preference,
        )


class OTPError(BookingError):
    reason: OTPFailure = OTPFailure.MISMATCH
    message_template = "Invalid {phase} OTP"

    def __init__(self, phase: OTPPhase, attempts: int, max_attempts: int):
        super().__init__(
            self.message_template.format(phase=_value(phase)),
            phase=phase,
            reason=self.reason,
            attempts=attempts,
            max_attempts=max_attempts,
        )


class InvalidOTP(OTPError):
    code = "INVALID_OTP"


class OTPExpired(OTPError):
    code = "OTP_EXPIRED"
    reason = OTPFailure.EXPIRED
    message_template = "The {phase} OTP has expired"


class TooManyAttempts(OTPError):
    status_code = 429
    code = "TOO_MANY_ATTEMPTS"
    reason = OTPFailure.MAX_ATTEMPTS
    message_template = "Too many {phase} OTP attempts"


OTP_ERRORS: dict[OTPFailure, type[OTPError]] = {
    OTPFailure.MISMATCH: InvalidOTP,
    OTPFailure.ALREADY_VERIFIED: InvalidOTP,
    OTPFailure.EXPIRED: OTPExpired,
    OTPFailure.MAX_ATTEMPTS: TooManyAttempts,
}


class AlreadySettled(BookingError):
    status_code = 409
    code = "ALREADY_SETTLED"

    def __init__(self, booking_id: int, settled_by: Any = None):
        super().__init__(
            "Payment already settled",
            booking_id=booking_id,
            settled_by=settled_by,
        )


class PaymentNotAllowed(BookingError):
    code = "PAYMENT_NOT_ALLOWED"


class RideNotReady(BookingError):
    """Ride-level operation blocked by the state of its bookings."""

    status_code = 409
    code = "RIDE_NOT_READY"
