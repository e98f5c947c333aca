"""Domain enumerations and state-transition rules."""

import enum


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    PICKUP_PENDING = "PICKUP_PENDING"
    PICKED_UP = "PICKED_UP"
    DROPPED_OFF = "DROPPED_OFF"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# State machine: maps current status -> set of valid next statuses
BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {
        BookingStatus.CONFIRMED,
        BookingStatus.REJECTED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.CONFIRMED: {
        BookingStatus.PICKUP_PENDING,
        BookingStatus.PICKED_UP,
        BookingStatus.CANCELLED,
    },
    BookingStatus.PICKUP_PENDING: {BookingStatus.PICKED_UP},
    BookingStatus.PICKED_UP: {BookingStatus.DROPPED_OFF},
    BookingStatus.DROPPED_OFF: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.REJECTED: set(),
    BookingStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.REJECTED, BookingStatus.CANCELLED}
)
FAILED_STATUSES = frozenset({BookingStatus.REJECTED, BookingStatus.CANCELLED})


class RideStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.ACTIVE: {
        RideStatus.IN_PROGRESS,
        RideStatus.COMPLETED,
        RideStatus.CANCELLED,
    },
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    UPI = "UPI"
    CARD = "CARD"
    WALLET = "WALLET"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"  # prepaid online, not yet confirmed after dropoff
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    REFUNDED = "REFUNDED"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class ActorRole(str, enum.Enum):
    PASSENGER = "PASSENGER"
    RIDER = "RIDER"


class GenderPreference(str, enum.Enum):
    ANY = "ANY"
    FEMALE_ONLY = "FEMALE_ONLY"


class Gender(str, enum.Enum):
    FEMALE = "FEMALE"
    MALE = "MALE"
    OTHER = "OTHER"


class OTPPhase(str, enum.Enum):
    PICKUP = "pickup"
    DROPOFF = "dropoff"


class OTPFailure(str, enum.Enum):
    EXPIRED = "EXPIRED"
    MISMATCH = "MISMATCH"
    MAX_ATTEMPTS = "MAX_ATTEMPTS"
    ALREADY_VERIFIED = "ALREADY_VERIFIED"
