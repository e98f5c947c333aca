"""
Domain events handed to the notification sink after commit.

Each event names the users to notify in priority order and carries
enough data to render a message without querying the core again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

BOOKING_CREATED = "booking.created"
BOOKING_ACCEPTED = "booking.accepted"
BOOKING_REJECTED = "booking.rejected"
BOOKING_CANCELLED = "booking.cancelled"
BOOKING_PICKUP_CODE_ISSUED = "booking.pickupCodeIssued"
BOOKING_PICKUP_VERIFIED = "booking.pickupVerified"
BOOKING_DROPOFF_VERIFIED = "booking.dropoffVerified"
BOOKING_PAYMENT_SETTLED = "booking.paymentSettled"
RIDE_STARTED = "ride.started"
RIDE_COMPLETED = "ride.completed"
RIDE_CANCELLED = "ride.cancelled"


@dataclass(frozen=True)
class DomainEvent:
    name: str
    recipients: tuple[int, ...]
    payload: dict[str, Any] = field(default_factory=dict)
    ride_id: Optional[int] = None
    booking_id: Optional[int] = None
    occurred_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def to_message(self) -> dict[str, Any]:
        return {
            "event": self.name,
            "rideId": self.ride_id,
            "bookingId": self.booking_id,
            "timestamp": self.occurred_at.isoformat(),
            **self.payload,
        }
