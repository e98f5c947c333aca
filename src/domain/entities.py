"""
Domain value objects and transition guards.

Patterns used
-------------
- **State Pattern**: ``ensure_transition`` enforces the booking
  lifecycle (see ``BOOKING_TRANSITIONS``) and ``ensure_ride_transition``
  the ride lifecycle.
- ``Location`` is an immutable value object for pickup / dropoff points.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from .enums import (
    BOOKING_TRANSITIONS,
    RIDE_TRANSITIONS,
    BookingStatus,
    RideStatus,
)
from .errors import InvalidTransition, RideNoLongerAvailable


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        if self.address:
            return self.address.split(",")[0].strip()
        return f"{self.latitude:.4f},{self.longitude:.4f}"


@dataclass(frozen=True)
class BookingRequest:
    ride_id: int
    passenger_id: int
    seats: int
    pickup: Location
    dropoff: Location
    payment_method: str = "CASH"
    special_requests: Optional[str] = None


# ── Guards ────────────────────────────────────────────────────────────


def ensure_transition(
    operation: str,
    current: BookingStatus,
    target: BookingStatus,
    allowed_from: Optional[Iterable[BookingStatus]] = None,
    actor_role: Optional[str] = None,
) -> None:
    """Raise ``InvalidTransition`` unless *current* -> *target* is legal.

    *allowed_from* narrows the global table for operations that are only
    valid from a subset of source states (e.g. Cancel is pre-pickup only).
    """
    current = BookingStatus(current)
    sources = set(allowed_from) if allowed_from is not None else {
        status for status, nxt in BOOKING_TRANSITIONS.items() if target in nxt
    }
    if current not in sources or target not in BOOKING_TRANSITIONS[current]:
        raise InvalidTransition(operation, current, sources, actor_role)


def ensure_ride_transition(
    ride_id: int, current: RideStatus, target: RideStatus
) -> None:
    current = RideStatus(current)
    if target not in RIDE_TRANSITIONS[current]:
        raise RideNoLongerAvailable(ride_id, current)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps read back from storage as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def minutes_between(start: Optional[datetime], end: datetime) -> Optional[int]:
    if start is None:
        return None
    return max(0, round((as_utc(end) - as_utc(start)).total_seconds() / 60))
