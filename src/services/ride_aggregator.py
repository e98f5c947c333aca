"""
Ride Aggregator
===============

Rolls the bookings of one ride up into the ride's completion.

Called whenever a booking on the ride reaches a terminal state.  The ride
row is locked (``SELECT ... FOR UPDATE``) before bookings are counted, so
the last two bookings settling in parallel are counted one after the
other.  When no booking is left short of a terminal state and the ride
is IN_PROGRESS:

1. sum ``ride_fare`` over COMPLETED bookings -> ``total_earnings``
2. move the ride IN_PROGRESS -> COMPLETED with one conditional UPDATE
3. only the caller whose UPDATE matched credits the rider's statistics
   (completed rides, distance, carbon saved)

The guard is the ride status transition itself, so calling this again
for the same ride (retries, two last bookings settling at once) can
never credit the rider twice.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain import events as ev
from src.domain.enums import RideStatus
from src.domain.events import DomainEvent
from src.infrastructure.repositories import (
    BookingRepository,
    RideRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)


class RideAggregator:
    def __init__(self, session: AsyncSession, co2_per_km_kg: Optional[float] = None):
        self.rides = RideRepository(session)
        self.bookings = BookingRepository(session)
        self.users = UserRepository(session)
        self.co2_per_km_kg = (
            settings.co2_per_km_kg if co2_per_km_kg is None else co2_per_km_kg
        )

    async def on_booking_terminalized(
        self, ride_id: int, now: Optional[datetime] = None
    ) -> Optional[DomainEvent]:
        """Complete the ride if it is done; returns ``ride.completed`` or None."""
        # Count under the ride lock: a concurrent settler has committed by then.
        ride = await self.rides.lock_by_id(ride_id)
        if ride is None or RideStatus(ride.status) != RideStatus.IN_PROGRESS:
            return None

        unfinished = await self.bookings.count_unfinished(ride_id)
        if unfinished:
            logger.debug("Ride %s has %d unfinished booking(s)", ride_id, unfinished)
            return None

        now = now or datetime.now(timezone.utc)
        earnings, seats_carried, completed = await self.bookings.completed_totals(
            ride_id
        )
        earnings = round(earnings, 2)
        won = await self.rides.set_status_if(
            ride_id,
            RideStatus.IN_PROGRESS,
            RideStatus.COMPLETED,
            completed_at=now,
            total_earnings=earnings,
        )
        if not won:
            logger.debug("Ride %s completed by a concurrent caller", ride_id)
            return None

        distance = ride.distance_km or 0.0
        carbon_saved = round(distance * self.co2_per_km_kg * seats_carried, 2)
        await self.users.add_trip_statistics(ride.rider_id, distance, carbon_saved)

        logger.info(
            "Ride %s completed: %d booking(s), earnings=%.2f, carbon_saved=%.2fkg",
            ride_id,
            completed,
            earnings,
            carbon_saved,
        )
        return DomainEvent(
            name=ev.RIDE_COMPLETED,
            recipients=(ride.rider_id,),
            ride_id=ride_id,
            payload={
                "earnings": earnings,
                "completedBookings": completed,
                "carbonSaved": carbon_saved,
            },
        )
