"""
Seat Inventory
==============

The available-seat counter on a ride.

* ``reserve`` -- one conditional ``UPDATE`` that decrements only when
  the ride is ACTIVE and still has the seats.  Two passengers racing
  for the last seat resolve inside the database: exactly one row
  update matches.
* ``release`` -- first claims the booking's ``seats_held`` flag, then
  increments the counter capped at ``total_seats``.  A second release
  for the same booking finds the flag already cleared and is a no-op.

Invariant: ``0 <= available_seats <= total_seats`` (also enforced by a
CHECK constraint on ``rides``).
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.enums import RideStatus
from src.domain.errors import InsufficientSeats, RideNotFound, RideUnavailable
from src.infrastructure.repositories import BookingRepository, RideRepository

logger = logging.getLogger(__name__)


class SeatInventory:
    def __init__(self, session: AsyncSession):
        self.rides = RideRepository(session)
        self.bookings = BookingRepository(session)

    async def reserve(self, ride_id: int, seats: int) -> None:
        if seats < 1:
            raise ValueError("seats must be >= 1")

        if await self.rides.reserve_seats(ride_id, seats):
            logger.info("Reserved %d seat(s) on ride %s", seats, ride_id)
            return

        # No row matched -- find out why for the caller.
        ride = await self.rides.get_by_id(ride_id, fresh=True)
        if ride is None:
            raise RideNotFound(ride_id)
        if RideStatus(ride.status) != RideStatus.ACTIVE:
            raise RideUnavailable(
                "Ride is not available for booking",
                ride_id=ride_id,
                ride_status=ride.status,
            )
        logger.warning(
            "Seat reservation refused on ride %s: wanted %d, %d left",
            ride_id,
            seats,
            ride.available_seats,
        )
        raise InsufficientSeats(ride_id, seats, ride.available_seats)

    async def release(self, ride_id: int, seats: int, *, booking_id: int) -> bool:
        """Return the booking's seats; False if they were already returned."""
        if not await self.bookings.claim_seat_release(booking_id):
            logger.debug("Seats for booking %s already released", booking_id)
            return False
        await self.rides.release_seats(ride_id, seats)
        logger.info(
            "Released %d seat(s) on ride %s (booking %s)", seats, ride_id, booking_id
        )
        return True
