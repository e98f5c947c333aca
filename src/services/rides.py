"""
Ride lifecycle
==============

Ride-level operations that fan out to the ride's bookings:

* ``post_ride``   -- ACTIVE ride, ``available_seats = total_seats``
* ``start_ride``  -- ACTIVE -> IN_PROGRESS; every CONFIRMED booking gets
  its pickup OTP now and moves to PICKUP_PENDING, unanswered requests
  are rejected
* ``cancel_ride`` -- ACTIVE -> CANCELLED; live bookings are cancelled on
  the rider's behalf and refunded in full
* ``close_ride``  -- ACTIVE -> COMPLETED for a ride nobody is travelling on

Booking changes go through ``BookingStateMachine`` so the per-booking
rules (conditional status writes, seat release, ledger) live in one
place.  Events from both levels share one queue.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain import events as ev
from src.domain.distance import route_distance_km
from src.domain.entities import Location, ensure_ride_transition
from src.domain.enums import (
    FAILED_STATUSES,
    ActorRole,
    BookingStatus,
    GenderPreference,
    RideStatus,
)
from src.domain.errors import (
    NotAuthorized,
    RideNoLongerAvailable,
    RideNotFound,
    RideNotReady,
    UserNotFound,
)
from src.domain.events import DomainEvent
from src.infrastructure.models import RideModel
from src.services.booking_machine import BookingStateMachine

logger = logging.getLogger(__name__)


class RideLifecycle:
    def __init__(self, session: AsyncSession, machine: Optional[BookingStateMachine] = None):
        self.session = session
        self.machine = machine or BookingStateMachine(session)
        self.rides = self.machine.rides
        self.bookings = self.machine.bookings
        self.users = self.machine.users

    @property
    def events(self) -> list[DomainEvent]:
        return self.machine.events

    def drain_events(self) -> list[DomainEvent]:
        return self.machine.drain_events()

    async def post_ride(
        self,
        rider_id: int,
        start: Location,
        destination: Location,
        departure_at: datetime,
        total_seats: int,
        price_per_seat: float,
        auto_accept: bool = False,
        gender_preference: GenderPreference = GenderPreference.ANY,
        distance_km: Optional[float] = None,
    ) -> RideModel:
        if total_seats < 1:
            raise ValueError("total_seats must be >= 1")
        if price_per_seat < 0:
            raise ValueError("price_per_seat must be >= 0")
        if await self.users.get_by_id(rider_id) is None:
            raise UserNotFound(rider_id)

        if distance_km is None:
            distance_km = route_distance_km(start, destination)
        ride = await self.rides.create_ride(
            rider_id=rider_id,
            start_name=start.label,
            start_lat=start.latitude,
            start_lng=start.longitude,
            destination_name=destination.label,
            destination_lat=destination.latitude,
            destination_lng=destination.longitude,
            distance_km=round(distance_km, 2),
            departure_at=departure_at,
            total_seats=total_seats,
            price_per_seat=price_per_seat,
            auto_accept_bookings=auto_accept,
            gender_preference=GenderPreference(gender_preference),
            status=RideStatus.ACTIVE,
        )
        await self.session.refresh(ride)
        logger.info(
            "Ride %s posted by user %s: %s -> %s, %d seat(s) at %.2f",
            ride.id,
            rider_id,
            ride.start_name,
            ride.destination_name,
            total_seats,
            price_per_seat,
        )
        return ride

    async def start_ride(self, ride_id: int, actor_id: int) -> RideModel:
        ride = await self._owned_ride(ride_id, actor_id, "start")
        ensure_ride_transition(ride.id, ride.status, RideStatus.IN_PROGRESS)

        confirmed = await self.bookings.list_for_ride(
            ride.id, [BookingStatus.CONFIRMED]
        )
        if not confirmed:
            raise RideNotReady(
                "Cannot start a ride without confirmed bookings",
                ride_id=ride.id,
            )

        now = self.machine.clock()
        await self._move(ride, RideStatus.IN_PROGRESS, started_at=now)

        for booking in confirmed:
            await self.machine.issue_pickup_code(booking)

        unanswered = await self.bookings.list_for_ride(
            ride.id, [BookingStatus.PENDING]
        )
        for booking in unanswered:
            await self.machine.reject_unanswered(
                booking, ride, "Ride departed before the request was answered"
            )

        ride = await self.rides.get_by_id(ride.id, fresh=True)
        logger.info(
            "Ride %s started: %d passenger booking(s), %d request(s) rejected",
            ride.id,
            len(confirmed),
            len(unanswered),
        )
        self.events.append(
            DomainEvent(
                name=ev.RIDE_STARTED,
                recipients=tuple(
                    dict.fromkeys(b.passenger_id for b in confirmed)
                ),
                ride_id=ride.id,
                payload={"startedAt": now, "passengers": len(confirmed)},
            )
        )
        return ride

    async def cancel_ride(
        self, ride_id: int, actor_id: int, reason: Optional[str] = None
    ) -> RideModel:
        ride = await self._owned_ride(ride_id, actor_id, "cancel")
        if RideStatus(ride.status) != RideStatus.ACTIVE:
            raise RideNoLongerAvailable(ride.id, ride.status)

        reason = reason or "Ride cancelled by rider"
        now = self.machine.clock()
        await self._move(
            ride, RideStatus.CANCELLED, cancelled_at=now, cancellation_reason=reason
        )

        live = await self.bookings.list_for_ride(
            ride.id, [BookingStatus.PENDING, BookingStatus.CONFIRMED]
        )
        for booking in live:
            await self.machine.cancel_for_ride(booking, ride, reason)

        ride = await self.rides.get_by_id(ride.id, fresh=True)
        logger.info(
            "Ride %s cancelled by rider, %d booking(s) cancelled", ride.id, len(live)
        )
        self.events.append(
            DomainEvent(
                name=ev.RIDE_CANCELLED,
                recipients=tuple(dict.fromkeys(b.passenger_id for b in live)),
                ride_id=ride.id,
                payload={"reason": reason, "cancelledBookings": len(live)},
            )
        )
        return ride

    async def close_ride(self, ride_id: int, actor_id: int) -> RideModel:
        ride = await self._owned_ride(ride_id, actor_id, "close")
        ensure_ride_transition(ride.id, ride.status, RideStatus.COMPLETED)
        if RideStatus(ride.status) != RideStatus.ACTIVE:
            raise RideNotReady(
                "Rides in progress complete when their last booking does",
                ride_id=ride.id,
                ride_status=ride.status,
            )

        bookings = await self.bookings.list_for_ride(ride.id)
        live = [b for b in bookings if BookingStatus(b.status) not in FAILED_STATUSES]
        if live:
            raise RideNotReady(
                "Ride still has live bookings",
                ride_id=ride.id,
                live_bookings=len(live),
            )

        now = self.machine.clock()
        await self._move(ride, RideStatus.COMPLETED, completed_at=now, total_earnings=0.0)
        logger.info("Ride %s closed without passengers", ride.id)
        return await self.rides.get_by_id(ride.id, fresh=True)

    async def get_ride(self, ride_id: int) -> RideModel:
        ride = await self.rides.get_by_id(ride_id)
        if ride is None:
            raise RideNotFound(ride_id)
        return ride

    async def _owned_ride(self, ride_id: int, actor_id: int, operation: str) -> RideModel:
        ride = await self.rides.get_by_id(ride_id, fresh=True)
        if ride is None:
            raise RideNotFound(ride_id)
        if ride.rider_id != actor_id:
            raise NotAuthorized(
                f"Only the rider can {operation} this ride", actor_id, ActorRole.RIDER
            )
        return ride

    async def _move(self, ride: RideModel, new: RideStatus, **values) -> None:
        """ACTIVE -> *new*, or ``RideNoLongerAvailable`` if someone got there first."""
        if not await self.rides.set_status_if(
            ride.id, RideStatus.ACTIVE, new, **values
        ):
            fresh = await self.rides.get_by_id(ride.id, fresh=True)
            logger.warning(
                "Ride %s: move to %s lost a race, status is now %s",
                ride.id,
                new.value,
                fresh.status.value,
            )
            raise RideNoLongerAvailable(ride.id, fresh.status)
        logger.info("Ride %s: ACTIVE -> %s", ride.id, new.value)
