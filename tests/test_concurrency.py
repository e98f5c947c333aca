"""
Concurrency safety tests.

Demonstrates:
1. Two passengers racing for the last seats: exactly one wins, the seat
   counter never goes negative.
2. Seat release for one booking is applied once, however often it runs.
3. Rider and passenger settling at once: exactly one settlement, the
   loser sees ``AlreadySettled``.
4. Conflicting status transitions: the second conditional update matches
   no row.
5. The last two bookings of a ride settling at once: the ride still
   completes, exactly once.

Each contender uses its own session (its own connection) against one
SQLite file, so the conditional UPDATEs really are resolved by the
database.
"""

from __future__ import annotations

import asyncio

import pytest

from src.domain import events as ev
from src.domain.enums import ActorRole, BookingStatus, RideStatus, TransactionStatus
from src.domain.errors import AlreadySettled, InsufficientSeats
from src.infrastructure.repositories import (
    BookingRepository,
    RideRepository,
    TransactionRepository,
    UserRepository,
)
from src.services.booking_machine import BookingStateMachine
from src.services.seat_inventory import SeatInventory
from src.services.settlement import PaymentSettlement


async def _setup(db_session, make_user, make_ride, seats=3, count=2, **ride_kw):
    rider = await make_user("Rider")
    ride = await make_ride(rider, seats=seats, **ride_kw)
    passengers = [await make_user("P") for _ in range(count)]
    await db_session.commit()
    return rider, ride, passengers


async def _try_create(session_factory, clock, request):
    async with session_factory() as session:
        machine = BookingStateMachine(session, clock=clock)
        try:
            created = await machine.create(request)
            await session.commit()
            return created.booking.id
        except InsufficientSeats as exc:
            await session.rollback()
            return exc


async def _available(session_factory, ride_id: int) -> int:
    async with session_factory() as session:
        return (await RideRepository(session).get_by_id(ride_id)).available_seats


class TestSeatRace:
    @pytest.mark.asyncio
    async def test_two_creates_for_last_seats(
        self, db_session, session_factory, make_user, make_ride, booking_request, clock
    ):
        _, ride, (p1, p2) = await _setup(db_session, make_user, make_ride, seats=3)

        results = await asyncio.gather(
            _try_create(session_factory, clock, booking_request(ride, p1, seats=2)),
            _try_create(session_factory, clock, booking_request(ride, p2, seats=2)),
        )

        winners = [r for r in results if isinstance(r, int)]
        losers = [r for r in results if isinstance(r, InsufficientSeats)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert await _available(session_factory, ride.id) == 1

    @pytest.mark.asyncio
    async def test_reservation_checked_inside_the_update(
        self, db_session, session_factory, make_user, make_ride
    ):
        # Both sessions saw 3 seats; the second decrement must still fail.
        _, ride, _ = await _setup(db_session, make_user, make_ride, seats=3)

        async with session_factory() as first, session_factory() as second:
            assert (await RideRepository(first).get_by_id(ride.id)).available_seats == 3
            assert (await RideRepository(second).get_by_id(ride.id)).available_seats == 3

            await SeatInventory(first).reserve(ride.id, 2)
            await first.commit()

            with pytest.raises(InsufficientSeats) as exc:
                await SeatInventory(second).reserve(ride.id, 2)
            assert exc.value.context["available"] == 1
            await second.rollback()

        assert await _available(session_factory, ride.id) == 1

    @pytest.mark.asyncio
    async def test_many_passengers_never_oversell(
        self, db_session, session_factory, make_user, make_ride, booking_request, clock
    ):
        _, ride, passengers = await _setup(
            db_session, make_user, make_ride, seats=3, count=6
        )

        results = await asyncio.gather(
            *(
                _try_create(session_factory, clock, booking_request(ride, p))
                for p in passengers
            )
        )

        assert sum(isinstance(r, int) for r in results) == 3
        assert await _available(session_factory, ride.id) == 0


class TestReleaseRace:
    @pytest.mark.asyncio
    async def test_double_release_from_two_sessions(
        self, db_session, session_factory, make_user, make_ride, booking_request, clock
    ):
        _, ride, (p1, _) = await _setup(db_session, make_user, make_ride, seats=3)
        booking_id = await _try_create(
            session_factory, clock, booking_request(ride, p1, seats=2)
        )

        async def release():
            async with session_factory() as session:
                released = await SeatInventory(session).release(
                    ride.id, 2, booking_id=booking_id
                )
                await session.commit()
                return released

        outcomes = await asyncio.gather(release(), release())

        assert sorted(outcomes) == [False, True]
        assert await _available(session_factory, ride.id) == 3


class TestSettlementRace:
    @pytest.mark.asyncio
    async def test_rider_and_passenger_settle_at_once(
        self, db_session, session_factory, make_user, make_ride, booking_request, clock
    ):
        rider, ride, (p1, _) = await _setup(
            db_session, make_user, make_ride, auto_accept=True
        )
        booking_id = await _try_create(session_factory, clock, booking_request(ride, p1))
        async with session_factory() as session:
            await BookingRepository(session).update_if(
                booking_id, {BookingStatus.CONFIRMED}, status=BookingStatus.DROPPED_OFF
            )
            await session.commit()

        async def settle(role, actor_id):
            async with session_factory() as session:
                try:
                    await PaymentSettlement(session).settle(booking_id, role, actor_id)
                    await session.commit()
                    return role
                except AlreadySettled as exc:
                    await session.rollback()
                    return exc

        results = await asyncio.gather(
            settle(ActorRole.RIDER, rider.id),
            settle(ActorRole.PASSENGER, p1.id),
        )

        winners = [r for r in results if isinstance(r, ActorRole)]
        assert len(winners) == 1
        assert sum(isinstance(r, AlreadySettled) for r in results) == 1

        async with session_factory() as session:
            booking = await BookingRepository(session).get_by_id(booking_id)
            tx = await TransactionRepository(session).get_by_booking(booking_id)
        assert booking.settled_by_role == winners[0]
        assert tx.status == TransactionStatus.COMPLETED
        assert tx.settled_by_role == winners[0]
        assert tx.total == booking.total_amount


class TestTransitionRace:
    @pytest.mark.asyncio
    async def test_conditional_update_has_one_winner(
        self, db_session, session_factory, make_user, make_ride, booking_request, clock
    ):
        _, ride, (p1, _) = await _setup(db_session, make_user, make_ride)
        booking_id = await _try_create(session_factory, clock, booking_request(ride, p1))

        async with session_factory() as rejecting, session_factory() as cancelling:
            won_reject = await BookingRepository(rejecting).update_if(
                booking_id, {BookingStatus.PENDING}, status=BookingStatus.REJECTED
            )
            await rejecting.commit()
            won_cancel = await BookingRepository(cancelling).update_if(
                booking_id,
                {BookingStatus.PENDING, BookingStatus.CONFIRMED},
                status=BookingStatus.CANCELLED,
            )
            await cancelling.commit()

        assert (won_reject, won_cancel) == (True, False)


class TestRideCompletionRace:
    @pytest.mark.asyncio
    async def test_last_two_bookings_settled_at_once_complete_the_ride(
        self, db_session, session_factory, make_user, make_ride, booking_request, clock
    ):
        rider, ride, (p1, p2) = await _setup(
            db_session, make_user, make_ride, price=100.0, auto_accept=True
        )
        first = await _try_create(session_factory, clock, booking_request(ride, p1))
        second = await _try_create(
            session_factory, clock, booking_request(ride, p2, seats=2)
        )
        async with session_factory() as session:
            bookings = BookingRepository(session)
            for booking_id in (first, second):
                await bookings.update_if(
                    booking_id,
                    {BookingStatus.CONFIRMED},
                    status=BookingStatus.DROPPED_OFF,
                )
            await RideRepository(session).set_status_if(
                ride.id, RideStatus.ACTIVE, RideStatus.IN_PROGRESS
            )
            await session.commit()

        async def settle(booking_id, actor_id):
            async with session_factory() as session:
                machine = BookingStateMachine(session, clock=clock)
                await machine.settle_payment(booking_id, actor_id)
                await session.commit()
                return machine.drain_events()

        outcomes = await asyncio.gather(settle(first, p1.id), settle(second, p2.id))

        completed = [
            e for events in outcomes for e in events if e.name == ev.RIDE_COMPLETED
        ]
        assert len(completed) == 1
        async with session_factory() as session:
            ride = await RideRepository(session).get_by_id(ride.id)
            stats = await UserRepository(session).get_by_id(rider.id)
        assert ride.status == RideStatus.COMPLETED
        assert ride.total_earnings == 300.0
        assert stats.completed_rides == 1
