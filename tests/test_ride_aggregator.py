"""Service tests for ride-level completion roll-up."""

from __future__ import annotations

import pytest
from sqlalchemy.dialects import postgresql

from src.domain import events as ev
from src.domain.enums import BookingStatus, RideStatus
from src.infrastructure.repositories import (
    BookingRepository,
    RideRepository,
    UserRepository,
)
from src.services.booking_machine import BookingStateMachine
from src.services.ride_aggregator import RideAggregator
from src.services.rides import RideLifecycle


class _RecordingSession:
    def __init__(self, session):
        self.session = session
        self.statements = []

    async def execute(self, statement, *args, **kwargs):
        self.statements.append(statement)
        return await self.session.execute(statement, *args, **kwargs)


async def _journey_to_dropoff(machine, booking, rider_id):
    booking = await machine.verify_pickup(booking.id, rider_id, booking.pickup_otp_code)
    return await machine.verify_dropoff(booking.id, rider_id, booking.dropoff_otp_code)


@pytest.fixture
def machine(db_session, clock) -> BookingStateMachine:
    return BookingStateMachine(db_session, clock=clock)


class TestRideAggregator:
    @pytest.mark.asyncio
    async def test_completes_after_last_booking_settles(
        self, db_session, machine, make_user, make_ride, booking_request
    ):
        rider = await make_user("Rider")
        ride = await make_ride(rider, seats=3, price=100.0, auto_accept=True, distance_km=20.0)
        first = (await machine.create(booking_request(ride, await make_user("P")))).booking
        second = (
            await machine.create(booking_request(ride, await make_user("P"), seats=2))
        ).booking
        await RideLifecycle(db_session, machine).start_ride(ride.id, rider.id)
        machine.drain_events()

        first = await machine.bookings.get_by_id(first.id, fresh=True)
        second = await machine.bookings.get_by_id(second.id, fresh=True)
        await _journey_to_dropoff(machine, first, rider.id)
        await _journey_to_dropoff(machine, second, rider.id)

        await machine.settle_payment(first.id, rider.id)
        ride = await RideRepository(db_session).get_by_id(ride.id, fresh=True)
        assert ride.status == RideStatus.IN_PROGRESS

        await machine.settle_payment(second.id, rider.id)
        ride = await RideRepository(db_session).get_by_id(ride.id, fresh=True)
        assert ride.status == RideStatus.COMPLETED
        assert ride.total_earnings == 300.0

        stats = await UserRepository(db_session).get_by_id(rider.id, fresh=True)
        assert stats.completed_rides == 1
        assert stats.total_distance_km == 20.0
        assert stats.carbon_saved_kg == 7.2  # 20 km x 0.12 x 3 seats

        completed = [e for e in machine.drain_events() if e.name == ev.RIDE_COMPLETED]
        assert len(completed) == 1
        assert completed[0].payload["earnings"] == 300.0
        assert completed[0].recipients == (rider.id,)

    @pytest.mark.asyncio
    async def test_second_invocation_is_a_no_op(
        self, db_session, machine, make_user, make_ride, booking_request
    ):
        rider = await make_user("Rider")
        ride = await make_ride(rider, auto_accept=True, distance_km=10.0)
        booking = (await machine.create(booking_request(ride, await make_user("P")))).booking
        await RideLifecycle(db_session, machine).start_ride(ride.id, rider.id)
        booking = await machine.bookings.get_by_id(booking.id, fresh=True)
        await _journey_to_dropoff(machine, booking, rider.id)
        await machine.settle_payment(booking.id, rider.id)

        again = await RideAggregator(db_session).on_booking_terminalized(ride.id)

        assert again is None
        stats = await UserRepository(db_session).get_by_id(rider.id, fresh=True)
        assert stats.completed_rides == 1

    @pytest.mark.asyncio
    async def test_unfinished_booking_blocks_completion(
        self, db_session, machine, make_user, make_ride, booking_request
    ):
        rider = await make_user("Rider")
        ride = await make_ride(rider, auto_accept=True)
        await machine.create(booking_request(ride, await make_user("P")))
        await RideRepository(db_session).set_status_if(
            ride.id, RideStatus.ACTIVE, RideStatus.IN_PROGRESS
        )

        assert await RideAggregator(db_session).on_booking_terminalized(ride.id) is None
        ride = await RideRepository(db_session).get_by_id(ride.id, fresh=True)
        assert ride.status == RideStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_cancelled_bookings_do_not_block_or_earn(
        self, db_session, machine, make_user, make_ride, booking_request
    ):
        rider = await make_user("Rider")
        ride = await make_ride(rider, seats=3, price=100.0, auto_accept=True)
        staying = (await machine.create(booking_request(ride, await make_user("P")))).booking
        leaver = await make_user("P")
        leaving = (await machine.create(booking_request(ride, leaver))).booking
        await machine.cancel(leaving.id, leaver.id)

        await RideLifecycle(db_session, machine).start_ride(ride.id, rider.id)
        staying = await machine.bookings.get_by_id(staying.id, fresh=True)
        await _journey_to_dropoff(machine, staying, rider.id)
        await machine.settle_payment(staying.id, rider.id)

        ride = await RideRepository(db_session).get_by_id(ride.id, fresh=True)
        assert ride.status == RideStatus.COMPLETED
        assert ride.total_earnings == 100.0
        leaving = await BookingRepository(db_session).get_by_id(leaving.id, fresh=True)
        assert leaving.status == BookingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_active_ride_is_never_completed_by_rollup(
        self, db_session, make_user, make_ride
    ):
        ride = await make_ride(await make_user("Rider"))
        assert await RideAggregator(db_session).on_booking_terminalized(ride.id) is None
        ride = await RideRepository(db_session).get_by_id(ride.id, fresh=True)
        assert ride.status == RideStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_ride_row_locked_before_counting(
        self, db_session, machine, make_user, make_ride, booking_request
    ):
        rider = await make_user("Rider")
        ride = await make_ride(rider, auto_accept=True)
        await machine.create(booking_request(ride, await make_user("P")))
        await RideRepository(db_session).set_status_if(
            ride.id, RideStatus.ACTIVE, RideStatus.IN_PROGRESS
        )
        aggregator = RideAggregator(db_session)
        calls = []
        lock, count = aggregator.rides.lock_by_id, aggregator.bookings.count_unfinished

        async def locking(ride_id):
            calls.append("lock")
            return await lock(ride_id)

        async def counting(ride_id):
            calls.append("count")
            return await count(ride_id)

        aggregator.rides.lock_by_id = locking
        aggregator.bookings.count_unfinished = counting

        assert await aggregator.on_booking_terminalized(ride.id) is None
        assert calls == ["lock", "count"]

    @pytest.mark.asyncio
    async def test_lock_is_select_for_update(self, db_session, make_user, make_ride):
        ride = await make_ride(await make_user("Rider"))
        recording = _RecordingSession(db_session)

        locked = await RideRepository(recording).lock_by_id(ride.id)

        assert locked.id == ride.id
        (statement,) = recording.statements
        assert "FOR UPDATE" in str(statement.compile(dialect=postgresql.dialect()))
