"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

Counters and status flags are never changed with load / mutate / save.
The ``*_if`` / ``claim_*`` / ``reserve_*`` methods issue one conditional
``UPDATE ... WHERE <expected state>`` and report whether a row matched;
the caller re-reads with ``fresh=True`` when it needs the new values.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import BookingModel, RideModel, TransactionModel, UserModel
from src.domain.enums import (
    FAILED_STATUSES,
    TERMINAL_STATUSES,
    BookingStatus,
    RideStatus,
    TransactionStatus,
)

_NO_SYNC = {"synchronize_session": False}


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_ride(self, **fields: Any) -> RideModel:
        fields.setdefault("available_seats", fields.get("total_seats"))
        ride = RideModel(**fields)
        self.session.add(ride)
        await self.session.flush()
        return ride

    async def get_by_id(
        self, ride_id: int, fresh: bool = False
    ) -> Optional[RideModel]:
        return await self.session.get(
            RideModel, ride_id, populate_existing=fresh
        )

    async def lock_by_id(self, ride_id: int) -> Optional[RideModel]:
        """SELECT ... FOR UPDATE: serialise ride-level roll-ups."""
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.id == ride_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def reserve_seats(self, ride_id: int, seats: int) -> bool:
        """Atomically take *seats* if the ride is ACTIVE and has them."""
        result = await self.session.execute(
            update(RideModel)
            .where(
                RideModel.id == ride_id,
                RideModel.status == RideStatus.ACTIVE,
                RideModel.available_seats >= seats,
            )
            .values(available_seats=RideModel.available_seats - seats)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    async def release_seats(self, ride_id: int, seats: int) -> bool:
        """Atomically give back *seats*, capped at ``total_seats``."""
        restored = RideModel.available_seats + seats
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id)
            .values(
                available_seats=case(
                    (restored > RideModel.total_seats, RideModel.total_seats),
                    else_=restored,
                )
            )
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    async def set_status_if(
        self,
        ride_id: int,
        expected: RideStatus,
        new: RideStatus,
        **values: Any,
    ) -> bool:
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id, RideModel.status == expected)
            .values(status=new, **values)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, booking: BookingModel) -> BookingModel:
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_by_id(
        self, booking_id: int, fresh: bool = False
    ) -> Optional[BookingModel]:
        return await self.session.get(
            BookingModel, booking_id, populate_existing=fresh
        )

    async def find_live_for_passenger(
        self, ride_id: int, passenger_id: int
    ) -> Optional[BookingModel]:
        """A booking on *ride_id* that is neither CANCELLED nor REJECTED."""
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.ride_id == ride_id,
                BookingModel.passenger_id == passenger_id,
                BookingModel.status.not_in(list(FAILED_STATUSES)),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_ride(
        self,
        ride_id: int,
        statuses: Optional[Iterable[BookingStatus]] = None,
    ) -> list[BookingModel]:
        query = select(BookingModel).where(BookingModel.ride_id == ride_id)
        if statuses is not None:
            query = query.where(BookingModel.status.in_(list(statuses)))
        result = await self.session.execute(query.order_by(BookingModel.id))
        return list(result.scalars().all())

    async def list_for_passenger(
        self, passenger_id: int, status: Optional[BookingStatus] = None
    ) -> list[BookingModel]:
        query = select(BookingModel).where(
            BookingModel.passenger_id == passenger_id
        )
        if status is not None:
            query = query.where(BookingModel.status == status)
        result = await self.session.execute(
            query.order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
        )
        return list(result.scalars().all())

    async def update_if(
        self,
        booking_id: int,
        expected: Iterable[BookingStatus],
        *conditions: Any,
        **values: Any,
    ) -> bool:
        """Read-status / assert-expected / write as one statement."""
        result = await self.session.execute(
            update(BookingModel)
            .where(
                BookingModel.id == booking_id,
                BookingModel.status.in_(list(expected)),
                *conditions,
            )
            .values(**values)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    async def claim_seat_release(self, booking_id: int) -> bool:
        """Flip ``seats_held`` off; only the first caller gets True."""
        result = await self.session.execute(
            update(BookingModel)
            .where(
                BookingModel.id == booking_id,
                BookingModel.seats_held.is_(True),
            )
            .values(seats_held=False)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    async def increment_otp_attempts(self, booking_id: int, phase: str) -> int:
        """Bump the attempt counter for *phase* and return the new value."""
        column = getattr(BookingModel, f"{phase}_otp_attempts")
        await self.session.execute(
            update(BookingModel)
            .where(BookingModel.id == booking_id)
            .values({column: column + 1})
            .execution_options(**_NO_SYNC)
        )
        result = await self.session.execute(
            select(column).where(BookingModel.id == booking_id)
        )
        return result.scalar_one()

    async def count_unfinished(self, ride_id: int) -> int:
        """Bookings on the ride still short of a terminal state."""
        result = await self.session.execute(
            select(func.count())
            .select_from(BookingModel)
            .where(
                BookingModel.ride_id == ride_id,
                BookingModel.status.not_in(list(TERMINAL_STATUSES)),
            )
        )
        return result.scalar() or 0

    async def completed_totals(self, ride_id: int) -> tuple[float, int, int]:
        """``(sum of ride_fare, seats carried, bookings)`` over COMPLETED."""
        result = await self.session.execute(
            select(
                func.coalesce(func.sum(BookingModel.ride_fare), 0.0),
                func.coalesce(func.sum(BookingModel.seats_booked), 0),
                func.count(BookingModel.id),
            ).where(
                BookingModel.ride_id == ride_id,
                BookingModel.status == BookingStatus.COMPLETED,
            )
        )
        fares, seats, count = result.one()
        return float(fares), int(seats), int(count)


class TransactionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, transaction: TransactionModel) -> TransactionModel:
        self.session.add(transaction)
        await self.session.flush()
        return transaction

    async def get_by_booking(
        self, booking_id: int, fresh: bool = False
    ) -> Optional[TransactionModel]:
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.booking_id == booking_id)
            .execution_options(populate_existing=fresh)
        )
        return result.scalar_one_or_none()

    async def update_if(
        self,
        booking_id: int,
        expected: Iterable[TransactionStatus],
        **values: Any,
    ) -> bool:
        result = await self.session.execute(
            update(TransactionModel)
            .where(
                TransactionModel.booking_id == booking_id,
                TransactionModel.status.in_(list(expected)),
            )
            .values(**values)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(
        self, user_id: int, fresh: bool = False
    ) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id, populate_existing=fresh)

    async def add_trip_statistics(
        self,
        user_id: int,
        distance_km: float,
        carbon_saved_kg: float = 0.0,
    ) -> None:
        """Increment trip counters in place; never read-modify-write."""
        await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(
                completed_rides=UserModel.completed_rides + 1,
                total_distance_km=UserModel.total_distance_km + distance_km,
                carbon_saved_kg=UserModel.carbon_saved_kg + carbon_saved_kg,
            )
            .execution_options(**_NO_SYNC)
        )
