"""
Shared test fixtures.

Every test gets its own SQLite database file (via aiosqlite) under
``tmp_path`` so tests run without Docker / PostgreSQL / Redis.  A file
rather than ``:memory:`` lets several sessions -- each its own
connection -- see the same data, which the concurrency tests rely on.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.domain.entities import BookingRequest, Location
from src.domain.enums import Gender, GenderPreference, RideStatus
from src.infrastructure.database import Base
from src.infrastructure.models import RideModel, UserModel

# Fixed "now" so refund tiers and OTP expiry are deterministic.
NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)

KORAMANGALA = Location(12.9352, 77.6245, "Koramangala")
WHITEFIELD = Location(12.9698, 77.7500, "Whitefield")


class FrozenClock:
    """Callable clock for the state machine; ``advance`` moves it forward."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'carpool.db'}", echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    async def _make(name: str = "User", gender: Gender = Gender.MALE) -> UserModel:
        counter["n"] += 1
        user = UserModel(
            name=f"{name} {counter['n']}",
            email=f"user{counter['n']}@example.com",
            gender=gender,
        )
        db_session.add(user)
        await db_session.flush()
        return user

    return _make


@pytest.fixture
def make_ride(db_session):
    async def _make(
        rider: UserModel,
        seats: int = 3,
        price: float = 100.0,
        auto_accept: bool = False,
        gender_preference: GenderPreference = GenderPreference.ANY,
        departure_in: timedelta = timedelta(days=2),
        status: RideStatus = RideStatus.ACTIVE,
        distance_km: float = 10.0,
    ) -> RideModel:
        ride = RideModel(
            rider_id=rider.id,
            start_name=KORAMANGALA.name,
            start_lat=KORAMANGALA.latitude,
            start_lng=KORAMANGALA.longitude,
            destination_name=WHITEFIELD.name,
            destination_lat=WHITEFIELD.latitude,
            destination_lng=WHITEFIELD.longitude,
            distance_km=distance_km,
            departure_at=NOW + departure_in,
            total_seats=seats,
            available_seats=seats,
            price_per_seat=price,
            auto_accept_bookings=auto_accept,
            gender_preference=gender_preference,
            status=status,
        )
        db_session.add(ride)
        await db_session.flush()
        return ride

    return _make


@pytest.fixture
def booking_request():
    def _make(ride: RideModel, passenger: UserModel, seats: int = 1, **extra):
        return BookingRequest(
            ride_id=ride.id,
            passenger_id=passenger.id,
            seats=seats,
            pickup=KORAMANGALA,
            dropoff=WHITEFIELD,
            **extra,
        )

    return _make
