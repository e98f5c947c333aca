"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 8 sample users (riders and passengers)
  - 5 sample rides around Bengaluru, departing over the next days
  - 3 bookings in different states (PENDING, CONFIRMED, prepaid)
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import text

from src.domain.entities import BookingRequest, Location
from src.domain.enums import Gender, GenderPreference, PaymentMethod
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.models import UserModel
from src.services.booking_machine import BookingStateMachine
from src.services.rides import RideLifecycle


USERS = [
    {"name": "Aarav Sharma", "email": "aarav@example.com", "gender": Gender.MALE},
    {"name": "Priya Patel", "email": "priya@example.com", "gender": Gender.FEMALE},
    {"name": "Rohan Mehta", "email": "rohan@example.com", "gender": Gender.MALE},
    {"name": "Sneha Gupta", "email": "sneha@example.com", "gender": Gender.FEMALE},
    {"name": "Vikram Singh", "email": "vikram@example.com", "gender": Gender.MALE},
    {"name": "Ananya Reddy", "email": "ananya@example.com", "gender": Gender.FEMALE},
    {"name": "Karan Joshi", "email": "karan@example.com", "gender": Gender.MALE},
    {"name": "Meera Nair", "email": "meera@example.com", "gender": Gender.FEMALE},
]

PLACES = {
    "koramangala": Location(12.9352, 77.6245, "Koramangala"),
    "whitefield": Location(12.9698, 77.7500, "Whitefield"),
    "indiranagar": Location(12.9784, 77.6408, "Indiranagar"),
    "electronic_city": Location(12.8452, 77.6602, "Electronic City"),
    "airport": Location(13.1986, 77.7066, "Kempegowda Airport"),
    "hebbal": Location(13.0358, 77.5970, "Hebbal"),
}


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        users = []
        for u in USERS:
            m = UserModel(name=u["name"], email=u["email"], gender=u["gender"])
            session.add(m)
            users.append(m)
        await session.flush()
        print(f"  Created {len(users)} users")

        # ── Rides ─────────────────────────────────────────────────────
        now = datetime.now(timezone.utc)
        rides_data = [
            (users[0], "koramangala", "whitefield", 1, 3, 120.0, False, GenderPreference.ANY),
            (users[1], "indiranagar", "airport", 2, 2, 350.0, True, GenderPreference.FEMALE_ONLY),
            (users[2], "electronic_city", "hebbal", 1, 4, 180.0, True, GenderPreference.ANY),
            (users[3], "whitefield", "koramangala", 3, 3, 110.0, False, GenderPreference.ANY),
            (users[4], "hebbal", "airport", 0, 2, 250.0, False, GenderPreference.ANY),
        ]
        lifecycle = RideLifecycle(session)
        rides = []
        for rider, start, dest, days, seats, price, auto, pref in rides_data:
            ride = await lifecycle.post_ride(
                rider_id=rider.id,
                start=PLACES[start],
                destination=PLACES[dest],
                departure_at=now + timedelta(days=days, hours=8),
                total_seats=seats,
                price_per_seat=price,
                auto_accept=auto,
                gender_preference=pref,
            )
            rides.append(ride)
        print(f"  Created {len(rides)} rides")

        # ── Bookings ──────────────────────────────────────────────────
        machine = BookingStateMachine(session)
        bookings_data = [
            (rides[0], users[5], 1, PaymentMethod.CASH),  # waits for rider
            (rides[1], users[7], 1, PaymentMethod.UPI),  # auto-accepted
            (rides[2], users[6], 2, PaymentMethod.CARD),  # auto-accepted, prepaid
        ]
        for ride, passenger, seats, method in bookings_data:
            created = await machine.create(
                BookingRequest(
                    ride_id=ride.id,
                    passenger_id=passenger.id,
                    seats=seats,
                    pickup=Location(ride.start_lat, ride.start_lng, ride.start_name),
                    dropoff=Location(
                        ride.destination_lat, ride.destination_lng, ride.destination_name
                    ),
                    payment_method=method,
                )
            )
            if method == PaymentMethod.CARD:
                await machine.record_prepayment(
                    created.booking.id, passenger.id, "seed-card-0001"
                )
        machine.drain_events()
        print(f"  Created {len(bookings_data)} bookings")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
