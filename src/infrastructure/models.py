"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``users``         -- riders and passengers, with trip statistics
* ``rides``         -- posted trips; owns the available-seat counter
* ``bookings``      -- one passenger's reservation against a ride
* ``transactions``  -- platform ledger row, 1:1 with a booking

Bookings and transactions reference rides / bookings by id only; no
operation relies on co-location of the three records.

Indexes
-------
* **B-Tree** on ``status``, ``rider_id``, ``(ride_id, passenger_id)``
  and ``(passenger_id, status)`` for the duplicate-booking check, the
  ride roll-up count and "my bookings" listings.
* **CHECK** ``0 <= available_seats <= total_seats`` as a last line of
  defence behind the conditional seat updates.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
    text,
)

from .database import Base
from src.domain.enums import (
    ActorRole,
    BookingStatus,
    Gender,
    GenderPreference,
    PaymentMethod,
    PaymentStatus,
    RideStatus,
    TransactionStatus,
)
from src.domain.otp import OTPRecord


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(20), nullable=True)
    gender = Column(Enum(Gender), nullable=True)

    completed_rides = Column(Integer, default=0, nullable=False)
    total_distance_km = Column(Float, default=0.0, nullable=False)
    carbon_saved_kg = Column(Float, default=0.0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    rider_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    start_name = Column(String(120), nullable=True)
    start_lat = Column(Float, nullable=False)
    start_lng = Column(Float, nullable=False)
    destination_name = Column(String(120), nullable=True)
    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)
    distance_km = Column(Float, default=0.0, nullable=False)
    departure_at = Column(DateTime(timezone=True), nullable=False)

    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    price_per_seat = Column(Float, nullable=False)
    auto_accept_bookings = Column(Boolean, default=False, nullable=False)
    gender_preference = Column(
        Enum(GenderPreference), default=GenderPreference.ANY, nullable=False
    )

    status = Column(Enum(RideStatus), default=RideStatus.ACTIVE, nullable=False)
    total_earnings = Column(Float, default=0.0, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(300), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_rides_seat_bounds",
        ),
        Index("idx_rides_status", "status"),
        Index("idx_rides_rider", "rider_id"),
        Index("idx_rides_departure", "departure_at"),
    )


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False)
    passenger_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    rider_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    pickup_name = Column(String(120), nullable=True)
    pickup_address = Column(String(300), nullable=True)
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    dropoff_name = Column(String(120), nullable=True)
    dropoff_address = Column(String(300), nullable=True)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)

    seats_booked = Column(Integer, nullable=False)
    # True while this booking holds seats on the ride; flipped once on release
    seats_held = Column(Boolean, default=True, nullable=False)
    special_requests = Column(String(300), nullable=True)
    status = Column(
        Enum(BookingStatus), default=BookingStatus.PENDING, nullable=False
    )

    # ── payment ───────────────────────────────────────────────────────
    payment_method = Column(
        Enum(PaymentMethod), default=PaymentMethod.CASH, nullable=False
    )
    payment_status = Column(
        Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    ride_fare = Column(Float, nullable=False)
    platform_commission = Column(Float, nullable=False)
    total_amount = Column(Float, nullable=False)
    payment_reference = Column(String(120), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payment_settled = Column(Boolean, default=False, nullable=False)
    settled_by_role = Column(Enum(ActorRole), nullable=True)
    settled_by_id = Column(Integer, nullable=True)
    settled_at = Column(DateTime(timezone=True), nullable=True)
    refund_amount = Column(Float, nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    # ── verification ──────────────────────────────────────────────────
    pickup_otp_code = Column(String(12), nullable=True)
    pickup_otp_expires_at = Column(DateTime(timezone=True), nullable=True)
    pickup_otp_verified = Column(Boolean, default=False, nullable=False)
    pickup_otp_verified_at = Column(DateTime(timezone=True), nullable=True)
    pickup_otp_attempts = Column(Integer, default=0, nullable=False)
    dropoff_otp_code = Column(String(12), nullable=True)
    dropoff_otp_expires_at = Column(DateTime(timezone=True), nullable=True)
    dropoff_otp_verified = Column(Boolean, default=False, nullable=False)
    dropoff_otp_verified_at = Column(DateTime(timezone=True), nullable=True)
    dropoff_otp_attempts = Column(Integer, default=0, nullable=False)

    # ── rider response / journey ──────────────────────────────────────
    rider_responded_at = Column(DateTime(timezone=True), nullable=True)
    rider_response_minutes = Column(Integer, nullable=True)
    rider_message = Column(String(300), nullable=True)
    journey_started_at = Column(DateTime(timezone=True), nullable=True)
    journey_dropped_off_at = Column(DateTime(timezone=True), nullable=True)
    journey_completed_at = Column(DateTime(timezone=True), nullable=True)
    journey_duration_minutes = Column(Integer, nullable=True)

    # ── cancellation ──────────────────────────────────────────────────
    cancelled_by = Column(Enum(ActorRole), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(300), nullable=True)
    refund_issued = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_bookings_ride_passenger", "ride_id", "passenger_id"),
        Index("idx_bookings_rider_status", "rider_id", "status"),
        Index("idx_bookings_passenger_status", "passenger_id", "status"),
        Index("idx_bookings_status", "status"),
        # at most one live booking per passenger per ride
        Index(
            "uq_bookings_live_passenger",
            "ride_id",
            "passenger_id",
            unique=True,
            postgresql_where=text("status NOT IN ('CANCELLED', 'REJECTED')"),
            sqlite_where=text("status NOT IN ('CANCELLED', 'REJECTED')"),
        ),
    )

    def otp_record(self, phase: str) -> OTPRecord:
        """Snapshot of the pickup / dropoff verification sub-record."""
        return OTPRecord(
            code=getattr(self, f"{phase}_otp_code"),
            expires_at=getattr(self, f"{phase}_otp_expires_at"),
            verified=bool(getattr(self, f"{phase}_otp_verified")),
            verified_at=getattr(self, f"{phase}_otp_verified_at"),
            attempts=getattr(self, f"{phase}_otp_attempts") or 0,
        )


class TransactionModel(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(
        Integer, ForeignKey("bookings.id"), unique=True, nullable=False
    )
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False)
    passenger_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    rider_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    type = Column(String(40), default="BOOKING_PAYMENT", nullable=False)
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    passenger_paid = Column(Float, nullable=False)
    ride_fare = Column(Float, nullable=False)
    platform_commission = Column(Float, nullable=False)
    total = Column(Float, nullable=False)
    status = Column(
        Enum(TransactionStatus),
        default=TransactionStatus.PENDING,
        nullable=False,
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)
    settled_by_role = Column(Enum(ActorRole), nullable=True)
    commission_collected = Column(Boolean, default=False, nullable=False)
    commission_collected_at = Column(DateTime(timezone=True), nullable=True)
    rider_payout_amount = Column(Float, nullable=False)
    rider_payout_settled = Column(Boolean, default=False, nullable=False)
    refund_amount = Column(Float, nullable=True)
    description = Column(String(200), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_transactions_ride", "ride_id"),
        Index("idx_transactions_status", "status"),
    )
