"""Initial schema: users, rides, bookings and the transaction ledger.

Revision ID: 001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


# Shared enum types are created once up front; columns only reference them.
GENDER = postgresql.ENUM("FEMALE", "MALE", "OTHER", name="gender", create_type=False)
GENDER_PREFERENCE = postgresql.ENUM(
    "ANY", "FEMALE_ONLY", name="genderpreference", create_type=False
)
RIDE_STATUS = postgresql.ENUM(
    "ACTIVE", "IN_PROGRESS", "COMPLETED", "CANCELLED",
    name="ridestatus",
    create_type=False,
)
BOOKING_STATUS = postgresql.ENUM(
    "PENDING",
    "CONFIRMED",
    "REJECTED",
    "PICKUP_PENDING",
    "PICKED_UP",
    "DROPPED_OFF",
    "COMPLETED",
    "CANCELLED",
    name="bookingstatus",
    create_type=False,
)
PAYMENT_METHOD = postgresql.ENUM(
    "CASH", "UPI", "CARD", "WALLET", name="paymentmethod", create_type=False
)
PAYMENT_STATUS = postgresql.ENUM(
    "PENDING", "PAID", "PAYMENT_CONFIRMED", "REFUNDED",
    name="paymentstatus",
    create_type=False,
)
TRANSACTION_STATUS = postgresql.ENUM(
    "PENDING", "COMPLETED", "CANCELLED", "REFUNDED",
    name="transactionstatus",
    create_type=False,
)
ACTOR_ROLE = postgresql.ENUM("PASSENGER", "RIDER", name="actorrole", create_type=False)

ENUMS = (
    GENDER,
    GENDER_PREFERENCE,
    RIDE_STATUS,
    BOOKING_STATUS,
    PAYMENT_METHOD,
    PAYMENT_STATUS,
    TRANSACTION_STATUS,
    ACTOR_ROLE,
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum in ENUMS:
        enum.create(bind, checkfirst=True)

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("gender", GENDER, nullable=True),
        sa.Column("completed_rides", sa.Integer, server_default="0", nullable=False),
        sa.Column("total_distance_km", sa.Float, server_default="0", nullable=False),
        sa.Column("carbon_saved_kg", sa.Float, server_default="0", nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "rider_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("start_name", sa.String(120), nullable=True),
        sa.Column("start_lat", sa.Float, nullable=False),
        sa.Column("start_lng", sa.Float, nullable=False),
        sa.Column("destination_name", sa.String(120), nullable=True),
        sa.Column("destination_lat", sa.Float, nullable=False),
        sa.Column("destination_lng", sa.Float, nullable=False),
        sa.Column("distance_km", sa.Float, server_default="0", nullable=False),
        sa.Column("departure_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_seats", sa.Integer, nullable=False),
        sa.Column("available_seats", sa.Integer, nullable=False),
        sa.Column("price_per_seat", sa.Float, nullable=False),
        sa.Column(
            "auto_accept_bookings", sa.Boolean, server_default="false", nullable=False
        ),
        sa.Column(
            "gender_preference", GENDER_PREFERENCE, server_default="ANY", nullable=False
        ),
        sa.Column("status", RIDE_STATUS, server_default="ACTIVE", nullable=False),
        sa.Column("total_earnings", sa.Float, server_default="0", nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(300), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_rides_seat_bounds",
        ),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_rider", "rides", ["rider_id"])
    op.create_index("idx_rides_departure", "rides", ["departure_at"])

    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ride_id", sa.Integer, sa.ForeignKey("rides.id"), nullable=False),
        sa.Column(
            "passenger_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("rider_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("pickup_name", sa.String(120), nullable=True),
        sa.Column("pickup_address", sa.String(300), nullable=True),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_name", sa.String(120), nullable=True),
        sa.Column("dropoff_address", sa.String(300), nullable=True),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("seats_booked", sa.Integer, nullable=False),
        sa.Column("seats_held", sa.Boolean, server_default="true", nullable=False),
        sa.Column("special_requests", sa.String(300), nullable=True),
        sa.Column("status", BOOKING_STATUS, server_default="PENDING", nullable=False),
        # payment
        sa.Column(
            "payment_method", PAYMENT_METHOD, server_default="CASH", nullable=False
        ),
        sa.Column(
            "payment_status", PAYMENT_STATUS, server_default="PENDING", nullable=False
        ),
        sa.Column("ride_fare", sa.Float, nullable=False),
        sa.Column("platform_commission", sa.Float, nullable=False),
        sa.Column("total_amount", sa.Float, nullable=False),
        sa.Column("payment_reference", sa.String(120), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "payment_settled", sa.Boolean, server_default="false", nullable=False
        ),
        sa.Column("settled_by_role", ACTOR_ROLE, nullable=True),
        sa.Column("settled_by_id", sa.Integer, nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_amount", sa.Float, nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        # verification
        sa.Column("pickup_otp_code", sa.String(12), nullable=True),
        sa.Column("pickup_otp_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "pickup_otp_verified", sa.Boolean, server_default="false", nullable=False
        ),
        sa.Column("pickup_otp_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "pickup_otp_attempts", sa.Integer, server_default="0", nullable=False
        ),
        sa.Column("dropoff_otp_code", sa.String(12), nullable=True),
        sa.Column("dropoff_otp_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "dropoff_otp_verified", sa.Boolean, server_default="false", nullable=False
        ),
        sa.Column("dropoff_otp_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "dropoff_otp_attempts", sa.Integer, server_default="0", nullable=False
        ),
        # rider response / journey
        sa.Column("rider_responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rider_response_minutes", sa.Integer, nullable=True),
        sa.Column("rider_message", sa.String(300), nullable=True),
        sa.Column("journey_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("journey_dropped_off_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("journey_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("journey_duration_minutes", sa.Integer, nullable=True),
        # cancellation
        sa.Column("cancelled_by", ACTOR_ROLE, nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(300), nullable=True),
        sa.Column("refund_issued", sa.Boolean, server_default="false", nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "idx_bookings_ride_passenger", "bookings", ["ride_id", "passenger_id"]
    )
    op.create_index("idx_bookings_rider_status", "bookings", ["rider_id", "status"])
    op.create_index(
        "idx_bookings_passenger_status", "bookings", ["passenger_id", "status"]
    )
    op.create_index("idx_bookings_status", "bookings", ["status"])
    op.create_index(
        "uq_bookings_live_passenger",
        "bookings",
        ["ride_id", "passenger_id"],
        unique=True,
        postgresql_where=sa.text("status NOT IN ('CANCELLED', 'REJECTED')"),
    )

    # ── transactions ──────────────────────────────────────────────────
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "booking_id",
            sa.Integer,
            sa.ForeignKey("bookings.id"),
            unique=True,
            nullable=False,
        ),
        sa.Column("ride_id", sa.Integer, sa.ForeignKey("rides.id"), nullable=False),
        sa.Column(
            "passenger_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("rider_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "type", sa.String(40), server_default="BOOKING_PAYMENT", nullable=False
        ),
        sa.Column("payment_method", PAYMENT_METHOD, nullable=False),
        sa.Column("passenger_paid", sa.Float, nullable=False),
        sa.Column("ride_fare", sa.Float, nullable=False),
        sa.Column("platform_commission", sa.Float, nullable=False),
        sa.Column("total", sa.Float, nullable=False),
        sa.Column(
            "status", TRANSACTION_STATUS, server_default="PENDING", nullable=False
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settled_by_role", ACTOR_ROLE, nullable=True),
        sa.Column(
            "commission_collected", sa.Boolean, server_default="false", nullable=False
        ),
        sa.Column(
            "commission_collected_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column("rider_payout_amount", sa.Float, nullable=False),
        sa.Column(
            "rider_payout_settled", sa.Boolean, server_default="false", nullable=False
        ),
        sa.Column("refund_amount", sa.Float, nullable=True),
        sa.Column("description", sa.String(200), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_transactions_ride", "transactions", ["ride_id"])
    op.create_index("idx_transactions_status", "transactions", ["status"])


def downgrade() -> None:
    op.drop_table("transactions")
    op.drop_table("bookings")
    op.drop_table("rides")
    op.drop_table("users")
    bind = op.get_bind()
    for enum in reversed(ENUMS):
        enum.drop(bind, checkfirst=True)
