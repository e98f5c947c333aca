"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from src.domain.entities import Location
from src.domain.enums import (
    ActorRole,
    BookingStatus,
    GenderPreference,
    PaymentMethod,
    PaymentStatus,
    RideStatus,
    TransactionStatus,
)


# ── Requests ──────────────────────────────────────────────────────────


class LocationIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    name: Optional[str] = Field(None, max_length=120)
    address: Optional[str] = Field(None, max_length=300)

    def to_domain(self) -> Location:
        return Location(self.latitude, self.longitude, self.name, self.address)


class RideCreateRequest(BaseModel):
    start: LocationIn
    destination: LocationIn
    departure_at: datetime
    total_seats: int = Field(..., ge=1, le=8)
    price_per_seat: float = Field(..., ge=0)
    auto_accept_bookings: bool = False
    gender_preference: GenderPreference = GenderPreference.ANY
    distance_km: Optional[float] = Field(
        None, ge=0, description="Route distance; derived from coordinates when omitted."
    )


class RideCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=300)


class BookingCreateRequest(BaseModel):
    ride_id: int
    seats: int = Field(1, ge=1, le=8)
    pickup: LocationIn
    dropoff: LocationIn
    payment_method: PaymentMethod = PaymentMethod.CASH
    special_requests: Optional[str] = Field(None, max_length=300)


class AcceptRequest(BaseModel):
    message: Optional[str] = Field(None, max_length=300)


class ReasonRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=300)


class OTPRequest(BaseModel):
    otp: str = Field(..., min_length=4, max_length=12)


class PrepayRequest(BaseModel):
    reference: Optional[str] = Field(
        None, max_length=120, description="Payment gateway reference."
    )


# ── Responses ─────────────────────────────────────────────────────────


class BookingResponse(BaseModel):
    id: int
    ride_id: int
    passenger_id: int
    rider_id: int
    status: BookingStatus
    seats_booked: int
    pickup_name: Optional[str] = None
    pickup_address: Optional[str] = None
    dropoff_name: Optional[str] = None
    dropoff_address: Optional[str] = None
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    ride_fare: float
    platform_commission: float
    total_amount: float
    payment_settled: bool
    settled_by_role: Optional[ActorRole] = None
    refund_amount: Optional[float] = None
    pickup_otp_verified: bool
    dropoff_otp_verified: bool
    rider_message: Optional[str] = None
    journey_started_at: Optional[datetime] = None
    journey_dropped_off_at: Optional[datetime] = None
    journey_duration_minutes: Optional[int] = None
    cancelled_by: Optional[ActorRole] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BookingCreatedResponse(BaseModel):
    booking: BookingResponse
    auto_accepted: bool = Field(..., serialization_alias="autoAccepted")


class RideResponse(BaseModel):
    id: int
    rider_id: int
    start_name: Optional[str] = None
    destination_name: Optional[str] = None
    distance_km: float
    departure_at: datetime
    total_seats: int
    available_seats: int
    price_per_seat: float
    auto_accept_bookings: bool
    gender_preference: GenderPreference
    status: RideStatus
    total_earnings: float
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    model_config = {"from_attributes": True}


class RideDetailResponse(RideResponse):
    bookings: list[BookingResponse] = []


class TransactionResponse(BaseModel):
    id: int
    booking_id: int
    ride_id: int
    payment_method: PaymentMethod
    passenger_paid: float
    ride_fare: float
    platform_commission: float
    total: float
    status: TransactionStatus
    settled_by_role: Optional[ActorRole] = None
    commission_collected: bool
    rider_payout_amount: float
    refund_amount: Optional[float] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"
    database: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    code: str
    context: dict = {}
