"""
Booking endpoints
=================

POST /api/v1/bookings                         -- request seats on a ride
GET  /api/v1/bookings                         -- the caller's bookings
GET  /api/v1/bookings/{id}                    -- one booking (participants only)
POST /api/v1/bookings/{id}/accept             -- rider approves
POST /api/v1/bookings/{id}/reject             -- rider declines
POST /api/v1/bookings/{id}/cancel             -- passenger withdraws
POST /api/v1/bookings/{id}/verify-pickup      -- rider enters pickup OTP
POST /api/v1/bookings/{id}/pickup-code        -- rider reissues the pickup OTP
POST /api/v1/bookings/{id}/verify-dropoff     -- rider enters dropoff OTP
POST /api/v1/bookings/{id}/prepay             -- passenger pays online
POST /api/v1/bookings/{id}/settle             -- rider or passenger confirms payment
GET  /api/v1/bookings/{id}/transaction        -- ledger row

Every mutation commits first and only then publishes its events.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import (
    commit_and_notify,
    get_actor_id,
    get_db,
    get_notification_sink,
)
from src.api.middleware import limiter
from src.api.schemas import (
    AcceptRequest,
    BookingCreatedResponse,
    BookingCreateRequest,
    BookingResponse,
    OTPRequest,
    PrepayRequest,
    ReasonRequest,
    TransactionResponse,
)
from src.config import settings
from src.domain.entities import BookingRequest
from src.domain.enums import BookingStatus
from src.domain.errors import BookingNotFound, NotAuthorized
from src.infrastructure.models import BookingModel
from src.infrastructure.notifications import NotificationSink
from src.infrastructure.repositories import BookingRepository, TransactionRepository
from src.services.booking_machine import BookingStateMachine

router = APIRouter(prefix="/bookings", tags=["bookings"])


async def _participant_booking(
    db: AsyncSession, booking_id: int, actor_id: int
) -> BookingModel:
    booking = await BookingRepository(db).get_by_id(booking_id)
    if booking is None:
        raise BookingNotFound(booking_id)
    if actor_id not in (booking.passenger_id, booking.rider_id):
        raise NotAuthorized(
            "Only the rider or the passenger can view this booking",
            actor_id,
            "RIDER|PASSENGER",
        )
    return booking


@router.post(
    "",
    status_code=201,
    response_model=BookingCreatedResponse,
    summary="Book seats on a ride",
    responses={409: {"description": "Ride unavailable, not enough seats or duplicate"}},
)
@limiter.limit(settings.rate_limit)
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
):
    machine = BookingStateMachine(db)
    created = await machine.create(
        BookingRequest(
            ride_id=body.ride_id,
            passenger_id=actor_id,
            seats=body.seats,
            pickup=body.pickup.to_domain(),
            dropoff=body.dropoff.to_domain(),
            payment_method=body.payment_method,
            special_requests=body.special_requests,
        )
    )
    await commit_and_notify(db, sink, machine.drain_events())
    return {
        "booking": BookingResponse.model_validate(created.booking),
        "auto_accepted": created.auto_accepted,
    }


@router.get(
    "",
    response_model=list[BookingResponse],
    summary="List the caller's bookings as a passenger",
)
@limiter.limit(settings.rate_limit)
async def list_bookings(
    request: Request,
    status: Optional[BookingStatus] = None,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await BookingRepository(db).list_for_passenger(actor_id, status)


@router.get("/{booking_id}", response_model=BookingResponse, summary="Get a booking")
@limiter.limit(settings.rate_limit)
async def get_booking(
    request: Request,
    booking_id: int,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await _participant_booking(db, booking_id, actor_id)


@router.get(
    "/{booking_id}/transaction",
    response_model=TransactionResponse,
    summary="Ledger row for a booking",
)
@limiter.limit(settings.rate_limit)
async def get_transaction(
    request: Request,
    booking_id: int,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    await _participant_booking(db, booking_id, actor_id)
    transaction = await TransactionRepository(db).get_by_booking(booking_id)
    if transaction is None:
        raise BookingNotFound(booking_id)
    return transaction


@router.post(
    "/{booking_id}/accept",
    response_model=BookingResponse,
    summary="Rider accepts a pending booking",
)
@limiter.limit(settings.rate_limit)
async def accept_booking(
    request: Request,
    booking_id: int,
    body: Optional[AcceptRequest] = None,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
):
    machine = BookingStateMachine(db)
    booking = await machine.accept(
        booking_id, actor_id, body.message if body else None
    )
    await commit_and_notify(db, sink, machine.drain_events())
    return booking


@router.post(
    "/{booking_id}/reject",
    response_model=BookingResponse,
    summary="Rider rejects a pending booking",
)
@limiter.limit(settings.rate_limit)
async def reject_booking(
    request: Request,
    booking_id: int,
    body: Optional[ReasonRequest] = None,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
):
    machine = BookingStateMachine(db)
    booking = await machine.reject(booking_id, actor_id, body.reason if body else None)
    await commit_and_notify(db, sink, machine.drain_events())
    return booking


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingResponse,
    summary="Passenger cancels before pickup",
    description=(
        "Allowed from PENDING or CONFIRMED.  Seats return to the ride; a "
        "prepaid booking is refunded on a sliding scale by time to departure."
    ),
)
@limiter.limit(settings.rate_limit)
async def cancel_booking(
    request: Request,
    booking_id: int,
    body: Optional[ReasonRequest] = None,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
):
    machine = BookingStateMachine(db)
    booking = await machine.cancel(booking_id, actor_id, body.reason if body else None)
    await commit_and_notify(db, sink, machine.drain_events())
    return booking


@router.post(
    "/{booking_id}/verify-pickup",
    response_model=BookingResponse,
    summary="Rider verifies the passenger's pickup OTP",
    responses={429: {"description": "Too many OTP attempts"}},
)
@limiter.limit(settings.rate_limit)
async def verify_pickup(
    request: Request,
    booking_id: int,
    body: OTPRequest,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
):
    machine = BookingStateMachine(db)
    booking = await machine.verify_pickup(booking_id, actor_id, body.otp)
    await commit_and_notify(db, sink, machine.drain_events())
    return booking


@router.post(
    "/{booking_id}/pickup-code",
    response_model=BookingResponse,
    summary="Rider reissues an expired or locked-out pickup OTP",
)
@limiter.limit(settings.rate_limit)
async def reissue_pickup_code(
    request: Request,
    booking_id: int,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
):
    machine = BookingStateMachine(db)
    booking = await machine.reissue_pickup_code(booking_id, actor_id)
    await commit_and_notify(db, sink, machine.drain_events())
    return booking


@router.post(
    "/{booking_id}/verify-dropoff",
    response_model=BookingResponse,
    summary="Rider verifies the passenger's dropoff OTP",
    responses={429: {"description": "Too many OTP attempts"}},
)
@limiter.limit(settings.rate_limit)
async def verify_dropoff(
    request: Request,
    booking_id: int,
    body: OTPRequest,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
):
    machine = BookingStateMachine(db)
    booking = await machine.verify_dropoff(booking_id, actor_id, body.otp)
    await commit_and_notify(db, sink, machine.drain_events())
    return booking


@router.post(
    "/{booking_id}/prepay",
    response_model=BookingResponse,
    summary="Record an online payment before the trip",
)
@limiter.limit(settings.rate_limit)
async def prepay_booking(
    request: Request,
    booking_id: int,
    body: Optional[PrepayRequest] = None,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    machine = BookingStateMachine(db)
    return await machine.record_prepayment(
        booking_id, actor_id, body.reference if body else None
    )


@router.post(
    "/{booking_id}/settle",
    response_model=BookingResponse,
    summary="Confirm payment after dropoff",
    description=(
        "Either the rider (cash / UPI received) or the passenger (paid) may "
        "settle.  Exactly one settlement succeeds; the other gets 409."
    ),
)
@limiter.limit(settings.rate_limit)
async def settle_booking(
    request: Request,
    booking_id: int,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
):
    machine = BookingStateMachine(db)
    booking = await machine.settle_payment(booking_id, actor_id)
    await commit_and_notify(db, sink, machine.drain_events())
    return booking
