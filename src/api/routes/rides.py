"""
Ride endpoints
==============

POST /api/v1/rides                  -- post a ride offer
GET  /api/v1/rides/{ride_id}        -- ride with its bookings
POST /api/v1/rides/{ride_id}/start  -- depart; issues pickup OTPs
POST /api/v1/rides/{ride_id}/cancel -- cancel before departure
POST /api/v1/rides/{ride_id}/close  -- close a ride nobody booked
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
    BookingResponse,
    RideCancelRequest,
    RideCreateRequest,
    RideDetailResponse,
    RideResponse,
)
from src.config import settings
from src.infrastructure.notifications import NotificationSink
from src.infrastructure.repositories import BookingRepository
from src.services.rides import RideLifecycle

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Post a ride offer",
)
@limiter.limit(settings.rate_limit)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await RideLifecycle(db).post_ride(
        rider_id=actor_id,
        start=body.start.to_domain(),
        destination=body.destination.to_domain(),
        departure_at=body.departure_at,
        total_seats=body.total_seats,
        price_per_seat=body.price_per_seat,
        auto_accept=body.auto_accept_bookings,
        gender_preference=body.gender_preference,
        distance_km=body.distance_km,
    )


@router.get(
    "/{ride_id}",
    response_model=RideDetailResponse,
    summary="Get a ride with its bookings",
)
@limiter.limit(settings.rate_limit)
async def get_ride(
    request: Request,
    ride_id: int,
    db: AsyncSession = Depends(get_db),
):
    ride = await RideLifecycle(db).get_ride(ride_id)
    bookings = await BookingRepository(db).list_for_ride(ride_id)
    return RideDetailResponse.model_validate(ride).model_copy(
        update={"bookings": [BookingResponse.model_validate(b) for b in bookings]}
    )


@router.post(
    "/{ride_id}/start",
    response_model=RideResponse,
    summary="Start the ride",
    description=(
        "ACTIVE -> IN_PROGRESS.  Confirmed bookings receive their pickup "
        "OTP now; unanswered requests are rejected."
    ),
)
@limiter.limit(settings.rate_limit)
async def start_ride(
    request: Request,
    ride_id: int,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
):
    lifecycle = RideLifecycle(db)
    ride = await lifecycle.start_ride(ride_id, actor_id)
    await commit_and_notify(db, sink, lifecycle.drain_events())
    return ride


@router.post(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    summary="Cancel the ride",
    description=(
        "Only before departure.  Every live booking is cancelled on the "
        "rider's behalf and prepaid bookings are refunded in full."
    ),
)
@limiter.limit(settings.rate_limit)
async def cancel_ride(
    request: Request,
    ride_id: int,
    body: Optional[RideCancelRequest] = None,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
):
    lifecycle = RideLifecycle(db)
    ride = await lifecycle.cancel_ride(ride_id, actor_id, body.reason if body else None)
    await commit_and_notify(db, sink, lifecycle.drain_events())
    return ride


@router.post(
    "/{ride_id}/close",
    response_model=RideResponse,
    summary="Close a ride without passengers",
)
@limiter.limit(settings.rate_limit)
async def close_ride(
    request: Request,
    ride_id: int,
    actor_id: int = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await RideLifecycle(db).close_ride(ride_id, actor_id)
