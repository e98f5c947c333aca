"""
Booking Fulfillment State Machine
=================================

Owns every booking status change::

    PENDING -> CONFIRMED | REJECTED | CANCELLED
    CONFIRMED -> PICKUP_PENDING -> PICKED_UP -> DROPPED_OFF -> COMPLETED
    CONFIRMED -> PICKED_UP | CANCELLED
    PICKUP_PENDING -> PICKUP_PENDING   (pickup code reissued)

REJECTED, CANCELLED and COMPLETED are terminal.

Each operation follows the same shape:

1. load booking (and its ride, once -- never re-fetched mid-operation)
2. check the actor's *relationship* (ride owner / passenger)
3. check the source status against the transition table
4. write the new status with ``UPDATE ... WHERE status IN (expected)``;
   if no row matched a concurrent transition won and this call fails
   with ``InvalidTransition`` carrying the status it lost to
5. delegate to Seat Inventory / OTP Verifier / Payment Settlement /
   Ride Aggregator
6. queue domain events; the caller publishes them after commit

Nothing here blocks on external I/O and nothing is retried except the
bounded optimistic retry inside ``PaymentSettlement.settle``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain import events as ev
from src.domain.entities import (
    BookingRequest,
    ensure_transition,
    minutes_between,
)
from src.domain.enums import (
    ActorRole,
    BookingStatus,
    Gender,
    GenderPreference,
    OTPPhase,
    PaymentMethod,
    RideStatus,
    TransactionStatus,
)
from src.domain.errors import (
    OTP_ERRORS,
    AlreadySettled,
    BookingNotFound,
    DuplicateBooking,
    GenderRestricted,
    InsufficientSeats,
    InvalidTransition,
    NotAuthorized,
    RideNoLongerAvailable,
    RideNotFound,
    RideUnavailable,
    SelfBooking,
    UserNotFound,
)
from src.domain.events import DomainEvent
from src.domain.otp import OTPCheck, OTPVerifier, mask_code
from src.domain.pricing import (
    FullRefundPolicy,
    RefundPolicy,
    TieredRefundPolicy,
    compute_fare,
)
from src.infrastructure.models import BookingModel, RideModel, TransactionModel
from src.infrastructure.repositories import (
    BookingRepository,
    RideRepository,
    TransactionRepository,
    UserRepository,
)
from src.services.ride_aggregator import RideAggregator
from src.services.seat_inventory import SeatInventory
from src.services.settlement import PaymentSettlement

logger = logging.getLogger(__name__)

PRE_PICKUP = {BookingStatus.PENDING, BookingStatus.CONFIRMED}
PICKUP_READY = {BookingStatus.CONFIRMED, BookingStatus.PICKUP_PENDING}


@dataclass(frozen=True)
class BookingCreated:
    booking: BookingModel
    transaction: TransactionModel
    auto_accepted: bool


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _minutes_to_seconds(minutes: Optional[int]) -> Optional[int]:
    return None if minutes is None else minutes * 60


class BookingStateMachine:
    def __init__(
        self,
        session: AsyncSession,
        *,
        verifier: Optional[OTPVerifier] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session = session
        self.clock = clock
        self.rides = RideRepository(session)
        self.bookings = BookingRepository(session)
        self.transactions = TransactionRepository(session)
        self.users = UserRepository(session)
        self.inventory = SeatInventory(session)
        self.settlement = PaymentSettlement(session)
        self.aggregator = RideAggregator(session)
        self.verifier = verifier or OTPVerifier(
            length=settings.otp_length, max_attempts=settings.otp_max_attempts
        )
        self.events: list[DomainEvent] = []

    def drain_events(self) -> list[DomainEvent]:
        events, self.events = self.events, []
        return events

    # ── Create ────────────────────────────────────────────────────────

    async def create(self, request: BookingRequest) -> BookingCreated:
        ride = await self._ride(request.ride_id)
        if RideStatus(ride.status) != RideStatus.ACTIVE:
            raise RideUnavailable(
                "Ride is not available for booking",
                ride_id=ride.id,
                ride_status=ride.status,
            )
        if ride.rider_id == request.passenger_id:
            raise SelfBooking(ride.id)

        passenger = await self.users.get_by_id(request.passenger_id)
        if passenger is None:
            raise UserNotFound(request.passenger_id)
        if (
            GenderPreference(ride.gender_preference) == GenderPreference.FEMALE_ONLY
            and passenger.gender != Gender.FEMALE
        ):
            raise GenderRestricted(ride.id, ride.gender_preference)

        if request.seats > ride.available_seats:
            raise InsufficientSeats(ride.id, request.seats, ride.available_seats)

        existing = await self.bookings.find_live_for_passenger(
            ride.id, request.passenger_id
        )
        if existing is not None:
            raise DuplicateBooking(ride.id, existing.id)

        fare = compute_fare(
            ride.price_per_seat, request.seats, settings.platform_commission
        )
        await self.inventory.reserve(ride.id, request.seats)

        auto_accepted = bool(ride.auto_accept_bookings)
        status = BookingStatus.CONFIRMED if auto_accepted else BookingStatus.PENDING
        method = PaymentMethod(request.payment_method)
        booking = BookingModel(
            ride_id=ride.id,
            passenger_id=request.passenger_id,
            rider_id=ride.rider_id,
            pickup_name=request.pickup.label,
            pickup_address=request.pickup.address,
            pickup_lat=request.pickup.latitude,
            pickup_lng=request.pickup.longitude,
            dropoff_name=request.dropoff.label,
            dropoff_address=request.dropoff.address,
            dropoff_lat=request.dropoff.latitude,
            dropoff_lng=request.dropoff.longitude,
            seats_booked=request.seats,
            seats_held=True,
            special_requests=request.special_requests,
            status=status,
            payment_method=method,
            ride_fare=fare.ride_fare,
            platform_commission=fare.commission,
            total_amount=fare.total,
        )
        try:
            booking = await self.bookings.create(booking)
        except IntegrityError:
            # Lost to a concurrent create by the same passenger.
            raise DuplicateBooking(ride.id) from None

        transaction = await self.transactions.create(
            TransactionModel(
                booking_id=booking.id,
                ride_id=ride.id,
                passenger_id=request.passenger_id,
                rider_id=ride.rider_id,
                payment_method=method,
                passenger_paid=fare.total,
                ride_fare=fare.ride_fare,
                platform_commission=fare.commission,
                total=fare.total,
                status=TransactionStatus.PENDING,
                rider_payout_amount=fare.ride_fare,
                description=(
                    f"Booking payment for {request.seats} seat(s): "
                    f"{fare.total:.2f} {settings.currency}"
                ),
            )
        )
        await self.session.refresh(booking)
        await self.session.refresh(transaction)

        logger.info(
            "Booking %s created on ride %s: %d seat(s), total=%.2f, status=%s",
            booking.id,
            ride.id,
            request.seats,
            fare.total,
            status.value,
        )
        # Auto-accept: passenger hears first.  Manual: rider must act.
        recipients = (
            (request.passenger_id, ride.rider_id)
            if auto_accepted
            else (ride.rider_id,)
        )
        self._emit(
            ev.BOOKING_CREATED,
            booking,
            recipients,
            autoAccepted=auto_accepted,
            seats=request.seats,
            totalAmount=fare.total,
            currency=settings.currency,
            pickup=booking.pickup_name,
            dropoff=booking.dropoff_name,
        )
        return BookingCreated(booking, transaction, auto_accepted)

    # ── Rider response ────────────────────────────────────────────────

    async def accept(
        self, booking_id: int, actor_id: int, message: Optional[str] = None
    ) -> BookingModel:
        booking = await self._booking(booking_id)
        self._require_rider(booking, actor_id, "accept")
        ensure_transition(
            "accept",
            booking.status,
            BookingStatus.CONFIRMED,
            {BookingStatus.PENDING},
            ActorRole.RIDER,
        )
        ride = await self._ride(booking.ride_id)
        if RideStatus(ride.status) != RideStatus.ACTIVE:
            raise RideNoLongerAvailable(ride.id, ride.status)

        now = self.clock()
        booking = await self._transition(
            booking,
            "accept",
            {BookingStatus.PENDING},
            BookingStatus.CONFIRMED,
            ActorRole.RIDER,
            rider_responded_at=now,
            rider_response_minutes=minutes_between(booking.created_at, now),
            rider_message=message,
        )
        # No pickup OTP here: it is issued when the ride starts.
        self._emit(
            ev.BOOKING_ACCEPTED,
            booking,
            (booking.passenger_id,),
            seats=booking.seats_booked,
            riderMessage=message,
        )
        return booking

    async def reject(
        self, booking_id: int, actor_id: int, reason: Optional[str] = None
    ) -> BookingModel:
        booking = await self._booking(booking_id)
        self._require_rider(booking, actor_id, "reject")
        ensure_transition(
            "reject",
            booking.status,
            BookingStatus.REJECTED,
            {BookingStatus.PENDING},
            ActorRole.RIDER,
        )
        ride = await self._ride(booking.ride_id)
        if RideStatus(ride.status) != RideStatus.ACTIVE:
            raise RideNoLongerAvailable(ride.id, ride.status)
        return await self.reject_unanswered(booking, ride, reason)

    async def reject_unanswered(
        self, booking: BookingModel, ride: RideModel, reason: Optional[str]
    ) -> BookingModel:
        """Reject a PENDING booking on *ride*.

        Also used when a ride departs with requests still unanswered, so
        it does not insist on the ride being ACTIVE.
        """
        now = self.clock()
        reason = reason or "No reason provided"
        booking = await self._transition(
            booking,
            "reject",
            {BookingStatus.PENDING},
            BookingStatus.REJECTED,
            ActorRole.RIDER,
            cancelled_by=ActorRole.RIDER,
            cancelled_at=now,
            cancellation_reason=reason,
            rider_responded_at=now,
            rider_response_minutes=minutes_between(booking.created_at, now),
        )
        booking = await self._release_and_close(booking, ride, FullRefundPolicy())
        self._emit(
            ev.BOOKING_REJECTED,
            booking,
            (booking.passenger_id,),
            reason=reason,
            refundAmount=booking.refund_amount,
            currency=settings.currency,
        )
        return booking

    # ── Cancellation ──────────────────────────────────────────────────

    async def cancel(
        self, booking_id: int, actor_id: int, reason: Optional[str] = None
    ) -> BookingModel:
        booking = await self._booking(booking_id)
        if booking.passenger_id != actor_id:
            raise NotAuthorized(
                "Only the passenger can cancel this booking",
                actor_id,
                ActorRole.PASSENGER,
            )
        ride = await self._ride(booking.ride_id)
        return await self._cancel(
            booking, ride, ActorRole.PASSENGER, reason, TieredRefundPolicy()
        )

    async def cancel_for_ride(
        self, booking: BookingModel, ride: RideModel, reason: str
    ) -> BookingModel:
        """Rider cancelled the whole ride: cancel and refund in full."""
        return await self._cancel(
            booking, ride, ActorRole.RIDER, reason, FullRefundPolicy()
        )

    async def _cancel(
        self,
        booking: BookingModel,
        ride: RideModel,
        cancelled_by: ActorRole,
        reason: Optional[str],
        policy: RefundPolicy,
    ) -> BookingModel:
        ensure_transition(
            "cancel", booking.status, BookingStatus.CANCELLED, PRE_PICKUP, cancelled_by
        )
        now = self.clock()
        reason = reason or "No reason provided"
        booking = await self._transition(
            booking,
            "cancel",
            PRE_PICKUP,
            BookingStatus.CANCELLED,
            cancelled_by,
            cancelled_by=cancelled_by,
            cancelled_at=now,
            cancellation_reason=reason,
        )
        booking = await self._release_and_close(booking, ride, policy)

        other_party = (
            booking.rider_id
            if cancelled_by == ActorRole.PASSENGER
            else booking.passenger_id
        )
        self._emit(
            ev.BOOKING_CANCELLED,
            booking,
            (other_party,),
            reason=reason,
            cancelledBy=cancelled_by.value,
            refundAmount=booking.refund_amount,
            currency=settings.currency,
        )
        self._queue(await self.aggregator.on_booking_terminalized(ride.id, now))
        return booking

    # ── OTP-gated journey ─────────────────────────────────────────────

    async def verify_pickup(
        self, booking_id: int, actor_id: int, otp: str
    ) -> BookingModel:
        booking = await self._booking(booking_id)
        self._require_rider(booking, actor_id, "verify pickup for")
        ensure_transition(
            "verify pickup for",
            booking.status,
            BookingStatus.PICKED_UP,
            PICKUP_READY,
            ActorRole.RIDER,
        )
        check = await self._check_otp(booking, OTPPhase.PICKUP, otp)

        # The dropoff code only exists once the passenger is aboard.
        dropoff = self.verifier.generate(
            _minutes_to_seconds(settings.dropoff_otp_ttl_minutes), now=self.clock()
        )
        booking = await self._transition(
            booking,
            "verify pickup for",
            PICKUP_READY,
            BookingStatus.PICKED_UP,
            ActorRole.RIDER,
            pickup_otp_verified=True,
            pickup_otp_verified_at=check.record.verified_at,
            journey_started_at=check.record.verified_at,
            dropoff_otp_code=dropoff.code,
            dropoff_otp_expires_at=dropoff.expires_at,
            dropoff_otp_verified=False,
            dropoff_otp_verified_at=None,
            dropoff_otp_attempts=0,
        )
        logger.info(
            "Dropoff OTP %s issued for booking %s", mask_code(dropoff.code), booking.id
        )
        self._emit(
            ev.BOOKING_PICKUP_VERIFIED,
            booking,
            (booking.passenger_id,),
            dropoffCode=dropoff.code,
            dropoffCodeExpiresAt=dropoff.expires_at,
            dropoffLocation=booking.dropoff_address or booking.dropoff_name,
        )
        return booking

    async def verify_dropoff(
        self, booking_id: int, actor_id: int, otp: str
    ) -> BookingModel:
        booking = await self._booking(booking_id)
        self._require_rider(booking, actor_id, "verify dropoff for")
        ensure_transition(
            "verify dropoff for",
            booking.status,
            BookingStatus.DROPPED_OFF,
            {BookingStatus.PICKED_UP},
            ActorRole.RIDER,
        )
        check = await self._check_otp(booking, OTPPhase.DROPOFF, otp)

        dropped_at = check.record.verified_at
        booking = await self._transition(
            booking,
            "verify dropoff for",
            {BookingStatus.PICKED_UP},
            BookingStatus.DROPPED_OFF,
            ActorRole.RIDER,
            dropoff_otp_verified=True,
            dropoff_otp_verified_at=dropped_at,
            journey_dropped_off_at=dropped_at,
            journey_duration_minutes=minutes_between(
                booking.journey_started_at, dropped_at
            ),
        )
        # Not COMPLETED yet: payment collection is confirmed separately.
        self._emit(
            ev.BOOKING_DROPOFF_VERIFIED,
            booking,
            (booking.passenger_id, booking.rider_id),
            amount=booking.total_amount,
            currency=settings.currency,
            paymentMethod=booking.payment_method.value,
            durationMinutes=booking.journey_duration_minutes,
        )
        return booking

    # ── Payment ───────────────────────────────────────────────────────

    async def settle_payment(self, booking_id: int, actor_id: int) -> BookingModel:
        booking = await self._booking(booking_id)
        role = self._role_of(booking, actor_id)
        if booking.payment_settled:
            raise AlreadySettled(booking.id, booking.settled_by_role)
        ensure_transition(
            "settle payment for",
            booking.status,
            BookingStatus.COMPLETED,
            {BookingStatus.DROPPED_OFF},
            role,
        )
        ride = await self._ride(booking.ride_id)
        now = self.clock()

        booking = await self.settlement.settle(booking.id, role, actor_id, now)
        await self.users.add_trip_statistics(
            booking.passenger_id, ride.distance_km or 0.0
        )
        logger.info(
            "Booking %s: DROPPED_OFF -> COMPLETED by %s", booking.id, role.value
        )

        other_party = (
            booking.passenger_id if role == ActorRole.RIDER else booking.rider_id
        )
        self._emit(
            ev.BOOKING_PAYMENT_SETTLED,
            booking,
            (other_party, actor_id),
            amount=booking.total_amount,
            rideFare=booking.ride_fare,
            currency=settings.currency,
            commission=booking.platform_commission,
            settledBy=role.value,
        )
        self._queue(await self.aggregator.on_booking_terminalized(ride.id, now))
        return booking

    async def record_prepayment(
        self, booking_id: int, actor_id: int, reference: Optional[str] = None
    ) -> BookingModel:
        booking = await self._booking(booking_id)
        if booking.passenger_id != actor_id:
            raise NotAuthorized(
                "Only the passenger can pay for this booking",
                actor_id,
                ActorRole.PASSENGER,
            )
        return await self.settlement.record_prepayment(
            booking, reference, self.clock()
        )

    # ── Ride start support ────────────────────────────────────────────

    async def issue_pickup_code(self, booking: BookingModel) -> BookingModel:
        """CONFIRMED -> PICKUP_PENDING with a fresh, bounded pickup OTP."""
        return await self._issue_pickup_code(
            booking, "start pickup for", BookingStatus.CONFIRMED
        )

    async def reissue_pickup_code(self, booking_id: int, actor_id: int) -> BookingModel:
        """Replace an expired or locked-out pickup OTP.

        Stays in PICKUP_PENDING; the code, its expiry and the attempt
        counter start over.
        """
        booking = await self._booking(booking_id)
        self._require_rider(booking, actor_id, "reissue the pickup code for")
        if BookingStatus(booking.status) != BookingStatus.PICKUP_PENDING:
            raise InvalidTransition(
                "reissue pickup code for",
                booking.status,
                {BookingStatus.PICKUP_PENDING},
                ActorRole.RIDER,
            )
        return await self._issue_pickup_code(
            booking, "reissue pickup code for", BookingStatus.PICKUP_PENDING
        )

    async def _issue_pickup_code(
        self, booking: BookingModel, operation: str, source: BookingStatus
    ) -> BookingModel:
        pickup = self.verifier.generate(
            _minutes_to_seconds(settings.pickup_otp_ttl_minutes), now=self.clock()
        )
        booking = await self._transition(
            booking,
            operation,
            {source},
            BookingStatus.PICKUP_PENDING,
            ActorRole.RIDER,
            pickup_otp_code=pickup.code,
            pickup_otp_expires_at=pickup.expires_at,
            pickup_otp_verified=False,
            pickup_otp_verified_at=None,
            pickup_otp_attempts=0,
        )
        logger.info(
            "Pickup OTP %s issued for booking %s", mask_code(pickup.code), booking.id
        )
        self._emit(
            ev.BOOKING_PICKUP_CODE_ISSUED,
            booking,
            (booking.passenger_id,),
            pickupCode=pickup.code,
            pickupCodeExpiresAt=pickup.expires_at,
            pickupLocation=booking.pickup_address or booking.pickup_name,
        )
        return booking

    # ── Internals ─────────────────────────────────────────────────────

    async def _booking(self, booking_id: int) -> BookingModel:
        booking = await self.bookings.get_by_id(booking_id, fresh=True)
        if booking is None:
            raise BookingNotFound(booking_id)
        return booking

    async def _ride(self, ride_id: int) -> RideModel:
        ride = await self.rides.get_by_id(ride_id, fresh=True)
        if ride is None:
            raise RideNotFound(ride_id)
        return ride

    @staticmethod
    def _require_rider(booking: BookingModel, actor_id: int, operation: str) -> None:
        if booking.rider_id != actor_id:
            raise NotAuthorized(
                f"Only the rider can {operation} this booking",
                actor_id,
                ActorRole.RIDER,
            )

    @staticmethod
    def _role_of(booking: BookingModel, actor_id: int) -> ActorRole:
        if actor_id == booking.rider_id:
            return ActorRole.RIDER
        if actor_id == booking.passenger_id:
            return ActorRole.PASSENGER
        raise NotAuthorized(
            "Only the rider or the passenger can settle this booking",
            actor_id,
            "RIDER|PASSENGER",
        )

    async def _transition(
        self,
        booking: BookingModel,
        operation: str,
        expected: Iterable[BookingStatus],
        target: BookingStatus,
        actor_role: ActorRole,
        **values,
    ) -> BookingModel:
        expected = set(expected)
        previous = booking.status
        won = await self.bookings.update_if(
            booking.id, expected, status=target, **values
        )
        fresh = await self.bookings.get_by_id(booking.id, fresh=True)
        if not won:
            logger.warning(
                "Booking %s: %s lost a race, status is now %s",
                booking.id,
                operation,
                fresh.status.value,
            )
            raise InvalidTransition(operation, fresh.status, expected, actor_role)
        logger.info(
            "Booking %s: %s -> %s by %s",
            booking.id,
            BookingStatus(previous).value,
            target.value,
            actor_role.value,
        )
        return fresh

    async def _release_and_close(
        self, booking: BookingModel, ride: RideModel, policy: RefundPolicy
    ) -> BookingModel:
        await self.inventory.release(
            ride.id, booking.seats_booked, booking_id=booking.id
        )
        await self.settlement.close_ledger(
            booking, ride.departure_at, policy, self.clock()
        )
        return await self.bookings.get_by_id(booking.id, fresh=True)

    async def _check_otp(
        self, booking: BookingModel, phase: OTPPhase, submitted: str
    ) -> OTPCheck:
        attempts = await self.bookings.increment_otp_attempts(booking.id, phase.value)
        record = replace(booking.otp_record(phase.value), attempts=attempts - 1)
        check = self.verifier.verify(submitted, record, now=self.clock())
        if check.valid:
            return check

        # The attempt must survive the request rollback that follows.
        await self.session.commit()
        logger.warning(
            "Booking %s: %s OTP rejected (%s), attempt %d/%d",
            booking.id,
            phase.value,
            check.reason.value,
            attempts,
            self.verifier.max_attempts,
        )
        raise OTP_ERRORS[check.reason](phase, attempts, self.verifier.max_attempts)

    def _emit(
        self,
        name: str,
        booking: BookingModel,
        recipients: Iterable[int],
        **payload,
    ) -> None:
        self.events.append(
            DomainEvent(
                name=name,
                recipients=tuple(dict.fromkeys(recipients)),
                ride_id=booking.ride_id,
                booking_id=booking.id,
                payload={
                    "status": BookingStatus(booking.status).value,
                    **payload,
                },
            )
        )

    def _queue(self, event: Optional[DomainEvent]) -> None:
        if event is not None:
            self.events.append(event)
