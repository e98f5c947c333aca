"""
Payment Settlement
==================

``compute_fare`` (see ``src.domain.pricing``) is the pure fare split.
This module holds the mutating side:

* ``settle``   -- the single settlement entry point for both actors.
  The settled flag, payment status, settling actor and the booking's
  COMPLETED status are written by one conditional ``UPDATE`` guarded on
  ``status = DROPPED_OFF AND payment_settled = false``.  When rider and
  passenger race, one statement matches and the other observes
  ``AlreadySettled``.  The ledger row is then moved PENDING -> COMPLETED,
  again conditionally, so it is credited once.
* ``record_prepayment`` -- online payment taken before the trip.
* ``close_ledger`` -- refund (if money was taken) or void the ledger
  row when a booking is cancelled / rejected.

Only an optimistic conflict with no visible cause is retried, and only
``retry_limit`` times.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain.enums import (
    ActorRole,
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
    TransactionStatus,
)
from src.domain.errors import (
    AlreadySettled,
    BookingNotFound,
    InvalidTransition,
    PaymentNotAllowed,
)
from src.domain.pricing import RefundPolicy
from src.infrastructure.models import BookingModel
from src.infrastructure.repositories import (
    BookingRepository,
    TransactionRepository,
)

logger = logging.getLogger(__name__)

MONEY_TAKEN = (PaymentStatus.PAID, PaymentStatus.PAYMENT_CONFIRMED)
PREPAYABLE = {BookingStatus.PENDING, BookingStatus.CONFIRMED}


class PaymentSettlement:
    def __init__(
        self,
        session: AsyncSession,
        retry_limit: Optional[int] = None,
    ):
        self.bookings = BookingRepository(session)
        self.transactions = TransactionRepository(session)
        self.retry_limit = (
            settings.settlement_retry_limit if retry_limit is None else retry_limit
        )

    async def settle(
        self,
        booking_id: int,
        actor_role: ActorRole,
        actor_id: int,
        now: Optional[datetime] = None,
    ) -> BookingModel:
        now = now or datetime.now(timezone.utc)
        retries = 0
        while True:
            won = await self.bookings.update_if(
                booking_id,
                {BookingStatus.DROPPED_OFF},
                BookingModel.payment_settled.is_(False),
                status=BookingStatus.COMPLETED,
                payment_settled=True,
                payment_status=PaymentStatus.PAYMENT_CONFIRMED,
                settled_by_role=actor_role,
                settled_by_id=actor_id,
                settled_at=now,
                paid_at=func.coalesce(BookingModel.paid_at, now),
                journey_completed_at=now,
            )
            booking = await self.bookings.get_by_id(booking_id, fresh=True)
            if booking is None:
                raise BookingNotFound(booking_id)
            if won:
                break
            if booking.payment_settled:
                logger.warning(
                    "Booking %s already settled by %s; %s lost the race",
                    booking_id,
                    booking.settled_by_role,
                    actor_role.value,
                )
                raise AlreadySettled(booking_id, booking.settled_by_role)
            if BookingStatus(booking.status) != BookingStatus.DROPPED_OFF:
                raise InvalidTransition(
                    "settle payment for",
                    booking.status,
                    {BookingStatus.DROPPED_OFF},
                    actor_role,
                )
            if retries >= self.retry_limit:
                raise InvalidTransition(
                    "settle payment for",
                    booking.status,
                    {BookingStatus.DROPPED_OFF},
                    actor_role,
                )
            retries += 1
            logger.warning("Settlement conflict on booking %s, retrying", booking_id)

        credited = await self.transactions.update_if(
            booking_id,
            {TransactionStatus.PENDING},
            status=TransactionStatus.COMPLETED,
            completed_at=now,
            settled_by_role=actor_role,
            commission_collected=True,
            commission_collected_at=now,
        )
        if not credited:
            logger.error("Ledger row for booking %s was not PENDING", booking_id)

        logger.info(
            "Settled booking %s: total=%.2f fare=%.2f commission=%.2f by %s",
            booking_id,
            booking.total_amount,
            booking.ride_fare,
            booking.platform_commission,
            actor_role.value,
        )
        return booking

    async def record_prepayment(
        self,
        booking: BookingModel,
        reference: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BookingModel:
        now = now or datetime.now(timezone.utc)
        if PaymentMethod(booking.payment_method) == PaymentMethod.CASH:
            raise PaymentNotAllowed(
                "Cash bookings are paid to the rider after dropoff",
                booking_id=booking.id,
                payment_method=booking.payment_method,
            )

        won = await self.bookings.update_if(
            booking.id,
            PREPAYABLE,
            BookingModel.payment_status == PaymentStatus.PENDING,
            payment_status=PaymentStatus.PAID,
            paid_at=now,
            payment_reference=reference,
        )
        fresh = await self.bookings.get_by_id(booking.id, fresh=True)
        if won:
            logger.info("Booking %s prepaid (%s)", booking.id, fresh.payment_method)
            return fresh
        if BookingStatus(fresh.status) not in PREPAYABLE:
            raise InvalidTransition(
                "prepay", fresh.status, PREPAYABLE, ActorRole.PASSENGER
            )
        raise PaymentNotAllowed(
            "Payment already recorded",
            booking_id=booking.id,
            payment_status=fresh.payment_status,
        )

    async def close_ledger(
        self,
        booking: BookingModel,
        departure_at: datetime,
        policy: RefundPolicy,
        now: Optional[datetime] = None,
    ) -> Optional[float]:
        """Refund or void after the booking reached CANCELLED / REJECTED.

        Returns the refund amount, or None when no money had been taken.
        """
        now = now or datetime.now(timezone.utc)
        if PaymentStatus(booking.payment_status) not in MONEY_TAKEN:
            await self.transactions.update_if(
                booking.id,
                {TransactionStatus.PENDING},
                status=TransactionStatus.CANCELLED,
            )
            return None

        amount = policy.refund_amount(booking.total_amount, departure_at, now)
        refunded = await self.bookings.update_if(
            booking.id,
            {BookingStatus.CANCELLED, BookingStatus.REJECTED},
            BookingModel.payment_status.in_(list(MONEY_TAKEN)),
            payment_status=PaymentStatus.REFUNDED,
            payment_settled=False,
            refund_amount=amount,
            refunded_at=now,
            refund_issued=True,
        )
        if not refunded:
            return None
        await self.transactions.update_if(
            booking.id,
            {TransactionStatus.PENDING, TransactionStatus.COMPLETED},
            status=TransactionStatus.REFUNDED,
            refund_amount=amount,
        )
        logger.info("Refunded %.2f on booking %s", amount, booking.id)
        return amount
