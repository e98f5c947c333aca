"""
Fare & Refund Calculation  (Strategy Pattern)
=============================================

Fare
----
ride_fare  = seats x price_per_seat
total      = ride_fare + fixed platform commission

The rider's earnings are the sum of ``ride_fare`` over completed
bookings; the commission stays with the platform.

Refund (passenger cancellation of a prepaid booking)
----------------------------------------------------
Tiered on hours left until departure:

    > 24 h   100 %
    > 12 h    75 %
    >  6 h    50 %
    >  2 h    25 %
    else       0 %

A rider-initiated cancellation always refunds in full.

Complexity: O(1) per calculation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


@dataclass(frozen=True)
class FareBreakdown:
    ride_fare: float
    commission: float
    total: float


def compute_fare(
    price_per_seat: float, seats: int, fixed_commission: float
) -> FareBreakdown:
    """Pure split of what a booking costs.  Used at creation and for audits."""
    if seats < 1:
        raise ValueError("seats must be >= 1")
    ride_fare = round(price_per_seat * seats, 2)
    commission = round(fixed_commission, 2)
    return FareBreakdown(
        ride_fare=ride_fare,
        commission=commission,
        total=round(ride_fare + commission, 2),
    )


# ── Refund strategies ─────────────────────────────────────────────────


class RefundPolicy(ABC):
    @abstractmethod
    def refund_ratio(self, hours_until_departure: float) -> float: ...

    def refund_amount(
        self,
        paid: float,
        departure_at: datetime,
        now: Optional[datetime] = None,
    ) -> float:
        now = now or datetime.now(timezone.utc)
        if departure_at.tzinfo is None:
            departure_at = departure_at.replace(tzinfo=timezone.utc)
        hours = (departure_at - now).total_seconds() / 3600
        return round(paid * self.refund_ratio(hours), 2)


class TieredRefundPolicy(RefundPolicy):
    """Used when the passenger walks away from a prepaid booking."""

    TIERS = ((24, 1.0), (12, 0.75), (6, 0.50), (2, 0.25))

    def refund_ratio(self, hours_until_departure: float) -> float:
        for threshold, ratio in self.TIERS:
            if hours_until_departure > threshold:
                return ratio
        return 0.0


class FullRefundPolicy(RefundPolicy):
    """Used when the rider is the one who cancels."""

    def refund_ratio(self, hours_until_departure: float) -> float:
        return 1.0
