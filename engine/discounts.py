from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from engine.policy import BookingPolicy

SOURCE_NONE = None
SOURCE_TIER_30 = "returning_client_30"
SOURCE_TIER_45 = "returning_client_45"


@dataclass(frozen=True)
class DiscountContext:
    days_since_last_completed_appointment: Optional[int] = None
    promo_code: Optional[str] = None
    redeemable_code: Optional[dict] = None  # resolved effect from the code registry


@dataclass(frozen=True)
class Discount:
    percent: int
    source: Optional[str]

    def amount_for(self, price: int) -> int:
        if self.percent <= 0 or price <= 0:
            return 0
        return min(price, int(round(price * self.percent / 100)))


NO_DISCOUNT = Discount(0, SOURCE_NONE)


def tier_discount(days_since: Optional[int], policy: BookingPolicy) -> Discount:
    """Returning-client tier for a number of days since the last completed, paid visit."""
    if not policy.returning_discount_enabled or days_since is None or days_since < 0:
        return NO_DISCOUNT
    if days_since <= policy.tier30_max_days:
        return Discount(max(policy.tier30_percent, 0), SOURCE_TIER_30)
    if days_since <= policy.tier45_max_days:
        return Discount(max(policy.tier45_percent, 0), SOURCE_TIER_45)
    return NO_DISCOUNT


def compute_discount(context: DiscountContext, policy: BookingPolicy) -> Discount:
    """
    Pick the single discount that applies to a pricing request.

    A valid redeemable code wins over the returning-client tier; the two are
    never added together. Free-item and free-consultation codes carry no
    percentage, but still take the slot of the one permitted discount source.
    """
    code = context.redeemable_code
    if code:
        source = code.get("source") or "code"
        if code.get("type") == "discount_percentage":
            return Discount(max(int(code.get("value") or 0), 0), source)
        return Discount(0, source)
    return tier_discount(context.days_since_last_completed_appointment, policy)


def days_since(last_paid_at: Optional[datetime], target: date) -> Optional[int]:
    if last_paid_at is None:
        return None
    return (target - last_paid_at.date()).days
