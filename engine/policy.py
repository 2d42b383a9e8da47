from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass(frozen=True)
class BookingPolicy:
    """Every tunable number the pricing and cancellation rules depend on.

    Built once from app config and handed to both the discount calculator and
    the refund evaluator, so the two always read the same values.
    """

    late_cancellation_threshold_hours: float = 72
    returning_discount_enabled: bool = True
    tier30_max_days: int = 30
    tier45_max_days: int = 45
    tier30_percent: int = 7
    tier45_percent: int = 4
    default_fine_amount: int = 500
    business_timezone: str = "Africa/Nairobi"
    referral_discount_percent: int = 10
    prize_code_ttl_days: int = 30
    code_generation_attempts: int = 10
    booking_update_attempts: int = 10
    spin_wheel_enabled: bool = True
    spin_wheel_prizes: tuple = field(default_factory=tuple)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "BookingPolicy":
        defaults = cls()
        return cls(
            late_cancellation_threshold_hours=float(
                config.get("LATE_CANCELLATION_THRESHOLD_HOURS", defaults.late_cancellation_threshold_hours)
            ),
            returning_discount_enabled=bool(
                config.get("RETURNING_DISCOUNT_ENABLED", defaults.returning_discount_enabled)
            ),
            tier30_max_days=int(config.get("TIER_30_MAX_DAYS", defaults.tier30_max_days)),
            tier45_max_days=int(config.get("TIER_45_MAX_DAYS", defaults.tier45_max_days)),
            tier30_percent=int(config.get("TIER_30_PERCENT", defaults.tier30_percent)),
            tier45_percent=int(config.get("TIER_45_PERCENT", defaults.tier45_percent)),
            default_fine_amount=int(config.get("DEFAULT_FINE_AMOUNT", defaults.default_fine_amount)),
            business_timezone=config.get("BUSINESS_TIMEZONE", defaults.business_timezone),
            referral_discount_percent=int(
                config.get("REFERRAL_DISCOUNT_PERCENT", defaults.referral_discount_percent)
            ),
            prize_code_ttl_days=int(config.get("PRIZE_CODE_TTL_DAYS", defaults.prize_code_ttl_days)),
            code_generation_attempts=int(
                config.get("CODE_GENERATION_ATTEMPTS", defaults.code_generation_attempts)
            ),
            booking_update_attempts=int(
                config.get("BOOKING_UPDATE_ATTEMPTS", defaults.booking_update_attempts)
            ),
            spin_wheel_enabled=bool(config.get("SPIN_WHEEL_ENABLED", defaults.spin_wheel_enabled)),
            spin_wheel_prizes=tuple(config.get("SPIN_WHEEL_PRIZES") or ()),
        )


def current_policy() -> BookingPolicy:
    from flask import current_app

    policy = current_app.extensions.get("booking_policy")
    if policy is None:
        policy = BookingPolicy.from_config(current_app.config)
        current_app.extensions["booking_policy"] = policy
    return policy
