"""Refund tiers for cancellations.

``refund_amount`` is a pure function of the amount paid for the cancelled
unit, the activity start and the current time. Amounts are rounded half-up
to the smallest currency unit (0.01).
"""
import math
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from app.core.errors import ValidationError

CENT = Decimal("0.01")
SECONDS_PER_DAY = 86400

MODE_AUTO = "auto"
MODE_FULL = "full"
REFUND_MODES = (MODE_AUTO, MODE_FULL)

# (minimum days until start, fraction refunded); first match wins
REFUND_TIERS = (
    (8, Decimal("0.90")),
    (3, Decimal("0.50")),
)


def quantize_money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def days_until_start(activity_start: datetime, now: datetime) -> int:
    """Whole days left before the activity, rounded up (a partial day counts)."""
    delta = as_utc(activity_start) - as_utc(now)
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def refund_fraction(days: int) -> Decimal:
    for min_days, fraction in REFUND_TIERS:
        if days >= min_days:
            return fraction
    return Decimal("0")


def refund_amount(total, activity_start: datetime, now: datetime | None = None, mode: str = MODE_AUTO) -> Decimal:
    total = Decimal(total)
    if total < 0:
        raise ValidationError("refund base amount cannot be negative")
    if mode == MODE_FULL:
        return quantize_money(total)
    if mode != MODE_AUTO:
        raise ValidationError(f"unknown refund mode: {mode}")
    now = now or datetime.now(timezone.utc)
    return quantize_money(total * refund_fraction(days_until_start(activity_start, now)))
