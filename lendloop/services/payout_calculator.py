"""
Payout eligibility and fee arithmetic.

Everything here is pure: no database access and no clock. Callers pass ``now``
explicitly and get values back, or a ``PayoutCalculationError`` when the inputs
cannot produce a meaningful answer.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from lendloop.errors import PayoutCalculationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
PAYOUT_HOLD_WORKING_DAYS = 2
SATURDAY = 5


def to_decimal(value, label="amount"):
    if value is None:
        raise PayoutCalculationError(f"{label} is required.")
    if isinstance(value, bool):
        raise PayoutCalculationError(f"{label} must be a number.")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise PayoutCalculationError(f"{label} must be a number.") from exc
    if not result.is_finite():
        raise PayoutCalculationError(f"{label} must be a finite number.")
    return result


def to_cents(value):
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FeeRates:
    service_fee_rate: Decimal = Decimal("0.15")
    commission_rate: Decimal = Decimal("0.20")
    insurance_rate: Decimal = Decimal("0.10")

    def __post_init__(self):
        for name in ("service_fee_rate", "commission_rate", "insurance_rate"):
            value = to_decimal(getattr(self, name), name)
            if value < 0 or value > 1:
                raise PayoutCalculationError(f"{name} must be between 0 and 1.")
            object.__setattr__(self, name, value)

    def as_dict(self):
        return {
            "service_fee_rate": str(self.service_fee_rate),
            "commission_rate": str(self.commission_rate),
            "insurance_rate": str(self.insurance_rate),
        }


DEFAULT_FEE_RATES = FeeRates()


@dataclass(frozen=True)
class FeeBreakdown:
    subtotal: Decimal
    service_fee: Decimal
    platform_commission: Decimal
    insurance_fee: Decimal
    delivery_fee: Decimal
    owner_payout: Decimal
    total_charged: Decimal

    @property
    def platform_revenue(self):
        return self.service_fee + self.platform_commission

    def as_dict(self):
        return {
            "subtotal": str(self.subtotal),
            "service_fee": str(self.service_fee),
            "platform_commission": str(self.platform_commission),
            "insurance_fee": str(self.insurance_fee),
            "delivery_fee": str(self.delivery_fee),
            "owner_payout": str(self.owner_payout),
            "total_charged": str(self.total_charged),
            "platform_revenue": str(self.platform_revenue),
        }


def add_working_days(start, days):
    """
    Advance ``start`` by ``days`` weekdays, skipping Saturdays and Sundays.

    Time of day and tzinfo are carried over unchanged. ``days == 0`` returns
    ``start`` as is.
    """
    if start is None:
        raise PayoutCalculationError("A start date is required to count working days.")
    if not isinstance(start, date):
        raise PayoutCalculationError("Working days can only be added to a date or datetime.")
    if isinstance(days, bool) or not isinstance(days, int):
        raise PayoutCalculationError("Working days must be a whole number.")
    if days < 0:
        raise PayoutCalculationError("Working days cannot be negative.")

    result = start
    added = 0
    while added < days:
        result = result + timedelta(days=1)
        if result.weekday() < SATURDAY:
            added += 1
    return result


def compute_eligible_at(return_confirmed_at, hold_days=PAYOUT_HOLD_WORKING_DAYS):
    if return_confirmed_at is None:
        raise PayoutCalculationError("Return has not been confirmed for this booking.")
    if not isinstance(return_confirmed_at, datetime):
        raise PayoutCalculationError("Return confirmation must be a timestamp.")
    return add_working_days(return_confirmed_at, hold_days)


def _time_left(return_confirmed_at, now, hold_days):
    if now is None:
        raise PayoutCalculationError("Current time is required.")
    eligible_at = compute_eligible_at(return_confirmed_at, hold_days)
    try:
        return eligible_at - now
    except TypeError as exc:
        raise PayoutCalculationError("Cannot compare timezone-aware and naive timestamps.") from exc


def compute_eligibility(return_confirmed_at, now, hold_days=PAYOUT_HOLD_WORKING_DAYS):
    return _time_left(return_confirmed_at, now, hold_days) <= timedelta(0)


def compute_days_until_eligible(return_confirmed_at, now, hold_days=PAYOUT_HOLD_WORKING_DAYS):
    remaining = _time_left(return_confirmed_at, now, hold_days)
    if remaining <= timedelta(0):
        return 0
    return math.ceil(remaining / timedelta(days=1))


def compute_rental_days(start_date, end_date):
    # Both ends count: a same-day rental is one day.
    if start_date is None or end_date is None:
        raise PayoutCalculationError("Rental start and end dates are required.")
    if end_date < start_date:
        raise PayoutCalculationError("Rental end date cannot be before the start date.")
    return (end_date - start_date).days + 1


def compute_subtotal(daily_rate, start_date, end_date):
    rate = to_decimal(daily_rate, "daily rate")
    if rate <= 0:
        raise PayoutCalculationError("Daily rate must be positive.")
    return to_cents(rate * compute_rental_days(start_date, end_date))


def compute_fees(subtotal, rates=DEFAULT_FEE_RATES, include_insurance=False, delivery_fee=ZERO):
    subtotal = to_decimal(subtotal, "subtotal")
    delivery_fee = to_decimal(ZERO if delivery_fee is None else delivery_fee, "delivery fee")
    if subtotal < 0:
        raise PayoutCalculationError("Subtotal cannot be negative.")
    if delivery_fee < 0:
        raise PayoutCalculationError("Delivery fee cannot be negative.")
    rates = rates or DEFAULT_FEE_RATES

    subtotal = to_cents(subtotal)
    delivery_fee = to_cents(delivery_fee)
    service_fee = to_cents(subtotal * rates.service_fee_rate)
    platform_commission = to_cents(subtotal * rates.commission_rate)
    insurance_fee = to_cents(subtotal * rates.insurance_rate) if include_insurance else ZERO

    return FeeBreakdown(
        subtotal=subtotal,
        service_fee=service_fee,
        platform_commission=platform_commission,
        insurance_fee=insurance_fee,
        delivery_fee=delivery_fee,
        owner_payout=subtotal - platform_commission,
        total_charged=subtotal + service_fee + insurance_fee + delivery_fee,
    )
