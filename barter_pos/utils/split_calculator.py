"""
Transaction split calculator.
Calculates how a POS transaction total is divided between barter credits and
traditional payment (card / cash).
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

from barter_pos.errors import InvalidArgumentError
from barter_pos.models.checkout import SplitResult

CENT = Decimal("0.01")


def round2(value: float) -> float:
    """Round a money amount half-up to cents."""
    return float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))


def _validate_percentage(barter_percentage: float):
    if barter_percentage < 0 or barter_percentage > 100:
        raise InvalidArgumentError("Barter percentage must be between 0 and 100")


def _actual_percentage(barter_amount: float, total_amount: float) -> float:
    if total_amount <= 0:
        return 0.0
    return round2(barter_amount / total_amount * 100)


def calculate_transaction_split(
    total_amount: float,
    barter_percentage: float,
    tip_amount: float = 0.0,
) -> SplitResult:
    """
    Calculate transaction split based on the merchant's barter percentage.

    Args:
        total_amount: Total transaction amount
        barter_percentage: Percentage to apply as barter (0-100)
        tip_amount: Tip reported by the provider, already part of the total

    Returns:
        SplitResult with barter and card amounts; cash is 0 unless a custom split is used

    Raises:
        InvalidArgumentError: If total is negative or percentage is out of range
    """
    if total_amount < 0:
        raise InvalidArgumentError("Total amount cannot be negative")
    _validate_percentage(barter_percentage)
    if tip_amount < 0:
        raise InvalidArgumentError("Tip amount cannot be negative")

    barter_amount = round2(total_amount * barter_percentage / 100)
    card_amount = round2(total_amount - barter_amount)

    return SplitResult(
        barter_amount=barter_amount,
        barter_percentage=barter_percentage,
        cash_amount=0.0,
        card_amount=card_amount,
        total_amount=total_amount,
    )


def calculate_custom_split(
    total_amount: float,
    barter_amount: float,
    cash_amount: float,
) -> SplitResult:
    """
    Calculate a split where barter and cash amounts are chosen by the caller.
    Whatever is left of the total is charged to card.
    """
    if total_amount < 0 or barter_amount < 0 or cash_amount < 0:
        raise InvalidArgumentError("Amounts cannot be negative")
    if round2(barter_amount + cash_amount) > round2(total_amount):
        raise InvalidArgumentError("Barter + cash cannot exceed total amount")

    card_amount = round2(total_amount - barter_amount - cash_amount)

    return SplitResult(
        barter_amount=round2(barter_amount),
        barter_percentage=_actual_percentage(barter_amount, total_amount),
        cash_amount=round2(cash_amount),
        card_amount=card_amount,
        total_amount=total_amount,
    )


def calculate_split_with_limits(
    total_amount: float,
    barter_percentage: float,
    daily_barter_used: float,
    daily_barter_limit: float,
) -> SplitResult:
    """
    Calculate split respecting a daily barter limit.

    The barter amount is clamped to whatever remains of the daily limit, and the
    returned percentage is the one actually applied, not the one requested.
    """
    if total_amount < 0:
        raise InvalidArgumentError("Total amount cannot be negative")
    _validate_percentage(barter_percentage)

    barter_amount = round2(total_amount * barter_percentage / 100)
    remaining_daily_limit = float(
        (Decimal(str(daily_barter_limit)) - Decimal(str(daily_barter_used))).quantize(CENT, rounding=ROUND_DOWN)
    )
    if barter_amount > remaining_daily_limit:
        barter_amount = max(0.0, remaining_daily_limit)

    card_amount = round2(total_amount - barter_amount)

    return SplitResult(
        barter_amount=barter_amount,
        barter_percentage=_actual_percentage(barter_amount, total_amount),
        cash_amount=0.0,
        card_amount=card_amount,
        total_amount=total_amount,
    )
