from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")


def to_cents(value: Union[Decimal, int, str]) -> int:
    """Convert a decimal amount to integer cents.

    Amounts with more than two fractional digits are rejected rather than
    rounded so the stored value always equals the submitted one.
    """
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    cents = amount * 100
    if cents != cents.to_integral_value():
        raise ValueError("Amount cannot have more than two decimal places")
    return int(cents)


def from_cents(cents: int) -> Decimal:
    return (Decimal(int(cents)) / 100).quantize(CENT)


def average_cents(total_cents: int, count: int) -> Decimal:
    if not count:
        return Decimal("0.00")
    return (Decimal(int(total_cents)) / Decimal(count) / 100).quantize(
        CENT, rounding=ROUND_HALF_UP
    )
