from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

Amount = Union[Decimal, int, float, str]


def to_cents(value: Amount) -> int:
    """Convert a currency amount into integer minor units.

    Rounds ``value * 100`` half away from zero, so ``-45.505`` becomes
    ``-4551`` and ``0.125`` becomes ``13``. Floats go through ``str`` to avoid
    binary artefacts.
    """
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_amount(cents: int) -> float:
    return round(cents / 100, 2)
