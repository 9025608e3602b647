"""
Money primitive - integer cents with a single rounding rule.

Every monetary value in the service is an int of centavos. Percentages are
Decimals (4.99 means 4.99%) and are only ever applied through apply_percent,
so calculation and audit recomputation round identically.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from payout_gateway.domain.exceptions import ConfigurationError, InvalidAmountError

# Single rounding mode for all percentage applications. Changing it
# invalidates every stored breakdown, see DESIGN.md.
ROUNDING = ROUND_HALF_UP

Percent = Union[Decimal, int, str]

_ONE = Decimal("1")
_HUNDRED = Decimal("100")


def to_decimal(value: Percent) -> Decimal:
    """Convert a percentage to Decimal without going through float"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        raise ConfigurationError(f"Percentages must not be floats: {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ConfigurationError(f"Invalid percentage: {value!r}") from e


def validate_percent(value: Percent, name: str) -> Decimal:
    """Return value as Decimal, raising ConfigurationError outside [0, 100]"""
    percent = to_decimal(value)
    if not (Decimal(0) <= percent <= _HUNDRED):
        raise ConfigurationError(f"{name} must be within [0, 100], got {percent}")
    return percent


def ensure_cents(amount: int, name: str = "amount") -> int:
    """Reject floats, bools and other non-integer money values"""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError(f"{name} must be an integer number of cents, got {amount!r}")
    return amount


def apply_percent(amount: int, percent: Percent) -> int:
    """
    round(amount * percent / 100) in cents.

    Example:
        apply_percent(10000, Decimal("4.99")) -> 499
        apply_percent(333, Decimal("10"))     -> 33   (33.3 rounds half-up to 33)
        apply_percent(335, Decimal("10"))     -> 34   (33.5 rounds half-up to 34)
    """
    ensure_cents(amount)
    raw = Decimal(amount) * to_decimal(percent) / _HUNDRED
    return int(raw.quantize(_ONE, rounding=ROUNDING))


def to_basis_points(percent: Percent) -> int:
    """4.99% -> 499 bps"""
    return int((to_decimal(percent) * _HUNDRED).quantize(_ONE, rounding=ROUNDING))


def parse_money(text: str) -> int:
    """Major-unit decimal string ("1.49") to cents (149)"""
    try:
        value = Decimal(str(text).strip())
    except InvalidOperation as e:
        raise ConfigurationError(f"Invalid money value: {text!r}") from e
    return int((value * _HUNDRED).quantize(_ONE, rounding=ROUNDING))


def format_money(cents: int) -> str:
    """149 -> 'R$ 1.49'"""
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}R$ {whole:,}.{frac:02d}"
