"""Core value types: currency pairs, ticker prices and fixed-point decimals."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import (
    ROUND_HALF_EVEN,
    Context,
    Decimal,
    DivisionByZero,
    InvalidOperation,
    Overflow,
)

PRECISION = 18
_SCALE = 10**PRECISION
_QUANTUM = Decimal(1).scaleb(-PRECISION)

# Wide enough that products and sums of 18-place decimals are exact.
DEC_CONTEXT = Context(
    prec=200,
    rounding=ROUND_HALF_EVEN,
    traps=[InvalidOperation, DivisionByZero, Overflow],
)


def to_dec(value) -> Decimal:
    """Return ``value`` as a decimal with exactly 18 fractional places.

    Strings with more than 18 fractional digits are rejected; numeric values
    are rounded half-to-even to 18 places.
    """
    if isinstance(value, bool):
        raise TypeError("booleans are not decimals")
    if isinstance(value, str):
        try:
            dec = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"invalid decimal: {value!r}") from None
        if dec.is_finite() and dec.as_tuple().exponent < -PRECISION:
            raise ValueError(
                f"too many decimal places in {value!r}; maximum is {PRECISION}"
            )
    elif isinstance(value, Decimal):
        dec = value
    elif isinstance(value, int):
        dec = Decimal(value)
    elif isinstance(value, float):
        dec = Decimal(repr(value))
    else:
        raise TypeError(f"cannot convert {type(value).__name__} to a decimal")
    if not dec.is_finite():
        raise ValueError(f"decimal must be finite: {value!r}")
    return dec.quantize(_QUANTUM, context=DEC_CONTEXT)


def _scaled(dec: Decimal) -> int:
    return int(dec.scaleb(PRECISION, context=DEC_CONTEXT))


def _unscaled(value: int) -> Decimal:
    return Decimal(value).scaleb(-PRECISION, context=DEC_CONTEXT)


def _truncating_div(numerator: int, denominator: int) -> int:
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator < 0) == (denominator < 0) else -quotient


def _chop_half_even(value: int) -> int:
    magnitude = abs(value)
    quotient, remainder = divmod(magnitude, _SCALE)
    half = _SCALE // 2
    if remainder > half or (remainder == half and quotient % 2 == 1):
        quotient += 1
    return -quotient if value < 0 else quotient


def quo(numerator, denominator) -> Decimal:
    """Divide two decimals, rounding the result half-to-even to 18 places."""
    num = _scaled(to_dec(numerator))
    den = _scaled(to_dec(denominator))
    if den == 0:
        raise ZeroDivisionError("decimal division by zero")
    widened = _truncating_div(num * _SCALE * _SCALE, den)
    return _unscaled(_chop_half_even(widened))


@dataclass(frozen=True)
class CurrencyPair:
    """A base/quote pair such as ATOM/USD."""

    base: str
    quote: str

    def __str__(self) -> str:
        return self.base + self.quote


@dataclass(frozen=True)
class TickerPrice:
    """A price and traded volume observed at an optional point in time."""

    price: Decimal
    volume: Decimal = Decimal(0)
    time: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "price", to_dec(self.price))
        object.__setattr__(self, "volume", to_dec(self.volume))