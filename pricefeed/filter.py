"""Outlier filtering and volume-weighted averaging of ticker prices."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from decimal import Decimal

from pricefeed.models import DEC_CONTEXT, TickerPrice, quo, to_dec

logger = logging.getLogger(__name__)

# How many standard deviations a provider may be away from the mean before
# it is considered faulty, unless the configuration says otherwise.
DEFAULT_DEVIATION_THRESHOLD = to_dec("1.0")


def _mul(left: Decimal, right: Decimal) -> Decimal:
    return to_dec(DEC_CONTEXT.multiply(left, right))


def _sum(values: Iterable[Decimal]) -> Decimal:
    total = Decimal(0)
    for value in values:
        total = DEC_CONTEXT.add(total, value)
    return to_dec(total)


def _quo_int(value: Decimal, divisor: int) -> Decimal:
    """Divide by an integer, truncating towards zero at 18 places."""
    scaled = int(value.scaleb(18, context=DEC_CONTEXT))
    quotient = abs(scaled) // abs(divisor)
    if (scaled < 0) != (divisor < 0):
        quotient = -quotient
    return to_dec(Decimal(quotient).scaleb(-18, context=DEC_CONTEXT))


def standard_deviation(prices: Iterable) -> tuple[Decimal, Decimal]:
    """Return the population standard deviation and the mean of ``prices``.

    At least three values are required.
    """
    values = [to_dec(price) for price in prices]
    if len(values) < 3:
        raise ValueError("not enough values to calculate deviation")

    count = len(values)
    mean = _quo_int(_sum(values), count)
    variance_sum = _sum(_mul(value - mean, value - mean) for value in values)
    variance = _quo_int(variance_sum, count)
    deviation = to_dec(DEC_CONTEXT.sqrt(variance))
    return deviation, mean


def compute_vwap(prices: Iterable[TickerPrice]) -> Decimal:
    """Return the volume-weighted average price of the given tickers."""
    tickers = list(prices)
    if not tickers:
        raise ValueError("no prices to compute vwap")
    weighted = _sum(_mul(ticker.price, ticker.volume) for ticker in tickers)
    volume = _sum(ticker.volume for ticker in tickers)
    if volume == 0:
        raise ValueError("total volume is zero")
    return quo(weighted, volume)


def filter_ticker_deviations(
    symbol: str,
    ticker_prices: Mapping[str, TickerPrice],
    deviation_threshold: Decimal | None = None,
) -> dict[str, TickerPrice]:
    """Keep only the providers whose price lies within T standard deviations of the mean.

    ``deviation_threshold`` (T) defaults to 1. Raises :class:`ValueError` when
    fewer than three prices are given, as no deviation can be computed.
    """
    threshold = (
        DEFAULT_DEVIATION_THRESHOLD
        if deviation_threshold is None
        else to_dec(deviation_threshold)
    )
    deviation, mean = standard_deviation(
        ticker.price for ticker in ticker_prices.values()
    )
    margin = _mul(deviation, threshold)
    low, high = mean - margin, mean + margin

    filtered: dict[str, TickerPrice] = {}
    for name, ticker in ticker_prices.items():
        if low <= ticker.price <= high:
            filtered[name] = ticker
        else:
            logger.debug(
                "deviating price for %s from %s: price=%s mean=%s margin=%s",
                symbol, name, ticker.price, mean, margin,
            )
    return filtered