"""Time-weighted average prices derived from stored ticker history."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import pairwise

from pricefeed.history import PriceHistory
from pricefeed.models import DEC_CONTEXT, CurrencyPair, TickerPrice, to_dec

logger = logging.getLogger(__name__)

DERIVATIVE_TWAP = "twap"
DERIVATIVE_STRIDE = "stride"

TWAP_MAX_TIME_DELTA_SECONDS = 120
TWAP_MIN_HISTORY_PERIOD_FRACTION = 0.8
TWAP_MAX_PRICE_DEVIATION = Decimal("0.100000")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_SCALE = 10**18


class TwapError(Exception):
    """Raised when a TWAP cannot be computed; ``missing`` is seconds lacking."""

    def __init__(self, message: str, missing: int = 0) -> None:
        super().__init__(message)
        self.missing = missing


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def _unix(moment: datetime) -> int:
    return (_aware(moment) - _EPOCH) // timedelta(seconds=1)


def _div_truncate(value: Decimal, divisor: int) -> Decimal:
    scaled = int(value.scaleb(18, context=DEC_CONTEXT))
    quotient = abs(scaled) // abs(divisor)
    if (scaled < 0) != (divisor < 0):
        quotient = -quotient
    return Decimal(quotient).scaleb(-18, context=DEC_CONTEXT)


def _weighted_median(tickers: Sequence[TickerPrice]) -> Decimal:
    if len(tickers) < 2:
        return to_dec(0)
    weighted = sorted(
        ((current.price, _unix(current.time) - _unix(previous.time))
         for previous, current in pairwise(tickers)),
        key=lambda item: item[0],
    )
    total = _unix(tickers[-1].time) - _unix(tickers[0].time)
    half = int(total / 2)
    pivot = 0
    for price, weight in weighted:
        pivot += weight
        if pivot > half:
            return price
    return to_dec(0)


def twap(tickers: Sequence[TickerPrice], start: datetime, end: datetime) -> Decimal:
    """Compute the time-weighted average price of tickers within [start, end].

    Gaps longer than two minutes and prices more than 10% from the weighted
    median are skipped. At least 80% of the period must be covered.
    """
    start = _aware(start)
    end = _aware(end)
    period = (end - start).total_seconds()
    min_period = int(TWAP_MIN_HISTORY_PERIOD_FRACTION * period)

    window: list[TickerPrice] = []
    for ticker in tickers:
        moment = _aware(ticker.time)
        if moment < start:
            continue
        if moment > end:
            break
        window.append(ticker)

    median = _weighted_median(window)
    if median == 0:
        raise TwapError("median is 0")

    margin = to_dec(DEC_CONTEXT.multiply(median, TWAP_MAX_PRICE_DEVIATION))
    upper = median + margin
    lower = median - margin

    price_total = Decimal(0)
    time_total = 0
    discarded = 0
    for ticker, following in pairwise(window):
        time_delta = _unix(following.time) - _unix(ticker.time)
        if time_delta > TWAP_MAX_TIME_DELTA_SECONDS:
            discarded += time_delta
            continue
        if ticker.price > upper or ticker.price < lower:
            continue
        price_total = DEC_CONTEXT.add(
            price_total, DEC_CONTEXT.multiply(ticker.price, time_delta)
        )
        time_total += time_delta

    if time_total < min_period:
        missing = min_period - time_total
        message = "not enough history"
        if int(period) - discarded < min_period:
            message = "too much time gap in history"
        raise TwapError(message, missing)

    return _div_truncate(price_total, time_total)


class TwapDerivative:
    """Derives per-provider prices as TWAPs over stored history."""

    def __init__(
        self,
        history: PriceHistory,
        pairs: Sequence[CurrencyPair],
        periods: Mapping[str, timedelta],
    ) -> None:
        self.history = history
        self.pairs = list(pairs)
        self.periods = dict(periods)

    def get_prices(
        self, symbol: str, now: datetime | None = None
    ) -> dict[str, TickerPrice]:
        """Return the TWAP for ``symbol`` from each provider with enough history."""
        now = _aware(now) if now is not None else datetime.now(timezone.utc)
        try:
            period = self.periods[symbol]
        except KeyError:
            logger.error("pair not configured: %s", symbol)
            raise KeyError("pair not configured") from None

        start = now - period
        tickers = self.history.get_ticker_prices(symbol, start, now)

        prices: dict[str, TickerPrice] = {}
        for provider, provider_tickers in tickers.items():
            try:
                price = twap(provider_tickers, start, now)
            except TwapError as err:
                logger.warning(
                    "failed to compute twap for %s from %s over %s: %s (missing %ss)",
                    symbol, provider, period, err, err.missing,
                )
                continue
            if price == 0:
                logger.warning("twap for %s from %s is zero", symbol, provider)
                continue
            prices[provider] = TickerPrice(
                price=price, volume=provider_tickers[-1].volume, time=now
            )
        return prices


def new_derivative(
    name: str,
    history: PriceHistory,
    pairs: Sequence[CurrencyPair],
    periods: Mapping[str, timedelta],
) -> TwapDerivative:
    """Create the derivative named ``name``."""
    if name in (DERIVATIVE_TWAP, DERIVATIVE_STRIDE):
        return TwapDerivative(history, pairs, periods)
    raise ValueError(f"unsupported provider: {name}")