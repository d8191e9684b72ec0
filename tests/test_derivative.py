from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from pricefeed.derivative import (
    TwapDerivative,
    TwapError,
    new_derivative,
    twap,
)
from pricefeed.history import PriceHistory
from pricefeed.models import CurrencyPair, TickerPrice


def at(seconds):
    return datetime.fromtimestamp(seconds, timezone.utc)


TICKERS_1 = [
    TickerPrice(price=5, volume=2, time=at(0)),
    TickerPrice(price=5, volume=2, time=at(1)),
    TickerPrice(price=5, volume=2, time=at(2)),
]

TICKERS_2 = [
    TickerPrice(price=5, volume=2, time=at(0)),
    TickerPrice(price=10, volume=2, time=at(1)),
    TickerPrice(price=15, volume=2, time=at(2)),
    TickerPrice(price=100, volume=2, time=at(3)),
]

TICKERS_4 = [
    TickerPrice(price=5, time=at(2)),
    TickerPrice(price=8, time=at(4)),
    TickerPrice(price=2, time=at(6)),
    TickerPrice(price=7, time=at(10)),
    TickerPrice(price=4, time=at(12)),
    TickerPrice(price=5, time=at(14)),
    TickerPrice(price=1, time=at(16)),
    TickerPrice(price=3, time=at(18)),
]

_RAW_5 = [
    ("1662.000000000000000000", 1675374725),
    ("1662.000000000000000000", 1675374738),
    ("1662.260000000000000000", 1675374762),
    ("1662.390000000000000000", 1675374768),
    ("1662.360000000000000000", 1675374786),
    ("1662.510000000000000000", 1675374793),
    ("1659.900000000000000000", 1675374854),
    ("1659.430000000000000000", 1675374860),
    ("1656.520000000000000000", 1675374885),
    ("1657.560000000000000000", 1675374891),
    ("1656.600000000000000000", 1675374909),
    ("1655.450000000000000000", 1675374921),
    ("1656.230000000000000000", 1675374940),
    ("1658.270000000000000000", 1675374958),
    ("1656.730000000000000000", 1675374976),
    ("1655.510000000000000000", 1675374982),
    ("1654.250000000000000000", 1675375007),
    ("1652.640000000000000000", 1675375019),
    ("1654.320000000000000000", 1675375037),
    ("1655.540000000000000000", 1675375049),
    ("1655.630000000000000000", 1675375074),
    ("1654.930000000000000000", 1675375080),
    ("1656.130000000000000000", 1675375098),
    ("1654.480000000000000000", 1675375110),
    ("1652.950000000000000000", 1675375129),
    ("1651.720000000000000000", 1675375141),
]
TICKERS_5 = [TickerPrice(price=price, time=at(second)) for price, second in _RAW_5]

TICKERS_6 = [
    TickerPrice(price=8, volume=0, time=at(0)),
    TickerPrice(price=11, volume=0, time=at(3)),
    TickerPrice(price=11, volume=0, time=at(6)),
    TickerPrice(price=9, volume=0, time=at(9)),
]


def test_twap_flat_prices():
    assert twap(TICKERS_1, at(0), at(3)) == Decimal(5)


def test_twap_long_history():
    result = twap(TICKERS_5, at(1675374700), at(1675375150))
    assert result == Decimal("1657.903605769230769230")


def test_twap_result_has_eighteen_places():
    result = twap(TICKERS_5, at(1675374700), at(1675375150))
    assert result.as_tuple().exponent == -18


@pytest.mark.parametrize(
    "tickers,start,end",
    [
        (TICKERS_2, at(0), at(3)),
        (TICKERS_4, at(3), at(17)),
        (TICKERS_6, at(0), at(12)),
    ],
)
def test_twap_spikes_leave_too_little_history(tickers, start, end):
    with pytest.raises(TwapError) as excinfo:
        twap(tickers, start, end)
    assert str(excinfo.value) == "not enough history"
    assert excinfo.value.missing > 0


def test_twap_time_gap_is_reported():
    tickers = [
        TickerPrice(price=5, time=at(0)),
        TickerPrice(price=5, time=at(200)),
        TickerPrice(price=5, time=at(201)),
    ]
    with pytest.raises(TwapError) as excinfo:
        twap(tickers, at(0), at(300))
    assert str(excinfo.value) == "too much time gap in history"


def test_twap_needs_two_tickers():
    with pytest.raises(TwapError) as excinfo:
        twap(TICKERS_1[:1], at(0), at(3))
    assert str(excinfo.value) == "median is 0"
    assert excinfo.value.missing == 0


def test_twap_ignores_tickers_outside_window():
    shifted = [TickerPrice(price=50, time=at(-5))] + TICKERS_1
    assert twap(shifted, at(0), at(3)) == twap(TICKERS_1, at(0), at(3))


@pytest.fixture
def history():
    store = PriceHistory(":memory:")
    yield store
    store.close()


PAIR = CurrencyPair("ATOM", "USD")


def test_derivative_prices_from_history(history):
    for second in (997, 998, 999):
        history.add_ticker_price(PAIR, "osmosis", TickerPrice(5, 2, at(second)))
    derivative = TwapDerivative(history, [PAIR], {str(PAIR): timedelta(seconds=3)})
    now = at(1000)
    prices = derivative.get_prices(str(PAIR), now)
    assert prices == {"osmosis": TickerPrice(price=5, volume=2, time=now)}


def test_derivative_skips_providers_without_history(history):
    for second in (997, 998, 999):
        history.add_ticker_price(PAIR, "osmosis", TickerPrice(5, 2, at(second)))
    history.add_ticker_price(PAIR, "kraken", TickerPrice(5, 2, at(999)))
    derivative = new_derivative("twap", history, [PAIR], {str(PAIR): timedelta(seconds=3)})
    prices = derivative.get_prices(str(PAIR), at(1000))
    assert set(prices) == {"osmosis"}


def test_derivative_unconfigured_pair(history):
    derivative = TwapDerivative(history, [PAIR], {})
    with pytest.raises(KeyError):
        derivative.get_prices(str(PAIR), at(1000))


def test_new_derivative_names(history):
    assert isinstance(new_derivative("stride", history, [], {}), TwapDerivative)
    with pytest.raises(ValueError, match="unsupported provider: bogus"):
        new_derivative("bogus", history, [], {})