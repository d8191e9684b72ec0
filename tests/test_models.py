import dataclasses
from decimal import Decimal

import pytest

from pricefeed.models import CurrencyPair, TickerPrice, quo, to_dec


def test_currency_pair_string_concatenates_base_and_quote():
    assert str(CurrencyPair("ATOM", "USD")) == "ATOMUSD"
    assert str(CurrencyPair(base="STATOM", quote="ATOM")) == "STATOMATOM"


def test_currency_pair_is_hashable_and_comparable():
    pairs = {CurrencyPair("ATOM", "USD"), CurrencyPair("ATOM", "USD")}
    assert len(pairs) == 1


def test_to_dec_has_eighteen_places():
    assert str(to_dec("3.72")) == "3.720000000000000000"
    assert to_dec("1.1") == Decimal("1.1")
    assert to_dec(5).as_tuple().exponent == -18


def test_to_dec_rejects_too_many_places():
    with pytest.raises(ValueError):
        to_dec("0." + "0" * 18 + "1")


@pytest.mark.parametrize("text", ["abc", "", "nan", "inf"])
def test_to_dec_rejects_invalid_strings(text):
    with pytest.raises(ValueError):
        to_dec(text)


def test_to_dec_rejects_other_types():
    with pytest.raises(TypeError):
        to_dec(None)


def test_to_dec_rounds_half_even_for_decimals():
    assert to_dec(Decimal("0.0000000000000000015")) == Decimal("2e-18")


def test_quo_rounds_half_even():
    assert quo("1", "3") == Decimal("0.333333333333333333")
    assert quo("2", "3") == Decimal("0.666666666666666667")


def test_quo_is_sign_symmetric():
    assert quo(-2, 3) == -quo(2, 3)
    assert quo(2, -3) == -quo(2, 3)


def test_quo_inverts_exact_multiplication():
    assert quo(to_dec("3") * to_dec("2.5"), 3) == Decimal("2.5")
    assert quo("29.93", 1) == to_dec("29.93")
    assert quo(7, 3).as_tuple().exponent == -18


def test_quo_by_zero_raises():
    with pytest.raises(ZeroDivisionError):
        quo(1, 0)


def test_ticker_price_normalises_values():
    ticker = TickerPrice("1.5")
    assert ticker.price == to_dec("1.5")
    assert ticker.volume == Decimal(0)
    assert ticker.time is None
    assert TickerPrice("1.5", "2") == TickerPrice(Decimal("1.5"), 2)


def test_ticker_price_is_frozen():
    ticker = TickerPrice("1")
    with pytest.raises(dataclasses.FrozenInstanceError):
        ticker.price = Decimal(2)


def test_ticker_price_rejects_bad_price():
    with pytest.raises(ValueError):
        TickerPrice("not a number")