# pricefeed

`pricefeed` holds the building blocks a validator's oracle price feeder uses
to turn exchange tickers into prices it can trust: configuration loading,
outlier filtering, volume-weighted averages, a SQLite history of tickers and
time-weighted averages over that history. All arithmetic is done with
`decimal.Decimal` values fixed at 18 fractional places.

Python 3.11 or later is required; there are no third-party dependencies.

```
pip install .
```

## Modules

- **`pricefeed.models`** – `CurrencyPair(base, quote)` (its `str()` is
  `base + quote`, e.g. `ATOMUSD`), `TickerPrice(price, volume=0, time=None)`,
  `to_dec(value)` which normalises a number or string to 18 decimal places,
  and `quo(numerator, denominator)` for division rounded half-to-even.
- **`pricefeed.filter`** – `standard_deviation(prices)` returns the population
  standard deviation and mean (at least three prices are required);
  `filter_ticker_deviations(symbol, ticker_prices, deviation_threshold=None)`
  keeps only providers within T standard deviations of the mean (T defaults
  to 1); `compute_vwap(prices)` returns the volume-weighted average price.
- **`pricefeed.history`** – `PriceHistory(path)` stores tickers per symbol and
  provider in SQLite (`":memory:"` works). `add_ticker_price(pair, provider,
  ticker)` ignores a second ticker for the same second;
  `get_ticker_prices(symbol, start, end)` returns tickers per provider, oldest
  first, and deletes entries older than `start`. It is a context manager and
  has `close()`.
- **`pricefeed.derivative`** – `twap(tickers, start, end)` computes a
  time-weighted average, skipping gaps longer than 120 seconds and prices more
  than 10% away from the time-weighted median; at least 80% of the window must
  be covered, otherwise `TwapError` is raised with `missing` set to the seconds
  lacking. `TwapDerivative(history, pairs, periods).get_prices(symbol, now=None)`
  returns a TWAP per provider from a `PriceHistory`; `new_derivative(name, ...)`
  accepts `"twap"` and `"stride"`.
- **`pricefeed.config`** – `parse_config(path)` reads a TOML file, fills in
  defaults (listen address `0.0.0.0:7171`, 15s server timeouts, 100ms provider
  timeout, 1s height poll interval, `prices.db`, 30m derivative period) and
  checks providers, derivatives, deviation thresholds (at most 3.0), provider
  minimums and required fields, raising `ConfigError`.
  `ProviderEndpointConfig.to_endpoint(sets)` resolves URL sets into an
  `Endpoint`. `parse_duration` and `format_duration` handle durations written
  as `"1h30m"`, `"100ms"`, `"-1.5s"`.
- **`pricefeed.netaddr`** – `protocol_and_address("unix:///tmp/x.sock")` gives
  `("unix", "/tmp/x.sock")`; without a prefix the protocol is `tcp`.

## Example

```python
from datetime import datetime, timezone
from decimal import Decimal

from pricefeed.derivative import twap
from pricefeed.filter import compute_vwap, filter_ticker_deviations
from pricefeed.models import TickerPrice

volume = Decimal("1994674.34")
tickers = {
    "binance": TickerPrice(Decimal("29.93"), volume),
    "huobi": TickerPrice(Decimal("29.93"), volume),
    "kraken": TickerPrice(Decimal("29.93"), volume),
    "coinbase": TickerPrice(Decimal("27.1"), volume),
}
kept = filter_ticker_deviations("ATOMUSDT", tickers)
print(sorted(kept))                  # coinbase is dropped as an outlier
print(compute_vwap(kept.values()))

def at(second):
    return datetime.fromtimestamp(second, timezone.utc)

history = [TickerPrice(Decimal(5), Decimal(2), at(s)) for s in (0, 1, 2)]
print(twap(history, at(0), at(3)))   # 5.000000000000000000
```

## Backtesting a TWAP

The `pricefeed` command replays a JSON file of recorded tickers and prints a
TWAP at every interval:

```
pricefeed backtest tickers.json --period 1800 --interval 60
```

The file holds a JSON array of objects with `price`, `volume` and an ISO 8601
`time` (times without a zone are taken as UTC). `--period` is the TWAP window
in seconds (default 1800) and `--interval` the step between calculations in
seconds (default 60). Each output line is `<time> +0000 UTC;<twap>`; the value
is left empty where there was not enough history to compute one.

## What the package does not do

The package does not talk to exchanges or to a chain. It has no price
providers, no conversion of non-USD quotes into USD rates, no HTTP API server
and no signing or broadcasting of prevotes and votes. The account, keyring,
RPC, server and telemetry sections of the configuration are read and
validated, but nothing in the package acts on them; the only command is
`backtest`.

## Running the tests

```
pip install .[test]
pytest
```