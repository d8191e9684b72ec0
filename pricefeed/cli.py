"""Command line entry point: backtesting TWAP prices over recorded tickers."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Iterator, Sequence
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from pricefeed.derivative import TwapError, twap
from pricefeed.models import TickerPrice

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def _round(moment: datetime, step: timedelta) -> datetime:
    """Round to the nearest multiple of ``step`` since year 1; halves round up."""
    quotient, remainder = divmod(moment - _ZERO_TIME, step)
    if remainder + remainder < step:
        return _ZERO_TIME + quotient * step
    return _ZERO_TIME + (quotient + 1) * step


def backtest(
    tickers: Sequence[TickerPrice], period: int, interval: int
) -> Iterator[tuple[datetime, Decimal | None]]:
    """Yield the TWAP over ``period`` seconds at every ``interval`` seconds.

    The price is ``None`` at points where no TWAP could be computed.
    """
    if interval <= 0:
        raise ValueError("interval must be positive")
    times = [_aware(ticker.time) for ticker in tickers if ticker.time is not None]
    if not times:
        return

    step = timedelta(seconds=interval)
    window = timedelta(seconds=period)
    tick = _round(min(times), step)
    last = _round(max(times), step)

    while tick < last:
        tick += step
        try:
            price = twap(tickers, tick - window, tick)
        except TwapError:
            price = None
        yield tick, price


def _parse_ticker(item) -> TickerPrice:
    if not isinstance(item, dict):
        raise ValueError("each ticker must be a JSON object")
    fields = {str(key).lower(): value for key, value in item.items()}
    stamp = fields.get("time")
    if not isinstance(stamp, str):
        raise ValueError("ticker has no time")
    return TickerPrice(
        price=fields.get("price", 0),
        volume=fields.get("volume", 0),
        time=_aware(datetime.fromisoformat(stamp)),
    )


def _load_tickers(path: str) -> list[TickerPrice]:
    with open(path, encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, list):
        raise ValueError("ticker file must hold a JSON array")
    return [_parse_ticker(item) for item in data]


def _format_time(moment: datetime) -> str:
    moment = moment.astimezone(timezone.utc)
    text = moment.strftime("%Y-%m-%d %H:%M:%S")
    if moment.microsecond:
        text += "." + f"{moment.microsecond:06d}".rstrip("0")
    return text + " +0000 UTC"


def main(argv=None) -> int:
    """Run the command line interface and return the exit status."""
    parser = argparse.ArgumentParser(
        prog="price-feeder",
        description="Tools for the oracle price feeder.",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    backtest_cmd = commands.add_parser(
        "backtest", help="Backtest TWAP for values in provided JSON file"
    )
    backtest_cmd.add_argument("file", nargs="*")
    backtest_cmd.add_argument(
        "--period",
        type=int,
        default=1800,
        help="Time period of the TVWAP calculation in seconds",
    )
    backtest_cmd.add_argument(
        "--interval",
        type=int,
        default=60,
        help="Interval in which new TVWAP prices are calculated in seconds",
    )
    args = parser.parse_args(argv)

    if len(args.file) != 1:
        print("no file provided", file=sys.stderr)
        return 1

    try:
        tickers = _load_tickers(args.file[0])
        for tick, price in backtest(tickers, args.period, args.interval):
            value = "" if price is None else format(price, "f")
            print(f"{_format_time(tick)};{value}")
    except (OSError, ValueError) as err:
        print(err, file=sys.stderr)
        return 1
    return 0