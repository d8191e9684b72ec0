"""Loading, defaulting and validation of the price feeder configuration."""

from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from fractions import Fraction

from pricefeed.derivative import DERIVATIVE_TWAP
from pricefeed.models import to_dec

DENOM_USD = "USD"

DEFAULT_LISTEN_ADDR = "0.0.0.0:7171"
DEFAULT_SRV_WRITE_TIMEOUT = timedelta(seconds=15)
DEFAULT_SRV_READ_TIMEOUT = timedelta(seconds=15)
DEFAULT_PROVIDER_TIMEOUT = timedelta(milliseconds=100)
DEFAULT_HEIGHT_POLL_INTERVAL = timedelta(seconds=1)
DEFAULT_HISTORY_DB = "prices.db"
DEFAULT_DERIVATIVE_PERIOD = timedelta(minutes=30)

MAX_DEVIATION_THRESHOLD = to_dec("3.0")

SUPPORTED_PROVIDERS = frozenset(
    {
        "astroport_injective",
        "astroport_neutron",
        "astroport_terra2",
        "binance",
        "binanceus",
        "bingx",
        "bitfinex",
        "bitforex",
        "bitget",
        "bitmart",
        "bitstamp",
        "bybit",
        "camelotv2",
        "camelotv3",
        "coinbase",
        "coinex",
        "crypto",
        "curve",
        "dexter",
        "fin",
        "finv2",
        "gate",
        "helix",
        "hitbtc",
        "huobi",
        "idxosmosis",
        "kraken",
        "kucoin",
        "lbank",
        "maya",
        "mexc",
        "mock",
        "okx",
        "osmosisv2",
        "pancakev3bsc",
        "phemex",
        "pionex",
        "poloniex",
        "pyth",
        "shade",
        "stride",
        "uniswapv3",
        "unstake",
        "velodromev2",
        "whitewhale_cmdx",
        "whitewhale_huahua",
        "whitewhale_inj",
        "whitewhale_juno",
        "whitewhale_luna",
        "whitewhale_lunc",
        "whitewhale_sei",
        "whitewhale_whale",
        "xt",
        "zero",
    }
)

SUPPORTED_DERIVATIVES = frozenset({DERIVATIVE_TWAP})


class ConfigError(ValueError):
    """Raised when the configuration cannot be read, decoded or validated."""


# --------------------------------------------------------------------------
# Durations

_NANOSECOND = 1
_MICROSECOND = 1_000
_MILLISECOND = 1_000_000
_SECOND = 1_000_000_000

_UNITS = {
    "ns": _NANOSECOND,
    "us": _MICROSECOND,
    "\u00b5s": _MICROSECOND,
    "\u03bcs": _MICROSECOND,
    "ms": _MILLISECOND,
    "s": _SECOND,
    "m": 60 * _SECOND,
    "h": 3600 * _SECOND,
}

_DURATION_PART = re.compile(r"(\d*)(\.(\d*))?([^\d.]*)")
_MAX_NS = 2**63 - 1


def _parse_nanoseconds(text: str) -> int:
    original = text
    negative = False
    if text[:1] in ("-", "+"):
        negative = text[0] == "-"
        text = text[1:]
    if text == "0":
        return 0
    if not text:
        raise ValueError(f'time: invalid duration "{original}"')

    total = Fraction(0)
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        whole, dot, fraction, unit = match.group(1), match.group(2), match.group(3), match.group(4)
        if not whole and not fraction:
            raise ValueError(f'time: invalid duration "{original}"')
        if not unit:
            raise ValueError(f'time: missing unit in duration "{original}"')
        if unit not in _UNITS:
            raise ValueError(f'time: unknown unit "{unit}" in duration "{original}"')
        value = Fraction(int(whole or "0"))
        if dot and fraction:
            value += Fraction(int(fraction), 10 ** len(fraction))
        total += int(value * _UNITS[unit])
        if total > _MAX_NS:
            raise ValueError(f'time: invalid duration "{original}"')
        pos = match.end()
    ns = int(total)
    return -ns if negative else ns


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``"1h30m"``, ``"100ms"`` or ``"-1.5s"``."""
    ns = _parse_nanoseconds(text)
    micro = abs(ns) // _MICROSECOND
    return timedelta(microseconds=-micro if ns < 0 else micro)


def _fraction_text(value: int, digits: int) -> str:
    whole, rest = divmod(value, 10**digits)
    tail = f"{rest:0{digits}d}".rstrip("0")
    return f"{whole}.{tail}" if tail else str(whole)


def format_duration(seconds) -> str:
    """Render a duration (a timedelta or a number of seconds) as ``"1h0m0s"`` style text."""
    if isinstance(seconds, timedelta):
        ns = (
            (seconds.days * 86400 + seconds.seconds) * _SECOND
            + seconds.microseconds * _MICROSECOND
        )
    elif isinstance(seconds, (int, float, Decimal)) and not isinstance(seconds, bool):
        ns = int(Decimal(repr(seconds) if isinstance(seconds, float) else seconds) * _SECOND)
    else:
        raise TypeError(f"cannot format {type(seconds).__name__} as a duration")

    sign = "-" if ns < 0 else ""
    magnitude = abs(ns)
    if magnitude < _SECOND:
        if magnitude == 0:
            return "0s"
        if magnitude < _MICROSECOND:
            return f"{sign}{magnitude}ns"
        if magnitude < _MILLISECOND:
            return f"{sign}{_fraction_text(magnitude, 3)}\u00b5s"
        return f"{sign}{_fraction_text(magnitude, 6)}ms"

    total_seconds, rest = divmod(magnitude, _SECOND)
    tail = f"{rest:09d}".rstrip("0")
    text = f"{total_seconds % 60}{'.' + tail if tail else ''}s"
    minutes = total_seconds // 60
    if minutes:
        text = f"{minutes % 60}m{text}"
        hours = minutes // 60
        if hours:
            text = f"{hours}h{text}"
    return sign + text


# --------------------------------------------------------------------------
# Configuration types


@dataclass
class Server:
    """API server settings."""

    listen_addr: str = ""
    write_timeout: str = ""
    read_timeout: str = ""
    verbose_cors: bool = False
    allowed_origins: list[str] = field(default_factory=list)


@dataclass
class CurrencyPairConfig:
    """A pair to price and the providers that quote it."""

    base: str = ""
    quote: str = ""
    providers: list[str] = field(default_factory=list)
    derivative: str = ""
    derivative_period: str = ""


@dataclass
class Deviation:
    """Maximum number of standard deviations allowed for an asset."""

    base: str = ""
    threshold: str = ""


@dataclass
class ProviderMinOverride:
    """Minimum number of providers that must succeed for the given denoms."""

    denoms: list[str] = field(default_factory=list)
    providers: int = 0


@dataclass
class Account:
    """Chain account used for signing votes."""

    chain_id: str = ""
    address: str = ""
    validator: str = ""
    fee_granter: str = ""
    prefix: str = ""


@dataclass
class Keyring:
    """Keyring backend and directory."""

    backend: str = ""
    dir: str = ""


@dataclass
class RPC:
    """Node RPC endpoints."""

    tmrpc_endpoint: str = ""
    grpc_endpoint: str = ""
    rpc_timeout: str = ""


@dataclass
class Telemetry:
    """Telemetry settings."""

    service_name: str = ""
    enabled: bool = False
    enable_hostname: bool = False
    enable_hostname_label: bool = False
    enable_service_label: bool = False
    global_labels: list[list[str]] = field(default_factory=list)
    prometheus_retention: int = 0


@dataclass
class Healthcheck:
    """A URL pinged after every successful vote."""

    url: str = ""
    timeout: str = ""


@dataclass
class UrlSet:
    """A named list of URLs shared between endpoints."""

    urls: list[str] = field(default_factory=list)


@dataclass
class Endpoint:
    """Resolved connection settings for one provider."""

    name: str
    urls: list[str]
    websocket: str = ""
    websocket_path: str = ""
    poll_interval: timedelta = timedelta(0)
    volume_blocks: int = 0
    volume_pause: int = 0
    decimals: dict[str, int] = field(default_factory=dict)
    periods: dict[str, int] = field(default_factory=dict)


@dataclass
class ProviderEndpointConfig:
    """Endpoint overrides for a provider as written in the configuration."""

    name: str = ""
    urls: list[str] = field(default_factory=list)
    url_set: str = ""
    websocket: str = ""
    websocket_path: str = ""
    poll_interval: str = ""
    volume_blocks: int = 0
    volume_pause: int = 0
    decimals: dict[str, int] = field(default_factory=dict)
    periods: dict[str, int] = field(default_factory=dict)

    def to_endpoint(self, sets: dict[str, UrlSet]) -> Endpoint:
        """Resolve URL sets and the poll interval into an :class:`Endpoint`."""
        poll_interval = timedelta(0)
        if self.poll_interval:
            try:
                poll_interval = parse_duration(self.poll_interval)
            except ValueError as err:
                raise ConfigError(f"failed to parse poll interval: {err}") from err

        urls = self.urls
        if self.url_set in sets:
            urls = sets[self.url_set].urls

        if not urls:
            raise ConfigError(f"no urls provided for '{self.name}'")

        return Endpoint(
            name=self.name,
            urls=list(urls),
            websocket=self.websocket,
            websocket_path=self.websocket_path,
            poll_interval=poll_interval,
            volume_blocks=self.volume_blocks,
            volume_pause=self.volume_pause,
            decimals=dict(self.decimals),
            periods=dict(self.periods),
        )


@dataclass
class Config:
    """All price feeder configuration."""

    server: Server = field(default_factory=Server)
    currency_pairs: list[CurrencyPairConfig] = field(default_factory=list)
    deviations: list[Deviation] = field(default_factory=list)
    provider_min_overrides: list[ProviderMinOverride] = field(default_factory=list)
    provider_weights: dict[str, dict[str, float]] = field(default_factory=dict)
    account: Account = field(default_factory=Account)
    keyring: Keyring = field(default_factory=Keyring)
    rpc: RPC = field(default_factory=RPC)
    telemetry: Telemetry = field(default_factory=Telemetry)
    gas_adjustment: float = 0.0
    gas_prices: str = ""
    provider_timeout: str = ""
    provider_endpoints: list[ProviderEndpointConfig] = field(default_factory=list)
    enable_server: bool = False
    enable_voter: bool = False
    healthchecks: list[Healthcheck] = field(default_factory=list)
    height_poll_interval: str = ""
    history_db: str = ""
    contract_addresses: dict[str, dict[str, str]] = field(default_factory=dict)
    decimals: dict[str, dict[str, int]] = field(default_factory=dict)
    periods: dict[str, dict[str, int]] = field(default_factory=dict)
    url_sets: dict[str, UrlSet] = field(default_factory=dict)
    bypass_oracle_params: bool = False

    def validate(self) -> None:
        """Raise :class:`ConfigError` listing every required field that is missing."""
        errors: list[str] = []

        def require(value, path: str) -> None:
            if not value:
                errors.append(f"Config.{path}: required")

        require(self.currency_pairs, "CurrencyPairs")
        for index, pair in enumerate(self.currency_pairs):
            where = f"CurrencyPairs[{index}]"
            require(pair.base, f"{where}.Base")
            require(pair.quote, f"{where}.Quote")
            require(pair.providers, f"{where}.Providers")
            for slot, name in enumerate(pair.providers):
                require(name, f"{where}.Providers[{slot}]")

        require(self.account.chain_id, "Account.ChainID")
        require(self.account.address, "Account.Address")
        require(self.account.validator, "Account.Validator")
        require(self.account.prefix, "Account.Prefix")
        require(self.keyring.backend, "Keyring.Backend")
        require(self.keyring.dir, "Keyring.Dir")
        require(self.rpc.tmrpc_endpoint, "RPC.TMRPCEndpoint")
        require(self.rpc.grpc_endpoint, "RPC.GRPCEndpoint")
        require(self.rpc.rpc_timeout, "RPC.RPCTimeout")
        require(self.gas_adjustment, "GasAdjustment")
        require(self.gas_prices, "GasPrices")

        tel = self.telemetry
        if tel.enabled and (not tel.global_labels or not tel.service_name):
            errors.append("Config.Telemetry.Enabled: enabledNoOptions")

        for index, endpoint in enumerate(self.provider_endpoints):
            where = f"Config.ProviderEndpoints[{index}]"
            if not endpoint.name:
                errors.append(f"{where}.Name: name is empty")
            if not endpoint.urls and not endpoint.url_set:
                errors.append(f"{where}.Urls: urls or url_set empty")
            if endpoint.name not in SUPPORTED_PROVIDERS:
                errors.append(f"{where}.Name: unsupportedEndpointProvider")

        for index, check in enumerate(self.healthchecks):
            require(check.url, f"Healthchecks[{index}].URL")
            require(check.timeout, f"Healthchecks[{index}].Timeout")

        if errors:
            raise ConfigError("; ".join(errors))


# --------------------------------------------------------------------------
# Decoding


def _fail(where: str, expected: str) -> ConfigError:
    return ConfigError(f"failed to decode config: {where} must be {expected}")


def _string(table: dict, key: str, where: str) -> str:
    value = table.get(key, "")
    if not isinstance(value, str):
        raise _fail(f"{where}{key}", "a string")
    return value


def _boolean(table: dict, key: str, where: str) -> bool:
    value = table.get(key, False)
    if not isinstance(value, bool):
        raise _fail(f"{where}{key}", "a boolean")
    return value


def _integer(table: dict, key: str, where: str, *, unsigned: bool = False) -> int:
    value = table.get(key, 0)
    if isinstance(value, bool) or not isinstance(value, int):
        raise _fail(f"{where}{key}", "an integer")
    if unsigned and value < 0:
        raise _fail(f"{where}{key}", "a non-negative integer")
    return value


def _number(value, where: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _fail(where, "a number")
    return float(value)


def _strings(table: dict, key: str, where: str) -> list[str]:
    value = table.get(key, [])
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise _fail(f"{where}{key}", "a list of strings")
    return list(value)


def _table(table: dict, key: str, where: str) -> dict:
    value = table.get(key, {})
    if not isinstance(value, dict):
        raise _fail(f"{where}{key}", "a table")
    return value


def _tables(table: dict, key: str, where: str) -> list[dict]:
    value = table.get(key, [])
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise _fail(f"{where}{key}", "an array of tables")
    return value


def _int_map(table: dict, where: str) -> dict[str, int]:
    result = {}
    for key, value in table.items():
        if isinstance(value, bool) or not isinstance(value, int):
            raise _fail(f"{where}{key}", "an integer")
        result[key] = value
    return result


def _nested(table: dict, key: str, convert) -> dict:
    result = {}
    for outer, inner in _table(table, key, "").items():
        if not isinstance(inner, dict):
            raise _fail(f"{key}.{outer}", "a table")
        result[outer] = {
            name: convert(value, f"{key}.{outer}.{name}") for name, value in inner.items()
        }
    return result


def _as_str(value, where: str) -> str:
    if not isinstance(value, str):
        raise _fail(where, "a string")
    return value


def _as_int(value, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise _fail(where, "an integer")
    return value


def _decode_endpoint(item: dict) -> ProviderEndpointConfig:
    where = "provider_endpoints."
    periods = item.get("periods", item.get("Periods", {}))
    if not isinstance(periods, dict):
        raise _fail(f"{where}periods", "a table")
    return ProviderEndpointConfig(
        name=_string(item, "name", where),
        urls=_strings(item, "urls", where),
        url_set=_string(item, "url_set", where),
        websocket=_string(item, "websocket", where),
        websocket_path=_string(item, "websocket_path", where),
        poll_interval=_string(item, "poll_interval", where),
        volume_blocks=_integer(item, "volume_blocks", where),
        volume_pause=_integer(item, "volume_pause", where),
        decimals=_int_map(_table(item, "decimals", where), f"{where}decimals."),
        periods=_int_map(periods, f"{where}periods."),
    )


def _decode_telemetry(table: dict) -> Telemetry:
    where = "telemetry."
    labels = table.get("global_labels", [])
    if not isinstance(labels, list) or not all(
        isinstance(label, list) and all(isinstance(part, str) for part in label)
        for label in labels
    ):
        raise _fail(f"{where}global_labels", "a list of string lists")
    return Telemetry(
        service_name=_string(table, "service_name", where),
        enabled=_boolean(table, "enabled", where),
        enable_hostname=_boolean(table, "enable_hostname", where),
        enable_hostname_label=_boolean(table, "enable_hostname_label", where),
        enable_service_label=_boolean(table, "enable_service_label", where),
        global_labels=[list(label) for label in labels],
        prometheus_retention=_integer(table, "prometheus_retention", where),
    )


def _decode_config(data: dict) -> Config:
    server = _table(data, "server", "")
    account = _table(data, "account", "")
    keyring = _table(data, "keyring", "")
    rpc = _table(data, "rpc", "")

    url_sets = {}
    for name, value in _table(data, "url_set", "").items():
        if not isinstance(value, dict):
            raise _fail(f"url_set.{name}", "a table")
        url_sets[name] = UrlSet(urls=_strings(value, "urls", f"url_set.{name}."))

    gas_adjustment = data.get("gas_adjustment", 0.0)

    return Config(
        server=Server(
            listen_addr=_string(server, "listen_addr", "server."),
            write_timeout=_string(server, "write_timeout", "server."),
            read_timeout=_string(server, "read_timeout", "server."),
            verbose_cors=_boolean(server, "verbose_cors", "server."),
            allowed_origins=_strings(server, "allowed_origins", "server."),
        ),
        currency_pairs=[
            CurrencyPairConfig(
                base=_string(item, "base", "currency_pairs."),
                quote=_string(item, "quote", "currency_pairs."),
                providers=_strings(item, "providers", "currency_pairs."),
                derivative=_string(item, "derivative", "currency_pairs."),
                derivative_period=_string(item, "derivative_period", "currency_pairs."),
            )
            for item in _tables(data, "currency_pairs", "")
        ],
        deviations=[
            Deviation(
                base=_string(item, "base", "deviation_thresholds."),
                threshold=_string(item, "threshold", "deviation_thresholds."),
            )
            for item in _tables(data, "deviation_thresholds", "")
        ],
        provider_min_overrides=[
            ProviderMinOverride(
                denoms=_strings(item, "denoms", "provider_min_overrides."),
                providers=_integer(
                    item, "providers", "provider_min_overrides.", unsigned=True
                ),
            )
            for item in _tables(data, "provider_min_overrides", "")
        ],
        provider_weights=_nested(data, "provider_weight", _number),
        account=Account(
            chain_id=_string(account, "chain_id", "account."),
            address=_string(account, "address", "account."),
            validator=_string(account, "validator", "account."),
            fee_granter=_string(account, "fee_granter", "account."),
            prefix=_string(account, "prefix", "account."),
        ),
        keyring=Keyring(
            backend=_string(keyring, "backend", "keyring."),
            dir=_string(keyring, "dir", "keyring."),
        ),
        rpc=RPC(
            tmrpc_endpoint=_string(rpc, "tmrpc_endpoint", "rpc."),
            grpc_endpoint=_string(rpc, "grpc_endpoint", "rpc."),
            rpc_timeout=_string(rpc, "rpc_timeout", "rpc."),
        ),
        telemetry=_decode_telemetry(_table(data, "telemetry", "")),
        gas_adjustment=_number(gas_adjustment, "gas_adjustment"),
        gas_prices=_string(data, "gas_prices", ""),
        provider_timeout=_string(data, "provider_timeout", ""),
        provider_endpoints=[
            _decode_endpoint(item) for item in _tables(data, "provider_endpoints", "")
        ],
        enable_server=_boolean(data, "enable_server", ""),
        enable_voter=_boolean(data, "enable_voter", ""),
        healthchecks=[
            Healthcheck(
                url=_string(item, "url", "healthchecks."),
                timeout=_string(item, "timeout", "healthchecks."),
            )
            for item in _tables(data, "healthchecks", "")
        ],
        height_poll_interval=_string(data, "height_poll_interval", ""),
        history_db=_string(data, "history_db", ""),
        contract_addresses=_nested(data, "contract_addresses", _as_str),
        decimals=_nested(data, "decimals", _as_int),
        periods=_nested(data, "periods", _as_int),
        url_sets=url_sets,
        bypass_oracle_params=_boolean(data, "bypass_oracle_params", ""),
    )


def _apply_defaults(cfg: Config) -> None:
    if not cfg.server.listen_addr:
        cfg.server.listen_addr = DEFAULT_LISTEN_ADDR
    if not cfg.server.write_timeout:
        cfg.server.write_timeout = format_duration(DEFAULT_SRV_WRITE_TIMEOUT)
    if not cfg.server.read_timeout:
        cfg.server.read_timeout = format_duration(DEFAULT_SRV_READ_TIMEOUT)
    if not cfg.provider_timeout:
        cfg.provider_timeout = format_duration(DEFAULT_PROVIDER_TIMEOUT)
    if not cfg.height_poll_interval:
        cfg.height_poll_interval = format_duration(DEFAULT_HEIGHT_POLL_INTERVAL)
    if not cfg.history_db:
        cfg.history_db = DEFAULT_HISTORY_DB


def _check_pairs(cfg: Config) -> None:
    derivative_denoms: set[str] = set()
    for pair in cfg.currency_pairs:
        if pair.derivative:
            derivative_denoms.add(pair.base + pair.quote)
            if pair.derivative not in SUPPORTED_DERIVATIVES:
                raise ConfigError(f"unsupported derivative: {pair.derivative}")
            if pair.derivative_period:
                try:
                    parse_duration(pair.derivative_period)
                except ValueError as err:
                    raise ConfigError(str(err)) from err
            else:
                pair.derivative_period = format_duration(DEFAULT_DERIVATIVE_PERIOD)
        elif pair.base in derivative_denoms:
            raise ConfigError(
                f"cannot combine derivative and nonderivative pairs for {pair.base}"
            )
        for name in pair.providers:
            if name not in SUPPORTED_PROVIDERS:
                raise ConfigError(f"unsupported provider: {name}")


def parse_config(config_path: str) -> Config:
    """Read, default and validate the TOML configuration at ``config_path``."""
    if not config_path:
        raise ConfigError("empty configuration file path")

    try:
        with open(config_path, encoding="utf-8") as handle:
            text = handle.read()
    except OSError as err:
        raise ConfigError(f"failed to read config: {err}") from err

    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as err:
        raise ConfigError(f"failed to decode config: {err}") from err

    cfg = _decode_config(data)
    _apply_defaults(cfg)
    _check_pairs(cfg)

    for deviation in cfg.deviations:
        try:
            threshold = to_dec(deviation.threshold)
        except (ValueError, TypeError) as err:
            raise ConfigError(f"deviation thresholds must be numeric: {err}") from err
        if threshold > MAX_DEVIATION_THRESHOLD:
            raise ConfigError("deviation thresholds must not exceed 3.0")

    for override in cfg.provider_min_overrides:
        if override.providers < 1:
            raise ConfigError("minimum providers must be greater than 0")

    cfg.validate()
    return cfg