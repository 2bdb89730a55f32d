"""
Pytest configuration and shared fixtures for the test suite.

Provides fake contract readers, a fake OHLC source, a controllable clock and
in-memory stores so pricing components can be exercised without a network.
"""

import asyncio
import tempfile
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest
from click.testing import CliRunner

from oracle_pricing.core.config import NetworkSettings, PricingSettings
from oracle_pricing.core.exceptions import TransientNetworkError
from oracle_pricing.data.api_client import RateLimitConfig, RateLimiter
from oracle_pricing.data.cache import EnhancedCache
from oracle_pricing.data.engine import PriceResolutionEngine
from oracle_pricing.data.historical import HistoricalRateService, OHLCClient
from oracle_pricing.data.models import OracleConfig, OracleSource
from oracle_pricing.data.oracle import ContractReader, OracleClient
from oracle_pricing.data.storage import MemoryKeyValueStore

CEX_CONTRACT = "CEXDEX_CONTRACT"
NATIVE_CONTRACT = "NATIVE_CONTRACT"
FOREX_CONTRACT = "FOREX_CONTRACT"

DECIMALS = 14

# 2024-03-01 12:00 UTC
START_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc).timestamp()


def scaled(price: float) -> int:
    """Encode a price the way the oracle contracts return it."""
    return int(round(price * 10 ** DECIMALS))


def day_timestamp(day: date) -> float:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp()


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeSleep:
    """Sleep replacement that advances a FakeClock instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: List[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)
        self.clock.advance(seconds)
        await asyncio.sleep(0)


class FakeContractReader(ContractReader):
    """In-memory oracle contracts.

    ``prices`` maps contract -> {asset code: raw result} for ``lastprice`` and
    contract -> {(asset code, quote code): raw result} for ``x_last_price``.
    ``failures`` maps (contract, key) -> exceptions raised before answering;
    the key for ``assets`` calls is the string "assets".
    """

    def __init__(self, prices: Optional[Dict[str, Dict[Any, Any]]] = None,
                 assets: Optional[Dict[str, List[str]]] = None):
        self.prices = prices or {}
        self.assets = assets or {}
        self.failures: Dict[Tuple[str, Any], List[Exception]] = {}
        self.calls: List[Tuple[str, str, list]] = []

    def fail(self, contract: str, key: Any, *errors: Exception):
        self.failures.setdefault((contract, key), []).extend(errors)

    def calls_for(self, method: str, contract: Optional[str] = None) -> List[Tuple[str, str, list]]:
        return [
            call for call in self.calls
            if call[1] == method and (contract is None or call[0] == contract)
        ]

    @property
    def price_calls(self) -> List[Tuple[str, str, list]]:
        return [call for call in self.calls if call[1] in ("lastprice", "x_last_price")]

    async def simulate_read_only_call(self, contract_address: str, method: str, args: list) -> Any:
        self.calls.append((contract_address, method, args))
        # Yield so concurrent callers interleave like real network calls
        await asyncio.sleep(0)

        if method == "assets":
            key = "assets"
        elif method == "lastprice":
            key = args[0]["code"]
        else:
            key = (args[0]["code"], args[1]["code"])

        pending = self.failures.get((contract_address, key))
        if pending:
            raise pending.pop(0)

        if method == "assets":
            return self.assets.get(contract_address)
        return self.prices.get(contract_address, {}).get(key)


class FakeOHLCClient(OHLCClient):
    """Daily candles served from a {date: close} mapping."""

    def __init__(self, closes: Optional[Dict[date, float]] = None):
        self.closes = dict(closes or {})
        self.calls: List[Tuple[str, datetime]] = []
        self.error: Optional[Exception] = None

    async def fetch_daily_closes(self, pair: str, since: datetime):
        self.calls.append((pair, since))
        if self.error is not None:
            raise self.error
        return [
            (day_timestamp(day), close)
            for day, close in sorted(self.closes.items())
            if day >= since.date()
        ]


def daily_closes(start: date, end: date, rate: float) -> Dict[date, float]:
    closes = {}
    day = start
    while day <= end:
        closes[day] = rate
        day += timedelta(days=1)
    return closes


@pytest.fixture
def cli_runner():
    """Create a Click CLI runner for testing commands."""
    return CliRunner()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep(clock):
    return FakeSleep(clock)


@pytest.fixture
def store():
    return MemoryKeyValueStore(max_entries=1000)


@pytest.fixture
def oracle_configs():
    return {
        OracleSource.CEX_DEX: OracleConfig(OracleSource.CEX_DEX, CEX_CONTRACT),
        OracleSource.VENUE_NATIVE: OracleConfig(OracleSource.VENUE_NATIVE, NATIVE_CONTRACT),
        OracleSource.FOREX: OracleConfig(OracleSource.FOREX, FOREX_CONTRACT),
    }


@pytest.fixture
def reader():
    """Reader quoting XLM on both asset oracles plus a few external assets and currencies."""
    return FakeContractReader(prices={
        NATIVE_CONTRACT: {"XLM": scaled(0.12)},
        CEX_CONTRACT: {
            "XLM": scaled(0.11),
            "USDC": scaled(1.0),
            "BTC": scaled(60000),
            ("BTC", "XLM"): scaled(500000),
        },
        FOREX_CONTRACT: {
            "EUR": scaled(1.25),
            "GBP": scaled(1.5),
            "JPY": scaled(0.0075),
        },
    })


@pytest.fixture
def rate_limiter():
    return RateLimiter(RateLimitConfig(requests_per_window=50, window_seconds=10))


@pytest.fixture
def asset_list_cache(store, clock):
    return EnhancedCache("assets:mainnet", 86400, store, 10, clock)


@pytest.fixture
def oracle_client(reader, oracle_configs, rate_limiter, asset_list_cache, fake_sleep, clock):
    return OracleClient(
        reader,
        oracle_configs,
        rate_limiter,
        network="mainnet",
        max_attempts=3,
        retry_delay=0.5,
        backoff_factor=2.0,
        asset_list_cache=asset_list_cache,
        sleep=fake_sleep,
        clock=clock
    )


@pytest.fixture
def price_cache(store, clock):
    return EnhancedCache("prices:mainnet", 300, store, 500, clock)


@pytest.fixture
def fx_cache(store, clock):
    return EnhancedCache("fx:mainnet", 300, store, 100, clock)


@pytest.fixture
def engine(oracle_client, price_cache, fx_cache):
    return PriceResolutionEngine("mainnet", oracle_client, price_cache, fx_cache, native_asset="XLM")


@pytest.fixture
def ohlc_client():
    return FakeOHLCClient()


@pytest.fixture
def historical(store, ohlc_client, clock):
    return HistoricalRateService(store, ohlc_client, pair="XLMUSD", clock=clock)


@pytest.fixture
def pricing_settings(oracle_configs):
    networks = {
        name: NetworkSettings(name=name, gateway_url=f"http://gateway.test/{name}",
                              native_asset="XLM", oracles=dict(oracle_configs))
        for name in ("mainnet", "testnet")
    }
    return PricingSettings(networks=networks, storage_backend="memory")
