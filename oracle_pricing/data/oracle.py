"""Oracle contract access: read-only price calls, decoding and retries."""

import asyncio
import math
import time
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar, Union
import logging

from ..core.exceptions import AssetNotFound, InvalidResponse, TransientNetworkError
from .api_client import RateLimiter
from .cache import EnhancedCache, cache_key_for_assets
from .models import AssetDescriptor, Decoded, DecodeFailure, DecodeResult, OracleConfig, OracleSource

logger = logging.getLogger(__name__)

R = TypeVar('R')


class ContractReader(ABC):
    """Read-only smart-contract call transport."""

    @abstractmethod
    async def simulate_read_only_call(self, contract_address: str, method: str,
                                      args: List[Any]) -> Any:
        """Simulate a contract call and return its decoded native value.

        Returns:
            The decoded return value, or None when the contract returned nothing

        Raises:
            TransientNetworkError: transport failure worth retrying
            InvalidResponse: the simulation result was malformed
            AssetNotFound: the contract rejected the asset
        """
        pass


def decode_price(raw: Any, decimals: int) -> DecodeResult:
    """Decode a fixed-point oracle result into a float price.

    Accepts an integer, a numeric string, a mapping holding ``price`` or
    ``value``, or a sequence whose first element is the price.
    """
    if isinstance(raw, bool):
        return DecodeFailure("boolean is not a price")

    if isinstance(raw, dict):
        for field_name in ('price', 'value'):
            if field_name in raw:
                return decode_price(raw[field_name], decimals)
        return DecodeFailure(f"object without price field (keys: {sorted(raw)})")

    if isinstance(raw, (list, tuple)):
        if not raw:
            return DecodeFailure("empty sequence")
        return decode_price(raw[0], decimals)

    if isinstance(raw, float) and not math.isfinite(raw):
        return DecodeFailure(f"non-finite number {raw}")

    if isinstance(raw, (int, float, str)):
        try:
            scaled = Decimal(str(raw).strip())
        except InvalidOperation:
            return DecodeFailure(f"not a number: {raw!r}")
        if not scaled.is_finite():
            return DecodeFailure(f"non-finite number {raw!r}")
        return Decoded(float(scaled / (Decimal(10) ** decimals)))

    return DecodeFailure(f"unsupported result type {type(raw).__name__}")


class OracleClient:
    """Reads prices from the oracle contracts of one network."""

    def __init__(self, reader: ContractReader, oracles: Dict[OracleSource, OracleConfig],
                 rate_limiter: RateLimiter, network: str = "mainnet",
                 max_attempts: int = 3, retry_delay: float = 0.5, backoff_factor: float = 2.0,
                 asset_list_cache: Optional[EnhancedCache[List[str]]] = None,
                 asset_list_retry_after: float = 60.0,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 clock: Callable[[], float] = time.time):
        """Initialize oracle client.

        Args:
            reader: Contract call transport
            oracles: Contract binding per source
            rate_limiter: Limiter shared by every call on this network
            network: Network name, used for cache keys and logs
            max_attempts: Attempts per read before failing terminally
            retry_delay: Delay before the second attempt, in seconds
            backoff_factor: Multiplier applied to the delay per attempt
            asset_list_cache: Cache for the oracles' supported asset lists
            asset_list_retry_after: Seconds a failed asset list load is remembered
            sleep: Coroutine used for backoff delays
            clock: Wall-clock time source in seconds
        """
        self.reader = reader
        self.oracles = oracles
        self.rate_limiter = rate_limiter
        self.network = network
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.backoff_factor = backoff_factor
        self.asset_list_cache = asset_list_cache
        self.asset_list_retry_after = asset_list_retry_after
        self._sleep = sleep
        self._clock = clock
        self._call_count = 0
        self._asset_list_loads: Dict[OracleSource, asyncio.Task] = {}
        self._asset_list_failed_at: Dict[OracleSource, float] = {}

    @property
    def call_count(self) -> int:
        """Number of contract calls issued, retries included."""
        return self._call_count

    def forget_asset_list_failures(self):
        self._asset_list_failed_at.clear()

    def get_oracle(self, source: OracleSource) -> OracleConfig:
        try:
            return self.oracles[source]
        except KeyError:
            raise AssetNotFound(f"No {source.value} oracle configured on {self.network}")

    async def read_last_price(self, base: Union[str, AssetDescriptor], quote: str,
                              source: OracleSource) -> float:
        """Read the last price of base in quote from one oracle.

        Raises:
            AssetNotFound: the oracle does not quote the asset (terminal)
            TransientNetworkError: transport kept failing after all attempts
            InvalidResponse: the result kept failing to decode after all attempts
        """
        oracle = self.get_oracle(source)
        asset = base if isinstance(base, AssetDescriptor) else AssetDescriptor(base.upper())
        quote = quote.upper()

        if quote == oracle.base:
            method, args = "lastprice", [asset.to_arg()]
        else:
            method, args = "x_last_price", [asset.to_arg(), AssetDescriptor(quote).to_arg()]

        label = f"{asset.key}/{quote}"

        def parse(raw: Any) -> float:
            if raw is None:
                raise AssetNotFound(f"{label} not quoted by the {source.value} oracle")
            result = decode_price(raw, oracle.decimals)
            if isinstance(result, Decoded):
                if result.value <= 0:
                    raise AssetNotFound(f"{source.value} oracle has no price for {label}")
                return result.value
            raise InvalidResponse(f"Undecodable {source.value} price for {label}: {result.reason}")

        price = await self._call_with_retry(oracle, method, args, parse, label)
        logger.debug(f"{source.value} oracle on {self.network}: {label} = {price}")
        return price

    async def list_assets(self, source: OracleSource) -> List[str]:
        """Asset identifiers quoted by one oracle, cached for a day.

        Concurrent callers share one load per source.
        """
        cache_key = cache_key_for_assets(self.network, source)
        if self.asset_list_cache is not None:
            cached = await self.asset_list_cache.get(cache_key)
            if cached is not None:
                return cached

        task = self._asset_list_loads.get(source)
        if task is None:
            task = asyncio.ensure_future(self._load_asset_list(source, cache_key))
            self._asset_list_loads[source] = task

            def forget(done: asyncio.Task):
                if self._asset_list_loads.get(source) is done:
                    del self._asset_list_loads[source]

            task.add_done_callback(forget)

        return await asyncio.shield(task)

    async def supports(self, asset: Union[str, AssetDescriptor], source: OracleSource) -> Optional[bool]:
        """Whether the oracle lists the asset, or None if that cannot be determined.

        A failed list load is remembered for asset_list_retry_after seconds,
        during which the answer is None without another load.
        """
        asset = asset if isinstance(asset, AssetDescriptor) else AssetDescriptor(asset.upper())

        failed_at = self._asset_list_failed_at.get(source)
        if failed_at is not None and self._clock() - failed_at < self.asset_list_retry_after:
            return None

        try:
            listed = set(await self.list_assets(source))
        except (TransientNetworkError, InvalidResponse, AssetNotFound) as e:
            self._asset_list_failed_at[source] = self._clock()
            logger.info(f"Asset list for {source.value} on {self.network} unavailable: {e}")
            return None

        self._asset_list_failed_at.pop(source, None)
        return asset.code in listed or asset.key in listed

    async def _load_asset_list(self, source: OracleSource, cache_key: str) -> List[str]:
        oracle = self.get_oracle(source)

        def parse(raw: Any) -> List[str]:
            if raw is None:
                raise AssetNotFound(f"{source.value} oracle does not publish an asset list")
            if not isinstance(raw, (list, tuple)):
                raise InvalidResponse(f"Asset list from {source.value} is not a sequence")
            assets = []
            for item in raw:
                if isinstance(item, str):
                    assets.append(item)
                elif isinstance(item, dict) and 'code' in item:
                    code = str(item['code'])
                    assets.append(f"{code}:{item['issuer']}" if item.get('issuer') else code)
                else:
                    raise InvalidResponse(f"Unrecognised asset entry {item!r} from {source.value}")
            if not assets:
                raise InvalidResponse(f"Empty asset list from {source.value}")
            return assets

        assets = await self._call_with_retry(oracle, "assets", [], parse)

        if self.asset_list_cache is not None:
            await self.asset_list_cache.set(cache_key, assets)

        logger.info(f"Loaded {len(assets)} assets from {source.value} oracle on {self.network}")
        return assets

    async def _call_with_retry(self, oracle: OracleConfig, method: str, args: List[Any],
                               parse: Callable[[Any], R], label: Optional[str] = None) -> R:
        target = f" for {label}" if label else ""
        last_error: Optional[Exception] = None

        for attempt in range(self.max_attempts):
            await self.rate_limiter.wait_if_needed()
            self._call_count += 1
            try:
                raw = await self.reader.simulate_read_only_call(oracle.contract, method, args)
                return parse(raw)
            except (TransientNetworkError, InvalidResponse) as e:
                last_error = e

            logger.warning(
                f"{oracle.source.value} {method}{target} on {self.network} failed "
                f"(attempt {attempt + 1}/{self.max_attempts}): {last_error}"
            )

            if attempt < self.max_attempts - 1:
                await self._sleep(self.retry_delay * (self.backoff_factor ** attempt))

        raise last_error
