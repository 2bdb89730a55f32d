"""Multi-source price resolution with FX conversion and request coalescing."""

import asyncio
from typing import Awaitable, Callable, Dict, Iterable, List, Optional
import logging

from ..core.exceptions import PriceUnavailable, PricingError
from .cache import EnhancedCache, cache_key_for_fx, cache_key_for_price
from .currencies import FIAT_CURRENCIES
from .models import AssetDescriptor, CacheStats, OracleSource, PriceQuoteKey
from .oracle import OracleClient

logger = logging.getLogger(__name__)


class PriceResolutionEngine:
    """Resolves prices for one network.

    Identical concurrent requests share one in-flight task, so a burst of
    lookups for the same pair costs a single oracle read.
    """

    def __init__(self, network: str, oracle_client: OracleClient,
                 price_cache: EnhancedCache[float], fx_cache: EnhancedCache[float],
                 native_asset: str = "XLM", fiat_codes: Optional[Iterable[str]] = None):
        """Initialize the engine.

        Args:
            network: Network name; part of every cache key
            oracle_client: Oracle access for this network
            price_cache: Cache for resolved asset prices
            fx_cache: Cache for FX multipliers
            native_asset: Code of the network's venue-native asset
            fiat_codes: Currency codes treated as fiat
        """
        self.network = network
        self.oracle_client = oracle_client
        self.price_cache = price_cache
        self.fx_cache = fx_cache
        self.native_asset = native_asset.upper()
        self.fiat_codes = {c.upper() for c in (fiat_codes if fiat_codes is not None else FIAT_CURRENCIES)}

        self._in_flight: Dict[str, asyncio.Task] = {}

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def is_fiat(self, code: str) -> bool:
        return code.upper() in self.fiat_codes

    async def get_price(self, asset_code: str, quote_currency: str = "USD",
                        issuer: Optional[str] = None) -> float:
        """Get the current price of an asset.

        Args:
            asset_code: Asset code, e.g. XLM or USDC
            quote_currency: Currency to express the price in
            issuer: Issuer account for credit assets

        Returns:
            Price of one unit of the asset in the quote currency

        Raises:
            PriceUnavailable: if every source failed
        """
        asset = AssetDescriptor(asset_code.upper(), issuer)
        quote = quote_currency.upper()

        if asset.code == quote and not issuer:
            return 1.0

        cache_key = cache_key_for_price(PriceQuoteKey(self.network, asset.key, quote))

        cached = await self.price_cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Cache hit for {cache_key}")
            return cached

        return await self._coalesce(f"price:{cache_key}",
                                    lambda: self._resolve_price(asset, quote, cache_key))

    async def get_prices(self, asset_codes: List[str], quote_currency: str = "USD") -> Dict[str, float]:
        """Get prices for several assets concurrently.

        A failing asset maps to 0.0 without affecting the others.
        """
        async def price_or_zero(code: str) -> float:
            try:
                return await self.get_price(code, quote_currency)
            except PricingError as e:
                logger.warning(f"Price for {code} unavailable: {e}")
                return 0.0

        prices = await asyncio.gather(*(price_or_zero(code) for code in asset_codes))
        return dict(zip(asset_codes, prices))

    async def get_fx_multiplier(self, from_currency: str, to_currency: str) -> float:
        """Get the factor converting an amount in from_currency into to_currency.

        Raises:
            PriceUnavailable: if the FX oracle cannot price either currency
        """
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()

        if from_currency == to_currency:
            return 1.0

        cache_key = cache_key_for_fx(self.network, from_currency, to_currency)

        cached = await self.fx_cache.get(cache_key)
        if cached is not None:
            return cached

        return await self._coalesce(f"fx:{cache_key}",
                                    lambda: self._resolve_fx(from_currency, to_currency, cache_key))

    async def clear_cache(self) -> int:
        """Clear price, FX and asset list caches.

        Returns:
            Number of entries cleared
        """
        cleared = await self.price_cache.clear()
        cleared += await self.fx_cache.clear()
        if self.oracle_client.asset_list_cache is not None:
            cleared += await self.oracle_client.asset_list_cache.clear()
        self.oracle_client.forget_asset_list_failures()

        logger.info(f"Cleared {cleared} cached entries on {self.network}")
        return cleared

    async def cache_stats(self) -> CacheStats:
        return await self.price_cache.stats()

    async def _coalesce(self, key: str, factory: Callable[[], Awaitable[float]]) -> float:
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._in_flight[key] = task

            def forget(done: asyncio.Task):
                if self._in_flight.get(key) is done:
                    del self._in_flight[key]

            task.add_done_callback(forget)
        else:
            logger.debug(f"Joining in-flight request {key}")

        # Shielded so one cancelled waiter does not cancel the others
        return await asyncio.shield(task)

    async def _resolve_price(self, asset: AssetDescriptor, quote: str, cache_key: str) -> float:
        if self.is_fiat(asset.code) and self.is_fiat(quote) and not asset.issuer:
            try:
                price = await self.get_fx_multiplier(asset.code, quote)
            except PriceUnavailable as e:
                raise PriceUnavailable(asset.code, quote, self.network, e.reason) from e
        else:
            price = await self._resolve_from_sources(asset, quote)

        await self.price_cache.set(cache_key, price)
        return price

    def _sources_for(self, asset: AssetDescriptor) -> List[OracleSource]:
        if asset.code == self.native_asset and not asset.issuer:
            return [OracleSource.VENUE_NATIVE, OracleSource.CEX_DEX]
        return [OracleSource.CEX_DEX]

    async def _resolve_from_sources(self, asset: AssetDescriptor, quote: str) -> float:
        failures = []

        for source in self._sources_for(asset):
            oracle = self.oracle_client.oracles.get(source)
            if oracle is None:
                continue

            if await self.oracle_client.supports(asset, source) is False:
                failures.append(f"{source.value}: not listed")
                logger.debug(f"{asset.key} not listed by {source.value} oracle, skipping")
                continue

            try:
                if quote == oracle.base or not self.is_fiat(quote):
                    return await self.oracle_client.read_last_price(asset, quote, source)

                base_price = await self.oracle_client.read_last_price(asset, oracle.base, source)
                multiplier = await self.get_fx_multiplier(oracle.base, quote)
                return base_price * multiplier

            except PricingError as e:
                failures.append(f"{source.value}: {e}")
                logger.info(f"{source.value} could not price {asset.key}/{quote} on {self.network}: {e}")

        raise PriceUnavailable(asset.key, quote, self.network,
                               "; ".join(failures) or "no oracle configured")

    async def _usd_per(self, currency: str) -> float:
        forex = self.oracle_client.get_oracle(OracleSource.FOREX)
        if currency == forex.base:
            return 1.0
        return await self.oracle_client.read_last_price(currency, forex.base, OracleSource.FOREX)

    async def _resolve_fx(self, from_currency: str, to_currency: str, cache_key: str) -> float:
        try:
            from_rate = await self._usd_per(from_currency)
            to_rate = await self._usd_per(to_currency)
        except PricingError as e:
            raise PriceUnavailable(from_currency, to_currency, self.network, str(e)) from e

        multiplier = from_rate / to_rate
        await self.fx_cache.set(cache_key, multiplier)

        logger.debug(f"FX {from_currency}->{to_currency} on {self.network}: {multiplier}")
        return multiplier
