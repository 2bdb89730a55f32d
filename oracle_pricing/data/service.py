"""Pricing service facade wiring caches, oracles and history per network."""

import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union
import logging

from ..core.config import ConfigError, NetworkSettings, PricingSettings
from .annotator import TransactionFiatAnnotator
from .api_client import BaseAPIClient, RateLimitConfig, RateLimiter
from .cache import CacheConfig, EnhancedCache
from .clients.kraken import KrakenOHLCClient
from .clients.soroban import SorobanGatewayReader
from .engine import PriceResolutionEngine
from .historical import HistoricalRateService, OHLCClient
from .models import FiatAnnotation, FiatSummary, NormalizedTransaction
from .oracle import ContractReader, OracleClient
from .storage import KeyValueStore, create_store

logger = logging.getLogger(__name__)

TransactionInput = Union[NormalizedTransaction, Mapping[str, Any]]


@dataclass
class NetworkPricing:
    """Everything that prices assets on one network. Nothing here is shared across networks."""

    name: str
    rate_limiter: RateLimiter
    oracle_client: OracleClient
    price_cache: EnhancedCache[float]
    fx_cache: EnhancedCache[float]
    asset_list_cache: EnhancedCache[List[str]]
    engine: PriceResolutionEngine
    annotator: TransactionFiatAnnotator


class PricingService:
    """Entry point for price lookups, historical rates and transaction valuation."""

    def __init__(self, networks: Dict[str, NetworkPricing], historical: HistoricalRateService,
                 store: KeyValueStore, default_network: str = "mainnet",
                 clients: Optional[List[BaseAPIClient]] = None):
        """Initialize pricing service.

        Args:
            networks: Per-network pricing bundles
            historical: Historical rate table, shared by all networks
            store: Persistent store behind every cache
            default_network: Network used when a call names none
            clients: HTTP clients owned by the service, stopped on shutdown
        """
        self.networks = networks
        self.historical = historical
        self.store = store
        self.default_network = default_network
        self.clients = clients or []
        self._initialized = False

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()

    async def initialize(self):
        """Open the store and start HTTP clients.

        Raises:
            CacheUnavailable: if the persistent store cannot be opened
        """
        if self._initialized:
            return

        await self.store.initialize()

        for client in self.clients:
            await client.start()

        self._initialized = True
        logger.info(f"Pricing service initialized for networks: {', '.join(self.networks)}")

    async def shutdown(self):
        """Stop HTTP clients and close the store."""
        if not self._initialized:
            return

        for client in self.clients:
            await client.stop()

        await self.store.close()

        self._initialized = False
        logger.info("Pricing service shutdown")

    def network(self, name: Optional[str] = None) -> NetworkPricing:
        name = name or self.default_network
        try:
            return self.networks[name]
        except KeyError:
            raise ConfigError(f"Unknown network '{name}'")

    async def get_price(self, asset_code: str, quote_currency: str = "USD",
                        network: Optional[str] = None) -> float:
        """Get the current price of an asset.

        Raises:
            PriceUnavailable: if no source could price the asset
        """
        return await self.network(network).engine.get_price(asset_code, quote_currency)

    async def get_prices(self, asset_codes: Sequence[str], quote_currency: str = "USD",
                         network: Optional[str] = None) -> Dict[str, float]:
        """Get current prices; unresolved assets map to 0.0."""
        return await self.network(network).engine.get_prices(list(asset_codes), quote_currency)

    async def get_fx_multiplier(self, from_currency: str, to_currency: str,
                                network: Optional[str] = None) -> float:
        return await self.network(network).engine.get_fx_multiplier(from_currency, to_currency)

    async def get_rate_for_date(self, when: Union[date, datetime]) -> float:
        """Historical rate of the configured pair for a day; 0.0 if unknown."""
        return await self.historical.get_rate_for_date(when)

    async def get_current_rate(self) -> float:
        return await self.historical.get_current_rate()

    async def annotate_fiat_values(self, transactions: Sequence[TransactionInput],
                                   quote_currency: str = "USD",
                                   network: Optional[str] = None) -> FiatAnnotation:
        """Value each transaction in quote_currency.

        Unresolved transactions, and malformed items that carry an id, map to 0.0.
        """
        normalized, rejected = _normalize_transactions(transactions)
        annotations = await self.network(network).annotator.annotate(normalized, quote_currency)
        for tx_id in rejected:
            annotations.setdefault(tx_id, 0.0)
        return annotations

    def summarize(self, transactions: Sequence[TransactionInput], annotations: FiatAnnotation,
                  quote_currency: str = "USD", network: Optional[str] = None) -> FiatSummary:
        normalized, _ = _normalize_transactions(transactions)
        return self.network(network).annotator.summarize(normalized, annotations, quote_currency)

    async def clear_price_cache(self, network: Optional[str] = None) -> int:
        """Clear cached prices for one network, or all networks when None.

        Returns:
            Number of entries cleared
        """
        targets = [self.network(network)] if network else list(self.networks.values())
        cleared = 0
        for bundle in targets:
            cleared += await bundle.engine.clear_cache()
        return cleared

    async def get_cache_stats(self, network: Optional[str] = None) -> Dict[str, Any]:
        """Price cache statistics for one network, or keyed by network when None."""
        if network:
            return (await self.network(network).engine.cache_stats()).to_dict()

        return {
            name: (await bundle.engine.cache_stats()).to_dict()
            for name, bundle in self.networks.items()
        }


def _normalize_transactions(
    transactions: Sequence[TransactionInput]
) -> Tuple[List[NormalizedTransaction], List[str]]:
    """Normalize inputs, setting malformed items aside.

    Returns:
        The valid transactions, and the ids of malformed items that had one
    """
    normalized = []
    rejected = []

    for tx in transactions:
        if isinstance(tx, NormalizedTransaction):
            normalized.append(tx)
            continue
        try:
            normalized.append(NormalizedTransaction.from_dict(dict(tx)))
        except (TypeError, ValueError) as e:
            tx_id = tx.get('id') if isinstance(tx, Mapping) else None
            logger.warning(f"Skipping malformed transaction {tx_id}: {e}")
            if tx_id is not None:
                rejected.append(str(tx_id))

    return normalized, rejected


def build_network_pricing(network: NetworkSettings, settings: PricingSettings,
                          store: KeyValueStore, reader: ContractReader,
                          historical: HistoricalRateService,
                          clock: Callable[[], float] = time.time) -> NetworkPricing:
    """Build the pricing bundle for one network."""
    rate_limiter = RateLimiter(RateLimitConfig(
        requests_per_window=settings.requests_per_window,
        window_seconds=settings.window_seconds
    ))

    name = network.name
    price_cache = EnhancedCache.from_config(
        CacheConfig(f"prices:{name}", settings.price_ttl, settings.price_cache_entries), store, clock)
    fx_cache = EnhancedCache.from_config(
        CacheConfig(f"fx:{name}", settings.fx_ttl, settings.fx_cache_entries), store, clock)
    asset_list_cache = EnhancedCache.from_config(
        CacheConfig(f"assets:{name}", settings.asset_list_ttl, settings.asset_list_cache_entries),
        store, clock)

    oracle_client = OracleClient(
        reader,
        network.oracles,
        rate_limiter,
        network=name,
        max_attempts=settings.max_retries,
        retry_delay=settings.retry_delay,
        backoff_factor=settings.backoff_factor,
        asset_list_cache=asset_list_cache,
        asset_list_retry_after=settings.asset_list_retry_after,
        clock=clock
    )

    engine = PriceResolutionEngine(name, oracle_client, price_cache, fx_cache,
                                   native_asset=network.native_asset)

    return NetworkPricing(
        name=name,
        rate_limiter=rate_limiter,
        oracle_client=oracle_client,
        price_cache=price_cache,
        fx_cache=fx_cache,
        asset_list_cache=asset_list_cache,
        engine=engine,
        annotator=TransactionFiatAnnotator(engine, historical)
    )


def build_pricing_service(settings: PricingSettings, store: Optional[KeyValueStore] = None,
                          reader: Optional[Union[ContractReader, Mapping[str, ContractReader]]] = None,
                          ohlc_client: Optional[OHLCClient] = None,
                          clock: Callable[[], float] = time.time) -> PricingService:
    """Wire a PricingService from settings.

    Args:
        settings: Typed configuration
        store: Persistent store; built from settings when None
        reader: Contract reader for every network, or one per network name;
            gateway readers are built from settings when None
        ohlc_client: Daily candle source; a Kraken client when None
        clock: Wall-clock time source shared by caches and history

    Raises:
        ConfigError: if no networks are configured
    """
    if not settings.networks:
        raise ConfigError("No networks configured")

    clients: List[BaseAPIClient] = []

    if store is None:
        store = create_store(settings.storage_backend, settings.storage_path,
                             settings.storage_max_entries)

    if ohlc_client is None:
        ohlc_client = KrakenOHLCClient(
            pair_fallbacks=settings.historical_pair_fallbacks,
            requests_per_minute=settings.historical_requests_per_minute
        )
        clients.append(ohlc_client)

    historical = HistoricalRateService(
        store,
        ohlc_client,
        pair=settings.historical_pair,
        min_date=settings.historical_min_date,
        current_ttl=settings.historical_current_ttl,
        clock=clock
    )

    networks = {}
    for name, network in settings.networks.items():
        if isinstance(reader, Mapping):
            network_reader = reader[name]
        elif reader is not None:
            network_reader = reader
        else:
            # Throttled by the network's OracleClient limiter
            network_reader = SorobanGatewayReader(network.gateway_url, network=name)
            clients.append(network_reader)

        networks[name] = build_network_pricing(network, settings, store, network_reader,
                                               historical, clock)

    default_network = settings.default_network if settings.default_network in networks else next(iter(networks))

    return PricingService(networks, historical, store, default_network, clients)
