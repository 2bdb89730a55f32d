"""Error taxonomy for price resolution, storage and oracle access."""

from typing import Optional


class PricingError(Exception):
    """Base class for all pricing errors."""
    pass


class TransientNetworkError(PricingError):
    """Retryable failure talking to an oracle gateway or HTTP source."""
    pass


class InvalidResponse(PricingError):
    """A response could not be decoded into a price."""
    pass


class AssetNotFound(PricingError):
    """The source does not quote the requested asset. Never retried."""
    pass


class PriceUnavailable(PricingError):
    """Every configured source failed for an asset/quote pair."""

    def __init__(self, asset: str, quote: str, network: Optional[str] = None,
                 reason: Optional[str] = None):
        self.asset = asset
        self.quote = quote
        self.network = network
        self.reason = reason

        message = f"No price available for {asset}/{quote}"
        if network:
            message += f" on {network}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class StorageError(PricingError):
    """Persistent key-value store failure."""
    pass


class StorageQuotaExceeded(StorageError):
    """The persistent store is at capacity. Callers log and continue."""
    pass


class CacheUnavailable(PricingError):
    """The cache subsystem cannot be used at all."""
    pass
