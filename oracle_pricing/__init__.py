"""
Oracle Pricing - multi-source on-chain price resolution.

Resolves asset prices from oracle contracts with fallback and FX conversion,
keeps a backfilled table of historical daily rates, and values transaction
histories in fiat currencies.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from oracle_pricing.data.service import PricingService, build_pricing_service
from oracle_pricing.core.config import ConfigManager, PricingSettings
from oracle_pricing.core.exceptions import PriceUnavailable, PricingError

__all__ = [
    "__version__",
    "__license__",
    "PricingService",
    "build_pricing_service",
    "ConfigManager",
    "PricingSettings",
    "PriceUnavailable",
    "PricingError",
]
