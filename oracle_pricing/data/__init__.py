"""Data layer for oracle pricing.

This module provides the data models, the persistent key-value stores and
the two-tier cache used by the price resolution engine.
"""

from .models import (
    AssetDescriptor,
    CacheEntry,
    CacheStats,
    DatedRate,
    NormalizedTransaction,
    OracleConfig,
    OracleSource,
    PriceQuoteKey
)

from .storage import KeyValueStore, MemoryKeyValueStore, SQLiteKeyValueStore
from .cache import EnhancedCache

__all__ = [
    'AssetDescriptor',
    'CacheEntry',
    'CacheStats',
    'DatedRate',
    'NormalizedTransaction',
    'OracleConfig',
    'OracleSource',
    'PriceQuoteKey',
    'KeyValueStore',
    'MemoryKeyValueStore',
    'SQLiteKeyValueStore',
    'EnhancedCache'
]
