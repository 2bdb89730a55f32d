"""Data models for oracle pricing and transaction valuation."""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar, Union

T = TypeVar('T')


class OracleSource(Enum):
    """On-chain oracle feeds."""
    CEX_DEX = "cex_dex"
    VENUE_NATIVE = "venue_native"
    FOREX = "forex"


@dataclass(frozen=True)
class OracleConfig:
    """Oracle contract binding."""

    source: OracleSource
    contract: str
    decimals: int = 14
    base: str = "USD"  # Reporting currency of every price on this feed


@dataclass(frozen=True)
class AssetDescriptor:
    """Asset identity as understood by the oracle contracts."""

    code: str
    issuer: Optional[str] = None

    def to_arg(self) -> Dict[str, str]:
        """Render as a contract call argument."""
        if self.issuer:
            return {"type": "stellar", "code": self.code, "issuer": self.issuer}
        return {"type": "other", "code": self.code}

    @property
    def key(self) -> str:
        return f"{self.code}:{self.issuer}" if self.issuer else self.code


@dataclass(frozen=True)
class PriceQuoteKey:
    """Addresses a cached price. Networks never share keys."""

    network: str
    base_asset: str
    quote_currency: str

    def __str__(self) -> str:
        return f"{self.network}:{self.base_asset.upper()}:{self.quote_currency.upper()}"


@dataclass
class CacheEntry(Generic[T]):
    """Cached value with its write time and hit counter."""

    value: T
    timestamp: float
    hits: int = 0

    def is_fresh(self, now: float, ttl: float) -> bool:
        return now - self.timestamp <= ttl

    def access(self):
        """Mark cache entry as accessed."""
        self.hits += 1

    def to_dict(self) -> Dict[str, Any]:
        return {'value': self.value, 'timestamp': self.timestamp, 'hits': self.hits}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CacheEntry':
        return cls(
            value=data['value'],
            timestamp=float(data['timestamp']),
            hits=int(data.get('hits', 0))
        )


@dataclass
class CacheStats:
    """Snapshot of cache occupancy and effectiveness."""

    memory_entries: int
    storage_entries: int
    hit_rate: float
    oldest_entry: Optional[float] = None
    newest_entry: Optional[float] = None
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'memory_entries': self.memory_entries,
            'storage_entries': self.storage_entries,
            'hit_rate': self.hit_rate,
            'oldest_entry': self.oldest_entry,
            'newest_entry': self.newest_entry,
            'hits': self.hits,
            'misses': self.misses,
            'evictions': self.evictions,
        }


@dataclass(frozen=True)
class DatedRate:
    """Daily closing rate."""

    date_key: date
    rate: float

    def __post_init__(self):
        if self.rate <= 0:
            raise ValueError(f"Rate for {self.date_key} must be positive, got {self.rate}")


@dataclass(frozen=True)
class Decoded:
    """Successful decode of an oracle result."""
    value: float


@dataclass(frozen=True)
class DecodeFailure:
    """Oracle result that could not be decoded."""
    reason: str


DecodeResult = Union[Decoded, DecodeFailure]


class TransactionDirection(Enum):
    """Direction of value relative to the account."""
    IN = "in"
    OUT = "out"


@dataclass
class NormalizedTransaction:
    """Account transaction as supplied by the history loader."""

    id: str
    created_at: datetime
    asset_type: str = "native"
    direction: TransactionDirection = TransactionDirection.IN
    amount: Optional[float] = None
    asset_code: Optional[str] = None
    asset_issuer: Optional[str] = None
    hash: Optional[str] = None
    category: str = "transfer"
    successful: bool = True

    def __post_init__(self):
        """Validate and normalize data after initialization."""
        if isinstance(self.direction, str):
            self.direction = TransactionDirection(self.direction)

        if not isinstance(self.created_at, datetime):
            raise ValueError(f"Transaction {self.id} has no created_at timestamp")

        if self.created_at.tzinfo is None:
            self.created_at = self.created_at.replace(tzinfo=timezone.utc)

        if self.amount is not None:
            self.amount = float(self.amount)

    @property
    def is_native(self) -> bool:
        return self.asset_type == "native"

    @property
    def asset_key(self) -> str:
        """Identity used to share a price across transactions of one asset."""
        return f"{self.asset_code}:{self.asset_issuer}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NormalizedTransaction':
        """Create instance from a JSON-style dictionary."""
        if data.get('id') is None:
            raise ValueError("Transaction has no id")

        created_at = data.get('created_at') or data.get('createdAt')
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at.replace('Z', '+00:00'))
        elif isinstance(created_at, (int, float)):
            created_at = datetime.fromtimestamp(created_at, tz=timezone.utc)

        return cls(
            id=str(data['id']),
            created_at=created_at,
            asset_type=data.get('asset_type', data.get('assetType', 'native')),
            direction=data.get('direction', 'in'),
            amount=data.get('amount'),
            asset_code=data.get('asset_code', data.get('assetCode')),
            asset_issuer=data.get('asset_issuer', data.get('assetIssuer')),
            hash=data.get('hash'),
            category=data.get('category', 'transfer'),
            successful=data.get('successful', True)
        )


@dataclass
class FiatSummary:
    """Totals over an annotated transaction batch."""

    total: int = 0
    total_in: float = 0.0
    total_out: float = 0.0
    total_fiat_in: float = 0.0
    total_fiat_out: float = 0.0
    quote_currency: str = "USD"
    unresolved: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'total_in': self.total_in,
            'total_out': self.total_out,
            'total_fiat_in': self.total_fiat_in,
            'total_fiat_out': self.total_fiat_out,
            'quote_currency': self.quote_currency,
            'unresolved': self.unresolved,
        }


FiatAnnotation = Dict[str, float]


@dataclass
class APIResponse:
    """Wrapper for HTTP responses with metadata."""

    data: Any
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    response_time: float = 0.0
    source: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_success(self) -> bool:
        """Check if response was successful."""
        return 200 <= self.status_code < 300

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500
