"""Day-keyed historical rate table with gap backfill."""

import asyncio
import json
import math
import time
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Tuple, Union
import logging

from ..core.exceptions import PricingError, StorageError
from .models import DatedRate
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"
DEFAULT_MIN_DATE = date(2017, 1, 1)
LOOKBACK_DAYS = 7


class OHLCClient(ABC):
    """Source of daily candles for a trading pair."""

    @abstractmethod
    async def fetch_daily_closes(self, pair: str, since: datetime) -> Sequence[Tuple[float, float]]:
        """Fetch daily closes from ``since`` onwards.

        Returns:
            (unix timestamp of the day's open, close) pairs in any order
        """
        pass


def _to_day(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


class HistoricalRateService:
    """Daily closing rates for one pair, persisted as a single versioned table.

    Closed days are never overwritten once recorded. Only today's row may be
    refreshed, and ``current_ttl`` only governs how often that happens.
    """

    def __init__(self, store: KeyValueStore, ohlc_client: OHLCClient, pair: str = "XLMUSD",
                 min_date: date = DEFAULT_MIN_DATE, current_ttl: float = 6 * 3600,
                 clock: Callable[[], float] = time.time):
        """Initialize the service.

        Args:
            store: Persistent store holding the table
            ohlc_client: Daily candle source
            pair: Pair symbol passed to the candle source
            min_date: Earliest day worth fetching
            current_ttl: Seconds before today's rate is refreshed
            clock: Wall-clock time source in seconds
        """
        self.store = store
        self.ohlc_client = ohlc_client
        self.pair = pair
        self.min_date = min_date
        self.current_ttl = current_ttl
        self._clock = clock

        self._rates: Dict[str, float] = {}
        self._last_updated: Optional[float] = None
        self._loaded = False
        self._lock = asyncio.Lock()
        self._fetch_count = 0

    @property
    def storage_key(self) -> str:
        return f"historical_rates:{self.pair}"

    @property
    def fetch_count(self) -> int:
        return self._fetch_count

    def today(self) -> date:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).date()

    async def prime_range(self, start: Union[date, datetime], end: Union[date, datetime]) -> int:
        """Make sure every day in [start, end] is recorded.

        Does a single bulk fetch starting at the earliest missing day.
        Failures are logged and absorbed.

        Returns:
            Number of rows added or updated
        """
        async with self._lock:
            await self._ensure_loaded()

            today = self.today()
            start_day = max(_to_day(start), self.min_date)
            end_day = min(_to_day(end), today)

            gap = self._earliest_gap(start_day, end_day)
            if gap is None:
                return 0

            return await self._fetch_and_merge(gap, today)

    async def get_rate_for_date(self, when: Union[date, datetime]) -> float:
        """Rate for a day, falling back to the nearest recorded day.

        Never raises. Returns 0.0 when nothing is recorded at all.
        """
        day = _to_day(when)
        key = day.isoformat()

        async with self._lock:
            await self._ensure_loaded()
            rate = self._rates.get(key)
        if rate:
            return rate

        await self.prime_range(day - timedelta(days=LOOKBACK_DAYS), self.today())

        async with self._lock:
            rate = self._rates.get(key)
            if rate:
                return rate
            nearest = self._nearest(day)

        if nearest is None:
            logger.warning(f"No {self.pair} rates recorded, cannot value {key}")
            return 0.0

        logger.debug(f"No {self.pair} rate for {key}, using {nearest.date_key}")
        return nearest.rate

    async def get_current_rate(self) -> float:
        """Today's rate, refreshed once it is older than ``current_ttl``.

        Falls back to the most recent recorded day. Returns 0.0 when nothing
        is recorded.
        """
        async with self._lock:
            await self._ensure_loaded()
            today = self.today()

            rate = self._rates.get(today.isoformat())
            if rate and self._is_current():
                return rate

            window_start = max(today - timedelta(days=LOOKBACK_DAYS), self.min_date)
            gap = self._earliest_gap(window_start, today)
            await self._fetch_and_merge(gap if gap is not None else today, today)

            rate = self._rates.get(today.isoformat())
            if rate:
                return rate

            latest = self._latest()
            return latest.rate if latest else 0.0

    async def clear(self):
        """Drop every recorded rate, in memory and in the store."""
        async with self._lock:
            self._rates = {}
            self._last_updated = None
            self._loaded = True
            try:
                await self.store.remove(self.storage_key)
            except StorageError as e:
                logger.warning(f"Failed to remove {self.storage_key}: {e}")
        logger.info(f"Cleared {self.pair} historical rates")

    async def stats(self) -> Dict[str, Any]:
        async with self._lock:
            await self._ensure_loaded()
            dates = sorted(self._rates)
            return {
                'pair': self.pair,
                'entries': len(dates),
                'oldest_date': dates[0] if dates else None,
                'newest_date': dates[-1] if dates else None,
                'last_updated': self._last_updated,
            }

    def _is_current(self) -> bool:
        return self._last_updated is not None and self._clock() - self._last_updated <= self.current_ttl

    def _earliest_gap(self, start: date, end: date) -> Optional[date]:
        day = start
        while day <= end:
            if not self._rates.get(day.isoformat()):
                return day
            day += timedelta(days=1)
        return None

    def _nearest(self, day: date) -> Optional[DatedRate]:
        # Ascending scan with a strict comparison: an equidistant tie keeps the earlier day
        best: Optional[DatedRate] = None
        best_distance = None
        for key in sorted(self._rates):
            candidate = date.fromisoformat(key)
            distance = abs((candidate - day).days)
            if best_distance is None or distance < best_distance:
                best = DatedRate(candidate, self._rates[key])
                best_distance = distance
        return best

    def _latest(self) -> Optional[DatedRate]:
        if not self._rates:
            return None
        key = max(self._rates)
        return DatedRate(date.fromisoformat(key), self._rates[key])

    async def _fetch_and_merge(self, since: date, today: date) -> int:
        since_dt = datetime(since.year, since.month, since.day, tzinfo=timezone.utc)
        try:
            rows = await self.ohlc_client.fetch_daily_closes(self.pair, since_dt)
        except PricingError as e:
            logger.warning(f"Failed to fetch {self.pair} closes since {since}: {e}")
            return 0

        self._fetch_count += 1
        changed = self._merge(rows, today)
        self._last_updated = self._clock()
        await self._persist()

        logger.info(f"Merged {changed} {self.pair} daily closes since {since}")
        return changed

    def _merge(self, rows: Iterable[Tuple[float, float]], today: date) -> int:
        changed = 0
        for timestamp, close in rows:
            try:
                day = datetime.fromtimestamp(float(timestamp), tz=timezone.utc).date()
                close = float(close)
            except (TypeError, ValueError, OverflowError, OSError):
                logger.debug(f"Skipping malformed {self.pair} row ({timestamp}, {close})")
                continue

            if not math.isfinite(close) or close <= 0:
                continue
            if day < self.min_date or day > today:
                continue

            key = day.isoformat()
            existing = self._rates.get(key)
            if existing is not None and (day < today or existing == close):
                continue

            self._rates[key] = close
            changed += 1
        return changed

    async def _ensure_loaded(self):
        if self._loaded:
            return
        self._loaded = True

        try:
            raw = await self.store.get(self.storage_key)
        except StorageError as e:
            logger.warning(f"Failed to load {self.storage_key}: {e}")
            return

        if raw is None:
            return

        try:
            payload = json.loads(raw)
            version = payload.get('version')
        except (ValueError, AttributeError) as e:
            logger.warning(f"Discarding unreadable {self.storage_key}: {e}")
            await self._purge()
            return

        if version != SCHEMA_VERSION:
            logger.info(f"Purging {self.storage_key}: schema {version!r} != {SCHEMA_VERSION!r}")
            await self._purge()
            return

        rates = {}
        for key, value in (payload.get('data') or {}).items():
            try:
                date.fromisoformat(key)
                value = float(value)
            except (TypeError, ValueError):
                continue
            if math.isfinite(value) and value > 0:
                rates[key] = value

        self._rates = rates
        self._last_updated = payload.get('last_updated')
        logger.debug(f"Loaded {len(rates)} {self.pair} rates")

    async def _purge(self):
        try:
            await self.store.remove(self.storage_key)
        except StorageError as e:
            logger.warning(f"Failed to purge {self.storage_key}: {e}")

    async def _persist(self) -> bool:
        payload = json.dumps({
            'version': SCHEMA_VERSION,
            'data': self._rates,
            'last_updated': self._last_updated,
        })
        try:
            await self.store.set(self.storage_key, payload)
            return True
        except StorageError as e:
            logger.warning(f"Failed to persist {self.storage_key}, keeping rates in memory: {e}")
            return False
