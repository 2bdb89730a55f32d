"""Kraken public OHLC client for historical daily closes."""

from datetime import datetime
from typing import Any, List, Optional, Tuple
import logging

from ...core.exceptions import AssetNotFound, InvalidResponse, PricingError, TransientNetworkError
from ..api_client import APIClientConfig, BaseAPIClient, RateLimitConfig, RateLimiter
from ..historical import OHLCClient

logger = logging.getLogger(__name__)

KRAKEN_BASE_URL = "https://api.kraken.com/0/public"
DAILY_INTERVAL = 1440  # minutes


class KrakenOHLCClient(BaseAPIClient, OHLCClient):
    """Daily candles from Kraken, trying alternative pair symbols in order."""

    def __init__(self, pair_fallbacks: Optional[List[str]] = None, requests_per_minute: int = 20,
                 base_url: str = KRAKEN_BASE_URL, timeout: int = 30,
                 rate_limiter: Optional[RateLimiter] = None):
        """Initialize Kraken client.

        Args:
            pair_fallbacks: Symbols tried after the requested pair, e.g. XXLMZUSD
            requests_per_minute: Public API budget
            base_url: API root
            timeout: Request timeout in seconds
            rate_limiter: Shared limiter, or None to build one from the budget
        """
        config = APIClientConfig(
            base_url=base_url,
            timeout=timeout,
            max_retries=2,
            rate_limit=RateLimitConfig.per_minute(requests_per_minute),
            headers={
                "Accept": "application/json",
                "User-Agent": "oracle-pricing/0.1"
            }
        )
        super().__init__(config, "kraken", rate_limiter)
        self.pair_fallbacks = list(pair_fallbacks or [])

    def candidate_pairs(self, pair: str) -> List[str]:
        pairs = [pair]
        for fallback in self.pair_fallbacks:
            if fallback not in pairs:
                pairs.append(fallback)
        return pairs

    async def fetch_daily_closes(self, pair: str, since: datetime) -> List[Tuple[float, float]]:
        """Fetch daily closes for the first pair symbol Kraken recognises.

        Args:
            pair: Preferred pair symbol
            since: Earliest candle wanted

        Returns:
            (timestamp, close) rows

        Raises:
            PricingError: if every candidate symbol failed
        """
        last_error: Optional[PricingError] = None

        for candidate in self.candidate_pairs(pair):
            params = {
                "pair": candidate,
                "interval": DAILY_INTERVAL,
                "since": int(since.timestamp())
            }
            try:
                response = await self._make_request("GET", "OHLC", params=params)
                if not response.is_success:
                    raise InvalidResponse(f"Kraken returned HTTP {response.status_code} for {candidate}")
                rows = self._parse_rows(candidate, response.data)
            except (TransientNetworkError, InvalidResponse, AssetNotFound) as e:
                logger.warning(f"Kraken OHLC for {candidate} failed: {e}")
                last_error = e
                continue

            logger.debug(f"Fetched {len(rows)} daily closes for {candidate}")
            return rows

        raise last_error or AssetNotFound(f"No Kraken pair symbols for {pair}")

    def _parse_rows(self, pair: str, data: Any) -> List[Tuple[float, float]]:
        if not isinstance(data, dict):
            raise InvalidResponse(f"Unexpected Kraken payload for {pair}")

        errors = data.get('error') or []
        if errors:
            if any('Unknown asset pair' in str(err) for err in errors):
                raise AssetNotFound(f"Kraken does not list {pair}")
            raise InvalidResponse(f"Kraken error for {pair}: {', '.join(map(str, errors))}")

        result = data.get('result')
        if not isinstance(result, dict):
            raise InvalidResponse(f"Kraken payload for {pair} has no result")

        series_keys = [key for key in result if key != 'last']
        if not series_keys or not isinstance(result[series_keys[0]], list):
            raise InvalidResponse(f"Kraken payload for {pair} has no candles")

        rows = []
        # row: [time, open, high, low, close, vwap, volume, count]
        for row in result[series_keys[0]]:
            try:
                rows.append((float(row[0]), float(row[4])))
            except (IndexError, TypeError, ValueError):
                continue
        return rows
