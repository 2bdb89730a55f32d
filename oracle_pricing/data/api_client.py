"""Base HTTP client framework with rate limiting and retry handling."""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar
import logging

import aiohttp

from ..core.exceptions import TransientNetworkError
from .models import APIResponse

logger = logging.getLogger(__name__)

R = TypeVar('R')


@dataclass
class RateLimitConfig:
    """Sliding-window rate limiting configuration."""

    requests_per_window: int = 50
    window_seconds: float = 10.0
    backoff_factor: float = 1.5  # Exponential backoff multiplier

    @classmethod
    def per_minute(cls, requests: int, backoff_factor: float = 1.5) -> 'RateLimitConfig':
        return cls(requests_per_window=requests, window_seconds=60.0, backoff_factor=backoff_factor)


@dataclass
class APIClientConfig:
    """Configuration for HTTP clients."""

    base_url: str
    api_key: Optional[str] = None
    timeout: int = 30
    max_retries: int = 3
    retry_delay: float = 1.0
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    headers: Dict[str, str] = field(default_factory=dict)


class RateLimiter:
    """Sliding-window throttle that delays callers instead of rejecting them.

    Callers are admitted in arrival order: the lock is FIFO and the caller at
    the head of the queue holds it while it waits for a free slot.
    """

    def __init__(self, config: RateLimitConfig,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        """Initialize rate limiter.

        Args:
            config: Rate limiting configuration
            clock: Monotonic time source in seconds
            sleep: Coroutine used to wait
        """
        self.config = config
        self._clock = clock
        self._sleep = sleep
        self._request_times: Deque[float] = deque()
        self._lock = asyncio.Lock()
        self._total_waited = 0.0
        self._admitted = 0

    def _prune(self, now: float):
        window_start = now - self.config.window_seconds
        while self._request_times and self._request_times[0] <= window_start:
            self._request_times.popleft()

    async def wait_if_needed(self) -> float:
        """Wait until a request may be made, then take the slot.

        Returns:
            Time waited in seconds
        """
        async with self._lock:
            waited = 0.0
            now = self._clock()
            self._prune(now)

            while len(self._request_times) >= self.config.requests_per_window:
                oldest_request = self._request_times[0]
                wait_time = self.config.window_seconds - (now - oldest_request)
                if wait_time > 0:
                    logger.info(f"Rate limited, waiting {wait_time:.2f} seconds")
                    await self._sleep(wait_time)
                    waited += wait_time
                now = self._clock()
                self._prune(now)

            self._request_times.append(now)
            self._total_waited += waited
            self._admitted += 1
            return waited

    async def run(self, func: Callable[..., Awaitable[R]], *args, **kwargs) -> R:
        """Acquire a slot and then await func(*args, **kwargs)."""
        await self.wait_if_needed()
        return await func(*args, **kwargs)

    @property
    def in_window(self) -> int:
        """Number of admissions inside the current window."""
        self._prune(self._clock())
        return len(self._request_times)

    def get_stats(self) -> Dict[str, Any]:
        return {
            'requests_per_window': self.config.requests_per_window,
            'window_seconds': self.config.window_seconds,
            'admitted': self._admitted,
            'total_waited': round(self._total_waited, 3),
        }


class BaseAPIClient:
    """Base class for HTTP data sources."""

    def __init__(self, config: APIClientConfig, source_name: str,
                 rate_limiter: Optional[RateLimiter] = None):
        """Initialize API client.

        Args:
            config: API client configuration
            source_name: Identifier used in logs and responses
            rate_limiter: Shared limiter, or None to create one from config
        """
        self.config = config
        self.source_name = source_name
        self.rate_limiter: Optional[RateLimiter] = rate_limiter or RateLimiter(config.rate_limit)
        self._session: Optional[aiohttp.ClientSession] = None
        self._request_count = 0

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()

    async def start(self):
        """Start the HTTP session."""
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers=self.config.headers
            )
            logger.info(f"Started {self.source_name} API client")

    async def stop(self):
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None
            logger.info(f"Stopped {self.source_name} API client")

    def _get_auth_headers(self) -> Dict[str, str]:
        """Authentication headers; none by default."""
        return {}

    async def _make_request(self, method: str, endpoint: str,
                            params: Optional[Dict[str, Any]] = None,
                            json_body: Optional[Any] = None,
                            headers: Optional[Dict[str, str]] = None) -> APIResponse:
        """Make HTTP request with rate limiting and retries.

        Connection errors, timeouts and 5xx responses are retried with
        exponential backoff. Other responses are returned as they are.

        Raises:
            TransientNetworkError: if every attempt failed
        """
        if not self._session:
            await self.start()

        url = f"{self.config.base_url.rstrip('/')}/{endpoint.lstrip('/')}" if endpoint else self.config.base_url
        request_headers = {**self.config.headers}
        if headers:
            request_headers.update(headers)

        if self.config.api_key:
            request_headers.update(self._get_auth_headers())

        last_exception: Optional[Exception] = None

        for attempt in range(self.config.max_retries + 1):
            # Every attempt is a real network call
            if self.rate_limiter is not None:
                await self.rate_limiter.wait_if_needed()
            start_time = time.time()
            try:
                async with self._session.request(
                    method=method,
                    url=url,
                    params=params,
                    json=json_body,
                    headers=request_headers
                ) as response:
                    response_time = time.time() - start_time
                    self._request_count += 1

                    if response.content_type == 'application/json':
                        data = await response.json()
                    else:
                        data = await response.text()

                    api_response = APIResponse(
                        data=data,
                        status_code=response.status,
                        headers=dict(response.headers),
                        response_time=response_time,
                        source=self.source_name,
                        timestamp=datetime.now(timezone.utc)
                    )

                    logger.debug(f"{method} {url} -> {response.status} ({response_time:.3f}s)")

                    if not api_response.is_server_error:
                        return api_response

                    last_exception = TransientNetworkError(
                        f"{self.source_name} returned HTTP {response.status}"
                    )

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_exception = e

            logger.warning(f"Request attempt {attempt + 1} to {self.source_name} failed: {last_exception}")

            if attempt < self.config.max_retries:
                delay = self.config.retry_delay * (self.config.rate_limit.backoff_factor ** attempt)
                await asyncio.sleep(delay)

        raise TransientNetworkError(
            f"Request to {self.source_name} failed after {self.config.max_retries + 1} attempts: {last_exception}"
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get client statistics."""
        return {
            'source': self.source_name,
            'request_count': self._request_count,
            'base_url': self.config.base_url,
            'has_api_key': bool(self.config.api_key),
            'rate_limit': self.rate_limiter.get_stats() if self.rate_limiter else None
        }
