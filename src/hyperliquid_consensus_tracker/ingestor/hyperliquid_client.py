"""Async client for the Hyperliquid info API with rate limiting and retry logic."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from decimal import Decimal, InvalidOperation
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import httpx

from hyperliquid_consensus_tracker.ingestor.models import Fill, parse_fills

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# Constants
DEFAULT_API_URL = "https://api.hyperliquid.xyz"
INFO_PATH = "/info"
MAX_REQUESTS_PER_SECOND = 10
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MIDS_CACHE_TTL_SECONDS = 2.0

DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_BASE_DELAY = 0.5
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


class RateLimiter:
    """Minimum-interval rate limiter for API requests."""

    def __init__(self, max_requests_per_second: float = MAX_REQUESTS_PER_SECOND) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_second: Maximum requests allowed per second.
        """
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception | None = None) -> None:
        super().__init__(message)
        self.last_exception = last_exception


def with_retry(
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    retry_on: tuple[type[Exception], ...] = (Exception,),
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator adding retry with exponential backoff to a coroutine function.

    Args:
        max_retries: Maximum number of retry attempts.
        base_delay: Base delay in seconds (doubles with each retry).
        retry_on: Tuple of exception types to retry on.

    Returns:
        Decorated coroutine function with retry logic.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Exception | None = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    last_exception = e
                    if attempt == max_retries:
                        break

                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                        attempt + 1,
                        max_retries + 1,
                        str(e),
                        delay,
                    )
                    await asyncio.sleep(delay)

            raise RetryError(
                f"All {max_retries + 1} attempts failed for {func.__name__}",
                last_exception=last_exception,
            )

        return wrapper

    return decorator


class HyperliquidClientError(Exception):
    """Base exception for Hyperliquid client errors."""


class HyperliquidTransientError(HyperliquidClientError):
    """Raised for retryable errors (429/5xx, network failures, timeouts)."""


class HyperliquidClient:
    """Async wrapper around the Hyperliquid ``/info`` endpoint.

    The strict ``get_*`` methods raise on failure. The gateway methods
    ``fills``, ``mark_price`` and ``clearinghouse_state`` fail soft and return
    a neutral value so a single bad wallet or coin never aborts a pass.

    Example:
        >>> async with HyperliquidClient() as client:
        ...     fills = await client.fills("0xabc...")
        ...     price = await client.mark_price("BTC")
    """

    def __init__(
        self,
        *,
        api_url: str = DEFAULT_API_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        requests_per_second: float = MAX_REQUESTS_PER_SECOND,
        mids_cache_ttl_seconds: float = DEFAULT_MIDS_CACHE_TTL_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_url: Base URL of the Hyperliquid API.
            timeout_seconds: Per-request HTTP timeout.
            requests_per_second: Rate limit for API requests.
            mids_cache_ttl_seconds: How long an ``allMids`` response is reused.
            http_client: Optional pre-built httpx client (used in tests).
        """
        self._api_url = api_url.rstrip("/")
        self._rate_limiter = RateLimiter(requests_per_second)
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=self._api_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Content-Type": "application/json"},
        )
        self._mids_cache_ttl = mids_cache_ttl_seconds
        self._mids_cache: tuple[float, dict[str, Decimal]] | None = None
        self._mids_lock = asyncio.Lock()

        logger.info(
            "Initialized HyperliquidClient with api_url=%s, rate_limit=%.1f req/s",
            self._api_url,
            requests_per_second,
        )

    async def _post_info(self, payload: dict[str, Any]) -> Any:
        await self._rate_limiter.acquire()
        try:
            response = await self._http.post(INFO_PATH, json=payload)
        except httpx.HTTPError as e:
            raise HyperliquidTransientError(f"Request {payload.get('type')} failed: {e}") from e

        if response.status_code in RETRY_STATUS_CODES:
            raise HyperliquidTransientError(
                f"Request {payload.get('type')} returned HTTP {response.status_code}"
            )
        if response.status_code >= 400:
            raise HyperliquidClientError(
                f"Request {payload.get('type')} returned HTTP {response.status_code}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise HyperliquidClientError(f"Malformed JSON for {payload.get('type')}") from e

    @with_retry(retry_on=(HyperliquidTransientError,))
    async def get_user_fills(self, address: str) -> list[Fill]:
        """Fetch and parse fills for a wallet.

        Args:
            address: Wallet address.

        Returns:
            Parsed fills, in the order returned by the API.
        """
        resp = await self._post_info({"type": "userFills", "user": address})
        if not isinstance(resp, list):
            raise HyperliquidClientError(f"Unexpected userFills response shape for {address}")
        return parse_fills(resp, wallet_address=address)

    @with_retry(retry_on=(HyperliquidTransientError,))
    async def _fetch_all_mids(self) -> dict[str, Decimal]:
        resp = await self._post_info({"type": "allMids"})
        if not isinstance(resp, dict):
            raise HyperliquidClientError("Unexpected allMids response shape")
        mids: dict[str, Decimal] = {}
        for coin, raw in resp.items():
            try:
                price = Decimal(str(raw))
            except (InvalidOperation, ValueError):
                continue
            if price.is_finite():
                mids[str(coin)] = price
        return mids

    async def get_all_mids(self) -> dict[str, Decimal]:
        """Fetch mid prices for every coin, reusing a short-lived cache."""
        async with self._mids_lock:
            now = time.monotonic()
            if self._mids_cache is not None and now - self._mids_cache[0] < self._mids_cache_ttl:
                return self._mids_cache[1]
            mids = await self._fetch_all_mids()
            self._mids_cache = (time.monotonic(), mids)
            return mids

    @with_retry(retry_on=(HyperliquidTransientError,))
    async def get_clearinghouse_state(self, address: str) -> dict[str, Any]:
        """Fetch the perpetuals account state for a wallet."""
        resp = await self._post_info({"type": "clearinghouseState", "user": address})
        if not isinstance(resp, dict):
            raise HyperliquidClientError(f"Unexpected clearinghouseState response shape for {address}")
        return resp

    async def fills(self, address: str) -> list[Fill]:
        """Return fills for a wallet, or an empty list on any failure."""
        try:
            return await self.get_user_fills(address)
        except (HyperliquidClientError, RetryError) as e:
            logger.warning("Failed to fetch fills for %s: %s", address, e)
            return []

    async def mark_price(self, instrument: str) -> Decimal:
        """Return the current mark price for a coin, or 0 when unavailable."""
        try:
            mids = await self.get_all_mids()
        except (HyperliquidClientError, RetryError) as e:
            logger.warning("Failed to fetch mark price for %s: %s", instrument, e)
            return Decimal("0")
        price = mids.get(instrument)
        if price is None:
            logger.warning("No mark price available for %s", instrument)
            return Decimal("0")
        return price

    async def clearinghouse_state(self, address: str) -> dict[str, Any] | None:
        """Return the account state for a wallet, or None on failure."""
        try:
            return await self.get_clearinghouse_state(address)
        except (HyperliquidClientError, RetryError) as e:
            logger.warning("Failed to fetch clearinghouse state for %s: %s", address, e)
            return None

    async def health_check(self) -> bool:
        """Check if the info API is reachable.

        Returns:
            True if ``allMids`` returns a non-empty mapping, False otherwise.
        """
        try:
            return bool(await self._fetch_all_mids())
        except (HyperliquidClientError, RetryError) as e:
            logger.error("Health check failed: %s", e)
            return False

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self) -> HyperliquidClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
