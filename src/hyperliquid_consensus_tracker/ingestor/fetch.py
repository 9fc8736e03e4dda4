"""Scatter/gather helpers over the market data gateway.

Every gateway call is bounded by its own timeout. A failed or timed-out call
degrades to a neutral value (no fills, zero price) instead of failing the pass.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from decimal import Decimal
from typing import Protocol

from hyperliquid_consensus_tracker.ingestor.models import Fill

logger = logging.getLogger(__name__)

DEFAULT_CALL_TIMEOUT_SECONDS = 15.0


class MarketDataGateway(Protocol):
    """Source of per-wallet fills and per-instrument mark prices."""

    async def fills(self, address: str) -> list[Fill]: ...

    async def mark_price(self, instrument: str) -> Decimal: ...


async def _fills_or_empty(
    gateway: MarketDataGateway,
    address: str,
    timeout_seconds: float,
) -> list[Fill]:
    try:
        return await asyncio.wait_for(gateway.fills(address), timeout=timeout_seconds)
    except TimeoutError:
        logger.warning("Timed out fetching fills for %s after %.1fs", address, timeout_seconds)
    except Exception as e:
        logger.warning("Failed to fetch fills for %s: %s", address, e)
    return []


async def _price_or_zero(
    gateway: MarketDataGateway,
    instrument: str,
    timeout_seconds: float,
) -> Decimal:
    try:
        price = await asyncio.wait_for(gateway.mark_price(instrument), timeout=timeout_seconds)
    except TimeoutError:
        logger.warning("Timed out fetching mark price for %s after %.1fs", instrument, timeout_seconds)
        return Decimal("0")
    except Exception as e:
        logger.warning("Failed to fetch mark price for %s: %s", instrument, e)
        return Decimal("0")
    if price is None or not price.is_finite() or price < 0:
        return Decimal("0")
    return price


async def fetch_fills_for_wallets(
    gateway: MarketDataGateway,
    addresses: Iterable[str],
    *,
    timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS,
) -> dict[str, list[Fill]]:
    """Fetch fills for every address concurrently.

    Returns:
        Mapping of address to its fills (empty for failed fetches).
    """
    unique = list(dict.fromkeys(addresses))
    results = await asyncio.gather(
        *(_fills_or_empty(gateway, address, timeout_seconds) for address in unique)
    )
    return dict(zip(unique, results, strict=True))


async def fetch_mark_prices(
    gateway: MarketDataGateway,
    instruments: Iterable[str],
    *,
    timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS,
) -> dict[str, Decimal]:
    """Fetch the mark price of every instrument concurrently.

    Returns:
        Mapping of instrument to price; 0 marks an unavailable price.
    """
    unique = list(dict.fromkeys(instruments))
    results = await asyncio.gather(
        *(_price_or_zero(gateway, instrument, timeout_seconds) for instrument in unique)
    )
    return dict(zip(unique, results, strict=True))
