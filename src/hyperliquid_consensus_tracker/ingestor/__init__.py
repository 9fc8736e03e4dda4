"""Ingestor module for Hyperliquid market data."""

from .fetch import fetch_fills_for_wallets, fetch_mark_prices
from .hyperliquid_client import (
    HyperliquidClient,
    HyperliquidClientError,
    HyperliquidTransientError,
    RetryError,
)
from .models import Fill, parse_fills

__all__ = [
    "Fill",
    "HyperliquidClient",
    "HyperliquidClientError",
    "HyperliquidTransientError",
    "RetryError",
    "fetch_fills_for_wallets",
    "fetch_mark_prices",
    "parse_fills",
]
