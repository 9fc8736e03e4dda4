"""Hyperliquid Consensus Tracker.

Detects consensus trading signals from tracked Hyperliquid wallets and follows
them through to take-profit or stop-loss.
"""

__version__ = "0.1.0"
