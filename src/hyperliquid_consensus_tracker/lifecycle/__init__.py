"""Signal lifecycle and PnL attribution."""

from hyperliquid_consensus_tracker.lifecycle.attribution import attribute_pnl, contribution_shares
from hyperliquid_consensus_tracker.lifecycle.manager import LifecycleManager, next_status

__all__ = [
    "LifecycleManager",
    "attribute_pnl",
    "contribution_shares",
    "next_status",
]
