"""Distribute a closed signal's PnL to its contributing wallets.

Each wallet's share is its portion of the total absolute size in the cluster
fills. Signals stored without fills fall back to an equal split.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Mapping
from decimal import Decimal

from hyperliquid_consensus_tracker.detector.models import Signal, SignalStatus, Wallet

logger = logging.getLogger(__name__)


def contribution_shares(signal: Signal) -> dict[str, Decimal]:
    """Return each contributing wallet's fraction of the signal (sums to 1)."""
    sizes: dict[str, Decimal] = defaultdict(Decimal)
    for fill in signal.cluster_fills:
        sizes[fill.wallet_address] += abs(fill.size)
    total = sum(sizes.values(), Decimal(0))

    if total > 0:
        return {address: size / total for address, size in sizes.items()}

    addresses = list(dict.fromkeys(signal.contributing_wallet_addresses))
    if not addresses:
        return {}
    equal = Decimal(1) / len(addresses)
    return dict.fromkeys(addresses, equal)


def attribute_pnl(signal: Signal, wallets: Mapping[str, Wallet]) -> dict[str, Decimal]:
    """Apply a closed signal's outcome to the registry wallets.

    Args:
        signal: Signal that has just transitioned to TP or SL.
        wallets: Registry keyed by lower-cased address; mutated in place.

    Returns:
        Contribution per wallet address, including wallets no longer tracked.
    """
    if not signal.status.is_terminal:
        raise ValueError(f"Cannot attribute PnL for open signal {signal.id}")

    won = signal.status is SignalStatus.TP
    contributions = {
        address: signal.pnl * share for address, share in contribution_shares(signal).items()
    }

    for address, contribution in contributions.items():
        wallet = wallets.get(address.lower())
        if wallet is None:
            logger.warning(
                "Wallet %s contributed to %s but is no longer tracked; skipping",
                address,
                signal.id,
            )
            continue
        wallet.total_pnl += contribution
        wallet.total_trades += 1
        if won:
            wallet.winning_trades += 1

    logger.info(
        "Attributed %s pnl=%s across %d wallets",
        signal.id,
        signal.pnl,
        len(contributions),
    )
    return contributions
