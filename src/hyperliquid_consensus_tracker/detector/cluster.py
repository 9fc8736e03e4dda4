"""Consensus cluster detection over recent opening fills.

Fills are filtered to recent opening trades from wallets not on cooldown,
grouped by (instrument, direction), and each group is searched for the time
window holding the most distinct wallets. A window becomes a cluster only if it
clears both the wallet-count and notional-volume thresholds.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime

from hyperliquid_consensus_tracker.detector.cooldown import CooldownLedger
from hyperliquid_consensus_tracker.detector.models import Cluster, DetectionConfig
from hyperliquid_consensus_tracker.ingestor.models import Direction, Fill

logger = logging.getLogger(__name__)


def to_epoch_ms(ts: datetime) -> int:
    """Convert an aware datetime to integer epoch milliseconds."""
    return int(ts.timestamp() * 1000)


class ClusterDetector:
    """Finds consensus clusters in a snapshot of fills.

    The best window per group is the one with the strictly largest number of
    distinct wallets; ties keep the earliest anchor. Volume is only used as a
    threshold on that window, never to pick between windows.
    """

    def __init__(self, config: DetectionConfig, ledger: CooldownLedger) -> None:
        self.config = config
        self.ledger = ledger

    def eligible_fills(self, fills: Iterable[Fill], *, now: datetime) -> list[Fill]:
        """Keep recent opening fills from wallets that are not cooling down."""
        now_ms = to_epoch_ms(now)
        window_ms = self.config.time_window_ms
        eligible: list[Fill] = []
        for fill in fills:
            if now_ms - fill.time_ms >= window_ms:
                continue
            if not fill.is_opening:
                continue
            if self.ledger.is_on_cooldown(fill.wallet_address, fill.instrument, now):
                continue
            eligible.append(fill)
        return eligible

    @staticmethod
    def group_fills(fills: Iterable[Fill]) -> dict[tuple[str, Direction], list[Fill]]:
        """Partition fills by (instrument, direction), each sorted by time."""
        groups: dict[tuple[str, Direction], list[Fill]] = defaultdict(list)
        for fill in fills:
            groups[(fill.instrument, fill.direction)].append(fill)
        for group in groups.values():
            group.sort(key=lambda f: f.time_ms)
        return dict(groups)

    def best_window(self, group: list[Fill]) -> list[Fill]:
        """Return the densest window of a time-sorted group.

        Every fill is tried as an anchor of ``[anchor, anchor + T)``.
        """
        window_ms = self.config.time_window_ms
        best: list[Fill] = []
        best_count = 0
        for anchor in group:
            window_end = anchor.time_ms + window_ms
            window = [f for f in group if anchor.time_ms <= f.time_ms < window_end]
            count = len({f.wallet_address for f in window})
            if count > best_count:
                best = window
                best_count = count
        return best

    def qualifies(self, window: list[Fill]) -> bool:
        """Apply the wallet-count and volume thresholds to a window."""
        if not window:
            return False
        cluster_wallets = {f.wallet_address for f in window}
        if len(cluster_wallets) < self.config.min_wallet_count:
            return False
        volume = sum(f.notional_value for f in window)
        return volume >= self.config.min_volume

    def detect(self, fills: Iterable[Fill], *, now: datetime) -> list[Cluster]:
        """Run the full detection over a fill snapshot.

        Args:
            fills: Fills from all tracked wallets fetched in this pass.
            now: Evaluation time (aware datetime).

        Returns:
            Qualifying clusters, at most one per (instrument, direction).
        """
        if not self.config.is_runnable:
            logger.info("Cluster detection skipped: non-positive wallet count or time window")
            return []

        eligible = self.eligible_fills(fills, now=now)
        if not eligible:
            logger.info("No recent opening fills meeting criteria found")
            return []

        clusters: list[Cluster] = []
        for (instrument, direction), group in sorted(
            self.group_fills(eligible).items(), key=lambda kv: (kv[0][0], kv[0][1].value)
        ):
            window = self.best_window(group)
            if not self.qualifies(window):
                logger.debug(
                    "No qualifying window for %s %s (fills=%d)",
                    instrument,
                    direction.value,
                    len(group),
                )
                continue
            clusters.append(Cluster(instrument=instrument, direction=direction, fills=tuple(window)))

        logger.info(
            "Cluster detection: eligible_fills=%d clusters=%d",
            len(eligible),
            len(clusters),
        )
        return clusters
