"""Signal construction from qualifying clusters."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from decimal import Decimal

from hyperliquid_consensus_tracker.detector.cooldown import CooldownLedger
from hyperliquid_consensus_tracker.detector.models import (
    MONEY_QUANTUM,
    PRICE_QUANTUM,
    SIZE_QUANTUM,
    Cluster,
    DetectionConfig,
    Signal,
    SignalStatus,
    compute_pnl,
    compute_roi,
)
from hyperliquid_consensus_tracker.ingestor.models import Direction

logger = logging.getLogger(__name__)


def signal_id_for(cluster: Cluster) -> str:
    """Return the deterministic id ``<instrument>-<direction>-<latest fill ms>``.

    Rerunning detection over an unchanged fill set yields the same id, which is
    what makes signal creation idempotent.
    """
    return f"{cluster.instrument}-{cluster.direction.value}-{cluster.latest_time_ms}"


def take_profit_levels(
    direction: Direction, entry_price: Decimal, targets: Iterable[Decimal]
) -> tuple[Decimal, ...]:
    """Return TP prices, above entry for LONG and below entry for SHORT."""
    levels = []
    for target in targets:
        multiplier = target / 100
        if direction is Direction.LONG:
            level = entry_price * (1 + multiplier)
        else:
            level = entry_price * (1 - multiplier)
        levels.append(level.quantize(PRICE_QUANTUM))
    return tuple(levels)


def stop_loss_level(direction: Direction, entry_price: Decimal, stop_loss_percent: Decimal) -> Decimal:
    """Return the stop price for a signed stop-loss percentage.

    With the usual negative percentage the stop sits below entry for LONG and
    above entry for SHORT.
    """
    multiplier = stop_loss_percent / 100
    if direction is Direction.LONG:
        level = entry_price * (1 + multiplier)
    else:
        level = entry_price * (1 - multiplier)
    return level.quantize(PRICE_QUANTUM)


class SignalFactory:
    """Builds signals from clusters, skipping ids that already exist."""

    def __init__(self, config: DetectionConfig) -> None:
        self.config = config

    def build(self, cluster: Cluster, *, mark_price: Decimal | None = None) -> Signal:
        """Build an Open signal from a qualifying cluster.

        Args:
            cluster: Cluster produced by the detector.
            mark_price: Current price used for the initial valuation. When
                missing or zero the signal is valued at its entry price.

        Returns:
            New Signal in the Open state.
        """
        fills = cluster.fills
        total_size = cluster.total_size
        total_cost = cluster.notional_volume
        raw_entry = total_cost / total_size if total_size > 0 else Decimal(0)

        total_margin = sum((f.margin for f in fills), Decimal(0))
        avg_leverage = sum((f.leverage for f in fills), Decimal(0)) / len(fills)

        entry_price = raw_entry.quantize(PRICE_QUANTUM)
        size = total_size.quantize(SIZE_QUANTUM)
        margin = total_margin.quantize(MONEY_QUANTUM)

        if mark_price is not None and mark_price > 0:
            current_price = mark_price.quantize(PRICE_QUANTUM)
        else:
            current_price = entry_price
        pnl = compute_pnl(cluster.direction, entry_price=entry_price, price=current_price, size=size)

        return Signal(
            id=signal_id_for(cluster),
            instrument=cluster.instrument,
            direction=cluster.direction,
            entry_price=entry_price,
            current_price=current_price,
            pnl=pnl,
            roi=compute_roi(pnl, margin),
            status=SignalStatus.OPEN,
            created_at=datetime.fromtimestamp(cluster.latest_time_ms / 1000, tz=UTC),
            leverage=avg_leverage.quantize(MONEY_QUANTUM),
            margin=margin,
            size=size,
            contributing_wallet_addresses=tuple(cluster.wallet_addresses),
            cluster_fills=fills,
            take_profit_levels=take_profit_levels(
                cluster.direction, raw_entry, self.config.take_profit_target_percents
            ),
            stop_loss_level=stop_loss_level(
                cluster.direction, raw_entry, self.config.default_stop_loss_percent
            ),
        )

    def create_signals(
        self,
        clusters: Iterable[Cluster],
        *,
        existing_ids: set[str],
        ledger: CooldownLedger,
        now: datetime,
        mark_prices: Mapping[str, Decimal] | None = None,
    ) -> list[Signal]:
        """Create signals for clusters whose id is not yet stored.

        Cooldowns are recorded for every contributing wallet of each new
        signal. ``existing_ids`` is extended in place so a duplicate within
        the same batch is also skipped.
        """
        prices = mark_prices or {}
        created: list[Signal] = []
        for cluster in clusters:
            signal_id = signal_id_for(cluster)
            if signal_id in existing_ids:
                logger.info("Signal %s already exists; skipping", signal_id)
                continue

            signal = self.build(cluster, mark_price=prices.get(cluster.instrument))
            existing_ids.add(signal.id)
            ledger.record(signal.contributing_wallet_addresses, signal.instrument, now)
            created.append(signal)
            logger.info(
                "Created signal %s: entry=%s wallets=%d margin=%s",
                signal.id,
                signal.entry_price,
                signal.contributing_wallet_count,
                signal.margin,
            )
        return created
