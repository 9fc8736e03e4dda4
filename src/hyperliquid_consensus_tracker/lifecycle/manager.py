"""Signal lifecycle: price-driven transitions from Open to TP or SL."""

from __future__ import annotations

import dataclasses
import logging
from decimal import Decimal

from hyperliquid_consensus_tracker.detector.models import (
    PRICE_QUANTUM,
    Signal,
    SignalStatus,
    compute_pnl,
    compute_roi,
)
from hyperliquid_consensus_tracker.ingestor.models import Direction

logger = logging.getLogger(__name__)


def next_status(signal: Signal, price: Decimal) -> SignalStatus:
    """Return the status implied by ``price``. Stop-loss wins over take-profit."""
    if signal.direction is Direction.LONG:
        if price <= signal.stop_loss_level:
            return SignalStatus.SL
        if any(price >= level for level in signal.take_profit_levels):
            return SignalStatus.TP
    else:
        if price >= signal.stop_loss_level:
            return SignalStatus.SL
        if any(price <= level for level in signal.take_profit_levels):
            return SignalStatus.TP
    return SignalStatus.OPEN


class LifecycleManager:
    """Re-values open signals against fresh mark prices."""

    def evaluate(self, signal: Signal, price: Decimal | None) -> Signal:
        """Return the signal valued at ``price``, possibly transitioned.

        Terminal signals and ticks without a usable price return the signal
        unchanged.
        """
        if signal.status.is_terminal:
            return signal
        if price is None or not price.is_finite() or price <= 0:
            logger.debug("No usable price for %s; leaving signal unchanged", signal.id)
            return signal

        pnl = compute_pnl(signal.direction, entry_price=signal.entry_price, price=price, size=signal.size)
        status = next_status(signal, price)
        updated = dataclasses.replace(
            signal,
            current_price=price.quantize(PRICE_QUANTUM),
            pnl=pnl,
            roi=compute_roi(pnl, signal.margin),
            status=status,
        )
        if status.is_terminal:
            logger.info(
                "Signal %s closed at %s: status=%s pnl=%s",
                signal.id,
                updated.current_price,
                status.value,
                pnl,
            )
        return updated
