"""Best-effort fan-out of signal alerts to delivery channels.

Dispatch happens after the signal is stored; a failing channel is logged
and never undoes signal creation.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from hyperliquid_consensus_tracker.alerter.channels import AlertChannel
from hyperliquid_consensus_tracker.alerter.formatter import SignalAlertFormatter
from hyperliquid_consensus_tracker.alerter.models import DeliveryResult, DispatchResult
from hyperliquid_consensus_tracker.detector.models import Signal

logger = logging.getLogger(__name__)


class AlertDispatcher:
    """Formats signals and hands them to every channel."""

    def __init__(
        self,
        channels: Sequence[AlertChannel],
        *,
        formatter: SignalAlertFormatter | None = None,
        dry_run: bool = False,
    ) -> None:
        self.channels = list(channels)
        self.formatter = formatter or SignalAlertFormatter()
        self.dry_run = dry_run

    async def dispatch(self, signal: Signal) -> DispatchResult:
        """Deliver an alert for ``signal``; never raises on channel failure."""
        alert = self.formatter.format(signal)

        if self.dry_run:
            logger.info("[dry-run] Alert for %s: %s", signal.id, alert.plain_text)
            return DispatchResult(signal_id=signal.id, skipped=True)
        if not self.channels:
            logger.info("No alert channels configured; skipping alert for %s", signal.id)
            return DispatchResult(signal_id=signal.id, skipped=True)

        deliveries: list[DeliveryResult] = []
        for channel in self.channels:
            try:
                deliveries.extend(await channel.send(alert))
            except Exception as e:
                logger.error("Alert channel %s failed for %s: %s", channel.name, signal.id, e)
                deliveries.append(
                    DeliveryResult(channel=channel.name, destination="*", success=False, error=str(e))
                )

        result = DispatchResult(signal_id=signal.id, deliveries=tuple(deliveries))
        if result.failure_count:
            logger.warning(
                "Alert for %s delivered to %d of %d destinations",
                signal.id,
                result.success_count,
                len(deliveries),
            )
        return result
