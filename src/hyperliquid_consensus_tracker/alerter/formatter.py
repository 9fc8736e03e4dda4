"""Alert message formatter for new consensus signals.

This module turns Signal objects into the Telegram Markdown message and a
plain-text twin used for logging.
"""

from __future__ import annotations

from decimal import Decimal

from hyperliquid_consensus_tracker.alerter.models import FormattedAlert
from hyperliquid_consensus_tracker.detector.models import Signal
from hyperliquid_consensus_tracker.ingestor.models import Direction

DEFAULT_DASHBOARD_URL = "https://your-dashboard-url.com"
QUOTE_ASSET = "USDC"
SEPARATOR = "-" * 35


def format_usdc(amount: Decimal) -> str:
    """Format a USDC amount with commas and 2 decimal places."""
    return f"${amount:,.2f}"


def direction_label(direction: Direction) -> str:
    return "⬆️ LONG" if direction is Direction.LONG else "⬇️ SHORT"


def signals_url(dashboard_url: str) -> str:
    return f"{dashboard_url.rstrip('/')}/signals"


class SignalAlertFormatter:
    """Formats new signals into channel-ready alerts."""

    def __init__(self, dashboard_url: str = DEFAULT_DASHBOARD_URL) -> None:
        self.dashboard_url = dashboard_url

    def format(self, signal: Signal) -> FormattedAlert:
        """Format a signal into a multi-channel alert.

        Args:
            signal: Newly created signal.

        Returns:
            FormattedAlert with all channel formats.
        """
        links = {"dashboard": signals_url(self.dashboard_url)}
        return FormattedAlert(
            signal_id=signal.id,
            title=f"New {signal.direction.value} signal on {signal.instrument}-{QUOTE_ASSET}",
            telegram_markdown=self._build_telegram_markdown(signal, links),
            plain_text=self._build_plain_text(signal),
            links=links,
        )

    def _build_telegram_markdown(self, signal: Signal, links: dict[str, str]) -> str:
        """Build the message for Telegram's legacy Markdown parse mode."""
        lines = [
            "*New Signal Detected!*",
            SEPARATOR,
            f"*{signal.instrument}-{QUOTE_ASSET}*",
            f"*Direction:* {direction_label(signal.direction)}",
            SEPARATOR,
            f"*Entry Price:* {signal.entry_price}",
            f"*Total Margin:* ${signal.margin}",
            f"*Avg. Leverage:* {signal.leverage}x",
            f"*Consensus:* {signal.contributing_wallet_count} wallets",
            SEPARATOR,
            f"*Stop Loss:* {signal.stop_loss_level}",
            "*Take Profit Targets:*",
        ]
        lines.extend(f"TP {i}: {level}" for i, level in enumerate(signal.take_profit_levels, start=1))
        lines.append(SEPARATOR)
        lines.append(f"[View Dashboard]({links['dashboard']})")
        return "\n".join(lines)

    def _build_plain_text(self, signal: Signal) -> str:
        targets = ", ".join(str(level) for level in signal.take_profit_levels)
        return (
            f"{signal.instrument}-{QUOTE_ASSET} {signal.direction.value} "
            f"entry={signal.entry_price} margin={format_usdc(signal.margin)} "
            f"leverage={signal.leverage}x wallets={signal.contributing_wallet_count} "
            f"sl={signal.stop_loss_level} tp=[{targets}]"
        )
