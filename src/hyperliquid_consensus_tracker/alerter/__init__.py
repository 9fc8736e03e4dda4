"""Alerting layer - Signal alert formatting and delivery."""

from hyperliquid_consensus_tracker.alerter.channels import AlertChannel, TelegramChannel
from hyperliquid_consensus_tracker.alerter.dispatcher import AlertDispatcher
from hyperliquid_consensus_tracker.alerter.formatter import SignalAlertFormatter
from hyperliquid_consensus_tracker.alerter.models import DeliveryResult, DispatchResult, FormattedAlert

__all__ = [
    "AlertChannel",
    "AlertDispatcher",
    "DeliveryResult",
    "DispatchResult",
    "FormattedAlert",
    "SignalAlertFormatter",
    "TelegramChannel",
]
