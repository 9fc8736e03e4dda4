"""Consensus detection: cooldowns, clustering and signal construction."""

from hyperliquid_consensus_tracker.detector.cluster import ClusterDetector
from hyperliquid_consensus_tracker.detector.cooldown import CooldownLedger
from hyperliquid_consensus_tracker.detector.factory import SignalFactory, signal_id_for
from hyperliquid_consensus_tracker.detector.models import (
    Cluster,
    DetectionConfig,
    Signal,
    SignalStatus,
    Wallet,
)

__all__ = [
    "Cluster",
    "ClusterDetector",
    "CooldownLedger",
    "DetectionConfig",
    "Signal",
    "SignalFactory",
    "SignalStatus",
    "Wallet",
    "signal_id_for",
]
