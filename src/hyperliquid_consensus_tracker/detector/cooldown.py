"""Per (wallet, instrument) cooldown ledger.

A wallet that contributed to a signal on an instrument may not contribute to
another signal on the same instrument until the cooldown elapses. Age is
computed on read, so nothing ever needs sweeping.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta

from hyperliquid_consensus_tracker.detector.models import DEFAULT_COOLDOWN, Wallet

logger = logging.getLogger(__name__)


class CooldownLedger:
    """Reads and records cooldown timestamps stored on tracked wallets."""

    def __init__(self, wallets: Mapping[str, Wallet], *, cooldown: timedelta = DEFAULT_COOLDOWN) -> None:
        """Initialize the ledger.

        Args:
            wallets: Tracked wallets keyed by lower-cased address. Recorded
                cooldowns are written onto these objects.
            cooldown: Suppression period after a wallet contributes.
        """
        self._wallets = wallets
        self.cooldown = cooldown

    def is_on_cooldown(self, wallet_address: str, instrument: str, now: datetime) -> bool:
        """Return True if the wallet contributed on ``instrument`` too recently."""
        wallet = self._wallets.get(wallet_address.lower())
        if wallet is None:
            return False
        started = wallet.cooldowns.get(instrument)
        if started is None:
            return False
        return now - started < self.cooldown

    def record(self, wallet_addresses: Iterable[str], instrument: str, now: datetime) -> None:
        """Start the cooldown for every given wallet on ``instrument``.

        Timestamps never move backwards for a (wallet, instrument) pair.
        """
        for address in wallet_addresses:
            wallet = self._wallets.get(address.lower())
            if wallet is None:
                logger.debug("Cannot record cooldown for untracked wallet %s", address)
                continue
            previous = wallet.cooldowns.get(instrument)
            if previous is not None and previous >= now:
                continue
            wallet.cooldowns[instrument] = now
