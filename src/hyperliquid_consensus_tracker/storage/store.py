"""Store facade over the wallet and signal repositories.

Passes read a snapshot of both collections, work on it in memory, then write
both back in one transaction, so a crash mid-pass never leaves a signal
without the cooldowns (or attribution) that go with it.

Saving only upserts. Rows added while a pass ran are left alone, and rows
removed while it ran stay removed.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from hyperliquid_consensus_tracker.detector.models import Signal, Wallet
from hyperliquid_consensus_tracker.storage.database import DatabaseManager
from hyperliquid_consensus_tracker.storage.errors import PersistenceError
from hyperliquid_consensus_tracker.storage.lock import PassLock
from hyperliquid_consensus_tracker.storage.repos import SignalRepository, WalletRepository

logger = logging.getLogger(__name__)


@dataclass
class TrackerSnapshot:
    """In-memory copy of the stored collections for one pass.

    ``loaded_wallets`` and ``loaded_signal_ids`` record what was read, so a
    save can tell rows removed in the meantime from rows the pass created.
    """

    wallets: dict[str, Wallet] = field(default_factory=dict)
    signals: list[Signal] = field(default_factory=list)
    loaded_wallets: frozenset[str] = field(default_factory=frozenset)
    loaded_signal_ids: frozenset[str] = field(default_factory=frozenset)

    @property
    def signal_ids(self) -> set[str]:
        return {s.id for s in self.signals}


class TrackerStore:
    """Reads and atomically saves the tracker's persisted state.

    Registry and signal maintenance writes take ``lock`` when one is given,
    the same lock the detection and valuation passes hold.
    """

    def __init__(self, db: DatabaseManager, *, lock: PassLock | None = None) -> None:
        self._db = db
        self._lock = lock

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        if self._lock is None:
            yield
            return
        async with self._lock.hold():
            yield

    async def load(self) -> TrackerSnapshot:
        """Read every wallet and signal."""
        try:
            async with self._db.get_async_session() as session:
                wallets = await WalletRepository(session).load_all()
                signals = await SignalRepository(session).load_all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load tracker state: {e}") from e
        return TrackerSnapshot(
            wallets={w.address: w for w in wallets},
            signals=signals,
            loaded_wallets=frozenset(w.address for w in wallets),
            loaded_signal_ids=frozenset(s.id for s in signals),
        )

    async def save(self, snapshot: TrackerSnapshot) -> None:
        """Write both collections in a single transaction."""
        try:
            async with self._db.get_async_session() as session:
                wallet_count = await WalletRepository(session).save_all(
                    snapshot.wallets.values(), loaded=snapshot.loaded_wallets
                )
                signal_count = await SignalRepository(session).save_all(
                    snapshot.signals, loaded=snapshot.loaded_signal_ids
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save tracker state: {e}") from e
        logger.debug("Saved tracker state: wallets=%d signals=%d", wallet_count, signal_count)

    async def list_wallets(self) -> list[Wallet]:
        async with self._db.get_async_session() as session:
            return await WalletRepository(session).load_all()

    async def add_wallet(self, address: str) -> Wallet:
        async with self._exclusive(), self._db.get_async_session() as session:
            return await WalletRepository(session).add(address)

    async def remove_wallet(self, address: str) -> None:
        async with self._exclusive(), self._db.get_async_session() as session:
            await WalletRepository(session).remove(address)

    async def list_signals(self) -> list[Signal]:
        """Return stored signals, newest first."""
        async with self._db.get_async_session() as session:
            return await SignalRepository(session).load_all()

    async def delete_signal(self, signal_id: str) -> None:
        async with self._exclusive(), self._db.get_async_session() as session:
            await SignalRepository(session).delete(signal_id)
