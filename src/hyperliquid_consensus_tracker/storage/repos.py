"""Repository pattern implementations for data access.

This module converts between the ORM rows and the detector's Wallet and
Signal objects, and offers whole-collection reads and upserts.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from hyperliquid_consensus_tracker.detector.models import Signal, SignalStatus, Wallet
from hyperliquid_consensus_tracker.ingestor.models import Direction, Fill
from hyperliquid_consensus_tracker.storage.errors import (
    PersistenceError,
    SignalNotFoundError,
    WalletAlreadyExistsError,
    WalletNotFoundError,
)
from hyperliquid_consensus_tracker.storage.models import SignalModel, WalletModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _as_utc(ts: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def wallet_from_model(model: WalletModel) -> Wallet:
    cooldowns = {
        instrument: _as_utc(datetime.fromisoformat(started))
        for instrument, started in (model.cooldowns or {}).items()
    }
    return Wallet(
        address=model.address,
        added_on=_as_utc(model.added_on),
        total_pnl=Decimal(model.total_pnl),
        total_trades=model.total_trades,
        winning_trades=model.winning_trades,
        cooldowns=cooldowns,
    )


def wallet_to_model(wallet: Wallet) -> WalletModel:
    return WalletModel(
        address=wallet.address.lower(),
        added_on=wallet.added_on,
        total_pnl=wallet.total_pnl,
        total_trades=wallet.total_trades,
        winning_trades=wallet.winning_trades,
        cooldowns={instrument: ts.isoformat() for instrument, ts in wallet.cooldowns.items()},
    )


def signal_from_model(model: SignalModel) -> Signal:
    return Signal(
        id=model.id,
        instrument=model.instrument,
        direction=Direction(model.direction),
        entry_price=Decimal(model.entry_price),
        current_price=Decimal(model.current_price),
        pnl=Decimal(model.pnl),
        roi=Decimal(model.roi),
        status=SignalStatus(model.status),
        created_at=_as_utc(model.created_at),
        leverage=Decimal(model.leverage),
        margin=Decimal(model.margin),
        size=Decimal(model.size),
        contributing_wallet_addresses=tuple(model.contributing_wallet_addresses or ()),
        cluster_fills=tuple(Fill.from_dict(item) for item in model.cluster_fills or ()),
        take_profit_levels=tuple(Decimal(level) for level in model.take_profit_levels or ()),
        stop_loss_level=Decimal(model.stop_loss_level),
    )


def signal_to_model(signal: Signal) -> SignalModel:
    return SignalModel(
        id=signal.id,
        instrument=signal.instrument,
        direction=signal.direction.value,
        status=signal.status.value,
        entry_price=signal.entry_price,
        current_price=signal.current_price,
        pnl=signal.pnl,
        roi=signal.roi,
        leverage=signal.leverage,
        margin=signal.margin,
        size=signal.size,
        stop_loss_level=signal.stop_loss_level,
        take_profit_levels=[str(level) for level in signal.take_profit_levels],
        contributing_wallet_addresses=list(signal.contributing_wallet_addresses),
        cluster_fills=[fill.to_dict() for fill in signal.cluster_fills],
        created_at=signal.created_at,
    )


class WalletRepository:
    """Repository for tracked wallets."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def load_all(self) -> list[Wallet]:
        """Return every tracked wallet, oldest first."""
        try:
            result = await self.session.execute(
                select(WalletModel).order_by(WalletModel.added_on, WalletModel.address)
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load wallets: {e}") from e
        return [wallet_from_model(m) for m in result.scalars().all()]

    async def get(self, address: str) -> Wallet | None:
        try:
            model = await self.session.get(WalletModel, address.lower())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load wallet {address}: {e}") from e
        return wallet_from_model(model) if model else None

    async def save_all(self, wallets: Iterable[Wallet], *, loaded: Collection[str] = ()) -> int:
        """Upsert wallets within the current transaction.

        No row is deleted here. A wallet named in ``loaded`` whose row has
        disappeared since it was read was removed by someone else and is not
        written back.

        Returns:
            Number of wallets written.
        """
        models = [wallet_to_model(w) for w in wallets]
        try:
            result = await self.session.execute(
                select(WalletModel.address).where(WalletModel.address.in_([m.address for m in models]))
            )
            present = set(result.scalars().all())
            written = 0
            for model in models:
                if model.address in loaded and model.address not in present:
                    logger.info("Wallet %s was removed during the pass; not restoring it", model.address)
                    continue
                await self.session.merge(model)
                written += 1
            await self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save wallets: {e}") from e
        return written
    async def add(self, address: str, *, added_on: datetime | None = None) -> Wallet:
        """Start tracking ``address``.

        Raises:
            WalletAlreadyExistsError: If the address is tracked under any casing.
        """
        normalized = address.strip().lower()
        if await self.get(normalized) is not None:
            raise WalletAlreadyExistsError(normalized)

        wallet = Wallet(address=normalized, added_on=added_on or datetime.now(UTC))
        try:
            self.session.add(wallet_to_model(wallet))
            await self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to add wallet {normalized}: {e}") from e
        logger.info("Tracking wallet %s", normalized)
        return wallet

    async def remove(self, address: str) -> None:
        """Stop tracking ``address``.

        Raises:
            WalletNotFoundError: If the address is not tracked.
        """
        normalized = address.strip().lower()
        try:
            result = await self.session.execute(
                delete(WalletModel).where(WalletModel.address == normalized)
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to remove wallet {normalized}: {e}") from e
        if result.rowcount == 0:
            raise WalletNotFoundError(normalized)
        logger.info("Stopped tracking wallet %s", normalized)


class SignalRepository:
    """Repository for consensus signals."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def load_all(self) -> list[Signal]:
        """Return every signal, newest first."""
        try:
            result = await self.session.execute(
                select(SignalModel).order_by(SignalModel.created_at.desc(), SignalModel.id.desc())
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load signals: {e}") from e
        return [signal_from_model(m) for m in result.scalars().all()]

    async def get(self, signal_id: str) -> Signal | None:
        try:
            model = await self.session.get(SignalModel, signal_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load signal {signal_id}: {e}") from e
        return signal_from_model(model) if model else None

    async def save_all(self, signals: Iterable[Signal], *, loaded: Collection[str] = ()) -> int:
        """Upsert signals within the current transaction.

        Signals whose id is in ``loaded`` but no longer stored were deleted
        while the caller held its copy and are skipped.

        Returns:
            Number of signals written.
        """
        models = [signal_to_model(s) for s in signals]
        try:
            result = await self.session.execute(
                select(SignalModel.id).where(SignalModel.id.in_([m.id for m in models]))
            )
            present = set(result.scalars().all())
            written = 0
            for model in models:
                if model.id in loaded and model.id not in present:
                    logger.info("Signal %s was deleted during the pass; not restoring it", model.id)
                    continue
                await self.session.merge(model)
                written += 1
            await self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save signals: {e}") from e
        return written
    async def delete(self, signal_id: str) -> None:
        """Delete one signal.

        Raises:
            SignalNotFoundError: If no signal has this id.
        """
        try:
            result = await self.session.execute(delete(SignalModel).where(SignalModel.id == signal_id))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete signal {signal_id}: {e}") from e
        if result.rowcount == 0:
            raise SignalNotFoundError(signal_id)
        logger.info("Deleted signal %s", signal_id)
