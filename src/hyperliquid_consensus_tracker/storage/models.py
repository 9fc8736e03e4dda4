"""SQLAlchemy models for persistent storage.

This module defines the database schema for tracked wallets and the
consensus signals derived from their fills.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class WalletModel(Base):
    """SQLAlchemy model for tracked wallets.

    ``cooldowns`` maps an instrument to the ISO timestamp at which the wallet
    last contributed to a signal on it.
    """

    __tablename__ = "wallets"

    address: Mapped[str] = mapped_column(String(66), primary_key=True)
    added_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    total_pnl: Mapped[Decimal] = mapped_column(Numeric(30, 6), nullable=False, default=Decimal(0))
    total_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    winning_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cooldowns: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)


class SignalModel(Base):
    """SQLAlchemy model for consensus signals.

    Lists (take-profit levels, wallets, cluster fills) are stored as JSON with
    decimals kept as strings.
    """

    __tablename__ = "signals"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    instrument: Mapped[str] = mapped_column(String(32), nullable=False)
    direction: Mapped[str] = mapped_column(String(5), nullable=False)
    status: Mapped[str] = mapped_column(String(4), nullable=False)

    entry_price: Mapped[Decimal] = mapped_column(Numeric(30, 4), nullable=False)
    current_price: Mapped[Decimal] = mapped_column(Numeric(30, 4), nullable=False)
    pnl: Mapped[Decimal] = mapped_column(Numeric(30, 2), nullable=False)
    roi: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    leverage: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    margin: Mapped[Decimal] = mapped_column(Numeric(30, 2), nullable=False)
    size: Mapped[Decimal] = mapped_column(Numeric(30, 4), nullable=False)
    stop_loss_level: Mapped[Decimal] = mapped_column(Numeric(30, 4), nullable=False)

    take_profit_levels: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    contributing_wallet_addresses: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    cluster_fills: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_signals_status", "status"),
        Index("idx_signals_created_at", "created_at"),
        Index("idx_signals_instrument_direction", "instrument", "direction"),
    )
