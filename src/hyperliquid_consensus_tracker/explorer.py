"""Look up open positions on Hyperliquid.

Two views: which tracked wallets hold a coin, and the account summary of any
single wallet.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

from hyperliquid_consensus_tracker.detector.models import MONEY_QUANTUM, PRICE_QUANTUM, SIZE_QUANTUM
from hyperliquid_consensus_tracker.ingestor.models import Fill

logger = logging.getLogger(__name__)


class WalletLookupError(Exception):
    """Raised when a wallet's account state cannot be fetched."""


class AccountGateway(Protocol):
    async def clearinghouse_state(self, address: str) -> dict[str, Any] | None: ...


class PositionGateway(AccountGateway, Protocol):
    async def fills(self, address: str) -> list[Fill]: ...


@dataclass(frozen=True)
class WalletPosition:
    """A tracked wallet's open position in one coin.

    ``size`` is signed: positive for long, negative for short.
    """

    address: str
    coin: str
    size: Decimal
    entry_price: Decimal
    position_value: Decimal
    opened_at: datetime


def _decimal_or_none(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return None
    return result if result.is_finite() else None


def extract_position(state: dict[str, Any], coin: str) -> dict[str, Any] | None:
    """Return the raw non-zero position for ``coin`` from a clearinghouse state."""
    target = coin.upper()
    for item in state.get("assetPositions") or []:
        position = (item or {}).get("position") or {}
        if str(position.get("coin", "")).upper() != target:
            continue
        size = _decimal_or_none(position.get("szi"))
        if size is not None and size != 0:
            return position
    return None


def position_opened_at(fills: Iterable[Fill], coin: str, position_size: Decimal) -> datetime | None:
    """Return the time of the fill that opened the current position.

    Walking back from the newest fill, the opener is the first one that
    started flat or on the opposite side of the current position.
    """
    coin_fills = sorted((f for f in fills if f.instrument.upper() == coin.upper()), key=lambda f: f.time_ms)
    if not coin_fills:
        return None
    for fill in reversed(coin_fills):
        started = fill.start_position
        if started == 0 or (started > 0) != (position_size > 0):
            return fill.timestamp
    return coin_fills[0].timestamp


async def _position_for(
    gateway: PositionGateway,
    address: str,
    coin: str,
    now: datetime,
) -> WalletPosition | None:
    state = await gateway.clearinghouse_state(address)
    if not state:
        return None
    raw = extract_position(state, coin)
    if raw is None:
        return None

    size = _decimal_or_none(raw.get("szi")) or Decimal(0)
    entry_price = _decimal_or_none(raw.get("entryPx")) or Decimal(0)
    opened_at = position_opened_at(await gateway.fills(address), coin, size) or now
    return WalletPosition(
        address=address,
        coin=str(raw.get("coin", coin)),
        size=size.quantize(SIZE_QUANTUM),
        entry_price=entry_price.quantize(PRICE_QUANTUM),
        position_value=(size * entry_price).quantize(MONEY_QUANTUM),
        opened_at=opened_at,
    )


async def find_positions_by_coin(
    gateway: PositionGateway,
    addresses: Iterable[str],
    coin: str,
    *,
    now: datetime | None = None,
) -> list[WalletPosition]:
    """Find tracked wallets holding a non-zero position in ``coin``.

    Wallets whose state cannot be fetched are skipped.

    Args:
        gateway: Source of clearinghouse states and fills.
        addresses: Tracked wallet addresses.
        coin: Coin symbol, matched case-insensitively.
        now: Fallback opening time when no fills explain the position.

    Returns:
        Positions, largest position value first.
    """
    now = now or datetime.now(UTC)
    unique = list(dict.fromkeys(addresses))
    results = await asyncio.gather(
        *(_position_for(gateway, address, coin, now) for address in unique),
        return_exceptions=True,
    )

    positions: list[WalletPosition] = []
    for address, result in zip(unique, results, strict=True):
        if isinstance(result, BaseException):
            logger.warning("Failed to load %s position for %s: %s", coin, address, result)
            continue
        if result is not None:
            positions.append(result)
    positions.sort(key=lambda p: p.position_value, reverse=True)
    logger.info("Found %d wallets holding %s", len(positions), coin.upper())
    return positions


@dataclass(frozen=True)
class AssetPosition:
    """One open perpetual position in a wallet's account.

    ``return_on_equity`` is a percentage.
    """

    coin: str
    size: Decimal
    entry_price: Decimal
    position_value: Decimal
    unrealized_pnl: Decimal
    margin_used: Decimal
    return_on_equity: Decimal


@dataclass(frozen=True)
class WalletData:
    """Account summary for a single wallet."""

    address: str
    account_value: Decimal
    unrealized_pnl: Decimal
    roi: Decimal
    positions: tuple[AssetPosition, ...]


def _decimal_or_zero(value: Any) -> Decimal:
    result = _decimal_or_none(value)
    return result if result is not None else Decimal(0)


def parse_asset_positions(state: dict[str, Any]) -> list[AssetPosition]:
    """Return the non-zero positions of a clearinghouse state, largest first."""
    positions: list[AssetPosition] = []
    for item in state.get("assetPositions") or []:
        raw = (item or {}).get("position") or {}
        size = _decimal_or_zero(raw.get("szi"))
        if size == 0:
            continue
        positions.append(
            AssetPosition(
                coin=str(raw.get("coin", "")),
                size=size.quantize(SIZE_QUANTUM),
                entry_price=_decimal_or_zero(raw.get("entryPx")).quantize(PRICE_QUANTUM),
                position_value=_decimal_or_zero(raw.get("positionValue")).quantize(MONEY_QUANTUM),
                unrealized_pnl=_decimal_or_zero(raw.get("unrealizedPnl")).quantize(MONEY_QUANTUM),
                margin_used=_decimal_or_zero(raw.get("marginUsed")).quantize(MONEY_QUANTUM),
                return_on_equity=(_decimal_or_zero(raw.get("returnOnEquity")) * 100).quantize(MONEY_QUANTUM),
            )
        )
    positions.sort(key=lambda p: p.position_value, reverse=True)
    return positions


async def get_wallet_data(gateway: AccountGateway, address: str) -> WalletData:
    """Summarize any wallet's open perpetual positions.

    Unrealized PnL is summed over every position. ROI is that PnL over the
    total margin in use, as a percentage, and 0 when no margin is in use.

    Raises:
        WalletLookupError: If the account state cannot be fetched.
    """
    normalized = address.strip().lower()
    state = await gateway.clearinghouse_state(normalized)
    if state is None:
        raise WalletLookupError(f"Failed to fetch wallet data for {normalized}")

    positions = parse_asset_positions(state)
    pnl = sum((p.unrealized_pnl for p in positions), Decimal(0))
    margin = sum((p.margin_used for p in positions), Decimal(0))
    roi = (pnl / margin * 100).quantize(MONEY_QUANTUM) if margin > 0 else Decimal("0.00")
    summary = state.get("marginSummary") or {}

    return WalletData(
        address=normalized,
        account_value=_decimal_or_zero(summary.get("accountValue")).quantize(MONEY_QUANTUM),
        unrealized_pnl=pnl.quantize(MONEY_QUANTUM),
        roi=roi,
        positions=tuple(positions),
    )
