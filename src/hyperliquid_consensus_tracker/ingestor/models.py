"""Data models for the ingestor module."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Literal

logger = logging.getLogger(__name__)

# Hyperliquid fills carry no leverage; positions default to 10x.
DEFAULT_LEVERAGE = Decimal("10")


class FillParseError(ValueError):
    """Raised when a raw fill payload cannot be turned into a Fill."""


class Direction(str, Enum):
    """Direction of a position opened by a fill."""

    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        """Return +1 for LONG and -1 for SHORT."""
        return 1 if self is Direction.LONG else -1


def _to_decimal(value: Any, *, field_name: str) -> Decimal:
    if value is None or isinstance(value, bool):
        raise FillParseError(f"Missing or invalid {field_name}")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise FillParseError(f"Invalid {field_name}: {value!r}") from e
    if not result.is_finite():
        raise FillParseError(f"Non-finite {field_name}: {value!r}")
    return result


def _parse_leverage(raw: Any) -> Decimal:
    if isinstance(raw, dict):
        raw = raw.get("value")
    if raw is None:
        return DEFAULT_LEVERAGE
    try:
        leverage = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return DEFAULT_LEVERAGE
    if not leverage.is_finite() or leverage <= 0:
        return DEFAULT_LEVERAGE
    return leverage


@dataclass(frozen=True)
class Fill:
    """A single executed trade reported for one tracked wallet.

    Attributes:
        instrument: Coin symbol on Hyperliquid (e.g. "BTC").
        side: "BUY" for a bid-side fill, "SELL" for an ask-side fill.
        size: Absolute traded size.
        price: Execution price.
        time_ms: Execution time in milliseconds since the epoch.
        start_position: Signed position size before this fill.
        wallet_address: Lower-cased address of the wallet that traded.
        leverage: Leverage of the position (defaults to 10x).
        fill_hash: Transaction hash when the venue provides one.
    """

    instrument: str
    side: Literal["BUY", "SELL"]
    size: Decimal
    price: Decimal
    time_ms: int
    start_position: Decimal
    wallet_address: str
    leverage: Decimal = DEFAULT_LEVERAGE
    fill_hash: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any], *, wallet_address: str) -> Fill:
        """Create a Fill from a Hyperliquid ``userFills`` entry.

        Args:
            data: One element of the ``userFills`` response.
            wallet_address: Address whose fills were requested.

        Returns:
            Fill instance.

        Raises:
            FillParseError: If a required field is missing or malformed.
        """
        instrument = str(data.get("coin") or "").strip()
        if not instrument:
            raise FillParseError("Missing coin")

        side_raw = str(data.get("side", "")).upper()
        if side_raw in ("B", "BUY"):
            side: Literal["BUY", "SELL"] = "BUY"
        elif side_raw in ("A", "S", "SELL"):
            side = "SELL"
        else:
            raise FillParseError(f"Unknown side: {side_raw!r}")

        price = _to_decimal(data.get("px"), field_name="px")
        if price <= 0:
            raise FillParseError(f"Non-positive px: {price}")
        size = abs(_to_decimal(data.get("sz"), field_name="sz"))

        raw_time = data.get("time")
        if raw_time is None or isinstance(raw_time, bool):
            raise FillParseError("Missing time")
        try:
            time_ms = int(raw_time)
        except (TypeError, ValueError) as e:
            raise FillParseError(f"Invalid time: {raw_time!r}") from e

        start_position = _to_decimal(data.get("startPosition", "0"), field_name="startPosition")

        return cls(
            instrument=instrument,
            side=side,
            size=size,
            price=price,
            time_ms=time_ms,
            start_position=start_position,
            wallet_address=wallet_address.lower(),
            leverage=_parse_leverage(data.get("leverage")),
            fill_hash=str(data.get("hash") or ""),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Fill:
        """Restore a Fill from its persisted snapshot form."""
        side_raw = str(data["side"]).upper()
        return cls(
            instrument=str(data["instrument"]),
            side="BUY" if side_raw == "BUY" else "SELL",
            size=Decimal(str(data["size"])),
            price=Decimal(str(data["price"])),
            time_ms=int(data["time_ms"]),
            start_position=Decimal(str(data.get("start_position", "0"))),
            wallet_address=str(data["wallet_address"]).lower(),
            leverage=_parse_leverage(data.get("leverage")),
            fill_hash=str(data.get("fill_hash", "")),
        )

    def to_dict(self) -> dict[str, object]:
        """Serialize to a JSON-safe dictionary."""
        return {
            "instrument": self.instrument,
            "side": self.side,
            "size": str(self.size),
            "price": str(self.price),
            "time_ms": self.time_ms,
            "start_position": str(self.start_position),
            "wallet_address": self.wallet_address,
            "leverage": str(self.leverage),
            "fill_hash": self.fill_hash,
        }

    @property
    def is_buy(self) -> bool:
        """Return True if this is a buy fill."""
        return self.side == "BUY"

    @property
    def direction(self) -> Direction:
        """Return the position direction this fill adds to."""
        return Direction.LONG if self.is_buy else Direction.SHORT

    @property
    def is_opening(self) -> bool:
        """Return True if the fill opens or increases a position.

        A buy opens when the prior position is flat or long; a sell opens when
        the prior position is flat or short.
        """
        if self.size <= 0:
            return False
        if self.is_buy:
            return self.start_position >= 0
        return self.start_position <= 0

    @property
    def notional_value(self) -> Decimal:
        """Return price times absolute size."""
        return self.price * abs(self.size)

    @property
    def margin(self) -> Decimal:
        """Return the margin backing this fill (notional / leverage)."""
        return self.notional_value / self.leverage

    @property
    def timestamp(self) -> datetime:
        """Return the execution time as an aware UTC datetime."""
        return datetime.fromtimestamp(self.time_ms / 1000, tz=UTC)


def parse_fills(items: Any, *, wallet_address: str) -> list[Fill]:
    """Parse a raw ``userFills`` response, dropping malformed records."""
    if not isinstance(items, list):
        logger.warning("Unexpected userFills payload for %s: %s", wallet_address, type(items).__name__)
        return []

    fills: list[Fill] = []
    skipped = 0
    for raw in items:
        if not isinstance(raw, dict):
            skipped += 1
            continue
        try:
            fills.append(Fill.from_api(raw, wallet_address=wallet_address))
        except FillParseError:
            skipped += 1
    if skipped:
        logger.debug("Skipped %d malformed fills for %s", skipped, wallet_address)
    return fills
