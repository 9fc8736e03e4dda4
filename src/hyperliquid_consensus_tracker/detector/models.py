"""Data models for the detector module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum

from hyperliquid_consensus_tracker.ingestor.models import Direction, Fill

DEFAULT_COOLDOWN = timedelta(hours=2)

# Display precision carried over into storage.
PRICE_QUANTUM = Decimal("0.0001")
SIZE_QUANTUM = Decimal("0.0001")
MONEY_QUANTUM = Decimal("0.01")


class SignalStatus(str, Enum):
    """Lifecycle state of a signal. TP and SL are terminal."""

    OPEN = "Open"
    TP = "TP"
    SL = "SL"

    @property
    def is_terminal(self) -> bool:
        return self is not SignalStatus.OPEN


@dataclass(frozen=True)
class DetectionConfig:
    """Immutable knobs for one detection or valuation invocation.

    Attributes:
        min_wallet_count: Minimum distinct wallets in a cluster (N).
        time_window_minutes: Width of the consensus window (T).
        min_volume: Minimum total notional of the cluster.
        default_stop_loss_percent: Signed stop distance, typically negative.
        take_profit_target_percents: Ordered take-profit distances.
        cooldown: Suppression period after a wallet contributes to a signal.
    """

    min_wallet_count: int = 5
    time_window_minutes: int = 10
    min_volume: Decimal = Decimal("1000")
    default_stop_loss_percent: Decimal = Decimal("-2.5")
    take_profit_target_percents: tuple[Decimal, ...] = (
        Decimal("2.0"),
        Decimal("3.5"),
        Decimal("5.0"),
    )
    cooldown: timedelta = DEFAULT_COOLDOWN

    @property
    def time_window_ms(self) -> int:
        return self.time_window_minutes * 60 * 1000

    @property
    def is_runnable(self) -> bool:
        """Return True if N and T are positive."""
        return self.min_wallet_count > 0 and self.time_window_minutes > 0


@dataclass(frozen=True)
class Cluster:
    """Fills from distinct wallets chosen as evidence for one signal."""

    instrument: str
    direction: Direction
    fills: tuple[Fill, ...]

    @property
    def wallet_addresses(self) -> list[str]:
        """Return unique contributing wallets, sorted."""
        return sorted({f.wallet_address for f in self.fills})

    @property
    def wallet_count(self) -> int:
        return len({f.wallet_address for f in self.fills})

    @property
    def notional_volume(self) -> Decimal:
        return sum((f.notional_value for f in self.fills), Decimal(0))

    @property
    def total_size(self) -> Decimal:
        return sum((abs(f.size) for f in self.fills), Decimal(0))

    @property
    def latest_time_ms(self) -> int:
        return max(f.time_ms for f in self.fills)


@dataclass(frozen=True)
class Signal:
    """A consensus signal and its current valuation.

    Created once by the signal factory; afterwards only the lifecycle manager
    produces updated copies (price, pnl, roi, status) until it is terminal.
    """

    id: str
    instrument: str
    direction: Direction
    entry_price: Decimal
    current_price: Decimal
    pnl: Decimal
    roi: Decimal
    status: SignalStatus
    created_at: datetime
    leverage: Decimal
    margin: Decimal
    size: Decimal
    contributing_wallet_addresses: tuple[str, ...]
    cluster_fills: tuple[Fill, ...]
    take_profit_levels: tuple[Decimal, ...]
    stop_loss_level: Decimal

    @property
    def is_open(self) -> bool:
        return self.status is SignalStatus.OPEN

    @property
    def contributing_wallet_count(self) -> int:
        return len(self.contributing_wallet_addresses)

    def to_dict(self) -> dict[str, object]:
        """Serialize to a JSON-safe dictionary."""
        return {
            "id": self.id,
            "instrument": self.instrument,
            "direction": self.direction.value,
            "entry_price": str(self.entry_price),
            "current_price": str(self.current_price),
            "pnl": str(self.pnl),
            "roi": str(self.roi),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "leverage": str(self.leverage),
            "margin": str(self.margin),
            "size": str(self.size),
            "contributing_wallet_addresses": list(self.contributing_wallet_addresses),
            "cluster_fills": [f.to_dict() for f in self.cluster_fills],
            "take_profit_levels": [str(tp) for tp in self.take_profit_levels],
            "stop_loss_level": str(self.stop_loss_level),
        }


@dataclass
class Wallet:
    """A tracked wallet with its cumulative signal statistics and cooldowns."""

    address: str
    added_on: datetime = field(default_factory=lambda: datetime.now(UTC))
    total_pnl: Decimal = Decimal(0)
    total_trades: int = 0
    winning_trades: int = 0
    cooldowns: dict[str, datetime] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.address = self.address.lower()

    @property
    def win_rate(self) -> float:
        """Return the percentage of resolved signals that hit take-profit."""
        if self.total_trades <= 0:
            return 0.0
        return self.winning_trades / self.total_trades * 100


def compute_pnl(direction: Direction, *, entry_price: Decimal, price: Decimal, size: Decimal) -> Decimal:
    """Return the position PnL at ``price``, quantized to cents."""
    pnl = (price - entry_price) * size * direction.sign
    return pnl.quantize(MONEY_QUANTUM)


def compute_roi(pnl: Decimal, margin: Decimal) -> Decimal:
    """Return PnL as a percentage of margin (0 when there is no margin)."""
    if margin <= 0:
        return Decimal("0.00")
    return (pnl / margin * 100).quantize(MONEY_QUANTUM)
