"""Performance reporting over stored signals and wallets."""

from __future__ import annotations

import calendar
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal

from hyperliquid_consensus_tracker.detector.models import (
    MONEY_QUANTUM,
    Signal,
    SignalStatus,
    Wallet,
)

RECENT_SIGNAL_LIMIT = 5
MONTHS_IN_CHART = 6
PERCENT_QUANTUM = Decimal("0.1")


@dataclass(frozen=True)
class MonthlyWinRate:
    year: int
    month: int
    label: str
    wins: int
    losses: int
    win_rate: Decimal


@dataclass(frozen=True)
class DashboardSummary:
    """Aggregates shown on the tracker's overview page.

    PnL and ROI cover open signals only; win rate covers closed ones.
    """

    open_pnl: Decimal
    open_roi: Decimal
    win_rate: Decimal
    closed_signals: int
    active_signals: int
    tracked_wallets: int
    outcomes: dict[str, int]
    recent_signals: list[Signal] = field(default_factory=list)
    monthly_win_rates: list[MonthlyWinRate] = field(default_factory=list)


@dataclass(frozen=True)
class WalletPerformance:
    rank: int
    address: str
    success_rate: Decimal
    pnl: Decimal
    trades: int


def _percent(numerator: Decimal | int, denominator: Decimal | int) -> Decimal:
    if not denominator:
        return Decimal("0")
    return Decimal(numerator) / Decimal(denominator) * 100


def _shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def build_dashboard_summary(
    signals: Sequence[Signal],
    wallets: Iterable[Wallet],
    *,
    now: datetime | None = None,
) -> DashboardSummary:
    """Summarize signal performance.

    Args:
        signals: Stored signals, newest first.
        wallets: Tracked wallets.
        now: Reference time for the monthly chart; defaults to now.

    Returns:
        DashboardSummary with open PnL, win rates and recent activity.
    """
    now = now or datetime.now(UTC)
    open_pnl = Decimal(0)
    open_margin = Decimal(0)
    outcomes: Counter[SignalStatus] = Counter()
    monthly: dict[tuple[int, int], Counter[SignalStatus]] = {}

    for signal in signals:
        outcomes[signal.status] += 1
        if signal.is_open:
            open_pnl += signal.pnl
            open_margin += signal.margin
            continue
        key = (signal.created_at.year, signal.created_at.month)
        monthly.setdefault(key, Counter())[signal.status] += 1

    wins = outcomes[SignalStatus.TP]
    losses = outcomes[SignalStatus.SL]

    chart: list[MonthlyWinRate] = []
    for offset in range(MONTHS_IN_CHART - 1, -1, -1):
        year, month = _shift_month(now.year, now.month, -offset)
        counts = monthly.get((year, month), Counter())
        month_wins = counts[SignalStatus.TP]
        month_losses = counts[SignalStatus.SL]
        chart.append(
            MonthlyWinRate(
                year=year,
                month=month,
                label=calendar.month_abbr[month],
                wins=month_wins,
                losses=month_losses,
                win_rate=_percent(month_wins, month_wins + month_losses).quantize(PERCENT_QUANTUM),
            )
        )

    return DashboardSummary(
        open_pnl=open_pnl.quantize(MONEY_QUANTUM),
        open_roi=_percent(open_pnl, open_margin).quantize(MONEY_QUANTUM),
        win_rate=_percent(wins, wins + losses).quantize(MONEY_QUANTUM),
        closed_signals=wins + losses,
        active_signals=outcomes[SignalStatus.OPEN],
        tracked_wallets=len(list(wallets)),
        outcomes={
            "Take Profit": wins,
            "Stop Loss": losses,
            "Open": outcomes[SignalStatus.OPEN],
        },
        recent_signals=list(signals[:RECENT_SIGNAL_LIMIT]),
        monthly_win_rates=chart,
    )


def build_wallet_leaderboard(wallets: Iterable[Wallet]) -> list[WalletPerformance]:
    """Rank wallets by cumulative attributed PnL, best first."""
    ranked = sorted(wallets, key=lambda w: (-w.total_pnl, w.address))
    return [
        WalletPerformance(
            rank=index,
            address=wallet.address,
            success_rate=_percent(wallet.winning_trades, wallet.total_trades).quantize(MONEY_QUANTUM),
            pnl=wallet.total_pnl.quantize(MONEY_QUANTUM),
            trades=wallet.total_trades,
        )
        for index, wallet in enumerate(ranked, start=1)
    ]
