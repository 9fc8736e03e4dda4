"""Command line entry point for the Hyperliquid Consensus Tracker.

Usage:
    python -m hyperliquid_consensus_tracker run
    python -m hyperliquid_consensus_tracker detect
    python -m hyperliquid_consensus_tracker wallets add 0xabc...
    python -m hyperliquid_consensus_tracker explore BTC
    python -m hyperliquid_consensus_tracker explore --wallet 0xabc...
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from redis.asyncio import Redis

from hyperliquid_consensus_tracker.config import Settings, get_settings
from hyperliquid_consensus_tracker.explorer import WalletLookupError, find_positions_by_coin, get_wallet_data
from hyperliquid_consensus_tracker.ingestor.hyperliquid_client import HyperliquidClient
from hyperliquid_consensus_tracker.pipeline import Pipeline
from hyperliquid_consensus_tracker.reporting import build_dashboard_summary, build_wallet_leaderboard
from hyperliquid_consensus_tracker.storage.database import DatabaseManager
from hyperliquid_consensus_tracker.storage.errors import StorageError
from hyperliquid_consensus_tracker.storage.lock import PassLock
from hyperliquid_consensus_tracker.storage.store import TrackerStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hl-tracker",
        description="Hyperliquid consensus signal tracker",
    )
    parser.add_argument("--dry-run", action="store_true", help="Log alerts instead of sending them")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    subparsers.add_parser("run", help="Run detection and valuation loops until interrupted")
    subparsers.add_parser("detect", help="Run a single detection pass")
    subparsers.add_parser("valuate", help="Run a single valuation pass")
    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("config", help="Show the effective configuration (secrets redacted)")
    subparsers.add_parser("summary", help="Show the dashboard summary and wallet leaderboard")

    wallets = subparsers.add_parser("wallets", help="Manage tracked wallets")
    wallet_commands = wallets.add_subparsers(dest="wallet_command", required=True)
    add_parser = wallet_commands.add_parser("add", help="Track a wallet")
    add_parser.add_argument("address")
    remove_parser = wallet_commands.add_parser("remove", help="Stop tracking a wallet")
    remove_parser.add_argument("address")
    wallet_commands.add_parser("list", help="List tracked wallets")

    signals = subparsers.add_parser("signals", help="Inspect stored signals")
    signal_commands = signals.add_subparsers(dest="signal_command", required=True)
    list_parser = signal_commands.add_parser("list", help="List signals, newest first")
    list_parser.add_argument("--limit", type=int, default=20)
    delete_parser = signal_commands.add_parser("delete", help="Delete a signal")
    delete_parser.add_argument("signal_id")

    explore = subparsers.add_parser("explore", help="Find tracked wallets holding a coin, or look up one wallet")
    explore.add_argument("coin", nargs="?")
    explore.add_argument("--wallet", help="Show the open positions of any wallet")

    return parser


async def _with_store(settings: Settings, action: Callable[[TrackerStore], Awaitable[T]]) -> T:
    db = DatabaseManager(settings.database.url)
    redis = Redis.from_url(settings.redis.url) if settings.redis.url else None
    try:
        # Registry writes share the pass lock with a running tracker.
        return await action(TrackerStore(db, lock=PassLock(redis)))
    finally:
        if redis is not None:
            await redis.aclose()
        await db.dispose_async()


async def _single_pass(settings: Settings, *, dry_run: bool, detection: bool) -> None:
    pipeline = Pipeline(settings, dry_run=dry_run or None)
    await pipeline.initialize()
    try:
        if detection:
            result = await pipeline.run_detection_pass()
            for signal in result.created:
                print(f"created {signal.id} entry={signal.entry_price} wallets={signal.contributing_wallet_count}")
        else:
            valuation = await pipeline.run_valuation_pass()
            for signal in valuation.closed:
                print(f"closed {signal.id} status={signal.status.value} pnl={signal.pnl}")
    finally:
        await pipeline.close()


async def _init_db(settings: Settings) -> None:
    db = DatabaseManager(settings.database.url)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()


async def _wallets(settings: Settings, args: argparse.Namespace) -> None:
    if args.wallet_command == "add":
        wallet = await _with_store(settings, lambda store: store.add_wallet(args.address))
        print(f"added {wallet.address}")
    elif args.wallet_command == "remove":
        await _with_store(settings, lambda store: store.remove_wallet(args.address))
        print(f"removed {args.address.lower()}")
    else:
        wallets = await _with_store(settings, lambda store: store.list_wallets())
        for wallet in wallets:
            print(
                f"{wallet.address}  added={wallet.added_on:%Y-%m-%d}  pnl={wallet.total_pnl:.2f}  "
                f"trades={wallet.total_trades}  win_rate={wallet.win_rate:.1f}%"
            )


async def _signals(settings: Settings, args: argparse.Namespace) -> None:
    if args.signal_command == "delete":
        await _with_store(settings, lambda store: store.delete_signal(args.signal_id))
        print(f"deleted {args.signal_id}")
        return
    signals = await _with_store(settings, lambda store: store.list_signals())
    for signal in signals[: args.limit]:
        print(
            f"{signal.id}  {signal.status.value:<4}  entry={signal.entry_price}  "
            f"price={signal.current_price}  pnl={signal.pnl}  roi={signal.roi}%"
        )


async def _summary(settings: Settings) -> None:
    async def load(store: TrackerStore) -> tuple[list, list]:
        snapshot = await store.load()
        return snapshot.signals, list(snapshot.wallets.values())

    signals, wallets = await _with_store(settings, load)
    summary = build_dashboard_summary(signals, wallets)
    print(f"Open PnL: {summary.open_pnl}  ROI: {summary.open_roi}%")
    print(f"Win rate: {summary.win_rate}%  closed={summary.closed_signals}  active={summary.active_signals}")
    print(f"Tracked wallets: {summary.tracked_wallets}")
    print("Monthly win rate: " + ", ".join(f"{m.label} {m.win_rate}%" for m in summary.monthly_win_rates))
    for row in build_wallet_leaderboard(wallets):
        print(f"#{row.rank} {row.address}  pnl={row.pnl}  success={row.success_rate}%  trades={row.trades}")


def _client(settings: Settings) -> HyperliquidClient:
    return HyperliquidClient(
        api_url=settings.hyperliquid.api_url,
        timeout_seconds=settings.hyperliquid.request_timeout_seconds,
        requests_per_second=settings.hyperliquid.requests_per_second,
    )


async def _explore(settings: Settings, coin: str) -> None:
    wallets = await _with_store(settings, lambda store: store.list_wallets())
    async with _client(settings) as client:
        positions = await find_positions_by_coin(client, [w.address for w in wallets], coin)
    for position in positions:
        print(
            f"{position.address}  {position.coin}  size={position.size}  entry={position.entry_price}  "
            f"value={position.position_value}  opened={position.opened_at.isoformat()}"
        )


async def _explore_wallet(settings: Settings, address: str) -> None:
    async with _client(settings) as client:
        data = await get_wallet_data(client, address)
    print(f"{data.address}  account={data.account_value}  unrealized_pnl={data.unrealized_pnl}  roi={data.roi}%")
    for p in data.positions:
        print(
            f"  {p.coin}  size={p.size}  entry={p.entry_price}  value={p.position_value}  "
            f"pnl={p.unrealized_pnl}  roe={p.return_on_equity}%"
        )


def main(argv: Sequence[str] | None = None) -> int:
    """Main entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "explore" and (args.coin is None) == (args.wallet is None):
        parser.error("explore takes either a coin or --wallet")
    settings = get_settings()
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "run":
            asyncio.run(Pipeline(settings, dry_run=args.dry_run or None).run())
        elif args.command == "detect":
            asyncio.run(_single_pass(settings, dry_run=args.dry_run, detection=True))
        elif args.command == "valuate":
            asyncio.run(_single_pass(settings, dry_run=args.dry_run, detection=False))
        elif args.command == "init-db":
            asyncio.run(_init_db(settings))
            print("database initialized")
        elif args.command == "config":
            print(json.dumps(settings.redacted_summary(), indent=2))
        elif args.command == "wallets":
            asyncio.run(_wallets(settings, args))
        elif args.command == "signals":
            asyncio.run(_signals(settings, args))
        elif args.command == "summary":
            asyncio.run(_summary(settings))
        elif args.command == "explore":
            if args.wallet:
                asyncio.run(_explore_wallet(settings, args.wallet))
            else:
                asyncio.run(_explore(settings, args.coin))
    except (StorageError, WalletLookupError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
