"""Main pipeline orchestrator for the Hyperliquid Consensus Tracker.

This module provides the Pipeline class that wires the gateway, detector,
lifecycle manager, store and alerter together and runs the two periodic
passes:

    detection:  fills → cooldown filter → clusters → signals → store → alerts
    valuation:  mark prices → lifecycle transitions → PnL attribution → store
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from hyperliquid_consensus_tracker.alerter.channels import AlertChannel, TelegramChannel
from hyperliquid_consensus_tracker.alerter.dispatcher import AlertDispatcher
from hyperliquid_consensus_tracker.alerter.formatter import SignalAlertFormatter
from hyperliquid_consensus_tracker.config import Settings, get_settings
from hyperliquid_consensus_tracker.detector.cluster import ClusterDetector
from hyperliquid_consensus_tracker.detector.cooldown import CooldownLedger
from hyperliquid_consensus_tracker.detector.factory import SignalFactory, signal_id_for
from hyperliquid_consensus_tracker.detector.models import Cluster, Signal
from hyperliquid_consensus_tracker.ingestor.fetch import (
    MarketDataGateway,
    fetch_fills_for_wallets,
    fetch_mark_prices,
)
from hyperliquid_consensus_tracker.ingestor.hyperliquid_client import HyperliquidClient
from hyperliquid_consensus_tracker.lifecycle.attribution import attribute_pnl
from hyperliquid_consensus_tracker.lifecycle.manager import LifecycleManager
from hyperliquid_consensus_tracker.storage.database import DatabaseManager
from hyperliquid_consensus_tracker.storage.lock import PassLock
from hyperliquid_consensus_tracker.storage.store import TrackerStore

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    detection_passes: int = 0
    valuation_passes: int = 0
    signals_created: int = 0
    signals_closed: int = 0
    alerts_sent: int = 0
    errors: int = 0
    last_detection_at: datetime | None = None
    last_valuation_at: datetime | None = None
    last_error: str | None = None


@dataclass
class DetectionResult:
    """Outcome of one detection pass."""

    fills_seen: int = 0
    clusters: list[Cluster] = field(default_factory=list)
    created: list[Signal] = field(default_factory=list)


@dataclass
class ValuationResult:
    """Outcome of one valuation pass."""

    evaluated: int = 0
    updated: int = 0
    closed: list[Signal] = field(default_factory=list)
    contributions: dict[str, dict[str, Decimal]] = field(default_factory=dict)


def sort_newest_first(signals: list[Signal]) -> list[Signal]:
    return sorted(signals, key=lambda s: (s.created_at, s.id), reverse=True)


class Pipeline:
    """Main pipeline orchestrator for the Hyperliquid Consensus Tracker.

    Components may be injected (tests, the CLI); anything left out is built
    from settings on initialization and owned by the pipeline. Owned
    components are closed on stop and rebuilt on the next start.

    Example:
        ```python
        from hyperliquid_consensus_tracker.config import get_settings
        from hyperliquid_consensus_tracker.pipeline import Pipeline

        pipeline = Pipeline(get_settings())

        await pipeline.start()
        # Passes run on their own cadence until stop() is called
        await pipeline.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        gateway: MarketDataGateway | None = None,
        store: TrackerStore | None = None,
        lock: PassLock | None = None,
        dispatcher: AlertDispatcher | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, skip sending alerts. Overrides settings.dry_run.
            gateway: Market data source (defaults to a HyperliquidClient).
            store: Persisted state (defaults to a database-backed TrackerStore).
            lock: Single-writer lock (defaults to Redis when configured).
            dispatcher: Alert sink (defaults to channels from settings).
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        self._gateway = gateway
        self._store = store
        self._lock = lock
        self._dispatcher = dispatcher
        self._lifecycle = LifecycleManager()

        # Owned resources (created in initialize())
        self._client: HyperliquidClient | None = None
        self._db_manager: DatabaseManager | None = None
        self._redis: Redis | None = None
        self._channels: list[AlertChannel] = []

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._detection_task: asyncio.Task[None] | None = None
        self._valuation_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def store(self) -> TrackerStore:
        if self._store is None:
            raise RuntimeError("Pipeline is not initialized")
        return self._store

    async def initialize(self) -> None:
        """Build every component that was not injected."""
        settings = self._settings

        if self._lock is None:
            if settings.redis.url:
                logger.debug("Initializing Redis pass lock...")
                self._redis = Redis.from_url(settings.redis.url)
            self._lock = PassLock(self._redis)

        if self._store is None:
            logger.debug("Initializing database...")
            self._db_manager = DatabaseManager(settings.database.url)
            self._store = TrackerStore(self._db_manager, lock=self._lock)

        if self._gateway is None:
            logger.debug("Initializing Hyperliquid client...")
            self._client = HyperliquidClient(
                api_url=settings.hyperliquid.api_url,
                timeout_seconds=settings.hyperliquid.request_timeout_seconds,
                requests_per_second=settings.hyperliquid.requests_per_second,
                mids_cache_ttl_seconds=settings.hyperliquid.mids_cache_ttl_seconds,
            )
            self._gateway = self._client
            if not await self._client.health_check():
                logger.warning("Hyperliquid info API is not reachable at %s", settings.hyperliquid.api_url)

        if self._dispatcher is None:
            self._channels = self._build_alert_channels()
            self._dispatcher = AlertDispatcher(
                self._channels,
                formatter=SignalAlertFormatter(settings.dashboard_url),
                dry_run=self._dry_run,
            )

        logger.info("All components initialized")

    def _build_alert_channels(self) -> list[AlertChannel]:
        """Build list of enabled alert channels."""
        channels: list[AlertChannel] = []
        telegram = self._settings.telegram

        if telegram.enabled and telegram.bot_token:
            channels.append(
                TelegramChannel(telegram.bot_token.get_secret_value(), telegram.chat_id_list)
            )
            logger.info("Telegram channel enabled")

        if not channels:
            logger.info("Telegram settings are not configured; alerts will only be logged")

        return channels

    async def start(self) -> None:
        """Start the pipeline.

        Initializes all components and launches the detection and valuation
        loops.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self.initialize()
            self._detection_task = asyncio.create_task(self._run_detection_loop())
            self._valuation_task = asyncio.create_task(self._run_valuation_loop())
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self.close()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        for task in (self._detection_task, self._valuation_task):
            if task:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._detection_task = None
        self._valuation_task = None

        await self.close()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def close(self) -> None:
        """Release owned resources."""
        if self._channels:
            for channel in self._channels:
                aclose = getattr(channel, "aclose", None)
                if aclose is not None:
                    await aclose()
            self._channels = []
            self._dispatcher = None

        if self._client:
            await self._client.aclose()
            if self._gateway is self._client:
                self._gateway = None
            self._client = None

        if self._db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None
            self._store = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None
            self._lock = None

        logger.debug("Resources cleaned up")

    def _require_ready(self) -> tuple[MarketDataGateway, TrackerStore, PassLock]:
        if self._gateway is None or self._store is None or self._lock is None:
            raise RuntimeError("Pipeline is not initialized")
        return self._gateway, self._store, self._lock

    async def run_detection_pass(self, now: datetime | None = None) -> DetectionResult:
        """Run one detection pass.

        New signals are persisted together with the cooldowns they start,
        and only then handed to the alert dispatcher.

        Args:
            now: Evaluation time; defaults to the current time.

        Returns:
            DetectionResult describing what was found and created.

        Raises:
            PersistenceError: If the store cannot be read or written.
        """
        gateway, store, lock = self._require_ready()

        async with lock.hold():
            result = await self._detect(gateway, store, now or datetime.now(UTC))

        self._stats.detection_passes += 1
        self._stats.signals_created += len(result.created)
        self._stats.last_detection_at = datetime.now(UTC)
        logger.info(
            "Detection pass complete: fills=%d clusters=%d created=%d",
            result.fills_seen,
            len(result.clusters),
            len(result.created),
        )

        await self._notify(result.created)
        return result

    async def _detect(self, gateway: MarketDataGateway, store: TrackerStore, now: datetime) -> DetectionResult:
        config = self._settings.signal.to_detection_config()
        timeout = self._settings.hyperliquid.request_timeout_seconds
        result = DetectionResult()

        snapshot = await store.load()
        if not snapshot.wallets:
            logger.info("No wallets to track. Skipping detection pass")
            return result
        if not config.is_runnable:
            logger.info(
                "Detection disabled: min_wallet_count=%d time_window_minutes=%d",
                config.min_wallet_count,
                config.time_window_minutes,
            )
            return result

        fills_by_wallet = await fetch_fills_for_wallets(
            gateway, snapshot.wallets.keys(), timeout_seconds=timeout
        )
        all_fills = [fill for fills in fills_by_wallet.values() for fill in fills]
        result.fills_seen = len(all_fills)

        ledger = CooldownLedger(snapshot.wallets, cooldown=config.cooldown)
        result.clusters = ClusterDetector(config, ledger).detect(all_fills, now=now)

        existing_ids = snapshot.signal_ids
        fresh = [c for c in result.clusters if signal_id_for(c) not in existing_ids]
        prices = await fetch_mark_prices(
            gateway, (c.instrument for c in fresh), timeout_seconds=timeout
        )

        result.created = SignalFactory(config).create_signals(
            result.clusters,
            existing_ids=existing_ids,
            ledger=ledger,
            now=now,
            mark_prices=prices,
        )
        if result.created:
            snapshot.signals = sort_newest_first(result.created + snapshot.signals)
            await store.save(snapshot)
        return result

    async def _notify(self, signals: list[Signal]) -> None:
        if not signals or self._dispatcher is None:
            return
        for signal in signals:
            try:
                dispatch = await self._dispatcher.dispatch(signal)
            except Exception as e:
                logger.error("Alert dispatch failed for %s: %s", signal.id, e)
                continue
            self._stats.alerts_sent += dispatch.success_count

    async def run_valuation_pass(self) -> ValuationResult:
        """Run one valuation pass over every open signal.

        Signals that reach TP or SL on this tick have their PnL attributed to
        the contributing wallets in the same atomic save.

        Returns:
            ValuationResult with the signals closed on this tick.

        Raises:
            PersistenceError: If the store cannot be read or written.
        """
        gateway, store, lock = self._require_ready()

        async with lock.hold():
            result = await self._valuate(gateway, store)

        self._stats.valuation_passes += 1
        self._stats.signals_closed += len(result.closed)
        self._stats.last_valuation_at = datetime.now(UTC)
        logger.info(
            "Valuation pass complete: evaluated=%d updated=%d closed=%d",
            result.evaluated,
            result.updated,
            len(result.closed),
        )
        return result

    async def _valuate(self, gateway: MarketDataGateway, store: TrackerStore) -> ValuationResult:
        timeout = self._settings.hyperliquid.request_timeout_seconds
        result = ValuationResult()

        snapshot = await store.load()
        open_signals = [s for s in snapshot.signals if s.is_open]
        if not open_signals:
            logger.info("No open signals to update")
            return result

        prices = await fetch_mark_prices(
            gateway, (s.instrument for s in open_signals), timeout_seconds=timeout
        )

        updated_signals: list[Signal] = []
        for signal in snapshot.signals:
            if not signal.is_open:
                updated_signals.append(signal)
                continue
            result.evaluated += 1
            updated = self._lifecycle.evaluate(signal, prices.get(signal.instrument))
            if updated != signal:
                result.updated += 1
            if updated.status.is_terminal:
                result.contributions[updated.id] = attribute_pnl(updated, snapshot.wallets)
                result.closed.append(updated)
            updated_signals.append(updated)

        if result.updated:
            snapshot.signals = updated_signals
            await store.save(snapshot)
        return result

    async def _run_periodic(self, name: str, interval: float, pass_fn: Any) -> None:
        if not self._stop_event:
            return
        while not self._stop_event.is_set():
            try:
                await pass_fn()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.warning("%s pass error: %s", name, e)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except TimeoutError:
                pass

    async def _run_detection_loop(self) -> None:
        await self._run_periodic(
            "Detection",
            self._settings.polling.wallet_poll_interval_seconds,
            self.run_detection_pass,
        )

    async def _run_valuation_loop(self) -> None:
        await self._run_periodic(
            "Valuation",
            self._settings.polling.price_poll_interval_seconds,
            self.run_valuation_pass,
        )

    async def run(self) -> None:
        """Start the pipeline and run until interrupted."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
