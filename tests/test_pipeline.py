"""Tests for the main pipeline orchestrator."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from hyperliquid_consensus_tracker.alerter.models import DeliveryResult, DispatchResult
from hyperliquid_consensus_tracker.config import Settings, SignalSettings
from hyperliquid_consensus_tracker.detector.models import SignalStatus
from hyperliquid_consensus_tracker.pipeline import Pipeline, PipelineState, sort_newest_first
from hyperliquid_consensus_tracker.storage.database import DatabaseManager
from hyperliquid_consensus_tracker.storage.lock import PassLock

# ============================================================================
# Fixtures
# ============================================================================


def _settings(**signal_env: str) -> Settings:
    env = {
        "SIGNAL_MIN_WALLET_COUNT": "5",
        "SIGNAL_TIME_WINDOW_MINUTES": "10",
        "SIGNAL_MIN_VOLUME": "100000",
        "SIGNAL_DEFAULT_STOP_LOSS_PERCENT": "-2.5",
        "SIGNAL_TAKE_PROFIT_TARGET_PERCENTS": "2.0, 5.0",
    }
    env.update(signal_env)
    return Settings(signal=SignalSettings(**env))


@pytest.fixture
def settings(monkeypatch, tmp_path) -> Settings:
    """Scenario settings, isolated from any local .env file."""
    monkeypatch.chdir(tmp_path)
    return _settings()


@pytest.fixture
def gateway():
    """Gateway double serving a mutable fill book and a mutable mark price."""
    mock = AsyncMock()
    mock.book = {}
    mock.price = Decimal("50000")

    async def fills(address: str):
        return list(mock.book.get(address, []))

    async def mark_price(instrument: str) -> Decimal:
        return mock.price

    mock.fills.side_effect = fills
    mock.mark_price.side_effect = mark_price
    return mock


@pytest.fixture
def dispatcher():
    mock = MagicMock()

    async def dispatch(signal):
        return DispatchResult(
            signal_id=signal.id,
            deliveries=(DeliveryResult("telegram", "100", True),),
        )

    mock.dispatch = AsyncMock(side_effect=dispatch)
    return mock


@pytest.fixture
async def tracked(store, address_factory):
    """Track wallets 1..11 and return their addresses."""
    addresses = [address_factory(i) for i in range(1, 12)]
    for address in addresses:
        await store.add_wallet(address)
    return addresses


def _book(fills) -> dict:
    book: dict = {}
    for fill in fills:
        book.setdefault(fill.wallet_address, []).append(fill)
    return book


def _pipeline(settings, gateway, store, dispatcher) -> Pipeline:
    return Pipeline(settings, gateway=gateway, store=store, lock=PassLock(), dispatcher=dispatcher)


# ============================================================================
# Detection Tests
# ============================================================================


class TestDetectionPass:
    """Tests for Pipeline.run_detection_pass."""

    async def test_creates_signal_and_alerts(
        self, settings, gateway, store, dispatcher, tracked, scenario_fills, now
    ) -> None:
        gateway.book = _book(scenario_fills)
        pipeline = _pipeline(settings, gateway, store, dispatcher)

        result = await pipeline.run_detection_pass(now=now)

        assert result.fills_seen == 6
        assert len(result.created) == 1
        signal = result.created[0]
        assert signal.entry_price == Decimal("50000.0000")
        assert signal.margin == Decimal("30000.00")
        assert signal.stop_loss_level == Decimal("48750.0000")
        assert signal.take_profit_levels == (Decimal("51000.0000"), Decimal("52500.0000"))

        stored = await store.list_signals()
        assert [s.id for s in stored] == [signal.id]
        dispatcher.dispatch.assert_awaited_once()
        assert pipeline.stats.signals_created == 1
        assert pipeline.stats.alerts_sent == 1

    async def test_records_cooldowns(self, settings, gateway, store, dispatcher, tracked, scenario_fills, now) -> None:
        gateway.book = _book(scenario_fills)

        await _pipeline(settings, gateway, store, dispatcher).run_detection_pass(now=now)

        snapshot = await store.load()
        cooled = {a for a, w in snapshot.wallets.items() if "BTC" in w.cooldowns}
        assert cooled == set(tracked[:6])
        assert snapshot.wallets[tracked[0]].cooldowns["BTC"] == now

    async def test_rerun_is_idempotent(self, gateway, store, dispatcher, tracked, scenario_fills, now, monkeypatch, tmp_path) -> None:
        monkeypatch.chdir(tmp_path)
        # Without cooldowns the same cluster is found again and must be skipped by id.
        settings = _settings(SIGNAL_COOLDOWN_MINUTES="0")
        gateway.book = _book(scenario_fills)
        pipeline = _pipeline(settings, gateway, store, dispatcher)

        first = await pipeline.run_detection_pass(now=now)
        second = await pipeline.run_detection_pass(now=now + timedelta(seconds=30))

        assert len(first.created) == 1
        assert len(second.clusters) == 1
        assert second.created == []
        assert len(await store.list_signals()) == 1
        assert dispatcher.dispatch.await_count == 1

    async def test_cooldown_excludes_previous_contributors(
        self, settings, gateway, store, dispatcher, tracked, scenario_fills, fill_factory, now
    ) -> None:
        gateway.book = _book(scenario_fills)
        pipeline = _pipeline(settings, gateway, store, dispatcher)
        await pipeline.run_detection_pass(now=now)

        later = now + timedelta(minutes=20)
        # Wallets 1-6 buy again and a 7th wallet joins; only the 7th is eligible.
        repeat = [fill_factory(i, seconds_ago=-1080 - i) for i in range(1, 8)]
        gateway.book = _book(repeat)

        result = await pipeline.run_detection_pass(now=later)

        assert result.clusters == []
        assert len(await store.list_signals()) == 1

    async def test_new_wallets_form_second_signal(
        self, settings, gateway, store, dispatcher, tracked, scenario_fills, fill_factory, now
    ) -> None:
        gateway.book = _book(scenario_fills)
        pipeline = _pipeline(settings, gateway, store, dispatcher)
        first = await pipeline.run_detection_pass(now=now)

        later = now + timedelta(minutes=20)
        fresh = [fill_factory(i, seconds_ago=-1080 - i) for i in range(1, 12)]
        gateway.book = _book(fresh)

        second = await pipeline.run_detection_pass(now=later)

        assert len(second.created) == 1
        assert set(second.created[0].contributing_wallet_addresses) == set(tracked[6:])
        stored = await store.list_signals()
        assert [s.id for s in stored] == [second.created[0].id, first.created[0].id]

    async def test_no_wallets_skips_fetching(self, settings, gateway, store, dispatcher, now) -> None:
        result = await _pipeline(settings, gateway, store, dispatcher).run_detection_pass(now=now)

        assert result.created == []
        gateway.fills.assert_not_awaited()

    async def test_disabled_config_skips_fetching(
        self, gateway, store, dispatcher, tracked, now, monkeypatch, tmp_path
    ) -> None:
        monkeypatch.chdir(tmp_path)
        settings = _settings(SIGNAL_MIN_WALLET_COUNT="0")

        result = await _pipeline(settings, gateway, store, dispatcher).run_detection_pass(now=now)

        assert result.created == []
        gateway.fills.assert_not_awaited()

    async def test_failed_wallet_fetch_degrades(
        self, settings, gateway, store, dispatcher, tracked, scenario_fills, fill_factory, now
    ) -> None:
        book = _book(scenario_fills)

        async def fills(address: str):
            if address == tracked[0]:
                raise RuntimeError("rate limited")
            return list(book.get(address, []))

        gateway.fills.side_effect = fills

        result = await _pipeline(settings, gateway, store, dispatcher).run_detection_pass(now=now)

        assert result.fills_seen == 5
        assert result.created[0].contributing_wallet_count == 5

    async def test_alert_failure_keeps_signal(
        self, settings, gateway, store, tracked, scenario_fills, now
    ) -> None:
        gateway.book = _book(scenario_fills)
        broken = MagicMock()
        broken.dispatch = AsyncMock(side_effect=RuntimeError("telegram down"))

        result = await _pipeline(settings, gateway, store, broken).run_detection_pass(now=now)

        assert len(result.created) == 1
        assert len(await store.list_signals()) == 1

    async def test_unavailable_price_values_at_entry(
        self, settings, gateway, store, dispatcher, tracked, scenario_fills, now
    ) -> None:
        gateway.book = _book(scenario_fills)
        gateway.price = Decimal("0")

        result = await _pipeline(settings, gateway, store, dispatcher).run_detection_pass(now=now)

        assert result.created[0].current_price == result.created[0].entry_price
        assert result.created[0].pnl == Decimal("0.00")


# ============================================================================
# Valuation Tests
# ============================================================================


class TestValuationPass:
    """Tests for Pipeline.run_valuation_pass."""

    async def test_take_profit_closes_and_attributes(
        self, settings, gateway, store, dispatcher, tracked, scenario_fills, now
    ) -> None:
        gateway.book = _book(scenario_fills)
        pipeline = _pipeline(settings, gateway, store, dispatcher)
        await pipeline.run_detection_pass(now=now)

        gateway.price = Decimal("51200")
        result = await pipeline.run_valuation_pass()

        assert result.evaluated == 1
        assert len(result.closed) == 1
        closed = result.closed[0]
        assert closed.status is SignalStatus.TP
        assert closed.pnl == Decimal("7200.00")
        assert closed.roi == Decimal("24.00")

        snapshot = await store.load()
        assert snapshot.signals[0].status is SignalStatus.TP
        for address in tracked[:6]:
            wallet = snapshot.wallets[address]
            assert wallet.total_pnl == pytest.approx(Decimal("1200"))
            assert wallet.total_trades == 1
            assert wallet.winning_trades == 1
        assert snapshot.wallets[tracked[6]].total_trades == 0

    async def test_closed_signal_is_not_revalued(
        self, settings, gateway, store, dispatcher, tracked, scenario_fills, now
    ) -> None:
        gateway.book = _book(scenario_fills)
        pipeline = _pipeline(settings, gateway, store, dispatcher)
        await pipeline.run_detection_pass(now=now)
        gateway.price = Decimal("48000")
        await pipeline.run_valuation_pass()

        gateway.price = Decimal("60000")
        result = await pipeline.run_valuation_pass()

        assert result.evaluated == 0
        snapshot = await store.load()
        assert snapshot.signals[0].status is SignalStatus.SL
        assert snapshot.signals[0].pnl == Decimal("-12000.00")
        assert snapshot.wallets[tracked[0]].total_trades == 1
        assert snapshot.wallets[tracked[0]].winning_trades == 0

    async def test_open_tick_updates_valuation(
        self, settings, gateway, store, dispatcher, tracked, scenario_fills, now
    ) -> None:
        gateway.book = _book(scenario_fills)
        pipeline = _pipeline(settings, gateway, store, dispatcher)
        await pipeline.run_detection_pass(now=now)

        gateway.price = Decimal("50500")
        result = await pipeline.run_valuation_pass()

        assert result.updated == 1
        assert result.closed == []
        stored = (await store.list_signals())[0]
        assert stored.status is SignalStatus.OPEN
        assert stored.current_price == Decimal("50500.0000")
        assert stored.pnl == Decimal("3000.00")
        assert stored.roi == Decimal("10.00")

    async def test_missing_price_leaves_signal(
        self, settings, gateway, store, dispatcher, tracked, scenario_fills, now
    ) -> None:
        gateway.book = _book(scenario_fills)
        pipeline = _pipeline(settings, gateway, store, dispatcher)
        await pipeline.run_detection_pass(now=now)

        gateway.price = Decimal("0")
        result = await pipeline.run_valuation_pass()

        assert result.evaluated == 1
        assert result.updated == 0
        assert (await store.list_signals())[0].current_price == Decimal("50000.0000")

    async def test_no_open_signals(self, settings, gateway, store, dispatcher) -> None:
        result = await _pipeline(settings, gateway, store, dispatcher).run_valuation_pass()

        assert result.evaluated == 0
        gateway.mark_price.assert_not_awaited()


# ============================================================================
# Concurrent Registry Writes
# ============================================================================


class TestConcurrentRegistryWrites:
    """Tests for registry changes made while a pass is in flight."""

    async def test_wallet_added_during_detection_survives(
        self, settings, gateway, store, dispatcher, tracked, scenario_fills, address_factory, now
    ) -> None:
        book = _book(scenario_fills)
        late = address_factory(99)
        added = {"done": False}

        async def fills(address: str):
            if not added["done"]:
                added["done"] = True
                await store.add_wallet(late)
            return list(book.get(address, []))

        gateway.fills.side_effect = fills

        result = await _pipeline(settings, gateway, store, dispatcher).run_detection_pass(now=now)

        assert len(result.created) == 1
        addresses = {w.address for w in await store.list_wallets()}
        assert late in addresses
        assert set(tracked) <= addresses

    async def test_wallet_removed_during_detection_stays_removed(
        self, settings, gateway, store, dispatcher, tracked, scenario_fills, now
    ) -> None:
        book = _book(scenario_fills)
        removed = {"done": False}

        async def fills(address: str):
            if not removed["done"]:
                removed["done"] = True
                await store.remove_wallet(tracked[10])
            return list(book.get(address, []))

        gateway.fills.side_effect = fills

        await _pipeline(settings, gateway, store, dispatcher).run_detection_pass(now=now)

        assert tracked[10] not in {w.address for w in await store.list_wallets()}

    async def test_signal_deleted_during_valuation_stays_deleted(
        self, settings, gateway, store, dispatcher, tracked, scenario_fills, now
    ) -> None:
        gateway.book = _book(scenario_fills)
        pipeline = _pipeline(settings, gateway, store, dispatcher)
        created = (await pipeline.run_detection_pass(now=now)).created[0]

        async def mark_price(instrument: str) -> Decimal:
            await store.delete_signal(created.id)
            return Decimal("50500")

        gateway.mark_price.side_effect = mark_price

        result = await pipeline.run_valuation_pass()

        assert result.updated == 1
        assert await store.list_signals() == []


# ============================================================================
# Lifecycle Tests
# ============================================================================


class TestPipelineLifecycle:
    """Tests for starting and stopping the pipeline."""

    async def test_passes_require_initialization(self, settings) -> None:
        pipeline = Pipeline(settings)

        with pytest.raises(RuntimeError):
            await pipeline.run_detection_pass()

    async def test_start_runs_passes_then_stops(self, settings, gateway, store, dispatcher) -> None:
        pipeline = _pipeline(settings, gateway, store, dispatcher)

        await pipeline.start()
        assert pipeline.state is PipelineState.RUNNING
        assert pipeline.is_running
        await asyncio.sleep(0.05)
        await pipeline.stop()

        assert pipeline.state is PipelineState.STOPPED
        assert pipeline.stats.detection_passes == 1
        assert pipeline.stats.valuation_passes == 1

    async def test_start_twice_fails(self, settings, gateway, store, dispatcher) -> None:
        pipeline = _pipeline(settings, gateway, store, dispatcher)
        await pipeline.start()
        try:
            with pytest.raises(RuntimeError):
                await pipeline.start()
        finally:
            await pipeline.stop()

    async def test_pass_errors_are_counted(self, settings, gateway, dispatcher) -> None:
        store = MagicMock()
        store.load = AsyncMock(side_effect=RuntimeError("db offline"))
        pipeline = _pipeline(settings, gateway, store, dispatcher)

        async with pipeline:
            await asyncio.sleep(0.05)

        assert pipeline.stats.errors == 2
        assert pipeline.stats.last_error == "db offline"
        assert pipeline.state is PipelineState.STOPPED

    async def test_restart_rebuilds_owned_client(self, settings, store, dispatcher, tracked) -> None:
        clients = [AsyncMock(name="first"), AsyncMock(name="second")]
        for client in clients:
            client.fills.return_value = []
        pipeline = Pipeline(settings, store=store, lock=PassLock(), dispatcher=dispatcher)

        with patch("hyperliquid_consensus_tracker.pipeline.HyperliquidClient", side_effect=clients) as factory:
            await pipeline.start()
            await pipeline.stop()
            await pipeline.start()
            await asyncio.sleep(0.05)
            await pipeline.stop()

        assert factory.call_count == 2
        clients[0].aclose.assert_awaited_once()
        clients[1].health_check.assert_awaited_once()
        assert clients[1].fills.await_count == len(tracked)

    async def test_unreachable_api_is_logged(self, settings, store, dispatcher, caplog) -> None:
        client = AsyncMock()
        client.health_check.return_value = False
        pipeline = Pipeline(settings, store=store, lock=PassLock(), dispatcher=dispatcher)

        with patch("hyperliquid_consensus_tracker.pipeline.HyperliquidClient", return_value=client):
            await pipeline.initialize()
        await pipeline.close()

        assert "not reachable" in caplog.text

    async def test_built_store_shares_pass_lock(self, settings, gateway, dispatcher) -> None:
        schema = DatabaseManager(settings.database.url)
        await schema.init_schema_async()
        await schema.dispose_async()
        lock = PassLock()
        pipeline = Pipeline(settings, gateway=gateway, lock=lock, dispatcher=dispatcher)
        await pipeline.initialize()
        try:
            async with lock.hold():
                task = asyncio.create_task(pipeline.store.add_wallet("0xabc"))
                await asyncio.sleep(0.05)
                assert not task.done()
            await task
        finally:
            await pipeline.close()


def test_sort_newest_first(scenario_signal) -> None:
    from dataclasses import replace

    older = replace(scenario_signal, id="older", created_at=scenario_signal.created_at - timedelta(minutes=1))

    assert [s.id for s in sort_newest_first([older, scenario_signal])] == [scenario_signal.id, "older"]
