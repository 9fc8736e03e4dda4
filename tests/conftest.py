"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from hyperliquid_consensus_tracker.detector.cluster import to_epoch_ms
from hyperliquid_consensus_tracker.detector.factory import SignalFactory
from hyperliquid_consensus_tracker.detector.models import Cluster, DetectionConfig, Signal
from hyperliquid_consensus_tracker.ingestor.models import Direction, Fill
from hyperliquid_consensus_tracker.storage.database import DatabaseManager
from hyperliquid_consensus_tracker.storage.models import Base
from hyperliquid_consensus_tracker.storage.store import TrackerStore

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)
NOW_MS = to_epoch_ms(NOW)


def wallet_address(index: int) -> str:
    """Deterministic 20-byte hex address for test wallet ``index``."""
    return f"0x{index:040x}"


def make_fill(
    index: int = 1,
    *,
    instrument: str = "BTC",
    side: str = "BUY",
    size: str = "1",
    price: str = "50000",
    seconds_ago: float = 300,
    start_position: str = "0",
    leverage: str = "10",
) -> Fill:
    """Build a fill for wallet ``index`` relative to NOW."""
    return Fill(
        instrument=instrument,
        side=side,  # type: ignore[arg-type]
        size=Decimal(size),
        price=Decimal(price),
        time_ms=NOW_MS - int(seconds_ago * 1000),
        start_position=Decimal(start_position),
        wallet_address=wallet_address(index),
        leverage=Decimal(leverage),
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def fill_factory() -> Callable[..., Fill]:
    return make_fill


@pytest.fixture
def address_factory() -> Callable[[int], str]:
    return wallet_address


@pytest.fixture
def scenario_config() -> DetectionConfig:
    """N=5, T=10, min volume 100000, SL -2.5%, TP 2% and 5%."""
    return DetectionConfig(
        min_wallet_count=5,
        time_window_minutes=10,
        min_volume=Decimal("100000"),
        default_stop_loss_percent=Decimal("-2.5"),
        take_profit_target_percents=(Decimal("2.0"), Decimal("5.0")),
    )


@pytest.fixture
def scenario_fills() -> list[Fill]:
    """Six wallets each buying 1 BTC at 50000 within a few minutes."""
    return [make_fill(i, seconds_ago=360 - i * 30) for i in range(1, 7)]


@pytest.fixture
def scenario_signal(scenario_config, scenario_fills) -> Signal:
    """Open LONG BTC signal built from the six scenario fills."""
    cluster = Cluster(instrument="BTC", direction=Direction.LONG, fills=tuple(scenario_fills))
    return SignalFactory(scenario_config).build(cluster)


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_engine) -> AsyncSession:
    """Create an async session for testing."""
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def db(tmp_path) -> DatabaseManager:
    """File-backed SQLite database with the schema created."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'tracker.db'}")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


@pytest.fixture
def store(db) -> TrackerStore:
    return TrackerStore(db)
