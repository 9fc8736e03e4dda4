"""Storage layer - Database schemas, repositories and the store facade."""

from hyperliquid_consensus_tracker.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from hyperliquid_consensus_tracker.storage.errors import (
    PersistenceError,
    SignalNotFoundError,
    StorageError,
    WalletAlreadyExistsError,
    WalletNotFoundError,
)
from hyperliquid_consensus_tracker.storage.lock import PassLock, PassLockTimeoutError
from hyperliquid_consensus_tracker.storage.models import Base, SignalModel, WalletModel
from hyperliquid_consensus_tracker.storage.repos import SignalRepository, WalletRepository
from hyperliquid_consensus_tracker.storage.store import TrackerSnapshot, TrackerStore

__all__ = [
    "Base",
    "DatabaseManager",
    "PassLock",
    "PassLockTimeoutError",
    "PersistenceError",
    "SignalModel",
    "SignalNotFoundError",
    "SignalRepository",
    "StorageError",
    "TrackerSnapshot",
    "TrackerStore",
    "WalletAlreadyExistsError",
    "WalletModel",
    "WalletNotFoundError",
    "WalletRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
