"""Storage and registry errors."""

from __future__ import annotations


class StorageError(Exception):
    """Base exception for storage errors."""


class PersistenceError(StorageError):
    """Raised when the database rejects a read or write."""


class WalletAlreadyExistsError(StorageError):
    """Raised when adding a wallet that is already tracked."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Wallet already tracked: {address}")
        self.address = address


class WalletNotFoundError(StorageError):
    """Raised when removing a wallet that is not tracked."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Wallet not found: {address}")
        self.address = address


class SignalNotFoundError(StorageError):
    """Raised when deleting a signal that does not exist."""

    def __init__(self, signal_id: str) -> None:
        super().__init__(f"Signal not found: {signal_id}")
        self.signal_id = signal_id
