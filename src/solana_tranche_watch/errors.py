"""Exceptions raised by the tranche watcher."""

from __future__ import annotations


class TrancheWatchError(Exception):
    """Base class for errors raised by this package."""


class HoldingsUnavailableError(TrancheWatchError):
    """The wallet's token accounts could not be listed from any RPC endpoint."""


class SnapshotCorruptedError(TrancheWatchError):
    """The persisted comparison snapshot exists but cannot be trusted."""

    def __init__(self, path, reason: str) -> None:
        super().__init__(f"Snapshot at {path} is corrupt: {reason}")
        self.path = path
        self.reason = reason


class NotificationError(TrancheWatchError):
    """A notification could not be delivered."""


__all__ = [
    "HoldingsUnavailableError",
    "NotificationError",
    "SnapshotCorruptedError",
    "TrancheWatchError",
]
