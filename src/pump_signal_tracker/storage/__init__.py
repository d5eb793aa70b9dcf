"""Storage layer - Redis snapshot persistence."""

from pump_signal_tracker.storage.snapshot import Snapshot, SnapshotError, SnapshotStore

__all__ = [
    "Snapshot",
    "SnapshotError",
    "SnapshotStore",
]
