"""Migration and primary/secondary synchronization."""

from .coordinator import ConflictReport, SyncCoordinator
from .migration import MigrationCoordinator, MigrationResult
from .state import MigrationLatch, SyncClock, SyncGuard, SyncStateStore

__all__ = [
    "ConflictReport",
    "MigrationCoordinator",
    "MigrationLatch",
    "MigrationResult",
    "SyncClock",
    "SyncCoordinator",
    "SyncGuard",
    "SyncStateStore",
]
