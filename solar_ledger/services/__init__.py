"""
solar_ledger/services/

Supporting services around the core ledger.

- store: Key-value backends for ledger snapshots (memory, file, redis)
- pulse: Repeating tasks with explicit cancellation
- console: Command-line entry point (imported on demand)
"""

from .store import (
    StateStore,
    StoreConfig,
    InMemoryStateStore,
    FileStateStore,
    RedisStateStore,
    create_state_store,
)
from .pulse import CancellationToken, PeriodicTask

__all__ = [
    "StateStore",
    "StoreConfig",
    "InMemoryStateStore",
    "FileStateStore",
    "RedisStateStore",
    "create_state_store",
    "CancellationToken",
    "PeriodicTask",
]
