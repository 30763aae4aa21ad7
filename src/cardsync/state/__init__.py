"""
Durable local state: the persisted snapshot and the crash-recovery slot.

SqliteStateStore is the default backend; MemoryStateStore keeps state in
process memory only.
"""

from pathlib import Path
from typing import Optional, Union

from .state_store import StateStore
from .memory_store import MemoryStateStore
from .sqlite_store import SqliteStateStore


def create_state_store(
    backend: str = "sqlite",
    db_path: Optional[Union[str, Path]] = None,
) -> StateStore:
    """
    Factory function to create a state store.

    Args:
        backend: 'sqlite' or 'memory'
        db_path: SQLite database file (required for 'sqlite')

    Raises:
        ValueError: If backend is not recognized or db_path is missing
    """
    backend = (backend or "sqlite").lower()
    if backend == "memory":
        return MemoryStateStore()
    if backend == "sqlite":
        if db_path is None:
            raise ValueError("db_path is required for the sqlite state store")
        return SqliteStateStore(db_path)
    raise ValueError(f"Unknown state store backend: {backend}")


__all__ = [
    "StateStore",
    "MemoryStateStore",
    "SqliteStateStore",
    "create_state_store",
]
