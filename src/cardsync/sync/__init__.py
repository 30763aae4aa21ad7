"""
Synchronization: the sync engine and the scheduler that drives it.
"""

from .engine import EngineConfig, SyncEngine
from .scheduler import SchedulerConfig, SyncScheduler

__all__ = [
    "EngineConfig",
    "SyncEngine",
    "SchedulerConfig",
    "SyncScheduler",
]
