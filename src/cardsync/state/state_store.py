"""
State store interface for durable local state.

A state store keeps the local snapshot across restarts and holds the
crash-recovery slot: the content hash and revision last known to be
stored remotely.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..core.models import RecoveryHint, Snapshot


class StateStore(ABC):
    """
    Abstract base class for durable local state.
    """

    @abstractmethod
    def load_snapshot(self) -> Optional[Snapshot]:
        """
        Load the persisted local snapshot.

        Returns:
            The snapshot, or None if nothing was persisted yet
        """
        pass

    @abstractmethod
    def save_snapshot(self, snapshot: Snapshot) -> None:
        """Persist the local snapshot, replacing the previous one."""
        pass

    @abstractmethod
    def load_recovery_hint(self) -> Optional[RecoveryHint]:
        """
        Load the crash-recovery slot.

        Returns:
            The last mirrored hint, or None if none was written
        """
        pass

    @abstractmethod
    def save_recovery_hint(self, hint: RecoveryHint) -> None:
        """Mirror the last saved hash and revision."""
        pass

    @abstractmethod
    def clear_recovery_hint(self) -> None:
        """Forget the crash-recovery slot (e.g. on sign-out)."""
        pass

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass
