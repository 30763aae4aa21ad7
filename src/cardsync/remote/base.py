"""
Remote store interface for the synchronized document.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..core.models import RemoteDocument, Revision, Snapshot


class RemoteStore(ABC):
    """
    Abstract base class for remote document stores.

    A remote store holds exactly one document and hands out an opaque
    Revision on every read and write. Writes can be made conditional on the
    revision the caller last saw (compare-and-swap).

    All methods may raise:
        Unauthenticated: Credentials are missing or expired
        ServerUnavailable: The store gave no definite answer
        NetworkError: Transport failure or timeout
    """

    @abstractmethod
    def get_latest_revision(self) -> Optional[Revision]:
        """
        Fetch the current revision without downloading content.

        Must bypass any caching layer.

        Returns:
            The current revision, or None if the document does not exist
        """
        pass

    @abstractmethod
    def download(self, revision: Optional[Revision] = None) -> Optional[RemoteDocument]:
        """
        Download the document at a revision.

        Without a revision, the latest one is resolved first and then that
        exact revision is fetched, so content and revision always match.

        Returns:
            The document and its revision, or None if it does not exist
        """
        pass

    @abstractmethod
    def upload(self, snapshot: Snapshot, parent_revision: Optional[Revision] = None) -> Revision:
        """
        Write the document.

        Args:
            snapshot: Document to store
            parent_revision: If given, the write only succeeds while the
                stored revision still equals it; otherwise it overwrites

        Returns:
            The new revision

        Raises:
            RevisionConflict: The stored revision no longer equals parent_revision
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        """Return the store name/identifier."""
        pass

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass
