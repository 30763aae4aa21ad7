"""
Remote document stores.

- RemoteStore: the three-operation boundary used by the sync engine
- InMemoryRemoteStore: in-process compare-and-swap store
- DropboxRemoteStore: the document as a JSON file in Dropbox
"""

from typing import Optional

from .base import RemoteStore
from .memory_store import InMemoryRemoteStore
from .dropbox_client import DropboxApiError, DropboxClient
from .dropbox_store import (
    DropboxAttachmentStore, DropboxRemoteStore, sanitize_file_name,
    DEFAULT_DOCUMENT_PATH, DEFAULT_ATTACHMENTS_FOLDER,
)


def create_remote_store(
    backend: str = "dropbox",
    access_token: Optional[str] = None,
    path: str = DEFAULT_DOCUMENT_PATH,
    timeout: float = 30.0,
    max_retries: int = 2,
) -> RemoteStore:
    """
    Factory function to create a remote store.

    Args:
        backend: 'dropbox' or 'memory'
        access_token: Dropbox bearer token (required for 'dropbox')
        path: Document path in Dropbox
        timeout: Request timeout in seconds
        max_retries: Attempts for idempotent reads

    Raises:
        ValueError: If backend is not recognized
        Unauthenticated: If 'dropbox' is selected without a token
    """
    backend = (backend or "dropbox").lower()
    if backend == "memory":
        return InMemoryRemoteStore()
    if backend == "dropbox":
        client = DropboxClient(access_token, timeout=timeout, max_retries=max_retries)
        return DropboxRemoteStore(client, path=path)
    raise ValueError(f"Unknown remote store backend: {backend}")


__all__ = [
    "RemoteStore",
    "InMemoryRemoteStore",
    "DropboxClient",
    "DropboxApiError",
    "DropboxRemoteStore",
    "DropboxAttachmentStore",
    "sanitize_file_name",
    "create_remote_store",
]
