"""
Custom exceptions for the card sync package.

Document absence (first run, deleted file) is not an error: remote stores
return None for it instead of raising.
"""


class CardSyncError(Exception):
    """Base exception for all cardsync errors."""
    pass


class RemoteStoreError(CardSyncError):
    """
    Error talking to the remote document store.

    Attributes:
        status_code: HTTP status if the failure came from an HTTP response
        summary: Provider error summary (e.g. 'path/conflict/file/..')
    """

    def __init__(self, message: str, status_code: int = None, summary: str = None):
        super().__init__(message)
        self.status_code = status_code
        self.summary = summary


class RevisionConflict(RemoteStoreError):
    """
    A conditional write was rejected because the stored revision moved.

    Expected during concurrent editing; drives the conflict state machine.
    """
    pass


class Unauthenticated(RemoteStoreError):
    """
    The access token is missing, expired or revoked.

    Ends the session: callers must re-authenticate instead of retrying.
    """
    pass


class ServerUnavailable(RemoteStoreError):
    """
    The store failed without a definite answer (e.g. HTTP 503).

    For writes this is ambiguous: the store may have applied the write
    before failing to acknowledge it. Re-query the latest revision before
    taking any further write action.
    """
    pass


class NetworkError(RemoteStoreError):
    """
    Transport failure or timeout. Transient; retried on the next cycle.
    """
    pass


class ConfigError(CardSyncError):
    """
    Error in configuration.

    Raised when:
    - Configuration file is missing or invalid
    - A value has the wrong type or is out of range
    """
    pass


class StateStoreError(CardSyncError):
    """Error reading or writing durable local state."""
    pass


class SnapshotFormatError(CardSyncError):
    """A stored or downloaded document is not a valid snapshot."""
    pass
