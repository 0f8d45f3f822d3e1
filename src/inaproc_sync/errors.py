from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for synchronization failures."""

    kind = "sync_error"


class TransientNetworkError(SyncError):
    """Timeouts, connection resets and retriable statuses that outlived the retry budget."""

    kind = "transient_network"

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TerminalRequestError(SyncError):
    """Non-retriable response: 400/401/404, other non-2xx statuses or a malformed body."""

    kind = "terminal_request"

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorageCorruption(SyncError):
    kind = "storage_corruption"


class AlreadyInProgress(SyncError):
    """A second sync was requested for a unit that already has one in flight."""

    kind = "already_in_progress"

    def __init__(self, dataset_id: str, period: str) -> None:
        super().__init__(f"Sync already in progress for {dataset_id} {period}")
        self.dataset_id = dataset_id
        self.period = period
