"""Sync error taxonomy.

NotAuthenticatedError and TransientFetchError are caught at the sync
orchestrator boundary and degrade that sync to a no-op. MalformedSampleError
drops a single sample. ConcurrentWriteConflictError signals a broken
read-modify-write contract and is never swallowed.
"""


class SyncError(Exception):
    """Base class for failures raised while syncing provider data."""


class NotAuthenticatedError(SyncError):
    """No active provider session (missing or rejected credentials)."""

    def __init__(self, detail: str = "Provider session is not authenticated"):
        self.detail = detail
        super().__init__(detail)


class TransientFetchError(SyncError):
    """Network, HTTP or parse failure on one provider call. Safe to retry."""

    def __init__(self, detail: str, status_code: int | None = None):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail if status_code is None else f"HTTP {status_code}: {detail}")


class MalformedSampleError(SyncError):
    """A fetched sample cannot be interpreted for its declared metric kind."""

    def __init__(self, metric: str, reason: str, value: object = None):
        self.metric = metric
        self.reason = reason
        self.value = value
        super().__init__(f"{metric}: {reason}")


class ConcurrentWriteConflictError(SyncError):
    """A write to a (user, timestamp) key was attempted without holding its lock."""

    def __init__(self, user_id: str, timestamp_millis: int):
        self.user_id = user_id
        self.timestamp_millis = timestamp_millis
        super().__init__(
            f"Unserialized write to ({user_id}, {timestamp_millis}); "
            "acquire the key lock before read-merge-upsert"
        )
