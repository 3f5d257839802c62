"""Structured error types for syncstore."""

from __future__ import annotations


class SyncStoreError(Exception):
    """Base error for all syncstore errors."""


class NotFoundError(SyncStoreError):
    """Raised when a tenant collection, item or batch does not exist."""


class CollectionNotFoundError(NotFoundError):
    """Raised when a collection name/id is unknown or the tenant has no such collection."""

    def __init__(self, collection: str | int) -> None:
        self.collection = collection
        super().__init__(f"Collection not found: {collection!r}")


class ItemNotFoundError(NotFoundError):
    """Raised when a BSO is absent or already expired."""

    def __init__(self, collection: str, bso_id: str) -> None:
        self.collection = collection
        self.bso_id = bso_id
        super().__init__(f"Item {bso_id!r} not found in collection {collection!r}")


class BatchNotFoundError(NotFoundError):
    """Raised when a batch was never opened, or was already committed, aborted or reaped."""

    def __init__(self, batch_id: str) -> None:
        self.batch_id = batch_id
        super().__init__(f"Batch not found: {batch_id!r}")


class ConflictError(SyncStoreError):
    """Raised when a unique-index conflict could not be resolved by retrying."""

    def __init__(self, message: str = "Concurrent insert conflict; please retry") -> None:
        super().__init__(message)


class ExpiredError(SyncStoreError):
    """Raised when an operation targets a record past its expiry."""


class BatchExpiredError(ExpiredError):
    """Raised when appending to or committing a batch whose expiry has passed."""

    def __init__(self, batch_id: str, expiry: int) -> None:
        self.batch_id = batch_id
        self.expiry = expiry
        super().__init__(f"Batch {batch_id!r} expired at {expiry}")


class TransientTransactionError(SyncStoreError):
    """Raised when engine contention persists after all retry attempts."""

    def __init__(self, attempts: int, detail: str) -> None:
        self.attempts = attempts
        self.detail = detail
        super().__init__(f"Transaction failed after {attempts} attempt(s): {detail}")


class BatchCommitFailedError(SyncStoreError):
    """Raised when applying a batch fails; the commit is rolled back entirely."""

    def __init__(self, batch_id: str, detail: str) -> None:
        self.batch_id = batch_id
        self.detail = detail
        super().__init__(f"Commit of batch {batch_id!r} failed and was rolled back: {detail}")


class QuotaExceededError(SyncStoreError):
    """Raised when a write would grow a collection past the configured quota."""

    def __init__(self, collection: str, total_bytes: int, quota_bytes: int) -> None:
        self.collection = collection
        self.total_bytes = total_bytes
        self.quota_bytes = quota_bytes
        super().__init__(
            f"Collection {collection!r} would hold {total_bytes} bytes, "
            f"exceeding quota of {quota_bytes}"
        )


class ValidationError(SyncStoreError):
    """Raised when input fails validation (bad id, sortindex, ttl, payload size...)."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class InvalidOffsetError(ValidationError):
    """Raised when a pagination offset token cannot be decoded."""

    def __init__(self, offset: str) -> None:
        self.offset = offset
        super().__init__(f"Invalid offset token: {offset!r}")


class StorageBackendError(SyncStoreError):
    """Raised when backend storage operations fail."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage backend error during {operation}: {detail}")
