"""syncstore: multi-tenant sync storage with batches, aggregates and expiry."""

__version__ = "0.1.0"

from syncstore.batch import BatchEngine
from syncstore.config import SyncStoreConfig, config_from_env, load_config
from syncstore.errors import (
    BatchCommitFailedError,
    BatchExpiredError,
    BatchNotFoundError,
    CollectionNotFoundError,
    ConflictError,
    ExpiredError,
    InvalidOffsetError,
    ItemNotFoundError,
    NotFoundError,
    QuotaExceededError,
    StorageBackendError,
    SyncStoreError,
    TransientTransactionError,
    ValidationError,
)
from syncstore.log import configure_logging
from syncstore.query import BsoQuery, Page
from syncstore.reaper import ExpiryReaper, ReaperThread, ReapResult
from syncstore.registry import CollectionRegistry
from syncstore.storage import SyncStorage, open_storage
from syncstore.types import (
    Batch,
    BatchBso,
    BatchItem,
    Bso,
    BsoFields,
    Collection,
    CommitResult,
    Tenant,
    UserCollection,
)

__all__ = [
    "__version__",
    "SyncStorage",
    "open_storage",
    "SyncStoreConfig",
    "load_config",
    "config_from_env",
    "configure_logging",
    "CollectionRegistry",
    "BatchEngine",
    "ExpiryReaper",
    "ReaperThread",
    "ReapResult",
    "BsoQuery",
    "Page",
    "Tenant",
    "Collection",
    "UserCollection",
    "Bso",
    "BsoFields",
    "BatchItem",
    "Batch",
    "BatchBso",
    "CommitResult",
    "SyncStoreError",
    "NotFoundError",
    "CollectionNotFoundError",
    "ItemNotFoundError",
    "BatchNotFoundError",
    "ConflictError",
    "ExpiredError",
    "BatchExpiredError",
    "TransientTransactionError",
    "BatchCommitFailedError",
    "QuotaExceededError",
    "ValidationError",
    "InvalidOffsetError",
    "StorageBackendError",
]
