"""uploadcue - An offline-tolerant, retrying upload queue."""

from uploadcue.config import QueueConfig
from uploadcue.models import (
    ItemKind,
    ItemStatus,
    PassResult,
    Payload,
    ProgressEvent,
    QueueItem,
    QueueStats,
)
from uploadcue.network import NetworkGate
from uploadcue.queue import UploadQueue
from uploadcue.store import (
    JsonFileStore,
    MemoryStore,
    SerializationError,
    SQLiteStore,
    StorageError,
    Store,
)

__version__ = "0.1.0"
__all__ = [
    "UploadQueue",
    "QueueConfig",
    "QueueItem",
    "Payload",
    "ItemKind",
    "ItemStatus",
    "QueueStats",
    "PassResult",
    "ProgressEvent",
    "NetworkGate",
    "Store",
    "MemoryStore",
    "JsonFileStore",
    "SQLiteStore",
    "SerializationError",
    "StorageError",
]
