"""
chainwatch -- Sync state persistence.

Core components:
    SyncStore             -- namespaced cursors and seen-event set
    KeyValueStore         -- backend capability protocol
    create_store          -- backend factory driven by settings

Exceptions:
    UninitializedStoreError -- store used before open()
    StoreWriteError         -- backend write failed
"""

from chainwatch.store.backends import (
    FileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    RedisKeyValueStore,
    RocksDBKeyValueStore,
    create_store,
)
from chainwatch.store.sync_store import (
    StoreWriteError,
    SyncStore,
    UninitializedStoreError,
)

__all__ = [
    # backends
    "KeyValueStore",
    "MemoryKeyValueStore",
    "FileKeyValueStore",
    "RocksDBKeyValueStore",
    "RedisKeyValueStore",
    "create_store",
    # sync store
    "SyncStore",
    "StoreWriteError",
    "UninitializedStoreError",
]
