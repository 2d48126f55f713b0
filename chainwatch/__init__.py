"""
chainwatch -- contract event watching and synchronisation engine.

Public API:
    from chainwatch import EventWatcher, SyncStore, canonicalize
"""
from __future__ import annotations

from chainwatch.chain.client import ChainClient, ConnectivityError, Web3ChainClient
from chainwatch.events.canonical import CanonicalEvent, MalformedEventError, canonicalize
from chainwatch.events.decoders import decode_event
from chainwatch.store.backends import KeyValueStore, create_store
from chainwatch.store.sync_store import StoreWriteError, SyncStore, UninitializedStoreError
from chainwatch.watcher.event_watcher import EventWatcher, ListenerError, WatcherState

__version__ = "0.1.0"

__all__ = [
    # Watcher
    "EventWatcher",
    "WatcherState",
    # Events
    "CanonicalEvent",
    "canonicalize",
    "decode_event",
    # Store
    "SyncStore",
    "KeyValueStore",
    "create_store",
    # Chain
    "ChainClient",
    "Web3ChainClient",
    # Errors
    "ConnectivityError",
    "UninitializedStoreError",
    "MalformedEventError",
    "ListenerError",
    "StoreWriteError",
]
