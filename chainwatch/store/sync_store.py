"""
chainwatch -- Sync Store.

Durable, namespaced synchronisation state for one watched contract:

    lastlogged:{event}  -> last block checked for that event   (default -1)
    sync:block          -> global last synced block            (default -1)
    sync:failed         -> encoded transactions that failed     (default [])
    event:{hash}        -> true once an event has been seen

Rules:
- The namespace is the contract (deployment) address.
- Nothing may be read or written before ``open()``; doing so raises
  ``UninitializedStoreError`` (a sequencing bug, never retried).
- Backend write failures surface as ``StoreWriteError``.  Callers must not
  advance cursors past a failed write.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Protocol

from chainwatch.store.backends import KeyValueStore

logger = logging.getLogger(__name__)

LAST_LOGGED_PREFIX = "lastlogged:"
LAST_SYNCED_KEY = "sync:block"
FAILED_TX_KEY = "sync:failed"
EVENT_PREFIX = "event:"


class UninitializedStoreError(RuntimeError):
    """Raised when the Sync Store is used before ``open()``."""


class StoreWriteError(Exception):
    """Raised when a write to the underlying store fails."""


class _HasHash(Protocol):
    hash: str


class _AddressSource(Protocol):
    async def wait_for_address(self) -> str: ...


class SyncStore:
    """Per-contract sync cursors and seen-event set.

    Args:
        backend: Any ``KeyValueStore``.  The Sync Store never touches the
            network itself.
    """

    def __init__(self, backend: KeyValueStore) -> None:
        self._backend = backend
        self._namespace: str | None = None

    @property
    def namespace(self) -> str | None:
        return self._namespace

    @property
    def is_open(self) -> bool:
        return self._namespace is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, namespace_id: str) -> None:
        """Open the store for *namespace_id*.  Repeat calls with the same id are no-ops."""
        if self._namespace == namespace_id:
            return
        if self._namespace is not None:
            raise ValueError(
                f"SyncStore already opened for {self._namespace!r}, "
                f"refusing to switch to {namespace_id!r}"
            )
        await self._backend.open(namespace_id)
        self._namespace = namespace_id
        logger.info("SyncStore opened for namespace %s", namespace_id)

    async def open_when_ready(self, chain: _AddressSource) -> str:
        """Wait for the contract address to become known, then open with it."""
        address = await chain.wait_for_address()
        await self.open(address)
        return address

    def close(self) -> None:
        self._backend.close()

    def _require_open(self) -> None:
        if self._namespace is None:
            raise UninitializedStoreError("SyncStore is not yet initialized.")

    # ------------------------------------------------------------------
    # Generic accessors
    # ------------------------------------------------------------------

    async def get(self, key: str, default: Any = None) -> Any:
        self._require_open()
        return await self._backend.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        self._require_open()
        try:
            await self._backend.set(key, value)
        except Exception as exc:
            logger.error("Store write failed for key=%s: %s", key, exc)
            raise StoreWriteError(f"Failed to write {key!r}: {exc}") from exc

    # ------------------------------------------------------------------
    # Cursors
    # ------------------------------------------------------------------

    async def get_last_logged_event_block(self, event_name: str) -> int:
        """Return the last block checked for *event_name* (-1 if never)."""
        return await self.get(f"{LAST_LOGGED_PREFIX}{event_name}", -1)

    async def set_last_logged_event_block(self, event_name: str, block: int) -> None:
        await self.set(f"{LAST_LOGGED_PREFIX}{event_name}", block)

    async def get_last_synced_block(self) -> int:
        return await self.get(LAST_SYNCED_KEY, -1)

    async def set_last_synced_block(self, block: int) -> None:
        await self.set(LAST_SYNCED_KEY, block)

    # ------------------------------------------------------------------
    # Failed transactions
    # ------------------------------------------------------------------

    async def get_failed_transactions(self) -> list[str]:
        """Return encoded transactions that failed to sync."""
        return await self.get(FAILED_TX_KEY, [])

    async def set_failed_transactions(self, transactions: list[str]) -> None:
        await self.set(FAILED_TX_KEY, list(transactions))

    # ------------------------------------------------------------------
    # Seen events
    # ------------------------------------------------------------------

    async def add_events(self, events: Iterable[_HasHash]) -> None:
        """Mark every event in *events* as seen.  Re-adding a hash is harmless."""
        self._require_open()
        items = [(f"{EVENT_PREFIX}{event.hash}", True) for event in events]
        if not items:
            return
        try:
            await self._backend.bulk_put(items)
        except Exception as exc:
            logger.error("Store bulk write of %d events failed: %s", len(items), exc)
            raise StoreWriteError(f"Failed to mark {len(items)} events seen: {exc}") from exc

    async def has_event(self, event: _HasHash) -> bool:
        self._require_open()
        return await self._backend.exists(f"{EVENT_PREFIX}{event.hash}")
