"""
chainwatch -- Persistent key-value backends for the Sync Store.

Every backend exposes the same small async surface (``KeyValueStore``):
``open`` a namespace, ``get``/``set`` single keys, ``bulk_put`` many keys at
once, and test membership with ``exists``.  Values are JSON documents.

Backends:
    MemoryKeyValueStore   -- process-local dict (tests, dry runs)
    FileKeyValueStore     -- one JSON document per namespace, atomic rename
    RocksDBKeyValueStore  -- rocksdict database per namespace
    RedisKeyValueStore    -- redis.asyncio keys under a namespace prefix

Durability:
    File and RocksDB backends are written from a worker thread via
    ``asyncio.to_thread`` and serialised with an ``asyncio.Lock``.  The file
    backend fsyncs before renaming the document into place, so a crash
    leaves either the old or the new document, never a torn one.

Write errors are NOT handled here; they propagate to the Sync Store, which
wraps them into ``StoreWriteError``.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import re
from typing import Any, Iterable, Protocol, runtime_checkable

import redis.asyncio as redis

logger = logging.getLogger(__name__)

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def _namespace_dirname(namespace_id: str) -> str:
    """Map a namespace id (e.g. a contract address) to a safe file name."""
    return _UNSAFE_PATH_CHARS.sub("_", namespace_id)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class KeyValueStore(Protocol):
    """Capability surface the Sync Store consumes."""

    namespace: str | None

    async def open(self, namespace_id: str) -> None: ...

    async def get(self, key: str, default: Any = None) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def bulk_put(self, items: Iterable[tuple[str, Any]]) -> None: ...

    async def exists(self, key: str) -> bool: ...

    def close(self) -> None: ...


class _NamespacedStore:
    """Shared open/idempotence bookkeeping."""

    def __init__(self) -> None:
        self.namespace: str | None = None

    def _claim_namespace(self, namespace_id: str) -> bool:
        """Return True if the namespace still needs opening."""
        if not namespace_id:
            raise ValueError("namespace_id must be a non-empty string")
        if self.namespace is None:
            self.namespace = namespace_id
            return True
        if self.namespace != namespace_id:
            raise ValueError(
                f"Store already opened for namespace {self.namespace!r}, "
                f"cannot reopen as {namespace_id!r}"
            )
        return False

    def _require_open(self) -> None:
        if self.namespace is None:
            raise RuntimeError(f"{type(self).__name__} used before open()")


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------


class MemoryKeyValueStore(_NamespacedStore):
    """In-memory backend.  Values are JSON round-tripped like the durable ones."""

    def __init__(self) -> None:
        super().__init__()
        self._data: dict[str, str] = {}

    async def open(self, namespace_id: str) -> None:
        self._claim_namespace(namespace_id)

    async def get(self, key: str, default: Any = None) -> Any:
        self._require_open()
        raw = self._data.get(key)
        return default if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self._require_open()
        self._data[key] = json.dumps(value)

    async def bulk_put(self, items: Iterable[tuple[str, Any]]) -> None:
        self._require_open()
        encoded = {key: json.dumps(value) for key, value in items}
        self._data.update(encoded)

    async def exists(self, key: str) -> bool:
        self._require_open()
        return key in self._data

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# File (JSON document per namespace)
# ---------------------------------------------------------------------------


class FileKeyValueStore(_NamespacedStore):
    """JSON-document backend.

    Layout::

        {data_dir}/{namespace}/sync.json

    The whole document is rewritten on every mutation (tmp + fsync +
    rename).  Fine for cursor-sized state; use RocksDB or Redis when the
    seen-event set grows large.
    """

    FILENAME = "sync.json"

    def __init__(self, data_dir: str) -> None:
        super().__init__()
        self._data_dir = data_dir
        self._path: str | None = None
        self._data: dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def open(self, namespace_id: str) -> None:
        if not self._claim_namespace(namespace_id):
            return
        directory = os.path.join(self._data_dir, _namespace_dirname(namespace_id))
        self._path = os.path.join(directory, self.FILENAME)
        async with self._lock:
            self._data = await asyncio.to_thread(self._load, directory, self._path)
        logger.info(
            "Opened file store %s (%d keys)", self._path, len(self._data),
        )

    @staticmethod
    def _load(directory: str, path: str) -> dict[str, Any]:
        os.makedirs(directory, exist_ok=True)
        if not os.path.exists(path):
            return {}
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    @staticmethod
    def _atomic_write_json(path: str, data: dict) -> None:
        """Write JSON atomically via tmp + rename."""
        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)

    async def _commit(self, updates: dict[str, Any]) -> None:
        # Hold only what a reload would produce (tuples become lists).
        encoded = json.loads(json.dumps(updates))
        async with self._lock:
            staged = {**self._data, **encoded}
            await asyncio.to_thread(self._atomic_write_json, self._path, staged)
            self._data = staged

    async def get(self, key: str, default: Any = None) -> Any:
        self._require_open()
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        self._require_open()
        await self._commit({key: value})

    async def bulk_put(self, items: Iterable[tuple[str, Any]]) -> None:
        self._require_open()
        await self._commit(dict(items))

    async def exists(self, key: str) -> bool:
        self._require_open()
        return key in self._data

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# RocksDB (requires rocksdict)
# ---------------------------------------------------------------------------


class RocksDBKeyValueStore(_NamespacedStore):
    """RocksDB-backed store using rocksdict, one database per namespace.

    Keys are stored as UTF-8 strings, values as JSON text.
    """

    def __init__(self, data_dir: str) -> None:
        super().__init__()
        self._data_dir = data_dir
        self._db = None
        self._lock = asyncio.Lock()

    async def open(self, namespace_id: str) -> None:
        if not self._claim_namespace(namespace_id):
            return
        path = os.path.join(
            self._data_dir, f"{_namespace_dirname(namespace_id)}.rocksdb",
        )
        async with self._lock:
            self._db = await asyncio.to_thread(self._open_db, path)
        logger.info("Opened RocksDB store at %s", path)

    @staticmethod
    def _open_db(path: str):
        from rocksdict import Options, Rdict  # type: ignore[import-untyped]

        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        opts = Options()
        opts.create_if_missing(True)
        return Rdict(path, options=opts)

    def _write_batch(self, items: list[tuple[str, str]]) -> None:
        from rocksdict import WriteBatch  # type: ignore[import-untyped]

        batch = WriteBatch()
        for key, value in items:
            batch.put(key, value)
        self._db.write(batch)

    async def get(self, key: str, default: Any = None) -> Any:
        self._require_open()
        raw = await asyncio.to_thread(self._db.get, key)
        return default if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self._require_open()
        async with self._lock:
            await asyncio.to_thread(self._db.put, key, json.dumps(value))

    async def bulk_put(self, items: Iterable[tuple[str, Any]]) -> None:
        self._require_open()
        encoded = [(key, json.dumps(value)) for key, value in items]
        async with self._lock:
            await asyncio.to_thread(self._write_batch, encoded)

    async def exists(self, key: str) -> bool:
        self._require_open()
        return await asyncio.to_thread(self._db.get, key) is not None

    def close(self) -> None:
        if self._db is not None:
            self._db.close()
            self._db = None


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class RedisKeyValueStore(_NamespacedStore):
    """Redis backend.

    Key format: ``{key_prefix}{namespace}:{key}``, e.g.
    ``chainwatch:0xabc...:lastlogged:Deposit``.

    Args:
        redis_client: An initialized ``redis.asyncio.Redis`` created with
            ``decode_responses=True``.
        key_prefix: Prefix for every key to avoid collisions.
    """

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "chainwatch:") -> None:
        super().__init__()
        self._redis = redis_client
        self._prefix = key_prefix

    @classmethod
    def from_url(cls, redis_url: str, key_prefix: str = "chainwatch:") -> RedisKeyValueStore:
        return cls(redis.from_url(redis_url, decode_responses=True), key_prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{self.namespace}:{key}"

    async def open(self, namespace_id: str) -> None:
        if self._claim_namespace(namespace_id):
            await self._redis.ping()
            logger.info("Opened Redis store namespace %s", namespace_id)

    async def get(self, key: str, default: Any = None) -> Any:
        self._require_open()
        raw = await self._redis.get(self._key(key))
        return default if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self._require_open()
        await self._redis.set(self._key(key), json.dumps(value))

    async def bulk_put(self, items: Iterable[tuple[str, Any]]) -> None:
        self._require_open()
        mapping = {self._key(key): json.dumps(value) for key, value in items}
        if mapping:
            await self._redis.mset(mapping)

    async def exists(self, key: str) -> bool:
        self._require_open()
        return bool(await self._redis.exists(self._key(key)))

    def close(self) -> None:
        pass

    async def aclose(self) -> None:
        await self._redis.aclose()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_store(settings) -> KeyValueStore:
    """Build the backend selected by ``settings.store_backend``."""
    backend = settings.store_backend
    if backend == "memory":
        return MemoryKeyValueStore()
    if backend == "file":
        return FileKeyValueStore(settings.store_data_dir)
    if backend == "rocksdb":
        return RocksDBKeyValueStore(settings.store_data_dir)
    if backend == "redis":
        return RedisKeyValueStore.from_url(settings.redis_url, settings.redis_key_prefix)
    raise ValueError(f"Unknown store backend: {backend!r}")
