"""Pytest configuration and shared fixtures."""
import asyncio
import os
import sys

import pytest
import pytest_asyncio

# Ensure the project root is on sys.path so 'chainwatch' is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from chainwatch.store.backends import MemoryKeyValueStore
from chainwatch.store.sync_store import SyncStore
from chainwatch.watcher.event_watcher import EventWatcher

CONTRACT = "0x" + "12" * 20


def make_log(tx_hash, log_index, block, event="Deposit", **values):
    """Build a raw log the way the chain client hands it over."""
    return {
        "event": event,
        "blockNumber": block,
        "transactionHash": tx_hash,
        "logIndex": log_index,
        "returnValues": values,
    }


class FakeChainClient:
    """In-memory chain: a head height, a connectivity switch and canned logs."""

    def __init__(self, block_number=0, address=CONTRACT, connected=True):
        self.block_number = block_number
        self.is_up = connected
        self.logs: dict[str, list[dict]] = {}
        self.queries: list[tuple[str, int, int]] = []
        self._address = None
        self._address_known = asyncio.Event()
        if address:
            self.set_address(address)

    @property
    def has_address(self):
        return self._address is not None

    @property
    def address(self):
        return self._address

    def set_address(self, address):
        self._address = address
        self._address_known.set()

    async def wait_for_address(self):
        await self._address_known.wait()
        return self._address

    async def connected(self):
        return self.is_up

    async def current_block_number(self):
        return self.block_number

    async def get_past_events(self, event_name, from_block, to_block):
        self.queries.append((event_name, from_block, to_block))
        return [
            log for log in self.logs.get(event_name, [])
            if from_block <= log["blockNumber"] <= to_block
        ]


class Recorder:
    """Listener that records every batch it receives."""

    def __init__(self):
        self.batches = []

    def __call__(self, events):
        self.batches.append(events)

    @property
    def events(self):
        return [e for batch in self.batches for e in batch]


@pytest.fixture
def chain():
    return FakeChainClient(block_number=22)


@pytest.fixture
def backend():
    return MemoryKeyValueStore()


@pytest_asyncio.fixture
async def store(backend):
    s = SyncStore(backend)
    await s.open(CONTRACT)
    return s


@pytest.fixture
def watcher(chain, store):
    return EventWatcher(chain, store, finality_depth=12, event_poll_interval=10)
