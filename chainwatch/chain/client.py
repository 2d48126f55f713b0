"""
chainwatch -- Chain client.

The watcher only needs a handful of capabilities from the node, captured by
the ``ChainClient`` protocol:

- ``connected()``             -- cheap reachability probe
- ``current_block_number()``  -- chain head
- ``get_past_events()``       -- contract logs over an inclusive block range
- ``has_address`` / ``address`` and ``wait_for_address()`` -- the deployment
  address, which may be resolved after start-up

``Web3ChainClient`` implements it with web3.py.  web3's HTTP provider is
synchronous, so every RPC call is pushed to a worker thread to keep the
event loop responsive.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional, Protocol, runtime_checkable

from web3 import Web3

logger = logging.getLogger(__name__)


class ConnectivityError(ConnectionError):
    """Raised when the chain node cannot be reached."""


@runtime_checkable
class ChainClient(Protocol):
    """Capability surface required by the event watcher."""

    @property
    def has_address(self) -> bool: ...

    @property
    def address(self) -> Optional[str]: ...

    async def wait_for_address(self) -> str: ...

    async def connected(self) -> bool: ...

    async def current_block_number(self) -> int: ...

    async def get_past_events(
        self, event_name: str, from_block: int, to_block: int,
    ) -> list[dict[str, Any]]: ...


def load_abi(path: str) -> list[dict[str, Any]]:
    """Load a contract ABI from a JSON file (bare list or ``{"abi": [...]}``)."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("abi", [])
    return data


def _normalize_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    return value


def log_to_raw(log: Any) -> dict[str, Any]:
    """Flatten a web3 event log into the raw record the canonicalizer expects."""
    args = log.get("args") or {}
    return {
        "event": log.get("event"),
        "address": log.get("address"),
        "blockNumber": log.get("blockNumber"),
        "blockHash": _normalize_value(log.get("blockHash")),
        "transactionHash": _normalize_value(log.get("transactionHash")),
        "logIndex": log.get("logIndex"),
        "returnValues": {k: _normalize_value(v) for k, v in dict(args).items()},
    }


class Web3ChainClient:
    """web3.py-backed chain client for a single contract.

    Args:
        rpc_url: HTTP JSON-RPC endpoint of the node.
        abi: Contract ABI.
        address: Contract address, if already known.  When omitted the
            address is supplied later via :meth:`set_address`, which fires
            the one-shot "address known" notification.
        request_timeout: Per-request HTTP timeout in seconds.
    """

    def __init__(
        self,
        rpc_url: str,
        abi: list[dict[str, Any]],
        address: Optional[str] = None,
        request_timeout: float = 10.0,
    ):
        self._rpc_url = rpc_url
        self._abi = abi
        self._w3 = Web3(
            Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
        )
        self._address: Optional[str] = None
        self._contract = None
        self._address_known = asyncio.Event()

        if address:
            self.set_address(address)

    # -- address -------------------------------------------------------------

    @property
    def has_address(self) -> bool:
        return self._address is not None

    @property
    def address(self) -> Optional[str]:
        return self._address

    def set_address(self, address: str) -> None:
        """Bind the contract address.  Fires the address-known notification once."""
        checksum = Web3.to_checksum_address(address)
        if self._address == checksum:
            return
        if self._address is not None:
            raise ValueError(
                f"Contract address already set to {self._address}, got {checksum}"
            )
        self._contract = self._w3.eth.contract(address=checksum, abi=self._abi)
        self._address = checksum
        self._address_known.set()
        logger.info("Contract address resolved: %s", checksum)

    async def wait_for_address(self) -> str:
        await self._address_known.wait()
        return self._address

    # -- queries -------------------------------------------------------------

    async def connected(self) -> bool:
        try:
            return bool(await asyncio.to_thread(self._w3.is_connected))
        except Exception as exc:
            logger.debug("Connectivity probe failed for %s: %s", self._rpc_url, exc)
            return False

    async def current_block_number(self) -> int:
        try:
            return int(await asyncio.to_thread(lambda: self._w3.eth.block_number))
        except Exception as exc:
            raise ConnectivityError(
                f"Failed to read block number from {self._rpc_url}: {exc}"
            ) from exc

    async def get_past_events(
        self, event_name: str, from_block: int, to_block: int,
    ) -> list[dict[str, Any]]:
        """Return raw logs of *event_name* in ``[from_block, to_block]``."""
        if self._contract is None:
            raise RuntimeError("Contract address is not known yet")

        event = getattr(self._contract.events, event_name)
        try:
            logs = await asyncio.to_thread(
                event.get_logs, from_block=from_block, to_block=to_block,
            )
        except Exception as exc:
            raise ConnectivityError(
                f"Failed to fetch {event_name} logs [{from_block}, {to_block}]: {exc}"
            ) from exc
        return [log_to_raw(log) for log in logs]
