"""Tests for the web3-backed chain client."""

import asyncio
import json
import os
import tempfile
from unittest.mock import MagicMock

import pytest
from web3 import Web3

from chainwatch.chain.client import (
    ChainClient,
    ConnectivityError,
    Web3ChainClient,
    load_abi,
    log_to_raw,
)
from conftest import CONTRACT

OTHER = "0x" + "34" * 20


class _BrokenEth:
    @property
    def block_number(self):
        raise ConnectionError("connection refused")


@pytest.fixture
def client():
    return Web3ChainClient("http://127.0.0.1:1", abi=[])


class TestLogToRaw:
    def test_flattens_web3_log(self):
        log = {
            "event": "Deposit",
            "address": CONTRACT,
            "blockNumber": 7,
            "blockHash": b"\x01" * 32,
            "transactionHash": b"\xab" * 32,
            "logIndex": 2,
            "args": {"depositor": CONTRACT, "amount": 5, "data": b"\x00\xff", "ids": [b"\x01", 3]},
        }
        raw = log_to_raw(log)
        assert raw["event"] == "Deposit"
        assert raw["blockNumber"] == 7
        assert raw["transactionHash"] == "0x" + "ab" * 32
        assert raw["logIndex"] == 2
        assert raw["returnValues"] == {
            "depositor": CONTRACT,
            "amount": 5,
            "data": "0x00ff",
            "ids": ["0x01", 3],
        }

    def test_missing_args(self):
        raw = log_to_raw({"event": "Ping", "blockNumber": 1, "transactionHash": "0x01", "logIndex": 0})
        assert raw["returnValues"] == {}


class TestLoadAbi:
    def test_bare_list(self):
        abi = [{"type": "event", "name": "Deposit", "inputs": []}]
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "abi.json")
            with open(path, "w") as f:
                json.dump(abi, f)
            assert load_abi(path) == abi

    def test_truffle_artifact(self):
        abi = [{"type": "event", "name": "Deposit", "inputs": []}]
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "artifact.json")
            with open(path, "w") as f:
                json.dump({"contractName": "Registry", "abi": abi}, f)
            assert load_abi(path) == abi


class TestAddress:
    def test_satisfies_protocol(self, client):
        assert isinstance(client, ChainClient)

    def test_no_address_initially(self, client):
        assert client.has_address is False
        assert client.address is None

    def test_set_address_checksums(self, client):
        client.set_address(CONTRACT)
        assert client.has_address
        assert client.address == Web3.to_checksum_address(CONTRACT)

    def test_same_address_twice_is_noop(self, client):
        client.set_address(CONTRACT)
        client.set_address(CONTRACT.upper().replace("0X", "0x"))
        assert client.address == Web3.to_checksum_address(CONTRACT)

    def test_conflicting_address_rejected(self, client):
        client.set_address(CONTRACT)
        with pytest.raises(ValueError):
            client.set_address(OTHER)

    def test_address_in_constructor(self):
        c = Web3ChainClient("http://127.0.0.1:1", abi=[], address=CONTRACT)
        assert c.has_address

    @pytest.mark.asyncio
    async def test_wait_for_address(self, client):
        waiter = asyncio.create_task(client.wait_for_address())
        await asyncio.sleep(0.01)
        assert not waiter.done()

        client.set_address(CONTRACT)
        assert await asyncio.wait_for(waiter, timeout=1) == Web3.to_checksum_address(CONTRACT)


class TestQueries:
    @pytest.mark.asyncio
    async def test_connected_false_on_error(self, client):
        client._w3 = MagicMock()
        client._w3.is_connected.side_effect = OSError("refused")
        assert await client.connected() is False

    @pytest.mark.asyncio
    async def test_connected_true(self, client):
        client._w3 = MagicMock()
        client._w3.is_connected.return_value = True
        assert await client.connected() is True

    @pytest.mark.asyncio
    async def test_block_number(self, client):
        client._w3 = MagicMock()
        client._w3.eth.block_number = 1234
        assert await client.current_block_number() == 1234

    @pytest.mark.asyncio
    async def test_block_number_failure_is_connectivity_error(self, client):
        client._w3 = MagicMock()
        client._w3.eth = _BrokenEth()
        with pytest.raises(ConnectivityError):
            await client.current_block_number()

    @pytest.mark.asyncio
    async def test_get_past_events_requires_address(self, client):
        with pytest.raises(RuntimeError):
            await client.get_past_events("Deposit", 0, 10)

    @pytest.mark.asyncio
    async def test_get_past_events(self, client):
        client.set_address(CONTRACT)
        contract = MagicMock()
        contract.events.Deposit.get_logs.return_value = [{
            "event": "Deposit",
            "blockNumber": 3,
            "transactionHash": b"\x0a" * 32,
            "logIndex": 0,
            "args": {"amount": 1},
        }]
        client._contract = contract

        raw = await client.get_past_events("Deposit", 0, 10)

        contract.events.Deposit.get_logs.assert_called_once_with(from_block=0, to_block=10)
        assert raw[0]["transactionHash"] == "0x" + "0a" * 32
        assert raw[0]["returnValues"] == {"amount": 1}

    @pytest.mark.asyncio
    async def test_get_past_events_failure_is_connectivity_error(self, client):
        client.set_address(CONTRACT)
        contract = MagicMock()
        contract.events.Deposit.get_logs.side_effect = OSError("timeout")
        client._contract = contract
        with pytest.raises(ConnectivityError):
            await client.get_past_events("Deposit", 0, 10)


DEPOSIT_ABI = [{
    "anonymous": False,
    "inputs": [{"indexed": False, "name": "amount", "type": "uint256"}],
    "name": "Deposit",
    "type": "event",
}]


class TestContractEventLogs:
    """Runs web3's own ContractEvent.get_logs; only the node RPC is stubbed."""

    @pytest.mark.asyncio
    async def test_block_range_reaches_node_filter(self, monkeypatch):
        client = Web3ChainClient("http://127.0.0.1:1", abi=DEPOSIT_ABI, address=CONTRACT)
        filters = []

        def fake_get_logs(filter_params):
            filters.append(filter_params)
            return [{
                "address": Web3.to_checksum_address(CONTRACT),
                "topics": [Web3.keccak(text="Deposit(uint256)")],
                "data": (7).to_bytes(32, "big"),
                "blockNumber": 3,
                "blockHash": b"\x01" * 32,
                "transactionHash": b"\x0a" * 32,
                "transactionIndex": 0,
                "logIndex": 0,
            }]

        monkeypatch.setattr(client._w3.eth, "get_logs", fake_get_logs)

        raw = await client.get_past_events("Deposit", 0, 10)

        assert filters[0]["fromBlock"] == 0
        assert filters[0]["toBlock"] == 10
        assert raw == [{
            "event": "Deposit",
            "address": Web3.to_checksum_address(CONTRACT),
            "blockNumber": 3,
            "blockHash": "0x" + "01" * 32,
            "transactionHash": "0x" + "0a" * 32,
            "logIndex": 0,
            "returnValues": {"amount": 7},
        }]
