"""chainwatch -- Chain client interface and web3 implementation."""

from chainwatch.chain.client import (
    ChainClient,
    ConnectivityError,
    Web3ChainClient,
    load_abi,
    log_to_raw,
)

__all__ = [
    "ChainClient",
    "ConnectivityError",
    "Web3ChainClient",
    "load_abi",
    "log_to_raw",
]
