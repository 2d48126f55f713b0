"""
chainwatch -- Canonical event model.

Turns a raw contract event log (as returned by the chain client) into a
``CanonicalEvent``: a stable identity hash, the block number, and the
return values with numeric-looking fields coerced to Python ints.

Identity:
    The hash is ``keccak256(transactionHash + str(logIndex))``.  It is the
    ONLY identity used for deduplication; field contents never participate.
    Two raw records with the same (transactionHash, logIndex) always map to
    the same hash, whichever block or node they were fetched from.

Numeric coercion:
    A value becomes an ``int`` iff it is numeric-looking AND is not an
    address-formatted string.  A 40-hex-digit string is treated as an
    address even when every digit is decimal, so it stays a string.
    Everything else passes through untouched.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field
from web3 import Web3

# Keys every raw log must carry before it can be canonicalized.
REQUIRED_LOG_KEYS: tuple[str, ...] = (
    "blockNumber",
    "returnValues",
    "transactionHash",
    "logIndex",
)

_DECIMAL_RE = re.compile(r"^[+-]?\d+$")
_HEX_RE = re.compile(r"^0[xX][0-9a-fA-F]+$")


class MalformedEventError(ValueError):
    """Raised when a raw log fails shape validation during canonicalization."""


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


def event_hash(transaction_hash: str, log_index: int | str) -> str:
    """Return the 0x-prefixed keccak256 identity of a log.

    The preimage is the plain concatenation of the transaction hash and the
    decimal log index, hashed as UTF-8 text.
    """
    return Web3.to_hex(Web3.keccak(text=f"{transaction_hash}{log_index}"))


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def _parse_numeric(value: Any) -> int | None:
    """Return the integer a value spells, or None if it is not numeric-looking."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if _DECIMAL_RE.match(text):
        return int(text, 10)
    if _HEX_RE.match(text):
        return int(text, 16)
    return None


def parse_event_values(values: Mapping[str, Any]) -> dict[str, Any]:
    """Coerce numeric-looking, non-address values to ints.

    >>> parse_event_values({"amount": "100", "owner": "0x" + "ab" * 20})["amount"]
    100
    """
    parsed: dict[str, Any] = {}
    for key, value in values.items():
        number = _parse_numeric(value)
        if number is not None and not (isinstance(value, str) and Web3.is_address(value)):
            parsed[key] = number
        else:
            parsed[key] = value
    return parsed


# ---------------------------------------------------------------------------
# CanonicalEvent
# ---------------------------------------------------------------------------


class CanonicalEvent(BaseModel):
    """A contract event reduced to its identity, block and typed values.

    Field semantics:
        hash:
            keccak256 of ``transactionHash + logIndex``.  Dedup identity.

        block_number:
            Block the log was emitted in.

        fields:
            Return values after numeric coercion (ints are arbitrary
            precision, e.g. uint256 amounts).

        raw:
            The source return values exactly as received, kept for
            downstream decoders.

        event_name:
            Contract event name when the chain client reports one.
    """

    hash: str
    block_number: int
    fields: dict[str, Any] = Field(default_factory=dict)
    raw: dict[str, Any] = Field(default_factory=dict)
    event_name: str | None = None

    model_config = {
        "frozen": True,
        "extra": "forbid",
    }

    def prettify(self) -> str:
        """Return the event as indented JSON with ints rendered as decimal strings."""

        def _render(value: Any) -> Any:
            if isinstance(value, int) and not isinstance(value, bool):
                return str(value)
            return value

        payload = {
            "hash": self.hash,
            "block_number": _render(self.block_number),
            "event_name": self.event_name,
            "fields": {k: _render(v) for k, v in self.fields.items()},
            "raw": dict(self.raw),
        }
        return json.dumps(payload, indent=2)


def canonicalize(raw_log: Mapping[str, Any]) -> CanonicalEvent:
    """Validate a raw log and build its ``CanonicalEvent``.

    Raises:
        MalformedEventError: If the log is not a mapping, lacks one of
            ``REQUIRED_LOG_KEYS``, or carries a non-mapping ``returnValues``
            or a non-integer ``blockNumber``.
    """
    if not isinstance(raw_log, Mapping):
        raise MalformedEventError(
            f"Raw event must be a mapping, got {type(raw_log).__name__}"
        )

    missing = [key for key in REQUIRED_LOG_KEYS if raw_log.get(key) is None]
    if missing:
        raise MalformedEventError(f"Raw event is missing {', '.join(missing)}")

    return_values = raw_log["returnValues"]
    if not isinstance(return_values, Mapping):
        raise MalformedEventError("returnValues must be a mapping")

    block_number = _parse_numeric(raw_log["blockNumber"])
    if block_number is None or block_number < 0:
        raise MalformedEventError(
            f"blockNumber is not a block height: {raw_log['blockNumber']!r}"
        )

    return CanonicalEvent(
        hash=event_hash(raw_log["transactionHash"], raw_log["logIndex"]),
        block_number=block_number,
        fields=parse_event_values(return_values),
        raw=dict(return_values),
        event_name=raw_log.get("event"),
    )
