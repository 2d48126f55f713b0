"""
chainwatch -- Named event decoders.

Listeners receive generic ``CanonicalEvent`` batches.  When a consumer
wants a richer, typed record for a specific contract event it asks for it
explicitly::

    record = decode_event(raw_log, as_="ChainCreated")

The caller's declared intent picks the decoder.  Nothing here inspects a
payload to guess what it is.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import quote

from pydantic import BaseModel

from chainwatch.events.canonical import CanonicalEvent, canonicalize

logger = logging.getLogger(__name__)

CANONICAL = "canonical"

# Characters encodeURI leaves alone (besides alphanumerics and "-_.~").
_URI_SAFE = ";,/?:@&=+$!*'()#"

Decoder = Callable[[CanonicalEvent], BaseModel]

DECODER_REGISTRY: dict[str, Decoder] = {}


def register_decoder(event_name: str) -> Callable[[Decoder], Decoder]:
    """Register *func* as the decoder for ``event_name``."""

    def wrapper(func: Decoder) -> Decoder:
        if event_name in DECODER_REGISTRY or event_name == CANONICAL:
            raise RuntimeError(f"Duplicate decoder registration for {event_name!r}")
        DECODER_REGISTRY[event_name] = func
        return func

    return wrapper


def hex_to_ascii(value: str) -> str:
    """Decode a 0x-prefixed hex string byte-per-character."""
    text = value[2:] if value[:2].lower() == "0x" else value
    return bytes.fromhex(text).decode("latin-1")


# ---------------------------------------------------------------------------
# ChainCreated
# ---------------------------------------------------------------------------


class ChainCreatedEvent(BaseModel):
    """A plasma chain registered with the registry contract."""

    plasma_chain_address: str
    plasma_chain_name: str
    operator_endpoint: str
    operator_address: str

    model_config = {"frozen": True}


@register_decoder("ChainCreated")
def decode_chain_created(event: CanonicalEvent) -> ChainCreatedEvent:
    raw = event.raw
    try:
        endpoint = quote(hex_to_ascii(raw["PlasmaChainP"]), safe=_URI_SAFE)
        return ChainCreatedEvent(
            plasma_chain_address=raw["PlasmaChainAddress"],
            plasma_chain_name=hex_to_ascii(raw["PlasmaChainName"]).rstrip("\x00"),
            operator_endpoint=endpoint.replace("%00", ""),
            operator_address=raw["OperatorAddress"],
        )
    except (KeyError, ValueError) as exc:
        raise ValueError(f"Cannot decode ChainCreated from {event.hash}: {exc}") from exc


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def decode_event(
    source: CanonicalEvent | Mapping[str, Any],
    as_: str = CANONICAL,
) -> CanonicalEvent | BaseModel:
    """Decode *source* into the representation named by ``as_``.

    Args:
        source: A raw log (canonicalized first) or an existing
            ``CanonicalEvent``.
        as_: ``"canonical"`` for the generic event, or the name of a
            registered decoder.

    Raises:
        KeyError: If ``as_`` names no registered decoder.
        MalformedEventError: If a raw log fails shape validation.
    """
    if as_ != CANONICAL and as_ not in DECODER_REGISTRY:
        raise KeyError(
            f"No decoder registered for {as_!r}. "
            f"Known: {sorted(DECODER_REGISTRY)}"
        )

    event = source if isinstance(source, CanonicalEvent) else canonicalize(source)
    if as_ == CANONICAL:
        return event
    return DECODER_REGISTRY[as_](event)
