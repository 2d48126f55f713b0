"""
chainwatch -- Event model.

Usage:
    from chainwatch.events import canonicalize, decode_event
"""
from __future__ import annotations

from chainwatch.events.canonical import (
    REQUIRED_LOG_KEYS,
    CanonicalEvent,
    MalformedEventError,
    canonicalize,
    event_hash,
    parse_event_values,
)
from chainwatch.events.decoders import (
    CANONICAL,
    DECODER_REGISTRY,
    ChainCreatedEvent,
    decode_event,
    register_decoder,
)

__all__ = [
    # Canonical
    "CanonicalEvent",
    "MalformedEventError",
    "REQUIRED_LOG_KEYS",
    "canonicalize",
    "event_hash",
    "parse_event_values",
    # Decoders
    "CANONICAL",
    "DECODER_REGISTRY",
    "ChainCreatedEvent",
    "decode_event",
    "register_decoder",
]
