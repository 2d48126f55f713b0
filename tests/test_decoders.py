"""Tests for named event decoders."""

import pytest

from chainwatch.events.canonical import CanonicalEvent, MalformedEventError, canonicalize
from chainwatch.events.decoders import (
    DECODER_REGISTRY,
    ChainCreatedEvent,
    decode_event,
    hex_to_ascii,
    register_decoder,
)
from conftest import make_log

CHAIN_ADDRESS = "0x" + "cd" * 20
OPERATOR = "0x" + "ef" * 20


def _hex(text: str, width: int = 32) -> str:
    return "0x" + text.encode().ljust(width, b"\x00").hex()


@pytest.fixture
def chain_created_log():
    return make_log(
        "0xtx9", 1, 42,
        event="ChainCreated",
        PlasmaChainAddress=CHAIN_ADDRESS,
        PlasmaChainName=_hex("my chain"),
        PlasmaChainP=_hex("http://1.2.3.4:3000/a b"),
        OperatorAddress=OPERATOR,
    )


class TestHexToAscii:
    def test_prefixed(self):
        assert hex_to_ascii("0x6869") == "hi"

    def test_unprefixed(self):
        assert hex_to_ascii("6869") == "hi"


class TestDecodeEvent:
    def test_canonical_is_default(self, chain_created_log):
        event = decode_event(chain_created_log)
        assert isinstance(event, CanonicalEvent)

    def test_chain_created_from_raw(self, chain_created_log):
        record = decode_event(chain_created_log, as_="ChainCreated")
        assert isinstance(record, ChainCreatedEvent)
        assert record.plasma_chain_address == CHAIN_ADDRESS
        assert record.plasma_chain_name == "my chain"
        assert record.operator_endpoint == "http://1.2.3.4:3000/a%20b"
        assert record.operator_address == OPERATOR

    def test_chain_created_from_canonical(self, chain_created_log):
        event = canonicalize(chain_created_log)
        record = decode_event(event, as_="ChainCreated")
        assert record.plasma_chain_name == "my chain"

    def test_unknown_intent(self, chain_created_log):
        with pytest.raises(KeyError):
            decode_event(chain_created_log, as_="NoSuchEvent")

    def test_missing_field_is_value_error(self):
        raw = make_log("0xtx9", 1, 42, event="ChainCreated", OperatorAddress=OPERATOR)
        with pytest.raises(ValueError, match="ChainCreated"):
            decode_event(raw, as_="ChainCreated")

    def test_malformed_raw_surfaces(self):
        with pytest.raises(MalformedEventError):
            decode_event({"returnValues": {}}, as_="ChainCreated")

    def test_intent_not_inferred_from_fields(self, chain_created_log):
        # ChainCreated-shaped payload still decodes generically unless asked.
        assert isinstance(decode_event(chain_created_log, as_="canonical"), CanonicalEvent)


class TestRegistry:
    def test_duplicate_registration_rejected(self):
        with pytest.raises(RuntimeError):
            register_decoder("ChainCreated")(lambda e: e)

    def test_register_custom_decoder(self, chain_created_log):
        @register_decoder("Tagged")
        def decode_tagged(event):
            return ChainCreatedEvent(
                plasma_chain_address="a", plasma_chain_name="b",
                operator_endpoint="c", operator_address="d",
            )

        try:
            record = decode_event(chain_created_log, as_="Tagged")
            assert record.operator_address == "d"
        finally:
            DECODER_REGISTRY.pop("Tagged")
