import pytest
from eth_abi import encode as abi_encode
from eth_utils import to_checksum_address

from tradecollector.abi_events import make_event_registry_from_abi
from tradecollector.core.errors import DecodeError
from tradecollector.core.models import EventLog
from tradecollector.decoding.decoder import decode_event
from tradecollector.decoding.specs import EventRegistry

from conftest import CONTRACT, addr


@pytest.fixture
def transfer_registry() -> EventRegistry:
    abi = [
        {
            "type": "event",
            "name": "Tagged",
            "anonymous": False,
            "inputs": [
                {"name": "from", "type": "address", "indexed": True},
                {"name": "tag", "type": "string", "indexed": True},
                {"name": "amount", "type": "int256", "indexed": False},
            ],
        }
    ]
    return make_event_registry_from_abi(abi)


def _log(topics, data_hex: str, **kw) -> EventLog:
    return EventLog(
        address=CONTRACT,
        topics=tuple(topics),
        data_hex=data_hex,
        block_number=kw.get("block_number", 1),
        block_hash="0x" + "bb" * 32,
        tx_hash="0x" + "cc" * 32,
        log_index=kw.get("log_index", 0),
    )


def test_decode_take_order(take_order_log, registry: EventRegistry) -> None:
    env = decode_event(take_order_log(100, 3, input_=123, output=456), registry)

    assert env is not None
    assert env.event_kind == "TakeOrderV2"
    assert env.key == (take_order_log(100, 3).tx_hash, 3)
    assert env.contract == to_checksum_address(CONTRACT)
    assert list(env.fields) == ["sender", "config", "input", "output"]
    assert env.fields["sender"] == to_checksum_address(addr("aa"))
    assert env.fields["input"] == 123
    assert env.fields["output"] == 456

    order = env.fields["config"]["order"]
    assert order["owner"] == to_checksum_address(addr("11"))
    assert order["evaluable"]["bytecode"] == "0x0102"
    assert order["validInputs"] == [{"token": to_checksum_address(addr("44")), "decimals": 18, "vaultId": 1}]
    assert order["nonce"] == "0x" + "66" * 32
    assert env.fields["config"]["signedContext"][0]["context"] == [1, 2]
    assert env.fields["config"]["signedContext"][0]["signature"] == "0x99"


def test_decode_clear(clear_log, registry: EventRegistry) -> None:
    env = decode_event(clear_log(7), registry)

    assert env is not None
    assert env.event_kind == "ClearV2"
    assert env.fields["alice"]["owner"] == to_checksum_address(addr("12"))
    assert env.fields["bob"]["owner"] == to_checksum_address(addr("13"))
    assert env.fields["clearConfig"]["aliceBountyVaultId"] == 7
    assert env.fields["clearConfig"]["bobBountyVaultId"] == 8


def test_decode_keeps_raw_payload(take_order_log, registry: EventRegistry) -> None:
    log = take_order_log(5)
    env = decode_event(log, registry)

    assert env.raw_topics == log.topics
    assert env.raw_data == log.data_hex
    assert env.block_hash == log.block_hash


def test_decode_event_unknown_topic(registry: EventRegistry) -> None:
    assert decode_event(_log(["0x" + "99" * 32], "0x"), registry) is None


def test_decode_event_without_topics(registry: EventRegistry) -> None:
    assert decode_event(_log([], "0x"), registry) is None


def test_decode_truncated_data_raises(take_order_log, registry: EventRegistry) -> None:
    good = take_order_log(1)
    bad = _log(good.topics, good.data_hex[:200])

    with pytest.raises(DecodeError) as exc:
        decode_event(bad, registry)
    assert exc.value.log is bad


def test_decode_non_hex_data_raises(take_order_log, registry: EventRegistry) -> None:
    good = take_order_log(1)
    with pytest.raises(DecodeError):
        decode_event(_log(good.topics, "0xzz"), registry)


def test_decode_wrong_topic_count_raises(take_order_log, registry: EventRegistry) -> None:
    good = take_order_log(1)
    with pytest.raises(DecodeError):
        decode_event(_log(good.topics + ("0x" + "00" * 32,), good.data_hex), registry)


def test_decode_indexed_fields(transfer_registry: EventRegistry) -> None:
    (topic0,) = transfer_registry.keys()
    sender_topic = "0x" + "00" * 12 + "12" * 20
    tag_hash = "0x" + "ab" * 32
    data = abi_encode(["int256"], [-5])

    env = decode_event(_log([topic0, sender_topic, tag_hash], "0x" + data.hex()), transfer_registry)

    assert env.fields == {
        "from": to_checksum_address(addr("12")),
        "tag": tag_hash,  # hashed when indexed
        "amount": -5,
    }
