"""Generic event decoder driven by an `EventRegistry`.

This module translates raw logs into `EventEnvelope` using specs built from the
contract ABI. A log whose topic0 is not in the registry is not an error: it is
simply not ours and `decode_event` returns None. A log whose topic0 matches but
whose topics/data do not fit the declared layout raises `DecodeError`.
"""

from __future__ import annotations

from typing import Any

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address  # type: ignore[attr-defined]

from tradecollector.core.errors import DecodeError
from tradecollector.core.models import EventEnvelope, EventLog
from tradecollector.decoding.specs import EventRegistry, EventSpec
from tradecollector.decoding.utils import hex_to_bytes, label_value, parse_topic_field

# ---------- helper functions ----------


def _lookup_spec(log: EventLog, registry: EventRegistry) -> EventSpec | None:
    if not log.topics:
        return None
    return registry.get(log.topics[0].lower())


def _decode_topics(log: EventLog, spec: EventSpec) -> dict[str, Any]:
    if len(log.topics) != spec.topic_count:
        raise DecodeError(
            f"{spec.name}: expected {spec.topic_count} topics, got {len(log.topics)}",
            log,
        )
    topic_vals: dict[str, Any] = {}
    for tf in spec.topic_fields:
        try:
            topic_vals[tf.name] = parse_topic_field(log.topics[tf.index], tf)
        except (DecodingError, ValueError, OverflowError) as e:
            raise DecodeError(f"{spec.name}: bad topic {tf.name}: {e}", log) from e
    return topic_vals


def _decode_data(log: EventLog, spec: EventSpec) -> dict[str, Any]:
    try:
        data = hex_to_bytes(log.data_hex)
    except ValueError as e:
        raise DecodeError(f"{spec.name}: data is not valid hex", log) from e

    if not spec.data_fields:
        return {}
    try:
        decoded = abi_decode(spec.data_types, data)
    except (DecodingError, ValueError, OverflowError) as e:
        raise DecodeError(f"{spec.name}: data does not match {spec.data_types}: {e}", log) from e

    return {
        df.name: label_value(v, df.type, df.components)
        for df, v in zip(spec.data_fields, decoded)
    }


# ---------- main decoder ----------


def decode_event(log: EventLog, registry: EventRegistry) -> EventEnvelope | None:
    """Decode one raw log into an `EventEnvelope`.

    Returns None when the log's topic0 is unknown. `block_timestamp` is copied
    from the log when the node supplied it; callers fill it in otherwise.
    """
    spec = _lookup_spec(log, registry)
    if spec is None:
        return None

    topic_vals = _decode_topics(log, spec)
    data_vals = _decode_data(log, spec)

    fields = {
        name: topic_vals[name] if name in topic_vals else data_vals[name]
        for name in spec.field_order
    }

    return EventEnvelope(
        event_kind=spec.name,
        block_number=log.block_number,
        block_hash=log.block_hash,
        tx_hash=log.tx_hash,
        log_index=log.log_index,
        contract=to_checksum_address(log.address),
        fields=fields,
        raw_topics=log.topics,
        raw_data=log.data_hex,
        block_timestamp=log.block_timestamp,
    )
