"""Decoding utilities: hex handling, typed topic parsing and value labelling."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from eth_abi import decode as abi_decode
from eth_utils import to_checksum_address  # type: ignore[attr-defined]

from .specs import ParamSpec, TopicFieldSpec, canonical_type, is_hashed_when_indexed


def hex_to_bytes(h: str) -> bytes:
    """Decode a 0x-prefixed (or bare) hex string; raises ValueError on bad input."""
    s = h[2:] if h[:2] in ("0x", "0X") else h
    return bytes.fromhex(s)


def parse_topic_field(topic_hex: str, spec: TopicFieldSpec) -> Any:
    """Parse one indexed topic according to the declared type.

    Reference types (string, bytes, arrays, tuples) are hashed by the EVM when
    indexed, so the raw topic hex is returned for them.
    """
    h = topic_hex.lower()
    if is_hashed_when_indexed(spec.type):
        return h
    raw = hex_to_bytes(h)
    if len(raw) != 32:
        raise ValueError(f"topic for {spec.name} is {len(raw)} bytes, expected 32")
    (value,) = abi_decode([canonical_type(spec.type, spec.components)], raw)
    return label_value(value, spec.type, spec.components)


def label_value(value: Any, type_: str, components: Sequence[ParamSpec] = ()) -> Any:
    """Turn an eth_abi decoded value into plain, named data.

    - tuples become dicts keyed by component name (``argN`` when unnamed)
    - arrays are labelled element-wise
    - addresses are checksummed, bytes become 0x-hex
    """
    if type_.endswith("]"):
        inner = type_[: type_.rindex("[")]
        return [label_value(v, inner, components) for v in value]
    if type_ == "tuple":
        return {
            (c.name or f"arg{i}"): label_value(v, c.type, c.components)
            for i, (c, v) in enumerate(zip(components, value))
        }
    if type_ == "address":
        return to_checksum_address(value)
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return value
