"""Event specification primitives and registry typing.

Defines lightweight dataclasses to describe how to decode events:
- `ParamSpec`: one ABI parameter (type + tuple components), used for struct labelling
- `TopicFieldSpec` / `DataFieldSpec`: typed sources for indexed topics / the data payload
- `EventSpec`: one event rule (topic0, fields, output field order)
- `EventRegistry`: mapping from topic0 → EventSpec
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ParamSpec:
    """One ABI parameter. `components` is only set for tuple types."""

    name: str
    type: str  # as declared, e.g. "address", "tuple", "tuple[]", "uint256[2]"
    components: tuple[ParamSpec, ...] = ()


def canonical_type(type_: str, components: Iterable[ParamSpec] = ()) -> str:
    """ABI type with tuples expanded, e.g. "tuple[]" → "(address,uint256)[]"."""
    if type_.startswith("tuple"):
        inner = ",".join(canonical_type(c.type, c.components) for c in components)
        return f"({inner}){type_[len('tuple'):]}"
    return type_


def is_hashed_when_indexed(type_: str) -> bool:
    """Indexed reference types are stored as keccak hashes, not values."""
    return type_ in ("string", "bytes") or type_.startswith("tuple") or type_.endswith("]")


@dataclass(frozen=True)
class TopicFieldSpec:
    """Describe one indexed topic field (by topic position and ABI type)."""

    name: str
    index: int  # 1-based: topic[0] is the event selector
    type: str
    components: tuple[ParamSpec, ...] = ()


@dataclass(frozen=True)
class DataFieldSpec:
    """Describe one non-indexed field, decoded from the data payload as part of a tuple."""

    name: str
    type: str
    components: tuple[ParamSpec, ...] = ()

    @property
    def canonical_type(self) -> str:
        return canonical_type(self.type, self.components)


@dataclass(frozen=True)
class EventSpec:
    """One event decoding rule.

    `field_order` is the ABI input order; decoded fields are emitted in it.
    """

    topic0: str
    name: str
    topic_fields: list[TopicFieldSpec]
    data_fields: list[DataFieldSpec]
    field_order: tuple[str, ...]
    signature: Optional[str] = None

    def __post_init__(self):
        known = {f.name for f in self.topic_fields} | {f.name for f in self.data_fields}
        for name in self.field_order:
            if name not in known:
                raise ValueError(f"{self.name}: field {name!r} has no topic or data source")
        indexes = sorted(f.index for f in self.topic_fields)
        if indexes != list(range(1, len(indexes) + 1)):
            raise ValueError(f"{self.name}: topic indexes must be 1..{len(indexes)}, got {indexes}")

    @property
    def topic_count(self) -> int:
        """Number of topics a well-formed log of this event carries (selector included)."""
        return 1 + len(self.topic_fields)

    @property
    def data_types(self) -> list[str]:
        return [f.canonical_type for f in self.data_fields]


# The full registry keyed by topic0 (lowercased 0x-hex).
EventRegistry = dict[str, EventSpec]


def get_event_specs_topic0s(event_specs: Iterable[EventSpec]):
    return [event_spec.topic0 for event_spec in event_specs]


def get_event_registry_topic0s(registry: EventRegistry):
    return get_event_specs_topic0s(registry.values())


def get_event_registry_field_names(registry: EventRegistry) -> list[str]:
    """Union of every event's field names, first occurrence order."""
    names: list[str] = []
    for spec in registry.values():
        for name in spec.field_order:
            if name not in names:
                names.append(name)
    return names


def add_event_specs(registry: EventRegistry, specs: Iterable[EventSpec]) -> EventRegistry:
    """Insert `specs` keyed by lowercased topic0.

    A topic0 already held by a differently named event is rejected: the
    decoder dispatches on topic0 alone.
    """
    for spec in specs:
        key = spec.topic0.lower()
        existing = registry.get(key)
        if existing is not None and existing.name != spec.name:
            raise ValueError(f"topic0 {key} is registered for both {existing.name} and {spec.name}")
        registry[key] = spec
    return registry
