"""Build an `EventRegistry` from a contract ABI.

The ABI may be a list of entries, or an artifact dict carrying the list under
"abi". Only `type == "event"` entries are read; structs are described through
nested `components`, which become tuple types in the canonical signature.
"""

import json
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any, Literal, Optional

from eth_utils.abi import event_signature_to_log_topic
from pydantic import BaseModel, ValidationError

from tradecollector.core.errors import ConfigError
from tradecollector.decoding.specs import (
    DataFieldSpec,
    EventRegistry,
    EventSpec,
    ParamSpec,
    TopicFieldSpec,
    add_event_specs,
    canonical_type,
)


class AbiInput(BaseModel):
    indexed: bool = False
    internalType: Optional[str] = None
    name: str = ""
    type: str
    components: Optional[list["AbiInput"]] = None


AbiInput.model_rebuild()


class AbiEvent(BaseModel):
    anonymous: bool = False
    inputs: Sequence[AbiInput]
    name: str
    type: Literal["event"]


def _input_name(event_input: AbiInput, idx: int) -> str:
    return event_input.name or f"arg{idx}"


def _param_spec(abi_input: AbiInput, idx: int = 0) -> ParamSpec:
    return ParamSpec(
        name=_input_name(abi_input, idx),
        type=abi_input.type,
        components=tuple(_param_spec(c, i) for i, c in enumerate(abi_input.components or [])),
    )


def get_event_signature(event: AbiEvent):
    types = (canonical_type(i.type, _param_spec(i).components) for i in event.inputs)
    return f"{event.name}({','.join(types)})"


def get_event_topic0(event: AbiEvent):
    return "0x" + event_signature_to_log_topic(get_event_signature(event)).hex()


def get_event_topic_field_specs(event: AbiEvent):
    indexed = [(idx, i) for idx, i in enumerate(event.inputs) if i.indexed]
    return [
        TopicFieldSpec(_input_name(i, idx), topic_idx + 1, i.type, _param_spec(i).components)
        for topic_idx, (idx, i) in enumerate(indexed)
    ]


def get_event_data_field_specs(event: AbiEvent):
    return [
        DataFieldSpec(_input_name(i, idx), i.type, _param_spec(i).components)
        for idx, i in enumerate(event.inputs)
        if not i.indexed
    ]


def get_event_spec(event: AbiEvent):
    return EventSpec(
        topic0=get_event_topic0(event),
        name=event.name,
        topic_fields=get_event_topic_field_specs(event),
        data_fields=get_event_data_field_specs(event),
        field_order=tuple(_input_name(i, idx) for idx, i in enumerate(event.inputs)),
        signature=get_event_signature(event),
    )


AbiJson = Iterable[dict[str, Any]]
AbiSpec = AbiJson | dict[str, Any] | Path


def _load_abi(abi: AbiSpec) -> AbiJson:
    if isinstance(abi, Path):
        try:
            abi = json.loads(abi.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"cannot read ABI {abi}: {e}") from e
    if isinstance(abi, dict):
        if "abi" not in abi:
            raise ConfigError("ABI object has no 'abi' key")
        abi = abi["abi"]
    return abi


def get_events_from_abi(abi: AbiSpec) -> dict[str, AbiEvent]:
    try:
        return {
            entry["name"]: AbiEvent.model_validate(entry)
            for entry in _load_abi(abi)
            if entry.get("type") == "event" and not entry.get("anonymous", False)
        }
    except ValidationError as e:
        raise ConfigError(f"malformed ABI event entry: {e}") from e


def make_event_registry_from_events(events: Iterable[AbiEvent]) -> EventRegistry:
    return add_event_specs({}, (get_event_spec(event) for event in events))


def make_event_registry_from_abi(abi: AbiSpec, names: Iterable[str] | None = None) -> EventRegistry:
    """Registry of the ABI's events, optionally restricted to `names`.

    Raises ConfigError when a requested name is not an event of the ABI, or
    when the ABI declares no events at all.
    """
    events = get_events_from_abi(abi)
    wanted = list(names or [])
    if wanted:
        unknown = [n for n in wanted if n not in events]
        if unknown:
            raise ConfigError(f"events not in ABI: {', '.join(unknown)} (known: {', '.join(sorted(events))})")
        events = {n: events[n] for n in wanted}
    if not events:
        raise ConfigError("ABI declares no events")
    return make_event_registry_from_events(events.values())
