"""Event decoding.

This package provides:
- Event specification system (EventSpec, TopicFieldSpec, DataFieldSpec, ParamSpec)
- Generic decoder that translates raw logs into EventEnvelope objects
- Registry helpers keyed by topic0
"""

from tradecollector.decoding.decoder import decode_event
from tradecollector.decoding.specs import (
    DataFieldSpec,
    EventRegistry,
    EventSpec,
    ParamSpec,
    TopicFieldSpec,
    add_event_specs,
    get_event_registry_field_names,
    get_event_registry_topic0s,
)

__all__ = [
    "decode_event",
    "add_event_specs",
    "DataFieldSpec",
    "EventRegistry",
    "EventSpec",
    "ParamSpec",
    "TopicFieldSpec",
    "get_event_registry_field_names",
    "get_event_registry_topic0s",
]
