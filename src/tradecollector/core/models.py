"""Core data models and the output row schema.

This module defines:
- `EventLog`: raw RPC log record consumed by the decoder.
- `BlockRange`: inclusive block interval handed to the connector.
- `EventEnvelope`: one decoded event, keyed by (tx_hash, log_index).
- `Checkpoint`: highest block whose events are durably exported.
- `row_schema`: the fixed Arrow schema of an output row.
- `State`: collector lifecycle states.

Design notes
------------
- Base columns are strongly typed and always present.
- Event field columns are the union of every known event's fields, stored as
  strings (uint256 values and nested structs do not fit Arrow integer types).
- Column order is decided once, from the registry, never from the data seen.
"""

from __future__ import annotations

import enum
import json
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from typing import Any

import pyarrow as pa

# === Base schema (Arrow) ===

BASE_FIELDS: list[tuple[str, pa.DataType]] = [
    ("block_number", pa.uint64()),
    ("block_timestamp", pa.uint64()),
    ("block_hash", pa.string()),
    ("transaction_hash", pa.string()),
    ("log_index", pa.uint32()),
    ("contract", pa.string()),
    ("event", pa.string()),
]

BASE_COLUMNS: list[str] = [name for name, _ in BASE_FIELDS]


def row_schema(field_names: Iterable[str]) -> pa.Schema:
    """Base fields followed by event field columns (deduplicated, order kept)."""
    fields = [pa.field(n, t) for n, t in BASE_FIELDS]
    seen = set(BASE_COLUMNS)
    for name in field_names:
        if name in seen:
            continue
        seen.add(name)
        fields.append(pa.field(name, pa.string()))
    return pa.schema(fields)


# === RPC record ===


@dataclass(slots=True, frozen=True)
class EventLog:
    """Raw log as delivered by the node, minimally normalized."""

    address: str  # lowercased 0x...
    topics: tuple[str, ...]  # lowercased 0x...
    data_hex: str  # "0x..."
    block_number: int
    block_hash: str
    tx_hash: str  # lowercased 0x...
    log_index: int
    block_timestamp: int | None = None
    removed: bool = False

    @classmethod
    def from_rpc(cls, rl: dict[str, Any]) -> EventLog:
        """Build from a JSON-RPC log object (eth_getLogs result or subscription payload)."""
        topics = tuple(str(t).lower() for t in rl.get("topics") or [])
        ts = rl.get("blockTimestamp")
        ts_i = (
            int(ts, 16)
            if isinstance(ts, str) and ts.startswith("0x")
            else (int(ts) if isinstance(ts, int) else None)
        )
        return cls(
            address=str(rl["address"]).lower(),
            topics=topics,
            data_hex=str(rl.get("data") or "0x"),
            block_number=int(rl["blockNumber"], 16),
            block_hash=str(rl.get("blockHash") or "").lower(),
            tx_hash=str(rl.get("transactionHash") or "").lower(),
            log_index=int(rl["logIndex"], 16),
            block_timestamp=ts_i,
            removed=bool(rl.get("removed", False)),
        )


@dataclass(slots=True, frozen=True)
class BlockRange:
    """Inclusive block interval [from_block, to_block]."""

    from_block: int
    to_block: int

    def __post_init__(self) -> None:
        if self.from_block < 0 or self.from_block > self.to_block:
            raise ValueError(f"invalid block range [{self.from_block}, {self.to_block}]")

    def span(self) -> int:
        return self.to_block - self.from_block + 1


# === Decoded event ===

EventKey = tuple[str, int]


@dataclass(slots=True, frozen=True)
class EventEnvelope:
    """A decoded log. `fields` keeps ABI input order."""

    event_kind: str
    block_number: int
    block_hash: str
    tx_hash: str
    log_index: int
    contract: str
    fields: dict[str, Any]
    raw_topics: tuple[str, ...]
    raw_data: str
    block_timestamp: int | None = None

    @property
    def key(self) -> EventKey:
        return (self.tx_hash, self.log_index)


# === Checkpoint ===


@dataclass(slots=True)
class Checkpoint:
    """Highest block whose events have all been durably exported."""

    last_exported_block: int
    updated_at: float = field(default=0.0)

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def from_json(cls, text: str) -> Checkpoint:
        rec = json.loads(text)
        return cls(
            last_exported_block=int(rec["last_exported_block"]),
            updated_at=float(rec.get("updated_at", 0.0)),
        )


# === Collector state ===


class State(enum.Enum):
    """Lifecycle of one collector run."""

    RESOLVING_START = "ResolvingStart"
    BACKFILLING = "Backfilling"
    CAUGHT_UP = "CaughtUp"
    LIVE = "Live"
    CATCHING_UP = "CatchingUp"
    FAILED = "Failed"
    STOPPED = "Stopped"

    @property
    def terminal(self) -> bool:
        return self in (State.FAILED, State.STOPPED)
