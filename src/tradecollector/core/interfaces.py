from __future__ import annotations

import enum
from collections.abc import AsyncIterator, Sequence
from typing import Protocol, runtime_checkable

from tradecollector.core.models import BlockRange, Checkpoint, EventEnvelope, EventKey, EventLog


class ExportResult(enum.Enum):
    EXPORTED = "exported"
    ALREADY_EXPORTED = "already_exported"


# ---------------------------------------------------------------------------
# IEvmLogsProvider
# ---------------------------------------------------------------------------


@runtime_checkable
class ILogSubscription(Protocol):
    """
    An established log subscription.

    Iterating it yields raw logs in arrival order until the connection drops,
    at which point the iterator raises NodeConnectionError.
    """

    def __aiter__(self) -> AsyncIterator[EventLog]: ...


@runtime_checkable
class IEvmLogsProvider(Protocol):
    """
    Abstract node connection used by backfill and live components.

    Domain expectations:
    - One connection, one in-flight operation at a time.
    - Failures are reported (NodeConnectionError / RpcError), never retried here.
    - Ranges wider than the node page size are rejected with RangeTooLargeError.
    """

    max_chunk: int

    @property
    def connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def reconnect(self) -> None: ...

    async def aclose(self) -> None: ...

    async def latest_block(self) -> int:
        """Return the current chain head height."""
        ...

    async def block_timestamp(self, block_number: int) -> int:
        """Return the unix timestamp of a block."""
        ...

    async def get_logs(
        self,
        *,
        address: str,
        topic0s: Sequence[str],
        block_range: BlockRange,
    ) -> list[EventLog]:
        """Return all logs for (address, topic0s) over the inclusive block range."""
        ...

    async def subscribe_logs(self, *, address: str, topic0s: Sequence[str]) -> ILogSubscription:
        """Establish a live subscription; returns once the node confirmed it."""
        ...


# ---------------------------------------------------------------------------
# IEventSink
# ---------------------------------------------------------------------------


@runtime_checkable
class IEventSink(Protocol):
    """
    Durable, deduplicating sink for decoded events.

    Domain expectations:
    - `export` is idempotent per identity key within the dedup window.
    - A row is flushed to durable storage before `export` returns.
    - Nothing touches the destination before `open`.
    """

    def open(self, checkpoint: int | None = None) -> IEventSink:
        """Prepare the destination; keys of rows above `checkpoint` must be remembered."""
        ...

    def close(self) -> None: ...

    def export(self, envelope: EventEnvelope) -> ExportResult: ...

    def has_exported(self, key: EventKey) -> bool:
        """True when `key` is known to be written (within the dedup window)."""
        ...


# ---------------------------------------------------------------------------
# ICheckpointStore
# ---------------------------------------------------------------------------


@runtime_checkable
class ICheckpointStore(Protocol):
    """Persistent, monotonic marker of export progress."""

    def load(self) -> Checkpoint | None: ...

    def advance(self, block_number: int) -> bool:
        """Move the checkpoint forward; lower or equal values are ignored."""
        ...

    @property
    def last_exported_block(self) -> int | None: ...


# ---------------------------------------------------------------------------
# ICreationBlockProvider
# ---------------------------------------------------------------------------


@runtime_checkable
class ICreationBlockProvider(Protocol):
    """Looks up the block a contract was deployed in (e.g. a block explorer)."""

    async def contract_creation_block(self, address: str) -> int: ...
