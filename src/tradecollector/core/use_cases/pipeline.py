"""Decode → export step shared by backfill and live processing.

This module provides:
- `ProcessStats`: run counters
- `StopToken`: cooperative shutdown that never interrupts an export step
- `ProcessContext`: everything a processing step needs (keeps signatures small)
- `with_retry`: bounded-backoff retry around one connector operation
- `process_log` / `process_logs`: decode, timestamp, export
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import TypeVar

from tradecollector.core.config import RetryPolicy
from tradecollector.core.errors import DecodeError, FetchFailedError, NodeConnectionError, RpcError
from tradecollector.core.interfaces import ExportResult, ICheckpointStore, IEventSink, IEvmLogsProvider
from tradecollector.core.models import EventEnvelope, EventLog
from tradecollector.decoding.decoder import decode_event
from tradecollector.decoding.specs import EventRegistry

log = logging.getLogger(__name__)

T = TypeVar("T")

TIMESTAMP_CACHE_SIZE = 4_096


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


@dataclass(kw_only=True)
class ProcessStats:
    """
    Aggregated counters for one collector run.

    - chunks / logs: backfill ranges fetched and raw logs received
    - decoded / exported / duplicates: decoder and sink outcomes
    - skipped: logs not of interest (unknown topic0)
    - decode_errors / removed: malformed and reorged logs, both skipped
    - retries / reconnects: connector failures absorbed
    """

    chunks: int = 0
    logs: int = 0
    decoded: int = 0
    exported: int = 0
    duplicates: int = 0
    skipped: int = 0
    decode_errors: int = 0
    removed: int = 0
    retries: int = 0
    reconnects: int = 0


# ---------------------------------------------------------------------------
# Processing context
# ---------------------------------------------------------------------------


class TimestampCache:
    """Small LRU of block number → timestamp, so one block is looked up once."""

    def __init__(self, maxsize: int = TIMESTAMP_CACHE_SIZE) -> None:
        self.maxsize = maxsize
        self._data: OrderedDict[int, int] = OrderedDict()

    def get(self, block_number: int) -> int | None:
        ts = self._data.get(block_number)
        if ts is not None:
            self._data.move_to_end(block_number)
        return ts

    def put(self, block_number: int, ts: int) -> None:
        self._data[block_number] = ts
        self._data.move_to_end(block_number)
        while len(self._data) > self.maxsize:
            self._data.popitem(last=False)


class StopToken:
    """Shutdown request for one pipeline task.

    `request()` cancels the bound task right away when it is waiting on I/O,
    or at the end of the current `critical()` section otherwise. A chunk or a
    live event is therefore either fully exported (checkpoint included) or
    not started.
    """

    def __init__(self) -> None:
        self.requested = False
        self._task: asyncio.Task | None = None
        self._depth = 0

    def bind(self, task: asyncio.Task) -> None:
        self._task = task

    def request(self) -> None:
        self.requested = True
        if self._depth == 0:
            self._cancel()

    def _cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @contextmanager
    def critical(self) -> Iterator[None]:
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1
            if self._depth == 0 and self.requested:
                log.info("stop requested; leaving after the current step")
                self._cancel()


@dataclass(slots=True)
class ProcessContext:
    """
    Shared state for backfill and live processing.

    Expressed in terms of domain interfaces only: `rpc` may be a websocket
    node or an in-memory fake, `sink` any deduplicating exporter and
    `checkpoint` any monotonic progress store.
    """

    rpc: IEvmLogsProvider
    address: str
    topic0s: list[str]
    registry: EventRegistry
    sink: IEventSink
    checkpoint: ICheckpointStore
    max_chunk: int
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    resolve_timestamps: bool = True
    stats: ProcessStats = field(default_factory=ProcessStats)
    timestamps: TimestampCache = field(default_factory=TimestampCache)
    stop: StopToken = field(default_factory=StopToken)


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


async def with_retry(ctx: ProcessContext, what: str, op: Callable[[], Awaitable[T]]) -> T:
    """Run `op` with bounded exponential backoff.

    Connection errors and JSON-RPC errors are retried; the connection is
    reopened before the next attempt when it was dropped. Once
    `ctx.retry.max_attempts` attempts failed, `FetchFailedError` is raised.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            if not ctx.rpc.connected:
                await ctx.rpc.connect()
                if attempt > 1:
                    ctx.stats.reconnects += 1
            return await op()
        except (NodeConnectionError, RpcError) as e:
            if attempt >= ctx.retry.max_attempts:
                raise FetchFailedError(f"{what} failed after {attempt} attempts: {e}") from e
            delay = ctx.retry.delay(attempt)
            ctx.stats.retries += 1
            log.warning("%s failed (attempt %d/%d): %s; retrying in %.1fs", what, attempt, ctx.retry.max_attempts, e, delay)
            await asyncio.sleep(delay)


# ---------------------------------------------------------------------------
# Core log processing
# ---------------------------------------------------------------------------


async def _with_timestamp(ctx: ProcessContext, env: EventEnvelope) -> EventEnvelope:
    if env.block_timestamp is not None or not ctx.resolve_timestamps:
        return env
    ts = ctx.timestamps.get(env.block_number)
    if ts is None:
        ts = await with_retry(
            ctx,
            f"eth_getBlockByNumber {env.block_number}",
            lambda: ctx.rpc.block_timestamp(env.block_number),
        )
        ctx.timestamps.put(env.block_number, ts)
    return replace(env, block_timestamp=ts)


async def process_log(ctx: ProcessContext, ev: EventLog) -> ExportResult | None:
    """Decode and export one raw log. Returns None when the log was skipped."""
    if ev.removed:
        ctx.stats.removed += 1
        log.warning("ignoring removed log tx=%s log_index=%d block=%d", ev.tx_hash, ev.log_index, ev.block_number)
        return None

    try:
        env = decode_event(ev, ctx.registry)
    except DecodeError as e:
        ctx.stats.decode_errors += 1
        log.warning("skipping undecodable log: %s", e)
        return None
    if env is None:
        ctx.stats.skipped += 1
        return None
    ctx.stats.decoded += 1

    if ctx.sink.has_exported(env.key):
        ctx.stats.duplicates += 1
        return ExportResult.ALREADY_EXPORTED

    env = await _with_timestamp(ctx, env)
    result = ctx.sink.export(env)
    if result is ExportResult.EXPORTED:
        ctx.stats.exported += 1
    else:
        ctx.stats.duplicates += 1
    return result


async def process_logs(ctx: ProcessContext, logs: Iterable[EventLog]) -> int:
    """Process logs in (block, log_index) order; returns the number exported."""
    exported = 0
    for ev in sorted(logs, key=lambda l: (l.block_number, l.log_index)):
        if await process_log(ctx, ev) is ExportResult.EXPORTED:
            exported += 1
    return exported
