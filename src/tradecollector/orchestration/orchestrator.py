"""Collector state machine: resolve start → backfill → live.

This module provides:

1) `resolve_start_block(...)`:
   - checkpoint present → max(checkpoint + 1, explicit start)
   - else the explicit start block
   - else the contract creation block from the explorer
   - else `ConfigError` (a run never silently starts from genesis)

2) `Collector`:
   - Depends ONLY on interfaces (IEvmLogsProvider, IEventSink,
     ICheckpointStore, ICreationBlockProvider).
   - Owns the lifecycle of the connector and sink it was given.
   - Exposes `state` and an optional `on_state` callback.

States: ResolvingStart → Backfilling → CaughtUp → Live ⇄ CatchingUp,
terminal Failed or Stopped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from tradecollector.core.config import RetryPolicy
from tradecollector.core.errors import CollectorError, ConfigError, ExplorerError
from tradecollector.core.interfaces import (
    ICheckpointStore,
    ICreationBlockProvider,
    IEventSink,
    IEvmLogsProvider,
)
from tradecollector.core.models import State
from tradecollector.core.use_cases.backfill import BackfillScanner
from tradecollector.core.use_cases.live import LiveListener
from tradecollector.core.use_cases.pipeline import ProcessContext, ProcessStats, StopToken, with_retry
from tradecollector.decoding.specs import EventRegistry, get_event_registry_topic0s
from tradecollector.orchestration.utils import next_block_after

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Start block
# ---------------------------------------------------------------------------


async def resolve_start_block(
    *,
    address: str,
    checkpoint: ICheckpointStore,
    start_block: int | None,
    explorer: ICreationBlockProvider | None,
) -> int:
    """Pick the first block to export for this run."""
    last = checkpoint.last_exported_block
    if last is not None:
        start = next_block_after(last, start_block or 0)
        log.info("resuming after checkpoint %d from block %d", last, start)
        return start
    if start_block is not None:
        return start_block
    if explorer is None:
        raise ConfigError(
            "no start block: pass an explicit start block or configure a block explorer (ETHERSCAN_API_KEY)"
        )
    try:
        return await explorer.contract_creation_block(address)
    except ExplorerError as e:
        raise ConfigError(f"cannot resolve start block: {e}") from e


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------


class Collector:
    """One collector run over a single contract.

    Parameters
    ----------
    rpc : IEvmLogsProvider
        Node connection (not yet connected).
    registry : EventRegistry
        Events to decode; their topic0s form the log filter.
    sink : IEventSink
        Unopened sink; opened only once the start block is resolved.
    checkpoint : ICheckpointStore
        Progress store shared by backfill and live processing.
    address : str
        Contract address.
    max_chunk : int
        Backfill chunk size in blocks.
    start_block : int, optional
        Explicit first block.
    explorer : ICreationBlockProvider, optional
        Fallback start-block source for a first run.
    """

    def __init__(
        self,
        *,
        rpc: IEvmLogsProvider,
        registry: EventRegistry,
        sink: IEventSink,
        checkpoint: ICheckpointStore,
        address: str,
        max_chunk: int,
        start_block: int | None = None,
        explorer: ICreationBlockProvider | None = None,
        retry: RetryPolicy | None = None,
        resolve_timestamps: bool = True,
        on_state: Callable[[State], None] | None = None,
    ) -> None:
        self._rpc = rpc
        self._registry = registry
        self._sink = sink
        self._checkpoint = checkpoint
        self._address = address
        self._max_chunk = max_chunk
        self._start_block = start_block
        self._explorer = explorer
        self._retry = retry or RetryPolicy()
        self._resolve_timestamps = resolve_timestamps
        self._on_state = on_state
        self.state: State | None = None
        self.stats = ProcessStats()
        self._task: asyncio.Task | None = None
        self._stop = StopToken()

    # ---------- state ----------

    def _set_state(self, state: State) -> None:
        if state is self.state:
            return
        log.info("state: %s → %s", self.state.value if self.state else "-", state.value)
        self.state = state
        if self._on_state is not None:
            self._on_state(state)

    # ---------- pipeline ----------

    async def _pipeline(self) -> None:
        self._set_state(State.RESOLVING_START)
        start = await resolve_start_block(
            address=self._address,
            checkpoint=self._checkpoint,
            start_block=self._start_block,
            explorer=self._explorer,
        )
        self._sink.open(self._checkpoint.last_exported_block)

        ctx = ProcessContext(
            rpc=self._rpc,
            address=self._address,
            topic0s=get_event_registry_topic0s(self._registry),
            registry=self._registry,
            sink=self._sink,
            checkpoint=self._checkpoint,
            max_chunk=self._max_chunk,
            retry=self._retry,
            resolve_timestamps=self._resolve_timestamps,
            stats=self.stats,
            stop=self._stop,
        )

        head = await with_retry(ctx, "eth_blockNumber", self._rpc.latest_block)
        if start <= head:
            self._set_state(State.BACKFILLING)
            log.info("backfilling [%d, %d] in chunks of %d", start, head, self._max_chunk)
            await BackfillScanner(ctx).run(start, head)
        else:
            log.info("start block %d is above head %d; waiting for it live", start, head)
        self._set_state(State.CAUGHT_UP)

        await LiveListener(ctx, start_block=start, on_state=self._set_state).run()

    async def run(self) -> ProcessStats:
        """Run until `stop()` is called or a fatal error occurs."""
        if self._stop.requested:
            self._set_state(State.STOPPED)
            return self.stats
        self._task = asyncio.ensure_future(self._pipeline())
        self._stop.bind(self._task)
        try:
            await self._task
        except asyncio.CancelledError:
            self._set_state(State.STOPPED)
            if not self._stop.requested:
                raise
        except CollectorError as e:
            self._set_state(State.FAILED)
            log.error("collector failed: %s", e)
            raise
        except Exception:
            self._set_state(State.FAILED)
            log.exception("collector crashed")
            raise
        finally:
            self._sink.close()
            await self._rpc.aclose()
        return self.stats

    def stop(self) -> None:
        """Request shutdown.

        A pending fetch, subscription read or backoff sleep is interrupted
        right away; a chunk or live event being exported is finished first.
        """
        self._stop.request()
