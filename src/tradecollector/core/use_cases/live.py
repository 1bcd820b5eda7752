"""Live log processing with gap-free catch-up.

On every (re)connect the listener:
1. opens the log subscription (notifications are buffered from here on),
2. backfills from the block after the checkpoint up to the current head,
3. streams the subscription through the same decode → export step.

Anything delivered twice across steps 2 and 3 is dropped by the sink.
For a live log in block N the checkpoint moves to N - 1: later logs of
block N may still be in flight, so only the earlier blocks are complete.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from tradecollector.core.errors import FetchFailedError, NodeConnectionError, RpcError
from tradecollector.core.interfaces import ILogSubscription
from tradecollector.core.models import EventLog, State
from tradecollector.core.use_cases.backfill import BackfillScanner
from tradecollector.core.use_cases.pipeline import ProcessContext, process_log, with_retry
from tradecollector.orchestration.utils import next_block_after

log = logging.getLogger(__name__)


class LiveListener:
    """
    Keeps the export current with the chain head, reconnecting as needed.

    Parameters
    ----------
    ctx : ProcessContext
        Shared processing context (connector, registry, sink, checkpoint).
    start_block : int
        First block of the run; used when nothing was exported yet.
    on_state : callable, optional
        Called with `State.LIVE` / `State.CATCHING_UP` on transitions.
    """

    def __init__(
        self,
        ctx: ProcessContext,
        *,
        start_block: int,
        on_state: Callable[[State], None] | None = None,
    ) -> None:
        self._ctx = ctx
        self._start_block = start_block
        self._on_state = on_state or (lambda _s: None)
        self._backfill = BackfillScanner(ctx)

    async def _subscribe(self) -> ILogSubscription:
        """Connect (if needed) and subscribe, within the retry budget."""
        ctx = self._ctx
        attempt = 0
        while True:
            attempt += 1
            try:
                if not ctx.rpc.connected:
                    await ctx.rpc.connect()
                return await ctx.rpc.subscribe_logs(address=ctx.address, topic0s=ctx.topic0s)
            except (NodeConnectionError, RpcError) as e:
                if attempt >= ctx.retry.max_attempts:
                    raise FetchFailedError(f"cannot subscribe after {attempt} attempts: {e}") from e
                delay = ctx.retry.delay(attempt)
                ctx.stats.retries += 1
                log.warning("subscribe failed (attempt %d/%d): %s; retrying in %.1fs", attempt, ctx.retry.max_attempts, e, delay)
                await ctx.rpc.aclose()
                await asyncio.sleep(delay)

    async def catch_up(self) -> int | None:
        """Backfill from the block after the checkpoint to the current head."""
        ctx = self._ctx
        head = await with_retry(ctx, "eth_blockNumber", ctx.rpc.latest_block)
        start = next_block_after(ctx.checkpoint.last_exported_block, self._start_block)
        if start > head:
            return None
        log.info("catching up [%d, %d]", start, head)
        return await self._backfill.run(start, head)

    async def _on_log(self, ev: EventLog) -> None:
        """Export one live log and advance the checkpoint to the block before it.

        Block N itself is not marked complete: more of its logs may still be
        in flight. A later log in block M > N moves the checkpoint to M - 1,
        which covers N. After a reconnect or restart the catch-up therefore
        starts at the block of the last live log, and the sink drops the rows
        it already holds.
        """
        ctx = self._ctx
        if ev.block_number < self._start_block:
            ctx.stats.skipped += 1
            return
        with ctx.stop.critical():
            await process_log(ctx, ev)
            if not ev.removed and ev.block_number > 0:
                ctx.checkpoint.advance(ev.block_number - 1)

    async def run(self) -> None:
        """Run until cancelled; raises FetchFailedError when the node stays unreachable."""
        ctx = self._ctx
        first = True
        while True:
            if not first:
                self._on_state(State.CATCHING_UP)
            sub = await self._subscribe()
            await self.catch_up()
            self._on_state(State.LIVE)
            first = False
            try:
                async for ev in sub:
                    await self._on_log(ev)
            except NodeConnectionError as e:
                ctx.stats.reconnects += 1
                log.warning("live stream interrupted: %s; reconnecting", e)
                continue
            # a subscription iterator that simply ends is treated like a drop
            log.warning("live stream ended; reconnecting")
            await ctx.rpc.aclose()
