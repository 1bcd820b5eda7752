from __future__ import annotations

import logging
import time

from tradecollector.core.models import BlockRange
from tradecollector.core.use_cases.pipeline import ProcessContext, process_logs, with_retry
from tradecollector.orchestration.utils import iter_block_ranges

log = logging.getLogger(__name__)


class BackfillScanner:
    """
    Walks a historical block range in fixed-size chunks.

    For each chunk, in order: fetch (with retry), decode and export every log,
    then advance the checkpoint to the chunk's last block. The checkpoint
    therefore never runs ahead of the rows on disk, and a failure leaves it at
    the end of the last fully exported chunk. A stop request waits for the
    chunk being exported; only the fetch is interrupted.
    """

    def __init__(self, ctx: ProcessContext) -> None:
        self._ctx = ctx

    async def fetch_chunk(self, block_range: BlockRange):
        ctx = self._ctx
        return await with_retry(
            ctx,
            f"eth_getLogs [{block_range.from_block}, {block_range.to_block}]",
            lambda: ctx.rpc.get_logs(address=ctx.address, topic0s=ctx.topic0s, block_range=block_range),
        )

    async def run(self, start: int, end: int) -> int | None:
        """Export every event in [start, end]; returns the last block covered.

        Returns None when the range is empty (start > end).
        """
        ctx = self._ctx
        if start > end:
            return None
        t0 = time.perf_counter()
        last: int | None = None
        total_chunks = (end - start) // ctx.max_chunk + 1
        for idx, block_range in enumerate(iter_block_ranges(start, end, ctx.max_chunk), start=1):
            logs = await self.fetch_chunk(block_range)
            ctx.stats.chunks += 1
            ctx.stats.logs += len(logs)

            with ctx.stop.critical():
                exported = await process_logs(ctx, logs)
                ctx.checkpoint.advance(block_range.to_block)
            last = block_range.to_block

            log.info(
                "chunk %d/%d [%d, %d]: %d logs, %d exported",
                idx,
                total_chunks,
                block_range.from_block,
                block_range.to_block,
                len(logs),
                exported,
            )
        log.info("backfill [%d, %d] done in %.2fs", start, end, time.perf_counter() - t0)
        return last
