"""Orchestration of a collector run.

This package provides:
- `orchestrator.Collector`: the state machine (resolve start → backfill → live)
- `orchestrator.resolve_start_block`: first block of a run
- Block-range chunking utilities (re-exported here)
"""

from tradecollector.orchestration.utils import iter_block_ranges, iter_chunks, next_block_after

__all__ = [
    "iter_block_ranges",
    "iter_chunks",
    "next_block_after",
]
