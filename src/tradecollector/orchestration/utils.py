"""Block-range utilities.

All intervals are inclusive on both ends: [start, end].
"""

from __future__ import annotations

from collections.abc import Generator

from tradecollector.core.models import BlockRange


def iter_chunks(a: int, b: int, step: int) -> Generator[tuple[int, int], None, None]:
    """Yield inclusive [start, end] block ranges of size at most `step`."""
    if step < 1:
        raise ValueError("step must be >= 1")
    x = a
    while x <= b:
        y = min(b, x + step - 1)
        yield (x, y)
        x = y + 1


def iter_block_ranges(a: int, b: int, step: int) -> Generator[BlockRange, None, None]:
    """`iter_chunks` as `BlockRange` objects; empty when a > b."""
    for x, y in iter_chunks(a, b, step):
        yield BlockRange(x, y)


def next_block_after(checkpoint: int | None, start_block: int) -> int:
    """First block still to export given the checkpoint and the configured start."""
    if checkpoint is None:
        return start_block
    return max(checkpoint + 1, start_block)
