from dataclasses import replace
from pathlib import Path

import pytest

from tradecollector.core.errors import FetchFailedError, NodeConnectionError, RpcError
from tradecollector.core.models import BlockRange
from tradecollector.core.use_cases.backfill import BackfillScanner
from tradecollector.core.use_cases.pipeline import ProcessContext, TimestampCache, with_retry
from tradecollector.decoding.specs import get_event_registry_field_names, get_event_registry_topic0s
from tradecollector.orchestration.utils import iter_block_ranges, iter_chunks, next_block_after
from tradecollector.storage.checkpoint import CheckpointStore
from tradecollector.storage.csv_sink import CsvEventSink
from tradecollector.storage.verify import verify_csv

from conftest import CONTRACT, NO_WAIT_RETRY, FakeNode


@pytest.fixture
def make_ctx(tmp_path: Path, registry):
    sinks = []

    def _make(node: FakeNode, **kw) -> ProcessContext:
        checkpoint = CheckpointStore(tmp_path / "events.csv.checkpoint")
        sink = CsvEventSink(tmp_path / "events.csv", get_event_registry_field_names(registry))
        sink.open(checkpoint.last_exported_block)
        sinks.append(sink)
        return ProcessContext(
            rpc=node,
            address=CONTRACT,
            topic0s=get_event_registry_topic0s(registry),
            registry=registry,
            sink=sink,
            checkpoint=checkpoint,
            max_chunk=kw.pop("max_chunk", 2_000),
            retry=NO_WAIT_RETRY,
            **kw,
        )

    yield _make
    for sink in sinks:
        sink.close()


def test_iter_chunks_inclusive_and_bounded():
    assert list(iter_chunks(1, 10_000, 2_000)) == [
        (1, 2_000),
        (2_001, 4_000),
        (4_001, 6_000),
        (6_001, 8_000),
        (8_001, 10_000),
    ]
    assert list(iter_chunks(5, 5, 2_000)) == [(5, 5)]
    assert list(iter_block_ranges(10, 9, 100)) == []
    with pytest.raises(ValueError):
        list(iter_chunks(0, 10, 0))


@pytest.mark.parametrize(
    "checkpoint, start, expected",
    [(None, 100, 100), (150, 100, 151), (50, 100, 100)],
)
def test_next_block_after(checkpoint, start, expected):
    assert next_block_after(checkpoint, start) == expected


@pytest.mark.asyncio
async def test_backfill_walks_every_chunk_once(make_ctx, take_order_log, clear_log):
    logs = [take_order_log(1), take_order_log(2_000), clear_log(2_001), take_order_log(10_000, 3)]
    node = FakeNode(logs, head=10_000)
    ctx = make_ctx(node)

    last = await BackfillScanner(ctx).run(1, 10_000)

    assert last == 10_000
    assert node.get_logs_calls == [BlockRange(a, b) for a, b in iter_chunks(1, 10_000, 2_000)]
    assert ctx.stats.chunks == 5
    assert ctx.stats.exported == 4
    assert ctx.checkpoint.last_exported_block == 10_000


@pytest.mark.asyncio
async def test_backfill_empty_range(make_ctx):
    node = FakeNode(head=10)
    ctx = make_ctx(node)

    assert await BackfillScanner(ctx).run(11, 10) is None
    assert node.get_logs_calls == []
    assert ctx.checkpoint.last_exported_block is None


@pytest.mark.asyncio
async def test_backfill_retries_dropped_connection(make_ctx, take_order_log):
    node = FakeNode([take_order_log(2_500)], head=4_000)
    node.get_logs_failures[2_001] = [NodeConnectionError("reset by peer")]
    ctx = make_ctx(node)

    await BackfillScanner(ctx).run(1, 4_000)

    assert ctx.stats.retries == 1
    assert ctx.stats.reconnects == 1
    assert ctx.stats.exported == 1
    assert node.get_logs_calls.count(BlockRange(2_001, 4_000)) == 2


@pytest.mark.asyncio
async def test_backfill_exhausted_retries_keep_checkpoint_at_last_chunk(make_ctx, take_order_log):
    node = FakeNode([take_order_log(10), take_order_log(2_100)], head=6_000)
    node.get_logs_failures[2_001] = [RpcError("eth_getLogs", -32000, "header not found")] * 3
    ctx = make_ctx(node)

    with pytest.raises(FetchFailedError, match="after 3 attempts"):
        await BackfillScanner(ctx).run(1, 6_000)

    assert ctx.checkpoint.last_exported_block == 2_000
    assert ctx.stats.exported == 1
    assert BlockRange(4_001, 6_000) not in node.get_logs_calls


@pytest.mark.asyncio
async def test_backfill_skips_undecodable_logs(make_ctx, take_order_log):
    good = take_order_log(5)
    truncated = replace(take_order_log(6), data_hex="0x1234")
    node = FakeNode([good, truncated], head=10)
    ctx = make_ctx(node)

    await BackfillScanner(ctx).run(1, 10)

    assert ctx.stats.exported == 1
    assert ctx.stats.decode_errors == 1
    assert ctx.checkpoint.last_exported_block == 10


@pytest.mark.asyncio
async def test_backfill_fills_timestamps_once_per_block(make_ctx, take_order_log):
    node = FakeNode([take_order_log(7, 0), take_order_log(7, 1), take_order_log(9)], head=10)
    ctx = make_ctx(node)

    await BackfillScanner(ctx).run(1, 10)

    assert node.timestamp_calls == [7, 9]
    assert ctx.stats.exported == 3


@pytest.mark.asyncio
async def test_backfill_without_timestamp_resolution(make_ctx, take_order_log):
    node = FakeNode([take_order_log(7)], head=10)
    ctx = make_ctx(node, resolve_timestamps=False)

    await BackfillScanner(ctx).run(1, 10)

    assert node.timestamp_calls == []
    assert ctx.stats.exported == 1


@pytest.mark.asyncio
async def test_with_retry_connects_first(make_ctx):
    node = FakeNode(head=42)
    ctx = make_ctx(node)

    assert await with_retry(ctx, "eth_blockNumber", node.latest_block) == 42
    assert node.connects == 1
    assert ctx.stats.reconnects == 0


def test_timestamp_cache_is_bounded():
    cache = TimestampCache(maxsize=2)
    cache.put(1, 10)
    cache.put(2, 20)
    assert cache.get(1) == 10
    cache.put(3, 30)

    assert cache.get(2) is None
    assert cache.get(1) == 10
    assert cache.get(3) == 30


@pytest.mark.asyncio
async def test_restart_after_unfinished_chunk_writes_each_row_once(make_ctx, take_order_log, tmp_path):
    node = FakeNode([take_order_log(10), take_order_log(1_900)], head=2_000)
    ctx = make_ctx(node)
    await BackfillScanner(ctx).run(1, 2_000)
    ctx.sink.close()
    # crash before the chunk's checkpoint reached disk
    (tmp_path / "events.csv.checkpoint").unlink()

    ctx = make_ctx(node)
    await BackfillScanner(ctx).run(1, 2_000)

    assert ctx.stats.exported == 0
    assert ctx.stats.duplicates == 2
    assert verify_csv(tmp_path / "events.csv", expected_rows=2).ok
