import asyncio
from collections.abc import Callable

import pytest
from eth_abi import encode as abi_encode

from tradecollector.abi_events import make_event_registry_from_abi
from tradecollector.core.config import DEFAULT_ABI_PATH, RetryPolicy
from tradecollector.core.errors import NodeConnectionError, RangeTooLargeError
from tradecollector.core.models import BlockRange, EventLog
from tradecollector.decoding.specs import EventRegistry

CONTRACT = "0x0ea6d458488d1cf51695e1d6e4744e6fb715d37c"
NO_WAIT_RETRY = RetryPolicy(max_attempts=3, base_delay_s=0.0, max_delay_s=0.0)


# ---------- fakes ----------


class FakeSubscription:
    """Queue-backed subscription; exceptions pushed into it are raised in order."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()

    def push(self, item) -> None:
        self.queue.put_nowait(item)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            item = await self.queue.get()
            if isinstance(item, BaseException):
                raise item
            yield item


class FakeNode:
    """In-memory chain implementing the logs-provider interface."""

    def __init__(self, logs=(), *, head: int = 0, max_chunk: int = 2_000) -> None:
        self.logs: list[EventLog] = list(logs)
        self.head = head
        self.max_chunk = max_chunk
        self.get_logs_calls: list[BlockRange] = []
        self.get_logs_failures: dict[int, list[Exception]] = {}  # from_block -> errors to raise first
        self.subscribe_failures: list[Exception] = []
        self.next_subscription_items: list = []
        self.subscriptions: list[FakeSubscription] = []
        self.timestamp_calls: list[int] = []
        self.timestamp_gate: asyncio.Event | None = None  # lookups block until it is set
        self.connects = 0
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self.connects += 1
        self._connected = True

    async def reconnect(self) -> None:
        await self.aclose()
        await self.connect()

    async def aclose(self) -> None:
        self._connected = False

    async def latest_block(self) -> int:
        return self.head

    async def block_timestamp(self, block_number: int) -> int:
        self.timestamp_calls.append(block_number)
        if self.timestamp_gate is not None:
            await self.timestamp_gate.wait()
        return 1_700_000_000 + block_number * 12

    async def get_logs(self, *, address, topic0s, block_range: BlockRange) -> list[EventLog]:
        if block_range.span() > self.max_chunk:
            raise RangeTooLargeError(f"{block_range} too large")
        self.get_logs_calls.append(block_range)
        pending = self.get_logs_failures.get(block_range.from_block)
        if pending:
            err = pending.pop(0)
            if isinstance(err, NodeConnectionError):
                self._connected = False
            raise err
        wanted = {t.lower() for t in topic0s}
        return [
            log
            for log in self.logs
            if block_range.from_block <= log.block_number <= block_range.to_block
            and log.address == address.lower()
            and log.topics
            and log.topics[0] in wanted
        ]

    async def subscribe_logs(self, *, address, topic0s) -> FakeSubscription:
        if self.subscribe_failures:
            raise self.subscribe_failures.pop(0)
        sub = FakeSubscription()
        for item in self.next_subscription_items:
            sub.push(item)
        self.next_subscription_items = []
        self.subscriptions.append(sub)
        return sub


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


# ---------- sample data ----------


def addr(byte: str) -> str:
    return "0x" + byte * 20


def tx_hash_for(block: int, log_index: int) -> str:
    return "0x" + f"{block:032x}{log_index:032x}"


def sample_order(owner_byte: str = "11"):
    return (
        addr(owner_byte),
        (addr("22"), addr("33"), b"\x01\x02"),
        [(addr("44"), 18, 1)],
        [(addr("55"), 6, 2)],
        b"\x66" * 32,
    )


@pytest.fixture
def registry() -> EventRegistry:
    return make_event_registry_from_abi(DEFAULT_ABI_PATH)


@pytest.fixture
def specs_by_name(registry):
    return {spec.name: spec for spec in registry.values()}


@pytest.fixture
def take_order_log(specs_by_name) -> Callable[..., EventLog]:
    spec = specs_by_name["TakeOrderV2"]

    def _make(block: int, log_index: int = 0, *, input_: int = 10**18, output: int = 5 * 10**17, **kw) -> EventLog:
        config = (sample_order(), 0, 0, [(addr("77"), [1, 2], b"\x99")])
        data = abi_encode(spec.data_types, [addr("aa"), config, input_, output])
        return EventLog(
            address=CONTRACT,
            topics=(spec.topic0,),
            data_hex="0x" + data.hex(),
            block_number=block,
            block_hash="0x" + f"{block:064x}",
            tx_hash=kw.get("tx_hash", tx_hash_for(block, log_index)),
            log_index=log_index,
            block_timestamp=kw.get("block_timestamp"),
            removed=kw.get("removed", False),
        )

    return _make


@pytest.fixture
def clear_log(specs_by_name) -> Callable[..., EventLog]:
    spec = specs_by_name["ClearV2"]

    def _make(block: int, log_index: int = 0) -> EventLog:
        clear_config = (0, 0, 0, 0, 7, 8)
        data = abi_encode(spec.data_types, [addr("aa"), sample_order("12"), sample_order("13"), clear_config])
        return EventLog(
            address=CONTRACT,
            topics=(spec.topic0,),
            data_hex="0x" + data.hex(),
            block_number=block,
            block_hash="0x" + f"{block:064x}",
            tx_hash=tx_hash_for(block, log_index),
            log_index=log_index,
        )

    return _make
