"""Websocket JSON-RPC client for Ethereum-compatible nodes.

This module provides:
- `WsRPC`: one websocket connection serving requests and a log subscription
- `LogSubscription`: async iterator over subscription notifications
- Helper utilities to format block numbers and topics

Connection model
----------------
There is a single connection and at most one request in flight. While a
request waits for its response, `eth_subscription` notifications arriving on
the same socket are buffered and handed to the subscription iterator first.
Every failure (timeout, close, malformed frame, missing pong) drops the
connection and raises `NodeConnectionError`; nothing is retried here.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from tradecollector.core.errors import NodeConnectionError, RangeTooLargeError, RpcError
from tradecollector.core.models import BlockRange, EventLog

log = logging.getLogger(__name__)

MAX_FRAME_BYTES = 16 * 1024 * 1024


def to_hex_block(x: int) -> str:
    """Return a 0x-prefixed hex block number."""
    return hex(x)


def topics_param(topic0s: Sequence[str]) -> list[list[str]]:
    """Format topic0 signatures for eth_getLogs / eth_subscribe filters."""
    return [[t.lower() for t in topic0s]]


def logs_filter(address: str, topic0s: Sequence[str]) -> dict[str, Any]:
    return {"address": address.lower(), "topics": topics_param(topic0s)}


class LogSubscription:
    """An established `eth_subscribe("logs")` subscription.

    Yields `EventLog` records in arrival order. Raises `NodeConnectionError`
    when the underlying connection drops or is replaced by a reconnect.
    """

    def __init__(self, rpc: WsRPC, subscription_id: str) -> None:
        self._rpc = rpc
        self.subscription_id = subscription_id

    def __aiter__(self) -> AsyncIterator[EventLog]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[EventLog]:
        while True:
            result = await self._rpc._next_notification(self.subscription_id)
            try:
                event_log = EventLog.from_rpc(result)
            except (KeyError, TypeError, ValueError) as e:
                await self._rpc._drop()
                raise NodeConnectionError(f"malformed log notification: {e}") from e
            yield event_log


class WsRPC:
    """Minimal async websocket RPC client.

    Parameters
    ----------
    url : str
        Websocket RPC endpoint URL.
    timeout_s : float
        Per-request timeout in seconds (also used for connect and pong).
    heartbeat_timeout_s : float
        Silence on a subscription longer than this triggers a ping.
    max_chunk : int
        Largest block span accepted by `get_logs`.
    connect : callable, optional
        Factory with the signature of `websockets.connect`; injectable for tests.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_s: float = 20.0,
        heartbeat_timeout_s: float = 60.0,
        max_chunk: int = 2_000,
        connect: Callable[..., Any] | None = None,
    ) -> None:
        self.url = url
        self.timeout_s = timeout_s
        self.heartbeat_timeout_s = heartbeat_timeout_s
        self.max_chunk = max_chunk
        self._connect = connect or websockets.connect
        self._ws: Any = None
        self._next_id = 0
        self._pending: deque[dict[str, Any]] = deque()
        self._subscription_id: str | None = None

    # ---------- connection lifecycle ----------

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        """Open the websocket if it is not open already."""
        if self._ws is not None:
            return
        try:
            self._ws = await self._connect(
                self.url,
                open_timeout=self.timeout_s,
                ping_interval=None,
                max_size=MAX_FRAME_BYTES,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise NodeConnectionError(f"cannot connect to node: {e}") from e
        self._pending.clear()
        self._subscription_id = None
        log.info("connected to node")

    async def reconnect(self) -> None:
        await self._drop()
        await self.connect()

    async def aclose(self) -> None:
        """Close the underlying websocket."""
        await self._drop()

    async def _drop(self) -> None:
        ws, self._ws = self._ws, None
        self._subscription_id = None
        self._pending.clear()
        if ws is None:
            return
        try:
            await ws.close()
        except (OSError, WebSocketException) as e:
            log.debug("error while closing websocket: %s", e)

    # ---------- frame I/O ----------

    def _require_ws(self) -> Any:
        if self._ws is None:
            raise NodeConnectionError("not connected")
        return self._ws

    async def _send(self, payload: dict[str, Any]) -> None:
        ws = self._require_ws()
        try:
            await ws.send(json.dumps(payload))
        except (OSError, WebSocketException) as e:
            await self._drop()
            raise NodeConnectionError(f"send failed: {e}") from e

    async def _recv_frame(self, timeout: float) -> dict[str, Any] | None:
        """Next decoded frame, or None when nothing arrived within `timeout`."""
        ws = self._require_ws()
        try:
            raw = await asyncio.wait_for(ws.recv(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        except ConnectionClosed as e:
            await self._drop()
            raise NodeConnectionError(f"connection closed: {e}") from e
        except (OSError, WebSocketException) as e:
            await self._drop()
            raise NodeConnectionError(f"receive failed: {e}") from e
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError) as e:
            await self._drop()
            raise NodeConnectionError(f"malformed frame: {e}") from e
        if not isinstance(msg, dict):
            await self._drop()
            raise NodeConnectionError(f"unexpected frame: {raw!r:.200}")
        return msg

    async def _heartbeat(self) -> None:
        ws = self._require_ws()
        try:
            pong_waiter = await ws.ping()
            await asyncio.wait_for(pong_waiter, timeout=self.timeout_s)
        except (asyncio.TimeoutError, OSError, WebSocketException) as e:
            await self._drop()
            raise NodeConnectionError(f"heartbeat failed: {e!r}") from e
        log.debug("heartbeat ok")

    async def _call(self, method: str, params: list[Any]) -> Any:
        self._next_id += 1
        rid = self._next_id
        await self._send({"jsonrpc": "2.0", "id": rid, "method": method, "params": params})

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_s
        while True:
            remaining = deadline - loop.time()
            msg = await self._recv_frame(remaining) if remaining > 0 else None
            if msg is None:
                await self._drop()
                raise NodeConnectionError(f"{method} timed out after {self.timeout_s}s")
            if msg.get("method") == "eth_subscription":
                self._pending.append(msg)
                continue
            if msg.get("id") != rid:
                log.debug("ignoring frame for request id %s", msg.get("id"))
                continue
            err = msg.get("error")
            if err:
                raise RpcError(method, err.get("code"), err.get("message"))
            return msg.get("result")

    async def _next_notification(self, subscription_id: str) -> dict[str, Any]:
        while True:
            if self._subscription_id != subscription_id:
                raise NodeConnectionError("subscription is no longer active")
            if self._pending:
                msg = self._pending.popleft()
            else:
                msg = await self._recv_frame(self.heartbeat_timeout_s)
                if msg is None:
                    await self._heartbeat()
                    continue
            if msg.get("method") != "eth_subscription":
                log.debug("ignoring non-notification frame id=%s", msg.get("id"))
                continue
            params = msg.get("params") or {}
            if params.get("subscription") != subscription_id:
                continue
            result = params.get("result")
            if not isinstance(result, dict):
                await self._drop()
                raise NodeConnectionError("malformed subscription notification")
            return result

    # ---------- RPC methods ----------

    async def latest_block(self) -> int:
        """Return the latest block number as an int."""
        result = await self._call("eth_blockNumber", [])
        try:
            return int(result, 16)
        except (TypeError, ValueError) as e:
            raise RpcError("eth_blockNumber", None, f"malformed result {result!r}") from e

    async def block_timestamp(self, block_number: int) -> int:
        """Return the unix timestamp of `block_number`."""
        result = await self._call("eth_getBlockByNumber", [to_hex_block(block_number), False])
        if not isinstance(result, dict) or "timestamp" not in result:
            raise RpcError("eth_getBlockByNumber", None, f"block {block_number} not found")
        return int(result["timestamp"], 16)

    async def get_logs(
        self,
        *,
        address: str,
        topic0s: Sequence[str],
        block_range: BlockRange,
    ) -> list[EventLog]:
        """Fetch logs for an address and a set of topic0 signatures within a block range."""
        if block_range.span() > self.max_chunk:
            raise RangeTooLargeError(
                f"range [{block_range.from_block}, {block_range.to_block}] spans "
                f"{block_range.span()} blocks > max_chunk={self.max_chunk}"
            )
        params = [
            {
                **logs_filter(address, topic0s),
                "fromBlock": to_hex_block(block_range.from_block),
                "toBlock": to_hex_block(block_range.to_block),
            }
        ]
        result = await self._call("eth_getLogs", params)
        try:
            return [EventLog.from_rpc(rl) for rl in result or []]
        except (KeyError, TypeError, ValueError) as e:
            raise RpcError("eth_getLogs", None, f"malformed log in result: {e}") from e

    async def subscribe_logs(self, *, address: str, topic0s: Sequence[str]) -> LogSubscription:
        """Subscribe to new logs; returns once the node confirmed the subscription."""
        sub_id = await self._call("eth_subscribe", ["logs", logs_filter(address, topic0s)])
        if not isinstance(sub_id, str):
            raise RpcError("eth_subscribe", None, f"unexpected subscription id {sub_id!r}")
        self._subscription_id = sub_id
        log.info("subscribed to logs of %s (id=%s)", address, sub_id)
        return LogSubscription(self, sub_id)
