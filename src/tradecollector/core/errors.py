"""Error taxonomy for the collector.

- `ConfigError`: bad/missing address, unresolvable start block, bad ABI filter. Fatal.
- `DecodeError`: a log matched a known topic0 but its payload is malformed. Skipped.
- `NodeConnectionError`: timeout, close or malformed frame on the node connection.
- `RpcError`: the node answered with a JSON-RPC error object.
- `RangeTooLargeError`: a caller asked for more blocks than the node page size.
- `FetchFailedError`: retry budget exhausted for a connector operation. Fatal.
- `ExportError`: the sink could not durably write a row. Fatal.
- `ExplorerError`: the block-explorer lookup failed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tradecollector.core.models import EventLog


class CollectorError(Exception):
    """Base class for all collector errors."""


class ConfigError(CollectorError):
    pass


class DecodeError(CollectorError):
    """A known event whose topics/data do not fit the declared layout."""

    def __init__(self, message: str, log: EventLog) -> None:
        super().__init__(f"{message} (tx={log.tx_hash} log_index={log.log_index} block={log.block_number})")
        self.log = log


class NodeConnectionError(CollectorError):
    pass


class RpcError(CollectorError):
    def __init__(self, method: str, code: int | None, message: str | None) -> None:
        super().__init__(f"{method} RPC error: {code} {message}")
        self.method = method
        self.code = code


class RangeTooLargeError(CollectorError):
    pass


class FetchFailedError(CollectorError):
    pass


class ExportError(CollectorError):
    pass


class ExplorerError(CollectorError):
    pass
