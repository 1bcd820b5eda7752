from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from tradecollector.core.constants import ETHERSCAN_BASE_URL, NETWORK_WS_ENV
from tradecollector.core.errors import ConfigError

DEFAULT_ABI_PATH = Path(__file__).resolve().parent.parent / "abi" / "IOrderBookV4.json"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff shared by backfill fetches and live reconnects."""

    max_attempts: int = 5
    base_delay_s: float = 0.8
    max_delay_s: float = 30.0

    def delay(self, attempt: int) -> float:
        """Sleep before retry number `attempt` (1-based)."""
        return min(self.max_delay_s, self.base_delay_s * (2 ** (attempt - 1)))


@dataclass(frozen=True)
class ExplorerConfig:
    """Block-explorer endpoint used to look up a contract's creation block."""

    api_key: str
    base_url: str = ETHERSCAN_BASE_URL
    timeout_s: int = 20


@dataclass(frozen=True)
class CollectorConfig:
    """Configuration for one collector run."""

    ws_url: str
    address: str
    output_path: Path
    abi_path: Path = DEFAULT_ABI_PATH
    event_names: tuple[str, ...] = ()  # empty: every event in the ABI
    start_block: int | None = None
    checkpoint_path: Path | None = None  # default: <output>.checkpoint.json
    max_chunk: int = 2_000
    request_timeout_s: float = 20.0
    heartbeat_timeout_s: float = 60.0
    dedup_window_blocks: int = 1_000
    resolve_timestamps: bool = True
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    explorer: ExplorerConfig | None = None

    def __post_init__(self) -> None:
        if not self.address or not self.address.startswith("0x") or len(self.address) != 42:
            raise ConfigError(f"invalid contract address: {self.address!r}")
        if self.max_chunk < 1:
            raise ConfigError("max_chunk must be >= 1")
        if self.dedup_window_blocks < 0:
            raise ConfigError("dedup_window_blocks must be >= 0")
        if self.start_block is not None and self.start_block < 0:
            raise ConfigError("start_block must be >= 0")

    @property
    def resolved_checkpoint_path(self) -> Path:
        if self.checkpoint_path is not None:
            return self.checkpoint_path
        return self.output_path.with_name(self.output_path.name + ".checkpoint.json")


def get_ws_rpc_url(network: str, env: Mapping[str, str] | None = None) -> str:
    """Return the websocket RPC URL configured for `network`."""
    env = os.environ if env is None else env
    var = NETWORK_WS_ENV.get(network)
    if var is None:
        raise ConfigError(f"Unsupported network: {network}")
    url = env.get(var)
    if not url:
        raise ConfigError(f"{var} not set")
    return url


def get_explorer_config(env: Mapping[str, str] | None = None) -> ExplorerConfig | None:
    """Explorer settings from ETHERSCAN_API_KEY / ETHERSCAN_BASE_URL, or None without a key."""
    env = os.environ if env is None else env
    api_key = env.get("ETHERSCAN_API_KEY")
    if not api_key:
        return None
    return ExplorerConfig(api_key=api_key, base_url=env.get("ETHERSCAN_BASE_URL") or ETHERSCAN_BASE_URL)
