from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from tradecollector.abi_events import make_event_registry_from_abi
from tradecollector.clients.explorer import EtherscanClient
from tradecollector.clients.rpc import WsRPC
from tradecollector.core.config import CollectorConfig
from tradecollector.core.interfaces import IEvmLogsProvider
from tradecollector.core.models import State
from tradecollector.core.use_cases.pipeline import ProcessStats
from tradecollector.decoding.specs import EventRegistry, get_event_registry_field_names
from tradecollector.orchestration.orchestrator import Collector
from tradecollector.storage.checkpoint import CheckpointStore
from tradecollector.storage.csv_sink import CsvEventSink

# ---------------------------------------------------------------------------
# Setup helpers (concrete wiring, application layer)
# ---------------------------------------------------------------------------


@dataclass(kw_only=True)
class CollectorSetup:
    collector: Collector
    registry: EventRegistry
    sink: CsvEventSink
    explorer: EtherscanClient | None


def build_collector(
    config: CollectorConfig,
    *,
    on_state: Callable[[State], None] | None = None,
    rpc: IEvmLogsProvider | None = None,
) -> CollectorSetup:
    """Wire concrete components for `config`.

    Loads the ABI first, so a bad ABI or event filter fails before the
    output file is touched. Nothing is opened or connected here.
    """
    registry = make_event_registry_from_abi(config.abi_path, config.event_names or None)

    if rpc is None:
        rpc = WsRPC(
            config.ws_url,
            timeout_s=config.request_timeout_s,
            heartbeat_timeout_s=config.heartbeat_timeout_s,
            max_chunk=config.max_chunk,
        )
    explorer = EtherscanClient(config.explorer) if config.explorer is not None else None
    sink = CsvEventSink(
        config.output_path,
        get_event_registry_field_names(registry),
        dedup_window_blocks=config.dedup_window_blocks,
    )

    collector = Collector(
        rpc=rpc,
        registry=registry,
        sink=sink,
        checkpoint=CheckpointStore(config.resolved_checkpoint_path),
        address=config.address,
        max_chunk=config.max_chunk,
        start_block=config.start_block,
        explorer=explorer,
        retry=config.retry,
        resolve_timestamps=config.resolve_timestamps,
        on_state=on_state,
    )
    return CollectorSetup(collector=collector, registry=registry, sink=sink, explorer=explorer)


async def run_collector(setup: CollectorSetup) -> ProcessStats:
    """Run a wired collector to completion, closing the explorer client after."""
    try:
        return await setup.collector.run()
    finally:
        if setup.explorer is not None:
            await setup.explorer.aclose()


async def collect(*, config: CollectorConfig, on_state: Callable[[State], None] | None = None) -> ProcessStats:
    """
    High-level convenience API for notebooks / scripts.
    Runs until cancelled or a fatal error.
    """
    return await run_collector(build_collector(config, on_state=on_state))
