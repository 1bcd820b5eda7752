import asyncio
import logging
import signal
import time
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from tradecollector.api.collect import build_collector, run_collector
from tradecollector.core.config import (
    DEFAULT_ABI_PATH,
    CollectorConfig,
    get_explorer_config,
    get_ws_rpc_url,
)
from tradecollector.core.constants import (
    DEFAULT_CONTRACT_ADDRESS,
    DEFAULT_NETWORK,
    NETWORK_WS_ENV,
    OUTPUT_FILE_PATH,
)
from tradecollector.core.errors import CollectorError
from tradecollector.core.use_cases.pipeline import ProcessStats
from tradecollector.storage.verify import verify_csv

console = Console(stderr=True)
log = logging.getLogger("tradecollector")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _print_stats(stats: ProcessStats, elapsed: float) -> None:
    table = Table(title="collector summary", show_header=False)
    for name in ("chunks", "logs", "decoded", "exported", "duplicates", "skipped", "decode_errors", "removed", "retries", "reconnects"):
        table.add_row(name, f"{getattr(stats, name):,}")
    table.add_row("elapsed", f"{elapsed:.2f}s")
    console.print(table)


@click.group()
def cli() -> None:
    """tradecollector: order-book trade event collector (backfill + live CSV export)."""
    load_dotenv()


@cli.command("collect")
@click.option("-n", "--network", type=click.Choice(sorted(NETWORK_WS_ENV)), default=DEFAULT_NETWORK, show_default=True)
@click.option("-c", "--contract", default=DEFAULT_CONTRACT_ADDRESS, show_default=True, help="Emitter contract address")
@click.option("-e", "--event", "events", multiple=True, help="ABI event name; repeat for several (default: all)")
@click.option("--start-block", type=int, default=None, help="First block (default: checkpoint or contract creation)")
@click.option("--ws-url", default=None, help="Websocket RPC URL (overrides the network's env variable)")
@click.option("--abi", "abi_path", type=click.Path(dir_okay=False, path_type=Path), default=DEFAULT_ABI_PATH, show_default=True)
@click.option("--output", type=click.Path(dir_okay=False, path_type=Path), default=OUTPUT_FILE_PATH, show_default=True)
@click.option("--checkpoint", "checkpoint_path", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Checkpoint file (default: <output>.checkpoint.json)")
@click.option("--max-chunk", type=int, default=2_000, show_default=True, help="Blocks per eth_getLogs request")
@click.option("--dedup-window", type=int, default=1_000, show_default=True, help="Blocks of identity keys kept for dedup")
@click.option("--timestamps/--no-timestamps", default=True, show_default=True, help="Look up block timestamps the node does not include")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False), default="INFO", show_default=True)
def collect_cmd(
    network: str,
    contract: str,
    events: tuple[str, ...],
    start_block: int | None,
    ws_url: str | None,
    abi_path: Path,
    output: Path,
    checkpoint_path: Path | None,
    max_chunk: int,
    dedup_window: int,
    timestamps: bool,
    log_level: str,
) -> None:
    """Backfill a contract's events into a CSV file, then follow the chain live."""
    _setup_logging(log_level)

    try:
        config = CollectorConfig(
            ws_url=ws_url or get_ws_rpc_url(network),
            address=contract,
            output_path=output,
            abi_path=abi_path,
            event_names=events,
            start_block=start_block,
            checkpoint_path=checkpoint_path,
            max_chunk=max_chunk,
            dedup_window_blocks=dedup_window,
            resolve_timestamps=timestamps,
            explorer=get_explorer_config(),
        )
        setup = build_collector(config)
    except CollectorError as e:
        raise click.ClickException(str(e)) from e

    async def run() -> ProcessStats:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, setup.collector.stop)
            except NotImplementedError:
                log.debug("signal handlers not supported on this platform")
        return await run_collector(setup)

    log.info("collecting %s on %s → %s", contract, network, output)
    t0 = time.time()
    try:
        stats = asyncio.run(run())
    except CollectorError as e:
        _print_stats(setup.collector.stats, time.time() - t0)
        raise click.ClickException(str(e)) from e
    _print_stats(stats, time.time() - t0)


@cli.command("verify")
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--expected-rows", type=int, default=None, help="Fail unless the file holds exactly this many rows")
def verify_cmd(output: Path, expected_rows: int | None) -> None:
    """Check an exported CSV: header, row count and identity-key uniqueness."""
    report = verify_csv(output, expected_rows=expected_rows)
    console.print(f"[bold]{report.path}[/]: {report.rows:,} rows, {len(report.header)} columns")
    for key in report.duplicate_keys[:20]:
        console.print(f"  [yellow]duplicate[/] tx={key[0]} log_index={key[1]}")
    if not report.ok:
        for problem in report.problems:
            console.print(f"  [red]✗[/] {problem}")
        raise click.ClickException("verification failed")
    console.print("[green]ok[/]")


if __name__ == "__main__":
    cli()
