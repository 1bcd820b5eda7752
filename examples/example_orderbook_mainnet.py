import asyncio
import os
from pathlib import Path

import pyarrow.csv as pacsv
from dotenv import load_dotenv

from tradecollector.api.collect import build_collector, run_collector
from tradecollector.core.config import CollectorConfig, get_explorer_config, get_ws_rpc_url
from tradecollector.core.constants import DEFAULT_CONTRACT_ADDRESS, ORDER_EVENT_NAMES

EXAMPLES_ROOT = Path(__file__).parent
assert EXAMPLES_ROOT.name == "examples"
OUT_ROOT = EXAMPLES_ROOT.parent / "data_examples"

load_dotenv()

config = CollectorConfig(
    ws_url=get_ws_rpc_url("Mainnet"),
    address=DEFAULT_CONTRACT_ADDRESS,
    output_path=OUT_ROOT / "orderbook_mainnet.csv",
    event_names=ORDER_EVENT_NAMES,
    start_block=int(os.environ["START_BLOCK"]) if "START_BLOCK" in os.environ else None,
    explorer=get_explorer_config(),
)


async def collect_for(seconds: float):
    setup = build_collector(config, on_state=lambda s: print(f"→ {s.value}"))
    task = asyncio.create_task(run_collector(setup))
    await asyncio.sleep(seconds)
    setup.collector.stop()
    return await task


async def main():
    stats = await collect_for(120)
    print(stats)

    table = pacsv.read_csv(config.output_path)
    print(table.num_rows)
    print(table.column_names)
    if table.num_rows:
        print(table.slice(0, 1).to_pylist()[0])


if __name__ == "__main__":
    asyncio.run(main())
