from __future__ import annotations

DEFAULT_CONTRACT_ADDRESS = "0x0ea6d458488d1cf51695e1d6e4744e6fb715d37c"

TAKEORDER_EVENT_NAME = "TakeOrderV2"
CLEAR_EVENT_NAME = "ClearV2"
ORDER_EVENT_NAMES = (TAKEORDER_EVENT_NAME, CLEAR_EVENT_NAME)

DEFAULT_NETWORK = "Mainnet"
OUTPUT_FILE_PATH = "order_events.csv"
ETHERSCAN_BASE_URL = "https://api.etherscan.io"

# network name -> env var holding its websocket RPC URL
NETWORK_WS_ENV: dict[str, str] = {
    "Mainnet": "MAINNET_WS_RPC_URL",
    "Base": "BASE_WS_RPC_URL",
    "Arbitrum": "ARBITRUM_WS_RPC_URL",
    "Optimism": "OPTIMISM_WS_RPC_URL",
    "Flare": "FLARE_WS_RPC_URL",
    "Linea": "LINEA_WS_RPC_URL",
}
