"""Etherscan-style block-explorer client.

Only one call is needed: the block a contract was created in, used as the
default start block of a first run.
"""

from __future__ import annotations

import logging

import httpx

from tradecollector.core.config import ExplorerConfig
from tradecollector.core.errors import ExplorerError

log = logging.getLogger(__name__)


class EtherscanClient:
    """Minimal async explorer client.

    Parameters
    ----------
    config : ExplorerConfig
        API key, base URL and timeout.
    transport : httpx.AsyncBaseTransport, optional
        Custom transport (e.g. `httpx.MockTransport` in tests).
    """

    def __init__(self, config: ExplorerConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config
        self.client = httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            timeout=httpx.Timeout(config.timeout_s),
            transport=transport,
        )

    async def contract_creation_block(self, address: str) -> int:
        """Return the block number `address` was deployed in."""
        params = {
            "module": "contract",
            "action": "getcontractcreation",
            "contractaddresses": address,
            "apikey": self.config.api_key,
        }
        try:
            r = await self.client.get("/api", params=params)
            r.raise_for_status()
            data = r.json()
        except httpx.HTTPError as e:
            raise ExplorerError(f"explorer request failed: {e}") from e
        except ValueError as e:
            raise ExplorerError("explorer returned non-JSON body") from e

        if str(data.get("status")) != "1":
            raise ExplorerError(f"explorer error for {address}: {data.get('message')} {data.get('result')}")
        try:
            block = int(data["result"][0]["blockNumber"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ExplorerError(f"unexpected explorer payload: {data!r:.200}") from e
        log.info("contract %s created in block %d", address, block)
        return block

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()
