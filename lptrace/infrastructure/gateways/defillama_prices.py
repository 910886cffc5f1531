import logging
from typing import Optional

import httpx

from lptrace.core.interfaces.datasource import IPriceOracle
from lptrace.infrastructure.gateways.http_json import get_json

logger = logging.getLogger(__name__)

DEFAULT_PRICE_API_URL = "https://coins.llama.fi"
SEARCH_WIDTH = "4h"


class DefiLlamaPriceOracle(IPriceOracle):
    """
    Historical USD prices from the DefiLlama coins API.
    Prices are never cached: each (mint, timestamp) is asked once per run
    and the valuation engine already deduplicates the requests.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_PRICE_API_URL,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self):
        await self.client.aclose()

    async def price_at(self, mint: str, timestamp_ms: int) -> Optional[float]:
        coin = f"solana:{mint}"
        url = f"{self.base_url}/prices/historical/{timestamp_ms // 1000}/{coin}"
        data = await get_json(self.client, url, params={"searchWidth": SEARCH_WIDTH})
        entry = ((data or {}).get("coins") or {}).get(coin)
        if not entry or entry.get("price") is None:
            logger.debug(f"No price for {mint} at {timestamp_ms}")
            return None
        return float(entry["price"])
