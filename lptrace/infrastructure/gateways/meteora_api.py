import logging
from typing import Any, Dict, List, Optional

import httpx

from lptrace.core.dlmm_program import NULL_PUBKEY
from lptrace.core.entities.pair import DlmmPair
from lptrace.core.errors import ExternalServiceError
from lptrace.core.interfaces.datasource import IPairDirectory
from lptrace.infrastructure.cache.redis_service import RedisService
from lptrace.infrastructure.gateways.http_json import get_json

logger = logging.getLogger(__name__)

DEFAULT_DLMM_API_URL = "https://dlmm-api.meteora.ag"
CACHE_KEY = "dlmm_pairs"
CACHE_TTL_SECONDS = 3600


def _reward_mint(value: Optional[str]) -> Optional[str]:
    if not value or value == NULL_PUBKEY:
        return None
    return value


def parse_pair(raw: Dict[str, Any]) -> DlmmPair:
    return DlmmPair(
        address=raw["address"],
        name=raw.get("name") or "",
        mint_x=raw["mint_x"],
        mint_y=raw["mint_y"],
        bin_step=int(raw["bin_step"]),
        reward_mint_x=_reward_mint(raw.get("reward_mint_x")),
        reward_mint_y=_reward_mint(raw.get("reward_mint_y")),
        mint_x_decimals=raw.get("mint_x_decimals"),
        mint_y_decimals=raw.get("mint_y_decimals"),
    )


class MeteoraDlmmApi(IPairDirectory):
    """Pair directory backed by the public DLMM API (`/pair/all`)."""

    def __init__(
        self,
        base_url: str = DEFAULT_DLMM_API_URL,
        cache: Optional[RedisService] = None,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.cache = cache
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._pairs: Optional[List[DlmmPair]] = None

    async def close(self):
        await self.client.aclose()

    async def list_pairs(self) -> List[DlmmPair]:
        if self._pairs is not None:
            return self._pairs

        cached = self.cache.get(CACHE_KEY) if self.cache else None
        if cached:
            logger.info(f"Loaded {len(cached)} DLMM pairs from cache")
            self._pairs = [DlmmPair(**p) for p in cached]
            return self._pairs

        data = await get_json(self.client, f"{self.base_url}/pair/all")
        if not isinstance(data, list):
            raise ExternalServiceError(f"Unexpected DLMM pair listing: {str(data)[:200]}")

        pairs = []
        for raw in data:
            try:
                pairs.append(parse_pair(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed pair entry: {e}")
        logger.info(f"Fetched {len(pairs)} DLMM pairs")

        if self.cache:
            self.cache.set(CACHE_KEY, pairs, ttl_seconds=CACHE_TTL_SECONDS)
        self._pairs = pairs
        return pairs
