import logging
from typing import Dict, Optional

import httpx

from lptrace.core.entities.pair import TokenInfo
from lptrace.core.errors import ExternalServiceError
from lptrace.core.interfaces.datasource import ITokenDirectory
from lptrace.infrastructure.cache.redis_service import RedisService
from lptrace.infrastructure.gateways.http_json import get_json

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIST_URL = "https://lite-api.jup.ag/tokens/v2/tag?query=verified"
CACHE_KEY = "token_list"
CACHE_TTL_SECONDS = 6 * 3600


class JupiterTokenList(ITokenDirectory):
    """
    Mint -> symbol/decimals directory. Accepts both the legacy token list
    shape (`address`) and the v2 shape (`id`).
    """

    def __init__(
        self,
        url: str = DEFAULT_TOKEN_LIST_URL,
        cache: Optional[RedisService] = None,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.cache = cache
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._tokens: Optional[Dict[str, TokenInfo]] = None

    async def close(self):
        await self.client.aclose()

    async def list_tokens(self) -> Dict[str, TokenInfo]:
        if self._tokens is not None:
            return self._tokens

        cached = self.cache.get(CACHE_KEY) if self.cache else None
        if cached:
            self._tokens = {t["address"]: TokenInfo(**t) for t in cached}
            logger.info(f"Loaded {len(self._tokens)} tokens from cache")
            return self._tokens

        data = await get_json(self.client, self.url)
        if isinstance(data, dict):
            data = data.get("tokens")
        if not isinstance(data, list):
            raise ExternalServiceError(f"Unexpected token list: {str(data)[:200]}")

        tokens: Dict[str, TokenInfo] = {}
        for raw in data:
            address = raw.get("address") or raw.get("id")
            decimals = raw.get("decimals")
            if not address or decimals is None:
                continue
            tokens[address] = TokenInfo(address=address, symbol=raw.get("symbol") or "", decimals=int(decimals))
        logger.info(f"Fetched {len(tokens)} tokens")

        if self.cache:
            self.cache.set(CACHE_KEY, list(tokens.values()), ttl_seconds=CACHE_TTL_SECONDS)
        self._tokens = tokens
        return tokens
