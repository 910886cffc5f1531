import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lptrace.core.errors import ExternalServiceError, RateLimitedError

logger = logging.getLogger(__name__)


@retry(
    retry=retry_if_exception_type(ExternalServiceError),
    stop=stop_after_attempt(4),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def get_json(client: httpx.AsyncClient, url: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
    """
    GET a JSON document. Returns None on 404; 429, 5xx and transport errors
    are retried and finally raised as ExternalServiceError.
    """
    try:
        response = await client.get(url, params=params)
    except httpx.HTTPError as e:
        raise ExternalServiceError(f"GET {url} failed: {e}") from e

    if response.status_code == 404:
        return None
    if response.status_code == 429:
        raise RateLimitedError(f"HTTP 429 from {url}")
    if response.status_code != 200:
        raise ExternalServiceError(f"HTTP {response.status_code} from {url}")
    try:
        return response.json()
    except ValueError as e:
        raise ExternalServiceError(f"Malformed JSON from {url}: {e}") from e
