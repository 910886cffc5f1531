import base64
import logging
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lptrace.core.dlmm_program import DLMM_PROGRAM_ID, decode_position_account
from lptrace.core.entities.position import PositionBalance, PositionEvent
from lptrace.core.errors import (
    ExternalServiceError,
    HistoryFetchError,
    PositionNotFoundError,
    RateLimitedError,
    RpcError,
)
from lptrace.core.interfaces.datasource import IPositionHistorySource, ITransactionSource
from lptrace.core.use_cases.event_extractor import extract_position_events

logger = logging.getLogger(__name__)

SIGNATURE_PAGE_LIMIT = 1000
TRANSACTION_CHUNK_SIZE = 250


class SolanaRpcGateway(ITransactionSource, IPositionHistorySource):
    """
    Solana JSON-RPC gateway for transactions, position history and position
    account state. Rate limiting and transport failures are retried with
    exponential backoff before surfacing as ExternalServiceError.
    """

    def __init__(
        self,
        rpc_url: str,
        origin_url: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 5,
        program_id: str = DLMM_PROGRAM_ID,
        client: Optional[httpx.AsyncClient] = None,
    ):
        headers = {"Content-Type": "application/json"}
        if origin_url:
            headers["Origin"] = origin_url
        self.rpc_url = rpc_url
        self.max_retries = max(1, max_retries)
        self.program_id = program_id
        self.client = client or httpx.AsyncClient(timeout=timeout, headers=headers)
        logger.info(f"SolanaRpcGateway initialized. URL: {rpc_url}")

    async def close(self):
        await self.client.aclose()

    async def _post(self, payload: Any) -> Any:
        try:
            response = await self.client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise RpcError(f"Transport error: {e}") from e
        if response.status_code == 429:
            raise RateLimitedError("HTTP 429 from RPC node")
        if response.status_code != 200:
            raise RpcError(f"HTTP {response.status_code} {response.text[:200]}")
        try:
            return response.json()
        except ValueError as e:
            raise RpcError(f"Malformed RPC response: {e}") from e

    async def _send(self, payload: Any) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=0.5, max=8),
            retry=retry_if_exception_type(ExternalServiceError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._post(payload)

    async def rpc(self, method: str, params: List[Any]) -> Any:
        body = await self._send({"jsonrpc": "2.0", "id": 1, "method": method, "params": params})
        if "error" in body:
            raise RpcError(f"RPC error {method}: {body['error']}")
        return body.get("result")

    async def get_parsed_transactions(self, signatures: List[str]) -> Dict[str, Optional[dict]]:
        """Batch getTransaction (jsonParsed) for up to one chunk of signatures."""
        if not signatures:
            return {}
        config = {"encoding": "jsonParsed", "maxSupportedTransactionVersion": 0, "commitment": "confirmed"}
        payload = [
            {"jsonrpc": "2.0", "id": i, "method": "getTransaction", "params": [signature, config]}
            for i, signature in enumerate(signatures)
        ]
        responses = await self._send(payload)
        if not isinstance(responses, list):
            raise RpcError(f"Unexpected batch response: {str(responses)[:200]}")

        parsed: Dict[str, Optional[dict]] = {signature: None for signature in signatures}
        for response in responses:
            index = response.get("id")
            if not isinstance(index, int) or index >= len(signatures):
                continue
            if "error" in response:
                logger.warning(f"getTransaction {signatures[index]} failed: {response['error']}")
                continue
            parsed[signatures[index]] = response.get("result")
        return parsed

    async def get_signatures(self, address: str) -> List[dict]:
        """All successful signatures for an address, oldest first."""
        signatures: List[dict] = []
        before = None
        while True:
            options: Dict[str, Any] = {"limit": SIGNATURE_PAGE_LIMIT, "commitment": "confirmed"}
            if before:
                options["before"] = before
            page = await self.rpc("getSignaturesForAddress", [address, options]) or []
            signatures.extend(page)
            if len(page) < SIGNATURE_PAGE_LIMIT:
                break
            before = page[-1]["signature"]
        # node returns newest first; reversing before the stable sort keeps
        # transactions of one slot in execution order
        ordered = sorted(
            (s for s in reversed(signatures) if s.get("err") is None),
            key=lambda s: (s.get("slot", 0), s.get("blockTime") or 0),
        )
        return ordered

    async def fetch_history(self, address: str) -> List[PositionEvent]:
        events: List[PositionEvent] = []
        try:
            signatures = [s["signature"] for s in await self.get_signatures(address)]
            if not signatures:
                raise PositionNotFoundError(address, "no transactions found")

            for start in range(0, len(signatures), TRANSACTION_CHUNK_SIZE):
                chunk = signatures[start:start + TRANSACTION_CHUNK_SIZE]
                transactions = await self.get_parsed_transactions(chunk)
                for signature in chunk:
                    transaction = transactions.get(signature)
                    if transaction is None:
                        raise HistoryFetchError(address, f"transaction {signature} unavailable", events)
                    events.extend(extract_position_events(transaction, address, self.program_id))
        except ExternalServiceError as e:
            raise HistoryFetchError(address, str(e), events) from e
        return events

    async def get_position_balance(self, address: str) -> PositionBalance:
        result = await self.rpc("getAccountInfo", [address, {"encoding": "base64", "commitment": "confirmed"}])
        value = (result or {}).get("value")
        if value is None:
            return PositionBalance(exists=False)

        data = base64.b64decode(value["data"][0])
        state = decode_position_account(data)
        if state is None:
            logger.warning(f"Account {address} is not a DLMM position ({len(data)} bytes)")
            return PositionBalance(exists=True)
        return PositionBalance(
            exists=True,
            owner=state.owner,
            lb_pair=state.lb_pair,
            unclaimed_fee_x=state.pending_fee_x,
            unclaimed_fee_y=state.pending_fee_y,
        )
