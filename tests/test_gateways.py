"""
Tests for the HTTP gateways against httpx mock transports.
"""
import base64
import json
import struct

import base58
import httpx
import pytest

from conftest import OWNER, POOL, POSITION, T0, USDC, event_ix, make_transaction, program_ix, signature
from lptrace.core.dlmm_program import NULL_PUBKEY, POSITION_ACCOUNT_MIN_SIZE, DlmmEvent
from lptrace.core.entities.position import EventKind
from lptrace.core.errors import HistoryFetchError, PositionNotFoundError, RateLimitedError
from lptrace.infrastructure.gateways.defillama_prices import DefiLlamaPriceOracle
from lptrace.infrastructure.gateways.jupiter_tokens import JupiterTokenList
from lptrace.infrastructure.gateways.meteora_api import MeteoraDlmmApi
from lptrace.infrastructure.gateways.solana_rpc import SolanaRpcGateway


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def rpc_gateway(handler, max_retries=1) -> SolanaRpcGateway:
    return SolanaRpcGateway("https://rpc.test", max_retries=max_retries, client=mock_client(handler))


def liquidity_tx(seed, amount, event_name="AddLiquidity", instruction="add_liquidity", slot=None):
    event = DlmmEvent(
        name=event_name, lb_pair=POOL, owner=OWNER, position=POSITION,
        amount_x=amount, amount_y=0, active_bin_id=0,
    )
    slot = seed if slot is None else slot
    return make_transaction(
        signature(seed),
        [program_ix(instruction, [POSITION, POOL]), event_ix(event)],
        block_time=T0 // 1000 + slot,
        slot=slot,
    )


def deposit_tx(seed, amount):
    return liquidity_tx(seed, amount)


class RpcNode:
    """Answers getSignaturesForAddress, batched getTransaction and getAccountInfo."""

    def __init__(self, transactions, account=None):
        self.transactions = transactions
        self.account = account
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        if isinstance(body, list):
            return httpx.Response(200, json=[
                {"jsonrpc": "2.0", "id": item["id"], "result": self.transactions.get(item["params"][0])}
                for item in body
            ])
        if body["method"] == "getSignaturesForAddress":
            # newest first, as the node returns them
            result = [
                {"signature": sig, "slot": tx["slot"], "blockTime": tx["blockTime"], "err": None}
                for sig, tx in sorted(self.transactions.items(), key=lambda kv: -kv[1]["slot"])
            ]
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})
        if body["method"] == "getAccountInfo":
            value = None
            if self.account is not None:
                value = {"data": [base64.b64encode(self.account).decode(), "base64"]}
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"value": value}})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"message": "unknown method"}})


async def test_batch_transactions_keyed_by_signature():
    node = RpcNode({signature(2): deposit_tx(2, 10)})
    gateway = rpc_gateway(node)
    parsed = await gateway.get_parsed_transactions([signature(2), signature(3)])
    assert parsed[signature(2)]["slot"] == 2
    assert parsed[signature(3)] is None
    assert node.requests[0][0]["params"][1]["encoding"] == "jsonParsed"


async def test_fetch_history_oldest_first():
    node = RpcNode({signature(3): deposit_tx(3, 20), signature(2): deposit_tx(2, 10)})
    events = await rpc_gateway(node).fetch_history(POSITION)
    assert [e.kind for e in events] == [EventKind.DEPOSIT, EventKind.DEPOSIT]
    assert [e.token_x_amount for e in events] == [10, 20]


async def test_fetch_history_keeps_execution_order_within_a_slot():
    # both land in slot 7; the node lists the later withdraw first
    node = RpcNode({
        signature(3): liquidity_tx(3, 10, "RemoveLiquidity", "remove_liquidity", slot=7),
        signature(2): liquidity_tx(2, 10, slot=7),
    })
    events = await rpc_gateway(node).fetch_history(POSITION)
    assert [e.kind for e in events] == [EventKind.DEPOSIT, EventKind.WITHDRAW]
    assert [e.signature for e in events] == [signature(2), signature(3)]


async def test_fetch_history_without_signatures():
    with pytest.raises(PositionNotFoundError):
        await rpc_gateway(RpcNode({})).fetch_history(POSITION)


async def test_fetch_history_failure_keeps_partial_events():
    node = RpcNode({signature(2): deposit_tx(2, 10)})

    def flaky(request):
        body = json.loads(request.content)
        if isinstance(body, list):
            return httpx.Response(429)
        return node(request)

    with pytest.raises(HistoryFetchError) as exc:
        await rpc_gateway(flaky).fetch_history(POSITION)
    assert exc.value.events == []
    assert not isinstance(exc.value, PositionNotFoundError)


async def test_rate_limit_is_retried():
    node = RpcNode({signature(2): deposit_tx(2, 10)})
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) == 1:
            return httpx.Response(429)
        return node(request)

    parsed = await rpc_gateway(handler, max_retries=2).get_parsed_transactions([signature(2)])
    assert parsed[signature(2)] is not None


async def test_rate_limit_surfaces_after_retries():
    gateway = rpc_gateway(lambda request: httpx.Response(429))
    with pytest.raises(RateLimitedError):
        await gateway.get_parsed_transactions([signature(2)])


async def test_position_balance():
    fee_infos = 8 + 32 + 32 + 16 * 70 + 48 * 70
    data = bytearray(POSITION_ACCOUNT_MIN_SIZE)
    data[8:40] = base58.b58decode(POOL)
    data[40:72] = base58.b58decode(OWNER)
    struct.pack_into("<QQ", data, fee_infos + 32, 7, 9)

    balance = await rpc_gateway(RpcNode({}, account=bytes(data))).get_position_balance(POSITION)
    assert balance.exists
    assert balance.owner == OWNER
    assert balance.lb_pair == POOL
    assert (balance.unclaimed_fee_x, balance.unclaimed_fee_y) == (7, 9)
    assert balance.open_x is None


async def test_closed_account_does_not_exist():
    balance = await rpc_gateway(RpcNode({})).get_position_balance(POSITION)
    assert not balance.exists


async def test_origin_header_sent():
    seen = []

    def handler(request):
        seen.append(request.headers.get("origin"))
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"value": None}})

    gateway = SolanaRpcGateway("https://rpc.test", origin_url="https://app.example")
    gateway.client = httpx.AsyncClient(transport=httpx.MockTransport(handler), headers=gateway.client.headers)
    await gateway.get_position_balance(POSITION)
    assert seen == ["https://app.example"]


async def test_meteora_pairs():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(200, json=[
            {
                "address": POOL, "name": "TKX-USDC", "mint_x": "mintx", "mint_y": USDC, "bin_step": 20,
                "reward_mint_x": NULL_PUBKEY, "reward_mint_y": "reward",
            },
            {"address": "broken"},
        ])

    api = MeteoraDlmmApi("https://dlmm.test", client=mock_client(handler))
    [pair] = await api.list_pairs()
    assert pair.address == POOL
    assert pair.bin_step == 20
    assert pair.reward_mint_x is None
    assert pair.reward_mint_y == "reward"

    await api.list_pairs()
    assert calls == ["/pair/all"]


@pytest.mark.parametrize("payload", [
    [{"address": USDC, "symbol": "USDC", "decimals": 6}],
    [{"id": USDC, "symbol": "USDC", "decimals": 6}],
    {"tokens": [{"address": USDC, "symbol": "USDC", "decimals": 6}]},
])
async def test_token_list_shapes(payload):
    tokens = await JupiterTokenList("https://tokens.test/list", client=mock_client(
        lambda request: httpx.Response(200, json=payload)
    )).list_tokens()
    assert tokens[USDC].decimals == 6
    assert tokens[USDC].symbol == "USDC"


async def test_historical_price():
    requested = []

    def handler(request):
        requested.append(request.url)
        coin = f"solana:{USDC}"
        return httpx.Response(200, json={"coins": {coin: {"price": 0.9998, "timestamp": T0 // 1000}}})

    oracle = DefiLlamaPriceOracle("https://coins.test", client=mock_client(handler))
    assert await oracle.price_at(USDC, T0) == pytest.approx(0.9998)
    assert requested[0].path == f"/prices/historical/{T0 // 1000}/solana:{USDC}"
    assert requested[0].params["searchWidth"] == "4h"


async def test_historical_price_missing():
    oracle = DefiLlamaPriceOracle("https://coins.test", client=mock_client(
        lambda request: httpx.Response(200, json={"coins": {}})
    ))
    assert await oracle.price_at(USDC, T0) is None

    not_found = DefiLlamaPriceOracle("https://coins.test", client=mock_client(lambda request: httpx.Response(404)))
    assert await not_found.price_at(USDC, T0) is None
