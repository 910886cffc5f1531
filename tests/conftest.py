"""
Pytest configuration, in-memory gateways and chain data builders.
"""
from typing import Dict, List, Optional, Set, Tuple

import base58
import pytest
from httpx import ASGITransport, AsyncClient

from lptrace.api.main import (
    app,
    get_history_source,
    get_pair_directory,
    get_price_oracle,
    get_token_directory,
    get_transaction_source,
)
from lptrace.core.dlmm_program import DLMM_PROGRAM_ID, DlmmEvent, anchor_discriminator, encode_event
from lptrace.core.entities.pair import DlmmPair, TokenInfo
from lptrace.core.entities.position import EventKind, PositionBalance, PositionEvent
from lptrace.core.errors import ExternalServiceError, HistoryFetchError, PositionNotFoundError
from lptrace.core.interfaces.datasource import (
    IPairDirectory,
    IPositionHistorySource,
    IPriceOracle,
    ITokenDirectory,
    ITransactionSource,
)

USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
WSOL = "So11111111111111111111111111111111111111112"

T0 = 1_717_200_000_000  # 2024-06-01T00:00:00Z
HOUR_MS = 3_600_000


def pubkey(seed: int) -> str:
    return base58.b58encode(bytes([seed]) * 32).decode()


def signature(seed: int) -> str:
    return base58.b58encode(bytes([seed]) * 64).decode()


TOKEN_X = pubkey(10)
POOL = pubkey(20)
POSITION = pubkey(30)
OWNER = pubkey(40)
REWARD_MINT = pubkey(50)
EVENT_AUTHORITY = pubkey(60)


# --- parsed transaction builders ---

def program_ix(name: str, accounts: List[str], program_id: str = DLMM_PROGRAM_ID) -> dict:
    data = anchor_discriminator("global", name) + bytes(8)
    return {"programId": program_id, "accounts": accounts, "data": base58.b58encode(data).decode()}


def event_ix(event: DlmmEvent, program_id: str = DLMM_PROGRAM_ID) -> dict:
    return {
        "programId": program_id,
        "accounts": [EVENT_AUTHORITY],
        "data": base58.b58encode(encode_event(event)).decode(),
    }


def make_transaction(
    sig: str,
    instructions: List[dict],
    inner: Optional[Dict[int, List[dict]]] = None,
    block_time: int = T0 // 1000,
    slot: int = 1,
    err=None,
) -> dict:
    return {
        "slot": slot,
        "blockTime": block_time,
        "meta": {
            "err": err,
            "innerInstructions": [
                {"index": index, "instructions": ixs} for index, ixs in (inner or {}).items()
            ],
        },
        "transaction": {"signatures": [sig], "message": {"instructions": instructions}},
    }


def make_event(kind: EventKind, seed: int, ts: int, x: int = 0, y: int = 0, **kwargs) -> PositionEvent:
    kwargs.setdefault("lb_pair", POOL)
    kwargs.setdefault("owner", OWNER)
    if kind in (EventKind.DEPOSIT, EventKind.WITHDRAW):
        kwargs.setdefault("active_bin_id", 0)
    return PositionEvent(
        kind=kind,
        signature=signature(seed),
        timestamp_ms=ts,
        slot=seed,
        token_x_amount=x,
        token_y_amount=y,
        **kwargs,
    )


# --- fake gateways ---

class FakeTransactionSource(ITransactionSource):
    def __init__(self, transactions: Optional[Dict[str, dict]] = None, fail: bool = False):
        self.transactions = transactions or {}
        self.fail = fail
        self.calls: List[List[str]] = []

    async def get_parsed_transactions(self, signatures):
        self.calls.append(list(signatures))
        if self.fail:
            raise ExternalServiceError("RPC unavailable")
        return {s: self.transactions.get(s) for s in signatures}


class FakeHistorySource(IPositionHistorySource):
    def __init__(
        self,
        histories: Optional[Dict[str, List[PositionEvent]]] = None,
        balances: Optional[Dict[str, PositionBalance]] = None,
        partial: Optional[Dict[str, List[PositionEvent]]] = None,
    ):
        self.histories = histories or {}
        self.balances = balances or {}
        self.partial = partial or {}
        self.balance_calls: List[str] = []

    async def fetch_history(self, address):
        if address in self.partial:
            raise HistoryFetchError(address, "rate limited", self.partial[address])
        if address not in self.histories:
            raise PositionNotFoundError(address, "no transactions found")
        return list(self.histories[address])

    async def get_position_balance(self, address):
        self.balance_calls.append(address)
        return self.balances.get(address, PositionBalance(exists=False))


class FakePairDirectory(IPairDirectory):
    def __init__(self, pairs: List[DlmmPair]):
        self.pairs = pairs

    async def list_pairs(self):
        return list(self.pairs)


class FakeTokenDirectory(ITokenDirectory):
    def __init__(self, tokens: Dict[str, TokenInfo]):
        self.tokens = tokens

    async def list_tokens(self):
        return dict(self.tokens)


class FakePriceOracle(IPriceOracle):
    """Flat price per mint; (mint, ts) pairs in `missing` return None."""

    def __init__(self, prices: Dict[str, float], missing: Optional[Set[Tuple[str, int]]] = None):
        self.prices = prices
        self.missing = missing or set()
        self.calls: List[Tuple[str, int]] = []

    async def price_at(self, mint, timestamp_ms):
        self.calls.append((mint, timestamp_ms))
        if (mint, timestamp_ms) in self.missing:
            return None
        return self.prices.get(mint)


# --- fixtures ---

@pytest.fixture
def pair() -> DlmmPair:
    return DlmmPair(
        address=POOL,
        name="TKX-USDC",
        mint_x=TOKEN_X,
        mint_y=USDC,
        bin_step=10,
        reward_mint_x=REWARD_MINT,
    )


@pytest.fixture
def tokens() -> Dict[str, TokenInfo]:
    return {
        TOKEN_X: TokenInfo(address=TOKEN_X, symbol="TKX", decimals=6),
        USDC: TokenInfo(address=USDC, symbol="USDC", decimals=6),
        REWARD_MINT: TokenInfo(address=REWARD_MINT, symbol="RWD", decimals=6),
    }


@pytest.fixture
def closed_history() -> List[PositionEvent]:
    """Open, deposit 100 X, withdraw 110 X, close; 48 hours apart end to end."""
    return [
        make_event(EventKind.OPEN, 1, T0),
        make_event(EventKind.DEPOSIT, 2, T0, x=100_000_000),
        make_event(EventKind.WITHDRAW, 3, T0 + 48 * HOUR_MS, x=110_000_000),
        make_event(EventKind.CLOSE, 4, T0 + 48 * HOUR_MS),
    ]


@pytest.fixture
def oracle() -> FakePriceOracle:
    return FakePriceOracle({TOKEN_X: 1.0, USDC: 1.0, REWARD_MINT: 2.0})


@pytest.fixture
def submitted_transaction() -> dict:
    """The deposit transaction a participant submits for POSITION."""
    return make_transaction(
        signature(2),
        [program_ix("add_liquidity_by_strategy", [POSITION, POOL, pubkey(70), pubkey(71)])],
    )


@pytest.fixture
def gateways(pair, tokens, closed_history, oracle, submitted_transaction):
    return {
        "transactions": FakeTransactionSource({signature(2): submitted_transaction}),
        "history": FakeHistorySource({POSITION: closed_history}),
        "pairs": FakePairDirectory([pair]),
        "tokens": FakeTokenDirectory(tokens),
        "oracle": oracle,
    }


@pytest.fixture
async def client(gateways):
    """Async HTTP client against the app with in-memory gateways."""
    app.dependency_overrides[get_transaction_source] = lambda: gateways["transactions"]
    app.dependency_overrides[get_history_source] = lambda: gateways["history"]
    app.dependency_overrides[get_pair_directory] = lambda: gateways["pairs"]
    app.dependency_overrides[get_token_directory] = lambda: gateways["tokens"]
    app.dependency_overrides[get_price_oracle] = lambda: gateways["oracle"]
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
