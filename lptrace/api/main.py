import logging
import os
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from lptrace.config import load_service_settings
from lptrace.core.entities.position import Position, PositionReference
from lptrace.core.entities.submission import ByLabel, PipelineConfig
from lptrace.core.entities.verdict import ProfitPercentages, Thresholds
from lptrace.core.errors import TransactionLayoutError
from lptrace.core.interfaces.datasource import (
    IPairDirectory,
    IPositionHistorySource,
    IPriceOracle,
    ITokenDirectory,
    ITransactionSource,
)
from lptrace.core.services import PositionService, SubmissionPipeline
from lptrace.core.use_cases.input_validation import build_submissions, cleanse, is_valid_signature, is_valid_wallet
from lptrace.core.use_cases.task_runner import TaskRunner
from lptrace.core.use_cases.transaction_classifier import TransactionClassifier
from lptrace.core.use_cases.usd_valuation import UsdValuationEngine, profit_percentages
from lptrace.infrastructure.cache.redis_service import RedisService
from lptrace.infrastructure.gateways.defillama_prices import DefiLlamaPriceOracle
from lptrace.infrastructure.gateways.jupiter_tokens import JupiterTokenList
from lptrace.infrastructure.gateways.meteora_api import MeteoraDlmmApi
from lptrace.infrastructure.gateways.solana_rpc import SolanaRpcGateway

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("LpTrace")

app = FastAPI(title="LP Trace API", version="0.1.0", description="Meteora DLMM position reconstruction & submission validation")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Dependency Injection ---
# Gateways are process-wide so their HTTP clients and directory snapshots
# are reused across requests.


@lru_cache
def _settings():
    return load_service_settings()


@lru_cache
def _cache() -> RedisService:
    return RedisService(_settings().redis_url)


@lru_cache
def _solana() -> SolanaRpcGateway:
    settings = _settings()
    return SolanaRpcGateway(settings.rpc_url, origin_url=settings.origin_url)


def get_transaction_source() -> ITransactionSource:
    return _solana()


def get_history_source() -> IPositionHistorySource:
    return _solana()


@lru_cache
def get_pair_directory() -> IPairDirectory:
    return MeteoraDlmmApi(_settings().dlmm_api_url, cache=_cache())


@lru_cache
def get_token_directory() -> ITokenDirectory:
    return JupiterTokenList(_settings().token_list_url, cache=_cache())


@lru_cache
def get_price_oracle() -> IPriceOracle:
    return DefiLlamaPriceOracle(_settings().price_api_url)


# --- Schemas ---

class PositionReport(BaseModel):
    position: Position
    percentages: ProfitPercentages


class SubmissionIn(BaseModel):
    signature: str
    wallet: Optional[str] = None


class EvaluateRequest(BaseModel):
    submissions: List[SubmissionIn]
    thresholds: Thresholds
    require_wallet_match: Optional[bool] = None
    include_fees_in_profit: bool = True
    throttle_limit: int = Field(10, ge=1)


class EvaluateResponse(BaseModel):
    rows: List[Dict[str, Any]]


# --- Endpoints ---

@app.get("/health")
async def health():
    return {"status": "healthy", "mode": "Meteora DLMM via Solana RPC"}


@app.get("/v1/transactions/{signature}/positions", response_model=List[PositionReference])
async def get_transaction_positions(
    signature: str,
    transactions: ITransactionSource = Depends(get_transaction_source),
    pair_directory: IPairDirectory = Depends(get_pair_directory),
):
    """Position accounts touched by the DLMM instructions of one transaction."""
    signature = cleanse(signature)
    if not is_valid_signature(signature):
        raise HTTPException(status_code=400, detail="Invalid transaction signature")

    parsed = await transactions.get_parsed_transactions([signature])
    transaction = parsed.get(signature)
    if transaction is None:
        raise HTTPException(status_code=404, detail="Transaction not found")

    pairs = {pair.address: pair for pair in await pair_directory.list_pairs()}
    try:
        return TransactionClassifier(pairs=pairs).classify(transaction)
    except TransactionLayoutError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


@app.get("/v1/positions/{address}", response_model=PositionReport)
async def get_position(
    address: str,
    include_fees_in_profit: bool = True,
    sanity_ceiling: float = 10.0,
    history: IPositionHistorySource = Depends(get_history_source),
    pair_directory: IPairDirectory = Depends(get_pair_directory),
    token_directory: ITokenDirectory = Depends(get_token_directory),
    oracle: IPriceOracle = Depends(get_price_oracle),
):
    """
    Reconstructs one position from its full history and prices it in USD.
    A position whose history could only be partly fetched is still returned,
    flagged with hasApiError.
    """
    if not is_valid_wallet(address):
        raise HTTPException(status_code=400, detail="Invalid position address")

    pairs = {pair.address: pair for pair in await pair_directory.list_pairs()}
    tokens = await token_directory.list_tokens()
    position = await PositionService(history, include_fees_in_profit).reconstruct(address, pairs, tokens)
    if position.transaction_count == 0:
        raise HTTPException(status_code=404, detail="Position not found")

    engine = UsdValuationEngine(oracle, TaskRunner(10), include_fees_in_profit)
    [position] = await engine.value([position])
    return PositionReport(position=position, percentages=profit_percentages(position, sanity_ceiling))


@app.post("/v1/submissions/evaluate", response_model=EvaluateResponse)
async def evaluate_submissions(
    request: EvaluateRequest,
    transactions: ITransactionSource = Depends(get_transaction_source),
    history: IPositionHistorySource = Depends(get_history_source),
    pair_directory: IPairDirectory = Depends(get_pair_directory),
    token_directory: ITokenDirectory = Depends(get_token_directory),
    oracle: IPriceOracle = Depends(get_price_oracle),
):
    """Batch evaluation of {signature, wallet} submissions, one output row each."""
    with_wallet = any(s.wallet for s in request.submissions)
    columns = ["signature", "wallet"] if with_wallet else ["signature"]
    rows = [s.model_dump(include=set(columns)) for s in request.submissions]

    require_wallet_match = request.require_wallet_match
    if require_wallet_match is None:
        require_wallet_match = with_wallet
    config = PipelineConfig(
        signature_source=ByLabel(label="signature"),
        wallet_source=ByLabel(label="wallet") if with_wallet else None,
        require_wallet_match=require_wallet_match,
        thresholds=request.thresholds,
        throttle_limit=request.throttle_limit,
        include_fees_in_profit=request.include_fees_in_profit,
    )
    submissions = build_submissions(rows, columns, config)
    pipeline = SubmissionPipeline(transactions, history, pair_directory, token_directory, oracle, config)
    logger.info(f"Evaluating {len(submissions)} submissions")
    return EvaluateResponse(rows=await pipeline.run(submissions))
