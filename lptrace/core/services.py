import logging
from functools import partial
from typing import Dict, List, Optional

from lptrace.core.entities.pair import DlmmPair, TokenInfo
from lptrace.core.entities.position import EventKind, Position, PositionBalance, PositionReference
from lptrace.core.entities.result import NotFoundResult, SubmissionResult, UnpricedResult, ValuedResult
from lptrace.core.entities.submission import PipelineConfig, Submission
from lptrace.core.errors import ExternalServiceError, HistoryFetchError, TransactionLayoutError
from lptrace.core.interfaces.datasource import (
    IPairDirectory,
    IPositionHistorySource,
    IPriceOracle,
    ITokenDirectory,
    ITransactionSource,
)
from lptrace.core.use_cases.position_reconstructor import PositionReconstructor
from lptrace.core.use_cases.report_assembler import assemble_all
from lptrace.core.use_cases.task_runner import TaskRunner
from lptrace.core.use_cases.transaction_classifier import TransactionClassifier
from lptrace.core.use_cases.usd_valuation import UsdValuationEngine, profit_percentages
from lptrace.core.use_cases.validity_evaluator import evaluate

logger = logging.getLogger(__name__)


def chunked(items: List, size: int) -> List[List]:
    if size <= 0:
        raise ValueError("Size must be greater than 0")
    return [items[i:i + size] for i in range(0, len(items), size)]


class PositionService:
    def __init__(self, history: IPositionHistorySource, include_fees_in_profit: bool = True):
        self.history = history
        self.include_fees_in_profit = include_fees_in_profit

    async def reconstruct(
        self,
        address: str,
        pairs: Dict[str, DlmmPair],
        tokens: Dict[str, TokenInfo],
    ) -> Position:
        """
        Fetches and folds one position. A history failure still yields a
        Position, folded from whatever events arrived and flagged with
        has_api_error.
        """
        fetch_failed = False
        try:
            events = await self.history.fetch_history(address)
        except HistoryFetchError as e:
            logger.warning(f"History fetch failed for {address}: {e}")
            events = e.events
            fetch_failed = True

        balance: Optional[PositionBalance] = None
        closed = any(e.kind == EventKind.CLOSE for e in events)
        if not fetch_failed and not closed:
            try:
                balance = await self.history.get_position_balance(address)
            except (HistoryFetchError, ExternalServiceError) as e:
                logger.warning(f"Balance query failed for {address}: {e}")
                fetch_failed = True

        lb_pair = next((e.lb_pair for e in events if e.lb_pair), None)
        if lb_pair is None and balance is not None:
            lb_pair = balance.lb_pair
        return PositionReconstructor.reconstruct(
            address,
            events,
            pair=pairs.get(lb_pair) if lb_pair else None,
            tokens=tokens,
            balance=balance,
            fetch_failed=fetch_failed,
            include_fees_in_profit=self.include_fees_in_profit,
        )


class SubmissionPipeline:
    """
    Batch run: submitted signatures -> position addresses -> reconstructed
    positions -> USD overlay -> verdicts -> output rows.

    Nothing raised by a collaborator escapes run(); every submission comes
    back as a row of the fixed output schema.
    """

    def __init__(
        self,
        transactions: ITransactionSource,
        history: IPositionHistorySource,
        pair_directory: IPairDirectory,
        token_directory: ITokenDirectory,
        price_oracle: IPriceOracle,
        config: PipelineConfig,
    ):
        self.transactions = transactions
        self.pair_directory = pair_directory
        self.token_directory = token_directory
        self.config = config
        self.runner = TaskRunner(config.throttle_limit)
        self.positions = PositionService(history, config.include_fees_in_profit)
        self.valuation = UsdValuationEngine(price_oracle, self.runner, config.include_fees_in_profit)

    async def run(self, submissions: List[Submission], now_ms: Optional[int] = None) -> List[dict]:
        results = await self.evaluate(submissions, now_ms)
        return assemble_all(submissions, results)

    async def evaluate(self, submissions: List[Submission], now_ms: Optional[int] = None) -> Dict[int, SubmissionResult]:
        results: Dict[int, SubmissionResult] = {}
        pending: List[Submission] = []
        for s in submissions:
            if s.input_error:
                results[s.row_index] = NotFoundResult(reason="invalid_input")
            else:
                pending.append(s)

        parsed = await self._fetch_transactions(sorted({s.signature for s in pending}))
        pairs = await self._load_pairs()
        tokens = await self._load_tokens()

        references = self._classify(parsed, pairs)
        by_submission: Dict[int, str] = {}
        for s in pending:
            if parsed.get(s.signature) is None:
                results[s.row_index] = NotFoundResult(reason="transaction_not_found")
            elif s.signature not in references:
                results[s.row_index] = NotFoundResult(reason="no_position")
            else:
                by_submission[s.row_index] = references[s.signature].position

        positions = await self._reconstruct(sorted(set(by_submission.values())), pairs, tokens)
        valued = await self.valuation.value(list(positions.values()), now_ms)
        valued_by_address = {p.address: p for p in valued}

        wallets = {s.row_index: s.wallet for s in pending}
        for row_index, address in by_submission.items():
            position = valued_by_address.get(address)
            if position is None:
                results[row_index] = NotFoundResult(reason="reconstruction_failed")
                continue
            results[row_index] = self._result(position, wallets.get(row_index))
        return results

    def _result(self, position: Position, wallet: Optional[str]) -> SubmissionResult:
        thresholds = self.config.thresholds
        percentages = profit_percentages(position, thresholds.profit_sanity_ceiling)
        verdict = evaluate(
            position,
            wallet,
            thresholds,
            require_wallet_match=self.config.require_wallet_match,
            percentages=percentages,
        )
        if position.is_usd_valued:
            return ValuedResult(position=position, percentages=percentages, verdict=verdict)
        return UnpricedResult(position=position, percentages=percentages, verdict=verdict)

    async def _fetch_transactions(self, signatures: List[str]) -> Dict[str, Optional[dict]]:
        parsed: Dict[str, Optional[dict]] = {}
        processed = 0
        for chunk in chunked(signatures, self.config.chunk_size):
            try:
                parsed.update(await self.transactions.get_parsed_transactions(chunk))
            except ExternalServiceError as e:
                logger.error(f"Failed to fetch {len(chunk)} transactions: {e}")
                parsed.update({signature: None for signature in chunk})
            processed += len(chunk)
            logger.info(f"Read {processed} of {len(signatures)} initial transactions.")
        return parsed

    async def _load_pairs(self) -> Dict[str, DlmmPair]:
        try:
            return {pair.address: pair for pair in await self.pair_directory.list_pairs()}
        except ExternalServiceError as e:
            logger.error(f"Failed to load DLMM pairs: {e}")
            return {}

    async def _load_tokens(self) -> Dict[str, TokenInfo]:
        try:
            return await self.token_directory.list_tokens()
        except ExternalServiceError as e:
            logger.error(f"Failed to load token list: {e}")
            return {}

    def _classify(self, parsed: Dict[str, Optional[dict]], pairs: Dict[str, DlmmPair]) -> Dict[str, PositionReference]:
        classifier = TransactionClassifier(pairs=pairs)
        references: Dict[str, PositionReference] = {}
        for signature, transaction in parsed.items():
            if transaction is None:
                continue
            try:
                found = classifier.classify(transaction)
            except TransactionLayoutError as e:
                logger.warning(f"Skipping malformed transaction: {e}")
                continue
            if found:
                references[signature] = found[0]
        logger.info(f"Found {len(references)} position addresses in {len(parsed)} transactions")
        return references

    async def _reconstruct(
        self,
        addresses: List[str],
        pairs: Dict[str, DlmmPair],
        tokens: Dict[str, TokenInfo],
    ) -> Dict[str, Position]:
        positions: Dict[str, Position] = {}

        def progress(outcome):
            if outcome.ok:
                positions[outcome.key] = outcome.value
            logger.info(f"Obtained P&L for {len(positions)} of {len(addresses)} positions")

        await self.runner.run(
            {address: partial(self.positions.reconstruct, address, pairs, tokens) for address in addresses},
            on_complete=progress,
        )
        return positions
