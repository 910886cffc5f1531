import logging
import time
from functools import partial
from typing import Dict, Iterable, List, Optional, Set, Tuple

from lptrace.core.entities.position import USD_FIELDS, Position
from lptrace.core.entities.verdict import ProfitPercentages
from lptrace.core.interfaces.datasource import IPriceOracle
from lptrace.core.use_cases.task_runner import TaskRunner

logger = logging.getLogger(__name__)

QuoteKey = Tuple[str, int]

# Fields summed straight from valuation requests
_LEAF_FIELDS = (
    "usd_total_x_deposits",
    "usd_total_y_deposits",
    "usd_total_x_withdraws",
    "usd_total_y_withdraws",
    "usd_claimed_x_fees",
    "usd_claimed_y_fees",
    "usd_total_unclaimed_x_fees",
    "usd_total_unclaimed_y_fees",
    "usd_total_open_x_balance",
    "usd_total_open_y_balance",
    "usd_total_reward1",
    "usd_total_reward2",
)


class UsdValuationEngine:
    """
    Projects native position values into USD using historical quotes.

    Every distinct (mint, timestamp) across all positions is looked up once,
    with lookups gated by the task runner. A position missing any quote gets
    no USD overlay at all and is flagged with has_api_error.
    """

    def __init__(self, oracle: IPriceOracle, runner: TaskRunner, include_fees_in_profit: bool = True):
        self.oracle = oracle
        self.runner = runner
        self.include_fees_in_profit = include_fees_in_profit

    async def value(self, positions: List[Position], now_ms: Optional[int] = None) -> List[Position]:
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        keys: Set[QuoteKey] = set()
        for position in positions:
            if not position.has_api_error:
                keys.update(self._quote_keys(position, now_ms))

        quotes = await self.resolve_quotes(keys)
        return [self.apply_quotes(position, quotes, now_ms) for position in positions]

    async def resolve_quotes(self, keys: Iterable[QuoteKey]) -> Dict[QuoteKey, Optional[float]]:
        ordered = sorted(keys)
        if not ordered:
            return {}
        logger.info(f"Resolving {len(ordered)} historical prices")
        outcomes = await self.runner.run({key: partial(self.oracle.price_at, *key) for key in ordered})

        quotes: Dict[QuoteKey, Optional[float]] = {}
        for outcome in outcomes:
            quotes[outcome.key] = outcome.value if outcome.ok else None
            if quotes[outcome.key] is None:
                mint, ts = outcome.key
                logger.warning(f"No USD price for {mint} at {ts}")
        return quotes

    def apply_quotes(self, position: Position, quotes: Dict[QuoteKey, Optional[float]], now_ms: int) -> Position:
        if position.has_api_error:
            return position

        sums = {name: 0.0 for name in _LEAF_FIELDS}
        for request in position.valuation_requests:
            ts = request.timestamp_ms if request.timestamp_ms is not None else now_ms
            price = quotes.get((request.mint, ts))
            if price is None:
                return position.model_copy(update={
                    **{name: None for name in USD_FIELDS},
                    "has_api_error": True,
                })
            sums[request.field] += request.amount * price

        usd = dict(sums)
        usd["usd_total_x_fees"] = sums["usd_claimed_x_fees"] + sums["usd_total_unclaimed_x_fees"]
        usd["usd_total_y_fees"] = sums["usd_claimed_y_fees"] + sums["usd_total_unclaimed_y_fees"]
        usd["usd_deposits_value"] = sums["usd_total_x_deposits"] + sums["usd_total_y_deposits"]
        usd["usd_withdraws_value"] = sums["usd_total_x_withdraws"] + sums["usd_total_y_withdraws"]
        usd["usd_net_deposits_and_withdraws_value"] = usd["usd_deposits_value"] - usd["usd_withdraws_value"]
        usd["usd_open_balance_value"] = sums["usd_total_open_x_balance"] + sums["usd_total_open_y_balance"]
        usd["usd_claimed_fees_value"] = sums["usd_claimed_x_fees"] + sums["usd_claimed_y_fees"]
        usd["usd_unclaimed_fees_value"] = sums["usd_total_unclaimed_x_fees"] + sums["usd_total_unclaimed_y_fees"]
        usd["usd_total_fees_value"] = usd["usd_claimed_fees_value"] + usd["usd_unclaimed_fees_value"]
        profit_loss = usd["usd_withdraws_value"] + usd["usd_open_balance_value"] - usd["usd_deposits_value"]
        if self.include_fees_in_profit:
            profit_loss += usd["usd_total_fees_value"]
        usd["usd_profit_loss_value"] = profit_loss
        return position.model_copy(update=usd)

    @staticmethod
    def _quote_keys(position: Position, now_ms: int) -> Set[QuoteKey]:
        return {
            (r.mint, r.timestamp_ms if r.timestamp_ms is not None else now_ms)
            for r in position.valuation_requests
        }


def profit_percentages(position: Position, sanity_ceiling: float = 10.0) -> ProfitPercentages:
    """
    usd = usd_profit_loss / usd_deposits, quote = profit_loss / deposits, so a
    gain for the liquidity provider is a positive percent.
    The USD figure is preferred unless it is missing or at/above the sanity
    ceiling, which points at a mispriced amount.
    """
    usd = None
    if position.usd_profit_loss_value is not None and position.usd_deposits_value:
        usd = position.usd_profit_loss_value / position.usd_deposits_value
    quote = None
    if position.deposits_value:
        quote = position.profit_loss_value / position.deposits_value

    if usd is not None and usd < sanity_ceiling:
        return ProfitPercentages(usd=usd, quote=quote, preferred=usd, uses_usd=True)
    return ProfitPercentages(usd=usd, quote=quote, preferred=quote, uses_usd=False)
