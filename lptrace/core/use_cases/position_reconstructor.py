import logging
import math
from typing import Dict, List, Optional

from lptrace.core.dlmm_program import bin_price, is_inverted
from lptrace.core.entities.pair import DlmmPair, TokenInfo
from lptrace.core.entities.position import (
    EventKind,
    Position,
    PositionBalance,
    PositionEvent,
    ValuationRequest,
)
from lptrace.core.use_cases.event_extractor import REWARD_INDEX_KEY

logger = logging.getLogger(__name__)


class PositionReconstructor:
    @staticmethod
    def reconstruct(
        address: str,
        events: List[PositionEvent],
        pair: Optional[DlmmPair] = None,
        tokens: Optional[Dict[str, TokenInfo]] = None,
        balance: Optional[PositionBalance] = None,
        fetch_failed: bool = False,
        include_fees_in_profit: bool = True,
    ) -> Position:
        """
        Folds a position's events into one Position record.

        Events are folded in (timestamp, slot) order. Deposits and
        withdrawals are kept as positive magnitudes (money leaving the wallet
        counts as a positive deposit). Each event is valued in the pool's
        quote token at the bin price of the latest liquidity event.
        The fold is pure: the same inputs always give the same totals.
        """
        tokens = tokens or {}
        sorted_events = sorted(events, key=lambda e: (e.timestamp_ms, e.slot))
        has_api_error = fetch_failed

        mint_x = pair.mint_x if pair else None
        mint_y = pair.mint_y if pair else None
        decimals_x = _decimals(pair.mint_x_decimals if pair else None, tokens.get(mint_x))
        decimals_y = _decimals(pair.mint_y_decimals if pair else None, tokens.get(mint_y))
        if pair is None or decimals_x is None or decimals_y is None:
            logger.warning(f"Position {address}: pair or token decimals unknown, amounts left unscaled")
            has_api_error = True
        scale_x = 10 ** (decimals_x or 0)
        scale_y = 10 ** (decimals_y or 0)
        inverted = is_inverted(mint_x, mint_y)
        reward_mints: List[Optional[str]] = [
            pair.reward_mint_x if pair else None,
            pair.reward_mint_y if pair else None,
        ]

        def quote_value(x: float, y: float, price: Optional[float]) -> float:
            if price is None:
                # no liquidity event yet: only the quote side can be valued
                return x if inverted else y
            return x + y / price if inverted else x * price + y

        sender = None
        lb_pair = pair.address if pair else None
        open_ts = None
        close_ts = None
        is_closed = False
        is_hawksight = False
        transactions: List[str] = []
        last_price: Optional[float] = None
        requests: List[ValuationRequest] = []

        dep_x = dep_y = wd_x = wd_y = fee_x = fee_y = 0.0
        deposits_value = withdraws_value = claimed_fees_value = 0.0
        rewards = [0.0, 0.0]
        deposit_count = withdraw_count = fee_claim_count = reward_claim_count = 0

        for event in sorted_events:
            if event.signature not in transactions:
                transactions.append(event.signature)
            is_hawksight = is_hawksight or event.is_hawksight
            lb_pair = lb_pair or event.lb_pair
            if event.active_bin_id is not None and pair is not None:
                last_price = bin_price(event.active_bin_id, pair.bin_step, decimals_x or 0, decimals_y or 0)

            x = event.token_x_amount / scale_x
            y = event.token_y_amount / scale_y
            ts = event.timestamp_ms

            if event.kind == EventKind.OPEN:
                sender = event.owner or sender
                open_ts = ts
            elif event.kind == EventKind.DEPOSIT:
                dep_x += x
                dep_y += y
                deposit_count += 1
                deposits_value += quote_value(x, y, last_price)
                requests += _side_requests("usd_total_x_deposits", "usd_total_y_deposits", mint_x, mint_y, x, y, ts)
                sender = sender or event.owner
            elif event.kind == EventKind.WITHDRAW:
                wd_x += x
                wd_y += y
                withdraw_count += 1
                withdraws_value += quote_value(x, y, last_price)
                requests += _side_requests("usd_total_x_withdraws", "usd_total_y_withdraws", mint_x, mint_y, x, y, ts)
            elif event.kind == EventKind.FEE_CLAIM:
                fee_x += x
                fee_y += y
                fee_claim_count += 1
                claimed_fees_value += quote_value(x, y, last_price)
                requests += _side_requests("usd_claimed_x_fees", "usd_claimed_y_fees", mint_x, mint_y, x, y, ts)
            elif event.kind == EventKind.REWARD_CLAIM:
                reward_claim_count += 1
                for key, amount in event.reward_amounts.items():
                    slot, mint = _reward_slot(key, reward_mints)
                    if slot is None:
                        logger.warning(f"Position {address}: reward mint {key} does not fit the pair's reward slots")
                        has_api_error = True
                        continue
                    reward_mints[slot] = mint
                    reward_decimals = _decimals(None, tokens.get(mint))
                    if reward_decimals is None:
                        has_api_error = True
                    ui_amount = amount / 10 ** (reward_decimals or 0)
                    rewards[slot] += ui_amount
                    if ui_amount:
                        requests.append(ValuationRequest(
                            field=f"usd_total_reward{slot + 1}", mint=mint, amount=ui_amount, timestamp_ms=ts,
                        ))
            elif event.kind == EventKind.CLOSE:
                close_ts = ts
                is_closed = True

        if open_ts is None and sorted_events:
            open_ts = sorted_events[0].timestamp_ms
        if sender is None and balance is not None:
            sender = balance.owner
        lb_pair = lb_pair or (balance.lb_pair if balance else None)

        # Point-in-time balances: nothing is left in a closed position
        open_x = open_y = unclaimed_x = unclaimed_y = 0.0
        if not is_closed:
            if balance is not None and balance.exists:
                unclaimed_x = balance.unclaimed_fee_x / scale_x
                unclaimed_y = balance.unclaimed_fee_y / scale_y
                open_x = balance.open_x / scale_x if balance.open_x is not None else _residual(dep_x, wd_x)
                open_y = balance.open_y / scale_y if balance.open_y is not None else _residual(dep_y, wd_y)
            elif balance is None:
                open_x = _residual(dep_x, wd_x)
                open_y = _residual(dep_y, wd_y)
        requests += _side_requests("usd_total_open_x_balance", "usd_total_open_y_balance", mint_x, mint_y, open_x, open_y, None)
        requests += _side_requests("usd_total_unclaimed_x_fees", "usd_total_unclaimed_y_fees", mint_x, mint_y, unclaimed_x, unclaimed_y, None)

        open_balance_value = quote_value(open_x, open_y, last_price)
        unclaimed_fees_value = quote_value(unclaimed_x, unclaimed_y, last_price)
        total_fees_value = claimed_fees_value + unclaimed_fees_value
        net_value = deposits_value - withdraws_value
        profit_loss_value = withdraws_value + open_balance_value - deposits_value
        if include_fees_in_profit:
            profit_loss_value += total_fees_value

        total_x_fees = fee_x + unclaimed_x
        total_y_fees = fee_y + unclaimed_y
        symbol_x = _symbol(tokens, mint_x)
        symbol_y = _symbol(tokens, mint_y)
        pair_name = pair.name if pair and pair.name else (f"{symbol_x}-{symbol_y}" if symbol_x and symbol_y else None)

        return Position(
            address=address,
            lb_pair=lb_pair,
            sender=sender,
            pair_name=pair_name,
            mint_x=mint_x,
            mint_y=mint_y,
            mint_x_decimals=decimals_x,
            mint_y_decimals=decimals_y,
            reward1_mint=reward_mints[0],
            reward2_mint=reward_mints[1],
            symbol_x=symbol_x,
            symbol_y=symbol_y,
            symbol_reward1=_symbol(tokens, reward_mints[0]),
            symbol_reward2=_symbol(tokens, reward_mints[1]),
            is_closed=is_closed,
            is_hawksight=is_hawksight,
            is_one_sided=(dep_x == 0) != (dep_y == 0),
            inverted=inverted,
            has_no_il=is_closed and deposit_count > 0 and _same_amount(wd_x, dep_x) and _same_amount(wd_y, dep_y),
            has_no_fees=total_x_fees == 0 and total_y_fees == 0,
            has_api_error=has_api_error,
            transactions=transactions,
            transaction_count=len(transactions),
            open_timestamp_ms=open_ts,
            close_timestamp_ms=close_ts,
            total_x_deposits=dep_x,
            total_y_deposits=dep_y,
            deposit_count=deposit_count,
            total_x_withdraws=wd_x,
            total_y_withdraws=wd_y,
            withdraw_count=withdraw_count,
            net_x_deposits_and_withdraws=dep_x - wd_x,
            net_y_deposits_and_withdraws=dep_y - wd_y,
            total_claimed_x_fees=fee_x,
            total_claimed_y_fees=fee_y,
            fee_claim_count=fee_claim_count,
            total_unclaimed_x_fees=unclaimed_x,
            total_unclaimed_y_fees=unclaimed_y,
            total_x_fees=total_x_fees,
            total_y_fees=total_y_fees,
            total_open_x_balance=open_x,
            total_open_y_balance=open_y,
            total_reward1=rewards[0],
            total_reward2=rewards[1],
            reward_claim_count=reward_claim_count,
            deposits_value=deposits_value,
            withdraws_value=withdraws_value,
            net_deposits_and_withdraws_value=net_value,
            open_balance_value=open_balance_value,
            claimed_fees_value=claimed_fees_value,
            unclaimed_fees_value=unclaimed_fees_value,
            total_fees_value=total_fees_value,
            profit_loss_value=profit_loss_value,
            valuation_requests=requests,
        )


def _decimals(explicit: Optional[int], token: Optional[TokenInfo]) -> Optional[int]:
    if explicit is not None:
        return explicit
    return token.decimals if token else None


def _symbol(tokens: Dict[str, TokenInfo], mint: Optional[str]) -> Optional[str]:
    token = tokens.get(mint) if mint else None
    return token.symbol if token else None


def _residual(deposited: float, withdrawn: float) -> float:
    # estimate used when the balance source cannot resolve bin balances
    residual = deposited - withdrawn
    return residual if residual > 1e-9 else 0.0


def _same_amount(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=1e-3, abs_tol=1e-9)


def _reward_slot(key: str, reward_mints: List[Optional[str]]):
    if key.startswith(REWARD_INDEX_KEY.format("")):
        index = int(key.rsplit(":", 1)[1])
        if index < len(reward_mints) and reward_mints[index]:
            return index, reward_mints[index]
        return None, None
    if key in reward_mints:
        return reward_mints.index(key), key
    if None in reward_mints:
        return reward_mints.index(None), key
    return None, None


def _side_requests(
    field_x: str,
    field_y: str,
    mint_x: Optional[str],
    mint_y: Optional[str],
    x: float,
    y: float,
    timestamp_ms: Optional[int],
) -> List[ValuationRequest]:
    requests = []
    if x and mint_x:
        requests.append(ValuationRequest(field=field_x, mint=mint_x, amount=x, timestamp_ms=timestamp_ms))
    if y and mint_y:
        requests.append(ValuationRequest(field=field_y, mint=mint_y, amount=y, timestamp_ms=timestamp_ms))
    return requests
