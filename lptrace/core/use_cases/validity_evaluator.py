from typing import Optional

from lptrace.core.entities.position import Position
from lptrace.core.entities.verdict import ProfitPercentages, Thresholds, ValidityVerdict
from lptrace.core.use_cases.usd_valuation import profit_percentages

MS_PER_HOUR = 60 * 60 * 1000


def evaluate(
    position: Optional[Position],
    wallet: Optional[str],
    thresholds: Thresholds,
    require_wallet_match: bool = True,
    percentages: Optional[ProfitPercentages] = None,
) -> ValidityVerdict:
    """
    Checks a valued position against the program thresholds.
    Pure; a missing input makes the affected check False instead of raising.
    """
    if position is None:
        return ValidityVerdict()

    if percentages is None:
        percentages = profit_percentages(position, thresholds.profit_sanity_ceiling)

    if percentages.uses_usd:
        valid_profit_percent = percentages.usd > thresholds.min_profit_percent / 100
    elif percentages.quote is not None:
        valid_profit_percent = percentages.quote > thresholds.min_profit_percent
    else:
        valid_profit_percent = False

    valid_usd_amount = (
        position.usd_deposits_value is not None
        and abs(position.usd_deposits_value) > thresholds.min_usd_deposit
    )

    opened = position.open_timestamp_ms
    closed = position.close_timestamp_ms
    valid_date = (
        opened is not None
        and closed is not None
        and opened >= thresholds.window_start_ms
        and closed <= thresholds.window_end_ms
    )
    valid_time_open = (
        opened is not None
        and closed is not None
        and closed - opened >= thresholds.min_hours_open * MS_PER_HOUR
    )
    valid_wallet = wallet is not None and position.sender is not None and wallet == position.sender

    valid_submission = (
        valid_profit_percent
        and valid_usd_amount
        and valid_date
        and valid_time_open
        and (valid_wallet or not require_wallet_match)
        and position.is_closed
        and not position.has_api_error
    )
    return ValidityVerdict(
        valid_profit_percent=valid_profit_percent,
        valid_usd_amount=valid_usd_amount,
        valid_date=valid_date,
        valid_time_open=valid_time_open,
        valid_wallet=valid_wallet,
        valid_submission=valid_submission,
    )
