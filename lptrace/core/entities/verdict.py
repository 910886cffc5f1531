from typing import Optional

from pydantic import BaseModel


class Thresholds(BaseModel):
    """Program eligibility thresholds. Window bounds are epoch milliseconds."""
    min_usd_deposit: float
    min_profit_percent: float = 0.0
    min_hours_open: float
    window_start_ms: int
    window_end_ms: int
    profit_sanity_ceiling: float = 10.0


class ProfitPercentages(BaseModel):
    usd: Optional[float] = None
    quote: Optional[float] = None
    # USD when available and below the sanity ceiling, quote otherwise
    preferred: Optional[float] = None
    uses_usd: bool = False


class ValidityVerdict(BaseModel):
    valid_profit_percent: bool = False
    valid_usd_amount: bool = False
    valid_date: bool = False
    valid_time_open: bool = False
    valid_wallet: bool = False
    valid_submission: bool = False
