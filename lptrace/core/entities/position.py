from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class EventKind(str, Enum):
    OPEN = "open"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    FEE_CLAIM = "fee_claim"
    REWARD_CLAIM = "reward_claim"
    CLOSE = "close"


class PositionEvent(BaseModel):
    """
    One economic action against an LP position, decoded from chain data.
    Token amounts are raw integers in the mint's native decimals.
    """
    model_config = ConfigDict(frozen=True)

    kind: EventKind
    signature: str
    timestamp_ms: int
    slot: int = 0
    token_x_amount: int = 0
    token_y_amount: int = 0
    reward_amounts: Dict[str, int] = Field(default_factory=dict)
    active_bin_id: Optional[int] = None
    owner: Optional[str] = None
    lb_pair: Optional[str] = None
    is_hawksight: bool = False


class PositionReference(BaseModel):
    """A position account referenced by a submitted transaction."""
    signature: str
    position: str
    instruction: str
    lb_pair: Optional[str] = None


class PositionBalance(BaseModel):
    """
    Point-in-time state of a position account. Amounts are raw integers.
    open_x / open_y are None when the source cannot resolve bin balances.
    """
    exists: bool
    owner: Optional[str] = None
    lb_pair: Optional[str] = None
    open_x: Optional[int] = None
    open_y: Optional[int] = None
    unclaimed_fee_x: int = 0
    unclaimed_fee_y: int = 0


class ValuationRequest(BaseModel):
    """A native amount that needs a USD price. timestamp_ms None means report time."""
    field: str
    mint: str
    amount: float
    timestamp_ms: Optional[int] = None


USD_FIELDS = (
    "usd_total_x_deposits",
    "usd_total_y_deposits",
    "usd_total_x_withdraws",
    "usd_total_y_withdraws",
    "usd_claimed_x_fees",
    "usd_claimed_y_fees",
    "usd_total_unclaimed_x_fees",
    "usd_total_unclaimed_y_fees",
    "usd_total_x_fees",
    "usd_total_y_fees",
    "usd_total_open_x_balance",
    "usd_total_open_y_balance",
    "usd_total_reward1",
    "usd_total_reward2",
    "usd_deposits_value",
    "usd_withdraws_value",
    "usd_net_deposits_and_withdraws_value",
    "usd_open_balance_value",
    "usd_claimed_fees_value",
    "usd_unclaimed_fees_value",
    "usd_total_fees_value",
    "usd_profit_loss_value",
)


class Position(BaseModel):
    """
    Canonical financial record of one DLMM position.

    Native values are expressed in the pool's quote token and are always set.
    The usd_* overlay is all-or-nothing: either every field holds a value or
    every field is None.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    # Identity
    address: str = Field(alias="position")
    lb_pair: Optional[str] = None
    sender: Optional[str] = None
    pair_name: Optional[str] = None
    mint_x: Optional[str] = None
    mint_y: Optional[str] = None
    mint_x_decimals: Optional[int] = None
    mint_y_decimals: Optional[int] = None
    reward1_mint: Optional[str] = None
    reward2_mint: Optional[str] = None
    symbol_x: Optional[str] = None
    symbol_y: Optional[str] = None
    symbol_reward1: Optional[str] = None
    symbol_reward2: Optional[str] = None

    # Flags
    is_closed: bool = False
    is_hawksight: bool = False
    is_one_sided: bool = False
    inverted: bool = False
    has_no_il: bool = False
    has_no_fees: bool = True
    has_api_error: bool = False

    # Temporal
    transactions: List[str] = Field(default_factory=list)
    transaction_count: int = 0
    open_timestamp_ms: Optional[int] = None
    close_timestamp_ms: Optional[int] = None

    # Per-side totals (UI units)
    total_x_deposits: float = 0.0
    total_y_deposits: float = 0.0
    deposit_count: int = 0
    total_x_withdraws: float = 0.0
    total_y_withdraws: float = 0.0
    withdraw_count: int = 0
    net_x_deposits_and_withdraws: float = 0.0
    net_y_deposits_and_withdraws: float = 0.0
    total_claimed_x_fees: float = 0.0
    total_claimed_y_fees: float = 0.0
    fee_claim_count: int = 0
    total_unclaimed_x_fees: float = 0.0
    total_unclaimed_y_fees: float = 0.0
    total_x_fees: float = 0.0
    total_y_fees: float = 0.0
    total_open_x_balance: float = 0.0
    total_open_y_balance: float = 0.0
    total_reward1: float = 0.0
    total_reward2: float = 0.0
    reward_claim_count: int = 0

    # Quote token values
    deposits_value: float = 0.0
    withdraws_value: float = 0.0
    net_deposits_and_withdraws_value: float = 0.0
    open_balance_value: float = 0.0
    claimed_fees_value: float = 0.0
    unclaimed_fees_value: float = 0.0
    total_fees_value: float = 0.0
    # positive when the provider got back more than it put in
    profit_loss_value: float = 0.0

    # USD overlay
    usd_total_x_deposits: Optional[float] = None
    usd_total_y_deposits: Optional[float] = None
    usd_total_x_withdraws: Optional[float] = None
    usd_total_y_withdraws: Optional[float] = None
    usd_claimed_x_fees: Optional[float] = None
    usd_claimed_y_fees: Optional[float] = None
    usd_total_unclaimed_x_fees: Optional[float] = None
    usd_total_unclaimed_y_fees: Optional[float] = None
    usd_total_x_fees: Optional[float] = None
    usd_total_y_fees: Optional[float] = None
    usd_total_open_x_balance: Optional[float] = None
    usd_total_open_y_balance: Optional[float] = None
    usd_total_reward1: Optional[float] = None
    usd_total_reward2: Optional[float] = None
    usd_deposits_value: Optional[float] = None
    usd_withdraws_value: Optional[float] = None
    usd_net_deposits_and_withdraws_value: Optional[float] = None
    usd_open_balance_value: Optional[float] = None
    usd_claimed_fees_value: Optional[float] = None
    usd_unclaimed_fees_value: Optional[float] = None
    usd_total_fees_value: Optional[float] = None
    usd_profit_loss_value: Optional[float] = None

    # Amounts the valuation engine has to price; not part of the report
    valuation_requests: List[ValuationRequest] = Field(default_factory=list, exclude=True)

    @model_validator(mode="after")
    def _usd_overlay_all_or_nothing(self):
        present = [getattr(self, name) is not None for name in USD_FIELDS]
        if any(present) and not all(present):
            raise ValueError("USD overlay must be either complete or absent")
        return self

    @property
    def is_usd_valued(self) -> bool:
        return self.usd_deposits_value is not None


POSITION_COLUMNS = [
    field.alias or to_camel(name)
    for name, field in Position.model_fields.items()
    if name != "valuation_requests"
]
