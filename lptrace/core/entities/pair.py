from typing import Optional

from pydantic import BaseModel


class DlmmPair(BaseModel):
    """
    Liquidity pool entry from the DLMM pair directory.
    Decimals are optional because the directory does not always carry them;
    the token directory fills the gap.
    """
    address: str
    name: str = ""
    mint_x: str
    mint_y: str
    bin_step: int
    reward_mint_x: Optional[str] = None
    reward_mint_y: Optional[str] = None
    mint_x_decimals: Optional[int] = None
    mint_y_decimals: Optional[int] = None


class TokenInfo(BaseModel):
    address: str
    symbol: str
    decimals: int
