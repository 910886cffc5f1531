from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from lptrace.core.entities.pair import DlmmPair, TokenInfo
from lptrace.core.entities.position import PositionBalance, PositionEvent


class ITransactionSource(ABC):
    @abstractmethod
    async def get_parsed_transactions(self, signatures: List[str]) -> Dict[str, Optional[dict]]:
        """
        Returns jsonParsed transactions keyed by signature, None for the ones
        the node does not know. Callers chunk the input.
        """
        pass


class IPositionHistorySource(ABC):
    @abstractmethod
    async def fetch_history(self, address: str) -> List[PositionEvent]:
        """
        Returns every event of the position, earliest first.
        Raises HistoryFetchError (or PositionNotFoundError) on failure.
        """
        pass

    @abstractmethod
    async def get_position_balance(self, address: str) -> PositionBalance:
        pass


class IPairDirectory(ABC):
    @abstractmethod
    async def list_pairs(self) -> List[DlmmPair]:
        pass


class ITokenDirectory(ABC):
    @abstractmethod
    async def list_tokens(self) -> Dict[str, TokenInfo]:
        pass


class IPriceOracle(ABC):
    @abstractmethod
    async def price_at(self, mint: str, timestamp_ms: int) -> Optional[float]:
        """USD price per unit of `mint` at `timestamp_ms`, None when unavailable."""
        pass
