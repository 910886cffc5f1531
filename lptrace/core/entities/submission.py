"""
Submission rows and the batch pipeline configuration.
"""
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel

from lptrace.core.entities.verdict import Thresholds


class ByLabel(BaseModel):
    kind: Literal["label"] = "label"
    label: str

    def read(self, row: Dict[str, Any], columns: List[str]) -> Optional[str]:
        value = row.get(self.label)
        return str(value) if value not in (None, "") else None

    def exists_in(self, columns: List[str]) -> bool:
        return self.label in columns


class ByIndex(BaseModel):
    kind: Literal["index"] = "index"
    index: int

    def read(self, row: Dict[str, Any], columns: List[str]) -> Optional[str]:
        if self.index >= len(columns):
            return None
        value = row.get(columns[self.index])
        return str(value) if value not in (None, "") else None

    def exists_in(self, columns: List[str]) -> bool:
        return 0 <= self.index < len(columns)


ColumnSource = Union[ByLabel, ByIndex]


class Submission(BaseModel):
    """
    One input row. `signature` and `wallet` hold the cleansed values and are
    only set when they passed format validation.
    """
    row_index: int
    fields: Dict[str, Any]
    original_signature: Optional[str] = None
    original_wallet: Optional[str] = None
    signature: Optional[str] = None
    wallet: Optional[str] = None
    input_error: Optional[str] = None


class PipelineConfig(BaseModel):
    signature_source: ColumnSource
    wallet_source: Optional[ColumnSource] = None
    require_wallet_match: bool = True
    thresholds: Thresholds
    throttle_limit: int = 10
    chunk_size: int = 250
    include_fees_in_profit: bool = True
