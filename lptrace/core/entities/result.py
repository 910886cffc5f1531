"""
Per-submission outcome. The report assembler projects any of these variants
into the same fixed output schema.
"""
from typing import Literal, Union

from pydantic import BaseModel

from lptrace.core.entities.position import Position
from lptrace.core.entities.verdict import ProfitPercentages, ValidityVerdict


class ValuedResult(BaseModel):
    kind: Literal["valued"] = "valued"
    position: Position
    percentages: ProfitPercentages
    verdict: ValidityVerdict


class UnpricedResult(BaseModel):
    """Native values are usable, the USD overlay is missing."""
    kind: Literal["unpriced"] = "unpriced"
    position: Position
    percentages: ProfitPercentages
    verdict: ValidityVerdict


class NotFoundResult(BaseModel):
    kind: Literal["not_found"] = "not_found"
    # invalid_input, missing_signature, transaction_not_found,
    # no_position or reconstruction_failed
    reason: str


SubmissionResult = Union[ValuedResult, UnpricedResult, NotFoundResult]
