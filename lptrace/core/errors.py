"""
Error taxonomy for LP Trace.

Only ConfigurationError is allowed to abort a batch run. Everything else is
caught by the pipeline and turned into a flagged output row.
"""
from typing import List, Optional


class LpTraceError(Exception):
    pass


class ConfigurationError(LpTraceError):
    """A required setting is missing or the input file lacks a declared column."""


class TransactionLayoutError(LpTraceError):
    """A DLMM instruction carries fewer accounts than its layout requires."""

    def __init__(self, signature: str, instruction: str, expected: int, actual: int):
        self.signature = signature
        self.instruction = instruction
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{instruction} in {signature} has {actual} accounts, expected at least {expected}"
        )


class ExternalServiceError(LpTraceError):
    """Transport level failure talking to an RPC node or HTTP API."""


class RateLimitedError(ExternalServiceError):
    pass


class RpcError(ExternalServiceError):
    pass


class HistoryFetchError(LpTraceError):
    """
    The transaction history of a position could not be fetched completely.
    Carries whatever events were decoded before the failure so the caller
    can still fold a partial position.
    """

    def __init__(self, address: str, message: str, events: Optional[List] = None):
        self.address = address
        self.events = list(events or [])
        super().__init__(f"{address}: {message}")


class PositionNotFoundError(HistoryFetchError):
    pass
