from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from lptrace.core.entities.position import POSITION_COLUMNS
from lptrace.core.entities.result import NotFoundResult, SubmissionResult
from lptrace.core.entities.submission import Submission

REPORT_COLUMNS = [
    "resultStatus",
    "notFoundReason",
    "usdDepositAmount",
    "usdProfitPercent",
    "quoteProfitPercent",
    "openDate",
    "closeDate",
    "validProfitPercent",
    "validDate",
    "validTimeOpen",
    "validUsdAmount",
    "validWallet",
    "validSubmission",
]

OUTPUT_COLUMNS = REPORT_COLUMNS + POSITION_COLUMNS

# Submitted fields that share a name with a generated column are kept under this prefix
INPUT_PREFIX = "input_"


def input_column(name: str) -> str:
    return f"{INPUT_PREFIX}{name}" if name in OUTPUT_COLUMNS else name


def _iso(timestamp_ms: Optional[int]) -> Optional[str]:
    if timestamp_ms is None:
        return None
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def assemble(submission: Submission, result: SubmissionResult) -> Dict[str, Any]:
    """
    One output row: the original submission fields followed by every column
    of OUTPUT_COLUMNS. All columns are present whatever the variant is. A
    submitted field named like a generated column is renamed with INPUT_PREFIX.
    """
    row: Dict[str, Any] = {input_column(name): value for name, value in submission.fields.items()}
    row.update({column: None for column in OUTPUT_COLUMNS})
    row["resultStatus"] = result.kind

    if isinstance(result, NotFoundResult):
        row["notFoundReason"] = result.reason
        return row

    position = result.position
    verdict = result.verdict
    row.update({
        "usdDepositAmount": position.usd_deposits_value,
        "usdProfitPercent": result.percentages.usd,
        "quoteProfitPercent": result.percentages.quote,
        "openDate": _iso(position.open_timestamp_ms),
        "closeDate": _iso(position.close_timestamp_ms),
        "validProfitPercent": verdict.valid_profit_percent,
        "validDate": verdict.valid_date,
        "validTimeOpen": verdict.valid_time_open,
        "validUsdAmount": verdict.valid_usd_amount,
        "validWallet": verdict.valid_wallet,
        "validSubmission": verdict.valid_submission,
    })
    row.update(position.model_dump(by_alias=True))
    return row


def assemble_all(submissions: List[Submission], results: Dict[int, SubmissionResult]) -> List[Dict[str, Any]]:
    return [
        assemble(s, results.get(s.row_index, NotFoundResult(reason="no_position")))
        for s in sorted(submissions, key=lambda s: s.row_index)
    ]
