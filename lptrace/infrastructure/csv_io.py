import logging
from typing import Any, Dict, List, Tuple

import pandas as pd

from lptrace.core.use_cases.report_assembler import OUTPUT_COLUMNS, input_column

logger = logging.getLogger(__name__)


def read_rows(path: str) -> Tuple[List[str], List[Dict[str, Any]]]:
    """
    Reads the submissions file. Every cell is kept as text so signatures and
    wallets are never coerced into numbers; empty cells become "".
    """
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    columns = [str(c) for c in df.columns]
    rows = df.to_dict(orient="records")
    logger.info(f"Read {len(rows)} submissions from {path}")
    return columns, rows


def _cell(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value)
    return value


def write_rows(path: str, rows: List[Dict[str, Any]], input_columns: List[str]) -> None:
    """Input columns first, then the fixed output schema."""
    columns = [input_column(c) for c in input_columns] + OUTPUT_COLUMNS
    df = pd.DataFrame([{k: _cell(v) for k, v in row.items()} for row in rows], columns=columns)
    df.to_csv(path, index=False)
    logger.info(f"Wrote {len(df)} rows to {path}")
