"""
Cleansing and format checks for submitted signatures and wallets.
"""
import logging
import re
from typing import Any, Dict, List, Optional

import base58

from lptrace.core.entities.submission import PipelineConfig, Submission
from lptrace.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

# explorer links such as https://solscan.io/tx/<signature>
_URL_PREFIX = re.compile(r"https://([^/]+/)+")


def cleanse(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = _URL_PREFIX.sub("", value.strip())
    # drop query strings such as ?cluster=mainnet
    return cleaned.split("?", 1)[0] or None


def _decodes(value: str) -> bool:
    try:
        base58.b58decode(value)
        return True
    except ValueError:
        return False


def is_valid_signature(signature: Optional[str]) -> bool:
    return signature is not None and 86 <= len(signature) <= 88 and _decodes(signature)


def is_valid_wallet(wallet: Optional[str]) -> bool:
    return wallet is not None and 43 <= len(wallet) <= 44 and _decodes(wallet)


def build_submissions(rows: List[Dict[str, Any]], columns: List[str], config: PipelineConfig) -> List[Submission]:
    """
    Turns input rows into submissions. A missing signature column aborts the
    run; malformed values only mark their own row.
    """
    if rows and not config.signature_source.exists_in(columns):
        raise ConfigurationError(f"Signature column {config.signature_source!r} was not found in input data")
    if rows and config.wallet_source is not None and not config.wallet_source.exists_in(columns):
        raise ConfigurationError(f"Wallet column {config.wallet_source!r} was not found in input data")

    submissions = []
    for index, row in enumerate(rows):
        original_signature = config.signature_source.read(row, columns)
        original_wallet = config.wallet_source.read(row, columns) if config.wallet_source else None
        signature = cleanse(original_signature)
        wallet = cleanse(original_wallet)

        input_error = None
        if signature is None:
            input_error = "missing_signature"
        elif not is_valid_signature(signature):
            input_error = "invalid_signature"
        elif config.wallet_source is not None and not is_valid_wallet(wallet):
            input_error = "invalid_wallet"

        if input_error:
            logger.debug(f"Row {index}: {input_error}")
        submissions.append(Submission(
            row_index=index,
            fields=row,
            original_signature=original_signature,
            original_wallet=original_wallet,
            signature=None if input_error else signature,
            wallet=None if input_error else wallet,
            input_error=input_error,
        ))
    return submissions
