import logging
from typing import Dict, Iterable, List, Optional

from lptrace.core.dlmm_program import (
    DLMM_PROGRAM_ID,
    INSTRUCTION_LAYOUTS,
    decode_instruction_data,
    is_event_instruction,
    iter_instructions,
    transaction_signature,
)
from lptrace.core.entities.pair import DlmmPair
from lptrace.core.entities.position import PositionReference
from lptrace.core.errors import TransactionLayoutError

logger = logging.getLogger(__name__)


class TransactionClassifier:
    """
    Finds the LP position accounts a parsed transaction touches.

    Only instructions addressed to a known DLMM program id are inspected,
    top-level and inner alike. The position account is read by the fixed
    index of the instruction's layout; an instruction carrying fewer accounts
    than its layout requires raises TransactionLayoutError.
    """

    def __init__(
        self,
        program_ids: Iterable[str] = (DLMM_PROGRAM_ID,),
        pairs: Optional[Dict[str, DlmmPair]] = None,
    ):
        self.program_ids = frozenset(program_ids)
        self.pairs = pairs or {}

    def classify(self, transaction: dict) -> List[PositionReference]:
        signature = transaction_signature(transaction)
        if not signature:
            return []

        references: List[PositionReference] = []
        seen = set()
        for _, instruction, _ in iter_instructions(transaction):
            if instruction.get("programId") not in self.program_ids:
                continue
            raw = decode_instruction_data(instruction.get("data"))
            if is_event_instruction(raw):
                continue
            layout = INSTRUCTION_LAYOUTS.get(raw[:8])
            if layout is None:
                # swaps and admin instructions reference no position
                continue

            accounts = instruction.get("accounts") or []
            if len(accounts) < layout.min_accounts:
                raise TransactionLayoutError(signature, layout.name, layout.min_accounts, len(accounts))

            position = accounts[layout.position_index]
            if position in seen:
                continue
            seen.add(position)

            lb_pair = accounts[layout.lb_pair_index] if layout.lb_pair_index is not None else None
            if lb_pair is not None and self.pairs and lb_pair not in self.pairs:
                logger.debug(f"{signature}: pair {lb_pair} is not in the pair directory")
            references.append(PositionReference(
                signature=signature,
                position=position,
                instruction=layout.name,
                lb_pair=lb_pair,
            ))
        return references
