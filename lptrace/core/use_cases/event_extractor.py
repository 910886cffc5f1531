from typing import List, Optional

from lptrace.core.dlmm_program import (
    DLMM_PROGRAM_ID,
    HAWKSIGHT_PROGRAM_IDS,
    INSTRUCTION_LAYOUTS,
    InstructionLayout,
    decode_event,
    decode_instruction_data,
    is_event_instruction,
    iter_instructions,
    transaction_signature,
)
from lptrace.core.entities.position import EventKind, PositionEvent

REWARD_INDEX_KEY = "reward_index:{}"

_EVENT_KINDS = {
    "PositionCreate": EventKind.OPEN,
    "AddLiquidity": EventKind.DEPOSIT,
    "RemoveLiquidity": EventKind.WITHDRAW,
    "ClaimFee": EventKind.FEE_CLAIM,
    "ClaimReward": EventKind.REWARD_CLAIM,
    "PositionClose": EventKind.CLOSE,
}


def extract_position_events(
    transaction: dict,
    position_address: str,
    program_id: str = DLMM_PROGRAM_ID,
) -> List[PositionEvent]:
    """
    Decodes the DLMM CPI events of one transaction that concern the given
    position, in instruction order.
    """
    meta = transaction.get("meta") or {}
    if meta.get("err") is not None:
        return []
    signature = transaction_signature(transaction)
    if not signature:
        return []
    timestamp_ms = int(transaction.get("blockTime") or 0) * 1000
    slot = int(transaction.get("slot") or 0)

    events: List[PositionEvent] = []
    hawksight_outer = None
    current_layout: Optional[InstructionLayout] = None
    current_accounts: List[str] = []

    for outer_index, instruction, is_inner in iter_instructions(transaction):
        program = instruction.get("programId")
        if not is_inner:
            hawksight_outer = outer_index if program in HAWKSIGHT_PROGRAM_IDS else None
            current_layout = None
            current_accounts = []
        if program != program_id:
            continue

        raw = decode_instruction_data(instruction.get("data"))
        if not is_event_instruction(raw):
            current_layout = INSTRUCTION_LAYOUTS.get(raw[:8])
            current_accounts = instruction.get("accounts") or []
            continue

        decoded = decode_event(raw)
        if decoded is None or decoded.position != position_address:
            continue

        kind = _EVENT_KINDS[decoded.name]
        reward_amounts = {}
        token_x = decoded.amount_x
        token_y = decoded.amount_y
        if kind == EventKind.REWARD_CLAIM:
            reward_amounts[_reward_mint(decoded.reward_index, current_layout, current_accounts)] = decoded.amount_x
            token_x = 0
            token_y = 0

        events.append(PositionEvent(
            kind=kind,
            signature=signature,
            timestamp_ms=timestamp_ms,
            slot=slot,
            token_x_amount=token_x,
            token_y_amount=token_y,
            reward_amounts=reward_amounts,
            active_bin_id=decoded.active_bin_id,
            owner=decoded.owner,
            lb_pair=decoded.lb_pair,
            is_hawksight=hawksight_outer == outer_index,
        ))
    return events


def _reward_mint(reward_index: Optional[int], layout: Optional[InstructionLayout], accounts: List[str]) -> str:
    if layout is not None and layout.reward_mint_index is not None and len(accounts) > layout.reward_mint_index:
        return accounts[layout.reward_mint_index]
    return REWARD_INDEX_KEY.format(reward_index or 0)
