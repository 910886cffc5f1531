"""
Meteora DLMM program knowledge: program ids, instruction layouts, Anchor
event decoding and bin price maths.

Instruction and event discriminators are the first 8 bytes of
sha256("global:<name>") and sha256("event:<Name>") as Anchor derives them.
The account index tables below follow the DLMM program IDL and must be
updated when the program changes its account layouts.
"""
import hashlib
import struct
from typing import Dict, Iterator, List, Optional, Tuple

import base58
from pydantic import BaseModel

DLMM_PROGRAM_ID = "LBUZKhRxPF3XUpBCjp4YzTKgLccjZhTSDM9YuVaPwxo"
HAWKSIGHT_PROGRAM_IDS = frozenset({"FqGg2Y1FNxMiGd51Q6UETixQWkF5fB92MysbYogRJb3P"})

# Anchor self-CPI event marker
EVENT_IX_TAG = bytes.fromhex("e445a52e51cb9a1d")

# Tokens that act as the quote side of a pair, strongest first
QUOTE_MINTS = (
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",  # USDC
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",  # USDT
    "So11111111111111111111111111111111111111112",   # wSOL
)

NULL_PUBKEY = "11111111111111111111111111111111"


def anchor_discriminator(namespace: str, name: str) -> bytes:
    return hashlib.sha256(f"{namespace}:{name}".encode()).digest()[:8]


class InstructionLayout(BaseModel):
    name: str
    position_index: int
    lb_pair_index: Optional[int] = None
    reward_mint_index: Optional[int] = None

    @property
    def min_accounts(self) -> int:
        return max(i for i in (self.position_index, self.lb_pair_index, self.reward_mint_index) if i is not None) + 1


_LAYOUTS = [
    InstructionLayout(name="initialize_position", position_index=1, lb_pair_index=2),
    InstructionLayout(name="initialize_position_pda", position_index=2, lb_pair_index=3),
    InstructionLayout(name="initialize_position_by_operator", position_index=2, lb_pair_index=3),
    InstructionLayout(name="add_liquidity", position_index=0, lb_pair_index=1),
    InstructionLayout(name="add_liquidity_by_weight", position_index=0, lb_pair_index=1),
    InstructionLayout(name="add_liquidity_by_strategy", position_index=0, lb_pair_index=1),
    InstructionLayout(name="add_liquidity_one_side", position_index=0, lb_pair_index=1),
    InstructionLayout(name="add_liquidity_one_side_precise", position_index=0, lb_pair_index=1),
    InstructionLayout(name="add_liquidity_by_strategy_one_side", position_index=0, lb_pair_index=1),
    InstructionLayout(name="add_liquidity2", position_index=0, lb_pair_index=1),
    InstructionLayout(name="add_liquidity_by_strategy2", position_index=0, lb_pair_index=1),
    InstructionLayout(name="remove_liquidity", position_index=0, lb_pair_index=1),
    InstructionLayout(name="remove_all_liquidity", position_index=0, lb_pair_index=1),
    InstructionLayout(name="remove_liquidity_by_range", position_index=0, lb_pair_index=1),
    InstructionLayout(name="remove_liquidity2", position_index=0, lb_pair_index=1),
    InstructionLayout(name="remove_liquidity_by_range2", position_index=0, lb_pair_index=1),
    InstructionLayout(name="claim_fee", position_index=1, lb_pair_index=0),
    InstructionLayout(name="claim_fee2", position_index=1, lb_pair_index=0),
    InstructionLayout(name="claim_reward", position_index=1, lb_pair_index=0, reward_mint_index=6),
    InstructionLayout(name="claim_reward2", position_index=1, lb_pair_index=0, reward_mint_index=4),
    InstructionLayout(name="close_position", position_index=0, lb_pair_index=1),
    InstructionLayout(name="close_position2", position_index=0),
    InstructionLayout(name="close_position_if_empty", position_index=0),
]

INSTRUCTION_LAYOUTS: Dict[bytes, InstructionLayout] = {
    anchor_discriminator("global", layout.name): layout for layout in _LAYOUTS
}


class DlmmEvent(BaseModel):
    name: str
    position: str
    lb_pair: Optional[str] = None
    owner: Optional[str] = None
    amount_x: int = 0
    amount_y: int = 0
    active_bin_id: Optional[int] = None
    reward_index: Optional[int] = None


def _pubkey(data: bytes, offset: int) -> str:
    return base58.b58encode(data[offset:offset + 32]).decode("ascii")


def _decode_liquidity(name: str, payload: bytes) -> DlmmEvent:
    # lb_pair, from, position, amounts[2], active_bin_id
    amount_x, amount_y, active_bin_id = struct.unpack_from("<QQi", payload, 96)
    return DlmmEvent(
        name=name,
        lb_pair=_pubkey(payload, 0),
        owner=_pubkey(payload, 32),
        position=_pubkey(payload, 64),
        amount_x=amount_x,
        amount_y=amount_y,
        active_bin_id=active_bin_id,
    )


def _decode_claim_fee(name: str, payload: bytes) -> DlmmEvent:
    fee_x, fee_y = struct.unpack_from("<QQ", payload, 96)
    return DlmmEvent(
        name=name,
        lb_pair=_pubkey(payload, 0),
        position=_pubkey(payload, 32),
        owner=_pubkey(payload, 64),
        amount_x=fee_x,
        amount_y=fee_y,
    )


def _decode_claim_reward(name: str, payload: bytes) -> DlmmEvent:
    reward_index, total_reward = struct.unpack_from("<QQ", payload, 96)
    return DlmmEvent(
        name=name,
        lb_pair=_pubkey(payload, 0),
        position=_pubkey(payload, 32),
        owner=_pubkey(payload, 64),
        amount_x=total_reward,
        reward_index=reward_index,
    )


def _decode_position_create(name: str, payload: bytes) -> DlmmEvent:
    return DlmmEvent(
        name=name,
        lb_pair=_pubkey(payload, 0),
        position=_pubkey(payload, 32),
        owner=_pubkey(payload, 64),
    )


def _decode_position_close(name: str, payload: bytes) -> DlmmEvent:
    return DlmmEvent(name=name, position=_pubkey(payload, 0), owner=_pubkey(payload, 32))


_EVENT_DECODERS = {
    "AddLiquidity": _decode_liquidity,
    "RemoveLiquidity": _decode_liquidity,
    "ClaimFee": _decode_claim_fee,
    "ClaimReward": _decode_claim_reward,
    "PositionCreate": _decode_position_create,
    "PositionClose": _decode_position_close,
}

EVENT_DISCRIMINATORS: Dict[bytes, str] = {
    anchor_discriminator("event", name): name for name in _EVENT_DECODERS
}


def decode_instruction_data(data: Optional[str]) -> bytes:
    if not data:
        return b""
    try:
        return base58.b58decode(data)
    except ValueError:
        return b""


def is_event_instruction(raw: bytes) -> bool:
    return raw[:8] == EVENT_IX_TAG


def decode_event(raw: bytes) -> Optional[DlmmEvent]:
    """Decodes an Anchor CPI event instruction, None for events we do not track."""
    if not is_event_instruction(raw):
        return None
    name = EVENT_DISCRIMINATORS.get(raw[8:16])
    if name is None:
        return None
    try:
        return _EVENT_DECODERS[name](name, raw[16:])
    except struct.error:
        return None


def encode_event(event: DlmmEvent) -> bytes:
    """Inverse of decode_event."""
    b58 = base58.b58decode
    disc = anchor_discriminator("event", event.name)
    if event.name in ("AddLiquidity", "RemoveLiquidity"):
        payload = b58(event.lb_pair) + b58(event.owner) + b58(event.position)
        payload += struct.pack("<QQi", event.amount_x, event.amount_y, event.active_bin_id or 0)
    elif event.name == "ClaimFee":
        payload = b58(event.lb_pair) + b58(event.position) + b58(event.owner)
        payload += struct.pack("<QQ", event.amount_x, event.amount_y)
    elif event.name == "ClaimReward":
        payload = b58(event.lb_pair) + b58(event.position) + b58(event.owner)
        payload += struct.pack("<QQ", event.reward_index or 0, event.amount_x)
    elif event.name == "PositionCreate":
        payload = b58(event.lb_pair) + b58(event.position) + b58(event.owner)
    else:
        payload = b58(event.position) + b58(event.owner)
    return EVENT_IX_TAG + disc + payload


def iter_instructions(transaction: dict) -> Iterator[Tuple[int, dict, bool]]:
    """
    Yields (outer_index, instruction, is_inner) for every top-level
    instruction followed by the inner instructions it invoked.
    """
    message = transaction.get("transaction", {}).get("message", {})
    meta = transaction.get("meta") or {}
    inner_by_index: Dict[int, List[dict]] = {}
    for group in meta.get("innerInstructions") or []:
        inner_by_index.setdefault(group.get("index"), []).extend(group.get("instructions") or [])

    for index, instruction in enumerate(message.get("instructions") or []):
        yield index, instruction, False
        for inner in inner_by_index.get(index, []):
            yield index, inner, True


def transaction_signature(transaction: dict) -> Optional[str]:
    signatures = transaction.get("transaction", {}).get("signatures") or []
    return signatures[0] if signatures else None


def bin_price(active_bin_id: int, bin_step: int, decimals_x: int, decimals_y: int) -> float:
    """Price of one X in Y (UI units) at the given bin."""
    return (1 + bin_step / 10_000) ** active_bin_id * 10 ** (decimals_x - decimals_y)


def quote_rank(mint: Optional[str]) -> int:
    try:
        return QUOTE_MINTS.index(mint)
    except ValueError:
        return len(QUOTE_MINTS)


def is_inverted(mint_x: Optional[str], mint_y: Optional[str]) -> bool:
    """True when X is the stronger quote token, so values are expressed in X."""
    return quote_rank(mint_x) < quote_rank(mint_y)


# PositionV2 account layout
_FEE_INFOS_OFFSET = 8 + 32 + 32 + 16 * 70 + 48 * 70
_FEE_INFO_SIZE = 48
MAX_BIN_PER_POSITION = 70
POSITION_ACCOUNT_MIN_SIZE = _FEE_INFOS_OFFSET + _FEE_INFO_SIZE * MAX_BIN_PER_POSITION


class PositionAccountState(BaseModel):
    lb_pair: str
    owner: str
    pending_fee_x: int
    pending_fee_y: int


def decode_position_account(data: bytes) -> Optional[PositionAccountState]:
    """
    Reads owner, pair and the pending fees recorded per bin. Pending fees
    are only refreshed when the position is touched, so they are a lower
    bound of what is claimable.
    """
    if len(data) < POSITION_ACCOUNT_MIN_SIZE:
        return None
    pending_x = 0
    pending_y = 0
    for i in range(MAX_BIN_PER_POSITION):
        offset = _FEE_INFOS_OFFSET + i * _FEE_INFO_SIZE + 32
        fee_x, fee_y = struct.unpack_from("<QQ", data, offset)
        pending_x += fee_x
        pending_y += fee_y
    return PositionAccountState(
        lb_pair=_pubkey(data, 8),
        owner=_pubkey(data, 40),
        pending_fee_x=pending_x,
        pending_fee_y=pending_y,
    )
