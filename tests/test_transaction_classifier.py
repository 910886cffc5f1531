"""
Tests for locating position accounts in parsed transactions.
"""
import pytest

from conftest import POOL, POSITION, make_transaction, program_ix, pubkey, signature
from lptrace.core.dlmm_program import DLMM_PROGRAM_ID
from lptrace.core.errors import TransactionLayoutError
from lptrace.core.use_cases.transaction_classifier import TransactionClassifier

OTHER_PROGRAM = pubkey(99)


def test_no_dlmm_instruction_yields_nothing():
    tx = make_transaction(signature(5), [program_ix("add_liquidity", [POSITION, POOL], program_id=OTHER_PROGRAM)])
    assert TransactionClassifier().classify(tx) == []


def test_unknown_instruction_is_ignored():
    tx = make_transaction(signature(5), [program_ix("swap", [POOL, pubkey(1), pubkey(2)])])
    assert TransactionClassifier().classify(tx) == []


def test_position_read_from_layout_index():
    opener = pubkey(80)
    tx = make_transaction(signature(5), [
        program_ix("initialize_position", [opener, POSITION, POOL, pubkey(81)]),
        program_ix("claim_fee", [POOL, POSITION, pubkey(82)]),
    ])
    [ref] = TransactionClassifier().classify(tx)
    assert ref.position == POSITION
    assert ref.signature == signature(5)
    assert ref.instruction == "initialize_position"
    assert ref.lb_pair == POOL


def test_inner_instructions_are_scanned():
    tx = make_transaction(
        signature(6),
        [program_ix("deposit", [pubkey(1)], program_id=OTHER_PROGRAM)],
        inner={0: [program_ix("remove_liquidity", [POSITION, POOL, pubkey(3)])]},
    )
    [ref] = TransactionClassifier().classify(tx)
    assert ref.position == POSITION
    assert ref.instruction == "remove_liquidity"


def test_short_account_list_is_reported():
    tx = make_transaction(signature(7), [program_ix("claim_fee", [POOL])])
    with pytest.raises(TransactionLayoutError) as exc:
        TransactionClassifier().classify(tx)
    assert exc.value.instruction == "claim_fee"
    assert exc.value.expected == 2
    assert exc.value.actual == 1


def test_custom_program_ids():
    tx = make_transaction(signature(8), [program_ix("add_liquidity", [POSITION, POOL], program_id=OTHER_PROGRAM)])
    refs = TransactionClassifier(program_ids=(DLMM_PROGRAM_ID, OTHER_PROGRAM)).classify(tx)
    assert [r.position for r in refs] == [POSITION]
