"""
Tests for projecting results into the fixed output schema.
"""
from conftest import T0
from lptrace.core.entities.result import NotFoundResult, UnpricedResult
from lptrace.core.entities.submission import Submission
from lptrace.core.entities.verdict import ProfitPercentages, ValidityVerdict
from lptrace.core.use_cases.position_reconstructor import PositionReconstructor
from lptrace.core.use_cases.report_assembler import OUTPUT_COLUMNS, assemble, assemble_all, input_column


def submission(row_index=0):
    return Submission(row_index=row_index, fields={"tx": "abc", "note": "hi"}, original_signature="abc")


def test_every_variant_has_the_same_columns(pair, tokens, closed_history):
    position = PositionReconstructor.reconstruct("pos", closed_history, pair=pair, tokens=tokens)
    unpriced = UnpricedResult(position=position, percentages=ProfitPercentages(quote=0.1), verdict=ValidityVerdict())
    missing = NotFoundResult(reason="transaction_not_found")

    rows = [assemble(submission(), unpriced), assemble(submission(), missing)]
    assert list(rows[0].keys()) == list(rows[1].keys())
    assert set(OUTPUT_COLUMNS) <= set(rows[0])


def test_not_found_row_keeps_input_fields():
    row = assemble(submission(), NotFoundResult(reason="no_position"))
    assert row["tx"] == "abc"
    assert row["note"] == "hi"
    assert row["resultStatus"] == "not_found"
    assert row["notFoundReason"] == "no_position"
    assert row["position"] is None
    assert row["validSubmission"] is None


def test_position_fields_use_report_names(pair, tokens, closed_history):
    position = PositionReconstructor.reconstruct("pos", closed_history, pair=pair, tokens=tokens)
    row = assemble(
        submission(),
        UnpricedResult(position=position, percentages=ProfitPercentages(quote=0.1), verdict=ValidityVerdict()),
    )
    assert row["resultStatus"] == "unpriced"
    assert row["position"] == "pos"
    assert row["depositsValue"] == position.deposits_value
    assert row["openDate"] == "2024-06-01T00:00:00.000Z"
    assert row["openTimestampMs"] == T0
    assert row["quoteProfitPercent"] == 0.1
    assert row["usdDepositsValue"] is None
    assert row["validSubmission"] is False
    assert "valuationRequests" not in row


def test_assemble_all_orders_by_row_and_fills_gaps():
    rows = assemble_all([submission(1), submission(0)], {1: NotFoundResult(reason="invalid_input")})
    assert [r["notFoundReason"] for r in rows] == ["no_position", "invalid_input"]


def test_input_field_named_like_output_column_is_kept(pair, tokens, closed_history):
    position = PositionReconstructor.reconstruct("pos", closed_history, pair=pair, tokens=tokens)
    submitted = Submission(row_index=0, fields={"tx": "abc", "position": "my note"}, original_signature="abc")
    row = assemble(
        submitted,
        UnpricedResult(position=position, percentages=ProfitPercentages(quote=0.1), verdict=ValidityVerdict()),
    )
    assert row["input_position"] == "my note"
    assert row["position"] == "pos"
    assert input_column("position") == "input_position"
    assert input_column("tx") == "tx"
