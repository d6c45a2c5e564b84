from __future__ import annotations

import json

from pfmt_reconcile.models.error_record import ErrorRecord, ErrorType
from pfmt_reconcile.models.extraction import CoercionFailure
from pfmt_reconcile.models.mapping import SourceLocation

"""Unit tests for the ErrorRecord model."""

KEYS = {"timestamp", "file", "sheet", "cell", "field", "error_type", "message"}


def test_file_level_record_has_empty_cell_fields():
    rec = ErrorRecord.create("broken.xlsx", ErrorType.FILE_READ_ERROR, "cannot open workbook")
    assert rec.sheet == ""
    assert rec.cell == ""
    assert rec.field == ""
    data = json.loads(rec.to_json_line())
    assert set(data) == KEYS
    assert data["error_type"] == "FILE_READ_ERROR"
    assert data["timestamp"].endswith("Z")


def test_from_coercion_failure():
    failure = CoercionFailure(
        field="taf", location=SourceLocation("SP Fields", "B2"), raw="TBD", reason="NotANumber"
    )
    rec = ErrorRecord.from_coercion_failure("p.xlsx", failure)
    assert (rec.sheet, rec.cell, rec.field) == ("SP Fields", "B2", "taf")
    assert rec.error_type == ErrorType.COERCION_FAILURE
    assert "'TBD'" in rec.message
    assert "NotANumber" in rec.message


def test_json_line_is_single_line_and_keeps_unicode():
    rec = ErrorRecord.create("Montréal.xlsx", ErrorType.VALIDATION_ERROR, "line1\nline2")
    line = rec.to_json_line()
    assert "\n" not in line
    assert "Montréal" in line
    assert json.loads(line)["message"] == "line1\nline2"
