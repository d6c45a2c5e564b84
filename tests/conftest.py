# Shared pytest fixtures
from __future__ import annotations

import re
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pandas as pd
import pytest
from openpyxl.utils.cell import column_index_from_string

from pfmt_reconcile.logging.init import reset_logging

_REF = re.compile(r"^([A-Z]{1,3})([1-9][0-9]*)$")

WorkbookFactory = Callable[..., Path]


@pytest.fixture(autouse=True)
def _reset_logging_state():
    # handlers bind sys.stdout at creation; capsys swaps it per test
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """source_directory: ./data
persist_invalid_projects: false
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "pfmt.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def sample_mapping_yaml() -> str:
    return """default_sheet: SP Fields
tables:
  sp_fields:
    taf: {primary: B2, type: currency}
    eac: {primary: B6, type: currency}
    percent_complete_taf: {primary: B11, type: percentage}
  project_info:
    project_name:
      primary: Validations!C6
      alternatives: [Target Tracking!B3]
      type: text
budget_categories:
  construction: {sheet: Summary (Rpt), label: C8, budget: D8, amendments: e8}
identity_fallbacks:
  project_name: [Summary (Rpt)!B2]
defaults:
  project_category: Infrastructure
entity_aliases:
  taf: approved_tpc
blank_sentinels: ["--", "N/A"]
required_sheets: [SP Fields]
funding_sources:
  sheet: SP Fund Src
  label_column: a
  amount_column: b
  first_row: 2
  last_row: 5
"""


@pytest.fixture()
def write_mapping(temp_workdir: Path, sample_mapping_yaml: str) -> Path:
    path = temp_workdir / "config" / "mapping.yml"
    path.write_text(sample_mapping_yaml, encoding="utf-8")
    return path


def _grid(cells: dict[str, Any]) -> list[list[Any]]:
    placed: list[tuple[int, int, Any]] = []
    for ref, value in cells.items():
        m = _REF.match(ref.upper())
        assert m, f"bad cell reference in fixture: {ref}"
        placed.append((int(m.group(2)) - 1, column_index_from_string(m.group(1)) - 1, value))
    n_rows = max(r for r, _, _ in placed) + 1
    n_cols = max(c for _, c, _ in placed) + 1
    grid: list[list[Any]] = [[None] * n_cols for _ in range(n_rows)]
    for r, c, value in placed:
        grid[r][c] = value
    return grid


def write_workbook(path: Path, sheets: dict[str, dict[str, Any]]) -> Path:
    """Write a real .xlsx where each sheet is given as ``{cell_ref: value}``."""
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for sheet_name, cells in sheets.items():
            df = pd.DataFrame(_grid(cells) if cells else [[None]])
            df.to_excel(writer, sheet_name=sheet_name, header=False, index=False)
    return path


@pytest.fixture()
def make_workbook(temp_workdir: Path) -> WorkbookFactory:
    """Factory writing workbooks into ``data/``."""

    def _make(name: str, sheets: dict[str, dict[str, Any]]) -> Path:
        return write_workbook(temp_workdir / "data" / name, sheets)

    return _make


@pytest.fixture()
def pfmt_sheets() -> dict[str, dict[str, Any]]:
    """Cell layout of a typical PFMT v3.0 workbook."""
    return {
        "SP Fields": {
            "A1": "SPOProjectID", "B1": "CPD-2041",
            "A2": "SPOApprovedTPC", "B2": "$5,000,000",
            "A3": "SPOBudgetTotal", "B3": 4800000,
            "A6": "SPOEAC", "B6": "$5,200,000",
            "A11": "SPOPercentCompleteTAFBudget", "B11": 0.45,
            "A15": "SPOTotalExpenditurestoDate", "B15": "1,250,000.50",
        },
        "Validations": {
            "B6": "Project Name", "C6": "Red Deer Justice Centre",
            "B9": "Description", "C9": "New courthouse",
            "B16": "Region", "C16": "Central",
        },
        "Summary (Rpt)": {
            "C8": "Construction", "D8": 3500000, "E8": "(25,000)",
        },
        "SP Fund Src": {
            "A1": "Source", "B1": "Amount",
            "A2": "Provincial", "B2": 4000000,
            "A3": "Federal", "B3": "$1,000,000",
            "A4": "Donations", "B4": 0,
        },
    }
