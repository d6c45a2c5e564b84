from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import openpyxl
import pandas as pd
from openpyxl.utils.cell import column_index_from_string, coordinate_from_string, get_column_letter

"""Workbook reader capability.

The extraction pass only needs ``read(sheet, cell)`` and the list of sheet
names; it never parses the workbook format itself. ExcelWorkbookReader
serves cells straight from openpyxl (cached formula results, not formulas)
so that A1 references address exactly the cell Excel shows, including in
sheets that start with blank rows. read_sheet_frames() gives the pandas view
of every sheet for --inspect-data.
"""

__all__ = [
    "ExcelWorkbookReader",
    "InMemoryWorkbookReader",
    "WorkbookReadError",
    "WorkbookReader",
    "read_sheet_frames",
]

EXCEL_SUFFIXES = (".xlsx", ".xlsm")


class WorkbookReadError(Exception):
    """Raised when a workbook file cannot be opened."""


@runtime_checkable
class WorkbookReader(Protocol):
    @property
    def sheet_names(self) -> tuple[str, ...]:
        ...

    def read(self, sheet: str, cell: str) -> Any:
        """Raw cell value, or None when the sheet/cell is missing or empty."""
        ...

    def scan(self, sheet: str, max_rows: int, max_cols: int) -> Iterator[tuple[str, Any]]:
        """Yield (cell reference, raw value) for the top-left block of a sheet."""
        ...


class ExcelWorkbookReader:
    """Cell reader over an .xlsx / .xlsm file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        try:
            self._wb = openpyxl.load_workbook(self.path, data_only=True)
        except Exception as e:  # openpyxl raises a wide range of types for bad files
            raise WorkbookReadError(f"cannot open workbook {self.path.name}: {e}") from e

    def __enter__(self) -> ExcelWorkbookReader:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._wb.close()

    @property
    def sheet_names(self) -> tuple[str, ...]:
        return tuple(self._wb.sheetnames)

    def read(self, sheet: str, cell: str) -> Any:
        if sheet not in self._wb.sheetnames:
            return None
        column, row = coordinate_from_string(cell)
        return self._wb[sheet].cell(row=row, column=column_index_from_string(column)).value

    def scan(self, sheet: str, max_rows: int, max_cols: int) -> Iterator[tuple[str, Any]]:
        if sheet not in self._wb.sheetnames:
            return
        ws = self._wb[sheet]
        for row in ws.iter_rows(min_row=1, max_row=max_rows, max_col=max_cols):
            for cell in row:
                if cell.value is not None:
                    yield cell.coordinate, cell.value


class InMemoryWorkbookReader:
    """Reader over ``{sheet: {cell: value}}``; used by callers that already hold cell data."""

    def __init__(self, sheets: Mapping[str, Mapping[str, Any]]) -> None:
        self._sheets = {name: {ref.upper(): v for ref, v in cells.items()} for name, cells in sheets.items()}

    @property
    def sheet_names(self) -> tuple[str, ...]:
        return tuple(self._sheets)

    def read(self, sheet: str, cell: str) -> Any:
        return self._sheets.get(sheet, {}).get(cell.upper())

    def scan(self, sheet: str, max_rows: int, max_cols: int) -> Iterator[tuple[str, Any]]:
        cells = self._sheets.get(sheet, {})
        for row in range(1, max_rows + 1):
            for col in range(1, max_cols + 1):
                ref = f"{get_column_letter(col)}{row}"
                if ref in cells and cells[ref] is not None:
                    yield ref, cells[ref]


def read_sheet_frames(
    path: Path, target_sheets: Iterable[str] | None = None, keep_na_strings: list[str] | None = None
) -> dict[str, pd.DataFrame]:
    """Read a workbook returning raw DataFrames keyed by sheet name.

    Parameters
    ----------
    path: workbook path
    target_sheets: restrict to these sheets (None = all)
    keep_na_strings: strings to exclude from pandas' default NaN conversion (e.g. ['NA'])
    """
    import pandas._libs.parsers as parsers

    if keep_na_strings:
        na_values = list(parsers.STR_NA_VALUES - set(keep_na_strings))
        keep_default_na = False
    else:
        na_values = None
        keep_default_na = True

    dfs: dict[str, pd.DataFrame] = {}
    with pd.ExcelFile(path, engine="openpyxl") as xls:
        for name in xls.sheet_names:
            if target_sheets is not None and str(name) not in target_sheets:
                continue
            # header=None: report sheets are key/value grids, not tables
            dfs[str(name)] = xls.parse(
                name, header=None, keep_default_na=keep_default_na, na_values=na_values
            )
    return dfs
