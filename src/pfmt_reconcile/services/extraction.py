from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any

from ..config.tables import build_default_tables
from ..excel.reader import WorkbookReader
from ..models.extraction import (
    PROVENANCE_DEFAULT,
    PROVENANCE_FILENAME,
    PROVENANCE_UNRESOLVED,
    CoercionFailure,
    ExtractionResult,
    Provenance,
    utc_timestamp,
)
from ..models.mapping import MappingTables, SourceLocation, ValueType
from .coercion import coerce, is_blank
from .resolver import MISSING, resolve

"""Extraction pass: every mapped field of one workbook -> ExtractionResult.

Extraction is best effort and always returns a result. Per-field problems
end up in ``unresolved`` / ``failures``; deciding what to do about them is
the caller's job (see assess_extraction and services.reconciliation).
"""

__all__ = [
    "ExtractionAssessment",
    "assess_extraction",
    "extract",
]

logger = logging.getLogger(__name__)

PROJECT_NAME_FIELD = "project_name"
NAME_SCAN_SHEETS = ("Validations", "Target Tracking", "Summary (Rpt)", "Budget Details (Rpt)")
NAME_SCAN_ROWS = 20
NAME_SCAN_COLS = 10
_NAME_HINTS = ("centre", "center", "justice", "project")
_NAME_STOPWORDS = ("field", "value", "total")
_CELL_LIKE = re.compile(r"^[A-Z]{1,3}\d+$")
_WORKBOOK_SUFFIX = re.compile(r"\.(xlsx|xlsm|xls)$", re.IGNORECASE)


def _looks_like_project_name(text: str) -> bool:
    lowered = text.lower()
    return (
        3 < len(text) < 100
        and not _CELL_LIKE.match(text)
        and not any(word in lowered for word in _NAME_STOPWORDS)
        and any(hint in lowered for hint in _NAME_HINTS)
    )


def _scan_for_project_name(reader: WorkbookReader) -> tuple[str, SourceLocation] | None:
    available = set(reader.sheet_names)
    for sheet in NAME_SCAN_SHEETS:
        if sheet not in available:
            continue
        for ref, raw in reader.scan(sheet, NAME_SCAN_ROWS, NAME_SCAN_COLS):
            result = coerce(raw, ValueType.TEXT)
            if result.ok and _looks_like_project_name(result.value):
                return result.value, SourceLocation(sheet, ref)
    return None


def _name_from_file(source_name: str | None) -> str | None:
    if not source_name:
        return None
    stem = _WORKBOOK_SUFFIX.sub("", PurePath(source_name).name).strip()
    return stem or None


def _extract_funding_sources(reader: WorkbookReader, tables: MappingTables) -> list[dict[str, Any]]:
    table = tables.funding_sources
    if table is None or table.sheet not in reader.sheet_names:
        return []
    sources: list[dict[str, Any]] = []
    for row in range(table.first_row, table.last_row + 1):
        raw_label = reader.read(table.sheet, f"{table.label_column}{row}")
        if is_blank(raw_label) or (isinstance(raw_label, str) and raw_label.strip() in tables.blank_sentinels):
            continue
        label = coerce(raw_label, ValueType.TEXT)
        amount = coerce(reader.read(table.sheet, f"{table.amount_column}{row}"), ValueType.CURRENCY)
        if label.ok and amount.ok and amount.value > 0:
            sources.append({"source": label.value, "amount": amount.value})
    return sources


def extract(
    reader: WorkbookReader,
    tables: MappingTables | None = None,
    *,
    source_name: str | None = None,
) -> ExtractionResult:
    """Run the field resolver over every mapping table of ``tables``.

    Args:
        reader: workbook reader capability
        tables: mapping tables (built-in PFMT tables when None)
        source_name: workbook file name, used for provenance and as the
            project name of last resort

    Returns:
        ExtractionResult (never raises for per-field problems)
    """
    tables = tables or build_default_tables()
    values: dict[str, Any] = {}
    provenance: dict[str, Provenance] = {}
    failures: list[CoercionFailure] = []

    def record(name: str, value: Any, origin: Provenance) -> None:
        provenance[name] = origin
        if origin != PROVENANCE_UNRESOLVED:
            values[name] = value

    for fm in tables.field_mappings():
        resolution = resolve(
            fm,
            reader,
            default=tables.defaults.get(fm.field, MISSING),
            fallbacks=tables.identity_fallbacks.get(fm.field, ()),
            blank_sentinels=tables.blank_sentinels,
        )
        failures.extend(resolution.failures)
        record(fm.field, resolution.value, resolution.provenance)

    categories: dict[str, dict[str, Any]] = {}
    for category in tables.budget_categories:
        merged: dict[str, Any] = {}
        for part, fm in category.parts:
            resolution = resolve(
                fm,
                reader,
                default=tables.defaults.get(fm.field, MISSING),
                blank_sentinels=tables.blank_sentinels,
            )
            failures.extend(resolution.failures)
            record(fm.field, resolution.value, resolution.provenance)
            if resolution.resolved:
                merged[part] = resolution.value
        if merged:
            categories[category.key] = merged

    for name in tables.default_only_fields():
        record(name, tables.defaults[name], PROVENANCE_DEFAULT)

    if provenance.get(PROJECT_NAME_FIELD, PROVENANCE_UNRESOLVED) in (PROVENANCE_UNRESOLVED, PROVENANCE_DEFAULT):
        found = _scan_for_project_name(reader)
        if found is not None:
            record(PROJECT_NAME_FIELD, found[0], found[1])
        elif PROJECT_NAME_FIELD not in values and (stem := _name_from_file(source_name)):
            record(PROJECT_NAME_FIELD, stem, PROVENANCE_FILENAME)

    available = tuple(reader.sheet_names)
    missing_sheets = tuple(s for s in tables.required_sheets if s not in available)
    if missing_sheets:
        logger.warning(f"{source_name or 'workbook'}: missing required sheets {list(missing_sheets)}")

    unresolved = frozenset(n for n, origin in provenance.items() if origin == PROVENANCE_UNRESOLVED)
    logger.debug(
        f"extracted {source_name or 'workbook'} resolved={len(values)} "
        f"unresolved={len(unresolved)} failures={len(failures)}"
    )
    return ExtractionResult(
        values=values,
        provenance=provenance,
        unresolved=unresolved,
        extracted_at=utc_timestamp(),
        source_name=source_name,
        failures=tuple(failures),
        budget_categories=categories,
        funding_sources=tuple(_extract_funding_sources(reader, tables)),
        available_sheets=available,
        missing_sheets=missing_sheets,
    )


@dataclass(frozen=True)
class ExtractionAssessment:
    """Pre-import check of an extraction: issues block an import, warnings do not."""
    is_valid: bool
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    extracted_field_count: int = 0


def assess_extraction(result: ExtractionResult, *, is_new_project: bool) -> ExtractionAssessment:
    issues: list[str] = []
    warnings: list[str] = []

    taf = result.values.get("taf")
    if not taf or taf <= 0:
        issues.append("Total Approved Funding (TAF) is missing or invalid")

    eac = result.values.get("eac")
    if not eac or eac <= 0:
        warnings.append("Estimate at Completion (EAC) is missing or invalid")

    if not str(result.values.get(PROJECT_NAME_FIELD) or "").strip():
        if is_new_project:
            issues.append("Project name could not be extracted and is required for new projects")
        else:
            warnings.append("Project name could not be extracted")

    if not result.funding_sources:
        warnings.append("No funding sources were extracted from the PFMT file")

    if result.missing_sheets:
        warnings.append(f"Missing sheets: {', '.join(result.missing_sheets)}")

    count = sum(1 for v in result.values.values() if v not in (None, "", 0))
    return ExtractionAssessment(
        is_valid=not issues, issues=issues, warnings=warnings, extracted_field_count=count
    )
