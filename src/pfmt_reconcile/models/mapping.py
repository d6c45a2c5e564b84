from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

"""Mapping table domain models.

A mapping table is plain data: which workbook cell feeds which canonical
project field, in which order alternatives are tried, and what type the raw
value must be coerced to. Nothing in this module reads a workbook.
"""

__all__ = [
    "BudgetCategoryMapping",
    "FieldMapping",
    "FundingSourceTable",
    "MappingTableError",
    "MappingTables",
    "SourceLocation",
    "ValueType",
]

_CELL_RE = re.compile(r"^\$?([A-Za-z]{1,3})\$?([1-9][0-9]*)$")


class MappingTableError(Exception):
    """Raised when mapping tables violate the field uniqueness/type invariants."""


class ValueType(str, Enum):
    NUMBER = "number"
    CURRENCY = "currency"
    PERCENTAGE = "percentage"
    TEXT = "text"


@dataclass(frozen=True)
class SourceLocation:
    """One workbook cell, identified by sheet name and A1 reference."""
    sheet: str
    cell: str

    def __post_init__(self) -> None:
        m = _CELL_RE.match(self.cell.strip())
        if not m:
            raise MappingTableError(f"invalid cell reference: {self.cell!r}")
        object.__setattr__(self, "cell", f"{m.group(1).upper()}{m.group(2)}")

    @classmethod
    def parse(cls, ref: str, default_sheet: str) -> SourceLocation:
        """Parse ``"Sheet!B2"`` (or bare ``"B2"`` on ``default_sheet``).

        The sheet part may be quoted the way Excel writes it:
        ``"'Summary (Rpt)'!C6"``.
        """
        if "!" in ref:
            sheet, cell = ref.rsplit("!", 1)
            sheet = sheet.strip()
            if len(sheet) >= 2 and sheet[0] == sheet[-1] == "'":
                sheet = sheet[1:-1]
            return cls(sheet=sheet, cell=cell)
        return cls(sheet=default_sheet, cell=ref)

    def __str__(self) -> str:
        return f"{self.sheet}!{self.cell}"


@dataclass(frozen=True)
class FieldMapping:
    field: str  # canonical field name
    primary: SourceLocation
    value_type: ValueType
    alternatives: tuple[SourceLocation, ...] = ()

    @property
    def locations(self) -> tuple[SourceLocation, ...]:
        return (self.primary, *self.alternatives)


@dataclass(frozen=True)
class BudgetCategoryMapping:
    """Label, budget and amendment cells of one budget category.

    The three cells normally share a row on the summary sheet but each one is
    resolved independently.
    """
    key: str
    label: FieldMapping
    budget: FieldMapping
    amendments: FieldMapping

    @property
    def parts(self) -> tuple[tuple[str, FieldMapping], ...]:
        return (("label", self.label), ("budget", self.budget), ("amendments", self.amendments))


@dataclass(frozen=True)
class FundingSourceTable:
    """Row range of the funding source listing (label column + amount column)."""
    sheet: str
    label_column: str
    amount_column: str
    first_row: int
    last_row: int


@dataclass(frozen=True)
class MappingTables:
    """Immutable bundle of every mapping table used by one extraction run."""
    tables: Mapping[str, tuple[FieldMapping, ...]]
    budget_categories: tuple[BudgetCategoryMapping, ...] = ()
    identity_fallbacks: Mapping[str, tuple[SourceLocation, ...]] = field(default_factory=dict)
    defaults: Mapping[str, Any] = field(default_factory=dict)
    entity_aliases: Mapping[str, str] = field(default_factory=dict)
    blank_sentinels: frozenset[str] = frozenset()
    required_sheets: tuple[str, ...] = ()
    funding_sources: FundingSourceTable | None = None

    def __post_init__(self) -> None:
        # freeze mapping members so a shared table cannot be edited in place
        object.__setattr__(
            self, "tables", MappingProxyType({k: tuple(v) for k, v in self.tables.items()})
        )
        object.__setattr__(
            self,
            "identity_fallbacks",
            MappingProxyType({k: tuple(v) for k, v in self.identity_fallbacks.items()}),
        )
        object.__setattr__(self, "defaults", MappingProxyType(dict(self.defaults)))
        object.__setattr__(self, "entity_aliases", MappingProxyType(dict(self.entity_aliases)))
        object.__setattr__(self, "blank_sentinels", frozenset(self.blank_sentinels))
        self._check_invariants()

    def _check_invariants(self) -> None:
        seen: dict[str, tuple[str, ValueType]] = {}
        for table_name, fm in self._owned_mappings():
            previous = seen.get(fm.field)
            if previous is not None:
                prev_table, prev_type = previous
                if prev_type != fm.value_type:
                    raise MappingTableError(
                        f"field '{fm.field}' declared as {prev_type.value} in '{prev_table}' "
                        f"and as {fm.value_type.value} in '{table_name}'"
                    )
                raise MappingTableError(
                    f"field '{fm.field}' declared in both '{prev_table}' and '{table_name}'"
                )
            seen[fm.field] = (table_name, fm.value_type)
        unknown = set(self.identity_fallbacks) - set(seen)
        if unknown:
            raise MappingTableError(f"identity fallbacks for unmapped fields: {sorted(unknown)}")

    def _owned_mappings(self) -> Iterator[tuple[str, FieldMapping]]:
        for table_name, mappings in self.tables.items():
            for fm in mappings:
                yield table_name, fm
        for category in self.budget_categories:
            for _, fm in category.parts:
                yield f"budget_categories.{category.key}", fm

    def field_mappings(self) -> Iterator[FieldMapping]:
        """All plain field mappings in declaration order (categories excluded)."""
        for mappings in self.tables.values():
            yield from mappings

    def mapped_fields(self) -> set[str]:
        return {fm.field for _, fm in self._owned_mappings()}

    def default_only_fields(self) -> list[str]:
        mapped = self.mapped_fields()
        return [name for name in self.defaults if name not in mapped]

    def location_index(self) -> dict[SourceLocation, str]:
        """Key lookup: source location -> canonical field (primary and alternatives)."""
        index: dict[SourceLocation, str] = {}
        for _, fm in self._owned_mappings():
            for loc in fm.locations:
                index.setdefault(loc, fm.field)
        return index

    def entity_field(self, canonical: str) -> str:
        return self.entity_aliases.get(canonical, canonical)
