from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any, Union

from .mapping import SourceLocation

"""Extraction result models.

An ExtractionResult is produced fresh by every extraction run and is not
modified afterwards; the reconciliation step reads it once.
"""

__all__ = [
    "PROVENANCE_DEFAULT",
    "PROVENANCE_FILENAME",
    "PROVENANCE_UNRESOLVED",
    "CoercionFailure",
    "ExtractionResult",
    "Provenance",
    "utc_timestamp",
]

PROVENANCE_DEFAULT = "default"
PROVENANCE_UNRESOLVED = "unresolved"
PROVENANCE_FILENAME = "filename"

# a winning cell, or one of the markers above
Provenance = Union[SourceLocation, str]


def utc_timestamp() -> str:
    """ISO8601 UTC timestamp with 'Z' suffix."""
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class CoercionFailure:
    """A non-blank cell whose content could not be read as the declared type."""
    field: str
    location: SourceLocation
    raw: Any
    reason: str  # CoercionReason value

    def describe(self) -> str:
        return f"{self.field}: {self.location} = {self.raw!r} ({self.reason})"


@dataclass(frozen=True)
class ExtractionResult:
    values: Mapping[str, Any]
    provenance: Mapping[str, Provenance]
    unresolved: frozenset[str]
    extracted_at: str = field(default_factory=utc_timestamp)
    source_name: str | None = None
    failures: tuple[CoercionFailure, ...] = ()
    budget_categories: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    funding_sources: tuple[Mapping[str, Any], ...] = ()
    available_sheets: tuple[str, ...] = ()
    missing_sheets: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))
        object.__setattr__(self, "provenance", MappingProxyType(dict(self.provenance)))
        object.__setattr__(self, "unresolved", frozenset(self.unresolved))
        object.__setattr__(
            self,
            "budget_categories",
            MappingProxyType({k: MappingProxyType(dict(v)) for k, v in self.budget_categories.items()}),
        )
        object.__setattr__(
            self, "funding_sources", tuple(MappingProxyType(dict(s)) for s in self.funding_sources)
        )

    def provenance_of(self, name: str) -> Provenance:
        return self.provenance.get(name, PROVENANCE_UNRESOLVED)

    def is_default(self, name: str) -> bool:
        return self.provenance.get(name) == PROVENANCE_DEFAULT

    @property
    def resolved_count(self) -> int:
        return len(self.values)

    @property
    def taf_eac_variance(self) -> float | None:
        taf = self.values.get("taf")
        eac = self.values.get("eac")
        if taf is None or eac is None:
            return None
        return taf - eac

    @property
    def variance_percentage(self) -> float | None:
        variance = self.taf_eac_variance
        taf = self.values.get("taf")
        if variance is None or not taf:
            return None
        return round(variance / taf * 100, 2)
