from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from ..excel.reader import WorkbookReader
from ..models.extraction import PROVENANCE_DEFAULT, PROVENANCE_UNRESOLVED, CoercionFailure, Provenance
from ..models.mapping import FieldMapping, SourceLocation
from .coercion import coerce, is_blank

"""Field resolver.

Resolution order for one canonical field:

1. the primary cell
2. the alternatives, in declared order
3. the identity fallback chain (project name and a few identity fields only)
4. the field default -> provenance "default"
5. otherwise provenance "unresolved"

The first non-blank cell that coerces successfully wins and no later cell is
read. A malformed non-blank cell is recorded as a coercion failure and does
not stop the search, so a broken primary cannot mask a good alternative.
"""

__all__ = [
    "MISSING",
    "Resolution",
    "resolve",
]

logger = logging.getLogger(__name__)


class _Missing:
    def __repr__(self) -> str:  # pragma: no cover (trivial)
        return "MISSING"


# distinguishes "no default" from a default of None
MISSING: Any = _Missing()


@dataclass(frozen=True)
class Resolution:
    value: Any
    provenance: Provenance
    failures: tuple[CoercionFailure, ...] = ()

    @property
    def resolved(self) -> bool:
        return self.provenance != PROVENANCE_UNRESOLVED


def resolve(
    mapping: FieldMapping,
    reader: WorkbookReader,
    *,
    default: Any = MISSING,
    fallbacks: Iterable[SourceLocation] = (),
    blank_sentinels: frozenset[str] = frozenset(),
) -> Resolution:
    """Resolve ``mapping.field`` against ``reader``."""
    failures: list[CoercionFailure] = []

    for location in (*mapping.locations, *fallbacks):
        raw = reader.read(location.sheet, location.cell)
        if is_blank(raw) or (isinstance(raw, str) and raw.strip() in blank_sentinels):
            continue
        result = coerce(raw, mapping.value_type)
        if result.ok:
            return Resolution(value=result.value, provenance=location, failures=tuple(failures))
        if result.failed:
            failure = CoercionFailure(
                field=mapping.field, location=location, raw=raw, reason=result.reason.value
            )
            logger.warning(f"coercion failed {failure.describe()}")
            failures.append(failure)

    if default is not MISSING:
        return Resolution(value=default, provenance=PROVENANCE_DEFAULT, failures=tuple(failures))
    return Resolution(value=None, provenance=PROVENANCE_UNRESOLVED, failures=tuple(failures))
