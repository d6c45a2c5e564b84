from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..config.tables import ENTITY_ALIASES
from ..models.extraction import PROVENANCE_DEFAULT, PROVENANCE_FILENAME, ExtractionResult
from ..models.mapping import MappingTables
from ..models.project import ProjectEntity, ValidationResult

"""Reconciliation step: merge an ExtractionResult into a ProjectEntity.

Precedence rules:
- unresolved fields never overwrite the entity (missing data is not evidence
  that the value is gone)
- values that only came from a mapping default, or a project name guessed
  from the file name, fill empty attributes but do not replace a value the
  project already has
- budget categories merge per category and per sub-field
- funding sources are replaced only when the workbook listed some

The merged entity is returned even when it fails validation; whether an
invalid project may be persisted is decided by the caller.
"""

__all__ = [
    "ReconciliationResult",
    "reconcile",
]

logger = logging.getLogger(__name__)

# provenance that is not evidence of the current value
_WEAK_PROVENANCE = (PROVENANCE_DEFAULT, PROVENANCE_FILENAME)


@dataclass(frozen=True)
class ReconciliationResult:
    entity: ProjectEntity
    validation: ValidationResult
    created: bool
    applied_fields: tuple[str, ...] = ()
    kept_fields: tuple[str, ...] = ()  # weak values not applied over existing data

    @property
    def is_valid(self) -> bool:
        return self.validation.is_valid

    @property
    def errors(self) -> list[str]:
        return self.validation.errors


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == 0 or value == [] or value == {}


def _entity_payload(
    existing: ProjectEntity | None, result: ExtractionResult, tables: MappingTables | None
) -> tuple[dict[str, Any], list[str]]:
    aliases = tables.entity_aliases if tables is not None else ENTITY_ALIASES
    known = set(ProjectEntity.field_names())
    payload: dict[str, Any] = {}
    kept: list[str] = []
    for name, value in result.values.items():
        if name in result.unresolved:
            continue
        target = aliases.get(name, name)
        if target not in known:
            # extracted but not part of the entity schema; still kept in pfmt_data
            continue
        weak = result.provenance_of(name) in _WEAK_PROVENANCE
        if existing is not None and weak and not _is_empty(getattr(existing, target)):
            kept.append(target)
            continue
        payload[target] = value

    if result.budget_categories:
        categories = {k: dict(v) for k, v in (existing.budget_categories if existing else {}).items()}
        for key, parts in result.budget_categories.items():
            categories.setdefault(key, {}).update(parts)
        payload["budget_categories"] = categories

    if result.funding_sources:
        payload["funding_sources"] = [dict(s) for s in result.funding_sources]

    return payload, kept


def reconcile(
    existing: ProjectEntity | None,
    result: ExtractionResult,
    tables: MappingTables | None = None,
) -> ReconciliationResult:
    """Merge ``result`` into ``existing`` (or a new entity when None).

    Args:
        existing: current project record, or None to register a new project
        result: extraction result of one workbook
        tables: mapping tables used for the extraction (entity aliases);
            the built-in aliases when None

    Returns:
        ReconciliationResult with the merged entity and its validation result
    """
    payload, kept = _entity_payload(existing, result, tables)

    if existing is None:
        entity = ProjectEntity.from_json(payload)
        entity.calculate_derived_fields()
        applied = tuple(payload)
        created = True
    else:
        entity = existing
        applied = tuple(entity.update(payload))
        created = False

    entity.pfmt_file_name = result.source_name
    entity.pfmt_extracted_at = result.extracted_at
    entity.pfmt_data = dict(result.values)

    validation = entity.validate()
    if not validation.is_valid:
        logger.warning(
            f"project '{entity.project_name or entity.id}' failed validation: {'; '.join(validation.errors)}"
        )
    return ReconciliationResult(
        entity=entity,
        validation=validation,
        created=created,
        applied_fields=applied,
        kept_fields=tuple(kept),
    )
