from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.mapping import (
    BudgetCategoryMapping,
    FieldMapping,
    FundingSourceTable,
    MappingTables,
    SourceLocation,
    ValueType,
)
from .tables import DEFAULT_SHEET

"""Config loader.

Responsibilities:
- Load the YAML tool config (config/pfmt.yml) and optional mapping tables file
- Validate both against the bundled JSON schemas
- Apply defaults (built-in mapping tables, persist_invalid_projects=false)
"""

SCHEMA_DIR = Path(__file__).parent / "schemas"
CONFIG_SCHEMA_PATH = SCHEMA_DIR / "config_schema.json"
MAPPING_SCHEMA_PATH = SCHEMA_DIR / "mapping_schema.json"


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None
    port: int | None
    user: str | None
    password: str | None
    database: str | None
    dsn: str | None


@dataclass(frozen=True)
class ToolConfig:
    source_directory: str
    mapping_tables: str | None  # path to a mapping YAML; None = built-in tables
    persist_invalid_projects: bool
    database: DatabaseConfig


def _validate(data: Any, schema_path: Path) -> None:
    """Validate loaded YAML data against a bundled JSON schema.

    Raises:
        ConfigError: if the schema file is missing/unreadable or the data
            violates it (missing required keys, wrong types, extra keys)
    """
    if not schema_path.exists():
        raise ConfigError(f"config schema not found: {schema_path}")
    try:
        schema = json.loads(schema_path.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _read_yaml(path: Path) -> Any:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e


def load_config(path: Path) -> ToolConfig:
    data = _read_yaml(path)
    _validate(data, CONFIG_SCHEMA_PATH)

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    return ToolConfig(
        source_directory=data["source_directory"],
        mapping_tables=data.get("mapping_tables"),
        persist_invalid_projects=bool(data.get("persist_invalid_projects", False)),
        database=db,
    )


def load_mapping_tables(path: Path) -> MappingTables:
    """Build MappingTables from a YAML mapping file.

    Raises:
        ConfigError: file missing, invalid YAML or schema violation
        MappingTableError: duplicate field names / conflicting value types
    """
    data = _read_yaml(path)
    _validate(data, MAPPING_SCHEMA_PATH)

    default_sheet = data.get("default_sheet", DEFAULT_SHEET)

    def loc(ref: str, sheet: str = default_sheet) -> SourceLocation:
        return SourceLocation.parse(ref, sheet)

    tables: dict[str, tuple[FieldMapping, ...]] = {}
    for table_name, entries in data["tables"].items():
        tables[table_name] = tuple(
            FieldMapping(
                field=name,
                primary=loc(entry["primary"]),
                value_type=ValueType(entry["type"]),
                alternatives=tuple(loc(a) for a in entry.get("alternatives", [])),
            )
            for name, entry in (entries or {}).items()
        )

    categories = []
    for key, entry in (data.get("budget_categories") or {}).items():
        sheet = entry["sheet"]
        categories.append(
            BudgetCategoryMapping(
                key=key,
                label=FieldMapping(f"{key}_category", loc(entry["label"], sheet), ValueType.TEXT),
                budget=FieldMapping(f"{key}_budget", loc(entry["budget"], sheet), ValueType.CURRENCY),
                amendments=FieldMapping(
                    f"{key}_amendments", loc(entry["amendments"], sheet), ValueType.CURRENCY
                ),
            )
        )

    funding_raw = data.get("funding_sources")
    funding = None
    if funding_raw:
        funding = FundingSourceTable(
            sheet=funding_raw["sheet"],
            label_column=funding_raw["label_column"].upper(),
            amount_column=funding_raw["amount_column"].upper(),
            first_row=funding_raw["first_row"],
            last_row=funding_raw["last_row"],
        )

    return MappingTables(
        tables=tables,
        budget_categories=tuple(categories),
        identity_fallbacks={
            name: tuple(loc(ref) for ref in refs)
            for name, refs in (data.get("identity_fallbacks") or {}).items()
        },
        defaults=data.get("defaults") or {},
        entity_aliases=data.get("entity_aliases") or {},
        blank_sentinels=frozenset(data.get("blank_sentinels") or ()),
        required_sheets=tuple(data.get("required_sheets") or ()),
        funding_sources=funding,
    )
