from __future__ import annotations

import json

import jsonschema
import pytest
import yaml
from jsonschema.exceptions import ValidationError

from pfmt_reconcile.config.loader import CONFIG_SCHEMA_PATH, MAPPING_SCHEMA_PATH

"""Config / mapping table schema contract tests."""

CONFIG_SCHEMA = json.loads(CONFIG_SCHEMA_PATH.read_text(encoding="utf-8"))
MAPPING_SCHEMA = json.loads(MAPPING_SCHEMA_PATH.read_text(encoding="utf-8"))


def test_config_schema_valid_example():
    config = {
        "source_directory": "./data",
        "mapping_tables": "config/mapping.yml",
        "persist_invalid_projects": True,
        "database": {
            "host": "localhost",
            "port": 5432,
            "user": "appuser",
            "password": "secret",
            "database": "appdb",
        },
    }
    jsonschema.validate(config, CONFIG_SCHEMA)


def test_config_schema_minimal_valid_config():
    jsonschema.validate({"source_directory": "./data"}, CONFIG_SCHEMA)


def test_config_schema_missing_required_key():
    with pytest.raises(ValidationError):
        jsonschema.validate({"database": {}}, CONFIG_SCHEMA)


def test_config_schema_rejects_extra_key():
    with pytest.raises(ValidationError):
        jsonschema.validate({"source_directory": "./data", "timezone": "UTC"}, CONFIG_SCHEMA)


def test_config_schema_rejects_extra_database_key():
    with pytest.raises(ValidationError):
        jsonschema.validate({"source_directory": "./data", "database": {"schema": "x"}}, CONFIG_SCHEMA)


def test_config_schema_validates_from_sample_yaml(sample_config_yaml: str):
    jsonschema.validate(yaml.safe_load(sample_config_yaml), CONFIG_SCHEMA)


def test_mapping_schema_validates_from_sample_yaml(sample_mapping_yaml: str):
    jsonschema.validate(yaml.safe_load(sample_mapping_yaml), MAPPING_SCHEMA)


@pytest.mark.parametrize(
    "location",
    ["B2", "$B$2", "Validations!C6", "'Summary (Rpt)'!C8", "Target Tracking!AB120"],
)
def test_mapping_schema_accepts_locations(location: str):
    jsonschema.validate({"tables": {"t": {"taf": {"primary": location, "type": "currency"}}}}, MAPPING_SCHEMA)


@pytest.mark.parametrize("location", ["B0", "2B", "Sheet!", "ABCD1"])
def test_mapping_schema_rejects_bad_locations(location: str):
    with pytest.raises(ValidationError):
        jsonschema.validate({"tables": {"t": {"taf": {"primary": location, "type": "currency"}}}}, MAPPING_SCHEMA)


def test_mapping_schema_requires_tables():
    with pytest.raises(ValidationError):
        jsonschema.validate({"defaults": {"project_category": "Infrastructure"}}, MAPPING_SCHEMA)
