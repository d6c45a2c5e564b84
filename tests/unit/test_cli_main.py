from __future__ import annotations

from pathlib import Path

import psycopg2
import pytest

from pfmt_reconcile.cli import __main__ as cli
from pfmt_reconcile.cli.__main__ import main as cli_main
from pfmt_reconcile.config.loader import DatabaseConfig


@pytest.fixture()
def mock_mode(monkeypatch):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")


def test_cli_no_files_success(write_config, mock_mode, capsys):
    code = cli_main([])
    out = capsys.readouterr().out
    assert code == 0
    assert "INFO Processing files from: data" in out
    assert "SUMMARY files=0/0 success=0 failed=0 created=0 updated=0 invalid=0 unresolved=0" in out


def test_cli_directory_missing(write_config: Path, mock_mode, capsys):
    text = write_config.read_text(encoding="utf-8").replace("./data", "./missing_dir")
    write_config.write_text(text, encoding="utf-8")
    code = cli_main([])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR Directory not found: missing_dir" in out
    assert "SUMMARY" not in out


def test_cli_config_missing(temp_workdir: Path, capsys):
    code = cli_main(["--config", "config/absent.yml"])
    assert code == 1
    assert "ERROR config: config file not found" in capsys.readouterr().out


def test_cli_bad_arguments_are_fatal(temp_workdir: Path):
    assert cli_main(["--no-such-flag"]) == 1


def test_cli_help_exits_zero(capsys):
    assert cli_main(["--help"]) == 0
    assert "pfmt-reconcile" in capsys.readouterr().out


def test_cli_success(write_config, mock_mode, make_workbook, pfmt_sheets, capsys):
    make_workbook("a.xlsx", pfmt_sheets)
    code = cli_main([])
    out = capsys.readouterr().out
    assert code == 0
    assert "SUMMARY files=1/1 success=1 failed=0 created=1 updated=0 invalid=0" in out
    assert "INFO mode=mock created=1 updated=0" in out


def test_cli_partial_failure(write_config, mock_mode, make_workbook, temp_workdir: Path, capsys):
    make_workbook("good.xlsx", {"SP Fields": {"B2": 100}})
    (temp_workdir / "data" / "broken.xlsx").write_bytes(b"not a zip")
    code = cli_main([])
    out = capsys.readouterr().out
    assert code == 2
    assert "success=1 failed=1" in out
    assert "ERROR broken.xlsx:" in out


def test_cli_explicit_files(write_config, mock_mode, make_workbook, temp_workdir: Path, capsys):
    make_workbook("a.xlsx", {"SP Fields": {"B2": 100}})
    other = make_workbook("b.xlsx", {"SP Fields": {"B2": 200}})
    code = cli_main([str(other)])
    assert code == 0
    assert "files=1/1" in capsys.readouterr().out


def test_cli_project_id_needs_one_file(write_config, mock_mode, make_workbook, capsys):
    make_workbook("a.xlsx", {"SP Fields": {"B2": 100}})
    make_workbook("b.xlsx", {"SP Fields": {"B2": 200}})
    code = cli_main(["--project-id", "3"])
    assert code == 1
    assert "exactly one workbook, got 2" in capsys.readouterr().out


def test_cli_project_id_not_found_in_mock_store(write_config, mock_mode, make_workbook, capsys):
    path = make_workbook("a.xlsx", {"SP Fields": {"B2": 100}})
    code = cli_main(["--project-id", "3", str(path)])
    out = capsys.readouterr().out
    assert code == 2
    assert "project 3 not found" in out


def test_cli_debug_mode(write_config, mock_mode, capsys):
    code = cli_main(["--debug"])
    out = capsys.readouterr().out
    assert code == 0
    assert "DEBUG debug mode enabled" in out
    assert "DEBUG DB connect disabled" in out


def test_cli_falls_back_to_mock_when_db_unreachable(write_config, make_workbook, monkeypatch, capsys):
    monkeypatch.delenv("DISABLE_DB_CONNECT", raising=False)

    def refuse(dsn):
        raise psycopg2.OperationalError("could not connect to server")

    monkeypatch.setattr(cli.psycopg2, "connect", refuse)
    make_workbook("a.xlsx", {"SP Fields": {"B2": 100}})
    code = cli_main([])
    out = capsys.readouterr().out
    assert code == 0
    assert "WARN DB connection failed -> fallback to mock mode, nothing is persisted" in out
    assert "mode=mock" in out


def test_env_file_overrides(write_config, temp_workdir: Path, monkeypatch, capsys):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "0")
    (temp_workdir / ".env").write_text("DISABLE_DB_CONNECT=1\n", encoding="utf-8")
    code = cli_main(["--debug"])
    assert code == 0
    assert "DB connect disabled" in capsys.readouterr().out


class TestBuildDsn:
    CFG = DatabaseConfig(host="db", port=6543, user="u", password="pw", database="pfmt", dsn=None)

    @pytest.fixture(autouse=True)
    def _clean_env(self, monkeypatch):
        for name in ("DATABASE_URL", "PGDSN", "PGHOST", "PGPORT", "PGUSER", "PGPASSWORD", "PGDATABASE"):
            monkeypatch.delenv(name, raising=False)

    def test_from_config(self):
        assert cli._build_dsn(self.CFG) == "host=db port=6543 user=u dbname=pfmt password=pw"

    def test_environment_wins(self, monkeypatch):
        monkeypatch.setenv("PGHOST", "envhost")
        assert cli._build_dsn(self.CFG).startswith("host=envhost port=6543")

    def test_database_url(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://x@y/z")
        assert cli._build_dsn(self.CFG) == "postgresql://x@y/z"

    def test_defaults_without_password(self):
        empty = DatabaseConfig(host=None, port=None, user=None, password=None, database=None, dsn=None)
        assert cli._build_dsn(empty) == "host=localhost port=5432 user=postgres dbname=postgres"


@pytest.mark.parametrize(("raw", "expected"), [(None, None), ("12", 12), (" 7 ", 7), ("abc-1", "abc-1")])
def test_parse_project_id(raw, expected):
    assert cli._parse_project_id(raw) == expected
