from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from ..config.loader import ConfigError, DatabaseConfig, ToolConfig, load_config
from ..db.repository import (
    InMemoryProjectRepository,
    PostgresProjectRepository,
    ProjectRepository,
    RepositoryError,
)
from ..excel.reader import ExcelWorkbookReader, WorkbookReadError, read_sheet_frames
from ..logging.init import log_summary, setup_logging
from ..models.mapping import MappingTables
from ..models.processing_result import ProcessingResult
from ..services.orchestrator import ProcessingError, process_all, resolve_tables, scan_workbooks
from ..services.summary import render_summary_line

"""CLI entrypoint.

pfmt-reconcile [--config PATH] [--debug] [--inspect-data] [--project-id ID] [FILES...]

- Load .env (override) and the YAML tool config
- Reconcile the given workbooks, or every .xlsx/.xlsm in source_directory
- Persist through PostgreSQL, or the in-memory store in mock mode
  (DISABLE_DB_CONNECT=1, or the database is unreachable)
- Print the SUMMARY line and exit 0 (all valid) / 2 (some file failed or
  invalid) / 1 (fatal)
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

DEFAULT_CONFIG_PATH = Path("config/pfmt.yml")
INSPECT_SAMPLE_ROWS = 3


def _build_dsn(db_cfg: DatabaseConfig) -> str:
    """Connection string, resolved in this order:

    1. DATABASE_URL / PGDSN (environment, after .env was loaded with override)
    2. individual PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
    3. the config ``database`` section for whatever is still missing
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def _db_connection(cfg: ToolConfig) -> Iterator[Any]:  # pragma: no cover (needs a live database)
    """Yield a cursor on a fresh psycopg2 connection; closes both afterwards.

    psycopg2.Error from connect() propagates so the caller can fall back to
    mock mode. The repository commits per saved project.
    """
    conn = psycopg2.connect(_build_dsn(cfg.database))
    conn.autocommit = False
    try:
        with conn.cursor() as cur:
            yield cur
    finally:
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env; override=True lets .env win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="pfmt-reconcile", description="Reconcile PFMT workbooks into project records"
    )
    p.add_argument("files", nargs="*", type=Path, help="Workbooks to process (default: scan source_directory)")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Tool config YAML")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument(
        "--inspect-data", action="store_true", help="Print sheets, first rows and mapped cell values then exit"
    )
    p.add_argument("--project-id", help="Update this existing project (exactly one workbook)")
    return p.parse_args(argv)


def _parse_project_id(raw: str | None) -> Any:
    if raw is None:
        return None
    raw = raw.strip()
    return int(raw) if raw.isdigit() else raw


def _inspect_data(files: list[Path], tables: MappingTables) -> int:
    if not files:
        print("inspect: no workbooks")
        return EXIT_SUCCESS_ALL
    index = sorted(tables.location_index().items(), key=lambda item: (item[0].sheet, item[1]))
    for f in files:
        print(f"FILE: {f.name}")
        try:
            # the reader validates the archive; pandas would raise BadZipFile
            reader = ExcelWorkbookReader(f)
        except WorkbookReadError as e:
            print(f"  read_error: {e}")
            continue
        with reader:
            try:
                frames = read_sheet_frames(f)
            except (OSError, ValueError) as e:
                print(f"  read_error: {e}")
                continue
            for sname, df in frames.items():
                print(f"  SHEET: {sname} shape={df.shape}")
                for row in df.head(INSPECT_SAMPLE_ROWS).itertuples(index=False):
                    # datetime cells are not JSON/str friendly in every pandas version
                    print("    ", [v.isoformat() if hasattr(v, "isoformat") else v for v in row])
            print("  MAPPED:")
            for loc, field_name in index:
                print(f"    {loc} {field_name}={reader.read(loc.sheet, loc.cell)!r}")
    return EXIT_SUCCESS_ALL


def _run(
    cfg: ToolConfig,
    repository: ProjectRepository,
    tables: MappingTables,
    files: list[Path],
    project_id: Any,
) -> ProcessingResult:
    return process_all(cfg, repository, files=files, project_id=project_id, tables=tables)


def main(argv: list[str] | None = None) -> int:
    # only read sys.argv when no list was given (tests call main([]))
    if argv is None:
        argv = sys.argv[1:]
    try:
        args = _parse_args(argv)
    except SystemExit as e:
        return EXIT_SUCCESS_ALL if e.code == 0 else EXIT_FATAL

    logger = setup_logging(debug=args.debug)
    if args.debug:
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    project_id = _parse_project_id(args.project_id)
    try:
        tables = resolve_tables(cfg)
        if args.files:
            files = list(args.files)
        else:
            directory = Path(cfg.source_directory)
            logger.info(f"Processing files from: {directory}")
            files = scan_workbooks(directory)
        if project_id is not None and len(files) != 1:
            raise ProcessingError(f"--project-id needs exactly one workbook, got {len(files)}")
    except ProcessingError as e:
        logger.error(f"{e}")
        return EXIT_FATAL

    if args.inspect_data:
        return _inspect_data(files, tables)

    # DISABLE_DB_CONNECT=1 skips the database entirely (tests, dry runs)
    db_mode = "mock"
    try:
        if os.getenv("DISABLE_DB_CONNECT") == "1":
            logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> mock mode")
            result = _run(cfg, InMemoryProjectRepository(), tables, files, project_id)
        else:
            try:
                with _db_connection(cfg) as cur:
                    db_mode = "live"
                    repository = PostgresProjectRepository(cur)
                    repository.ensure_schema()
                    result = _run(cfg, repository, tables, files, project_id)
            except psycopg2.OperationalError as db_e:
                if db_mode == "live":
                    raise
                logger.warning(f"DB connection failed -> fallback to mock mode, nothing is persisted: {db_e}")
                result = _run(cfg, InMemoryProjectRepository(), tables, files, project_id)
    except (ProcessingError, RepositoryError, psycopg2.Error) as e:
        logger.error(f"processing({db_mode}): {e}")
        return EXIT_FATAL

    logger.info(f"mode={db_mode} created={result.created_projects} updated={result.updated_projects}")

    summary_line = render_summary_line(result.total_files, result)
    # log_summary adds the "SUMMARY " label itself
    log_summary(summary_line.removeprefix("SUMMARY "))

    if result.failed_files > 0:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
