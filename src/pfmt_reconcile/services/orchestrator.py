from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager, nullcontext
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..config.loader import ConfigError, ToolConfig, load_mapping_tables
from ..config.tables import build_default_tables
from ..db.repository import ProjectRepository, RepositoryError
from ..excel.reader import EXCEL_SUFFIXES, ExcelWorkbookReader, WorkbookReadError
from ..logging.error_log import ErrorLogBuffer, ErrorRecord
from ..models.error_record import ErrorType
from ..models.extraction import ExtractionResult
from ..models.mapping import MappingTableError, MappingTables
from ..models.processing_result import FileStat, FileStatus, ProcessingResult
from .extraction import assess_extraction, extract
from .progress import ProgressTracker
from .reconciliation import reconcile

"""Service orchestration for a reconciliation run.

Per workbook: open -> extract -> (lock project id) load -> reconcile ->
save -> error log flush. A workbook that cannot be read or saved is a
per-file failure; the run continues with the next file. Only configuration
and directory problems are fatal (ProcessingError).
"""

__all__ = [
    "ProcessingError",
    "ProjectLockRegistry",
    "process_all",
    "resolve_tables",
    "scan_workbooks",
    "sync_workbook",
]

logger = logging.getLogger(__name__)


class ProcessingError(Exception):
    """Fatal error that prevents a run (bad config, missing directory)."""
    pass


class ProjectLockRegistry:
    """One lock per project id.

    load -> reconcile -> save for the same id must not interleave; different
    ids never contend. The registry itself is guarded so concurrent callers
    get the same lock object for the same id.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Any, threading.Lock] = {}

    def lock_for(self, project_id: Any) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(project_id)
            if lock is None:
                lock = self._locks[project_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, project_id: Any) -> Iterator[None]:
        with self.lock_for(project_id):
            yield

    def __len__(self) -> int:
        return len(self._locks)


def scan_workbooks(directory: Path) -> list[Path]:
    """List .xlsx/.xlsm files in ``directory`` (non-recursive, sorted by name).

    Raises:
        ProcessingError: directory missing, not a directory or unreadable
    """
    if not directory.exists():
        raise ProcessingError(f"Directory not found: {directory}")
    if not directory.is_dir():
        raise ProcessingError(f"Path is not a directory: {directory}")
    try:
        return sorted(
            p for p in directory.iterdir()
            # skip Excel lock files (~$name.xlsx)
            if p.is_file() and p.suffix.lower() in EXCEL_SUFFIXES and not p.name.startswith("~$")
        )
    except OSError as e:
        raise ProcessingError(f"Error reading directory {directory}: {e}") from e


def resolve_tables(config: ToolConfig) -> MappingTables:
    """Mapping tables for a run: the configured YAML file or the built-in tables."""
    try:
        if config.mapping_tables:
            return load_mapping_tables(Path(config.mapping_tables))
        return build_default_tables()
    except (ConfigError, MappingTableError) as e:
        raise ProcessingError(f"Invalid configuration: {e}") from e


def _record_extraction_problems(file_name: str, result: ExtractionResult, error_log: ErrorLogBuffer) -> None:
    for failure in result.failures:
        error_log.append(ErrorRecord.from_coercion_failure(file_name, failure))
    for name in sorted(result.unresolved):
        error_log.append(
            ErrorRecord.create(
                file_name, ErrorType.UNRESOLVED_FIELD, "no usable source value and no default", field=name
            )
        )


def _record_validation_errors(file_name: str, errors: Iterable[str], error_log: ErrorLogBuffer) -> None:
    for message in errors:
        error_log.append(ErrorRecord.create(file_name, ErrorType.VALIDATION_ERROR, message))


def sync_workbook(
    path: Path,
    repository: ProjectRepository,
    *,
    tables: MappingTables,
    error_log: ErrorLogBuffer,
    locks: ProjectLockRegistry,
    project_id: Any = None,
    persist_invalid: bool = False,
) -> FileStat:
    """Reconcile one workbook into the project store.

    Args:
        path: workbook file
        repository: persistence collaborator
        tables: mapping tables used for extraction
        error_log: buffer receiving per-cell / per-file error records
        locks: per-project lock registry shared by the run
        project_id: update this stored project; None registers a new one
        persist_invalid: save projects that fail validation anyway

    Returns:
        FileStat for the SUMMARY aggregation
    """
    start_time = datetime.now(UTC)
    file_name = path.name

    def stat(status: FileStatus, **kwargs: Any) -> FileStat:
        elapsed = (datetime.now(UTC) - start_time).total_seconds()
        return FileStat(file_name=file_name, status=status.value, elapsed_seconds=elapsed, **kwargs)

    try:
        with ExcelWorkbookReader(path) as reader:
            result = extract(reader, tables, source_name=file_name)
    except WorkbookReadError as e:
        logger.error(f"{file_name}: {e}")
        error_log.append(ErrorRecord.create(file_name, ErrorType.FILE_READ_ERROR, str(e)))
        return stat(FileStatus.FAILED)

    _record_extraction_problems(file_name, result, error_log)
    counts = {
        "resolved_fields": result.resolved_count,
        "unresolved_fields": len(result.unresolved),
        "coercion_failures": len(result.failures),
    }

    # new projects have no id yet, so nothing can race on them
    guard = locks.hold(project_id) if project_id is not None else nullcontext()
    with guard:
        existing = None
        if project_id is not None:
            try:
                existing = repository.load_project_by_id(project_id)
            except RepositoryError as e:
                logger.error(f"{file_name}: {e}")
                error_log.append(ErrorRecord.create(file_name, ErrorType.SAVE_ERROR, str(e)))
                return stat(FileStatus.FAILED, **counts)
            if existing is None:
                message = f"project {project_id} not found"
                logger.error(f"{file_name}: {message}")
                error_log.append(ErrorRecord.create(file_name, ErrorType.PROJECT_NOT_FOUND, message))
                return stat(FileStatus.FAILED, **counts)

        assessment = assess_extraction(result, is_new_project=existing is None)
        for warning in assessment.warnings:
            logger.info(f"{file_name}: {warning}")
        if not assessment.is_valid:
            for issue in assessment.issues:
                logger.warning(f"{file_name}: {issue}")
            _record_validation_errors(file_name, assessment.issues, error_log)
            return stat(FileStatus.INVALID, validation_errors=list(assessment.issues), **counts)

        outcome = reconcile(existing, result, tables)
        if not outcome.is_valid:
            _record_validation_errors(file_name, outcome.errors, error_log)
            if not persist_invalid:
                return stat(
                    FileStatus.INVALID, created=outcome.created, validation_errors=outcome.errors, **counts
                )

        try:
            repository.save_project(outcome.entity)
        except RepositoryError as e:
            logger.error(f"{file_name}: {e}")
            error_log.append(ErrorRecord.create(file_name, ErrorType.SAVE_ERROR, str(e)))
            return stat(FileStatus.FAILED, **counts)

    verb = "created" if outcome.created else "updated"
    logger.info(
        f"{file_name}: {verb} project id={outcome.entity.id} "
        f"resolved={counts['resolved_fields']} unresolved={counts['unresolved_fields']}"
    )
    return stat(
        FileStatus.SUCCESS if outcome.is_valid else FileStatus.INVALID,
        project_id=outcome.entity.id,
        created=outcome.created,
        validation_errors=outcome.errors,
        **counts,
    )


def process_all(
    config: ToolConfig,
    repository: ProjectRepository,
    *,
    files: Iterable[Path] | None = None,
    project_id: Any = None,
    tables: MappingTables | None = None,
    locks: ProjectLockRegistry | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> ProcessingResult:
    """Reconcile every workbook of a run.

    Args:
        config: tool configuration (source directory, mapping tables, policy)
        repository: persistence collaborator
        files: explicit workbook list; None scans ``config.source_directory``
        project_id: target project for a single-file run
        tables: mapping tables; resolved from ``config`` when None
        locks: shared lock registry (a fresh one when None)
        error_log: error record buffer (a fresh one when None)

    Returns:
        ProcessingResult with aggregated counters and per-file stats

    Raises:
        ProcessingError: for fatal errors that prevent processing
    """
    start_time = datetime.now(UTC)
    error_log = error_log if error_log is not None else ErrorLogBuffer()
    locks = locks if locks is not None else ProjectLockRegistry()
    if tables is None:
        tables = resolve_tables(config)

    if files is None:
        file_paths = scan_workbooks(Path(config.source_directory))
    else:
        file_paths = [Path(f) for f in files]
    if project_id is not None and len(file_paths) != 1:
        raise ProcessingError(f"--project-id needs exactly one workbook, got {len(file_paths)}")

    file_stats: list[FileStat] = []
    with ProgressTracker(len(file_paths)) as progress:
        for file_path in file_paths:
            progress.start_file(file_path)
            file_stat = sync_workbook(
                file_path,
                repository,
                tables=tables,
                error_log=error_log,
                locks=locks,
                project_id=project_id,
                persist_invalid=config.persist_invalid_projects,
            )
            file_stats.append(file_stat)
            # one flush per workbook so a crash keeps earlier records
            error_log.flush()
            progress.set_postfix(
                success=sum(s.status == FileStatus.SUCCESS.value for s in file_stats),
                failed=sum(s.status != FileStatus.SUCCESS.value for s in file_stats),
            )
            progress.finish_file()

    if error_log.total_written:
        logger.info(f"error log: {error_log.file_path}")

    end_time = datetime.now(UTC)
    saved = [s for s in file_stats if s.project_id is not None]
    return ProcessingResult(
        success_files=sum(s.status == FileStatus.SUCCESS.value for s in file_stats),
        failed_files=sum(s.status != FileStatus.SUCCESS.value for s in file_stats),
        created_projects=sum(1 for s in saved if s.created),
        updated_projects=sum(1 for s in saved if not s.created),
        invalid_projects=sum(s.status == FileStatus.INVALID.value for s in file_stats),
        unresolved_fields=sum(s.unresolved_fields for s in file_stats),
        start_time=start_time,
        end_time=end_time,
        elapsed_seconds=(end_time - start_time).total_seconds(),
        file_stats=file_stats,
    )
