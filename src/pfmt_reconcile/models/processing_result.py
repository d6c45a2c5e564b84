from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

"""Processing result models for a reconciliation run.

FileStat carries the outcome of one workbook, ProcessingResult aggregates a
run and feeds the SUMMARY line.
"""


class FileStatus(str, Enum):
    SUCCESS = "success"  # reconciled, valid, saved
    INVALID = "invalid"  # reconciled but failed validation
    FAILED = "failed"  # unreadable workbook or save error


@dataclass(frozen=True)
class FileStat:
    """Per-file processing statistics."""
    file_name: str
    status: str  # FileStatus value
    project_id: object | None = None  # id after save (None when not saved)
    created: bool = False
    resolved_fields: int = 0
    unresolved_fields: int = 0
    coercion_failures: int = 0
    validation_errors: list[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0


@dataclass(frozen=True)
class ProcessingResult:
    """Aggregated results of a run; all counters needed for the SUMMARY line."""
    success_files: int
    failed_files: int  # FAILED + INVALID files
    created_projects: int
    updated_projects: int
    invalid_projects: int
    unresolved_fields: int  # summed over all files
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    file_stats: list[FileStat] | None = None

    @property
    def total_files(self) -> int:
        return self.success_files + self.failed_files
