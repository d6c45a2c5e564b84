"""Domain models for the PFMT reconciliation tool.

This package contains the mapping-table, extraction-result, project-entity
and run-result types used throughout the application.
"""

from .error_record import ErrorRecord, ErrorType
from .extraction import CoercionFailure, ExtractionResult
from .mapping import (
    BudgetCategoryMapping,
    FieldMapping,
    FundingSourceTable,
    MappingTableError,
    MappingTables,
    SourceLocation,
    ValueType,
)
from .processing_result import FileStat, FileStatus, ProcessingResult
from .project import ProjectEntity, ProjectTeam, ValidationResult

__all__ = [
    # Mapping tables
    "BudgetCategoryMapping",
    "FieldMapping",
    "FundingSourceTable",
    "MappingTableError",
    "MappingTables",
    "SourceLocation",
    "ValueType",
    # Extraction
    "CoercionFailure",
    "ExtractionResult",
    # Project
    "ProjectEntity",
    "ProjectTeam",
    "ValidationResult",
    # Run results / error log
    "ErrorRecord",
    "ErrorType",
    "FileStat",
    "FileStatus",
    "ProcessingResult",
]
