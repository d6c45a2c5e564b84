from __future__ import annotations

import json
from dataclasses import asdict, dataclass

from .extraction import CoercionFailure, utc_timestamp

"""ErrorRecord model for the JSON Lines error log.

One record per problem found while processing a workbook. ``sheet`` and
``cell`` are empty strings for file-level or project-level problems (read
errors, validation errors, save errors) where no single cell is to blame.
"""

__all__ = [
    "ErrorRecord",
    "ErrorType",
]


class ErrorType:
    COERCION_FAILURE = "COERCION_FAILURE"
    UNRESOLVED_FIELD = "UNRESOLVED_FIELD"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    FILE_READ_ERROR = "FILE_READ_ERROR"
    SAVE_ERROR = "SAVE_ERROR"
    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: workbook file name
        sheet: sheet name ('' when not cell-specific)
        cell: A1 cell reference ('' when not cell-specific)
        field: canonical field name ('' when not field-specific)
        error_type: classification in UPPER_SNAKE_CASE
        message: human readable description
    """
    timestamp: str
    file: str
    sheet: str
    cell: str
    field: str
    error_type: str
    message: str

    @staticmethod
    def create(
        file: str, error_type: str, message: str, *, sheet: str = "", cell: str = "", field: str = ""
    ) -> ErrorRecord:
        return ErrorRecord(
            timestamp=utc_timestamp(),
            file=file,
            sheet=sheet,
            cell=cell,
            field=field,
            error_type=error_type,
            message=message,
        )

    @staticmethod
    def from_coercion_failure(file: str, failure: CoercionFailure) -> ErrorRecord:
        return ErrorRecord.create(
            file,
            ErrorType.COERCION_FAILURE,
            f"{failure.raw!r} is not a valid value ({failure.reason})",
            sheet=failure.location.sheet,
            cell=failure.location.cell,
            field=failure.field,
        )

    def to_json_line(self) -> str:
        # fixed key set: dataclass -> dict -> json
        return json.dumps(asdict(self), ensure_ascii=False, default=str)
