from __future__ import annotations

from ..models.processing_result import ProcessingResult

"""SUMMARY line rendering.

Format (one line, fixed key order):
SUMMARY files={total}/{total} success={s} failed={f} created={c} updated={u}
invalid={i} unresolved={r} elapsed_sec={e}
"""


def _format_seconds(seconds: float) -> str:
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        # avoid scientific notation for tiny values
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return f"{seconds:.2f}".rstrip("0").rstrip(".")


def render_summary_line(total_files: int, result: ProcessingResult) -> str:
    """Render the SUMMARY line for a finished run.

    Examples:
        >>> from datetime import datetime, timezone
        >>> start = datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
        >>> end = datetime(2024, 1, 1, 10, 0, 2, tzinfo=timezone.utc)
        >>> result = ProcessingResult(
        ...     success_files=1, failed_files=0, created_projects=1, updated_projects=0,
        ...     invalid_projects=0, unresolved_fields=3, start_time=start, end_time=end,
        ...     elapsed_seconds=2.0,
        ... )
        >>> render_summary_line(1, result)
        'SUMMARY files=1/1 success=1 failed=0 created=1 updated=0 invalid=0 unresolved=3 elapsed_sec=2'
    """
    return (
        f"SUMMARY files={total_files}/{total_files} "
        f"success={result.success_files} "
        f"failed={result.failed_files} "
        f"created={result.created_projects} "
        f"updated={result.updated_projects} "
        f"invalid={result.invalid_projects} "
        f"unresolved={result.unresolved_fields} "
        f"elapsed_sec={_format_seconds(result.elapsed_seconds)}"
    )
