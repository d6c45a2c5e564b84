from __future__ import annotations

import copy
import logging
import math
import re
from collections.abc import Mapping
from dataclasses import MISSING, asdict, dataclass, field, fields
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from numbers import Real
from typing import Any

from .extraction import utc_timestamp

"""ProjectEntity: the canonical, persisted project record.

Direct user edits and PFMT reconciliation both go through update() and
validate(). The dataclass field list is the schema: update() and from_json()
only copy keys that name one of these fields.
"""

__all__ = [
    "HealthIndicator",
    "ProjectEntity",
    "ProjectPhase",
    "ProjectStatus",
    "ProjectTeam",
    "ReportStatus",
    "ValidationResult",
]

logger = logging.getLogger(__name__)

JOBS_PER_MILLION = Decimal("5.6")

URBAN_CENTRES = (
    "Calgary", "Edmonton", "Red Deer", "Lethbridge", "Medicine Hat",
    "Grande Prairie", "Airdrie", "Spruce Grove", "Leduc", "Lloydminster",
)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


class ReportStatus(str, Enum):
    UPDATE_REQUIRED = "Update Required"
    UPDATED_BY_PROJECT_TEAM = "Updated by Project Team"
    REVIEWED_BY_DIRECTOR = "Reviewed by Director"


class ProjectStatus(str, Enum):
    UNDERWAY = "Underway"
    COMPLETE = "Complete"
    ON_HOLD = "On Hold"
    CANCELLED = "Cancelled"


class ProjectPhase(str, Enum):
    PLANNING = "Planning"
    DESIGN = "Design"
    CONSTRUCTION = "Construction"
    CLOSEOUT = "Closeout"


class HealthIndicator(str, Enum):
    OVER_BUDGET = "OVER_BUDGET"
    OVERDUE = "OVERDUE"
    ON_HOLD = "ON_HOLD"
    HEALTHY = "HEALTHY"


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: list[str]


@dataclass
class ProjectTeam:
    """Named single-occupant roles plus two ordered member lists."""
    executive_director: str | None = None
    director: str | None = None
    sr_project_manager: str | None = None
    project_manager: str | None = None
    project_coordinator: str | None = None
    contract_services_analyst: str | None = None
    integration_analyst: str | None = None
    additional_members: list[Any] = field(default_factory=list)
    historical_members: list[Any] = field(default_factory=list)

    ROLE_NAMES = (
        "executive_director", "director", "sr_project_manager", "project_manager",
        "project_coordinator", "contract_services_analyst", "integration_analyst",
    )

    @classmethod
    def from_json(cls, data: Mapping[str, Any] | None) -> ProjectTeam:
        team = cls()
        team.merge(data or {})
        return team

    def merge(self, data: Mapping[str, Any]) -> None:
        """Key-by-key merge; keys that are not team fields are ignored."""
        known = {f.name for f in fields(self)}
        for key, value in data.items():
            if key not in known:
                logger.debug(f"team: ignoring unknown key '{key}'")
                continue
            if key in ("additional_members", "historical_members"):
                value = list(value or [])
            setattr(self, key, value)

    def filled_roles(self) -> int:
        count = 0
        for role in self.ROLE_NAMES:
            member = getattr(self, role)
            if isinstance(member, str) and member.strip():
                count += 1
        return count

    def to_json(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ProjectEntity:
    # identity / audit
    id: Any = None
    owner_id: str = ""
    created_at: str = field(default_factory=utc_timestamp)
    updated_at: str = field(default_factory=utc_timestamp)

    # header
    report_status: str = ReportStatus.UPDATE_REQUIRED.value
    project_status: str = ProjectStatus.UNDERWAY.value
    project_phase: str = ProjectPhase.PLANNING.value
    modified_by: str = ""
    modified_date: str = field(default_factory=utc_timestamp)
    reporting_date: str | None = None
    director_review_date: str | None = None
    pfmt_data_date: str | None = None
    archive_date: str | None = None

    # details
    project_name: str = ""
    project_category: str = ""
    client_ministry: str = ""
    funded_to_complete: str = ""
    pfmt_file: str = ""
    project_type: str = ""
    delivery_method: str = ""
    delivery_type: str = ""
    program: str = ""
    geographic_region: str = ""
    project_description: str = ""
    square_meters: float = 0
    number_of_beds: int = 0
    number_of_jobs: int = 0
    total_opening_capacity: int = 0
    capacity_at_full_build: int = 0
    capital_plan_line: str = ""
    charter_school: bool = False
    cpd_number: str = ""
    grades_from: str = ""
    grades_to: str = ""
    school_jurisdiction: str = ""

    # location
    location_name: str = ""
    municipality: str = ""
    urban_rural: str = ""
    project_address: str = ""
    constituency: str = ""
    mla: str = ""
    building_name: str = ""
    building_type: str = ""
    building_id: str = ""
    building_owner: str = ""
    plan_number: str = ""
    block_number: str = ""
    lot_number: str = ""
    latitude: float | None = None
    longitude: float | None = None

    team: ProjectTeam = field(default_factory=ProjectTeam)

    # financial
    total_budget: float = 0
    amount_spent: float = 0
    approved_tpc: float = 0
    eac: float = 0
    current_year_cashflow: float = 0
    future_year_cashflow: float = 0
    budget_categories: dict[str, dict[str, Any]] = field(default_factory=dict)
    funding_sources: list[dict[str, Any]] = field(default_factory=list)

    # last PFMT ingestion
    pfmt_file_name: str | None = None
    pfmt_extracted_at: str | None = None
    pfmt_data: dict[str, Any] | None = None

    PROTECTED_FIELDS = frozenset({"id", "created_at"})

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    # ------------------------------------------------------------------
    # validation / derivation
    # ------------------------------------------------------------------

    def validate(self) -> ValidationResult:
        """Check every rule and collect all errors (no short-circuit)."""
        errors: list[str] = []

        if not isinstance(self.project_name, str) or not self.project_name.strip():
            errors.append("Project name is required")

        if self.report_status not in {s.value for s in ReportStatus}:
            errors.append(f"Invalid report status: {self.report_status!r}")
        if self.project_status not in {s.value for s in ProjectStatus}:
            errors.append(f"Invalid project status: {self.project_status!r}")
        if self.project_phase not in {p.value for p in ProjectPhase}:
            errors.append(f"Invalid project phase: {self.project_phase!r}")

        for name, label in (
            ("square_meters", "Square meters"),
            ("number_of_beds", "Number of beds"),
            ("number_of_jobs", "Number of jobs"),
        ):
            value = getattr(self, name)
            if not _is_number(value):
                errors.append(f"{label} must be a number")
            elif value < 0:
                errors.append(f"{label} cannot be negative")

        for name, label, bound in (("latitude", "Latitude", 90), ("longitude", "Longitude", 180)):
            value = getattr(self, name)
            if value is None:
                continue
            if not _is_number(value):
                errors.append(f"{label} must be a number")
            elif not -bound <= value <= bound:
                errors.append(f"{label} must be between -{bound} and {bound}")

        grade_from = _leading_int(self.grades_from)
        grade_to = _leading_int(self.grades_to)
        if grade_from is not None and grade_to is not None and grade_from > grade_to:
            errors.append("Grades From cannot be higher than Grades To")

        return ValidationResult(is_valid=not errors, errors=errors)

    def calculate_derived_fields(self) -> None:
        """Fill derived fields in place. Repeated calls only move the timestamps."""
        if (
            not self.number_of_jobs
            and self.approved_tpc
            and _is_number(self.approved_tpc)
            and math.isfinite(self.approved_tpc)
        ):
            jobs = Decimal(str(self.approved_tpc)) / Decimal(1_000_000) * JOBS_PER_MILLION
            self.number_of_jobs = int(jobs.quantize(Decimal(1), rounding=ROUND_HALF_UP))

        if self.location_name and not self.urban_rural:
            location = self.location_name.lower()
            is_urban = any(city.lower() in location for city in URBAN_CENTRES)
            self.urban_rural = "Urban" if is_urban else "Rural"

        if self.location_name and not self.municipality:
            self.municipality = self.location_name

        now = utc_timestamp()
        self.modified_date = now
        self.updated_at = now

    def update(self, partial: Mapping[str, Any]) -> list[str]:
        """Apply known fields of ``partial`` (never id/created_at), then derive.

        Returns the names of the fields that were applied.
        """
        known = set(self.field_names())
        applied: list[str] = []
        for key, value in partial.items():
            if key in self.PROTECTED_FIELDS:
                continue
            if key not in known:
                logger.debug(f"update: ignoring unknown field '{key}'")
                continue
            if key == "team":
                if isinstance(value, ProjectTeam):
                    value = value.to_json()
                self.team.merge(value or {})
            elif value is None and key not in _NULLABLE:
                # clearing a non-nullable field restores its default, as from_json does
                setattr(self, key, _field_default(key))
            else:
                setattr(self, key, copy.deepcopy(value))
            applied.append(key)
        self.calculate_derived_fields()
        return applied

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def get_team_size(self) -> int:
        # historical members are serialized but are not part of the current team
        return self.team.filled_roles() + len(self.team.additional_members)

    def is_over_budget(self) -> bool:
        return _is_number(self.amount_spent) and _is_number(self.total_budget) and self.amount_spent > self.total_budget

    def is_overdue(self, now: datetime | None = None) -> bool:
        """The reporting date has passed and the report still needs an update."""
        if self.project_status in (ProjectStatus.COMPLETE.value, ProjectStatus.CANCELLED.value):
            return False
        if self.report_status != ReportStatus.UPDATE_REQUIRED.value or not self.reporting_date:
            return False
        try:
            due = datetime.fromisoformat(str(self.reporting_date).replace("Z", "+00:00"))
        except ValueError:
            return False
        if due.tzinfo is None:
            due = due.replace(tzinfo=UTC)
        return due < (now or datetime.now(UTC))

    def get_health_status(self, now: datetime | None = None) -> list[str]:
        indicators: list[str] = []
        if self.is_over_budget():
            indicators.append(HealthIndicator.OVER_BUDGET.value)
        if self.is_overdue(now):
            indicators.append(HealthIndicator.OVERDUE.value)
        if self.project_status == ProjectStatus.ON_HOLD.value:
            indicators.append(HealthIndicator.ON_HOLD.value)
        if not indicators:
            indicators.append(HealthIndicator.HEALTHY.value)
        return indicators

    def get_summary(self) -> dict[str, Any]:
        percent = 0.0
        if _is_number(self.total_budget) and self.total_budget > 0 and _is_number(self.amount_spent):
            percent = self.amount_spent / self.total_budget * 100
        return {
            "id": self.id,
            "name": self.project_name,
            "status": self.project_status,
            "phase": self.project_phase,
            "location": self.location_name,
            "total_budget": self.total_budget,
            "amount_spent": self.amount_spent,
            "percent_complete": percent,
            "team_size": self.get_team_size(),
            "health": self.get_health_status(),
            "last_modified": self.modified_date,
        }

    # ------------------------------------------------------------------
    # serialization
    # ------------------------------------------------------------------

    def to_json(self) -> dict[str, Any]:
        """Flat mapping of every field (team as a nested mapping)."""
        data = {name: copy.deepcopy(getattr(self, name)) for name in self.field_names() if name != "team"}
        data["team"] = self.team.to_json()
        return data

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> ProjectEntity:
        known = set(cls.field_names())
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                logger.debug(f"from_json: ignoring unknown field '{key}'")
                continue
            if key == "team":
                kwargs[key] = value if isinstance(value, ProjectTeam) else ProjectTeam.from_json(value)
            elif value is not None or key in _NULLABLE:
                kwargs[key] = copy.deepcopy(value)
        return cls(**kwargs)


_NULLABLE = frozenset(
    f.name for f in fields(ProjectEntity) if f.default is None
)


def _field_default(name: str) -> Any:
    f = next(f for f in fields(ProjectEntity) if f.name == name)
    if f.default is not MISSING:
        return f.default
    return f.default_factory()


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _leading_int(value: Any) -> int | None:
    """parseInt-style: the leading integer of a grade such as '10' or '10th'."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    m = _LEADING_INT.match(str(value))
    return int(m.group(1)) if m else None
