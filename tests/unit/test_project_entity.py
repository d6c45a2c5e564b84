from __future__ import annotations

from datetime import UTC, datetime

import pytest

from pfmt_reconcile.models.project import ProjectEntity, ProjectTeam


def _valid(**kwargs) -> ProjectEntity:
    return ProjectEntity(project_name="Red Deer Justice Centre", **kwargs)


class TestValidate:
    def test_defaults_with_name_are_valid(self):
        result = _valid().validate()
        assert result.is_valid
        assert result.errors == []

    def test_name_required(self):
        result = ProjectEntity(project_name="  ").validate()
        assert not result.is_valid
        assert "Project name is required" in result.errors

    def test_latitude_bounds(self):
        result = _valid(latitude=95).validate()
        assert not result.is_valid
        assert "Latitude must be between -90 and 90" in result.errors

    def test_longitude_bounds(self):
        assert "Longitude must be between -180 and 180" in _valid(longitude=-181).validate().errors

    def test_non_numeric_coordinates(self):
        assert "Latitude must be a number" in _valid(latitude="north").validate().errors

    def test_grade_ordering(self):
        result = _valid(grades_from="10", grades_to="5").validate()
        assert "Grades From cannot be higher than Grades To" in result.errors

    def test_grade_leading_integer_parse(self):
        assert _valid(grades_from="7th", grades_to="12th").validate().is_valid
        # non-numeric grades are not compared
        assert _valid(grades_from="K", grades_to="6").validate().is_valid

    def test_enumerations(self):
        result = _valid(report_status="Done", project_status="Paused", project_phase="Build").validate()
        assert len(result.errors) == 3

    def test_negative_and_non_numeric_counts(self):
        result = _valid(square_meters=-1, number_of_beds="many").validate()
        assert "Square meters cannot be negative" in result.errors
        assert "Number of beds must be a number" in result.errors

    def test_all_errors_collected(self):
        result = ProjectEntity(project_name="", latitude=100, grades_from="9", grades_to="1").validate()
        assert len(result.errors) == 3


class TestDerivedFields:
    def test_jobs_from_approved_tpc(self):
        p = _valid(approved_tpc=5_000_000)
        p.calculate_derived_fields()
        assert p.number_of_jobs == 28

    def test_jobs_round_half_up(self):
        # 0.625M * 5.6 = 3.5 -> 4
        p = _valid(approved_tpc=625_000)
        p.calculate_derived_fields()
        assert p.number_of_jobs == 4

    @pytest.mark.parametrize("tpc", [float("nan"), float("inf")])
    def test_non_finite_tpc_is_not_derived(self, tpc):
        p = _valid()
        p.update({"approved_tpc": tpc})
        assert p.number_of_jobs == 0

    def test_existing_jobs_kept(self):
        p = _valid(approved_tpc=5_000_000, number_of_jobs=3)
        p.calculate_derived_fields()
        assert p.number_of_jobs == 3

    def test_urban_rural_and_municipality(self):
        p = _valid(location_name="North Red Deer")
        p.calculate_derived_fields()
        assert p.urban_rural == "Urban"
        assert p.municipality == "North Red Deer"

        q = _valid(location_name="Hinton")
        q.calculate_derived_fields()
        assert q.urban_rural == "Rural"

    def test_twice_is_idempotent_except_timestamps(self):
        p = _valid(approved_tpc=5_000_000, location_name="Calgary")
        p.calculate_derived_fields()
        first = p.to_json()
        p.calculate_derived_fields()
        second = p.to_json()
        for key in ("modified_date", "updated_at"):
            first.pop(key)
            second.pop(key)
        assert first == second


class TestUpdate:
    def test_protected_and_unknown_fields(self):
        p = _valid(id=7)
        created = p.created_at
        applied = p.update({"id": 99, "created_at": "x", "bogus": 1, "eac": 10.0})
        assert applied == ["eac"]
        assert p.id == 7
        assert p.created_at == created
        assert p.eac == 10.0
        assert not hasattr(p, "bogus")

    def test_team_merge_is_key_by_key(self):
        p = _valid(team=ProjectTeam(director="Ann", project_manager="Bo"))
        p.update({"team": {"project_manager": "Cy", "unknown_role": "x"}})
        assert p.team.director == "Ann"
        assert p.team.project_manager == "Cy"

    def test_values_are_copied(self):
        categories = {"construction": {"budget": 1.0}}
        p = _valid()
        p.update({"budget_categories": categories})
        categories["construction"]["budget"] = 2.0
        assert p.budget_categories["construction"]["budget"] == 1.0

    def test_update_derives(self):
        p = _valid()
        p.update({"approved_tpc": 10_000_000})
        assert p.number_of_jobs == 56

    def test_clearing_counts_restores_defaults(self):
        p = _valid(square_meters=1200.0, number_of_beds=40)
        applied = p.update({"square_meters": None, "number_of_beds": None})
        assert applied == ["square_meters", "number_of_beds"]
        assert (p.square_meters, p.number_of_beds) == (0, 0)
        assert p.validate().is_valid

    def test_clearing_nullable_fields_keeps_none(self):
        p = _valid(latitude=52.3)
        p.update({"latitude": None})
        assert p.latitude is None
        assert p.validate().is_valid

    def test_clearing_list_field_gets_a_fresh_default(self):
        p = _valid(funding_sources=[{"source": "Old", "amount": 1.0}])
        p.update({"funding_sources": None})
        assert p.funding_sources == []
        assert p.funding_sources is not ProjectEntity(project_name="Y").funding_sources


class TestQueries:
    def test_team_size_excludes_historical(self):
        team = ProjectTeam(
            director="Ann", project_manager=" ", additional_members=["x", "y"], historical_members=["old"]
        )
        assert _valid(team=team).get_team_size() == 3

    def test_over_budget(self):
        assert _valid(total_budget=100, amount_spent=101).is_over_budget()
        assert not _valid(total_budget=100, amount_spent=100).is_over_budget()

    def test_overdue(self):
        now = datetime(2024, 6, 1, tzinfo=UTC)
        p = _valid(reporting_date="2024-05-01")
        assert p.is_overdue(now)
        assert not p.is_overdue(datetime(2024, 4, 1, tzinfo=UTC))
        p.report_status = "Reviewed by Director"
        assert not p.is_overdue(now)

    def test_completed_projects_are_never_overdue(self):
        p = _valid(reporting_date="2024-05-01", project_status="Complete")
        assert not p.is_overdue(datetime(2024, 6, 1, tzinfo=UTC))

    def test_health(self):
        now = datetime(2024, 6, 1, tzinfo=UTC)
        assert _valid().get_health_status(now) == ["HEALTHY"]
        p = _valid(total_budget=1, amount_spent=2, project_status="On Hold", reporting_date="2024-01-01")
        assert p.get_health_status(now) == ["OVER_BUDGET", "OVERDUE", "ON_HOLD"]

    def test_summary(self):
        p = _valid(id=3, total_budget=200, amount_spent=50, location_name="Leduc")
        s = p.get_summary()
        assert s["id"] == 3
        assert s["name"] == "Red Deer Justice Centre"
        assert s["percent_complete"] == 25.0
        assert s["location"] == "Leduc"
        assert s["team_size"] == 0

    def test_summary_after_clearing_amount_spent(self):
        p = _valid(total_budget=100.0, amount_spent=40.0)
        p.update({"amount_spent": None})
        s = p.get_summary()
        assert s["amount_spent"] == 0
        assert s["percent_complete"] == 0.0

    def test_summary_with_non_numeric_amount_spent(self):
        p = _valid(total_budget=100.0, amount_spent="n/a")
        assert p.get_summary()["percent_complete"] == 0.0


class TestSerialization:
    def test_round_trip(self):
        p = _valid(id=5, approved_tpc=1.5, team=ProjectTeam(director="Ann"), latitude=52.3)
        data = p.to_json()
        assert data["team"]["director"] == "Ann"
        q = ProjectEntity.from_json(data)
        assert q == p

    def test_from_json_ignores_unknown_and_fills_defaults(self):
        q = ProjectEntity.from_json({"project_name": "X", "legacy_field": 1, "eac": None})
        assert q.project_name == "X"
        assert q.eac == 0
        assert q.project_phase == "Planning"

    def test_from_json_keeps_identity_verbatim(self):
        q = ProjectEntity.from_json({"id": "abc", "created_at": "2020-01-01T00:00:00Z"})
        assert q.id == "abc"
        assert q.created_at == "2020-01-01T00:00:00Z"

    def test_to_json_is_a_copy(self):
        p = _valid(budget_categories={"land": {"budget": 1.0}})
        p.to_json()["budget_categories"]["land"]["budget"] = 9.0
        assert p.budget_categories["land"]["budget"] == 1.0


@pytest.mark.parametrize("status", ["Underway", "Complete", "On Hold", "Cancelled"])
def test_every_project_status_is_accepted(status):
    assert _valid(project_status=status).validate().is_valid
