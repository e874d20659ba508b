"""
Tests for the probation transition service.

Covers:
  - state machine (PROBATION_TRANSITIONS / validate_probation_transition)
  - initial record on employment creation
  - extension: later end date only, counter, employment date moved
  - passed: allocation re-pricing at pass_probation_salary (in place on the set start day, and opt-out)
  - failed: active allocations terminated
  - terminal states reject further transitions
  - history / statistics summaries
  - daily completion job (errors on one employment do not stop the run) and its CLI command
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from hrms.core.exceptions import ValidationError
from hrms.models.funding import STATUS_HISTORICAL, STATUS_TERMINATED, EmployeeFundingAllocation
from hrms.models.probation import (
    PROBATION_TRANSITIONS,
    ProbationRecord,
    validate_probation_transition,
)
from hrms.services import funding_allocation_service as fas
from hrms.services import probation_service as ps


def _active_records(employment_id):
    return ProbationRecord.query.filter_by(employment_id=employment_id, is_active=True).all()


def _allocate(employment, org_grant, grant_item):
    return fas.create_allocations(employment.id, [
        {"allocation_type": "org_funded", "grant_id": org_grant.id, "fte": 60},
        {"allocation_type": "grant", "grant_item_id": grant_item.id, "fte": 40},
    ])


class TestStateMachine:
    @pytest.mark.parametrize("old,new", [
        ("initial", "extension"), ("initial", "passed"), ("initial", "failed"),
        ("extension", "extension"), ("extension", "passed"), ("extension", "failed"),
    ])
    def test_allowed(self, old, new):
        assert validate_probation_transition(old, new)

    @pytest.mark.parametrize("old", ["passed", "failed"])
    def test_terminal_states(self, old):
        assert PROBATION_TRANSITIONS[old] == []
        for new in ("initial", "extension", "passed", "failed"):
            assert not validate_probation_transition(old, new)

    def test_back_to_initial_not_allowed(self):
        assert not validate_probation_transition("extension", "initial")


class TestInitialRecord:
    def test_created_with_employment(self, employment):
        records = _active_records(employment.id)
        assert len(records) == 1
        assert records[0].event_type == "initial"
        assert records[0].probation_end_date == employment.pass_probation_date
        assert records[0].extension_number == 0

    def test_no_record_without_probation_date(self, make_employment):
        emp = make_employment(pass_probation_date=None)
        assert _active_records(emp.id) == []


class TestExtension:
    def test_extends_and_counts(self, employment):
        old_end = employment.pass_probation_date
        new_end = old_end + timedelta(days=30)
        result = ps.mark_extension(employment.id, new_end, reason="Needs more time")

        assert result["record"]["event_type"] == "extension"
        assert result["record"]["extension_number"] == 1
        assert result["record"]["previous_end_date"] == old_end.isoformat()
        assert result["employment"]["pass_probation_date"] == new_end.isoformat()
        assert len(_active_records(employment.id)) == 1

    def test_second_extension(self, employment):
        end = employment.pass_probation_date
        ps.mark_extension(employment.id, end + timedelta(days=30))
        result = ps.mark_extension(employment.id, end + timedelta(days=60))
        assert result["record"]["extension_number"] == 2

    def test_end_date_must_move_forward(self, employment):
        with pytest.raises(ValidationError, match="after the current one"):
            ps.mark_extension(employment.id, employment.pass_probation_date)
        assert _active_records(employment.id)[0].event_type == "initial"

    def test_allocations_untouched(self, employment, org_grant, grant_item):
        _allocate(employment, org_grant, grant_item)
        ps.mark_extension(employment.id, employment.pass_probation_date + timedelta(days=30))
        active = EmployeeFundingAllocation.query.filter_by(employment_id=employment.id, end_date=None).all()
        assert {r.salary_type for r in active} == {"probation_salary"}


class TestPassed:
    def test_reprices_active_set(self, employment, org_grant, grant_item):
        created = _allocate(employment, org_grant, grant_item)
        assert [r["allocated_amount"] for r in created] == [12000.0, 8000.0]

        today = date.today()
        result = ps.mark_passed(employment.id, effective_date=today)
        assert result["recalculated"] is True
        assert sorted(result["allocations"]["ended"]) == sorted(r["id"] for r in created)

        active = EmployeeFundingAllocation.query.filter_by(
            employment_id=employment.id, end_date=None,
        ).order_by(EmployeeFundingAllocation.id).all()
        assert [r.allocated_amount for r in active] == [Decimal("19200.00"), Decimal("12800.00")]
        assert {r.salary_type for r in active} == {"pass_probation_salary"}
        assert {r.start_date for r in active} == {today}
        assert sum(Decimal(r.fte) for r in active) == Decimal("1")

        ended = EmployeeFundingAllocation.query.filter(
            EmployeeFundingAllocation.id.in_([r["id"] for r in created])
        ).all()
        assert {r.end_date for r in ended} == {today - timedelta(days=1)}
        assert {r.status for r in ended} == {STATUS_HISTORICAL}

    def test_pass_on_set_start_day_reprices_in_place(self, employment, org_grant, grant_item):
        today = date.today()
        created = fas.create_allocations(employment.id, [
            {"allocation_type": "org_funded", "grant_id": org_grant.id, "fte": 60},
            {"allocation_type": "grant", "grant_item_id": grant_item.id, "fte": 40},
        ], start_date=today.isoformat())

        result = ps.mark_passed(employment.id, effective_date=today)

        assert result["allocations"]["ended"] == []
        assert result["allocations"]["created"] == []
        assert sorted(result["allocations"]["updated"]) == sorted(r["id"] for r in created)
        rows = EmployeeFundingAllocation.query.filter_by(
            employment_id=employment.id,
        ).order_by(EmployeeFundingAllocation.id).all()
        assert len(rows) == 2
        assert [r.allocated_amount for r in rows] == [Decimal("19200.00"), Decimal("12800.00")]
        assert {r.salary_type for r in rows} == {"pass_probation_salary"}
        assert {r.end_date for r in rows} == {None}

    def test_opt_out_keeps_amounts(self, employment, org_grant, grant_item):
        _allocate(employment, org_grant, grant_item)
        result = ps.mark_passed(employment.id, recalculate=False)
        assert result["allocations"] == {"ended": [], "created": [], "updated": []}
        active = EmployeeFundingAllocation.query.filter_by(employment_id=employment.id, end_date=None).all()
        assert {r.salary_type for r in active} == {"probation_salary"}

    def test_config_switch(self, app, employment, org_grant, grant_item):
        _allocate(employment, org_grant, grant_item)
        app.config["PROBATION_AUTO_RECALCULATE"] = False
        try:
            result = ps.mark_passed(employment.id)
        finally:
            app.config["PROBATION_AUTO_RECALCULATE"] = True
        assert result["recalculated"] is False

    def test_new_allocations_after_pass_use_pass_salary(self, employment, org_grant):
        ps.mark_passed(employment.id)
        rows = fas.create_allocations(
            employment.id, [{"allocation_type": "org_funded", "grant_id": org_grant.id, "fte": 100}],
        )
        assert rows[0]["salary_type"] == "pass_probation_salary"
        assert rows[0]["allocated_amount"] == 32000.0

    def test_passed_is_terminal(self, employment):
        ps.mark_passed(employment.id)
        with pytest.raises(ValidationError, match="Cannot change probation"):
            ps.mark_extension(employment.id, employment.pass_probation_date + timedelta(days=30))
        with pytest.raises(ValidationError):
            ps.mark_failed(employment.id)


class TestFailed:
    def test_terminates_allocations(self, employment, org_grant, grant_item):
        created = _allocate(employment, org_grant, grant_item)
        result = ps.mark_failed(employment.id, reason="Performance")

        assert sorted(result["terminated_allocations"]) == sorted(r["id"] for r in created)
        rows = EmployeeFundingAllocation.query.filter_by(employment_id=employment.id).all()
        assert {r.status for r in rows} == {STATUS_TERMINATED}
        assert {r.end_date for r in rows} == {date.today()}
        assert result["record"]["decision_reason"] == "Performance"


class TestQueries:
    def test_history_summary(self, employment):
        ps.mark_extension(employment.id, employment.pass_probation_date + timedelta(days=30))
        history = ps.get_history(employment.id)
        assert history["total_extensions"] == 1
        assert history["current_status"] == "ongoing"
        assert history["can_extend"] is True
        assert [r["event_type"] for r in history["records"]] == ["initial", "extension"]

    def test_statistics(self, make_employment, second_employee):
        a = make_employment()
        b = make_employment(employee_id=second_employee.id)
        ps.mark_extension(a.id, a.pass_probation_date + timedelta(days=10))
        ps.mark_passed(b.id)
        stats = ps.get_statistics()
        assert stats["total_ongoing"] == 1
        assert stats["total_extended"] == 1
        assert stats["total_passed"] == 1
        assert stats["employees_on_extension"] == 1


class TestDueCompletions:
    def test_processes_due_employments(self, make_employment, second_employee, org_grant):
        due_date = date.today() + timedelta(days=5)
        due = make_employment(pass_probation_date=due_date.isoformat())
        not_due = make_employment(employee_id=second_employee.id)
        fas.create_allocations(due.id, [{"allocation_type": "org_funded", "grant_id": org_grant.id, "fte": 100}])

        result = ps.process_due_completions(as_of=due_date)

        assert result["processed"] == 1
        assert result["failed"] == 0
        assert _active_records(due.id)[0].event_type == "passed"
        assert _active_records(not_due.id)[0].event_type == "initial"
        active = EmployeeFundingAllocation.query.filter_by(employment_id=due.id, end_date=None).one()
        assert active.allocated_amount == Decimal("32000.00")
        assert active.start_date == due_date

    def test_database_error_on_one_employment_does_not_stop_the_run(
        self, make_employment, second_employee, org_grant, monkeypatch,
    ):
        due_date = date.today() + timedelta(days=5)
        broken = make_employment(pass_probation_date=due_date.isoformat())
        healthy = make_employment(employee_id=second_employee.id, pass_probation_date=due_date.isoformat())
        for emp in (broken, healthy):
            fas.create_allocations(emp.id, [{"allocation_type": "org_funded", "grant_id": org_grant.id, "fte": 100}])
        broken_id, healthy_id = broken.id, healthy.id

        real_reprice = fas.reprice_active_set

        def flaky_reprice(employment, effective_date, actor):
            if employment.id == broken_id:
                raise OperationalError("UPDATE employee_funding_allocations", {}, Exception("database is locked"))
            return real_reprice(employment, effective_date, actor)

        monkeypatch.setattr(fas, "reprice_active_set", flaky_reprice)

        result = ps.process_due_completions(as_of=due_date)

        assert result["processed"] == 1
        assert result["failed"] == 1
        failed = [d for d in result["details"] if not d["success"]]
        assert [d["employment_id"] for d in failed] == [broken_id]
        assert _active_records(broken_id)[0].event_type == "initial"
        assert _active_records(healthy_id)[0].event_type == "passed"


class TestCompletionCommand:
    def test_runs_for_given_date(self, app, make_employment):
        due_date = date.today() + timedelta(days=5)
        make_employment(pass_probation_date=due_date.isoformat())

        result = app.test_cli_runner().invoke(
            args=["process-probation-completions", "--date", due_date.isoformat()],
        )
        assert result.exit_code == 0
        assert "Processed 1 probation completion(s), 0 failed." in result.output

    def test_bad_date_is_a_usage_error(self, app):
        result = app.test_cli_runner().invoke(
            args=["process-probation-completions", "--date", "2026-13-45"],
        )
        assert result.exit_code == 2
        assert "Invalid value for '--date'" in result.output
