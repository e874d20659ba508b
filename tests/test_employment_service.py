"""
Tests for the employment service.

Covers:
  - employee registry (create, duplicate staff id)
  - employment creation: validation, initial probation, allocations in one transaction
  - update without silent re-pricing
  - termination: soft delete + allocations terminated
"""

from datetime import date, timedelta

import pytest

from hrms.core.exceptions import CapacityError, ConflictError, NotFoundError, ValidationError
from hrms.models.employment import Employment
from hrms.models.funding import STATUS_TERMINATED, EmployeeFundingAllocation
from hrms.models.probation import ProbationRecord
from hrms.services import employment_service as es
from hrms.services import funding_allocation_service as fas


class TestEmployees:
    def test_create(self):
        employee = es.create_employee({"staff_id": "0100", "first_name": "Nan", "last_name": "Su"})
        assert employee.full_name == "Nan Su"

    def test_duplicate_staff_id(self, employee):
        with pytest.raises(ConflictError):
            es.create_employee({"staff_id": employee.staff_id, "first_name": "X"})

    def test_required_fields(self):
        with pytest.raises(ValidationError) as exc:
            es.create_employee({})
        assert set(exc.value.details) == {"staff_id", "first_name"}


class TestCreateEmployment:
    def test_requires_pass_probation_salary(self, employee):
        with pytest.raises(ValidationError) as exc:
            es.create_employment({"employee_id": employee.id, "start_date": "2025-01-01"})
        assert "pass_probation_salary" in exc.value.details

    def test_unknown_employee(self):
        with pytest.raises(NotFoundError):
            es.create_employment({
                "employee_id": 999, "start_date": "2025-01-01", "pass_probation_salary": 1000,
            })

    def test_end_before_start(self, employee):
        with pytest.raises(ValidationError) as exc:
            es.create_employment({
                "employee_id": employee.id,
                "start_date": "2025-02-01",
                "end_date": "2025-01-01",
                "pass_probation_salary": 1000,
            })
        assert "end_date" in exc.value.details

    def test_negative_salary(self, employee):
        with pytest.raises(ValidationError) as exc:
            es.create_employment({
                "employee_id": employee.id, "start_date": "2025-01-01", "pass_probation_salary": -5,
            })
        assert "pass_probation_salary" in exc.value.details

    def test_with_allocations(self, make_employment, org_grant, grant_item):
        emp = make_employment(allocations=[
            {"allocation_type": "org_funded", "grant_id": org_grant.id, "fte": 60},
            {"allocation_type": "grant", "grant_item_id": grant_item.id, "fte": 40},
        ])
        rows = EmployeeFundingAllocation.query.filter_by(employment_id=emp.id).all()
        assert sorted(float(r.allocated_amount) for r in rows) == [8000.0, 12000.0]
        assert ProbationRecord.query.filter_by(employment_id=emp.id, is_active=True).count() == 1

    def test_invalid_allocations_roll_back_everything(self, make_employment, single_slot_item, org_grant):
        make_employment(allocations=[
            {"allocation_type": "grant", "grant_item_id": single_slot_item.id, "fte": 100},
        ])
        before = Employment.query.count()
        with pytest.raises(CapacityError):
            make_employment(allocations=[
                {"allocation_type": "grant", "grant_item_id": single_slot_item.id, "fte": 100},
            ])
        assert Employment.query.count() == before
        assert ProbationRecord.query.count() == before


class TestUpdateEmployment:
    def test_salary_change_does_not_reprice(self, employment, org_grant):
        fas.create_allocations(
            employment.id, [{"allocation_type": "org_funded", "grant_id": org_grant.id, "fte": 100}],
        )
        es.update_employment(employment.id, {"probation_salary": "25000"})
        row = EmployeeFundingAllocation.query.filter_by(employment_id=employment.id).one()
        assert float(row.allocated_amount) == 20000.0

        result = fas.replace_allocations(
            employment.id, [{"allocation_type": "org_funded", "grant_id": org_grant.id, "fte": 100}],
        )
        assert result["allocations"][0]["allocated_amount"] == 25000.0

    def test_probation_date_not_editable_here(self, employment):
        with pytest.raises(ValidationError):
            es.update_employment(employment.id, {"pass_probation_date": "2030-01-01"})

    def test_cannot_clear_both_salaries(self, employment):
        with pytest.raises(ValidationError, match="at least one salary"):
            es.update_employment(employment.id, {"probation_salary": None, "pass_probation_salary": None})


class TestTerminate:
    def test_soft_deletes_and_terminates_allocations(self, employment, org_grant):
        fas.create_allocations(
            employment.id, [{"allocation_type": "org_funded", "grant_id": org_grant.id, "fte": 100}],
        )
        end = date.today() + timedelta(days=7)
        result = es.terminate_employment(employment.id, end_date=end.isoformat())

        assert len(result["terminated_allocations"]) == 1
        row = EmployeeFundingAllocation.query.filter_by(employment_id=employment.id).one()
        assert row.status == STATUS_TERMINATED
        assert row.end_date == end
        with pytest.raises(NotFoundError):
            es.get_employment(employment.id)
        assert es.get_employment(employment.id, include_deleted=True).status is False

    def test_terminated_employment_rejects_allocations(self, employment, org_grant):
        es.terminate_employment(employment.id)
        with pytest.raises(NotFoundError):
            fas.create_allocations(
                employment.id, [{"allocation_type": "org_funded", "grant_id": org_grant.id, "fte": 100}],
            )
