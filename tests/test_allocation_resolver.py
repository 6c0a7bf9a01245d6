"""Tests for active allocation resolution."""

from dataclasses import replace
from datetime import date
from decimal import Decimal

from funding_payroll.calculators.allocation_resolver import (
    probation_passed,
    resolve_active_allocations,
    resolve_salary,
)

PAY_DATE = date(2025, 1, 31)


class TestResolveActiveAllocations:
    """Test allocation selection for a pay period date."""

    def test_active_allocations_resolved(self, make_employee, grants):
        employee = make_employee([(grants["SMRU"], "0.6"), (grants["BHF"], "0.4")])
        resolution = resolve_active_allocations(employee, PAY_DATE)

        assert len(resolution.allocations) == 2
        assert resolution.total_fte == Decimal("1.0")
        assert resolution.warnings == []
        assert all(r.salary == Decimal("50000") for r in resolution.allocations)
        assert all(r.salary_type == "pass_probation_salary" for r in resolution.allocations)

    def test_no_allocations_warns(self, make_employee):
        resolution = resolve_active_allocations(make_employee([]), PAY_DATE)

        assert resolution.is_empty
        assert [w.code for w in resolution.warnings] == ["no_allocations"]

    def test_historical_allocations_ignored(self, make_employee, grants):
        employee = make_employee([(grants["SMRU"], "1")], allocation_status="historical")
        resolution = resolve_active_allocations(employee, PAY_DATE)
        assert resolution.is_empty

    def test_allocation_ended_before_period_ignored(self, make_employee, grants):
        employee = make_employee([(grants["SMRU"], "0.5"), (grants["BHF"], "0.5")])
        ended = replace(employee.allocations[0], end_date=date(2024, 12, 31))
        employee = replace(employee, allocations=(ended, employee.allocations[1]))

        resolution = resolve_active_allocations(employee, PAY_DATE)
        assert [r.allocation.allocation_id for r in resolution.allocations] == [
            employee.allocations[1].allocation_id
        ]

    def test_allocation_starting_after_period_ignored(self, make_employee, grants):
        employee = make_employee([(grants["SMRU"], "1")])
        future = replace(employee.allocations[0], start_date=date(2025, 2, 1))
        employee = replace(employee, allocations=(future,))
        assert resolve_active_allocations(employee, PAY_DATE).is_empty

    def test_fte_over_limit_warns_without_raising(self, make_employee, grants):
        employee = make_employee([(grants["SMRU"], "0.6"), (grants["BHF"], "0.6")])
        resolution = resolve_active_allocations(employee, PAY_DATE)

        assert len(resolution.allocations) == 2
        assert [w.code for w in resolution.warnings] == ["fte_over_limit"]
        assert "120%" in resolution.warning_messages()[0]

    def test_no_employment_warns(self, make_employee):
        employee = replace(make_employee([]), employment=None)
        resolution = resolve_active_allocations(employee, PAY_DATE)
        assert [w.code for w in resolution.warnings] == ["no_employment"]

    def test_to_dict(self, make_employee, grants):
        employee = make_employee([(grants["SMRU"], "0.6")])
        data = resolve_active_allocations(employee, PAY_DATE).to_dict()
        assert data["as_of_date"] == "2025-01-31"
        assert data["total_fte"] == "0.6"


class TestProbation:
    def test_probation_passed_on_pass_date(self, make_employee):
        employment = make_employee(pass_probation_date=date(2025, 3, 1)).employment
        assert not probation_passed(employment, date(2025, 2, 28))
        assert probation_passed(employment, date(2025, 3, 1))

    def test_no_pass_date_means_no_probation(self, make_employee):
        employment = make_employee(pass_probation_date=None).employment
        assert probation_passed(employment, date(2020, 1, 1))
        assert resolve_salary(employment, PAY_DATE) == ("pass_probation_salary", Decimal("50000"))
