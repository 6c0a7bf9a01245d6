"""Resolution of active funding allocations and the salary figure that applies."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from funding_payroll.calculators.types import (
    ZERO,
    AllocationInfo,
    EmployeeInfo,
    EmploymentInfo,
    SalaryType,
)

FTE_LIMIT = Decimal("1")


@dataclass(frozen=True)
class ResolutionWarning:
    """Non-fatal condition found while resolving allocations."""

    code: str
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass
class ResolvedAllocation:
    """An active allocation paired with the salary figure that applies."""

    allocation: AllocationInfo
    salary_type: str
    salary: Decimal


@dataclass
class AllocationResolution:
    """Result of resolving an employee's allocations for a date."""

    employee_id: UUID
    as_of_date: date
    allocations: list[ResolvedAllocation] = field(default_factory=list)
    warnings: list[ResolutionWarning] = field(default_factory=list)

    @property
    def total_fte(self) -> Decimal:
        return sum((r.allocation.fte for r in self.allocations), ZERO)

    @property
    def is_empty(self) -> bool:
        return not self.allocations

    def warning_messages(self) -> list[str]:
        return [str(w) for w in self.warnings]

    def to_dict(self) -> dict[str, Any]:
        return {
            "employee_id": str(self.employee_id),
            "as_of_date": self.as_of_date.isoformat(),
            "allocations": [str(r.allocation.allocation_id) for r in self.allocations],
            "total_fte": str(self.total_fte),
            "warnings": self.warning_messages(),
        }


def probation_passed(employment: EmploymentInfo, as_of_date: date) -> bool:
    """True once the pass-probation date has been reached.

    An employment without a pass-probation date has no probation period.
    """
    if employment.pass_probation_date is None:
        return True
    return as_of_date >= employment.pass_probation_date


def resolve_salary(employment: EmploymentInfo, as_of_date: date) -> tuple[str, Decimal]:
    """Return (salary_type, monthly salary) applicable on as_of_date."""
    if probation_passed(employment, as_of_date):
        return SalaryType.PASS_PROBATION_SALARY.value, employment.pass_probation_salary
    if employment.probation_salary is not None:
        return SalaryType.PROBATION_SALARY.value, employment.probation_salary
    return SalaryType.PROBATION_SALARY.value, employment.pass_probation_salary


def resolve_active_allocations(employee: EmployeeInfo, as_of_date: date) -> AllocationResolution:
    """Select the allocations active on as_of_date and resolve their salary.

    Zero allocations and a total FTE above 1.0 are reported as warnings;
    neither raises.
    """
    resolution = AllocationResolution(employee_id=employee.employee_id, as_of_date=as_of_date)
    employment = employee.employment

    if employment is None:
        resolution.warnings.append(
            ResolutionWarning(
                "no_employment",
                f"Employee {employee.staff_id} has no active employment",
            )
        )
        return resolution

    active = [
        a
        for a in employee.allocations
        if a.employment_id == employment.employment_id and a.is_active_on(as_of_date)
    ]
    active.sort(key=lambda a: (a.start_date, str(a.allocation_id)))

    if not active:
        resolution.warnings.append(
            ResolutionWarning(
                "no_allocations",
                f"Employee {employee.staff_id} has no active funding allocations",
            )
        )
        return resolution

    salary_type, salary = resolve_salary(employment, as_of_date)
    for allocation in active:
        resolution.allocations.append(
            ResolvedAllocation(allocation=allocation, salary_type=salary_type, salary=salary)
        )

    total_fte = resolution.total_fte
    if total_fte > FTE_LIMIT:
        resolution.warnings.append(
            ResolutionWarning(
                "fte_over_limit",
                f"Employee {employee.staff_id} has total FTE of "
                f"{(total_fte * 100).normalize():f}% across active allocations",
            )
        )

    return resolution
