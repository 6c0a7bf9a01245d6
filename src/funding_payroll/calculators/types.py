"""Plain data structures passed through the calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


ZERO = Decimal("0")


class AllocationType(str, Enum):
    """Funding source kinds."""

    GRANT = "grant"
    ORG_FUNDED = "org_funded"


class AllocationStatus(str, Enum):
    """Funding allocation lifecycle states."""

    ACTIVE = "active"
    HISTORICAL = "historical"
    TERMINATED = "terminated"


class SalaryType(str, Enum):
    """Which employment salary figure applies."""

    PROBATION_SALARY = "probation_salary"
    PASS_PROBATION_SALARY = "pass_probation_salary"


@dataclass(frozen=True)
class GrantInfo:
    """Funding grant as seen by the calculator."""

    grant_id: UUID
    code: str
    organization: str
    name: str | None = None


@dataclass(frozen=True)
class AllocationInfo:
    """A funding allocation with its funding source resolved."""

    allocation_id: UUID
    employment_id: UUID
    allocation_type: str
    fte: Decimal
    status: str
    start_date: date
    end_date: date | None = None
    salary_type: str | None = None
    grant_item_id: UUID | None = None
    grant_position: str | None = None
    grant: GrantInfo | None = None

    @property
    def funding_organization(self) -> str | None:
        return self.grant.organization if self.grant else None

    @property
    def label(self) -> str:
        """Human-readable label used in errors and previews."""
        pct = f"{(self.fte * 100).normalize():f}%"
        if self.grant is not None:
            position = self.grant_position or self.grant.name or "Org funded"
            return f"{self.grant.code} - {position} ({pct})"
        return f"Allocation ({pct})"

    def is_active_on(self, d: date) -> bool:
        return (
            self.status == AllocationStatus.ACTIVE
            and self.start_date <= d
            and (self.end_date is None or self.end_date >= d)
        )


@dataclass(frozen=True)
class EmploymentInfo:
    """Employment contract terms relevant to payroll."""

    employment_id: UUID
    employee_id: UUID
    start_date: date
    pass_probation_salary: Decimal
    employment_type: str = "Full-time"
    department_id: UUID | None = None
    end_date: date | None = None
    probation_salary: Decimal | None = None
    pass_probation_date: date | None = None
    pvd_enabled: bool = False
    saving_fund_enabled: bool = False
    is_active: bool = True


@dataclass(frozen=True)
class EmployeeInfo:
    """Employee with the active employment and its allocations."""

    employee_id: UUID
    staff_id: str
    full_name: str
    organization: str
    status: str | None = None
    has_spouse: bool = False
    children_count: int = 0
    eligible_parents_count: int = 0
    employment: EmploymentInfo | None = None
    allocations: tuple[AllocationInfo, ...] = ()


@dataclass(frozen=True)
class TaxBracket:
    """Progressive tax bracket. Rate is a fraction (0.05 for 5%)."""

    min_income: Decimal
    max_income: Decimal | None
    rate: Decimal
    bracket_order: int


@dataclass(frozen=True)
class PayrollAdjustments:
    """Per-line additions and subtractions supplied by the caller."""

    salary_bonus: Decimal = ZERO
    compensation_refund: Decimal = ZERO
    compensation_deduction: Decimal = ZERO
    thirteenth_month_accrued_ytd: Decimal = ZERO


@dataclass
class PayrollLine:
    """Computed payroll for one employee allocation, unrounded."""

    employee_id: UUID
    employment_id: UUID
    allocation_id: UUID
    pay_period_date: date
    salary_type: str
    fte: Decimal
    gross_salary: Decimal
    gross_salary_by_fte: Decimal

    annual_increase: Decimal = ZERO
    salary_bonus: Decimal = ZERO
    compensation_refund: Decimal = ZERO
    compensation_deduction: Decimal = ZERO
    thirteen_month_salary: Decimal = ZERO
    thirteen_month_salary_accrued: Decimal = ZERO

    pvd: Decimal = ZERO
    saving_fund: Decimal = ZERO
    employer_social_security: Decimal = ZERO
    employee_social_security: Decimal = ZERO
    employer_health_welfare: Decimal = ZERO
    employee_health_welfare: Decimal = ZERO
    tax: Decimal = ZERO

    needs_advance: bool = False
    funding_organization: str | None = None
    allocation_label: str = ""
    notes: list[str] = field(default_factory=list)

    @property
    def total_income(self) -> Decimal:
        return (
            self.gross_salary_by_fte
            + self.annual_increase
            + self.salary_bonus
            + self.compensation_refund
            + self.thirteen_month_salary
            - self.compensation_deduction
        )

    @property
    def total_deduction(self) -> Decimal:
        return self.tax + self.employee_social_security + self.employee_health_welfare

    @property
    def employer_contribution(self) -> Decimal:
        return (
            self.employer_social_security
            + self.employer_health_welfare
            + self.pvd
            + self.saving_fund
        )

    @property
    def net_salary(self) -> Decimal:
        return self.total_income - self.total_deduction

    @property
    def total_salary(self) -> Decimal:
        """Cost to the company for this line."""
        return (
            self.total_income
            + self.employer_social_security
            + self.employer_health_welfare
        )

