"""Data loading: employment selection and conversion to calculator inputs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Sequence
from uuid import UUID

from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from funding_payroll.calculators.types import (
    AllocationInfo,
    EmployeeInfo,
    EmploymentInfo,
    GrantInfo,
)
from funding_payroll.models import Employee, Employment, FundingAllocation, GrantItem

EMPLOYMENT_LOAD_OPTIONS = (
    selectinload(Employment.employee),
    selectinload(Employment.allocations)
    .selectinload(FundingAllocation.grant_item)
    .selectinload(GrantItem.grant),
    selectinload(Employment.allocations).selectinload(FundingAllocation.grant),
)


@dataclass(frozen=True)
class PayrollFilters:
    """Employment filter. AND across dimensions, OR within a dimension."""

    subsidiaries: tuple[str, ...] = ()
    departments: tuple[UUID, ...] = ()
    grants: tuple[UUID, ...] = ()
    employment_types: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.subsidiaries or self.departments or self.grants or self.employment_types)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "subsidiaries": list(self.subsidiaries),
            "departments": [str(d) for d in self.departments],
            "grants": [str(g) for g in self.grants],
            "employment_types": list(self.employment_types),
        }


@dataclass
class EmploymentChunk:
    """Employee snapshots for one page of a batch, keyed by employment id."""

    employees: dict[UUID, EmployeeInfo] = field(default_factory=dict)

    def get(self, employment_id: UUID) -> EmployeeInfo | None:
        return self.employees.get(employment_id)


# =============================================================================
# Model → calculator input conversion
# =============================================================================


def grant_info(grant: Any) -> GrantInfo | None:
    if grant is None:
        return None
    return GrantInfo(
        grant_id=grant.grant_id,
        code=grant.code,
        organization=grant.organization,
        name=grant.name,
    )


def allocation_info(allocation: FundingAllocation) -> AllocationInfo:
    """Convert an allocation, resolving the grant through its grant item or org fund."""
    if allocation.allocation_type == "grant":
        item = allocation.grant_item
        grant = grant_info(item.grant) if item is not None else None
        position = item.grant_position if item is not None else None
    else:
        grant = grant_info(allocation.grant)
        position = None

    return AllocationInfo(
        allocation_id=allocation.funding_allocation_id,
        employment_id=allocation.employment_id,
        allocation_type=allocation.allocation_type,
        fte=allocation.fte,
        status=allocation.status,
        start_date=allocation.start_date,
        end_date=allocation.end_date,
        salary_type=allocation.salary_type,
        grant_item_id=allocation.grant_item_id,
        grant_position=position,
        grant=grant,
    )


def employment_info(employment: Employment) -> EmploymentInfo:
    return EmploymentInfo(
        employment_id=employment.employment_id,
        employee_id=employment.employee_id,
        start_date=employment.start_date,
        pass_probation_salary=employment.pass_probation_salary,
        employment_type=employment.employment_type,
        department_id=employment.department_id,
        end_date=employment.end_date,
        probation_salary=employment.probation_salary,
        pass_probation_date=employment.pass_probation_date,
        pvd_enabled=employment.pvd_enabled,
        saving_fund_enabled=employment.saving_fund_enabled,
        is_active=employment.is_active,
    )


def employee_info(employment: Employment) -> EmployeeInfo:
    """Snapshot an eagerly-loaded employment and its employee."""
    employee: Employee = employment.employee
    return EmployeeInfo(
        employee_id=employee.employee_id,
        staff_id=employee.staff_id,
        full_name=employee.full_name,
        organization=employee.organization,
        status=employee.status,
        has_spouse=employee.has_spouse,
        children_count=employee.children_count,
        eligible_parents_count=employee.eligible_parents_count,
        employment=employment_info(employment),
        allocations=tuple(allocation_info(a) for a in employment.allocations),
    )


# =============================================================================
# Queries
# =============================================================================


def active_allocation_clause(period_date: date) -> list[Any]:
    return [
        FundingAllocation.status == "active",
        FundingAllocation.start_date <= period_date,
        or_(FundingAllocation.end_date.is_(None), FundingAllocation.end_date >= period_date),
    ]


def build_employment_query(
    filters: PayrollFilters, period_start: date, period_end: date
) -> Select:
    """Select ids of active employments matching the filters in a pay period."""
    query = (
        select(Employment.employment_id)
        .join(Employee, Employment.employee_id == Employee.employee_id)
        .where(
            Employment.is_active.is_(True),
            Employment.start_date <= period_end,
            or_(Employment.end_date.is_(None), Employment.end_date >= period_start),
        )
    )

    if filters.subsidiaries:
        query = query.where(Employee.organization.in_(filters.subsidiaries))
    if filters.departments:
        query = query.where(Employment.department_id.in_(filters.departments))
    if filters.employment_types:
        query = query.where(Employment.employment_type.in_(filters.employment_types))
    if filters.grants:
        grant_items = select(GrantItem.grant_item_id).where(GrantItem.grant_id.in_(filters.grants))
        funded = select(FundingAllocation.employment_id).where(
            *active_allocation_clause(period_end),
            or_(
                FundingAllocation.grant_item_id.in_(grant_items),
                FundingAllocation.grant_id.in_(filters.grants),
            ),
        )
        query = query.where(Employment.employment_id.in_(funded))

    return query.order_by(Employee.staff_id, Employment.employment_id)


async def find_employment_ids(
    session: AsyncSession, filters: PayrollFilters, period_start: date, period_end: date
) -> list[UUID]:
    result = await session.execute(build_employment_query(filters, period_start, period_end))
    return list(result.scalars().all())


async def count_active_allocations(
    session: AsyncSession, employment_ids: Sequence[UUID], period_date: date
) -> int:
    if not employment_ids:
        return 0
    result = await session.execute(
        select(func.count(FundingAllocation.funding_allocation_id)).where(
            FundingAllocation.employment_id.in_(employment_ids),
            *active_allocation_clause(period_date),
        )
    )
    return int(result.scalar() or 0)


async def load_employment_chunk(
    session: AsyncSession, employment_ids: Iterable[UUID]
) -> EmploymentChunk:
    """Load employments with employee, allocations and grants in one round trip each."""
    ids = list(employment_ids)
    chunk = EmploymentChunk()
    if not ids:
        return chunk
    result = await session.execute(
        select(Employment)
        .options(*EMPLOYMENT_LOAD_OPTIONS)
        .where(Employment.employment_id.in_(ids))
    )
    for employment in result.scalars().all():
        chunk.employees[employment.employment_id] = employee_info(employment)
    return chunk


async def load_employee_info(session: AsyncSession, employment_id: UUID) -> EmployeeInfo | None:
    chunk = await load_employment_chunk(session, [employment_id])
    return chunk.get(employment_id)
