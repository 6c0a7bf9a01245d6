"""Detection of allocations that require an inter-organization advance."""

from __future__ import annotations

from funding_payroll.calculators.types import AllocationInfo, EmployeeInfo


def funding_organization(allocation: AllocationInfo) -> str | None:
    """Organization that owns the allocation's grant or org fund."""
    return allocation.funding_organization


def needs_advance(employee: EmployeeInfo, allocation: AllocationInfo) -> bool:
    """True when the funding organization differs from the employee's home organization.

    An allocation with no resolvable funding organization never needs an advance.
    """
    funder = funding_organization(allocation)
    if not funder or not employee.organization:
        return False
    return funder != employee.organization


def count_advances(employee: EmployeeInfo, allocations: list[AllocationInfo]) -> int:
    return sum(1 for allocation in allocations if needs_advance(employee, allocation))
