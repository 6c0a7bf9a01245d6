"""Pytest fixtures for funding payroll engine tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Callable
from uuid import uuid4

import pytest

from funding_payroll.calculators.rules_provider import BenefitKey, BenefitValue, PayrollRules
from funding_payroll.calculators.tax_calculator import TaxSettingKey
from funding_payroll.calculators.types import (
    AllocationInfo,
    EmployeeInfo,
    EmploymentInfo,
    GrantInfo,
    TaxBracket,
)

PAY_DATE = date(2025, 1, 31)

# Annual brackets; rates already converted to fractions
STANDARD_BRACKETS = (
    TaxBracket(Decimal("0"), Decimal("150000"), Decimal("0"), 1),
    TaxBracket(Decimal("150000"), Decimal("300000"), Decimal("0.05"), 2),
    TaxBracket(Decimal("300000"), Decimal("500000"), Decimal("0.10"), 3),
    TaxBracket(Decimal("500000"), Decimal("750000"), Decimal("0.15"), 4),
    TaxBracket(Decimal("750000"), Decimal("1000000"), Decimal("0.20"), 5),
    TaxBracket(Decimal("1000000"), Decimal("2000000"), Decimal("0.25"), 6),
    TaxBracket(Decimal("2000000"), Decimal("5000000"), Decimal("0.30"), 7),
    TaxBracket(Decimal("5000000"), None, Decimal("0.35"), 8),
)

STANDARD_TAX_SETTINGS = {
    TaxSettingKey.PERSONAL_ALLOWANCE: Decimal("60000"),
    TaxSettingKey.SPOUSE_ALLOWANCE: Decimal("60000"),
    TaxSettingKey.CHILD_ALLOWANCE: Decimal("30000"),
    TaxSettingKey.CHILD_ALLOWANCE_SUBSEQUENT: Decimal("60000"),
    TaxSettingKey.PARENT_ALLOWANCE: Decimal("30000"),
    TaxSettingKey.SSF_RATE: Decimal("5"),
    TaxSettingKey.SSF_MAX_MONTHLY: Decimal("750"),
}

STANDARD_BENEFITS = {
    BenefitKey.SOCIAL_SECURITY_RATE: Decimal("5"),
    BenefitKey.SOCIAL_SECURITY_MAX_MONTHLY: Decimal("750"),
    BenefitKey.HEALTH_WELFARE_HIGH_THRESHOLD: Decimal("15000"),
    BenefitKey.HEALTH_WELFARE_MEDIUM_THRESHOLD: Decimal("10000"),
    BenefitKey.HEALTH_WELFARE_HIGH_AMOUNT: Decimal("150"),
    BenefitKey.HEALTH_WELFARE_MEDIUM_AMOUNT: Decimal("100"),
    BenefitKey.HEALTH_WELFARE_LOW_AMOUNT: Decimal("60"),
    BenefitKey.PVD_PERCENTAGE: Decimal("7.5"),
    BenefitKey.SAVING_FUND_PERCENTAGE: Decimal("7.5"),
}


def build_rules(
    *,
    brackets: tuple[TaxBracket, ...] = STANDARD_BRACKETS,
    tax_settings: dict[str, Decimal] | None = None,
    benefits: dict[str, Decimal] | None = None,
    scopes: dict[str, dict[str, Any]] | None = None,
    as_of: date = PAY_DATE,
    **overrides: Any,
) -> PayrollRules:
    """PayrollRules with the standard test configuration.

    The annual increase is off unless a test sets annual_increase_percentage.
    """
    overrides.setdefault("annual_increase_percentage", Decimal("0"))
    values = dict(STANDARD_BENEFITS)
    values.update(benefits or {})
    scopes = scopes or {}
    return PayrollRules(
        tax_year=as_of.year,
        as_of_date=as_of,
        tax_brackets=brackets,
        tax_settings=STANDARD_TAX_SETTINGS if tax_settings is None else tax_settings,
        benefit_settings={
            key: BenefitValue(key=key, value=value, applies_to=scopes.get(key))
            for key, value in values.items()
        },
        **overrides,
    )


@pytest.fixture
def rules() -> PayrollRules:
    return build_rules()


@pytest.fixture
def rules_factory() -> Callable[..., PayrollRules]:
    return build_rules


@pytest.fixture
def grants() -> dict[str, GrantInfo]:
    """A grant held by each of two organizations."""
    return {
        "SMRU": GrantInfo(grant_id=uuid4(), code="S0031", organization="SMRU", name="Malaria"),
        "BHF": GrantInfo(grant_id=uuid4(), code="B-24-01", organization="BHF", name="Hub fund"),
    }


@pytest.fixture
def make_employee() -> Callable[..., EmployeeInfo]:
    """Build an employee with one employment and the given allocations.

    Each allocation is given as (grant, fte) or (grant, fte, allocation_type).
    """

    def _make(
        allocations: list[tuple[Any, ...]] = (),
        *,
        organization: str = "SMRU",
        salary: Decimal = Decimal("50000"),
        probation_salary: Decimal | None = None,
        start_date: date = date(2023, 1, 1),
        pass_probation_date: date | None = date(2023, 4, 1),
        end_date: date | None = None,
        pvd_enabled: bool = False,
        saving_fund_enabled: bool = False,
        status: str | None = "Local ID",
        has_spouse: bool = False,
        children_count: int = 0,
        eligible_parents_count: int = 0,
        allocation_status: str = "active",
    ) -> EmployeeInfo:
        employee_id = uuid4()
        employment = EmploymentInfo(
            employment_id=uuid4(),
            employee_id=employee_id,
            start_date=start_date,
            pass_probation_salary=salary,
            probation_salary=probation_salary,
            pass_probation_date=pass_probation_date,
            end_date=end_date,
            pvd_enabled=pvd_enabled,
            saving_fund_enabled=saving_fund_enabled,
        )
        infos = []
        for entry in allocations:
            grant, fte = entry[0], Decimal(str(entry[1]))
            allocation_type = entry[2] if len(entry) > 2 else "grant"
            infos.append(
                AllocationInfo(
                    allocation_id=uuid4(),
                    employment_id=employment.employment_id,
                    allocation_type=allocation_type,
                    fte=fte,
                    status=allocation_status,
                    start_date=start_date,
                    grant_item_id=uuid4() if allocation_type == "grant" and grant else None,
                    grant_position="Research Assistant" if allocation_type == "grant" else None,
                    grant=grant,
                )
            )
        return EmployeeInfo(
            employee_id=employee_id,
            staff_id="0001",
            full_name="Naw Htoo",
            organization=organization,
            status=status,
            has_spouse=has_spouse,
            children_count=children_count,
            eligible_parents_count=eligible_parents_count,
            employment=employment,
            allocations=tuple(infos),
        )

    return _make
