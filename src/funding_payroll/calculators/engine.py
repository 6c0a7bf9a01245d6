"""Payroll calculation for funding allocations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable
from uuid import UUID

from funding_payroll.calculators.advance_detector import needs_advance
from funding_payroll.calculators.allocation_resolver import (
    probation_passed,
    resolve_active_allocations,
    resolve_salary,
)
from funding_payroll.calculators.dates import (
    days_in_month,
    months_between,
    same_month,
    working_days_between,
)
from funding_payroll.calculators.line_builder import PayrollLineBuilder
from funding_payroll.calculators.rules_provider import BenefitKey, PayrollRules
from funding_payroll.calculators.tax_calculator import TaxCalculator
from funding_payroll.calculators.types import (
    ZERO,
    AllocationInfo,
    AllocationType,
    EmployeeInfo,
    EmploymentInfo,
    PayrollAdjustments,
    PayrollLine,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
TWELVE = Decimal("12")
THIRTY = Decimal("30")


class AllocationConfigurationError(Exception):
    """Raised when an allocation cannot be calculated as configured."""

    def __init__(self, allocation_label: str, reason: str):
        self.allocation_label = allocation_label
        self.reason = reason
        super().__init__(f"{allocation_label}: {reason}")


@dataclass
class AllocationFailure:
    """A single allocation that could not be calculated."""

    allocation: AllocationInfo
    error: str
    error_type: str = "Exception"


@dataclass
class CalculationResult:
    """Result of calculating every active allocation of one employee."""

    employee_id: UUID
    employment_id: UUID | None
    pay_period_date: date
    lines: list[PayrollLine] = field(default_factory=list)
    failures: list[AllocationFailure] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def skipped(self) -> bool:
        """No allocations were resolved, so nothing was calculated."""
        return not self.lines and not self.failures

    @property
    def total_gross(self) -> Decimal:
        return sum((line.gross_salary_by_fte for line in self.lines), ZERO)

    @property
    def total_net(self) -> Decimal:
        return sum((line.net_salary for line in self.lines), ZERO)


class PayrollCalculator:
    """Computes one payroll line per funding allocation.

    Calculation pipeline (stable order per allocation):
    1) Validate the allocation's funding source
    2) Resolve the salary figure (probation or post-probation)
    3) Apportion by FTE, pro-rate start and probation-end months, add the
       annual increase
    4) Social security (employee and matching employer share, capped)
    5) Health and welfare tier
    6) Provident fund / saving fund (after probation, when enabled)
    7) Thirteenth-month accrual and payout
    8) Income tax on the earned, FTE-adjusted amount

    Pure: no I/O and no clock reads. All dates arrive as parameters.
    """

    def __init__(self, rules: PayrollRules):
        self.rules = rules
        self.tax_calculator = TaxCalculator(rules)

    def calculate(
        self,
        employee: EmployeeInfo,
        allocation: AllocationInfo,
        pay_period_date: date,
        adjustments: PayrollAdjustments | None = None,
    ) -> PayrollLine:
        """Calculate the payroll line for one allocation.

        gross_salary_by_fte is always the contract salary times FTE. Days not
        earned in a start month or a probation-end month appear as a
        compensation deduction (or refund), and contributions and tax are
        computed on what was actually earned.
        """
        adjustments = adjustments or PayrollAdjustments()
        employment = self._validate(employee, allocation)

        salary_type, gross_salary = resolve_salary(employment, pay_period_date)
        gross_by_fte = gross_salary * allocation.fte
        proration = (
            self._earned_salary(employment, gross_salary, pay_period_date) - gross_salary
        ) * allocation.fte
        annual_increase = self._annual_increase(employment, pay_period_date) * allocation.fte
        earned_by_fte = gross_by_fte + proration + annual_increase

        ee_ss, er_ss = self._social_security(earned_by_fte)
        ee_hw, er_hw = self._health_welfare(employee, earned_by_fte)
        pvd, saving_fund = self._funds(employment, earned_by_fte, pay_period_date)
        thirteenth_paid, thirteenth_accrued = self._thirteenth_month(
            employment, earned_by_fte, pay_period_date, adjustments
        )
        tax = self.tax_calculator.monthly_tax(earned_by_fte, employee, pay_period_date)

        return PayrollLine(
            employee_id=employee.employee_id,
            employment_id=employment.employment_id,
            allocation_id=allocation.allocation_id,
            pay_period_date=pay_period_date,
            salary_type=salary_type,
            fte=allocation.fte,
            gross_salary=gross_salary,
            gross_salary_by_fte=gross_by_fte,
            annual_increase=annual_increase,
            salary_bonus=adjustments.salary_bonus,
            compensation_refund=adjustments.compensation_refund + max(ZERO, proration),
            compensation_deduction=adjustments.compensation_deduction + max(ZERO, -proration),
            thirteen_month_salary=thirteenth_paid,
            thirteen_month_salary_accrued=thirteenth_accrued,
            pvd=pvd,
            saving_fund=saving_fund,
            employer_social_security=er_ss,
            employee_social_security=ee_ss,
            employer_health_welfare=er_hw,
            employee_health_welfare=ee_hw,
            tax=tax,
            funding_organization=allocation.funding_organization,
            allocation_label=allocation.label,
        )

    def calculate_employee(
        self,
        employee: EmployeeInfo,
        pay_period_date: date,
        adjustments_for: Callable[[AllocationInfo], PayrollAdjustments | None] | None = None,
    ) -> CalculationResult:
        """Resolve and calculate every active allocation of an employee.

        A failing allocation is recorded and does not stop the others.
        """
        resolution = resolve_active_allocations(employee, pay_period_date)
        result = CalculationResult(
            employee_id=employee.employee_id,
            employment_id=employee.employment.employment_id if employee.employment else None,
            pay_period_date=pay_period_date,
            warnings=resolution.warning_messages(),
        )

        for resolved in resolution.allocations:
            allocation = resolved.allocation
            try:
                adjustments = adjustments_for(allocation) if adjustments_for else None
                line = self.calculate(employee, allocation, pay_period_date, adjustments)
                line.needs_advance = needs_advance(employee, allocation)
                result.lines.append(line)
            except Exception as e:
                logger.warning(
                    "Calculation failed for %s allocation %s: %s",
                    employee.staff_id,
                    allocation.label,
                    e,
                )
                result.failures.append(
                    AllocationFailure(
                        allocation=allocation,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                )

        return result

    # =========================================================================
    # Components
    # =========================================================================

    def _validate(self, employee: EmployeeInfo, allocation: AllocationInfo) -> EmploymentInfo:
        employment = employee.employment
        if employment is None:
            raise AllocationConfigurationError(allocation.label, "employee has no employment")
        if allocation.employment_id != employment.employment_id:
            raise AllocationConfigurationError(
                allocation.label, "allocation belongs to a different employment"
            )
        if not ZERO <= allocation.fte <= Decimal("1"):
            raise AllocationConfigurationError(
                allocation.label, f"FTE {allocation.fte} is outside [0, 1]"
            )

        if allocation.allocation_type == AllocationType.GRANT:
            if allocation.grant_item_id is None or allocation.grant is None:
                raise AllocationConfigurationError(allocation.label, "missing grant item")
        elif allocation.allocation_type == AllocationType.ORG_FUNDED:
            if allocation.grant is None:
                raise AllocationConfigurationError(allocation.label, "missing org-funded grant")
        else:
            raise AllocationConfigurationError(
                allocation.label, f"unknown allocation type '{allocation.allocation_type}'"
            )
        return employment

    def _earned_salary(
        self, employment: EmploymentInfo, salary: Decimal, pay_period_date: date
    ) -> Decimal:
        """Monthly salary actually earned in the pay period.

        A probation ending mid-month blends both salaries over a 30-day month.
        An employment starting mid-month earns only the calendar days from its start.
        """
        earned = salary
        pass_date = employment.pass_probation_date
        if (
            pass_date is not None
            and employment.probation_salary is not None
            and pass_date.day > 1
            and same_month(pass_date, pay_period_date)
        ):
            probation_days = Decimal(min(pass_date.day - 1, 30))
            earned = (
                probation_days * employment.probation_salary
                + (THIRTY - probation_days) * employment.pass_probation_salary
            ) / THIRTY

        start = employment.start_date
        if start.day > 1 and same_month(start, pay_period_date):
            month_days = days_in_month(start)
            earned = earned * (month_days - start.day + 1) / month_days
        return earned

    def _annual_increase(self, employment: EmploymentInfo, pay_period_date: date) -> Decimal:
        """Yearly raise on the post-probation salary once enough working days are served."""
        rate = self.rules.annual_increase_percentage
        if not rate:
            return ZERO
        served = working_days_between(employment.start_date, pay_period_date)
        if served < self.rules.annual_increase_working_days:
            return ZERO
        return PayrollLineBuilder.round_to_cents(employment.pass_probation_salary * rate / HUNDRED)

    def _social_security(self, gross_by_fte: Decimal) -> tuple[Decimal, Decimal]:
        """Employee share and the matching employer share."""
        rate = self.rules.benefit(BenefitKey.SOCIAL_SECURITY_RATE)
        amount = gross_by_fte * rate / HUNDRED
        cap = self.rules.optional_benefit(BenefitKey.SOCIAL_SECURITY_MAX_MONTHLY)
        if cap is not None:
            amount = min(amount, cap)
        return amount, amount

    def _health_welfare(
        self, employee: EmployeeInfo, gross_by_fte: Decimal
    ) -> tuple[Decimal, Decimal]:
        benefit = self.rules.benefit
        if gross_by_fte > benefit(BenefitKey.HEALTH_WELFARE_HIGH_THRESHOLD):
            employee_amount = benefit(BenefitKey.HEALTH_WELFARE_HIGH_AMOUNT)
        elif gross_by_fte > benefit(BenefitKey.HEALTH_WELFARE_MEDIUM_THRESHOLD):
            employee_amount = benefit(BenefitKey.HEALTH_WELFARE_MEDIUM_AMOUNT)
        else:
            employee_amount = benefit(BenefitKey.HEALTH_WELFARE_LOW_AMOUNT)

        match = self.rules.optional_benefit(BenefitKey.HEALTH_WELFARE_EMPLOYER_MATCH)
        if match is None or not self._in_scope(
            employee, self.rules.benefit_scope(BenefitKey.HEALTH_WELFARE_EMPLOYER_MATCH)
        ):
            return employee_amount, ZERO
        return employee_amount, employee_amount * match

    @staticmethod
    def _in_scope(employee: EmployeeInfo, scope: dict | None) -> bool:
        if not scope:
            return True
        organizations = scope.get("organizations")
        if organizations and employee.organization not in organizations:
            return False
        statuses = scope.get("employee_statuses")
        if statuses and employee.status not in statuses:
            return False
        return True

    def _funds(
        self, employment: EmploymentInfo, gross_by_fte: Decimal, pay_period_date: date
    ) -> tuple[Decimal, Decimal]:
        """Provident fund and saving fund, deducted only after probation."""
        if not probation_passed(employment, pay_period_date):
            return ZERO, ZERO

        pvd = saving_fund = ZERO
        if employment.pvd_enabled:
            pvd = gross_by_fte * self.rules.benefit(BenefitKey.PVD_PERCENTAGE) / HUNDRED
        if employment.saving_fund_enabled:
            saving_fund = (
                gross_by_fte * self.rules.benefit(BenefitKey.SAVING_FUND_PERCENTAGE) / HUNDRED
            )
        return pvd, saving_fund

    def _thirteenth_month(
        self,
        employment: EmploymentInfo,
        gross_by_fte: Decimal,
        pay_period_date: date,
        adjustments: PayrollAdjustments,
    ) -> tuple[Decimal, Decimal]:
        """Return (amount paid this period, amount accrued this period)."""
        service_months = months_between(employment.start_date, pay_period_date)
        if service_months >= self.rules.thirteenth_month_min_service_months:
            accrued = gross_by_fte / TWELVE
        else:
            accrued = ZERO

        if self.rules.thirteenth_month_payout == "monthly":
            return accrued, accrued
        if self.is_thirteenth_month_payout(employment, pay_period_date):
            return adjustments.thirteenth_month_accrued_ytd + accrued, accrued
        return ZERO, accrued

    def is_thirteenth_month_payout(self, employment: EmploymentInfo, pay_period_date: date) -> bool:
        """Fiscal year end, or the month the employment ends (resignation)."""
        if pay_period_date.month == self.rules.fiscal_year_end_month:
            return True
        return employment.end_date is not None and same_month(
            employment.end_date, pay_period_date
        )

