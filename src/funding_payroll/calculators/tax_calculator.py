"""Annualized progressive income tax with allowances and deductions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from funding_payroll.calculators.dates import months_worked_in_year
from funding_payroll.calculators.rules_provider import PayrollRules
from funding_payroll.calculators.types import ZERO, EmployeeInfo, TaxBracket

HUNDRED = Decimal("100")
TWELVE = Decimal("12")


class TaxSettingKey:
    """Tax setting keys. Each applies only when selected for the year."""

    EMPLOYMENT_DEDUCTION_RATE = "EMPLOYMENT_DEDUCTION_RATE"
    EMPLOYMENT_DEDUCTION_MAX = "EMPLOYMENT_DEDUCTION_MAX"
    PERSONAL_ALLOWANCE = "PERSONAL_ALLOWANCE"
    SPOUSE_ALLOWANCE = "SPOUSE_ALLOWANCE"
    CHILD_ALLOWANCE = "CHILD_ALLOWANCE"
    CHILD_ALLOWANCE_SUBSEQUENT = "CHILD_ALLOWANCE_SUBSEQUENT"
    PARENT_ALLOWANCE = "PARENT_ALLOWANCE"
    SSF_RATE = "SSF_RATE"
    SSF_MAX_MONTHLY = "SSF_MAX_MONTHLY"
    PVD_FUND_RATE = "PVD_FUND_RATE"
    PVD_FUND_MAX = "PVD_FUND_MAX"
    SAVING_FUND_RATE = "SAVING_FUND_RATE"
    SAVING_FUND_MAX = "SAVING_FUND_MAX"


# Employment expense deduction applies even when not explicitly selected
DEFAULT_EMPLOYMENT_DEDUCTION_RATE = Decimal("50")
DEFAULT_EMPLOYMENT_DEDUCTION_MAX = Decimal("100000")
DEFAULT_SSF_MAX_MONTHLY = Decimal("750")


@dataclass
class TaxBreakdown:
    """Intermediate figures of one income tax calculation."""

    monthly_income: Decimal
    months_working: int
    annual_income: Decimal
    employment_deduction: Decimal
    personal_allowances: Decimal
    social_security_deduction: Decimal
    fund_deduction: Decimal
    taxable_income: Decimal
    annual_tax: Decimal

    @property
    def total_deductions(self) -> Decimal:
        return (
            self.employment_deduction
            + self.personal_allowances
            + self.social_security_deduction
            + self.fund_deduction
        )

    @property
    def monthly_tax(self) -> Decimal:
        return self.annual_tax / TWELVE


def progressive_tax(taxable_income: Decimal, brackets: tuple[TaxBracket, ...]) -> Decimal:
    """Marginal tax across brackets ordered by bracket_order. Not rounded."""
    if taxable_income <= 0:
        return ZERO

    total = ZERO
    for bracket in sorted(brackets, key=lambda b: b.bracket_order):
        upper = (
            taxable_income
            if bracket.max_income is None
            else min(taxable_income, bracket.max_income)
        )
        portion = upper - bracket.min_income
        if portion > 0:
            total += portion * bracket.rate
    return total


class TaxCalculator:
    """Computes monthly income tax for one payroll line.

    Monthly income is annualized by the months worked in the tax year,
    reduced by deductions and allowances, taxed progressively and spread
    back over twelve months.
    """

    def __init__(self, rules: PayrollRules):
        self.rules = rules

    def calculate(
        self,
        monthly_income: Decimal,
        employee: EmployeeInfo,
        as_of_date: date,
    ) -> TaxBreakdown:
        """Calculate income tax on a monthly income as of a pay period date."""
        brackets = self.rules.require_brackets()
        employment = employee.employment

        months = (
            months_worked_in_year(employment.start_date, as_of_date.year)
            if employment is not None
            else 12
        )
        annual_income = monthly_income * months

        employment_deduction = self._employment_deduction(annual_income)
        allowances = self._personal_allowances(employee)
        ss_deduction = self._social_security_deduction(monthly_income)
        fund_deduction = self._fund_deduction(annual_income, employee)

        taxable = annual_income - (
            employment_deduction + allowances + ss_deduction + fund_deduction
        )
        taxable = max(taxable, ZERO)

        return TaxBreakdown(
            monthly_income=monthly_income,
            months_working=months,
            annual_income=annual_income,
            employment_deduction=employment_deduction,
            personal_allowances=allowances,
            social_security_deduction=ss_deduction,
            fund_deduction=fund_deduction,
            taxable_income=taxable,
            annual_tax=progressive_tax(taxable, brackets),
        )

    def monthly_tax(self, monthly_income: Decimal, employee: EmployeeInfo, as_of_date: date) -> Decimal:
        return self.calculate(monthly_income, employee, as_of_date).monthly_tax

    def _employment_deduction(self, annual_income: Decimal) -> Decimal:
        rate = self.rules.tax_setting(
            TaxSettingKey.EMPLOYMENT_DEDUCTION_RATE, DEFAULT_EMPLOYMENT_DEDUCTION_RATE
        )
        cap = self.rules.tax_setting(
            TaxSettingKey.EMPLOYMENT_DEDUCTION_MAX, DEFAULT_EMPLOYMENT_DEDUCTION_MAX
        )
        return min(annual_income * rate / HUNDRED, cap)

    def _personal_allowances(self, employee: EmployeeInfo) -> Decimal:
        setting = self.rules.tax_setting
        total = setting(TaxSettingKey.PERSONAL_ALLOWANCE, ZERO)

        if employee.has_spouse:
            total += setting(TaxSettingKey.SPOUSE_ALLOWANCE, ZERO)

        if employee.children_count > 0:
            first = setting(TaxSettingKey.CHILD_ALLOWANCE, ZERO)
            subsequent = setting(TaxSettingKey.CHILD_ALLOWANCE_SUBSEQUENT, first)
            total += first + subsequent * (employee.children_count - 1)

        if employee.eligible_parents_count > 0:
            total += setting(TaxSettingKey.PARENT_ALLOWANCE, ZERO) * employee.eligible_parents_count

        return total

    def _social_security_deduction(self, monthly_income: Decimal) -> Decimal:
        rate = self.rules.tax_setting(TaxSettingKey.SSF_RATE)
        if rate is None:
            return ZERO
        cap = self.rules.tax_setting(TaxSettingKey.SSF_MAX_MONTHLY, DEFAULT_SSF_MAX_MONTHLY)
        return min(monthly_income * rate / HUNDRED, cap) * TWELVE

    def _fund_deduction(self, annual_income: Decimal, employee: EmployeeInfo) -> Decimal:
        employment = employee.employment
        if employment is None:
            return ZERO

        if employment.pvd_enabled:
            rate_key, max_key = TaxSettingKey.PVD_FUND_RATE, TaxSettingKey.PVD_FUND_MAX
        elif employment.saving_fund_enabled:
            rate_key, max_key = TaxSettingKey.SAVING_FUND_RATE, TaxSettingKey.SAVING_FUND_MAX
        else:
            return ZERO

        rate = self.rules.tax_setting(rate_key)
        if rate is None:
            return ZERO
        amount = annual_income * rate / HUNDRED
        cap = self.rules.tax_setting(max_key)
        return min(amount, cap) if cap is not None else amount
