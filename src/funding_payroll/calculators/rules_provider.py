"""Tax and benefit rules, loaded once per pay period into an immutable snapshot."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from funding_payroll.calculators.types import TaxBracket
from funding_payroll.config import Settings, get_settings
from funding_payroll.models import BenefitSetting, TaxBracket as TaxBracketModel, TaxSetting

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class BenefitKey:
    """Benefit setting keys read by the calculator."""

    SOCIAL_SECURITY_RATE = "social_security_rate"
    SOCIAL_SECURITY_MAX_MONTHLY = "social_security_max_monthly"
    HEALTH_WELFARE_HIGH_THRESHOLD = "health_welfare_high_threshold"
    HEALTH_WELFARE_MEDIUM_THRESHOLD = "health_welfare_medium_threshold"
    HEALTH_WELFARE_HIGH_AMOUNT = "health_welfare_high_amount"
    HEALTH_WELFARE_MEDIUM_AMOUNT = "health_welfare_medium_amount"
    HEALTH_WELFARE_LOW_AMOUNT = "health_welfare_low_amount"
    HEALTH_WELFARE_EMPLOYER_MATCH = "health_welfare_employer_match"
    PVD_PERCENTAGE = "pvd_percentage"
    SAVING_FUND_PERCENTAGE = "saving_fund_percentage"


class ConfigurationMissingError(Exception):
    """Raised when a required tax bracket or benefit setting is not configured."""

    def __init__(self, key: str, scope: Any):
        self.key = key
        self.scope = scope
        super().__init__(f"Required configuration '{key}' is missing for {scope}")


@dataclass(frozen=True)
class BenefitValue:
    """One effective benefit setting."""

    key: str
    value: Decimal
    setting_type: str = "numeric"
    effective_date: date | None = None
    applies_to: dict[str, Any] | None = None


@dataclass(frozen=True)
class PayrollRules:
    """Everything the pure calculator needs beyond employee data."""

    tax_year: int
    as_of_date: date
    tax_brackets: tuple[TaxBracket, ...] = ()
    tax_settings: Mapping[str, Decimal] = field(default_factory=dict)
    benefit_settings: Mapping[str, BenefitValue] = field(default_factory=dict)
    thirteenth_month_payout: str = "year_end"
    fiscal_year_end_month: int = 12
    thirteenth_month_min_service_months: int = 6
    annual_increase_percentage: Decimal = Decimal("1")
    annual_increase_working_days: int = 365

    def benefit(self, key: str) -> Decimal:
        """Return a required benefit value."""
        setting = self.benefit_settings.get(key)
        if setting is None:
            raise ConfigurationMissingError(key, self.as_of_date)
        return setting.value

    def optional_benefit(self, key: str) -> Decimal | None:
        setting = self.benefit_settings.get(key)
        return setting.value if setting else None

    def benefit_scope(self, key: str) -> dict[str, Any] | None:
        setting = self.benefit_settings.get(key)
        return setting.applies_to if setting else None

    def tax_setting(self, key: str, default: Decimal | None = None) -> Decimal | None:
        """Return a selected tax setting, or default when unselected."""
        return self.tax_settings.get(key, default)

    def require_brackets(self) -> tuple[TaxBracket, ...]:
        if not self.tax_brackets:
            raise ConfigurationMissingError("tax_brackets", self.tax_year)
        return self.tax_brackets


def check_bracket_continuity(brackets: tuple[TaxBracket, ...]) -> list[str]:
    """Report gaps, overlaps and unbounded non-top brackets."""
    problems: list[str] = []
    ordered = sorted(brackets, key=lambda b: b.bracket_order)
    for prev, nxt in zip(ordered, ordered[1:]):
        if prev.max_income is None:
            problems.append(f"Bracket {prev.bracket_order} is unbounded but is not the top bracket")
        elif nxt.min_income != prev.max_income:
            problems.append(
                f"Bracket {nxt.bracket_order} starts at {nxt.min_income}, "
                f"expected {prev.max_income}"
            )
    return problems


class RulesProvider:
    """Loads tax brackets, tax settings and benefit settings from the database.

    Results are cached per as-of date for the lifetime of the provider,
    so a batch reads its configuration once.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self._cache: dict[date, PayrollRules] = {}

    async def get_rules(self, as_of_date: date, *, require_brackets: bool = False) -> PayrollRules:
        """Get the rules effective for a pay period date.

        With require_brackets=True, a year with no active brackets raises
        ConfigurationMissingError instead of deferring the failure to each line.
        """
        rules = self._cache.get(as_of_date)
        if rules is None:
            year = as_of_date.year
            brackets = await self._load_tax_brackets(year)
            for problem in check_bracket_continuity(brackets):
                logger.warning("Tax brackets for %s: %s", year, problem)

            rules = PayrollRules(
                tax_year=year,
                as_of_date=as_of_date,
                tax_brackets=brackets,
                tax_settings=await self._load_tax_settings(year),
                benefit_settings=await self._load_benefit_settings(as_of_date),
                thirteenth_month_payout=self.settings.thirteenth_month_payout,
                fiscal_year_end_month=self.settings.fiscal_year_end_month,
                thirteenth_month_min_service_months=(
                    self.settings.thirteenth_month_min_service_months
                ),
                annual_increase_percentage=self.settings.annual_increase_percentage,
                annual_increase_working_days=self.settings.annual_increase_working_days,
            )
            self._cache[as_of_date] = rules

        if require_brackets:
            rules.require_brackets()
        return rules

    async def _load_tax_brackets(self, year: int) -> tuple[TaxBracket, ...]:
        result = await self.session.execute(
            select(TaxBracketModel)
            .where(
                TaxBracketModel.effective_year == year,
                TaxBracketModel.is_active.is_(True),
            )
            .order_by(TaxBracketModel.bracket_order)
        )
        return tuple(
            TaxBracket(
                min_income=Decimal(row.min_income),
                max_income=Decimal(row.max_income) if row.max_income is not None else None,
                rate=Decimal(row.tax_rate) / HUNDRED,
                bracket_order=row.bracket_order,
            )
            for row in result.scalars().all()
        )

    async def _load_tax_settings(self, year: int) -> dict[str, Decimal]:
        result = await self.session.execute(
            select(TaxSetting).where(
                TaxSetting.effective_year == year,
                TaxSetting.is_selected.is_(True),
            )
        )
        return {row.setting_key: Decimal(row.setting_value) for row in result.scalars().all()}

    async def _load_benefit_settings(self, as_of_date: date) -> dict[str, BenefitValue]:
        """Latest active setting per key effective on or before as_of_date."""
        result = await self.session.execute(
            select(BenefitSetting)
            .where(
                BenefitSetting.is_active.is_(True),
                BenefitSetting.effective_date <= as_of_date,
            )
            .order_by(BenefitSetting.effective_date)
        )
        settings: dict[str, BenefitValue] = {}
        for row in result.scalars().all():
            settings[row.setting_key] = BenefitValue(
                key=row.setting_key,
                value=Decimal(row.setting_value),
                setting_type=row.setting_type,
                effective_date=row.effective_date,
                applies_to=row.applies_to,
            )
        return settings
