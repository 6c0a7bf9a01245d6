"""Integration tests for loading tax and benefit rules."""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from funding_payroll.calculators.rules_provider import (
    BenefitKey,
    ConfigurationMissingError,
    RulesProvider,
)
from funding_payroll.models import TaxSetting


class TestRulesProvider:
    """Test rules snapshots for a pay period date."""

    async def test_bracket_rates_become_fractions(self, seed, db_session, settings):
        await seed.rules()
        rules = await RulesProvider(db_session, settings).get_rules(date(2025, 1, 31))

        assert len(rules.tax_brackets) == 8
        assert rules.tax_brackets[1].rate == Decimal("0.05")
        assert rules.tax_brackets[-1].max_income is None
        assert rules.tax_setting("PERSONAL_ALLOWANCE") == Decimal("60000")

    async def test_latest_effective_benefit_wins(self, seed, db_session, settings):
        await seed.rules()
        await seed.benefit(BenefitKey.SOCIAL_SECURITY_RATE, "6", date(2025, 7, 1))
        provider = RulesProvider(db_session, settings)

        june = await provider.get_rules(date(2025, 6, 30))
        july = await provider.get_rules(date(2025, 7, 31))

        assert june.benefit(BenefitKey.SOCIAL_SECURITY_RATE) == Decimal("5")
        assert july.benefit(BenefitKey.SOCIAL_SECURITY_RATE) == Decimal("6")

    async def test_inactive_benefit_ignored(self, seed, db_session, settings):
        await seed.rules()
        await seed.benefit(
            BenefitKey.SOCIAL_SECURITY_RATE, "9", date(2025, 3, 1), is_active=False
        )
        rules = await RulesProvider(db_session, settings).get_rules(date(2025, 3, 31))
        assert rules.benefit(BenefitKey.SOCIAL_SECURITY_RATE) == Decimal("5")

    async def test_benefit_scope_loaded(self, seed, db_session, settings):
        await seed.rules()
        await seed.benefit(
            BenefitKey.HEALTH_WELFARE_EMPLOYER_MATCH,
            "1",
            date(2025, 1, 1),
            applies_to={"organizations": ["SMRU"]},
        )
        rules = await RulesProvider(db_session, settings).get_rules(date(2025, 1, 31))
        assert rules.benefit_scope(BenefitKey.HEALTH_WELFARE_EMPLOYER_MATCH) == {
            "organizations": ["SMRU"]
        }

    async def test_unselected_tax_setting_excluded(self, seed, db_session, settings):
        await seed.rules()
        db_session.add(
            TaxSetting(
                setting_key="PVD_FUND_RATE",
                setting_value=Decimal("15"),
                effective_year=2025,
                is_selected=False,
            )
        )
        await db_session.commit()

        rules = await RulesProvider(db_session, settings).get_rules(date(2025, 1, 31))
        assert rules.tax_setting("PVD_FUND_RATE") is None

    async def test_missing_brackets(self, seed, db_session, settings):
        await seed.rules(brackets=False)
        provider = RulesProvider(db_session, settings)

        rules = await provider.get_rules(date(2025, 1, 31))
        assert rules.tax_brackets == ()

        with pytest.raises(ConfigurationMissingError) as exc_info:
            await provider.get_rules(date(2025, 1, 31), require_brackets=True)
        assert exc_info.value.key == "tax_brackets"

    async def test_missing_benefit_raises_on_use(self, db_session, settings):
        rules = await RulesProvider(db_session, settings).get_rules(date(2025, 1, 31))
        with pytest.raises(ConfigurationMissingError):
            rules.benefit(BenefitKey.SOCIAL_SECURITY_RATE)

    async def test_rules_cached_per_date(self, seed, db_session, settings):
        await seed.rules()
        provider = RulesProvider(db_session, settings)
        first = await provider.get_rules(date(2025, 1, 31))
        assert await provider.get_rules(date(2025, 1, 31)) is first

    async def test_thirteenth_month_settings_carried(self, seed, db_session, settings):
        await seed.rules()
        custom = replace(settings, thirteenth_month_payout="monthly", fiscal_year_end_month=9)
        rules = await RulesProvider(db_session, custom).get_rules(date(2025, 1, 31))
        assert rules.thirteenth_month_payout == "monthly"
        assert rules.fiscal_year_end_month == 9

    async def test_annual_increase_settings_carried(self, seed, db_session, settings):
        await seed.rules()
        custom = replace(
            settings,
            annual_increase_percentage=Decimal("1.5"),
            annual_increase_working_days=250,
        )
        rules = await RulesProvider(db_session, custom).get_rules(date(2025, 1, 31))
        assert rules.annual_increase_percentage == Decimal("1.5")
        assert rules.annual_increase_working_days == 250
