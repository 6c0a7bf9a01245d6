"""Persistence-ready payroll records, rounded once with deterministic hashing."""

from __future__ import annotations

import hashlib
import json
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from funding_payroll.calculators.types import PayrollLine

COMPONENT_FIELDS = (
    "gross_salary",
    "gross_salary_by_fte",
    "annual_increase",
    "salary_bonus",
    "compensation_refund",
    "compensation_deduction",
    "thirteen_month_salary",
    "thirteen_month_salary_accrued",
    "pvd",
    "saving_fund",
    "employer_social_security",
    "employee_social_security",
    "employer_health_welfare",
    "employee_health_welfare",
    "tax",
)

TOTAL_FIELDS = (
    "total_income",
    "total_deduction",
    "employer_contribution",
    "net_salary",
    "total_salary",
)


class PayrollLineBuilder:
    """Turns unrounded calculator output into payroll row values.

    Rounding:
    - Internal compute is unrounded Decimal
    - Each component is rounded to 2 decimals exactly once, here
    - Totals are derived from the rounded components so a stored row
      always adds up
    """

    OUTPUT_PRECISION = Decimal("0.01")

    @staticmethod
    def round_to_cents(amount: Decimal) -> Decimal:
        """Round amount to 2 decimal places (cents)."""
        return amount.quantize(PayrollLineBuilder.OUTPUT_PRECISION, rounding=ROUND_HALF_UP)

    @classmethod
    def rounded_components(cls, line: PayrollLine) -> dict[str, Decimal]:
        return {name: cls.round_to_cents(getattr(line, name)) for name in COMPONENT_FIELDS}

    @classmethod
    def rounded_totals(cls, components: dict[str, Decimal]) -> dict[str, Decimal]:
        c = components
        total_income = (
            c["gross_salary_by_fte"]
            + c["annual_increase"]
            + c["salary_bonus"]
            + c["compensation_refund"]
            + c["thirteen_month_salary"]
            - c["compensation_deduction"]
        )
        total_deduction = (
            c["tax"] + c["employee_social_security"] + c["employee_health_welfare"]
        )
        employer_contribution = (
            c["employer_social_security"]
            + c["employer_health_welfare"]
            + c["pvd"]
            + c["saving_fund"]
        )
        return {
            "total_income": total_income,
            "total_deduction": total_deduction,
            "employer_contribution": employer_contribution,
            "net_salary": total_income - total_deduction,
            "total_salary": (
                total_income + c["employer_social_security"] + c["employer_health_welfare"]
            ),
        }

    @classmethod
    def to_record(cls, line: PayrollLine) -> dict[str, Any]:
        """Column values for a Payroll row."""
        components = cls.rounded_components(line)
        record: dict[str, Any] = {
            "employee_id": line.employee_id,
            "employment_id": line.employment_id,
            "funding_allocation_id": line.allocation_id,
            "pay_period_date": line.pay_period_date,
            "salary_type": line.salary_type,
            "fte": line.fte,
            "needs_advance": line.needs_advance,
            "funding_organization": line.funding_organization,
        }
        record.update(components)
        record.update(cls.rounded_totals(components))
        record["calculation_hash"] = cls.compute_hash(record)
        return record

    @classmethod
    def to_preview(cls, line: PayrollLine) -> dict[str, Any]:
        """JSON-friendly rounded view of a line."""
        record = cls.to_record(line)
        view: dict[str, Any] = {
            "allocation_id": str(line.allocation_id),
            "allocation": line.allocation_label,
            "salary_type": line.salary_type,
            "fte": str(line.fte),
            "needs_advance": line.needs_advance,
            "funding_organization": line.funding_organization,
        }
        for name in COMPONENT_FIELDS + TOTAL_FIELDS:
            view[name] = str(record[name])
        return view

    @staticmethod
    def compute_hash(record: dict[str, Any]) -> str:
        """Deterministic hash of a record's defining values.

        Identical inputs always produce identical hashes, which lets a
        re-run detect rows that would not change.
        """
        canonical = {
            key: str(value)
            for key, value in record.items()
            if key != "calculation_hash"
        }
        json_str = json.dumps(canonical, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]
