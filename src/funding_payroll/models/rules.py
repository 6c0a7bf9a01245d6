"""Tax bracket, tax setting and benefit setting models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from funding_payroll.models.base import Base, TimestampMixin


class TaxBracket(Base, TimestampMixin):
    """Progressive income tax bracket for one effective year."""

    __tablename__ = "tax_bracket"

    tax_bracket_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    min_income: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    max_income: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    # Percentage, e.g. 5.00 for 5%
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)
    bracket_order: Mapped[int] = mapped_column(Integer, nullable=False)
    effective_year: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("effective_year", "bracket_order", name="tax_bracket_year_order_unique"),
        CheckConstraint(
            "max_income IS NULL OR max_income > min_income",
            name="tax_bracket_range_check",
        ),
    )


class TaxSetting(Base, TimestampMixin):
    """Keyed deduction/allowance value for income tax in one year."""

    __tablename__ = "tax_setting"

    tax_setting_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    setting_key: Mapped[str] = mapped_column(String, nullable=False)
    setting_value: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    effective_year: Mapped[int] = mapped_column(Integer, nullable=False)
    is_selected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("setting_key", "effective_year", name="tax_setting_key_year_unique"),
    )


class BenefitSetting(Base, TimestampMixin):
    """Keyed benefit rate or threshold, effective from a date."""

    __tablename__ = "benefit_setting"

    benefit_setting_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    setting_key: Mapped[str] = mapped_column(String, nullable=False)
    setting_value: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    setting_type: Mapped[str] = mapped_column(String, nullable=False, default="numeric")
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    applies_to: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "setting_type IN ('percentage', 'numeric')",
            name="benefit_setting_type_check",
        ),
    )
