"""Payroll output, bulk batch and inter-organization advance models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from funding_payroll.models.base import Base, TimestampMixin, UpdatedAtMixin

if TYPE_CHECKING:
    from funding_payroll.models.employee import Employment, FundingAllocation


# ===== Payroll Lines =====


class Payroll(Base, TimestampMixin, UpdatedAtMixin):
    """Computed payroll for one (employment, funding allocation, pay period)."""

    __tablename__ = "payroll"

    payroll_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employment_id: Mapped[UUID] = mapped_column(
        ForeignKey("employment.employment_id", ondelete="RESTRICT"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    funding_allocation_id: Mapped[UUID] = mapped_column(
        ForeignKey("funding_allocation.funding_allocation_id", ondelete="RESTRICT"),
        nullable=False,
    )
    batch_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("bulk_payroll_batch.batch_id", ondelete="SET NULL"),
        nullable=True,
    )
    pay_period_date: Mapped[date] = mapped_column(Date, nullable=False)
    salary_type: Mapped[str] = mapped_column(String, nullable=False)
    fte: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)

    # Earnings
    gross_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    gross_salary_by_fte: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    annual_increase: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    salary_bonus: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    compensation_refund: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    compensation_deduction: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=0
    )
    thirteen_month_salary: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=0
    )
    thirteen_month_salary_accrued: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=0
    )

    # Funds and contributions
    pvd: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    saving_fund: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    employer_social_security: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=0
    )
    employee_social_security: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=0
    )
    employer_health_welfare: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=0
    )
    employee_health_welfare: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=0
    )
    tax: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)

    # Totals
    total_income: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_deduction: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    employer_contribution: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    net_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    calculation_hash: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Inter-organization funding
    needs_advance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    funding_organization: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "employment_id",
            "funding_allocation_id",
            "pay_period_date",
            name="payroll_natural_key_unique",
        ),
    )

    # Relationships
    employment: Mapped[Employment] = relationship()
    allocation: Mapped[FundingAllocation] = relationship()


class InterOrganizationAdvance(Base, TimestampMixin):
    """Cash advance owed when one organization's grant funds another's employee."""

    __tablename__ = "inter_organization_advance"

    advance_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll.payroll_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    from_organization: Mapped[str] = mapped_column(String, nullable=False)
    to_organization: Mapped[str] = mapped_column(String, nullable=False)
    via_grant_id: Mapped[UUID] = mapped_column(ForeignKey("grant.grant_id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    advance_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "from_organization <> to_organization",
            name="inter_organization_advance_orgs_check",
        ),
    )


# ===== Bulk Batches =====


class BulkPayrollBatch(Base, TimestampMixin, UpdatedAtMixin):
    """One asynchronous payroll run across a filtered set of employments."""

    __tablename__ = "bulk_payroll_batch"

    batch_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    pay_period: Mapped[str] = mapped_column(String(7), nullable=False)
    pay_period_date: Mapped[date] = mapped_column(Date, nullable=False)
    filters: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    employment_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)

    total_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_payrolls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    advances_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Resume cursor into employment_ids
    next_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    current_employee: Mapped[str | None] = mapped_column(String, nullable=True)
    current_allocation: Mapped[str | None] = mapped_column(String, nullable=True)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    summary: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', "
            "'completed_with_errors', 'failed', 'cancelled')",
            name="bulk_payroll_batch_status_check",
        ),
    )

    # Relationships
    errors: Mapped[list[BulkPayrollBatchError]] = relationship(
        back_populates="batch",
        order_by="BulkPayrollBatchError.created_at",
    )

    @property
    def progress_percentage(self) -> float:
        if not self.total_employees:
            return 0.0
        return round(self.processed_employees / self.total_employees * 100, 2)

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "completed_with_errors", "failed", "cancelled")


class BulkPayrollBatchError(Base, TimestampMixin):
    """Structured error entry recorded by a batch run."""

    __tablename__ = "bulk_payroll_batch_error"

    batch_error_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    batch_id: Mapped[UUID] = mapped_column(
        ForeignKey("bulk_payroll_batch.batch_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employment_id: Mapped[str | None] = mapped_column(String, nullable=True)
    employee: Mapped[str | None] = mapped_column(String, nullable=True)
    allocation: Mapped[str | None] = mapped_column(String, nullable=True)
    error: Mapped[str] = mapped_column(Text, nullable=False)

    # Relationships
    batch: Mapped[BulkPayrollBatch] = relationship(back_populates="errors")

    def to_entry(self) -> dict[str, str | None]:
        return {
            "employment_id": self.employment_id,
            "employee": self.employee,
            "allocation": self.allocation,
            "error": self.error,
        }
