"""Employee, employment, funding allocation and probation models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from funding_payroll.models.base import Base, TimestampMixin, UpdatedAtMixin

if TYPE_CHECKING:
    from funding_payroll.models.organization import Grant, GrantItem


# ===== Employees & Employment =====


class Employee(Base, TimestampMixin):
    """Employee master record."""

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    staff_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str | None] = mapped_column(String, nullable=True)
    organization: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str | None] = mapped_column(String, nullable=True)
    has_spouse: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    children_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    eligible_parents_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Relationships
    employments: Mapped[list[Employment]] = relationship(back_populates="employee")

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class Employment(Base, TimestampMixin, UpdatedAtMixin):
    """Employment contract. One active employment per employee at a time."""

    __tablename__ = "employment"

    employment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    employment_type: Mapped[str] = mapped_column(String, nullable=False, default="Full-time")
    department_id: Mapped[UUID | None] = mapped_column(nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    pass_probation_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    probation_salary: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    pass_probation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    pvd_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    saving_fund_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="employment_dates_check",
        ),
    )

    # Relationships
    employee: Mapped[Employee] = relationship(back_populates="employments")
    allocations: Mapped[list[FundingAllocation]] = relationship(back_populates="employment")
    probation_records: Mapped[list[ProbationRecord]] = relationship(
        back_populates="employment",
        order_by="ProbationRecord.created_at",
    )


# ===== Funding Allocations =====


class FundingAllocation(Base, TimestampMixin, UpdatedAtMixin):
    """Fractional (FTE) claim of one funding source on an employment's salary."""

    __tablename__ = "funding_allocation"

    funding_allocation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    employment_id: Mapped[UUID] = mapped_column(
        ForeignKey("employment.employment_id", ondelete="RESTRICT"),
        nullable=False,
    )
    grant_item_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("grant_item.grant_item_id"),
        nullable=True,
    )
    grant_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("grant.grant_id"),
        nullable=True,
    )
    allocation_type: Mapped[str] = mapped_column(String, nullable=False, default="grant")
    fte: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    salary_type: Mapped[str | None] = mapped_column(String, nullable=True)
    allocated_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    # Allocation this one replaced (probation end); links thirteenth-month accruals
    supersedes_allocation_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("funding_allocation.funding_allocation_id"),
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint(
            "allocation_type IN ('grant', 'org_funded')",
            name="funding_allocation_type_check",
        ),
        CheckConstraint(
            "status IN ('active', 'historical', 'terminated')",
            name="funding_allocation_status_check",
        ),
        CheckConstraint("fte >= 0 AND fte <= 1", name="funding_allocation_fte_check"),
    )

    # Relationships
    employment: Mapped[Employment] = relationship(back_populates="allocations")
    grant_item: Mapped[GrantItem | None] = relationship()
    grant: Mapped[Grant | None] = relationship()


# ===== Probation =====


class ProbationRecord(Base, TimestampMixin):
    """Append-only probation event for an employment."""

    __tablename__ = "probation_record"

    probation_record_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employment_id: Mapped[UUID] = mapped_column(
        ForeignKey("employment.employment_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String, nullable=False)
    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    decision_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    probation_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    probation_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    previous_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    extension_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    decision_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    evaluation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "event_type IN ('initial', 'extension', 'passed', 'failed')",
            name="probation_record_event_type_check",
        ),
    )

    # Relationships
    employment: Mapped[Employment] = relationship(back_populates="probation_records")
