"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Filter schemas
# ============================================================================


class PayrollFilterSchema(BaseModel):
    """Employment selection filters; empty lists mean no restriction."""

    subsidiaries: list[str] = Field(default_factory=list)
    departments: list[UUID] = Field(default_factory=list)
    grants: list[UUID] = Field(default_factory=list)
    employment_types: list[str] = Field(default_factory=list)


# ============================================================================
# Bulk payroll schemas
# ============================================================================


class BulkPreviewRequest(BaseModel):
    """Schema for a bulk payroll preview request."""

    pay_period: str = Field(examples=["2025-01"])
    filters: PayrollFilterSchema = Field(default_factory=PayrollFilterSchema)


class BulkBatchCreate(BulkPreviewRequest):
    """Schema for submitting a bulk payroll batch."""

    created_by: str | None = None


class PreviewSummary(BaseModel):
    total_employees: int
    total_payrolls: int
    total_gross: Decimal
    total_net: Decimal
    total_employer_contribution: Decimal
    total_cost: Decimal
    advances_needed: int


class BulkPreviewResponse(BaseModel):
    """Schema for bulk payroll preview response."""

    pay_period: str
    pay_period_date: date
    filters: dict[str, list[str]]
    summary: PreviewSummary
    warnings: list[str]
    employees: list[dict[str, Any]]


class BatchCreatedResponse(BaseModel):
    """Schema for a newly created batch."""

    model_config = ConfigDict(from_attributes=True)

    batch_id: UUID
    pay_period: str
    status: str
    total_employees: int
    total_payrolls: int


class BatchStats(BaseModel):
    total_employees: int
    total_payrolls: int
    successful: int
    failed: int
    skipped: int
    advances_created: int


class BatchErrorEntry(BaseModel):
    employment_id: str | None = None
    employee: str | None = None
    allocation: str | None = None
    error: str


class BatchStatusResponse(BaseModel):
    """Schema for batch progress and results."""

    batch_id: UUID
    pay_period: str
    status: str
    processed: int
    total: int
    progress_percentage: float
    current_employee: str | None = None
    current_allocation: str | None = None
    cancel_requested: bool
    stats: BatchStats
    error_count: int
    errors: list[BatchErrorEntry]
    summary: dict[str, Any] | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


# ============================================================================
# Single calculation schemas
# ============================================================================


class AdjustmentsSchema(BaseModel):
    """Per-employment amounts entered for the period."""

    salary_bonus: Decimal = Decimal("0")
    compensation_refund: Decimal = Decimal("0")
    compensation_deduction: Decimal = Decimal("0")


class CalculateRequest(BaseModel):
    """Schema for calculating one employment's payroll."""

    employment_id: UUID
    pay_period: str = Field(examples=["2025-01"])
    save: bool = False
    adjustments: AdjustmentsSchema = Field(default_factory=AdjustmentsSchema)


class AllocationError(BaseModel):
    allocation: str
    error: str


class CalculateResponse(BaseModel):
    """Schema for single calculation results."""

    employment_id: UUID
    staff_id: str
    name: str
    pay_period: str
    pay_period_date: date
    lines: list[dict[str, Any]]
    errors: list[AllocationError]
    warnings: list[str]
    saved_payroll_ids: list[UUID]


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None
