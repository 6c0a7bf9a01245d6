"""Bulk payroll operations: preview, batch submission, status and error export."""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from funding_payroll.calculators.dates import parse_pay_period
from funding_payroll.calculators.engine import PayrollCalculator
from funding_payroll.calculators.line_builder import PayrollLineBuilder
from funding_payroll.calculators.rules_provider import RulesProvider
from funding_payroll.calculators.types import ZERO, AllocationInfo, PayrollAdjustments
from funding_payroll.config import Settings, get_settings
from funding_payroll.models import BulkPayrollBatch, BulkPayrollBatchError
from funding_payroll.services.batch_processor import BatchNotFoundError
from funding_payroll.services.job_queue import BulkPayrollJob, JobQueue
from funding_payroll.services.loaders import (
    PayrollFilters,
    count_active_allocations,
    find_employment_ids,
    load_employee_info,
    load_employment_chunk,
)
from funding_payroll.services.payroll_writer import PayrollWriter
from funding_payroll.services.state_machine import BatchStateMachine, BatchStatus

logger = logging.getLogger(__name__)

ERROR_CSV_HEADER = ["Employment ID", "Employee", "Allocation", "Error"]
FILTER_KEYS = ("subsidiaries", "departments", "grants", "employment_types")
STATUS_ERROR_LIMIT = 50


class PayrollValidationError(Exception):
    """Raised for bad pay period or filter input, before any work starts."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


@dataclass(frozen=True)
class PayPeriod:
    """A monthly pay period; payroll is dated on its last day."""

    label: str
    start: date
    end: date

    @property
    def pay_period_date(self) -> date:
        return self.end


def parse_period(pay_period: str) -> PayPeriod:
    try:
        start, end = parse_pay_period(pay_period)
    except ValueError as e:
        raise PayrollValidationError("pay_period", str(e)) from e
    return PayPeriod(label=pay_period, start=start, end=end)


def parse_filters(raw: Mapping[str, Any] | None) -> PayrollFilters:
    """Validate a filter mapping into PayrollFilters."""
    if not raw:
        return PayrollFilters()

    unknown = set(raw) - set(FILTER_KEYS)
    if unknown:
        raise PayrollValidationError("filters", f"unknown filter(s): {', '.join(sorted(unknown))}")

    values: dict[str, tuple[Any, ...]] = {}
    for key in FILTER_KEYS:
        items = raw.get(key) or []
        if isinstance(items, (str, bytes)) or not isinstance(items, (list, tuple, set)):
            raise PayrollValidationError(f"filters.{key}", "must be a list")
        if key in ("departments", "grants"):
            try:
                values[key] = tuple(UUID(str(item)) for item in items)
            except ValueError as e:
                raise PayrollValidationError(f"filters.{key}", "must contain UUIDs") from e
        else:
            values[key] = tuple(str(item) for item in items)
    return PayrollFilters(**values)


def _money(value: Decimal) -> str:
    return str(PayrollLineBuilder.round_to_cents(value))


class BulkPayrollService:
    """Synchronous bulk payroll operations around the asynchronous processor."""

    def __init__(
        self,
        session: AsyncSession,
        job_queue: JobQueue | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.job_queue = job_queue
        self.settings = settings or get_settings()
        self.rules_provider = RulesProvider(session, self.settings)

    # =========================================================================
    # Preview
    # =========================================================================

    async def preview(
        self, pay_period: str, filters: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        """Calculate everything a batch would produce, without writing anything."""
        period = parse_period(pay_period)
        parsed = parse_filters(filters)
        employment_ids = await find_employment_ids(self.session, parsed, period.start, period.end)

        rules = await self.rules_provider.get_rules(period.pay_period_date)
        calculator = PayrollCalculator(rules)
        writer = PayrollWriter(self.session)
        chunk = await load_employment_chunk(self.session, employment_ids)

        warnings: list[str] = []
        employees: list[dict[str, Any]] = []
        total_payrolls = advances = 0
        total_gross = total_net = total_employer = total_cost = ZERO

        for employment_id in employment_ids:
            employee = chunk.get(employment_id)
            if employee is None:
                continue
            employment = employee.employment
            if (
                employment is not None
                and employment.pass_probation_date is None
                and "contract" not in (employment.employment_type or "").lower()
            ):
                warnings.append(f"Employee {employee.staff_id} is missing a probation pass date")

            accruals = await self._accruals(writer, employee.allocations, period.pay_period_date)
            result = calculator.calculate_employee(
                employee,
                period.pay_period_date,
                lambda a: PayrollAdjustments(
                    thirteenth_month_accrued_ytd=accruals.get(a.allocation_id, ZERO)
                ),
            )
            warnings.extend(result.warnings)
            for failure in result.failures:
                warnings.append(
                    f"Employee {employee.staff_id} ({failure.allocation.label}): {failure.error}"
                )

            allocations = []
            for line in result.lines:
                record = PayrollLineBuilder.to_record(line)
                total_gross += record["gross_salary_by_fte"]
                total_net += record["net_salary"]
                total_employer += record["employer_contribution"]
                total_cost += record["total_salary"]
                advances += int(line.needs_advance)
                allocations.append(PayrollLineBuilder.to_preview(line))
            total_payrolls += len(result.lines)

            employees.append(
                {
                    "employment_id": str(employment_id),
                    "staff_id": employee.staff_id,
                    "name": employee.full_name,
                    "organization": employee.organization,
                    "allocations": allocations,
                    "errors": [
                        {"allocation": f.allocation.label, "error": f.error}
                        for f in result.failures
                    ],
                    "warnings": result.warnings,
                }
            )

        return {
            "pay_period": period.label,
            "pay_period_date": period.pay_period_date.isoformat(),
            "filters": parsed.to_dict(),
            "summary": {
                "total_employees": len(employees),
                "total_payrolls": total_payrolls,
                "total_gross": _money(total_gross),
                "total_net": _money(total_net),
                "total_employer_contribution": _money(total_employer),
                "total_cost": _money(total_cost),
                "advances_needed": advances,
            },
            "warnings": warnings,
            "employees": employees,
        }

    # =========================================================================
    # Batches
    # =========================================================================

    async def create_batch(
        self,
        pay_period: str,
        filters: Mapping[str, Any] | None = None,
        created_by: str | None = None,
    ) -> BulkPayrollBatch:
        """Persist a pending batch and enqueue it. Commits the session."""
        period = parse_period(pay_period)
        parsed = parse_filters(filters)
        employment_ids = await find_employment_ids(self.session, parsed, period.start, period.end)
        if not employment_ids:
            raise PayrollValidationError("filters", "no active employments match the filters")

        batch = BulkPayrollBatch(
            pay_period=period.label,
            pay_period_date=period.pay_period_date,
            filters=parsed.to_dict(),
            employment_ids=[str(i) for i in employment_ids],
            status=BatchStatus.PENDING.value,
            created_by=created_by,
            total_employees=len(employment_ids),
            total_payrolls=await count_active_allocations(
                self.session, employment_ids, period.pay_period_date
            ),
        )
        self.session.add(batch)
        await self.session.commit()
        logger.info(
            "Created batch %s for %s with %d employments",
            batch.batch_id,
            batch.pay_period,
            batch.total_employees,
        )

        if self.job_queue is not None:
            job = BulkPayrollJob(
                batch_id=batch.batch_id,
                pay_period=batch.pay_period,
                employment_ids=tuple(batch.employment_ids),
            )
            try:
                await self.job_queue.enqueue(job)
            except Exception as e:
                logger.exception("Could not enqueue batch %s", batch.batch_id)
                BatchStateMachine.apply(batch, BatchStatus.FAILED)
                self.session.add(
                    BulkPayrollBatchError(batch_id=batch.batch_id, error=f"Queue unavailable: {e}")
                )
                await self.session.commit()
                raise

        return batch

    async def get_batch(self, batch_id: UUID, for_update: bool = False) -> BulkPayrollBatch:
        query = select(BulkPayrollBatch).where(BulkPayrollBatch.batch_id == batch_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query.execution_options(populate_existing=True))
        batch = result.scalar_one_or_none()
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return batch

    async def get_batch_status(self, batch_id: UUID) -> dict[str, Any]:
        batch = await self.get_batch(batch_id)
        error_count = await self._error_count(batch_id)
        errors = await self._errors(batch_id, limit=STATUS_ERROR_LIMIT)

        return {
            "batch_id": str(batch.batch_id),
            "pay_period": batch.pay_period,
            "status": batch.status,
            "processed": batch.processed_employees,
            "total": batch.total_employees,
            "progress_percentage": batch.progress_percentage,
            "current_employee": batch.current_employee,
            "current_allocation": batch.current_allocation,
            "cancel_requested": batch.cancel_requested,
            "stats": {
                "total_employees": batch.total_employees,
                "total_payrolls": batch.total_payrolls,
                "successful": batch.successful_employees,
                "failed": batch.failed_employees,
                "skipped": batch.skipped_employees,
                "advances_created": batch.advances_created,
            },
            "error_count": error_count,
            "errors": [e.to_entry() for e in errors],
            "summary": batch.summary,
            "started_at": batch.started_at,
            "completed_at": batch.completed_at,
        }

    async def download_batch_errors(self, batch_id: UUID) -> str:
        """All error entries of a batch as CSV text."""
        await self.get_batch(batch_id)
        errors = await self._errors(batch_id)

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(ERROR_CSV_HEADER)
        for entry in errors:
            writer.writerow(
                [entry.employment_id or "", entry.employee or "", entry.allocation or "", entry.error]
            )
        return buffer.getvalue()

    async def cancel_batch(self, batch_id: UUID) -> BulkPayrollBatch:
        """Cancel a pending batch now, or flag a processing one. Commits the session."""
        batch = await self.get_batch(batch_id, for_update=True)
        if batch.status == BatchStatus.PENDING:
            BatchStateMachine.apply(batch, BatchStatus.CANCELLED)
        else:
            BatchStateMachine.validate_transition(batch.status, BatchStatus.CANCELLED)
        batch.cancel_requested = True
        await self.session.commit()
        logger.info("Cancellation requested for batch %s (%s)", batch_id, batch.status)
        return batch

    # =========================================================================
    # Single calculation
    # =========================================================================

    async def calculate_employment(
        self,
        employment_id: UUID,
        pay_period: str,
        adjustments: PayrollAdjustments | None = None,
        save: bool = False,
    ) -> dict[str, Any]:
        """Calculate one employment's lines; optionally upsert them. Commits when saving."""
        period = parse_period(pay_period)
        employee = await load_employee_info(self.session, employment_id)
        if employee is None:
            raise PayrollValidationError("employment_id", f"employment {employment_id} not found")

        rules = await self.rules_provider.get_rules(period.pay_period_date)
        writer = PayrollWriter(self.session)
        accruals = await self._accruals(writer, employee.allocations, period.pay_period_date)
        base = adjustments or PayrollAdjustments()

        result = PayrollCalculator(rules).calculate_employee(
            employee,
            period.pay_period_date,
            lambda a: PayrollAdjustments(
                salary_bonus=base.salary_bonus,
                compensation_refund=base.compensation_refund,
                compensation_deduction=base.compensation_deduction,
                thirteenth_month_accrued_ytd=accruals.get(a.allocation_id, ZERO),
            ),
        )

        saved: list[str] = []
        if save and result.lines:
            allocations = {a.allocation_id: a for a in employee.allocations}
            for line in result.lines:
                payroll, _ = await writer.upsert_line(line)
                if line.needs_advance:
                    await writer.record_advance(payroll, employee, allocations[line.allocation_id])
                saved.append(str(payroll.payroll_id))
            await self.session.commit()

        return {
            "employment_id": str(employment_id),
            "staff_id": employee.staff_id,
            "name": employee.full_name,
            "pay_period": period.label,
            "pay_period_date": period.pay_period_date.isoformat(),
            "lines": [PayrollLineBuilder.to_preview(line) for line in result.lines],
            "errors": [{"allocation": f.allocation.label, "error": f.error} for f in result.failures],
            "warnings": result.warnings,
            "saved_payroll_ids": saved,
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _accruals(
        self,
        writer: PayrollWriter,
        allocations: tuple[AllocationInfo, ...],
        pay_period_date: date,
    ) -> dict[UUID, Decimal]:
        return {
            a.allocation_id: await writer.accrued_thirteenth_month(
                a, pay_period_date, self.settings.fiscal_year_end_month
            )
            for a in allocations
            if a.is_active_on(pay_period_date)
        }

    async def _error_count(self, batch_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count(BulkPayrollBatchError.batch_error_id)).where(
                BulkPayrollBatchError.batch_id == batch_id
            )
        )
        return int(result.scalar() or 0)

    async def _errors(self, batch_id: UUID, limit: int | None = None) -> list[BulkPayrollBatchError]:
        query = (
            select(BulkPayrollBatchError)
            .where(BulkPayrollBatchError.batch_id == batch_id)
            .order_by(BulkPayrollBatchError.created_at, BulkPayrollBatchError.employment_id)
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())
