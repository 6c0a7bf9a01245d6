"""Asynchronous bulk payroll processing with resumable progress tracking."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from funding_payroll.calculators.advance_detector import needs_advance
from funding_payroll.calculators.allocation_resolver import resolve_active_allocations
from funding_payroll.calculators.engine import PayrollCalculator
from funding_payroll.calculators.rules_provider import ConfigurationMissingError, RulesProvider
from funding_payroll.calculators.types import AllocationInfo, EmployeeInfo, PayrollAdjustments
from funding_payroll.config import Settings, get_settings
from funding_payroll.models import BulkPayrollBatch, BulkPayrollBatchError, Payroll
from funding_payroll.services.job_queue import BulkPayrollJob
from funding_payroll.services.loaders import load_employment_chunk
from funding_payroll.services.notifications import (
    BatchNotification,
    LoggingNotificationSink,
    NotificationSink,
    notify_safely,
)
from funding_payroll.services.payroll_writer import PayrollWriter
from funding_payroll.services.state_machine import BatchStateMachine, BatchStatus

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when one payroll row cannot be written."""

    def __init__(self, allocation_label: str, cause: Exception):
        self.allocation_label = allocation_label
        self.cause = cause
        super().__init__(f"Failed to save payroll for {allocation_label}: {cause}")


class BatchNotFoundError(Exception):
    """Raised when a batch id does not exist."""

    def __init__(self, batch_id: UUID):
        self.batch_id = batch_id
        super().__init__(f"Bulk payroll batch {batch_id} not found")


@dataclass
class EmploymentOutcome:
    """Result of processing one employment within a batch."""

    employment_id: str
    employee: str
    lines_saved: int = 0
    advances_created: int = 0
    skipped: bool = False
    errors: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.errors)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BulkPayrollProcessor:
    """Runs a batch: resolve, calculate, persist and track progress.

    Processing order per batch:
    1) Move pending → processing (or resume a processing batch at its cursor)
    2) Load tax and benefit rules once; missing brackets fail the whole batch
    3) Walk employment ids in chunks, eager-loading each chunk
    4) Per allocation: calculate, upsert the payroll row and any advance in
       its own short transaction; failures become error rows
    5) Per employment: atomically bump counters and advance the cursor
    6) Check the cancellation flag between employments
    7) Finalize status and summary, then notify
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: NotificationSink | None = None,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier or LoggingNotificationSink()
        self.settings = settings or get_settings()

    async def handle_job(self, job: BulkPayrollJob) -> str:
        """Job queue entry point."""
        return await self.process(job.batch_id)

    async def handle_exhausted(self, job: BulkPayrollJob, exc: BaseException) -> None:
        """Called by the queue once retries are used up."""
        await self.fail_batch(job.batch_id, f"Batch processing error: {exc}")

    async def process(self, batch_id: UUID) -> str:
        """Process (or resume) a batch and return its final status."""
        started = await self._start(batch_id)
        if started is None:
            async with self.session_factory() as session:
                batch = await session.get(BulkPayrollBatch, batch_id)
                return batch.status if batch else BatchStatus.FAILED.value
        pay_period_date, employment_ids, start_index, warnings = started

        try:
            async with self.session_factory() as session:
                rules = await RulesProvider(session, self.settings).get_rules(
                    pay_period_date, require_brackets=True
                )
        except ConfigurationMissingError as e:
            logger.error("Batch %s cannot run: %s", batch_id, e)
            await self.fail_batch(batch_id, str(e))
            return BatchStatus.FAILED.value

        calculator = PayrollCalculator(rules)
        chunk_size = max(self.settings.batch_chunk_size, 1)

        for offset in range(start_index, len(employment_ids), chunk_size):
            chunk_ids = employment_ids[offset : offset + chunk_size]
            async with self.session_factory() as session:
                chunk = await load_employment_chunk(session, [UUID(i) for i in chunk_ids])

            for index, employment_id in enumerate(chunk_ids, start=offset):
                if await self._cancel_requested(batch_id):
                    return await self._finish(batch_id, BatchStatus.CANCELLED, warnings)

                employee = chunk.get(UUID(employment_id))
                if employee is None:
                    outcome = EmploymentOutcome(employment_id=employment_id, employee="")
                    outcome.errors.append(
                        self._error_entry(employment_id, "", None, "Employment not found")
                    )
                else:
                    outcome = await self._process_employment(
                        batch_id, employee, calculator, pay_period_date
                    )

                warnings.extend(outcome.warnings)
                await self._record_progress(batch_id, index + 1, outcome, warnings)

        return await self._finish(batch_id, None, warnings)

    async def fail_batch(self, batch_id: UUID, message: str) -> None:
        """Mark a non-terminal batch failed with a batch-level error entry."""
        async with self.session_factory() as session, session.begin():
            batch = await self._lock(session, batch_id)
            if batch is None or batch.is_terminal:
                return
            BatchStateMachine.apply(batch, BatchStatus.FAILED)
            batch.completed_at = _now()
            batch.current_employee = None
            batch.current_allocation = None
            session.add(BulkPayrollBatchError(batch_id=batch_id, error=message))
            notification = self._notification(batch, error_count=1)
        logger.error("Batch %s failed: %s", batch_id, message)
        await notify_safely(self.notifier, notification)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _start(self, batch_id: UUID) -> tuple[date, list[str], int, list[str]] | None:
        async with self.session_factory() as session, session.begin():
            batch = await self._lock(session, batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)
            if batch.is_terminal:
                logger.info("Batch %s already %s; nothing to do", batch_id, batch.status)
                return None

            if BatchStateMachine.can_resume(batch.status):
                logger.info(
                    "Resuming batch %s at %d/%d",
                    batch_id,
                    batch.next_index,
                    batch.total_employees,
                )
            else:
                BatchStateMachine.apply(batch, BatchStatus.PROCESSING)
                batch.started_at = _now()
                logger.info(
                    "Processing batch %s for %s (%d employments)",
                    batch_id,
                    batch.pay_period,
                    batch.total_employees,
                )

            warnings = list((batch.summary or {}).get("warnings", []))
            return batch.pay_period_date, list(batch.employment_ids), batch.next_index, warnings

    async def _finish(
        self, batch_id: UUID, forced: BatchStatus | None, warnings: list[str]
    ) -> str:
        async with self.session_factory() as session, session.begin():
            batch = await self._lock(session, batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)

            final = forced or BatchStateMachine.completion_status(batch.failed_employees)
            BatchStateMachine.apply(batch, final)
            batch.completed_at = _now()
            batch.current_employee = None
            batch.current_allocation = None
            batch.summary = await self._summary(session, batch, warnings)
            error_count = await self._error_count(session, batch_id)
            notification = self._notification(batch, error_count=error_count)

        logger.info("Batch %s finished: %s", batch_id, final.value)
        await notify_safely(self.notifier, notification)
        return final.value

    # =========================================================================
    # Per-employment work
    # =========================================================================

    async def _process_employment(
        self,
        batch_id: UUID,
        employee: EmployeeInfo,
        calculator: PayrollCalculator,
        pay_period_date: date,
    ) -> EmploymentOutcome:
        employment_id = str(employee.employment.employment_id) if employee.employment else ""
        outcome = EmploymentOutcome(employment_id=employment_id, employee=employee.full_name)

        resolution = resolve_active_allocations(employee, pay_period_date)
        outcome.warnings = resolution.warning_messages()
        if resolution.is_empty:
            outcome.skipped = True
            return outcome

        for resolved in resolution.allocations:
            allocation = resolved.allocation
            await self._set_current(batch_id, employee, allocation)
            try:
                created = await self._save_allocation(
                    batch_id, employee, allocation, calculator, pay_period_date
                )
                outcome.lines_saved += 1
                outcome.advances_created += int(created)
            except Exception as e:
                logger.warning(
                    "Batch %s: payroll for %s (%s) failed: %s",
                    batch_id,
                    employee.staff_id,
                    allocation.label,
                    e,
                )
                outcome.errors.append(
                    self._error_entry(employment_id, employee.full_name, allocation, str(e))
                )

        return outcome

    async def _save_allocation(
        self,
        batch_id: UUID,
        employee: EmployeeInfo,
        allocation: AllocationInfo,
        calculator: PayrollCalculator,
        pay_period_date: date,
    ) -> bool:
        """Calculate and persist one line in its own transaction.

        Returns True when a new advance was recorded.
        """
        async with self.session_factory() as session, session.begin():
            writer = PayrollWriter(session)
            accrued = await writer.accrued_thirteenth_month(
                allocation, pay_period_date, self.settings.fiscal_year_end_month
            )
            line = calculator.calculate(
                employee,
                allocation,
                pay_period_date,
                PayrollAdjustments(thirteenth_month_accrued_ytd=accrued),
            )
            line.needs_advance = needs_advance(employee, allocation)

            try:
                payroll, _ = await writer.upsert_line(line, batch_id)
                created = False
                if line.needs_advance:
                    _, created = await writer.record_advance(payroll, employee, allocation)
            except SQLAlchemyError as e:
                raise PersistenceError(allocation.label, e) from e
            return created

    async def _record_progress(
        self,
        batch_id: UUID,
        next_index: int,
        outcome: EmploymentOutcome,
        warnings: list[str],
    ) -> None:
        """Counters, cursor and error rows for one employment, in one transaction."""
        values: dict[str, Any] = {
            "processed_employees": BulkPayrollBatch.processed_employees + 1,
            "advances_created": BulkPayrollBatch.advances_created + outcome.advances_created,
            "next_index": next_index,
            "current_employee": outcome.employee or None,
        }
        if outcome.failed:
            values["failed_employees"] = BulkPayrollBatch.failed_employees + 1
        elif outcome.skipped:
            values["skipped_employees"] = BulkPayrollBatch.skipped_employees + 1
        else:
            values["successful_employees"] = BulkPayrollBatch.successful_employees + 1
        if outcome.warnings:
            values["summary"] = {"warnings": list(warnings)}

        async with self.session_factory() as session, session.begin():
            for entry in outcome.errors:
                session.add(BulkPayrollBatchError(batch_id=batch_id, **entry))
            await session.execute(
                update(BulkPayrollBatch)
                .where(BulkPayrollBatch.batch_id == batch_id)
                .values(**values)
            )

    async def _set_current(
        self, batch_id: UUID, employee: EmployeeInfo, allocation: AllocationInfo
    ) -> None:
        async with self.session_factory() as session, session.begin():
            await session.execute(
                update(BulkPayrollBatch)
                .where(BulkPayrollBatch.batch_id == batch_id)
                .values(current_employee=employee.full_name, current_allocation=allocation.label)
            )

    async def _cancel_requested(self, batch_id: UUID) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                select(BulkPayrollBatch.cancel_requested).where(
                    BulkPayrollBatch.batch_id == batch_id
                )
            )
            return bool(result.scalar())

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    async def _lock(session: AsyncSession, batch_id: UUID) -> BulkPayrollBatch | None:
        result = await session.execute(
            select(BulkPayrollBatch)
            .where(BulkPayrollBatch.batch_id == batch_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _error_entry(
        employment_id: str,
        employee: str,
        allocation: AllocationInfo | None,
        error: str,
    ) -> dict[str, Any]:
        return {
            "employment_id": employment_id,
            "employee": employee,
            "allocation": allocation.label if allocation else "",
            "error": error,
        }

    @staticmethod
    async def _error_count(session: AsyncSession, batch_id: UUID) -> int:
        result = await session.execute(
            select(func.count(BulkPayrollBatchError.batch_error_id)).where(
                BulkPayrollBatchError.batch_id == batch_id
            )
        )
        return int(result.scalar() or 0)

    @staticmethod
    async def _summary(
        session: AsyncSession, batch: BulkPayrollBatch, warnings: list[str]
    ) -> dict[str, Any]:
        result = await session.execute(
            select(
                func.count(Payroll.payroll_id),
                func.coalesce(func.sum(Payroll.gross_salary_by_fte), 0),
                func.coalesce(func.sum(Payroll.net_salary), 0),
                func.coalesce(func.sum(Payroll.employer_contribution), 0),
                func.coalesce(func.sum(Payroll.total_salary), 0),
                func.coalesce(func.sum(case((Payroll.needs_advance.is_(True), 1), else_=0)), 0),
            ).where(Payroll.batch_id == batch.batch_id)
        )
        count, gross, net, employer, cost, advances = result.one()

        def money(value: Any) -> str:
            return str(Decimal(str(value)).quantize(Decimal("0.01")))

        return {
            "payrolls_saved": int(count),
            "total_gross": money(gross),
            "total_net": money(net),
            "total_employer_contribution": money(employer),
            "total_cost": money(cost),
            "advances_needed": int(advances),
            "advances_created": batch.advances_created,
            "processed_employees": batch.processed_employees,
            "successful_employees": batch.successful_employees,
            "failed_employees": batch.failed_employees,
            "skipped_employees": batch.skipped_employees,
            "warnings": list(warnings),
        }

    @staticmethod
    def _notification(batch: BulkPayrollBatch, error_count: int) -> BatchNotification:
        return BatchNotification(
            batch_id=batch.batch_id,
            pay_period=batch.pay_period,
            status=batch.status,
            total_employees=batch.total_employees,
            successful_employees=batch.successful_employees,
            failed_employees=batch.failed_employees,
            error_count=error_count,
            created_by=batch.created_by,
        )
