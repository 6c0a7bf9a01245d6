"""Idempotent persistence of payroll lines and inter-organization advances."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from funding_payroll.calculators.dates import fiscal_year_start
from funding_payroll.calculators.line_builder import PayrollLineBuilder
from funding_payroll.calculators.types import AllocationInfo, EmployeeInfo, PayrollLine
from funding_payroll.models import FundingAllocation, Grant, InterOrganizationAdvance, Payroll

logger = logging.getLogger(__name__)


class WriteResult:
    """Outcome of an upsert."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class PayrollWriter:
    """Writes payroll rows keyed by (employment, allocation, pay period date).

    A row that already exists is updated in place, or left alone when its
    calculation hash is unchanged, so re-running a batch never duplicates rows.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self._hub_cache: dict[str, Grant | None] = {}

    async def upsert_line(
        self, line: PayrollLine, batch_id: UUID | None = None
    ) -> tuple[Payroll, str]:
        record = PayrollLineBuilder.to_record(line)

        result = await self.session.execute(
            select(Payroll)
            .where(
                Payroll.employment_id == line.employment_id,
                Payroll.funding_allocation_id == line.allocation_id,
                Payroll.pay_period_date == line.pay_period_date,
            )
            .with_for_update()
        )
        existing = result.scalar_one_or_none()

        if existing is None:
            payroll = Payroll(batch_id=batch_id, **record)
            self.session.add(payroll)
            await self.session.flush()
            return payroll, WriteResult.CREATED

        if batch_id is not None:
            existing.batch_id = batch_id
        if existing.calculation_hash == record["calculation_hash"]:
            await self.session.flush()
            return existing, WriteResult.UNCHANGED

        for key, value in record.items():
            setattr(existing, key, value)
        await self.session.flush()
        return existing, WriteResult.UPDATED

    async def record_advance(
        self,
        payroll: Payroll,
        employee: EmployeeInfo,
        allocation: AllocationInfo,
    ) -> tuple[InterOrganizationAdvance | None, bool]:
        """Upsert the advance for a cross-organization payroll row.

        Returns (advance, created). The lender's hub grant routes the advance;
        without one, no advance is recorded.
        """
        lender = allocation.funding_organization
        borrower = employee.organization
        if not lender or lender == borrower:
            return None, False

        hub = await self._hub_grant(lender)
        if hub is None:
            logger.warning(
                "No hub grant for %s; advance for %s (%s) not recorded",
                lender,
                employee.staff_id,
                allocation.label,
            )
            return None, False

        result = await self.session.execute(
            select(InterOrganizationAdvance).where(
                InterOrganizationAdvance.payroll_id == payroll.payroll_id
            )
        )
        advance = result.scalar_one_or_none()
        created = advance is None
        if advance is None:
            advance = InterOrganizationAdvance(payroll_id=payroll.payroll_id)
            self.session.add(advance)

        advance.from_organization = lender
        advance.to_organization = borrower
        advance.via_grant_id = hub.grant_id
        advance.amount = payroll.net_salary
        advance.advance_date = payroll.pay_period_date
        advance.notes = (
            f"Payroll advance for {employee.full_name} ({employee.staff_id}), "
            f"{allocation.label}"
        )
        await self.session.flush()
        return advance, created

    async def accrued_thirteenth_month(
        self,
        allocation: AllocationInfo,
        pay_period_date: date,
        fiscal_year_end_month: int = 12,
    ) -> Decimal:
        """Thirteenth-month accrual earlier in the fiscal year for this allocation.

        Rows written for allocations this one superseded count too, so an
        accrual survives the allocation being replaced at probation end.
        Two allocations on the same funding source never share accruals.
        """
        lineage = await self.allocation_lineage(allocation.allocation_id)
        year_start = fiscal_year_start(pay_period_date, fiscal_year_end_month)
        result = await self.session.execute(
            select(func.coalesce(func.sum(Payroll.thirteen_month_salary_accrued), 0)).where(
                Payroll.employment_id == allocation.employment_id,
                Payroll.funding_allocation_id.in_(lineage),
                Payroll.pay_period_date >= year_start,
                Payroll.pay_period_date < pay_period_date,
            )
        )
        return Decimal(str(result.scalar() or 0))

    async def allocation_lineage(self, allocation_id: UUID) -> list[UUID]:
        """The allocation followed by every allocation it superseded, newest first."""
        lineage = [allocation_id]
        while True:
            previous = await self.session.scalar(
                select(FundingAllocation.supersedes_allocation_id).where(
                    FundingAllocation.funding_allocation_id == lineage[-1]
                )
            )
            if previous is None or previous in lineage:
                return lineage
            lineage.append(previous)

    async def _hub_grant(self, organization: str) -> Grant | None:
        if organization not in self._hub_cache:
            result = await self.session.execute(
                select(Grant)
                .where(Grant.organization == organization, Grant.is_hub.is_(True))
                .order_by(Grant.code)
                .limit(1)
            )
            self._hub_cache[organization] = result.scalar_one_or_none()
        return self._hub_cache[organization]
