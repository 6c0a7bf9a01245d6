"""Probation records and the daily probation-completion sweep."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from funding_payroll.calculators.line_builder import PayrollLineBuilder
from funding_payroll.calculators.types import AllocationStatus, SalaryType
from funding_payroll.models import Employment, FundingAllocation, ProbationRecord

logger = logging.getLogger(__name__)


class ProbationEventType(str, Enum):
    """Probation record event types."""

    INITIAL = "initial"
    EXTENSION = "extension"
    PASSED = "passed"
    FAILED = "failed"


STATUS_BY_EVENT: dict[str, str] = {
    ProbationEventType.INITIAL: "ongoing",
    ProbationEventType.EXTENSION: "extended",
    ProbationEventType.PASSED: "passed",
    ProbationEventType.FAILED: "failed",
}

# Statuses picked up by the completion sweep; None means no record yet
DUE_STATUSES = (None, "ongoing", "extended")
OPEN_STATUSES = ("ongoing", "extended")


class ProbationTransitionError(Exception):
    """Raised when an employment cannot move to the requested probation state."""

    def __init__(self, employment_id: UUID, reason: str):
        self.employment_id = employment_id
        self.reason = reason
        super().__init__(f"Employment {employment_id}: {reason}")


@dataclass
class ProbationHistory:
    """Probation timeline of one employment."""

    employment_id: UUID
    records: list[ProbationRecord]
    current_status: str | None
    total_extensions: int
    days_in_probation: int | None


class ProbationService:
    """Append-only probation event log for employments.

    Exactly one record per employment is active; each new event deactivates
    the previous one rather than updating it.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def active_record(self, employment_id: UUID) -> ProbationRecord | None:
        result = await self.session.execute(
            select(ProbationRecord).where(
                ProbationRecord.employment_id == employment_id,
                ProbationRecord.is_active.is_(True),
            )
        )
        return result.scalars().first()

    async def current_status(self, employment_id: UUID) -> str | None:
        record = await self.active_record(employment_id)
        return STATUS_BY_EVENT.get(record.event_type) if record else None

    async def create_initial_record(
        self, employment: Employment, event_date: date | None = None
    ) -> ProbationRecord:
        if employment.pass_probation_date is None:
            raise ProbationTransitionError(employment.employment_id, "no probation pass date set")
        if await self.active_record(employment.employment_id) is not None:
            raise ProbationTransitionError(employment.employment_id, "probation already recorded")

        record = ProbationRecord(
            employment_id=employment.employment_id,
            employee_id=employment.employee_id,
            event_type=ProbationEventType.INITIAL.value,
            event_date=event_date or employment.start_date,
            probation_start_date=employment.start_date,
            probation_end_date=employment.pass_probation_date,
            extension_number=0,
        )
        self.session.add(record)
        await self.session.flush()
        return record

    async def extend_probation(
        self,
        employment: Employment,
        new_end_date: date,
        decision_date: date,
        reason: str | None = None,
        notes: str | None = None,
        approved_by: str | None = None,
    ) -> ProbationRecord:
        """Push the probation end date out and record the extension."""
        active = await self.active_record(employment.employment_id)
        if active is None:
            active = await self.create_initial_record(employment)
        if STATUS_BY_EVENT[active.event_type] not in OPEN_STATUSES:
            raise ProbationTransitionError(
                employment.employment_id, f"probation already {STATUS_BY_EVENT[active.event_type]}"
            )
        if new_end_date <= active.probation_end_date:
            raise ProbationTransitionError(
                employment.employment_id,
                f"new end date {new_end_date} must be after {active.probation_end_date}",
            )

        active.is_active = False
        record = ProbationRecord(
            employment_id=employment.employment_id,
            employee_id=employment.employee_id,
            event_type=ProbationEventType.EXTENSION.value,
            event_date=decision_date,
            decision_date=decision_date,
            probation_start_date=active.probation_start_date,
            probation_end_date=new_end_date,
            previous_end_date=active.probation_end_date,
            extension_number=active.extension_number + 1,
            decision_reason=reason,
            evaluation_notes=notes,
            approved_by=approved_by,
        )
        self.session.add(record)
        employment.pass_probation_date = new_end_date
        await self.session.flush()
        logger.info(
            "Extended probation for employment %s to %s (extension %d)",
            employment.employment_id,
            new_end_date,
            record.extension_number,
        )
        return record

    async def mark_as_passed(
        self,
        employment: Employment,
        decision_date: date,
        reason: str | None = None,
        notes: str | None = None,
        approved_by: str | None = None,
    ) -> ProbationRecord:
        return await self._close(
            employment, ProbationEventType.PASSED, decision_date, reason, notes, approved_by
        )

    async def mark_as_failed(
        self,
        employment: Employment,
        decision_date: date,
        reason: str | None = None,
        notes: str | None = None,
        approved_by: str | None = None,
    ) -> ProbationRecord:
        """Record a failed probation, end the employment and terminate its allocations."""
        record = await self._close(
            employment, ProbationEventType.FAILED, decision_date, reason, notes, approved_by
        )
        employment.end_date = decision_date
        employment.is_active = False
        await self.session.execute(
            update(FundingAllocation)
            .where(
                FundingAllocation.employment_id == employment.employment_id,
                FundingAllocation.status == AllocationStatus.ACTIVE.value,
            )
            .values(status=AllocationStatus.TERMINATED.value, end_date=decision_date)
        )
        await self.session.flush()
        return record

    async def get_history(self, employment_id: UUID) -> ProbationHistory:
        result = await self.session.execute(
            select(ProbationRecord)
            .where(ProbationRecord.employment_id == employment_id)
            .order_by(ProbationRecord.event_date, ProbationRecord.extension_number)
        )
        records = list(result.scalars().all())
        active = next((r for r in records if r.is_active), None)

        days = None
        if active is not None:
            days = (active.probation_end_date - active.probation_start_date).days

        return ProbationHistory(
            employment_id=employment_id,
            records=records,
            current_status=STATUS_BY_EVENT.get(active.event_type) if active else None,
            total_extensions=sum(
                1 for r in records if r.event_type == ProbationEventType.EXTENSION
            ),
            days_in_probation=days,
        )

    async def can_extend(self, employment_id: UUID) -> bool:
        return await self.current_status(employment_id) in OPEN_STATUSES

    async def _close(
        self,
        employment: Employment,
        event_type: ProbationEventType,
        decision_date: date,
        reason: str | None,
        notes: str | None,
        approved_by: str | None,
    ) -> ProbationRecord:
        active = await self.active_record(employment.employment_id)
        if active is not None and STATUS_BY_EVENT[active.event_type] not in OPEN_STATUSES:
            raise ProbationTransitionError(
                employment.employment_id, f"probation already {STATUS_BY_EVENT[active.event_type]}"
            )

        if active is not None:
            active.is_active = False
            start, end = active.probation_start_date, active.probation_end_date
            extension_number = active.extension_number
        else:
            start = employment.start_date
            end = employment.pass_probation_date or decision_date
            extension_number = 0

        record = ProbationRecord(
            employment_id=employment.employment_id,
            employee_id=employment.employee_id,
            event_type=event_type.value,
            event_date=decision_date,
            decision_date=decision_date,
            probation_start_date=start,
            probation_end_date=end,
            previous_end_date=end,
            extension_number=extension_number,
            decision_reason=reason,
            evaluation_notes=notes,
            approved_by=approved_by,
        )
        self.session.add(record)
        await self.session.flush()
        return record


# =============================================================================
# Daily sweep
# =============================================================================


@dataclass
class TransitionOutcome:
    """Result of transitioning one employment."""

    employment_id: UUID
    staff_id: str
    success: bool
    message: str
    allocations_transitioned: int = 0


@dataclass
class TransitionSweepResult:
    """Result of one probation-completion sweep."""

    as_of: date
    dry_run: bool = False
    outcomes: list[TransitionOutcome] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)


class ProbationTransitionService:
    """Moves employments whose probation ends today onto the post-probation salary.

    Superseded allocations become historical the day before; replacements
    start on the pass date with salary_type pass_probation_salary. Each
    employment runs in its own transaction, so one failure never blocks others.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_due_employments(
        self, as_of: date, employment_id: UUID | None = None
    ) -> list[tuple[UUID, str]]:
        """(employment_id, staff_id) pairs whose probation ends on as_of."""
        async with self.session_factory() as session:
            query = (
                select(Employment)
                .options(selectinload(Employment.employee))
                .where(
                    Employment.pass_probation_date == as_of,
                    Employment.is_active.is_(True),
                    or_(Employment.end_date.is_(None), Employment.end_date >= as_of),
                )
                .order_by(Employment.employment_id)
            )
            if employment_id is not None:
                query = query.where(Employment.employment_id == employment_id)
            employments = (await session.execute(query)).scalars().all()

            probation = ProbationService(session)
            due = []
            for employment in employments:
                if await probation.current_status(employment.employment_id) in DUE_STATUSES:
                    due.append((employment.employment_id, employment.employee.staff_id))
            return due

    async def transition_employment(
        self, session: AsyncSession, employment: Employment, as_of: date
    ) -> int:
        """Supersede active allocations and record the passed event. Returns allocation count."""
        result = await session.execute(
            select(FundingAllocation).where(
                FundingAllocation.employment_id == employment.employment_id,
                FundingAllocation.status == AllocationStatus.ACTIVE.value,
                FundingAllocation.start_date <= as_of,
                or_(FundingAllocation.end_date.is_(None), FundingAllocation.end_date >= as_of),
            )
        )
        allocations = list(result.scalars().all())
        if not allocations:
            raise ProbationTransitionError(employment.employment_id, "no active funding allocations")

        salary = employment.pass_probation_salary
        for allocation in allocations:
            amount = PayrollLineBuilder.round_to_cents(salary * allocation.fte)
            if allocation.start_date >= as_of:
                # Starts on the pass date, so no earlier payroll can reference it
                allocation.salary_type = SalaryType.PASS_PROBATION_SALARY.value
                allocation.allocated_amount = amount
                continue

            session.add(
                FundingAllocation(
                    employee_id=allocation.employee_id,
                    employment_id=allocation.employment_id,
                    grant_item_id=allocation.grant_item_id,
                    grant_id=allocation.grant_id,
                    allocation_type=allocation.allocation_type,
                    fte=allocation.fte,
                    salary_type=SalaryType.PASS_PROBATION_SALARY.value,
                    allocated_amount=amount,
                    status=AllocationStatus.ACTIVE.value,
                    start_date=as_of,
                    end_date=allocation.end_date,
                    supersedes_allocation_id=allocation.funding_allocation_id,
                )
            )
            allocation.status = AllocationStatus.HISTORICAL.value
            allocation.end_date = as_of - timedelta(days=1)

        await session.flush()
        await ProbationService(session).mark_as_passed(
            employment, as_of, reason="Probation period completed"
        )
        return len(allocations)

    async def process_due(
        self,
        as_of: date,
        dry_run: bool = False,
        employment_id: UUID | None = None,
    ) -> TransitionSweepResult:
        """Run the sweep for as_of."""
        sweep = TransitionSweepResult(as_of=as_of, dry_run=dry_run)
        due = await self.find_due_employments(as_of, employment_id)
        logger.info("Found %d employment(s) completing probation on %s", len(due), as_of)

        for due_id, staff_id in due:
            if dry_run:
                sweep.outcomes.append(
                    TransitionOutcome(due_id, staff_id, True, "would transition (dry run)")
                )
                continue

            try:
                async with self.session_factory() as session, session.begin():
                    employment = await session.get(Employment, due_id)
                    if employment is None:
                        raise ProbationTransitionError(due_id, "employment not found")
                    count = await self.transition_employment(session, employment, as_of)
                sweep.outcomes.append(
                    TransitionOutcome(due_id, staff_id, True, "transitioned", count)
                )
                logger.info("Probation completed for %s (%d allocations)", staff_id, count)
            except Exception as e:
                logger.exception("Probation transition failed for %s", staff_id)
                sweep.outcomes.append(TransitionOutcome(due_id, staff_id, False, str(e)))

        logger.info(
            "Probation sweep for %s: %d processed, %d succeeded, %d failed",
            as_of,
            sweep.processed,
            sweep.succeeded,
            sweep.failed,
        )
        return sweep
