"""Integration tests for bulk payroll batch processing."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

import pytest
import pytest_asyncio
from sqlalchemy import update

from funding_payroll.models import (
    BulkPayrollBatch,
    BulkPayrollBatchError,
    InterOrganizationAdvance,
    Payroll,
)
from funding_payroll.services.batch_processor import BatchNotFoundError, BulkPayrollProcessor
from funding_payroll.services.batch_service import BulkPayrollService
from funding_payroll.services.payroll_writer import PayrollWriter
from funding_payroll.services.probation_service import ProbationTransitionService


class RecordingSink:
    def __init__(self):
        self.notifications = []

    async def batch_finished(self, notification):
        self.notifications.append(notification)


@pytest_asyncio.fixture
async def funding(seed) -> dict[str, tuple[UUID, UUID]]:
    """SMRU grant and BHF hub grant, each with one item."""
    return {
        "SMRU": await seed.grant("S0031", "SMRU"),
        "BHF": await seed.grant("B-24-01", "BHF", is_hub=True),
    }


@pytest_asyncio.fixture
async def staff(seed, funding) -> list[UUID]:
    """Two SMRU employees: one split 0.6/0.4 at home, one fully on a BHF grant."""
    await seed.rules()
    smru_grant, smru_item = funding["SMRU"]
    _, bhf_item = funding["BHF"]
    split = await seed.employee(
        "SMRU",
        [
            {"grant_item_id": smru_item, "fte": "0.6"},
            {"grant_id": smru_grant, "fte": "0.4", "allocation_type": "org_funded"},
        ],
    )
    seconded = await seed.employee("SMRU", [{"grant_item_id": bhf_item, "fte": "1"}])
    return [split, seconded]


async def create_batch(session_factory, settings, pay_period="2025-01", filters=None) -> UUID:
    async with session_factory() as session:
        batch = await BulkPayrollService(session, settings=settings).create_batch(
            pay_period, filters, created_by="tester"
        )
        return batch.batch_id


async def load_batch(fetch, batch_id) -> BulkPayrollBatch:
    (batch,) = await fetch(BulkPayrollBatch, BulkPayrollBatch.batch_id == batch_id)
    return batch


class TestBatchSuccess:
    """Test a batch where every allocation succeeds."""

    async def test_completes_and_saves_every_line(self, session_factory, settings, staff, fetch):
        sink = RecordingSink()
        batch_id = await create_batch(session_factory, settings)
        status = await BulkPayrollProcessor(session_factory, sink, settings).process(batch_id)

        assert status == "completed"
        batch = await load_batch(fetch, batch_id)
        assert batch.status == "completed"
        assert batch.total_employees == 2
        assert batch.total_payrolls == 3
        assert batch.processed_employees == 2
        assert batch.successful_employees == 2
        assert batch.failed_employees == 0
        assert batch.next_index == 2
        assert batch.current_employee is None
        assert batch.started_at is not None
        assert batch.completed_at is not None
        assert batch.summary["payrolls_saved"] == 3
        assert batch.summary["total_gross"] == "100000.00"

        payrolls = await fetch(Payroll)
        assert len(payrolls) == 3
        assert all(p.batch_id == batch_id for p in payrolls)
        assert sorted(p.gross_salary_by_fte for p in payrolls) == [
            Decimal("20000.00"),
            Decimal("30000.00"),
            Decimal("50000.00"),
        ]

        assert [n.status for n in sink.notifications] == ["completed"]
        assert sink.notifications[0].created_by == "tester"

    async def test_cross_organization_line_records_advance(
        self, session_factory, settings, staff, funding, fetch
    ):
        batch_id = await create_batch(session_factory, settings)
        await BulkPayrollProcessor(session_factory, settings=settings).process(batch_id)

        (seconded,) = await fetch(Payroll, Payroll.employment_id == staff[1])
        assert seconded.needs_advance is True
        assert seconded.funding_organization == "BHF"
        assert seconded.tax == Decimal("1716.67")
        assert seconded.net_salary == Decimal("47383.33")

        (advance,) = await fetch(InterOrganizationAdvance)
        assert advance.payroll_id == seconded.payroll_id
        assert advance.from_organization == "BHF"
        assert advance.to_organization == "SMRU"
        assert advance.via_grant_id == funding["BHF"][0]
        assert advance.amount == Decimal("47383.33")

        batch = await load_batch(fetch, batch_id)
        assert batch.advances_created == 1

    async def test_no_hub_grant_skips_advance(self, seed, session_factory, settings, fetch):
        await seed.rules()
        _, item = await seed.grant("B-25-07", "BHF")
        await seed.employee("SMRU", [{"grant_item_id": item, "fte": "1"}])

        batch_id = await create_batch(session_factory, settings)
        status = await BulkPayrollProcessor(session_factory, settings=settings).process(batch_id)

        assert status == "completed"
        (payroll,) = await fetch(Payroll)
        assert payroll.needs_advance is True
        assert await fetch(InterOrganizationAdvance) == []

    async def test_employee_without_allocations_is_skipped(
        self, seed, session_factory, settings, staff, fetch
    ):
        await seed.employee("SMRU", [])

        batch_id = await create_batch(session_factory, settings)
        status = await BulkPayrollProcessor(session_factory, settings=settings).process(batch_id)

        assert status == "completed"
        batch = await load_batch(fetch, batch_id)
        assert batch.skipped_employees == 1
        assert batch.successful_employees == 2
        assert any("no active funding allocations" in w for w in batch.summary["warnings"])


class TestBatchFailures:
    """Test per-allocation failure isolation and fatal configuration."""

    async def test_failed_allocation_does_not_stop_batch(
        self, seed, session_factory, settings, staff, funding, fetch
    ):
        _, smru_item = funding["SMRU"]
        broken = await seed.employee(
            "SMRU",
            [
                {"grant_item_id": None, "fte": "0.5"},
                {"grant_item_id": smru_item, "fte": "0.5"},
            ],
        )

        batch_id = await create_batch(session_factory, settings)
        status = await BulkPayrollProcessor(session_factory, settings=settings).process(batch_id)

        assert status == "completed_with_errors"
        batch = await load_batch(fetch, batch_id)
        assert batch.failed_employees == 1
        assert batch.successful_employees == 2
        assert batch.processed_employees == 3

        (error,) = await fetch(BulkPayrollBatchError)
        assert error.employment_id == str(broken)
        assert error.allocation == "Allocation (50%)"
        assert "missing grant item" in error.error

        # The valid half of the broken employee is still saved
        assert len(await fetch(Payroll, Payroll.employment_id == broken)) == 1
        assert len(await fetch(Payroll)) == 4

    async def test_missing_tax_brackets_fail_batch(
        self, seed, session_factory, settings, funding, fetch
    ):
        await seed.rules(brackets=False)
        _, item = funding["SMRU"]
        await seed.employee("SMRU", [{"grant_item_id": item, "fte": "1"}])

        sink = RecordingSink()
        batch_id = await create_batch(session_factory, settings)
        status = await BulkPayrollProcessor(session_factory, sink, settings).process(batch_id)

        assert status == "failed"
        batch = await load_batch(fetch, batch_id)
        assert batch.status == "failed"
        assert batch.processed_employees == 0
        (error,) = await fetch(BulkPayrollBatchError)
        assert error.employment_id is None
        assert "tax_brackets" in error.error
        assert await fetch(Payroll) == []
        assert [n.status for n in sink.notifications] == ["failed"]

    async def test_unknown_batch(self, session_factory, settings):
        processor = BulkPayrollProcessor(session_factory, settings=settings)
        with pytest.raises(BatchNotFoundError):
            await processor.process(UUID(int=1))

    async def test_exhausted_job_fails_batch(self, session_factory, settings, staff, fetch):
        batch_id = await create_batch(session_factory, settings)
        processor = BulkPayrollProcessor(session_factory, settings=settings)

        await processor.fail_batch(batch_id, "Batch processing error: worker lost")

        batch = await load_batch(fetch, batch_id)
        assert batch.status == "failed"
        (error,) = await fetch(BulkPayrollBatchError)
        assert error.error == "Batch processing error: worker lost"


class TestIdempotency:
    """Re-running a pay period updates rows instead of duplicating them."""

    async def test_rerun_does_not_duplicate(self, session_factory, settings, staff, fetch):
        processor = BulkPayrollProcessor(session_factory, settings=settings)

        first_id = await create_batch(session_factory, settings)
        await processor.process(first_id)
        first_rows = {p.payroll_id: p.calculation_hash for p in await fetch(Payroll)}

        second_id = await create_batch(session_factory, settings)
        status = await processor.process(second_id)

        assert status == "completed"
        rows = await fetch(Payroll)
        assert {p.payroll_id: p.calculation_hash for p in rows} == first_rows
        assert all(p.batch_id == second_id for p in rows)
        assert len(await fetch(InterOrganizationAdvance)) == 1

        second = await load_batch(fetch, second_id)
        assert second.advances_created == 0

    async def test_finished_batch_is_not_reprocessed(self, session_factory, settings, staff):
        processor = BulkPayrollProcessor(session_factory, settings=settings)
        batch_id = await create_batch(session_factory, settings)

        assert await processor.process(batch_id) == "completed"
        assert await processor.process(batch_id) == "completed"


class TestCancellationAndResume:
    """Test cooperative cancellation and cursor-based resume."""

    async def test_cancelled_pending_batch_never_runs(
        self, session_factory, settings, staff, fetch
    ):
        batch_id = await create_batch(session_factory, settings)
        async with session_factory() as session:
            batch = await BulkPayrollService(session, settings=settings).cancel_batch(batch_id)
            assert batch.status == "cancelled"

        status = await BulkPayrollProcessor(session_factory, settings=settings).process(batch_id)

        assert status == "cancelled"
        assert await fetch(Payroll) == []

    async def test_cancel_requested_while_processing(
        self, session_factory, settings, staff, fetch
    ):
        batch_id = await create_batch(session_factory, settings)
        async with session_factory() as session, session.begin():
            await session.execute(
                update(BulkPayrollBatch)
                .where(BulkPayrollBatch.batch_id == batch_id)
                .values(status="processing", cancel_requested=True)
            )

        status = await BulkPayrollProcessor(session_factory, settings=settings).process(batch_id)

        assert status == "cancelled"
        batch = await load_batch(fetch, batch_id)
        assert batch.processed_employees == 0
        assert batch.summary["payrolls_saved"] == 0
        assert await fetch(Payroll) == []

    async def test_resume_continues_from_cursor(self, session_factory, settings, staff, fetch):
        batch_id = await create_batch(session_factory, settings)
        async with session_factory() as session, session.begin():
            await session.execute(
                update(BulkPayrollBatch)
                .where(BulkPayrollBatch.batch_id == batch_id)
                .values(
                    status="processing",
                    next_index=1,
                    processed_employees=1,
                    successful_employees=1,
                )
            )

        status = await BulkPayrollProcessor(session_factory, settings=settings).process(batch_id)

        assert status == "completed"
        payrolls = await fetch(Payroll)
        assert {p.employment_id for p in payrolls} == {staff[1]}
        batch = await load_batch(fetch, batch_id)
        assert batch.processed_employees == 2
        assert batch.next_index == 2


class TestThirteenthMonthAccrual:
    async def test_year_end_pays_stored_accrual(
        self, seed, session_factory, settings, funding, fetch
    ):
        await seed.rules()
        _, item = funding["SMRU"]
        employment_id = await seed.employee("SMRU", [{"grant_item_id": item, "fte": "1"}])
        processor = BulkPayrollProcessor(session_factory, settings=settings)

        await processor.process(await create_batch(session_factory, settings, "2025-11"))
        await processor.process(await create_batch(session_factory, settings, "2025-12"))

        rows = sorted(
            await fetch(Payroll, Payroll.employment_id == employment_id),
            key=lambda p: p.pay_period_date,
        )
        assert [r.thirteen_month_salary_accrued for r in rows] == [
            Decimal("4166.67"),
            Decimal("4166.67"),
        ]
        assert rows[0].thirteen_month_salary == Decimal("0.00")
        assert rows[1].thirteen_month_salary == Decimal("8333.34")

    async def test_allocations_on_same_item_keep_separate_accruals(
        self, seed, session_factory, settings, funding, fetch
    ):
        await seed.rules()
        _, item = funding["SMRU"]
        employment_id = await seed.employee(
            "SMRU",
            [{"grant_item_id": item, "fte": "0.5"}, {"grant_item_id": item, "fte": "0.5"}],
        )
        processor = BulkPayrollProcessor(session_factory, settings=settings)

        await processor.process(await create_batch(session_factory, settings, "2025-11"))
        await processor.process(await create_batch(session_factory, settings, "2025-12"))

        rows = await fetch(Payroll, Payroll.employment_id == employment_id)
        november = [r for r in rows if r.pay_period_date.month == 11]
        december = [r for r in rows if r.pay_period_date.month == 12]

        assert [r.thirteen_month_salary_accrued for r in november] == [
            Decimal("2083.33"),
            Decimal("2083.33"),
        ]
        assert [r.thirteen_month_salary for r in december] == [
            Decimal("4166.66"),
            Decimal("4166.66"),
        ]
        assert sum(r.thirteen_month_salary for r in december) == sum(
            r.thirteen_month_salary_accrued for r in rows
        )

    async def test_accrual_follows_allocation_superseded_at_probation_end(
        self, seed, session_factory, settings, funding, fetch
    ):
        await seed.rules()
        _, item = funding["SMRU"]
        employment_id = await seed.employee(
            "SMRU",
            [{"grant_item_id": item, "fte": "1", "salary_type": "probation_salary"}],
            probation_salary="40000",
            start_date=date(2025, 1, 1),
            pass_probation_date=date(2025, 11, 1),
            probation_record=True,
        )
        processor = BulkPayrollProcessor(session_factory, settings=settings)

        await processor.process(await create_batch(session_factory, settings, "2025-10"))
        sweep = await ProbationTransitionService(session_factory).process_due(date(2025, 11, 1))
        assert sweep.succeeded == 1
        await processor.process(await create_batch(session_factory, settings, "2025-11"))
        await processor.process(await create_batch(session_factory, settings, "2025-12"))

        rows = sorted(
            await fetch(Payroll, Payroll.employment_id == employment_id),
            key=lambda p: p.pay_period_date,
        )
        assert [r.thirteen_month_salary_accrued for r in rows] == [
            Decimal("3333.33"),
            Decimal("4166.67"),
            Decimal("4166.67"),
        ]
        assert rows[0].funding_allocation_id != rows[2].funding_allocation_id
        assert rows[2].thirteen_month_salary == Decimal("11666.67")

        async with session_factory() as session:
            lineage = await PayrollWriter(session).allocation_lineage(
                rows[2].funding_allocation_id
            )
        assert lineage == [rows[2].funding_allocation_id, rows[0].funding_allocation_id]
