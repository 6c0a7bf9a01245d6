"""Integration test fixtures with a real (in-memory SQLite) database."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from funding_payroll.api.app import create_app
from funding_payroll.api.dependencies import get_db_session, get_job_queue
from funding_payroll.config import Settings
from funding_payroll.database import make_session_factory
from funding_payroll.models import (
    Base,
    BenefitSetting,
    Employee,
    Employment,
    FundingAllocation,
    Grant,
    GrantItem,
    ProbationRecord,
    TaxBracket,
    TaxSetting,
)

TEST_DATABASE_URL = "sqlite+aiosqlite://"

BRACKETS = [
    (0, 150000, 0),
    (150000, 300000, 5),
    (300000, 500000, 10),
    (500000, 750000, 15),
    (750000, 1000000, 20),
    (1000000, 2000000, 25),
    (2000000, 5000000, 30),
    (5000000, None, 35),
]

TAX_SETTINGS = {
    "PERSONAL_ALLOWANCE": 60000,
    "SPOUSE_ALLOWANCE": 60000,
    "CHILD_ALLOWANCE": 30000,
    "CHILD_ALLOWANCE_SUBSEQUENT": 60000,
    "PARENT_ALLOWANCE": 30000,
    "SSF_RATE": 5,
    "SSF_MAX_MONTHLY": 750,
}

BENEFITS = {
    "social_security_rate": ("5", "percentage"),
    "social_security_max_monthly": ("750", "numeric"),
    "health_welfare_high_threshold": ("15000", "numeric"),
    "health_welfare_medium_threshold": ("10000", "numeric"),
    "health_welfare_high_amount": ("150", "numeric"),
    "health_welfare_medium_amount": ("100", "numeric"),
    "health_welfare_low_amount": ("60", "numeric"),
    "pvd_percentage": ("7.5", "percentage"),
    "saving_fund_percentage": ("7.5", "percentage"),
}


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        host="127.0.0.1",
        port=8000,
        debug=False,
        batch_chunk_size=2,
        annual_increase_percentage=Decimal("0"),
    )


class Seeder:
    """Writes reference data and employees; returns ids only."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._staff_seq = 0

    async def rules(
        self,
        year: int = 2025,
        *,
        brackets: bool = True,
        benefits_from: date = date(2025, 1, 1),
    ) -> None:
        async with self.session_factory() as session, session.begin():
            if brackets:
                for order, (low, high, rate) in enumerate(BRACKETS, start=1):
                    session.add(
                        TaxBracket(
                            min_income=Decimal(low),
                            max_income=Decimal(high) if high is not None else None,
                            tax_rate=Decimal(rate),
                            bracket_order=order,
                            effective_year=year,
                        )
                    )
            for key, value in TAX_SETTINGS.items():
                session.add(
                    TaxSetting(setting_key=key, setting_value=Decimal(value), effective_year=year)
                )
            for key, (value, setting_type) in BENEFITS.items():
                session.add(
                    BenefitSetting(
                        setting_key=key,
                        setting_value=Decimal(value),
                        setting_type=setting_type,
                        effective_date=benefits_from,
                    )
                )

    async def benefit(self, key: str, value: str, effective: date, **kwargs: Any) -> None:
        async with self.session_factory() as session, session.begin():
            session.add(
                BenefitSetting(
                    setting_key=key,
                    setting_value=Decimal(value),
                    setting_type=kwargs.pop("setting_type", "numeric"),
                    effective_date=effective,
                    **kwargs,
                )
            )

    async def grant(
        self, code: str, organization: str, *, is_hub: bool = False
    ) -> tuple[UUID, UUID]:
        """Create a grant with one item; returns (grant_id, grant_item_id)."""
        async with self.session_factory() as session, session.begin():
            grant = Grant(code=code, name=f"{code} grant", organization=organization, is_hub=is_hub)
            session.add(grant)
            await session.flush()
            item = GrantItem(grant_id=grant.grant_id, grant_position="Research Assistant")
            session.add(item)
            await session.flush()
            return grant.grant_id, item.grant_item_id

    async def employee(
        self,
        organization: str = "SMRU",
        allocations: list[dict[str, Any]] | None = None,
        *,
        salary: str = "50000",
        probation_salary: str | None = None,
        start_date: date = date(2023, 1, 1),
        pass_probation_date: date | None = date(2023, 4, 1),
        end_date: date | None = None,
        employment_type: str = "Full-time",
        department_id: UUID | None = None,
        probation_record: bool = False,
    ) -> UUID:
        """Create employee, employment and allocations; returns the employment id.

        Each allocation dict takes grant_item_id or grant_id, fte and optional
        allocation_type, start_date, salary_type.
        """
        self._staff_seq += 1
        async with self.session_factory() as session, session.begin():
            employee = Employee(
                staff_id=f"{self._staff_seq:04d}",
                first_name="Staff",
                last_name=f"{self._staff_seq:04d}",
                organization=organization,
                status="Local ID",
            )
            session.add(employee)
            await session.flush()

            employment = Employment(
                employee_id=employee.employee_id,
                employment_type=employment_type,
                department_id=department_id,
                start_date=start_date,
                end_date=end_date,
                pass_probation_salary=Decimal(salary),
                probation_salary=Decimal(probation_salary) if probation_salary else None,
                pass_probation_date=pass_probation_date,
            )
            session.add(employment)
            await session.flush()

            for values in allocations or []:
                allocation_type = values.get("allocation_type", "grant")
                fte = Decimal(values["fte"])
                session.add(
                    FundingAllocation(
                        employee_id=employee.employee_id,
                        employment_id=employment.employment_id,
                        grant_item_id=values.get("grant_item_id"),
                        grant_id=values.get("grant_id"),
                        allocation_type=allocation_type,
                        fte=fte,
                        salary_type=values.get("salary_type", "pass_probation_salary"),
                        allocated_amount=Decimal(salary) * fte,
                        status=values.get("status", "active"),
                        start_date=values.get("start_date", start_date),
                    )
                )

            if probation_record and pass_probation_date is not None:
                session.add(
                    ProbationRecord(
                        employment_id=employment.employment_id,
                        employee_id=employee.employee_id,
                        event_type="initial",
                        event_date=start_date,
                        probation_start_date=start_date,
                        probation_end_date=pass_probation_date,
                    )
                )
            return employment.employment_id


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


async def fetch_all(session_factory, model, *where) -> list:
    """Load rows in a fresh session."""
    async with session_factory() as session:
        result = await session.execute(select(model).where(*where))
        return list(result.scalars().all())


@pytest.fixture
def fetch(session_factory):
    async def _fetch(model, *where):
        return await fetch_all(session_factory, model, *where)

    return _fetch


class RecordingQueue:
    """Job queue that keeps enqueued jobs instead of running them."""

    def __init__(self):
        self.jobs = []

    async def enqueue(self, job) -> None:
        self.jobs.append(job)


@pytest.fixture
def job_queue() -> RecordingQueue:
    return RecordingQueue()


@pytest_asyncio.fixture
async def client(session_factory, job_queue) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the test database and a recording queue."""

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app = create_app()
    app.dependency_overrides[get_db_session] = _session
    app.dependency_overrides[get_job_queue] = lambda: job_queue

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
