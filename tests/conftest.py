"""
PayAdvance - Test Configuration

Pytest fixtures and configuration.
"""

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from dateutil.relativedelta import relativedelta
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

import payadvance.models  # noqa: F401
from payadvance.database import Base, get_async_session
from payadvance.dependencies import get_net_salary_provider
from payadvance.models.employee import Employee
from payadvance.models.salary_advance import SalaryAdvancePolicy
from payadvance.services.net_salary_provider import NetSalaryProvider
from payadvance.services.repayment_scheduler import RepaymentScheduler
from payadvance.services.salary_advance_service import SalaryAdvanceService
from payadvance.services.salary_advance_validator import SalaryAdvanceValidator
from main import app


# In-memory SQLite shared by every session of a test
TEST_DATABASE_URL = "sqlite+aiosqlite://"

# Net salary every test employee earns unless a test says otherwise
DEFAULT_NET_SALARY = Decimal("100000")


def fixed_net_salary(amount):
    """Payroll engine stand-in returning the same net salary for everyone."""
    async def calculate(employee, period_start, period_end):
        return Decimal(amount) if amount is not None else None
    return calculate


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    session_factory = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def net_salary_provider() -> NetSalaryProvider:
    return NetSalaryProvider(calculate_net_salary=fixed_net_salary(DEFAULT_NET_SALARY))


@pytest.fixture
def scheduler() -> RepaymentScheduler:
    return RepaymentScheduler(rounding_unit=Decimal("1"))


@pytest.fixture
def validator(db_session, net_salary_provider, scheduler) -> SalaryAdvanceValidator:
    return SalaryAdvanceValidator(
        db_session,
        net_salary_provider=net_salary_provider,
        scheduler=scheduler,
    )


@pytest.fixture
def advance_service(db_session, validator, scheduler, net_salary_provider) -> SalaryAdvanceService:
    return SalaryAdvanceService(
        db_session,
        validator=validator,
        scheduler=scheduler,
        net_salary_provider=net_salary_provider,
    )


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, net_salary_provider) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session
    app.dependency_overrides[get_net_salary_provider] = lambda: net_salary_provider

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# DATA FIXTURES
# ===========================================

@pytest.fixture
def tenant_id():
    return uuid4()


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def api_headers(tenant_id, user_id):
    return {"X-Tenant-ID": str(tenant_id), "X-User-ID": str(user_id)}


async def create_employee(
    db_session: AsyncSession,
    tenant_id,
    employee_number: str = "EMP-0001",
    hire_date=None,
    base_salary: Decimal = Decimal("120000.00"),
) -> Employee:
    employee = Employee(
        id=uuid4(),
        tenant_id=tenant_id,
        employee_number=employee_number,
        first_name="Awa",
        last_name="Kone",
        email=f"{employee_number.lower()}@example.com",
        job_title="Accountant",
        hire_date=hire_date or date.today() - relativedelta(years=1),
        base_salary=base_salary,
        currency="XOF",
        is_active=True,
    )
    db_session.add(employee)
    await db_session.commit()
    await db_session.refresh(employee)
    return employee


@pytest_asyncio.fixture
async def employee(db_session: AsyncSession, tenant_id) -> Employee:
    """Employee hired a year ago."""
    return await create_employee(db_session, tenant_id)


@pytest_asyncio.fixture
async def policy(db_session: AsyncSession, tenant_id) -> SalaryAdvancePolicy:
    """Côte d'Ivoire policy: 30% of net, 1-3 months, 3 months of employment."""
    policy = SalaryAdvancePolicy(
        id=uuid4(),
        tenant_id=tenant_id,
        country_code="CI",
        max_percentage_of_net_salary=Decimal("30.00"),
        min_advance_amount=Decimal("10000.00"),
        max_outstanding_advances=1,
        max_requests_per_month=2,
        min_employment_months=3,
        allowed_repayment_months=[1, 2, 3],
        is_active=True,
        effective_from=date.today() - relativedelta(months=6),
    )
    db_session.add(policy)
    await db_session.commit()
    await db_session.refresh(policy)
    return policy
