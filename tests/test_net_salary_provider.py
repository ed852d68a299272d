"""
PayAdvance - Net Salary Provider Tests
"""

import logging
import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from payadvance.models.employee import Employee
from payadvance.services.net_salary_provider import NetSalaryProvider, current_period

from tests.conftest import fixed_net_salary


def make_employee(base_salary="120000"):
    return Employee(id=uuid4(), base_salary=Decimal(base_salary))


class TestNetSalaryProvider:
    """Test cases for NetSalaryProvider."""

    @pytest.mark.asyncio
    async def test_uses_payroll_engine(self):
        provider = NetSalaryProvider(calculate_net_salary=fixed_net_salary("98765.432"))

        assert await provider.get_net_salary(make_employee()) == Decimal("98765.43")

    @pytest.mark.asyncio
    async def test_engine_receives_current_period(self):
        seen = []

        async def calculate(employee, period_start, period_end):
            seen.append((period_start, period_end))
            return Decimal("90000")

        provider = NetSalaryProvider(calculate_net_salary=calculate)
        await provider.get_net_salary(make_employee(), date(2026, 2, 17))

        assert seen == [(date(2026, 2, 1), date(2026, 2, 28))]

    @pytest.mark.asyncio
    async def test_falls_back_when_engine_returns_nothing(self, caplog):
        provider = NetSalaryProvider(calculate_net_salary=fixed_net_salary(None))

        with caplog.at_level(logging.WARNING):
            net_salary = await provider.get_net_salary(make_employee())

        assert net_salary == Decimal("102000.00")
        assert "using fallback" in caplog.text

    @pytest.mark.asyncio
    async def test_falls_back_when_engine_fails(self, caplog):
        async def broken(employee, period_start, period_end):
            raise RuntimeError("payroll engine offline")

        provider = NetSalaryProvider(calculate_net_salary=broken)

        with caplog.at_level(logging.WARNING):
            net_salary = await provider.get_net_salary(make_employee())

        assert net_salary == Decimal("102000.00")
        assert "payroll engine offline" in caplog.text

    @pytest.mark.asyncio
    async def test_non_positive_engine_result_falls_back(self):
        provider = NetSalaryProvider(calculate_net_salary=fixed_net_salary("0"))

        assert await provider.get_net_salary(make_employee("100000")) == Decimal("85000.00")

    @pytest.mark.asyncio
    async def test_without_engine(self):
        provider = NetSalaryProvider()

        assert await provider.get_net_salary(make_employee()) == Decimal("102000.00")

    @pytest.mark.asyncio
    async def test_configurable_fallback_rate(self):
        provider = NetSalaryProvider(fallback_rate=Decimal("0.8"))

        assert await provider.get_net_salary(make_employee()) == Decimal("96000.00")

    @pytest.mark.asyncio
    async def test_no_base_salary(self):
        provider = NetSalaryProvider()

        assert await provider.get_net_salary(make_employee("0")) == Decimal("0")


def test_current_period_handles_month_lengths():
    assert current_period(date(2026, 2, 10)) == (date(2026, 2, 1), date(2026, 2, 28))
    assert current_period(date(2028, 2, 29)) == (date(2028, 2, 1), date(2028, 2, 29))
    assert current_period(date(2026, 12, 31)) == (date(2026, 12, 1), date(2026, 12, 31))
