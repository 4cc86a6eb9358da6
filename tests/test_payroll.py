"""
Payroll and finance tests

Payroll is aggregated from production logs; the store is mocked.
"""

import sys
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch
from uuid import uuid4

import psycopg2
import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mutum.models import Expense, PaymentType, WorkerSettings
from mutum.services import BackendError, NotFoundError, ValidationError
from mutum.services.payroll import (
    FinanceService,
    PayrollService,
    aggregate_payroll,
    format_currency,
    month_range,
    payroll_total,
    total_due,
)
from mutum.utils.database import db


def worker(payment_type, fixed="0", rate="0", name=None, active=True):
    return WorkerSettings(
        user_id=uuid4(),
        payment_type=payment_type,
        fixed_salary=Decimal(fixed),
        production_rate=Decimal(rate),
        active=active,
        full_name=name,
    )


def test_mixed_worker_uses_historical_rates():
    """Rates stored on each log are used, not the current production_rate"""
    w = worker(PaymentType.MIXED, fixed="1000", rate="5", name="Ana")
    logs = [
        {"user_id": w.user_id, "quantity": 10, "unit_labor_cost": Decimal("5")},
        {"user_id": w.user_id, "quantity": 20, "unit_labor_cost": Decimal("4")},
    ]
    [entry] = aggregate_payroll([w], logs)

    assert entry.production_count == 30
    assert entry.production_earnings == Decimal("130")
    assert entry.total_due == Decimal("1130")


def test_rate_change_does_not_alter_past_payroll():
    w = worker(PaymentType.PRODUCTION, rate="5")
    logs = [{"user_id": w.user_id, "quantity": 3, "unit_labor_cost": Decimal("2")}]
    before = aggregate_payroll([w], logs)[0].total_due

    raised = w.model_copy(update={"production_rate": Decimal("50")})
    assert aggregate_payroll([raised], logs)[0].total_due == before == Decimal("6")


def test_every_worker_listed_even_without_logs():
    a = worker(PaymentType.FIXED, fixed="1500", name="bruno")
    b = worker(PaymentType.PRODUCTION, rate="3", name="Ana")
    entries = aggregate_payroll([a, b], [])

    assert [e.full_name for e in entries] == ["Ana", "bruno"]
    assert entries[0].production_count == 0
    assert entries[0].total_due == Decimal("0")
    assert entries[1].total_due == Decimal("1500")


def test_unknown_name_placeholder():
    [entry] = aggregate_payroll([worker(PaymentType.FIXED, fixed="10")], [])
    assert entry.full_name == "Desconhecido"


def test_total_due_by_payment_type():
    assert total_due(PaymentType.FIXED, Decimal("100"), Decimal("7")) == Decimal("100")
    assert total_due(PaymentType.PRODUCTION, Decimal("100"), Decimal("7")) == Decimal("7")
    assert total_due(PaymentType.MIXED, Decimal("100"), Decimal("7")) == Decimal("107")


def test_month_range():
    start, end = month_range(2024, 2)
    assert start == datetime(2024, 2, 1, 0, 0)
    assert end.date() == date(2024, 2, 29)
    with pytest.raises(ValidationError):
        month_range(2024, 13)


def test_format_currency():
    assert format_currency(Decimal("1130")) == "R$ 1.130,00"
    assert format_currency(Decimal("0.5")) == "R$ 0,50"
    assert format_currency(Decimal("1234567.891")) == "R$ 1.234.567,89"


def test_compute_payroll_fetches_produced_logs_in_period():
    w = worker(PaymentType.MIXED, fixed="1000", name="Ana")
    logs = [{"user_id": w.user_id, "quantity": 10, "unit_labor_cost": Decimal("5")}]
    with patch.object(db, "execute_query", return_value=logs) as query:
        entries = PayrollService().compute_month([w], 2026, 3)

    params = query.call_args[0][1]
    assert params[0] == "produced"
    assert params[1] == datetime(2026, 3, 1)
    assert payroll_total(entries) == Decimal("1050")


def test_fetch_failure_aborts_payroll():
    with patch.object(db, "execute_query", side_effect=psycopg2.OperationalError("down")):
        with pytest.raises(BackendError):
            PayrollService().compute_month([worker(PaymentType.FIXED, fixed="1")], 2026, 3)


def test_inverted_period_rejected():
    with pytest.raises(ValidationError):
        PayrollService().compute_payroll([], datetime(2026, 3, 2), datetime(2026, 3, 1))


def test_worker_month_earnings():
    logs = [{"quantity": 4, "unit_labor_cost": Decimal("2.5")}, {"quantity": 1, "unit_labor_cost": None}]
    with patch.object(db, "execute_query", return_value=logs) as query:
        earned = PayrollService().worker_month_earnings("u1", today=date(2026, 3, 17))
    assert earned == Decimal("10")
    assert query.call_args[0][1][2] == datetime(2026, 3, 1)


def test_projected_monthly_cost():
    expenses = [
        Expense(id=uuid4(), description="Sementes", amount=Decimal("200"), date=date(2026, 3, 5)),
        Expense(id=uuid4(), description="Frete", amount=Decimal("50"), date=date(2026, 2, 5)),
    ]
    workers = [
        worker(PaymentType.FIXED, fixed="1000"),
        worker(PaymentType.MIXED, fixed="500"),
        worker(PaymentType.PRODUCTION, fixed="999"),
        worker(PaymentType.FIXED, fixed="700", active=False),
    ]
    cost = FinanceService().projected_monthly_cost(expenses, workers, month=3, year=2026)
    assert cost == Decimal("1700")


def test_new_worker_requires_payment_type():
    with patch.object(db, "execute_query", return_value=None):
        with pytest.raises(ValidationError):
            FinanceService().upsert_worker_settings(str(uuid4()), fixed_salary=Decimal("10"))


def test_unknown_worker_setting_rejected():
    with pytest.raises(ValidationError):
        FinanceService().upsert_worker_settings(str(uuid4()), bonus=1)


def test_upsert_worker_settings():
    user_id = uuid4()
    saved = {
        "user_id": user_id, "payment_type": "production", "fixed_salary": Decimal("0"),
        "production_rate": Decimal("4"), "payment_date": None, "active": True,
        "full_name": "Ana", "role": "artesa",
    }
    with patch.object(db, "execute_query", side_effect=[None, saved]), \
            patch.object(db, "execute_update", return_value=1) as update:
        result = FinanceService().upsert_worker_settings(
            str(user_id), payment_type=PaymentType.PRODUCTION, production_rate=Decimal("4")
        )

    assert update.call_args[0][1] == (str(user_id), "production", Decimal("4"))
    assert result.payment_type == PaymentType.PRODUCTION


@pytest.mark.parametrize("fields", [
    {"payment_type": "weekly"},
    {"payment_type": "fixed", "fixed_salary": "mil reais"},
    {"payment_type": "fixed", "production_rate": "NaN"},
    {"payment_type": "fixed", "fixed_salary": "-1"},
])
def test_bad_worker_settings_are_validation_errors(fields):
    with patch.object(db, "execute_update") as update:
        with pytest.raises(ValidationError):
            FinanceService().upsert_worker_settings(str(uuid4()), **fields)
    update.assert_not_called()


def test_add_expense_normalises_input():
    row = {
        "id": uuid4(), "description": "Sementes", "amount": Decimal("12.50"), "category": "raw_material",
        "date": date(2026, 3, 5), "recurrence": None, "created_by": None,
    }
    with patch.object(db, "execute_query", return_value=row) as query:
        expense = FinanceService().add_expense(" Sementes ", "12,50", "raw_material", date(2026, 3, 5))

    params = query.call_args[0][1]
    assert params[:3] == ("Sementes", Decimal("12.50"), "raw_material")
    assert expense.amount == Decimal("12.50")


@pytest.mark.parametrize("amount, category", [("0", "other"), ("abc", "other"), ("10", "travel")])
def test_add_expense_rejects_bad_input(amount, category):
    with patch.object(db, "execute_query") as query:
        with pytest.raises(ValidationError):
            FinanceService().add_expense("Frete", amount, category, date(2026, 3, 5))
    query.assert_not_called()


def test_delete_missing_expense():
    with patch.object(db, "execute_update", return_value=0):
        with pytest.raises(NotFoundError):
            FinanceService().delete_expense(str(uuid4()))
