"""
Payroll and Finance Service

Derives the payout ledger of a period from raw production logs and the
workers' payment configuration, and keeps the finance collections
(worker settings, expenses) used by the cost projection.

Production earnings always use the unit_labor_cost stored on each log
(the rate in force when the work was logged), never the worker's current
production_rate, so past payouts do not drift when rates change.
"""

import calendar
import logging
from collections import defaultdict
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Tuple

import psycopg2
from psycopg2 import sql

from mutum.models.domain import (
    ActionType,
    Expense,
    ExpenseCategory,
    PayrollEntry,
    PaymentType,
    WorkerSettings,
)
from mutum.services.exceptions import BackendError, NotFoundError, ValidationError
from mutum.utils.config import settings
from mutum.utils.database import db

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
WORKER_COLUMNS = ("payment_type", "fixed_salary", "production_rate", "payment_date", "active")


def month_range(year: int, month: int) -> Tuple[datetime, datetime]:
    """Inclusive bounds of a calendar month (month is 1-12)"""
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month {month}")
    last_day = calendar.monthrange(year, month)[1]
    return (
        datetime.combine(date(year, month, 1), time.min),
        datetime.combine(date(year, month, last_day), time.max),
    )


def total_due(payment_type: PaymentType, fixed_salary: Decimal, production_earnings: Decimal) -> Decimal:
    if payment_type == PaymentType.FIXED:
        return fixed_salary
    if payment_type == PaymentType.PRODUCTION:
        return production_earnings
    return fixed_salary + production_earnings


def aggregate_payroll(workers: Iterable[WorkerSettings], logs: Iterable[Dict[str, Any]]) -> List[PayrollEntry]:
    """
    Compute payroll lines from already-fetched produced logs.

    Every worker gets a line, with zero production figures when they have
    no logs. Lines are ordered by worker name, then user id.
    """
    counts: Dict[str, int] = defaultdict(int)
    earnings: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for log in logs:
        user_id = str(log["user_id"])
        quantity = int(log.get("quantity") or 0)
        cost = Decimal(str(log.get("unit_labor_cost") or 0))
        counts[user_id] += quantity
        earnings[user_id] += cost * quantity

    entries = []
    for worker in workers:
        key = str(worker.user_id)
        production_earnings = earnings.get(key, ZERO)
        entries.append(PayrollEntry(
            user_id=worker.user_id,
            full_name=worker.full_name or "Desconhecido",
            role=worker.role,
            payment_type=worker.payment_type,
            fixed_salary=worker.fixed_salary,
            production_count=counts.get(key, 0),
            production_earnings=production_earnings,
            total_due=total_due(worker.payment_type, worker.fixed_salary, production_earnings),
        ))

    entries.sort(key=lambda entry: (entry.full_name.lower(), str(entry.user_id)))
    return entries


def payroll_total(entries: Iterable[PayrollEntry]) -> Decimal:
    return sum((entry.total_due for entry in entries), ZERO)


def format_currency(value: Decimal) -> str:
    """Brazilian currency format, e.g. 'R$ 1.130,00'"""
    amount = Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    integer, _, cents = f"{abs(amount):.2f}".partition(".")
    grouped = f"{int(integer):,}".replace(",", ".")
    return f"{sign}{settings.CURRENCY_SYMBOL} {grouped},{cents}"


def parse_money(value: Any, name: str) -> Decimal:
    """Decimal amount from user input; rejects non-numbers and negatives"""
    try:
        amount = Decimal(str(value).strip().replace(",", "."))
    except InvalidOperation:
        raise ValidationError(f"{name} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{name} must be a finite number")
    if amount < 0:
        raise ValidationError(f"{name} must be >= 0")
    return amount


class PayrollService:
    """Computes payroll for a period from production logs"""

    def fetch_produced_logs(self, period_start: datetime, period_end: datetime) -> List[Dict[str, Any]]:
        query = """
            SELECT user_id, quantity, unit_labor_cost, created_at
            FROM production_logs
            WHERE action_type = %s
            AND created_at >= %s AND created_at <= %s
        """
        try:
            return db.execute_query(query, (ActionType.PRODUCED.value, period_start, period_end))
        except psycopg2.Error as e:
            logger.error(f"Payroll log fetch failed: {e}")
            raise BackendError("Erro ao calcular a folha de pagamento.", e)

    def compute_payroll(
        self,
        workers: Iterable[WorkerSettings],
        period_start: datetime,
        period_end: datetime,
    ) -> List[PayrollEntry]:
        """
        Payroll lines for every worker over [period_start, period_end].

        Raises:
            BackendError: If the logs cannot be fetched (no partial result)
        """
        if period_end < period_start:
            raise ValidationError("Payroll period ends before it starts")
        workers = list(workers)
        logs = self.fetch_produced_logs(period_start, period_end)
        entries = aggregate_payroll(workers, logs)
        logger.info(
            f"Computed payroll for {len(entries)} workers from {len(logs)} logs "
            f"({period_start.date()} to {period_end.date()})"
        )
        return entries

    def compute_month(self, workers: Iterable[WorkerSettings], year: int, month: int) -> List[PayrollEntry]:
        return self.compute_payroll(workers, *month_range(year, month))

    def worker_month_earnings(self, user_id: str, today: Optional[date] = None) -> Decimal:
        """A worker's own production earnings since the first of the month"""
        today = today or date.today()
        start = datetime.combine(today.replace(day=1), time.min)
        query = """
            SELECT quantity, unit_labor_cost
            FROM production_logs
            WHERE user_id = %s AND action_type = %s AND created_at >= %s
        """
        try:
            logs = db.execute_query(query, (user_id, ActionType.PRODUCED.value, start))
        except psycopg2.Error as e:
            logger.error(f"Earnings fetch failed for {user_id}: {e}")
            raise BackendError("Erro ao carregar ganhos.", e)
        return sum(
            (Decimal(str(log.get("unit_labor_cost") or 0)) * int(log.get("quantity") or 0) for log in logs),
            ZERO,
        )


class FinanceService:
    """Worker payment configuration and expenses"""

    def list_workers(self) -> List[WorkerSettings]:
        query = """
            SELECT ws.user_id, ws.payment_type, ws.fixed_salary, ws.production_rate,
                   ws.payment_date, ws.active, p.full_name, p.role
            FROM worker_settings ws
            LEFT JOIN profiles p ON p.id = ws.user_id
            ORDER BY p.full_name
        """
        try:
            rows = db.execute_query(query)
        except psycopg2.Error as e:
            logger.error(f"Error fetching workers: {e}")
            raise BackendError("Erro ao carregar trabalhadores.", e)
        return [WorkerSettings(**row) for row in rows]

    def get_worker(self, user_id: str) -> Optional[WorkerSettings]:
        row = db.execute_query(
            """
            SELECT ws.user_id, ws.payment_type, ws.fixed_salary, ws.production_rate,
                   ws.payment_date, ws.active, p.full_name, p.role
            FROM worker_settings ws
            LEFT JOIN profiles p ON p.id = ws.user_id
            WHERE ws.user_id = %s
            """,
            (user_id,),
            fetch_one=True,
        )
        return WorkerSettings(**row) if row else None

    def upsert_worker_settings(self, user_id: str, **fields) -> WorkerSettings:
        """Create or update the payment configuration of one worker"""
        unknown = set(fields) - set(WORKER_COLUMNS)
        if unknown:
            raise ValidationError(f"Unknown worker settings: {', '.join(sorted(unknown))}")
        if "payment_type" in fields:
            try:
                fields["payment_type"] = PaymentType(fields["payment_type"]).value
            except ValueError:
                raise ValidationError(f"Unknown payment type '{fields['payment_type']}'")
        for money in ("fixed_salary", "production_rate"):
            if money in fields:
                fields[money] = parse_money(fields[money], money)

        existing = self.get_worker(user_id)
        if existing is None and "payment_type" not in fields:
            raise ValidationError("payment_type is required for a new worker")

        columns = list(fields)
        if columns:
            query = sql.SQL(
                "INSERT INTO worker_settings (user_id, {columns}) VALUES (%s, {values}) "
                "ON CONFLICT (user_id) DO UPDATE SET {assignments}"
            ).format(
                columns=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
                values=sql.SQL(", ").join(sql.Placeholder() for _ in columns),
                assignments=sql.SQL(", ").join(
                    sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(c)) for c in columns
                ),
            )
            try:
                db.execute_update(query, (user_id, *fields.values()))
            except psycopg2.Error as e:
                logger.error(f"Error saving worker settings for {user_id}: {e}")
                raise BackendError("Erro ao salvar configuração de pagamento.", e)

        worker = self.get_worker(user_id)
        if worker is None:
            raise NotFoundError(f"Worker {user_id} not found")
        logger.info(f"Saved worker settings for {user_id}: {columns}")
        return worker

    def list_expenses(self) -> List[Expense]:
        try:
            rows = db.execute_query(
                "SELECT id, description, amount, category, date, recurrence, created_by "
                "FROM expenses ORDER BY date DESC"
            )
        except psycopg2.Error as e:
            logger.error(f"Error fetching expenses: {e}")
            raise BackendError("Erro ao carregar despesas.", e)
        return [Expense(**row) for row in rows]

    def add_expense(
        self,
        description: str,
        amount: Decimal,
        category: str,
        expense_date: date,
        recurrence: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Expense:
        if not description or not description.strip():
            raise ValidationError("Expense description is required")
        amount = parse_money(amount, "amount")
        if amount == 0:
            raise ValidationError("Expense amount must be positive")
        try:
            category = ExpenseCategory(category or ExpenseCategory.OTHER).value
        except ValueError:
            raise ValidationError(f"Unknown expense category '{category}'")
        if expense_date is None:
            raise ValidationError("Expense date is required")
        try:
            row = db.execute_query(
                """
                INSERT INTO expenses (description, amount, category, date, recurrence, created_by)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING id, description, amount, category, date, recurrence, created_by
                """,
                (description.strip(), amount, category, expense_date, recurrence, created_by),
                fetch_one=True,
            )
        except psycopg2.Error as e:
            logger.error(f"Error adding expense: {e}")
            raise BackendError("Erro ao salvar despesa.", e)
        logger.info(f"Added expense {row['id']} ({category}, {amount})")
        return Expense(**row)

    def delete_expense(self, expense_id: str):
        try:
            count = db.execute_update("DELETE FROM expenses WHERE id = %s", (expense_id,))
        except psycopg2.Error as e:
            logger.error(f"Error deleting expense {expense_id}: {e}")
            raise BackendError("Erro ao excluir despesa.", e)
        if not count:
            raise NotFoundError(f"Expense {expense_id} not found")

    def projected_monthly_cost(
        self,
        expenses: Iterable[Expense],
        workers: Iterable[WorkerSettings],
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> Decimal:
        """
        Recorded expenses (of the month, when given) plus the fixed salaries
        of active fixed/mixed workers.
        """
        expense_total = sum(
            (
                Decimal(str(expense.amount))
                for expense in expenses
                if (month is None or expense.date.month == month)
                and (year is None or expense.date.year == year)
            ),
            ZERO,
        )
        payroll_fixed = sum(
            (
                worker.fixed_salary
                for worker in workers
                if worker.active and worker.payment_type.includes_fixed
            ),
            ZERO,
        )
        return expense_total + payroll_fixed


# Singleton instances
_payroll_service = None
_finance_service = None

def get_payroll_service() -> PayrollService:
    """Get singleton instance of PayrollService"""
    global _payroll_service
    if _payroll_service is None:
        _payroll_service = PayrollService()
    return _payroll_service


def get_finance_service() -> FinanceService:
    """Get singleton instance of FinanceService"""
    global _finance_service
    if _finance_service is None:
        _finance_service = FinanceService()
    return _finance_service
