"""
Expense Budgets Service - budgets per category and period, utilization
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from backoffice.core.clock import Clock, system_clock
from backoffice.core.database import TenantHandle, transactional
from backoffice.core.exceptions import (
    DuplicateKeyError, NotFoundError, ValidationError, ZeroBudgetError
)
from backoffice.models import (
    Branch, BudgetPeriod, Expense, ExpenseBudget, ExpenseStatus
)
from backoffice.schemas import ExpenseBudgetCreate, ExpenseBudgetUpdate
from backoffice.services.currency_service import to_decimal, to_money
from backoffice.services.expense_category_service import require_branch_category

logger = logging.getLogger(__name__)

PERCENT = Decimal("0.01")

# Only spending that has been signed off counts against a budget
COUNTED_STATUSES = (ExpenseStatus.APPROVED.value, ExpenseStatus.PAID.value)


def budget_date_range(period: str, year: int, month: Optional[int] = None,
                      quarter: Optional[int] = None) -> Tuple[date, date]:
    """First and last day (inclusive) of a budget period"""
    if period == BudgetPeriod.MONTHLY.value:
        start, months = date(year, month, 1), 1
    elif period == BudgetPeriod.QUARTERLY.value:
        start, months = date(year, (quarter - 1) * 3 + 1, 1), 3
    else:
        start, months = date(year, 1, 1), 12
    return start, start + relativedelta(months=months) - relativedelta(days=1)


def validate_period(period: str, month: Optional[int], quarter: Optional[int]):
    if period == BudgetPeriod.MONTHLY.value:
        if month is None or quarter is not None:
            raise ValidationError("Monthly budgets need a month and no quarter", month=month, quarter=quarter)
        if not 1 <= month <= 12:
            raise ValidationError("Month must be between 1 and 12", month=month)
    elif period == BudgetPeriod.QUARTERLY.value:
        if quarter is None or month is not None:
            raise ValidationError("Quarterly budgets need a quarter and no month", month=month, quarter=quarter)
        if not 1 <= quarter <= 4:
            raise ValidationError("Quarter must be between 1 and 4", quarter=quarter)
    elif period == BudgetPeriod.YEARLY.value:
        if month is not None or quarter is not None:
            raise ValidationError("Yearly budgets take neither month nor quarter", month=month, quarter=quarter)
    else:
        raise ValidationError(f"Unknown budget period '{period}'", period=period)


class ExpenseBudgetService:
    def __init__(self, handle: TenantHandle, clock: Clock = system_clock):
        self.handle = handle
        self.clock = clock

    def _get(self, db: Session, budget_id: int) -> ExpenseBudget:
        budget = db.query(ExpenseBudget).filter(ExpenseBudget.id == budget_id).first()
        if not budget:
            raise NotFoundError("Expense budget", budget_id)
        return budget

    def get_by_id(self, budget_id: int) -> ExpenseBudget:
        with self.handle.session() as db:
            return self._get(db, budget_id)

    def list(self, branch_id: int, year: Optional[int] = None) -> List[ExpenseBudget]:
        with self.handle.session() as db:
            query = db.query(ExpenseBudget).filter(ExpenseBudget.branch_id == branch_id)
            if year:
                query = query.filter(ExpenseBudget.year == year)
            return query.order_by(ExpenseBudget.year, ExpenseBudget.period, ExpenseBudget.id).all()

    @transactional
    def create(self, db: Session, data: ExpenseBudgetCreate, created_by: str) -> ExpenseBudget:
        if not db.query(Branch).filter(Branch.id == data.branch_id).first():
            raise NotFoundError("Branch", data.branch_id)
        require_branch_category(db, data.category_id, data.branch_id)

        period = data.period.value if hasattr(data.period, "value") else data.period
        validate_period(period, data.month, data.quarter)
        if to_decimal(data.budget_amount) <= 0:
            raise ValidationError("Budget amount must be positive", budget_amount=data.budget_amount)

        # NULL month/quarter never collide in a unique index, so check explicitly
        duplicate = db.query(ExpenseBudget).filter(
            ExpenseBudget.branch_id == data.branch_id,
            ExpenseBudget.category_id == data.category_id,
            ExpenseBudget.period == period,
            ExpenseBudget.year == data.year,
            ExpenseBudget.month.is_(None) if data.month is None else ExpenseBudget.month == data.month,
            ExpenseBudget.quarter.is_(None) if data.quarter is None else ExpenseBudget.quarter == data.quarter,
        ).first()
        if duplicate:
            raise DuplicateKeyError(
                "Budget already exists for this category and period",
                budget_id=duplicate.id,
            )

        budget = ExpenseBudget(
            branch_id=data.branch_id,
            category_id=data.category_id,
            period=period,
            year=data.year,
            month=data.month,
            quarter=data.quarter,
            budget_amount=to_money(data.budget_amount),
            notes=data.notes,
            created_by=created_by,
        )
        db.add(budget)
        db.flush()
        logger.info(
            "expense_budget_created tenant=%s budget=%s category=%s period=%s year=%s amount=%s",
            self.handle.tenant_id, budget.id, budget.category_id, period, budget.year, budget.budget_amount
        )
        return budget

    @transactional
    def update(self, db: Session, budget_id: int, data: ExpenseBudgetUpdate) -> ExpenseBudget:
        budget = self._get(db, budget_id)
        changes = data.model_dump(exclude_unset=True)
        if "budget_amount" in changes:
            if changes["budget_amount"] is None or to_decimal(changes["budget_amount"]) <= 0:
                raise ValidationError("Budget amount must be positive", budget_amount=changes["budget_amount"])
            changes["budget_amount"] = to_money(changes["budget_amount"])

        for key, value in changes.items():
            setattr(budget, key, value)
        db.flush()
        return budget

    @transactional
    def delete(self, db: Session, budget_id: int) -> None:
        budget = self._get(db, budget_id)
        db.delete(budget)
        db.flush()
        logger.info("expense_budget_deleted tenant=%s budget=%s", self.handle.tenant_id, budget_id)

    def _actual_spent(self, db: Session, budget: ExpenseBudget, start: date, end: date) -> Decimal:
        total = db.query(func.sum(Expense.amount_in_base_currency)).filter(
            Expense.branch_id == budget.branch_id,
            Expense.category_id == budget.category_id,
            Expense.expense_date >= start,
            Expense.expense_date <= end,
            Expense.status.in_(COUNTED_STATUSES)
        ).scalar()
        return to_money(total or 0)

    def _utilization_for(self, db: Session, budget: ExpenseBudget) -> dict:
        budget_amount = to_decimal(budget.budget_amount)
        if budget_amount == 0:
            raise ZeroBudgetError(budget.id)

        start, end = budget_date_range(budget.period, budget.year, budget.month, budget.quarter)
        actual = self._actual_spent(db, budget, start, end)
        return {
            "budget": budget,
            "category_name": budget.category.name if budget.category else "",
            "period_start": start,
            "period_end": end,
            "actual_spent": actual,
            "remaining": to_money(budget_amount - actual),
            "utilization_percentage": (actual / budget_amount * 100).quantize(PERCENT),
            "is_over_budget": actual > budget_amount,
        }

    def utilization(self, branch_id: int, period: Optional[str] = None, year: Optional[int] = None,
                    month: Optional[int] = None, quarter: Optional[int] = None) -> List[dict]:
        """Actual approved/paid spend against each matching budget"""
        with self.handle.session() as db:
            query = db.query(ExpenseBudget).options(
                joinedload(ExpenseBudget.category)
            ).filter(ExpenseBudget.branch_id == branch_id)
            if period:
                query = query.filter(ExpenseBudget.period == getattr(period, "value", period))
            if year:
                query = query.filter(ExpenseBudget.year == year)
            if month:
                query = query.filter(ExpenseBudget.month == month)
            if quarter:
                query = query.filter(ExpenseBudget.quarter == quarter)

            budgets = query.order_by(ExpenseBudget.id).all()
            return [self._utilization_for(db, budget) for budget in budgets]

    def over_budget(self, branch_id: int, now: Optional[datetime] = None) -> List[dict]:
        """Budgets of the current month, quarter and year that are overspent"""
        now = now or self.clock.now()
        current_quarter = (now.month - 1) // 3 + 1
        utilizations = (
            self.utilization(branch_id, BudgetPeriod.MONTHLY.value, now.year, month=now.month)
            + self.utilization(branch_id, BudgetPeriod.QUARTERLY.value, now.year, quarter=current_quarter)
            + self.utilization(branch_id, BudgetPeriod.YEARLY.value, now.year)
        )
        return [u for u in utilizations if u["is_over_budget"]]
