from datetime import date, datetime
from decimal import Decimal

import pytest

from backoffice.core.exceptions import DuplicateKeyError, ValidationError, ZeroBudgetError
from backoffice.models import ExpenseBudget
from backoffice.schemas import (
    BudgetPeriodEnum, ExpenseBudgetCreate, ExpenseBudgetUpdate, ExpenseCategoryCreate, ExpenseCreate
)
from backoffice.services.expense_budget_service import (
    ExpenseBudgetService, budget_date_range, validate_period
)
from backoffice.services.expense_category_service import ExpenseCategoryService
from backoffice.services.expense_service import ExpenseService


@pytest.fixture
def budgets(handle, clock):
    return ExpenseBudgetService(handle, clock)


@pytest.fixture
def expenses(handle, clock):
    return ExpenseService(handle, clock)


@pytest.fixture
def supplies(handle, seed):
    return ExpenseCategoryService(handle).create(ExpenseCategoryCreate(branch_id=seed.main, name="Supplies")).id


def monthly_budget(budgets, seed, category_id, amount="200", month=1):
    return budgets.create(ExpenseBudgetCreate(
        branch_id=seed.main, category_id=category_id, period=BudgetPeriodEnum.MONTHLY,
        year=2025, month=month, budget_amount=Decimal(amount)
    ), "owner")


def spend(expenses, seed, category_id, amount, on, approve=True):
    expense = expenses.create(ExpenseCreate(
        branch_id=seed.main, category_id=category_id, description="Paper and toner",
        amount=Decimal(amount), currency_id=seed.usd, expense_date=on
    ), "accountant")
    if approve:
        expenses.submit(expense.id, "accountant")
        expenses.approve(expense.id, "owner")
    return expense


def test_budget_date_range():
    assert budget_date_range("monthly", 2024, month=2) == (date(2024, 2, 1), date(2024, 2, 29))
    assert budget_date_range("monthly", 2025, month=2) == (date(2025, 2, 1), date(2025, 2, 28))
    assert budget_date_range("quarterly", 2025, quarter=2) == (date(2025, 4, 1), date(2025, 6, 30))
    assert budget_date_range("quarterly", 2025, quarter=4) == (date(2025, 10, 1), date(2025, 12, 31))
    assert budget_date_range("yearly", 2025) == (date(2025, 1, 1), date(2025, 12, 31))


@pytest.mark.parametrize("period,month,quarter", [
    ("monthly", None, None),
    ("monthly", 3, 1),
    ("quarterly", None, None),
    ("quarterly", 2, 1),
    ("yearly", 1, None),
    ("weekly", None, None),
])
def test_validate_period_rejects_bad_combinations(period, month, quarter):
    with pytest.raises(ValidationError):
        validate_period(period, month, quarter)


def test_create_rejects_period_mismatch(budgets, seed, supplies):
    with pytest.raises(ValidationError):
        budgets.create(ExpenseBudgetCreate(
            branch_id=seed.main, category_id=supplies, period=BudgetPeriodEnum.QUARTERLY,
            year=2025, month=1, budget_amount=Decimal("100")
        ), "owner")


def test_duplicate_budget_for_same_period(budgets, seed, supplies):
    monthly_budget(budgets, seed, supplies)

    with pytest.raises(DuplicateKeyError):
        monthly_budget(budgets, seed, supplies, amount="300")

    # a different month is a different budget
    monthly_budget(budgets, seed, supplies, month=2)
    assert len(budgets.list(seed.main, year=2025)) == 2


def test_utilization_counts_approved_spend_within_period(budgets, expenses, seed, supplies):
    monthly_budget(budgets, seed, supplies, amount="200")
    spend(expenses, seed, supplies, "50", date(2025, 1, 10))
    spend(expenses, seed, supplies, "70", date(2025, 1, 12))
    spend(expenses, seed, supplies, "999", date(2025, 1, 14), approve=False)
    spend(expenses, seed, supplies, "40", date(2025, 2, 1))

    [row] = budgets.utilization(seed.main, year=2025, month=1)

    assert row["actual_spent"] == Decimal("120.00")
    assert row["remaining"] == Decimal("80.00")
    assert row["utilization_percentage"] == Decimal("60.00")
    assert row["is_over_budget"] is False
    assert row["category_name"] == "Supplies"
    assert (row["period_start"], row["period_end"]) == (date(2025, 1, 1), date(2025, 1, 31))


def test_overspent_budget_is_reported(budgets, expenses, seed, supplies, clock):
    monthly_budget(budgets, seed, supplies, amount="100")
    spend(expenses, seed, supplies, "125", date(2025, 1, 5))

    [row] = budgets.utilization(seed.main)
    assert row["utilization_percentage"] == Decimal("125.00")
    assert row["remaining"] == Decimal("-25.00")
    assert row["is_over_budget"] is True

    over = budgets.over_budget(seed.main)
    assert [u["budget"].id for u in over] == [row["budget"].id]

    clock.set_time(datetime(2025, 2, 10, 9, 0, 0))
    assert budgets.over_budget(seed.main) == []


def test_budget_exactly_spent_is_not_over(budgets, expenses, seed, supplies):
    monthly_budget(budgets, seed, supplies, amount="100")
    spend(expenses, seed, supplies, "100", date(2025, 1, 5))

    [row] = budgets.utilization(seed.main)

    assert row["utilization_percentage"] == Decimal("100.00")
    assert row["is_over_budget"] is False


def test_zero_budget_cannot_be_measured(handle, budgets, seed, supplies):
    budget = monthly_budget(budgets, seed, supplies)
    handle.run(lambda db: db.query(ExpenseBudget).filter(ExpenseBudget.id == budget.id).update(
        {"budget_amount": Decimal("0")}, synchronize_session=False
    ))

    with pytest.raises(ZeroBudgetError):
        budgets.utilization(seed.main)


def test_update_amount_must_stay_positive(budgets, seed, supplies):
    budget = monthly_budget(budgets, seed, supplies)

    updated = budgets.update(budget.id, ExpenseBudgetUpdate(budget_amount=Decimal("350"), notes="raised"))
    assert updated.budget_amount == Decimal("350.00")
    assert updated.notes == "raised"

    with pytest.raises(ValidationError):
        budgets.update(budget.id, ExpenseBudgetUpdate(budget_amount=None))


def test_utilization_does_not_depend_on_creation_order(budgets, expenses, seed, supplies):
    budgets.create(ExpenseBudgetCreate(
        branch_id=seed.main, category_id=supplies, period=BudgetPeriodEnum.YEARLY,
        year=2025, budget_amount=Decimal("1000")
    ), "owner")
    spend(expenses, seed, supplies, "700", date(2025, 1, 3))
    spend(expenses, seed, supplies, "500", date(2025, 1, 2))

    [row] = budgets.utilization(seed.main, period="yearly", year=2025)

    assert row["actual_spent"] == Decimal("1200.00")
    assert row["remaining"] == Decimal("-200.00")
    assert row["utilization_percentage"] == Decimal("120.00")
    assert row["is_over_budget"] is True
