"""
Expenses Service - Expense approval, payments, recurring generation, reporting
"""
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session, selectinload

from backoffice.core.clock import Clock, system_clock
from backoffice.core.config import settings
from backoffice.core.database import TenantHandle, transactional
from backoffice.core.exceptions import (
    InvalidStateTransitionError, MissingRejectionReasonError, NotFoundError,
    PaymentExceedsDueError, ValidationError
)
from backoffice.models import (
    Branch, Expense, ExpenseCategory, ExpensePayment, ExpenseStatus,
    PaymentMethod, RecurringFrequency
)
from backoffice.schemas import ExpenseCreate, ExpensePaymentCreate, ExpenseUpdate
from backoffice.services.currency_service import CurrencyNormalizer, to_decimal, to_money
from backoffice.services.expense_category_service import require_branch_category
from backoffice.services.numbering import EXPENSE_PREFIX, next_document_number

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

FREQUENCY_MONTHS = {
    RecurringFrequency.MONTHLY.value: 1,
    RecurringFrequency.QUARTERLY.value: 3,
    RecurringFrequency.YEARLY.value: 12,
}

# Recurring expenses spawn children once they have been signed off
RECURRING_SOURCE_STATUSES = (ExpenseStatus.APPROVED.value, ExpenseStatus.PAID.value)


def add_months(start: date, months: int) -> date:
    """Same day ``months`` later, clamped to the end of shorter months"""
    return start + relativedelta(months=months)


def next_occurrence(expense_date: date, frequency: str) -> date:
    if frequency not in FREQUENCY_MONTHS:
        raise ValidationError(f"Unknown recurring frequency '{frequency}'", frequency=frequency)
    return add_months(expense_date, FREQUENCY_MONTHS[frequency])


class ExpenseService:
    """Expense lifecycle.

    draft -> submitted -> approved -> paid, or submitted -> rejected.
    Only drafts can be edited or deleted; payments are accepted once the
    expense is approved and it flips to paid when nothing is left due.
    """

    def __init__(self, handle: TenantHandle, clock: Clock = system_clock):
        self.handle = handle
        self.clock = clock

    def _get(self, db: Session, expense_id: int, lock: bool = False) -> Expense:
        query = db.query(Expense).options(selectinload(Expense.payments)).filter(Expense.id == expense_id)
        if lock:
            query = query.with_for_update()
        expense = query.first()
        if not expense:
            raise NotFoundError("Expense", expense_id)
        return expense

    def get_by_id(self, expense_id: int) -> Expense:
        with self.handle.session() as db:
            return self._get(db, expense_id)

    def payments(self, expense_id: int) -> List[ExpensePayment]:
        """Get the payments of an expense, oldest first"""
        with self.handle.session() as db:
            self._get(db, expense_id)
            return db.query(ExpensePayment).filter(
                ExpensePayment.expense_id == expense_id
            ).order_by(ExpensePayment.payment_date, ExpensePayment.id).all()

    def list(self, branch_id: Optional[int] = None, category_id: Optional[int] = None,
             status: Optional[str] = None, start_date: Optional[date] = None,
             end_date: Optional[date] = None, min_amount: Optional[Decimal] = None,
             max_amount: Optional[Decimal] = None, is_tax_deductible: Optional[bool] = None,
             limit: int = 50, offset: int = 0) -> List[Expense]:
        with self.handle.session() as db:
            query = db.query(Expense)
            if branch_id:
                query = query.filter(Expense.branch_id == branch_id)
            if category_id:
                query = query.filter(Expense.category_id == category_id)
            if status:
                query = query.filter(Expense.status == status)
            if start_date:
                query = query.filter(Expense.expense_date >= start_date)
            if end_date:
                query = query.filter(Expense.expense_date <= end_date)
            if min_amount is not None:
                query = query.filter(Expense.amount_in_base_currency >= min_amount)
            if max_amount is not None:
                query = query.filter(Expense.amount_in_base_currency <= max_amount)
            if is_tax_deductible is not None:
                query = query.filter(Expense.is_tax_deductible == is_tax_deductible)
            return query.order_by(
                Expense.expense_date.desc(), Expense.id.desc()
            ).offset(offset).limit(limit).all()

    # ---------- draft composition ----------

    @transactional
    def create(self, db: Session, expense_data: ExpenseCreate, created_by: str) -> Expense:
        if not db.query(Branch).filter(Branch.id == expense_data.branch_id).first():
            raise NotFoundError("Branch", expense_data.branch_id)
        category = require_branch_category(db, expense_data.category_id, expense_data.branch_id)
        if not category.is_active:
            raise ValidationError("Category is inactive", category_id=category.id)

        frequency = expense_data.recurring_frequency
        frequency = getattr(frequency, "value", frequency)
        if expense_data.is_recurring and not frequency:
            raise ValidationError("Recurring frequency is required for recurring expenses")

        amount_in_base, rate = CurrencyNormalizer(db).normalize(expense_data.amount, expense_data.currency_id)
        now = self.clock.now()

        expense = Expense(
            expense_number=next_document_number(db, Expense.expense_number, EXPENSE_PREFIX, now.year),
            branch_id=expense_data.branch_id,
            category_id=category.id,
            vendor=expense_data.vendor,
            description=expense_data.description,
            amount=to_money(expense_data.amount),
            currency_id=expense_data.currency_id,
            exchange_rate=rate,
            amount_in_base_currency=amount_in_base,
            amount_paid=ZERO,
            amount_due=amount_in_base,
            expense_date=expense_data.expense_date or now.date(),
            due_date=expense_data.due_date,
            status=ExpenseStatus.DRAFT.value,
            is_tax_deductible=expense_data.is_tax_deductible,
            is_recurring=expense_data.is_recurring,
            recurring_frequency=frequency if expense_data.is_recurring else None,
            recurring_end_date=expense_data.recurring_end_date if expense_data.is_recurring else None,
            notes=expense_data.notes,
            created_by=created_by,
        )
        db.add(expense)
        db.flush()

        logger.info(
            "expense_created tenant=%s expense=%s number=%s amount_base=%s",
            self.handle.tenant_id, expense.id, expense.expense_number, amount_in_base
        )
        return expense

    @transactional
    def update(self, db: Session, expense_id: int, expense_data: ExpenseUpdate) -> Expense:
        expense = self._get(db, expense_id, lock=True)
        if expense.status != ExpenseStatus.DRAFT.value:
            raise InvalidStateTransitionError("expense", expense.status, "update")

        changes = expense_data.model_dump(exclude_unset=True)
        if changes.get("category_id") is not None:
            category = require_branch_category(db, changes["category_id"], expense.branch_id)
            if not category.is_active:
                raise ValidationError("Category is inactive", category_id=category.id)

        if changes.get("amount") is not None:
            changes["amount"] = to_money(changes["amount"])
        for key, value in changes.items():
            if value is not None or key in ("vendor", "notes", "due_date"):
                setattr(expense, key, value)

        if "amount" in changes or "currency_id" in changes:
            amount_in_base, rate = CurrencyNormalizer(db).normalize(expense.amount, expense.currency_id)
            expense.exchange_rate = rate
            expense.amount_in_base_currency = amount_in_base
            expense.amount_paid = ZERO
            expense.amount_due = amount_in_base

        db.flush()
        logger.info("expense_updated tenant=%s expense=%s", self.handle.tenant_id, expense.id)
        return expense

    @transactional
    def delete(self, db: Session, expense_id: int) -> None:
        expense = self._get(db, expense_id, lock=True)
        if expense.status != ExpenseStatus.DRAFT.value:
            raise InvalidStateTransitionError("expense", expense.status, "delete")
        db.delete(expense)
        db.flush()
        logger.info("expense_deleted tenant=%s expense=%s", self.handle.tenant_id, expense_id)

    # ---------- transitions ----------

    def _transition(self, db: Session, expense_id: int, expected: ExpenseStatus,
                    target: ExpenseStatus, action: str) -> Expense:
        expense = self._get(db, expense_id, lock=True)
        if expense.status != expected.value:
            raise InvalidStateTransitionError("expense", expense.status, action)
        expense.status = target.value
        return expense

    @transactional
    def submit(self, db: Session, expense_id: int, submitted_by: str) -> Expense:
        expense = self._transition(db, expense_id, ExpenseStatus.DRAFT, ExpenseStatus.SUBMITTED, "submit")
        expense.submitted_by = submitted_by
        expense.submitted_at = self.clock.now()
        db.flush()
        logger.info("expense_submitted tenant=%s expense=%s", self.handle.tenant_id, expense.id)
        return expense

    @transactional
    def approve(self, db: Session, expense_id: int, approved_by: str) -> Expense:
        expense = self._transition(db, expense_id, ExpenseStatus.SUBMITTED, ExpenseStatus.APPROVED, "approve")
        expense.approved_by = approved_by
        expense.approved_at = self.clock.now()
        db.flush()
        logger.info("expense_approved tenant=%s expense=%s", self.handle.tenant_id, expense.id)
        return expense

    @transactional
    def reject(self, db: Session, expense_id: int, rejected_by: str, reason: Optional[str]) -> Expense:
        if not reason or not reason.strip():
            raise MissingRejectionReasonError()

        expense = self._transition(db, expense_id, ExpenseStatus.SUBMITTED, ExpenseStatus.REJECTED, "reject")
        expense.rejected_by = rejected_by
        expense.rejected_at = self.clock.now()
        expense.rejection_reason = reason.strip()
        db.flush()
        logger.info("expense_rejected tenant=%s expense=%s", self.handle.tenant_id, expense.id)
        return expense

    # ---------- payments ----------

    @transactional
    def add_payment(self, db: Session, expense_id: int, payment_data: ExpensePaymentCreate,
                    created_by: str) -> ExpensePayment:
        expense = self._get(db, expense_id, lock=True)
        if expense.status not in (ExpenseStatus.APPROVED.value, ExpenseStatus.PAID.value):
            raise InvalidStateTransitionError("expense", expense.status, "add payment to")
        if to_decimal(payment_data.amount) <= 0:
            raise ValidationError("Payment amount must be positive", amount=payment_data.amount)
        if not db.query(PaymentMethod).filter(PaymentMethod.id == payment_data.payment_method_id).first():
            raise NotFoundError("Payment method", payment_data.payment_method_id)

        amount_in_base, rate = CurrencyNormalizer(db).normalize(payment_data.amount, payment_data.currency_id)
        amount_due = to_decimal(expense.amount_due)
        if amount_in_base > amount_due:
            raise PaymentExceedsDueError(amount_in_base, amount_due)

        now = self.clock.now()
        payment = ExpensePayment(
            expense_id=expense.id,
            amount=to_money(payment_data.amount),
            currency_id=payment_data.currency_id,
            exchange_rate=rate,
            amount_in_base_currency=amount_in_base,
            payment_method_id=payment_data.payment_method_id,
            payment_date=payment_data.payment_date or now,
            reference_number=payment_data.reference_number,
            notes=payment_data.notes,
            created_by=created_by,
        )
        db.add(payment)

        expense.amount_paid = to_money(to_decimal(expense.amount_paid) + amount_in_base)
        expense.amount_due = to_money(to_decimal(expense.amount_in_base_currency) - expense.amount_paid)
        if expense.amount_due == 0:
            expense.status = ExpenseStatus.PAID.value
            expense.paid_date = now
        db.flush()

        logger.info(
            "expense_payment_added tenant=%s expense=%s payment=%s amount_base=%s due=%s status=%s",
            self.handle.tenant_id, expense.id, payment.id, amount_in_base, expense.amount_due, expense.status
        )
        return payment

    # ---------- recurring ----------

    @transactional
    def generate_recurring(self, db: Session, generated_by: str, now: Optional[datetime] = None) -> List[Expense]:
        """Create the next draft occurrence of every recurring expense that is due.

        Runs on demand; calling it again for the same occurrence creates nothing.
        """
        now = now or self.clock.now()
        today = now.date()

        parents = db.query(Expense).filter(
            Expense.is_recurring == True,
            Expense.status.in_(RECURRING_SOURCE_STATUSES)
        ).order_by(Expense.id).all()

        generated = []
        for parent in parents:
            if parent.recurring_end_date and today > parent.recurring_end_date:
                continue
            if not parent.recurring_frequency:
                continue

            occurrence = next_occurrence(parent.expense_date, parent.recurring_frequency)
            if occurrence > today:
                continue

            already_generated = db.query(Expense.id).filter(
                Expense.recurring_parent_id == parent.id,
                Expense.expense_date == occurrence
            ).first()
            if already_generated:
                continue

            child = Expense(
                expense_number=next_document_number(db, Expense.expense_number, EXPENSE_PREFIX, now.year),
                branch_id=parent.branch_id,
                category_id=parent.category_id,
                vendor=parent.vendor,
                description=f"{parent.description} (Recurring)",
                amount=parent.amount,
                currency_id=parent.currency_id,
                exchange_rate=parent.exchange_rate,
                amount_in_base_currency=parent.amount_in_base_currency,
                amount_paid=ZERO,
                amount_due=parent.amount_in_base_currency,
                expense_date=occurrence,
                due_date=occurrence + timedelta(days=settings.RECURRING_DUE_DAYS),
                status=ExpenseStatus.DRAFT.value,
                is_tax_deductible=parent.is_tax_deductible,
                is_recurring=False,
                recurring_parent_id=parent.id,
                notes=f"Auto-generated from recurring expense {parent.expense_number}",
                created_by=generated_by,
            )
            db.add(child)
            db.flush()
            generated.append(child)

        logger.info("recurring_expenses_generated tenant=%s count=%s", self.handle.tenant_id, len(generated))
        return generated

    # ---------- reporting ----------

    def report(self, branch_id: int, start_date: date, end_date: date) -> dict:
        """Totals by category and status for a branch over a date range"""
        with self.handle.session() as db:
            expenses = db.query(Expense).filter(
                Expense.branch_id == branch_id,
                Expense.expense_date >= start_date,
                Expense.expense_date <= end_date
            ).all()

            category_names = dict(
                db.query(ExpenseCategory.id, ExpenseCategory.name).filter(
                    ExpenseCategory.branch_id == branch_id
                ).all()
            )

        total = ZERO
        tax_deductible_total = ZERO
        by_category = {}
        by_status = {}
        for expense in expenses:
            amount = to_decimal(expense.amount_in_base_currency)
            total += amount
            if expense.is_tax_deductible:
                tax_deductible_total += amount

            category_total = by_category.setdefault(expense.category_id, {
                "category_id": expense.category_id,
                "category_name": category_names.get(expense.category_id, ""),
                "total": ZERO,
            })
            category_total["total"] += amount

            status_total = by_status.setdefault(expense.status, {"status": expense.status, "count": 0, "total": ZERO})
            status_total["count"] += 1
            status_total["total"] += amount

        return {
            "total_expenses": to_money(total),
            "expenses_by_category": list(by_category.values()),
            "expenses_by_status": list(by_status.values()),
            "tax_deductible_total": to_money(tax_deductible_total),
        }
